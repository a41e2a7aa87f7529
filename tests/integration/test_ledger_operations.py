"""
Integration tests for LedgerService operations.

Tests cover:
- Purchase -> production -> delivery -> collection flow with weighted-average costing
- All-or-nothing failures (shortage, overpayment, invalid state)
- Audit trail completeness and reconciliation
- Catalogue operations, expenses and reports
- Tenant isolation
- Same flow on the SQLite store
"""

import random
import tempfile
from datetime import datetime, timedelta, timezone

import pytest

from ledger.mfgledger_server.clock import FixedClock
from ledger.mfgledger_server.config import CoordinatorConfig
from ledger.mfgledger_server.engine.coordinator import TransactionCoordinator
from ledger.mfgledger_server.errors import (
    ErrorKind,
    InsufficientStockError,
    IntegrityError,
    InvalidStateError,
    NotFoundError,
    OverpaymentError,
    ValidationError,
)
from ledger.mfgledger_server.service import LedgerService
from ledger.mfgledger_server.store.memory import InMemoryLedgerStore
from ledger.mfgledger_server.store.sqlite import SqliteLedgerStore

START = datetime(2025, 3, 1, 9, 0, tzinfo=timezone.utc)
ORG = "org_acme"


def make_service(store, clock=None):
    coordinator = TransactionCoordinator(
        store,
        CoordinatorConfig(max_attempts=5, base_delay_ms=1, max_delay_ms=5),
        rng=random.Random(3),
    )
    return LedgerService(store, coordinator, clock or FixedClock(START))


async def seed_widget(service, org=ORG):
    """Steel bought twice, a widget product using 2 steel per unit."""
    steel = (await service.create_material(org, "Steel", "kg", min_stock=140)).raise_for_error()
    steel_id = steel.created["material"]
    (await service.purchase(org, steel_id, 100, 5000)).raise_for_error()
    (await service.purchase(org, steel_id, 50, 3000)).raise_for_error()
    product = (await service.create_product(org, "Widget", bom=[(steel_id, 2)])).raise_for_error()
    return steel_id, product.created["product"]


class TestLedgerFlow:
    """End-to-end operation flow on the in-memory store."""

    @pytest.fixture
    def store(self):
        return InMemoryLedgerStore()

    @pytest.fixture
    def clock(self):
        return FixedClock(START)

    @pytest.fixture
    def service(self, store, clock):
        return make_service(store, clock)

    @pytest.mark.asyncio
    async def test_purchase_reaverages_cost(self, service):
        steel = (await service.create_material(ORG, "Steel", "kg")).raise_for_error()
        steel_id = steel.created["material"]

        first = await service.purchase(ORG, steel_id, 100, 5000)
        second = await service.purchase(ORG, steel_id, 50, 3000)

        assert first.outcome.new_average_cost == pytest.approx(50.0)
        assert second.outcome.unit_cost == pytest.approx(60.0)
        assert second.outcome.new_quantity == 150
        assert second.outcome.new_average_cost == pytest.approx(53.3333, abs=1e-4)

        material = await service.get(ORG, "raw_materials", steel_id)
        assert material["quantity"] == 150
        assert material["averageCost"] == pytest.approx(8000 / 150)
        assert material["version"] == 3

        logs = await service.list(ORG, "raw_material_logs")
        assert [log["type"] for log in logs] == ["purchase", "purchase"]
        assert [log["quantityChange"] for log in logs] == [100, 50]

        cashflow = await service.list(ORG, "cashflow_entries")
        assert [c["amount"] for c in cashflow] == [5000, 3000]
        assert cashflow[0]["type"] == "outflow"
        assert cashflow[0]["category"] == "purchase"
        assert cashflow[0]["description"] == "Purchase of Steel (100 kg)"

    @pytest.mark.asyncio
    async def test_production_consumes_bom_at_average_cost(self, service):
        steel_id, widget_id = await seed_widget(service)

        result = await service.production_run(ORG, widget_id, 10)

        assert result.success
        assert result.outcome.total_cost == pytest.approx(20 * 8000 / 150)
        assert result.outcome.unit_cost == pytest.approx(106.6667, abs=1e-4)
        assert result.outcome.consumed == {steel_id: 20}
        assert "production_order" in result.created

        material = await service.get(ORG, "raw_materials", steel_id)
        assert material["quantity"] == 130
        assert material["averageCost"] == pytest.approx(8000 / 150)

        item = await service.get(ORG, "inventory_items", widget_id)
        assert item["quantity"] == 10
        assert item["averageCost"] == pytest.approx(106.6667, abs=1e-4)
        assert item["unit"] == "pc"
        assert item["productName"] == "Widget"

        use_log = (await service.list(ORG, "raw_material_logs"))[-1]
        assert use_log["type"] == "production_use"
        assert use_log["quantityChange"] == -20
        assert use_log["productId"] == widget_id

        order = await service.get(ORG, "production_orders", result.created["production_order"])
        assert order["status"] == "completed"
        assert order["quantity"] == 10

    @pytest.mark.asyncio
    async def test_second_production_batch_reaverages_finished_goods(self, service):
        steel_id, widget_id = await seed_widget(service)
        (await service.production_run(ORG, widget_id, 10)).raise_for_error()
        (await service.purchase(ORG, steel_id, 20, 2000)).raise_for_error()

        result = await service.production_run(ORG, widget_id, 5)

        item = await service.get(ORG, "inventory_items", widget_id)
        assert item["quantity"] == 15
        expected_avg = (10 * (2 * 8000 / 150) + 5 * result.outcome.unit_cost) / 15
        assert item["averageCost"] == pytest.approx(expected_avg, abs=1e-3)
        assert item["version"] == 2

    @pytest.mark.asyncio
    async def test_production_shortage_changes_nothing(self, service, store):
        steel_id, widget_id = await seed_widget(service)
        commits = store.commit_count

        result = await service.production_run(ORG, widget_id, 100)

        assert not result.success
        assert isinstance(result.error, InsufficientStockError)
        assert result.error.details["required"] == 200
        assert result.error.details["available"] == 150
        assert store.commit_count == commits
        assert (await service.get(ORG, "raw_materials", steel_id))["quantity"] == 150
        assert await service.list(ORG, "inventory_items") == []
        assert await service.list(ORG, "production_orders") == []

    @pytest.mark.asyncio
    async def test_production_without_bom_rejected(self, service):
        product = (await service.create_product(ORG, "Empty")).raise_for_error()

        result = await service.production_run(ORG, product.created["product"], 1)

        assert isinstance(result.error, ValidationError)
        assert result.error.kind == ErrorKind.VALIDATION

    @pytest.mark.asyncio
    async def test_one_short_material_blocks_the_whole_run(self, service, store):
        steel_id, _ = await seed_widget(service)
        glue = (await service.create_material(ORG, "Glue", "ml")).raise_for_error()
        glue_id = glue.created["material"]
        (await service.purchase(ORG, glue_id, 5, 50)).raise_for_error()
        gadget = (
            await service.create_product(ORG, "Gadget", bom=[(steel_id, 2), (glue_id, 1)])
        ).raise_for_error()
        steel_before = await service.get(ORG, "raw_materials", steel_id)
        logs_before = len(await service.list(ORG, "raw_material_logs"))
        commits = store.commit_count

        result = await service.production_run(ORG, gadget.created["product"], 10)

        assert isinstance(result.error, InsufficientStockError)
        assert result.error.details["id"] == glue_id
        assert result.error.details["required"] == 10
        assert result.error.details["available"] == 5
        assert store.commit_count == commits
        steel_after = await service.get(ORG, "raw_materials", steel_id)
        assert steel_after["quantity"] == 150
        assert steel_after["version"] == steel_before["version"]
        assert (await service.get(ORG, "raw_materials", glue_id))["quantity"] == 5
        assert len(await service.list(ORG, "raw_material_logs")) == logs_before
        assert await service.list(ORG, "inventory_logs") == []
        assert await service.list(ORG, "inventory_items") == []
        assert await service.list(ORG, "production_orders") == []

    @pytest.mark.asyncio
    async def test_duplicate_bom_lines_are_summed(self, service):
        steel_id, _ = await seed_widget(service)
        bracket = (
            await service.create_product(ORG, "Bracket", bom=[(steel_id, 1), (steel_id, 1.5)])
        ).raise_for_error()
        bracket_id = bracket.created["product"]

        result = await service.production_run(ORG, bracket_id, 4)

        assert result.success
        assert result.outcome.consumed == {steel_id: 10}
        assert result.outcome.total_cost == pytest.approx(10 * 8000 / 150)
        assert (await service.get(ORG, "raw_materials", steel_id))["quantity"] == 140
        use_logs = [
            log
            for log in await service.list(ORG, "raw_material_logs")
            if log["type"] == "production_use"
        ]
        assert len(use_logs) == 1
        assert use_logs[0]["quantityChange"] == -10

        shortage = await service.production_run(ORG, bracket_id, 57)
        assert isinstance(shortage.error, InsufficientStockError)
        assert shortage.error.details["required"] == pytest.approx(142.5)

    @pytest.mark.asyncio
    async def test_one_short_product_blocks_the_whole_delivery(self, service):
        steel_id, widget_id = await seed_widget(service)
        gadget = (await service.create_product(ORG, "Gadget", bom=[(steel_id, 1)])).raise_for_error()
        gadget_id = gadget.created["product"]
        (await service.production_run(ORG, widget_id, 10)).raise_for_error()
        (await service.production_run(ORG, gadget_id, 2)).raise_for_error()
        widget_before = await service.get(ORG, "inventory_items", widget_id)
        order = (
            await service.create_sales_order(
                ORG, "Globex", [(widget_id, 3, 200), (gadget_id, 5, 80)]
            )
        ).raise_for_error()
        order_id = order.created["sales_order"]

        result = await service.deliver_order(ORG, order_id)

        assert isinstance(result.error, InsufficientStockError)
        assert result.error.details["id"] == gadget_id
        assert result.error.details["required"] == 5
        assert result.error.details["available"] == 2
        widget_after = await service.get(ORG, "inventory_items", widget_id)
        assert widget_after["quantity"] == 10
        assert widget_after["version"] == widget_before["version"]
        assert (await service.get(ORG, "inventory_items", gadget_id))["quantity"] == 2
        assert (await service.get(ORG, "sales_orders", order_id))["status"] == "pending"
        assert await service.list(ORG, "receivables") == []
        sale_logs = [
            log
            for log in await service.list(ORG, "inventory_logs")
            if log["type"] == "sale_delivery"
        ]
        assert sale_logs == []

    @pytest.mark.asyncio
    async def test_delivery_books_cogs_and_receivable(self, service, clock):
        _, widget_id = await seed_widget(service)
        (await service.production_run(ORG, widget_id, 10)).raise_for_error()
        order = (
            await service.create_sales_order(ORG, "Globex", [(widget_id, 5, 200)])
        ).raise_for_error()
        order_id = order.created["sales_order"]
        assert order.outcome == 1000
        clock.advance(days=2)

        result = await service.deliver_order(ORG, order_id)

        assert result.success
        assert result.outcome.total_cost == pytest.approx(5 * 1066.6667 / 10, abs=1e-3)
        assert result.outcome.cost_by_product[widget_id] == pytest.approx(533.333, abs=1e-3)

        delivered = await service.get(ORG, "sales_orders", order_id)
        assert delivered["status"] == "delivered"
        assert delivered["totalCost"] == pytest.approx(533.333, abs=1e-3)
        assert delivered["deliveredAt"] == (START + timedelta(days=2)).isoformat()

        item = await service.get(ORG, "inventory_items", widget_id)
        assert item["quantity"] == 5
        assert item["averageCost"] == pytest.approx(106.6667, abs=1e-4)

        receivable = await service.get(ORG, "receivables", result.created["receivable"])
        assert receivable["customerName"] == "Globex"
        assert receivable["orderId"] == order_id
        assert receivable["totalAmount"] == 1000
        assert receivable["dueAmount"] == 1000
        assert receivable["paidAmount"] == 0
        assert receivable["status"] == "unpaid"
        assert receivable["dueDate"] == (START + timedelta(days=32)).isoformat()

        sale_log = (await service.list(ORG, "inventory_logs"))[-1]
        assert sale_log["type"] == "sale_delivery"
        assert sale_log["quantityChange"] == -5
        assert sale_log["relatedOrderId"] == order_id

    @pytest.mark.asyncio
    async def test_delivery_sums_lines_for_the_same_product(self, service):
        _, widget_id = await seed_widget(service)
        (await service.production_run(ORG, widget_id, 10)).raise_for_error()
        order = (
            await service.create_sales_order(
                ORG, "Globex", [(widget_id, 6, 200), (widget_id, 6, 180)]
            )
        ).raise_for_error()

        result = await service.deliver_order(ORG, order.created["sales_order"])

        assert isinstance(result.error, InsufficientStockError)
        assert result.error.details["required"] == 12
        assert (await service.get(ORG, "inventory_items", widget_id))["quantity"] == 10

    @pytest.mark.asyncio
    async def test_delivery_of_unproduced_product(self, service):
        _, widget_id = await seed_widget(service)
        order = (
            await service.create_sales_order(ORG, "Globex", [(widget_id, 1, 200)])
        ).raise_for_error()

        result = await service.deliver_order(ORG, order.created["sales_order"])

        assert isinstance(result.error, InsufficientStockError)
        assert result.error.details["available"] == 0
        assert await service.list(ORG, "receivables") == []

    @pytest.mark.asyncio
    async def test_delivery_is_not_idempotent(self, service):
        _, widget_id = await seed_widget(service)
        (await service.production_run(ORG, widget_id, 10)).raise_for_error()
        order = (
            await service.create_sales_order(ORG, "Globex", [(widget_id, 2, 200)])
        ).raise_for_error()
        order_id = order.created["sales_order"]
        (await service.deliver_order(ORG, order_id)).raise_for_error()

        again = await service.deliver_order(ORG, order_id)

        assert isinstance(again.error, InvalidStateError)
        assert len(await service.list(ORG, "receivables")) == 1
        assert (await service.get(ORG, "inventory_items", widget_id))["quantity"] == 8

    @pytest.mark.asyncio
    async def test_collections_until_paid(self, service):
        _, widget_id = await seed_widget(service)
        (await service.production_run(ORG, widget_id, 10)).raise_for_error()
        order = (
            await service.create_sales_order(ORG, "Globex", [(widget_id, 5, 100)])
        ).raise_for_error()
        delivery = (await service.deliver_order(ORG, order.created["sales_order"])).raise_for_error()
        receivable_id = delivery.created["receivable"]

        first = await service.record_collection(ORG, receivable_id, 200)
        assert first.outcome.status == "partial"
        assert first.outcome.due_amount == pytest.approx(300)

        overpay = await service.record_collection(ORG, receivable_id, 300.5)
        assert isinstance(overpay.error, OverpaymentError)

        second = await service.record_collection(ORG, receivable_id, 300)
        assert second.outcome.status == "paid"
        assert second.outcome.due_amount == 0

        receivable = await service.get(ORG, "receivables", receivable_id)
        assert receivable["paidAmount"] == 500
        assert receivable["status"] == "paid"
        assert receivable["lastPaymentDate"] == START.isoformat()

        paid_again = await service.record_collection(ORG, receivable_id, 1)
        assert isinstance(paid_again.error, InvalidStateError)

        collections = await service.list(ORG, "collections")
        assert [c["amount"] for c in collections] == [200, 300]
        inflows = [c for c in await service.list(ORG, "cashflow_entries") if c["type"] == "inflow"]
        assert [c["amount"] for c in inflows] == [200, 300]
        assert inflows[0]["description"] == (
            f"Collection from Globex for Order {order.created['sales_order']}"
        )

    @pytest.mark.asyncio
    async def test_collection_within_epsilon_settles(self, service):
        _, widget_id = await seed_widget(service)
        (await service.production_run(ORG, widget_id, 1)).raise_for_error()
        order = (
            await service.create_sales_order(ORG, "Globex", [(widget_id, 1, 99.99)])
        ).raise_for_error()
        delivery = (await service.deliver_order(ORG, order.created["sales_order"])).raise_for_error()

        receivable_id = delivery.created["receivable"]

        result = await service.record_collection(ORG, receivable_id, 99.985)

        assert result.success
        assert result.outcome.status == "paid"
        assert result.outcome.due_amount == pytest.approx(0.005)
        receivable = await service.get(ORG, "receivables", receivable_id)
        assert receivable["paidAmount"] <= receivable["totalAmount"]

    @pytest.mark.asyncio
    async def test_any_amount_above_due_is_overpayment(self, service):
        _, widget_id = await seed_widget(service)
        (await service.production_run(ORG, widget_id, 1)).raise_for_error()
        order = (
            await service.create_sales_order(ORG, "Globex", [(widget_id, 1, 100)])
        ).raise_for_error()
        delivery = (await service.deliver_order(ORG, order.created["sales_order"])).raise_for_error()
        receivable_id = delivery.created["receivable"]

        result = await service.record_collection(ORG, receivable_id, 100.009)

        assert isinstance(result.error, OverpaymentError)
        assert result.error.details["requested"] == 100.009
        assert result.error.details["due"] == 100
        receivable = await service.get(ORG, "receivables", receivable_id)
        assert receivable["paidAmount"] == 0
        assert receivable["status"] == "unpaid"
        assert await service.list(ORG, "collections") == []

        exact = await service.record_collection(ORG, receivable_id, 100)
        assert exact.outcome.status == "paid"
        assert exact.outcome.paid_amount == 100

    @pytest.mark.asyncio
    async def test_manual_adjustments(self, service):
        steel_id, widget_id = await seed_widget(service)
        (await service.production_run(ORG, widget_id, 10)).raise_for_error()

        added = await service.manual_adjustment(ORG, widget_id, 3, "Recount")
        assert added.outcome.new_quantity == 13

        deducted = await service.manual_adjustment(
            ORG, steel_id, -30, "Scrap", item_kind="material"
        )
        assert deducted.outcome.previous_quantity == 130
        assert deducted.outcome.new_quantity == 100

        too_much = await service.manual_adjustment(ORG, widget_id, -14, "Lost")
        assert isinstance(too_much.error, IntegrityError)
        assert too_much.error.details["available"] == 13

        no_reason = await service.manual_adjustment(ORG, widget_id, 1, "   ")
        assert isinstance(no_reason.error, ValidationError)

        zero = await service.manual_adjustment(ORG, widget_id, 0, "Nothing")
        assert isinstance(zero.error, ValidationError)

        bad_kind = await service.manual_adjustment(ORG, widget_id, 1, "x", item_kind="pallet")
        assert isinstance(bad_kind.error, ValidationError)

        inventory_logs = await service.list(ORG, "inventory_logs")
        assert inventory_logs[-1]["type"] == "manual_add"
        assert inventory_logs[-1]["reason"] == "Recount"
        material_logs = await service.list(ORG, "raw_material_logs")
        assert material_logs[-1]["type"] == "manual_deduct"
        assert material_logs[-1]["quantityChange"] == -30

    @pytest.mark.asyncio
    async def test_adjustment_of_missing_item(self, service):
        result = await service.manual_adjustment(ORG, "ghost", 1, "Recount")
        assert isinstance(result.error, NotFoundError)

    @pytest.mark.asyncio
    async def test_cancel_sales_order(self, service):
        _, widget_id = await seed_widget(service)
        order = (
            await service.create_sales_order(ORG, "Globex", [(widget_id, 1, 10)])
        ).raise_for_error()
        order_id = order.created["sales_order"]

        (await service.cancel_sales_order(ORG, order_id)).raise_for_error()

        cancelled = await service.get(ORG, "sales_orders", order_id)
        assert cancelled["status"] == "cancelled"
        assert cancelled["cancelledAt"] == START.isoformat()
        delivered = await service.deliver_order(ORG, order_id)
        assert isinstance(delivered.error, InvalidStateError)
        again = await service.cancel_sales_order(ORG, order_id)
        assert isinstance(again.error, InvalidStateError)

    @pytest.mark.asyncio
    async def test_catalogue_validation(self, service):
        blank = await service.create_material(ORG, "  ", "kg")
        assert isinstance(blank.error, ValidationError)

        missing_material = await service.create_product(ORG, "Gadget", bom=[("ghost", 1)])
        assert isinstance(missing_material.error, NotFoundError)

        no_items = await service.create_sales_order(ORG, "Globex", [])
        assert isinstance(no_items.error, ValidationError)

        with pytest.raises(ValidationError):
            await service.create_material("  ", "Steel", "kg")

    @pytest.mark.asyncio
    async def test_add_bom_line(self, service):
        steel_id, widget_id = await seed_widget(service)
        glue = (await service.create_material(ORG, "Glue", "ml")).raise_for_error()
        glue_id = glue.created["material"]

        result = await service.add_bom_line(ORG, widget_id, glue_id, 0.5)

        assert result.success
        product = await service.get(ORG, "products", widget_id)
        assert product["bom"] == [
            {"materialId": steel_id, "materialName": "Steel", "quantity": 2.0},
            {"materialId": glue_id, "materialName": "Glue", "quantity": 0.5},
        ]

        shortage = await service.production_run(ORG, widget_id, 1)
        assert isinstance(shortage.error, InsufficientStockError)
        assert shortage.error.details["id"] == glue_id

    @pytest.mark.asyncio
    async def test_record_expense(self, service):
        result = await service.record_expense(ORG, "March rent", 1200, category="Rent")

        expense = await service.get(ORG, "expenses", result.created["expense"])
        assert expense["amount"] == 1200
        assert expense["category"] == "Rent"
        assert expense["date"] == "2025-03-01"

        cashflow = await service.get(ORG, "cashflow_entries", result.created["cashflow"])
        assert cashflow["type"] == "outflow"
        assert cashflow["category"] == "expense"
        assert cashflow["description"] == "March rent"

        negative = await service.record_expense(ORG, "Refund?", -5)
        assert isinstance(negative.error, ValidationError)

    @pytest.mark.asyncio
    async def test_audit_trail_reconciles(self, service):
        steel_id, widget_id = await seed_widget(service)
        (await service.production_run(ORG, widget_id, 10)).raise_for_error()
        order = (
            await service.create_sales_order(ORG, "Globex", [(widget_id, 4, 200)])
        ).raise_for_error()
        (await service.deliver_order(ORG, order.created["sales_order"])).raise_for_error()
        (await service.manual_adjustment(ORG, steel_id, -5, "Scrap", item_kind="material")).raise_for_error()
        await service.production_run(ORG, widget_id, 1000)

        report = await service.reconcile(ORG)

        assert report.balanced
        assert report.checked == 2

    @pytest.mark.asyncio
    async def test_reports(self, service, clock):
        _, widget_id = await seed_widget(service)
        (await service.production_run(ORG, widget_id, 10)).raise_for_error()
        order = (
            await service.create_sales_order(ORG, "Globex", [(widget_id, 5, 200)])
        ).raise_for_error()
        (await service.deliver_order(ORG, order.created["sales_order"])).raise_for_error()
        (await service.record_expense(ORG, "Rent", 100, category="Rent")).raise_for_error()

        summary = await service.financial_summary(ORG)
        assert summary.revenue == 1000
        assert summary.cogs == pytest.approx(533.333, abs=1e-3)
        assert summary.net_profit == pytest.approx(1000 - 533.333 - 100, abs=1e-3)
        assert summary.receivables_value == 1000

        months = await service.monthly_breakdown(ORG)
        assert [m.month for m in months] == ["2025-03"]

        assert await service.expenses_by_category(ORG) == {"Rent": 100}

        clock.advance(days=45)
        aging = await service.receivable_aging(ORG)
        assert aging.overdue == 1000
        assert aging.buckets["1-30 Days"] == 1000

        low = await service.low_stock_materials(ORG)
        assert [m["name"] for m in low] == ["Steel"]


class TestNonFiniteInputs:
    """Infinite and NaN amounts are rejected before anything is written."""

    @pytest.fixture
    def service(self):
        return make_service(InMemoryLedgerStore())

    @pytest.mark.asyncio
    @pytest.mark.parametrize(
        "quantity,total_cost",
        [(float("inf"), 100), (float("nan"), 100), (10, float("inf")), (10, float("nan"))],
    )
    async def test_purchase(self, service, quantity, total_cost):
        steel = (await service.create_material(ORG, "Steel", "kg")).raise_for_error()
        steel_id = steel.created["material"]

        result = await service.purchase(ORG, steel_id, quantity, total_cost)

        assert isinstance(result.error, ValidationError)
        material = await service.get(ORG, "raw_materials", steel_id)
        assert material["quantity"] == 0
        assert material["averageCost"] == 0
        assert await service.list(ORG, "raw_material_logs") == []

    @pytest.mark.asyncio
    @pytest.mark.parametrize("delta", [float("inf"), float("-inf"), float("nan")])
    async def test_manual_adjustment(self, service, delta):
        steel_id, _ = await seed_widget(service)

        result = await service.manual_adjustment(ORG, steel_id, delta, "Recount", "material")

        assert isinstance(result.error, ValidationError)
        assert (await service.get(ORG, "raw_materials", steel_id))["quantity"] == 150

    @pytest.mark.asyncio
    async def test_other_amounts(self, service):
        steel_id, widget_id = await seed_widget(service)
        (await service.production_run(ORG, widget_id, 1)).raise_for_error()
        order = (
            await service.create_sales_order(ORG, "Globex", [(widget_id, 1, 100)])
        ).raise_for_error()
        delivery = (await service.deliver_order(ORG, order.created["sales_order"])).raise_for_error()

        production = await service.production_run(ORG, widget_id, float("nan"))
        collection = await service.record_collection(
            ORG, delivery.created["receivable"], float("nan")
        )
        priced = await service.create_sales_order(ORG, "Globex", [(widget_id, 1, float("inf"))])
        expense = await service.record_expense(ORG, "Rent", float("inf"))
        bom = await service.add_bom_line(ORG, widget_id, steel_id, float("nan"))

        for result in (production, collection, priced, expense, bom):
            assert isinstance(result.error, ValidationError)
        assert (await service.get(ORG, "inventory_items", widget_id))["quantity"] == 0
        assert await service.list(ORG, "collections") == []
        assert await service.list(ORG, "expenses") == []


class TestServiceReads:
    """Read path and tenant isolation."""

    @pytest.fixture
    def service(self):
        return make_service(InMemoryLedgerStore())

    @pytest.mark.asyncio
    async def test_tenant_isolation(self, service):
        steel_id, _ = await seed_widget(service, org="org_a")

        assert await service.list("org_b", "raw_materials") == []
        with pytest.raises(NotFoundError):
            await service.get("org_b", "raw_materials", steel_id)

        cross = await service.purchase("org_b", steel_id, 1, 1)
        assert isinstance(cross.error, NotFoundError)
        assert (await service.get("org_a", "raw_materials", steel_id))["quantity"] == 150

    @pytest.mark.asyncio
    async def test_unknown_collection(self, service):
        with pytest.raises(ValidationError):
            await service.list(ORG, "users")

    @pytest.mark.asyncio
    async def test_reads_do_not_create_tenant(self, service):
        await service.list("org_new", "expenses")
        report = await service.reconcile("org_new")

        assert report.balanced
        assert not await service.store.tenant_exists("org_new")


class TestSqliteLedgerFlow:
    """The same flow against per-tenant SQLite files."""

    @pytest.fixture
    def data_dir(self):
        """Create temporary data directory."""
        with tempfile.TemporaryDirectory() as tmpdir:
            yield tmpdir

    @pytest.mark.asyncio
    async def test_full_flow(self, data_dir):
        store = SqliteLedgerStore(data_dir)
        service = make_service(store)
        steel_id, widget_id = await seed_widget(service)
        (await service.production_run(ORG, widget_id, 10)).raise_for_error()
        order = (
            await service.create_sales_order(ORG, "Globex", [(widget_id, 5, 100)])
        ).raise_for_error()
        delivery = (await service.deliver_order(ORG, order.created["sales_order"])).raise_for_error()
        (await service.record_collection(ORG, delivery.created["receivable"], 500)).raise_for_error()

        shortage = await service.production_run(ORG, widget_id, 1000)
        assert isinstance(shortage.error, InsufficientStockError)

        assert (await service.get(ORG, "raw_materials", steel_id))["quantity"] == 130
        assert (await service.get(ORG, "inventory_items", widget_id))["quantity"] == 5
        receivable = await service.get(ORG, "receivables", delivery.created["receivable"])
        assert receivable["status"] == "paid"
        assert (await service.reconcile(ORG)).balanced

        # A fresh store over the same directory sees the committed state
        reopened = make_service(SqliteLedgerStore(data_dir))
        assert (await reopened.get(ORG, "inventory_items", widget_id))["quantity"] == 5

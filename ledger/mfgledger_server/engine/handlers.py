"""
Operation handlers for MfgLedger.

Each handler is a LedgerOperation: read() declares the documents it
needs, validate_and_compute() checks business rules against that
snapshot and returns a WritePlan. Handlers never talk to the store and
never retry; the TransactionCoordinator does both.

Stock operations:
    - Purchase: raw material in, re-averaged cost, cash out
    - ProductionRun: BOM materials out, finished goods in at consumed cost
    - SalesDelivery: finished goods out at average cost, receivable created
    - RecordCollection: payment against a receivable, cash in
    - ManualAdjustment: signed correction to a material or finished good

Catalogue operations:
    - CreateMaterial, CreateProduct, AddBomLine
    - CreateSalesOrder, CancelSalesOrder
    - RecordExpense

Invariants:
    - All inputs are validated before the plan is built; a failed
      validation produces no writes
    - Every quantity change in a plan is paired with one audit log
    - `now` is fixed when the handler is built so retries reuse it

How to change safely:
    - Keep validate_and_compute() free of I/O
    - Read every document a plan updates; the store rejects blind updates
"""

from __future__ import annotations

import logging
import math
from collections import OrderedDict
from dataclasses import dataclass, field
from datetime import datetime, timedelta
from typing import Any, Iterable

from ..errors import (
    InsufficientStockError,
    IntegrityError,
    InvalidStateError,
    OverpaymentError,
    ValidationError,
)
from ..models import (
    CASHFLOW_ENTRIES,
    COLLECTIONS,
    EXPENSES,
    FINISHED_GOODS_UNIT,
    INVENTORY_ITEMS,
    INVENTORY_LOGS,
    MONEY_EPSILON,
    PRODUCTION_ORDERS,
    PRODUCTS,
    RAW_MATERIAL_LOGS,
    RAW_MATERIALS,
    RECEIVABLE_TERM_DAYS,
    RECEIVABLES,
    SALES_ORDERS,
    BomLine,
    InventoryItem,
    ItemKind,
    OrderLine,
    OrderStatus,
    Product,
    RawMaterial,
    Receivable,
    ReceivableStatus,
    SalesOrder,
)
from .audit import AuditLogger, LogType
from .coordinator import LedgerOperation, SnapshotReader, WritePlan
from .costing import extended_cost, unit_cost, weighted_average

logger = logging.getLogger(__name__)


def _require_finite(value: float, field_name: str) -> None:
    if value is None or not math.isfinite(value):
        raise ValidationError(f"{field_name} must be a finite number", field_name=field_name)


def _require_positive(value: float, field_name: str) -> None:
    _require_finite(value, field_name)
    if value <= 0:
        raise ValidationError(f"{field_name} must be greater than zero", field_name=field_name)


def _require_non_negative(value: float, field_name: str) -> None:
    _require_finite(value, field_name)
    if value < 0:
        raise ValidationError(f"{field_name} must not be negative", field_name=field_name)


def _require_text(value: str | None, field_name: str) -> str:
    if value is None or not value.strip():
        raise ValidationError(f"{field_name} is required", field_name=field_name)
    return value.strip()


class _Operation(LedgerOperation):
    """Shared construction for handlers: the captured time and audit logger."""

    def __init__(self, now: datetime, audit: AuditLogger | None = None) -> None:
        self.now = now
        self.audit = audit or AuditLogger()

    @property
    def timestamp(self) -> str:
        return self.now.isoformat()


# Purchase


@dataclass
class PurchaseOutcome:
    material_id: str
    quantity: float
    total_cost: float
    unit_cost: float
    new_quantity: float
    new_average_cost: float


class Purchase(_Operation):
    """Receive raw material at a total cost and re-average its unit cost."""

    name = "purchase"

    def __init__(
        self,
        material_id: str,
        quantity: float,
        total_cost: float,
        now: datetime,
        audit: AuditLogger | None = None,
    ) -> None:
        super().__init__(now, audit)
        self.material_id = material_id
        self.quantity = quantity
        self.total_cost = total_cost

    async def read(self, reader: SnapshotReader) -> RawMaterial:
        _require_positive(self.quantity, "quantity")
        _require_non_negative(self.total_cost, "totalCost")
        snapshot = await reader.get_required(RAW_MATERIALS, self.material_id, "Material")
        return RawMaterial.from_snapshot(snapshot)

    def validate_and_compute(self, material: RawMaterial) -> WritePlan:
        incoming_unit_cost = unit_cost(self.total_cost, self.quantity)
        new_quantity = material.quantity + self.quantity
        new_avg = weighted_average(
            material.quantity, material.average_cost, self.quantity, incoming_unit_cost
        )

        plan = WritePlan(self.name)
        plan.update(
            RAW_MATERIALS,
            material.id,
            {"quantity": new_quantity, "averageCost": new_avg, "lastUpdated": self.timestamp},
        )
        plan.insert(
            RAW_MATERIAL_LOGS,
            self.audit.material_log(
                material.id,
                material.name,
                LogType.PURCHASE,
                self.quantity,
                self.now,
                cost=self.total_cost,
                unitCost=incoming_unit_cost,
                newQuantity=new_quantity,
                newAvgCost=new_avg,
            ),
            as_="log",
        )
        plan.insert(
            CASHFLOW_ENTRIES,
            self.audit.cashflow_entry(
                "outflow",
                "purchase",
                self.total_cost,
                f"Purchase of {material.name} ({self.quantity:g} {material.unit})",
                self.now,
            ),
            as_="cashflow",
        )
        plan.outcome = PurchaseOutcome(
            material_id=material.id,
            quantity=self.quantity,
            total_cost=self.total_cost,
            unit_cost=incoming_unit_cost,
            new_quantity=new_quantity,
            new_average_cost=new_avg,
        )
        return plan


# Production


@dataclass
class _ProductionSnapshot:
    product: Product
    materials: dict[str, RawMaterial]
    item: InventoryItem | None


@dataclass
class ProductionOutcome:
    product_id: str
    quantity: float
    total_cost: float
    unit_cost: float
    new_quantity: float
    new_average_cost: float
    consumed: dict[str, float] = field(default_factory=dict)


class ProductionRun(_Operation):
    """Consume BOM materials and add the finished batch to inventory."""

    name = "production_run"

    def __init__(
        self,
        product_id: str,
        quantity: float,
        now: datetime,
        audit: AuditLogger | None = None,
    ) -> None:
        super().__init__(now, audit)
        self.product_id = product_id
        self.quantity = quantity

    async def read(self, reader: SnapshotReader) -> _ProductionSnapshot:
        _require_positive(self.quantity, "quantity")
        product = Product.from_snapshot(
            await reader.get_required(PRODUCTS, self.product_id, "Product")
        )
        materials: dict[str, RawMaterial] = {}
        for line in product.bom:
            if line.material_id not in materials:
                snapshot = await reader.get_required(RAW_MATERIALS, line.material_id, "Material")
                materials[line.material_id] = RawMaterial.from_snapshot(snapshot)
        item_snapshot = await reader.get(INVENTORY_ITEMS, self.product_id)
        item = InventoryItem.from_snapshot(item_snapshot) if item_snapshot.exists else None
        return _ProductionSnapshot(product=product, materials=materials, item=item)

    def validate_and_compute(self, snapshot: _ProductionSnapshot) -> WritePlan:
        product = snapshot.product
        if not product.bom:
            raise ValidationError(
                f"Product {product.name} has no bill of materials", field_name="bom"
            )

        # Duplicate lines for one material are summed
        per_unit: OrderedDict[str, float] = OrderedDict()
        for line in product.bom:
            per_unit[line.material_id] = per_unit.get(line.material_id, 0.0) + line.quantity

        required = {mid: qty * self.quantity for mid, qty in per_unit.items()}
        for material_id, needed in required.items():
            material = snapshot.materials[material_id]
            if material.quantity < needed:
                raise InsufficientStockError(
                    RAW_MATERIALS, material.id, material.name, needed, material.quantity
                )

        plan = WritePlan(self.name)
        total_cost = 0.0
        for material_id, needed in required.items():
            material = snapshot.materials[material_id]
            cost = extended_cost(needed, material.average_cost)
            total_cost += cost
            plan.update(
                RAW_MATERIALS,
                material.id,
                {"quantity": material.quantity - needed, "lastUpdated": self.timestamp},
            )
            plan.insert(
                RAW_MATERIAL_LOGS,
                self.audit.material_log(
                    material.id,
                    material.name,
                    LogType.PRODUCTION_USE,
                    -needed,
                    self.now,
                    cost=cost,
                    productId=product.id,
                    productName=product.name,
                ),
            )

        batch_unit_cost = unit_cost(total_cost, self.quantity)
        current_qty = snapshot.item.quantity if snapshot.item else 0.0
        current_avg = snapshot.item.average_cost if snapshot.item else 0.0
        new_quantity = current_qty + self.quantity
        new_avg = weighted_average(current_qty, current_avg, self.quantity, batch_unit_cost)

        if snapshot.item is None:
            plan.set(
                INVENTORY_ITEMS,
                product.id,
                {
                    "productId": product.id,
                    "productName": product.name,
                    "quantity": new_quantity,
                    "averageCost": new_avg,
                    "unit": FINISHED_GOODS_UNIT,
                    "lastUpdated": self.timestamp,
                },
            )
        else:
            plan.update(
                INVENTORY_ITEMS,
                product.id,
                {"quantity": new_quantity, "averageCost": new_avg, "lastUpdated": self.timestamp},
            )

        plan.insert(
            INVENTORY_LOGS,
            self.audit.inventory_log(
                product.id,
                LogType.PRODUCTION,
                self.quantity,
                self.now,
                productName=product.name,
                cost=total_cost,
                unitCost=batch_unit_cost,
            ),
        )
        plan.insert(
            PRODUCTION_ORDERS,
            {
                "productId": product.id,
                "productName": product.name,
                "quantity": self.quantity,
                "totalCost": total_cost,
                "unitCost": batch_unit_cost,
                "status": "completed",
                "date": self.timestamp,
            },
            as_="production_order",
        )
        plan.outcome = ProductionOutcome(
            product_id=product.id,
            quantity=self.quantity,
            total_cost=total_cost,
            unit_cost=batch_unit_cost,
            new_quantity=new_quantity,
            new_average_cost=new_avg,
            consumed=required,
        )
        return plan


# Sales delivery


@dataclass
class _DeliverySnapshot:
    order: SalesOrder
    items: dict[str, InventoryItem | None]


@dataclass
class DeliveryOutcome:
    order_id: str
    total_amount: float
    total_cost: float
    due_date: str
    cost_by_product: dict[str, float] = field(default_factory=dict)


class SalesDelivery(_Operation):
    """Ship a pending order in full, book COGS and open a receivable."""

    name = "sales_delivery"

    def __init__(self, order_id: str, now: datetime, audit: AuditLogger | None = None) -> None:
        super().__init__(now, audit)
        self.order_id = order_id

    async def read(self, reader: SnapshotReader) -> _DeliverySnapshot:
        order = SalesOrder.from_snapshot(
            await reader.get_required(SALES_ORDERS, self.order_id, "Sales order")
        )
        items: dict[str, InventoryItem | None] = {}
        if order.status == OrderStatus.PENDING.value:
            for line in order.items:
                if line.product_id not in items:
                    snapshot = await reader.get(INVENTORY_ITEMS, line.product_id)
                    items[line.product_id] = (
                        InventoryItem.from_snapshot(snapshot) if snapshot.exists else None
                    )
        return _DeliverySnapshot(order=order, items=items)

    def validate_and_compute(self, snapshot: _DeliverySnapshot) -> WritePlan:
        order = snapshot.order
        if order.status != OrderStatus.PENDING.value:
            raise InvalidStateError(SALES_ORDERS, order.id, order.status, OrderStatus.PENDING.value)
        if not order.items:
            raise ValidationError("Sales order has no items", field_name="items")

        # Quantities for the same product across lines are summed
        demand: OrderedDict[str, float] = OrderedDict()
        names: dict[str, str] = {}
        for line in order.items:
            demand[line.product_id] = demand.get(line.product_id, 0.0) + line.quantity
            names.setdefault(line.product_id, line.product_name)

        for product_id, needed in demand.items():
            item = snapshot.items.get(product_id)
            available = item.quantity if item else 0.0
            if item is None or available < needed:
                raise InsufficientStockError(
                    INVENTORY_ITEMS, product_id, names[product_id], needed, available
                )

        plan = WritePlan(self.name)
        total_cost = 0.0
        cost_by_product: dict[str, float] = {}
        for product_id, needed in demand.items():
            item = snapshot.items[product_id]
            cogs = extended_cost(needed, item.average_cost)
            cost_by_product[product_id] = cogs
            total_cost += cogs
            plan.update(
                INVENTORY_ITEMS,
                product_id,
                {"quantity": item.quantity - needed, "lastUpdated": self.timestamp},
            )
            plan.insert(
                INVENTORY_LOGS,
                self.audit.inventory_log(
                    product_id,
                    LogType.SALE_DELIVERY,
                    -needed,
                    self.now,
                    productName=item.product_name,
                    cost=cogs,
                    relatedOrderId=order.id,
                ),
            )

        due_date = (self.now + timedelta(days=RECEIVABLE_TERM_DAYS)).isoformat()
        plan.insert(
            RECEIVABLES,
            {
                "orderId": order.id,
                "customerName": order.customer_name,
                "totalAmount": order.total_amount,
                "paidAmount": 0.0,
                "dueAmount": order.total_amount,
                "issueDate": self.timestamp,
                "dueDate": due_date,
                "status": ReceivableStatus.UNPAID.value,
            },
            as_="receivable",
        )
        plan.update(
            SALES_ORDERS,
            order.id,
            {
                "status": OrderStatus.DELIVERED.value,
                "totalCost": total_cost,
                "deliveredAt": self.timestamp,
            },
        )
        plan.outcome = DeliveryOutcome(
            order_id=order.id,
            total_amount=order.total_amount,
            total_cost=total_cost,
            due_date=due_date,
            cost_by_product=cost_by_product,
        )
        return plan


# Collection


@dataclass
class CollectionOutcome:
    receivable_id: str
    amount: float
    paid_amount: float
    due_amount: float
    status: str


class RecordCollection(_Operation):
    """Apply a customer payment to a receivable."""

    name = "collection"

    def __init__(
        self,
        receivable_id: str,
        amount: float,
        now: datetime,
        audit: AuditLogger | None = None,
    ) -> None:
        super().__init__(now, audit)
        self.receivable_id = receivable_id
        self.amount = amount

    async def read(self, reader: SnapshotReader) -> Receivable:
        _require_positive(self.amount, "amount")
        snapshot = await reader.get_required(RECEIVABLES, self.receivable_id, "Receivable")
        return Receivable.from_snapshot(snapshot)

    def validate_and_compute(self, receivable: Receivable) -> WritePlan:
        if receivable.status == ReceivableStatus.PAID.value:
            raise InvalidStateError(
                RECEIVABLES, receivable.id, receivable.status, "unpaid or partial"
            )
        if self.amount > receivable.due_amount:
            raise OverpaymentError(receivable.id, self.amount, receivable.due_amount)

        paid_amount = receivable.paid_amount + self.amount
        due_amount = max(0.0, receivable.total_amount - paid_amount)
        status = (
            ReceivableStatus.PAID if due_amount <= MONEY_EPSILON else ReceivableStatus.PARTIAL
        )

        plan = WritePlan(self.name)
        plan.update(
            RECEIVABLES,
            receivable.id,
            {
                "paidAmount": paid_amount,
                "dueAmount": due_amount,
                "status": status.value,
                "lastPaymentDate": self.timestamp,
            },
        )
        plan.insert(
            COLLECTIONS,
            self.audit.collection_record(
                receivable.id,
                receivable.order_id,
                receivable.customer_name,
                self.amount,
                self.now,
            ),
            as_="collection",
        )
        plan.insert(
            CASHFLOW_ENTRIES,
            self.audit.cashflow_entry(
                "inflow",
                "collection",
                self.amount,
                f"Collection from {receivable.customer_name} for Order {receivable.order_id}",
                self.now,
            ),
            as_="cashflow",
        )
        plan.outcome = CollectionOutcome(
            receivable_id=receivable.id,
            amount=self.amount,
            paid_amount=paid_amount,
            due_amount=due_amount,
            status=status.value,
        )
        return plan


# Manual adjustment


@dataclass
class AdjustmentOutcome:
    item_id: str
    item_kind: str
    previous_quantity: float
    new_quantity: float


class ManualAdjustment(_Operation):
    """Signed stock correction with a mandatory reason."""

    name = "manual_adjustment"

    def __init__(
        self,
        item_id: str,
        delta: float,
        reason: str,
        now: datetime,
        item_kind: ItemKind | str = ItemKind.INVENTORY,
        audit: AuditLogger | None = None,
    ) -> None:
        super().__init__(now, audit)
        self.item_id = item_id
        self.delta = delta
        self.reason = reason
        self.item_kind = item_kind

    async def read(self, reader: SnapshotReader) -> tuple[ItemKind, Any]:
        try:
            kind = ItemKind(self.item_kind)
        except ValueError:
            raise ValidationError(
                f"Unknown item kind '{self.item_kind}'", field_name="itemKind"
            ) from None
        _require_text(self.reason, "reason")
        _require_finite(self.delta, "quantity")
        if not self.delta:
            raise ValidationError("Adjustment must not be zero", field_name="quantity")

        snapshot = await reader.get_required(
            kind.collection,
            self.item_id,
            "Inventory item" if kind is ItemKind.INVENTORY else "Material",
        )
        if kind is ItemKind.INVENTORY:
            return kind, InventoryItem.from_snapshot(snapshot)
        return kind, RawMaterial.from_snapshot(snapshot)

    def validate_and_compute(self, snapshot: tuple[ItemKind, Any]) -> WritePlan:
        kind, item = snapshot
        reason = self.reason.strip()
        new_quantity = item.quantity + self.delta
        if new_quantity < 0:
            raise IntegrityError(
                f"Adjustment would leave {item.id} at {new_quantity:g}",
                details={
                    "collection": kind.collection,
                    "id": item.id,
                    "required": -self.delta,
                    "available": item.quantity,
                },
            )

        log_type = LogType.MANUAL_ADD if self.delta > 0 else LogType.MANUAL_DEDUCT
        plan = WritePlan(self.name)
        plan.update(
            kind.collection,
            item.id,
            {"quantity": new_quantity, "lastUpdated": self.timestamp},
        )
        if kind is ItemKind.INVENTORY:
            log = self.audit.inventory_log(
                item.id,
                log_type,
                self.delta,
                self.now,
                productName=item.product_name,
                reason=reason,
            )
            plan.insert(INVENTORY_LOGS, log, as_="log")
        else:
            log = self.audit.material_log(
                item.id, item.name, log_type, self.delta, self.now, reason=reason
            )
            plan.insert(RAW_MATERIAL_LOGS, log, as_="log")

        plan.outcome = AdjustmentOutcome(
            item_id=item.id,
            item_kind=kind.value,
            previous_quantity=item.quantity,
            new_quantity=new_quantity,
        )
        return plan


# Catalogue


class CreateMaterial(_Operation):
    """Register a raw material with zero stock."""

    name = "create_material"

    def __init__(
        self,
        material_name: str,
        unit: str,
        now: datetime,
        min_stock: float = 0.0,
        audit: AuditLogger | None = None,
    ) -> None:
        super().__init__(now, audit)
        self.material_name = material_name
        self.unit = unit
        self.min_stock = min_stock

    async def read(self, reader: SnapshotReader) -> None:
        return None

    def validate_and_compute(self, snapshot: None) -> WritePlan:
        name = _require_text(self.material_name, "name")
        unit = _require_text(self.unit, "unit")
        _require_non_negative(self.min_stock, "minStock")

        plan = WritePlan(self.name)
        plan.insert(
            RAW_MATERIALS,
            {
                "name": name,
                "unit": unit,
                "minStock": self.min_stock,
                "quantity": 0.0,
                "averageCost": 0.0,
                "lastUpdated": self.timestamp,
            },
            as_="material",
        )
        return plan


class CreateProduct(_Operation):
    """Register a product with an optional initial bill of materials.

    `bom` is an iterable of (material_id, quantity_per_unit) pairs.
    """

    name = "create_product"

    def __init__(
        self,
        product_name: str,
        now: datetime,
        description: str = "",
        bom: Iterable[tuple[str, float]] = (),
        audit: AuditLogger | None = None,
    ) -> None:
        super().__init__(now, audit)
        self.product_name = product_name
        self.description = description
        self.bom = list(bom)

    async def read(self, reader: SnapshotReader) -> dict[str, RawMaterial]:
        _require_text(self.product_name, "name")
        materials: dict[str, RawMaterial] = {}
        for material_id, quantity in self.bom:
            _require_positive(quantity, "quantity")
            if material_id not in materials:
                snapshot = await reader.get_required(RAW_MATERIALS, material_id, "Material")
                materials[material_id] = RawMaterial.from_snapshot(snapshot)
        return materials

    def validate_and_compute(self, materials: dict[str, RawMaterial]) -> WritePlan:
        lines = [
            BomLine(material_id, materials[material_id].name, float(quantity)).to_dict()
            for material_id, quantity in self.bom
        ]
        plan = WritePlan(self.name)
        plan.insert(
            PRODUCTS,
            {
                "name": self.product_name.strip(),
                "description": self.description or "",
                "bom": lines,
            },
            as_="product",
        )
        return plan


class AddBomLine(_Operation):
    name = "add_bom_line"

    def __init__(
        self,
        product_id: str,
        material_id: str,
        quantity_per_unit: float,
        now: datetime,
        audit: AuditLogger | None = None,
    ) -> None:
        super().__init__(now, audit)
        self.product_id = product_id
        self.material_id = material_id
        self.quantity_per_unit = quantity_per_unit

    async def read(self, reader: SnapshotReader) -> tuple[Product, RawMaterial]:
        _require_positive(self.quantity_per_unit, "quantity")
        product = Product.from_snapshot(
            await reader.get_required(PRODUCTS, self.product_id, "Product")
        )
        material = RawMaterial.from_snapshot(
            await reader.get_required(RAW_MATERIALS, self.material_id, "Material")
        )
        return product, material

    def validate_and_compute(self, snapshot: tuple[Product, RawMaterial]) -> WritePlan:
        product, material = snapshot
        line = BomLine(material.id, material.name, float(self.quantity_per_unit))
        bom = [existing.to_dict() for existing in product.bom] + [line.to_dict()]
        plan = WritePlan(self.name)
        plan.update(PRODUCTS, product.id, {"bom": bom})
        plan.outcome = bom
        return plan


class CreateSalesOrder(_Operation):
    """Open a pending order.

    `items` is an iterable of (product_id, quantity, unit_price) triples.
    """

    name = "create_sales_order"

    def __init__(
        self,
        customer_name: str,
        items: Iterable[tuple[str, float, float]],
        now: datetime,
        audit: AuditLogger | None = None,
    ) -> None:
        super().__init__(now, audit)
        self.customer_name = customer_name
        self.items = list(items)

    async def read(self, reader: SnapshotReader) -> dict[str, Product]:
        _require_text(self.customer_name, "customerName")
        if not self.items:
            raise ValidationError("Order must have at least one item", field_name="items")
        products: dict[str, Product] = {}
        for product_id, quantity, unit_price in self.items:
            _require_positive(quantity, "quantity")
            _require_non_negative(unit_price, "unitPrice")
            if product_id not in products:
                snapshot = await reader.get_required(PRODUCTS, product_id, "Product")
                products[product_id] = Product.from_snapshot(snapshot)
        return products

    def validate_and_compute(self, products: dict[str, Product]) -> WritePlan:
        lines = [
            OrderLine(product_id, products[product_id].name, float(quantity), float(unit_price))
            for product_id, quantity, unit_price in self.items
        ]
        total_amount = sum(line.quantity * line.unit_price for line in lines)
        plan = WritePlan(self.name)
        plan.insert(
            SALES_ORDERS,
            {
                "customerName": self.customer_name.strip(),
                "items": [line.to_dict() for line in lines],
                "totalAmount": total_amount,
                "status": OrderStatus.PENDING.value,
                "date": self.timestamp,
            },
            as_="sales_order",
        )
        plan.outcome = total_amount
        return plan


class CancelSalesOrder(_Operation):
    name = "cancel_sales_order"

    def __init__(self, order_id: str, now: datetime, audit: AuditLogger | None = None) -> None:
        super().__init__(now, audit)
        self.order_id = order_id

    async def read(self, reader: SnapshotReader) -> SalesOrder:
        snapshot = await reader.get_required(SALES_ORDERS, self.order_id, "Sales order")
        return SalesOrder.from_snapshot(snapshot)

    def validate_and_compute(self, order: SalesOrder) -> WritePlan:
        if order.status != OrderStatus.PENDING.value:
            raise InvalidStateError(SALES_ORDERS, order.id, order.status, OrderStatus.PENDING.value)
        plan = WritePlan(self.name)
        plan.update(
            SALES_ORDERS,
            order.id,
            {"status": OrderStatus.CANCELLED.value, "cancelledAt": self.timestamp},
        )
        return plan


class RecordExpense(_Operation):
    """Book an operating expense and its cash outflow together."""

    name = "record_expense"

    def __init__(
        self,
        description: str,
        amount: float,
        now: datetime,
        category: str = "General",
        date: str | None = None,
        audit: AuditLogger | None = None,
    ) -> None:
        super().__init__(now, audit)
        self.description = description
        self.amount = amount
        self.category = category
        self.date = date

    async def read(self, reader: SnapshotReader) -> None:
        return None

    def validate_and_compute(self, snapshot: None) -> WritePlan:
        description = _require_text(self.description, "description")
        _require_positive(self.amount, "amount")
        category = (self.category or "").strip() or "General"
        date = self.date or self.now.date().isoformat()

        plan = WritePlan(self.name)
        plan.insert(
            EXPENSES,
            {
                "description": description,
                "amount": self.amount,
                "category": category,
                "date": date,
            },
            as_="expense",
        )
        plan.insert(
            CASHFLOW_ENTRIES,
            self.audit.cashflow_entry("outflow", "expense", self.amount, description, self.now),
            as_="cashflow",
        )
        return plan

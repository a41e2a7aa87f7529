"""
Unit tests for the audit logger.

Tests cover:
- Log document construction
- Plan verification (exactly one matching log per stock mutation)
- Reconciliation of stored logs against quantities
"""

from datetime import datetime, timezone

import pytest

from ledger.mfgledger_server.engine.audit import AuditLogger, LogType
from ledger.mfgledger_server.engine.coordinator import WritePlan
from ledger.mfgledger_server.errors import IntegrityError
from ledger.mfgledger_server.store.base import DocumentSnapshot
from ledger.mfgledger_server.store.memory import InMemoryLedgerStore

NOW = datetime(2025, 3, 1, 12, 0, tzinfo=timezone.utc)


def _reads(quantity):
    snapshot = DocumentSnapshot(
        collection="raw_materials",
        doc_id="steel",
        exists=True,
        data={"name": "Steel", "quantity": quantity},
        version=1,
    )
    return {("raw_materials", "steel"): snapshot}


class TestAuditLogger:
    """Tests for AuditLogger.verify() and builders."""

    @pytest.fixture
    def audit(self):
        return AuditLogger()

    def test_material_log_fields(self, audit):
        log = audit.material_log("steel", "Steel", LogType.PURCHASE, 5, NOW, cost=100)

        assert log == {
            "materialId": "steel",
            "materialName": "Steel",
            "type": "purchase",
            "quantityChange": 5,
            "date": NOW.isoformat(),
            "cost": 100,
        }

    def test_verify_accepts_paired_log(self, audit):
        plan = WritePlan("t")
        plan.update("raw_materials", "steel", {"quantity": 15})
        plan.insert(
            "raw_material_logs", audit.material_log("steel", "Steel", LogType.MANUAL_ADD, 5, NOW)
        )

        audit.verify(plan, _reads(10))

    def test_verify_rejects_missing_log(self, audit):
        plan = WritePlan("t")
        plan.update("raw_materials", "steel", {"quantity": 15})

        with pytest.raises(IntegrityError):
            audit.verify(plan, _reads(10))

    def test_verify_rejects_duplicate_log(self, audit):
        plan = WritePlan("t")
        plan.update("raw_materials", "steel", {"quantity": 15})
        for _ in range(2):
            plan.insert(
                "raw_material_logs",
                audit.material_log("steel", "Steel", LogType.MANUAL_ADD, 2.5, NOW),
            )

        with pytest.raises(IntegrityError):
            audit.verify(plan, _reads(10))

    def test_verify_rejects_wrong_quantity_change(self, audit):
        plan = WritePlan("t")
        plan.update("raw_materials", "steel", {"quantity": 15})
        plan.insert(
            "raw_material_logs", audit.material_log("steel", "Steel", LogType.MANUAL_ADD, 4, NOW)
        )

        with pytest.raises(IntegrityError):
            audit.verify(plan, _reads(10))

    def test_verify_rejects_orphan_log(self, audit):
        plan = WritePlan("t")
        plan.insert(
            "inventory_logs", audit.inventory_log("widget", LogType.MANUAL_ADD, 1, NOW)
        )

        with pytest.raises(IntegrityError):
            audit.verify(plan, {})

    def test_verify_ignores_cost_only_updates(self, audit):
        plan = WritePlan("t")
        plan.update("raw_materials", "steel", {"quantity": 10, "averageCost": 3})

        audit.verify(plan, _reads(10))

    def test_verify_rejects_non_empty_new_stock_document(self, audit):
        plan = WritePlan("t")
        plan.insert("raw_materials", {"name": "Glue", "quantity": 3})

        with pytest.raises(IntegrityError):
            audit.verify(plan, {})


class TestReconcile:
    """Tests for AuditLogger.reconcile()."""

    @pytest.mark.asyncio
    async def test_balanced_and_unbalanced(self):
        store = InMemoryLedgerStore()
        await store.initialize_tenant("org_1")
        tx = store.transaction("org_1")
        tx.set("raw_materials", "steel", {"name": "Steel", "quantity": 7})
        tx.set("inventory_items", "widget", {"productName": "Widget", "quantity": 4})
        tx.insert("raw_material_logs", {"materialId": "steel", "quantityChange": 10})
        tx.insert("raw_material_logs", {"materialId": "steel", "quantityChange": -3})
        tx.insert("inventory_logs", {"itemId": "widget", "quantityChange": 5})
        await tx.commit()

        report = await AuditLogger().reconcile(store, "org_1")

        assert report.checked == 2
        assert not report.balanced
        assert len(report.mismatches) == 1
        mismatch = report.mismatches[0]
        assert mismatch.item_id == "widget"
        assert mismatch.name == "Widget"
        assert mismatch.logged_total == 5
        assert mismatch.difference == -1

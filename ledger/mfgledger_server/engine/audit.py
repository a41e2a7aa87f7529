"""
Audit logging for MfgLedger.

Every change to a stock quantity is paired with exactly one immutable log
document written in the same atomic unit. This module builds those log
documents (plus collection records and cashflow entries), verifies that a
write plan carries the pairing, and reconciles stored logs against
current quantities.

Invariants:
    - One log per mutated stock document per operation
    - The log's quantityChange equals the staged quantity delta
    - Sum of an item's logged quantityChange equals its current quantity

How to change safely:
    - Log documents are append-only; add fields, never rename them
    - Reconciliation reads whole collections; keep it off hot paths
"""

from __future__ import annotations

import logging
from collections import defaultdict
from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import TYPE_CHECKING, Any

from ..errors import IntegrityError
from ..models import RAW_MATERIALS, STOCK_COLLECTIONS
from ..store.base import WriteKind

if TYPE_CHECKING:
    from ..store.base import DocKey, DocumentSnapshot, LedgerStore
    from .coordinator import WritePlan

logger = logging.getLogger(__name__)

# Float tolerance when comparing logged and stored quantities
QUANTITY_TOLERANCE = 1e-6


class LogType(str, Enum):
    PURCHASE = "purchase"
    PRODUCTION_USE = "production_use"
    PRODUCTION = "production"
    SALE_DELIVERY = "sale_delivery"
    MANUAL_ADD = "manual_add"
    MANUAL_DEDUCT = "manual_deduct"


@dataclass
class ReconciliationMismatch:
    collection: str
    item_id: str
    name: str
    quantity: float
    logged_total: float

    @property
    def difference(self) -> float:
        return self.quantity - self.logged_total


@dataclass
class ReconciliationReport:
    """Logged quantity changes compared with current quantities.

    Attributes:
        tenant_id: Organization reconciled
        checked: Number of stock documents compared
        mismatches: Items whose logs do not sum to their quantity
    """

    tenant_id: str
    checked: int = 0
    mismatches: list[ReconciliationMismatch] = field(default_factory=list)

    @property
    def balanced(self) -> bool:
        return not self.mismatches


class AuditLogger:
    """Builds and checks the audit trail for ledger operations."""

    def material_log(
        self,
        material_id: str,
        material_name: str,
        log_type: LogType,
        quantity_change: float,
        now: datetime,
        **fields: Any,
    ) -> dict[str, Any]:
        """Raw material log document; extra fields (cost, reason...) pass through."""
        return {
            "materialId": material_id,
            "materialName": material_name,
            "type": log_type.value,
            "quantityChange": quantity_change,
            "date": now.isoformat(),
            **fields,
        }

    def inventory_log(
        self,
        item_id: str,
        log_type: LogType,
        quantity_change: float,
        now: datetime,
        **fields: Any,
    ) -> dict[str, Any]:
        """Finished-goods log document; extra fields pass through."""
        return {
            "itemId": item_id,
            "type": log_type.value,
            "quantityChange": quantity_change,
            "date": now.isoformat(),
            **fields,
        }

    def collection_record(
        self,
        receivable_id: str,
        order_id: str,
        customer_name: str,
        amount: float,
        now: datetime,
    ) -> dict[str, Any]:
        return {
            "receivableId": receivable_id,
            "orderId": order_id,
            "customerName": customer_name,
            "amount": amount,
            "date": now.isoformat(),
        }

    def cashflow_entry(
        self,
        flow: str,
        category: str,
        amount: float,
        description: str,
        now: datetime,
    ) -> dict[str, Any]:
        """Cashflow document. `flow` is inflow or outflow."""
        return {
            "type": flow,
            "category": category,
            "amount": amount,
            "description": description,
            "date": now.isoformat(),
        }

    def verify(self, plan: WritePlan, reads: dict[DocKey, DocumentSnapshot]) -> None:
        """Check that every stock mutation in a plan has exactly one matching log.

        Args:
            plan: The write plan about to be staged
            reads: Snapshots the transaction read, used as the pre-write state

        Raises:
            IntegrityError: If a mutation is unlogged, logged twice, logged
                with the wrong quantityChange, or a log has no mutation
        """
        for stock_collection, (log_collection, id_field) in STOCK_COLLECTIONS.items():
            deltas: dict[str, float] = {}
            for write in plan.writes:
                if write.collection != stock_collection or "quantity" not in write.data:
                    continue
                if write.kind == WriteKind.INSERT:
                    # New documents must start empty; their ID is not known yet
                    if write.data["quantity"] != 0:
                        raise IntegrityError(
                            f"New {stock_collection} document must start at quantity 0",
                            details={"collection": stock_collection},
                        )
                    continue
                before = reads.get((stock_collection, write.doc_id))
                previous = float(before.data.get("quantity", 0.0)) if before and before.exists else 0.0
                delta = float(write.data["quantity"]) - previous
                if abs(delta) > QUANTITY_TOLERANCE:
                    deltas[write.doc_id] = delta

            logged: dict[str, list[float]] = defaultdict(list)
            for log in plan.inserts(log_collection):
                logged[log[id_field]].append(float(log["quantityChange"]))

            for doc_id, delta in deltas.items():
                entries = logged.pop(doc_id, [])
                if len(entries) != 1:
                    raise IntegrityError(
                        f"{stock_collection}/{doc_id} changed by {delta:g} with {len(entries)} audit logs",
                        details={"collection": stock_collection, "id": doc_id, "logs": len(entries)},
                    )
                if abs(entries[0] - delta) > QUANTITY_TOLERANCE:
                    raise IntegrityError(
                        f"Audit log for {stock_collection}/{doc_id} records {entries[0]:g}, "
                        f"quantity changed by {delta:g}",
                        details={
                            "collection": stock_collection,
                            "id": doc_id,
                            "logged": entries[0],
                            "delta": delta,
                        },
                    )

            if logged:
                orphan = next(iter(logged))
                raise IntegrityError(
                    f"Audit log for {stock_collection}/{orphan} has no matching quantity change",
                    details={"collection": stock_collection, "id": orphan},
                )

    async def reconcile(self, store: LedgerStore, tenant_id: str) -> ReconciliationReport:
        """Compare summed log changes with current quantities for every stock item.

        Args:
            store: Ledger store to read from
            tenant_id: Organization to reconcile

        Returns:
            ReconciliationReport listing every out-of-balance item
        """
        report = ReconciliationReport(tenant_id=tenant_id)

        for stock_collection, (log_collection, id_field) in STOCK_COLLECTIONS.items():
            totals: dict[str, float] = defaultdict(float)
            for log in await store.query(tenant_id, log_collection):
                totals[log.data.get(id_field, "")] += float(log.data.get("quantityChange", 0.0))

            for item in await store.query(tenant_id, stock_collection):
                report.checked += 1
                quantity = float(item.data.get("quantity", 0.0))
                logged_total = totals.get(item.doc_id, 0.0)
                if abs(quantity - logged_total) > QUANTITY_TOLERANCE:
                    name_field = "name" if stock_collection == RAW_MATERIALS else "productName"
                    report.mismatches.append(
                        ReconciliationMismatch(
                            collection=stock_collection,
                            item_id=item.doc_id,
                            name=item.data.get(name_field, item.doc_id),
                            quantity=quantity,
                            logged_total=logged_total,
                        )
                    )

        if report.balanced:
            logger.info(
                "Ledger reconciled",
                extra={"tenant_id": tenant_id, "checked": report.checked},
            )
        else:
            logger.warning(
                "Ledger out of balance",
                extra={
                    "tenant_id": tenant_id,
                    "checked": report.checked,
                    "mismatches": [f"{m.collection}/{m.item_id}" for m in report.mismatches],
                },
            )
        return report

"""
Ledger engine for MfgLedger - costing, coordination, handlers and audit.

This module handles:
- Weighted-average costing (pure functions)
- The read -> validate -> write transaction coordinator with bounded retry
- Operation handlers for every ledger mutation
- Audit log construction, plan verification and reconciliation

Invariants:
    - Handlers never access the store directly
    - Only the coordinator retries, and only on write conflicts
    - No committed plan leaves a negative quantity or cost

How to change safely:
    - Add new operations as LedgerOperation subclasses in handlers.py
    - Cover every new stock mutation with an audit log
"""

from .audit import AuditLogger, LogType, ReconciliationMismatch, ReconciliationReport
from .coordinator import (
    CoordinatorState,
    LedgerOperation,
    OperationResult,
    SnapshotReader,
    TransactionCoordinator,
    WritePlan,
)
from .costing import extended_cost, unit_cost, weighted_average
from .handlers import (
    AddBomLine,
    AdjustmentOutcome,
    CancelSalesOrder,
    CollectionOutcome,
    CreateMaterial,
    CreateProduct,
    CreateSalesOrder,
    DeliveryOutcome,
    ManualAdjustment,
    ProductionOutcome,
    ProductionRun,
    Purchase,
    PurchaseOutcome,
    RecordCollection,
    RecordExpense,
    SalesDelivery,
)

__all__ = [
    # Costing
    "weighted_average",
    "unit_cost",
    "extended_cost",
    # Coordination
    "TransactionCoordinator",
    "CoordinatorState",
    "LedgerOperation",
    "OperationResult",
    "SnapshotReader",
    "WritePlan",
    # Audit
    "AuditLogger",
    "LogType",
    "ReconciliationReport",
    "ReconciliationMismatch",
    # Handlers
    "Purchase",
    "ProductionRun",
    "SalesDelivery",
    "RecordCollection",
    "ManualAdjustment",
    "CreateMaterial",
    "CreateProduct",
    "AddBomLine",
    "CreateSalesOrder",
    "CancelSalesOrder",
    "RecordExpense",
    # Outcomes
    "PurchaseOutcome",
    "ProductionOutcome",
    "DeliveryOutcome",
    "CollectionOutcome",
    "AdjustmentOutcome",
]

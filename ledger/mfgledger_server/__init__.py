"""
MfgLedger Server - transactional inventory and cost-accounting engine.

This package implements the ledger for a multi-tenant manufacturing operation:
- Raw materials bought at weighted-average cost
- Production runs that consume materials through a bill of materials
- Finished goods delivered against sales orders (COGS captured at delivery)
- Receivables created on delivery and settled by collections
- An append-only audit trail for every quantity movement

Architecture:
    ┌─────────────┐     ┌──────────────┐     ┌──────────────────────┐
    │  HTTP API   │────▶│ LedgerService│────▶│ Operation handlers   │
    │  (FastAPI)  │     │ (per tenant) │     │ + Audit logger       │
    └─────────────┘     └──────────────┘     └──────────┬───────────┘
                                                        │
                                                        ▼
                                          ┌──────────────────────────┐
                                          │  TransactionCoordinator  │
                                          │  read → validate → write │
                                          └────────────┬─────────────┘
                                                       │
                                                       ▼
                                          ┌──────────────────────────┐
                                          │ Ledger store (optimistic)│
                                          │ SQLite per tenant/memory │
                                          └──────────────────────────┘

Invariants:
    - Stock quantities and average costs are never negative
    - Every stock mutation commits together with exactly one audit log
    - All reads of an operation happen before any of its writes
    - Every operation is scoped to one organization (tenant)

How to change safely:
    - New operations must go through the TransactionCoordinator
    - Never mutate log collections; they are append-only
    - Keep monetary comparisons epsilon-based (MONEY_EPSILON)
"""

from ._version import __version__

__all__ = ["__version__"]

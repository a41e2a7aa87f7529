"""
Ledger store abstraction for MfgLedger.

This module provides a pluggable document store supporting:
- Per-tenant SQLite (production)
- In-memory (for testing)

Every write goes through an optimistic LedgerTransaction: reads record
versions, writes are staged, and commit applies them only if nothing read
has changed since.

Invariants:
    - Each organization's documents live in their own partition
    - Commit is all-or-nothing
    - Append-only collections are never updated and nothing is deleted

How to change safely:
    - New backends must implement the LedgerStore protocol
    - Run the store unit tests against every backend
"""

from .base import (
    AppendOnlyViolationError,
    CommitReceipt,
    DocumentSnapshot,
    LedgerStore,
    LedgerTransaction,
    ReadAfterWriteError,
    StoreError,
    TenantNotFoundError,
    TransactionClosedError,
    UnreadDocumentError,
    create_ledger_store,
)
from .memory import InMemoryLedgerStore
from .sqlite import SqliteLedgerStore

__all__ = [
    # Protocol and types
    "LedgerStore",
    "LedgerTransaction",
    "DocumentSnapshot",
    "CommitReceipt",
    # Errors
    "StoreError",
    "TenantNotFoundError",
    "ReadAfterWriteError",
    "UnreadDocumentError",
    "AppendOnlyViolationError",
    "TransactionClosedError",
    # Factory
    "create_ledger_store",
    # Implementations
    "SqliteLedgerStore",
    "InMemoryLedgerStore",
]

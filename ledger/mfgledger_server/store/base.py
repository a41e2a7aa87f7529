"""
Base protocol and types for the ledger store abstraction.

This module defines the LedgerStore protocol that all backends must implement,
the shared optimistic transaction that stages writes until commit, and the
snapshot/receipt types passed between the store and the engine.

Invariants:
    - A transaction records the version of every document it reads
      (0 for documents that did not exist)
    - Commit applies all staged writes or none of them
    - Commit fails with ConflictError if any read version changed
    - Reads are rejected once a write has been staged
    - A transaction commits at most once

How to change safely:
    - Protocol changes require updating all implementations
    - Keep staging logic in LedgerTransaction so backends only load and apply
"""

from __future__ import annotations

import logging
import uuid
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from enum import Enum
from typing import TYPE_CHECKING, Any, Protocol, runtime_checkable

from ..models import APPEND_ONLY_COLLECTIONS

if TYPE_CHECKING:
    from ..config import StoreConfig

logger = logging.getLogger(__name__)

DocKey = tuple[str, str]


class StoreError(Exception):
    """Base exception for store programming errors. Never retried."""

    pass


class TenantNotFoundError(StoreError):
    """Tenant partition does not exist."""

    pass


class ReadAfterWriteError(StoreError):
    """A read was attempted after a write was staged on the transaction."""

    pass


class UnreadDocumentError(StoreError):
    """An update targeted a document the transaction never read."""

    pass


class AppendOnlyViolationError(StoreError):
    """A staged write would modify a document in an append-only collection."""

    pass


class TransactionClosedError(StoreError):
    """The transaction has already been committed."""

    pass


@dataclass(frozen=True)
class DocumentSnapshot:
    """Point-in-time view of one document.

    Attributes:
        collection: Collection name
        doc_id: Document identifier
        exists: Whether the document existed when read
        data: Document fields (empty when absent)
        version: Monotonic version, 0 when absent
        created_at: Creation timestamp (Unix ms)
        updated_at: Last write timestamp (Unix ms)
    """

    collection: str
    doc_id: str
    exists: bool
    data: dict[str, Any] = field(default_factory=dict)
    version: int = 0
    created_at: int | None = None
    updated_at: int | None = None

    @classmethod
    def missing(cls, collection: str, doc_id: str) -> DocumentSnapshot:
        return cls(collection=collection, doc_id=doc_id, exists=False)

    def to_dict(self) -> dict[str, Any]:
        """Document fields merged with store metadata."""
        return {
            "id": self.doc_id,
            **self.data,
            "version": self.version,
            "createdAt": self.created_at,
            "updatedAt": self.updated_at,
        }


class WriteKind(Enum):
    SET = "set"
    UPDATE = "update"
    INSERT = "insert"


@dataclass
class StagedWrite:
    """A write waiting for commit."""

    kind: WriteKind
    collection: str
    doc_id: str
    data: dict[str, Any]


@dataclass
class CommitReceipt:
    """Outcome of a successful commit.

    Attributes:
        tenant_id: Tenant the writes landed in
        committed_at: Commit timestamp (Unix ms)
        versions: New version of every written document
        inserted_ids: (collection, id) of every inserted document, in staging order
    """

    tenant_id: str
    committed_at: int
    versions: dict[DocKey, int] = field(default_factory=dict)
    inserted_ids: list[DocKey] = field(default_factory=list)


class LedgerTransaction(ABC):
    """Optimistic read-then-conditional-write transaction.

    Reads go straight to the backend and are cached by key, so repeated
    reads of one document within a transaction see the same version.
    Writes are only staged; nothing reaches the backend until commit().

    Subclasses implement _load() and _apply().
    """

    def __init__(self, tenant_id: str) -> None:
        self.tenant_id = tenant_id
        self._reads: dict[DocKey, DocumentSnapshot] = {}
        self._writes: list[StagedWrite] = []
        self._committed = False

    @property
    def read_set(self) -> dict[DocKey, DocumentSnapshot]:
        """Snapshots read so far, keyed by (collection, doc_id)."""
        return dict(self._reads)

    @property
    def writes(self) -> list[StagedWrite]:
        return list(self._writes)

    @property
    def committed(self) -> bool:
        return self._committed

    async def get(self, collection: str, doc_id: str) -> DocumentSnapshot:
        """Read a document and record its version for commit-time checking.

        Raises:
            ReadAfterWriteError: If any write has already been staged
        """
        self._check_open()
        if self._writes:
            raise ReadAfterWriteError(
                f"Cannot read {collection}/{doc_id} after writes were staged"
            )
        key = (collection, doc_id)
        if key not in self._reads:
            self._reads[key] = await self._load(collection, doc_id)
        return self._reads[key]

    def set(self, collection: str, doc_id: str, data: dict[str, Any]) -> None:
        """Stage a full create-or-replace of a document."""
        self._check_open()
        self._check_mutable(collection, doc_id)
        self._writes.append(StagedWrite(WriteKind.SET, collection, doc_id, dict(data)))

    def update(self, collection: str, doc_id: str, patch: dict[str, Any]) -> None:
        """Stage a merge of fields into an existing document.

        Raises:
            UnreadDocumentError: If the document was not read in this
                transaction, or was read and did not exist
        """
        self._check_open()
        self._check_mutable(collection, doc_id)
        snapshot = self._reads.get((collection, doc_id))
        if snapshot is None:
            raise UnreadDocumentError(f"Update of {collection}/{doc_id} without a prior read")
        if not snapshot.exists:
            raise UnreadDocumentError(f"Update of {collection}/{doc_id}, which does not exist")
        self._writes.append(StagedWrite(WriteKind.UPDATE, collection, doc_id, dict(patch)))

    def insert(self, collection: str, data: dict[str, Any]) -> str:
        """Stage a new document with a store-assigned ID.

        Returns:
            The assigned document ID
        """
        self._check_open()
        doc_id = uuid.uuid4().hex
        self._writes.append(StagedWrite(WriteKind.INSERT, collection, doc_id, dict(data)))
        return doc_id

    async def commit(self) -> CommitReceipt:
        """Apply all staged writes atomically.

        Returns:
            CommitReceipt with new versions and inserted IDs

        Raises:
            ConflictError: If any document read changed since it was read
            TransactionClosedError: If already committed
        """
        self._check_open()
        self._committed = True
        receipt = await self._apply(self._reads, self._writes)
        logger.debug(
            "Transaction committed",
            extra={
                "tenant_id": self.tenant_id,
                "reads": len(self._reads),
                "writes": len(self._writes),
            },
        )
        return receipt

    def _check_open(self) -> None:
        if self._committed:
            raise TransactionClosedError("Transaction already committed")

    def _check_mutable(self, collection: str, doc_id: str) -> None:
        if collection in APPEND_ONLY_COLLECTIONS:
            raise AppendOnlyViolationError(
                f"{collection} is append-only; cannot modify {doc_id}"
            )

    @abstractmethod
    async def _load(self, collection: str, doc_id: str) -> DocumentSnapshot:
        ...

    @abstractmethod
    async def _apply(
        self,
        reads: dict[DocKey, DocumentSnapshot],
        writes: list[StagedWrite],
    ) -> CommitReceipt:
        ...


@runtime_checkable
class LedgerStore(Protocol):
    """Protocol for ledger store backends.

    Each tenant (organization) lives in its own partition. Nothing in the
    protocol lets one tenant's transaction observe another's documents.
    """

    @abstractmethod
    async def initialize_tenant(self, tenant_id: str) -> None:
        """Create the tenant partition if it does not exist."""
        ...

    @abstractmethod
    async def tenant_exists(self, tenant_id: str) -> bool:
        ...

    @abstractmethod
    def transaction(self, tenant_id: str) -> LedgerTransaction:
        """Open a new optimistic transaction for a tenant.

        Raises:
            TenantNotFoundError: If the tenant partition does not exist
        """
        ...

    @abstractmethod
    async def get(self, tenant_id: str, collection: str, doc_id: str) -> DocumentSnapshot:
        """Read one document outside any transaction."""
        ...

    @abstractmethod
    async def query(
        self,
        tenant_id: str,
        collection: str,
        limit: int | None = None,
        offset: int = 0,
    ) -> list[DocumentSnapshot]:
        """List a collection in creation order."""
        ...

    @abstractmethod
    async def get_stats(self, tenant_id: str) -> dict[str, int]:
        """Document counts per collection."""
        ...

    @abstractmethod
    async def close(self) -> None:
        ...


def create_ledger_store(config: StoreConfig) -> LedgerStore:
    """Factory function to create a ledger store from configuration.

    Args:
        config: Store configuration

    Returns:
        Appropriate LedgerStore implementation

    Raises:
        ValueError: If backend is not supported
    """
    from ..config import StoreBackend
    from .memory import InMemoryLedgerStore
    from .sqlite import SqliteLedgerStore

    if config.backend == StoreBackend.SQLITE:
        return SqliteLedgerStore(
            data_dir=config.data_dir,
            wal_mode=config.wal_mode,
            busy_timeout_ms=config.busy_timeout_ms,
            cache_size_pages=config.cache_size_pages,
        )
    elif config.backend == StoreBackend.MEMORY:
        return InMemoryLedgerStore()
    else:
        raise ValueError(f"Unsupported store backend: {config.backend}")

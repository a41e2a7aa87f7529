"""
In-memory ledger store implementation for testing.

This module provides a simple in-memory store backend for:
- Unit tests
- Integration tests, including concurrency tests with asyncio.gather
- Local development without a data directory

Invariants:
    - All data is lost on process exit
    - Provides the same optimistic-concurrency guarantees as SQLite
    - The commit lock is held only while checking versions and applying writes

How to change safely:
    - This is test-only code, changes don't affect production
    - Keep interface compatible with LedgerStore protocol
    - Add features to help with testing scenarios
"""

from __future__ import annotations

import asyncio
import copy
import logging
import time
from dataclasses import dataclass
from typing import Any

from ..errors import ConflictError
from ..models import APPEND_ONLY_COLLECTIONS
from .base import (
    CommitReceipt,
    DocKey,
    DocumentSnapshot,
    LedgerTransaction,
    StagedWrite,
    StoreError,
    TenantNotFoundError,
    WriteKind,
)

logger = logging.getLogger(__name__)


@dataclass
class _StoredDocument:
    data: dict[str, Any]
    version: int
    created_at: int
    updated_at: int
    seq: int


class InMemoryTransaction(LedgerTransaction):
    """Transaction over one tenant partition of an InMemoryLedgerStore."""

    def __init__(self, store: InMemoryLedgerStore, tenant_id: str) -> None:
        super().__init__(tenant_id)
        self._store = store

    async def _load(self, collection: str, doc_id: str) -> DocumentSnapshot:
        # Yield so concurrent operations interleave between reads and commit
        await asyncio.sleep(0)
        return self._store._snapshot(self.tenant_id, collection, doc_id)

    async def _apply(
        self,
        reads: dict[DocKey, DocumentSnapshot],
        writes: list[StagedWrite],
    ) -> CommitReceipt:
        return await self._store._commit(self.tenant_id, reads, writes)


class InMemoryLedgerStore:
    """In-memory implementation of LedgerStore for testing.

    Attributes:
        commit_count: Number of successful commits (testing helper)

    Thread safety:
        Uses an asyncio lock around commit. Safe to use from
        multiple coroutines.

    Example:
        >>> store = InMemoryLedgerStore()
        >>> await store.initialize_tenant("org_1")
        >>> tx = store.transaction("org_1")
        >>> doc_id = tx.insert("raw_materials", {"name": "Steel"})
        >>> await tx.commit()
    """

    def __init__(self) -> None:
        self._tenants: dict[str, dict[str, dict[str, _StoredDocument]]] = {}
        self._lock = asyncio.Lock()
        self._seq = 0
        self._injected_conflicts = 0
        self.commit_count = 0

    async def initialize_tenant(self, tenant_id: str) -> None:
        if tenant_id not in self._tenants:
            self._tenants[tenant_id] = {}
            logger.info(f"Initialized in-memory tenant: {tenant_id}")

    async def tenant_exists(self, tenant_id: str) -> bool:
        return tenant_id in self._tenants

    def transaction(self, tenant_id: str) -> InMemoryTransaction:
        self._partition(tenant_id)
        return InMemoryTransaction(self, tenant_id)

    async def get(self, tenant_id: str, collection: str, doc_id: str) -> DocumentSnapshot:
        return self._snapshot(tenant_id, collection, doc_id)

    async def query(
        self,
        tenant_id: str,
        collection: str,
        limit: int | None = None,
        offset: int = 0,
    ) -> list[DocumentSnapshot]:
        docs = self._partition(tenant_id).get(collection, {})
        ordered = sorted(docs.items(), key=lambda item: item[1].seq)
        end = None if limit is None else offset + limit
        return [self._to_snapshot(collection, doc_id, doc) for doc_id, doc in ordered[offset:end]]

    async def get_stats(self, tenant_id: str) -> dict[str, int]:
        return {name: len(docs) for name, docs in self._partition(tenant_id).items()}

    async def close(self) -> None:
        self._tenants.clear()
        logger.debug("InMemoryLedgerStore closed")

    def _partition(self, tenant_id: str) -> dict[str, dict[str, _StoredDocument]]:
        try:
            return self._tenants[tenant_id]
        except KeyError:
            raise TenantNotFoundError(f"Tenant not found: {tenant_id}") from None

    def _snapshot(self, tenant_id: str, collection: str, doc_id: str) -> DocumentSnapshot:
        doc = self._partition(tenant_id).get(collection, {}).get(doc_id)
        if doc is None:
            return DocumentSnapshot.missing(collection, doc_id)
        return self._to_snapshot(collection, doc_id, doc)

    @staticmethod
    def _to_snapshot(collection: str, doc_id: str, doc: _StoredDocument) -> DocumentSnapshot:
        return DocumentSnapshot(
            collection=collection,
            doc_id=doc_id,
            exists=True,
            data=copy.deepcopy(doc.data),
            version=doc.version,
            created_at=doc.created_at,
            updated_at=doc.updated_at,
        )

    async def _commit(
        self,
        tenant_id: str,
        reads: dict[DocKey, DocumentSnapshot],
        writes: list[StagedWrite],
    ) -> CommitReceipt:
        async with self._lock:
            partition = self._partition(tenant_id)

            if self._injected_conflicts > 0:
                self._injected_conflicts -= 1
                collection, doc_id = next(iter(reads), ("*", "*"))
                raise ConflictError(collection, doc_id)

            for (collection, doc_id), snapshot in reads.items():
                current = partition.get(collection, {}).get(doc_id)
                actual = current.version if current else 0
                if actual != snapshot.version:
                    raise ConflictError(collection, doc_id, snapshot.version, actual)

            now = int(time.time() * 1000)
            receipt = CommitReceipt(tenant_id=tenant_id, committed_at=now)
            # Build the new state first so a failing write leaves nothing applied
            staged: dict[DocKey, _StoredDocument] = {}
            for write in writes:
                key = (write.collection, write.doc_id)
                previous = staged.get(key)
                if previous is not None:
                    # One version bump per document per commit
                    doc = self._apply_write(write, previous, now)
                    doc.version = previous.version
                    staged[key] = doc
                else:
                    existing = partition.get(write.collection, {}).get(write.doc_id)
                    staged[key] = self._apply_write(write, existing, now)
                receipt.versions[key] = staged[key].version
                if write.kind == WriteKind.INSERT:
                    receipt.inserted_ids.append(key)

            for (collection, doc_id), doc in staged.items():
                partition.setdefault(collection, {})[doc_id] = doc
            self.commit_count += 1
            return receipt

    def _apply_write(
        self,
        write: StagedWrite,
        existing: _StoredDocument | None,
        now: int,
    ) -> _StoredDocument:
        if existing is not None and write.collection in APPEND_ONLY_COLLECTIONS:
            raise StoreError(f"{write.collection} is append-only")

        if write.kind == WriteKind.UPDATE:
            if existing is None:
                raise StoreError(f"Cannot update missing {write.collection}/{write.doc_id}")
            data = copy.deepcopy(existing.data)
            data.update(copy.deepcopy(write.data))
        else:
            data = copy.deepcopy(write.data)

        if existing is None:
            self._seq += 1
            return _StoredDocument(data=data, version=1, created_at=now, updated_at=now, seq=self._seq)
        return _StoredDocument(
            data=data,
            version=existing.version + 1,
            created_at=existing.created_at,
            updated_at=now,
            seq=existing.seq,
        )

    # Testing helpers

    def fail_next_commits(self, count: int) -> None:
        """Make the next `count` commits raise ConflictError (testing helper)."""
        self._injected_conflicts = count

    def get_all_documents(self, tenant_id: str, collection: str) -> list[dict[str, Any]]:
        """Get raw document data for a collection (testing helper)."""
        docs = self._tenants.get(tenant_id, {}).get(collection, {})
        return [copy.deepcopy(doc.data) for doc in docs.values()]

    def get_document_count(self, tenant_id: str, collection: str) -> int:
        """Get document count for a collection (testing helper)."""
        return len(self._tenants.get(tenant_id, {}).get(collection, {}))

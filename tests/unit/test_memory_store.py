"""
Unit tests for the in-memory ledger store.

Tests cover:
- Same transaction contract as the SQLite store
- Snapshot isolation from stored state
- Testing helpers (injected conflicts, counts)
"""

import pytest

from ledger.mfgledger_server.config import StoreBackend, StoreConfig
from ledger.mfgledger_server.errors import ConflictError
from ledger.mfgledger_server.store import InMemoryLedgerStore, SqliteLedgerStore, create_ledger_store
from ledger.mfgledger_server.store.base import (
    AppendOnlyViolationError,
    ReadAfterWriteError,
    TenantNotFoundError,
)


class TestInMemoryLedgerStore:
    """Tests for InMemoryLedgerStore."""

    @pytest.fixture
    def store(self):
        return InMemoryLedgerStore()

    @pytest.mark.asyncio
    async def test_unknown_tenant(self, store):
        assert not await store.tenant_exists("org_1")
        with pytest.raises(TenantNotFoundError):
            store.transaction("org_1")

    @pytest.mark.asyncio
    async def test_commit_and_read_back(self, store):
        await store.initialize_tenant("org_1")
        tx = store.transaction("org_1")
        tx.set("raw_materials", "steel", {"name": "Steel", "quantity": 10})
        await tx.commit()

        snapshot = await store.get("org_1", "raw_materials", "steel")

        assert snapshot.exists
        assert snapshot.version == 1
        assert snapshot.to_dict()["id"] == "steel"
        assert snapshot.to_dict()["quantity"] == 10

    @pytest.mark.asyncio
    async def test_snapshots_are_copies(self, store):
        """Mutating a returned snapshot does not touch stored state."""
        await store.initialize_tenant("org_1")
        tx = store.transaction("org_1")
        tx.set("products", "widget", {"bom": [{"materialId": "steel", "quantity": 2}]})
        await tx.commit()

        snapshot = await store.get("org_1", "products", "widget")
        snapshot.data["bom"].append({"materialId": "glue", "quantity": 1})

        again = await store.get("org_1", "products", "widget")
        assert len(again.data["bom"]) == 1

    @pytest.mark.asyncio
    async def test_conflict_detection(self, store):
        await store.initialize_tenant("org_1")
        tx = store.transaction("org_1")
        tx.set("raw_materials", "steel", {"quantity": 10})
        await tx.commit()

        first = store.transaction("org_1")
        second = store.transaction("org_1")
        await first.get("raw_materials", "steel")
        await second.get("raw_materials", "steel")
        first.update("raw_materials", "steel", {"quantity": 5})
        second.update("raw_materials", "steel", {"quantity": 7})
        await first.commit()

        with pytest.raises(ConflictError):
            await second.commit()
        assert (await store.get("org_1", "raw_materials", "steel")).data["quantity"] == 5

    @pytest.mark.asyncio
    async def test_repeated_writes_bump_version_once(self, store):
        await store.initialize_tenant("org_1")
        tx = store.transaction("org_1")
        tx.set("raw_materials", "steel", {"name": "Steel", "quantity": 10})
        await tx.commit()

        tx = store.transaction("org_1")
        await tx.get("raw_materials", "steel")
        tx.update("raw_materials", "steel", {"quantity": 12})
        tx.update("raw_materials", "steel", {"unit": "kg"})
        receipt = await tx.commit()

        snapshot = await store.get("org_1", "raw_materials", "steel")
        assert snapshot.data == {"name": "Steel", "quantity": 12, "unit": "kg"}
        assert snapshot.version == 2
        assert receipt.versions[("raw_materials", "steel")] == 2

    @pytest.mark.asyncio
    async def test_read_after_write_rejected(self, store):
        await store.initialize_tenant("org_1")
        tx = store.transaction("org_1")
        tx.insert("expenses", {"amount": 1})

        with pytest.raises(ReadAfterWriteError):
            await tx.get("expenses", "x")

    @pytest.mark.asyncio
    async def test_append_only_rejected(self, store):
        await store.initialize_tenant("org_1")
        tx = store.transaction("org_1")

        with pytest.raises(AppendOnlyViolationError):
            tx.set("cashflow_entries", "entry", {"amount": 1})

    @pytest.mark.asyncio
    async def test_fail_next_commits(self, store):
        await store.initialize_tenant("org_1")
        store.fail_next_commits(1)

        tx = store.transaction("org_1")
        tx.insert("expenses", {"amount": 1})
        with pytest.raises(ConflictError):
            await tx.commit()

        tx = store.transaction("org_1")
        tx.insert("expenses", {"amount": 1})
        await tx.commit()

        assert store.get_document_count("org_1", "expenses") == 1
        assert store.commit_count == 1

    @pytest.mark.asyncio
    async def test_query_paging(self, store):
        await store.initialize_tenant("org_1")
        tx = store.transaction("org_1")
        for amount in (10, 20, 30):
            tx.insert("expenses", {"amount": amount})
        await tx.commit()

        page = await store.query("org_1", "expenses", limit=1, offset=2)

        assert [d.data["amount"] for d in page] == [30]


class TestCreateLedgerStore:
    """Tests for the store factory."""

    def test_memory_backend(self):
        store = create_ledger_store(StoreConfig(backend=StoreBackend.MEMORY))
        assert isinstance(store, InMemoryLedgerStore)

    def test_sqlite_backend(self, tmp_path):
        store = create_ledger_store(
            StoreConfig(backend=StoreBackend.SQLITE, data_dir=str(tmp_path), busy_timeout_ms=100)
        )
        assert isinstance(store, SqliteLedgerStore)
        assert store.busy_timeout_ms == 100

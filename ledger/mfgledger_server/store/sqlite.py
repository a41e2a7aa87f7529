"""
Per-tenant SQLite ledger store for MfgLedger.

This module manages one SQLite database per organization holding every
ledger collection in a single versioned documents table.

Invariants:
    - One SQLite file per tenant
    - Version checks and writes of a commit run in one BEGIN IMMEDIATE transaction
    - Documents in append-only collections are never updated (enforced by trigger)
    - No document is ever deleted (enforced by trigger)

How to change safely:
    - Schema migrations must be backward compatible
    - Never relax the append-only triggers; logs are the audit trail
    - Use transactions for all write operations

Table schema:
    documents:
        - tenant_id TEXT
        - collection TEXT
        - doc_id TEXT
        - version INTEGER (starts at 1, +1 per commit touching the document)
        - data_json TEXT
        - created_at INTEGER (Unix ms)
        - updated_at INTEGER (Unix ms)
        - seq INTEGER (insertion order)
        - PRIMARY KEY (tenant_id, collection, doc_id)
"""

from __future__ import annotations

import json
import logging
import sqlite3
import time
from collections.abc import Iterator
from contextlib import contextmanager
from pathlib import Path

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


def _is_locked(exc: sqlite3.OperationalError) -> bool:
    message = str(exc).lower()
    return "database is locked" in message or "database is busy" in message


class SqliteTransaction(LedgerTransaction):
    """Transaction over one tenant database of a SqliteLedgerStore.

    Reads use short-lived connections outside any SQLite transaction.
    Commit re-checks every read version under BEGIN IMMEDIATE.
    """

    def __init__(self, store: SqliteLedgerStore, tenant_id: str) -> None:
        super().__init__(tenant_id)
        self._store = store

    async def _load(self, collection: str, doc_id: str) -> DocumentSnapshot:
        with self._store._get_connection(self.tenant_id) as conn:
            return self._store._fetch(conn, self.tenant_id, collection, doc_id)

    async def _apply(
        self,
        reads: dict[DocKey, DocumentSnapshot],
        writes: list[StagedWrite],
    ) -> CommitReceipt:
        return self._store._commit(self.tenant_id, reads, writes)


class SqliteLedgerStore:
    """Per-tenant SQLite store for ledger documents.

    Thread safety:
        Each database connection is created per-operation.
        SQLite handles concurrent access via WAL mode; concurrent committers
        are serialized by BEGIN IMMEDIATE and a lock timeout surfaces as a
        ConflictError so the coordinator retries it.

    Example:
        >>> store = SqliteLedgerStore("/var/lib/mfgledger")
        >>> await store.initialize_tenant("org_123")
        >>> tx = store.transaction("org_123")
        >>> material = await tx.get("raw_materials", "steel")
    """

    # SQLite schema version for migrations
    SCHEMA_VERSION = 1

    def __init__(
        self,
        data_dir: str,
        wal_mode: bool = True,
        busy_timeout_ms: int = 5000,
        cache_size_pages: int = -64000,
    ) -> None:
        """Initialize the ledger store.

        Args:
            data_dir: Directory for SQLite database files
            wal_mode: Enable SQLite WAL mode
            busy_timeout_ms: SQLite busy timeout
            cache_size_pages: SQLite cache size (negative = KB)
        """
        self.data_dir = Path(data_dir)
        self.wal_mode = wal_mode
        self.busy_timeout_ms = busy_timeout_ms
        self.cache_size_pages = cache_size_pages

    def _get_db_path(self, tenant_id: str) -> Path:
        """Get database file path for a tenant."""
        # Sanitize tenant_id to prevent path traversal
        safe_id = "".join(c for c in tenant_id if c.isalnum() or c in "-_")
        return self.data_dir / f"org_{safe_id}.db"

    @contextmanager
    def _get_connection(self, tenant_id: str, create: bool = False) -> Iterator[sqlite3.Connection]:
        """Get a database connection for a tenant.

        Args:
            tenant_id: Tenant identifier
            create: Whether to create database if not exists

        Yields:
            SQLite connection

        Raises:
            TenantNotFoundError: If database doesn't exist and create=False
        """
        db_path = self._get_db_path(tenant_id)

        if not create and not db_path.exists():
            raise TenantNotFoundError(f"Tenant database not found: {tenant_id}")

        db_path.parent.mkdir(parents=True, exist_ok=True)

        conn = sqlite3.connect(
            str(db_path),
            timeout=self.busy_timeout_ms / 1000.0,
            isolation_level=None,  # Autocommit by default, explicit transactions
        )
        conn.row_factory = sqlite3.Row

        try:
            conn.execute(f"PRAGMA busy_timeout = {self.busy_timeout_ms}")
            conn.execute(f"PRAGMA cache_size = {self.cache_size_pages}")
            if self.wal_mode:
                conn.execute("PRAGMA journal_mode = WAL")
            conn.execute("PRAGMA synchronous = NORMAL")

            yield conn
        finally:
            conn.close()

    def _create_schema(self, conn: sqlite3.Connection) -> None:
        """Create database schema."""
        append_only = ", ".join(f"'{name}'" for name in sorted(APPEND_ONLY_COLLECTIONS))
        conn.executescript(f"""
            CREATE TABLE IF NOT EXISTS schema_version (
                version INTEGER PRIMARY KEY,
                applied_at INTEGER NOT NULL
            );

            CREATE TABLE IF NOT EXISTS documents (
                tenant_id TEXT NOT NULL,
                collection TEXT NOT NULL,
                doc_id TEXT NOT NULL,
                version INTEGER NOT NULL,
                data_json TEXT NOT NULL DEFAULT '{{}}',
                created_at INTEGER NOT NULL,
                updated_at INTEGER NOT NULL,
                seq INTEGER NOT NULL,
                PRIMARY KEY (tenant_id, collection, doc_id)
            );

            CREATE INDEX IF NOT EXISTS idx_documents_seq
                ON documents(tenant_id, collection, seq);

            CREATE TRIGGER IF NOT EXISTS trg_documents_append_only
            BEFORE UPDATE ON documents
            WHEN OLD.collection IN ({append_only})
            BEGIN
                SELECT RAISE(ABORT, 'append-only collection');
            END;

            CREATE TRIGGER IF NOT EXISTS trg_documents_no_delete
            BEFORE DELETE ON documents
            BEGIN
                SELECT RAISE(ABORT, 'ledger documents are never deleted');
            END;

            INSERT OR IGNORE INTO schema_version (version, applied_at)
            VALUES (1, strftime('%s', 'now') * 1000);
        """)

    async def initialize_tenant(self, tenant_id: str) -> None:
        """Initialize database for a new tenant.

        Creates the database file and schema if they don't exist.

        Args:
            tenant_id: Tenant identifier
        """
        with self._get_connection(tenant_id, create=True) as conn:
            self._create_schema(conn)
            logger.info(f"Initialized tenant database: {tenant_id}")

    async def tenant_exists(self, tenant_id: str) -> bool:
        """Check if tenant database exists."""
        return self._get_db_path(tenant_id).exists()

    def transaction(self, tenant_id: str) -> SqliteTransaction:
        if not self._get_db_path(tenant_id).exists():
            raise TenantNotFoundError(f"Tenant database not found: {tenant_id}")
        return SqliteTransaction(self, tenant_id)

    async def get(self, tenant_id: str, collection: str, doc_id: str) -> DocumentSnapshot:
        with self._get_connection(tenant_id) as conn:
            return self._fetch(conn, tenant_id, collection, doc_id)

    async def query(
        self,
        tenant_id: str,
        collection: str,
        limit: int | None = None,
        offset: int = 0,
    ) -> list[DocumentSnapshot]:
        """List documents of a collection in insertion order.

        Args:
            tenant_id: Tenant identifier
            collection: Collection name
            limit: Maximum documents to return (None for all)
            offset: Documents to skip

        Returns:
            List of DocumentSnapshot
        """
        with self._get_connection(tenant_id) as conn:
            cursor = conn.execute(
                """
                SELECT * FROM documents
                WHERE tenant_id = ? AND collection = ?
                ORDER BY seq ASC
                LIMIT ? OFFSET ?
                """,
                (tenant_id, collection, -1 if limit is None else limit, offset),
            )
            return [self._row_to_snapshot(row) for row in cursor.fetchall()]

    async def get_stats(self, tenant_id: str) -> dict[str, int]:
        """Get document counts per collection for a tenant."""
        with self._get_connection(tenant_id) as conn:
            cursor = conn.execute(
                "SELECT collection, COUNT(*) FROM documents WHERE tenant_id = ? GROUP BY collection",
                (tenant_id,),
            )
            return {row[0]: row[1] for row in cursor.fetchall()}

    async def close(self) -> None:
        """No pooled connections to release."""
        pass

    def get_db_path(self, tenant_id: str) -> Path:
        """Get the database file path for a tenant.

        Args:
            tenant_id: Tenant identifier

        Returns:
            Path to database file
        """
        return self._get_db_path(tenant_id)

    def _fetch(
        self,
        conn: sqlite3.Connection,
        tenant_id: str,
        collection: str,
        doc_id: str,
    ) -> DocumentSnapshot:
        cursor = conn.execute(
            "SELECT * FROM documents WHERE tenant_id = ? AND collection = ? AND doc_id = ?",
            (tenant_id, collection, doc_id),
        )
        row = cursor.fetchone()
        if not row:
            return DocumentSnapshot.missing(collection, doc_id)
        return self._row_to_snapshot(row)

    @staticmethod
    def _row_to_snapshot(row: sqlite3.Row) -> DocumentSnapshot:
        return DocumentSnapshot(
            collection=row["collection"],
            doc_id=row["doc_id"],
            exists=True,
            data=json.loads(row["data_json"]),
            version=row["version"],
            created_at=row["created_at"],
            updated_at=row["updated_at"],
        )

    def _commit(
        self,
        tenant_id: str,
        reads: dict[DocKey, DocumentSnapshot],
        writes: list[StagedWrite],
    ) -> CommitReceipt:
        """Check read versions and apply writes in one SQLite transaction.

        Raises:
            ConflictError: If a read version changed or the database stayed locked
        """
        now = int(time.time() * 1000)
        receipt = CommitReceipt(tenant_id=tenant_id, committed_at=now)

        with self._get_connection(tenant_id) as conn:
            try:
                conn.execute("BEGIN IMMEDIATE")
            except sqlite3.OperationalError as e:
                if _is_locked(e):
                    raise ConflictError("*", tenant_id) from e
                raise

            try:
                for (collection, doc_id), snapshot in reads.items():
                    cursor = conn.execute(
                        "SELECT version FROM documents WHERE tenant_id = ? AND collection = ? AND doc_id = ?",
                        (tenant_id, collection, doc_id),
                    )
                    row = cursor.fetchone()
                    actual = row[0] if row else 0
                    if actual != snapshot.version:
                        raise ConflictError(collection, doc_id, snapshot.version, actual)

                written: set[DocKey] = set()
                for write in writes:
                    key = (write.collection, write.doc_id)
                    # One version bump per document per commit
                    version = self._apply_write(conn, tenant_id, write, now, bump=key not in written)
                    written.add(key)
                    receipt.versions[key] = version
                    if write.kind == WriteKind.INSERT:
                        receipt.inserted_ids.append(key)

                conn.execute("COMMIT")

            except sqlite3.OperationalError as e:
                conn.execute("ROLLBACK")
                if _is_locked(e):
                    raise ConflictError("*", tenant_id) from e
                raise
            except Exception:
                conn.execute("ROLLBACK")
                raise

        logger.debug(
            "Committed ledger writes",
            extra={
                "tenant_id": tenant_id,
                "writes": len(writes),
                "inserted": len(receipt.inserted_ids),
            },
        )
        return receipt

    def _apply_write(
        self,
        conn: sqlite3.Connection,
        tenant_id: str,
        write: StagedWrite,
        now: int,
        bump: bool = True,
    ) -> int:
        cursor = conn.execute(
            "SELECT version, data_json FROM documents WHERE tenant_id = ? AND collection = ? AND doc_id = ?",
            (tenant_id, write.collection, write.doc_id),
        )
        row = cursor.fetchone()

        if row is None:
            if write.kind == WriteKind.UPDATE:
                raise StoreError(f"Cannot update missing {write.collection}/{write.doc_id}")
            seq = conn.execute(
                "SELECT COALESCE(MAX(seq), 0) + 1 FROM documents WHERE tenant_id = ?",
                (tenant_id,),
            ).fetchone()[0]
            conn.execute(
                """
                INSERT INTO documents (tenant_id, collection, doc_id, version, data_json,
                                       created_at, updated_at, seq)
                VALUES (?, ?, ?, 1, ?, ?, ?, ?)
                """,
                (tenant_id, write.collection, write.doc_id, json.dumps(write.data), now, now, seq),
            )
            return 1

        if write.kind == WriteKind.UPDATE:
            data = json.loads(row["data_json"])
            data.update(write.data)
        else:
            data = write.data

        version = row["version"] + 1 if bump else row["version"]
        conn.execute(
            """
            UPDATE documents SET data_json = ?, version = ?, updated_at = ?
            WHERE tenant_id = ? AND collection = ? AND doc_id = ?
            """,
            (json.dumps(data), version, now, tenant_id, write.collection, write.doc_id),
        )
        return version

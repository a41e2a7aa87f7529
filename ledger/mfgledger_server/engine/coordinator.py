"""
Transaction coordinator for MfgLedger.

Every ledger operation runs as read -> validate -> write against one
optimistic store transaction:

    IDLE -> READING -> VALIDATING -> WRITING -> COMMITTED
                           |            |
                           |            +-> ABORTED_RETRYABLE -> READING (next attempt)
                           +-> ABORTED_BUSINESS -> FAILED

A write conflict restarts the whole cycle with a fresh transaction after a
full-jitter exponential backoff. Business failures end the operation
immediately. Exhausting the attempt budget ends in FAILED with a
TransientFailure.

Invariants:
    - Operations cannot stage writes while reading (the reader is read-only)
    - validate_and_compute() is pure; the same snapshot gives the same plan
    - Every plan passes the integrity and audit checks before it is staged
    - Only ConflictError is retried
    - No writable state is cached between attempts

How to change safely:
    - Keep the retry budget bounded
    - New checks on a plan belong in WritePlan.check_integrity() or AuditLogger.verify()
"""

from __future__ import annotations

import asyncio
import logging
import math
import random
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from enum import Enum
from typing import TYPE_CHECKING, Any

from ..config import CoordinatorConfig
from ..errors import ConflictError, IntegrityError, LedgerError, NotFoundError, TransientFailure
from ..models import STOCK_COLLECTIONS
from ..store.base import CommitReceipt, DocumentSnapshot, LedgerTransaction, WriteKind

if TYPE_CHECKING:
    from ..store.base import LedgerStore
    from .audit import AuditLogger

logger = logging.getLogger(__name__)


class CoordinatorState(Enum):
    IDLE = "idle"
    READING = "reading"
    VALIDATING = "validating"
    WRITING = "writing"
    COMMITTED = "committed"
    ABORTED_RETRYABLE = "aborted_retryable"
    ABORTED_BUSINESS = "aborted_business"
    FAILED = "failed"


class SnapshotReader:
    """Read-only view of a transaction handed to LedgerOperation.read()."""

    def __init__(self, tx: LedgerTransaction) -> None:
        self._tx = tx

    async def get(self, collection: str, doc_id: str) -> DocumentSnapshot:
        return await self._tx.get(collection, doc_id)

    async def get_required(
        self,
        collection: str,
        doc_id: str,
        label: str | None = None,
    ) -> DocumentSnapshot:
        """Read a document that must exist.

        Raises:
            NotFoundError: If the document does not exist
        """
        snapshot = await self._tx.get(collection, doc_id)
        if not snapshot.exists:
            raise NotFoundError(collection, doc_id, label)
        return snapshot


@dataclass
class PlannedWrite:
    kind: WriteKind
    collection: str
    doc_id: str | None
    data: dict[str, Any]
    alias: str | None = None


class WritePlan:
    """Write set computed by an operation's validate step.

    Collects writes to be staged atomically, plus the operation's
    outcome. Inserted documents can be given an alias so the
    caller can look up their store-assigned IDs after commit.

    Example:
        >>> plan = WritePlan("purchase")
        >>> plan.update("raw_materials", "steel", {"quantity": 150})
        >>> plan.insert("raw_material_logs", {...})
    """

    def __init__(self, operation: str) -> None:
        self.operation = operation
        self.writes: list[PlannedWrite] = []
        self.outcome: Any = None

    def set(self, collection: str, doc_id: str, data: dict[str, Any]) -> WritePlan:
        self.writes.append(PlannedWrite(WriteKind.SET, collection, doc_id, dict(data)))
        return self

    def update(self, collection: str, doc_id: str, patch: dict[str, Any]) -> WritePlan:
        self.writes.append(PlannedWrite(WriteKind.UPDATE, collection, doc_id, dict(patch)))
        return self

    def insert(
        self,
        collection: str,
        data: dict[str, Any],
        *,
        as_: str | None = None,
    ) -> WritePlan:
        """Add an insert with a store-assigned ID.

        Args:
            collection: Target collection
            data: Document fields
            as_: Alias under which the new ID is reported after staging

        Returns:
            Self for chaining
        """
        self.writes.append(PlannedWrite(WriteKind.INSERT, collection, None, dict(data), as_))
        return self

    def inserts(self, collection: str) -> list[dict[str, Any]]:
        """Data of every insert staged into `collection`."""
        return [w.data for w in self.writes if w.kind == WriteKind.INSERT and w.collection == collection]

    def check_integrity(self) -> None:
        """Reject plans that would leave a negative or non-finite quantity or cost.

        Raises:
            IntegrityError: On the first offending write
        """
        for write in self.writes:
            if write.collection not in STOCK_COLLECTIONS:
                continue
            for field_name in ("quantity", "averageCost"):
                value = write.data.get(field_name)
                if value is None:
                    continue
                if not math.isfinite(value) or value < 0:
                    raise IntegrityError(
                        f"{write.collection}/{write.doc_id} would have invalid {field_name}: {value:g}",
                        details={
                            "collection": write.collection,
                            "id": write.doc_id,
                            "field": field_name,
                            "value": value if math.isfinite(value) else str(value),
                        },
                    )

    def stage(self, tx: LedgerTransaction) -> dict[str, str]:
        """Stage every write on a transaction.

        Set and insert documents are stamped with the tenant's orgId.

        Returns:
            Mapping of insert alias to assigned document ID
        """
        created: dict[str, str] = {}
        for write in self.writes:
            if write.kind == WriteKind.SET:
                tx.set(write.collection, write.doc_id, {**write.data, "orgId": tx.tenant_id})
            elif write.kind == WriteKind.UPDATE:
                tx.update(write.collection, write.doc_id, write.data)
            else:
                doc_id = tx.insert(write.collection, {**write.data, "orgId": tx.tenant_id})
                if write.alias:
                    created[write.alias] = doc_id
        return created

    def __len__(self) -> int:
        return len(self.writes)


class LedgerOperation(ABC):
    """One atomic ledger operation.

    Subclasses declare their read set in read() and compute their write
    set in validate_and_compute(). Neither may touch the store directly.
    """

    name: str = "operation"

    @abstractmethod
    async def read(self, reader: SnapshotReader) -> Any:
        """Read everything the operation needs and return it as a snapshot."""
        ...

    @abstractmethod
    def validate_and_compute(self, snapshot: Any) -> WritePlan:
        """Validate business rules against the snapshot and build the write plan.

        Raises:
            ValidationError: If a business rule fails
        """
        ...


@dataclass
class OperationResult:
    """Result of running one operation through the coordinator.

    Attributes:
        success: Whether the operation committed
        operation: Operation name
        outcome: Operation-specific outcome (None on failure)
        created: Insert aliases mapped to their new document IDs
        receipt: Store commit receipt (None on failure)
        error: The failure, if any
        attempts: Number of read-validate-write cycles run
        states: Every coordinator state visited, in order
    """

    success: bool
    operation: str
    outcome: Any = None
    created: dict[str, str] = field(default_factory=dict)
    receipt: CommitReceipt | None = None
    error: LedgerError | None = None
    attempts: int = 0
    states: list[CoordinatorState] = field(default_factory=list)

    @property
    def final_state(self) -> CoordinatorState:
        return self.states[-1] if self.states else CoordinatorState.IDLE

    def raise_for_error(self) -> OperationResult:
        """Re-raise the carried error, or return self on success."""
        if self.error is not None:
            raise self.error
        return self


class TransactionCoordinator:
    """Runs ledger operations with optimistic concurrency and bounded retry.

    Example:
        >>> coordinator = TransactionCoordinator(store)
        >>> result = await coordinator.execute_atomic("org_1", Purchase(...))
        >>> result.raise_for_error()
    """

    def __init__(
        self,
        store: LedgerStore,
        config: CoordinatorConfig | None = None,
        audit: AuditLogger | None = None,
        rng: random.Random | None = None,
    ) -> None:
        """Initialize the coordinator.

        Args:
            store: Ledger store to run transactions against
            config: Retry policy
            audit: Audit logger used to verify log coverage of each plan
            rng: Random source for backoff jitter
        """
        from .audit import AuditLogger

        self.store = store
        self.config = config or CoordinatorConfig()
        self.audit = audit or AuditLogger()
        self._rng = rng or random.Random()

    def backoff_delay(self, attempt: int) -> float:
        """Full-jitter backoff in seconds before retrying after `attempt`."""
        ceiling_ms = min(
            self.config.max_delay_ms,
            self.config.base_delay_ms * 2 ** (attempt - 1),
        )
        return self._rng.uniform(0, ceiling_ms) / 1000.0

    async def execute_atomic(self, tenant_id: str, operation: LedgerOperation) -> OperationResult:
        """Run an operation to commit, business failure, or retry exhaustion.

        Args:
            tenant_id: Organization whose partition the operation runs in
            operation: The operation to run

        Returns:
            OperationResult; errors are carried, not raised

        Raises:
            StoreError: On store programming errors (never retried)
        """
        states = [CoordinatorState.IDLE]
        last_conflict: ConflictError | None = None
        max_attempts = self.config.max_attempts

        for attempt in range(1, max_attempts + 1):
            tx = self.store.transaction(tenant_id)
            try:
                self._enter(states, CoordinatorState.READING, operation, attempt)
                snapshot = await operation.read(SnapshotReader(tx))

                self._enter(states, CoordinatorState.VALIDATING, operation, attempt)
                plan = operation.validate_and_compute(snapshot)
                plan.check_integrity()
                self.audit.verify(plan, tx.read_set)

                self._enter(states, CoordinatorState.WRITING, operation, attempt)
                created = plan.stage(tx)
                receipt = await tx.commit()

            except ConflictError as e:
                last_conflict = e
                self._enter(states, CoordinatorState.ABORTED_RETRYABLE, operation, attempt)
                if attempt < max_attempts:
                    delay = self.backoff_delay(attempt)
                    logger.info(
                        "Write conflict, retrying operation",
                        extra={
                            "tenant_id": tenant_id,
                            "operation": operation.name,
                            "attempt": attempt,
                            "delay_ms": round(delay * 1000, 2),
                            "conflict": e.details,
                        },
                    )
                    await asyncio.sleep(delay)
                continue

            except LedgerError as e:
                self._enter(states, CoordinatorState.ABORTED_BUSINESS, operation, attempt)
                self._enter(states, CoordinatorState.FAILED, operation, attempt)
                logger.debug(
                    "Operation rejected",
                    extra={
                        "tenant_id": tenant_id,
                        "operation": operation.name,
                        "error_code": e.code,
                    },
                )
                return OperationResult(
                    success=False,
                    operation=operation.name,
                    error=e,
                    attempts=attempt,
                    states=states,
                )

            self._enter(states, CoordinatorState.COMMITTED, operation, attempt)
            logger.debug(
                "Operation committed",
                extra={
                    "tenant_id": tenant_id,
                    "operation": operation.name,
                    "attempts": attempt,
                    "writes": len(plan),
                },
            )
            return OperationResult(
                success=True,
                operation=operation.name,
                outcome=plan.outcome,
                created=created,
                receipt=receipt,
                attempts=attempt,
                states=states,
            )

        self._enter(states, CoordinatorState.FAILED, operation, max_attempts)
        logger.warning(
            "Operation abandoned after repeated write conflicts",
            extra={
                "tenant_id": tenant_id,
                "operation": operation.name,
                "attempts": max_attempts,
            },
        )
        return OperationResult(
            success=False,
            operation=operation.name,
            error=TransientFailure(operation.name, max_attempts, last_conflict),
            attempts=max_attempts,
            states=states,
        )

    @staticmethod
    def _enter(
        states: list[CoordinatorState],
        state: CoordinatorState,
        operation: LedgerOperation,
        attempt: int,
    ) -> None:
        states.append(state)
        logger.debug(
            "Coordinator state",
            extra={"operation": operation.name, "state": state.value, "attempt": attempt},
        )

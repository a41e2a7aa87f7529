"""
Error types for the MfgLedger engine.

Every failure an operation can report belongs to a closed set of kinds:
- VALIDATION: deterministic business-rule failure (not found, bad input,
  insufficient stock, overpayment, wrong order state)
- INTEGRITY: the write plan would leave a negative quantity or cost, or an
  unpaired stock mutation
- CONFLICT: optimistic-concurrency violation reported by the store
- TRANSIENT: the coordinator gave up retrying conflicts

Invariants:
    - All errors inherit from LedgerError and carry a kind
    - Errors carry structured details (entity, required vs available)
    - Only CONFLICT is ever retried, and only by the coordinator

How to change safely:
    - Do not add new kinds; add subclasses of an existing kind instead
    - Keep details JSON-serializable, the HTTP layer returns them as-is
"""

from __future__ import annotations

from enum import Enum
from typing import Any


class ErrorKind(Enum):
    """Closed enumeration of engine failure kinds."""

    VALIDATION = "validation"
    CONFLICT = "conflict"
    INTEGRITY = "integrity"
    TRANSIENT = "transient"


class LedgerError(Exception):
    """Base exception for all ledger engine errors.

    Attributes:
        message: Human-readable error message
        code: Error code for programmatic handling
        details: Additional structured context
    """

    kind: ErrorKind = ErrorKind.VALIDATION

    def __init__(
        self,
        message: str,
        code: str | None = None,
        details: dict[str, Any] | None = None,
    ) -> None:
        super().__init__(message)
        self.message = message
        self.code = code or "LEDGER_ERROR"
        self.details = details or {}

    @property
    def retryable(self) -> bool:
        return self.kind in (ErrorKind.CONFLICT, ErrorKind.TRANSIENT)

    def to_dict(self) -> dict[str, Any]:
        """Serialize for API responses and logs."""
        return {
            "error": self.message,
            "error_code": self.code,
            "kind": self.kind.value,
            "details": self.details,
        }


class ValidationError(LedgerError):
    """Input or business-rule validation failed.

    Raised when:
    - A quantity or amount is not positive or not finite
    - A required text field (reason, customer name) is blank
    - A bill of materials is empty
    """

    kind = ErrorKind.VALIDATION

    def __init__(
        self,
        message: str,
        field_name: str | None = None,
        code: str = "VALIDATION_ERROR",
        details: dict[str, Any] | None = None,
    ) -> None:
        merged = {"field": field_name}
        merged.update(details or {})
        super().__init__(message, code=code, details=merged)
        self.field_name = field_name


class NotFoundError(ValidationError):
    """Referenced document does not exist in the tenant's ledger."""

    def __init__(self, collection: str, doc_id: str, label: str | None = None) -> None:
        what = label or collection
        super().__init__(
            f"{what} not found: {doc_id}",
            code="NOT_FOUND",
            details={"collection": collection, "id": doc_id},
        )
        self.collection = collection
        self.doc_id = doc_id


class InsufficientStockError(ValidationError):
    """Available quantity is lower than the quantity an operation needs.

    Attributes:
        collection: Collection of the short item
        item_id: Document ID of the short item
        item_name: Display name of the short item
        required: Quantity the operation needs
        available: Quantity currently on hand
    """

    def __init__(
        self,
        collection: str,
        item_id: str,
        item_name: str,
        required: float,
        available: float,
    ) -> None:
        super().__init__(
            f"Insufficient {item_name}. Required: {required:g}, Available: {available:g}",
            code="INSUFFICIENT_STOCK",
            details={
                "collection": collection,
                "id": item_id,
                "name": item_name,
                "required": required,
                "available": available,
            },
        )
        self.collection = collection
        self.item_id = item_id
        self.item_name = item_name
        self.required = required
        self.available = available


class OverpaymentError(ValidationError):
    """Collection amount exceeds what is still due on a receivable."""

    def __init__(self, receivable_id: str, amount: float, due_amount: float) -> None:
        super().__init__(
            f"Amount {amount:.2f} exceeds due amount of {due_amount:.2f}",
            field_name="amount",
            code="OVERPAYMENT",
            details={"id": receivable_id, "requested": amount, "due": due_amount},
        )
        self.receivable_id = receivable_id
        self.amount = amount
        self.due_amount = due_amount


class InvalidStateError(ValidationError):
    """Document is not in a state that allows the operation."""

    def __init__(self, collection: str, doc_id: str, status: str, expected: str) -> None:
        super().__init__(
            f"{collection} {doc_id} is '{status}', expected '{expected}'",
            field_name="status",
            code="INVALID_STATE",
            details={"collection": collection, "id": doc_id, "status": status, "expected": expected},
        )
        self.status = status
        self.expected = expected


class IntegrityError(ValidationError):
    """Write plan would violate a ledger invariant.

    Raised before any write reaches the store, so it is never committed.
    """

    kind = ErrorKind.INTEGRITY

    def __init__(self, message: str, details: dict[str, Any] | None = None) -> None:
        super().__init__(message, code="INTEGRITY_ERROR", details=details)


class ConflictError(LedgerError):
    """A document read by the transaction changed before commit."""

    kind = ErrorKind.CONFLICT

    def __init__(
        self,
        collection: str,
        doc_id: str,
        expected_version: int | None = None,
        actual_version: int | None = None,
    ) -> None:
        super().__init__(
            f"Write conflict on {collection}/{doc_id}",
            code="WRITE_CONFLICT",
            details={
                "collection": collection,
                "id": doc_id,
                "expected_version": expected_version,
                "actual_version": actual_version,
            },
        )
        self.collection = collection
        self.doc_id = doc_id


class TransientFailure(LedgerError):
    """Conflicts persisted beyond the retry budget. Safe to retry later."""

    kind = ErrorKind.TRANSIENT

    def __init__(self, operation: str, attempts: int, last_conflict: ConflictError | None = None) -> None:
        super().__init__(
            f"{operation} did not commit after {attempts} attempts",
            code="TRANSIENT_FAILURE",
            details={
                "operation": operation,
                "attempts": attempts,
                "last_conflict": last_conflict.details if last_conflict else None,
            },
        )
        self.operation = operation
        self.attempts = attempts

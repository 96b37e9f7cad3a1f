"""Error taxonomy shared by the inventory and checkout services."""

from __future__ import annotations

from dataclasses import dataclass
from enum import Enum
from typing import Sequence


class GiftBridgeError(RuntimeError):
    """Base exception; ``operation`` names the service call that failed."""

    def __init__(self, message: str, *, operation: str | None = None) -> None:
        super().__init__(message)
        self.message = message
        self.operation = operation

    def with_operation(self, operation: str) -> "GiftBridgeError":
        if self.operation is None:
            self.operation = operation
        return self


@dataclass(frozen=True, slots=True)
class FieldError:
    field: str
    message: str

    def as_dict(self) -> dict[str, str]:
        return {"field": self.field, "message": self.message}


class ValidationError(GiftBridgeError):
    """Raised when input is malformed or out of range. Nothing was written."""

    def __init__(self, errors: Sequence[FieldError], *, operation: str | None = None) -> None:
        self.errors = list(errors)
        summary = ", ".join(f"{error.field}: {error.message}" for error in self.errors)
        super().__init__(f"Invalid input: {summary}", operation=operation)


class NotFoundError(GiftBridgeError):
    """Raised when a referenced gift code or checkout session does not exist."""


class ConflictReason(str, Enum):
    """Why a request could not be applied against current state."""

    INVENTORY_EXHAUSTED = "inventory_exhausted"
    INSUFFICIENT_VALUE = "insufficient_value"
    NO_COMBINATION = "no_combination"
    CLAIMS_LOST = "claims_lost"
    INVALID_TRANSITION = "invalid_transition"
    CONCURRENT_UPDATE = "concurrent_update"
    DUPLICATE_CODE = "duplicate_code"


INVENTORY_CONFLICT_REASONS = frozenset(
    {
        ConflictReason.INVENTORY_EXHAUSTED,
        ConflictReason.INSUFFICIENT_VALUE,
        ConflictReason.NO_COMBINATION,
        ConflictReason.CLAIMS_LOST,
    }
)


class ConflictError(GiftBridgeError):
    """Raised when state forbids the request (inventory, transitions, duplicates)."""

    def __init__(self, message: str, *, reason: ConflictReason, operation: str | None = None) -> None:
        super().__init__(message, operation=operation)
        self.reason = reason


class InvalidTransitionError(ConflictError):
    """Raised when a status change violates the configured transition graph."""

    def __init__(self, entity: str, current_status: Enum, requested_status: Enum) -> None:
        message = f"Invalid {entity} status transition from {current_status.value} to {requested_status.value}"
        super().__init__(message, reason=ConflictReason.INVALID_TRANSITION)
        self.current_status = current_status
        self.requested_status = requested_status


class PersistenceError(GiftBridgeError):
    """Raised when the underlying store fails; wraps the driver exception."""

    def __init__(self, operation: str, cause: BaseException) -> None:
        super().__init__(f"{operation} failed: {cause}", operation=operation)
        self.cause = cause
        # Rows committed before the failure; set by GiftCodeAllocator mid-claim.
        self.claimed_codes: list = []


__all__ = [
    "ConflictError",
    "ConflictReason",
    "FieldError",
    "GiftBridgeError",
    "INVENTORY_CONFLICT_REASONS",
    "InvalidTransitionError",
    "NotFoundError",
    "PersistenceError",
    "ValidationError",
]

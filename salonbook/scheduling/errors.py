"""Domain errors raised by the scheduling core.

Each error carries a stable ``code``, an HTTP-style ``status_code`` and a
``details`` dict with the offending entity ids, so the web layer can render
it without knowing the concrete class.
"""

from __future__ import annotations

from typing import Any


class SchedulingError(Exception):
    """Base class for all scheduling domain errors."""

    status_code: int = 400
    code: str = "SCHEDULING_ERROR"

    def __init__(self, message: str, *, code: str | None = None, details: dict[str, Any] | None = None) -> None:
        super().__init__(message)
        self.message = message
        if code is not None:
            self.code = code
        self.details: dict[str, Any] = details or {}

    def to_dict(self) -> dict[str, Any]:
        """Serializable error body."""
        body: dict[str, Any] = {"code": self.code, "message": self.message}
        if self.details:
            body["details"] = self.details
        return body


class NotFoundError(SchedulingError):
    """Entity does not exist for the tenant, or is soft-deleted."""

    status_code = 404
    code = "NOT_FOUND"


class InvalidTransitionError(SchedulingError):
    """Action is not permitted from the entity's current status."""

    code = "INVALID_TRANSITION"

    def __init__(self, action: str, current_status: str, *, entity_id: Any = None) -> None:
        super().__init__(
            f"Cannot {action.replace('_', ' ')} in current status '{current_status}'",
            details={"action": action, "current_status": current_status, "entity_id": _str(entity_id)},
        )
        self.action = action
        self.current_status = current_status


class InputValidationError(SchedulingError):
    """Request is well-formed but describes an impossible schedule."""

    code = "VALIDATION_ERROR"


class BusinessRuleError(SchedulingError):
    """A salon policy forbids the operation."""

    code = "BUSINESS_RULE_VIOLATION"


class SchedulingConflictError(SchedulingError):
    """Requested interval overlaps existing bookings.

    ``conflicts`` lists the overlapping bookings so the caller can offer
    keep/cancel resolution and resubmit with a forced override.
    """

    status_code = 409
    code = "SCHEDULING_CONFLICT"

    def __init__(self, message: str, conflicts: list[Any] | None = None) -> None:
        conflicts = conflicts or []
        super().__init__(
            message,
            details={"conflicts": [_dump(c) for c in conflicts]},
        )
        self.conflicts = conflicts


def _str(value: Any) -> str | None:
    return None if value is None else str(value)


def _dump(conflict: Any) -> Any:
    if hasattr(conflict, "model_dump"):
        return conflict.model_dump(mode="json")
    return conflict

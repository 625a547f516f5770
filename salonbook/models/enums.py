"""Domain enums used across SQLAlchemy models and Pydantic schemas.

All enums use str mixin for JSON serialization; columns store the `.value`.
"""

from __future__ import annotations

from enum import Enum


class AppointmentStatus(str, Enum):
    """Appointment lifecycle states."""

    BOOKED = "booked"
    CONFIRMED = "confirmed"
    CHECKED_IN = "checked_in"
    IN_PROGRESS = "in_progress"
    COMPLETED = "completed"
    CANCELLED = "cancelled"
    NO_SHOW = "no_show"
    RESCHEDULED = "rescheduled"


class AppointmentAction(str, Enum):
    """Commands that move an appointment through its lifecycle."""

    CONFIRM = "confirm"
    CHECK_IN = "check_in"
    START = "start"
    COMPLETE = "complete"
    CANCEL = "cancel"
    MARK_NO_SHOW = "mark_no_show"
    RESCHEDULE = "reschedule"


class BookingType(str, Enum):
    """How the booking reached the salon."""

    ONLINE = "online"
    PHONE = "phone"
    WALK_IN = "walk_in"


class GenderPreference(str, Enum):
    """Requested stylist gender. ANY disables the filter."""

    MALE = "male"
    FEMALE = "female"
    ANY = "any"


class LineItemStatus(str, Enum):
    """Per-service status inside an appointment."""

    PENDING = "pending"
    IN_PROGRESS = "in_progress"
    COMPLETED = "completed"
    CANCELLED = "cancelled"


class QueueStatus(str, Enum):
    """Walk-in queue entry states."""

    WAITING = "waiting"
    CALLED = "called"
    SERVING = "serving"
    COMPLETED = "completed"
    LEFT = "left"


class CustomerBookingStatus(str, Enum):
    """Booking privileges derived from the customer's no-show history."""

    NORMAL = "normal"
    PREPAID_ONLY = "prepaid_only"
    BLOCKED = "blocked"


class PrepaymentStatus(str, Enum):
    """Prepayment state for customers on the prepaid-only list."""

    PENDING = "pending"
    PAID = "paid"
    REFUNDED = "refunded"


class ConflictAction(str, Enum):
    """What to do with an existing booking when a new one is forced over it."""

    KEEP = "keep"
    CANCEL = "cancel"


class StaffRole(str, Enum):
    """Staff roles relevant to scheduling."""

    STYLIST = "stylist"
    RECEPTIONIST = "receptionist"
    MANAGER = "manager"


# Statuses that no longer occupy a stylist's time.
INACTIVE_APPOINTMENT_STATUSES: frozenset[str] = frozenset({
    AppointmentStatus.CANCELLED.value,
    AppointmentStatus.NO_SHOW.value,
    AppointmentStatus.RESCHEDULED.value,
})

TERMINAL_QUEUE_STATUSES: frozenset[str] = frozenset({
    QueueStatus.COMPLETED.value,
    QueueStatus.LEFT.value,
})

"""Pydantic schemas for appointment commands and queries.

Dates cross the boundary as ``YYYY-MM-DD`` and times as ``HH:mm``; both are
branch-local, never timestamps with a zone.
"""

from __future__ import annotations

import uuid
from dataclasses import dataclass, field
from datetime import date
from decimal import Decimal
from typing import TYPE_CHECKING, Annotated, Literal

from pydantic import BaseModel, Field, model_validator

from salonbook.models.enums import (
    AppointmentStatus,
    BookingType,
    ConflictAction,
    GenderPreference,
)

if TYPE_CHECKING:
    from salonbook.models.appointment import Appointment
    from salonbook.schemas.events import SystemEvent

TimeOfDay = Annotated[str, Field(pattern=r"^([01]\d|2[0-3]):[0-5]\d$", description="HH:mm")]
Phone = Annotated[str, Field(min_length=6, max_length=20)]


# ---------------------------------------------------------------------------
# Create
# ---------------------------------------------------------------------------


class ServiceRequest(BaseModel):
    """One requested service on a booking."""

    service_id: uuid.UUID
    stylist_id: uuid.UUID | None = None
    quantity: int = Field(default=1, ge=1)


class CreateAppointmentInput(BaseModel):
    """Booking request for an online, phone or walk-in appointment."""

    branch_id: uuid.UUID

    # Customer: a registered customer OR a guest name (+ optional phone)
    customer_id: uuid.UUID | None = None
    customer_name: str | None = Field(default=None, min_length=2, max_length=255)
    customer_phone: Phone | None = None

    scheduled_date: date
    scheduled_time: TimeOfDay

    services: list[ServiceRequest] = Field(min_length=1)

    stylist_id: uuid.UUID | None = None
    stylist_gender_preference: GenderPreference | None = None
    assign_later: bool = False

    booking_type: BookingType
    booking_source: str | None = Field(default=None, max_length=50)

    customer_notes: str | None = Field(default=None, max_length=1000)
    internal_notes: str | None = Field(default=None, max_length=1000)

    @model_validator(mode="after")
    def _check_customer_and_stylist(self) -> CreateAppointmentInput:
        if (self.customer_id is None) == (self.customer_name is None):
            msg = "Exactly one of customer_id or customer_name is required"
            raise ValueError(msg)
        if self.booking_type == BookingType.WALK_IN:
            if self.assign_later:
                msg = "Walk-in appointments cannot be left unassigned"
                raise ValueError(msg)
            if self.stylist_id is None:
                msg = "Walk-in appointments require a stylist"
                raise ValueError(msg)
        if self.assign_later and self.stylist_id is not None:
            msg = "assign_later cannot be combined with stylist_id"
            raise ValueError(msg)
        return self


class ConflictActionInput(BaseModel):
    """Keep or cancel one conflicting booking when forcing an override."""

    appointment_id: uuid.UUID
    action: ConflictAction


# ---------------------------------------------------------------------------
# Update / transitions
# ---------------------------------------------------------------------------


class UpdateAppointmentInput(BaseModel):
    """Fields that may change after booking. Everything else is frozen."""

    stylist_id: uuid.UUID | None = None
    customer_notes: str | None = Field(default=None, max_length=1000)
    internal_notes: str | None = Field(default=None, max_length=1000)


class RescheduleInput(BaseModel):
    """Move a booking to a new slot; prices stay locked."""

    new_date: date
    new_time: TimeOfDay
    stylist_id: uuid.UUID | None = None
    reason: str | None = Field(default=None, max_length=500)


class CancelInput(BaseModel):
    """Cancellation request; a reason is mandatory."""

    reason: str = Field(min_length=1, max_length=500)
    is_salon_cancelled: bool = False


# ---------------------------------------------------------------------------
# Queries
# ---------------------------------------------------------------------------


class AppointmentListFilters(BaseModel):
    """Filters and pagination for listing appointments."""

    branch_id: uuid.UUID | None = None
    stylist_id: uuid.UUID | None = None
    customer_id: uuid.UUID | None = None
    status: list[AppointmentStatus] | None = None
    booking_type: list[BookingType] | None = None
    date_from: date | None = None
    date_to: date | None = None
    search: str | None = Field(default=None, max_length=100)
    page: int = Field(default=1, ge=1)
    limit: int = Field(default=20, ge=1, le=100)
    sort_by: Literal["scheduled_date", "scheduled_time", "created_at", "total_amount"] = "scheduled_date"
    sort_order: Literal["asc", "desc"] = "desc"


# ---------------------------------------------------------------------------
# Results
# ---------------------------------------------------------------------------


class ConflictInfo(BaseModel):
    """An existing booking that overlaps a requested interval."""

    id: uuid.UUID
    customer_id: uuid.UUID | None = None
    customer_name: str | None = None
    customer_phone: str | None = None
    stylist_id: uuid.UUID | None = None
    scheduled_time: str
    end_time: str
    status: str
    services: list[str] = Field(default_factory=list)


class ProcessedConflict(BaseModel):
    """What a forced override did to one conflicting booking."""

    id: uuid.UUID
    action: ConflictAction
    customer_name: str | None = None


@dataclass
class BookingResult:
    """Outcome of a successful booking."""

    appointment: Appointment
    processed_conflicts: list[ProcessedConflict] = field(default_factory=list)
    prepayment_required: bool = False
    prepayment_amount: Decimal | None = None
    events: list[SystemEvent] = field(default_factory=list, repr=False)


@dataclass
class RescheduleResult:
    """The superseded booking, its replacement, and the chain's new count."""

    original_appointment: Appointment
    new_appointment: Appointment
    reschedule_count: int


@dataclass
class AppointmentPage:
    """One page of an appointment listing."""

    items: list[Appointment]
    page: int
    limit: int
    total: int

    @property
    def total_pages(self) -> int:
        return -(-self.total // self.limit) if self.limit else 0

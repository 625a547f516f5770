"""Pydantic schemas for availability queries."""

from __future__ import annotations

import uuid
import datetime as dt

from pydantic import BaseModel, Field

from salonbook.models.enums import GenderPreference
from salonbook.schemas.appointments import TimeOfDay


class AvailableSlotsQuery(BaseModel):
    """Which services, on which day, optionally with whom."""

    branch_id: uuid.UUID
    date: dt.date
    service_ids: list[uuid.UUID] = Field(min_length=1)
    stylist_id: uuid.UUID | None = None
    gender_preference: GenderPreference | None = None


class TimeSlot(BaseModel):
    """A bookable start time and one stylist who is free then."""

    time: TimeOfDay
    available: bool = True
    stylist_id: uuid.UUID | None = None
    stylist_name: str | None = None


class AvailableSlots(BaseModel):
    """Open slots for a day, in chronological order."""

    date: dt.date
    duration_minutes: int
    slots: list[TimeSlot] = Field(default_factory=list)
    next_available_date: dt.date | None = Field(
        default=None,
        description="First open day after `date`, set only when no slot is free",
    )

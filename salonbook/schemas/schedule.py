"""Pydantic schemas for stylist breaks and blocked slots."""

from __future__ import annotations

import uuid
from dataclasses import dataclass
from datetime import date
from typing import TYPE_CHECKING

from pydantic import BaseModel, Field, model_validator

from salonbook.schemas.appointments import TimeOfDay

if TYPE_CHECKING:
    from salonbook.models.schedule import StylistBlockedSlot, StylistBreak
    from salonbook.models.staff import Staff


class CreateBreakInput(BaseModel):
    """A recurring break; ``day_of_week`` None means every day (0=Sunday)."""

    name: str = Field(min_length=2, max_length=100)
    day_of_week: int | None = Field(default=None, ge=0, le=6)
    start_time: TimeOfDay
    end_time: TimeOfDay

    @model_validator(mode="after")
    def _check_range(self) -> CreateBreakInput:
        if self.start_time >= self.end_time:
            msg = "End time must be after start time"
            raise ValueError(msg)
        return self


class CreateBlockedSlotInput(BaseModel):
    """A one-off block: the whole day, or a start/end window."""

    blocked_date: date
    start_time: TimeOfDay | None = None
    end_time: TimeOfDay | None = None
    is_full_day: bool = False
    reason: str | None = Field(default=None, max_length=255)

    @model_validator(mode="after")
    def _check_window(self) -> CreateBlockedSlotInput:
        if self.is_full_day:
            return self
        if self.start_time is None or self.end_time is None:
            msg = "start_time and end_time are required unless is_full_day is set"
            raise ValueError(msg)
        if self.start_time >= self.end_time:
            msg = "End time must be after start time"
            raise ValueError(msg)
        return self


class ScheduledAppointment(BaseModel):
    """Compact appointment row for a stylist's schedule."""

    id: uuid.UUID
    scheduled_date: date
    scheduled_time: str
    end_time: str
    customer_id: uuid.UUID | None = None
    customer_name: str | None = None
    services: list[str]
    status: str


@dataclass
class StylistSchedule:
    """A stylist's breaks, blocks and bookings over a date range."""

    stylist: Staff
    date_from: date
    date_to: date
    breaks: list[StylistBreak]
    blocked_slots: list[StylistBlockedSlot]
    appointments: list[ScheduledAppointment]

"""Pydantic schemas for the walk-in queue."""

from __future__ import annotations

import uuid
from dataclasses import dataclass, field
from datetime import date
from typing import TYPE_CHECKING

from pydantic import BaseModel, Field

from salonbook.models.enums import GenderPreference
from salonbook.schemas.appointments import Phone

if TYPE_CHECKING:
    from salonbook.models.appointment import Appointment
    from salonbook.models.queue import WalkInQueueEntry


class AddToQueueInput(BaseModel):
    """A walk-in arriving at the front desk."""

    customer_id: uuid.UUID | None = None
    customer_name: str = Field(min_length=2, max_length=255)
    customer_phone: Phone | None = None
    service_ids: list[uuid.UUID] = Field(min_length=1)
    stylist_preference_id: uuid.UUID | None = None
    gender_preference: GenderPreference | None = None


class QueueStats(BaseModel):
    """Per-status counts for a branch's queue on one day."""

    waiting: int = 0
    called: int = 0
    serving: int = 0
    completed: int = 0
    left: int = 0
    average_wait_minutes: int = Field(
        default=0,
        description="Mean created→called time over completed entries that were called",
    )


class ServingToken(BaseModel):
    """A token currently in the chair."""

    token_number: int
    stylist_id: uuid.UUID | None = None


@dataclass
class QueueJoinResult:
    """Token, position and wait estimate handed to the walk-in."""

    entry: WalkInQueueEntry
    token_number: int
    position: int
    estimated_wait_minutes: int


@dataclass
class StartServingResult:
    """The queue entry now being served and its walk-in appointment."""

    entry: WalkInQueueEntry
    appointment: Appointment


@dataclass
class QueueView:
    """The day's active queue for one branch."""

    branch_id: uuid.UUID
    date: date
    entries: list[WalkInQueueEntry]
    stats: QueueStats
    currently_serving: list[ServingToken] = field(default_factory=list)

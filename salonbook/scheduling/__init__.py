"""Scheduling core — availability, appointment lifecycle, walk-in queue."""

from salonbook.scheduling.appointments import AppointmentLifecycleService
from salonbook.scheduling.availability import AvailabilityService
from salonbook.scheduling.errors import (
    BusinessRuleError,
    InputValidationError,
    InvalidTransitionError,
    NotFoundError,
    SchedulingConflictError,
    SchedulingError,
)
from salonbook.scheduling.queue import WalkInQueueService
from salonbook.scheduling.stylist_schedule import StylistScheduleService

__all__ = [
    "AvailabilityService",
    "AppointmentLifecycleService",
    "WalkInQueueService",
    "StylistScheduleService",
    "SchedulingError",
    "NotFoundError",
    "InvalidTransitionError",
    "InputValidationError",
    "BusinessRuleError",
    "SchedulingConflictError",
]

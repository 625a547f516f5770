"""SystemEvent schema — the event type that flows through the whole system.

Every booking and queue action emits a SystemEvent after its transaction has
completed. Subscribers (the audit logger, real-time publishers) consume these
events asynchronously.
"""

from __future__ import annotations

import uuid
from datetime import datetime, timezone
from enum import Enum
from typing import Any

from pydantic import BaseModel, Field


class EventType(str, Enum):
    """All event types emitted by the system."""

    # Appointments
    APPOINTMENT_BOOKED = "appointment.booked"
    APPOINTMENT_UPDATED = "appointment.updated"
    APPOINTMENT_STATUS_CHANGED = "appointment.status_changed"
    APPOINTMENT_CANCELLED = "appointment.cancelled"
    APPOINTMENT_NO_SHOW = "appointment.no_show"
    APPOINTMENT_RESCHEDULED = "appointment.rescheduled"
    APPOINTMENT_STYLIST_ASSIGNED = "appointment.stylist_assigned"

    # Conflicts
    CONFLICT_OVERRIDE = "appointment.conflict_override"
    CONFLICT_RESOLVED = "appointment.conflict_resolved"

    # Walk-in queue
    QUEUE_JOINED = "queue.joined"
    QUEUE_CALLED = "queue.called"
    QUEUE_SERVING = "queue.serving"
    QUEUE_COMPLETED = "queue.completed"
    QUEUE_LEFT = "queue.left"

    # Stylist schedule
    BREAK_CREATED = "schedule.break_created"
    BREAK_DELETED = "schedule.break_deleted"
    SLOT_BLOCKED = "schedule.slot_blocked"
    SLOT_UNBLOCKED = "schedule.slot_unblocked"

    # System
    SYSTEM_STARTUP = "system.startup"
    SYSTEM_SHUTDOWN = "system.shutdown"


class SystemEvent(BaseModel):
    """Core event that flows through the system.

    Immutable once created. Consumed by:
    - audit_on_event → writes to audit_log table
    - any real-time publisher subscribed at startup
    """

    id: uuid.UUID = Field(default_factory=uuid.uuid4)
    event_type: EventType
    timestamp: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))

    # Context (optional: system events have no tenant)
    tenant_id: uuid.UUID | None = None
    branch_id: uuid.UUID | None = None
    actor_id: str | None = None
    entity_type: str | None = None
    entity_id: uuid.UUID | None = None

    # Flexible payload
    data: dict[str, Any] = Field(default_factory=dict)

    # Metadata
    source_module: str | None = Field(default=None, description="Module that emitted this event")

    model_config = {"frozen": True}

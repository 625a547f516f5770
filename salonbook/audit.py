"""Audit trail subscriber — writes each SystemEvent to the audit_log table.

Registered at startup as a global subscriber, so every booking, queue and
schedule event lands in the append-only audit log.
"""

from __future__ import annotations

import logging

from salonbook.db.engine import async_session_factory
from salonbook.models.audit import AuditLog
from salonbook.schemas.events import SystemEvent

logger = logging.getLogger(__name__)


def audit_entry(event: SystemEvent) -> AuditLog:
    """Map an event onto an AuditLog row."""
    return AuditLog(
        event_type=event.event_type.value,
        tenant_id=event.tenant_id,
        branch_id=event.branch_id,
        actor_id=event.actor_id,
        entity_type=event.entity_type,
        entity_id=event.entity_id,
        data=event.data or None,
    )


async def audit_on_event(event: SystemEvent) -> None:
    """Persist one event in its own session.

    Errors are logged, never raised: the booking that produced the event has
    already committed.
    """
    try:
        async with async_session_factory() as db:
            db.add(audit_entry(event))
            await db.commit()
    except Exception:
        logger.exception(
            "Failed to persist audit event: %s (%s=%s)",
            event.event_type.value,
            event.entity_type,
            event.entity_id,
        )

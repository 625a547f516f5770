"""Stylist schedule service — recurring breaks and one-off blocked slots.

Breaks may not overlap each other on any day they share; an every-day break
shares every day. Blocks may not cover time that is already booked.
"""

from __future__ import annotations

import logging
import uuid
from datetime import date
from typing import Any

from salonbook.events import emit
from salonbook.models.schedule import StylistBlockedSlot, StylistBreak
from salonbook.models.staff import Staff
from salonbook.scheduling.availability import AvailabilityService
from salonbook.scheduling.errors import BusinessRuleError, InputValidationError, NotFoundError
from salonbook.scheduling.ports import SchedulingRepository
from salonbook.scheduling.timeutils import times_overlap
from salonbook.schemas.events import EventType, SystemEvent
from salonbook.schemas.schedule import (
    CreateBlockedSlotInput,
    CreateBreakInput,
    ScheduledAppointment,
    StylistSchedule,
)

logger = logging.getLogger(__name__)

SOURCE = "scheduling.stylist_schedule"


def _shares_day(a: int | None, b: int | None) -> bool:
    return a is None or b is None or a == b


class StylistScheduleService:
    """Manages the exceptions to a stylist's working hours."""

    def __init__(self, repo: SchedulingRepository, availability: AvailabilityService | None = None) -> None:
        self.repo = repo
        self.availability = availability or AvailabilityService(repo)

    async def _require_stylist(
        self, tenant_id: uuid.UUID, stylist_id: uuid.UUID, branch_id: uuid.UUID | None = None
    ) -> Staff:
        stylist = await self.repo.get_stylist(tenant_id, stylist_id)
        if stylist is None or (branch_id is not None and branch_id not in stylist.branch_ids):
            raise NotFoundError("Stylist not found", details={"stylist_id": str(stylist_id)})
        return stylist

    async def get_stylist_schedule(
        self,
        tenant_id: uuid.UUID,
        stylist_id: uuid.UUID,
        date_from: date,
        date_to: date | None = None,
    ) -> StylistSchedule:
        """Breaks, blocks and active bookings of one stylist over a date range."""
        date_to = date_to or date_from
        if date_to < date_from:
            raise InputValidationError("date_to must not be before date_from")
        stylist = await self._require_stylist(tenant_id, stylist_id)
        appointments = await self.repo.list_stylist_appointments(tenant_id, stylist_id, date_from, date_to)
        return StylistSchedule(
            stylist=stylist,
            date_from=date_from,
            date_to=date_to,
            breaks=await self.repo.list_breaks(tenant_id, stylist_id),
            blocked_slots=await self.repo.list_blocked_slots(tenant_id, stylist_id, date_from, date_to),
            appointments=[
                ScheduledAppointment(
                    id=a.id,
                    scheduled_date=a.scheduled_date,
                    scheduled_time=a.scheduled_time,
                    end_time=a.end_time,
                    customer_id=a.customer_id,
                    customer_name=a.customer_name,
                    services=[line.service_name for line in a.line_items],
                    status=a.status,
                )
                for a in appointments
            ],
        )

    # ── Breaks ───────────────────────────────────────────────────────

    async def get_stylist_breaks(
        self, tenant_id: uuid.UUID, stylist_id: uuid.UUID, day_of_week: int | None = None
    ) -> list[StylistBreak]:
        return await self.repo.list_breaks(tenant_id, stylist_id, day_of_week=day_of_week)

    async def create_break(
        self,
        tenant_id: uuid.UUID,
        branch_id: uuid.UUID,
        stylist_id: uuid.UUID,
        data: CreateBreakInput,
        user_id: uuid.UUID | None = None,
    ) -> StylistBreak:
        """Add a recurring break.

        Raises:
            InputValidationError: If it overlaps an existing break on a shared day.
        """
        await self.availability.require_branch(tenant_id, branch_id)
        await self._require_stylist(tenant_id, stylist_id, branch_id)

        async with self.repo.transaction():
            for existing in await self.repo.list_breaks(tenant_id, stylist_id):
                if _shares_day(existing.day_of_week, data.day_of_week) and times_overlap(
                    data.start_time, data.end_time, existing.start_time, existing.end_time
                ):
                    raise InputValidationError(
                        f"Break overlaps with existing break: {existing.name}",
                        details={"break_id": str(existing.id)},
                    )
            brk = StylistBreak(
                id=uuid.uuid4(),
                tenant_id=tenant_id,
                branch_id=branch_id,
                stylist_id=stylist_id,
                name=data.name,
                day_of_week=data.day_of_week,
                start_time=data.start_time,
                end_time=data.end_time,
                is_active=True,
                created_by=user_id,
            )
            self.repo.add(brk)
            await self.repo.flush()

        logger.info(
            "Break created: stylist=%s day=%s %s-%s",
            stylist_id,
            data.day_of_week,
            data.start_time,
            data.end_time,
        )
        await self._emit(
            EventType.BREAK_CREATED,
            tenant_id,
            branch_id,
            brk.id,
            user_id,
            {"stylist_id": str(stylist_id), "day_of_week": data.day_of_week},
        )
        return brk

    async def delete_break(self, tenant_id: uuid.UUID, break_id: uuid.UUID, user_id: uuid.UUID | None = None) -> None:
        async with self.repo.transaction():
            brk = await self.repo.get_break(tenant_id, break_id)
            if brk is None:
                raise NotFoundError("Break not found", details={"break_id": str(break_id)})
            await self.repo.delete(brk)
            await self.repo.flush()

        logger.info("Break deleted: %s", break_id)
        await self._emit(
            EventType.BREAK_DELETED,
            tenant_id,
            brk.branch_id,
            break_id,
            user_id,
            {"stylist_id": str(brk.stylist_id)},
        )

    # ── Blocked slots ────────────────────────────────────────────────

    async def get_stylist_blocked_slots(
        self,
        tenant_id: uuid.UUID,
        stylist_id: uuid.UUID,
        date_from: date,
        date_to: date | None = None,
    ) -> list[StylistBlockedSlot]:
        return await self.repo.list_blocked_slots(tenant_id, stylist_id, date_from, date_to)

    async def create_blocked_slot(
        self,
        tenant_id: uuid.UUID,
        branch_id: uuid.UUID,
        stylist_id: uuid.UUID,
        data: CreateBlockedSlotInput,
        user_id: uuid.UUID | None = None,
    ) -> StylistBlockedSlot:
        """Block a whole day or a window for a stylist.

        Raises:
            BusinessRuleError: If the blocked time already has active bookings.
        """
        await self.availability.require_branch(tenant_id, branch_id)
        await self._require_stylist(tenant_id, stylist_id, branch_id)

        async with self.repo.transaction():
            booked = await self.repo.list_stylist_appointments(tenant_id, stylist_id, data.blocked_date)
            if data.is_full_day:
                clashes = booked
            else:
                clashes = [
                    a for a in booked
                    if times_overlap(data.start_time, data.end_time, a.scheduled_time, a.end_time)
                ]
            if clashes:
                what = "full day" if data.is_full_day else "this time"
                raise BusinessRuleError(
                    f"Cannot block {what}: stylist has {len(clashes)} appointment(s)",
                    code="SLOT_HAS_APPOINTMENTS",
                    details={"appointment_ids": [str(a.id) for a in clashes]},
                )

            block = StylistBlockedSlot(
                id=uuid.uuid4(),
                tenant_id=tenant_id,
                branch_id=branch_id,
                stylist_id=stylist_id,
                blocked_date=data.blocked_date,
                start_time=None if data.is_full_day else data.start_time,
                end_time=None if data.is_full_day else data.end_time,
                is_full_day=data.is_full_day,
                reason=data.reason,
                created_by=user_id,
            )
            self.repo.add(block)
            await self.repo.flush()

        logger.info("Slot blocked: stylist=%s %r", stylist_id, block)
        await self._emit(
            EventType.SLOT_BLOCKED,
            tenant_id,
            branch_id,
            block.id,
            user_id,
            {"stylist_id": str(stylist_id), "blocked_date": data.blocked_date.isoformat()},
        )
        return block

    async def delete_blocked_slot(
        self, tenant_id: uuid.UUID, slot_id: uuid.UUID, user_id: uuid.UUID | None = None
    ) -> None:
        async with self.repo.transaction():
            block = await self.repo.get_blocked_slot(tenant_id, slot_id)
            if block is None:
                raise NotFoundError("Blocked slot not found", details={"blocked_slot_id": str(slot_id)})
            await self.repo.delete(block)
            await self.repo.flush()

        logger.info("Blocked slot deleted: %s", slot_id)
        await self._emit(
            EventType.SLOT_UNBLOCKED,
            tenant_id,
            block.branch_id,
            slot_id,
            user_id,
            {"stylist_id": str(block.stylist_id)},
        )

    @staticmethod
    async def _emit(
        event_type: EventType,
        tenant_id: uuid.UUID,
        branch_id: uuid.UUID,
        entity_id: uuid.UUID,
        user_id: uuid.UUID | None,
        data: dict[str, Any],
    ) -> None:
        await emit(SystemEvent(
            event_type=event_type,
            tenant_id=tenant_id,
            branch_id=branch_id,
            actor_id=str(user_id) if user_id else "system",
            entity_type="stylist_schedule",
            entity_id=entity_id,
            data=data,
            source_module=SOURCE,
        ))

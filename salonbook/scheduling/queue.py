"""Walk-in queue service — same-day tokens, wait estimates, queue positions.

Token numbers run 1..N per branch and day. ``position`` ranks the entries
still waiting and is always rebuilt from scratch by ``recalculate_positions``;
it is never adjusted incrementally. Token and position writes for a
branch-day happen under ``repo.queue_lock``.
"""

from __future__ import annotations

import contextlib
import logging
import uuid
from collections.abc import AsyncIterator, Callable
from datetime import date, datetime
from typing import Any

from salonbook.config import settings
from salonbook.events import emit
from salonbook.models.base import utcnow
from salonbook.models.enums import TERMINAL_QUEUE_STATUSES, BookingType, QueueStatus
from salonbook.models.queue import WalkInQueueEntry
from salonbook.scheduling.appointments import AppointmentLifecycleService
from salonbook.scheduling.errors import InputValidationError, InvalidTransitionError, NotFoundError
from salonbook.scheduling.ports import SchedulingRepository
from salonbook.scheduling.timeutils import current_time_of_day, fits_before
from salonbook.schemas.appointments import CreateAppointmentInput, ServiceRequest
from salonbook.schemas.events import EventType, SystemEvent
from salonbook.schemas.queue import (
    AddToQueueInput,
    QueueJoinResult,
    QueueStats,
    QueueView,
    ServingToken,
    StartServingResult,
)

logger = logging.getLogger(__name__)

SOURCE = "scheduling.queue"

AHEAD_STATUSES = (QueueStatus.WAITING.value, QueueStatus.CALLED.value)
ACTIVE_STATUSES = (QueueStatus.WAITING.value, QueueStatus.CALLED.value, QueueStatus.SERVING.value)


class WalkInQueueService:
    """Front-desk operations on the day's walk-in queue."""

    def __init__(
        self,
        repo: SchedulingRepository,
        lifecycle: AppointmentLifecycleService | None = None,
        *,
        default_service_minutes: int | None = None,
        clock: Callable[[], datetime] = datetime.now,
    ) -> None:
        self.repo = repo
        self.lifecycle = lifecycle or AppointmentLifecycleService(repo)
        self.default_service_minutes = default_service_minutes or settings.scheduling.default_service_minutes
        self.clock = clock

    def today(self) -> date:
        """The branch-local calendar day the queue is keyed on."""
        return self.clock().date()

    async def _require_entry(
        self, tenant_id: uuid.UUID, entry_id: uuid.UUID, *, for_update: bool = False
    ) -> WalkInQueueEntry:
        entry = await self.repo.get_queue_entry(tenant_id, entry_id, for_update=for_update)
        if entry is None:
            raise NotFoundError("Queue entry not found", details={"queue_entry_id": str(entry_id)})
        return entry

    @contextlib.asynccontextmanager
    async def _locked_entry(self, tenant_id: uuid.UUID, entry_id: uuid.UUID) -> AsyncIterator[WalkInQueueEntry]:
        """Hold the entry's branch-day lock and yield the entry as re-read under it."""
        entry = await self._require_entry(tenant_id, entry_id)
        async with self.repo.queue_lock(entry.branch_id, entry.queue_date):
            yield await self._require_entry(tenant_id, entry_id, for_update=True)

    # ── Joining ──────────────────────────────────────────────────────

    async def add_to_queue(
        self,
        tenant_id: uuid.UUID,
        branch_id: uuid.UUID,
        data: AddToQueueInput,
        user_id: uuid.UUID | None = None,
    ) -> QueueJoinResult:
        """Issue the next token for today and estimate the wait."""
        await self.lifecycle.availability.require_branch(tenant_id, branch_id)
        queue_date = self.today()

        async with self.repo.transaction(), self.repo.queue_lock(branch_id, queue_date):
            token = await self.generate_token(tenant_id, branch_id, queue_date)
            wait = await self.calculate_estimated_wait(tenant_id, branch_id, queue_date, data.service_ids)
            position = await self.repo.count_queue(tenant_id, branch_id, queue_date, AHEAD_STATUSES) + 1

            entry = WalkInQueueEntry(
                id=uuid.uuid4(),
                tenant_id=tenant_id,
                branch_id=branch_id,
                queue_date=queue_date,
                token_number=token,
                customer_id=data.customer_id,
                customer_name=data.customer_name,
                customer_phone=data.customer_phone,
                service_ids=list(data.service_ids),
                stylist_preference_id=data.stylist_preference_id,
                gender_preference=data.gender_preference.value if data.gender_preference else None,
                status=QueueStatus.WAITING.value,
                position=position,
                estimated_wait_minutes=wait,
            )
            self.repo.add(entry)
            await self.repo.flush()

        logger.info(
            "Walk-in joined queue: branch=%s date=%s token=%d position=%d wait=%dmin",
            branch_id,
            queue_date,
            token,
            position,
            wait,
        )
        await self._emit(
            EventType.QUEUE_JOINED,
            entry,
            user_id,
            {"position": position, "estimated_wait_minutes": wait},
        )
        return QueueJoinResult(entry=entry, token_number=token, position=position, estimated_wait_minutes=wait)

    async def generate_token(self, tenant_id: uuid.UUID, branch_id: uuid.UUID, queue_date: date) -> int:
        """Next token for the branch-day; the first of the day is 1."""
        highest = await self.repo.max_token(tenant_id, branch_id, queue_date)
        return (highest or 0) + 1

    async def calculate_estimated_wait(
        self,
        tenant_id: uuid.UUID,
        branch_id: uuid.UUID,
        queue_date: date,
        service_ids: list[uuid.UUID],
    ) -> int:
        """Minutes until a new walk-in is likely to be seen.

        ``ceil(waiting_ahead * avg_service / stylists)``; with no stylists on
        the roster the division is skipped rather than treated as no wait.
        """
        waiting_ahead = await self.repo.count_queue(tenant_id, branch_id, queue_date, (QueueStatus.WAITING.value,))
        services = await self.repo.get_services(tenant_id, service_ids)
        if services:
            total, count = sum(s.duration_minutes for s in services), len(services)
        else:
            total, count = self.default_service_minutes, 1
        stylists = await self.repo.count_stylists(tenant_id, branch_id)
        divisor = count * max(stylists, 1)
        return -(-(waiting_ahead * total) // divisor)

    # ── Transitions ──────────────────────────────────────────────────

    async def call_customer(
        self, tenant_id: uuid.UUID, entry_id: uuid.UUID, user_id: uuid.UUID | None = None
    ) -> WalkInQueueEntry:
        """Invite a waiting walk-in to the chair."""
        async with self.repo.transaction():
            async with self._locked_entry(tenant_id, entry_id) as entry:
                if entry.status != QueueStatus.WAITING.value:
                    raise InvalidTransitionError("call", entry.status, entity_id=entry.id)
                entry.status = QueueStatus.CALLED.value
                entry.called_at = utcnow()
                await self.recalculate_positions(tenant_id, entry.branch_id, entry.queue_date)

        logger.info("Queue token %d called (entry=%s)", entry.token_number, entry.id)
        await self._emit(EventType.QUEUE_CALLED, entry, user_id, {})
        return entry

    async def start_serving(
        self,
        tenant_id: uuid.UUID,
        entry_id: uuid.UUID,
        stylist_id: uuid.UUID,
        user_id: uuid.UUID | None = None,
    ) -> StartServingResult:
        """Turn a waiting or called entry into a walk-in appointment starting now."""
        async with self.repo.transaction():
            async with self._locked_entry(tenant_id, entry_id) as entry:
                if entry.status not in AHEAD_STATUSES:
                    raise InvalidTransitionError("start serving", entry.status, entity_id=entry.id)

                start_time = current_time_of_day(self.clock())
                await self._ensure_fits_today(tenant_id, entry, start_time)
                booking = CreateAppointmentInput(
                    branch_id=entry.branch_id,
                    customer_id=entry.customer_id,
                    customer_name=None if entry.customer_id else entry.customer_name,
                    customer_phone=None if entry.customer_id else entry.customer_phone,
                    scheduled_date=entry.queue_date,
                    scheduled_time=start_time,
                    services=[ServiceRequest(service_id=service_id) for service_id in entry.service_ids],
                    stylist_id=stylist_id,
                    stylist_gender_preference=entry.gender_preference,
                    booking_type=BookingType.WALK_IN,
                    booking_source="walk_in_queue",
                )
                result = await self.lifecycle.book(tenant_id, booking, user_id)

                entry.appointment_id = result.appointment.id
                entry.status = QueueStatus.SERVING.value
                entry.serving_started_at = utcnow()
                entry.serving_stylist_id = stylist_id
                await self.recalculate_positions(tenant_id, entry.branch_id, entry.queue_date)

        logger.info(
            "Queue token %d now serving with stylist %s (appointment=%s)",
            entry.token_number,
            stylist_id,
            result.appointment.id,
        )
        for event in result.events:
            await emit(event)
        await self._emit(
            EventType.QUEUE_SERVING,
            entry,
            user_id,
            {"stylist_id": str(stylist_id), "appointment_id": str(result.appointment.id)},
        )
        return StartServingResult(entry=entry, appointment=result.appointment)

    async def _ensure_fits_today(self, tenant_id: uuid.UUID, entry: WalkInQueueEntry, start_time: str) -> None:
        services = await self.repo.get_services(tenant_id, entry.service_ids)
        duration = sum(s.duration_minutes for s in services) or self.default_service_minutes
        if not fits_before(start_time, duration, "24:00"):
            raise InputValidationError(
                f"Walk-in cannot start at {start_time}: {duration} minutes of service would run past midnight",
                details={"queue_entry_id": str(entry.id), "scheduled_time": start_time, "duration_minutes": duration},
            )

    async def mark_complete(
        self, tenant_id: uuid.UUID, entry_id: uuid.UUID, user_id: uuid.UUID | None = None
    ) -> WalkInQueueEntry:
        """Close an entry as served."""
        return await self._finish(tenant_id, entry_id, QueueStatus.COMPLETED, user_id)

    async def mark_left(
        self, tenant_id: uuid.UUID, entry_id: uuid.UUID, user_id: uuid.UUID | None = None
    ) -> WalkInQueueEntry:
        """Close an entry whose customer walked out unserved."""
        return await self._finish(tenant_id, entry_id, QueueStatus.LEFT, user_id)

    async def _finish(
        self,
        tenant_id: uuid.UUID,
        entry_id: uuid.UUID,
        status: QueueStatus,
        user_id: uuid.UUID | None,
    ) -> WalkInQueueEntry:
        action = "complete" if status == QueueStatus.COMPLETED else "mark left"
        async with self.repo.transaction():
            async with self._locked_entry(tenant_id, entry_id) as entry:
                if entry.status in TERMINAL_QUEUE_STATUSES:
                    raise InvalidTransitionError(action, entry.status, entity_id=entry.id)
                was_waiting = entry.status == QueueStatus.WAITING.value
                entry.status = status.value
                entry.finished_at = utcnow()
                # A completed entry has normally left the waiting pool already
                if status == QueueStatus.LEFT or was_waiting:
                    await self.recalculate_positions(tenant_id, entry.branch_id, entry.queue_date)
                else:
                    await self.repo.flush()

        logger.info("Queue token %d %s (entry=%s)", entry.token_number, status.value, entry.id)
        event_type = EventType.QUEUE_COMPLETED if status == QueueStatus.COMPLETED else EventType.QUEUE_LEFT
        await self._emit(event_type, entry, user_id, {})
        return entry

    async def recalculate_positions(
        self, tenant_id: uuid.UUID, branch_id: uuid.UUID, queue_date: date
    ) -> list[WalkInQueueEntry]:
        """Rank the waiting entries 1..K by arrival."""
        waiting = await self.repo.list_queue(tenant_id, branch_id, queue_date, (QueueStatus.WAITING.value,))
        for index, entry in enumerate(waiting, start=1):
            entry.position = index
        await self.repo.flush()
        return waiting

    # ── Queries ──────────────────────────────────────────────────────

    async def get_queue(
        self, tenant_id: uuid.UUID, branch_id: uuid.UUID, queue_date: date | None = None
    ) -> QueueView:
        """Entries still in the salon (waiting, called, serving) with the day's stats."""
        queue_date = queue_date or self.today()
        entries = await self.repo.list_queue(tenant_id, branch_id, queue_date, ACTIVE_STATUSES)
        # Called and serving tokens first, then the waiting line in position order
        entries.sort(key=lambda e: (e.status == QueueStatus.WAITING.value, e.position, e.token_number))
        return QueueView(
            branch_id=branch_id,
            date=queue_date,
            entries=entries,
            stats=await self.get_queue_stats(tenant_id, branch_id, queue_date),
            currently_serving=[
                ServingToken(token_number=e.token_number, stylist_id=e.serving_stylist_id)
                for e in entries
                if e.status == QueueStatus.SERVING.value
            ],
        )

    async def get_queue_stats(
        self, tenant_id: uuid.UUID, branch_id: uuid.UUID, queue_date: date | None = None
    ) -> QueueStats:
        queue_date = queue_date or self.today()
        entries = await self.repo.list_queue(tenant_id, branch_id, queue_date)

        counts = {status.value: 0 for status in QueueStatus}
        for entry in entries:
            counts[entry.status] = counts.get(entry.status, 0) + 1

        waits = [
            (entry.called_at - entry.created_at).total_seconds() / 60
            for entry in entries
            if entry.status == QueueStatus.COMPLETED.value and entry.called_at is not None
        ]
        average = round(sum(waits) / len(waits)) if waits else 0

        return QueueStats(
            waiting=counts[QueueStatus.WAITING.value],
            called=counts[QueueStatus.CALLED.value],
            serving=counts[QueueStatus.SERVING.value],
            completed=counts[QueueStatus.COMPLETED.value],
            left=counts[QueueStatus.LEFT.value],
            average_wait_minutes=average,
        )

    @staticmethod
    async def _emit(
        event_type: EventType,
        entry: WalkInQueueEntry,
        user_id: uuid.UUID | None,
        data: dict[str, Any],
    ) -> None:
        await emit(SystemEvent(
            event_type=event_type,
            tenant_id=entry.tenant_id,
            branch_id=entry.branch_id,
            actor_id=str(user_id) if user_id else "system",
            entity_type="queue_entry",
            entity_id=entry.id,
            data={"token_number": entry.token_number, "status": entry.status, **data},
            source_module=SOURCE,
        ))

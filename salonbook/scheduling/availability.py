"""Availability engine — can a stylist take a booking, and which slots are open.

Checks run in a fixed order and stop at the first failure: branch working
hours, recurring breaks, one-off blocked slots, then existing bookings.
Every interval comparison is half-open, so back-to-back bookings fit.
"""

from __future__ import annotations

import logging
import uuid
from dataclasses import dataclass, field
from datetime import date, timedelta

from salonbook.config import settings
from salonbook.models.appointment import Appointment
from salonbook.models.branch import Branch
from salonbook.models.enums import GenderPreference
from salonbook.models.schedule import StylistBlockedSlot, StylistBreak
from salonbook.models.staff import Staff
from salonbook.scheduling.errors import NotFoundError
from salonbook.scheduling.ports import SchedulingRepository
from salonbook.scheduling.timeutils import (
    add_minutes,
    day_name,
    day_of_week,
    deduplicate_slots,
    fits_before,
    generate_time_slots,
    times_overlap,
    to_minutes,
)
from salonbook.schemas.availability import AvailableSlots, AvailableSlotsQuery, TimeSlot

logger = logging.getLogger(__name__)


@dataclass
class StylistDay:
    """Everything that occupies one stylist on one date."""

    stylist_id: uuid.UUID
    breaks: list[StylistBreak] = field(default_factory=list)
    blocked_slots: list[StylistBlockedSlot] = field(default_factory=list)
    appointments: list[Appointment] = field(default_factory=list)

    def is_free(self, time: str, duration_minutes: int, *, exclude_appointment_id: uuid.UUID | None = None) -> bool:
        end = add_minutes(time, duration_minutes)
        if not fits_before(time, duration_minutes, "24:00"):
            return False

        for brk in self.breaks:
            if times_overlap(time, end, brk.start_time, brk.end_time):
                return False

        for block in self.blocked_slots:
            if block.is_full_day:
                return False
            if block.start_time and block.end_time and times_overlap(time, end, block.start_time, block.end_time):
                return False

        for appointment in self.appointments:
            if appointment.id == exclude_appointment_id:
                continue
            if times_overlap(time, end, appointment.scheduled_time, appointment.end_time):
                return False

        return True


def working_hours(branch: Branch, on_date: date) -> tuple[str, str] | None:
    """Open/close for the date's weekday, or None when the branch is closed."""
    hours = (branch.working_hours or {}).get(day_name(on_date))
    if not hours or hours.get("closed"):
        return None
    start, end = hours.get("start"), hours.get("end")
    if not start or not end:
        return None
    return start, end


def gender_filter(preference: GenderPreference | str | None) -> str | None:
    """Staff gender to filter on; ``any`` and None disable the filter."""
    if preference is None:
        return None
    preference = GenderPreference(preference)
    if preference == GenderPreference.ANY:
        return None
    return preference.value


class AvailabilityService:
    """Answers slot and stylist availability questions for a branch."""

    def __init__(
        self,
        repo: SchedulingRepository,
        *,
        slot_step_minutes: int | None = None,
        default_service_minutes: int | None = None,
        next_available_search_days: int | None = None,
    ) -> None:
        self.repo = repo
        self.slot_step_minutes = slot_step_minutes or settings.scheduling.slot_step_minutes
        self.default_service_minutes = default_service_minutes or settings.scheduling.default_service_minutes
        self.next_available_search_days = (
            next_available_search_days
            if next_available_search_days is not None
            else settings.scheduling.next_available_search_days
        )

    async def require_branch(self, tenant_id: uuid.UUID, branch_id: uuid.UUID) -> Branch:
        branch = await self.repo.get_branch(tenant_id, branch_id)
        if branch is None or not branch.is_active:
            raise NotFoundError("Branch not found", details={"branch_id": str(branch_id)})
        return branch

    async def load_stylist_day(self, tenant_id: uuid.UUID, stylist_id: uuid.UUID, on_date: date) -> StylistDay:
        """Fetch breaks, blocks and active bookings of a stylist for one date."""
        return StylistDay(
            stylist_id=stylist_id,
            breaks=await self.repo.list_breaks(tenant_id, stylist_id, day_of_week=day_of_week(on_date)),
            blocked_slots=await self.repo.list_blocked_slots(tenant_id, stylist_id, on_date),
            appointments=await self.repo.list_stylist_appointments(tenant_id, stylist_id, on_date),
        )

    async def is_stylist_free(
        self,
        tenant_id: uuid.UUID,
        stylist_id: uuid.UUID,
        on_date: date,
        time: str,
        duration_minutes: int,
        *,
        exclude_appointment_id: uuid.UUID | None = None,
    ) -> bool:
        """Breaks, blocks and bookings only; working hours are not checked here."""
        day = await self.load_stylist_day(tenant_id, stylist_id, on_date)
        return day.is_free(time, duration_minutes, exclude_appointment_id=exclude_appointment_id)

    async def is_slot_available(
        self,
        tenant_id: uuid.UUID,
        branch_id: uuid.UUID,
        stylist_id: uuid.UUID,
        on_date: date,
        time: str,
        duration_minutes: int,
        *,
        exclude_appointment_id: uuid.UUID | None = None,
    ) -> bool:
        """Can ``stylist_id`` be booked at ``time`` for ``duration_minutes`` on ``on_date``?

        Raises:
            NotFoundError: If the branch does not exist.
        """
        branch = await self.require_branch(tenant_id, branch_id)
        hours = working_hours(branch, on_date)
        if hours is None:
            return False
        open_time, close_time = hours
        if to_minutes(time) < to_minutes(open_time) or not fits_before(time, duration_minutes, close_time):
            return False
        return await self.is_stylist_free(
            tenant_id,
            stylist_id,
            on_date,
            time,
            duration_minutes,
            exclude_appointment_id=exclude_appointment_id,
        )

    async def service_duration(self, tenant_id: uuid.UUID, service_ids: list[uuid.UUID]) -> int:
        services = await self.repo.get_services(tenant_id, service_ids)
        return sum(s.duration_minutes for s in services) or self.default_service_minutes

    async def get_available_slots(self, tenant_id: uuid.UUID, query: AvailableSlotsQuery) -> AvailableSlots:
        """Open start times for the requested services on ``query.date``.

        A slot is listed when at least one eligible stylist is free for the
        whole duration; each time appears once, naming the first such stylist.
        """
        branch = await self.require_branch(tenant_id, query.branch_id)
        duration = await self.service_duration(tenant_id, query.service_ids)

        hours = working_hours(branch, query.date)
        if hours is None:
            return AvailableSlots(
                date=query.date,
                duration_minutes=duration,
                next_available_date=self.next_open_date(branch, query.date),
            )
        open_time, close_time = hours

        stylists = await self.repo.list_stylists(
            tenant_id,
            query.branch_id,
            stylist_id=query.stylist_id,
            gender=gender_filter(query.gender_preference),
        )
        days = [await self.load_stylist_day(tenant_id, s.id, query.date) for s in stylists]
        names = {s.id: s.name for s in stylists}

        candidates: list[TimeSlot] = []
        for time in generate_time_slots(open_time, close_time, self.slot_step_minutes):
            if not fits_before(time, duration, close_time):
                continue
            for day in days:
                if day.is_free(time, duration):
                    candidates.append(
                        TimeSlot(time=time, stylist_id=day.stylist_id, stylist_name=names[day.stylist_id])
                    )

        slots = deduplicate_slots(candidates)
        logger.debug(
            "Slots for branch=%s date=%s duration=%d: %d open across %d stylists",
            query.branch_id,
            query.date,
            duration,
            len(slots),
            len(stylists),
        )
        return AvailableSlots(
            date=query.date,
            duration_minutes=duration,
            slots=slots,
            next_available_date=None if slots else self.next_open_date(branch, query.date),
        )

    async def get_available_stylists(
        self,
        tenant_id: uuid.UUID,
        branch_id: uuid.UUID,
        on_date: date,
        time: str,
        duration_minutes: int,
        gender_preference: GenderPreference | str | None = None,
    ) -> list[Staff]:
        """Stylists at the branch who pass the full slot check."""
        stylists = await self.repo.list_stylists(tenant_id, branch_id, gender=gender_filter(gender_preference))
        available: list[Staff] = []
        for stylist in stylists:
            if await self.is_slot_available(tenant_id, branch_id, stylist.id, on_date, time, duration_minutes):
                available.append(stylist)
        return available

    async def auto_assign_stylist(
        self,
        tenant_id: uuid.UUID,
        branch_id: uuid.UUID,
        on_date: date,
        time: str,
        duration_minutes: int,
        gender_preference: GenderPreference | str | None = None,
    ) -> uuid.UUID | None:
        """Least-loaded available stylist for the slot; ties go to the lowest id."""
        stylists = await self.get_available_stylists(
            tenant_id, branch_id, on_date, time, duration_minutes, gender_preference
        )
        if not stylists:
            return None

        loads: list[tuple[int, str, uuid.UUID]] = []
        for stylist in stylists:
            count = await self.repo.count_stylist_appointments(tenant_id, stylist.id, on_date)
            loads.append((count, str(stylist.id), stylist.id))
        count, _, stylist_id = min(loads)
        logger.info("Auto-assigned stylist %s (%d bookings on %s)", stylist_id, count, on_date)
        return stylist_id

    def next_open_date(self, branch: Branch, after: date) -> date | None:
        """First date after ``after`` on which the branch opens, within the search window."""
        for offset in range(1, self.next_available_search_days + 1):
            candidate = after + timedelta(days=offset)
            if working_hours(branch, candidate) is not None:
                return candidate
        return None

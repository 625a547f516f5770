"""SQLAlchemy implementation of the scheduling persistence port.

Wraps one ``AsyncSession``. Queries follow the port's contract: tenant
scoped, soft-deleted rows excluded, "active" appointments meaning any
status that still occupies the stylist.
"""

from __future__ import annotations

import contextlib
import hashlib
import uuid
from collections.abc import AsyncGenerator, AsyncIterator, Sequence
from datetime import date
from typing import Any

from sqlalchemy import Select, func, or_, select, text
from sqlalchemy.ext.asyncio import AsyncSession

from salonbook.db.engine import async_session_factory
from salonbook.models.appointment import Appointment, AppointmentStatusHistory
from salonbook.models.branch import Branch
from salonbook.models.catalog import CatalogService
from salonbook.models.customer import Customer
from salonbook.models.enums import INACTIVE_APPOINTMENT_STATUSES, StaffRole
from salonbook.models.queue import WalkInQueueEntry
from salonbook.models.schedule import StylistBlockedSlot, StylistBreak
from salonbook.models.staff import Staff, StaffBranchAssignment
from salonbook.schemas.appointments import AppointmentListFilters


def _active_appointments(tenant_id: uuid.UUID) -> Select[tuple[Appointment]]:
    return select(Appointment).where(
        Appointment.tenant_id == tenant_id,
        Appointment.deleted_at.is_(None),
        Appointment.status.not_in(INACTIVE_APPOINTMENT_STATUSES),
    )


def advisory_lock_key(branch_id: uuid.UUID, queue_date: date) -> int:
    """Signed 64-bit key for ``pg_advisory_xact_lock``."""
    digest = hashlib.blake2b(f"walk_in_queue:{branch_id}:{queue_date.isoformat()}".encode(), digest_size=8)
    return int.from_bytes(digest.digest(), "big", signed=True)


class SqlAlchemyRepository:
    """SchedulingRepository over an async SQLAlchemy session."""

    def __init__(self, session: AsyncSession) -> None:
        self.session = session
        self._depth = 0

    # ── Branches, staff, catalog, customers ──────────────────────────

    async def get_branch(self, tenant_id: uuid.UUID, branch_id: uuid.UUID) -> Branch | None:
        result = await self.session.execute(
            select(Branch).where(Branch.id == branch_id, Branch.tenant_id == tenant_id)
        )
        return result.scalar_one_or_none()

    async def list_stylists(
        self,
        tenant_id: uuid.UUID,
        branch_id: uuid.UUID,
        *,
        stylist_id: uuid.UUID | None = None,
        gender: str | None = None,
    ) -> list[Staff]:
        stmt = (
            select(Staff)
            .join(StaffBranchAssignment, StaffBranchAssignment.staff_id == Staff.id)
            .where(
                Staff.tenant_id == tenant_id,
                Staff.role == StaffRole.STYLIST.value,
                Staff.is_active.is_(True),
                Staff.deleted_at.is_(None),
                StaffBranchAssignment.branch_id == branch_id,
            )
            .order_by(Staff.name, Staff.id)
        )
        if stylist_id is not None:
            stmt = stmt.where(Staff.id == stylist_id)
        if gender is not None:
            stmt = stmt.where(Staff.gender == gender)
        result = await self.session.execute(stmt)
        return list(result.scalars().unique().all())

    async def get_stylist(self, tenant_id: uuid.UUID, stylist_id: uuid.UUID) -> Staff | None:
        result = await self.session.execute(
            select(Staff).where(
                Staff.id == stylist_id,
                Staff.tenant_id == tenant_id,
                Staff.role == StaffRole.STYLIST.value,
                Staff.is_active.is_(True),
                Staff.deleted_at.is_(None),
            )
        )
        return result.scalar_one_or_none()

    async def count_stylists(self, tenant_id: uuid.UUID, branch_id: uuid.UUID) -> int:
        result = await self.session.execute(
            select(func.count(func.distinct(Staff.id)))
            .join(StaffBranchAssignment, StaffBranchAssignment.staff_id == Staff.id)
            .where(
                Staff.tenant_id == tenant_id,
                Staff.role == StaffRole.STYLIST.value,
                Staff.is_active.is_(True),
                Staff.deleted_at.is_(None),
                StaffBranchAssignment.branch_id == branch_id,
            )
        )
        return result.scalar_one()

    async def get_services(self, tenant_id: uuid.UUID, service_ids: Sequence[uuid.UUID]) -> list[CatalogService]:
        if not service_ids:
            return []
        result = await self.session.execute(
            select(CatalogService).where(
                CatalogService.id.in_(list(service_ids)),
                CatalogService.tenant_id == tenant_id,
                CatalogService.is_active.is_(True),
                CatalogService.deleted_at.is_(None),
            )
        )
        return list(result.scalars().all())

    async def get_customer(self, tenant_id: uuid.UUID, customer_id: uuid.UUID) -> Customer | None:
        result = await self.session.execute(
            select(Customer).where(Customer.id == customer_id, Customer.tenant_id == tenant_id)
        )
        return result.scalar_one_or_none()

    # ── Breaks and blocked slots ─────────────────────────────────────

    async def list_breaks(
        self,
        tenant_id: uuid.UUID,
        stylist_id: uuid.UUID,
        *,
        day_of_week: int | None = None,
    ) -> list[StylistBreak]:
        stmt = select(StylistBreak).where(
            StylistBreak.tenant_id == tenant_id,
            StylistBreak.stylist_id == stylist_id,
            StylistBreak.is_active.is_(True),
        )
        if day_of_week is not None:
            stmt = stmt.where(
                or_(StylistBreak.day_of_week == day_of_week, StylistBreak.day_of_week.is_(None))
            )
        result = await self.session.execute(stmt.order_by(StylistBreak.day_of_week, StylistBreak.start_time))
        return list(result.scalars().all())

    async def get_break(self, tenant_id: uuid.UUID, break_id: uuid.UUID) -> StylistBreak | None:
        result = await self.session.execute(
            select(StylistBreak).where(StylistBreak.id == break_id, StylistBreak.tenant_id == tenant_id)
        )
        return result.scalar_one_or_none()

    async def list_blocked_slots(
        self,
        tenant_id: uuid.UUID,
        stylist_id: uuid.UUID,
        date_from: date,
        date_to: date | None = None,
    ) -> list[StylistBlockedSlot]:
        result = await self.session.execute(
            select(StylistBlockedSlot)
            .where(
                StylistBlockedSlot.tenant_id == tenant_id,
                StylistBlockedSlot.stylist_id == stylist_id,
                StylistBlockedSlot.blocked_date >= date_from,
                StylistBlockedSlot.blocked_date <= (date_to or date_from),
            )
            .order_by(StylistBlockedSlot.blocked_date, StylistBlockedSlot.start_time)
        )
        return list(result.scalars().all())

    async def get_blocked_slot(self, tenant_id: uuid.UUID, slot_id: uuid.UUID) -> StylistBlockedSlot | None:
        result = await self.session.execute(
            select(StylistBlockedSlot).where(
                StylistBlockedSlot.id == slot_id, StylistBlockedSlot.tenant_id == tenant_id
            )
        )
        return result.scalar_one_or_none()

    # ── Appointments ─────────────────────────────────────────────────

    async def get_appointment(self, tenant_id: uuid.UUID, appointment_id: uuid.UUID) -> Appointment | None:
        result = await self.session.execute(
            select(Appointment).where(
                Appointment.id == appointment_id,
                Appointment.tenant_id == tenant_id,
                Appointment.deleted_at.is_(None),
            )
        )
        return result.scalar_one_or_none()

    async def list_stylist_appointments(
        self,
        tenant_id: uuid.UUID,
        stylist_id: uuid.UUID,
        date_from: date,
        date_to: date | None = None,
        *,
        exclude_id: uuid.UUID | None = None,
    ) -> list[Appointment]:
        stmt = _active_appointments(tenant_id).where(
            Appointment.stylist_id == stylist_id,
            Appointment.scheduled_date >= date_from,
            Appointment.scheduled_date <= (date_to or date_from),
        )
        if exclude_id is not None:
            stmt = stmt.where(Appointment.id != exclude_id)
        result = await self.session.execute(
            stmt.order_by(Appointment.scheduled_date, Appointment.scheduled_time)
        )
        return list(result.scalars().all())

    async def count_stylist_appointments(self, tenant_id: uuid.UUID, stylist_id: uuid.UUID, on_date: date) -> int:
        result = await self.session.execute(
            select(func.count(Appointment.id)).where(
                Appointment.tenant_id == tenant_id,
                Appointment.deleted_at.is_(None),
                Appointment.status.not_in(INACTIVE_APPOINTMENT_STATUSES),
                Appointment.stylist_id == stylist_id,
                Appointment.scheduled_date == on_date,
            )
        )
        return result.scalar_one()

    async def list_appointments(
        self, tenant_id: uuid.UUID, filters: AppointmentListFilters
    ) -> tuple[list[Appointment], int]:
        stmt = select(Appointment).where(
            Appointment.tenant_id == tenant_id,
            Appointment.deleted_at.is_(None),
        )
        if filters.branch_id is not None:
            stmt = stmt.where(Appointment.branch_id == filters.branch_id)
        if filters.stylist_id is not None:
            stmt = stmt.where(Appointment.stylist_id == filters.stylist_id)
        if filters.customer_id is not None:
            stmt = stmt.where(Appointment.customer_id == filters.customer_id)
        if filters.status:
            stmt = stmt.where(Appointment.status.in_([s.value for s in filters.status]))
        if filters.booking_type:
            stmt = stmt.where(Appointment.booking_type.in_([b.value for b in filters.booking_type]))
        if filters.date_from is not None:
            stmt = stmt.where(Appointment.scheduled_date >= filters.date_from)
        if filters.date_to is not None:
            stmt = stmt.where(Appointment.scheduled_date <= filters.date_to)
        if filters.search:
            pattern = f"%{filters.search}%"
            stmt = stmt.where(
                or_(Appointment.customer_name.ilike(pattern), Appointment.customer_phone.ilike(pattern))
            )

        total = (await self.session.execute(select(func.count()).select_from(stmt.subquery()))).scalar_one()

        column = getattr(Appointment, filters.sort_by)
        order = column.asc() if filters.sort_order == "asc" else column.desc()
        result = await self.session.execute(
            stmt.order_by(order, Appointment.id)
            .offset((filters.page - 1) * filters.limit)
            .limit(filters.limit)
        )
        return list(result.scalars().all()), total

    async def list_unassigned(
        self, tenant_id: uuid.UUID, branch_id: uuid.UUID, on_date: date | None = None
    ) -> list[Appointment]:
        stmt = _active_appointments(tenant_id).where(
            Appointment.branch_id == branch_id,
            Appointment.stylist_id.is_(None),
        )
        if on_date is not None:
            stmt = stmt.where(Appointment.scheduled_date == on_date)
        result = await self.session.execute(
            stmt.order_by(Appointment.scheduled_date, Appointment.scheduled_time)
        )
        return list(result.scalars().all())

    async def count_unassigned(self, tenant_id: uuid.UUID, branch_id: uuid.UUID, on_date: date) -> int:
        result = await self.session.execute(
            select(func.count(Appointment.id)).where(
                Appointment.tenant_id == tenant_id,
                Appointment.deleted_at.is_(None),
                Appointment.status.not_in(INACTIVE_APPOINTMENT_STATUSES),
                Appointment.branch_id == branch_id,
                Appointment.stylist_id.is_(None),
                Appointment.scheduled_date == on_date,
            )
        )
        return result.scalar_one()

    async def list_status_history(
        self, tenant_id: uuid.UUID, appointment_id: uuid.UUID
    ) -> list[AppointmentStatusHistory]:
        result = await self.session.execute(
            select(AppointmentStatusHistory)
            .where(
                AppointmentStatusHistory.tenant_id == tenant_id,
                AppointmentStatusHistory.appointment_id == appointment_id,
            )
            .order_by(AppointmentStatusHistory.created_at)
        )
        return list(result.scalars().all())

    # ── Walk-in queue ────────────────────────────────────────────────

    async def get_queue_entry(
        self, tenant_id: uuid.UUID, entry_id: uuid.UUID, *, for_update: bool = False
    ) -> WalkInQueueEntry | None:
        stmt = select(WalkInQueueEntry).where(
            WalkInQueueEntry.id == entry_id, WalkInQueueEntry.tenant_id == tenant_id
        )
        if for_update:
            stmt = stmt.with_for_update().execution_options(populate_existing=True)
        result = await self.session.execute(stmt)
        return result.scalar_one_or_none()

    async def max_token(self, tenant_id: uuid.UUID, branch_id: uuid.UUID, queue_date: date) -> int | None:
        result = await self.session.execute(
            select(func.max(WalkInQueueEntry.token_number)).where(
                WalkInQueueEntry.tenant_id == tenant_id,
                WalkInQueueEntry.branch_id == branch_id,
                WalkInQueueEntry.queue_date == queue_date,
            )
        )
        return result.scalar_one_or_none()

    async def list_queue(
        self,
        tenant_id: uuid.UUID,
        branch_id: uuid.UUID,
        queue_date: date,
        statuses: Sequence[str] | None = None,
    ) -> list[WalkInQueueEntry]:
        stmt = select(WalkInQueueEntry).where(
            WalkInQueueEntry.tenant_id == tenant_id,
            WalkInQueueEntry.branch_id == branch_id,
            WalkInQueueEntry.queue_date == queue_date,
        )
        if statuses is not None:
            stmt = stmt.where(WalkInQueueEntry.status.in_(list(statuses)))
        result = await self.session.execute(
            stmt.order_by(WalkInQueueEntry.created_at, WalkInQueueEntry.token_number)
        )
        return list(result.scalars().all())

    async def count_queue(
        self,
        tenant_id: uuid.UUID,
        branch_id: uuid.UUID,
        queue_date: date,
        statuses: Sequence[str],
    ) -> int:
        result = await self.session.execute(
            select(func.count(WalkInQueueEntry.id)).where(
                WalkInQueueEntry.tenant_id == tenant_id,
                WalkInQueueEntry.branch_id == branch_id,
                WalkInQueueEntry.queue_date == queue_date,
                WalkInQueueEntry.status.in_(list(statuses)),
            )
        )
        return result.scalar_one()

    # ── Unit of work ─────────────────────────────────────────────────

    def add(self, obj: Any) -> None:
        self.session.add(obj)

    async def delete(self, obj: Any) -> None:
        await self.session.delete(obj)

    async def flush(self) -> None:
        await self.session.flush()

    @contextlib.asynccontextmanager
    async def transaction(self) -> AsyncIterator[None]:
        """Commit on exit of the outermost block; inner blocks run in a SAVEPOINT.

        Reads issued before the block share its transaction, since the session
        autobegins on first use.
        """
        if self._depth:
            self._depth += 1
            try:
                async with self.session.begin_nested():
                    yield
            finally:
                self._depth -= 1
            return

        self._depth = 1
        try:
            yield
        except BaseException:
            await self.session.rollback()
            raise
        else:
            await self.session.commit()
        finally:
            self._depth = 0

    @contextlib.asynccontextmanager
    async def queue_lock(self, branch_id: uuid.UUID, queue_date: date) -> AsyncIterator[None]:
        """Transaction-scoped advisory lock on one branch-day of the queue."""
        await self.session.execute(
            text("SELECT pg_advisory_xact_lock(:key)"),
            {"key": advisory_lock_key(branch_id, queue_date)},
        )
        yield


async def get_repository() -> AsyncGenerator[SqlAlchemyRepository, None]:
    """FastAPI dependency: one session-backed repository per request."""
    async with async_session_factory() as session:
        yield SqlAlchemyRepository(session)

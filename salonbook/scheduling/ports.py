"""Persistence port consumed by the scheduling services.

The services never touch a session directly; they receive an object
implementing ``SchedulingRepository``. Production wires in
``salonbook.db.repository.SqlAlchemyRepository``; tests use an in-memory
implementation of the same protocol.

All reads are scoped to a tenant and skip soft-deleted rows. "Active"
appointments are those whose status still occupies a stylist's time
(anything except cancelled, no_show and rescheduled).
"""

from __future__ import annotations

import uuid
from collections.abc import Sequence
from contextlib import AbstractAsyncContextManager
from datetime import date
from typing import Any, Protocol

from salonbook.models.appointment import Appointment, AppointmentStatusHistory
from salonbook.models.branch import Branch
from salonbook.models.catalog import CatalogService
from salonbook.models.customer import Customer
from salonbook.models.queue import WalkInQueueEntry
from salonbook.models.schedule import StylistBlockedSlot, StylistBreak
from salonbook.models.staff import Staff
from salonbook.schemas.appointments import AppointmentListFilters


class SchedulingRepository(Protocol):
    """Everything the availability, lifecycle and queue services read or write."""

    # ── Branches, staff, catalog, customers ──────────────────────────

    async def get_branch(self, tenant_id: uuid.UUID, branch_id: uuid.UUID) -> Branch | None: ...

    async def list_stylists(
        self,
        tenant_id: uuid.UUID,
        branch_id: uuid.UUID,
        *,
        stylist_id: uuid.UUID | None = None,
        gender: str | None = None,
    ) -> list[Staff]:
        """Active stylists assigned to the branch, ordered by name."""
        ...

    async def get_stylist(self, tenant_id: uuid.UUID, stylist_id: uuid.UUID) -> Staff | None: ...

    async def count_stylists(self, tenant_id: uuid.UUID, branch_id: uuid.UUID) -> int: ...

    async def get_services(self, tenant_id: uuid.UUID, service_ids: Sequence[uuid.UUID]) -> list[CatalogService]:
        """Active catalog services among ``service_ids``; missing ids are simply absent."""
        ...

    async def get_customer(self, tenant_id: uuid.UUID, customer_id: uuid.UUID) -> Customer | None: ...

    # ── Breaks and blocked slots ─────────────────────────────────────

    async def list_breaks(
        self,
        tenant_id: uuid.UUID,
        stylist_id: uuid.UUID,
        *,
        day_of_week: int | None = None,
    ) -> list[StylistBreak]:
        """Active breaks; with ``day_of_week``, only that day's and the every-day ones."""
        ...

    async def get_break(self, tenant_id: uuid.UUID, break_id: uuid.UUID) -> StylistBreak | None: ...

    async def list_blocked_slots(
        self,
        tenant_id: uuid.UUID,
        stylist_id: uuid.UUID,
        date_from: date,
        date_to: date | None = None,
    ) -> list[StylistBlockedSlot]:
        """Blocks dated within ``[date_from, date_to]`` (a single day when ``date_to`` is None)."""
        ...

    async def get_blocked_slot(self, tenant_id: uuid.UUID, slot_id: uuid.UUID) -> StylistBlockedSlot | None: ...

    # ── Appointments ─────────────────────────────────────────────────

    async def get_appointment(self, tenant_id: uuid.UUID, appointment_id: uuid.UUID) -> Appointment | None: ...

    async def list_stylist_appointments(
        self,
        tenant_id: uuid.UUID,
        stylist_id: uuid.UUID,
        date_from: date,
        date_to: date | None = None,
        *,
        exclude_id: uuid.UUID | None = None,
    ) -> list[Appointment]:
        """Active appointments of a stylist, ordered by date then time."""
        ...

    async def count_stylist_appointments(self, tenant_id: uuid.UUID, stylist_id: uuid.UUID, on_date: date) -> int:
        """Active appointments already booked for a stylist on a date."""
        ...

    async def list_appointments(
        self, tenant_id: uuid.UUID, filters: AppointmentListFilters
    ) -> tuple[list[Appointment], int]:
        """One page of appointments matching ``filters`` and the unpaginated total."""
        ...

    async def list_unassigned(
        self, tenant_id: uuid.UUID, branch_id: uuid.UUID, on_date: date | None = None
    ) -> list[Appointment]:
        """Active appointments with no stylist, from ``on_date`` (or all), oldest slot first."""
        ...

    async def count_unassigned(self, tenant_id: uuid.UUID, branch_id: uuid.UUID, on_date: date) -> int: ...

    async def list_status_history(
        self, tenant_id: uuid.UUID, appointment_id: uuid.UUID
    ) -> list[AppointmentStatusHistory]: ...

    # ── Walk-in queue ────────────────────────────────────────────────

    async def get_queue_entry(
        self, tenant_id: uuid.UUID, entry_id: uuid.UUID, *, for_update: bool = False
    ) -> WalkInQueueEntry | None:
        """Load one entry; ``for_update`` row-locks it and refreshes any cached copy."""
        ...

    async def max_token(self, tenant_id: uuid.UUID, branch_id: uuid.UUID, queue_date: date) -> int | None: ...

    async def list_queue(
        self,
        tenant_id: uuid.UUID,
        branch_id: uuid.UUID,
        queue_date: date,
        statuses: Sequence[str] | None = None,
    ) -> list[WalkInQueueEntry]:
        """Entries for the day, ordered by creation time then token."""
        ...

    async def count_queue(
        self,
        tenant_id: uuid.UUID,
        branch_id: uuid.UUID,
        queue_date: date,
        statuses: Sequence[str],
    ) -> int: ...

    # ── Unit of work ─────────────────────────────────────────────────

    def add(self, obj: Any) -> None: ...

    async def delete(self, obj: Any) -> None: ...

    async def flush(self) -> None: ...

    def transaction(self) -> AbstractAsyncContextManager[None]:
        """All writes inside the block commit together or not at all."""
        ...

    def queue_lock(self, branch_id: uuid.UUID, queue_date: date) -> AbstractAsyncContextManager[None]:
        """Serialize token and position updates for one branch-day.

        Must be entered inside ``transaction()``; released when it ends.
        """
        ...

"""Appointment lifecycle service — booking, status transitions, reschedules.

Every write sequence runs inside ``repo.transaction()``; events are emitted
only once that block has exited cleanly, so subscribers never observe a
booking that was rolled back.

Prices are computed once, at booking time, and copied verbatim when an
appointment is rescheduled.
"""

from __future__ import annotations

import logging
import uuid
from collections.abc import Awaitable, Callable, Sequence
from datetime import date, datetime
from decimal import Decimal
from typing import Any

from salonbook.config import settings
from salonbook.events import emit
from salonbook.models.appointment import Appointment, AppointmentLineItem, AppointmentStatusHistory
from salonbook.models.base import utcnow
from salonbook.models.catalog import CatalogService
from salonbook.models.customer import Customer
from salonbook.models.enums import (
    AppointmentAction,
    AppointmentStatus,
    BookingType,
    ConflictAction,
    CustomerBookingStatus,
    LineItemStatus,
    PrepaymentStatus,
)
from salonbook.models.staff import Staff
from salonbook.scheduling.availability import AvailabilityService
from salonbook.scheduling.errors import (
    BusinessRuleError,
    InputValidationError,
    InvalidTransitionError,
    NotFoundError,
    SchedulingConflictError,
)
from salonbook.scheduling.ports import SchedulingRepository
from salonbook.scheduling.states import is_terminal, next_status
from salonbook.scheduling.timeutils import add_minutes, fits_before, times_overlap
from salonbook.schemas.appointments import (
    AppointmentListFilters,
    AppointmentPage,
    BookingResult,
    CancelInput,
    ConflictActionInput,
    ConflictInfo,
    CreateAppointmentInput,
    ProcessedConflict,
    RescheduleInput,
    RescheduleResult,
    UpdateAppointmentInput,
)
from salonbook.schemas.events import EventType, SystemEvent

logger = logging.getLogger(__name__)

CENT = Decimal("0.01")
SOURCE = "scheduling.appointments"

LINE_STATUS_ON: dict[AppointmentStatus, LineItemStatus] = {
    AppointmentStatus.IN_PROGRESS: LineItemStatus.IN_PROGRESS,
    AppointmentStatus.COMPLETED: LineItemStatus.COMPLETED,
    AppointmentStatus.CANCELLED: LineItemStatus.CANCELLED,
    AppointmentStatus.NO_SHOW: LineItemStatus.CANCELLED,
}


def _money(value: Decimal) -> Decimal:
    return value.quantize(CENT)


def _actor(user_id: uuid.UUID | None) -> str:
    return str(user_id) if user_id else "system"


def price_line(
    service: CatalogService,
    branch_id: uuid.UUID,
    quantity: int,
    stylist_id: uuid.UUID | None,
    tenant_id: uuid.UUID,
    appointment_id: uuid.UUID,
) -> AppointmentLineItem:
    """Snapshot one service's price, tax, duration and commission."""
    unit_price = _money(service.price_for_branch(branch_id))
    tax_rate = Decimal(service.tax_rate or 0)
    commission_rate = Decimal(service.commission_value or 0)
    line_subtotal = unit_price * quantity
    tax_amount = _money(line_subtotal * tax_rate / 100)
    return AppointmentLineItem(
        id=uuid.uuid4(),
        tenant_id=tenant_id,
        appointment_id=appointment_id,
        service_id=service.id,
        service_name=service.name,
        service_sku=service.sku,
        stylist_id=stylist_id,
        unit_price=unit_price,
        quantity=quantity,
        tax_rate=tax_rate,
        tax_amount=tax_amount,
        total_amount=_money(line_subtotal + tax_amount),
        duration_minutes=service.duration_minutes * quantity,
        commission_rate=commission_rate,
        commission_amount=_money(line_subtotal * commission_rate / 100),
        status=LineItemStatus.PENDING.value,
    )


def to_conflict_info(appointment: Appointment) -> ConflictInfo:
    return ConflictInfo(
        id=appointment.id,
        customer_id=appointment.customer_id,
        customer_name=appointment.customer_name,
        customer_phone=appointment.customer_phone,
        stylist_id=appointment.stylist_id,
        scheduled_time=appointment.scheduled_time,
        end_time=appointment.end_time,
        status=appointment.status,
        services=[line.service_name for line in appointment.line_items],
    )


class AppointmentLifecycleService:
    """Creates, transitions, cancels and reschedules appointments."""

    def __init__(
        self,
        repo: SchedulingRepository,
        availability: AvailabilityService | None = None,
        *,
        max_reschedules: int | None = None,
        no_show_prepaid_threshold: int | None = None,
        no_show_block_threshold: int | None = None,
        clock: Callable[[], datetime] = utcnow,
    ) -> None:
        self.repo = repo
        self.availability = availability or AvailabilityService(repo)
        cfg = settings.scheduling
        self.max_reschedules = max_reschedules if max_reschedules is not None else cfg.max_reschedules
        self.no_show_prepaid_threshold = no_show_prepaid_threshold or cfg.no_show_prepaid_threshold
        self.no_show_block_threshold = no_show_block_threshold or cfg.no_show_block_threshold
        self.clock = clock

    # ── Queries ──────────────────────────────────────────────────────

    async def get_appointments(self, tenant_id: uuid.UUID, filters: AppointmentListFilters) -> AppointmentPage:
        items, total = await self.repo.list_appointments(tenant_id, filters)
        return AppointmentPage(items=items, page=filters.page, limit=filters.limit, total=total)

    async def get_appointment_by_id(self, tenant_id: uuid.UUID, appointment_id: uuid.UUID) -> Appointment:
        """Load one appointment (with its service lines).

        Raises:
            NotFoundError: If it does not exist for the tenant or is soft-deleted.
        """
        appointment = await self.repo.get_appointment(tenant_id, appointment_id)
        if appointment is None:
            raise NotFoundError("Appointment not found", details={"appointment_id": str(appointment_id)})
        return appointment

    async def get_status_history(
        self, tenant_id: uuid.UUID, appointment_id: uuid.UUID
    ) -> list[AppointmentStatusHistory]:
        await self.get_appointment_by_id(tenant_id, appointment_id)
        return await self.repo.list_status_history(tenant_id, appointment_id)

    async def get_unassigned_appointments(
        self, tenant_id: uuid.UUID, branch_id: uuid.UUID, on_date: date | None = None
    ) -> list[Appointment]:
        return await self.repo.list_unassigned(tenant_id, branch_id, on_date)

    async def get_unassigned_count(self, tenant_id: uuid.UUID, branch_id: uuid.UUID) -> int:
        """Unassigned appointments booked for today."""
        return await self.repo.count_unassigned(tenant_id, branch_id, self.clock().date())

    async def check_conflicts(
        self,
        tenant_id: uuid.UUID,
        stylist_id: uuid.UUID,
        on_date: date,
        start_time: str,
        end_time: str,
        *,
        exclude_id: uuid.UUID | None = None,
    ) -> list[ConflictInfo]:
        """Active bookings of the stylist overlapping ``[start_time, end_time)``."""
        existing = await self.repo.list_stylist_appointments(tenant_id, stylist_id, on_date, exclude_id=exclude_id)
        return [
            to_conflict_info(a)
            for a in existing
            if times_overlap(start_time, end_time, a.scheduled_time, a.end_time)
        ]

    # ── Booking ──────────────────────────────────────────────────────

    async def create_appointment(
        self,
        tenant_id: uuid.UUID,
        data: CreateAppointmentInput,
        user_id: uuid.UUID | None = None,
        *,
        force_override: bool = False,
        override_reason: str | None = None,
        conflict_actions: Sequence[ConflictActionInput] | None = None,
    ) -> BookingResult:
        """Book an appointment with locked prices.

        Without ``force_override`` an overlapping booking raises
        ``SchedulingConflictError`` listing the conflicts. With it, each
        conflicting booking is kept (and flagged) or cancelled according to
        ``conflict_actions``; unlisted ones are kept.

        Raises:
            NotFoundError: Unknown branch, customer or stylist.
            InputValidationError: Unknown or inactive services, or a booking past midnight.
            BusinessRuleError: A blocked customer booking online.
            SchedulingConflictError: Overlap without override, or nobody free to auto-assign.
        """
        async with self.repo.transaction():
            result = await self.book(
                tenant_id,
                data,
                user_id,
                force_override=force_override,
                override_reason=override_reason,
                conflict_actions=conflict_actions,
            )
        for event in result.events:
            await emit(event)
        return result

    async def book(
        self,
        tenant_id: uuid.UUID,
        data: CreateAppointmentInput,
        user_id: uuid.UUID | None = None,
        *,
        force_override: bool = False,
        override_reason: str | None = None,
        conflict_actions: Sequence[ConflictActionInput] | None = None,
    ) -> BookingResult:
        """Write a booking inside the caller's open ``repo.transaction()``.

        Nothing is emitted; ``result.events`` is for the caller to emit once
        its own transaction has committed.
        """
        branch = await self.availability.require_branch(tenant_id, data.branch_id)
        services = await self._resolve_services(tenant_id, [s.service_id for s in data.services])

        customer: Customer | None = None
        if data.customer_id is not None:
            customer = await self.repo.get_customer(tenant_id, data.customer_id)
            if customer is None:
                raise NotFoundError("Customer not found", details={"customer_id": str(data.customer_id)})
            if (
                customer.booking_status == CustomerBookingStatus.BLOCKED.value
                and data.booking_type == BookingType.ONLINE
            ):
                raise BusinessRuleError(
                    "Customer is blocked from online booking. Please contact the salon.",
                    code="CUSTOMER_BLOCKED",
                    details={"customer_id": str(customer.id)},
                )

        stylist_id = data.stylist_id
        if stylist_id is not None:
            await self._require_stylist(tenant_id, stylist_id, branch.id)

        appointment_id = uuid.uuid4()
        lines = [
            price_line(
                services[req.service_id],
                branch.id,
                req.quantity,
                req.stylist_id or stylist_id,
                tenant_id,
                appointment_id,
            )
            for req in data.services
        ]
        total_duration = sum(line.duration_minutes for line in lines)
        end_time = self._end_time(data.scheduled_time, total_duration)

        subtotal = sum((line.unit_price * line.quantity for line in lines), Decimal("0"))
        tax_amount = sum((line.tax_amount for line in lines), Decimal("0"))
        total_amount = _money(subtotal + tax_amount)

        prepayment_required = (
            customer is not None
            and customer.booking_status == CustomerBookingStatus.PREPAID_ONLY.value
            and data.booking_type == BookingType.ONLINE
        )

        processed: list[ProcessedConflict] = []
        if stylist_id is None and not data.assign_later:
            stylist_id = await self.availability.auto_assign_stylist(
                tenant_id,
                branch.id,
                data.scheduled_date,
                data.scheduled_time,
                total_duration,
                data.stylist_gender_preference,
            )
            if stylist_id is None:
                raise SchedulingConflictError("No stylist is available at the requested time", [])
            for line in lines:
                line.stylist_id = line.stylist_id or stylist_id

        has_conflict = False
        if stylist_id is not None:
            conflicts = await self.check_conflicts(
                tenant_id, stylist_id, data.scheduled_date, data.scheduled_time, end_time
            )
            if conflicts and not force_override:
                raise SchedulingConflictError(
                    f"Stylist has {len(conflicts)} overlapping appointment(s) at this time",
                    conflicts,
                )
            if conflicts:
                processed = await self._apply_conflict_actions(
                    tenant_id, conflicts, conflict_actions or [], override_reason, user_id
                )
                has_conflict = any(p.action == ConflictAction.KEEP for p in processed)

        now = self.clock()
        appointment = Appointment(
            id=appointment_id,
            tenant_id=tenant_id,
            branch_id=branch.id,
            customer_id=data.customer_id,
            customer_name=data.customer_name,
            customer_phone=data.customer_phone,
            scheduled_date=data.scheduled_date,
            scheduled_time=data.scheduled_time,
            end_time=end_time,
            total_duration=total_duration,
            stylist_id=stylist_id,
            stylist_gender_preference=(
                data.stylist_gender_preference.value if data.stylist_gender_preference else None
            ),
            booking_type=data.booking_type.value,
            booking_source=data.booking_source,
            status=AppointmentStatus.BOOKED.value,
            subtotal=_money(subtotal),
            tax_amount=_money(tax_amount),
            total_amount=total_amount,
            price_locked_at=now,
            prepayment_required=prepayment_required,
            prepayment_amount=total_amount if prepayment_required else Decimal("0.00"),
            prepayment_status=PrepaymentStatus.PENDING.value if prepayment_required else None,
            customer_notes=data.customer_notes,
            internal_notes=data.internal_notes,
            reschedule_count=0,
            is_salon_cancelled=False,
            has_conflict=has_conflict,
            conflict_notes=self._override_note(override_reason, processed) if has_conflict else None,
            conflict_marked_at=now if has_conflict else None,
            created_by=user_id,
            line_items=lines,
        )
        self.repo.add(appointment)
        await self.repo.flush()
        self._record_history(appointment, None, AppointmentStatus.BOOKED, user_id, "Appointment booked")
        await self.repo.flush()

        logger.info(
            "Appointment booked: id=%s branch=%s stylist=%s %s %s-%s total=%s",
            appointment.id,
            branch.id,
            stylist_id,
            appointment.scheduled_date,
            appointment.scheduled_time,
            appointment.end_time,
            total_amount,
        )
        events = [
            self._event(
                EventType.APPOINTMENT_BOOKED,
                appointment,
                user_id,
                {
                    "booking_type": appointment.booking_type,
                    "scheduled_date": appointment.scheduled_date.isoformat(),
                    "scheduled_time": appointment.scheduled_time,
                    "stylist_id": str(stylist_id) if stylist_id else None,
                    "total_amount": str(total_amount),
                },
            )
        ]
        if processed:
            logger.warning(
                "Conflict override on appointment %s: %d conflict(s), reason=%r",
                appointment.id,
                len(processed),
                override_reason,
            )
            events.append(self._event(
                EventType.CONFLICT_OVERRIDE,
                appointment,
                user_id,
                {
                    "reason": override_reason,
                    "conflicts": [p.model_dump(mode="json") for p in processed],
                },
            ))

        return BookingResult(
            appointment=appointment,
            processed_conflicts=processed,
            prepayment_required=prepayment_required,
            prepayment_amount=total_amount if prepayment_required else None,
            events=events,
        )

    async def _resolve_services(
        self, tenant_id: uuid.UUID, service_ids: list[uuid.UUID]
    ) -> dict[uuid.UUID, CatalogService]:
        found = {s.id: s for s in await self.repo.get_services(tenant_id, service_ids)}
        missing = set(service_ids) - found.keys()
        if missing:
            raise InputValidationError(
                "One or more services are not available",
                details={"service_ids": sorted(str(s) for s in missing)},
            )
        return found

    async def _require_stylist(self, tenant_id: uuid.UUID, stylist_id: uuid.UUID, branch_id: uuid.UUID) -> Staff:
        stylist = await self.repo.get_stylist(tenant_id, stylist_id)
        if stylist is None or branch_id not in stylist.branch_ids:
            raise NotFoundError(
                "Stylist not found at this branch",
                details={"stylist_id": str(stylist_id), "branch_id": str(branch_id)},
            )
        return stylist

    @staticmethod
    def _end_time(start: str, duration_minutes: int) -> str:
        if not fits_before(start, duration_minutes, "24:00"):
            raise InputValidationError(
                "Appointment cannot run past midnight",
                details={"scheduled_time": start, "duration_minutes": duration_minutes},
            )
        return add_minutes(start, duration_minutes)

    @staticmethod
    def _override_note(reason: str | None, processed: list[ProcessedConflict]) -> str:
        kept = sum(1 for p in processed if p.action == ConflictAction.KEEP)
        return f"Double-booked by override ({kept} kept): {reason or 'no reason given'}"

    async def _apply_conflict_actions(
        self,
        tenant_id: uuid.UUID,
        conflicts: list[ConflictInfo],
        actions: Sequence[ConflictActionInput],
        override_reason: str | None,
        user_id: uuid.UUID | None,
    ) -> list[ProcessedConflict]:
        requested = {a.appointment_id: a.action for a in actions}
        processed: list[ProcessedConflict] = []
        now = self.clock()
        for conflict in conflicts:
            existing = await self.get_appointment_by_id(tenant_id, conflict.id)
            action = requested.get(conflict.id, ConflictAction.KEEP)
            if action == ConflictAction.CANCEL:
                previous = existing.status
                target = next_status(previous, AppointmentAction.CANCEL, entity_id=existing.id)
                self._set_status(existing, target)
                existing.cancelled_at = now
                existing.cancelled_by = user_id
                existing.cancellation_reason = f"Cancelled by conflict override: {override_reason or 'no reason given'}"
                existing.is_salon_cancelled = True
                self._record_history(existing, previous, target, user_id, existing.cancellation_reason)
            else:
                existing.has_conflict = True
                existing.conflict_notes = f"Overlapped by a forced booking: {override_reason or 'no reason given'}"
                existing.conflict_marked_at = now
            processed.append(ProcessedConflict(id=existing.id, action=action, customer_name=existing.customer_name))
        return processed

    # ── Edits ────────────────────────────────────────────────────────

    async def update_appointment(
        self,
        tenant_id: uuid.UUID,
        appointment_id: uuid.UUID,
        data: UpdateAppointmentInput,
        user_id: uuid.UUID | None = None,
    ) -> Appointment:
        """Change stylist or notes. Times, services and prices stay frozen.

        Raises:
            InvalidTransitionError: If the appointment is in a terminal status.
            SchedulingConflictError: If the new stylist is not free for the slot.
        """
        changes = data.model_dump(exclude_unset=True)
        async with self.repo.transaction():
            appointment = await self.get_appointment_by_id(tenant_id, appointment_id)
            if is_terminal(appointment.status):
                raise InvalidTransitionError("update", appointment.status, entity_id=appointment.id)

            new_stylist = changes.pop("stylist_id", None)
            if new_stylist is not None and new_stylist != appointment.stylist_id:
                await self._ensure_stylist_free(tenant_id, appointment, new_stylist)
                self._reassign(appointment, new_stylist)
            for name, value in changes.items():
                setattr(appointment, name, value)
            await self.repo.flush()

        logger.info("Appointment updated: id=%s fields=%s", appointment.id, sorted(data.model_fields_set))
        await self._emit(
            EventType.APPOINTMENT_UPDATED,
            appointment,
            user_id,
            {"fields": sorted(data.model_fields_set)},
        )
        return appointment

    async def assign_stylist(
        self,
        tenant_id: uuid.UUID,
        appointment_id: uuid.UUID,
        stylist_id: uuid.UUID,
        user_id: uuid.UUID | None = None,
    ) -> Appointment:
        """Give an unassigned (or reassigned) appointment a stylist who is free for it."""
        async with self.repo.transaction():
            appointment = await self.get_appointment_by_id(tenant_id, appointment_id)
            if is_terminal(appointment.status):
                raise InvalidTransitionError("assign stylist", appointment.status, entity_id=appointment.id)
            stylist = await self._ensure_stylist_free(tenant_id, appointment, stylist_id)
            self._reassign(appointment, stylist_id)
            status = AppointmentStatus(appointment.status)
            self._record_history(appointment, status, status, user_id, f"Stylist assigned: {stylist.name}")
            await self.repo.flush()

        logger.info("Stylist %s assigned to appointment %s", stylist_id, appointment.id)
        await self._emit(
            EventType.APPOINTMENT_STYLIST_ASSIGNED,
            appointment,
            user_id,
            {"stylist_id": str(stylist_id), "stylist_name": stylist.name},
        )
        return appointment

    async def _ensure_stylist_free(
        self, tenant_id: uuid.UUID, appointment: Appointment, stylist_id: uuid.UUID
    ) -> Staff:
        stylist = await self._require_stylist(tenant_id, stylist_id, appointment.branch_id)
        available = await self.availability.is_slot_available(
            tenant_id,
            appointment.branch_id,
            stylist_id,
            appointment.scheduled_date,
            appointment.scheduled_time,
            appointment.total_duration,
            exclude_appointment_id=appointment.id,
        )
        if not available:
            conflicts = await self.check_conflicts(
                tenant_id,
                stylist_id,
                appointment.scheduled_date,
                appointment.scheduled_time,
                appointment.end_time,
                exclude_id=appointment.id,
            )
            raise SchedulingConflictError("Stylist is not available at this time", conflicts)
        return stylist

    @staticmethod
    def _reassign(appointment: Appointment, stylist_id: uuid.UUID) -> None:
        previous = appointment.stylist_id
        appointment.stylist_id = stylist_id
        for line in appointment.line_items:
            if line.stylist_id is None or line.stylist_id == previous:
                line.stylist_id = stylist_id

    # ── Status transitions ───────────────────────────────────────────

    async def confirm(
        self, tenant_id: uuid.UUID, appointment_id: uuid.UUID, user_id: uuid.UUID | None = None
    ) -> Appointment:
        return await self._transition(tenant_id, appointment_id, AppointmentAction.CONFIRM, user_id)

    async def check_in(
        self, tenant_id: uuid.UUID, appointment_id: uuid.UUID, user_id: uuid.UUID | None = None
    ) -> Appointment:
        return await self._transition(tenant_id, appointment_id, AppointmentAction.CHECK_IN, user_id)

    async def start(
        self, tenant_id: uuid.UUID, appointment_id: uuid.UUID, user_id: uuid.UUID | None = None
    ) -> Appointment:
        return await self._transition(tenant_id, appointment_id, AppointmentAction.START, user_id)

    async def complete(
        self, tenant_id: uuid.UUID, appointment_id: uuid.UUID, user_id: uuid.UUID | None = None
    ) -> Appointment:
        return await self._transition(tenant_id, appointment_id, AppointmentAction.COMPLETE, user_id)

    async def cancel(
        self,
        tenant_id: uuid.UUID,
        appointment_id: uuid.UUID,
        data: CancelInput,
        user_id: uuid.UUID | None = None,
    ) -> Appointment:
        """Cancel with a mandatory reason."""

        async def record_cancellation(appointment: Appointment) -> None:
            appointment.cancelled_at = self.clock()
            appointment.cancelled_by = user_id
            appointment.cancellation_reason = data.reason
            appointment.is_salon_cancelled = data.is_salon_cancelled

        return await self._transition(
            tenant_id,
            appointment_id,
            AppointmentAction.CANCEL,
            user_id,
            notes=data.reason,
            apply=record_cancellation,
            event_type=EventType.APPOINTMENT_CANCELLED,
        )

    async def mark_no_show(
        self,
        tenant_id: uuid.UUID,
        appointment_id: uuid.UUID,
        user_id: uuid.UUID | None = None,
        notes: str | None = None,
    ) -> Appointment:
        """Mark a no-show and tighten the customer's booking privileges.

        Two no-shows put the customer on prepayment, three block online booking.
        """

        async def penalize_customer(appointment: Appointment) -> None:
            if appointment.customer_id is None:
                return
            customer = await self.repo.get_customer(tenant_id, appointment.customer_id)
            if customer is None:
                return
            customer.no_show_count = (customer.no_show_count or 0) + 1
            if customer.no_show_count >= self.no_show_block_threshold:
                customer.booking_status = CustomerBookingStatus.BLOCKED.value
            elif (
                customer.no_show_count >= self.no_show_prepaid_threshold
                and customer.booking_status != CustomerBookingStatus.BLOCKED.value
            ):
                customer.booking_status = CustomerBookingStatus.PREPAID_ONLY.value
            logger.info(
                "Customer %s no-show count=%d booking_status=%s",
                customer.id,
                customer.no_show_count,
                customer.booking_status,
            )

        return await self._transition(
            tenant_id,
            appointment_id,
            AppointmentAction.MARK_NO_SHOW,
            user_id,
            notes=notes,
            apply=penalize_customer,
            event_type=EventType.APPOINTMENT_NO_SHOW,
        )

    async def _transition(
        self,
        tenant_id: uuid.UUID,
        appointment_id: uuid.UUID,
        action: AppointmentAction,
        user_id: uuid.UUID | None,
        *,
        notes: str | None = None,
        apply: Callable[[Appointment], Awaitable[None]] | None = None,
        event_type: EventType = EventType.APPOINTMENT_STATUS_CHANGED,
    ) -> Appointment:
        async with self.repo.transaction():
            appointment = await self.get_appointment_by_id(tenant_id, appointment_id)
            previous = AppointmentStatus(appointment.status)
            target = next_status(previous, action, entity_id=appointment.id)
            self._set_status(appointment, target)
            if apply is not None:
                await apply(appointment)
            self._record_history(appointment, previous, target, user_id, notes)
            await self.repo.flush()

        logger.info("Appointment %s: %s -> %s (%s)", appointment.id, previous.value, target.value, action.value)
        await self._emit(
            event_type,
            appointment,
            user_id,
            {"action": action.value, "from_status": previous.value, "to_status": target.value},
        )
        return appointment

    # ── Reschedule ───────────────────────────────────────────────────

    async def reschedule(
        self,
        tenant_id: uuid.UUID,
        appointment_id: uuid.UUID,
        data: RescheduleInput,
        user_id: uuid.UUID | None = None,
    ) -> RescheduleResult:
        """Supersede an appointment with a new one at another slot.

        The original is frozen as ``rescheduled`` and linked forward; the new
        record copies customer, services and the exact locked prices, and
        points ``original_appointment_id`` at the first appointment of the chain.

        Raises:
            InvalidTransitionError: If the status cannot be rescheduled.
            BusinessRuleError: Once the chain has been rescheduled the maximum number of times.
            SchedulingConflictError: If the stylist is busy at the new slot.
        """
        async with self.repo.transaction():
            original = await self.get_appointment_by_id(tenant_id, appointment_id)
            previous = AppointmentStatus(original.status)
            target = next_status(previous, AppointmentAction.RESCHEDULE, entity_id=original.id)
            if original.reschedule_count >= self.max_reschedules:
                raise BusinessRuleError(
                    f"Maximum reschedule limit ({self.max_reschedules}) reached",
                    code="RESCHEDULE_LIMIT",
                    details={"appointment_id": str(original.id), "reschedule_count": original.reschedule_count},
                )

            stylist_id = data.stylist_id or original.stylist_id
            if data.stylist_id is not None:
                await self._require_stylist(tenant_id, data.stylist_id, original.branch_id)

            end_time = self._end_time(data.new_time, original.total_duration)
            if stylist_id is not None:
                conflicts = await self.check_conflicts(
                    tenant_id, stylist_id, data.new_date, data.new_time, end_time, exclude_id=original.id
                )
                if conflicts:
                    raise SchedulingConflictError(
                        f"Stylist has {len(conflicts)} overlapping appointment(s) at the new time",
                        conflicts,
                    )

            new_id = uuid.uuid4()
            replacement = Appointment(
                id=new_id,
                tenant_id=tenant_id,
                branch_id=original.branch_id,
                customer_id=original.customer_id,
                customer_name=original.customer_name,
                customer_phone=original.customer_phone,
                scheduled_date=data.new_date,
                scheduled_time=data.new_time,
                end_time=end_time,
                total_duration=original.total_duration,
                stylist_id=stylist_id,
                stylist_gender_preference=original.stylist_gender_preference,
                booking_type=original.booking_type,
                booking_source=original.booking_source,
                status=AppointmentStatus.BOOKED.value,
                subtotal=original.subtotal,
                tax_amount=original.tax_amount,
                total_amount=original.total_amount,
                price_locked_at=original.price_locked_at,
                prepayment_required=original.prepayment_required,
                prepayment_amount=original.prepayment_amount,
                prepayment_status=original.prepayment_status,
                customer_notes=original.customer_notes,
                internal_notes=original.internal_notes,
                reschedule_count=original.reschedule_count + 1,
                original_appointment_id=original.original_appointment_id or original.id,
                is_salon_cancelled=False,
                has_conflict=False,
                created_by=user_id,
                line_items=[self._copy_line(line, new_id, data.stylist_id) for line in original.line_items],
            )
            self.repo.add(replacement)
            await self.repo.flush()

            self._set_status(original, target)
            original.rescheduled_to_id = replacement.id
            self._record_history(original, previous, target, user_id, data.reason or f"Rescheduled to {new_id}")
            self._record_history(
                replacement,
                None,
                AppointmentStatus.BOOKED,
                user_id,
                f"Rescheduled from {original.id}" + (f": {data.reason}" if data.reason else ""),
            )
            await self.repo.flush()

        logger.info(
            "Appointment %s rescheduled to %s (%s %s), count=%d",
            original.id,
            replacement.id,
            replacement.scheduled_date,
            replacement.scheduled_time,
            replacement.reschedule_count,
        )
        await self._emit(
            EventType.APPOINTMENT_RESCHEDULED,
            replacement,
            user_id,
            {
                "original_appointment_id": str(original.id),
                "chain_root_id": str(replacement.original_appointment_id),
                "new_date": data.new_date.isoformat(),
                "new_time": data.new_time,
                "reschedule_count": replacement.reschedule_count,
            },
        )
        return RescheduleResult(
            original_appointment=original,
            new_appointment=replacement,
            reschedule_count=replacement.reschedule_count,
        )

    @staticmethod
    def _copy_line(
        line: AppointmentLineItem, appointment_id: uuid.UUID, stylist_id: uuid.UUID | None
    ) -> AppointmentLineItem:
        return AppointmentLineItem(
            id=uuid.uuid4(),
            tenant_id=line.tenant_id,
            appointment_id=appointment_id,
            service_id=line.service_id,
            service_name=line.service_name,
            service_sku=line.service_sku,
            stylist_id=stylist_id or line.stylist_id,
            unit_price=line.unit_price,
            quantity=line.quantity,
            tax_rate=line.tax_rate,
            tax_amount=line.tax_amount,
            total_amount=line.total_amount,
            duration_minutes=line.duration_minutes,
            commission_rate=line.commission_rate,
            commission_amount=line.commission_amount,
            status=LineItemStatus.PENDING.value,
        )

    # ── Conflicts ────────────────────────────────────────────────────

    async def resolve_conflict(
        self,
        tenant_id: uuid.UUID,
        appointment_id: uuid.UUID,
        user_id: uuid.UUID | None = None,
        notes: str | None = None,
    ) -> Appointment:
        """Clear the double-booking flag once staff have sorted it out."""
        async with self.repo.transaction():
            appointment = await self.get_appointment_by_id(tenant_id, appointment_id)
            if not appointment.has_conflict:
                raise BusinessRuleError(
                    "Appointment has no conflict to resolve",
                    code="NO_CONFLICT",
                    details={"appointment_id": str(appointment.id)},
                )
            appointment.has_conflict = False
            appointment.conflict_resolved_at = self.clock()
            if notes:
                appointment.conflict_notes = notes
            await self.repo.flush()

        logger.info("Conflict resolved on appointment %s", appointment.id)
        await self._emit(EventType.CONFLICT_RESOLVED, appointment, user_id, {"notes": notes})
        return appointment

    # ── Helpers ──────────────────────────────────────────────────────

    @staticmethod
    def _set_status(appointment: Appointment, status: AppointmentStatus) -> None:
        appointment.status = status.value
        line_status = LINE_STATUS_ON.get(status)
        if line_status is None:
            return
        for line in appointment.line_items:
            if line.status != LineItemStatus.CANCELLED.value:
                line.status = line_status.value

    def _record_history(
        self,
        appointment: Appointment,
        from_status: AppointmentStatus | None,
        to_status: AppointmentStatus,
        user_id: uuid.UUID | None,
        notes: str | None = None,
    ) -> AppointmentStatusHistory:
        entry = AppointmentStatusHistory(
            id=uuid.uuid4(),
            tenant_id=appointment.tenant_id,
            appointment_id=appointment.id,
            from_status=from_status.value if from_status else None,
            to_status=to_status.value,
            changed_by=user_id,
            notes=notes,
        )
        self.repo.add(entry)
        return entry

    @staticmethod
    def _event(
        event_type: EventType,
        appointment: Appointment,
        user_id: uuid.UUID | None,
        data: dict[str, Any],
    ) -> SystemEvent:
        return SystemEvent(
            event_type=event_type,
            tenant_id=appointment.tenant_id,
            branch_id=appointment.branch_id,
            actor_id=_actor(user_id),
            entity_type="appointment",
            entity_id=appointment.id,
            data=data,
            source_module=SOURCE,
        )

    async def _emit(
        self,
        event_type: EventType,
        appointment: Appointment,
        user_id: uuid.UUID | None,
        data: dict[str, Any],
    ) -> None:
        await emit(self._event(event_type, appointment, user_id, data))

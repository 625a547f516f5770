"""Tests for the appointment lifecycle service.

Covers:
- Price locking: tax, commission, quantity, branch price overrides
- Customer booking policy (blocked, prepaid-only) and no-show penalties
- Conflict detection, forced override with keep/cancel, auto-assignment
- The status machine and cancellation bookkeeping
- Reschedule chains, the reschedule limit and price preservation
- Atomicity: a failure mid-sequence leaves the store untouched
- Stylist assignment, edits, conflict resolution and listings
"""

from __future__ import annotations

import uuid
from datetime import datetime, timezone
from decimal import Decimal
from unittest.mock import patch

import pytest
from pydantic import ValidationError

from salonbook.models.appointment import Appointment, AppointmentStatusHistory
from salonbook.models.enums import (
    AppointmentStatus,
    BookingType,
    ConflictAction,
    CustomerBookingStatus,
    LineItemStatus,
)
from salonbook.scheduling.appointments import AppointmentLifecycleService
from salonbook.scheduling.availability import AvailabilityService
from salonbook.scheduling.errors import (
    BusinessRuleError,
    InputValidationError,
    InvalidTransitionError,
    NotFoundError,
    SchedulingConflictError,
)
from salonbook.schemas.appointments import (
    AppointmentListFilters,
    CancelInput,
    ConflictActionInput,
    CreateAppointmentInput,
    RescheduleInput,
    ServiceRequest,
    UpdateAppointmentInput,
)
from salonbook.schemas.events import EventType
from tests.fakes import MONDAY, SUNDAY, TUESDAY, FixedClock

NOW = datetime(2026, 10, 19, 8, 0, tzinfo=timezone.utc)
STAFF_USER = uuid.uuid4()


def _lifecycle(salon, clock: FixedClock | None = None) -> AppointmentLifecycleService:
    availability = AvailabilityService(salon.repo, slot_step_minutes=15, default_service_minutes=30)
    return AppointmentLifecycleService(
        salon.repo,
        availability,
        max_reschedules=3,
        no_show_prepaid_threshold=2,
        no_show_block_threshold=3,
        clock=clock or FixedClock(NOW),
    )


def _booking(salon, *keys: str, stylist=None, time: str = "10:00", on_date=MONDAY, **kwargs) -> CreateAppointmentInput:
    if "customer_id" not in kwargs:
        kwargs.setdefault("customer_name", "Guest Person")
    return CreateAppointmentInput(
        branch_id=salon.branch_id,
        scheduled_date=on_date,
        scheduled_time=time,
        services=[ServiceRequest(service_id=salon.services[k].id) for k in keys or ("cut",)],
        stylist_id=stylist.id if stylist else None,
        booking_type=kwargs.pop("booking_type", BookingType.PHONE),
        **kwargs,
    )


def _event_types(mock) -> list[EventType]:
    return [c.args[0].event_type for c in mock.await_args_list]


# ── Booking and prices ───────────────────────────────────────────────


class TestBooking:
    """create_appointment: totals, line items and the initial history row."""

    @pytest.mark.asyncio()
    async def test_locks_prices_and_totals(self, salon):
        alex = salon.stylists[0]
        result = await _lifecycle(salon).create_appointment(
            salon.tenant_id, _booking(salon, "cut", "colour", stylist=alex), STAFF_USER
        )
        appointment = result.appointment

        assert appointment.status == AppointmentStatus.BOOKED.value
        assert appointment.subtotal == Decimal("120.00")
        assert appointment.tax_amount == Decimal("12.00")
        assert appointment.total_amount == Decimal("132.00")
        assert appointment.total_duration == 90
        assert appointment.end_time == "11:30"
        assert appointment.price_locked_at == NOW
        assert appointment.prepayment_required is False

        cut, colour = appointment.line_items
        assert (cut.unit_price, cut.tax_amount, cut.commission_amount) == (
            Decimal("40.00"), Decimal("4.00"), Decimal("8.00")
        )
        assert (colour.unit_price, colour.tax_amount, colour.commission_amount) == (
            Decimal("80.00"), Decimal("8.00"), Decimal("12.00")
        )
        assert all(line.stylist_id == alex.id for line in appointment.line_items)
        assert all(line.status == LineItemStatus.PENDING.value for line in appointment.line_items)

    @pytest.mark.asyncio()
    async def test_writes_initial_history(self, salon):
        service = _lifecycle(salon)
        result = await service.create_appointment(
            salon.tenant_id, _booking(salon, stylist=salon.stylists[0]), STAFF_USER
        )
        history = await service.get_status_history(salon.tenant_id, result.appointment.id)
        assert len(history) == 1
        assert history[0].from_status is None
        assert history[0].to_status == AppointmentStatus.BOOKED.value
        assert history[0].changed_by == STAFF_USER

    @pytest.mark.asyncio()
    async def test_quantity_multiplies_price_and_duration(self, salon):
        data = _booking(salon, stylist=salon.stylists[0])
        data.services = [ServiceRequest(service_id=salon.services["blowdry"].id, quantity=2)]
        result = await _lifecycle(salon).create_appointment(salon.tenant_id, data)
        assert result.appointment.total_duration == 60
        assert result.appointment.subtotal == Decimal("50.00")
        assert result.appointment.line_items[0].quantity == 2

    @pytest.mark.asyncio()
    async def test_branch_price_override(self, salon):
        salon.add_service("fringe", 15, "20.00", branch_price="15.00")
        result = await _lifecycle(salon).create_appointment(
            salon.tenant_id, _booking(salon, "fringe", stylist=salon.stylists[0])
        )
        assert result.appointment.line_items[0].unit_price == Decimal("15.00")
        assert result.appointment.total_amount == Decimal("15.00")

    @pytest.mark.asyncio()
    async def test_catalog_price_change_does_not_touch_booking(self, salon):
        result = await _lifecycle(salon).create_appointment(
            salon.tenant_id, _booking(salon, stylist=salon.stylists[0])
        )
        salon.services["cut"].base_price = Decimal("55.00")
        stored = await _lifecycle(salon).get_appointment_by_id(salon.tenant_id, result.appointment.id)
        assert stored.total_amount == Decimal("44.00")

    @pytest.mark.asyncio()
    async def test_unknown_service_rejected(self, salon):
        data = _booking(salon, stylist=salon.stylists[0])
        data.services = [ServiceRequest(service_id=uuid.uuid4())]
        with pytest.raises(InputValidationError, match="not available"):
            await _lifecycle(salon).create_appointment(salon.tenant_id, data)
        assert salon.repo.all(Appointment) == []

    @pytest.mark.asyncio()
    async def test_inactive_service_rejected(self, salon):
        salon.services["colour"].is_active = False
        with pytest.raises(InputValidationError):
            await _lifecycle(salon).create_appointment(
                salon.tenant_id, _booking(salon, "colour", stylist=salon.stylists[0])
            )

    @pytest.mark.asyncio()
    async def test_past_midnight_rejected(self, salon):
        with pytest.raises(InputValidationError, match="midnight"):
            await _lifecycle(salon).create_appointment(
                salon.tenant_id, _booking(salon, "colour", stylist=salon.stylists[0], time="23:30")
            )

    @pytest.mark.asyncio()
    async def test_unknown_branch(self, salon):
        data = _booking(salon, stylist=salon.stylists[0])
        data.branch_id = uuid.uuid4()
        with pytest.raises(NotFoundError):
            await _lifecycle(salon).create_appointment(salon.tenant_id, data)

    @pytest.mark.asyncio()
    async def test_stylist_from_other_branch_rejected(self, salon):
        outsider = salon.add_stylist("Casey")
        outsider.branch_assignments[0].branch_id = uuid.uuid4()
        with pytest.raises(NotFoundError):
            await _lifecycle(salon).create_appointment(salon.tenant_id, _booking(salon, stylist=outsider))

    @pytest.mark.asyncio()
    async def test_emits_booked_after_commit(self, salon, emitted):
        result = await _lifecycle(salon).create_appointment(
            salon.tenant_id, _booking(salon, stylist=salon.stylists[0]), STAFF_USER
        )
        assert salon.repo.commits == 1
        event = emitted["appointments"].await_args.args[0]
        assert event.event_type == EventType.APPOINTMENT_BOOKED
        assert event.entity_id == result.appointment.id
        assert event.actor_id == str(STAFF_USER)


class TestBookingInput:
    """Request-shape rules enforced before the service runs."""

    def test_customer_id_or_name_required(self, salon):
        with pytest.raises(ValidationError):
            _booking(salon, customer_name=None)

    def test_not_both_customer_id_and_name(self, salon):
        with pytest.raises(ValidationError):
            _booking(salon, customer_id=uuid.uuid4(), customer_name="Both Given")

    def test_walk_in_requires_stylist(self, salon):
        with pytest.raises(ValidationError):
            _booking(salon, booking_type=BookingType.WALK_IN)

    def test_assign_later_with_stylist_rejected(self, salon):
        with pytest.raises(ValidationError):
            _booking(salon, stylist=salon.stylists[0], assign_later=True)

    def test_bad_time_format(self, salon):
        with pytest.raises(ValidationError):
            _booking(salon, time="9:00")


# ── Customer policy ──────────────────────────────────────────────────


class TestCustomerPolicy:
    """Booking privileges and the no-show ladder."""

    @pytest.mark.asyncio()
    async def test_blocked_customer_cannot_book_online(self, salon):
        customer = salon.add_customer(booking_status=CustomerBookingStatus.BLOCKED.value)
        data = _booking(salon, stylist=salon.stylists[0], customer_id=customer.id, booking_type=BookingType.ONLINE)
        with pytest.raises(BusinessRuleError) as exc_info:
            await _lifecycle(salon).create_appointment(salon.tenant_id, data)
        assert exc_info.value.code == "CUSTOMER_BLOCKED"

    @pytest.mark.asyncio()
    async def test_blocked_customer_can_book_by_phone(self, salon):
        customer = salon.add_customer(booking_status=CustomerBookingStatus.BLOCKED.value)
        data = _booking(salon, stylist=salon.stylists[0], customer_id=customer.id)
        result = await _lifecycle(salon).create_appointment(salon.tenant_id, data)
        assert result.appointment.customer_id == customer.id
        assert result.appointment.customer_name is None

    @pytest.mark.asyncio()
    async def test_prepaid_only_customer_online(self, salon):
        customer = salon.add_customer(booking_status=CustomerBookingStatus.PREPAID_ONLY.value)
        data = _booking(salon, stylist=salon.stylists[0], customer_id=customer.id, booking_type=BookingType.ONLINE)
        result = await _lifecycle(salon).create_appointment(salon.tenant_id, data)
        assert result.prepayment_required is True
        assert result.prepayment_amount == Decimal("44.00")
        assert result.appointment.prepayment_amount == Decimal("44.00")
        assert result.appointment.prepayment_status == "pending"

    @pytest.mark.asyncio()
    async def test_unknown_customer(self, salon):
        data = _booking(salon, stylist=salon.stylists[0], customer_id=uuid.uuid4())
        with pytest.raises(NotFoundError):
            await _lifecycle(salon).create_appointment(salon.tenant_id, data)

    @pytest.mark.asyncio()
    @pytest.mark.parametrize(
        ("previous", "expected_status"),
        [
            (0, CustomerBookingStatus.NORMAL),
            (1, CustomerBookingStatus.PREPAID_ONLY),
            (2, CustomerBookingStatus.BLOCKED),
        ],
    )
    async def test_no_show_ladder(self, salon, emitted, previous, expected_status):
        customer = salon.add_customer(no_show_count=previous)
        service = _lifecycle(salon)
        booked = await service.create_appointment(
            salon.tenant_id, _booking(salon, stylist=salon.stylists[0], customer_id=customer.id)
        )
        appointment = await service.mark_no_show(salon.tenant_id, booked.appointment.id, STAFF_USER)

        assert appointment.status == AppointmentStatus.NO_SHOW.value
        assert customer.no_show_count == previous + 1
        assert customer.booking_status == expected_status.value
        assert all(line.status == LineItemStatus.CANCELLED.value for line in appointment.line_items)
        assert _event_types(emitted["appointments"])[-1] == EventType.APPOINTMENT_NO_SHOW

    @pytest.mark.asyncio()
    async def test_no_show_for_guest(self, salon):
        booking = salon.add_booking(salon.stylists[0], MONDAY, "10:00", "10:30")
        appointment = await _lifecycle(salon).mark_no_show(salon.tenant_id, booking.id, notes="Never arrived")
        assert appointment.status == AppointmentStatus.NO_SHOW.value


# ── Conflicts ────────────────────────────────────────────────────────


class TestConflicts:
    """Overlap detection and forced overrides."""

    @pytest.mark.asyncio()
    async def test_overlap_raises_with_conflicts(self, salon, emitted):
        alex = salon.stylists[0]
        existing = salon.add_booking(alex, MONDAY, "10:00", "11:00")
        with pytest.raises(SchedulingConflictError) as exc_info:
            await _lifecycle(salon).create_appointment(salon.tenant_id, _booking(salon, stylist=alex, time="10:30"))

        assert [c.id for c in exc_info.value.conflicts] == [existing.id]
        assert exc_info.value.to_dict()["details"]["conflicts"][0]["id"] == str(existing.id)
        assert salon.repo.all(Appointment) == [existing]
        emitted["appointments"].assert_not_awaited()

    @pytest.mark.asyncio()
    async def test_back_to_back_is_not_a_conflict(self, salon):
        alex = salon.stylists[0]
        salon.add_booking(alex, MONDAY, "10:00", "11:00")
        result = await _lifecycle(salon).create_appointment(salon.tenant_id, _booking(salon, stylist=alex, time="11:00"))
        assert result.appointment.has_conflict is False

    @pytest.mark.asyncio()
    async def test_cancelled_booking_is_not_a_conflict(self, salon):
        alex = salon.stylists[0]
        salon.add_booking(alex, MONDAY, "10:00", "11:00", status=AppointmentStatus.CANCELLED)
        conflicts = await _lifecycle(salon).check_conflicts(salon.tenant_id, alex.id, MONDAY, "10:00", "11:00")
        assert conflicts == []

    @pytest.mark.asyncio()
    async def test_force_override_keeps_by_default(self, salon, emitted):
        alex = salon.stylists[0]
        existing = salon.add_booking(alex, MONDAY, "10:00", "11:00")
        result = await _lifecycle(salon).create_appointment(
            salon.tenant_id,
            _booking(salon, stylist=alex, time="10:30"),
            STAFF_USER,
            force_override=True,
            override_reason="VIP request",
        )

        assert [(p.id, p.action) for p in result.processed_conflicts] == [(existing.id, ConflictAction.KEEP)]
        assert existing.status == AppointmentStatus.BOOKED.value
        assert existing.has_conflict is True
        assert "VIP request" in existing.conflict_notes
        assert result.appointment.has_conflict is True
        assert _event_types(emitted["appointments"]) == [EventType.APPOINTMENT_BOOKED, EventType.CONFLICT_OVERRIDE]
        override = emitted["appointments"].await_args.args[0]
        assert override.data["reason"] == "VIP request"

    @pytest.mark.asyncio()
    async def test_force_override_cancels_requested(self, salon):
        alex = salon.stylists[0]
        existing = salon.add_booking(alex, MONDAY, "10:00", "11:00")
        service = _lifecycle(salon)
        result = await service.create_appointment(
            salon.tenant_id,
            _booking(salon, stylist=alex, time="10:30"),
            STAFF_USER,
            force_override=True,
            override_reason="Stylist swap",
            conflict_actions=[ConflictActionInput(appointment_id=existing.id, action=ConflictAction.CANCEL)],
        )

        assert existing.status == AppointmentStatus.CANCELLED.value
        assert existing.is_salon_cancelled is True
        assert existing.cancelled_by == STAFF_USER
        assert existing.cancelled_at == NOW
        assert result.appointment.has_conflict is False
        history = await service.get_status_history(salon.tenant_id, existing.id)
        assert [(h.from_status, h.to_status) for h in history] == [("booked", "cancelled")]

    @pytest.mark.asyncio()
    async def test_override_cannot_cancel_in_progress_booking(self, salon):
        alex = salon.stylists[0]
        existing = salon.add_booking(alex, MONDAY, "10:00", "11:00", status=AppointmentStatus.IN_PROGRESS)
        with pytest.raises(InvalidTransitionError):
            await _lifecycle(salon).create_appointment(
                salon.tenant_id,
                _booking(salon, stylist=alex, time="10:30"),
                force_override=True,
                conflict_actions=[ConflictActionInput(appointment_id=existing.id, action=ConflictAction.CANCEL)],
            )
        assert existing.status == AppointmentStatus.IN_PROGRESS.value
        assert len(salon.repo.all(Appointment)) == 1

    @pytest.mark.asyncio()
    async def test_auto_assigns_free_stylist(self, salon):
        alex, blair = salon.stylists
        salon.add_booking(alex, MONDAY, "10:00", "11:00")
        result = await _lifecycle(salon).create_appointment(salon.tenant_id, _booking(salon))
        assert result.appointment.stylist_id == blair.id
        assert result.appointment.line_items[0].stylist_id == blair.id

    @pytest.mark.asyncio()
    async def test_auto_assign_with_nobody_free(self, salon):
        for stylist in salon.stylists:
            salon.add_booking(stylist, MONDAY, "10:00", "11:00")
        with pytest.raises(SchedulingConflictError, match="No stylist"):
            await _lifecycle(salon).create_appointment(salon.tenant_id, _booking(salon))

    @pytest.mark.asyncio()
    async def test_assign_later_leaves_unassigned(self, salon):
        service = _lifecycle(salon)
        result = await service.create_appointment(salon.tenant_id, _booking(salon, assign_later=True))
        assert result.appointment.stylist_id is None
        assert await service.get_unassigned_appointments(salon.tenant_id, salon.branch_id) == [result.appointment]
        assert await service.get_unassigned_count(salon.tenant_id, salon.branch_id) == 1

    @pytest.mark.asyncio()
    async def test_unassigned_count_is_for_today_only(self, salon):
        service = _lifecycle(salon)
        await service.create_appointment(salon.tenant_id, _booking(salon, assign_later=True, on_date=TUESDAY))
        assert await service.get_unassigned_count(salon.tenant_id, salon.branch_id) == 0
        unassigned = await service.get_unassigned_appointments(salon.tenant_id, salon.branch_id, TUESDAY)
        assert len(unassigned) == 1


# ── Status machine ───────────────────────────────────────────────────


class TestTransitions:
    """confirm / check_in / start / complete / cancel."""

    @pytest.mark.asyncio()
    async def test_happy_path(self, salon, emitted):
        service = _lifecycle(salon)
        booked = await service.create_appointment(salon.tenant_id, _booking(salon, stylist=salon.stylists[0]))
        appointment_id = booked.appointment.id

        await service.confirm(salon.tenant_id, appointment_id)
        await service.check_in(salon.tenant_id, appointment_id)
        started = await service.start(salon.tenant_id, appointment_id)
        assert started.line_items[0].status == LineItemStatus.IN_PROGRESS.value
        done = await service.complete(salon.tenant_id, appointment_id, STAFF_USER)

        assert done.status == AppointmentStatus.COMPLETED.value
        assert done.line_items[0].status == LineItemStatus.COMPLETED.value
        history = await service.get_status_history(salon.tenant_id, appointment_id)
        assert [h.to_status for h in history] == ["booked", "confirmed", "checked_in", "in_progress", "completed"]
        assert _event_types(emitted["appointments"])[1:] == [EventType.APPOINTMENT_STATUS_CHANGED] * 4

    @pytest.mark.asyncio()
    async def test_check_in_without_confirming(self, salon):
        booking = salon.add_booking(salon.stylists[0], MONDAY, "10:00", "10:30")
        appointment = await _lifecycle(salon).check_in(salon.tenant_id, booking.id)
        assert appointment.status == AppointmentStatus.CHECKED_IN.value

    @pytest.mark.asyncio()
    async def test_invalid_transition_names_current_status(self, salon, emitted):
        booking = salon.add_booking(salon.stylists[0], MONDAY, "10:00", "10:30")
        with pytest.raises(InvalidTransitionError) as exc_info:
            await _lifecycle(salon).complete(salon.tenant_id, booking.id)
        assert exc_info.value.current_status == "booked"
        assert "booked" in str(exc_info.value)
        assert booking.status == AppointmentStatus.BOOKED.value
        assert salon.repo.all(AppointmentStatusHistory) == []
        emitted["appointments"].assert_not_awaited()

    @pytest.mark.asyncio()
    @pytest.mark.parametrize(
        "status",
        [AppointmentStatus.COMPLETED, AppointmentStatus.CANCELLED, AppointmentStatus.NO_SHOW],
    )
    async def test_terminal_statuses_accept_nothing(self, salon, status):
        booking = salon.add_booking(salon.stylists[0], MONDAY, "10:00", "10:30", status=status)
        service = _lifecycle(salon)
        for action in (service.confirm, service.check_in, service.start, service.complete):
            with pytest.raises(InvalidTransitionError):
                await action(salon.tenant_id, booking.id)
        with pytest.raises(InvalidTransitionError):
            await service.cancel(salon.tenant_id, booking.id, CancelInput(reason="Too late"))

    @pytest.mark.asyncio()
    async def test_in_progress_cannot_be_cancelled(self, salon):
        booking = salon.add_booking(salon.stylists[0], MONDAY, "10:00", "10:30", status=AppointmentStatus.IN_PROGRESS)
        with pytest.raises(InvalidTransitionError):
            await _lifecycle(salon).cancel(salon.tenant_id, booking.id, CancelInput(reason="Changed mind"))

    @pytest.mark.asyncio()
    async def test_cancel_records_reason_and_actor(self, salon, emitted):
        booking = salon.add_booking(salon.stylists[0], MONDAY, "10:00", "10:30", status=AppointmentStatus.CONFIRMED)
        appointment = await _lifecycle(salon).cancel(
            salon.tenant_id, booking.id, CancelInput(reason="Customer is ill"), STAFF_USER
        )
        assert appointment.status == AppointmentStatus.CANCELLED.value
        assert appointment.cancelled_at == NOW
        assert appointment.cancelled_by == STAFF_USER
        assert appointment.cancellation_reason == "Customer is ill"
        assert appointment.is_salon_cancelled is False
        assert appointment.line_items[0].status == LineItemStatus.CANCELLED.value
        assert _event_types(emitted["appointments"]) == [EventType.APPOINTMENT_CANCELLED]

    def test_cancel_requires_reason(self):
        with pytest.raises(ValidationError):
            CancelInput(reason="")

    @pytest.mark.asyncio()
    async def test_cancelled_slot_is_free_again(self, salon):
        alex = salon.stylists[0]
        booking = salon.add_booking(alex, MONDAY, "10:00", "11:00")
        service = _lifecycle(salon)
        await service.cancel(salon.tenant_id, booking.id, CancelInput(reason="Cancelled by phone"))
        result = await service.create_appointment(salon.tenant_id, _booking(salon, stylist=alex, time="10:00"))
        assert result.appointment.has_conflict is False

    @pytest.mark.asyncio()
    async def test_missing_appointment(self, salon):
        with pytest.raises(NotFoundError):
            await _lifecycle(salon).confirm(salon.tenant_id, uuid.uuid4())

    @pytest.mark.asyncio()
    async def test_other_tenant_cannot_see_appointment(self, salon):
        booking = salon.add_booking(salon.stylists[0], MONDAY, "10:00", "10:30")
        with pytest.raises(NotFoundError):
            await _lifecycle(salon).get_appointment_by_id(uuid.uuid4(), booking.id)


# ── Reschedule ───────────────────────────────────────────────────────


class TestReschedule:
    """Superseding appointments with locked prices."""

    async def _book(self, salon, service, time="10:00"):
        result = await service.create_appointment(
            salon.tenant_id, _booking(salon, "cut", "colour", stylist=salon.stylists[0], time=time)
        )
        return result.appointment

    @pytest.mark.asyncio()
    async def test_reschedule_preserves_prices(self, salon, emitted):
        service = _lifecycle(salon)
        original = await self._book(salon, service)
        salon.services["cut"].base_price = Decimal("99.00")

        result = await service.reschedule(
            salon.tenant_id,
            original.id,
            RescheduleInput(new_date=TUESDAY, new_time="14:00", reason="Clash with work"),
            STAFF_USER,
        )
        new = result.new_appointment

        assert original.status == AppointmentStatus.RESCHEDULED.value
        assert original.rescheduled_to_id == new.id
        assert new.status == AppointmentStatus.BOOKED.value
        assert (new.scheduled_date, new.scheduled_time, new.end_time) == (TUESDAY, "14:00", "15:30")
        assert (new.subtotal, new.tax_amount, new.total_amount) == (
            original.subtotal, original.tax_amount, original.total_amount
        )
        assert new.price_locked_at == original.price_locked_at
        assert [line.unit_price for line in new.line_items] == [Decimal("40.00"), Decimal("80.00")]
        assert new.original_appointment_id == original.id
        assert result.reschedule_count == new.reschedule_count == 1
        assert _event_types(emitted["appointments"])[-1] == EventType.APPOINTMENT_RESCHEDULED

    @pytest.mark.asyncio()
    async def test_history_on_both_records(self, salon):
        service = _lifecycle(salon)
        original = await self._book(salon, service)
        result = await service.reschedule(
            salon.tenant_id, original.id, RescheduleInput(new_date=TUESDAY, new_time="09:00")
        )
        old_history = await service.get_status_history(salon.tenant_id, original.id)
        new_history = await service.get_status_history(salon.tenant_id, result.new_appointment.id)
        assert [h.to_status for h in old_history] == ["booked", "rescheduled"]
        assert [h.to_status for h in new_history] == ["booked"]
        assert str(original.id) in new_history[0].notes

    @pytest.mark.asyncio()
    async def test_chain_points_to_root(self, salon):
        service = _lifecycle(salon)
        a = await self._book(salon, service)
        b = (await service.reschedule(salon.tenant_id, a.id, RescheduleInput(new_date=MONDAY, new_time="13:00"))).new_appointment
        c = (await service.reschedule(salon.tenant_id, b.id, RescheduleInput(new_date=MONDAY, new_time="15:00"))).new_appointment

        assert b.original_appointment_id == a.id
        assert c.original_appointment_id == a.id
        assert c.reschedule_count == 2
        assert b.rescheduled_to_id == c.id

    @pytest.mark.asyncio()
    async def test_limit_reached(self, salon):
        service = _lifecycle(salon)
        current = await self._book(salon, service, time="09:00")
        for hour in ("11:00", "13:00", "15:00"):
            current = (
                await service.reschedule(salon.tenant_id, current.id, RescheduleInput(new_date=MONDAY, new_time=hour))
            ).new_appointment
        assert current.reschedule_count == 3

        with pytest.raises(BusinessRuleError) as exc_info:
            await service.reschedule(salon.tenant_id, current.id, RescheduleInput(new_date=TUESDAY, new_time="10:00"))
        assert exc_info.value.code == "RESCHEDULE_LIMIT"
        assert current.status == AppointmentStatus.BOOKED.value

    @pytest.mark.asyncio()
    async def test_status_checked_before_limit(self, salon):
        booking = salon.add_booking(salon.stylists[0], MONDAY, "10:00", "10:30", status=AppointmentStatus.COMPLETED)
        booking.reschedule_count = 3
        with pytest.raises(InvalidTransitionError):
            await _lifecycle(salon).reschedule(
                salon.tenant_id, booking.id, RescheduleInput(new_date=TUESDAY, new_time="10:00")
            )

    @pytest.mark.asyncio()
    async def test_may_overlap_its_own_old_slot(self, salon):
        service = _lifecycle(salon)
        original = await self._book(salon, service)
        result = await service.reschedule(
            salon.tenant_id, original.id, RescheduleInput(new_date=MONDAY, new_time="10:30")
        )
        assert result.new_appointment.scheduled_time == "10:30"

    @pytest.mark.asyncio()
    async def test_conflict_at_new_slot_rolls_back(self, salon, emitted):
        service = _lifecycle(salon)
        original = await self._book(salon, service)
        salon.add_booking(salon.stylists[0], TUESDAY, "10:00", "11:00")
        emitted["appointments"].reset_mock()

        with pytest.raises(SchedulingConflictError):
            await service.reschedule(salon.tenant_id, original.id, RescheduleInput(new_date=TUESDAY, new_time="10:30"))

        assert original.status == AppointmentStatus.BOOKED.value
        assert original.rescheduled_to_id is None
        assert len(salon.repo.all(Appointment)) == 2
        emitted["appointments"].assert_not_awaited()

    @pytest.mark.asyncio()
    async def test_new_stylist_applies_to_lines(self, salon):
        alex, blair = salon.stylists
        service = _lifecycle(salon)
        original = await self._book(salon, service)
        result = await service.reschedule(
            salon.tenant_id, original.id, RescheduleInput(new_date=MONDAY, new_time="14:00", stylist_id=blair.id)
        )
        assert result.new_appointment.stylist_id == blair.id
        assert {line.stylist_id for line in result.new_appointment.line_items} == {blair.id}
        assert {line.stylist_id for line in original.line_items} == {alex.id}


# ── Atomicity ────────────────────────────────────────────────────────


class TestAtomicity:
    """A failure part-way through a write sequence leaves no trace."""

    @pytest.mark.asyncio()
    async def test_failed_booking_leaves_nothing(self, salon, emitted):
        service = _lifecycle(salon)
        with patch.object(service, "_record_history", side_effect=RuntimeError("disk full")):
            with pytest.raises(RuntimeError):
                await service.create_appointment(salon.tenant_id, _booking(salon, stylist=salon.stylists[0]))

        assert salon.repo.all(Appointment) == []
        assert salon.repo.rollbacks == 1
        emitted["appointments"].assert_not_awaited()

    @pytest.mark.asyncio()
    async def test_failed_override_restores_cancelled_booking(self, salon):
        alex = salon.stylists[0]
        existing = salon.add_booking(alex, MONDAY, "10:00", "11:00")
        service = _lifecycle(salon)
        with patch.object(salon.repo, "flush", side_effect=RuntimeError("connection lost")):
            with pytest.raises(RuntimeError):
                await service.create_appointment(
                    salon.tenant_id,
                    _booking(salon, stylist=alex, time="10:30"),
                    force_override=True,
                    conflict_actions=[ConflictActionInput(appointment_id=existing.id, action=ConflictAction.CANCEL)],
                )

        assert existing.status == AppointmentStatus.BOOKED.value
        assert existing.cancelled_at is None
        assert not existing.is_salon_cancelled
        assert salon.repo.all(AppointmentStatusHistory) == []
        assert salon.repo.all(Appointment) == [existing]

    @pytest.mark.asyncio()
    async def test_failed_reschedule_keeps_original(self, salon):
        service = _lifecycle(salon)
        original = (
            await service.create_appointment(salon.tenant_id, _booking(salon, stylist=salon.stylists[0]))
        ).appointment
        with patch.object(service, "_record_history", side_effect=RuntimeError("boom")):
            with pytest.raises(RuntimeError):
                await service.reschedule(
                    salon.tenant_id, original.id, RescheduleInput(new_date=TUESDAY, new_time="10:00")
                )

        assert original.status == AppointmentStatus.BOOKED.value
        assert original.rescheduled_to_id is None
        assert salon.repo.all(Appointment) == [original]

    @pytest.mark.asyncio()
    async def test_failed_no_show_keeps_customer_counts(self, salon):
        customer = salon.add_customer(no_show_count=2)
        service = _lifecycle(salon)
        booked = (
            await service.create_appointment(
                salon.tenant_id, _booking(salon, stylist=salon.stylists[0], customer_id=customer.id)
            )
        ).appointment
        with patch.object(service, "_record_history", side_effect=RuntimeError("boom")):
            with pytest.raises(RuntimeError):
                await service.mark_no_show(salon.tenant_id, booked.id)

        assert customer.no_show_count == 2
        assert customer.booking_status == CustomerBookingStatus.NORMAL.value
        assert booked.status == AppointmentStatus.BOOKED.value


# ── Edits and assignment ─────────────────────────────────────────────


class TestAssignAndUpdate:
    """assign_stylist, update_appointment and resolve_conflict."""

    @pytest.mark.asyncio()
    async def test_assign_unassigned(self, salon, emitted):
        blair = salon.stylists[1]
        service = _lifecycle(salon)
        booked = (await service.create_appointment(salon.tenant_id, _booking(salon, assign_later=True))).appointment

        appointment = await service.assign_stylist(salon.tenant_id, booked.id, blair.id, STAFF_USER)

        assert appointment.stylist_id == blair.id
        assert appointment.line_items[0].stylist_id == blair.id
        history = await service.get_status_history(salon.tenant_id, booked.id)
        assert history[-1].from_status == history[-1].to_status == "booked"
        assert "Blair" in history[-1].notes
        assert _event_types(emitted["appointments"])[-1] == EventType.APPOINTMENT_STYLIST_ASSIGNED
        assert await service.get_unassigned_count(salon.tenant_id, salon.branch_id) == 0

    @pytest.mark.asyncio()
    async def test_assign_busy_stylist(self, salon):
        alex = salon.stylists[0]
        salon.add_booking(alex, MONDAY, "10:00", "11:00")
        unassigned = salon.add_booking(None, MONDAY, "10:30", "11:00")
        with pytest.raises(SchedulingConflictError) as exc_info:
            await _lifecycle(salon).assign_stylist(salon.tenant_id, unassigned.id, alex.id)
        assert len(exc_info.value.conflicts) == 1
        assert unassigned.stylist_id is None

    @pytest.mark.asyncio()
    async def test_assign_outside_working_hours(self, salon):
        unassigned = salon.add_booking(None, SUNDAY, "10:00", "10:30")
        with pytest.raises(SchedulingConflictError):
            await _lifecycle(salon).assign_stylist(salon.tenant_id, unassigned.id, salon.stylists[0].id)

    @pytest.mark.asyncio()
    async def test_assign_on_terminal_appointment(self, salon):
        booking = salon.add_booking(None, MONDAY, "10:00", "10:30", status=AppointmentStatus.COMPLETED)
        with pytest.raises(InvalidTransitionError):
            await _lifecycle(salon).assign_stylist(salon.tenant_id, booking.id, salon.stylists[0].id)

    @pytest.mark.asyncio()
    async def test_update_notes_and_stylist(self, salon, emitted):
        alex, blair = salon.stylists
        booking = salon.add_booking(alex, MONDAY, "10:00", "10:30")
        appointment = await _lifecycle(salon).update_appointment(
            salon.tenant_id,
            booking.id,
            UpdateAppointmentInput(stylist_id=blair.id, internal_notes="Prefers quiet chair"),
        )
        assert appointment.stylist_id == blair.id
        assert appointment.line_items[0].stylist_id == blair.id
        assert appointment.internal_notes == "Prefers quiet chair"
        assert appointment.scheduled_time == "10:00"
        event = emitted["appointments"].await_args.args[0]
        assert event.event_type == EventType.APPOINTMENT_UPDATED
        assert event.data["fields"] == ["internal_notes", "stylist_id"]

    @pytest.mark.asyncio()
    async def test_update_terminal_rejected(self, salon):
        booking = salon.add_booking(salon.stylists[0], MONDAY, "10:00", "10:30", status=AppointmentStatus.CANCELLED)
        with pytest.raises(InvalidTransitionError):
            await _lifecycle(salon).update_appointment(
                salon.tenant_id, booking.id, UpdateAppointmentInput(customer_notes="Hello")
            )

    @pytest.mark.asyncio()
    async def test_resolve_conflict(self, salon, emitted):
        alex = salon.stylists[0]
        salon.add_booking(alex, MONDAY, "10:00", "11:00")
        service = _lifecycle(salon)
        result = await service.create_appointment(
            salon.tenant_id, _booking(salon, stylist=alex, time="10:30"), force_override=True
        )

        appointment = await service.resolve_conflict(
            salon.tenant_id, result.appointment.id, STAFF_USER, notes="Moved to chair 2"
        )
        assert appointment.has_conflict is False
        assert appointment.conflict_resolved_at == NOW
        assert appointment.conflict_notes == "Moved to chair 2"
        assert _event_types(emitted["appointments"])[-1] == EventType.CONFLICT_RESOLVED

    @pytest.mark.asyncio()
    async def test_resolve_without_conflict(self, salon):
        booking = salon.add_booking(salon.stylists[0], MONDAY, "10:00", "10:30")
        with pytest.raises(BusinessRuleError) as exc_info:
            await _lifecycle(salon).resolve_conflict(salon.tenant_id, booking.id)
        assert exc_info.value.code == "NO_CONFLICT"


# ── Listing ──────────────────────────────────────────────────────────


class TestListing:
    """get_appointments filters and pagination."""

    @pytest.mark.asyncio()
    async def test_pagination(self, salon):
        alex = salon.stylists[0]
        for hour in ("09:00", "10:00", "11:00", "12:00", "13:00"):
            salon.add_booking(alex, MONDAY, hour, hour.replace(":00", ":30"))

        page = await _lifecycle(salon).get_appointments(
            salon.tenant_id,
            AppointmentListFilters(sort_by="scheduled_time", sort_order="asc", page=3, limit=2),
        )
        assert page.total == 5
        assert page.total_pages == 3
        assert [a.scheduled_time for a in page.items] == ["13:00"]

    @pytest.mark.asyncio()
    async def test_filters(self, salon):
        alex, blair = salon.stylists
        salon.add_booking(alex, MONDAY, "09:00", "09:30", customer_name="Robin Banks")
        salon.add_booking(blair, MONDAY, "09:00", "09:30", status=AppointmentStatus.CANCELLED)
        salon.add_booking(alex, TUESDAY, "09:00", "09:30")

        service = _lifecycle(salon)
        by_stylist = await service.get_appointments(salon.tenant_id, AppointmentListFilters(stylist_id=alex.id))
        assert by_stylist.total == 2

        by_status = await service.get_appointments(
            salon.tenant_id, AppointmentListFilters(status=[AppointmentStatus.CANCELLED])
        )
        assert [a.stylist_id for a in by_status.items] == [blair.id]

        by_date = await service.get_appointments(
            salon.tenant_id, AppointmentListFilters(date_from=TUESDAY, date_to=TUESDAY)
        )
        assert by_date.total == 1

        by_name = await service.get_appointments(salon.tenant_id, AppointmentListFilters(search="robin"))
        assert [a.customer_name for a in by_name.items] == ["Robin Banks"]

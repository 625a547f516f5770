"""Appointment models — bookings, their service lines, and status history.

Monetary fields are written once at booking time (price lock) and copied
verbatim when an appointment is rescheduled.
"""

from __future__ import annotations

import uuid
from datetime import date, datetime
from decimal import Decimal

from sqlalchemy import Date, DateTime, ForeignKey, Index, Numeric, String, Text
from sqlalchemy.dialects.postgresql import UUID
from sqlalchemy.orm import Mapped, mapped_column, relationship

from salonbook.models.base import Base, TenantMixin, TimestampMixin
from salonbook.models.enums import AppointmentStatus, LineItemStatus


class Appointment(TenantMixin, TimestampMixin, Base):
    """A scheduled (or finished) booking at a branch."""

    __tablename__ = "appointments"
    __table_args__ = (
        Index("ix_appointments_stylist_date", "stylist_id", "scheduled_date"),
        Index("ix_appointments_branch_date_time", "branch_id", "scheduled_date", "scheduled_time"),
        Index("ix_appointments_branch_status_date", "branch_id", "status", "scheduled_date"),
    )

    branch_id: Mapped[uuid.UUID] = mapped_column(
        UUID(as_uuid=True), ForeignKey("branches.id"), nullable=False
    )

    # Customer: a registered customer, or a guest name/phone
    customer_id: Mapped[uuid.UUID | None] = mapped_column(
        UUID(as_uuid=True), ForeignKey("customers.id", ondelete="SET NULL")
    )
    customer_name: Mapped[str | None] = mapped_column(String(255))
    customer_phone: Mapped[str | None] = mapped_column(String(20))

    # Scheduling: branch-local calendar date and HH:mm times
    scheduled_date: Mapped[date] = mapped_column(Date, nullable=False)
    scheduled_time: Mapped[str] = mapped_column(String(5), nullable=False)
    end_time: Mapped[str] = mapped_column(String(5), nullable=False)
    total_duration: Mapped[int] = mapped_column(nullable=False)

    stylist_id: Mapped[uuid.UUID | None] = mapped_column(UUID(as_uuid=True), ForeignKey("staff.id"))
    stylist_gender_preference: Mapped[str | None] = mapped_column(String(10))

    booking_type: Mapped[str] = mapped_column(String(20), nullable=False)
    booking_source: Mapped[str | None] = mapped_column(String(50))
    status: Mapped[str] = mapped_column(
        String(20), default=AppointmentStatus.BOOKED.value, nullable=False
    )

    # Price lock
    subtotal: Mapped[Decimal] = mapped_column(Numeric(10, 2), default=Decimal("0"), nullable=False)
    tax_amount: Mapped[Decimal] = mapped_column(Numeric(10, 2), default=Decimal("0"), nullable=False)
    total_amount: Mapped[Decimal] = mapped_column(Numeric(10, 2), default=Decimal("0"), nullable=False)
    price_locked_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True))

    # Prepayment (customers on the prepaid-only list)
    prepayment_required: Mapped[bool] = mapped_column(default=False)
    prepayment_amount: Mapped[Decimal] = mapped_column(Numeric(10, 2), default=Decimal("0"))
    prepayment_status: Mapped[str | None] = mapped_column(String(20))

    # Notes
    customer_notes: Mapped[str | None] = mapped_column(Text)
    internal_notes: Mapped[str | None] = mapped_column(Text)

    # Reschedule chain
    reschedule_count: Mapped[int] = mapped_column(default=0, nullable=False)
    original_appointment_id: Mapped[uuid.UUID | None] = mapped_column(
        UUID(as_uuid=True), ForeignKey("appointments.id", ondelete="SET NULL")
    )
    rescheduled_to_id: Mapped[uuid.UUID | None] = mapped_column(
        UUID(as_uuid=True), ForeignKey("appointments.id", ondelete="SET NULL")
    )

    # Cancellation
    cancelled_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True))
    cancelled_by: Mapped[uuid.UUID | None] = mapped_column(UUID(as_uuid=True))
    cancellation_reason: Mapped[str | None] = mapped_column(Text)
    is_salon_cancelled: Mapped[bool] = mapped_column(default=False)

    # Double-booking kept on purpose by a forced override
    has_conflict: Mapped[bool] = mapped_column(default=False)
    conflict_notes: Mapped[str | None] = mapped_column(Text)
    conflict_marked_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True))
    conflict_resolved_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True))

    created_by: Mapped[uuid.UUID | None] = mapped_column(UUID(as_uuid=True))
    deleted_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True))

    line_items: Mapped[list[AppointmentLineItem]] = relationship(
        "AppointmentLineItem",
        back_populates="appointment",
        cascade="all, delete-orphan",
        lazy="selectin",
    )

    def __repr__(self) -> str:
        return (
            f"<Appointment id={self.id} status={self.status} "
            f"at={self.scheduled_date} {self.scheduled_time}-{self.end_time}>"
        )


class AppointmentLineItem(TenantMixin, TimestampMixin, Base):
    """One service performed within an appointment, priced at booking time."""

    __tablename__ = "appointment_services"

    appointment_id: Mapped[uuid.UUID] = mapped_column(
        UUID(as_uuid=True), ForeignKey("appointments.id", ondelete="CASCADE"), nullable=False, index=True
    )
    service_id: Mapped[uuid.UUID] = mapped_column(UUID(as_uuid=True), ForeignKey("services.id"), nullable=False)
    service_name: Mapped[str] = mapped_column(String(255), nullable=False)
    service_sku: Mapped[str | None] = mapped_column(String(50))
    stylist_id: Mapped[uuid.UUID | None] = mapped_column(UUID(as_uuid=True), ForeignKey("staff.id"))

    # Snapshot taken when the booking was made
    unit_price: Mapped[Decimal] = mapped_column(Numeric(10, 2), nullable=False)
    quantity: Mapped[int] = mapped_column(default=1, nullable=False)
    tax_rate: Mapped[Decimal] = mapped_column(Numeric(5, 2), nullable=False)
    tax_amount: Mapped[Decimal] = mapped_column(Numeric(10, 2), nullable=False)
    total_amount: Mapped[Decimal] = mapped_column(Numeric(10, 2), nullable=False)
    duration_minutes: Mapped[int] = mapped_column(nullable=False)
    commission_rate: Mapped[Decimal | None] = mapped_column(Numeric(5, 2))
    commission_amount: Mapped[Decimal | None] = mapped_column(Numeric(10, 2))

    status: Mapped[str] = mapped_column(String(20), default=LineItemStatus.PENDING.value, nullable=False)

    appointment: Mapped[Appointment] = relationship("Appointment", back_populates="line_items")

    def __repr__(self) -> str:
        return f"<AppointmentLineItem service={self.service_name} price={self.unit_price}>"


class AppointmentStatusHistory(TenantMixin, TimestampMixin, Base):
    """Append-only record of every status change of an appointment."""

    __tablename__ = "appointment_status_history"

    appointment_id: Mapped[uuid.UUID] = mapped_column(
        UUID(as_uuid=True), ForeignKey("appointments.id", ondelete="CASCADE"), nullable=False, index=True
    )
    from_status: Mapped[str | None] = mapped_column(String(20))
    to_status: Mapped[str] = mapped_column(String(20), nullable=False)
    changed_by: Mapped[uuid.UUID | None] = mapped_column(UUID(as_uuid=True))
    notes: Mapped[str | None] = mapped_column(Text)

    def __repr__(self) -> str:
        return f"<AppointmentStatusHistory {self.from_status} -> {self.to_status}>"

"""Stylist availability exceptions — recurring breaks and one-off blocks."""

from __future__ import annotations

import uuid
from datetime import date

from sqlalchemy import Date, ForeignKey, Index, String
from sqlalchemy.dialects.postgresql import UUID
from sqlalchemy.orm import Mapped, mapped_column

from salonbook.models.base import Base, TenantMixin, TimestampMixin


class StylistBreak(TenantMixin, TimestampMixin, Base):
    """A recurring break. ``day_of_week`` NULL means every day."""

    __tablename__ = "stylist_breaks"
    __table_args__ = (Index("ix_stylist_breaks_stylist_day", "stylist_id", "day_of_week"),)

    branch_id: Mapped[uuid.UUID] = mapped_column(UUID(as_uuid=True), ForeignKey("branches.id"), nullable=False)
    stylist_id: Mapped[uuid.UUID] = mapped_column(UUID(as_uuid=True), ForeignKey("staff.id"), nullable=False)
    name: Mapped[str] = mapped_column(String(100), nullable=False)
    day_of_week: Mapped[int | None] = mapped_column(comment="0=Sunday .. 6=Saturday")
    start_time: Mapped[str] = mapped_column(String(5), nullable=False)
    end_time: Mapped[str] = mapped_column(String(5), nullable=False)
    is_active: Mapped[bool] = mapped_column(default=True)
    created_by: Mapped[uuid.UUID | None] = mapped_column(UUID(as_uuid=True))

    def __repr__(self) -> str:
        return f"<StylistBreak {self.name} day={self.day_of_week} {self.start_time}-{self.end_time}>"


class StylistBlockedSlot(TenantMixin, TimestampMixin, Base):
    """A one-off block on a given date, either the whole day or a window."""

    __tablename__ = "stylist_blocked_slots"
    __table_args__ = (Index("ix_stylist_blocked_slots_stylist_date", "stylist_id", "blocked_date"),)

    branch_id: Mapped[uuid.UUID] = mapped_column(UUID(as_uuid=True), ForeignKey("branches.id"), nullable=False)
    stylist_id: Mapped[uuid.UUID] = mapped_column(UUID(as_uuid=True), ForeignKey("staff.id"), nullable=False)
    blocked_date: Mapped[date] = mapped_column(Date, nullable=False)
    start_time: Mapped[str | None] = mapped_column(String(5))
    end_time: Mapped[str | None] = mapped_column(String(5))
    is_full_day: Mapped[bool] = mapped_column(default=False)
    reason: Mapped[str | None] = mapped_column(String(255))
    created_by: Mapped[uuid.UUID | None] = mapped_column(UUID(as_uuid=True))

    def __repr__(self) -> str:
        window = "full day" if self.is_full_day else f"{self.start_time}-{self.end_time}"
        return f"<StylistBlockedSlot {self.blocked_date} {window}>"

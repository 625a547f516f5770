"""Customer model — booking privileges and no-show history."""

from __future__ import annotations

from sqlalchemy import String
from sqlalchemy.orm import Mapped, mapped_column

from salonbook.models.base import Base, TenantMixin, TimestampMixin
from salonbook.models.enums import CustomerBookingStatus


class Customer(TenantMixin, TimestampMixin, Base):
    """A registered salon customer."""

    __tablename__ = "customers"

    name: Mapped[str] = mapped_column(String(255), nullable=False)
    phone: Mapped[str | None] = mapped_column(String(20), index=True)
    email: Mapped[str | None] = mapped_column(String(255))
    gender: Mapped[str | None] = mapped_column(String(10))

    booking_status: Mapped[str] = mapped_column(
        String(20), default=CustomerBookingStatus.NORMAL.value, nullable=False
    )
    no_show_count: Mapped[int] = mapped_column(default=0, nullable=False)

    def __repr__(self) -> str:
        return f"<Customer name={self.name} booking_status={self.booking_status}>"

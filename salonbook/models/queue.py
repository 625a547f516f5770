"""Walk-in queue model — same-day walk-ins waiting for a stylist."""

from __future__ import annotations

import uuid
from datetime import date, datetime

from sqlalchemy import Date, DateTime, ForeignKey, Index, String, UniqueConstraint
from sqlalchemy.dialects.postgresql import ARRAY, UUID
from sqlalchemy.orm import Mapped, mapped_column

from salonbook.models.base import Base, TenantMixin, TimestampMixin
from salonbook.models.enums import QueueStatus


class WalkInQueueEntry(TenantMixin, TimestampMixin, Base):
    """A walk-in customer in the day's queue.

    Token numbers are unique per (branch, queue_date). ``position`` is only
    meaningful while the entry is waiting.
    """

    __tablename__ = "walk_in_queue"
    __table_args__ = (
        UniqueConstraint("branch_id", "queue_date", "token_number", name="uq_walk_in_queue_token"),
        Index("ix_walk_in_queue_branch_date_status", "branch_id", "queue_date", "status"),
    )

    branch_id: Mapped[uuid.UUID] = mapped_column(UUID(as_uuid=True), ForeignKey("branches.id"), nullable=False)
    queue_date: Mapped[date] = mapped_column(Date, nullable=False)
    token_number: Mapped[int] = mapped_column(nullable=False)

    customer_id: Mapped[uuid.UUID | None] = mapped_column(
        UUID(as_uuid=True), ForeignKey("customers.id", ondelete="SET NULL")
    )
    customer_name: Mapped[str] = mapped_column(String(255), nullable=False)
    customer_phone: Mapped[str | None] = mapped_column(String(20))

    service_ids: Mapped[list[uuid.UUID]] = mapped_column(ARRAY(UUID(as_uuid=True)), nullable=False)
    stylist_preference_id: Mapped[uuid.UUID | None] = mapped_column(UUID(as_uuid=True), ForeignKey("staff.id"))
    gender_preference: Mapped[str | None] = mapped_column(String(10))

    status: Mapped[str] = mapped_column(String(20), default=QueueStatus.WAITING.value, nullable=False)
    position: Mapped[int] = mapped_column(nullable=False)
    estimated_wait_minutes: Mapped[int | None] = mapped_column()

    called_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True))
    serving_started_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True))
    finished_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True))
    appointment_id: Mapped[uuid.UUID | None] = mapped_column(
        UUID(as_uuid=True), ForeignKey("appointments.id", ondelete="SET NULL"), unique=True
    )
    serving_stylist_id: Mapped[uuid.UUID | None] = mapped_column(UUID(as_uuid=True), ForeignKey("staff.id"))

    def __repr__(self) -> str:
        return f"<WalkInQueueEntry token={self.token_number} status={self.status} pos={self.position}>"

"""Staff model — stylists and other salon staff, with branch assignments."""

from __future__ import annotations

import uuid
from datetime import datetime

from sqlalchemy import DateTime, ForeignKey, String, UniqueConstraint
from sqlalchemy.dialects.postgresql import UUID
from sqlalchemy.orm import Mapped, mapped_column, relationship

from salonbook.models.base import Base, TenantMixin, TimestampMixin
from salonbook.models.enums import StaffRole


class Staff(TenantMixin, TimestampMixin, Base):
    """A member of staff. Only active ``stylist`` rows take bookings."""

    __tablename__ = "staff"

    name: Mapped[str] = mapped_column(String(200), nullable=False)
    phone: Mapped[str | None] = mapped_column(String(20))
    role: Mapped[str] = mapped_column(String(20), default=StaffRole.STYLIST.value, nullable=False)
    gender: Mapped[str | None] = mapped_column(String(10))
    is_active: Mapped[bool] = mapped_column(default=True)
    deleted_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True))

    branch_assignments: Mapped[list[StaffBranchAssignment]] = relationship(
        "StaffBranchAssignment",
        back_populates="staff",
        cascade="all, delete-orphan",
        lazy="selectin",
    )

    @property
    def branch_ids(self) -> set[uuid.UUID]:
        """Branches this staff member works at."""
        return {assignment.branch_id for assignment in self.branch_assignments}

    def __repr__(self) -> str:
        return f"<Staff name={self.name} role={self.role} active={self.is_active}>"


class StaffBranchAssignment(TimestampMixin, Base):
    """Links a staff member to a branch they work at."""

    __tablename__ = "staff_branch_assignments"
    __table_args__ = (UniqueConstraint("staff_id", "branch_id"),)

    staff_id: Mapped[uuid.UUID] = mapped_column(
        UUID(as_uuid=True), ForeignKey("staff.id", ondelete="CASCADE"), nullable=False, index=True
    )
    branch_id: Mapped[uuid.UUID] = mapped_column(
        UUID(as_uuid=True), ForeignKey("branches.id", ondelete="CASCADE"), nullable=False, index=True
    )

    staff: Mapped[Staff] = relationship("Staff", back_populates="branch_assignments")

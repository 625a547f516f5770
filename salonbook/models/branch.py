"""Branch model — a salon location and its weekly working hours."""

from __future__ import annotations

from typing import Any

from sqlalchemy import String
from sqlalchemy.dialects.postgresql import JSONB
from sqlalchemy.orm import Mapped, mapped_column

from salonbook.models.base import Base, TenantMixin, TimestampMixin


class Branch(TenantMixin, TimestampMixin, Base):
    """A salon branch.

    ``working_hours`` maps lowercase day names to
    ``{"start": "HH:mm", "end": "HH:mm", "closed": bool}``; a missing day
    means the branch is closed that day.
    """

    __tablename__ = "branches"

    name: Mapped[str] = mapped_column(String(200), nullable=False)
    working_hours: Mapped[dict[str, Any] | None] = mapped_column(JSONB)
    is_active: Mapped[bool] = mapped_column(default=True)

    def __repr__(self) -> str:
        return f"<Branch name={self.name} active={self.is_active}>"

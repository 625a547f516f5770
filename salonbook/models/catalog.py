"""Service catalog — bookable services and per-branch price overrides."""

from __future__ import annotations

import uuid
from datetime import datetime
from decimal import Decimal

from sqlalchemy import DateTime, ForeignKey, Numeric, String, UniqueConstraint
from sqlalchemy.dialects.postgresql import UUID
from sqlalchemy.orm import Mapped, mapped_column, relationship

from salonbook.models.base import Base, TenantMixin, TimestampMixin


class CatalogService(TenantMixin, TimestampMixin, Base):
    """A service on the menu (haircut, colour, ...)."""

    __tablename__ = "services"

    name: Mapped[str] = mapped_column(String(255), nullable=False)
    sku: Mapped[str | None] = mapped_column(String(50))
    duration_minutes: Mapped[int] = mapped_column(nullable=False)
    base_price: Mapped[Decimal] = mapped_column(Numeric(10, 2), nullable=False)
    tax_rate: Mapped[Decimal] = mapped_column(Numeric(5, 2), default=Decimal("0"), comment="Percent")
    commission_value: Mapped[Decimal] = mapped_column(
        Numeric(5, 2), default=Decimal("0"), comment="Stylist commission, percent of unit price"
    )
    is_active: Mapped[bool] = mapped_column(default=True)
    deleted_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True))

    branch_prices: Mapped[list[ServiceBranchPrice]] = relationship(
        "ServiceBranchPrice",
        back_populates="service",
        cascade="all, delete-orphan",
        lazy="selectin",
    )

    def price_for_branch(self, branch_id: uuid.UUID) -> Decimal:
        """Unit price at a branch: the branch override if set, else the base price."""
        for override in self.branch_prices:
            if override.branch_id == branch_id and override.price is not None:
                return Decimal(override.price)
        return Decimal(self.base_price)

    def __repr__(self) -> str:
        return f"<CatalogService name={self.name} duration={self.duration_minutes}>"


class ServiceBranchPrice(TimestampMixin, Base):
    """Branch-specific price for a catalog service."""

    __tablename__ = "service_branch_prices"
    __table_args__ = (UniqueConstraint("service_id", "branch_id"),)

    service_id: Mapped[uuid.UUID] = mapped_column(
        UUID(as_uuid=True), ForeignKey("services.id", ondelete="CASCADE"), nullable=False
    )
    branch_id: Mapped[uuid.UUID] = mapped_column(
        UUID(as_uuid=True), ForeignKey("branches.id", ondelete="CASCADE"), nullable=False
    )
    price: Mapped[Decimal | None] = mapped_column(Numeric(10, 2))

    service: Mapped[CatalogService] = relationship("CatalogService", back_populates="branch_prices")

"""SQLAlchemy ORM models for salonbook.

Import all models here so Alembic and Base.metadata.create_all() discover them.
"""

from __future__ import annotations

from salonbook.models.appointment import Appointment, AppointmentLineItem, AppointmentStatusHistory
from salonbook.models.audit import AuditLog
from salonbook.models.base import Base
from salonbook.models.branch import Branch
from salonbook.models.catalog import CatalogService, ServiceBranchPrice
from salonbook.models.customer import Customer
from salonbook.models.enums import (
    AppointmentAction,
    AppointmentStatus,
    BookingType,
    ConflictAction,
    CustomerBookingStatus,
    GenderPreference,
    LineItemStatus,
    PrepaymentStatus,
    QueueStatus,
    StaffRole,
)
from salonbook.models.queue import WalkInQueueEntry
from salonbook.models.schedule import StylistBlockedSlot, StylistBreak
from salonbook.models.staff import Staff, StaffBranchAssignment

__all__ = [
    # Base
    "Base",
    # Models
    "Branch",
    "Staff",
    "StaffBranchAssignment",
    "CatalogService",
    "ServiceBranchPrice",
    "Customer",
    "Appointment",
    "AppointmentLineItem",
    "AppointmentStatusHistory",
    "StylistBreak",
    "StylistBlockedSlot",
    "WalkInQueueEntry",
    "AuditLog",
    # Enums
    "AppointmentStatus",
    "AppointmentAction",
    "BookingType",
    "GenderPreference",
    "LineItemStatus",
    "QueueStatus",
    "CustomerBookingStatus",
    "PrepaymentStatus",
    "ConflictAction",
    "StaffRole",
]

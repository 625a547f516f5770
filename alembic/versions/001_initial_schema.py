"""Initial schema — branches, staff, catalog, customers, appointments, queue, audit.

Revision ID: 001
Revises: None
Create Date: 2026-10-19
"""
from __future__ import annotations

from typing import Union

import sqlalchemy as sa
from alembic import op
from sqlalchemy.dialects import postgresql

# revision identifiers, used by Alembic.
revision: str = "001"
down_revision: Union[str, None] = None
branch_labels: Union[str, tuple[str, ...], None] = None
depends_on: Union[str, tuple[str, ...], None] = None

UUID = postgresql.UUID(as_uuid=True)


def _id_and_timestamps() -> list[sa.Column]:
    return [
        sa.Column("id", UUID, server_default=sa.text("gen_random_uuid()"), nullable=False),
        sa.Column("created_at", sa.DateTime(timezone=True), server_default=sa.text("now()"), nullable=False),
        sa.Column("updated_at", sa.DateTime(timezone=True), server_default=sa.text("now()"), nullable=False),
    ]


def _tenant() -> sa.Column:
    return sa.Column("tenant_id", UUID, nullable=False, index=True)


def upgrade() -> None:
    # ── Standalone tables ──────────────────────────────────────────────

    op.create_table(
        "audit_log",
        sa.Column("event_type", sa.String(100), nullable=False, index=True),
        sa.Column("tenant_id", UUID, index=True),
        sa.Column("branch_id", UUID),
        sa.Column("actor_id", sa.String(100), comment="Staff user ID or 'system'"),
        sa.Column("entity_type", sa.String(50), comment="appointment, queue_entry, ..."),
        sa.Column("entity_id", UUID, index=True),
        sa.Column("data", postgresql.JSONB(astext_type=sa.Text())),
        *_id_and_timestamps(),
        sa.PrimaryKeyConstraint("id"),
    )

    op.create_table(
        "branches",
        _tenant(),
        sa.Column("name", sa.String(200), nullable=False),
        sa.Column("working_hours", postgresql.JSONB(astext_type=sa.Text())),
        sa.Column("is_active", sa.Boolean(), nullable=False, server_default=sa.true()),
        *_id_and_timestamps(),
        sa.PrimaryKeyConstraint("id"),
    )

    op.create_table(
        "staff",
        _tenant(),
        sa.Column("name", sa.String(200), nullable=False),
        sa.Column("phone", sa.String(20)),
        sa.Column("role", sa.String(20), nullable=False),
        sa.Column("gender", sa.String(10)),
        sa.Column("is_active", sa.Boolean(), nullable=False, server_default=sa.true()),
        sa.Column("deleted_at", sa.DateTime(timezone=True)),
        *_id_and_timestamps(),
        sa.PrimaryKeyConstraint("id"),
    )

    op.create_table(
        "services",
        _tenant(),
        sa.Column("name", sa.String(255), nullable=False),
        sa.Column("sku", sa.String(50)),
        sa.Column("duration_minutes", sa.Integer(), nullable=False),
        sa.Column("base_price", sa.Numeric(10, 2), nullable=False),
        sa.Column("tax_rate", sa.Numeric(5, 2), comment="Percent"),
        sa.Column("commission_value", sa.Numeric(5, 2), comment="Stylist commission, percent of unit price"),
        sa.Column("is_active", sa.Boolean(), nullable=False, server_default=sa.true()),
        sa.Column("deleted_at", sa.DateTime(timezone=True)),
        *_id_and_timestamps(),
        sa.PrimaryKeyConstraint("id"),
    )

    op.create_table(
        "customers",
        _tenant(),
        sa.Column("name", sa.String(255), nullable=False),
        sa.Column("phone", sa.String(20), index=True),
        sa.Column("email", sa.String(255)),
        sa.Column("gender", sa.String(10)),
        sa.Column("booking_status", sa.String(20), nullable=False, server_default="normal"),
        sa.Column("no_show_count", sa.Integer(), nullable=False, server_default="0"),
        *_id_and_timestamps(),
        sa.PrimaryKeyConstraint("id"),
    )

    # ── Tables referencing branches / staff / services ─────────────────

    op.create_table(
        "staff_branch_assignments",
        sa.Column("staff_id", UUID, sa.ForeignKey("staff.id", ondelete="CASCADE"), nullable=False, index=True),
        sa.Column("branch_id", UUID, sa.ForeignKey("branches.id", ondelete="CASCADE"), nullable=False, index=True),
        *_id_and_timestamps(),
        sa.PrimaryKeyConstraint("id"),
        sa.UniqueConstraint("staff_id", "branch_id"),
    )

    op.create_table(
        "service_branch_prices",
        sa.Column("service_id", UUID, sa.ForeignKey("services.id", ondelete="CASCADE"), nullable=False),
        sa.Column("branch_id", UUID, sa.ForeignKey("branches.id", ondelete="CASCADE"), nullable=False),
        sa.Column("price", sa.Numeric(10, 2)),
        *_id_and_timestamps(),
        sa.PrimaryKeyConstraint("id"),
        sa.UniqueConstraint("service_id", "branch_id"),
    )

    op.create_table(
        "stylist_breaks",
        _tenant(),
        sa.Column("branch_id", UUID, sa.ForeignKey("branches.id"), nullable=False),
        sa.Column("stylist_id", UUID, sa.ForeignKey("staff.id"), nullable=False),
        sa.Column("name", sa.String(100), nullable=False),
        sa.Column("day_of_week", sa.Integer(), comment="0=Sunday .. 6=Saturday"),
        sa.Column("start_time", sa.String(5), nullable=False),
        sa.Column("end_time", sa.String(5), nullable=False),
        sa.Column("is_active", sa.Boolean(), nullable=False, server_default=sa.true()),
        sa.Column("created_by", UUID),
        *_id_and_timestamps(),
        sa.PrimaryKeyConstraint("id"),
    )
    op.create_index("ix_stylist_breaks_stylist_day", "stylist_breaks", ["stylist_id", "day_of_week"])

    op.create_table(
        "stylist_blocked_slots",
        _tenant(),
        sa.Column("branch_id", UUID, sa.ForeignKey("branches.id"), nullable=False),
        sa.Column("stylist_id", UUID, sa.ForeignKey("staff.id"), nullable=False),
        sa.Column("blocked_date", sa.Date(), nullable=False),
        sa.Column("start_time", sa.String(5)),
        sa.Column("end_time", sa.String(5)),
        sa.Column("is_full_day", sa.Boolean(), nullable=False, server_default=sa.false()),
        sa.Column("reason", sa.String(255)),
        sa.Column("created_by", UUID),
        *_id_and_timestamps(),
        sa.PrimaryKeyConstraint("id"),
    )
    op.create_index(
        "ix_stylist_blocked_slots_stylist_date", "stylist_blocked_slots", ["stylist_id", "blocked_date"]
    )

    # ── Appointments ───────────────────────────────────────────────────

    op.create_table(
        "appointments",
        _tenant(),
        sa.Column("branch_id", UUID, sa.ForeignKey("branches.id"), nullable=False),
        sa.Column("customer_id", UUID, sa.ForeignKey("customers.id", ondelete="SET NULL")),
        sa.Column("customer_name", sa.String(255)),
        sa.Column("customer_phone", sa.String(20)),
        sa.Column("scheduled_date", sa.Date(), nullable=False),
        sa.Column("scheduled_time", sa.String(5), nullable=False),
        sa.Column("end_time", sa.String(5), nullable=False),
        sa.Column("total_duration", sa.Integer(), nullable=False),
        sa.Column("stylist_id", UUID, sa.ForeignKey("staff.id")),
        sa.Column("stylist_gender_preference", sa.String(10)),
        sa.Column("booking_type", sa.String(20), nullable=False),
        sa.Column("booking_source", sa.String(50)),
        sa.Column("status", sa.String(20), nullable=False, server_default="booked"),
        sa.Column("subtotal", sa.Numeric(10, 2), nullable=False),
        sa.Column("tax_amount", sa.Numeric(10, 2), nullable=False),
        sa.Column("total_amount", sa.Numeric(10, 2), nullable=False),
        sa.Column("price_locked_at", sa.DateTime(timezone=True)),
        sa.Column("prepayment_required", sa.Boolean(), nullable=False, server_default=sa.false()),
        sa.Column("prepayment_amount", sa.Numeric(10, 2), nullable=False, server_default="0"),
        sa.Column("prepayment_status", sa.String(20)),
        sa.Column("customer_notes", sa.Text()),
        sa.Column("internal_notes", sa.Text()),
        sa.Column("reschedule_count", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("original_appointment_id", UUID, sa.ForeignKey("appointments.id", ondelete="SET NULL")),
        sa.Column("rescheduled_to_id", UUID, sa.ForeignKey("appointments.id", ondelete="SET NULL")),
        sa.Column("cancelled_at", sa.DateTime(timezone=True)),
        sa.Column("cancelled_by", UUID),
        sa.Column("cancellation_reason", sa.Text()),
        sa.Column("is_salon_cancelled", sa.Boolean(), nullable=False, server_default=sa.false()),
        sa.Column("has_conflict", sa.Boolean(), nullable=False, server_default=sa.false()),
        sa.Column("conflict_notes", sa.Text()),
        sa.Column("conflict_marked_at", sa.DateTime(timezone=True)),
        sa.Column("conflict_resolved_at", sa.DateTime(timezone=True)),
        sa.Column("created_by", UUID),
        sa.Column("deleted_at", sa.DateTime(timezone=True)),
        *_id_and_timestamps(),
        sa.PrimaryKeyConstraint("id"),
    )
    op.create_index("ix_appointments_stylist_date", "appointments", ["stylist_id", "scheduled_date"])
    op.create_index(
        "ix_appointments_branch_date_time", "appointments", ["branch_id", "scheduled_date", "scheduled_time"]
    )
    op.create_index(
        "ix_appointments_branch_status_date", "appointments", ["branch_id", "status", "scheduled_date"]
    )

    op.create_table(
        "appointment_services",
        _tenant(),
        sa.Column(
            "appointment_id", UUID, sa.ForeignKey("appointments.id", ondelete="CASCADE"), nullable=False, index=True
        ),
        sa.Column("service_id", UUID, sa.ForeignKey("services.id"), nullable=False),
        sa.Column("service_name", sa.String(255), nullable=False),
        sa.Column("service_sku", sa.String(50)),
        sa.Column("stylist_id", UUID, sa.ForeignKey("staff.id")),
        sa.Column("unit_price", sa.Numeric(10, 2), nullable=False),
        sa.Column("quantity", sa.Integer(), nullable=False, server_default="1"),
        sa.Column("tax_rate", sa.Numeric(5, 2), nullable=False),
        sa.Column("tax_amount", sa.Numeric(10, 2), nullable=False),
        sa.Column("total_amount", sa.Numeric(10, 2), nullable=False),
        sa.Column("duration_minutes", sa.Integer(), nullable=False),
        sa.Column("commission_rate", sa.Numeric(5, 2)),
        sa.Column("commission_amount", sa.Numeric(10, 2)),
        sa.Column("status", sa.String(20), nullable=False, server_default="pending"),
        *_id_and_timestamps(),
        sa.PrimaryKeyConstraint("id"),
    )

    op.create_table(
        "appointment_status_history",
        _tenant(),
        sa.Column(
            "appointment_id", UUID, sa.ForeignKey("appointments.id", ondelete="CASCADE"), nullable=False, index=True
        ),
        sa.Column("from_status", sa.String(20)),
        sa.Column("to_status", sa.String(20), nullable=False),
        sa.Column("changed_by", UUID),
        sa.Column("notes", sa.Text()),
        *_id_and_timestamps(),
        sa.PrimaryKeyConstraint("id"),
    )

    # ── Walk-in queue ──────────────────────────────────────────────────

    op.create_table(
        "walk_in_queue",
        _tenant(),
        sa.Column("branch_id", UUID, sa.ForeignKey("branches.id"), nullable=False),
        sa.Column("queue_date", sa.Date(), nullable=False),
        sa.Column("token_number", sa.Integer(), nullable=False),
        sa.Column("customer_id", UUID, sa.ForeignKey("customers.id", ondelete="SET NULL")),
        sa.Column("customer_name", sa.String(255), nullable=False),
        sa.Column("customer_phone", sa.String(20)),
        sa.Column("service_ids", postgresql.ARRAY(UUID), nullable=False),
        sa.Column("stylist_preference_id", UUID, sa.ForeignKey("staff.id")),
        sa.Column("gender_preference", sa.String(10)),
        sa.Column("status", sa.String(20), nullable=False, server_default="waiting"),
        sa.Column("position", sa.Integer(), nullable=False),
        sa.Column("estimated_wait_minutes", sa.Integer()),
        sa.Column("called_at", sa.DateTime(timezone=True)),
        sa.Column("serving_started_at", sa.DateTime(timezone=True)),
        sa.Column("finished_at", sa.DateTime(timezone=True)),
        sa.Column("appointment_id", UUID, sa.ForeignKey("appointments.id", ondelete="SET NULL")),
        sa.Column("serving_stylist_id", UUID, sa.ForeignKey("staff.id")),
        *_id_and_timestamps(),
        sa.PrimaryKeyConstraint("id"),
        sa.UniqueConstraint("branch_id", "queue_date", "token_number", name="uq_walk_in_queue_token"),
        sa.UniqueConstraint("appointment_id"),
    )
    op.create_index(
        "ix_walk_in_queue_branch_date_status", "walk_in_queue", ["branch_id", "queue_date", "status"]
    )


def downgrade() -> None:
    # Drop in reverse dependency order
    op.drop_table("walk_in_queue")
    op.drop_table("appointment_status_history")
    op.drop_table("appointment_services")
    op.drop_table("appointments")
    op.drop_table("stylist_blocked_slots")
    op.drop_table("stylist_breaks")
    op.drop_table("service_branch_prices")
    op.drop_table("staff_branch_assignments")
    op.drop_table("customers")
    op.drop_table("services")
    op.drop_table("staff")
    op.drop_table("branches")
    op.drop_table("audit_log")

"""Serial booking schema: appointments, doctor timings, audit log."""

from __future__ import annotations

from alembic import op
import sqlalchemy as sa


revision = "0001_booking_schema"
down_revision = None
branch_labels = None
depends_on = None


def upgrade() -> None:
    op.create_table(
        "appointments",
        sa.Column("id", sa.Text(), primary_key=True),
        sa.Column("doctor_id", sa.Text(), nullable=False),
        sa.Column("patient_name", sa.Text(), nullable=False),
        sa.Column("pin", sa.Text(), nullable=False),
        sa.Column("concern", sa.Text(), nullable=True),
        sa.Column("reason", sa.Text(), nullable=False),
        sa.Column("contact", sa.Text(), nullable=True),
        sa.Column("serial", sa.Integer(), nullable=False),
        sa.Column("time", sa.Text(), nullable=False),
        sa.Column("appointment_date", sa.Text(), nullable=False),
        sa.Column("is_absent", sa.Integer(), server_default="0", nullable=False),
        sa.Column("created_at", sa.Text(), server_default=sa.text("(datetime('now'))"), nullable=False),
        sa.Column("updated_at", sa.Text(), server_default=sa.text("(datetime('now'))"), nullable=False),
        sa.CheckConstraint("is_absent IN (0, 1)", name="ck_appointments_is_absent"),
    )
    op.create_index("idx_appointments_doctor_day", "appointments", ["doctor_id", "appointment_date"])
    op.create_index(
        "uq_appointments_active_pin",
        "appointments",
        ["doctor_id", "appointment_date", "pin"],
        unique=True,
        sqlite_where=sa.text("is_absent = 0"),
    )
    op.create_index(
        "uq_appointments_active_serial",
        "appointments",
        ["doctor_id", "appointment_date", "serial"],
        unique=True,
        sqlite_where=sa.text("is_absent = 0"),
    )

    op.create_table(
        "doctor_timings",
        sa.Column("doctor_id", sa.Text(), primary_key=True),
        sa.Column("start_time", sa.Text(), nullable=False),
        sa.Column("break_start", sa.Text(), nullable=False),
        sa.Column("break_end", sa.Text(), nullable=False),
        sa.Column("end_time", sa.Text(), nullable=False),
        sa.Column("updated_at", sa.Text(), server_default=sa.text("(datetime('now'))"), nullable=False),
    )

    op.create_table(
        "audit_log",
        sa.Column("id", sa.Integer(), primary_key=True, autoincrement=True),
        sa.Column("actor_id", sa.Text(), nullable=True),
        sa.Column("action", sa.Text(), nullable=False),
        sa.Column("entity", sa.Text(), nullable=True),
        sa.Column("entity_id", sa.Text(), nullable=True),
        sa.Column("ts", sa.Text(), nullable=False),
        sa.Column("result", sa.Text(), server_default="ok", nullable=False),
        sa.Column("meta_json_redacted", sa.Text(), server_default="{}", nullable=False),
    )


def downgrade() -> None:
    op.drop_table("audit_log")
    op.drop_table("doctor_timings")
    op.drop_index("uq_appointments_active_serial", table_name="appointments")
    op.drop_index("uq_appointments_active_pin", table_name="appointments")
    op.drop_index("idx_appointments_doctor_day", table_name="appointments")
    op.drop_table("appointments")

"""Per-doctor date that is open for booking."""

from __future__ import annotations

from alembic import op
import sqlalchemy as sa


revision = "0002_doctor_open_dates"
down_revision = "0001_booking_schema"
branch_labels = None
depends_on = None


def upgrade() -> None:
    op.create_table(
        "doctor_open_dates",
        sa.Column("doctor_id", sa.Text(), primary_key=True),
        sa.Column("open_date", sa.Text(), nullable=False),
        sa.Column("updated_at", sa.Text(), server_default=sa.text("(datetime('now'))"), nullable=False),
    )


def downgrade() -> None:
    op.drop_table("doctor_open_dates")

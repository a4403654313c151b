"""bills and activity log

Revision ID: 0001
Revises: 
Create Date: 2026-10-19 00:00:00.000000
"""

from __future__ import annotations

from alembic import op
import sqlalchemy as sa
from sqlalchemy.dialects import postgresql


revision = "0001"
down_revision = None
branch_labels = None
depends_on = None


def upgrade() -> None:
    op.create_table(
        "bills",
        sa.Column("id", sa.Text(), primary_key=True),
        sa.Column("version", sa.Integer(), nullable=False),
        sa.Column("is_deleted", sa.Boolean(), nullable=False, server_default=sa.text("false")),
        sa.Column("participant_ids", postgresql.ARRAY(sa.Text()), nullable=False),
        sa.Column("document", postgresql.JSONB(), nullable=False),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False, server_default=sa.func.now()),
        sa.Column("updated_at", sa.DateTime(timezone=True), nullable=False, server_default=sa.func.now()),
        sa.CheckConstraint("version >= 1", name="bills_version_check"),
    )

    op.create_table(
        "bill_activities",
        sa.Column("id", sa.Text(), primary_key=True),
        sa.Column("bill_id", sa.Text(), sa.ForeignKey("bills.id"), nullable=False),
        sa.Column("participant_id", sa.Text(), nullable=False),
        sa.Column("actor_id", sa.Text(), nullable=False),
        sa.Column("activity_type", sa.Text(), nullable=False),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False),
        sa.Column("amount_snapshot", sa.BigInteger(), nullable=False),
        sa.Column("bill_name", sa.Text(), nullable=False),
        sa.Column("currency", sa.String(length=3), nullable=False),
        sa.CheckConstraint(
            "activity_type in ('created','edited','deleted')",
            name="bill_activities_type_check",
        ),
    )

    op.create_index("idx_bills_participants", "bills", ["participant_ids"], postgresql_using="gin")
    op.create_index("idx_bill_activities_bill", "bill_activities", ["bill_id"])
    op.create_index("idx_bill_activities_participant", "bill_activities", ["participant_id", "created_at"])


def downgrade() -> None:
    op.drop_index("idx_bill_activities_participant", table_name="bill_activities")
    op.drop_index("idx_bill_activities_bill", table_name="bill_activities")
    op.drop_index("idx_bills_participants", table_name="bills")

    op.drop_table("bill_activities")
    op.drop_table("bills")

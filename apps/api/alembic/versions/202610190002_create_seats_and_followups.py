"""create seat plan and follow-up tables

Revision ID: 202610190002
Revises: 202610190001
Create Date: 2026-10-19 00:02:00
"""

from collections.abc import Sequence

from alembic import op
import sqlalchemy as sa


revision: str = "202610190002"
down_revision: str | None = "202610190001"
branch_labels: Sequence[str] | None = None
depends_on: Sequence[str] | None = None


def upgrade() -> None:
    op.create_table(
        "seat_plan",
        sa.Column("id", sa.Uuid(), nullable=False),
        sa.Column("tenant_id", sa.String(length=128), nullable=False),
        sa.Column("broker_seat_limit", sa.Integer(), nullable=False, server_default="1"),
        sa.Column("billing_interval", sa.String(length=16), nullable=False, server_default="monthly"),
        sa.Column("cycle_anchor_at", sa.DateTime(timezone=True), nullable=False),
        sa.Column("unit_price_cents", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("currency_code", sa.String(length=3), nullable=False, server_default="BRL"),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False),
        sa.Column("updated_at", sa.DateTime(timezone=True), nullable=False),
        sa.PrimaryKeyConstraint("id"),
        sa.UniqueConstraint("tenant_id", name="uq_seat_plan_tenant"),
    )

    op.create_table(
        "seat_plan_change",
        sa.Column("id", sa.Uuid(), nullable=False),
        sa.Column("tenant_id", sa.String(length=128), nullable=False),
        sa.Column("action", sa.String(length=16), nullable=False),
        sa.Column("old_limit", sa.Integer(), nullable=False),
        sa.Column("new_limit", sa.Integer(), nullable=False),
        sa.Column("status", sa.String(length=16), nullable=False),
        sa.Column("effective_at", sa.DateTime(timezone=True), nullable=False),
        sa.Column("applied_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("last_evaluated_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("seats_delta", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("unit_price_cents", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("prorated_amount_cents", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("cycle_total_days", sa.Integer(), nullable=True),
        sa.Column("cycle_remaining_days", sa.Integer(), nullable=True),
        sa.Column("currency_code", sa.String(length=3), nullable=False, server_default="BRL"),
        sa.Column("notes", sa.Text(), nullable=True),
        sa.Column("requested_by", sa.String(length=128), nullable=True),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False),
        sa.Column("updated_at", sa.DateTime(timezone=True), nullable=False),
        sa.PrimaryKeyConstraint("id"),
    )
    op.create_index("ix_seat_plan_change_status_effective", "seat_plan_change", ["status", "effective_at"], unique=False)
    op.create_index("ix_seat_plan_change_tenant_created", "seat_plan_change", ["tenant_id", "created_at"], unique=False)

    op.create_table(
        "followup_job",
        sa.Column("id", sa.Uuid(), nullable=False),
        sa.Column("tenant_id", sa.String(length=128), nullable=False),
        sa.Column("contact_id", sa.Uuid(), nullable=False),
        sa.Column("step", sa.String(length=8), nullable=False),
        sa.Column("status", sa.String(length=16), nullable=False, server_default="pending"),
        sa.Column("scheduled_at", sa.DateTime(timezone=True), nullable=False),
        sa.Column("processed_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("attempts", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("error", sa.Text(), nullable=True),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False),
        sa.Column("updated_at", sa.DateTime(timezone=True), nullable=False),
        sa.ForeignKeyConstraint(["contact_id"], ["contact.id"], ondelete="CASCADE"),
        sa.PrimaryKeyConstraint("id"),
        sa.UniqueConstraint("contact_id", "step", name="uq_followup_job_contact_step"),
    )
    op.create_index("ix_followup_job_status_scheduled", "followup_job", ["status", "scheduled_at"], unique=False)
    op.create_index("ix_followup_job_tenant_contact", "followup_job", ["tenant_id", "contact_id"], unique=False)

    op.create_table(
        "followup_settings",
        sa.Column("id", sa.Uuid(), nullable=False),
        sa.Column("tenant_id", sa.String(length=128), nullable=False),
        sa.Column("enabled", sa.Boolean(), nullable=False, server_default=sa.text("true")),
        sa.Column("step_5m_template", sa.Text(), nullable=False),
        sa.Column("step_24h_template", sa.Text(), nullable=False),
        sa.Column("step_3d_template", sa.Text(), nullable=False),
        sa.Column("updated_at", sa.DateTime(timezone=True), nullable=False),
        sa.PrimaryKeyConstraint("id"),
        sa.UniqueConstraint("tenant_id", name="uq_followup_settings_tenant"),
    )


def downgrade() -> None:
    op.drop_table("followup_settings")
    op.drop_index("ix_followup_job_tenant_contact", table_name="followup_job")
    op.drop_index("ix_followup_job_status_scheduled", table_name="followup_job")
    op.drop_table("followup_job")
    op.drop_index("ix_seat_plan_change_tenant_created", table_name="seat_plan_change")
    op.drop_index("ix_seat_plan_change_status_effective", table_name="seat_plan_change")
    op.drop_table("seat_plan_change")
    op.drop_table("seat_plan")

"""add copilot entitlement, usage, and audit tables

Revision ID: 0001_copilot_core
Revises:
Create Date: 2026-10-18
"""

from __future__ import annotations

from alembic import op
import sqlalchemy as sa
from sqlalchemy.dialects import postgresql


revision = "0001_copilot_core"
down_revision = None
branch_labels = None
depends_on = None


def upgrade() -> None:
    op.create_table(
        "profiles",
        sa.Column("id", sa.String(), primary_key=True, nullable=False),
        sa.Column("plan", sa.String(), nullable=True),
        sa.Column("is_developer", sa.Boolean(), server_default=sa.text("false"), nullable=False),
        sa.Column("is_admin", sa.Boolean(), server_default=sa.text("false"), nullable=False),
        sa.Column("created_at", sa.DateTime(timezone=True), server_default=sa.func.now()),
    )

    op.create_table(
        "org_members",
        sa.Column("id", sa.BigInteger(), primary_key=True, autoincrement=True),
        sa.Column("org_id", sa.String(), nullable=False),
        sa.Column("user_id", sa.String(), nullable=False),
        sa.Column("role", sa.String(), server_default="member", nullable=False),
        sa.Column("joined_at", sa.DateTime(timezone=True), server_default=sa.func.now()),
        sa.UniqueConstraint("org_id", "user_id", name="uq_org_members_org_user"),
    )
    op.create_index("ix_org_members_org_id", "org_members", ["org_id"], unique=False)
    # Membership resolution orders by join time for a stable default organization.
    op.create_index(
        "ix_org_members_user_joined", "org_members", ["user_id", "joined_at"], unique=False
    )

    op.create_table(
        "ai_org_policies",
        sa.Column("org_id", sa.String(), primary_key=True, nullable=False),
        sa.Column("allow_bypass", sa.Boolean(), nullable=True),
        sa.Column("monthly_token_limit_per_seat", sa.Integer(), nullable=True),
        sa.Column("ai_enabled", sa.Boolean(), nullable=True),
        sa.Column("ai_allowed_modes", postgresql.JSONB(), nullable=True),
        sa.Column(
            "updated_at",
            sa.DateTime(timezone=True),
            server_default=sa.func.now(),
            onupdate=sa.func.now(),
        ),
    )

    # Monthly token counters; the unique key lets concurrent first inserts collide and retry.
    op.create_table(
        "ai_usage_monthly",
        sa.Column("id", sa.BigInteger(), primary_key=True, autoincrement=True),
        sa.Column("owner_id", sa.String(), nullable=False),
        sa.Column("org_id", sa.String(), nullable=True),
        sa.Column("period_start", sa.Date(), nullable=False),
        sa.Column("tokens_in", sa.BigInteger(), server_default=sa.text("0"), nullable=False),
        sa.Column("tokens_out", sa.BigInteger(), server_default=sa.text("0"), nullable=False),
        sa.Column("requests", sa.Integer(), server_default=sa.text("0"), nullable=False),
        sa.Column("last_request_at", sa.DateTime(timezone=True), nullable=True),
        sa.UniqueConstraint("owner_id", "period_start", name="uq_ai_usage_monthly_owner_period"),
    )
    op.create_index("ix_ai_usage_monthly_owner_id", "ai_usage_monthly", ["owner_id"], unique=False)

    op.create_table(
        "ai_request_log",
        sa.Column("id", sa.BigInteger(), primary_key=True, autoincrement=True),
        sa.Column("owner_id", sa.String(), nullable=False),
        sa.Column("org_id", sa.String(), nullable=True),
        sa.Column("request_id", sa.String(), nullable=True),
        sa.Column("mode", sa.String(), nullable=False),
        sa.Column("task", sa.String(), nullable=False),
        sa.Column("model", sa.String(), nullable=False),
        sa.Column("tokens_in", sa.Integer(), server_default=sa.text("0"), nullable=False),
        sa.Column("tokens_out", sa.Integer(), server_default=sa.text("0"), nullable=False),
        sa.Column("ops_count", sa.Integer(), server_default=sa.text("0"), nullable=False),
        sa.Column("risk_level", sa.String(), nullable=False),
        sa.Column("response_id", sa.String(), nullable=True),
        sa.Column("created_at", sa.DateTime(timezone=True), server_default=sa.func.now()),
    )
    op.create_index("ix_ai_request_log_owner_id", "ai_request_log", ["owner_id"], unique=False)
    op.create_index("ix_ai_request_log_org_id", "ai_request_log", ["org_id"], unique=False)

    op.create_table(
        "canvases",
        sa.Column("id", sa.String(), primary_key=True, nullable=False),
        sa.Column("project_id", sa.String(), nullable=False),
        sa.Column("owner_id", sa.String(), nullable=False),
        sa.Column("name", sa.String(), nullable=True),
        sa.Column("document", sa.Text(), nullable=True),
        sa.Column(
            "updated_at",
            sa.DateTime(timezone=True),
            server_default=sa.func.now(),
            onupdate=sa.func.now(),
        ),
    )
    op.create_index("ix_canvases_project_id", "canvases", ["project_id"], unique=False)
    op.create_index("ix_canvases_owner_id", "canvases", ["owner_id"], unique=False)


def downgrade() -> None:
    op.drop_index("ix_canvases_owner_id", table_name="canvases")
    op.drop_index("ix_canvases_project_id", table_name="canvases")
    op.drop_table("canvases")
    op.drop_index("ix_ai_request_log_org_id", table_name="ai_request_log")
    op.drop_index("ix_ai_request_log_owner_id", table_name="ai_request_log")
    op.drop_table("ai_request_log")
    op.drop_index("ix_ai_usage_monthly_owner_id", table_name="ai_usage_monthly")
    op.drop_table("ai_usage_monthly")
    op.drop_table("ai_org_policies")
    op.drop_index("ix_org_members_user_joined", table_name="org_members")
    op.drop_index("ix_org_members_org_id", table_name="org_members")
    op.drop_table("org_members")
    op.drop_table("profiles")

"""create humans crm tables

Revision ID: 202610190001
Revises:
Create Date: 2026-10-19 00:01:00
"""

from collections.abc import Sequence
from datetime import datetime, timezone
import uuid

from alembic import op
import sqlalchemy as sa


revision: str = "202610190001"
down_revision: str | None = None
branch_labels: Sequence[str] | None = None
depends_on: Sequence[str] | None = None


def upgrade() -> None:
    op.create_table(
        "audit_log",
        sa.Column("id", sa.String(length=32), nullable=False),
        sa.Column("actor_id", sa.String(length=128), nullable=True),
        sa.Column("action", sa.String(length=64), nullable=False),
        sa.Column("entity_type", sa.String(length=64), nullable=False),
        sa.Column("entity_id", sa.String(length=64), nullable=False),
        sa.Column("changes", sa.JSON(none_as_null=True), nullable=True),
        sa.Column("correlation_id", sa.String(length=128), nullable=True),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False),
        sa.PrimaryKeyConstraint("id"),
    )
    op.create_index("ix_audit_log_entity", "audit_log", ["entity_type", "entity_id"], unique=False)

    op.create_table(
        "display_id_counters",
        sa.Column("prefix", sa.String(length=16), nullable=False),
        sa.Column("counter", sa.Integer(), nullable=False, server_default="0"),
        sa.PrimaryKeyConstraint("prefix"),
    )

    op.create_table(
        "humans",
        sa.Column("id", sa.Uuid(), nullable=False),
        sa.Column("display_id", sa.String(length=32), nullable=False),
        sa.Column("first_name", sa.Text(), nullable=False),
        sa.Column("middle_name", sa.Text(), nullable=True),
        sa.Column("last_name", sa.Text(), nullable=False),
        sa.Column("status", sa.String(length=32), nullable=False, server_default="open"),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False),
        sa.Column("updated_at", sa.DateTime(timezone=True), nullable=False),
        sa.PrimaryKeyConstraint("id"),
        sa.UniqueConstraint("display_id"),
    )
    op.create_table(
        "human_types",
        sa.Column("id", sa.Uuid(), nullable=False),
        sa.Column("human_id", sa.Uuid(), nullable=False),
        sa.Column("type", sa.String(length=32), nullable=False),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False),
        sa.ForeignKeyConstraint(["human_id"], ["humans.id"], ondelete="CASCADE"),
        sa.PrimaryKeyConstraint("id"),
    )
    op.create_index("ix_human_types_human_id", "human_types", ["human_id"], unique=False)

    op.create_table(
        "accounts",
        sa.Column("id", sa.Uuid(), nullable=False),
        sa.Column("display_id", sa.String(length=32), nullable=False),
        sa.Column("name", sa.Text(), nullable=False),
        sa.Column("status", sa.String(length=32), nullable=False, server_default="open"),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False),
        sa.Column("updated_at", sa.DateTime(timezone=True), nullable=False),
        sa.PrimaryKeyConstraint("id"),
        sa.UniqueConstraint("display_id"),
    )
    op.create_table(
        "account_types",
        sa.Column("id", sa.Uuid(), nullable=False),
        sa.Column("account_id", sa.Uuid(), nullable=False),
        sa.Column("type_id", sa.String(length=64), nullable=False),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False),
        sa.ForeignKeyConstraint(["account_id"], ["accounts.id"], ondelete="CASCADE"),
        sa.PrimaryKeyConstraint("id"),
    )
    op.create_index("ix_account_types_account_id", "account_types", ["account_id"], unique=False)

    op.create_table(
        "opportunities",
        sa.Column("id", sa.Uuid(), nullable=False),
        sa.Column("display_id", sa.String(length=32), nullable=False),
        sa.Column("stage", sa.String(length=32), nullable=False, server_default="open"),
        sa.Column("seats_requested", sa.Integer(), nullable=False, server_default="1"),
        sa.Column("passenger_seats", sa.Integer(), nullable=False, server_default="1"),
        sa.Column("pet_seats", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("notes", sa.Text(), nullable=True),
        sa.Column("loss_reason", sa.Text(), nullable=True),
        sa.Column("flight_id", sa.String(length=64), nullable=True),
        sa.Column("next_action_owner_id", sa.String(length=128), nullable=True),
        sa.Column("next_action_description", sa.Text(), nullable=True),
        sa.Column("next_action_type", sa.String(length=32), nullable=True),
        sa.Column("next_action_start_date", sa.String(length=32), nullable=True),
        sa.Column("next_action_due_date", sa.String(length=32), nullable=True),
        sa.Column("next_action_completed_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False),
        sa.Column("updated_at", sa.DateTime(timezone=True), nullable=False),
        sa.PrimaryKeyConstraint("id"),
        sa.UniqueConstraint("display_id"),
    )
    op.create_index("ix_opportunities_stage", "opportunities", ["stage"], unique=False)

    roles_table = op.create_table(
        "opportunity_human_roles_config",
        sa.Column("id", sa.Uuid(), nullable=False),
        sa.Column("name", sa.String(length=64), nullable=False),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False),
        sa.PrimaryKeyConstraint("id"),
        sa.UniqueConstraint("name"),
    )
    op.create_table(
        "opportunity_humans",
        sa.Column("id", sa.Uuid(), nullable=False),
        sa.Column("opportunity_id", sa.Uuid(), nullable=False),
        sa.Column("human_id", sa.Uuid(), nullable=False),
        sa.Column("role_id", sa.Uuid(), nullable=True),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False),
        sa.ForeignKeyConstraint(["opportunity_id"], ["opportunities.id"]),
        sa.ForeignKeyConstraint(["human_id"], ["humans.id"]),
        sa.ForeignKeyConstraint(["role_id"], ["opportunity_human_roles_config.id"]),
        sa.PrimaryKeyConstraint("id"),
    )
    op.create_index("ix_opportunity_humans_opportunity_id", "opportunity_humans", ["opportunity_id"], unique=False)
    op.create_index("ix_opportunity_humans_human_id", "opportunity_humans", ["human_id"], unique=False)

    op.create_table(
        "activities",
        sa.Column("id", sa.Uuid(), nullable=False),
        sa.Column("display_id", sa.String(length=32), nullable=False),
        sa.Column("type", sa.String(length=32), nullable=False, server_default="email"),
        sa.Column("subject", sa.Text(), nullable=False),
        sa.Column("body", sa.Text(), nullable=True),
        sa.Column("notes", sa.Text(), nullable=True),
        sa.Column("activity_date", sa.DateTime(timezone=True), nullable=False),
        sa.Column("opportunity_id", sa.Uuid(), nullable=True),
        sa.Column("human_id", sa.Uuid(), nullable=True),
        sa.Column("account_id", sa.Uuid(), nullable=True),
        sa.Column("created_by_colleague_id", sa.String(length=128), nullable=True),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False),
        sa.Column("updated_at", sa.DateTime(timezone=True), nullable=False),
        sa.ForeignKeyConstraint(["opportunity_id"], ["opportunities.id"]),
        sa.ForeignKeyConstraint(["human_id"], ["humans.id"]),
        sa.ForeignKeyConstraint(["account_id"], ["accounts.id"]),
        sa.PrimaryKeyConstraint("id"),
        sa.UniqueConstraint("display_id"),
    )
    op.create_index("ix_activities_opportunity_id", "activities", ["opportunity_id"], unique=False)

    seeded_at = datetime.now(timezone.utc)
    op.bulk_insert(
        roles_table,
        [
            {"id": uuid.uuid4(), "name": "primary", "created_at": seeded_at},
            {"id": uuid.uuid4(), "name": "passenger", "created_at": seeded_at},
        ],
    )


def downgrade() -> None:
    op.drop_index("ix_activities_opportunity_id", table_name="activities")
    op.drop_table("activities")

    op.drop_index("ix_opportunity_humans_human_id", table_name="opportunity_humans")
    op.drop_index("ix_opportunity_humans_opportunity_id", table_name="opportunity_humans")
    op.drop_table("opportunity_humans")
    op.drop_table("opportunity_human_roles_config")

    op.drop_index("ix_opportunities_stage", table_name="opportunities")
    op.drop_table("opportunities")

    op.drop_index("ix_account_types_account_id", table_name="account_types")
    op.drop_table("account_types")
    op.drop_table("accounts")

    op.drop_index("ix_human_types_human_id", table_name="human_types")
    op.drop_table("human_types")
    op.drop_table("humans")

    op.drop_table("display_id_counters")

    op.drop_index("ix_audit_log_entity", table_name="audit_log")
    op.drop_table("audit_log")

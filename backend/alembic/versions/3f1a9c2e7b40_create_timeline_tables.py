"""Create client, activity catalog and timeline tables

Revision ID: 3f1a9c2e7b40
Revises:
Create Date: 2026-10-18 09:00:00.000000
"""

from collections.abc import Sequence

import sqlalchemy as sa
from sqlalchemy.dialects.postgresql import ENUM, JSONB

from alembic import op

# revision identifiers, used by Alembic.
revision: str = "3f1a9c2e7b40"
down_revision: str | None = None
branch_labels: str | Sequence[str] | None = None
depends_on: str | Sequence[str] | None = None

ENUMS: dict[str, tuple[str, ...]] = {
    "frequency_enum": (
        "None",
        "OneTime",
        "Hourly",
        "Daily",
        "Weekly",
        "Monthly",
        "Quarterly",
        "Yearly",
    ),
    "timeline_status_enum": ("pending", "ongoing", "completed", "delayed"),
    "timeline_type_enum": ("oneTime", "recurring"),
    "client_status_enum": ("active", "inactive"),
    "assignment_status_enum": ("active", "inactive"),
}


def _enum(name: str) -> ENUM:
    return ENUM(*ENUMS[name], name=name, create_type=False)


def _timestamps() -> list[sa.Column]:
    return [
        sa.Column("created_at", sa.DateTime(), nullable=False),
        sa.Column("updated_at", sa.DateTime(), nullable=True),
    ]


def upgrade() -> None:
    """Create the scheduling schema with its natural-key indexes."""
    bind = op.get_bind()
    for name in ENUMS:
        _enum(name).create(bind, checkfirst=True)

    op.create_table(
        "activity",
        sa.Column("activity_id", sa.Integer(), nullable=False),
        sa.Column("name", sa.String(length=200), nullable=False),
        sa.Column("description", sa.Text(), nullable=True),
        *_timestamps(),
        sa.PrimaryKeyConstraint("activity_id", name=op.f("pk_activity")),
        sa.UniqueConstraint("name", name=op.f("uq_activity_name")),
    )

    op.create_table(
        "subactivity",
        sa.Column("subactivity_id", sa.Integer(), nullable=False),
        sa.Column("activity_id", sa.Integer(), nullable=False),
        sa.Column("name", sa.String(length=200), nullable=False),
        sa.Column("frequency", _enum("frequency_enum"), nullable=False),
        sa.Column("frequency_config", JSONB(), nullable=True),
        sa.Column("fields", JSONB(), nullable=False),
        sa.Column("sort_order", sa.Integer(), nullable=False),
        *_timestamps(),
        sa.ForeignKeyConstraint(
            ["activity_id"],
            ["activity.activity_id"],
            name=op.f("fk_subactivity_activity_id_activity"),
            ondelete="CASCADE",
        ),
        sa.PrimaryKeyConstraint("subactivity_id", name=op.f("pk_subactivity")),
    )
    op.create_index("idx_subactivity_activity", "subactivity", ["activity_id"])

    op.create_table(
        "client",
        sa.Column("client_id", sa.Integer(), nullable=False),
        sa.Column("name", sa.String(length=200), nullable=False),
        sa.Column("email", sa.String(length=254), nullable=True),
        sa.Column("phone", sa.String(length=32), nullable=True),
        sa.Column("branch_id", sa.Integer(), nullable=False),
        sa.Column("status", _enum("client_status_enum"), nullable=False),
        *_timestamps(),
        sa.PrimaryKeyConstraint("client_id", name=op.f("pk_client")),
        sa.UniqueConstraint("email", name=op.f("uq_client_email")),
    )
    op.create_index("idx_client_branch", "client", ["branch_id"])
    op.create_index("idx_client_status", "client", ["status"])

    op.create_table(
        "client_activity",
        sa.Column("assignment_id", sa.Integer(), nullable=False),
        sa.Column("client_id", sa.Integer(), nullable=False),
        sa.Column("activity_id", sa.Integer(), nullable=False),
        sa.Column("subactivity_id", sa.Integer(), nullable=True),
        sa.Column("status", _enum("assignment_status_enum"), nullable=False),
        *_timestamps(),
        sa.ForeignKeyConstraint(
            ["client_id"],
            ["client.client_id"],
            name=op.f("fk_client_activity_client_id_client"),
            ondelete="CASCADE",
        ),
        sa.ForeignKeyConstraint(
            ["activity_id"],
            ["activity.activity_id"],
            name=op.f("fk_client_activity_activity_id_activity"),
            ondelete="CASCADE",
        ),
        sa.ForeignKeyConstraint(
            ["subactivity_id"],
            ["subactivity.subactivity_id"],
            name=op.f("fk_client_activity_subactivity_id_subactivity"),
            ondelete="CASCADE",
        ),
        sa.PrimaryKeyConstraint("assignment_id", name=op.f("pk_client_activity")),
        sa.UniqueConstraint(
            "client_id",
            "activity_id",
            "subactivity_id",
            name="uq_client_activity_assignment",
        ),
    )
    op.create_index("idx_client_activity_client", "client_activity", ["client_id"])

    op.create_table(
        "timeline",
        sa.Column("timeline_id", sa.Integer(), nullable=False),
        sa.Column("client_id", sa.Integer(), nullable=False),
        sa.Column("activity_id", sa.Integer(), nullable=False),
        sa.Column("subactivity_id", sa.Integer(), nullable=True),
        sa.Column("subactivity", JSONB(), nullable=True),
        sa.Column("branch_id", sa.Integer(), nullable=False),
        sa.Column("financial_year", sa.String(length=9), nullable=True),
        sa.Column("period", sa.String(length=32), nullable=True),
        sa.Column("due_date", sa.DateTime(), nullable=True),
        sa.Column("start_date", sa.DateTime(), nullable=True),
        sa.Column("end_date", sa.DateTime(), nullable=True),
        sa.Column("completed_at", sa.DateTime(), nullable=True),
        sa.Column("status", _enum("timeline_status_enum"), nullable=False),
        sa.Column("timeline_type", _enum("timeline_type_enum"), nullable=False),
        sa.Column("frequency", _enum("frequency_enum"), nullable=False),
        sa.Column("frequency_config", JSONB(), nullable=True),
        sa.Column("fields", JSONB(), nullable=False),
        *_timestamps(),
        sa.ForeignKeyConstraint(
            ["client_id"],
            ["client.client_id"],
            name=op.f("fk_timeline_client_id_client"),
            ondelete="CASCADE",
        ),
        sa.ForeignKeyConstraint(
            ["activity_id"],
            ["activity.activity_id"],
            name=op.f("fk_timeline_activity_id_activity"),
            ondelete="CASCADE",
        ),
        sa.PrimaryKeyConstraint("timeline_id", name=op.f("pk_timeline")),
    )
    op.create_index(
        "idx_timeline_client_activity", "timeline", ["client_id", "activity_id"]
    )
    op.create_index("idx_timeline_branch_status", "timeline", ["branch_id", "status"])
    op.create_index("idx_timeline_due_date", "timeline", ["due_date"])
    op.create_index("idx_timeline_subactivity", "timeline", ["subactivity_id"])

    # Natural keys. Existing duplicates must be removed (remove-duplicates)
    # before these can be created on a populated table.
    op.create_index(
        "uq_timeline_recurring_natural_key",
        "timeline",
        ["client_id", "activity_id", "subactivity_id", "period"],
        unique=True,
        postgresql_where=sa.text(
            "timeline_type = 'recurring' "
            "AND period IS NOT NULL AND subactivity_id IS NOT NULL"
        ),
    )
    op.create_index(
        "uq_timeline_one_time_key",
        "timeline",
        ["client_id", "activity_id", sa.text("coalesce(subactivity_id, 0)")],
        unique=True,
        postgresql_where=sa.text("timeline_type = 'oneTime'"),
    )


def downgrade() -> None:
    """Drop the scheduling schema."""
    op.drop_index("uq_timeline_one_time_key", table_name="timeline")
    op.drop_index("uq_timeline_recurring_natural_key", table_name="timeline")
    op.drop_table("timeline")
    op.drop_table("client_activity")
    op.drop_table("client")
    op.drop_table("subactivity")
    op.drop_table("activity")

    bind = op.get_bind()
    for name in reversed(ENUMS):
        _enum(name).drop(bind, checkfirst=True)

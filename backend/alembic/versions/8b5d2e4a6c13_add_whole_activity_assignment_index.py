"""Deduplicate whole-activity assignments

Revision ID: 8b5d2e4a6c13
Revises: 3f1a9c2e7b40
Create Date: 2026-10-19 09:00:00.000000
"""

from collections.abc import Sequence

import sqlalchemy as sa

from alembic import op

# revision identifiers, used by Alembic.
revision: str = "8b5d2e4a6c13"
down_revision: str | None = "3f1a9c2e7b40"
branch_labels: str | Sequence[str] | None = None
depends_on: str | Sequence[str] | None = None


def upgrade() -> None:
    """Keep the oldest whole-activity row per client/activity, then index."""
    op.execute(
        """
        DELETE FROM client_activity a
        USING client_activity b
        WHERE a.subactivity_id IS NULL
          AND b.subactivity_id IS NULL
          AND a.client_id = b.client_id
          AND a.activity_id = b.activity_id
          AND a.assignment_id > b.assignment_id
        """
    )
    op.create_index(
        "uq_client_activity_whole",
        "client_activity",
        ["client_id", "activity_id"],
        unique=True,
        postgresql_where=sa.text("subactivity_id IS NULL"),
    )


def downgrade() -> None:
    op.drop_index("uq_client_activity_whole", table_name="client_activity")

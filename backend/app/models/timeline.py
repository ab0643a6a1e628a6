"""Timeline model: one materialized occurrence of a client obligation.

Recurring timelines are unique on (client, activity, subactivity, period).
The uniqueness is enforced by a partial unique index so that the generator
can insert with ``ON CONFLICT DO NOTHING`` and stay idempotent when several
runs overlap. One-time timelines get their own partial index keyed on
(client, activity, subactivity-or-0).
"""

from datetime import datetime
from typing import Any

from sqlalchemy import (
    DateTime,
    ForeignKey,
    Index,
    Integer,
    String,
    and_,
    func,
    literal_column,
)
from sqlalchemy.orm import Mapped, mapped_column

from app.models.base import Base, TimestampMixin, enum_column, json_column
from app.models.enums import Frequency, TimelineStatus, TimelineType


class Timeline(Base, TimestampMixin):
    """A dated obligation instance for one client.

    ``subactivity`` is an immutable snapshot of the catalog entry taken when
    the row was generated. ``subactivity_id`` is the indexed copy of the
    snapshot id; rows written before that column existed have it NULL and
    are repaired by the duplicate reconciler.
    """

    __tablename__ = "timeline"

    timeline_id: Mapped[int] = mapped_column(primary_key=True)
    client_id: Mapped[int] = mapped_column(
        ForeignKey("client.client_id", ondelete="CASCADE"), nullable=False
    )
    activity_id: Mapped[int] = mapped_column(
        ForeignKey("activity.activity_id", ondelete="CASCADE"), nullable=False
    )
    subactivity_id: Mapped[int | None] = mapped_column(Integer, nullable=True)
    subactivity: Mapped[dict[str, Any] | None] = json_column(nullable=True)
    branch_id: Mapped[int] = mapped_column(Integer, nullable=False)

    financial_year: Mapped[str | None] = mapped_column(String(9), nullable=True)
    period: Mapped[str | None] = mapped_column(String(32), nullable=True)
    due_date: Mapped[datetime | None] = mapped_column(DateTime, nullable=True)
    start_date: Mapped[datetime | None] = mapped_column(DateTime, nullable=True)
    end_date: Mapped[datetime | None] = mapped_column(DateTime, nullable=True)
    completed_at: Mapped[datetime | None] = mapped_column(DateTime, nullable=True)

    status: Mapped[str] = mapped_column(
        enum_column(TimelineStatus, "timeline_status_enum"),
        default=TimelineStatus.PENDING.value,
        nullable=False,
    )
    timeline_type: Mapped[str] = mapped_column(
        enum_column(TimelineType, "timeline_type_enum"),
        default=TimelineType.ONE_TIME.value,
        nullable=False,
    )
    frequency: Mapped[str] = mapped_column(
        enum_column(Frequency, "frequency_enum"),
        default=Frequency.ONE_TIME.value,
        nullable=False,
    )
    frequency_config: Mapped[dict[str, Any] | None] = json_column(nullable=True)
    fields: Mapped[list[dict[str, Any]]] = json_column(default=list, nullable=False)

    __table_args__ = (
        Index("idx_timeline_client_activity", "client_id", "activity_id"),
        Index("idx_timeline_branch_status", "branch_id", "status"),
        Index("idx_timeline_due_date", "due_date"),
        Index("idx_timeline_subactivity", "subactivity_id"),
    )

    def __repr__(self) -> str:
        return (
            f"<Timeline(id={self.timeline_id}, client={self.client_id}, "
            f"period={self.period!r})>"
        )


# Predicates shared by the partial unique indexes and the ON CONFLICT targets
# in obligations.store (Postgres only infers an arbiter index when the
# conflict predicate implies the index predicate).
RECURRING_KEY_PREDICATE = and_(
    Timeline.timeline_type == TimelineType.RECURRING.value,
    Timeline.period.isnot(None),
    Timeline.subactivity_id.isnot(None),
)
ONE_TIME_KEY_PREDICATE = Timeline.timeline_type == TimelineType.ONE_TIME.value

RECURRING_KEY_COLUMNS = (
    Timeline.client_id,
    Timeline.activity_id,
    Timeline.subactivity_id,
    Timeline.period,
)
ONE_TIME_KEY_COLUMNS = (
    Timeline.client_id,
    Timeline.activity_id,
    func.coalesce(Timeline.subactivity_id, literal_column("0")),
)

Index(
    "uq_timeline_recurring_natural_key",
    *RECURRING_KEY_COLUMNS,
    unique=True,
    postgresql_where=RECURRING_KEY_PREDICATE,
)
Index(
    "uq_timeline_one_time_key",
    *ONE_TIME_KEY_COLUMNS,
    unique=True,
    postgresql_where=ONE_TIME_KEY_PREDICATE,
)

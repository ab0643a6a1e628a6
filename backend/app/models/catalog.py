"""Activity catalog models: activities and their subactivities.

The catalog is owned by another service; these tables are read here to
resolve recurrence rules and to snapshot subactivities into timelines.
"""

from typing import Any

from sqlalchemy import ForeignKey, Index, Integer, String, Text
from sqlalchemy.orm import Mapped, mapped_column, relationship

from app.models.base import Base, TimestampMixin, enum_column, json_column
from app.models.enums import Frequency


class Activity(Base, TimestampMixin):
    """A service line offered to clients (e.g. GST, Income Tax, Audit)."""

    __tablename__ = "activity"

    activity_id: Mapped[int] = mapped_column(primary_key=True)
    name: Mapped[str] = mapped_column(String(200), nullable=False, unique=True)
    description: Mapped[str | None] = mapped_column(Text, nullable=True)

    subactivities: Mapped[list["Subactivity"]] = relationship(
        back_populates="activity",
        cascade="all, delete-orphan",
        order_by="Subactivity.sort_order",
    )

    def __repr__(self) -> str:
        return f"<Activity(id={self.activity_id}, name={self.name!r})>"


class Subactivity(Base, TimestampMixin):
    """A filing or deliverable within an activity, with its recurrence rule.

    ``frequency_config`` keeps the catalog's wire shape (``monthlyDay``,
    ``quarterlyTime``, ...); it is turned into a typed rule by
    ``obligations.frequency.parse_rule``.
    """

    __tablename__ = "subactivity"

    subactivity_id: Mapped[int] = mapped_column(primary_key=True)
    activity_id: Mapped[int] = mapped_column(
        ForeignKey("activity.activity_id", ondelete="CASCADE"), nullable=False
    )
    name: Mapped[str] = mapped_column(String(200), nullable=False)
    frequency: Mapped[str] = mapped_column(
        enum_column(Frequency, "frequency_enum"),
        default=Frequency.NONE.value,
        nullable=False,
    )
    frequency_config: Mapped[dict[str, Any] | None] = json_column(nullable=True)
    fields: Mapped[list[dict[str, Any]]] = json_column(default=list, nullable=False)
    sort_order: Mapped[int] = mapped_column(Integer, default=0, nullable=False)

    activity: Mapped[Activity] = relationship(back_populates="subactivities")

    __table_args__ = (Index("idx_subactivity_activity", "activity_id"),)

    def __repr__(self) -> str:
        return (
            f"<Subactivity(id={self.subactivity_id}, name={self.name!r}, "
            f"frequency={self.frequency})>"
        )

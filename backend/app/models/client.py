"""Client and client-activity assignment models."""

from typing import Optional

from sqlalchemy import ForeignKey, Index, Integer, String, UniqueConstraint
from sqlalchemy.orm import Mapped, mapped_column, relationship

from app.models.base import Base, TimestampMixin, enum_column
from app.models.catalog import Activity, Subactivity
from app.models.enums import AssignmentStatus, ClientStatus


class Client(Base, TimestampMixin):
    """A client of the firm. Every timeline inherits the client's branch."""

    __tablename__ = "client"

    client_id: Mapped[int] = mapped_column(primary_key=True)
    name: Mapped[str] = mapped_column(String(200), nullable=False)
    email: Mapped[str | None] = mapped_column(String(254), nullable=True, unique=True)
    phone: Mapped[str | None] = mapped_column(String(32), nullable=True)
    branch_id: Mapped[int] = mapped_column(Integer, nullable=False)
    status: Mapped[str] = mapped_column(
        enum_column(ClientStatus, "client_status_enum"),
        default=ClientStatus.ACTIVE.value,
        nullable=False,
    )

    activities: Mapped[list["ClientActivity"]] = relationship(
        back_populates="client",
        cascade="all, delete-orphan",
    )

    __table_args__ = (
        Index("idx_client_branch", "branch_id"),
        Index("idx_client_status", "status"),
    )

    def __repr__(self) -> str:
        return f"<Client(id={self.client_id}, name={self.name!r})>"


class ClientActivity(Base, TimestampMixin):
    """An activity (optionally narrowed to one subactivity) assigned to a client."""

    __tablename__ = "client_activity"

    assignment_id: Mapped[int] = mapped_column(primary_key=True)
    client_id: Mapped[int] = mapped_column(
        ForeignKey("client.client_id", ondelete="CASCADE"), nullable=False
    )
    activity_id: Mapped[int] = mapped_column(
        ForeignKey("activity.activity_id", ondelete="CASCADE"), nullable=False
    )
    subactivity_id: Mapped[int | None] = mapped_column(
        ForeignKey("subactivity.subactivity_id", ondelete="CASCADE"), nullable=True
    )
    status: Mapped[str] = mapped_column(
        enum_column(AssignmentStatus, "assignment_status_enum"),
        default=AssignmentStatus.ACTIVE.value,
        nullable=False,
    )

    client: Mapped[Client] = relationship(back_populates="activities")
    activity: Mapped[Activity] = relationship()
    subactivity: Mapped[Optional[Subactivity]] = relationship()

    __table_args__ = (
        # Covers narrowed assignments only; NULL subactivities never collide.
        # Whole-activity rows are deduplicated by uq_client_activity_whole.
        UniqueConstraint(
            "client_id",
            "activity_id",
            "subactivity_id",
            name="uq_client_activity_assignment",
        ),
        Index("idx_client_activity_client", "client_id"),
    )


# Whole-activity assignments, shared by the partial unique index and the
# ON CONFLICT target in obligations.assignments.
WHOLE_ACTIVITY_PREDICATE = ClientActivity.subactivity_id.is_(None)

Index(
    "uq_client_activity_whole",
    ClientActivity.client_id,
    ClientActivity.activity_id,
    unique=True,
    postgresql_where=WHOLE_ACTIVITY_PREDICATE,
)

"""SQLAlchemy models for practice timelines."""

from app.models.base import Base, TimestampMixin, async_session_maker, get_async_session
from app.models.catalog import Activity, Subactivity
from app.models.client import Client, ClientActivity
from app.models.enums import (
    AssignmentStatus,
    ClientStatus,
    Frequency,
    TimelineStatus,
    TimelineType,
)
from app.models.timeline import Timeline

__all__ = [
    # Base
    "Base",
    "TimestampMixin",
    "async_session_maker",
    "get_async_session",
    # Enums
    "AssignmentStatus",
    "ClientStatus",
    "Frequency",
    "TimelineStatus",
    "TimelineType",
    # Catalog
    "Activity",
    "Subactivity",
    # Clients
    "Client",
    "ClientActivity",
    # Timelines
    "Timeline",
]

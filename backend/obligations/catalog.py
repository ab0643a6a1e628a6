"""Read-only view of the activity catalog used by timeline generation.

The catalog tables are owned elsewhere. Generation only needs a frozen
picture of one activity at a time, so lookups return plain dataclasses
rather than live ORM rows.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import Any, Protocol

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.orm import selectinload

from app.models.catalog import Activity
from app.models.enums import Frequency
from obligations.frequency import RecurrenceRule, parse_frequency, parse_rule

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class SubactivityDefinition:
    """A subactivity as the catalog describes it."""

    subactivity_id: int
    name: str
    frequency: Frequency = Frequency.NONE
    frequency_config: dict[str, Any] | None = None
    fields: list[dict[str, Any]] = field(default_factory=list)

    @property
    def is_recurring(self) -> bool:
        return self.frequency.is_recurring

    @property
    def rule(self) -> RecurrenceRule:
        """Typed recurrence rule. Raises ValidationError on a bad config."""
        return parse_rule(self.frequency, self.frequency_config)

    def snapshot(self) -> dict[str, Any]:
        """JSON snapshot embedded into every generated timeline."""
        return {
            "id": self.subactivity_id,
            "name": self.name,
            "frequency": self.frequency.value,
            "frequency_config": dict(self.frequency_config or {}),
            "fields": [dict(f) for f in self.fields],
        }

    def timeline_fields(self) -> list[dict[str, Any]]:
        """Empty form fields a timeline starts with."""
        return [
            {
                "file_name": f.get("name"),
                "field_type": f.get("type"),
                "field_value": None,
            }
            for f in self.fields
        ]


@dataclass(frozen=True)
class ActivityDefinition:
    activity_id: int
    name: str
    subactivities: tuple[SubactivityDefinition, ...] = ()

    def find_subactivity(self, subactivity_id: int) -> SubactivityDefinition | None:
        for sub in self.subactivities:
            if sub.subactivity_id == subactivity_id:
                return sub
        return None

    def find_subactivity_by_name(self, name: str) -> SubactivityDefinition | None:
        for sub in self.subactivities:
            if sub.name == name:
                return sub
        return None


@dataclass(frozen=True)
class ClientRef:
    """The slice of a client that timeline generation needs."""

    client_id: int
    branch_id: int
    name: str = ""


@dataclass(frozen=True)
class ActivityAssignment:
    """An activity assigned to a client, optionally narrowed to one subactivity."""

    activity_id: int
    subactivity_id: int | None = None


class ActivityCatalog(Protocol):
    async def get_activity(self, activity_id: int) -> ActivityDefinition | None: ...


class SqlActivityCatalog:
    """Catalog lookups against the ``activity``/``subactivity`` tables."""

    def __init__(self, session: AsyncSession):
        self.session = session

    async def get_activity(self, activity_id: int) -> ActivityDefinition | None:
        stmt = (
            select(Activity)
            .where(Activity.activity_id == activity_id)
            .options(selectinload(Activity.subactivities))
        )
        result = await self.session.execute(stmt)
        activity = result.scalar_one_or_none()
        if activity is None:
            return None

        return ActivityDefinition(
            activity_id=activity.activity_id,
            name=activity.name,
            subactivities=tuple(
                SubactivityDefinition(
                    subactivity_id=sub.subactivity_id,
                    name=sub.name,
                    frequency=parse_frequency(sub.frequency),
                    frequency_config=sub.frequency_config,
                    fields=list(sub.fields or []),
                )
                for sub in activity.subactivities
            ),
        )

"""Persistence boundary for timeline instances.

All writes that create timelines go through ``upsert_if_absent``, which is a
single ``INSERT ... ON CONFLICT DO NOTHING`` against the partial unique index
on the natural key. Two generator runs racing on the same client can
therefore never produce two rows for the same period: one insert wins, the
other reads the winner back.

The store never commits on its own. Callers own the unit of work and call
``commit()``/``rollback()`` at their boundary.
"""

from __future__ import annotations

import logging
from collections.abc import Sequence
from dataclasses import asdict, dataclass, field
from datetime import datetime
from typing import Any, Protocol

from sqlalchemy import delete, func, or_, select, update
from sqlalchemy.dialects.postgresql import insert as pg_insert
from sqlalchemy.exc import InterfaceError, OperationalError
from sqlalchemy.ext.asyncio import AsyncSession

from app.core.errors import ConflictError, StorageError
from app.models.enums import Frequency, TimelineStatus, TimelineType
from app.models.timeline import (
    ONE_TIME_KEY_COLUMNS,
    ONE_TIME_KEY_PREDICATE,
    RECURRING_KEY_COLUMNS,
    RECURRING_KEY_PREDICATE,
    Timeline,
)

logger = logging.getLogger(__name__)

UPSERT_ATTEMPTS = 2


@dataclass(frozen=True)
class NaturalKey:
    """Identity of a timeline. ``period`` is None for one-time instances."""

    client_id: int
    activity_id: int
    subactivity_id: int | None
    period: str | None
    timeline_type: TimelineType = TimelineType.RECURRING

    @property
    def is_recurring(self) -> bool:
        return self.timeline_type == TimelineType.RECURRING

    def __str__(self) -> str:
        return (
            f"client={self.client_id} activity={self.activity_id} "
            f"subactivity={self.subactivity_id} period={self.period}"
        )


@dataclass(kw_only=True)
class TimelineDraft:
    """Column values for a timeline that has not been written yet."""

    client_id: int
    activity_id: int
    branch_id: int
    subactivity_id: int | None = None
    subactivity: dict[str, Any] | None = None
    financial_year: str | None = None
    period: str | None = None
    due_date: datetime | None = None
    start_date: datetime | None = None
    end_date: datetime | None = None
    status: TimelineStatus = TimelineStatus.PENDING
    timeline_type: TimelineType = TimelineType.RECURRING
    frequency: Frequency = Frequency.ONE_TIME
    frequency_config: dict[str, Any] | None = None
    fields: list[dict[str, Any]] = field(default_factory=list)

    @property
    def key(self) -> NaturalKey:
        return NaturalKey(
            client_id=self.client_id,
            activity_id=self.activity_id,
            subactivity_id=self.subactivity_id,
            period=self.period if self.timeline_type == TimelineType.RECURRING else None,
            timeline_type=self.timeline_type,
        )

    def column_values(self) -> dict[str, Any]:
        values = {f: getattr(self, f) for f in _DRAFT_FIELDS}
        for name in ("status", "timeline_type", "frequency"):
            values[name] = values[name].value
        return values


@dataclass(kw_only=True)
class TimelineRecord(TimelineDraft):
    """A persisted timeline."""

    timeline_id: int
    created_at: datetime | None = None
    completed_at: datetime | None = None

    @classmethod
    def from_model(cls, row: Timeline) -> TimelineRecord:
        return cls(
            timeline_id=row.timeline_id,
            client_id=row.client_id,
            activity_id=row.activity_id,
            branch_id=row.branch_id,
            subactivity_id=row.subactivity_id,
            subactivity=row.subactivity,
            financial_year=row.financial_year,
            period=row.period,
            due_date=row.due_date,
            start_date=row.start_date,
            end_date=row.end_date,
            status=TimelineStatus(row.status),
            timeline_type=TimelineType(row.timeline_type),
            frequency=Frequency(row.frequency),
            frequency_config=row.frequency_config,
            fields=list(row.fields or []),
            created_at=row.created_at,
            completed_at=row.completed_at,
        )

    def to_dict(self) -> dict[str, Any]:
        return asdict(self)


_DRAFT_FIELDS = tuple(TimelineDraft.__dataclass_fields__)


@dataclass
class UpsertResult:
    record: TimelineRecord
    created: bool


@dataclass(frozen=True)
class TimelineKeyRow:
    """Projection of a recurring timeline used for duplicate detection."""

    timeline_id: int
    client_id: int
    activity_id: int
    subactivity_id: int | None
    snapshot_subactivity_id: int | None
    period: str | None
    created_at: datetime | None

    @property
    def effective_subactivity_id(self) -> int | None:
        """Indexed key, falling back to the id inside the snapshot."""
        if self.subactivity_id is not None:
            return self.subactivity_id
        return self.snapshot_subactivity_id


class TimelineStore(Protocol):
    async def upsert_if_absent(
        self, key: NaturalKey, draft: TimelineDraft
    ) -> UpsertResult: ...

    async def delete_upcoming(
        self,
        client_id: int,
        activity_id: int,
        subactivity_ids: Sequence[int],
        after: datetime,
    ) -> int: ...

    async def scan_recurring_keys(self) -> list[TimelineKeyRow]: ...

    async def delete_by_ids(self, timeline_ids: Sequence[int]) -> int: ...

    async def repair_keys(
        self, repairs: Sequence[tuple[int, int, str]]
    ) -> int: ...

    async def list_for_client(
        self, client_id: int, financial_year: str | None = None
    ) -> list[TimelineRecord]: ...

    async def commit(self) -> None: ...

    async def rollback(self) -> None: ...


class SqlTimelineStore:
    """TimelineStore backed by the ``timeline`` table."""

    def __init__(self, session: AsyncSession):
        self.session = session

    async def _execute(self, stmt: Any, params: Any = None) -> Any:
        try:
            if params is None:
                return await self.session.execute(stmt)
            return await self.session.execute(stmt, params)
        except (OperationalError, InterfaceError) as e:
            raise StorageError(f"Timeline storage unavailable: {e}") from e

    # ------------------------------------------------------------------
    # Writes
    # ------------------------------------------------------------------

    async def upsert_if_absent(
        self, key: NaturalKey, draft: TimelineDraft
    ) -> UpsertResult:
        """Insert ``draft`` unless a row with ``key`` exists; return the survivor.

        Raises:
            ConflictError: If the insert keeps conflicting but the
                conflicting row cannot be read back.
            StorageError: On connection-level failures.
        """
        for attempt in range(1, UPSERT_ATTEMPTS + 1):
            result = await self._execute(self._insert_statement(key, draft))
            row = result.scalar_one_or_none()
            if row is not None:
                return UpsertResult(record=TimelineRecord.from_model(row), created=True)

            existing = await self._find_by_key(key)
            if existing is not None:
                return UpsertResult(
                    record=TimelineRecord.from_model(existing), created=False
                )

            # The conflicting row was deleted between the two statements.
            logger.warning(f"Upsert survivor vanished for {key} (attempt {attempt})")

        raise ConflictError(f"Could not insert or read back timeline for {key}")

    def _insert_statement(self, key: NaturalKey, draft: TimelineDraft) -> Any:
        stmt = pg_insert(Timeline).values(**draft.column_values())
        if key.is_recurring:
            stmt = stmt.on_conflict_do_nothing(
                index_elements=list(RECURRING_KEY_COLUMNS),
                index_where=RECURRING_KEY_PREDICATE,
            )
        else:
            stmt = stmt.on_conflict_do_nothing(
                index_elements=list(ONE_TIME_KEY_COLUMNS),
                index_where=ONE_TIME_KEY_PREDICATE,
            )
        return stmt.returning(Timeline)

    async def _find_by_key(self, key: NaturalKey) -> Timeline | None:
        stmt = select(Timeline).where(
            Timeline.client_id == key.client_id,
            Timeline.activity_id == key.activity_id,
            Timeline.timeline_type == key.timeline_type.value,
        )
        if key.is_recurring:
            stmt = stmt.where(
                Timeline.subactivity_id == key.subactivity_id,
                Timeline.period == key.period,
            )
        else:
            stmt = stmt.where(
                func.coalesce(Timeline.subactivity_id, 0) == (key.subactivity_id or 0)
            )
        stmt = stmt.order_by(Timeline.created_at, Timeline.timeline_id).limit(1)
        result = await self._execute(stmt)
        return result.scalars().first()

    async def delete_upcoming(
        self,
        client_id: int,
        activity_id: int,
        subactivity_ids: Sequence[int],
        after: datetime,
    ) -> int:
        """Delete a client's timelines for the given subactivities due after ``after``.

        Matches either the indexed ``subactivity_id`` or the id inside the
        snapshot, so rows written before the column existed are included.
        """
        if not subactivity_ids:
            return 0
        ids = list(subactivity_ids)
        stmt = (
            delete(Timeline)
            .where(
                Timeline.client_id == client_id,
                Timeline.activity_id == activity_id,
                or_(
                    Timeline.subactivity_id.in_(ids),
                    Timeline.subactivity["id"].as_integer().in_(ids),
                ),
                Timeline.due_date > after,
            )
            .execution_options(synchronize_session=False)
        )
        result = await self._execute(stmt)
        return result.rowcount or 0

    async def delete_by_ids(self, timeline_ids: Sequence[int]) -> int:
        if not timeline_ids:
            return 0
        stmt = (
            delete(Timeline)
            .where(Timeline.timeline_id.in_(list(timeline_ids)))
            .execution_options(synchronize_session=False)
        )
        result = await self._execute(stmt)
        return result.rowcount or 0

    async def repair_keys(self, repairs: Sequence[tuple[int, int, str]]) -> int:
        """Rewrite ``(timeline_id, subactivity_id, period)`` natural-key columns."""
        if not repairs:
            return 0
        await self._execute(
            update(Timeline),
            [
                {
                    "timeline_id": timeline_id,
                    "subactivity_id": subactivity_id,
                    "period": period,
                }
                for timeline_id, subactivity_id, period in repairs
            ],
        )
        return len(repairs)

    # ------------------------------------------------------------------
    # Reads
    # ------------------------------------------------------------------

    async def scan_recurring_keys(self) -> list[TimelineKeyRow]:
        stmt = select(
            Timeline.timeline_id,
            Timeline.client_id,
            Timeline.activity_id,
            Timeline.subactivity_id,
            Timeline.subactivity["id"].as_integer().label("snapshot_subactivity_id"),
            Timeline.period,
            Timeline.created_at,
        ).where(Timeline.timeline_type == TimelineType.RECURRING.value)
        result = await self._execute(stmt)
        return [
            TimelineKeyRow(
                timeline_id=row.timeline_id,
                client_id=row.client_id,
                activity_id=row.activity_id,
                subactivity_id=row.subactivity_id,
                snapshot_subactivity_id=row.snapshot_subactivity_id,
                period=row.period,
                created_at=row.created_at,
            )
            for row in result.all()
        ]

    async def list_for_client(
        self, client_id: int, financial_year: str | None = None
    ) -> list[TimelineRecord]:
        stmt = select(Timeline).where(Timeline.client_id == client_id)
        if financial_year is not None:
            stmt = stmt.where(Timeline.financial_year == financial_year)
        stmt = stmt.order_by(Timeline.due_date, Timeline.timeline_id)
        result = await self._execute(stmt)
        return [TimelineRecord.from_model(row) for row in result.scalars().all()]

    # ------------------------------------------------------------------
    # Unit of work
    # ------------------------------------------------------------------

    async def commit(self) -> None:
        try:
            await self.session.commit()
        except (OperationalError, InterfaceError) as e:
            raise StorageError(f"Timeline commit failed: {e}") from e

    async def rollback(self) -> None:
        await self.session.rollback()

"""Detect and remove duplicate recurring timelines.

Duplicates predate the unique index: rows written by older code could share
a natural key, and some of them never had ``subactivity_id`` populated (the
id only lives in the snapshot). Both paths below group rows with the same
pure function, so the dry-run report always describes exactly what the
destructive run would delete.

Within a group the earliest row (by ``created_at``, then ``timeline_id``)
survives.
"""

from __future__ import annotations

import logging
from collections import defaultdict
from collections.abc import Iterable
from dataclasses import dataclass, field
from datetime import datetime

from obligations.store import TimelineKeyRow, TimelineStore

logger = logging.getLogger(__name__)

DEFAULT_DELETE_BATCH_SIZE = 500


@dataclass(frozen=True, order=True)
class GroupKey:
    client_id: int
    activity_id: int
    subactivity_id: int
    period: str


@dataclass
class DuplicateGroup:
    key: GroupKey
    members: list[TimelineKeyRow]

    @property
    def survivor(self) -> TimelineKeyRow:
        return self.members[0]

    @property
    def redundant(self) -> list[TimelineKeyRow]:
        return self.members[1:]

    @property
    def count(self) -> int:
        return len(self.members)

    @property
    def would_delete(self) -> int:
        return len(self.members) - 1

    def to_dict(self) -> dict:
        return {
            "client_id": self.key.client_id,
            "activity_id": self.key.activity_id,
            "subactivity_id": self.key.subactivity_id,
            "period": self.key.period,
            "count": self.count,
            "would_delete": self.would_delete,
        }


@dataclass
class DuplicateReport:
    groups: list[DuplicateGroup] = field(default_factory=list)

    @property
    def total_would_delete(self) -> int:
        return sum(g.would_delete for g in self.groups)

    def to_dict(self) -> dict:
        return {
            "groups": [g.to_dict() for g in self.groups],
            "total_would_delete": self.total_would_delete,
        }


@dataclass
class ReconcileResult:
    deleted_count: int = 0
    group_count: int = 0
    repaired_count: int = 0


def _member_order(row: TimelineKeyRow) -> tuple[datetime, int]:
    return (row.created_at or datetime.max, row.timeline_id)


def group_by_natural_key(rows: Iterable[TimelineKeyRow]) -> list[DuplicateGroup]:
    """Group well-formed recurring rows by natural key.

    Rows without a usable subactivity id or with a blank period are skipped.
    Periods are compared after trimming whitespace. Every returned group,
    including singletons, has its members ordered oldest first.
    """
    buckets: dict[GroupKey, list[TimelineKeyRow]] = defaultdict(list)
    for row in rows:
        subactivity_id = row.effective_subactivity_id
        period = (row.period or "").strip()
        if subactivity_id is None or not period:
            continue
        key = GroupKey(row.client_id, row.activity_id, subactivity_id, period)
        buckets[key].append(row)

    return [
        DuplicateGroup(key=key, members=sorted(members, key=_member_order))
        for key, members in sorted(buckets.items())
    ]


class DuplicateReconciler:
    def __init__(
        self,
        store: TimelineStore,
        delete_batch_size: int = DEFAULT_DELETE_BATCH_SIZE,
    ):
        self.store = store
        self.delete_batch_size = delete_batch_size

    async def find_duplicates(self) -> DuplicateReport:
        """Report duplicate groups without modifying anything."""
        rows = await self.store.scan_recurring_keys()
        groups = [g for g in group_by_natural_key(rows) if g.count > 1]
        report = DuplicateReport(groups=groups)
        logger.info(
            f"Scanned {len(rows)} recurring timelines: {len(groups)} duplicate "
            f"groups, {report.total_would_delete} redundant rows"
        )
        return report

    async def remove_duplicates(self) -> ReconcileResult:
        """Delete every redundant row and repair survivors' natural keys.

        Runs as a single unit of work: the store is committed once at the
        end and rolled back if anything fails.
        """
        rows = await self.store.scan_recurring_keys()
        groups = group_by_natural_key(rows)

        redundant_ids = [row.timeline_id for g in groups for row in g.redundant]
        # Survivors whose stored key differs from the group key (legacy rows
        # without subactivity_id, untrimmed periods).
        repairs = [
            (g.survivor.timeline_id, g.key.subactivity_id, g.key.period)
            for g in groups
            if g.survivor.subactivity_id is None or g.survivor.period != g.key.period
        ]

        result = ReconcileResult(group_count=sum(1 for g in groups if g.count > 1))
        try:
            for start in range(0, len(redundant_ids), self.delete_batch_size):
                batch = redundant_ids[start : start + self.delete_batch_size]
                result.deleted_count += await self.store.delete_by_ids(batch)
            result.repaired_count = await self.store.repair_keys(repairs)
            await self.store.commit()
        except Exception:
            await self.store.rollback()
            raise

        logger.info(
            f"Removed {result.deleted_count} duplicate timelines across "
            f"{result.group_count} groups, repaired {result.repaired_count}"
        )
        return result

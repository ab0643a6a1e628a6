"""Periodic jobs: recurring timeline refresh and duplicate monitoring.

Each job opens its own session per run. The recurring refresh only touches
the period that contains "now", so a run on April 1 creates April (and Q1,
and the FY's yearly period) but never recreates anything from the past.
"""

from __future__ import annotations

import logging
from collections.abc import Callable, Collection
from dataclasses import dataclass, field
from datetime import datetime
from functools import partial
from typing import Any

from sqlalchemy import select
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from app.config import Settings, settings as default_settings
from app.core.errors import TimelineError
from app.models.base import SessionFactory
from app.models.client import Client, ClientActivity
from app.models.enums import AssignmentStatus, ClientStatus, Frequency
from obligations.catalog import ActivityAssignment, ClientRef
from obligations.financial_year import FinancialYear
from obligations.reconciler import DuplicateReport
from obligations.scheduler import JobScheduler, ScheduledJob
from obligations.services import build_generator, build_reconciler

logger = logging.getLogger(__name__)

# Job group name -> frequencies it refreshes.
FREQUENCY_GROUPS: dict[str, tuple[Frequency, ...]] = {
    "daily": (Frequency.HOURLY, Frequency.DAILY, Frequency.WEEKLY),
    "monthly": (Frequency.MONTHLY,),
    "quarterly": (Frequency.QUARTERLY,),
    "yearly": (Frequency.YEARLY,),
}

# Crontab expressions, evaluated in settings.scheduler_timezone.
GROUP_SCHEDULES: dict[str, str] = {
    "daily": "0 1 * * *",
    "monthly": "0 2 1 * *",
    "quarterly": "0 3 1 1,4,7,10 *",
    "yearly": "0 4 1 4 *",
}

DUPLICATE_CHECK_SCHEDULE = "0 * * * *"

# Frequencies a financial-year backfill materializes.
BACKFILL_FREQUENCIES: tuple[Frequency, ...] = (
    Frequency.MONTHLY,
    Frequency.QUARTERLY,
    Frequency.YEARLY,
)


@dataclass
class JobSummary:
    frequencies: list[str]
    processed_clients: int = 0
    created: int = 0
    failed_clients: list[int] = field(default_factory=list)
    financial_year: str | None = None
    dry_run: bool = False

    def __str__(self) -> str:
        scope = "/".join(self.frequencies)
        if self.financial_year:
            scope = f"{self.financial_year} {scope}"
        verb = "would be created" if self.dry_run else "created"
        return (
            f"{scope}: {self.processed_clients} clients, "
            f"{self.created} {verb}, {len(self.failed_clients)} failed"
        )


async def load_active_assignments(
    session: AsyncSession,
) -> list[tuple[ClientRef, list[ActivityAssignment]]]:
    """Active clients with their active assignments, ordered by client id."""
    stmt = (
        select(
            Client.client_id,
            Client.branch_id,
            Client.name,
            ClientActivity.activity_id,
            ClientActivity.subactivity_id,
        )
        .join(ClientActivity, ClientActivity.client_id == Client.client_id)
        .where(
            Client.status == ClientStatus.ACTIVE.value,
            ClientActivity.status == AssignmentStatus.ACTIVE.value,
        )
        .order_by(Client.client_id, ClientActivity.assignment_id)
    )
    result = await session.execute(stmt)

    grouped: dict[int, tuple[ClientRef, list[ActivityAssignment]]] = {}
    for row in result.all():
        if row.client_id not in grouped:
            grouped[row.client_id] = (
                ClientRef(row.client_id, row.branch_id, row.name),
                [],
            )
        grouped[row.client_id][1].append(
            ActivityAssignment(row.activity_id, row.subactivity_id)
        )
    return list(grouped.values())


def parse_frequency_group(value: str) -> tuple[Frequency, ...]:
    """Accept a group name ("daily") or a frequency ("Weekly")."""
    group = FREQUENCY_GROUPS.get(value.strip().lower())
    if group is not None:
        return group
    for freq in Frequency:
        if freq.is_recurring and freq.value.lower() == value.strip().lower():
            return (freq,)
    raise ValueError(f"Unknown frequency or job group: {value!r}")


class RecurringTimelineJob:
    """Creates timelines for every active assignment of every active client.

    ``run`` is the scheduled refresh of the current period; ``backfill``
    fills a whole financial year (typically the previous one, so users can
    enter last year's filings).
    """

    def __init__(
        self,
        session_factory: SessionFactory,
        settings: Settings = default_settings,
        clock: Callable[[], datetime] = datetime.now,
    ):
        self.session_factory = session_factory
        self.settings = settings
        self.clock = clock

    async def run(self, frequencies: Collection[Frequency]) -> JobSummary:
        summary = JobSummary(frequencies=[f.value for f in frequencies])
        await self._generate_all(
            summary, frequencies=frequencies, current_period_only=True
        )
        logger.info(f"Recurring timeline job finished: {summary}")
        return summary

    async def backfill(
        self,
        financial_year: FinancialYear | None = None,
        dry_run: bool = False,
        frequencies: Collection[Frequency] = BACKFILL_FREQUENCIES,
    ) -> JobSummary:
        """Create every missing period of ``financial_year``.

        Defaults to the financial year before the current one. Existing
        periods are left alone, so reruns are harmless. With ``dry_run`` each
        client's work is rolled back and only counted.
        """
        fy = financial_year or FinancialYear.containing(self.clock().date()).previous()
        summary = JobSummary(
            frequencies=[f.value for f in frequencies],
            financial_year=fy.label,
            dry_run=dry_run,
        )
        await self._generate_all(
            summary, dry_run=dry_run, frequencies=frequencies, financial_year=fy
        )
        logger.info(f"Backfill finished: {summary}")
        return summary

    async def _generate_all(
        self, summary: JobSummary, dry_run: bool = False, **options: Any
    ) -> None:
        reference = self.clock()
        async with self.session_factory() as session:
            generator = build_generator(session, self.settings)
            for client, assignments in await load_active_assignments(session):
                try:
                    result = await generator.generate(
                        client, assignments, reference=reference, **options
                    )
                    if dry_run:
                        await generator.store.rollback()
                    else:
                        await generator.store.commit()
                except (TimelineError, SQLAlchemyError) as e:
                    await generator.store.rollback()
                    logger.error(f"Timeline refresh failed for client {client.client_id}: {e}")
                    summary.failed_clients.append(client.client_id)
                    continue
                summary.processed_clients += 1
                summary.created += result.created_count


class DuplicateCheckJob:
    """Dry-run reconciliation; warns when duplicates exist."""

    def __init__(
        self,
        session_factory: SessionFactory,
        settings: Settings = default_settings,
    ):
        self.session_factory = session_factory
        self.settings = settings

    async def run(self) -> DuplicateReport:
        async with self.session_factory() as session:
            report = await build_reconciler(session, self.settings).find_duplicates()
        if report.groups:
            logger.warning(
                f"{len(report.groups)} duplicate timeline groups found "
                f"({report.total_would_delete} redundant rows); "
                f"run remove-duplicates to clean up"
            )
        return report


def default_jobs(
    session_factory: SessionFactory, settings: Settings = default_settings
) -> list[ScheduledJob]:
    recurring = RecurringTimelineJob(session_factory, settings)
    jobs = [
        ScheduledJob(
            name=f"{group}-timelines",
            cron=GROUP_SCHEDULES[group],
            func=partial(recurring.run, frequencies),
            description=f"Create current-period {'/'.join(f.value for f in frequencies)} timelines",
        )
        for group, frequencies in FREQUENCY_GROUPS.items()
    ]
    jobs.append(
        ScheduledJob(
            name="duplicate-check",
            cron=DUPLICATE_CHECK_SCHEDULE,
            func=DuplicateCheckJob(session_factory, settings).run,
            description="Report duplicate recurring timelines",
        )
    )
    return jobs


def build_scheduler(
    session_factory: SessionFactory, settings: Settings = default_settings
) -> JobScheduler:
    scheduler = JobScheduler(timezone=settings.scheduler_timezone)
    for job in default_jobs(session_factory, settings):
        scheduler.register(job)
    return scheduler

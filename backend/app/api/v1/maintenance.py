"""Maintenance endpoints: duplicate reconciliation and on-demand jobs."""

from fastapi import APIRouter, Depends, Query, Request
from sqlalchemy.ext.asyncio import AsyncSession

from app.config import settings
from app.core.errors import ValidationError
from app.models.base import SessionFactory, get_async_session, get_session_factory
from app.schemas.maintenance import (
    DuplicateGroupSchema,
    DuplicateReportSchema,
    JobSummarySchema,
    ReconcileResultSchema,
    SchedulerStatusSchema,
)
from obligations.jobs import RecurringTimelineJob, parse_frequency_group
from obligations.services import build_reconciler

router = APIRouter()


@router.post("/duplicate-timelines")
async def reconcile_duplicate_timelines(
    dry_run: bool = Query(True, description="Only report, do not delete"),
    session: AsyncSession = Depends(get_async_session),
) -> DuplicateReportSchema | ReconcileResultSchema:
    """Report (dry run) or remove duplicate recurring timelines."""
    reconciler = build_reconciler(session, settings)
    if dry_run:
        report = await reconciler.find_duplicates()
        return DuplicateReportSchema(
            dry_run=True,
            groups=[DuplicateGroupSchema(**g.to_dict()) for g in report.groups],
            total_would_delete=report.total_would_delete,
        )

    result = await reconciler.remove_duplicates()
    return ReconcileResultSchema(
        dry_run=False,
        deleted=result.deleted_count,
        groups=result.group_count,
        repaired=result.repaired_count,
    )


@router.post("/recurring-timelines")
async def run_recurring_timelines(
    frequency: str = Query(
        ..., description="Frequency (e.g. Monthly) or job group (e.g. daily)"
    ),
    session_factory: SessionFactory = Depends(get_session_factory),
) -> JobSummarySchema:
    """Run the recurring timeline job now for one frequency."""
    try:
        frequencies = parse_frequency_group(frequency)
    except ValueError as e:
        raise ValidationError(str(e)) from e

    summary = await RecurringTimelineJob(session_factory, settings).run(frequencies)
    return JobSummarySchema(
        frequencies=summary.frequencies,
        processed_clients=summary.processed_clients,
        created=summary.created,
        failed_clients=summary.failed_clients,
    )


@router.get("/scheduler")
async def scheduler_status(request: Request) -> SchedulerStatusSchema:
    """Registered jobs and their next run times."""
    scheduler = getattr(request.app.state, "scheduler", None)
    if scheduler is None:
        return SchedulerStatusSchema(
            running=False, timezone=settings.scheduler_timezone, jobs=[]
        )
    return SchedulerStatusSchema(**scheduler.status())

"""Materialize timeline instances for a client's assigned activities.

For each assignment the generator looks the activity up in the catalog,
resolves every recurring subactivity into the periods of a financial year
and upserts one timeline per period. Subactivities without a frequency, and
activities with no subactivities at all, get a single one-time timeline.

Generation is idempotent: every write goes through the store's atomic
``upsert_if_absent``, so running the same assignment twice (or two workers
running it concurrently) never creates a second row for a period.

The generator never commits. Callers decide the transaction boundary.
"""

from __future__ import annotations

import logging
from collections.abc import Callable, Collection, Sequence
from dataclasses import dataclass, field
from datetime import datetime

from app.core.errors import NotFoundError
from app.models.enums import Frequency, TimelineType
from obligations.assignments import AssignmentStore
from obligations.catalog import (
    ActivityAssignment,
    ActivityCatalog,
    ActivityDefinition,
    ClientRef,
    SubactivityDefinition,
)
from obligations.financial_year import FinancialYear
from obligations.frequency import (
    DEFAULT_GRACE_DAYS,
    ResolvedPeriod,
    current_period,
    one_time_period,
    resolve_periods,
)
from obligations.store import TimelineDraft, TimelineRecord, TimelineStore

logger = logging.getLogger(__name__)

# Quarterly GST return -> the monthly return it replaces. A client files
# one or the other, never both.
GST_QUARTERLY_COUNTERPARTS: dict[str, str] = {
    "GSTR-1-Q": "GSTR-1",
    "GSTR-3B-Q": "GSTR-3B",
}


@dataclass
class GenerationResult:
    """Outcome of one ``generate`` call.

    ``instances`` holds every timeline touched, whether newly created or
    already present.
    """

    instances: list[TimelineRecord] = field(default_factory=list)
    created_count: int = 0
    removed_count: int = 0

    @property
    def existing_count(self) -> int:
        return len(self.instances) - self.created_count

    def merge(self, other: GenerationResult) -> None:
        self.instances.extend(other.instances)
        self.created_count += other.created_count
        self.removed_count += other.removed_count


class TimelineGenerator:
    """Turns client assignments into timeline rows."""

    def __init__(
        self,
        catalog: ActivityCatalog,
        store: TimelineStore,
        assignments: AssignmentStore,
        grace_days: int = DEFAULT_GRACE_DAYS,
        clock: Callable[[], datetime] = datetime.now,
    ):
        self.catalog = catalog
        self.store = store
        self.assignments = assignments
        self.grace_days = grace_days
        self.clock = clock

    async def generate(
        self,
        client: ClientRef,
        assignments: Sequence[ActivityAssignment],
        *,
        reference: datetime | None = None,
        financial_year: FinancialYear | None = None,
        frequencies: Collection[Frequency] | None = None,
        current_period_only: bool = False,
    ) -> GenerationResult:
        """Create any missing timelines for ``assignments``.

        Args:
            client: Client the timelines belong to.
            assignments: Activities (optionally narrowed to a subactivity).
            reference: "Now" for due-date and financial-year purposes.
            financial_year: Resolve this FY instead of the reference's.
            frequencies: Only touch recurring subactivities with these
                frequencies. Used by the scheduled jobs.
            current_period_only: Only the period containing ``reference``.

        When either filter is given the call is a scheduled refresh: one-time
        timelines and GST exclusivity are left to assignment-time calls.

        Raises:
            NotFoundError: The activity, or a narrowed subactivity, does not
                exist in the catalog.
            ValidationError: A subactivity's frequency config is malformed.
        """
        reference = reference or self.clock()
        scheduled = frequencies is not None or current_period_only
        result = GenerationResult()

        plan: list[tuple[ActivityDefinition, Sequence[SubactivityDefinition], bool]] = []
        for assignment in assignments:
            activity = await self.catalog.get_activity(assignment.activity_id)
            if activity is None:
                raise NotFoundError(f"Activity {assignment.activity_id} not found")
            if assignment.subactivity_id is None:
                plan.append((activity, activity.subactivities, False))
                continue
            sub = activity.find_subactivity(assignment.subactivity_id)
            if sub is None:
                raise NotFoundError(
                    f"Subactivity {assignment.subactivity_id} not found "
                    f"in activity {activity.activity_id}"
                )
            plan.append((activity, (sub,), True))

        # (activity_id, subactivity_id) of monthly returns switched to quarterly
        replaced: set[tuple[int, int]] = set()
        if not scheduled:
            for activity, targets, narrowed in plan:
                if narrowed:
                    result.removed_count += await self._enforce_gst_exclusivity(
                        client, activity, targets[0], reference, replaced
                    )

        for activity, targets, _ in plan:
            if not activity.subactivities:
                if not scheduled:
                    await self._one_time(client, activity, None, reference, result)
                continue

            for sub in targets:
                if (activity.activity_id, sub.subactivity_id) in replaced:
                    continue
                if sub.is_recurring:
                    if frequencies is not None and sub.frequency not in frequencies:
                        continue
                    await self._recurring(
                        client,
                        activity,
                        sub,
                        reference,
                        financial_year,
                        current_period_only,
                        result,
                    )
                elif not scheduled:
                    await self._one_time(client, activity, sub, reference, result)

        return result

    async def _enforce_gst_exclusivity(
        self,
        client: ClientRef,
        activity: ActivityDefinition,
        quarterly: SubactivityDefinition,
        reference: datetime,
        replaced: set[tuple[int, int]],
    ) -> int:
        """Swap a client from the monthly GST return to its quarterly variant.

        Removes the monthly assignment (a whole-activity assignment is split
        into narrowed rows for every other subactivity), deletes the client's
        monthly timelines due after ``reference`` and makes sure the
        quarterly assignment exists. Records the monthly subactivity in
        ``replaced`` and returns the number of timelines deleted.
        """
        monthly_name = GST_QUARTERLY_COUNTERPARTS.get(quarterly.name)
        if monthly_name is None:
            return 0
        monthly = activity.find_subactivity_by_name(monthly_name)
        if monthly is None:
            return 0
        replaced.add((activity.activity_id, monthly.subactivity_id))

        unassigned = await self.assignments.remove(
            client.client_id, activity.activity_id, [monthly.subactivity_id]
        )
        if await self.assignments.narrow(
            client.client_id,
            activity.activity_id,
            [
                s.subactivity_id
                for s in activity.subactivities
                if s.subactivity_id != monthly.subactivity_id
            ],
        ):
            unassigned += 1
        removed = await self.store.delete_upcoming(
            client.client_id,
            activity.activity_id,
            [monthly.subactivity_id],
            after=reference,
        )
        await self.assignments.add(
            client.client_id, activity.activity_id, quarterly.subactivity_id
        )
        if unassigned or removed:
            logger.info(
                f"Client {client.client_id}: switched {monthly_name} -> "
                f"{quarterly.name}, removed {unassigned} assignment(s) and "
                f"{removed} upcoming timeline(s)"
            )
        return removed

    async def _recurring(
        self,
        client: ClientRef,
        activity: ActivityDefinition,
        sub: SubactivityDefinition,
        reference: datetime,
        financial_year: FinancialYear | None,
        current_period_only: bool,
        result: GenerationResult,
    ) -> None:
        rule = sub.rule
        if current_period_only:
            resolved = current_period(rule, reference)
            periods = [resolved] if resolved is not None else []
        else:
            periods = resolve_periods(
                rule, reference_date=reference, financial_year=financial_year
            )

        created = 0
        for period in periods:
            draft = self._draft(client, activity, sub, period, TimelineType.RECURRING)
            outcome = await self.store.upsert_if_absent(draft.key, draft)
            result.instances.append(outcome.record)
            if outcome.created:
                created += 1

        result.created_count += created
        logger.info(
            f"Client {client.client_id} {activity.name}/{sub.name} "
            f"({sub.frequency.value}): {created} created, "
            f"{len(periods) - created} existing"
        )

    async def _one_time(
        self,
        client: ClientRef,
        activity: ActivityDefinition,
        sub: SubactivityDefinition | None,
        reference: datetime,
        result: GenerationResult,
    ) -> None:
        period = one_time_period(reference, self.grace_days)
        draft = self._draft(client, activity, sub, period, TimelineType.ONE_TIME)
        outcome = await self.store.upsert_if_absent(draft.key, draft)
        result.instances.append(outcome.record)
        if outcome.created:
            result.created_count += 1
            label = sub.name if sub else activity.name
            logger.info(f"Client {client.client_id}: one-time timeline for {label}")

    @staticmethod
    def _draft(
        client: ClientRef,
        activity: ActivityDefinition,
        sub: SubactivityDefinition | None,
        period: ResolvedPeriod,
        timeline_type: TimelineType,
    ) -> TimelineDraft:
        recurring = timeline_type == TimelineType.RECURRING
        return TimelineDraft(
            client_id=client.client_id,
            activity_id=activity.activity_id,
            branch_id=client.branch_id,
            subactivity_id=sub.subactivity_id if sub else None,
            subactivity=sub.snapshot() if sub else None,
            financial_year=period.financial_year,
            period=period.period,
            due_date=period.due_date,
            start_date=period.due_date,
            end_date=period.due_date,
            timeline_type=timeline_type,
            frequency=sub.frequency if sub and recurring else Frequency.ONE_TIME,
            frequency_config=sub.frequency_config if sub and recurring else None,
            fields=sub.timeline_fields() if sub else [],
        )

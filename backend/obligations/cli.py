"""CLI for timeline generation, maintenance and client import."""

from __future__ import annotations

import argparse
import asyncio
import json
import logging
import signal
import sys
from datetime import date, datetime
from pathlib import Path

from app.core.errors import TimelineError

# Configure logging
logging.basicConfig(
    level=logging.INFO,
    format="%(levelname)-5.5s [%(name)s] %(message)s",
)
logger = logging.getLogger(__name__)


def resolve_command(
    frequency: str,
    config: str | None = None,
    financial_year: str | None = None,
    on: date | None = None,
) -> int:
    """Print the periods a frequency config resolves to.

    Args:
        frequency: Catalog frequency (e.g., "Monthly").
        config: frequency_config as a JSON object.
        financial_year: FY label (e.g., "2024-2025"). Defaults to the FY of
            ``on`` or today.
        on: Reference date.

    Returns:
        0 on success, 1 on invalid input.
    """
    from obligations.financial_year import FinancialYear
    from obligations.frequency import one_time_period, parse_rule, resolve_periods

    try:
        rule = parse_rule(frequency, json.loads(config) if config else None)
        fy = FinancialYear.parse(financial_year) if financial_year else None
    except (TimelineError, json.JSONDecodeError) as e:
        logger.error(f"Invalid input: {e}")
        return 1

    periods = resolve_periods(rule, reference_date=on, financial_year=fy)
    if not periods:
        reference = datetime.combine(on, datetime.now().time()) if on else None
        periods = [one_time_period(reference)]

    print(f"\n{rule}")
    print("-" * 60)
    for p in periods:
        print(f"{p.period:<16} due {p.due_date:%Y-%m-%d %H:%M}  ({p.starts_on} .. {p.ends_on})")
    return 0


async def generate_command(
    client_id: int,
    activity_id: int,
    subactivity_id: int | None = None,
    financial_year: str | None = None,
) -> int:
    """Generate timelines for one client assignment and commit them."""
    from app.models.base import async_session_maker
    from app.models.client import Client
    from obligations.catalog import ActivityAssignment, ClientRef
    from obligations.financial_year import FinancialYear
    from obligations.services import build_generator

    async with async_session_maker() as session:
        client = await session.get(Client, client_id)
        if client is None:
            logger.error(f"Client {client_id} not found")
            return 1

        generator = build_generator(session)
        try:
            result = await generator.generate(
                ClientRef(client.client_id, client.branch_id, client.name),
                [ActivityAssignment(activity_id, subactivity_id)],
                financial_year=FinancialYear.parse(financial_year)
                if financial_year
                else None,
            )
            await generator.store.commit()
        except TimelineError as e:
            await generator.store.rollback()
            logger.error(f"Generation failed: {e}")
            return 1

    logger.info(
        f"Client {client_id}: {result.created_count} created, "
        f"{result.existing_count} existing, {result.removed_count} removed"
    )
    return 0


async def run_job_command(group: str) -> int:
    """Run the recurring timeline job once for a frequency group."""
    from app.models.base import async_session_maker
    from obligations.jobs import RecurringTimelineJob, parse_frequency_group

    try:
        frequencies = parse_frequency_group(group)
    except ValueError as e:
        logger.error(str(e))
        return 1

    summary = await RecurringTimelineJob(async_session_maker).run(frequencies)
    return 1 if summary.failed_clients else 0


async def backfill_command(financial_year: str | None = None, dry_run: bool = False) -> int:
    """Create the missing timelines of a whole financial year.

    Args:
        financial_year: FY label (e.g., "2024-2025"). Defaults to the
            previous financial year.
        dry_run: Count what would be created and roll it back.
    """
    from app.models.base import async_session_maker
    from obligations.financial_year import FinancialYear
    from obligations.jobs import RecurringTimelineJob

    try:
        fy = FinancialYear.parse(financial_year) if financial_year else None
    except TimelineError as e:
        logger.error(f"Invalid input: {e}")
        return 1

    summary = await RecurringTimelineJob(async_session_maker).backfill(fy, dry_run=dry_run)
    print(f"\n{summary}")
    return 1 if summary.failed_clients else 0


async def find_duplicates_command(verbose: bool = False) -> int:
    """Report duplicate recurring timelines without deleting anything."""
    from app.models.base import async_session_maker
    from obligations.services import build_reconciler

    async with async_session_maker() as session:
        report = await build_reconciler(session).find_duplicates()

    print(f"\nDuplicate groups: {len(report.groups)}")
    print(f"Rows that would be deleted: {report.total_would_delete}")
    if verbose:
        for group in report.groups:
            key = group.key
            print(
                f"  client={key.client_id} activity={key.activity_id} "
                f"subactivity={key.subactivity_id} period={key.period}: "
                f"{group.count} rows, keep #{group.survivor.timeline_id}"
            )
    return 0


async def remove_duplicates_command(confirm: bool = False) -> int:
    """Delete duplicate recurring timelines (requires --confirm)."""
    if not confirm:
        logger.warning("Dry run only; pass --confirm to delete")
        return await find_duplicates_command(verbose=True)

    from app.models.base import async_session_maker
    from obligations.services import build_reconciler

    async with async_session_maker() as session:
        try:
            result = await build_reconciler(session).remove_duplicates()
        except TimelineError as e:
            logger.error(f"Reconciliation failed: {e}")
            return 1

    print(
        f"\nDeleted {result.deleted_count} rows in {result.group_count} groups, "
        f"repaired {result.repaired_count} survivors"
    )
    return 0


async def import_clients_command(path: Path, show_errors: int = 20) -> int:
    """Import clients from a JSON file holding a list of client records."""
    from app.models.base import async_session_maker
    from obligations.services import build_importer

    try:
        items = json.loads(path.read_text())
    except (OSError, json.JSONDecodeError) as e:
        logger.error(f"Cannot read {path}: {e}")
        return 1
    if not isinstance(items, list):
        logger.error(f"{path} must contain a JSON list of client records")
        return 1

    async with async_session_maker() as session:
        result = await build_importer(session).import_batch(items)

    print(f"\nCreated: {result.created_count}")
    print(f"Updated: {result.updated_count}")
    print(f"Timelines created: {result.timelines_created}")
    print(f"Errors: {len(result.errors)}")
    for err in result.errors[:show_errors]:
        print(f"  [{err.index}] {err.error}")
    if len(result.errors) > show_errors:
        print(f"  ... and {len(result.errors) - show_errors} more")
    return 0 if not result.errors else 2


async def schedule_command() -> int:
    """Run the job scheduler in the foreground until interrupted."""
    from app.config import settings
    from app.models.base import async_session_maker
    from obligations.jobs import build_scheduler

    scheduler = build_scheduler(async_session_maker, settings)
    stop = asyncio.Event()
    loop = asyncio.get_running_loop()
    for sig in (signal.SIGINT, signal.SIGTERM):
        loop.add_signal_handler(sig, stop.set)

    scheduler.start()
    for job in scheduler.status()["jobs"]:
        logger.info(f"  {job['name']:<22} {job['cron']:<18} next: {job['next_run_time']}")
    await stop.wait()
    scheduler.stop()
    return 0


def main() -> int:
    """Main entry point for CLI."""
    parser = argparse.ArgumentParser(description="Recurring obligation timelines CLI")
    subparsers = parser.add_subparsers(dest="command", help="Command to run")

    # Resolve command
    resolve_parser = subparsers.add_parser(
        "resolve", help="Show the periods a frequency config resolves to"
    )
    resolve_parser.add_argument("frequency", help="Frequency (e.g., Monthly, Quarterly)")
    resolve_parser.add_argument(
        "--config",
        help='frequency_config as JSON (e.g., \'{"monthlyDay": 20}\')',
    )
    resolve_parser.add_argument(
        "--financial-year",
        help="Financial year label (e.g., 2024-2025)",
    )
    resolve_parser.add_argument(
        "--date",
        type=date.fromisoformat,
        help="Reference date, YYYY-MM-DD (default: today)",
    )

    # Generate command
    generate_parser = subparsers.add_parser(
        "generate", help="Generate timelines for a client assignment"
    )
    generate_parser.add_argument("client", type=int, help="Client id")
    generate_parser.add_argument("activity", type=int, help="Activity id")
    generate_parser.add_argument("--subactivity", type=int, help="Subactivity id")
    generate_parser.add_argument(
        "--financial-year",
        help="Financial year label (default: current)",
    )

    # Run-job command
    run_job_parser = subparsers.add_parser(
        "run-job", help="Run the recurring timeline job once"
    )
    run_job_parser.add_argument(
        "group",
        help="Job group (daily, monthly, quarterly, yearly) or a frequency",
    )

    # Backfill command
    backfill_parser = subparsers.add_parser(
        "backfill", help="Create a whole financial year of recurring timelines"
    )
    backfill_parser.add_argument(
        "--financial-year",
        help="Financial year label (default: previous)",
    )
    backfill_parser.add_argument(
        "--dry-run", action="store_true", help="Count without saving anything"
    )

    # Find-duplicates command
    find_parser = subparsers.add_parser(
        "find-duplicates", help="Report duplicate timelines (read-only)"
    )
    find_parser.add_argument(
        "-v", "--verbose", action="store_true", help="List every duplicate group"
    )

    # Remove-duplicates command
    remove_parser = subparsers.add_parser(
        "remove-duplicates", help="Delete duplicate timelines"
    )
    remove_parser.add_argument(
        "--confirm", action="store_true", help="Actually delete (default: dry run)"
    )

    # Import-clients command
    import_parser = subparsers.add_parser(
        "import-clients", help="Bulk import clients from a JSON file"
    )
    import_parser.add_argument("path", type=Path, help="JSON file with a list of clients")
    import_parser.add_argument(
        "--show-errors",
        type=int,
        default=20,
        help="Maximum number of errors to print (default: 20)",
    )

    # Schedule command
    subparsers.add_parser("schedule", help="Run the job scheduler in the foreground")

    args = parser.parse_args()

    if args.command == "resolve":
        return resolve_command(
            frequency=args.frequency,
            config=args.config,
            financial_year=args.financial_year,
            on=args.date,
        )

    elif args.command == "generate":
        return asyncio.run(
            generate_command(
                client_id=args.client,
                activity_id=args.activity,
                subactivity_id=args.subactivity,
                financial_year=args.financial_year,
            )
        )

    elif args.command == "run-job":
        return asyncio.run(run_job_command(args.group))

    elif args.command == "backfill":
        return asyncio.run(
            backfill_command(financial_year=args.financial_year, dry_run=args.dry_run)
        )

    elif args.command == "find-duplicates":
        return asyncio.run(find_duplicates_command(verbose=args.verbose))

    elif args.command == "remove-duplicates":
        return asyncio.run(remove_duplicates_command(confirm=args.confirm))

    elif args.command == "import-clients":
        return asyncio.run(
            import_clients_command(path=args.path, show_errors=args.show_errors)
        )

    elif args.command == "schedule":
        return asyncio.run(schedule_command())

    else:
        parser.print_help()
        return 1


if __name__ == "__main__":
    sys.exit(main())

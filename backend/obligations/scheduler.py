"""Cron-style job registry for periodic timeline maintenance.

Wraps APScheduler's ``AsyncIOScheduler``. A ``JobScheduler`` is created by
whoever hosts the event loop (the FastAPI lifespan or the ``schedule`` CLI
command) and owns its jobs; nothing here is module-global.

Every job runs with ``max_instances=1`` and ``coalesce=True`` so a slow run
is never overlapped by the next tick in the same process. A failing job is
logged and does not take the host process down.
"""

from __future__ import annotations

import logging
import time
from collections.abc import Awaitable, Callable
from dataclasses import dataclass
from datetime import datetime
from typing import Any

from apscheduler.schedulers.asyncio import AsyncIOScheduler
from apscheduler.triggers.cron import CronTrigger

from app.core.errors import NotFoundError

logger = logging.getLogger(__name__)

JobFunc = Callable[[], Awaitable[Any]]

MISFIRE_GRACE_SECONDS = 3600


@dataclass(frozen=True)
class ScheduledJob:
    """A named coroutine run on a crontab expression."""

    name: str
    cron: str  # "minute hour day month day_of_week"
    func: JobFunc
    description: str = ""


class JobScheduler:
    def __init__(
        self,
        timezone: str = "Asia/Kolkata",
        scheduler: AsyncIOScheduler | None = None,
    ):
        self.timezone = timezone
        self._scheduler = scheduler or AsyncIOScheduler(timezone=timezone)
        self._jobs: dict[str, ScheduledJob] = {}

    @property
    def running(self) -> bool:
        return bool(self._scheduler.running)

    @property
    def jobs(self) -> list[ScheduledJob]:
        return list(self._jobs.values())

    def register(self, job: ScheduledJob) -> None:
        """Add a job. Raises ValueError on a duplicate name or bad crontab."""
        if job.name in self._jobs:
            raise ValueError(f"Job already registered: {job.name}")
        self._trigger(job)
        self._jobs[job.name] = job
        if self.running:
            self._add(job)

    def start(self) -> None:
        if self.running:
            return
        for job in self._jobs.values():
            self._add(job)
        self._scheduler.start()
        logger.info(
            f"Scheduler started ({self.timezone}) with {len(self._jobs)} jobs: "
            f"{', '.join(self._jobs)}"
        )

    def stop(self, wait: bool = False) -> None:
        if not self.running:
            return
        self._scheduler.shutdown(wait=wait)
        logger.info("Scheduler stopped")

    def status(self) -> dict[str, Any]:
        return {
            "running": self.running,
            "timezone": self.timezone,
            "jobs": [
                {
                    "name": job.name,
                    "cron": job.cron,
                    "description": job.description,
                    "next_run_time": self._next_run_time(job.name),
                }
                for job in self._jobs.values()
            ],
        }

    async def run_now(self, name: str) -> Any:
        """Run a registered job immediately and return its result.

        Unlike scheduled runs, errors propagate to the caller.
        """
        job = self._jobs.get(name)
        if job is None:
            raise NotFoundError(f"No scheduled job named {name!r}")
        logger.info(f"Running job {name} on demand")
        return await job.func()

    def _trigger(self, job: ScheduledJob) -> CronTrigger:
        return CronTrigger.from_crontab(job.cron, timezone=self.timezone)

    def _add(self, job: ScheduledJob) -> None:
        self._scheduler.add_job(
            self._run_scheduled,
            self._trigger(job),
            args=[job.name],
            id=job.name,
            name=job.name,
            replace_existing=True,
            max_instances=1,
            coalesce=True,
            misfire_grace_time=MISFIRE_GRACE_SECONDS,
        )

    def _next_run_time(self, name: str) -> datetime | None:
        if not self.running:
            return None
        scheduled = self._scheduler.get_job(name)
        return scheduled.next_run_time if scheduled is not None else None

    async def _run_scheduled(self, name: str) -> Any:
        job = self._jobs[name]
        started = time.monotonic()
        logger.info(f"Job {name} started")
        try:
            result = await job.func()
        except Exception:
            logger.exception(f"Job {name} failed after {time.monotonic() - started:.1f}s")
            return None
        logger.info(f"Job {name} finished in {time.monotonic() - started:.1f}s: {result}")
        return result

"""Tests for JobScheduler."""

from __future__ import annotations

import logging
from unittest.mock import AsyncMock, MagicMock

import pytest

from app.core.errors import NotFoundError
from obligations.scheduler import JobScheduler, ScheduledJob


def _job(name: str = "nightly", cron: str = "0 1 * * *", func=None) -> ScheduledJob:
    return ScheduledJob(name=name, cron=cron, func=func or AsyncMock(return_value="ok"))


def _mock_backend() -> MagicMock:
    backend = MagicMock()
    backend.running = False
    return backend


class TestRegistration:
    def test_duplicate_name_rejected(self) -> None:
        scheduler = JobScheduler(scheduler=_mock_backend())
        scheduler.register(_job())

        with pytest.raises(ValueError, match="already registered"):
            scheduler.register(_job())

    def test_bad_crontab_rejected(self) -> None:
        scheduler = JobScheduler(scheduler=_mock_backend())

        with pytest.raises(ValueError):
            scheduler.register(_job(cron="every day"))
        assert scheduler.jobs == []

    def test_start_adds_jobs_without_overlap(self) -> None:
        backend = _mock_backend()
        scheduler = JobScheduler(scheduler=backend)
        scheduler.register(_job("a"))
        scheduler.register(_job("b", "0 2 1 * *"))

        scheduler.start()

        assert backend.add_job.call_count == 2
        kwargs = backend.add_job.call_args.kwargs
        assert kwargs["id"] == "b"
        assert kwargs["max_instances"] == 1
        assert kwargs["coalesce"] is True
        assert kwargs["replace_existing"] is True
        backend.start.assert_called_once()


class TestStatus:
    def test_status_when_stopped(self) -> None:
        scheduler = JobScheduler(timezone="Asia/Kolkata", scheduler=_mock_backend())
        scheduler.register(ScheduledJob("nightly", "0 1 * * *", AsyncMock(), "Nightly run"))

        status = scheduler.status()

        assert status["running"] is False
        assert status["timezone"] == "Asia/Kolkata"
        assert status["jobs"] == [
            {
                "name": "nightly",
                "cron": "0 1 * * *",
                "description": "Nightly run",
                "next_run_time": None,
            }
        ]

    @pytest.mark.asyncio
    async def test_running_scheduler_reports_next_run(self) -> None:
        scheduler = JobScheduler(timezone="Asia/Kolkata")
        scheduler.register(_job())

        scheduler.start()
        try:
            status = scheduler.status()
            assert status["running"] is True
            assert status["jobs"][0]["next_run_time"] is not None
            assert status["jobs"][0]["next_run_time"].hour == 1
        finally:
            scheduler.stop()
        assert scheduler.running is False


class TestRunNow:
    @pytest.mark.asyncio
    async def test_returns_job_result(self) -> None:
        func = AsyncMock(return_value={"created": 3})
        scheduler = JobScheduler(scheduler=_mock_backend())
        scheduler.register(_job(func=func))

        assert await scheduler.run_now("nightly") == {"created": 3}
        func.assert_awaited_once()

    @pytest.mark.asyncio
    async def test_unknown_job(self) -> None:
        scheduler = JobScheduler(scheduler=_mock_backend())

        with pytest.raises(NotFoundError):
            await scheduler.run_now("missing")

    @pytest.mark.asyncio
    async def test_errors_propagate_on_demand(self) -> None:
        scheduler = JobScheduler(scheduler=_mock_backend())
        scheduler.register(_job(func=AsyncMock(side_effect=RuntimeError("boom"))))

        with pytest.raises(RuntimeError):
            await scheduler.run_now("nightly")


@pytest.mark.asyncio
async def test_scheduled_failure_is_logged_not_raised(caplog: pytest.LogCaptureFixture) -> None:
    scheduler = JobScheduler(scheduler=_mock_backend())
    scheduler.register(_job(func=AsyncMock(side_effect=RuntimeError("boom"))))

    with caplog.at_level(logging.ERROR, logger="obligations.scheduler"):
        result = await scheduler._run_scheduled("nightly")

    assert result is None
    assert "Job nightly failed" in caplog.text

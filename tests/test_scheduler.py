from __future__ import annotations

import asyncio
from datetime import datetime, time
from zoneinfo import ZoneInfo

import pytest

from order_invoicer.schemas.reports import CycleReport
from order_invoicer.services.exceptions import LedgerError
from order_invoicer.services.scheduler import (
    InvoiceScheduler,
    next_daily_run,
    next_monthly_run,
    next_weekly_run,
)

ATHENS = ZoneInfo("Europe/Athens")


class SlowPipeline:
    def __init__(self, release: asyncio.Event | None = None, error: Exception | None = None) -> None:
        self.runs = 0
        self._release = release
        self._error = error

    async def run_cycle(self) -> CycleReport:
        self.runs += 1
        if self._release is not None:
            await self._release.wait()
        if self._error is not None:
            raise self._error
        return CycleReport(started_at="now")


class StubReports:
    def __init__(self) -> None:
        self.daily: list = []
        self.weekly: list = []

    async def send_daily_report(self, day=None, force=False) -> bool:
        self.daily.append(day)
        return True

    async def send_weekly_report(self, day=None, force=False) -> bool:
        self.weekly.append(day)
        return True

    def cleanup_old_reports(self, days_to_keep=None) -> list:
        return []


def test_next_daily_run() -> None:
    before = datetime(2026, 3, 14, 8, 0, tzinfo=ATHENS)
    after = datetime(2026, 3, 14, 9, 0, tzinfo=ATHENS)

    assert next_daily_run(before, time(9, 0)) == datetime(2026, 3, 14, 9, 0, tzinfo=ATHENS)
    assert next_daily_run(after, time(9, 0)) == datetime(2026, 3, 15, 9, 0, tzinfo=ATHENS)


def test_next_weekly_run_targets_monday() -> None:
    saturday = datetime(2026, 3, 14, 12, 0, tzinfo=ATHENS)
    monday_late = datetime(2026, 3, 16, 10, 0, tzinfo=ATHENS)

    assert next_weekly_run(saturday, 0, time(9, 0)) == datetime(2026, 3, 16, 9, 0, tzinfo=ATHENS)
    assert next_weekly_run(monday_late, 0, time(9, 0)) == datetime(2026, 3, 23, 9, 0, tzinfo=ATHENS)


def test_next_monthly_run_rolls_over_year() -> None:
    now = datetime(2026, 12, 1, 0, 0, tzinfo=ATHENS)

    assert next_monthly_run(now, 1, time(0, 0)) == datetime(2027, 1, 1, 0, 0, tzinfo=ATHENS)
    assert next_monthly_run(datetime(2026, 1, 31, 12, 0), 31, time(0, 0)) == datetime(2026, 2, 28, 0, 0)


def test_tick_is_skipped_while_cycle_runs(settings) -> None:
    async def scenario() -> SlowPipeline:
        release = asyncio.Event()
        pipeline = SlowPipeline(release)
        scheduler = InvoiceScheduler(pipeline, StubReports(), settings)

        first = scheduler.trigger_cycle()
        await asyncio.sleep(0)
        assert scheduler.cycle_running
        assert scheduler.trigger_cycle() is None

        release.set()
        await first
        assert not scheduler.cycle_running
        await scheduler.trigger_cycle()
        return pipeline

    pipeline = asyncio.run(scenario())

    assert pipeline.runs == 2


def test_unexpected_cycle_error_keeps_scheduler_alive(settings) -> None:
    async def scenario() -> None:
        scheduler = InvoiceScheduler(SlowPipeline(error=RuntimeError("boom")), StubReports(), settings)
        assert await scheduler.trigger_cycle() is None
        assert scheduler.trigger_cycle() is not None

    asyncio.run(scenario())


def test_ledger_failure_stops_scheduler(settings) -> None:
    async def scenario() -> None:
        pipeline = SlowPipeline(error=LedgerError("disk full"))
        scheduler = InvoiceScheduler(pipeline, StubReports(), settings)
        await asyncio.wait_for(scheduler.run_until_stopped(), timeout=5)

    with pytest.raises(LedgerError):
        asyncio.run(scenario())


def test_stop_shuts_down_cleanly(make_settings) -> None:
    settings = make_settings(initial_run_delay=60)

    async def scenario() -> SlowPipeline:
        pipeline = SlowPipeline()
        scheduler = InvoiceScheduler(pipeline, StubReports(), settings)
        runner = asyncio.create_task(scheduler.run_until_stopped())
        await asyncio.sleep(0)
        scheduler.stop()
        await asyncio.wait_for(runner, timeout=5)
        return pipeline

    assert asyncio.run(scenario()).runs == 0


def test_report_jobs_cover_previous_periods(settings) -> None:
    reports = StubReports()

    async def scenario() -> None:
        scheduler = InvoiceScheduler(SlowPipeline(), reports, settings)
        scheduler.now = lambda: datetime(2026, 3, 16, 9, 0, tzinfo=ATHENS)
        await scheduler._send_daily_report()
        await scheduler._send_weekly_report()

    asyncio.run(scenario())

    assert [day.isoformat() for day in reports.daily] == ["2026-03-15"]
    assert [day.isoformat() for day in reports.weekly] == ["2026-03-09"]

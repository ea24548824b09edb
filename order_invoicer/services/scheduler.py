from __future__ import annotations

import asyncio
import calendar
import logging
from datetime import date, datetime, time, timedelta
from typing import Any, Awaitable, Callable, List, Optional
from zoneinfo import ZoneInfo

from order_invoicer.config import Settings
from order_invoicer.schemas.reports import CycleReport
from order_invoicer.services.exceptions import LedgerError
from order_invoicer.services.pipeline import OrderPipeline
from order_invoicer.services.reports import ReportService

logger = logging.getLogger(__name__)

MONDAY = 0


def next_daily_run(now: datetime, at: time) -> datetime:
    candidate = datetime.combine(now.date(), at, tzinfo=now.tzinfo)
    if candidate <= now:
        candidate = datetime.combine(now.date() + timedelta(days=1), at, tzinfo=now.tzinfo)
    return candidate


def next_weekly_run(now: datetime, weekday: int, at: time) -> datetime:
    days_ahead = (weekday - now.weekday()) % 7
    candidate = datetime.combine(now.date() + timedelta(days=days_ahead), at, tzinfo=now.tzinfo)
    if candidate <= now:
        candidate = datetime.combine(candidate.date() + timedelta(days=7), at, tzinfo=now.tzinfo)
    return candidate


def next_monthly_run(now: datetime, day: int, at: time) -> datetime:
    year, month = now.year, now.month
    for _ in range(13):
        last_day = calendar.monthrange(year, month)[1]
        candidate = datetime.combine(date(year, month, min(day, last_day)), at, tzinfo=now.tzinfo)
        if candidate > now:
            return candidate
        year, month = (year + 1, 1) if month == 12 else (year, month + 1)
    raise ValueError(f"No monthly run found for day {day}")  # pragma: no cover


class InvoiceScheduler:
    """Drives the polling cycle and the auxiliary digest/cleanup timers.

    At most one cycle runs at a time: a tick that finds the previous cycle
    still running is skipped, never queued behind it.
    """

    def __init__(
        self,
        pipeline: OrderPipeline,
        reports: ReportService,
        settings: Settings,
        *,
        sleep: Callable[[float], Awaitable[Any]] = asyncio.sleep,
    ) -> None:
        self._pipeline = pipeline
        self._reports = reports
        self._interval = settings.polling_interval_minutes * 60
        self._initial_delay = settings.initial_run_delay
        self._grace = settings.shutdown_grace_period
        self._tz = ZoneInfo(settings.timezone)
        self._report_time = settings.daily_report_time
        self._sleep = sleep
        self._cycle_task: Optional[asyncio.Task] = None
        self._tasks: List[asyncio.Task] = []
        self._stopped = asyncio.Event()
        self._fatal: Optional[BaseException] = None

    @property
    def cycle_running(self) -> bool:
        return self._cycle_task is not None and not self._cycle_task.done()

    @property
    def interval_seconds(self) -> int:
        return self._interval

    def now(self) -> datetime:
        return datetime.now(self._tz)

    def trigger_cycle(self) -> Optional[asyncio.Task]:
        if self.cycle_running:
            logger.warning("Previous order cycle still running, skipping this tick")
            return None
        self._cycle_task = asyncio.create_task(self._run_cycle(), name="order-cycle")
        return self._cycle_task

    async def _run_cycle(self) -> Optional[CycleReport]:
        try:
            return await self._pipeline.run_cycle()
        except LedgerError as exc:
            logger.critical("Ledger write failed, stopping scheduler: %s", exc)
            self._fatal = exc
            self._stopped.set()
        except Exception:
            logger.exception("Error in scheduled order processing")
        return None

    def start(self) -> None:
        if self._tasks:
            return
        self._tasks = [
            asyncio.create_task(self._poll_loop(), name="order-polling"),
            asyncio.create_task(
                self._timer_loop(
                    "daily report",
                    lambda now: next_daily_run(now, self._report_time),
                    self._send_daily_report,
                ),
                name="daily-report",
            ),
            asyncio.create_task(
                self._timer_loop(
                    "weekly report",
                    lambda now: next_weekly_run(now, MONDAY, self._report_time),
                    self._send_weekly_report,
                ),
                name="weekly-report",
            ),
            asyncio.create_task(
                self._timer_loop(
                    "report cleanup",
                    lambda now: next_monthly_run(now, 1, time(0, 0)),
                    self._cleanup_reports,
                ),
                name="report-cleanup",
            ),
        ]
        logger.info(
            "Order tracking scheduled to run every %s minutes", self._interval // 60
        )
        logger.info("Automated reporting scheduled")

    def stop(self) -> None:
        self._stopped.set()

    async def run_until_stopped(self) -> None:
        """Run until ``stop()`` is called; re-raise a fatal ledger error."""

        self.start()
        try:
            await self._stopped.wait()
        finally:
            await self.shutdown()
        if self._fatal is not None:
            raise self._fatal

    async def shutdown(self) -> None:
        for task in self._tasks:
            task.cancel()
        await asyncio.gather(*self._tasks, return_exceptions=True)
        self._tasks = []

        cycle = self._cycle_task
        if cycle is not None and not cycle.done():
            logger.info("Waiting up to %ss for the running cycle to finish", self._grace)
            try:
                await asyncio.wait_for(asyncio.shield(cycle), timeout=self._grace)
            except asyncio.TimeoutError:
                logger.warning("Abandoning order cycle still running at shutdown")
                cycle.cancel()
                await asyncio.gather(cycle, return_exceptions=True)
        logger.info("Order tracking service stopped")

    async def _poll_loop(self) -> None:
        await self._sleep(self._initial_delay)
        while True:
            self.trigger_cycle()
            await self._sleep(self._interval)

    async def _timer_loop(
        self,
        name: str,
        next_run: Callable[[datetime], datetime],
        job: Callable[[], Awaitable[Any]],
    ) -> None:
        previous: Optional[datetime] = None
        while True:
            now = self.now()
            # The sleep may end marginally early; never fire the same slot twice.
            target = next_run(max(now, previous) if previous else now)
            previous = target
            logger.debug("Next %s at %s", name, target.isoformat())
            await self._sleep(max(0.0, (target - now).total_seconds()))
            try:
                await job()
            except Exception:
                logger.exception("Error running %s", name)

    async def _send_daily_report(self) -> None:
        await self._reports.send_daily_report(day=self.now().date() - timedelta(days=1))

    async def _send_weekly_report(self) -> None:
        await self._reports.send_weekly_report(day=self.now().date() - timedelta(days=7))

    async def _cleanup_reports(self) -> None:
        await asyncio.to_thread(self._reports.cleanup_old_reports)

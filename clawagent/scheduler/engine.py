"""MaintenanceScheduler — runs the self-improvement loop on an interval."""

from __future__ import annotations

import logging
from datetime import UTC, datetime, timedelta
from typing import TYPE_CHECKING

import psutil
from apscheduler.schedulers.asyncio import AsyncIOScheduler
from apscheduler.triggers.date import DateTrigger
from apscheduler.triggers.interval import IntervalTrigger

from clawagent.config import settings

if TYPE_CHECKING:
    from collections.abc import Callable

    from clawagent.memory.improvement import ImprovementSummary, SelfImprovementLoop

logger = logging.getLogger(__name__)

JOB_ID = "self_improvement"
RETRY_JOB_ID = "self_improvement_retry"
DEFAULT_RETRY_BASE_SECONDS = 30.0


def battery_not_low(threshold_percent: int | None = None) -> bool:
    """True unless the device runs on a battery below *threshold_percent*.

    Machines without a battery, and batteries on external power, always
    pass.
    """
    threshold = settings.battery_low_percent if threshold_percent is None else threshold_percent
    battery = psutil.sensors_battery()
    if battery is None or battery.power_plugged:
        return True
    return battery.percent >= threshold


class MaintenanceScheduler:
    """Periodically runs a ``SelfImprovementLoop`` under APScheduler.

    Each firing first checks *constraint*; when it fails the run is
    skipped until the next interval.  A run that raises is retried with
    exponential backoff (doubling from ``retry_base_seconds``, capped at
    the interval) via a one-off job.

    Args:
        loop: The maintenance pass to run.
        interval_hours: Time between regular runs.
        constraint: Gate evaluated before each run.
        retry_base_seconds: First retry delay after a failure.
    """

    def __init__(
        self,
        loop: SelfImprovementLoop,
        interval_hours: float | None = None,
        constraint: Callable[[], bool] | None = None,
        retry_base_seconds: float = DEFAULT_RETRY_BASE_SECONDS,
    ) -> None:
        self._loop = loop
        self._interval = timedelta(
            hours=interval_hours or settings.self_improvement_interval_hours
        )
        self._constraint = constraint or battery_not_low
        self._retry_base = retry_base_seconds
        self._attempt = 0
        self._scheduler = AsyncIOScheduler(timezone=UTC)
        self._running = False

    @property
    def running(self) -> bool:
        return self._running

    @property
    def failed_attempts(self) -> int:
        return self._attempt

    # -- Lifecycle -------------------------------------------------------------

    async def start(self) -> None:
        """Register the periodic job and start the scheduler."""
        self._scheduler.add_job(
            self._run_job,
            trigger=IntervalTrigger(seconds=self._interval.total_seconds(), timezone=UTC),
            id=JOB_ID,
            name="Self-improvement loop",
            max_instances=1,
            coalesce=True,
            replace_existing=True,
        )
        self._scheduler.start()
        self._running = True
        logger.info("Maintenance scheduler started (interval=%s)", self._interval)

    async def stop(self) -> None:
        """Shut down the scheduler."""
        if self._running:
            self._scheduler.shutdown(wait=False)
            self._running = False
            logger.info("Maintenance scheduler stopped")

    # -- Running ---------------------------------------------------------------

    async def run_now(self) -> ImprovementSummary:
        """Run the loop immediately, ignoring the constraint gate.

        Exceptions propagate to the caller; no retry is scheduled.
        """
        return await self._loop.run()

    async def _run_job(self) -> None:
        """Callback invoked by APScheduler."""
        if not self._constraint():
            logger.info("Skipping self-improvement run: constraint not met")
            return

        try:
            await self._loop.run()
        except Exception:
            self._attempt += 1
            delay = self._retry_delay(self._attempt)
            logger.exception(
                "Self-improvement run failed (attempt %d); retrying in %.0fs",
                self._attempt,
                delay.total_seconds(),
            )
            self._schedule_retry(delay)
        else:
            self._attempt = 0

    def _retry_delay(self, attempt: int) -> timedelta:
        seconds = self._retry_base * 2 ** (attempt - 1)
        return min(timedelta(seconds=seconds), self._interval)

    def _schedule_retry(self, delay: timedelta) -> None:
        if not self._running:
            return
        self._scheduler.add_job(
            self._run_job,
            trigger=DateTrigger(run_date=datetime.now(UTC) + delay, timezone=UTC),
            id=RETRY_JOB_ID,
            name="Self-improvement retry",
            misfire_grace_time=None,
            replace_existing=True,
        )

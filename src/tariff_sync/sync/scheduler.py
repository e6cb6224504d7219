"""Recurring trigger for the tariff sync, with an overlap guard."""

from __future__ import annotations

import asyncio
import logging

from apscheduler.schedulers.asyncio import AsyncIOScheduler
from apscheduler.triggers.cron import CronTrigger

from tariff_sync.core.config import ScheduleConfig
from tariff_sync.core.exceptions import ConfigError, SyncError
from tariff_sync.core.models import SyncReport
from tariff_sync.sync.orchestrator import TariffSync

logger = logging.getLogger(__name__)

JOB_ID = "tariff-sync"


def build_trigger(config: ScheduleConfig) -> CronTrigger:
    """Parse the crontab expression, raising ConfigError when invalid."""
    try:
        return CronTrigger.from_crontab(config.cron, timezone=config.timezone)
    except (ValueError, LookupError) as e:
        raise ConfigError(
            f"Invalid schedule {config.cron!r} ({config.timezone}): {e}",
            context={"field": "schedule.cron", "value": config.cron},
        ) from e


class SyncScheduler:
    """Fires TariffSync.run() on a cron schedule.

    A trigger that arrives while a run is still in flight is skipped, never
    queued or run concurrently. Failed runs are logged and the scheduler
    waits for the next tick.
    """

    def __init__(
        self,
        sync: TariffSync,
        config: ScheduleConfig | None = None,
        scheduler: AsyncIOScheduler | None = None,
    ) -> None:
        self._sync = sync
        self._config = config or ScheduleConfig()
        self._trigger = build_trigger(self._config)
        self._scheduler = scheduler or AsyncIOScheduler(timezone=self._config.timezone)
        self._guard = asyncio.Lock()
        self._stopped: asyncio.Event | None = None
        self.completed_runs = 0
        self.failed_runs = 0
        self.skipped_runs = 0

    @property
    def running(self) -> bool:
        """True while a sync run is in flight."""
        return self._guard.locked()

    async def trigger(self) -> SyncReport | None:
        """Run the sync once unless a run is already in flight.

        Returns:
            The run's report, or None when the trigger was skipped or the
            run failed.
        """
        if self._guard.locked():
            self.skipped_runs += 1
            logger.warning("Previous sync run still in flight, skipping trigger")
            return None

        async with self._guard:
            try:
                report = await self._sync.run()
            except SyncError as e:
                self.failed_runs += 1
                logger.error("Scheduled sync failed: %s", e)
                return None
            self.completed_runs += 1
            return report

    def start(self) -> None:
        """Register the job and start the scheduler. Needs a running loop."""
        self._scheduler.add_job(
            self.trigger,
            trigger=self._trigger,
            id=JOB_ID,
            # room for one overlapping tick so the run guard sees it and counts the skip
            max_instances=2,
            coalesce=True,
            replace_existing=True,
        )
        self._scheduler.start()
        logger.info(
            "Scheduler started: tariff sync on %r (%s)",
            self._config.cron,
            self._config.timezone,
        )

    def shutdown(self) -> None:
        if self._scheduler.running:
            self._scheduler.shutdown(wait=False)
            logger.info("Scheduler stopped")

    def stop(self) -> None:
        """Make run_forever() return."""
        if self._stopped is not None:
            self._stopped.set()

    async def run_forever(self, run_immediately: bool = False) -> None:
        """Start the scheduler and block until stop() or cancellation."""
        self._stopped = asyncio.Event()
        self.start()
        try:
            if run_immediately:
                await self.trigger()
            await self._stopped.wait()
        finally:
            self.shutdown()

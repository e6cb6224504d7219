"""Tests for tariff_sync.sync.scheduler (SyncScheduler)."""

from __future__ import annotations

import asyncio
from datetime import datetime, timezone

import pytest
from apscheduler.triggers.cron import CronTrigger

from tariff_sync.core.config import ScheduleConfig
from tariff_sync.core.exceptions import ConfigError, TransportError
from tariff_sync.sync.orchestrator import TariffSync
from tariff_sync.sync.scheduler import JOB_ID, SyncScheduler, build_trigger


class GatedProvider:
    """Blocks in fetch() until ``release`` is set."""

    def __init__(self, records):
        self.records = records
        self.release = asyncio.Event()
        self.started = asyncio.Event()
        self.calls = 0

    async def fetch(self, on_date=None):
        self.calls += 1
        self.started.set()
        await self.release.wait()
        # always yield so an overlapping trigger observes the held guard
        await asyncio.sleep(0)
        return list(self.records)


class FailingProvider:
    async def fetch(self, on_date=None):
        raise TransportError("down")


class NullStore:
    async def upsert_all(self, records):
        return len(records)


class NullSink:
    async def publish(self, records):
        return ["sheet-a"]

    async def close(self):
        return None


async def _wait_until(condition, timeout: float = 2.0) -> None:
    async def _poll():
        while not condition():
            await asyncio.sleep(0.01)

    await asyncio.wait_for(_poll(), timeout=timeout)


class TestBuildTrigger:
    def test_valid_cron(self):
        trigger = build_trigger(ScheduleConfig(cron="*/15 * * * *", timezone="Europe/Moscow"))
        assert isinstance(trigger, CronTrigger)

    @pytest.mark.parametrize("cron", ["every hour", "61 * * * *", "* * *"])
    def test_invalid_cron(self, cron):
        with pytest.raises(ConfigError) as exc_info:
            build_trigger(ScheduleConfig(cron=cron))
        assert exc_info.value.context["field"] == "schedule.cron"

    def test_invalid_timezone(self):
        with pytest.raises(ConfigError):
            build_trigger(ScheduleConfig(timezone="Mars/Olympus"))


class TestTrigger:
    async def test_successful_run(self, make_record):
        sync = TariffSync(GatedProvider([make_record()]), NullStore(), NullSink())
        sync._provider.release.set()
        scheduler = SyncScheduler(sync)

        report = await scheduler.trigger()

        assert report is not None and report.succeeded
        assert scheduler.completed_runs == 1
        assert scheduler.running is False

    async def test_overlapping_trigger_skipped(self, make_record):
        provider = GatedProvider([make_record()])
        scheduler = SyncScheduler(TariffSync(provider, NullStore(), NullSink()))

        first = asyncio.create_task(scheduler.trigger())
        await provider.started.wait()
        assert scheduler.running is True

        skipped = await scheduler.trigger()
        provider.release.set()
        report = await first

        assert skipped is None
        assert report.succeeded
        assert provider.calls == 1
        assert scheduler.skipped_runs == 1
        assert scheduler.completed_runs == 1

    async def test_concurrent_triggers_run_once(self, make_record):
        provider = GatedProvider([make_record()])
        provider.release.set()
        scheduler = SyncScheduler(TariffSync(provider, NullStore(), NullSink()))

        results = await asyncio.gather(scheduler.trigger(), scheduler.trigger())

        assert provider.calls == 1
        assert results.count(None) == 1
        assert scheduler.skipped_runs == 1

    async def test_failed_run_swallowed(self):
        scheduler = SyncScheduler(TariffSync(FailingProvider(), NullStore(), NullSink()))

        assert await scheduler.trigger() is None
        assert scheduler.failed_runs == 1
        assert scheduler.running is False

    async def test_runs_after_failure(self, make_record):
        provider = GatedProvider([make_record()])
        provider.release.set()
        sync = TariffSync(FailingProvider(), NullStore(), NullSink())
        scheduler = SyncScheduler(sync)
        await scheduler.trigger()

        sync._provider = provider
        report = await scheduler.trigger()

        assert report.succeeded
        assert scheduler.failed_runs == 1
        assert scheduler.completed_runs == 1


class TestLifecycle:
    async def test_start_registers_job(self, make_record):
        scheduler = SyncScheduler(TariffSync(GatedProvider([]), NullStore(), NullSink()))
        scheduler.start()
        try:
            job = scheduler._scheduler.get_job(JOB_ID)
            assert job is not None
            assert job.max_instances == 2
            assert job.coalesce is True
        finally:
            scheduler.shutdown()

    async def test_overlapping_scheduled_tick_counted_as_skip(self, make_record):
        provider = GatedProvider([make_record()])
        scheduler = SyncScheduler(TariffSync(provider, NullStore(), NullSink()))
        scheduler.start()
        try:
            scheduler._scheduler.modify_job(JOB_ID, next_run_time=datetime.now(timezone.utc))
            await asyncio.wait_for(provider.started.wait(), timeout=2)

            scheduler._scheduler.modify_job(JOB_ID, next_run_time=datetime.now(timezone.utc))
            await _wait_until(lambda: scheduler.skipped_runs == 1)

            provider.release.set()
            await _wait_until(lambda: scheduler.completed_runs == 1)
        finally:
            scheduler.shutdown()

        assert provider.calls == 1

    async def test_run_forever_until_stopped(self, make_record):
        provider = GatedProvider([make_record()])
        provider.release.set()
        scheduler = SyncScheduler(TariffSync(provider, NullStore(), NullSink()))

        task = asyncio.create_task(scheduler.run_forever(run_immediately=True))
        await provider.started.wait()
        while scheduler.completed_runs == 0:
            await asyncio.sleep(0.01)
        scheduler.stop()
        await asyncio.wait_for(task, timeout=1)

        assert scheduler.completed_runs == 1
        assert scheduler._scheduler.running is False

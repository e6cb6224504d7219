"""Synchronization orchestrator: fetch → persist → publish, once per run.

State machine for one run::

    idle ──fetch──▶ fetching ──▶ persisting ──▶ publishing ──▶ idle
                        │              │              │
                        └──────────────┴──────────────┴──▶ errored

A failed stage ends the run in ``errored``. Later stages are never
attempted and nothing is retried; the stage error is logged and raised to
the caller wrapped in a single SyncError.
"""

from __future__ import annotations

import asyncio
import logging
import uuid
from collections.abc import Awaitable, Callable
from datetime import UTC, datetime
from typing import TypeVar

from tariff_sync.core.config import TimeoutsConfig
from tariff_sync.core.exceptions import (
    PersistenceError,
    PublishError,
    SyncError,
    TariffSyncError,
    TransportError,
)
from tariff_sync.core.models import SyncReport, SyncState
from tariff_sync.ingestion.client import TariffProvider
from tariff_sync.ingestion.store import TariffStore
from tariff_sync.publishing.sink import PublishSink

logger = logging.getLogger(__name__)

T = TypeVar("T")


def _utc_now() -> datetime:
    return datetime.now(UTC)


class TariffSync:
    """Runs the tariff pipeline with per-stage and per-run deadlines.

    All collaborators are passed in; the orchestrator does not open or
    close them.
    """

    def __init__(
        self,
        provider: TariffProvider,
        store: TariffStore,
        sink: PublishSink,
        timeouts: TimeoutsConfig | None = None,
        now: Callable[[], datetime] = _utc_now,
    ) -> None:
        self._provider = provider
        self._store = store
        self._sink = sink
        self._timeouts = timeouts or TimeoutsConfig()
        self._now = now
        self._state = SyncState.IDLE
        self._last_report: SyncReport | None = None

    @property
    def state(self) -> SyncState:
        return self._state

    @property
    def last_report(self) -> SyncReport | None:
        return self._last_report

    async def run(self) -> SyncReport:
        """Execute one fetch → persist → publish cycle.

        Returns:
            The report of a successful run (state ``idle``).

        Raises:
            SyncError: A stage failed or exceeded its deadline. The report
                is still available through ``last_report``.
        """
        report = SyncReport(run_id=uuid.uuid4().hex[:12], started_at=self._now())
        self._last_report = report
        self._state = SyncState.IDLE
        deadline = asyncio.get_running_loop().time() + self._timeouts.run
        logger.info("Sync run %s started", report.run_id)

        try:
            self._enter(SyncState.FETCHING, report)
            records = await self._stage(
                self._provider.fetch, self._timeouts.fetch, deadline, TransportError
            )
            report.fetched = len(records)

            self._enter(SyncState.PERSISTING, report)
            report.persisted = await self._stage(
                lambda: self._store.upsert_all(records),
                self._timeouts.persist,
                deadline,
                PersistenceError,
            )

            self._enter(SyncState.PUBLISHING, report)
            report.destinations = await self._stage(
                lambda: self._sink.publish(records),
                self._timeouts.publish,
                deadline,
                PublishError,
            )
        except Exception as e:
            raise self._fail(report, e) from e

        self._enter(SyncState.IDLE, report)
        report.finished_at = self._now()
        logger.info(
            "Sync run %s finished: %d fetched, %d persisted, published to %d destination(s)",
            report.run_id,
            report.fetched,
            report.persisted,
            len(report.destinations),
        )
        return report

    def _enter(self, state: SyncState, report: SyncReport) -> None:
        logger.info("Sync run %s: %s -> %s", report.run_id, self._state, state)
        self._state = state
        report.state = state

    def _fail(self, report: SyncReport, error: Exception) -> SyncError:
        stage = self._state
        self._state = SyncState.ERRORED
        report.state = SyncState.ERRORED
        report.failed_stage = stage
        report.error = str(error)
        report.finished_at = self._now()

        if isinstance(error, TariffSyncError):
            logger.error(
                "Sync run %s failed while %s: %s: %s",
                report.run_id, stage, type(error).__name__, error,
            )
        else:
            logger.exception("Sync run %s failed while %s", report.run_id, stage)

        return SyncError(
            f"Sync run {report.run_id} failed while {stage}: {error}",
            context={
                "stage": str(stage),
                "run_id": report.run_id,
                "error_type": type(error).__name__,
            },
        )

    async def _stage(
        self,
        call: Callable[[], Awaitable[T]],
        timeout: float,
        deadline: float,
        timeout_error: type[TariffSyncError],
    ) -> T:
        """Await one stage under min(stage timeout, remaining run time)."""
        remaining = deadline - asyncio.get_running_loop().time()
        budget = min(timeout, remaining)
        if budget <= 0:
            raise timeout_error(
                f"Run deadline exhausted before {self._state}",
                context={"stage": str(self._state), "timeout": 0},
            )
        try:
            return await asyncio.wait_for(call(), timeout=budget)
        except TimeoutError as e:
            raise timeout_error(
                f"{self._state} exceeded its {budget:.1f}s deadline",
                context={"stage": str(self._state), "timeout": budget},
            ) from e

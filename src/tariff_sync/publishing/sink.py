"""Publish sink protocol and snapshot rendering.

A sink takes the records of the current run and overwrites every
configured destination with the same snapshot table:

    records → render_snapshot() → rows → SnapshotSink._write(destination, rows)

Adding a destination type means subclassing ``SnapshotSink`` (or writing
anything that satisfies ``PublishSink``); the orchestrator is unaffected.
"""

from __future__ import annotations

import logging
from abc import ABC, abstractmethod
from collections.abc import Sequence
from typing import Protocol, runtime_checkable

from tariff_sync.core.exceptions import PublishError
from tariff_sync.core.models import DestinationId, TariffRecord

logger = logging.getLogger(__name__)

SNAPSHOT_HEADER: tuple[str, ...] = ("Box Size", "Coefficient", "Warehouse", "Region", "Marketplace")

Row = list[str | int | float]


@runtime_checkable
class PublishSink(Protocol):
    """Capability to publish a tariff snapshot to external destinations."""

    async def publish(self, records: Sequence[TariffRecord]) -> list[DestinationId]: ...
    async def close(self) -> None: ...


def sort_for_snapshot(records: Sequence[TariffRecord]) -> list[TariffRecord]:
    """Ascending by coefficient; equal coefficients keep their input order."""
    return sorted(records, key=lambda r: r.coefficient)


def render_snapshot(records: Sequence[TariffRecord]) -> list[Row]:
    """Header row followed by one row per record in snapshot order."""
    rows: list[Row] = [list(SNAPSHOT_HEADER)]
    for record in sort_for_snapshot(records):
        rows.append(
            [
                record.box_size,
                float(record.coefficient),
                record.warehouse_name,
                record.geo_name or "",
                "Yes" if record.is_marketplace else "No",
            ]
        )
    return rows


class SnapshotSink(ABC):
    """Shared destination loop for sinks that overwrite a whole table.

    Destinations are written in configured order. By default the first
    failure aborts the remaining destinations; with ``continue_on_error``
    every destination is attempted and a single PublishError lists all
    failures.
    """

    def __init__(
        self,
        destinations: Sequence[DestinationId],
        continue_on_error: bool = False,
    ) -> None:
        self._destinations = list(destinations)
        self._continue_on_error = continue_on_error

    @property
    def destinations(self) -> list[DestinationId]:
        return list(self._destinations)

    async def publish(self, records: Sequence[TariffRecord]) -> list[DestinationId]:
        """Overwrite every destination with the snapshot of ``records``.

        Returns:
            Destination ids that were written successfully.

        Raises:
            PublishError: A destination write failed.
        """
        rows = render_snapshot(records)
        published: list[DestinationId] = []
        failures: dict[DestinationId, PublishError] = {}

        for index, destination in enumerate(self._destinations):
            try:
                await self._write(destination, rows)
            except PublishError as e:
                if not self._continue_on_error:
                    logger.error(
                        "Publishing to %s failed, skipping %d remaining destination(s)",
                        destination,
                        len(self._destinations) - index - 1,
                    )
                    raise
                logger.error("Publishing to %s failed: %s", destination, e)
                failures[destination] = e
                continue
            published.append(destination)
            logger.info("Published %d rows to %s", len(rows) - 1, destination)

        if failures:
            first = next(iter(failures.values()))
            raise PublishError(
                f"Publishing failed for {len(failures)} of "
                f"{len(self._destinations)} destination(s): {', '.join(failures)}",
                context={
                    "destination": next(iter(failures)),
                    "failed": list(failures),
                    "published": published,
                },
            ) from first
        return published

    @abstractmethod
    async def _write(self, destination: DestinationId, rows: list[Row]) -> None:
        """Overwrite one destination. Must raise PublishError on failure."""

    async def close(self) -> None:
        return None

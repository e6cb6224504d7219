"""End-to-end sync runs: provider → SQLite → CSV snapshots."""

from __future__ import annotations

import copy
import csv
from decimal import Decimal

import httpx
import pytest
import respx

from tariff_sync.core.exceptions import SyncError
from tariff_sync.core.models import SyncState
from tariff_sync.ingestion.client import WildberriesClient
from tariff_sync.publishing.csv_sink import CsvSnapshotSink
from tariff_sync.sync.orchestrator import TariffSync
from tariff_sync.sync.scheduler import SyncScheduler

PROVIDER_URL = "https://wb.test/api/v1/tariffs/box"

pytestmark = pytest.mark.integration


def _read_snapshot(sink: CsvSnapshotSink, destination: str) -> list[list[str]]:
    with open(sink.path_for(destination), newline="", encoding="utf-8") as f:
        return list(csv.reader(f))


@pytest.fixture
def sink(tmp_path) -> CsvSnapshotSink:
    return CsvSnapshotSink(tmp_path / "snapshots", ["sheet-a", "sheet-b"])


class TestPipeline:
    @respx.mock
    async def test_full_run(self, provider_config, file_store, sink, warehouse_payload, today):
        respx.get(PROVIDER_URL).mock(return_value=httpx.Response(200, json=warehouse_payload))

        async with WildberriesClient(provider_config, today=lambda: today) as provider:
            report = await TariffSync(provider, file_store, sink).run()

        assert report.succeeded
        assert report.fetched == report.persisted == 4
        assert report.destinations == ["sheet-a", "sheet-b"]

        stored = await file_store.list_tariffs(on_date=today)
        assert len(stored) == 4

        rows = _read_snapshot(sink, "sheet-a")
        assert rows[0] == ["Box Size", "Coefficient", "Warehouse", "Region", "Marketplace"]
        assert [r[1] for r in rows[1:]] == ["87.3", "100.5", "120.0", "150.0"]
        assert rows[1] == ["30", "87.3", "Маркетплейс: Ташкент", "", "Yes"]
        assert _read_snapshot(sink, "sheet-b") == rows

    @respx.mock
    async def test_repeat_runs_are_idempotent(
        self, provider_config, file_store, sink, warehouse_payload, today, fixed_clock
    ):
        respx.get(PROVIDER_URL).mock(return_value=httpx.Response(200, json=warehouse_payload))

        async with WildberriesClient(provider_config, today=lambda: today) as provider:
            sync = TariffSync(provider, file_store, sink)
            await sync.run()
            first = _read_snapshot(sink, "sheet-a")
            fixed_clock.advance(3600)
            await sync.run()

        assert await file_store.count() == 4
        assert _read_snapshot(sink, "sheet-a") == first

    @respx.mock
    async def test_changed_rate_overwrites_day(
        self, provider_config, file_store, sink, warehouse_payload, today, fixed_clock
    ):
        changed = copy.deepcopy(warehouse_payload)
        changed["response"]["data"]["warehouseList"][0]["boxDeliveryCoefExpr"] = "175,25"
        respx.get(PROVIDER_URL).mock(
            side_effect=[
                httpx.Response(200, json=warehouse_payload),
                httpx.Response(200, json=changed),
            ]
        )

        async with WildberriesClient(provider_config, today=lambda: today) as provider:
            sync = TariffSync(provider, file_store, sink)
            await sync.run()
            fixed_clock.advance(3600)
            await sync.run()

        rows = await file_store.list_tariffs(warehouse="Коледино", is_marketplace=False)
        assert len(rows) == 1
        assert rows[0].coefficient == Decimal("175.25")
        assert rows[0].updated_at == fixed_clock.current
        assert _read_snapshot(sink, "sheet-a")[-1][1] == "175.25"

    @respx.mock
    async def test_provider_outage_leaves_history_and_snapshot(
        self, provider_config, file_store, sink, warehouse_payload, today
    ):
        respx.get(PROVIDER_URL).mock(
            side_effect=[
                httpx.Response(200, json=warehouse_payload),
                httpx.Response(403),
            ]
        )

        async with WildberriesClient(provider_config, today=lambda: today) as provider:
            sync = TariffSync(provider, file_store, sink)
            await sync.run()
            before = _read_snapshot(sink, "sheet-a")
            with pytest.raises(SyncError):
                await sync.run()

        assert sync.state == SyncState.ERRORED
        assert await file_store.count() == 4
        assert _read_snapshot(sink, "sheet-a") == before

    @respx.mock
    async def test_scheduler_trigger(self, provider_config, file_store, sink, warehouse_payload, today):
        respx.get(PROVIDER_URL).mock(return_value=httpx.Response(200, json=warehouse_payload))

        async with WildberriesClient(provider_config, today=lambda: today) as provider:
            scheduler = SyncScheduler(TariffSync(provider, file_store, sink))
            report = await scheduler.trigger()

        assert report.succeeded
        assert scheduler.completed_runs == 1
        assert await file_store.count() == 4

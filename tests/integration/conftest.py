"""Fixtures for end-to-end pipeline tests against a real SQLite file."""

import pytest

from tariff_sync.core.config import ProviderConfig, StorageConfig
from tariff_sync.ingestion.store import SqliteTariffStore

PROVIDER_URL = "https://wb.test/api/v1/tariffs/box"


@pytest.fixture
def provider_config() -> ProviderConfig:
    return ProviderConfig(api_key="integration-key", base_url=PROVIDER_URL, rate_limit=10)


@pytest.fixture
async def file_store(tmp_path, fixed_clock):
    store = SqliteTariffStore(
        StorageConfig(sqlite_path=str(tmp_path / "data" / "tariffs.db")),
        now=fixed_clock,
    )
    await store.initialize()
    yield store
    await store.close()

"""Tariff ingestion: provider client, payload normalization, and storage."""

from tariff_sync.ingestion.client import TariffProvider, WildberriesClient
from tariff_sync.ingestion.normalize import normalize_warehouse_list, parse_coefficient
from tariff_sync.ingestion.store import SqliteTariffStore, TariffStore, create_store

__all__ = [
    "TariffProvider",
    "WildberriesClient",
    "normalize_warehouse_list",
    "parse_coefficient",
    "SqliteTariffStore",
    "TariffStore",
    "create_store",
]

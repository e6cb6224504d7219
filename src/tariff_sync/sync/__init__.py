"""Pipeline orchestration and scheduling."""

from tariff_sync.sync.orchestrator import TariffSync
from tariff_sync.sync.scheduler import SyncScheduler, build_trigger

__all__ = [
    "TariffSync",
    "SyncScheduler",
    "build_trigger",
]

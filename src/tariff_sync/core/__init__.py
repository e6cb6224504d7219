"""tariff_sync.core — Foundation types, config, and exceptions."""

from tariff_sync.core.config import (
    LoggingConfig,
    ProviderConfig,
    PublishConfig,
    ScheduleConfig,
    StorageConfig,
    SyncConfig,
    TimeoutsConfig,
    load_config,
)
from tariff_sync.core.exceptions import (
    ConfigError,
    ParseError,
    PersistenceError,
    PublishError,
    SchemaError,
    SyncError,
    TariffSyncError,
    TransportError,
)
from tariff_sync.core.models import (
    DEFAULT_BOX_SIZE,
    DestinationId,
    NaturalKey,
    PublishBackend,
    StorageBackend,
    SyncReport,
    SyncState,
    TariffRecord,
    WarehouseName,
)

__all__ = [
    # Type aliases
    "DestinationId",
    "NaturalKey",
    "WarehouseName",
    "DEFAULT_BOX_SIZE",
    # Enums
    "PublishBackend",
    "StorageBackend",
    "SyncState",
    # Models
    "TariffRecord",
    "SyncReport",
    # Config
    "SyncConfig",
    "ProviderConfig",
    "StorageConfig",
    "PublishConfig",
    "ScheduleConfig",
    "TimeoutsConfig",
    "LoggingConfig",
    "load_config",
    # Exceptions
    "TariffSyncError",
    "ConfigError",
    "TransportError",
    "SchemaError",
    "ParseError",
    "PersistenceError",
    "PublishError",
    "SyncError",
]

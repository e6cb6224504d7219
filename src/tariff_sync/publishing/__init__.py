"""Snapshot publishing: sink protocol, Google Sheets and CSV sinks, factory."""

from tariff_sync.core.config import PublishConfig
from tariff_sync.core.exceptions import ConfigError
from tariff_sync.core.models import PublishBackend
from tariff_sync.publishing.csv_sink import CsvSnapshotSink
from tariff_sync.publishing.sheets import (
    GoogleSheetsSink,
    ServiceAccountTokenSource,
    StaticTokenSource,
    TokenSource,
)
from tariff_sync.publishing.sink import (
    SNAPSHOT_HEADER,
    PublishSink,
    SnapshotSink,
    render_snapshot,
    sort_for_snapshot,
)


def create_sink(config: PublishConfig) -> SnapshotSink:
    """Build the publish sink selected by ``config.backend``."""
    if config.backend == PublishBackend.GOOGLE_SHEETS:
        if not config.credentials_path:
            raise ConfigError(
                "credentials_path is required for the google_sheets backend",
                context={"field": "publish.credentials_path"},
            )
        return GoogleSheetsSink(
            config.destinations,
            token_source=ServiceAccountTokenSource(config.credentials_path),
            sheet_tab_id=config.sheet_tab_id,
            continue_on_error=config.continue_on_error,
            request_timeout=config.request_timeout,
        )
    if config.backend == PublishBackend.CSV:
        return CsvSnapshotSink(
            config.csv_directory,
            config.destinations,
            continue_on_error=config.continue_on_error,
        )
    raise ConfigError(
        f"Unsupported publish backend: {config.backend}",
        context={"field": "publish.backend", "value": str(config.backend)},
    )


__all__ = [
    "SNAPSHOT_HEADER",
    "PublishSink",
    "SnapshotSink",
    "render_snapshot",
    "sort_for_snapshot",
    "GoogleSheetsSink",
    "TokenSource",
    "StaticTokenSource",
    "ServiceAccountTokenSource",
    "CsvSnapshotSink",
    "create_sink",
]

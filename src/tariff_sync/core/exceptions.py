"""Custom exception hierarchy for tariff-sync."""

from typing import Any


class TariffSyncError(Exception):
    """Base exception for all tariff-sync errors.

    All exceptions carry an optional `context` dict for structured error
    metadata that can be logged or serialized without parsing the message.
    """

    def __init__(self, message: str, context: dict[str, Any] | None = None):
        super().__init__(message)
        self.context = context or {}


class ConfigError(TariffSyncError):
    """Invalid or missing configuration.

    Raised by load_config() during startup and by sink construction when a
    credential file is missing. Should be treated as fatal.

    Context keys:
        field: str — the config field that failed validation
        value: Any — the invalid value (redacted for secrets)
    """


class TransportError(TariffSyncError):
    """The provider could not be reached or answered with a non-200 status.

    Also raised when the fetch stage exceeds its deadline.

    Context keys:
        url: str — the URL that was being fetched
        status_code: int | None — HTTP status if a response was received
    """


class SchemaError(TariffSyncError):
    """Provider response is missing the expected structure.

    Context keys:
        path: str — dotted path of the missing or malformed field
    """


class ParseError(TariffSyncError):
    """A coefficient could not be parsed into a valid decimal.

    Policy: abort the whole fetch. A partial record list is never returned.

    Context keys:
        warehouse_name: str — the entry being normalized
        field: str — the coefficient field
        value: str — the raw value
    """


class PersistenceError(TariffSyncError):
    """Database operation failed. The batch transaction has been rolled back.

    Context keys:
        operation: str — "upsert", "query", "migrate", etc.
        table: str — the table involved
    """


class PublishError(TariffSyncError):
    """Writing the snapshot to a destination failed.

    Policy: remaining destinations are not attempted unless the sink runs
    with continue_on_error.

    Context keys:
        destination: str — the destination that failed
        failed: list[str] — all failed destinations (continue_on_error only)
    """


class SyncError(TariffSyncError):
    """A synchronization run ended in the errored state.

    The stage error is available as ``__cause__``.

    Context keys:
        stage: str — "fetching", "persisting" or "publishing"
        run_id: str — identifier of the failed run
        error_type: str — class name of the stage error
    """

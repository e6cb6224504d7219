"""Pydantic data models: the system's type contracts."""

from __future__ import annotations

from datetime import date, datetime
from decimal import ROUND_HALF_UP, Decimal, InvalidOperation
from enum import StrEnum

from pydantic import BaseModel, ConfigDict, field_validator

# --- Type Aliases ---

WarehouseName = str
DestinationId = str
NaturalKey = tuple[date, int, str, bool]

# The tariffs endpoint does not report a box size. Every record carries this
# placeholder so that the natural key stays stable across runs.
DEFAULT_BOX_SIZE = 30

COEFFICIENT_QUANTUM = Decimal("0.01")
MAX_COEFFICIENT = Decimal("999.99")

# --- Enumerations ---


class StorageBackend(StrEnum):
    """Supported storage backends."""

    SQLITE = "sqlite"


class PublishBackend(StrEnum):
    """Supported snapshot destinations."""

    GOOGLE_SHEETS = "google_sheets"
    CSV = "csv"


class SyncState(StrEnum):
    """Orchestrator states for a single synchronization run."""

    IDLE = "idle"
    FETCHING = "fetching"
    PERSISTING = "persisting"
    PUBLISHING = "publishing"
    ERRORED = "errored"


# --- Tariff Models ---


def quantize_coefficient(value: Decimal) -> Decimal:
    """Round a coefficient to two decimal places (half up)."""
    return value.quantize(COEFFICIENT_QUANTUM, rounding=ROUND_HALF_UP)


class TariffRecord(BaseModel):
    """A delivery coefficient for one warehouse, day and delivery type."""

    model_config = ConfigDict(frozen=True)

    date: date
    box_size: int = DEFAULT_BOX_SIZE
    coefficient: Decimal
    warehouse_name: WarehouseName
    geo_name: str | None = None
    is_marketplace: bool = False
    updated_at: datetime | None = None

    @field_validator("coefficient", mode="before")
    @classmethod
    def coefficient_to_decimal(cls, v: object) -> Decimal:
        # floats go through str() so 87.3 does not become 87.299999...
        if isinstance(v, float):
            v = str(v)
        try:
            return Decimal(v)
        except (InvalidOperation, TypeError, ValueError) as e:
            raise ValueError(f"coefficient is not a decimal: {v!r}") from e

    @field_validator("coefficient")
    @classmethod
    def coefficient_in_range(cls, v: Decimal) -> Decimal:
        if not v.is_finite():
            raise ValueError("coefficient must be finite")
        if v < 0:
            raise ValueError(f"coefficient must be non-negative, got {v}")
        quantized = quantize_coefficient(v)
        if quantized > MAX_COEFFICIENT:
            raise ValueError(f"coefficient must be at most {MAX_COEFFICIENT}, got {v}")
        return quantized

    @field_validator("warehouse_name")
    @classmethod
    def warehouse_name_required(cls, v: str) -> str:
        v = v.strip()
        if not v:
            raise ValueError("warehouse_name must not be empty")
        return v

    @field_validator("geo_name")
    @classmethod
    def blank_geo_is_none(cls, v: str | None) -> str | None:
        if v is None:
            return None
        v = v.strip()
        return v or None

    @field_validator("box_size")
    @classmethod
    def box_size_positive(cls, v: int) -> int:
        if v <= 0:
            raise ValueError("box_size must be positive")
        return v

    @property
    def natural_key(self) -> NaturalKey:
        """(date, box_size, warehouse_name, is_marketplace), unique per row."""
        return (self.date, self.box_size, self.warehouse_name, self.is_marketplace)


# --- Run Models ---


class SyncReport(BaseModel):
    """Outcome of a single synchronization run."""

    run_id: str
    started_at: datetime
    finished_at: datetime | None = None
    state: SyncState = SyncState.IDLE
    fetched: int = 0
    persisted: int = 0
    destinations: list[DestinationId] = []
    failed_stage: SyncState | None = None
    error: str | None = None

    @property
    def succeeded(self) -> bool:
        return self.finished_at is not None and self.failed_stage is None

    @property
    def duration_seconds(self) -> float | None:
        if self.finished_at is None:
            return None
        return (self.finished_at - self.started_at).total_seconds()

"""Shared pytest fixtures for tariff-sync."""

from datetime import date, datetime, timedelta, timezone
from decimal import Decimal

import pytest

from tariff_sync.core.models import TariffRecord


@pytest.fixture
def today() -> date:
    return date(2024, 4, 5)


@pytest.fixture
def make_record(today):
    """Factory for TariffRecord with overridable defaults."""

    def _make(**overrides):
        defaults = dict(
            date=today,
            coefficient=Decimal("100.50"),
            warehouse_name="Коледино",
            geo_name="Центральный федеральный округ",
            is_marketplace=False,
        )
        defaults.update(overrides)
        return TariffRecord(**defaults)

    return _make


@pytest.fixture
def warehouse_payload() -> dict:
    """Mock tariffs/box response with standard, marketplace and missing rates."""
    return {
        "response": {
            "data": {
                "dtNextBox": "2024-04-06",
                "dtTillMax": "2024-04-30",
                "warehouseList": [
                    {
                        "warehouseName": "Коледино",
                        "geoName": "Центральный федеральный округ",
                        "boxDeliveryCoefExpr": "150",
                        "boxDeliveryMarketplaceCoefExpr": "120",
                    },
                    {
                        "warehouseName": "Казань",
                        "geoName": "Приволжский федеральный округ",
                        "boxDeliveryCoefExpr": "100,5",
                        "boxDeliveryMarketplaceCoefExpr": "-",
                    },
                    {
                        "warehouseName": "Маркетплейс: Ташкент",
                        "geoName": "",
                        "boxDeliveryCoefExpr": "-",
                        "boxDeliveryMarketplaceCoefExpr": "87.30",
                    },
                ],
            }
        }
    }


@pytest.fixture
def fixed_clock():
    """A controllable UTC clock: call .advance(seconds) to move it forward."""

    class _Clock:
        def __init__(self) -> None:
            self.current = datetime(2024, 4, 5, 9, 0, 0, tzinfo=timezone.utc)

        def __call__(self) -> datetime:
            return self.current

        def advance(self, seconds: float) -> None:
            self.current = self.current + timedelta(seconds=seconds)

    return _Clock()


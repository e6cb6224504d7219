"""Normalization of the tariffs/box payload into TariffRecords.

Payload shape::

    {"response": {"data": {"warehouseList": [
        {"warehouseName": "Коледино", "geoName": "Центральный федеральный округ",
         "boxDeliveryCoefExpr": "160", "boxDeliveryMarketplaceCoefExpr": "-"},
        ...
    ]}}}

Each warehouse entry yields zero, one or two records: one for standard
delivery and one for marketplace delivery, in that order. A coefficient of
``"-"`` means the warehouse has no rate for that delivery type.
"""

from __future__ import annotations

from datetime import date
from decimal import Decimal, InvalidOperation
from typing import Any

from pydantic import ValidationError

from tariff_sync.core.exceptions import ParseError, SchemaError
from tariff_sync.core.models import (
    DEFAULT_BOX_SIZE,
    MAX_COEFFICIENT,
    TariffRecord,
    quantize_coefficient,
)

NO_RATE = "-"

STANDARD_FIELD = "boxDeliveryCoefExpr"
MARKETPLACE_FIELD = "boxDeliveryMarketplaceCoefExpr"

_DELIVERY_FIELDS: tuple[tuple[str, bool], ...] = (
    (STANDARD_FIELD, False),
    (MARKETPLACE_FIELD, True),
)


def extract_warehouse_list(payload: Any) -> list[Any]:
    """Return ``response.data.warehouseList`` or raise SchemaError."""
    node = payload
    for key in ("response", "data", "warehouseList"):
        if not isinstance(node, dict) or key not in node:
            raise SchemaError(
                f"Response is missing '{key}'",
                context={"path": "response.data.warehouseList", "missing": key},
            )
        node = node[key]
    if not isinstance(node, list):
        raise SchemaError(
            f"warehouseList must be a list, got {type(node).__name__}",
            context={"path": "response.data.warehouseList"},
        )
    return node


def parse_coefficient(raw: Any, *, warehouse_name: str = "", field: str = "") -> Decimal | None:
    """Parse a coefficient expression.

    Returns None for "no rate" (missing, empty or ``"-"``). Accepts a comma
    as decimal separator. Raises ParseError for anything else that is not a
    non-negative decimal within the stored precision.
    """
    context = {"warehouse_name": warehouse_name, "field": field, "value": raw}

    if raw is None:
        return None
    if isinstance(raw, bool):
        raise ParseError(f"Boolean is not a coefficient: {raw!r}", context=context)

    if isinstance(raw, (int, float)):
        text = str(raw)
    elif isinstance(raw, str):
        text = raw.strip()
        if text in ("", NO_RATE):
            return None
        text = text.replace(",", ".")
    else:
        raise ParseError(
            f"Unsupported coefficient type {type(raw).__name__}", context=context
        )

    try:
        value = Decimal(text)
    except InvalidOperation as e:
        raise ParseError(f"Malformed coefficient {raw!r}", context=context) from e

    if not value.is_finite():
        raise ParseError(f"Coefficient is not finite: {raw!r}", context=context)
    if value < 0:
        raise ParseError(f"Coefficient is negative: {raw!r}", context=context)

    value = quantize_coefficient(value)
    if value > MAX_COEFFICIENT:
        raise ParseError(
            f"Coefficient {raw!r} exceeds {MAX_COEFFICIENT}", context=context
        )
    return value


def normalize_entry(
    entry: Any,
    on_date: date,
    box_size: int = DEFAULT_BOX_SIZE,
) -> list[TariffRecord]:
    """Turn one warehouse entry into its standard/marketplace records."""
    if not isinstance(entry, dict):
        raise SchemaError(
            f"warehouseList entry must be an object, got {type(entry).__name__}",
            context={"path": "response.data.warehouseList[]"},
        )

    name = entry.get("warehouseName")
    if not isinstance(name, str) or not name.strip():
        raise SchemaError(
            "warehouseList entry has no warehouseName",
            context={"path": "response.data.warehouseList[].warehouseName"},
        )

    geo = entry.get("geoName")
    if not isinstance(geo, str):
        geo = None

    records: list[TariffRecord] = []
    for field, is_marketplace in _DELIVERY_FIELDS:
        coefficient = parse_coefficient(
            entry.get(field), warehouse_name=name, field=field
        )
        if coefficient is None:
            continue
        try:
            records.append(
                TariffRecord(
                    date=on_date,
                    box_size=box_size,
                    coefficient=coefficient,
                    warehouse_name=name,
                    geo_name=geo,
                    is_marketplace=is_marketplace,
                )
            )
        except ValidationError as e:
            raise ParseError(
                f"Invalid tariff for {name!r}: {e}",
                context={"warehouse_name": name, "field": field},
            ) from e
    return records


def normalize_warehouse_list(
    payload: Any,
    on_date: date,
    box_size: int = DEFAULT_BOX_SIZE,
) -> list[TariffRecord]:
    """Normalize a whole response. Any bad entry aborts the batch."""
    records: list[TariffRecord] = []
    for entry in extract_warehouse_list(payload):
        records.extend(normalize_entry(entry, on_date, box_size))
    return records

"""Rate-limited async HTTP client for the Wildberries tariffs API."""

from __future__ import annotations

import asyncio
import logging
from collections.abc import Callable
from datetime import UTC, date, datetime
from typing import Protocol, runtime_checkable

import httpx
from aiolimiter import AsyncLimiter

from tariff_sync.core.config import ProviderConfig
from tariff_sync.core.exceptions import SchemaError, TransportError
from tariff_sync.core.models import DEFAULT_BOX_SIZE, TariffRecord
from tariff_sync.ingestion.normalize import normalize_warehouse_list

logger = logging.getLogger(__name__)

# Retry configuration
_MAX_RETRIES_429 = 3
_DEFAULT_RETRY_AFTER = 5
_MAX_RETRIES_SERVER = 3
_MAX_RETRIES_CONNECTION = 2
_CONNECTION_RETRY_DELAY = 2.0
_RETRYABLE_STATUS = (500, 502, 503, 504)


def utc_today() -> date:
    return datetime.now(UTC).date()


@runtime_checkable
class TariffProvider(Protocol):
    """Consumer-facing interface for fetching one day's tariffs."""

    async def fetch(self, on_date: date | None = None) -> list[TariffRecord]: ...


class WildberriesClient:
    """Provider adapter for the Wildberries box-tariff endpoint.

    Fetches the tariff list for one day and normalizes it into
    TariffRecords. Use via ``async with WildberriesClient(...) as client:``.
    """

    def __init__(
        self,
        config: ProviderConfig,
        box_size: int = DEFAULT_BOX_SIZE,
        today: Callable[[], date] = utc_today,
        http_client: httpx.AsyncClient | None = None,
    ) -> None:
        self._config = config
        self._box_size = box_size
        self._today = today
        self._limiter = AsyncLimiter(max_rate=config.rate_limit, time_period=1.0)
        self._owns_client = http_client is None
        self._client = http_client or httpx.AsyncClient(
            timeout=httpx.Timeout(config.request_timeout),
            follow_redirects=True,
        )

    async def __aenter__(self) -> WildberriesClient:
        return self

    async def __aexit__(self, *exc: object) -> None:
        await self.close()

    async def close(self) -> None:
        """Close the underlying HTTP client if this instance created it."""
        if self._owns_client:
            await self._client.aclose()

    # --- Provider contract ---

    async def fetch(self, on_date: date | None = None) -> list[TariffRecord]:
        """Fetch and normalize tariffs for ``on_date`` (default: today, UTC).

        Returns:
            Records in response order, standard delivery before marketplace
            delivery for each warehouse.

        Raises:
            TransportError: Network failure or non-200 response.
            SchemaError: Body is not JSON or lacks response.data.warehouseList.
            ParseError: A coefficient is malformed. No records are returned.
        """
        day = on_date or self._today()
        payload = await self.get_raw_tariffs(day)
        records = normalize_warehouse_list(payload, day, self._box_size)
        logger.info("Fetched %d tariffs for %s", len(records), day.isoformat())
        return records

    async def get_raw_tariffs(self, on_date: date) -> dict:
        """Return the decoded JSON body for one day's tariffs."""
        response = await self._rate_limited_request(
            "GET",
            self._config.base_url,
            params={"date": on_date.isoformat()},
            headers={"Authorization": self._config.api_key},
        )
        try:
            return response.json()
        except ValueError as e:
            raise SchemaError(
                "Tariffs response is not valid JSON",
                context={"url": self._config.base_url, "path": "$"},
            ) from e

    # --- Rate Limiting & Retry ---

    async def _rate_limited_request(
        self,
        method: str,
        url: str,
        **kwargs: object,
    ) -> httpx.Response:
        """Execute an HTTP request with rate limiting and retry logic.

        Retry policy:
            - HTTP 429: Wait for Retry-After header value (or 5s default),
              then retry up to 3 times.
            - HTTP 500/502/503/504: Retry up to 3 times with exponential backoff.
            - Other HTTP errors: Raise immediately (no retry).
            - Connection errors: Retry up to 2 times with 2s delay.
            - Timeouts: Raise immediately.

        Raises:
            TransportError: If the request cannot be completed with status 200.
        """
        connection_failures = 0

        for attempt in range(_MAX_RETRIES_429 + 1):
            try:
                await self._limiter.acquire()
                response = await self._client.request(method, url, **kwargs)
            except httpx.ConnectError as e:
                connection_failures += 1
                if connection_failures <= _MAX_RETRIES_CONNECTION:
                    logger.warning(
                        "Connection error on %s, retrying in %.0fs (attempt %d/%d)",
                        url, _CONNECTION_RETRY_DELAY,
                        connection_failures, _MAX_RETRIES_CONNECTION,
                    )
                    await asyncio.sleep(_CONNECTION_RETRY_DELAY)
                    continue
                raise TransportError(
                    f"Connection failed after retries: {url}",
                    context={"url": url, "error": str(e)},
                ) from e
            except httpx.TimeoutException as e:
                raise TransportError(
                    f"Request timed out: {url}",
                    context={"url": url, "error": type(e).__name__},
                ) from e
            except httpx.HTTPError as e:
                raise TransportError(
                    f"HTTP transport error on {url}: {e}",
                    context={"url": url, "error": str(e)},
                ) from e

            if response.status_code == 200:
                return response

            if response.status_code == 429:
                retry_after = _retry_after_seconds(response)
                if attempt < _MAX_RETRIES_429:
                    logger.warning(
                        "Rate limited (429) on %s, waiting %ds (attempt %d/%d)",
                        url, retry_after, attempt + 1, _MAX_RETRIES_429,
                    )
                    await asyncio.sleep(retry_after)
                    continue
                raise TransportError(
                    f"Rate limit exceeded after {_MAX_RETRIES_429} retries: {url}",
                    context={"url": url, "status_code": 429, "retry_after": retry_after},
                )

            if response.status_code in _RETRYABLE_STATUS:
                if attempt < _MAX_RETRIES_SERVER:
                    delay = 2**attempt
                    logger.warning(
                        "Server error %d on %s, retrying in %ds (attempt %d/%d)",
                        response.status_code, url, delay,
                        attempt + 1, _MAX_RETRIES_SERVER,
                    )
                    await asyncio.sleep(delay)
                    continue
                raise TransportError(
                    f"Server error {response.status_code} after retries: {url}",
                    context={"url": url, "status_code": response.status_code},
                )

            raise TransportError(
                f"HTTP {response.status_code} from {url}",
                context={"url": url, "status_code": response.status_code},
            )

        raise TransportError(
            f"Request failed after all retries: {url}",
            context={"url": url},
        )


def _retry_after_seconds(response: httpx.Response) -> int:
    value = response.headers.get("Retry-After")
    if value is None:
        return _DEFAULT_RETRY_AFTER
    try:
        return max(0, int(value))
    except ValueError:
        return _DEFAULT_RETRY_AFTER

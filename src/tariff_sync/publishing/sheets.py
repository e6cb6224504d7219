"""Google Sheets publish sink, direct HTTP implementation.

Talks to the Sheets REST v4 API through httpx. Authentication uses a
service-account key file via google-auth; only the bearer token crosses
into this module.

Each destination is a spreadsheet id. A publish sends one
``spreadsheets.batchUpdate`` per spreadsheet carrying two requests:

1. ``updateCells`` over columns A-E from row 1 down, writing the snapshot
   and blanking every cell in that range the snapshot does not reach,
2. ``repeatCell`` that bolds the header row.

A batchUpdate is applied all or nothing, so a failed publish leaves the
spreadsheet at its previous snapshot.
"""

from __future__ import annotations

import asyncio
import logging
from pathlib import Path
from typing import Protocol

import httpx
from google.auth.exceptions import GoogleAuthError
from google.auth.transport.requests import Request
from google.oauth2 import service_account

from tariff_sync.core.exceptions import ConfigError, PublishError
from tariff_sync.core.models import DestinationId
from tariff_sync.publishing.sink import SNAPSHOT_HEADER, Row, SnapshotSink

logger = logging.getLogger(__name__)

SHEETS_API_BASE = "https://sheets.googleapis.com/v4/spreadsheets"
SHEETS_SCOPES = ("https://www.googleapis.com/auth/spreadsheets",)


class TokenSource(Protocol):
    """Supplies OAuth bearer tokens for the Sheets API."""

    async def token(self) -> str: ...


class StaticTokenSource:
    """A fixed token, for pre-authorized environments and tests."""

    def __init__(self, token: str) -> None:
        self._token = token

    async def token(self) -> str:
        return self._token


class ServiceAccountTokenSource:
    """Bearer tokens from a service-account key file.

    google-auth refreshes synchronously, so refresh runs in a worker thread.
    """

    def __init__(self, credentials_path: str, scopes: tuple[str, ...] = SHEETS_SCOPES) -> None:
        path = Path(credentials_path).expanduser().resolve()
        if not path.is_file():
            raise ConfigError(
                f"Credentials file not found: {path}",
                context={"field": "publish.credentials_path", "value": str(path)},
            )
        try:
            self._credentials = service_account.Credentials.from_service_account_file(
                str(path), scopes=list(scopes)
            )
        except (ValueError, KeyError) as e:
            raise ConfigError(
                f"Invalid service-account credentials file: {e}",
                context={"field": "publish.credentials_path", "value": str(path)},
            ) from e
        self._lock = asyncio.Lock()

    async def token(self) -> str:
        async with self._lock:
            if not self._credentials.valid:
                await asyncio.to_thread(self._credentials.refresh, Request())
            return self._credentials.token


def batch_update_url(spreadsheet_id: str) -> str:
    return f"{SHEETS_API_BASE}/{spreadsheet_id}:batchUpdate"


def _cell(value: str | int | float) -> dict:
    if isinstance(value, (int, float)) and not isinstance(value, bool):
        return {"userEnteredValue": {"numberValue": value}}
    return {"userEnteredValue": {"stringValue": str(value)}}


def update_cells_request(
    sheet_tab_id: int,
    rows: list[Row],
    columns: int = len(SNAPSHOT_HEADER),
) -> dict:
    """An updateCells request that overwrites columns A.. of ``sheet_tab_id``.

    The range has no end row, so rows below the snapshot are cleared too.
    """
    return {
        "updateCells": {
            "range": {
                "sheetId": sheet_tab_id,
                "startRowIndex": 0,
                "startColumnIndex": 0,
                "endColumnIndex": columns,
            },
            "rows": [{"values": [_cell(v) for v in row]} for row in rows],
            "fields": "userEnteredValue",
        }
    }


def bold_header_request(sheet_tab_id: int, columns: int = len(SNAPSHOT_HEADER)) -> dict:
    """A repeatCell request that bolds the first row of ``sheet_tab_id``."""
    return {
        "repeatCell": {
            "range": {
                "sheetId": sheet_tab_id,
                "startRowIndex": 0,
                "endRowIndex": 1,
                "startColumnIndex": 0,
                "endColumnIndex": columns,
            },
            "cell": {"userEnteredFormat": {"textFormat": {"bold": True}}},
            "fields": "userEnteredFormat.textFormat.bold",
        }
    }


class GoogleSheetsSink(SnapshotSink):
    """Overwrites the snapshot columns of each configured spreadsheet."""

    def __init__(
        self,
        spreadsheet_ids: list[DestinationId],
        token_source: TokenSource,
        sheet_tab_id: int = 0,
        continue_on_error: bool = False,
        request_timeout: float = 30,
        http_client: httpx.AsyncClient | None = None,
    ) -> None:
        super().__init__(spreadsheet_ids, continue_on_error=continue_on_error)
        self._token_source = token_source
        self._sheet_tab_id = sheet_tab_id
        self._owns_client = http_client is None
        self._client = http_client or httpx.AsyncClient(
            timeout=httpx.Timeout(request_timeout),
        )

    async def close(self) -> None:
        if self._owns_client:
            await self._client.aclose()

    async def _write(self, destination: DestinationId, rows: list[Row]) -> None:
        try:
            token = await self._token_source.token()
        except GoogleAuthError as e:
            raise PublishError(
                f"Could not obtain Sheets API token: {e}",
                context={"destination": destination, "step": "auth"},
            ) from e

        await self._call(
            "POST",
            batch_update_url(destination),
            destination,
            "batchUpdate",
            headers={"Authorization": f"Bearer {token}"},
            json={
                "requests": [
                    update_cells_request(self._sheet_tab_id, rows),
                    bold_header_request(self._sheet_tab_id),
                ]
            },
        )

    async def _call(
        self,
        method: str,
        url: str,
        destination: DestinationId,
        step: str,
        **kwargs: object,
    ) -> httpx.Response:
        context = {"destination": destination, "step": step, "url": url}
        try:
            response = await self._client.request(method, url, **kwargs)
        except httpx.TimeoutException as e:
            raise PublishError(
                f"Sheets API {step} timed out for {destination}",
                context=context,
            ) from e
        except httpx.HTTPError as e:
            raise PublishError(
                f"Sheets API {step} failed for {destination}: {e}",
                context=context,
            ) from e

        if not response.is_success:
            raise PublishError(
                f"Sheets API {step} returned HTTP {response.status_code} for {destination}",
                context={
                    **context,
                    "status_code": response.status_code,
                    "response_body": response.text[:500],
                },
            )
        logger.debug("Sheets API %s ok for %s", step, destination)
        return response

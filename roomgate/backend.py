from __future__ import annotations

import logging
from typing import Any
from urllib.parse import urlparse

import httpx

from .errors import ConnectionFailure
from .settings import SettingsSnapshot

logger = logging.getLogger(__name__)

SETTINGS_TABLE = "dataroom_settings"
DOCUMENTS_TABLE = "dataroom_documents"
NOTES_TABLE = "dataroom_notes"
SESSIONS_TABLE = "visitor_sessions"
CLICKS_TABLE = "visitor_clicks"
LOGS_TABLE = "visitor_logs"

WATCHED_TABLES = (DOCUMENTS_TABLE, NOTES_TABLE, SETTINGS_TABLE)


def build_base_url(address: str) -> str:
    trimmed = address.strip().rstrip("/")
    if not trimmed:
        return ""
    parsed = urlparse(trimmed)
    if parsed.scheme:
        return trimmed
    return f"https://{trimmed}"


def _error_detail(response: httpx.Response) -> str:
    try:
        payload = response.json()
    except ValueError:
        snippet = response.text[:240].strip()
        return snippet or response.reason_phrase
    if isinstance(payload, dict):
        message = payload.get("message") or payload.get("error")
        if isinstance(message, str) and message:
            return message
    return response.reason_phrase


class BackendClient:
    """Async client for the shared backing store's REST tables."""

    def __init__(
        self,
        url: str,
        key: str,
        *,
        timeout_s: float = 10.0,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        self.base_url = build_base_url(url)
        self.key = key
        self._client = httpx.AsyncClient(
            base_url=f"{self.base_url}/rest/v1",
            headers={
                "apikey": key,
                "Authorization": f"Bearer {key}",
                "Accept": "application/json",
            },
            timeout=timeout_s,
            transport=transport,
        )

    async def aclose(self) -> None:
        await self._client.aclose()

    async def __aenter__(self) -> BackendClient:
        return self

    async def __aexit__(self, *exc_info: object) -> None:
        await self.aclose()

    async def _request(
        self,
        method: str,
        table: str,
        *,
        params: dict[str, str] | None = None,
        json_body: Any = None,
        prefer: str | None = None,
    ) -> Any:
        headers = {"Prefer": prefer} if prefer else None
        try:
            response = await self._client.request(
                method, f"/{table}", params=params, json=json_body, headers=headers
            )
        except httpx.HTTPError as exc:
            raise ConnectionFailure(f"{method} {table} failed: {exc}") from exc
        if response.status_code >= 400:
            raise ConnectionFailure(
                f"{method} {table} failed: {response.status_code} {_error_detail(response)}",
                status=response.status_code,
            )
        if not response.content:
            return None
        try:
            return response.json()
        except ValueError as exc:
            raise ConnectionFailure(f"{method} {table} returned non-json body") from exc

    async def _select(self, table: str, params: dict[str, str]) -> list[dict[str, Any]]:
        rows = await self._request("GET", table, params={"select": "*", **params})
        if not isinstance(rows, list):
            raise ConnectionFailure(f"GET {table} returned {type(rows).__name__}, expected list")
        return [row for row in rows if isinstance(row, dict)]

    async def fetch_settings(self) -> SettingsSnapshot:
        return SettingsSnapshot.from_rows(await self._select(SETTINGS_TABLE, {}))

    async def fetch_documents(self) -> list[dict[str, Any]]:
        return await self._select(
            DOCUMENTS_TABLE, {"is_hidden": "eq.false", "order": "sort_order.asc"}
        )

    async def fetch_notes(self) -> list[dict[str, Any]]:
        return await self._select(NOTES_TABLE, {"order": "sort_order.asc"})

    async def insert(self, table: str, row: dict[str, Any]) -> None:
        await self._request("POST", table, json_body=[row], prefer="return=minimal")

    async def update(self, table: str, values: dict[str, Any], *, match: dict[str, str]) -> None:
        params = {column: f"eq.{value}" for column, value in match.items()}
        await self._request(
            "PATCH", table, params=params, json_body=values, prefer="return=minimal"
        )

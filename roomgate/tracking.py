from __future__ import annotations

import asyncio
import datetime as dt
import logging
import platform
from collections.abc import Awaitable, Callable
from typing import Any

from . import __version__
from .backend import CLICKS_TABLE, LOGS_TABLE, SESSIONS_TABLE, BackendClient

logger = logging.getLogger(__name__)

USER_AGENT = f"roomgate/{__version__} ({platform.system()}; Python {platform.python_version()})"


def _now_iso() -> str:
    return dt.datetime.now(dt.UTC).isoformat()


class Tracker:
    """Fire-and-forget telemetry writes.

    Each write runs as its own task; failures are logged and dropped. Writes
    carry no ordering guarantee relative to each other.
    """

    def __init__(self, backend: BackendClient | None, *, referrer: str | None = None) -> None:
        self.backend = backend
        self.referrer = referrer or None
        self._pending: set[asyncio.Task[None]] = set()

    @property
    def pending(self) -> int:
        return len(self._pending)

    def _fire(self, label: str, make_call: Callable[[BackendClient], Awaitable[None]]) -> None:
        backend = self.backend
        if backend is None:
            return

        async def _run() -> None:
            try:
                await make_call(backend)
            except Exception:
                logger.warning("tracking write failed: %s", label, exc_info=True)

        task = asyncio.get_running_loop().create_task(_run())
        self._pending.add(task)
        task.add_done_callback(self._pending.discard)

    async def drain(self, timeout_s: float = 2.0) -> None:
        if not self._pending:
            return
        _done, not_done = await asyncio.wait(set(self._pending), timeout=timeout_s)
        for task in not_done:
            task.cancel()

    def session_started(
        self,
        session_id: str,
        identity: dict[str, Any],
        started_at: str,
        *,
        screen: tuple[int, int] | None = None,
    ) -> None:
        row = {
            "session_id": session_id,
            "visitor_name": identity.get("name"),
            "visitor_email": identity.get("email"),
            "visitor_company": identity.get("company"),
            "started_at": started_at,
            "user_agent": USER_AGENT,
            "referrer": self.referrer,
            "screen_width": screen[0] if screen else None,
            "screen_height": screen[1] if screen else None,
        }
        self._fire("session_start", lambda b: b.insert(SESSIONS_TABLE, row))
        self.click(session_id, identity, "dashboard_view")

    def session_ended(self, session_id: str, duration_s: int) -> None:
        values = {"ended_at": _now_iso(), "duration_seconds": duration_s}
        self._fire(
            "session_end",
            lambda b: b.update(SESSIONS_TABLE, values, match={"session_id": session_id}),
        )

    def click(
        self,
        session_id: str,
        identity: dict[str, Any] | None,
        action: str,
        *,
        section: str | None = None,
        document: dict[str, Any] | None = None,
    ) -> None:
        row: dict[str, Any] = {
            "session_id": session_id,
            "visitor_email": (identity or {}).get("email"),
            "action": action,
            "clicked_at": _now_iso(),
        }
        if section is not None:
            row["section"] = section
        if document is not None:
            row["document_id"] = document.get("id")
            row["document_name"] = document.get("name")
            row["section"] = document.get("section")
        self._fire(action, lambda b: b.insert(CLICKS_TABLE, row))

    def activity(
        self,
        session_id: str | None,
        identity: dict[str, Any] | None,
        action: str,
        *,
        section: str | None = None,
        document_name: str | None = None,
    ) -> None:
        if not identity:
            return
        row = {
            "session_id": session_id,
            "visitor_name": identity.get("name"),
            "visitor_company": identity.get("company"),
            "action": action,
            "section": section,
            "document_name": document_name,
        }
        self._fire(f"activity:{action}", lambda b: b.insert(LOGS_TABLE, row))

from __future__ import annotations

import asyncio
import contextlib
import itertools
import json
import logging
from collections.abc import Awaitable, Callable, Iterable
from typing import Any, Protocol
from urllib.parse import urlencode, urlsplit, urlunsplit

import websockets

from .backend import WATCHED_TABLES, build_base_url

logger = logging.getLogger(__name__)

CHANNEL_NAME = "dataroom-changes"
HEARTBEAT_INTERVAL_S = 25.0
PROTOCOL_VSN = "1.0.0"

ChangeCallback = Callable[[dict[str, Any]], Awaitable[None]]
ReconnectCallback = Callable[[], Awaitable[None]]


class Subscription(Protocol):
    @property
    def active(self) -> bool: ...

    async def close(self) -> None: ...


class PushChannel(Protocol):
    async def subscribe(
        self, on_change: ChangeCallback, *, on_reconnect: ReconnectCallback | None = None
    ) -> Subscription: ...


def build_socket_url(base_url: str, key: str) -> str:
    parts = urlsplit(build_base_url(base_url))
    scheme = "wss" if parts.scheme == "https" else "ws"
    query = urlencode({"apikey": key, "vsn": PROTOCOL_VSN})
    return urlunsplit((scheme, parts.netloc, "/realtime/v1/websocket", query, ""))


def join_message(topic: str, tables: Iterable[str], ref: str) -> dict[str, Any]:
    return {
        "topic": topic,
        "event": "phx_join",
        "payload": {
            "config": {
                "postgres_changes": [
                    {"event": "*", "schema": "public", "table": table} for table in tables
                ]
            }
        },
        "ref": ref,
    }


def heartbeat_message(ref: str) -> dict[str, Any]:
    return {"topic": "phoenix", "event": "heartbeat", "payload": {}, "ref": ref}


def leave_message(topic: str, ref: str) -> dict[str, Any]:
    return {"topic": topic, "event": "phx_leave", "payload": {}, "ref": ref}


def parse_change(raw: str | bytes, topic: str) -> dict[str, Any] | None:
    """Return the change payload when `raw` is a row change on `topic`."""
    try:
        message = json.loads(raw)
    except (TypeError, ValueError):
        return None
    if not isinstance(message, dict):
        return None
    if message.get("topic") != topic or message.get("event") != "postgres_changes":
        return None
    payload = message.get("payload")
    if not isinstance(payload, dict):
        return {}
    data = payload.get("data")
    return data if isinstance(data, dict) else payload


class RealtimeSubscription:
    def __init__(self, task: asyncio.Task[None], stop: asyncio.Event) -> None:
        self._task = task
        self._stop = stop

    @property
    def active(self) -> bool:
        return not self._task.done()

    async def close(self) -> None:
        self._stop.set()
        self._task.cancel()
        with contextlib.suppress(asyncio.CancelledError):
            await self._task


class RealtimeChannel:
    """One push subscription covering every watched table.

    Any insert, update or delete on any table is delivered to the callback
    identically; the consumer re-fetches everything. `on_reconnect` fires each
    time the channel is joined again after a lost connection.
    """

    def __init__(
        self,
        base_url: str,
        key: str,
        *,
        tables: Iterable[str] = WATCHED_TABLES,
        channel: str = CHANNEL_NAME,
        connect: Callable[..., Any] = websockets.connect,
        retry_delay_s: float = 2.0,
        max_retry_delay_s: float = 30.0,
    ) -> None:
        self.url = build_socket_url(base_url, key)
        self.tables = tuple(tables)
        self.topic = f"realtime:{channel}"
        self._connect = connect
        self.retry_delay_s = retry_delay_s
        self.max_retry_delay_s = max_retry_delay_s
        self._refs = itertools.count(1)

    def _ref(self) -> str:
        return str(next(self._refs))

    async def subscribe(
        self, on_change: ChangeCallback, *, on_reconnect: ReconnectCallback | None = None
    ) -> RealtimeSubscription:
        stop = asyncio.Event()
        task = asyncio.get_running_loop().create_task(self._run(on_change, on_reconnect, stop))
        return RealtimeSubscription(task, stop)

    async def _heartbeat(self, ws: Any) -> None:
        while True:
            await asyncio.sleep(HEARTBEAT_INTERVAL_S)
            await ws.send(json.dumps(heartbeat_message(self._ref())))

    async def _run(
        self,
        on_change: ChangeCallback,
        on_reconnect: ReconnectCallback | None,
        stop: asyncio.Event,
    ) -> None:
        retry_delay = self.retry_delay_s
        joined_before = False
        while not stop.is_set():
            try:
                async with self._connect(self.url) as ws:
                    await ws.send(json.dumps(join_message(self.topic, self.tables, self._ref())))
                    logger.info("push channel joined %s", self.topic)
                    retry_delay = self.retry_delay_s
                    if joined_before and on_reconnect is not None:
                        try:
                            await on_reconnect()
                        except Exception:
                            logger.warning("push reconnect handler failed", exc_info=True)
                    joined_before = True
                    heartbeat = asyncio.get_running_loop().create_task(self._heartbeat(ws))
                    try:
                        async for raw in ws:
                            change = parse_change(raw, self.topic)
                            if change is None:
                                continue
                            try:
                                await on_change(change)
                            except Exception:
                                logger.warning("push change handler failed", exc_info=True)
                    finally:
                        heartbeat.cancel()
                        with contextlib.suppress(Exception):
                            await ws.send(json.dumps(leave_message(self.topic, self._ref())))
            except asyncio.CancelledError:
                raise
            except Exception as exc:
                msg = str(exc) or exc.__class__.__name__
                logger.warning("push channel lost (%s); retrying in %.0fs", msg, retry_delay)
            if stop.is_set():
                break
            await asyncio.sleep(retry_delay)
            retry_delay = min(self.max_retry_delay_s, retry_delay * 1.5)

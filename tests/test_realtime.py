from __future__ import annotations

import asyncio
import json
from typing import Any

from roomgate.realtime import (
    RealtimeChannel,
    build_socket_url,
    heartbeat_message,
    join_message,
    parse_change,
)

TOPIC = "realtime:dataroom-changes"


def test_socket_url_follows_backend_scheme() -> None:
    assert (
        build_socket_url("abc.supabase.co", "anon")
        == "wss://abc.supabase.co/realtime/v1/websocket?apikey=anon&vsn=1.0.0"
    )
    assert build_socket_url("http://localhost:54321", "anon").startswith("ws://localhost:54321/")


def test_join_message_lists_every_table() -> None:
    message = join_message(TOPIC, ["dataroom_documents", "dataroom_settings"], "1")

    assert message["event"] == "phx_join"
    changes = message["payload"]["config"]["postgres_changes"]
    assert [change["table"] for change in changes] == ["dataroom_documents", "dataroom_settings"]
    assert all(change["event"] == "*" for change in changes)
    assert heartbeat_message("2")["topic"] == "phoenix"


def test_parse_change_filters_topic_and_event() -> None:
    change = {"table": "dataroom_notes", "type": "UPDATE"}
    raw = json.dumps(
        {"topic": TOPIC, "event": "postgres_changes", "payload": {"data": change}, "ref": None}
    )

    assert parse_change(raw, TOPIC) == change
    assert parse_change(raw, "realtime:other") is None
    assert parse_change(json.dumps({"topic": TOPIC, "event": "phx_reply"}), TOPIC) is None
    assert parse_change("not json", TOPIC) is None
    assert parse_change(json.dumps({"topic": TOPIC, "event": "postgres_changes"}), TOPIC) == {}


class FakeSocket:
    def __init__(self, messages: list[str], *, hang: bool = True) -> None:
        self.sent: list[dict[str, Any]] = []
        self._messages = messages
        self._hang = hang
        self.drained = asyncio.Event()

    async def send(self, raw: str) -> None:
        self.sent.append(json.loads(raw))

    async def __aenter__(self) -> FakeSocket:
        return self

    async def __aexit__(self, *exc_info: object) -> None:
        return None

    def __aiter__(self):
        return self._iterate()

    async def _iterate(self):
        for message in self._messages:
            yield message
        self.drained.set()
        if self._hang:
            await asyncio.Event().wait()


def test_channel_joins_and_delivers_changes() -> None:
    change = {"table": "dataroom_settings", "type": "UPDATE"}
    socket = FakeSocket(
        [
            json.dumps({"topic": TOPIC, "event": "phx_reply", "payload": {}}),
            json.dumps({"topic": TOPIC, "event": "postgres_changes", "payload": {"data": change}}),
        ]
    )
    urls: list[str] = []

    def connect(url: str) -> FakeSocket:
        urls.append(url)
        return socket

    received: list[dict[str, Any]] = []

    async def on_change(payload: dict[str, Any]) -> None:
        received.append(payload)

    async def scenario() -> bool:
        channel = RealtimeChannel("abc.supabase.co", "anon", connect=connect)
        subscription = await channel.subscribe(on_change)
        await asyncio.wait_for(socket.drained.wait(), timeout=2)
        active = subscription.active
        await subscription.close()
        return active and not subscription.active

    assert asyncio.run(scenario())
    assert urls == ["wss://abc.supabase.co/realtime/v1/websocket?apikey=anon&vsn=1.0.0"]
    assert received == [change]
    assert socket.sent[0]["event"] == "phx_join"
    assert socket.sent[-1]["event"] == "phx_leave"


def test_channel_rejoins_after_lost_connection() -> None:
    first = FakeSocket([], hang=False)
    second = FakeSocket([])
    sockets = [first, second]

    def connect(url: str) -> FakeSocket:
        return sockets.pop(0)

    rejoins: list[int] = []

    async def on_change(payload: dict[str, Any]) -> None:
        return None

    async def on_reconnect() -> None:
        rejoins.append(len(rejoins))

    async def scenario() -> None:
        channel = RealtimeChannel("abc.supabase.co", "anon", connect=connect, retry_delay_s=0.01)
        subscription = await channel.subscribe(on_change, on_reconnect=on_reconnect)
        await asyncio.wait_for(second.drained.wait(), timeout=2)
        await subscription.close()

    asyncio.run(scenario())
    assert rejoins == [0]
    assert [message["event"] for message in first.sent] == ["phx_join", "phx_leave"]
    assert second.sent[0]["event"] == "phx_join"

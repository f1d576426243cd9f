from __future__ import annotations

import asyncio
from collections.abc import Callable
from pathlib import Path
from typing import Any

import pytest

from roomgate.access import AccessPolicyEngine
from roomgate.errors import ConnectionFailure
from roomgate.local_state import LocalState
from roomgate.location import PageLocation
from roomgate.sessions import SessionStore, VisitorIdentity
from roomgate.settings import SettingsSnapshot
from roomgate.sync.coordinator import SyncCoordinator
from roomgate.tracking import Tracker

DEFAULT_VISITOR = VisitorIdentity("Ada", "ada@example.com", "Engines Ltd")


@pytest.fixture(autouse=True)
def _isolate_roomgate_paths(monkeypatch: pytest.MonkeyPatch, tmp_path: Path) -> None:
    monkeypatch.setenv("ROOMGATE_CONFIG", str(tmp_path / "config.json"))
    monkeypatch.setenv("ROOMGATE_DB_PATH", str(tmp_path / "state.sqlite"))
    for env_var in (
        "ROOMGATE_BACKEND_URL",
        "ROOMGATE_BACKEND_KEY",
        "ROOMGATE_POLL_INTERVAL_S",
        "ROOMGATE_REALTIME",
        "ROOMGATE_HTTP_TIMEOUT_S",
        "ROOMGATE_SESSION_TTL_S",
    ):
        monkeypatch.delenv(env_var, raising=False)


class FakeBackend:
    def __init__(self, settings: SettingsSnapshot, *, hold: bool = False) -> None:
        self.settings = settings
        self.documents: list[dict[str, Any]] = [
            {
                "id": 1,
                "name": "Deck.pdf",
                "section": "a",
                "status": "uploaded",
                "url": "https://files.example/deck.pdf",
            }
        ]
        self.notes: list[dict[str, Any]] = [{"id": 1, "section": "a", "content": "hello"}]
        self.fail_settings = False
        self.fail_documents = False
        self.settings_calls = 0
        self.started = asyncio.Event()
        self.release = asyncio.Event()
        if not hold:
            self.release.set()
        self.inserts: list[tuple[str, dict[str, Any]]] = []

    async def fetch_settings(self) -> SettingsSnapshot:
        self.settings_calls += 1
        self.started.set()
        await self.release.wait()
        if self.fail_settings:
            raise ConnectionFailure("GET dataroom_settings failed: timed out")
        return self.settings

    async def fetch_documents(self) -> list[dict[str, Any]]:
        if self.fail_documents:
            raise ConnectionFailure("GET dataroom_documents failed: timed out")
        return list(self.documents)

    async def fetch_notes(self) -> list[dict[str, Any]]:
        return list(self.notes)

    async def insert(self, table: str, row: dict[str, Any]) -> None:
        self.inserts.append((table, row))

    async def update(self, table: str, values: dict[str, Any], *, match: dict[str, str]) -> None:
        return None

    async def aclose(self) -> None:
        return None


class FakeSubscription:
    def __init__(self) -> None:
        self.closed = False

    @property
    def active(self) -> bool:
        return not self.closed

    async def close(self) -> None:
        self.closed = True


class FakePush:
    def __init__(self) -> None:
        self.subscriptions: list[FakeSubscription] = []
        self.callback = None
        self.reconnect = None

    async def subscribe(self, on_change, *, on_reconnect=None) -> FakeSubscription:
        self.callback = on_change
        self.reconnect = on_reconnect
        subscription = FakeSubscription()
        self.subscriptions.append(subscription)
        return subscription


class RecordingView:
    def __init__(self) -> None:
        self.calls: list[tuple[str, tuple[Any, ...]]] = []

    def _record(self, name: str, *args: Any) -> None:
        self.calls.append((name, args))

    def names(self) -> list[str]:
        return [name for name, _ in self.calls]

    def show_sync_indicator(self) -> None:
        self._record("show_sync_indicator")

    def show_blocker(self, decision) -> None:
        self._record("show_blocker", decision)

    def hide_blocker(self) -> None:
        self._record("hide_blocker")

    def show_gate(self, decision, message: str) -> None:
        self._record("show_gate", decision, message)

    def hide_gate(self) -> None:
        self._record("hide_gate")

    def show_banner(self, kind: str, message: str) -> None:
        self._record("show_banner", kind, message)

    def render(self, state) -> None:
        self._record("render", len(state.documents))

    def request_identity(self) -> None:
        self._record("request_identity")


class Harness:
    """A coordinator wired to in-memory fakes and a real local state file."""

    def __init__(
        self,
        tmp_path: Path,
        settings: SettingsSnapshot,
        *,
        url: str = "https://room.example/",
        hold: bool = False,
        identity: VisitorIdentity | None = DEFAULT_VISITOR,
        view: Any = None,
        poll_interval_s: float = 3600,
    ) -> None:
        self.local_state = LocalState(tmp_path / "state.sqlite")
        if identity is not None:
            self.local_state.save_identity(identity.as_dict())
        self.backend = FakeBackend(settings, hold=hold)
        self.push = FakePush()
        self.view = view if view is not None else RecordingView()
        self.location = PageLocation(url)
        tracker = Tracker(self.backend)  # type: ignore[arg-type]
        self.engine = AccessPolicyEngine(self.local_state)
        self.coordinator = SyncCoordinator(
            self.backend,  # type: ignore[arg-type]
            self.engine,
            SessionStore(self.local_state, tracker),
            tracker,
            self.view,
            location=self.location,
            push_channel=self.push,
            poll_interval_s=poll_interval_s,
        )

    async def shutdown(self) -> None:
        await self.coordinator.close()
        self.local_state.close()


@pytest.fixture()
def make_harness(tmp_path: Path) -> Callable[..., Harness]:
    """Build a `Harness`; call it inside the running event loop."""

    def _make(settings: SettingsSnapshot, **kwargs: Any) -> Harness:
        return Harness(tmp_path, settings, **kwargs)

    return _make

from __future__ import annotations

import asyncio
import io

import pytest
import typer
from rich.console import Console

from roomgate.cli import _interact, _watch
from roomgate.settings import SettingsSnapshot
from roomgate.state import ViewPhase
from roomgate.sync.coordinator import Trigger
from roomgate.view import ConsoleView


def _settings(**values: str) -> SettingsSnapshot:
    return SettingsSnapshot({f"dr_{key}": value for key, value in values.items()})


class ScriptedPrompt:
    def __init__(self, answers: list[str]) -> None:
        self.answers = list(answers)
        self.asked: list[str] = []

    def __call__(self, text: str, *args: object, **kwargs: object) -> str:
        self.asked.append(text)
        if not self.answers:
            raise typer.Abort()
        return self.answers.pop(0)


@pytest.fixture()
def console_view() -> ConsoleView:
    return ConsoleView(Console(file=io.StringIO(), width=120))


def _output(view: ConsoleView) -> str:
    return view.console.file.getvalue()


def test_rotated_password_is_asked_for_again(
    make_harness, console_view: ConsoleView, monkeypatch: pytest.MonkeyPatch
) -> None:
    prompt = ScriptedPrompt(["", "moonrise9", "s", "q"])
    monkeypatch.setattr(typer, "prompt", prompt)

    async def scenario() -> None:
        harness = make_harness(_settings(access_mode="open"), view=console_view)
        coordinator = harness.coordinator
        try:
            await coordinator.reconcile(Trigger.INITIAL)
            harness.backend.settings = _settings(access_mode="password", password="moonrise9")
            await coordinator.reconcile(Trigger.PUSH)
            assert coordinator.state.phase is ViewPhase.GATE_SHOWN

            await _interact(coordinator, console_view)

            assert coordinator.state.phase is ViewPhase.AUTHORIZED
            assert harness.engine.proofs() == frozenset({("password", "moonrise9")})
        finally:
            await harness.shutdown()

    asyncio.run(scenario())
    assert prompt.asked == ["roomgate", "Access passcode", "roomgate", "roomgate"]
    assert "Press Enter to unlock." in _output(console_view)


def test_open_section_document_and_refresh(
    make_harness, console_view: ConsoleView, monkeypatch: pytest.MonkeyPatch
) -> None:
    monkeypatch.setattr(typer, "prompt", ScriptedPrompt(["o a", "d 1", "d 99", "r", "zap", "q"]))

    async def scenario() -> None:
        harness = make_harness(_settings(access_mode="open"), view=console_view)
        coordinator = harness.coordinator
        try:
            await coordinator.reconcile(Trigger.INITIAL)

            await _interact(coordinator, console_view)
            await coordinator.tracker.drain()

            assert coordinator.passes == 2
            assert coordinator.state.current_section == "a"
            assert coordinator.state.open_document["name"] == "Deck.pdf"
            actions = [row.get("action") for _, row in harness.backend.inserts]
            assert "section_view" in actions
            assert "document_click" in actions
        finally:
            await harness.shutdown()

    asyncio.run(scenario())
    output = _output(console_view)
    assert "https://files.example/deck.pdf" in output
    assert "note:" in output
    assert "Unknown command: zap" in output


def test_returning_after_idle_refreshes_first(
    make_harness, console_view: ConsoleView, monkeypatch: pytest.MonkeyPatch
) -> None:
    monkeypatch.setattr(typer, "prompt", ScriptedPrompt(["q"]))
    ticks = iter([0.0, 120.0])

    async def scenario() -> int:
        harness = make_harness(_settings(access_mode="open"), view=console_view)
        try:
            await harness.coordinator.reconcile(Trigger.INITIAL)
            await _interact(harness.coordinator, console_view, clock=lambda: next(ticks))
            return harness.coordinator.passes
        finally:
            await harness.shutdown()

    assert asyncio.run(scenario()) == 2


def test_logout_asks_for_a_new_visitor(
    make_harness, console_view: ConsoleView, monkeypatch: pytest.MonkeyPatch
) -> None:
    prompt = ScriptedPrompt(["l", "Grace Hopper", "grace@example.com", "", "q"])
    monkeypatch.setattr(typer, "prompt", prompt)

    async def scenario() -> None:
        harness = make_harness(_settings(access_mode="open"), view=console_view)
        coordinator = harness.coordinator
        try:
            await coordinator.reconcile(Trigger.INITIAL)

            await _interact(coordinator, console_view)

            assert coordinator.state.identity.email == "grace@example.com"
            assert coordinator.state.phase is ViewPhase.AUTHORIZED
            assert harness.local_state.load_identity()["name"] == "Grace Hopper"
        finally:
            await harness.shutdown()

    asyncio.run(scenario())
    assert prompt.asked[1:4] == ["Full name", "Email", "Company"]


def test_watch_closes_the_room_when_input_ends(
    make_harness, console_view: ConsoleView, monkeypatch: pytest.MonkeyPatch
) -> None:
    monkeypatch.setattr(typer, "prompt", ScriptedPrompt([]))

    async def scenario() -> None:
        harness = make_harness(_settings(access_mode="open"), view=console_view)
        coordinator = harness.coordinator
        try:
            await _watch(coordinator, console_view, once=False)

            assert coordinator.passes == 1
            assert not coordinator.poll_active
            assert not coordinator.push_active
            assert harness.local_state.load_session_descriptor(60) is not None
        finally:
            await harness.shutdown()

    asyncio.run(scenario())

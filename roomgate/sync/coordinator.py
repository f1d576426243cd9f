"""Reconciliation of every change source into one serialized refresh.

Push notifications, poll ticks, visibility and connectivity transitions,
manual refreshes and credential submissions all funnel into `reconcile`.
Passes never overlap: a trigger that arrives while a pass is running is folded
into a single follow-up pass, and its caller receives that pass's result.
"""

from __future__ import annotations

import asyncio
import logging
from collections.abc import Coroutine
from dataclasses import dataclass
from enum import Enum
from typing import Any

from ..access import AccessPolicyEngine, Decision, Outcome, gate_message
from ..backend import BackendClient
from ..errors import ConnectionFailure
from ..location import PageLocation
from ..realtime import PushChannel, Subscription
from ..sessions import SessionStore, VisitorIdentity
from ..state import AppState, ViewPhase
from ..tracking import Tracker
from ..view import BANNER_CONNECTION, ViewLayer
from .timer import PollTimer

logger = logging.getLogger(__name__)

DEFAULT_POLL_INTERVAL_S = 30.0
LOAD_FAILED_MESSAGE = "Unable to connect to database. Please try again later."


class Trigger(str, Enum):
    PUSH = "push"
    POLL = "poll"
    VISIBILITY = "visibility"
    ONLINE = "online"
    MANUAL = "manual"
    CREDENTIAL = "credential"
    INITIAL = "initial"


# Failures during these passes are shown to the viewer; the rest stay silent.
EXPLICIT_TRIGGERS = frozenset({Trigger.MANUAL, Trigger.CREDENTIAL, Trigger.INITIAL})


@dataclass(frozen=True)
class PassResult:
    triggers: frozenset[Trigger]
    decision: Decision | None
    ok: bool
    error: str | None = None

    @property
    def authorized(self) -> bool:
        return self.decision is not None and self.decision.authorized


class SyncCoordinator:
    def __init__(
        self,
        backend: BackendClient,
        engine: AccessPolicyEngine,
        sessions: SessionStore,
        tracker: Tracker,
        view: ViewLayer,
        *,
        location: PageLocation | None = None,
        push_channel: PushChannel | None = None,
        poll_interval_s: float = DEFAULT_POLL_INTERVAL_S,
    ) -> None:
        self.backend = backend
        self.engine = engine
        self.sessions = sessions
        self.tracker = tracker
        self.view = view
        self.location = location
        self.push_channel = push_channel
        self.state = AppState(identity=sessions.load_identity())
        self.passes = 0

        self._poll = PollTimer(poll_interval_s, self._on_poll)
        self._push_handle: Subscription | None = None
        self._in_flight = False
        self._queued: set[Trigger] = set()
        self._follow_up: asyncio.Future[PassResult] | None = None
        self._url_consumed = False
        self._generation = 0
        self._tasks: set[asyncio.Task[Any]] = set()

    @property
    def push_active(self) -> bool:
        return self._push_handle is not None

    @property
    def poll_active(self) -> bool:
        return self._poll.active

    @property
    def in_flight(self) -> bool:
        return self._in_flight

    # Triggers

    async def reconcile(self, trigger: Trigger) -> PassResult:
        if self._in_flight:
            self._queued.add(trigger)
            if self._follow_up is None:
                self._follow_up = asyncio.get_running_loop().create_future()
            return await asyncio.shield(self._follow_up)

        self._in_flight = True
        try:
            result = await self._guarded_pass(frozenset({trigger}))
            while self._queued:
                triggers = frozenset(self._queued)
                self._queued.clear()
                follow_up, self._follow_up = self._follow_up, None
                result = await self._guarded_pass(triggers)
                if follow_up is not None and not follow_up.done():
                    follow_up.set_result(result)
        finally:
            self._in_flight = False
            self._queued.clear()
            if self._follow_up is not None and not self._follow_up.done():
                self._follow_up.cancel()
            self._follow_up = None
        return result

    async def refresh(self) -> PassResult:
        return await self.reconcile(Trigger.MANUAL)

    async def notify_visible(self) -> PassResult:
        return await self.reconcile(Trigger.VISIBILITY)

    async def notify_online(self) -> PassResult:
        return await self.reconcile(Trigger.ONLINE)

    async def _on_poll(self) -> None:
        await self.reconcile(Trigger.POLL)

    async def _on_push(self, change: dict[str, Any]) -> None:
        logger.debug("push change on %s", change.get("table"))
        self._spawn(self.reconcile(Trigger.PUSH))

    async def _on_reconnect(self) -> None:
        logger.info("push channel rejoined; catching up")
        self._spawn(self.notify_online())

    def _spawn(self, coro: Coroutine[Any, Any, Any]) -> None:
        task = asyncio.get_running_loop().create_task(coro)
        self._tasks.add(task)
        task.add_done_callback(self._tasks.discard)

    # Viewer actions

    async def identify(self, identity: VisitorIdentity) -> PassResult:
        self.sessions.persist_identity(identity)
        self.state.identity = identity
        return await self.reconcile(Trigger.INITIAL)

    async def submit_credential(self, entered: str) -> PassResult:
        """Check a typed credential against the current policy, then reconcile.

        Raises `CredentialMismatch` or `PolicyMisconfigured`; neither touches
        stored proofs or cached data.
        """
        snapshot = self.state.settings
        self.engine.submit(snapshot, entered, snapshot.access_mode)
        return await self.reconcile(Trigger.CREDENTIAL)

    def open_section(self, section_id: str) -> None:
        self.state.current_section = section_id
        self.state.open_document = None
        session = self.sessions.current
        if session is None:
            return
        identity = session.identity.as_dict()
        self.tracker.click(session.session_id, identity, "section_view", section=section_id)
        self.tracker.activity(session.session_id, identity, "view_section", section=section_id)

    def open_document(self, document: dict[str, Any]) -> None:
        self.state.current_section = document.get("section") or self.state.current_section
        self.state.open_document = document
        session = self.sessions.current
        if session is None:
            return
        identity = session.identity.as_dict()
        self.tracker.click(session.session_id, identity, "document_click", document=document)
        self.tracker.activity(
            session.session_id,
            identity,
            "view_document",
            section=document.get("section"),
            document_name=document.get("name"),
        )

    async def logout(self) -> None:
        self._generation += 1
        self.sessions.end_session()
        self.sessions.clear_identity()
        self.engine.clear(self.state.settings)
        await self._poll.stop()
        await self._close_push()
        self.state.reset()
        self.view.request_identity()

    async def close(self) -> None:
        self._generation += 1
        # The descriptor outlives the process so the next visit resumes the session.
        self.sessions.end_session(forget=False)
        await self._poll.stop()
        await self._close_push()
        tasks = list(self._tasks)
        for task in tasks:
            task.cancel()
        await asyncio.gather(*tasks, return_exceptions=True)
        await self.tracker.drain()

    # Push and poll

    async def ensure_sync(self) -> None:
        if self.push_channel is not None and self._push_handle is None:
            try:
                self._push_handle = await self.push_channel.subscribe(
                    self._on_push, on_reconnect=self._on_reconnect
                )
            except Exception:
                logger.warning("push subscription setup failed", exc_info=True)
        self._poll.start()

    async def _close_push(self) -> None:
        handle, self._push_handle = self._push_handle, None
        if handle is None:
            return
        try:
            await handle.close()
        except Exception:
            logger.warning("push unsubscribe failed", exc_info=True)

    # Reconciliation pass

    async def _guarded_pass(self, triggers: frozenset[Trigger]) -> PassResult:
        try:
            return await self._run_pass(triggers)
        except Exception as exc:
            logger.exception("reconcile pass failed (%s)", ",".join(sorted(triggers)))
            return PassResult(triggers, self.state.decision, ok=False, error=str(exc))

    async def _run_pass(self, triggers: frozenset[Trigger]) -> PassResult:
        self.passes += 1
        generation = self._generation
        explicit = bool(triggers & EXPLICIT_TRIGGERS)
        state = self.state

        if state.identity is None:
            self.view.request_identity()
            return PassResult(triggers, None, ok=False, error="identity required")

        self.view.show_sync_indicator()
        try:
            snapshot = await self.backend.fetch_settings()
        except ConnectionFailure as exc:
            self._report_fetch_failure("settings", exc, explicit)
            if Trigger.CREDENTIAL in triggers and generation == self._generation:
                await self._apply_cached_policy()
            return PassResult(triggers, state.decision, ok=False, error=str(exc))
        if generation != self._generation:
            return PassResult(triggers, None, ok=False, error="superseded")

        state.settings = snapshot
        if not self._url_consumed:
            self._url_consumed = True
            if self.location is not None:
                self.engine.auto_unlock(snapshot, self.location)

        decision = self.engine.evaluate(snapshot)
        state.decision = decision
        if not decision.authorized:
            self._show_denied(decision)
            return PassResult(triggers, decision, ok=True)

        self.view.hide_blocker()
        self.view.hide_gate()
        await self._refresh_content(explicit)
        if generation != self._generation:
            return PassResult(triggers, None, ok=False, error="superseded")

        await self._show_authorized()
        return PassResult(triggers, decision, ok=True)

    async def _show_authorized(self) -> None:
        state = self.state
        state.phase = ViewPhase.AUTHORIZED
        self.view.render(state)
        if state.identity is not None:
            self.sessions.begin_session(state.identity)
        await self.ensure_sync()

    async def _apply_cached_policy(self) -> None:
        """Re-evaluate the last fetched settings against the stored proofs.

        Used when a credential pass cannot reach the backend; the proof from a
        matched submission is already recorded.
        """
        state = self.state
        if not state.settings:
            return
        decision = self.engine.evaluate(state.settings)
        state.decision = decision
        if not decision.authorized:
            self._show_denied(decision)
            return
        self.view.hide_blocker()
        self.view.hide_gate()
        await self._show_authorized()

    async def _refresh_content(self, explicit: bool) -> None:
        documents, notes = await asyncio.gather(
            self.backend.fetch_documents(),
            self.backend.fetch_notes(),
            return_exceptions=True,
        )
        failed = False
        for what, result in (("documents", documents), ("notes", notes)):
            if not isinstance(result, BaseException):
                continue
            if not isinstance(result, Exception):
                raise result
            failed = True
            if isinstance(result, ConnectionFailure):
                logger.warning("fetching %s failed: %s", what, result)
            else:
                logger.error("fetching %s failed", what, exc_info=result)
        if not isinstance(documents, BaseException):
            self.state.documents = documents
        if not isinstance(notes, BaseException):
            self.state.notes = notes
        if failed and explicit:
            self.view.show_banner(BANNER_CONNECTION, LOAD_FAILED_MESSAGE)

    def _show_denied(self, decision: Decision) -> None:
        if decision.outcome is Outcome.STATUS_BLOCKED:
            self.state.phase = ViewPhase.BLOCKED
            self.view.hide_gate()
            self.view.show_blocker(decision)
            return
        self.state.phase = ViewPhase.GATE_SHOWN
        self.view.hide_blocker()
        self.view.show_gate(decision, gate_message(decision))

    def _report_fetch_failure(self, what: str, exc: ConnectionFailure, explicit: bool) -> None:
        logger.warning("fetching %s failed: %s", what, exc)
        if explicit:
            self.view.show_banner(BANNER_CONNECTION, LOAD_FAILED_MESSAGE)

from __future__ import annotations

import datetime as dt
import logging
import time
from collections.abc import Callable
from dataclasses import asdict, dataclass, field
from typing import Any
from uuid import uuid4

from .local_state import LocalState
from .tracking import Tracker

logger = logging.getLogger(__name__)

DEFAULT_SESSION_TTL_S = 7 * 24 * 60 * 60


@dataclass(frozen=True)
class VisitorIdentity:
    name: str
    email: str
    company: str | None = None
    first_visit: str = field(default_factory=lambda: dt.datetime.now(dt.UTC).isoformat())

    def as_dict(self) -> dict[str, Any]:
        return asdict(self)

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> VisitorIdentity | None:
        name = str(data.get("name") or "").strip()
        email = str(data.get("email") or "").strip()
        if not name or not email:
            return None
        company = str(data.get("company") or "").strip() or None
        first_visit = str(data.get("first_visit") or "").strip()
        if first_visit:
            return cls(name=name, email=email, company=company, first_visit=first_visit)
        return cls(name=name, email=email, company=company)


def validate_identity(name: str, email: str, company: str | None = None) -> VisitorIdentity:
    name = (name or "").strip()
    email = (email or "").strip()
    if not name or not email:
        raise ValueError("Please enter your name and email address.")
    if "@" not in email or "." not in email:
        raise ValueError("Please enter a valid email address.")
    return VisitorIdentity(name=name, email=email, company=(company or "").strip() or None)


@dataclass(frozen=True)
class Session:
    session_id: str
    identity: VisitorIdentity
    started_at: str
    started_monotonic: float
    resumed: bool = False


class SessionStore:
    def __init__(
        self,
        local_state: LocalState,
        tracker: Tracker,
        *,
        ttl_s: float = DEFAULT_SESSION_TTL_S,
        clock: Callable[[], float] = time.monotonic,
        wall_clock: Callable[[], float] = time.time,
    ) -> None:
        self.local_state = local_state
        self.tracker = tracker
        self.ttl_s = ttl_s
        self._clock = clock
        self._wall_clock = wall_clock
        self._session: Session | None = None

    @property
    def current(self) -> Session | None:
        return self._session

    def persist_identity(self, identity: VisitorIdentity) -> None:
        self.local_state.save_identity(identity.as_dict())

    def load_identity(self) -> VisitorIdentity | None:
        """The stored visitor, or the one named by a still-valid session descriptor."""
        data = self.local_state.load_identity()
        if data is not None:
            return VisitorIdentity.from_dict(data)
        descriptor = self.load_descriptor()
        if descriptor is None:
            return None
        identity = VisitorIdentity.from_dict(descriptor)
        if identity is not None:
            self.persist_identity(identity)
            logger.info("visitor restored from session %s", descriptor.get("session_id"))
        return identity

    def clear_identity(self) -> None:
        self.local_state.clear_identity()
        self.local_state.clear_session_descriptor()

    def load_descriptor(self) -> dict[str, Any] | None:
        return self.local_state.load_session_descriptor(self.ttl_s, now=self._wall_clock())

    def _resume(self, identity: VisitorIdentity) -> Session | None:
        descriptor = self.load_descriptor()
        if descriptor is None:
            return None
        session_id = str(descriptor.get("session_id") or "")
        if not session_id or descriptor.get("email") != identity.email:
            return None
        elapsed_s = max(0.0, self._wall_clock() - float(descriptor["ts"]))
        return Session(
            session_id=session_id,
            identity=identity,
            started_at=str(descriptor.get("started_at") or ""),
            started_monotonic=self._clock() - elapsed_s,
            resumed=True,
        )

    def begin_session(self, identity: VisitorIdentity) -> Session:
        """Open the visit's tracking session, idempotently.

        A persisted descriptor for the same visitor that is still within its
        TTL is resumed: the session id is kept and no new session row is
        written.
        """
        if self._session is not None:
            return self._session
        resumed = self._resume(identity)
        if resumed is not None:
            self._session = resumed
            logger.info("session resumed %s", resumed.session_id)
            return resumed
        session = Session(
            session_id=str(uuid4()),
            identity=identity,
            started_at=dt.datetime.now(dt.UTC).isoformat(),
            started_monotonic=self._clock(),
        )
        self._session = session
        self.local_state.save_session_descriptor(
            {
                "session_id": session.session_id,
                "email": identity.email,
                "name": identity.name,
                "company": identity.company,
                "started_at": session.started_at,
            },
            now=self._wall_clock(),
        )
        self.tracker.session_started(session.session_id, identity.as_dict(), session.started_at)
        logger.info("session started %s", session.session_id)
        return session

    def end_session(self, *, forget: bool = True) -> int | None:
        """Close the in-memory session and report its duration.

        With `forget=False` the descriptor is kept so a later run can resume
        the session within its TTL.
        """
        session = self._session
        if session is None:
            return None
        duration_s = max(0, round(self._clock() - session.started_monotonic))
        self.tracker.session_ended(session.session_id, duration_s)
        self._session = None
        if forget:
            self.local_state.clear_session_descriptor()
        logger.info("session ended %s after %ss", session.session_id, duration_s)
        return duration_s

"""Access policy: decides whether the viewer may see the data room.

`evaluate` is a pure function of the settings snapshot and the set of stored
unlock proofs. `AccessPolicyEngine` binds it to the local proof store and owns
the two ways a proof gets created: a credential carried by the page URL and a
credential typed at the gate.
"""

from __future__ import annotations

import logging
from collections.abc import Collection
from dataclasses import dataclass
from enum import Enum

from .errors import CredentialMismatch, PolicyMisconfigured
from .local_state import LocalState
from .location import CREDENTIAL_PARAMS, PASSWORD_PARAMS, TOKEN_PARAM, PageLocation
from .settings import (
    BLOCKING_STATUSES,
    MODE_OPEN,
    MODE_PASSWORD,
    MODE_TOKEN,
    STATUS_DISABLED,
    SettingsSnapshot,
    normalize_mode,
)

logger = logging.getLogger(__name__)

Proofs = Collection[tuple[str, str]]


class Outcome(str, Enum):
    STATUS_BLOCKED = "status_blocked"
    AUTHORIZED = "authorized"
    CREDENTIAL_REQUIRED = "credential_required"
    MISCONFIGURED = "misconfigured"


@dataclass(frozen=True)
class Decision:
    outcome: Outcome
    # Status kind for STATUS_BLOCKED, access mode for the credential outcomes.
    detail: str | None = None

    @property
    def authorized(self) -> bool:
        return self.outcome is Outcome.AUTHORIZED

    def __str__(self) -> str:
        if self.detail:
            return f"{self.outcome.name}({self.detail})"
        return self.outcome.name


AUTHORIZED = Decision(Outcome.AUTHORIZED)


@dataclass(frozen=True)
class UnlockProof:
    mode: str
    credential: str


def credential_matches(entered: str | None, configured: str | None) -> bool:
    """Compare a presented secret with the configured one.

    Every secret comparison goes through here.
    """
    expected = (configured or "").strip()
    if not expected:
        return False
    return (entered or "").strip() == expected


def _proved(proofs: Proofs, mode: str, credential: str) -> bool:
    return bool(credential) and (mode, credential) in proofs


def evaluate(snapshot: SettingsSnapshot, proofs: Proofs) -> Decision:
    status = snapshot.status
    if status in BLOCKING_STATUSES:
        return Decision(Outcome.STATUS_BLOCKED, status)

    mode = snapshot.access_mode
    if mode == MODE_OPEN:
        return AUTHORIZED

    token = snapshot.link_token
    if mode == MODE_TOKEN:
        if not token:
            return Decision(Outcome.MISCONFIGURED, MODE_TOKEN)
        if _proved(proofs, MODE_TOKEN, token):
            return AUTHORIZED
        return Decision(Outcome.CREDENTIAL_REQUIRED, MODE_TOKEN)

    # The link token, when configured, also satisfies password mode.
    if _proved(proofs, MODE_TOKEN, token):
        return AUTHORIZED
    password = snapshot.password
    if _proved(proofs, MODE_PASSWORD, password):
        return AUTHORIZED
    if not password:
        return AUTHORIZED
    return Decision(Outcome.CREDENTIAL_REQUIRED, MODE_PASSWORD)


def match_url_credentials(snapshot: SettingsSnapshot, location: PageLocation) -> UnlockProof | None:
    token = snapshot.link_token
    if credential_matches(location.first_param([TOKEN_PARAM]), token):
        return UnlockProof(MODE_TOKEN, token)
    password = snapshot.password
    if credential_matches(location.first_param(PASSWORD_PARAMS), password):
        return UnlockProof(MODE_PASSWORD, password)
    return None


def match_submission(
    snapshot: SettingsSnapshot, entered: str, mode: str | None = None
) -> UnlockProof | None:
    """Check a typed credential against the policy in effect.

    Returns the proof to store, or None when access needs no proof (open mode,
    or password mode without a configured password). Raises
    `PolicyMisconfigured` or `CredentialMismatch` otherwise.
    """
    active_mode = normalize_mode(mode) if mode else snapshot.access_mode
    if active_mode == MODE_OPEN:
        return None

    token = snapshot.link_token
    if active_mode == MODE_TOKEN:
        if not token:
            raise PolicyMisconfigured(MODE_TOKEN)
        if credential_matches(entered, token):
            return UnlockProof(MODE_TOKEN, token)
        raise CredentialMismatch(MODE_TOKEN)

    if credential_matches(entered, token):
        return UnlockProof(MODE_TOKEN, token)
    password = snapshot.password
    if not password:
        return None
    if credential_matches(entered, password):
        return UnlockProof(MODE_PASSWORD, password)
    raise CredentialMismatch(MODE_PASSWORD)


def gate_message(decision: Decision) -> str:
    if decision.outcome is Outcome.STATUS_BLOCKED:
        if decision.detail == STATUS_DISABLED:
            return "This data room is currently unavailable."
        return (
            "This data room is temporarily unavailable for maintenance. "
            "Please check back soon."
        )
    if decision.outcome is Outcome.MISCONFIGURED:
        return (
            "This data room is configured for token-based access, but no token is set. "
            "Ask the administrator to set one in the Admin Dashboard."
        )
    if decision.outcome is Outcome.CREDENTIAL_REQUIRED and decision.detail == MODE_TOKEN:
        return (
            "This data room requires an investor link token. Please use the investor link "
            "provided by the administrator, or enter your token below."
        )
    if decision.outcome is Outcome.CREDENTIAL_REQUIRED:
        return "Enter the investor access passcode to continue."
    return ""


def blocker_title(kind: str | None) -> str:
    if kind == STATUS_DISABLED:
        return "Data Room Disabled"
    return "Maintenance Mode"


class AccessPolicyEngine:
    def __init__(self, local_state: LocalState) -> None:
        self.local_state = local_state

    def proofs(self) -> frozenset[tuple[str, str]]:
        return self.local_state.load_proofs()

    def evaluate(self, snapshot: SettingsSnapshot) -> Decision:
        return evaluate(snapshot, self.proofs())

    def record(self, proof: UnlockProof) -> None:
        self.local_state.add_proof(proof.mode, proof.credential)

    def auto_unlock(self, snapshot: SettingsSnapshot, location: PageLocation) -> UnlockProof | None:
        proof = match_url_credentials(snapshot, location)
        if proof is None:
            return None
        self.record(proof)
        location.strip(CREDENTIAL_PARAMS)
        logger.info("access unlocked from link (%s)", proof.mode)
        return proof

    def submit(
        self, snapshot: SettingsSnapshot, entered: str, mode: str | None = None
    ) -> Decision:
        proof = match_submission(snapshot, entered, mode)
        if proof is not None:
            self.record(proof)
        return self.evaluate(snapshot)

    def clear(self, snapshot: SettingsSnapshot | None) -> None:
        if snapshot is not None:
            if snapshot.password:
                self.local_state.remove_proof(MODE_PASSWORD, snapshot.password)
            if snapshot.link_token:
                self.local_state.remove_proof(MODE_TOKEN, snapshot.link_token)
        self.local_state.remove_legacy_unlock()

from __future__ import annotations

import logging
from dataclasses import dataclass

from .access import AccessPolicyEngine
from .backend import BackendClient
from .config import RoomgateConfig
from .errors import ConfigurationMissing
from .local_state import LocalState
from .location import BACKEND_KEY_PARAM, BACKEND_URL_PARAM, PageLocation
from .realtime import RealtimeChannel
from .sessions import SessionStore
from .sync.coordinator import SyncCoordinator
from .tracking import Tracker
from .view import ViewLayer

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class Endpoint:
    url: str
    key: str
    source: str


def resolve_endpoint(
    location: PageLocation, local_state: LocalState, cfg: RoomgateConfig
) -> Endpoint:
    """Pick the backend endpoint: link parameters, then local state, then config.

    Link parameters are persisted for later visits and stripped from the page
    location once read.
    """
    url = (location.param(BACKEND_URL_PARAM) or "").strip()
    key = (location.param(BACKEND_KEY_PARAM) or "").strip()
    if url and key:
        local_state.save_endpoint(url, key)
        location.strip([BACKEND_URL_PARAM, BACKEND_KEY_PARAM])
        return Endpoint(url, key, "link")
    stored = local_state.load_endpoint()
    if stored is not None:
        return Endpoint(stored[0], stored[1], "local")
    cfg_url = (cfg.backend_url or "").strip()
    cfg_key = (cfg.backend_key or "").strip()
    if cfg_url and cfg_key:
        return Endpoint(cfg_url, cfg_key, "config")
    raise ConfigurationMissing()


def build_coordinator(
    cfg: RoomgateConfig,
    local_state: LocalState,
    location: PageLocation,
    view: ViewLayer,
    *,
    referrer: str | None = None,
) -> SyncCoordinator:
    endpoint = resolve_endpoint(location, local_state, cfg)
    logger.info("backend endpoint from %s: %s", endpoint.source, endpoint.url)
    backend = BackendClient(endpoint.url, endpoint.key, timeout_s=cfg.http_timeout_s)
    tracker = Tracker(backend, referrer=referrer)
    sessions = SessionStore(local_state, tracker, ttl_s=cfg.session_ttl_s)
    push = RealtimeChannel(endpoint.url, endpoint.key) if cfg.realtime_enabled else None
    return SyncCoordinator(
        backend,
        AccessPolicyEngine(local_state),
        sessions,
        tracker,
        view,
        location=location,
        push_channel=push,
        poll_interval_s=cfg.poll_interval_s,
    )

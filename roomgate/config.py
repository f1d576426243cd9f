from __future__ import annotations

import json
import os
import warnings
from dataclasses import dataclass
from pathlib import Path
from typing import Any

DEFAULT_CONFIG_PATH = Path("~/.config/roomgate/config.json").expanduser()
DEFAULT_STATE_PATH = Path("~/.roomgate/state.sqlite").expanduser()

CONFIG_ENV_OVERRIDES = {
    "backend_url": "ROOMGATE_BACKEND_URL",
    "backend_key": "ROOMGATE_BACKEND_KEY",
    "poll_interval_s": "ROOMGATE_POLL_INTERVAL_S",
    "realtime_enabled": "ROOMGATE_REALTIME",
    "http_timeout_s": "ROOMGATE_HTTP_TIMEOUT_S",
    "session_ttl_s": "ROOMGATE_SESSION_TTL_S",
    "db_path": "ROOMGATE_DB_PATH",
}

_INT_KEYS = {"poll_interval_s", "session_ttl_s"}
_FLOAT_KEYS = {"http_timeout_s"}
_BOOL_KEYS = {"realtime_enabled"}


def get_config_path(path: Path | None = None) -> Path:
    candidate = path or Path(os.getenv("ROOMGATE_CONFIG", DEFAULT_CONFIG_PATH))
    return candidate.expanduser()


def read_config_file(path: Path | None = None) -> dict[str, Any]:
    config_path = get_config_path(path)
    if not config_path.exists():
        return {}
    raw = config_path.read_text()
    if not raw.strip():
        return {}
    try:
        data = json.loads(raw)
    except json.JSONDecodeError as exc:
        raise ValueError("invalid config json") from exc
    if not isinstance(data, dict):
        raise ValueError("config must be an object")
    return data


def write_config_file(data: dict[str, Any], path: Path | None = None) -> Path:
    config_path = get_config_path(path)
    config_path.parent.mkdir(parents=True, exist_ok=True)
    config_path.write_text(json.dumps(data, ensure_ascii=False, indent=2) + "\n")
    return config_path


def get_env_overrides() -> dict[str, str]:
    overrides: dict[str, str] = {}
    for key, env_var in CONFIG_ENV_OVERRIDES.items():
        value = os.getenv(env_var)
        if value is not None:
            overrides[key] = value
    return overrides


@dataclass
class RoomgateConfig:
    backend_url: str | None = None
    backend_key: str | None = None
    poll_interval_s: int = 30
    realtime_enabled: bool = True
    http_timeout_s: float = 10.0
    # Session descriptors older than this are discarded on read.
    session_ttl_s: int = 7 * 24 * 60 * 60
    db_path: str | None = None

    def state_path(self) -> Path:
        if self.db_path:
            return Path(self.db_path).expanduser()
        return DEFAULT_STATE_PATH


def _parse_bool(value: str | None, default: bool) -> bool:
    if value is None:
        return default
    if value.lower() in {"1", "true", "yes", "on"}:
        return True
    if value.lower() in {"0", "false", "off", "no"}:
        return False
    return default


def _parse_int(value: object, default: int, *, key: str) -> int:
    if value is None:
        return default
    try:
        return int(value)  # type: ignore[arg-type]
    except (TypeError, ValueError):
        warnings.warn(f"Invalid int for {key}: {value!r}", RuntimeWarning, stacklevel=2)
        return default


def _parse_float(value: object, default: float, *, key: str) -> float:
    if value is None:
        return default
    try:
        return float(value)  # type: ignore[arg-type]
    except (TypeError, ValueError):
        warnings.warn(f"Invalid float for {key}: {value!r}", RuntimeWarning, stacklevel=2)
        return default


def _coerce_bool(value: object, default: bool, *, key: str) -> bool:
    if value is None:
        return default
    if isinstance(value, bool):
        return value
    if isinstance(value, int):
        return value != 0
    if isinstance(value, str):
        return _parse_bool(value, default)
    warnings.warn(f"Invalid bool for {key}: {value!r}", RuntimeWarning, stacklevel=2)
    return default


def load_config(path: Path | None = None) -> RoomgateConfig:
    cfg = RoomgateConfig()
    config_path = get_config_path(path)
    if config_path.exists():
        try:
            data = json.loads(config_path.read_text())
        except json.JSONDecodeError:
            data = {}
        if isinstance(data, dict):
            cfg = _apply_dict(cfg, data)
    cfg = _apply_dict(cfg, get_env_overrides())
    return cfg


def _apply_dict(cfg: RoomgateConfig, data: dict[str, Any]) -> RoomgateConfig:
    for key, value in data.items():
        if not hasattr(cfg, key):
            continue
        if key in _INT_KEYS:
            setattr(cfg, key, _parse_int(value, getattr(cfg, key), key=key))
            continue
        if key in _FLOAT_KEYS:
            setattr(cfg, key, _parse_float(value, getattr(cfg, key), key=key))
            continue
        if key in _BOOL_KEYS:
            setattr(cfg, key, _coerce_bool(value, getattr(cfg, key), key=key))
            continue
        setattr(cfg, key, value if value is None else str(value))
    return cfg

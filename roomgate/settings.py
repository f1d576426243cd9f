from __future__ import annotations

from collections.abc import Iterable, Iterator, Mapping
from typing import Any

STATUS_KEY = "dr_status"
ACCESS_MODE_KEY = "dr_access_mode"
PASSWORD_KEY = "dr_password"
LINK_TOKEN_KEY = "dr_link_token"
SHOW_EMPTY_SECTIONS_KEY = "dr_show_empty_sections"

STATUS_ACTIVE = "active"
STATUS_DISABLED = "disabled"
STATUS_MAINTENANCE = "maintenance"
BLOCKING_STATUSES = frozenset({STATUS_DISABLED, STATUS_MAINTENANCE})

MODE_OPEN = "open"
MODE_PASSWORD = "password"
MODE_TOKEN = "token"
ACCESS_MODES = frozenset({MODE_OPEN, MODE_PASSWORD, MODE_TOKEN})


def normalize_mode(value: object) -> str:
    mode = _text(value).lower()
    if mode in ACCESS_MODES:
        return mode
    return MODE_PASSWORD


def _text(value: object) -> str:
    if value is None:
        return ""
    return str(value).strip()


class SettingsSnapshot(Mapping[str, str]):
    """Read-only view of the remote policy table at one point in time.

    A snapshot is always built from the complete row set; nothing carries over
    from a previous snapshot.
    """

    __slots__ = ("_values",)

    def __init__(self, values: Mapping[str, object] | None = None) -> None:
        self._values: dict[str, str] = {
            str(key): "" if value is None else str(value) for key, value in (values or {}).items()
        }

    @classmethod
    def from_rows(cls, rows: Iterable[Mapping[str, Any]]) -> SettingsSnapshot:
        values: dict[str, object] = {}
        for row in rows:
            key = row.get("key")
            if not isinstance(key, str) or not key:
                continue
            values[key] = row.get("value")
        return cls(values)

    def __getitem__(self, key: str) -> str:
        return self._values[key]

    def __iter__(self) -> Iterator[str]:
        return iter(self._values)

    def __len__(self) -> int:
        return len(self._values)

    def __repr__(self) -> str:
        return f"SettingsSnapshot({sorted(self._values)!r})"

    @property
    def status(self) -> str:
        return _text(self._values.get(STATUS_KEY)).lower() or STATUS_ACTIVE

    @property
    def access_mode(self) -> str:
        return normalize_mode(self._values.get(ACCESS_MODE_KEY))

    @property
    def password(self) -> str:
        return _text(self._values.get(PASSWORD_KEY))

    @property
    def link_token(self) -> str:
        return _text(self._values.get(LINK_TOKEN_KEY))

    @property
    def show_empty_sections(self) -> bool:
        return _text(self._values.get(SHOW_EMPTY_SECTIONS_KEY)).lower() == "true"

    def configured_secret(self, mode: str) -> str:
        if normalize_mode(mode) == MODE_TOKEN:
            return self.link_token
        return self.password

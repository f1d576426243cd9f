from __future__ import annotations

import datetime as dt
import json
import time
from pathlib import Path
from typing import Any

from . import db

ENDPOINT_KEY = "dataroom_config"
VISITOR_KEY = "visitor"
SESSION_KEY = "investor_session"
THEME_KEY = "theme"
LEGACY_UNLOCK_KEY = "unlocked_v1"

DEFAULT_THEME = "dark"
THEMES = ("dark", "light")


def _now_iso() -> str:
    return dt.datetime.now(dt.UTC).isoformat()


class LocalState:
    """Durable per-device state: the client's equivalent of browser local storage."""

    def __init__(self, db_path: Path | str = db.DEFAULT_DB_PATH) -> None:
        self.db_path = Path(db_path).expanduser()
        self.conn = db.connect(self.db_path)
        db.initialize_schema(self.conn)

    def close(self) -> None:
        self.conn.close()

    def get_json(self, key: str) -> Any:
        row = self.conn.execute("SELECT value_json FROM kv WHERE key = ?", (key,)).fetchone()
        if row is None:
            return None
        try:
            return json.loads(row["value_json"])
        except json.JSONDecodeError:
            return None

    def set_json(self, key: str, value: Any) -> None:
        self.conn.execute(
            """
            INSERT INTO kv(key, value_json, updated_at) VALUES (?, ?, ?)
            ON CONFLICT(key) DO UPDATE SET value_json = excluded.value_json,
                updated_at = excluded.updated_at
            """,
            (key, json.dumps(value, ensure_ascii=False), _now_iso()),
        )
        self.conn.commit()

    def delete(self, key: str) -> None:
        self.conn.execute("DELETE FROM kv WHERE key = ?", (key,))
        self.conn.commit()

    # Backend endpoint

    def load_endpoint(self) -> tuple[str, str] | None:
        data = self.get_json(ENDPOINT_KEY)
        if not isinstance(data, dict):
            return None
        url = str(data.get("url") or "").strip()
        key = str(data.get("key") or "").strip()
        if not url or not key:
            return None
        return url, key

    def save_endpoint(self, url: str, key: str) -> None:
        self.set_json(ENDPOINT_KEY, {"url": url.strip(), "key": key.strip()})

    # Visitor identity (no TTL)

    def load_identity(self) -> dict[str, Any] | None:
        data = self.get_json(VISITOR_KEY)
        return data if isinstance(data, dict) else None

    def save_identity(self, identity: dict[str, Any]) -> None:
        self.set_json(VISITOR_KEY, identity)

    def clear_identity(self) -> None:
        self.delete(VISITOR_KEY)

    # Session descriptor

    def save_session_descriptor(self, data: dict[str, Any], *, now: float | None = None) -> None:
        ts = time.time() if now is None else now
        self.set_json(SESSION_KEY, {**data, "ts": ts})

    def load_session_descriptor(
        self, ttl_s: float, *, now: float | None = None
    ) -> dict[str, Any] | None:
        data = self.get_json(SESSION_KEY)
        if not isinstance(data, dict):
            return None
        current = time.time() if now is None else now
        try:
            ts = float(data.get("ts"))
        except (TypeError, ValueError):
            self.delete(SESSION_KEY)
            return None
        if current - ts > ttl_s:
            self.delete(SESSION_KEY)
            return None
        return data

    def clear_session_descriptor(self) -> None:
        self.delete(SESSION_KEY)

    # Unlock proofs

    def add_proof(self, mode: str, credential: str) -> None:
        self.conn.execute(
            "INSERT OR IGNORE INTO unlock_proofs(mode, credential, created_at) VALUES (?, ?, ?)",
            (mode, credential, _now_iso()),
        )
        self.conn.commit()

    def has_proof(self, mode: str, credential: str) -> bool:
        row = self.conn.execute(
            "SELECT 1 FROM unlock_proofs WHERE mode = ? AND credential = ?",
            (mode, credential),
        ).fetchone()
        return row is not None

    def load_proofs(self) -> frozenset[tuple[str, str]]:
        rows = self.conn.execute("SELECT mode, credential FROM unlock_proofs").fetchall()
        return frozenset((str(row["mode"]), str(row["credential"])) for row in rows)

    def remove_proof(self, mode: str, credential: str) -> None:
        self.conn.execute(
            "DELETE FROM unlock_proofs WHERE mode = ? AND credential = ?",
            (mode, credential),
        )
        self.conn.commit()

    def clear_all_proofs(self) -> int:
        cur = self.conn.execute("DELETE FROM unlock_proofs")
        self.conn.commit()
        self.delete(LEGACY_UNLOCK_KEY)
        return int(cur.rowcount or 0)

    def remove_legacy_unlock(self) -> None:
        self.delete(LEGACY_UNLOCK_KEY)

    # Theme

    def load_theme(self) -> str:
        value = self.get_json(THEME_KEY)
        if isinstance(value, str) and value in THEMES:
            return value
        return DEFAULT_THEME

    def save_theme(self, theme: str) -> None:
        if theme not in THEMES:
            raise ValueError(f"unknown theme: {theme}")
        self.set_json(THEME_KEY, theme)

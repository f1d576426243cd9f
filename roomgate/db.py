from __future__ import annotations

import sqlite3
from pathlib import Path

from .config import DEFAULT_STATE_PATH

DEFAULT_DB_PATH = DEFAULT_STATE_PATH


def connect(db_path: Path | str, check_same_thread: bool = True) -> sqlite3.Connection:
    path = Path(db_path).expanduser()
    path.parent.mkdir(parents=True, exist_ok=True)
    conn = sqlite3.connect(path, check_same_thread=check_same_thread)
    conn.row_factory = sqlite3.Row
    try:
        conn.execute("PRAGMA journal_mode = WAL")
    except sqlite3.OperationalError:
        conn.execute("PRAGMA journal_mode = DELETE")
    conn.execute("PRAGMA synchronous = NORMAL")
    return conn


def initialize_schema(conn: sqlite3.Connection) -> None:
    conn.executescript(
        """
        CREATE TABLE IF NOT EXISTS kv (
            key TEXT PRIMARY KEY,
            value_json TEXT NOT NULL,
            updated_at TEXT NOT NULL
        );

        CREATE TABLE IF NOT EXISTS unlock_proofs (
            mode TEXT NOT NULL,
            credential TEXT NOT NULL,
            created_at TEXT NOT NULL,
            PRIMARY KEY (mode, credential)
        );
        """
    )
    conn.commit()

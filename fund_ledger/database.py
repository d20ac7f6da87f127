"""SQLite persistence layer for the fund_ledger backend.

The repository stores the serialised ledger under a fixed name in a small
key-value table, next to a settings table used for local sync configuration.
It relies on the standard library :mod:`sqlite3` module.
"""
from __future__ import annotations

import json
import logging
import sqlite3
import threading
from datetime import datetime, timezone
from pathlib import Path
from typing import Optional

logger = logging.getLogger(__name__)

STATE_KEY = "fund-storage"


class SQLiteRepository:
    """Encapsulates all SQLite access for the application."""

    def __init__(self, database_path: Path | str) -> None:
        self._database_path = database_path
        # FastAPI serves sync endpoints from a thread pool.
        self._connection = sqlite3.connect(database_path, check_same_thread=False)
        self._connection.row_factory = sqlite3.Row
        self._lock = threading.Lock()

    def close(self) -> None:
        """Close the underlying SQLite connection."""

        self._connection.close()

    # ------------------------------------------------------------------
    # Schema management
    # ------------------------------------------------------------------
    def initialise_schema(self) -> None:
        """Create all tables required by the application if they do not exist."""

        with self._lock:
            cursor = self._connection.cursor()
            cursor.executescript(
                """
                CREATE TABLE IF NOT EXISTS kv_store (
                    name TEXT PRIMARY KEY,
                    payload TEXT NOT NULL,
                    updated_at TEXT NOT NULL
                );

                CREATE TABLE IF NOT EXISTS settings (
                    key TEXT PRIMARY KEY,
                    value TEXT NOT NULL
                );
                """
            )
            self._connection.commit()

    # ------------------------------------------------------------------
    # Ledger state blob
    # ------------------------------------------------------------------
    def save_state(self, payload: dict[str, object], name: str = STATE_KEY) -> None:
        """Persist ``payload`` as JSON under ``name``, replacing any previous value."""

        with self._lock:
            self._connection.execute(
                "INSERT OR REPLACE INTO kv_store (name, payload, updated_at) VALUES (?, ?, ?)",
                (
                    name,
                    json.dumps(payload, ensure_ascii=False),
                    datetime.now(timezone.utc).isoformat(timespec="seconds"),
                ),
            )
            self._connection.commit()

    def load_state(self, name: str = STATE_KEY) -> Optional[dict[str, object]]:
        """Return the stored payload for ``name``.

        ``None`` is returned when nothing has been saved yet or when the
        stored text is not a JSON object; the latter is logged.
        """

        with self._lock:
            row = self._connection.execute(
                "SELECT payload FROM kv_store WHERE name = ?",
                (name,),
            ).fetchone()
        if row is None:
            return None
        try:
            payload = json.loads(row["payload"])
        except json.JSONDecodeError:
            logger.warning("Stored state %r is not valid JSON; ignoring it", name)
            return None
        if not isinstance(payload, dict):
            logger.warning("Stored state %r is not a JSON object; ignoring it", name)
            return None
        return payload

    # ------------------------------------------------------------------
    # Settings helpers
    # ------------------------------------------------------------------
    def set_setting(self, key: str, value: str) -> None:
        with self._lock:
            self._connection.execute(
                "INSERT OR REPLACE INTO settings (key, value) VALUES (?, ?)",
                (key, value),
            )
            self._connection.commit()

    def get_setting(self, key: str, default: Optional[str] = None) -> Optional[str]:
        with self._lock:
            row = self._connection.execute(
                "SELECT value FROM settings WHERE key = ?",
                (key,),
            ).fetchone()
        if row is None:
            return default
        return str(row["value"])

    def delete_setting(self, key: str) -> None:
        with self._lock:
            self._connection.execute("DELETE FROM settings WHERE key = ?", (key,))
            self._connection.commit()

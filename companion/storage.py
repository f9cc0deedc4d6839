"""Key-value stores used to persist engine state.

The engines only ever exchange opaque strings with a store.  Two
implementations are provided: :class:`MemoryStore` keeps everything in a
dictionary and :class:`SqliteStore` writes to a small table inside the
application's SQLite database so state survives app restarts.
"""

from __future__ import annotations

import sqlite3
import threading
from abc import ABC, abstractmethod
from pathlib import Path

from core import DEFAULT_DB_PATH
from companion.errors import StoreError


class KeyValueStore(ABC):
    """Minimal string key-value interface consumed by the engines."""

    def __init__(self) -> None:
        self._lock = threading.RLock()

    @abstractmethod
    def get(self, key: str) -> str | None:
        """Return the value stored under ``key`` or ``None``."""

    @abstractmethod
    def set(self, key: str, value: str) -> None:
        """Store ``value`` under ``key``, replacing any previous value."""

    @abstractmethod
    def remove(self, key: str) -> None:
        """Delete ``key``.  Missing keys are ignored."""

    def compare_and_set(self, key: str, expected: str | None, value: str) -> bool:
        """Write ``value`` only if ``key`` still holds ``expected``.

        ``expected=None`` means the key must be absent.  Returns ``True`` when
        the write happened.
        """

        with self._lock:
            if self.get(key) != expected:
                return False
            self.set(key, value)
            return True


class MemoryStore(KeyValueStore):
    """Dictionary backed store.  Nothing survives the process."""

    def __init__(self, data: dict[str, str] | None = None) -> None:
        super().__init__()
        self._data: dict[str, str] = dict(data or {})

    def get(self, key: str) -> str | None:
        with self._lock:
            return self._data.get(key)

    def set(self, key: str, value: str) -> None:
        with self._lock:
            self._data[key] = value

    def remove(self, key: str) -> None:
        with self._lock:
            self._data.pop(key, None)

    def keys(self) -> list[str]:
        with self._lock:
            return sorted(self._data)


class SqliteStore(KeyValueStore):
    """Store values in the ``kv_store`` table of an SQLite database."""

    def __init__(self, db_path: Path = DEFAULT_DB_PATH) -> None:
        super().__init__()
        self.db_path = Path(db_path)
        try:
            self.db_path.parent.mkdir(parents=True, exist_ok=True)
            with sqlite3.connect(str(self.db_path)) as conn:
                conn.execute(
                    """
                    CREATE TABLE IF NOT EXISTS kv_store (
                        key TEXT PRIMARY KEY,
                        value TEXT NOT NULL
                    )
                    """
                )
        except (OSError, sqlite3.Error) as exc:
            raise StoreError(f"Cannot open store at {self.db_path}") from exc

    def get(self, key: str) -> str | None:
        try:
            with sqlite3.connect(str(self.db_path)) as conn:
                row = conn.execute(
                    "SELECT value FROM kv_store WHERE key = ?", (key,)
                ).fetchone()
        except sqlite3.Error as exc:
            raise StoreError(f"Failed to read '{key}'") from exc
        return row[0] if row else None

    def set(self, key: str, value: str) -> None:
        try:
            with sqlite3.connect(str(self.db_path)) as conn:
                conn.execute(
                    "INSERT OR REPLACE INTO kv_store (key, value) VALUES (?, ?)",
                    (key, value),
                )
        except sqlite3.Error as exc:
            raise StoreError(f"Failed to write '{key}'") from exc

    def remove(self, key: str) -> None:
        try:
            with sqlite3.connect(str(self.db_path)) as conn:
                conn.execute("DELETE FROM kv_store WHERE key = ?", (key,))
        except sqlite3.Error as exc:
            raise StoreError(f"Failed to remove '{key}'") from exc

    def compare_and_set(self, key: str, expected: str | None, value: str) -> bool:
        # A single statement so other connections cannot interleave.
        try:
            with sqlite3.connect(str(self.db_path)) as conn:
                if expected is None:
                    cursor = conn.execute(
                        "INSERT OR IGNORE INTO kv_store (key, value) VALUES (?, ?)",
                        (key, value),
                    )
                else:
                    cursor = conn.execute(
                        "UPDATE kv_store SET value = ? WHERE key = ? AND value = ?",
                        (value, key, expected),
                    )
                return cursor.rowcount == 1
        except sqlite3.Error as exc:
            raise StoreError(f"Failed to update '{key}'") from exc

    def keys(self) -> list[str]:
        try:
            with sqlite3.connect(str(self.db_path)) as conn:
                rows = conn.execute("SELECT key FROM kv_store ORDER BY key").fetchall()
        except sqlite3.Error as exc:
            raise StoreError("Failed to list keys") from exc
        return [row[0] for row in rows]

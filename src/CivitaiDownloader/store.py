"""SQLite-backed key/value store holding one persistent entry per model version."""

from __future__ import annotations

import logging
import sqlite3
import threading
from pathlib import Path
from typing import Callable, Iterator, List, Optional, Tuple, Union

from .errors import KeyNotFoundError, StoreGetError, StorePutError
from .models import PersistentEntry

__all__ = [
    "KVStore",
    "SQLiteKVStore",
    "ENTRY_PREFIX",
    "entry_key",
    "load_entry",
    "save_entry",
    "iter_entries",
]

logger = logging.getLogger(__name__)

ENTRY_PREFIX = "v_"


def entry_key(version_id: int) -> str:
    """Store key for a model version."""

    return f"{ENTRY_PREFIX}{version_id}"


_SCHEMA = """
CREATE TABLE IF NOT EXISTS kv (
    key   TEXT PRIMARY KEY,
    value TEXT NOT NULL
)
"""


class KVStore:
    """Protocol-like base class for key/value backends.

    Keys are ASCII strings; values are UTF-8 JSON documents. Every operation
    touches a single key, so implementations only need per-call atomicity.
    """

    def get(self, key: str) -> bytes:
        """Return the value for ``key``.

        Raises:
            KeyNotFoundError: If the key is absent
            StoreGetError: If the backend fails
        """
        raise NotImplementedError

    def put(self, key: str, value: Union[bytes, str]) -> None:
        """Insert or replace ``key``."""
        raise NotImplementedError

    def delete(self, key: str) -> None:
        """Remove ``key``; absent keys raise :class:`KeyNotFoundError`."""
        raise NotImplementedError

    def keys(self, prefix: str = "") -> List[str]:
        """Sorted keys starting with ``prefix``."""
        raise NotImplementedError

    def fold(self, fn: Callable[[str, bytes], None], prefix: str = "") -> None:
        """Call ``fn(key, value)`` for every key starting with ``prefix``."""
        raise NotImplementedError

    def close(self) -> None:
        raise NotImplementedError

    def __enter__(self) -> "KVStore":
        return self

    def __exit__(self, *exc_info: object) -> None:
        self.close()


class SQLiteKVStore(KVStore):
    """Thread-safe SQLite implementation over a single ``kv`` table."""

    def __init__(self, path: Union[str, Path], wal_mode: bool = True):
        """Open (and create if needed) the store at ``path``.

        Args:
            path: Database file; parent directories are created
            wal_mode: Enable WAL journaling

        Raises:
            StoreGetError: If the database cannot be opened
        """
        self.path = Path(path)
        self._lock = threading.RLock()
        try:
            self.path.parent.mkdir(parents=True, exist_ok=True)
            self.conn = sqlite3.connect(str(self.path), check_same_thread=False, timeout=30.0)
            self.conn.row_factory = sqlite3.Row
            if wal_mode:
                self.conn.execute("PRAGMA journal_mode=WAL")
            self.conn.execute(_SCHEMA)
            self.conn.commit()
        except (OSError, sqlite3.Error) as e:
            raise StoreGetError(f"Cannot open store at {self.path}: {e}") from e
        logger.debug(f"Opened key/value store at {self.path}")

    def get(self, key: str) -> bytes:
        with self._lock:
            try:
                row = self.conn.execute("SELECT value FROM kv WHERE key = ?", (key,)).fetchone()
            except sqlite3.Error as e:
                raise StoreGetError(f"Failed to read {key}: {e}", key=key) from e
        if row is None:
            raise KeyNotFoundError(f"Key not found: {key}", key=key)
        return row["value"].encode("utf-8")

    def put(self, key: str, value: Union[bytes, str]) -> None:
        text = value.decode("utf-8") if isinstance(value, bytes) else value
        with self._lock:
            try:
                self.conn.execute(
                    "INSERT INTO kv (key, value) VALUES (?, ?) "
                    "ON CONFLICT(key) DO UPDATE SET value = excluded.value",
                    (key, text),
                )
                self.conn.commit()
            except sqlite3.Error as e:
                self.conn.rollback()
                raise StorePutError(f"Failed to write {key}: {e}", key=key) from e

    def delete(self, key: str) -> None:
        with self._lock:
            try:
                cursor = self.conn.execute("DELETE FROM kv WHERE key = ?", (key,))
                self.conn.commit()
            except sqlite3.Error as e:
                self.conn.rollback()
                raise StorePutError(f"Failed to delete {key}: {e}", key=key) from e
        if cursor.rowcount == 0:
            raise KeyNotFoundError(f"Key not found: {key}", key=key)

    def _rows(self, prefix: str) -> List[Tuple[str, str]]:
        with self._lock:
            try:
                cursor = self.conn.execute(
                    "SELECT key, value FROM kv WHERE substr(key, 1, ?) = ? ORDER BY key",
                    (len(prefix), prefix),
                )
                return [(row["key"], row["value"]) for row in cursor.fetchall()]
            except sqlite3.Error as e:
                raise StoreGetError(f"Failed to scan keys with prefix {prefix!r}: {e}") from e

    def keys(self, prefix: str = "") -> List[str]:
        return [key for key, _ in self._rows(prefix)]

    def fold(self, fn: Callable[[str, bytes], None], prefix: str = "") -> None:
        # Rows are materialised first so ``fn`` may write back to the store.
        for key, value in self._rows(prefix):
            fn(key, value.encode("utf-8"))

    def close(self) -> None:
        with self._lock:
            self.conn.close()
        logger.debug(f"Closed key/value store at {self.path}")


# ============================================================================
# Entry helpers
# ============================================================================


def load_entry(store: KVStore, key: str) -> PersistentEntry:
    """Read and decode the entry under ``key``.

    Raises:
        KeyNotFoundError: Absent key
        StoreGetError: Backend failure or an undecodable value
    """
    raw = store.get(key)
    try:
        return PersistentEntry.from_json(raw)
    except ValueError as e:
        raise StoreGetError(f"Corrupt entry under {key}: {e}", key=key) from e


def save_entry(store: KVStore, key: str, entry: PersistentEntry) -> None:
    store.put(key, entry.to_json())


def iter_entries(store: KVStore) -> Iterator[Tuple[str, Optional[PersistentEntry]]]:
    """Yield ``(key, entry)`` for every ``v_*`` key; undecodable entries yield None."""

    for key in store.keys(ENTRY_PREFIX):
        try:
            yield key, load_entry(store, key)
        except KeyNotFoundError:
            continue
        except StoreGetError as e:
            logger.warning(f"Skipping unreadable entry {key}: {e}")
            yield key, None

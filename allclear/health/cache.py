"""Cache store — key/value state with TTL for rate limits and last results.

Two backends share the same small interface (read / write / delete, plus an
optional glob-based ``delete_matched``):

  MemoryBackend  in-process dict, always available
  SqliteBackend  durable file-backed store

CacheStore probes its backend once with a write+read round trip and falls
back to memory when the probe fails.
"""

from __future__ import annotations

import fnmatch
import json
import logging
import sqlite3
import threading
import time
from collections.abc import Callable
from datetime import datetime, timedelta
from pathlib import Path
from typing import Any, Protocol

logger = logging.getLogger(__name__)

HOUR = 3600
DAY = 24 * HOUR

_PROBE_KEY = "allclear_cache_probe"


class CacheBackend(Protocol):
    def read(self, key: str) -> Any: ...

    def write(self, key: str, value: Any, ttl: float | None = None) -> None: ...

    def delete(self, key: str) -> None: ...


# ── Backends ─────────────────────────────────────────────────────────────────


class MemoryBackend:
    """Process-local dict with lazy TTL expiry."""

    def __init__(self, clock: Callable[[], float] = time.monotonic) -> None:
        self._clock = clock
        self._data: dict[str, tuple[Any, float | None]] = {}
        self._lock = threading.Lock()

    def read(self, key: str) -> Any:
        with self._lock:
            entry = self._data.get(key)
            if entry is None:
                return None
            value, expires_at = entry
            if expires_at is not None and expires_at <= self._clock():
                del self._data[key]
                return None
            return value

    def write(self, key: str, value: Any, ttl: float | None = None) -> None:
        expires_at = self._clock() + ttl if ttl else None
        with self._lock:
            self._data[key] = (value, expires_at)

    def delete(self, key: str) -> None:
        with self._lock:
            self._data.pop(key, None)

    def delete_matched(self, pattern: str) -> int:
        with self._lock:
            doomed = [k for k in self._data if fnmatch.fnmatchcase(k, pattern)]
            for k in doomed:
                del self._data[k]
        return len(doomed)


class SqliteBackend:
    """SQLite-backed cache; values are stored as JSON."""

    def __init__(self, db_path: Path | str) -> None:
        self._db_path = Path(db_path)
        self._db_path.parent.mkdir(parents=True, exist_ok=True)
        self._conn: sqlite3.Connection | None = None
        self._lock = threading.Lock()
        self._init_db()

    def _get_conn(self) -> sqlite3.Connection:
        if self._conn is None:
            self._conn = sqlite3.connect(str(self._db_path), check_same_thread=False)
            self._conn.row_factory = sqlite3.Row
            self._conn.execute("PRAGMA journal_mode=WAL")
        return self._conn

    def _init_db(self) -> None:
        with self._lock:
            conn = self._get_conn()
            conn.executescript("""
                CREATE TABLE IF NOT EXISTS cache_entries (
                    key TEXT PRIMARY KEY,
                    value TEXT NOT NULL,
                    expires_at REAL
                );
            """)
            conn.commit()

    def read(self, key: str) -> Any:
        with self._lock:
            conn = self._get_conn()
            row = conn.execute(
                "SELECT value, expires_at FROM cache_entries WHERE key = ?", (key,),
            ).fetchone()
            if row is None:
                return None
            if row["expires_at"] is not None and row["expires_at"] <= time.time():
                conn.execute("DELETE FROM cache_entries WHERE key = ?", (key,))
                conn.commit()
                return None
            return json.loads(row["value"])

    def write(self, key: str, value: Any, ttl: float | None = None) -> None:
        expires_at = time.time() + ttl if ttl else None
        with self._lock:
            conn = self._get_conn()
            conn.execute(
                "INSERT INTO cache_entries (key, value, expires_at) VALUES (?, ?, ?) "
                "ON CONFLICT(key) DO UPDATE SET value = excluded.value, "
                "expires_at = excluded.expires_at",
                (key, json.dumps(value), expires_at),
            )
            conn.commit()

    def delete(self, key: str) -> None:
        with self._lock:
            conn = self._get_conn()
            conn.execute("DELETE FROM cache_entries WHERE key = ?", (key,))
            conn.commit()

    def delete_matched(self, pattern: str) -> int:
        with self._lock:
            conn = self._get_conn()
            cursor = conn.execute("DELETE FROM cache_entries WHERE key GLOB ?", (pattern,))
            conn.commit()
            return cursor.rowcount

    def close(self) -> None:
        with self._lock:
            if self._conn:
                self._conn.close()
                self._conn = None


# ── Store facade ─────────────────────────────────────────────────────────────


def default_ttl(key: str) -> int:
    """Keys holding daily state live for a day, everything else for an hour."""
    return DAY if "day" in key else HOUR


class CacheStore:
    """Read/write facade over a backend, with memory fallback."""

    def __init__(self, backend: CacheBackend | None = None, prefix: str = "allclear") -> None:
        self.prefix = prefix
        self._backend: CacheBackend = backend or MemoryBackend()
        self._probed = backend is None

    @property
    def backend(self) -> CacheBackend:
        if not self._probed:
            self._probed = True
            if not self._backend_available():
                self._backend = MemoryBackend()
        return self._backend

    def read(self, key: str) -> Any:
        try:
            return self.backend.read(key)
        except Exception as e:
            self._fall_back(e)
            return self._backend.read(key)

    def write(self, key: str, value: Any, ttl: float | None = None) -> None:
        if ttl is None:
            ttl = default_ttl(key)
        try:
            self.backend.write(key, value, ttl)
        except Exception as e:
            self._fall_back(e)
            self._backend.write(key, value, ttl)

    def delete(self, key: str) -> None:
        try:
            self.backend.delete(key)
        except Exception as e:
            self._fall_back(e)
            self._backend.delete(key)

    def cleanup_old_keys(self, now: datetime) -> None:
        """Drop keys whose embedded date token is two days old."""
        try:
            backend = self.backend
            delete_matched = getattr(backend, "delete_matched", None)
            if delete_matched is None:
                return
            stale = (now - timedelta(days=2)).strftime("%Y-%m-%d")
            removed = delete_matched(f"{self.prefix}:*:*:{stale}*")
            if removed:
                logger.debug("Removed %d stale cache keys for %s", removed, stale)
        except Exception as e:
            logger.warning("Failed to clean up old cache keys: %s", e)

    def _backend_available(self) -> bool:
        try:
            self._backend.write(_PROBE_KEY, "true", HOUR)
            if self._backend.read(_PROBE_KEY) == "true":
                return True
            logger.warning(
                "%s failed the read/write probe, falling back to memory store",
                type(self._backend).__name__,
            )
        except Exception as e:
            logger.warning(
                "%s not available (%s), falling back to memory store",
                type(self._backend).__name__, e,
            )
        return False

    def _fall_back(self, error: Exception) -> None:
        if isinstance(self._backend, MemoryBackend):
            raise error
        logger.warning(
            "Cache backend %s failed (%s), switching to memory store",
            type(self._backend).__name__, error,
        )
        self._backend = MemoryBackend()


def build_cache_store(cfg: Any) -> CacheStore:
    """Build the cache store described by a Settings object."""
    if cfg.cache_backend == "memory":
        return CacheStore(prefix=cfg.cache_prefix)
    try:
        backend: CacheBackend = SqliteBackend(cfg.cache_path)
    except (OSError, sqlite3.Error) as e:
        logger.warning("SQLite cache unavailable at %s (%s), using memory store", cfg.cache_path, e)
        return CacheStore(prefix=cfg.cache_prefix)
    return CacheStore(backend, prefix=cfg.cache_prefix)

"""
cache/store.py -- SQLite-backed cache for snippet search results.

Search scores every snippet a user owns, so repeated identical searches are
served from here for a short TTL (default 5 minutes). Entries are keyed by
(user_id, key) where key is library.search.cache_key(query, filters). Any
write to one of a user's snippets must call invalidate_user() so a stale
result list is never served.

Usage:
    cache = SearchCache()
    hits = cache.get(user_id, key)      # returns list or None
    cache.set(user_id, key, hits)
    cache.invalidate_user(user_id)      # after a snippet write
    cache.purge_expired()               # call periodically to trim old entries
"""

import json
import sqlite3
import threading
import time
from pathlib import Path
from typing import Optional, Union

_DEFAULT_TTL = 5 * 60  # seconds

_DDL = """
CREATE TABLE IF NOT EXISTS search_cache (
    user_id     INTEGER NOT NULL,
    cache_key   TEXT NOT NULL,
    data        TEXT NOT NULL,
    cached_at   REAL NOT NULL,
    PRIMARY KEY (user_id, cache_key)
);
"""


class SearchCache:
    def __init__(self, db_path: Union[Path, str] = ":memory:", ttl: int = _DEFAULT_TTL) -> None:
        self.ttl = ttl
        if str(db_path) != ":memory:":
            Path(db_path).parent.mkdir(parents=True, exist_ok=True)
        # One connection shared by the threadpool; the lock serializes access.
        self._lock = threading.Lock()
        self._conn = sqlite3.connect(str(db_path), check_same_thread=False)
        self._conn.execute("PRAGMA journal_mode=WAL")
        self._conn.execute(_DDL)
        self._conn.commit()

    def get(self, user_id: int, key: str) -> Optional[list]:
        """Return cached results for (user_id, key) if present and not expired."""
        with self._lock:
            row = self._conn.execute(
                "SELECT data, cached_at FROM search_cache WHERE user_id = ? AND cache_key = ?",
                (user_id, key),
            ).fetchone()
            if row is None:
                return None
            data, cached_at = row
            if time.time() - cached_at > self.ttl:
                self._conn.execute(
                    "DELETE FROM search_cache WHERE user_id = ? AND cache_key = ?",
                    (user_id, key),
                )
                self._conn.commit()
                return None
        return json.loads(data)

    def set(self, user_id: int, key: str, data: list) -> None:
        """Store results for (user_id, key), replacing any existing entry."""
        with self._lock:
            self._conn.execute(
                "INSERT OR REPLACE INTO search_cache (user_id, cache_key, data, cached_at) VALUES (?, ?, ?, ?)",
                (user_id, key, json.dumps(data), time.time()),
            )
            self._conn.commit()

    def invalidate_user(self, user_id: int) -> int:
        """Drop every cached search for a user. Returns number of rows removed."""
        with self._lock:
            cursor = self._conn.execute("DELETE FROM search_cache WHERE user_id = ?", (user_id,))
            self._conn.commit()
        return cursor.rowcount

    def purge_expired(self) -> int:
        """Delete all entries older than TTL. Returns number of rows removed."""
        cutoff = time.time() - self.ttl
        with self._lock:
            cursor = self._conn.execute("DELETE FROM search_cache WHERE cached_at < ?", (cutoff,))
            self._conn.commit()
        return cursor.rowcount

    def close(self) -> None:
        self._conn.close()

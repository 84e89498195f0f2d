"""
cache/store.py -- SQLite-backed cache for raw end-of-life feed payloads.

One row per framework family holding the decoded feed array exactly as
endoflife.date served it. Payloads are cached before mapping, not as
FrameworkVersion records: support status depends on the refresh time, so
every refresh re-derives it from the same payload. The feed changes a few
times a year, so a 24 hour TTL keeps repeated CLI and API refreshes off the
network. core/pipeline.py only stores payloads that parse as a feed.

Usage:
    cache = FeedCache()
    payload = cache.get(FrameworkType.PYTHON)   # decoded JSON or None
    cache.set(FrameworkType.PYTHON, payload)
    cache.purge_expired()
"""

import json
import sqlite3
import time
from pathlib import Path
from typing import Any, Optional, Union

from core.models import FrameworkType

_DEFAULT_DB = Path(__file__).parent / "lifecycle_cache.db"
_DEFAULT_TTL = 60 * 60 * 24  # 24 hours in seconds

_DDL = """
CREATE TABLE IF NOT EXISTS eol_feed_cache (
    framework   TEXT PRIMARY KEY,
    data        TEXT NOT NULL,
    cached_at   REAL NOT NULL
);
"""


class FeedCache:
    def __init__(self, db_path: Union[Path, str] = _DEFAULT_DB, ttl: int = _DEFAULT_TTL) -> None:
        self.ttl = ttl
        self._conn = sqlite3.connect(db_path, check_same_thread=False)
        self._conn.execute("PRAGMA journal_mode=WAL")
        self._conn.execute(_DDL)
        self._conn.commit()

    def get(self, framework: FrameworkType) -> Optional[Any]:
        """Return the cached payload for a family if present and fresh."""
        row = self._conn.execute(
            "SELECT data, cached_at FROM eol_feed_cache WHERE framework = ?",
            (framework.value,),
        ).fetchone()
        if row is None:
            return None
        data, cached_at = row
        if time.time() - cached_at > self.ttl:
            self._delete(framework)
            return None
        return json.loads(data)

    def set(self, framework: FrameworkType, payload: Any) -> None:
        """Store a payload, replacing any existing entry for the family."""
        self._conn.execute(
            "INSERT OR REPLACE INTO eol_feed_cache (framework, data, cached_at) VALUES (?, ?, ?)",
            (framework.value, json.dumps(payload), time.time()),
        )
        self._conn.commit()

    def purge_expired(self) -> int:
        """Delete all entries older than TTL. Returns number of rows removed."""
        cutoff = time.time() - self.ttl
        cursor = self._conn.execute("DELETE FROM eol_feed_cache WHERE cached_at < ?", (cutoff,))
        self._conn.commit()
        return cursor.rowcount

    def _delete(self, framework: FrameworkType) -> None:
        self._conn.execute("DELETE FROM eol_feed_cache WHERE framework = ?", (framework.value,))
        self._conn.commit()

    def close(self) -> None:
        self._conn.close()

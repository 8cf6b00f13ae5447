"""
cache/store.py -- SQLite-backed cache for scoped report payloads.

Report views are pure functions of (report, instance, run, page), so their
JSON payloads can be cached under that key with a short TTL (default 5
minutes). Entries are invalidated per scope when the user re-selects a run
and per instance when instance metadata changes.

Usage:
    cache = ReportCache()
    data = cache.get("cve-summary", Scope(1, 3), page=1)   # dict or None
    cache.set("cve-summary", Scope(1, 3), data, page=1)
    cache.invalidate_scope(Scope(1, 3))
    cache.purge_expired()                                   # call periodically
"""

import json
import sqlite3
import time
from pathlib import Path
from typing import Optional, Union

from core.models import Scope

_DEFAULT_DB = Path(__file__).parent / "insightshield_cache.db"
_DEFAULT_TTL = 300  # seconds

_DDL = """
CREATE TABLE IF NOT EXISTS report_cache (
    cache_key    TEXT PRIMARY KEY,
    instance_id  INTEGER,
    run_id       INTEGER,
    data         TEXT NOT NULL,
    cached_at    REAL NOT NULL
);
"""


def _key(report: str, scope: Scope, page: int) -> str:
    return f"{report}:{scope.cache_key}:{page}"


class ReportCache:
    def __init__(self, db_path: Union[Path, str] = _DEFAULT_DB, ttl: int = _DEFAULT_TTL) -> None:
        self.ttl = ttl
        self._conn = sqlite3.connect(str(db_path), check_same_thread=False)
        self._conn.execute("PRAGMA journal_mode=WAL")
        self._conn.execute(_DDL)
        self._conn.commit()

    def get(self, report: str, scope: Scope, page: int = 1) -> Optional[dict]:
        """Return the cached payload if it exists and hasn't expired."""
        key = _key(report, scope, page)
        row = self._conn.execute(
            "SELECT data, cached_at FROM report_cache WHERE cache_key = ?",
            (key,),
        ).fetchone()
        if row is None:
            return None
        data, cached_at = row
        if time.time() - cached_at > self.ttl:
            self._conn.execute("DELETE FROM report_cache WHERE cache_key = ?", (key,))
            self._conn.commit()
            return None
        return json.loads(data)

    def set(self, report: str, scope: Scope, data: dict, page: int = 1) -> None:
        self._conn.execute(
            "INSERT OR REPLACE INTO report_cache (cache_key, instance_id, run_id, data, cached_at) "
            "VALUES (?, ?, ?, ?, ?)",
            (_key(report, scope, page), scope.instance_id, scope.run_id, json.dumps(data, default=str), time.time()),
        )
        self._conn.commit()

    def invalidate_scope(self, scope: Scope) -> int:
        """Drop every entry cached for exactly this (instance, run) pair.

        Entries cached with no run (instance-wide views) are dropped too.
        """
        cursor = self._conn.execute(
            "DELETE FROM report_cache WHERE instance_id IS ? AND (run_id IS ? OR run_id IS NULL)",
            (scope.instance_id, scope.run_id),
        )
        self._conn.commit()
        return cursor.rowcount

    def invalidate_instance(self, instance_id: int) -> int:
        cursor = self._conn.execute("DELETE FROM report_cache WHERE instance_id = ?", (instance_id,))
        self._conn.commit()
        return cursor.rowcount

    def purge_expired(self) -> int:
        """Delete all entries older than TTL. Returns number of rows removed."""
        cutoff = time.time() - self.ttl
        cursor = self._conn.execute("DELETE FROM report_cache WHERE cached_at < ?", (cutoff,))
        self._conn.commit()
        return cursor.rowcount

    def close(self) -> None:
        self._conn.close()

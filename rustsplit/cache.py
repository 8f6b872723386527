"""Analysis cache: in-memory LRU in front of a per-workspace SQLite store.

Keys hash the absolute source path together with the exact span text, so
any edit to the span produces a new key and stale entries simply age out.
"""

from __future__ import annotations

import hashlib
import json
import logging
import sqlite3
import time
from collections import OrderedDict
from dataclasses import dataclass
from pathlib import Path
from typing import Any, Dict, Optional

from .config import CACHE_DB_NAME, cache_dir
from .models import AnalysisResult

def cache_key(source_path: Path, span_text: str) -> str:
    """Deterministic key for ``(absolute path, span text)``."""
    digest = hashlib.sha256()
    digest.update(str(Path(source_path).resolve()).encode("utf-8"))
    digest.update(b"\0")
    digest.update(span_text.encode("utf-8"))
    return digest.hexdigest()


@dataclass
class CacheStats:
    hits: int = 0
    misses: int = 0
    entry_count: int = 0

    @property
    def hit_rate(self) -> float:
        total = self.hits + self.misses
        return self.hits / total if total else 0.0

    def to_dict(self) -> Dict[str, Any]:
        return {
            "hits": self.hits,
            "misses": self.misses,
            "hit_rate": self.hit_rate,
            "entry_count": self.entry_count,
        }


# ===================================================================
# SQLite store
# ===================================================================

class CacheStore:
    """Serialized analysis results for one workspace."""

    def __init__(self, workspace_root: Path, max_entries: int = 128) -> None:
        self.workspace_root = Path(workspace_root)
        self.max_entries = max_entries
        directory = cache_dir(self.workspace_root)
        directory.mkdir(parents=True, exist_ok=True)
        self.db_path = directory / CACHE_DB_NAME
        self.conn = sqlite3.connect(str(self.db_path))
        self.conn.row_factory = sqlite3.Row
        self._init_schema()

    def close(self) -> None:
        self.conn.close()

    def _init_schema(self) -> None:
        cur = self.conn.cursor()
        cur.execute("""
            CREATE TABLE IF NOT EXISTS analysis (
                key         TEXT PRIMARY KEY,
                source_path TEXT NOT NULL,
                payload     TEXT NOT NULL,
                created_at  REAL NOT NULL,
                last_access REAL NOT NULL
            )
        """)
        cur.execute("CREATE INDEX IF NOT EXISTS idx_analysis_access ON analysis(last_access)")
        cur.execute("""
            CREATE TABLE IF NOT EXISTS counters (
                name  TEXT PRIMARY KEY,
                value INTEGER NOT NULL
            )
        """)
        self.conn.commit()

    def get(self, key: str) -> Optional[str]:
        row = self.conn.execute("SELECT payload FROM analysis WHERE key = ?", (key,)).fetchone()
        if row is None:
            return None
        self.conn.execute("UPDATE analysis SET last_access = ? WHERE key = ?", (time.time(), key))
        self.conn.commit()
        return row["payload"]

    def put(self, key: str, source_path: str, payload: str) -> None:
        now = time.time()
        self.conn.execute(
            """
            INSERT OR REPLACE INTO analysis (key, source_path, payload, created_at, last_access)
            VALUES (?, ?, ?, ?, ?)
            """,
            (key, source_path, payload, now, now),
        )
        self._evict()
        self.conn.commit()

    def delete(self, key: str) -> None:
        self.conn.execute("DELETE FROM analysis WHERE key = ?", (key,))
        self.conn.commit()

    def record_lookup(self, hit: bool) -> None:
        name = "hits" if hit else "misses"
        self.conn.execute(
            "INSERT INTO counters (name, value) VALUES (?, 1) "
            "ON CONFLICT(name) DO UPDATE SET value = value + 1",
            (name,),
        )
        self.conn.commit()

    def counters(self) -> Dict[str, int]:
        rows = self.conn.execute("SELECT name, value FROM counters").fetchall()
        totals = {"hits": 0, "misses": 0}
        totals.update({row["name"]: row["value"] for row in rows})
        return totals

    def count(self) -> int:
        return self.conn.execute("SELECT COUNT(*) FROM analysis").fetchone()[0]

    def clear(self) -> None:
        self.conn.execute("DELETE FROM analysis")
        self.conn.execute("DELETE FROM counters")
        self.conn.commit()

    def _evict(self) -> None:
        overflow = self.count() - self.max_entries
        if overflow > 0:
            self.conn.execute(
                "DELETE FROM analysis WHERE key IN "
                "(SELECT key FROM analysis ORDER BY last_access ASC, rowid ASC LIMIT ?)",
                (overflow,),
            )


# ===================================================================
# AnalysisCache
# ===================================================================

class AnalysisCache:
    """Bounded LRU cache of :class:`AnalysisResult` values.

    When a :class:`CacheStore` is attached, memory misses fall through to
    it before being counted as misses, and every ``put`` is written through.
    """

    def __init__(
        self,
        max_entries: int = 128,
        store: Optional[CacheStore] = None,
        logger: Optional[logging.Logger] = None,
    ) -> None:
        self.max_entries = max_entries
        self.store = store
        self.logger = logger or logging.getLogger(__name__)
        self._entries: "OrderedDict[str, AnalysisResult]" = OrderedDict()
        self._hits = 0
        self._misses = 0

    def get(self, key: str) -> Optional[AnalysisResult]:
        if key in self._entries:
            self._entries.move_to_end(key)
            self._count(hit=True)
            return self._entries[key]

        if self.store is not None:
            payload = self.store.get(key)
            if payload is not None:
                try:
                    result = AnalysisResult.from_dict(json.loads(payload))
                except (ValueError, KeyError, TypeError) as exc:
                    self.logger.warning("Discarding corrupt cache entry %s: %s", key[:12], exc)
                    self.store.delete(key)
                else:
                    self._remember(key, result)
                    self._count(hit=True)
                    return result

        self._count(hit=False)
        return None

    def put(self, key: str, result: AnalysisResult) -> None:
        self._remember(key, result)
        if self.store is not None:
            self.store.put(key, result.source_path, json.dumps(result.to_dict()))

    def stats(self) -> CacheStats:
        count = self.store.count() if self.store is not None else len(self._entries)
        return CacheStats(hits=self._hits, misses=self._misses, entry_count=count)

    def lifetime_stats(self) -> CacheStats:
        """Counters accumulated by the store across processes."""
        if self.store is None:
            return self.stats()
        totals = self.store.counters()
        return CacheStats(hits=totals["hits"], misses=totals["misses"], entry_count=self.store.count())

    def clear(self) -> None:
        self._entries.clear()
        self._hits = 0
        self._misses = 0
        if self.store is not None:
            self.store.clear()

    def _count(self, hit: bool) -> None:
        if hit:
            self._hits += 1
        else:
            self._misses += 1
        if self.store is not None:
            self.store.record_lookup(hit)

    def _remember(self, key: str, result: AnalysisResult) -> None:
        self._entries[key] = result
        self._entries.move_to_end(key)
        while len(self._entries) > self.max_entries:
            evicted, _ = self._entries.popitem(last=False)
            self.logger.debug("Evicted cache entry %s", evicted[:12])

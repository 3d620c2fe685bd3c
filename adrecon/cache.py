"""SQLite-backed key/value cache with per-entry expiry.

Used for exchange rates: the latest USD table is cached for 6 hours and
each historical (currency, date) rate for 24 hours.

Usage::

    from adrecon.cache import CacheStore, rate_cache_key

    store = CacheStore("cache/rates.db")
    cached = store.get(rate_cache_key("latest"))
    if cached is None:
        # ... call rate API ...
        store.set(rate_cache_key("latest"), json.dumps(rates), ttl_seconds=21600)
"""
from __future__ import annotations

import sqlite3
import time
from pathlib import Path
from typing import Callable, Optional


# ─────────────────────────────────────────────────────────────────────────────
# Cache store
# ─────────────────────────────────────────────────────────────────────────────

class CacheStore:
    """Persistent cache backed by SQLite.

    Readers never take a lock; concurrent refreshes of the same key simply
    overwrite each other (last writer wins).
    """

    def __init__(
        self,
        db_path: str | Path,
        clock: Callable[[], float] = time.time,
    ) -> None:
        self.db_path = Path(db_path)
        self.db_path.parent.mkdir(parents=True, exist_ok=True)
        self._clock = clock
        self._hits = 0
        self._misses = 0
        self._init_db()

    # ── DB setup ──────────────────────────────────────────────────────────────

    def _init_db(self) -> None:
        with self._connect() as conn:
            conn.execute("""
                CREATE TABLE IF NOT EXISTS kv_cache (
                    key        TEXT PRIMARY KEY,
                    value      TEXT NOT NULL,
                    expires_at REAL
                )
            """)
            conn.commit()

    def _connect(self) -> sqlite3.Connection:
        return sqlite3.connect(self.db_path, check_same_thread=False)

    # ── Public API ────────────────────────────────────────────────────────────

    def get(self, key: str) -> Optional[str]:
        """Return cached value, or None on miss or expiry."""
        with self._connect() as conn:
            row = conn.execute(
                "SELECT value, expires_at FROM kv_cache WHERE key = ?", (key,)
            ).fetchone()
        if row and (row[1] is None or row[1] > self._clock()):
            self._hits += 1
            return row[0]
        self._misses += 1
        return None

    def set(self, key: str, value: str, ttl_seconds: Optional[float] = None) -> None:
        """Store (or overwrite) an entry; ``ttl_seconds=None`` never expires."""
        expires_at = self._clock() + ttl_seconds if ttl_seconds else None
        with self._connect() as conn:
            conn.execute(
                "INSERT OR REPLACE INTO kv_cache (key, value, expires_at) VALUES (?, ?, ?)",
                (key, value, expires_at),
            )
            conn.commit()

    def purge_expired(self) -> int:
        """Delete expired entries; returns number of rows removed."""
        with self._connect() as conn:
            cur = conn.execute(
                "DELETE FROM kv_cache WHERE expires_at IS NOT NULL AND expires_at <= ?",
                (self._clock(),),
            )
            conn.commit()
        return cur.rowcount

    def clear(self) -> int:
        """Delete all entries; returns number of rows removed."""
        with self._connect() as conn:
            cur = conn.execute("DELETE FROM kv_cache")
            conn.commit()
        return cur.rowcount

    # ── Stats ─────────────────────────────────────────────────────────────────

    @property
    def hits(self) -> int:
        return self._hits

    @property
    def misses(self) -> int:
        return self._misses

    def hit_rate(self) -> float:
        total = self._hits + self._misses
        return round(self._hits / total, 4) if total else 0.0

    def stats(self) -> dict:
        return {
            "hits": self._hits,
            "misses": self._misses,
            "hit_rate": self.hit_rate(),
        }


# ─────────────────────────────────────────────────────────────────────────────
# Key helpers
# ─────────────────────────────────────────────────────────────────────────────

def rate_cache_key(kind: str, currency: str = "", day: str = "") -> str:
    """``rates:latest`` or ``rates:historical:PEN:2026-01-31``."""
    parts = ["rates", kind]
    if currency:
        parts.append(currency.upper())
    if day:
        parts.append(day)
    return ":".join(parts)

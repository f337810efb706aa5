from __future__ import annotations

from datetime import datetime
from typing import Callable, Dict, Iterable, Optional
import logging
import threading
import time

log = logging.getLogger(__name__)


# -------------------------------
# Cache keys
#   list:<table>:<filters>   rows of a (filtered) list
#   record:<table>:<id>      one row
#   options:<table>          relation picker options targeting <table>
# -------------------------------

def list_key(table_id: str, filters: Iterable | None = None, order: str | None = None) -> str:
    parts = []
    for col, op, value in filters or []:
        if isinstance(value, (list, tuple, set)):
            value = ",".join(str(v) for v in value)
        parts.append(f"{col}={op}.{value}")
    if order:
        parts.append(f"order={order}")
    return f"list:{table_id}:" + "&".join(sorted(parts))


def record_key(table_id: str, record_id) -> str:
    return f"record:{table_id}:{record_id}"


def options_key(table_id: str) -> str:
    return f"options:{table_id}"


class EntityCache:
    """Flat key -> payload cache with explicit invalidation.

    No eviction and no expiry: a key returns the last payload set for it until
    it is cleared. Age is tracked for reporting only.
    """

    def __init__(self):
        self._data: Dict[str, object] = {}
        self._meta: Dict[str, dict] = {}
        # Bumped on invalidation; a load that straddles a bump is not stored
        self._generations: Dict[str, int] = {}
        self._epoch = 0
        self._lock = threading.Lock()

    @staticmethod
    def _table_of(key: str) -> str:
        parts = key.split(":", 2)
        return parts[1] if len(parts) > 1 else ""

    def _generation(self, key: str) -> tuple:
        return (self._epoch, self._generations.get(self._table_of(key), 0))

    def __len__(self) -> int:
        with self._lock:
            return len(self._data)

    def __contains__(self, key: str) -> bool:
        return self.is_cached(key)

    def is_cached(self, key: str, ignore_cache: bool = False) -> bool:
        if ignore_cache:
            return False
        with self._lock:
            return key in self._data

    def get(self, key: str, default=None):
        with self._lock:
            return self._data.get(key, default)

    @staticmethod
    def _record_count(payload) -> int:
        if isinstance(payload, list):
            return len(payload)
        return 0 if payload is None else 1

    def set(self, key: str, payload) -> None:
        count = self._record_count(payload)
        with self._lock:
            self._store(key, payload, count)
        log.debug("Updated cache for %s with %d records", key, count)

    def _store(self, key: str, payload, count: int) -> None:
        # Caller holds the lock
        self._data[key] = payload
        self._meta[key] = {
            "timestamp": time.time(),
            "count": count,
            "last_updated": datetime.now().isoformat(timespec="seconds"),
        }

    def clear(self, key: str) -> bool:
        with self._lock:
            found = key in self._data
            self._data.pop(key, None)
            self._meta.pop(key, None)
        if found:
            log.debug("Cleared cache for %s", key)
        return found

    def clear_all(self) -> None:
        with self._lock:
            self._data.clear()
            self._meta.clear()
            self._epoch += 1
        log.debug("Cleared all entity caches")

    def invalidate_table(self, table_id: str) -> int:
        """Drop every list, record and options entry of table_id. Returns the number dropped."""
        prefixes = (f"list:{table_id}:", f"record:{table_id}:")
        exact = options_key(table_id)
        with self._lock:
            keys = [k for k in self._data if k == exact or k.startswith(prefixes)]
            self._generations[table_id] = self._generations.get(table_id, 0) + 1
            for k in keys:
                self._data.pop(k, None)
                self._meta.pop(k, None)
        if keys:
            log.debug("Invalidated %d cache entries for %s", len(keys), table_id)
        return len(keys)

    def get_or_load(self, key: str, loader: Callable[[], object], ignore_cache: bool = False):
        """Return the cached payload for key, or call loader() and cache its result.

        The loader runs outside the lock. If the key's table is invalidated
        while it runs, the result is returned but not cached.
        """
        with self._lock:
            if not ignore_cache and key in self._data:
                log.debug("Using cached data for %s", key)
                return self._data[key]
            generation = self._generation(key)
        log.debug("Loading fresh data for %s", key)
        payload = loader()
        count = self._record_count(payload)
        with self._lock:
            stale = self._generation(key) != generation
            if not stale:
                self._store(key, payload, count)
        if stale:
            log.debug("Discarding load for %s: invalidated while loading", key)
        return payload

    def stats(self, now: Optional[float] = None) -> dict:
        now = time.time() if now is None else now
        with self._lock:
            entries = {
                k: {
                    "record_count": m["count"],
                    "age_seconds": int(round(now - m["timestamp"])),
                    "last_updated": m["last_updated"],
                }
                for k, m in self._meta.items()
            }
        return {"entry_count": len(entries), "entries": entries}

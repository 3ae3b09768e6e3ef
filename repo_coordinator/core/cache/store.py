"""
In-memory TTL cache for remote operation results.

Entries past their TTL are treated as misses even while still stored. When
the store grows beyond `max_entries`, the lowest-scoring entries are evicted,
where score = access_count / (age + 1) - seconds_since_last_access.
"""

from __future__ import annotations

import json
import logging
import re
import time
from dataclasses import dataclass
from typing import Any, Callable, Dict, List, Optional, Tuple

logger = logging.getLogger(__name__)


@dataclass
class CacheEntry:
    data: Any
    timestamp: float
    ttl: float
    access_count: int = 1
    last_access: float = 0.0

    def is_expired(self, now: float) -> bool:
        return now - self.timestamp >= self.ttl


class CacheStore:
    def __init__(
        self,
        max_entries: int = 1000,
        default_ttl: float = 300.0,
        clock: Callable[[], float] = time.time,
    ):
        self.max_entries = max_entries
        self.default_ttl = default_ttl
        self._clock = clock
        self._entries: Dict[str, CacheEntry] = {}
        self._hits = 0
        self._misses = 0

    def __len__(self) -> int:
        return len(self._entries)

    def __contains__(self, key: str) -> bool:
        entry = self._entries.get(key)
        return entry is not None and not entry.is_expired(self._clock())

    def lookup(self, key: str) -> Tuple[bool, Any]:
        """Return (hit, value); a hit bumps the entry's access statistics"""
        entry = self._entries.get(key)
        if entry is None:
            self._misses += 1
            return False, None

        now = self._clock()
        if entry.is_expired(now):
            del self._entries[key]
            self._misses += 1
            return False, None

        entry.access_count += 1
        entry.last_access = now
        self._hits += 1
        return True, entry.data

    def get(self, key: str, default: Any = None) -> Any:
        hit, value = self.lookup(key)
        return value if hit else default

    def peek(self, key: str) -> Optional[CacheEntry]:
        """Entry without touching access statistics (expired entries included)"""
        return self._entries.get(key)

    def set(self, key: str, data: Any, ttl: Optional[float] = None) -> None:
        now = self._clock()
        self._entries[key] = CacheEntry(
            data=data,
            timestamp=now,
            ttl=self.default_ttl if ttl is None else ttl,
            access_count=1,
            last_access=now,
        )
        if len(self._entries) > self.max_entries:
            self._evict(keep=key)

    def delete(self, key: str) -> bool:
        return self._entries.pop(key, None) is not None

    def clear(self, pattern: Optional[str] = None) -> int:
        """Remove all entries, or those whose key matches the regex `pattern`"""
        if pattern is None:
            removed = len(self._entries)
            self._entries.clear()
            return removed

        regex = re.compile(pattern)
        keys = [key for key in self._entries if regex.search(key)]
        for key in keys:
            del self._entries[key]
        return len(keys)

    def cleanup_expired(self) -> int:
        now = self._clock()
        expired = [key for key, entry in self._entries.items() if entry.is_expired(now)]
        for key in expired:
            del self._entries[key]
        if expired:
            logger.debug(f"Removed {len(expired)} expired cache entries")
        return len(expired)

    def optimize(self) -> Dict[str, int]:
        """Trim the store back to `max_entries` by eviction score"""
        before = len(self._entries)
        if before > self.max_entries:
            self._evict()
        after = len(self._entries)
        return {"before": before, "after": after, "removed": before - after}

    def score(self, entry: CacheEntry, now: Optional[float] = None) -> float:
        now = self._clock() if now is None else now
        age = now - entry.timestamp
        since_last_access = now - entry.last_access
        return entry.access_count / (age + 1.0) - since_last_access

    def get_cache_stats(self) -> Dict[str, Any]:
        entries = list(self._entries.values())
        lookups = self._hits + self._misses
        return {
            "size": len(entries),
            "max_entries": self.max_entries,
            "hits": self._hits,
            "misses": self._misses,
            "hit_rate": self._hits / lookups if lookups else 0.0,
            "memory_usage": self._estimate_memory_usage(entries),
            "oldest_entry": min((e.timestamp for e in entries), default=0.0),
            "newest_entry": max((e.timestamp for e in entries), default=0.0),
        }

    def _evict(self, keep: Optional[str] = None) -> None:
        now = self._clock()
        overflow = len(self._entries) - self.max_entries
        if overflow <= 0:
            return

        # Expired entries go first, they are already logically gone
        for key in [k for k, e in self._entries.items() if e.is_expired(now) and k != keep]:
            del self._entries[key]
            overflow -= 1
            if overflow <= 0:
                return

        ranked: List[Tuple[float, str]] = sorted(
            (self.score(entry, now), key)
            for key, entry in self._entries.items()
            if key != keep
        )
        for _, key in ranked[:overflow]:
            del self._entries[key]
        logger.debug(f"Evicted {min(overflow, len(ranked))} cache entries by score")

    @staticmethod
    def _estimate_memory_usage(entries: List[CacheEntry]) -> str:
        estimated = 0
        for entry in entries:
            try:
                estimated += len(json.dumps(entry.data, default=str)) * 2
            except (TypeError, ValueError):
                estimated += 64
        if estimated > 1024 * 1024:
            return f"{estimated / (1024 * 1024):.2f} MB"
        if estimated > 1024:
            return f"{estimated / 1024:.2f} KB"
        return f"{estimated} bytes"

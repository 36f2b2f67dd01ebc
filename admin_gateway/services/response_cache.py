"""In-memory response cache with TTL expiry, LRU bounding and pattern invalidation"""

import json
import re
import time
from collections import OrderedDict
from dataclasses import dataclass
from typing import Any, Callable, Dict, Iterable, Optional, Tuple, Union

from admin_gateway.core.logging import get_logger

logger = get_logger("services.response_cache")

Clock = Callable[[], float]


@dataclass
class CacheEntry:
    key: str
    value: Any
    created_at: float
    expires_at: float

    def is_expired(self, now: float) -> bool:
        # Exactly at expires_at counts as expired
        return now >= self.expires_at


def derive_key(path: str, query_params: Iterable[Tuple[str, str]] = ()) -> str:
    """
    Build a cache key from a path and its query parameters.

    Parameters are serialized with sorted keys so that ordering in the URL
    does not matter. Repeated keys keep all of their values.
    """
    return f"{path}:{serialize_query(query_params)}"


def serialize_query(query_params: Iterable[Tuple[str, str]]) -> str:
    params: Dict[str, Union[str, list]] = {}
    for name, value in query_params:
        if name in params:
            existing = params[name]
            if isinstance(existing, list):
                existing.append(value)
            else:
                params[name] = [existing, value]
        else:
            params[name] = value
    return json.dumps(params, sort_keys=True, separators=(",", ":"))


class ResponseCache:
    """
    Key/value store for cached responses.

    Entries are logically absent once their TTL elapses and are removed
    lazily on read or by the sweep that runs on every write. The store is
    bounded by max_entries; the least recently used entry is evicted first.
    """

    def __init__(self, default_ttl: float = 300, max_entries: int = 1000, clock: Optional[Clock] = None):
        if max_entries <= 0:
            raise ValueError("max_entries must be positive")
        self.default_ttl = default_ttl
        self.max_entries = max_entries
        self._clock = clock or time.monotonic
        self._entries: "OrderedDict[str, CacheEntry]" = OrderedDict()
        self._reset_stats()

    def _reset_stats(self):
        self.hits = 0
        self.misses = 0
        self.sets = 0
        self.evictions = 0

    def __len__(self) -> int:
        return len(self._entries)

    def __contains__(self, key: str) -> bool:
        entry = self._entries.get(key)
        return entry is not None and not entry.is_expired(self._clock())

    def get(self, key: str, default: Any = None) -> Any:
        """
        Return the live value for key, or default on a miss.

        A stored None is returned as a hit; pass a sentinel default to tell
        it apart from a miss.
        """
        entry = self._entries.get(key)
        if entry is None:
            self.misses += 1
            return default

        if entry.is_expired(self._clock()):
            del self._entries[key]
            self.misses += 1
            return default

        self._entries.move_to_end(key)
        self.hits += 1
        return entry.value

    def set(self, key: str, value: Any, ttl: Optional[float] = None) -> CacheEntry:
        ttl = self.default_ttl if ttl is None else ttl
        if ttl <= 0:
            raise ValueError("ttl must be positive")

        now = self._clock()
        entry = CacheEntry(key=key, value=value, created_at=now, expires_at=now + ttl)
        self._entries[key] = entry
        self._entries.move_to_end(key)
        self.sets += 1

        self.sweep()
        while len(self._entries) > self.max_entries:
            evicted_key, _ = self._entries.popitem(last=False)
            self.evictions += 1
            logger.debug(f"Evicted cache entry {evicted_key}")
        return entry

    def delete(self, key: str) -> bool:
        return self._entries.pop(key, None) is not None

    def sweep(self) -> int:
        """Remove every expired entry; returns how many were dropped."""
        now = self._clock()
        expired = [key for key, entry in self._entries.items() if entry.is_expired(now)]
        for key in expired:
            del self._entries[key]
        return len(expired)

    def invalidate(self, pattern: Union[str, "re.Pattern"]) -> int:
        """Remove every entry whose key matches the regular expression."""
        regex = re.compile(pattern) if isinstance(pattern, str) else pattern
        matched = [key for key in self._entries if regex.search(key)]
        for key in matched:
            del self._entries[key]
        logger.info(f"Invalidated {len(matched)} cache entries for pattern: {regex.pattern}")
        return len(matched)

    def clear(self):
        self._entries.clear()
        self._reset_stats()

    def stats(self) -> Dict[str, Any]:
        total = self.hits + self.misses
        return {
            "hits": self.hits,
            "misses": self.misses,
            "sets": self.sets,
            "evictions": self.evictions,
            "hit_rate": round(self.hits / total * 100, 2) if total else 0.0,
            "size": len(self._entries),
            "max_entries": self.max_entries,
        }

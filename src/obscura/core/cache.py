"""
Result Cache
Bounded in-memory cache for pipeline results, evicting oldest insertions first

Not synchronized: callers sharing one instance across threads must serialize
access themselves.
"""

import hashlib
import json
import time
from collections import OrderedDict
from dataclasses import dataclass
from typing import Any, Dict, Generic, Optional, TypeVar

T = TypeVar("T")

DEFAULT_CAPACITY = 100


@dataclass
class CacheEntry(Generic[T]):
    key: str
    value: T
    inserted_at: float


def make_cache_key(content: str, options: Dict[str, Any]) -> str:
    """
    Derive a cache key from source text and the options that affect output

    Args:
        content: Source text being analyzed
        options: Output-affecting options (must be JSON serializable)

    Returns:
        Hex digest identifying the (content, options) pair
    """
    digest = hashlib.sha256()
    digest.update(content.encode("utf-8", errors="surrogatepass"))
    digest.update(b"\x00")
    digest.update(json.dumps(options, sort_keys=True, default=str).encode("utf-8"))
    return digest.hexdigest()


class ResultCache(Generic[T]):
    """Insertion-ordered cache with a fixed capacity"""

    def __init__(self, capacity: int = DEFAULT_CAPACITY):
        if capacity < 1:
            raise ValueError(f"Cache capacity must be positive, got {capacity}")
        self.capacity = capacity
        self._entries: "OrderedDict[str, CacheEntry[T]]" = OrderedDict()
        self.hits = 0
        self.misses = 0

    def get(self, key: str) -> Optional[T]:
        """Return the stored object for key (the same object that was put), or None"""
        entry = self._entries.get(key)
        if entry is None:
            self.misses += 1
            return None
        self.hits += 1
        return entry.value

    def put(self, key: str, value: T) -> None:
        if key in self._entries:
            self._entries[key].value = value
            return
        while len(self._entries) >= self.capacity:
            self._entries.popitem(last=False)
        self._entries[key] = CacheEntry(key=key, value=value, inserted_at=time.time())

    def clear(self) -> None:
        self._entries.clear()
        self.hits = 0
        self.misses = 0

    def __contains__(self, key: str) -> bool:
        return key in self._entries

    def __len__(self) -> int:
        return len(self._entries)

    def stats(self) -> Dict[str, int]:
        return {
            "size": len(self._entries),
            "capacity": self.capacity,
            "hits": self.hits,
            "misses": self.misses,
        }

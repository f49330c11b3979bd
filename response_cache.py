"""
In-memory response cache with a fixed TTL.

Entries are checked against the TTL on read and never swept proactively; a
stale entry is simply not returned and gets overwritten by the next set().
There is no size bound: the cache lives for one driver session and call
volume is small. Owners call clear() on logout or manual refresh.
"""

import json
import logging
import threading
import time
from dataclasses import dataclass
from typing import Any, Callable, Dict, Optional

from config import CACHE_TTL_SECONDS

logger = logging.getLogger(__name__)


@dataclass
class CacheEntry:
    key: str
    value: Any
    timestamp: float


def make_key(operation: str, **params: Any) -> str:
    """Deterministic cache key from an operation name and its full parameters.

    Parameters are serialized as canonical JSON (sorted keys) so identical
    combinations always hit and distinct ones never collide.
    """
    return f"{operation}:" + json.dumps(params, sort_keys=True, separators=(",", ":"), default=str)


class ResponseCache:
    def __init__(
        self,
        ttl_seconds: float = CACHE_TTL_SECONDS,
        clock: Callable[[], float] = time.monotonic,
    ):
        self.ttl_seconds = ttl_seconds
        self._clock = clock
        self._entries: Dict[str, CacheEntry] = {}
        self._lock = threading.Lock()

    def get(self, key: str) -> Optional[Any]:
        """Return the cached value, or None if absent or older than the TTL."""
        with self._lock:
            entry = self._entries.get(key)
        if entry is None:
            return None
        if self._clock() - entry.timestamp < self.ttl_seconds:
            return entry.value
        return None

    def set(self, key: str, value: Any) -> None:
        with self._lock:
            self._entries[key] = CacheEntry(key=key, value=value, timestamp=self._clock())

    def clear(self) -> None:
        with self._lock:
            dropped = len(self._entries)
            self._entries.clear()
        logger.debug("Map response cache cleared (%d entries)", dropped)

    def stats(self) -> Dict[str, Any]:
        with self._lock:
            size = len(self._entries)
        return {"size": size, "ttl_seconds": self.ttl_seconds}

    def __len__(self) -> int:
        with self._lock:
            return len(self._entries)

"""Most-recent-first list of places the driver picked from search results."""

import threading
from typing import List

from config import RECENT_SEARCHES_LIMIT
from models import PlaceResult


class RecentSearches:
    def __init__(self, limit: int = RECENT_SEARCHES_LIMIT):
        if limit < 1:
            raise ValueError("limit must be at least 1")
        self.limit = limit
        self._items: List[PlaceResult] = []
        self._lock = threading.Lock()

    def add(self, place: PlaceResult) -> None:
        """Put ``place`` at the front, dropping any older entry with the same id."""
        with self._lock:
            self._items = [p for p in self._items if p.id != place.id]
            self._items.insert(0, place)
            del self._items[self.limit:]

    def items(self) -> List[PlaceResult]:
        with self._lock:
            return list(self._items)

    def clear(self) -> None:
        with self._lock:
            self._items = []

    def __len__(self) -> int:
        with self._lock:
            return len(self._items)

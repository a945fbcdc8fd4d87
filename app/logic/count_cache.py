"""Bounded TTL cache for listing totals."""

from __future__ import annotations

import json
import logging
import os
import threading
import time
from collections import OrderedDict
from typing import Callable

from app.logic.filters import CompiledFilters

logger = logging.getLogger(__name__)

COUNT_CACHE_TTL = float(os.environ.get("COUNT_CACHE_TTL", 60))
COUNT_CACHE_MAX_ENTRIES = int(os.environ.get("COUNT_CACHE_MAX_ENTRIES", 1024))


class CountCache:
    """LRU map of filter set -> total, each entry valid for ``ttl`` seconds.

    Lookups and stores are individually locked, but a miss followed by a
    store is not: two requests missing on the same key both run the count.
    """

    def __init__(
        self,
        *,
        ttl: float = COUNT_CACHE_TTL,
        max_entries: int = COUNT_CACHE_MAX_ENTRIES,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self.ttl = ttl
        self.max_entries = max_entries
        self._clock = clock
        self._entries: OrderedDict[str, tuple[int, float]] = OrderedDict()
        self._lock = threading.Lock()

    @staticmethod
    def make_key(filters: CompiledFilters) -> str:
        return json.dumps(
            {
                "shop": [p.sql for p in filters.shop_predicates],
                "traffic": [p.sql for p in filters.traffic_predicates],
                "params": filters.params,
            },
            sort_keys=True,
            default=str,
        )

    def get(self, key: str) -> int | None:
        with self._lock:
            entry = self._entries.get(key)
            if entry is None:
                return None
            count, stored_at = entry
            if self._clock() - stored_at >= self.ttl:
                self._entries.pop(key, None)
                return None
            self._entries.move_to_end(key)
            return count

    def set(self, key: str, count: int) -> None:
        with self._lock:
            self._entries.pop(key, None)
            self._entries[key] = (count, self._clock())
            while len(self._entries) > self.max_entries:
                self._entries.popitem(last=False)

    def get_or_compute(self, key: str, compute: Callable[[], int]) -> int:
        cached = self.get(key)
        if cached is not None:
            logger.debug("Count cache hit")
            return cached
        count = compute()
        self.set(key, count)
        return count

    def clear(self) -> None:
        with self._lock:
            self._entries.clear()

    def __len__(self) -> int:
        return len(self._entries)


COUNT_CACHE = CountCache()

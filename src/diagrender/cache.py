"""Bounded LRU cache of rendered outputs keyed by path and content digest."""

from __future__ import annotations

import hashlib
import threading
import time
from collections import OrderedDict
from dataclasses import dataclass

from diagrender.models import RenderOutput


@dataclass
class CacheEntry:
    key: str
    result: RenderOutput
    timestamp: float


class RenderCache:
    """Least-recently-used cache with a fixed capacity.

    Both ``get`` hits and ``set`` move the entry to the most recent position;
    inserting beyond capacity evicts the least recently used entry. All
    operations hold a lock so the cache may be shared across threads.
    """

    def __init__(self, max_size: int = 50) -> None:
        if max_size < 1:
            raise ValueError("Cache size must be at least 1")
        self.max_size = max_size
        self._entries: OrderedDict[str, CacheEntry] = OrderedDict()
        self._lock = threading.Lock()

    @staticmethod
    def generate_key(path: str, content: str) -> str:
        """Build the cache key ``"{path}:{sha256(content)}"``."""
        digest = hashlib.sha256(content.encode("utf-8")).hexdigest()
        return f"{path}:{digest}"

    def get(self, key: str) -> RenderOutput | None:
        with self._lock:
            entry = self._entries.get(key)
            if entry is None:
                return None
            self._entries.move_to_end(key)
            return entry.result

    def set(self, key: str, result: RenderOutput) -> None:
        with self._lock:
            if key in self._entries:
                self._entries.move_to_end(key)
            self._entries[key] = CacheEntry(key=key, result=result, timestamp=time.time())
            while len(self._entries) > self.max_size:
                self._entries.popitem(last=False)

    def has(self, key: str) -> bool:
        """Membership test that does not affect recency."""
        with self._lock:
            return key in self._entries

    def clear(self) -> None:
        with self._lock:
            self._entries.clear()

    def keys(self) -> list[str]:
        """Keys from least to most recently used."""
        with self._lock:
            return list(self._entries)

    def __len__(self) -> int:
        with self._lock:
            return len(self._entries)

# payout_recon/job_store.py
# Keyed in-process store with per-key expiry (upload cache, progress)

from __future__ import annotations

import time
from typing import Any, Callable, Optional


class JobStore:
    """
    put/get/delete/expire over an in-memory dict.

    Expired keys are evicted lazily on access. Not locked: two writers on the
    same key is last-writer-wins.
    """

    def __init__(self, clock: Callable[[], float] = time.monotonic):
        self._clock = clock
        self._items: dict[str, Any] = {}
        self._deadlines: dict[str, float] = {}

    def _evict(self, key: str) -> None:
        deadline = self._deadlines.get(key)
        if deadline is not None and self._clock() >= deadline:
            self._items.pop(key, None)
            self._deadlines.pop(key, None)

    def put(self, key: str, value: Any, ttl: Optional[float] = None) -> None:
        self._items[key] = value
        if ttl is None:
            self._deadlines.pop(key, None)
        else:
            self._deadlines[key] = self._clock() + ttl

    def get(self, key: str, default: Any = None) -> Any:
        self._evict(key)
        return self._items.get(key, default)

    def delete(self, key: str) -> None:
        self._items.pop(key, None)
        self._deadlines.pop(key, None)

    def expire(self, key: str, ttl: float) -> None:
        """Schedule removal `ttl` seconds from now (no-op for unknown keys)."""
        if key in self._items:
            self._deadlines[key] = self._clock() + ttl

    def __contains__(self, key: str) -> bool:
        self._evict(key)
        return key in self._items

    def keys(self) -> list[str]:
        for k in list(self._items):
            self._evict(k)
        return list(self._items)

    def clear(self) -> None:
        self._items.clear()
        self._deadlines.clear()


# parsed uploads: {"data", "headers", "filename", "size", "mime_type", "source", "mapping"}
file_cache = JobStore()

# file id -> ProcessingProgress
progress_store = JobStore()

"""Read-through cache used for computed attribution reports."""

from __future__ import annotations

import logging
import threading
import time
from collections.abc import Callable
from typing import Any, Protocol, TypeVar

logger = logging.getLogger(__name__)

T = TypeVar("T")


class Cache(Protocol):
    """Minimal cache contract injected into the calculator."""

    def get_or_compute(self, key: str, ttl: int, compute: Callable[[], T]) -> T: ...

    def invalidate(self, key: str) -> None: ...

    def invalidate_prefix(self, prefix: str) -> int: ...


class TTLCache:
    """
    In-process cache with per-entry expiry.

    Invalidation bumps a generation counter; a value computed while an
    invalidation happened is returned to its caller but not stored.

    Example:
        cache = TTLCache()
        report = cache.get_or_compute("attribution:report:linear:*:*", 900, build)
    """

    def __init__(self, clock: Callable[[], float] = time.monotonic):
        self._clock = clock
        self._lock = threading.Lock()
        self._entries: dict[str, tuple[float, Any]] = {}
        self._generation = 0

    def get_or_compute(self, key: str, ttl: int, compute: Callable[[], T]) -> T:
        now = self._clock()
        with self._lock:
            entry = self._entries.get(key)
            if entry is not None and entry[0] > now:
                logger.debug(f"Cache hit: {key}")
                return entry[1]
            generation = self._generation

        logger.debug(f"Cache miss: {key}")
        value = compute()
        if ttl > 0:
            with self._lock:
                if self._generation == generation:
                    self._entries[key] = (self._clock() + ttl, value)
                else:
                    logger.debug(f"Discarding {key}: invalidated during compute")
        return value

    def invalidate(self, key: str) -> None:
        with self._lock:
            self._generation += 1
            self._entries.pop(key, None)

    def invalidate_prefix(self, prefix: str) -> int:
        with self._lock:
            self._generation += 1
            stale = [k for k in self._entries if k.startswith(prefix)]
            for key in stale:
                del self._entries[key]
        return len(stale)

    def __len__(self) -> int:
        with self._lock:
            return len(self._entries)


class NullCache:
    """Cache that always recomputes."""

    def get_or_compute(self, key: str, ttl: int, compute: Callable[[], T]) -> T:
        return compute()

    def invalidate(self, key: str) -> None:
        pass

    def invalidate_prefix(self, prefix: str) -> int:
        return 0

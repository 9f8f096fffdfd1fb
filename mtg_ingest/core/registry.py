"""
Bounded in-memory registry with TTL eviction.

Owned and passed around explicitly instead of living in module-level dicts.
"""
import time
from collections import OrderedDict
from typing import Any, Callable, Generic, Optional, TypeVar

import structlog

logger = structlog.get_logger(__name__)

V = TypeVar("V")


class TTLRegistry(Generic[V]):
    """
    Keyed registry with time-to-live and LRU size eviction.

    Entries expire ``ttl`` seconds after they were last set. When
    ``max_size`` is reached the least recently used entry is dropped.
    """

    def __init__(
        self,
        max_size: int = 100,
        ttl: float = 3600,
        clock: Callable[[], float] = time.monotonic,
    ):
        self.max_size = max_size
        self.ttl = ttl
        self._clock = clock
        self._entries: OrderedDict[str, tuple[V, float]] = OrderedDict()

    def get(self, key: str) -> Optional[V]:
        """Return the entry for key, or None if absent or expired."""
        entry = self._entries.get(key)
        if entry is None:
            return None

        value, expiry = entry
        if self._clock() > expiry:
            del self._entries[key]
            return None

        self._entries.move_to_end(key)
        return value

    def set(self, key: str, value: V, ttl: Optional[float] = None) -> None:
        """Insert or replace an entry, evicting the oldest when full."""
        if key in self._entries:
            del self._entries[key]

        while len(self._entries) >= self.max_size:
            evicted, _ = self._entries.popitem(last=False)
            logger.debug("Registry entry evicted", key=evicted)

        expiry = self._clock() + (ttl if ttl is not None else self.ttl)
        self._entries[key] = (value, expiry)

    def pop(self, key: str) -> Optional[V]:
        """Remove and return an entry (expired entries return None)."""
        value = self.get(key)
        self._entries.pop(key, None)
        return value

    def purge_expired(self) -> int:
        """Drop expired entries; returns how many were removed."""
        now = self._clock()
        expired = [k for k, (_, expiry) in self._entries.items() if now > expiry]
        for key in expired:
            del self._entries[key]
        return len(expired)

    def items(self) -> list[tuple[str, Any]]:
        """Live (key, value) pairs, oldest first."""
        self.purge_expired()
        return [(k, v) for k, (v, _) in self._entries.items()]

    def __contains__(self, key: str) -> bool:
        return self.get(key) is not None

    def __len__(self) -> int:
        self.purge_expired()
        return len(self._entries)

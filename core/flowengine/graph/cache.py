"""
Per-run node cache.

Entries are ``{data, timestamp}`` keyed by node id, timestamps in epoch
milliseconds from an injectable clock. The in-memory map is the hot path; an
optional CachePersistence mirrors writes so a cache survives process
restarts under the same hit/miss rules.
"""

import logging
import time
from collections.abc import Callable
from dataclasses import dataclass
from typing import Any, Protocol, runtime_checkable

logger = logging.getLogger(__name__)

Clock = Callable[[], float]


def system_clock() -> float:
    """Current time in epoch milliseconds."""
    return time.time() * 1000


@dataclass(frozen=True)
class CacheEntry:
    data: Any
    timestamp: float

    def age_ms(self, now: float) -> float:
        return now - self.timestamp


@runtime_checkable
class CachePersistence(Protocol):
    def get(self, node_id: str) -> CacheEntry | None: ...

    def set(self, node_id: str, entry: CacheEntry) -> None: ...

    def clear(self, node_id: str) -> None: ...


class NodeCache:
    """Node-id keyed memo store; ``None`` is a cacheable value distinct from a miss."""

    def __init__(self, clock: Clock | None = None, persistence: CachePersistence | None = None):
        self._clock = clock or system_clock
        self._persistence = persistence
        self._entries: dict[str, CacheEntry] = {}

    def now(self) -> float:
        return self._clock()

    def get(self, node_id: str) -> CacheEntry | None:
        entry = self._entries.get(node_id)
        if entry is not None or self._persistence is None:
            return entry
        try:
            entry = self._persistence.get(node_id)
        except Exception as e:
            logger.warning(f"Cache persistence read failed for {node_id}: {e}")
            return None
        if entry is not None:
            self._entries[node_id] = entry
        return entry

    def set(self, node_id: str, data: Any) -> CacheEntry:
        entry = CacheEntry(data=data, timestamp=self.now())
        self._entries[node_id] = entry
        if self._persistence is not None:
            try:
                self._persistence.set(node_id, entry)
            except Exception as e:
                logger.warning(f"Cache persistence write failed for {node_id}: {e}")
        return entry

    def clear(self, node_id: str) -> bool:
        existed = self._entries.pop(node_id, None) is not None
        if self._persistence is not None:
            try:
                self._persistence.clear(node_id)
            except Exception as e:
                logger.warning(f"Cache persistence clear failed for {node_id}: {e}")
        return existed

    def clear_all(self) -> None:
        for node_id in list(self._entries):
            self.clear(node_id)


def is_fresh(
    entry: CacheEntry | None,
    now: float,
    ttl_ms: float,
    invalidate_before: float | None = None,
) -> bool:
    """
    Hit rule: an entry exists, is younger than the TTL, and is not older
    than the invalidation watermark.
    """
    if entry is None or ttl_ms <= 0:
        return False
    if now - entry.timestamp >= ttl_ms:
        return False
    if invalidate_before is not None and entry.timestamp < invalidate_before:
        return False
    return True

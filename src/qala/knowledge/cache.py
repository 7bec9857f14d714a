"""Caches in front of the knowledge matcher.

``MatchCache`` is a bounded TTL cache of normalized query to match result.
A cached ``NO_MATCH`` is a real result, distinct from a cache miss.
``PrefetchCache`` maps each entry's canonical pattern to the entry and is
rebuilt on every refresh.
"""

from __future__ import annotations

import logging
import time
from collections.abc import Callable
from dataclasses import dataclass
from enum import Enum
from typing import Final

from qala.knowledge.entries import KnowledgeEntry

logger = logging.getLogger(__name__)


class _NoMatch(Enum):
    NO_MATCH = "no-match"

    def __repr__(self) -> str:
        return "NO_MATCH"


NO_MATCH: Final = _NoMatch.NO_MATCH

type MatchResult = KnowledgeEntry | _NoMatch


@dataclass
class _CacheSlot:
    value: MatchResult
    timestamp: float
    access_count: int = 1


class MatchCache:
    """Bounded cache with lazy expiry and least-accessed eviction.

    Parameters
    ----------
    max_size:
        Maximum number of entries; inserting into a full cache evicts one.
    ttl_seconds:
        Entries older than this read as absent and are dropped.
    clock:
        Time source in seconds.
    """

    def __init__(
        self,
        max_size: int = 500,
        ttl_seconds: float = 7200.0,
        *,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        if max_size < 1:
            raise ValueError("max_size must be at least 1")
        self.max_size = max_size
        self.ttl_seconds = ttl_seconds
        self._clock = clock
        self._slots: dict[str, _CacheSlot] = {}
        self.hits = 0
        self.misses = 0
        self.evictions = 0

    def __len__(self) -> int:
        return len(self._slots)

    def __contains__(self, key: str) -> bool:
        return key in self._slots

    def get(self, key: str) -> MatchResult | None:
        """Return the cached result, or ``None`` on a miss or expired entry."""
        slot = self._slots.get(key)
        if slot is None:
            self.misses += 1
            return None

        if self._clock() - slot.timestamp > self.ttl_seconds:
            del self._slots[key]
            self.evictions += 1
            return None

        slot.access_count += 1
        self.hits += 1
        return slot.value

    def set(self, key: str, value: MatchResult) -> None:
        if key not in self._slots and len(self._slots) >= self.max_size:
            self._evict()
        self._slots[key] = _CacheSlot(value=value, timestamp=self._clock())

    def _evict(self) -> None:
        # Least accessed first, oldest breaks ties.
        victim = min(
            self._slots,
            key=lambda k: (self._slots[k].access_count, self._slots[k].timestamp),
        )
        del self._slots[victim]
        self.evictions += 1

    def clear(self) -> None:
        self._slots.clear()

    def stats(self) -> dict[str, int]:
        return {
            "hits": self.hits,
            "misses": self.misses,
            "evictions": self.evictions,
            "size": len(self._slots),
        }


class PrefetchCache:
    """Unbounded canonical-pattern lookup table."""

    def __init__(self) -> None:
        self._entries: dict[str, KnowledgeEntry] = {}

    def __len__(self) -> int:
        return len(self._entries)

    def __contains__(self, key: str) -> bool:
        return key in self._entries

    def get(self, key: str) -> KnowledgeEntry | None:
        return self._entries.get(key)

    def preload(self, items: dict[str, KnowledgeEntry]) -> None:
        self._entries.update(items)

    def clear(self) -> None:
        self._entries.clear()

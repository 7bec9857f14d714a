"""Knowledge base matcher and sync manager.

Lookup order (first hit wins):

    1. normalize the query
    2. MatchCache        exact normalized query seen before (hit or NO_MATCH)
    3. PrefetchCache     query equals an entry's canonical pattern
    4. PatternIndex      single-token query; highest priority, then table order
    5. full scan         first entry with a pattern contained in the query
    6. generic fallback  query mentions the institute name -> entry 0
    7. NO_MATCH

Steps 3 to 7 populate the MatchCache.  Any failure inside the lookup is
logged and treated as no match so the caller falls through to the LLM.

Refresh modes:

    full     clear MatchCache and PatternIndex, rebuild everything
    partial  rebuild PatternIndex and PrefetchCache, keep MatchCache

A background task runs a partial refresh every ``refresh_interval_s``.

Metrics emitted:
    qala.knowledge.lookup_total  (counter, outcome=cache|prefetch|index|scan|generic|none|error)
"""

from __future__ import annotations

import asyncio
import dataclasses
import logging
import time
from collections.abc import Iterable, Mapping, Sequence
from dataclasses import dataclass
from datetime import UTC, datetime
from typing import Any

from qala.core.metrics import PipelineMetrics
from qala.knowledge.cache import NO_MATCH, MatchCache, MatchResult, PrefetchCache
from qala.knowledge.entries import INSTITUTE_NAME_VARIANTS, QALA_INSTITUTE, KnowledgeEntry
from qala.knowledge.index import PatternIndex
from qala.knowledge.normalize import normalize_kurdish_text, tokenize

logger = logging.getLogger(__name__)

_UPDATABLE_FIELDS = frozenset(f.name for f in dataclasses.fields(KnowledgeEntry))


def _string_tuple(name: str, value: Any) -> tuple[str, ...]:
    if isinstance(value, str) or not isinstance(value, Iterable):
        raise ValueError(f"Knowledge entry {name} must be a list of strings")
    items = tuple(value)
    if not all(isinstance(item, str) for item in items):
        raise ValueError(f"Knowledge entry {name} must be a list of strings")
    return items


@dataclass
class LookupStats:
    """Per-tier resolution counters."""

    cache_hits: int = 0
    prefetch_hits: int = 0
    index_hits: int = 0
    scans: int = 0
    generic_hits: int = 0
    misses: int = 0
    errors: int = 0


@dataclass
class SyncStats:
    total_syncs: int = 0
    cache_resets: int = 0
    partial_updates: int = 0
    last_sync_duration_ms: float = 0.0


class KnowledgeBase:
    """Owns the knowledge table and every structure derived from it.

    Parameters
    ----------
    entries:
        Initial table, in priority order for the substring scan.
    match_cache:
        Shared query cache; a default-sized one is created when omitted.
    refresh_interval_s:
        Period of the background partial refresh started by :meth:`start`.
    """

    def __init__(
        self,
        entries: Sequence[KnowledgeEntry] = QALA_INSTITUTE,
        *,
        match_cache: MatchCache | None = None,
        refresh_interval_s: float = 3600.0,
        metrics: PipelineMetrics | None = None,
    ) -> None:
        self._entries: list[KnowledgeEntry] = list(entries)
        self.match_cache = match_cache if match_cache is not None else MatchCache()
        self.prefetch = PrefetchCache()
        self.index = PatternIndex()
        self._scan_patterns: list[tuple[str, ...]] = []
        self._name_variants = tuple(normalize_kurdish_text(v) for v in INSTITUTE_NAME_VARIANTS)
        self._metrics = metrics or PipelineMetrics()
        self._refresh_interval_s = refresh_interval_s
        self._refresh_task: asyncio.Task | None = None

        self.lookup_stats = LookupStats()
        self.sync_stats = SyncStats()
        self.version = 1
        self.last_sync = datetime.now(UTC)

        self._rebuild()

    @property
    def entries(self) -> tuple[KnowledgeEntry, ...]:
        return tuple(self._entries)

    # ------------------------------------------------------------------
    # Matching
    # ------------------------------------------------------------------

    def find_matching(self, message: str) -> KnowledgeEntry | None:
        """Return the entry answering *message*, or ``None`` to defer to the LLM."""
        try:
            result, outcome = self._lookup(message)
        except Exception:
            logger.exception("Knowledge lookup failed; falling through to the LLM")
            self.lookup_stats.errors += 1
            self._metrics.knowledge_lookup("error")
            return None

        self._metrics.knowledge_lookup(outcome)
        return None if result is NO_MATCH else result

    def _lookup(self, message: str) -> tuple[MatchResult, str]:
        query = normalize_kurdish_text(message)
        if not query:
            self.lookup_stats.misses += 1
            return NO_MATCH, "none"

        cached = self.match_cache.get(query)
        if cached is not None:
            self.lookup_stats.cache_hits += 1
            return cached, "cache"

        entry = self.prefetch.get(query)
        if entry is not None:
            self.lookup_stats.prefetch_hits += 1
            return self._remember(query, entry), "prefetch"

        tokens = tokenize(query)
        if len(tokens) == 1:
            positions = self.index.lookup(tokens[0])
            if positions:
                best = min(positions, key=lambda i: (-(self._entries[i].priority or 0), i))
                self.lookup_stats.index_hits += 1
                return self._remember(query, self._entries[best]), "index"

        self.lookup_stats.scans += 1
        for entry, patterns in zip(self._entries, self._scan_patterns, strict=True):
            if any(pattern in query for pattern in patterns):
                return self._remember(query, entry), "scan"

        if self._entries and any(variant in query for variant in self._name_variants):
            self.lookup_stats.generic_hits += 1
            return self._remember(query, self._entries[0]), "generic"

        self.lookup_stats.misses += 1
        return self._remember(query, NO_MATCH), "none"

    def _remember(self, query: str, result: MatchResult) -> MatchResult:
        self.match_cache.set(query, result)
        return result

    # ------------------------------------------------------------------
    # Sync
    # ------------------------------------------------------------------

    def _rebuild(self) -> None:
        self.index.rebuild(self._entries)
        self._scan_patterns = [
            tuple(p for p in (normalize_kurdish_text(pat) for pat in entry.patterns) if p)
            for entry in self._entries
        ]
        self.prefetch.clear()
        self.prefetch.preload(
            {
                normalize_kurdish_text(entry.canonical_pattern): entry
                for entry in self._entries
                if entry.canonical_pattern
            }
        )

    def refresh(self, full: bool = False) -> None:
        """Re-derive the index and caches from the current table."""
        started = time.perf_counter()

        if full:
            self.match_cache.clear()
            self.index.clear()
            self._rebuild()
            self.sync_stats.cache_resets += 1
        else:
            self._rebuild()
            self.sync_stats.partial_updates += 1

        self.version += 1
        self.last_sync = datetime.now(UTC)
        self.sync_stats.total_syncs += 1
        self.sync_stats.last_sync_duration_ms = (time.perf_counter() - started) * 1000

        logger.info(
            "Knowledge base refreshed (%s) in %.2fms, version=%d",
            "full" if full else "partial",
            self.sync_stats.last_sync_duration_ms,
            self.version,
        )

    def update_entry(self, index: int, patch: Mapping[str, Any]) -> bool:
        """Merge *patch* into the entry at *index* and run a partial refresh.

        Returns False (after logging) when *index* is out of range.

        Raises
        ------
        ValueError
            If *patch* names a field that entries do not have, or gives
            ``patterns``/``links`` that are not a list of strings.
        """
        if not 0 <= index < len(self._entries):
            logger.error("Cannot update knowledge entry: invalid index %d", index)
            return False

        unknown = set(patch) - _UPDATABLE_FIELDS
        if unknown:
            raise ValueError(f"Unknown knowledge entry field(s): {', '.join(sorted(unknown))}")

        changes = dict(patch)
        for name in ("patterns", "links"):
            if name in changes:
                changes[name] = _string_tuple(name, changes[name])
        if "response" in changes and not isinstance(changes["response"], str):
            raise ValueError("Knowledge entry response must be a string")

        self._entries[index] = dataclasses.replace(self._entries[index], **changes)
        self.refresh(full=False)
        logger.info("Knowledge entry %d updated, indices refreshed", index)
        return True

    def get_sync_stats(self) -> dict[str, Any]:
        now = datetime.now(UTC)
        return {
            "total_syncs": self.sync_stats.total_syncs,
            "cache_resets": self.sync_stats.cache_resets,
            "partial_updates": self.sync_stats.partial_updates,
            "last_sync_duration_ms": round(self.sync_stats.last_sync_duration_ms, 3),
            "knowledge_base_version": self.version,
            "last_sync_timestamp": self.last_sync.isoformat(),
            "time_since_last_sync_ms": int((now - self.last_sync).total_seconds() * 1000),
            "entries_count": len(self._entries),
            "pattern_count": len(self.index),
            "prefetch_cache_size": len(self.prefetch),
            "match_cache_size": len(self.match_cache),
            "match_cache": self.match_cache.stats(),
        }

    # ------------------------------------------------------------------
    # Background refresh
    # ------------------------------------------------------------------

    async def start(self) -> None:
        """Spawn the periodic partial refresh."""
        if self._refresh_task is not None:
            return
        self._refresh_task = asyncio.create_task(self._refresh_loop(), name="knowledge-refresh")
        logger.info(
            "Knowledge base sync manager started: interval=%.0fs entries=%d",
            self._refresh_interval_s,
            len(self._entries),
        )

    async def stop(self) -> None:
        if self._refresh_task is None:
            return
        self._refresh_task.cancel()
        try:
            await self._refresh_task
        except asyncio.CancelledError:
            pass
        self._refresh_task = None

    async def _refresh_loop(self) -> None:
        while True:
            try:
                await asyncio.sleep(self._refresh_interval_s)
            except asyncio.CancelledError:
                break

            try:
                logger.info("Running scheduled knowledge base refresh")
                self.refresh(full=False)
            except Exception:
                logger.exception("Scheduled knowledge base refresh failed")

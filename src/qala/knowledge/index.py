"""Inverted index from normalized pattern to knowledge entry positions."""

from __future__ import annotations

from collections import defaultdict
from collections.abc import Iterable, Sequence

from qala.knowledge.entries import KnowledgeEntry
from qala.knowledge.normalize import normalize_kurdish_text


class PatternIndex:
    """Maps each normalized pattern to the indices of entries that declare it.

    Keys are whole normalized patterns, so a single-token query hits exactly
    the entries that list that word as one of their phrasings.  The index is
    a snapshot: it reflects the table passed to the last :meth:`rebuild`.
    """

    def __init__(self, entries: Sequence[KnowledgeEntry] = ()) -> None:
        self._index: dict[str, set[int]] = {}
        if entries:
            self.rebuild(entries)

    def rebuild(self, entries: Iterable[KnowledgeEntry]) -> None:
        index: defaultdict[str, set[int]] = defaultdict(set)
        for position, entry in enumerate(entries):
            for pattern in entry.patterns:
                key = normalize_kurdish_text(pattern)
                if key:
                    index[key].add(position)
        self._index = dict(index)

    def lookup(self, token: str) -> frozenset[int]:
        return frozenset(self._index.get(token, ()))

    def clear(self) -> None:
        self._index = {}

    def __len__(self) -> int:
        return len(self._index)

    def __contains__(self, token: str) -> bool:
        return token in self._index

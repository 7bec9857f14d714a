"""Knowledge table, caches and the layered matcher."""

from qala.knowledge.base import KnowledgeBase
from qala.knowledge.cache import NO_MATCH, MatchCache, PrefetchCache
from qala.knowledge.entries import QALA_INSTITUTE, KnowledgeEntry
from qala.knowledge.index import PatternIndex

__all__ = [
    "NO_MATCH",
    "QALA_INSTITUTE",
    "KnowledgeBase",
    "KnowledgeEntry",
    "MatchCache",
    "PatternIndex",
    "PrefetchCache",
]

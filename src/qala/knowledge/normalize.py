"""Text folding and splitting helpers for Sorani Kurdish input."""

from __future__ import annotations

import re

# Visually similar code points folded to the Sorani canonical letter.
_FOLDS: tuple[tuple[str, str], ...] = (
    ("ه\u200c", "ە"),  # heh + zero-width non-joiner
    ("ھ", "ە"),  # heh doachashmee
    ("ي", "ی"),  # arabic yeh
    ("ك", "ک"),  # arabic kaf
)

_WHITESPACE = re.compile(r"\s+")


def normalize_kurdish_text(text: str) -> str:
    """Trim, lowercase and fold spelling variants to a canonical form."""
    normalized = text.strip().lower()
    for variant, canonical in _FOLDS:
        normalized = normalized.replace(variant, canonical)
    return normalized


def tokenize(text: str) -> list[str]:
    """Split *text* into lowercase whitespace-separated tokens."""
    return [token for token in _WHITESPACE.split(text.strip().lower()) if token]


def prepare_streaming_chunks(response: str, chunk_size: int = 100) -> list[str]:
    """Split *response* into display chunks for streaming.

    Each non-blank line becomes a chunk.  Lines longer than *chunk_size* are
    split at the first sentence boundary (``". "``) that falls inside the
    limit, otherwise at the last space before it, otherwise hard at the limit.
    """
    chunks: list[str] = []

    for line in response.split("\n"):
        if len(line) <= chunk_size:
            if line.strip():
                chunks.append(line)
            continue

        remaining = line
        while remaining:
            sentence_end = remaining.find(". ")
            if 0 < sentence_end < chunk_size:
                chunks.append(remaining[: sentence_end + 1])
                remaining = remaining[sentence_end + 2 :]
                continue

            split_at = min(chunk_size, len(remaining))
            if split_at < len(remaining):
                last_space = remaining.rfind(" ", 0, split_at + 1)
                if last_space > 0:
                    split_at = last_space
            chunks.append(remaining[:split_at])
            remaining = remaining[split_at:].strip()

    return [chunk for chunk in chunks if chunk.strip()]

"""Two-stage parser for the upstream chat stream.

The provider emits newline-delimited JSON events.  Lines can arrive
truncated, so each candidate line goes through:

    1. strict JSON (a missing closing brace is appended first)
    2. regex extraction of the ``"text"`` field

and the result is a tagged :class:`Parsed` or :class:`Skipped`.  A bad line
is never fatal to the stream.

Extracted text gets the same cleanup on both paths: literal ``\\n`` and
``\\"`` sequences are unescaped, stray backslashes between a character and a
letter are dropped, and quotes wrapping a lone Kurdish letter are removed.
These undo known artifacts in the provider's output.
"""

from __future__ import annotations

import json
import logging
import re
from dataclasses import dataclass

logger = logging.getLogger(__name__)

_TEXT_MARKER = '"text"'

# Tolerates a missing closing quote so that {"text":"hello still yields "hello".
_TEXT_FIELD = re.compile(r'"text"\s*:\s*"((?:[^"\\]|\\.)*)')
_BACKSLASH_SEPARATOR = re.compile(r"([^\s])\\([a-zA-Z])")
_QUOTED_KURDISH_LETTER = re.compile(r'"([ەڕێۆ،ن])"')


@dataclass(frozen=True)
class Parsed:
    text: str


@dataclass(frozen=True)
class Skipped:
    reason: str


type ParseResult = Parsed | Skipped


def clean_text(text: str) -> str:
    text = text.replace("\\n", "\n").replace('\\"', '"')
    text = _BACKSLASH_SEPARATOR.sub(r"\1\2", text)
    return _QUOTED_KURDISH_LETTER.sub(r"\1", text)


def _parse_json(line: str) -> ParseResult | None:
    candidate = line if line.endswith("}") else line + "}"
    try:
        event = json.loads(candidate)
    except json.JSONDecodeError:
        return None
    if not isinstance(event, dict):
        return Skipped("not an object")
    text = event.get("text")
    if not text or not isinstance(text, str):
        return Skipped("no top-level text")
    return Parsed(clean_text(text))


def _parse_regex(line: str) -> ParseResult | None:
    match = _TEXT_FIELD.search(line)
    if match is None or not match.group(1):
        return None
    return Parsed(clean_text(match.group(1)))


def try_parse_line(line: str) -> ParseResult:
    """Extract the text fragment from one stream line."""
    line = line.strip()
    if _TEXT_MARKER not in line:
        return Skipped("no text field")

    result = _parse_json(line)
    if result is not None:
        return result

    result = _parse_regex(line)
    if result is not None:
        return result

    logger.warning("Dropping unparseable stream line: %.120s", line)
    return Skipped("unparseable")

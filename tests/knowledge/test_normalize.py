"""Tests for Sorani text folding and chunking."""

from __future__ import annotations

import pytest

from qala.knowledge.normalize import normalize_kurdish_text, prepare_streaming_chunks, tokenize

pytestmark = pytest.mark.unit


class TestNormalize:
    def test_trims_and_lowercases(self):
        assert normalize_kurdish_text("  Hello QALA ") == "hello qala"

    @pytest.mark.parametrize(
        "variant, canonical",
        [
            ("ي", "ی"),
            ("ك", "ک"),
            ("ھ", "ە"),
            ("ه\u200c", "ە"),
        ],
    )
    def test_folds_variant_letters(self, variant: str, canonical: str):
        assert normalize_kurdish_text(variant) == canonical

    def test_spelling_variants_converge(self):
        assert normalize_kurdish_text("قه\u200cڵا") == normalize_kurdish_text("قەڵا")
        assert normalize_kurdish_text("پەيوەندي") == normalize_kurdish_text("پەیوەندی")

    def test_idempotent(self):
        once = normalize_kurdish_text(" كوردي ")
        assert normalize_kurdish_text(once) == once


class TestTokenize:
    def test_collapses_whitespace(self):
        assert tokenize("  a \t B\n c ") == ["a", "b", "c"]

    def test_empty(self):
        assert tokenize("   ") == []


class TestPrepareStreamingChunks:
    def test_short_lines_pass_through(self):
        assert prepare_streaming_chunks("one\n\ntwo", chunk_size=10) == ["one", "two"]

    def test_splits_on_sentence_boundary(self):
        chunks = prepare_streaming_chunks("Aaa bbb. Ccc ddd.", chunk_size=10)
        assert chunks == ["Aaa bbb.", "Ccc ddd."]

    def test_splits_on_last_space(self):
        assert prepare_streaming_chunks("aaaa bbbb cccc", chunk_size=10) == ["aaaa bbbb", "cccc"]

    def test_hard_split_without_spaces(self):
        assert prepare_streaming_chunks("x" * 25, chunk_size=10) == ["x" * 10, "x" * 10, "x" * 5]

    def test_every_chunk_fits(self):
        text = "word " * 60
        assert all(len(chunk) <= 20 for chunk in prepare_streaming_chunks(text, chunk_size=20))

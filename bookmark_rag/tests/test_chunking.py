from __future__ import annotations

"""Chunking behavior tests."""

import re

from bookmark_rag.loaders.chunking import chunk_text, normalize_text


def _non_whitespace(text: str) -> str:
    return re.sub(r"\s+", "", text)


def test_chunk_text_packs_sentences_under_soft_cap() -> None:
    """Ensure sentences are grouped and never split."""
    sentence = "Rust uses ownership to manage memory safely."
    text = " ".join([sentence] * 30)

    chunks = chunk_text(text, soft_cap=200)

    assert len(chunks) > 1
    for chunk in chunks:
        assert len(chunk) <= 200
        assert chunk.endswith(".")
    assert _non_whitespace("".join(chunks)) == _non_whitespace(text)


def test_chunk_text_without_sentence_boundary_returns_whole_text() -> None:
    text = "a" * 1200

    chunks = chunk_text(text, soft_cap=500)

    assert chunks == [text]


def test_chunk_text_keeps_oversized_sentence_intact() -> None:
    long_sentence = "word " * 150 + "end."
    text = f"Short one. {long_sentence} Tail sentence!"

    chunks = chunk_text(text, soft_cap=100)

    assert chunks[0] == "Short one."
    assert chunks[1] == normalize_text(long_sentence)
    assert chunks[-1] == "Tail sentence!"


def test_chunk_text_reproduces_all_content() -> None:
    text = "Title: Notes\nLink: https://example.com/a\n\nContent:\nFirst point? Second point!  Third.\tFourth"

    chunks = chunk_text(text, soft_cap=20)

    assert chunks
    assert _non_whitespace("".join(chunks)) == _non_whitespace(text)


def test_chunk_text_empty_input() -> None:
    assert chunk_text("") == []
    assert chunk_text("   \n\t ") == []

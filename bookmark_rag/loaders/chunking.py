from __future__ import annotations

"""Text normalization and sentence-aligned chunking."""

import re

_WHITESPACE_RE = re.compile(r"\s+")
_SENTENCE_BOUNDARY_RE = re.compile(r"(?<=[.!?])\s+")

DEFAULT_CHUNK_SIZE = 500


def normalize_text(text: str) -> str:
    """Normalize whitespace and line endings in text."""
    return _WHITESPACE_RE.sub(" ", text.replace("\r\n", "\n")).strip()


def split_sentences(text: str) -> list[str]:
    """Split text after terminal punctuation followed by whitespace."""
    return [sentence for sentence in _SENTENCE_BOUNDARY_RE.split(text) if sentence]


def chunk_text(text: str, soft_cap: int = DEFAULT_CHUNK_SIZE) -> list[str]:
    """Greedily pack whole sentences into chunks of roughly ``soft_cap`` chars.

    A chunk only exceeds ``soft_cap`` when a single sentence is longer than
    the cap; sentences are never cut.
    """
    cleaned = normalize_text(text)
    if not cleaned:
        return []

    chunks: list[str] = []
    current = ""
    for sentence in split_sentences(cleaned):
        if current and len(current) + 1 + len(sentence) > soft_cap:
            chunks.append(current)
            current = sentence
        else:
            current = f"{current} {sentence}" if current else sentence
    if current:
        chunks.append(current)
    return chunks or [cleaned]

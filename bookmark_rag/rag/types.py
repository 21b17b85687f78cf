from __future__ import annotations

"""Core data types for bookmarks, chunks and retrieval."""

from dataclasses import dataclass, field
from enum import Enum
from typing import Any

EMBEDDING_DIMENSION = 384
SIMILARITY_METRIC = "cosine"


def record_id(content_id: str, chunk_index: int) -> str:
    """Return the deterministic vector record id for a chunk."""
    return f"{content_id}-chunk-{chunk_index}"


@dataclass(frozen=True)
class SourceDocument:
    """Bookmark as handed over by the document store at ingestion time."""
    user_id: str
    content_id: str
    title: str
    link: str
    text: str | None = None


@dataclass(frozen=True)
class EmbeddedChunk:
    """Chunk text paired with its embedding."""
    text: str
    embedding: list[float]


@dataclass(frozen=True)
class VectorRecord:
    """Persisted unit in the vector index."""
    id: str
    vector: list[float]
    metadata: dict[str, Any] = field(default_factory=dict)


@dataclass(frozen=True)
class VectorMatch:
    """Raw match returned by a vector backend."""
    id: str
    score: float
    metadata: dict[str, Any]


@dataclass(frozen=True)
class SearchHit:
    """Search result with similarity score."""
    record_id: str
    score: float
    content_id: str
    text: str
    chunk_index: int


@dataclass(frozen=True)
class ChatAnswer:
    """Answer with the sources it was generated from."""
    answer: str
    sources: list[SearchHit]
    title: str


class IndexStatus(str, Enum):
    INDEXED = "indexed"
    FALLBACK = "fallback"
    FAILED = "failed"


@dataclass(frozen=True)
class IndexResult:
    """Outcome of indexing one bookmark."""
    content_id: str
    status: IndexStatus
    chunk_count: int
    content_chars: int

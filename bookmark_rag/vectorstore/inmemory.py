from __future__ import annotations

"""In-memory vector store for local testing and single-process use."""

import math
import threading
from dataclasses import dataclass, field
from typing import Any, Iterable

from bookmark_rag.rag.errors import EmbeddingConfigError
from bookmark_rag.rag.types import VectorMatch, VectorRecord


@dataclass
class InMemoryVectorStore:
    """Simple in-memory vector store with cosine similarity search."""
    records: dict[str, VectorRecord] = field(default_factory=dict)
    dimension: int | None = None
    metric: str = "cosine"
    _lock: threading.Lock = field(default_factory=threading.Lock, init=False, repr=False)

    def ensure_index(self, dimension: int, metric: str) -> None:
        """Fix the index dimension on first call; reject a different one later."""
        if metric.lower() != "cosine":
            raise EmbeddingConfigError(f"Unsupported metric for in-memory store: {metric}")
        if self.dimension is not None and self.dimension != dimension:
            raise EmbeddingConfigError(
                f"Vector index dimension mismatch: {self.dimension} (index) vs {dimension}"
            )
        self.dimension = dimension
        self.metric = metric.lower()

    def upsert(self, records: Iterable[VectorRecord]) -> int:
        """Insert or overwrite records by id."""
        written = 0
        with self._lock:
            for record in records:
                if self.dimension is not None and len(record.vector) != self.dimension:
                    raise EmbeddingConfigError(
                        f"Record {record.id} has dimension {len(record.vector)}, "
                        f"index expects {self.dimension}"
                    )
                self.records[record.id] = record
                written += 1
        return written

    def query(
        self,
        vector: list[float],
        top_k: int,
        filter: dict[str, Any] | None = None,
    ) -> list[VectorMatch]:
        """Return the ``top_k`` closest records matching every filter field."""
        if top_k <= 0:
            return []
        with self._lock:
            candidates = list(self.records.values())
        scored = [
            VectorMatch(
                id=record.id,
                score=self._cosine_similarity(vector, record.vector),
                metadata=dict(record.metadata),
            )
            for record in candidates
            if self._matches_filter(record.metadata, filter)
        ]
        scored.sort(key=lambda item: item.score, reverse=True)
        return scored[:top_k]

    def delete_many(self, filter: dict[str, Any]) -> int:
        """Delete records matching every filter field."""
        if not filter:
            return 0
        with self._lock:
            doomed = [
                record_id
                for record_id, record in self.records.items()
                if self._matches_filter(record.metadata, filter)
            ]
            for record_id in doomed:
                del self.records[record_id]
        return len(doomed)

    def _cosine_similarity(self, a: list[float], b: list[float]) -> float:
        """Compute cosine similarity between two vectors."""
        dot = sum(x * y for x, y in zip(a, b))
        norm_a = math.sqrt(sum(x * x for x in a))
        norm_b = math.sqrt(sum(y * y for y in b))
        if norm_a == 0.0 or norm_b == 0.0:
            return 0.0
        return dot / (norm_a * norm_b)

    def _matches_filter(self, metadata: dict[str, Any], filter: dict[str, Any] | None) -> bool:
        """Check metadata equality against every filter field."""
        if not filter:
            return True
        return all(metadata.get(key) == value for key, value in filter.items())

    def stats(self) -> dict[str, int | str]:
        """Return basic stats for the vector store."""
        return {
            "backend": "memory",
            "document_count": len(self.records),
            "embedding_dimension": self.dimension or 0,
        }

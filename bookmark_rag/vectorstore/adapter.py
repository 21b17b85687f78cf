from __future__ import annotations

"""User-scoped vector index adapter over a pluggable backend."""

import asyncio
import logging
from dataclasses import dataclass
from typing import Any, Iterable, Protocol

from bookmark_rag.rag.errors import ExternalServiceError
from bookmark_rag.rag.types import (
    EMBEDDING_DIMENSION,
    SIMILARITY_METRIC,
    EmbeddedChunk,
    SearchHit,
    VectorMatch,
    VectorRecord,
    record_id,
)

logger = logging.getLogger(__name__)


class VectorBackend(Protocol):
    """Wire contract every vector store implements."""

    def ensure_index(self, dimension: int, metric: str) -> None:
        raise NotImplementedError

    def upsert(self, records: Iterable[VectorRecord]) -> int:
        raise NotImplementedError

    def query(
        self, vector: list[float], top_k: int, filter: dict[str, Any] | None = None
    ) -> list[VectorMatch]:
        raise NotImplementedError

    def delete_many(self, filter: dict[str, Any]) -> int:
        raise NotImplementedError

    def stats(self) -> dict[str, int | str]:
        raise NotImplementedError


@dataclass
class VectorIndexAdapter:
    """Translate chunks and hits to backend records, scoped by user and document."""
    backend: VectorBackend
    dimension: int = EMBEDDING_DIMENSION
    metric: str = SIMILARITY_METRIC

    async def ensure_ready(self) -> None:
        """Create the backing index if it does not exist. Safe to repeat."""
        try:
            await asyncio.to_thread(self.backend.ensure_index, self.dimension, self.metric)
        except Exception as exc:
            raise ExternalServiceError(
                f"Failed to initialize vector index: {type(exc).__name__}"
            ) from exc
        logger.info(
            "vector_index_ready",
            extra={"dimension": self.dimension, "metric": self.metric},
        )

    async def upsert(self, user_id: str, content_id: str, chunks: list[EmbeddedChunk]) -> int:
        """Write one record per chunk under ``<content_id>-chunk-<index>``."""
        records = [
            VectorRecord(
                id=record_id(content_id, idx),
                vector=chunk.embedding,
                metadata={
                    "user_id": user_id,
                    "content_id": content_id,
                    "text": chunk.text,
                    "chunk_index": idx,
                },
            )
            for idx, chunk in enumerate(chunks)
        ]
        try:
            written = await asyncio.to_thread(self.backend.upsert, records)
        except Exception as exc:
            raise ExternalServiceError("Failed to upsert chunks to vector index") from exc
        logger.info("chunks_upserted", extra={"content_id": content_id, "count": written})
        return written

    async def query(self, user_id: str, vector: list[float], top_k: int) -> list[SearchHit]:
        """Return up to ``top_k`` of the user's hits, best first."""
        try:
            matches = await asyncio.to_thread(
                self.backend.query, vector, top_k, {"user_id": user_id}
            )
        except Exception as exc:
            raise ExternalServiceError("Failed to search vector index") from exc
        hits: list[SearchHit] = []
        for match in matches:
            metadata = match.metadata
            if metadata.get("user_id") != user_id:
                logger.warning("foreign_record_dropped", extra={"record_id": match.id})
                continue
            hits.append(
                SearchHit(
                    record_id=match.id,
                    score=float(match.score),
                    content_id=str(metadata.get("content_id", "")),
                    text=str(metadata.get("text", "")),
                    chunk_index=int(metadata.get("chunk_index", 0)),
                )
            )
        hits.sort(key=lambda hit: hit.score, reverse=True)
        return hits[:top_k]

    async def delete(self, content_id: str) -> int:
        """Remove every record of a document; a missing document is a no-op."""
        try:
            removed = await asyncio.to_thread(
                self.backend.delete_many, {"content_id": content_id}
            )
        except Exception as exc:
            raise ExternalServiceError("Failed to delete chunks from vector index") from exc
        logger.info("chunks_deleted", extra={"content_id": content_id, "count": removed})
        return removed

    def stats(self) -> dict[str, int | str]:
        return self.backend.stats()

from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass
from typing import Protocol

from bookmark_rag.loaders.chunking import DEFAULT_CHUNK_SIZE, chunk_text
from bookmark_rag.loaders.web import MIN_CONTENT_CHARS, create_rich_content
from bookmark_rag.rag.answerer import AnswerGenerator
from bookmark_rag.rag.embeddings import Embedder
from bookmark_rag.rag.errors import (
    EmbeddingError,
    ExternalServiceError,
    IndexingError,
    RAGError,
    RAGPipelineError,
)
from bookmark_rag.rag.guardrails import MAX_QUESTION_CHARS, NO_CONTENT_ANSWER, check_question
from bookmark_rag.rag.types import (
    ChatAnswer,
    EmbeddedChunk,
    IndexResult,
    IndexStatus,
    SearchHit,
    SourceDocument,
)
from bookmark_rag.vectorstore.adapter import VectorIndexAdapter

logger = logging.getLogger(__name__)


class ContentFetcher(Protocol):
    async def fetch(self, url: str, user_id: str | None = None) -> str:
        raise NotImplementedError


def count_sources(hits: list[SearchHit]) -> int:
    return len({hit.content_id for hit in hits})


def select_sources(hits: list[SearchHit], limit: int) -> list[SearchHit]:
    """Keep the best scoring hit of each document, at most ``limit`` documents."""
    selected: dict[str, SearchHit] = {}
    for hit in sorted(hits, key=lambda item: item.score, reverse=True):
        if hit.content_id not in selected:
            selected[hit.content_id] = hit
        if len(selected) >= limit:
            break
    return list(selected.values())


@dataclass
class RAGService:
    """Ingestion and question answering over a user's saved bookmarks."""
    embedder: Embedder
    vector_index: VectorIndexAdapter
    generator: AnswerGenerator
    fetcher: ContentFetcher | None = None
    chunk_size: int = DEFAULT_CHUNK_SIZE
    initial_top_k: int = 10
    expanded_top_k: int = 20
    max_sources: int = 5
    max_question_chars: int = MAX_QUESTION_CHARS
    min_content_chars: int = MIN_CONTENT_CHARS
    ready: bool = False

    async def ensure_ready(self) -> None:
        """Prepare the vector index; on failure the service stays not ready."""
        self.ready = False
        await self.vector_index.ensure_ready()
        self.ready = True

    async def index(
        self,
        user_id: str,
        content_id: str,
        title: str,
        link: str,
        fallback_text: str | None = None,
    ) -> IndexResult:
        """Fetch, chunk, embed and upsert one bookmark.

        Raises IndexingError on any failure, including blocked URLs and rate
        limiting. Nothing is rolled back here; the caller owns compensation
        for the bookmark record it created.
        """
        logger.info("indexing_started", extra={"content_id": content_id})
        try:
            body = ""
            if link and self.fetcher is not None:
                body = await self.fetcher.fetch(link, user_id)
            status = IndexStatus.INDEXED
            if len(body) < self.min_content_chars:
                body = (fallback_text or "").strip()
                status = IndexStatus.FALLBACK

            full_text = create_rich_content(title, link, body)
            chunks = chunk_text(full_text, self.chunk_size)
            embeddings = await self.embedder.embed_many(chunks)
            if not embeddings or len(embeddings) != len(chunks):
                raise EmbeddingError("Failed to generate embeddings for all chunks")

            await self.vector_index.upsert(
                user_id,
                content_id,
                [
                    EmbeddedChunk(text=text, embedding=embedding)
                    for text, embedding in zip(chunks, embeddings)
                ],
            )
        except RAGError as exc:
            logger.error(
                "indexing_failed",
                extra={"content_id": content_id, "error": type(exc).__name__},
            )
            raise IndexingError("Failed to index content for RAG") from exc
        except Exception as exc:
            logger.exception(
                "indexing_failed_unexpectedly",
                extra={"content_id": content_id, "error": type(exc).__name__},
            )
            raise IndexingError("Failed to index content for RAG") from exc

        content_chars = len(body) if len(body) >= self.min_content_chars else 0
        logger.info(
            "indexing_complete",
            extra={
                "content_id": content_id,
                "status": status.value,
                "chunks": len(chunks),
                "content_chars": content_chars,
            },
        )
        return IndexResult(
            content_id=content_id,
            status=status,
            chunk_count=len(chunks),
            content_chars=content_chars,
        )

    async def index_document(self, document: SourceDocument) -> IndexResult:
        """Index a bookmark record, falling back to its stored text."""
        return await self.index(
            document.user_id,
            document.content_id,
            document.title,
            document.link,
            document.text,
        )

    async def unindex(self, content_id: str) -> int:
        """Remove a bookmark's chunks. Raises ExternalServiceError on failure."""
        try:
            return await self.vector_index.delete(content_id)
        except ExternalServiceError:
            logger.error("unindex_failed", extra={"content_id": content_id})
            raise

    async def retrieve(self, user_id: str, vector: list[float]) -> list[SearchHit]:
        """Query the user's chunks, widening once when too few documents show up.

        The wider batch replaces the first one rather than being merged with it.
        """
        hits = await self.vector_index.query(user_id, vector, self.initial_top_k)
        if count_sources(hits) < self.max_sources:
            logger.info(
                "retrieval_expanded",
                extra={"sources": count_sources(hits), "top_k": self.expanded_top_k},
            )
            hits = await self.vector_index.query(user_id, vector, self.expanded_top_k)
        logger.info(
            "retrieval_complete",
            extra={"results": len(hits), "sources": count_sources(hits)},
        )
        return hits

    async def answer(self, user_id: str, question: str) -> ChatAnswer:
        """Answer a question from the user's indexed bookmarks.

        Any stage failure raises RAGPipelineError; partial answers are never
        returned.
        """
        guardrail = check_question(question, self.max_question_chars)
        if not guardrail.allowed:
            raise RAGPipelineError(f"Invalid question: {guardrail.reason}")
        question = question.strip()

        try:
            vector = await self.embedder.embed_one(question)
            hits = await self.retrieve(user_id, vector)
            if not hits:
                title = await self.generator.generate_title(question)
                return ChatAnswer(answer=NO_CONTENT_ANSWER, sources=[], title=title)

            sources = select_sources(hits, self.max_sources)
            answer, title = await asyncio.gather(
                self.generator.generate_answer(question, sources),
                self.generator.generate_title(question),
            )
        except RAGError as exc:
            logger.error(
                "rag_pipeline_failed",
                extra={"error": type(exc).__name__, "question_length": len(question)},
            )
            raise RAGPipelineError("Failed to process question") from exc
        except Exception as exc:
            logger.exception(
                "rag_pipeline_failed_unexpectedly",
                extra={"error": type(exc).__name__, "question_length": len(question)},
            )
            raise RAGPipelineError("Failed to process question") from exc

        logger.info("answer_complete", extra={"sources": len(sources)})
        return ChatAnswer(answer=answer, sources=sources, title=title)

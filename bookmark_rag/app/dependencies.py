from __future__ import annotations

from functools import lru_cache

from bookmark_rag.app.settings import settings
from bookmark_rag.loaders.rate_limit import RateLimiter
from bookmark_rag.loaders.strategies import default_strategies
from bookmark_rag.loaders.web import SafeContentFetcher
from bookmark_rag.rag.answerer import AnswerGenerator, ExtractiveAnswerGenerator
from bookmark_rag.rag.embeddings import (
    Embedder,
    EmbeddingConfigReport,
    EmbeddingProvider,
    HashEmbedder,
    SentenceTransformerEmbedder,
    build_embedding_config_report,
)
from bookmark_rag.rag.errors import EmbeddingConfigError
from bookmark_rag.rag.llm import LLMAnswerGenerator, build_generation_backend
from bookmark_rag.rag.pipeline import RAGService
from bookmark_rag.rag.types import EMBEDDING_DIMENSION
from bookmark_rag.vectorstore.adapter import VectorBackend, VectorIndexAdapter
from bookmark_rag.vectorstore.inmemory import InMemoryVectorStore
from bookmark_rag.vectorstore.milvus import MilvusConfig, MilvusVectorStore


@lru_cache
def get_service() -> RAGService:
    return RAGService(
        embedder=Embedder(provider=build_embedder()),
        vector_index=VectorIndexAdapter(backend=build_vectorstore()),
        generator=build_generator(),
        fetcher=build_fetcher(),
        chunk_size=settings.chunk_size,
        max_question_chars=settings.max_question_chars,
    )


def reset_service_cache() -> None:
    get_service.cache_clear()


def get_embedding_config_report() -> EmbeddingConfigReport:
    provider = settings.embedding_provider
    model = None
    if provider.lower().strip() not in {"", "hash"}:
        model = settings.embedding_model
    return build_embedding_config_report(provider, model, settings.embedding_dimension)


def build_embedder() -> EmbeddingProvider:
    if settings.embedding_dimension != EMBEDDING_DIMENSION:
        raise EmbeddingConfigError(
            f"EMBEDDING_DIMENSION must be {EMBEDDING_DIMENSION}, got {settings.embedding_dimension}"
        )
    provider = settings.embedding_provider.lower().strip()
    if provider in {"", "hash"}:
        return HashEmbedder(dimension=EMBEDDING_DIMENSION)
    if provider in {"sentence-transformers", "sentence_transformers", "local"}:
        return SentenceTransformerEmbedder(
            model=settings.embedding_model,
            dimension=EMBEDDING_DIMENSION,
            device=settings.embedding_device,
        )
    raise EmbeddingConfigError(f"Unsupported embedding provider: {provider}")


def build_vectorstore() -> VectorBackend:
    backend = settings.vectorstore_backend.lower().strip()
    if backend == "milvus":
        config = MilvusConfig(
            uri=settings.milvus_uri,
            token=settings.milvus_token,
            collection=settings.milvus_collection,
            consistency=settings.milvus_consistency,
            index_type=settings.milvus_index_type,
            nlist=settings.milvus_nlist,
            nprobe=settings.milvus_nprobe,
        )
        return MilvusVectorStore(config=config)
    return InMemoryVectorStore()


def build_generator() -> AnswerGenerator:
    if settings.answerer_mode == "extractive":
        return ExtractiveAnswerGenerator()
    backend = build_generation_backend(
        settings.llm_provider,
        ollama_base_url=settings.ollama_base_url,
        ollama_model=settings.ollama_model,
        openai_api_key=settings.openai_api_key,
        openai_base_url=settings.openai_base_url,
        openai_model=settings.openai_chat_model,
        timeout=settings.llm_timeout,
        max_tokens=settings.llm_max_tokens,
    )
    return LLMAnswerGenerator(backend=backend)


def build_fetcher() -> SafeContentFetcher:
    return SafeContentFetcher(
        rate_limiter=RateLimiter(
            max_requests=settings.rate_limit_requests,
            window_seconds=settings.rate_limit_window,
        ),
        strategies=default_strategies(
            twitter_bearer_token=settings.twitter_bearer_token,
            max_chars=settings.fetch_max_chars,
        ),
        allowed_domains=settings.allowed_content_domains,
        resolve_dns=settings.fetch_resolve_dns,
        timeout=settings.fetch_timeout,
        max_redirects=settings.fetch_max_redirects,
        max_attempts=settings.fetch_max_attempts,
        base_delay=settings.fetch_base_delay,
        max_bytes=settings.fetch_max_bytes,
    )

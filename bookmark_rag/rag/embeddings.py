from __future__ import annotations

"""Embedding providers, the async batch embedder and configuration validation."""

import asyncio
import hashlib
import logging
import math
import re
import threading
from dataclasses import dataclass, field
from typing import Any, Protocol

from bookmark_rag.rag.errors import EmbeddingConfigError, EmbeddingError
from bookmark_rag.rag.types import EMBEDDING_DIMENSION

logger = logging.getLogger(__name__)

_TOKEN_RE = re.compile(r"[a-z0-9]+")

DEFAULT_SENTENCE_MODEL = "sentence-transformers/all-MiniLM-L6-v2"

_KNOWN_MODEL_DIMENSIONS = {
    "all-minilm-l6-v2": 384,
    "all-minilm-l12-v2": 384,
    "paraphrase-multilingual-minilm-l12-v2": 384,
    "all-mpnet-base-v2": 768,
    "multi-qa-mpnet-base-cos-v1": 768,
}


class EmbeddingProvider(Protocol):
    """Protocol for embedding providers."""
    dimension: int

    def embed(self, text: str) -> list[float]:
        """Return an embedding vector for the provided text."""
        raise NotImplementedError


def validate_vector(vector: list[float], dimension: int) -> list[float]:
    """Validate and normalize embedding vectors."""
    if len(vector) != dimension:
        raise EmbeddingError(
            f"Embedding dimension mismatch: expected {dimension}, got {len(vector)}"
        )
    cleaned: list[float] = []
    for value in vector:
        if not isinstance(value, (int, float)):
            raise EmbeddingError("Embedding contains a non-numeric value")
        if not math.isfinite(value):
            raise EmbeddingError("Embedding contains a non-finite value")
        cleaned.append(float(value))
    return cleaned


@dataclass
class HashEmbedder:
    """Deterministic hash-based embedder for testing or offline use."""
    dimension: int = EMBEDDING_DIMENSION

    def embed(self, text: str) -> list[float]:
        """Embed text using token hashing and L2 normalization."""
        tokens = _TOKEN_RE.findall(text.lower())
        if not tokens:
            return validate_vector([0.0] * self.dimension, self.dimension)
        vector = [0.0] * self.dimension
        for token in tokens:
            digest = hashlib.sha256(token.encode("utf-8")).digest()
            idx = int.from_bytes(digest[:4], "big") % self.dimension
            vector[idx] += 1.0
        return validate_vector(self._l2_normalize(vector), self.dimension)

    def _l2_normalize(self, vector: list[float]) -> list[float]:
        """Normalize vector magnitude to 1.0."""
        norm = math.sqrt(sum(value * value for value in vector))
        if norm == 0.0:
            return vector
        return [value / norm for value in vector]


def resolve_sentence_model_dimension(model: str) -> int | None:
    """Return expected dimension for a sentence-transformers model."""
    name = model.strip().lower().rsplit("/", 1)[-1]
    return _KNOWN_MODEL_DIMENSIONS.get(name)


@dataclass
class SentenceTransformerEmbedder:
    """Local sentence-transformers embedder with a lazily loaded model."""
    model: str = DEFAULT_SENTENCE_MODEL
    dimension: int = EMBEDDING_DIMENSION
    device: str | None = None
    _model: Any = field(default=None, init=False, repr=False)
    _lock: threading.Lock = field(default_factory=threading.Lock, init=False, repr=False)

    def __post_init__(self) -> None:
        """Reject models whose dimension does not match the index."""
        if not self.model:
            raise EmbeddingConfigError("EMBEDDING_MODEL is required for sentence-transformers")
        expected = resolve_sentence_model_dimension(self.model)
        if expected is not None and expected != self.dimension:
            raise EmbeddingConfigError(
                f"Model {self.model} produces {expected}-dimension vectors, "
                f"index expects {self.dimension}"
            )

    def _load(self) -> Any:
        """Load the model once; later calls reuse the handle."""
        if self._model is not None:
            return self._model
        with self._lock:
            if self._model is None:
                logger.info("embedding_model_loading", extra={"model": self.model})
                try:
                    from sentence_transformers import SentenceTransformer

                    self._model = SentenceTransformer(self.model, device=self.device)
                except Exception as exc:
                    raise EmbeddingError(
                        f"Failed to load embedding model {self.model}"
                    ) from exc
                logger.info("embedding_model_loaded", extra={"model": self.model})
        return self._model

    def embed(self, text: str) -> list[float]:
        """Embed text with mean pooling and L2 normalization."""
        model = self._load()
        try:
            vector = model.encode(text, normalize_embeddings=True)
        except Exception as exc:
            raise EmbeddingError("Failed to create embedding") from exc
        return validate_vector([float(value) for value in vector], self.dimension)


@dataclass
class Embedder:
    """Async front for an embedding provider, owned by the service."""
    provider: EmbeddingProvider

    @property
    def dimension(self) -> int:
        return self.provider.dimension

    async def embed_one(self, text: str) -> list[float]:
        """Embed a single text off the event loop."""
        try:
            vector = await asyncio.to_thread(self.provider.embed, text)
        except EmbeddingError:
            raise
        except Exception as exc:
            raise EmbeddingError("Failed to create embedding") from exc
        return validate_vector(vector, self.dimension)

    async def embed_many(self, texts: list[str]) -> list[list[float]]:
        """Embed all texts concurrently and return vectors in input order."""
        if not texts:
            return []
        vectors = await asyncio.gather(*(self.embed_one(text) for text in texts))
        if len(vectors) != len(texts):
            raise EmbeddingError(
                f"Embedding count mismatch: {len(texts)} texts, {len(vectors)} vectors"
            )
        logger.debug("embedding_batch_complete", extra={"count": len(vectors)})
        return list(vectors)


@dataclass(frozen=True)
class EmbeddingConfigReport:
    """Validation report for embedding configuration."""
    provider: str
    model: str | None
    configured_dimension: int
    expected_dimension: int | None
    ok: bool
    status: str
    detail: str | None = None
    action: str | None = None


def build_embedding_config_report(
    provider: str, model: str | None, dimension: int
) -> EmbeddingConfigReport:
    """Build a validation report for embedding settings."""
    normalized = provider.lower().strip()

    if normalized in {"", "hash"}:
        if dimension != EMBEDDING_DIMENSION:
            return EmbeddingConfigReport(
                provider="hash",
                model=None,
                configured_dimension=dimension,
                expected_dimension=EMBEDDING_DIMENSION,
                ok=False,
                status="error",
                detail="EMBEDDING_DIMENSION does not match the vector index dimension.",
                action=f"Set EMBEDDING_DIMENSION to {EMBEDDING_DIMENSION}.",
            )
        return EmbeddingConfigReport(
            provider="hash",
            model=None,
            configured_dimension=dimension,
            expected_dimension=EMBEDDING_DIMENSION,
            ok=True,
            status="ok",
        )

    if normalized in {"sentence-transformers", "sentence_transformers", "local"}:
        if not model:
            return EmbeddingConfigReport(
                provider="sentence-transformers",
                model=None,
                configured_dimension=dimension,
                expected_dimension=None,
                ok=False,
                status="error",
                detail="EMBEDDING_MODEL is required for sentence-transformers embeddings.",
                action=f"Set EMBEDDING_MODEL to {DEFAULT_SENTENCE_MODEL}.",
            )
        expected = resolve_sentence_model_dimension(model)
        if dimension != EMBEDDING_DIMENSION or (
            expected is not None and expected != EMBEDDING_DIMENSION
        ):
            return EmbeddingConfigReport(
                provider="sentence-transformers",
                model=model,
                configured_dimension=dimension,
                expected_dimension=expected,
                ok=False,
                status="error",
                detail="Embedding model or EMBEDDING_DIMENSION does not match the vector index.",
                action=f"Use a {EMBEDDING_DIMENSION}-dimension model such as {DEFAULT_SENTENCE_MODEL}.",
            )
        if expected is None:
            return EmbeddingConfigReport(
                provider="sentence-transformers",
                model=model,
                configured_dimension=dimension,
                expected_dimension=None,
                ok=True,
                status="warning",
                detail="Model dimension cannot be auto-validated. Confirm it produces 384-dimension vectors.",
            )
        return EmbeddingConfigReport(
            provider="sentence-transformers",
            model=model,
            configured_dimension=dimension,
            expected_dimension=expected,
            ok=True,
            status="ok",
        )

    return EmbeddingConfigReport(
        provider=normalized,
        model=model,
        configured_dimension=dimension,
        expected_dimension=None,
        ok=False,
        status="error",
        detail="Unsupported embedding provider.",
        action="Set EMBEDDING_PROVIDER to hash or sentence-transformers.",
    )

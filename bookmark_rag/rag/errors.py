from __future__ import annotations

"""Error taxonomy shared by the fetch, embed, index and answer stages."""


class RAGError(RuntimeError):
    """Base class for bookmark RAG failures."""
    pass


class BlockedURLError(RAGError):
    """Raised when a URL targets a private network or falls outside the allow-list."""
    pass


class RateLimitError(RAGError):
    """Raised when a user exceeds the content fetch quota."""

    def __init__(self, message: str, retry_after: float = 0.0) -> None:
        super().__init__(message)
        self.retry_after = retry_after


class TransientIOError(RAGError):
    """Raised for retryable fetch failures (network errors, 5xx, 429)."""

    def __init__(self, message: str, status_code: int | None = None) -> None:
        super().__init__(message)
        self.status_code = status_code


class FatalIOError(RAGError):
    """Raised for non-retryable fetch failures or exhausted retries."""

    def __init__(self, message: str, status_code: int | None = None) -> None:
        super().__init__(message)
        self.status_code = status_code


class EmbeddingError(RAGError):
    """Raised when embeddings fail or are invalid."""
    pass


class EmbeddingConfigError(RAGError):
    """Raised when embedding configuration is invalid."""
    pass


class IndexingError(RAGError):
    """Raised when any stage of bookmark ingestion fails."""
    pass


class RAGPipelineError(RAGError):
    """Raised when any stage of question answering fails."""
    pass


class ExternalServiceError(RAGError):
    """Raised when the vector store or generation backend is unavailable."""
    pass


class LLMError(ExternalServiceError):
    """Raised when LLM requests fail or responses are invalid."""
    pass

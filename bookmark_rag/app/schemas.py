from __future__ import annotations

from typing import Literal

from pydantic import BaseModel, Field, field_validator


class ChatRequest(BaseModel):
    question: str = Field(min_length=1, max_length=1000)

    @field_validator("question")
    @classmethod
    def _strip_question(cls, value: str) -> str:
        cleaned = value.strip()
        if not cleaned:
            raise ValueError("Question cannot be empty")
        return cleaned


class SourceItem(BaseModel):
    content_id: str
    text: str
    score: float


class ChatResponse(BaseModel):
    answer: str
    sources: list[SourceItem]
    title: str
    request_id: str


class IndexRequest(BaseModel):
    content_id: str = Field(min_length=1, max_length=128)
    title: str = Field(min_length=1)
    link: str = ""
    text: str | None = None


class IndexResponse(BaseModel):
    content_id: str
    status: Literal["indexed", "fallback", "failed"]
    chunk_count: int = 0
    content_chars: int = 0


class UnindexResponse(BaseModel):
    content_id: str
    deleted: int


class StatsResponse(BaseModel):
    backend: str
    document_count: int
    embedding_dimension: int
    collection: str | None = None
    ready: bool


class EmbeddingHealthResponse(BaseModel):
    provider: str
    model: str | None
    configured_dimension: int
    expected_dimension: int | None
    ok: bool
    status: str
    detail: str | None = None
    action: str | None = None


class HealthResponse(BaseModel):
    status: Literal["ok", "degraded"]
    rag_ready: bool

from __future__ import annotations

"""FastAPI application exposing bookmark indexing and question answering."""

import logging
import uuid
from contextlib import asynccontextmanager

from fastapi import Depends, FastAPI, HTTPException, Request

from bookmark_rag.app.dependencies import get_embedding_config_report, get_service
from bookmark_rag.app.metrics import (
    metrics_middleware,
    metrics_response,
    record_chat_outcome,
    record_index_outcome,
)
from bookmark_rag.app.schemas import (
    ChatRequest,
    ChatResponse,
    EmbeddingHealthResponse,
    HealthResponse,
    IndexRequest,
    IndexResponse,
    SourceItem,
    StatsResponse,
    UnindexResponse,
)
from bookmark_rag.app.security import AuthContext, require_user
from bookmark_rag.app.settings import settings
from bookmark_rag.rag.errors import ExternalServiceError, IndexingError, RAGPipelineError
from bookmark_rag.rag.pipeline import RAGService
from bookmark_rag.rag.types import IndexStatus, SourceDocument

logger = logging.getLogger(__name__)


def _configure_logging() -> None:
    """Configure root logging using environment settings."""
    level_name = settings.log_level.strip().upper()
    level = getattr(logging, level_name, logging.INFO)
    root_logger = logging.getLogger()
    if not root_logger.handlers:
        logging.basicConfig(
            level=level,
            format="%(asctime)s %(levelname)s %(name)s %(message)s",
        )
    logger.setLevel(level)


_configure_logging()


@asynccontextmanager
async def lifespan(_: FastAPI):
    try:
        await get_service().ensure_ready()
    except ExternalServiceError:
        logger.exception("vector_index_unavailable_at_startup")
    yield


app = FastAPI(title="Bookmark RAG", version="0.1.0", lifespan=lifespan)


def _innermost(exc: BaseException) -> BaseException:
    while exc.__cause__ is not None:
        exc = exc.__cause__
    return exc


def _root_cause_name(exc: BaseException) -> str:
    """Return the innermost chained exception type name for logs."""
    return type(_innermost(exc)).__name__


async def _ready_service() -> RAGService:
    """Return the service, retrying index setup if startup left it degraded."""
    service = get_service()
    if service.ready:
        return service
    try:
        await service.ensure_ready()
    except ExternalServiceError as exc:
        logger.warning("rag_degraded", extra={"error": _root_cause_name(exc)})
        raise HTTPException(status_code=503, detail="Question answering is unavailable") from exc
    return service


@app.middleware("http")
async def add_request_id(request: Request, call_next):
    request_id = request.headers.get("x-request-id") or str(uuid.uuid4())
    request.state.request_id = request_id
    response = await call_next(request)
    response.headers["x-request-id"] = request_id
    return response


@app.middleware("http")
async def record_metrics(request: Request, call_next):
    return await metrics_middleware(request, call_next)


@app.get("/metrics")
async def metrics():
    return metrics_response()


@app.get("/health", response_model=HealthResponse)
async def health() -> HealthResponse:
    ready = get_service().ready
    return HealthResponse(status="ok" if ready else "degraded", rag_ready=ready)


@app.get("/stats", response_model=StatsResponse)
async def stats(auth: AuthContext = Depends(require_user)) -> StatsResponse:
    service = get_service()
    data = service.vector_index.stats()
    return StatsResponse(
        backend=str(data.get("backend", "unknown")),
        document_count=int(data.get("document_count", 0)),
        embedding_dimension=int(data.get("embedding_dimension", 0)),
        collection=data.get("collection"),
        ready=service.ready,
    )


@app.get("/stats/embedding", response_model=EmbeddingHealthResponse)
async def embedding_health(
    auth: AuthContext = Depends(require_user),
) -> EmbeddingHealthResponse:
    report = get_embedding_config_report()
    return EmbeddingHealthResponse(**report.__dict__)


@app.post("/chat", response_model=ChatResponse)
async def chat(
    payload: ChatRequest,
    request: Request,
    auth: AuthContext = Depends(require_user),
) -> ChatResponse:
    service = await _ready_service()
    request_id = request.state.request_id
    try:
        result = await service.answer(auth.user_id, payload.question)
    except RAGPipelineError as exc:
        record_chat_outcome("error")
        logger.error(
            "chat_failed",
            extra={"request_id": request_id, "error": _root_cause_name(exc)},
        )
        raise HTTPException(status_code=500, detail="Failed to process question") from exc
    record_chat_outcome("answered" if result.sources else "no_content")
    return ChatResponse(
        answer=result.answer,
        sources=[
            SourceItem(content_id=hit.content_id, text=hit.text, score=hit.score)
            for hit in result.sources
        ],
        title=result.title,
        request_id=request_id,
    )


@app.post("/index", response_model=IndexResponse)
async def index_bookmark(
    payload: IndexRequest,
    auth: AuthContext = Depends(require_user),
) -> IndexResponse:
    service = await _ready_service()
    try:
        result = await service.index_document(
            SourceDocument(
                user_id=auth.user_id,
                content_id=payload.content_id,
                title=payload.title,
                link=payload.link,
                text=payload.text or payload.title,
            )
        )
    except IndexingError as exc:
        record_index_outcome(IndexStatus.FAILED.value, cause=_innermost(exc))
        logger.error(
            "index_request_failed",
            extra={"content_id": payload.content_id, "error": _root_cause_name(exc)},
        )
        raise HTTPException(
            status_code=502,
            detail=IndexResponse(
                content_id=payload.content_id, status=IndexStatus.FAILED.value
            ).model_dump(),
        ) from exc
    record_index_outcome(result.status.value)
    return IndexResponse(
        content_id=result.content_id,
        status=result.status.value,
        chunk_count=result.chunk_count,
        content_chars=result.content_chars,
    )


@app.delete("/index/{content_id}", response_model=UnindexResponse)
async def unindex_bookmark(
    content_id: str,
    auth: AuthContext = Depends(require_user),
) -> UnindexResponse:
    service = await _ready_service()
    try:
        deleted = await service.unindex(content_id)
    except ExternalServiceError as exc:
        raise HTTPException(status_code=502, detail="Failed to remove content") from exc
    return UnindexResponse(content_id=content_id, deleted=deleted)

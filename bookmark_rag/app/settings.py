from __future__ import annotations

import json
import os
from dataclasses import dataclass

from bookmark_rag.loaders.url_guard import parse_allowed_domains

try:
    from dotenv import load_dotenv
except ImportError:  # pragma: no cover - optional in minimal setups
    load_dotenv = None

if load_dotenv is not None:
    load_dotenv()


def _env_bool(name: str, default: str) -> bool:
    return os.getenv(name, default).strip().lower() in {"1", "true", "yes"}


@dataclass(frozen=True)
class Settings:
    log_level: str = os.getenv("LOG_LEVEL", "INFO")
    vectorstore_backend: str = os.getenv("RAG_VECTORSTORE", "memory")
    embedding_provider: str = os.getenv("EMBEDDING_PROVIDER", "hash")
    embedding_model: str = os.getenv(
        "EMBEDDING_MODEL", "sentence-transformers/all-MiniLM-L6-v2"
    )
    embedding_device: str | None = os.getenv("EMBEDDING_DEVICE")
    embedding_dimension: int = int(os.getenv("EMBEDDING_DIMENSION", "384"))
    milvus_uri: str = os.getenv("MILVUS_URI", "http://localhost:19530")
    milvus_token: str | None = os.getenv("MILVUS_TOKEN")
    milvus_collection: str = os.getenv("MILVUS_COLLECTION", "bookmark_chunks")
    milvus_consistency: str = os.getenv("MILVUS_CONSISTENCY", "Strong")
    milvus_index_type: str = os.getenv("MILVUS_INDEX_TYPE", "HNSW")
    milvus_nlist: int = int(os.getenv("MILVUS_NLIST", "1024"))
    milvus_nprobe: int = int(os.getenv("MILVUS_NPROBE", "10"))
    chunk_size: int = int(os.getenv("RAG_CHUNK_SIZE", "500"))
    max_question_chars: int = int(os.getenv("RAG_MAX_QUESTION_CHARS", "1000"))
    fetch_timeout: float = float(os.getenv("RAG_FETCH_TIMEOUT", "10"))
    fetch_max_redirects: int = int(os.getenv("RAG_FETCH_MAX_REDIRECTS", "5"))
    fetch_max_attempts: int = int(os.getenv("RAG_FETCH_MAX_ATTEMPTS", "3"))
    fetch_base_delay: float = float(os.getenv("RAG_FETCH_BASE_DELAY", "1.0"))
    fetch_max_bytes: int = int(os.getenv("RAG_FETCH_MAX_BYTES", "5242880"))
    fetch_max_chars: int = int(os.getenv("RAG_FETCH_MAX_CHARS", "15000"))
    fetch_resolve_dns: bool = _env_bool("RAG_FETCH_RESOLVE_DNS", "true")
    allowed_content_domains_raw: str = os.getenv("ALLOWED_CONTENT_DOMAINS", "")
    twitter_bearer_token: str | None = os.getenv("TWITTER_BEARER_TOKEN")
    rate_limit_requests: int = int(os.getenv("RAG_RATE_LIMIT_REQUESTS", "10"))
    rate_limit_window: float = float(os.getenv("RAG_RATE_LIMIT_WINDOW", "60"))
    metrics_enabled: bool = _env_bool("RAG_METRICS_ENABLED", "true")
    api_key_map_raw: str = os.getenv("RAG_API_KEY_MAP", "")
    default_user_id: str = os.getenv("RAG_DEFAULT_USER_ID", "default")
    answerer_mode_raw: str = os.getenv("RAG_ANSWERER", "llm")
    llm_provider: str = os.getenv("RAG_LLM_PROVIDER", "ollama")
    llm_timeout: float = float(os.getenv("RAG_LLM_TIMEOUT", "15"))
    llm_max_tokens: int = int(os.getenv("RAG_LLM_MAX_TOKENS", "512"))
    ollama_base_url: str = os.getenv("OLLAMA_BASE_URL", "http://localhost:11434")
    ollama_model: str = os.getenv("OLLAMA_MODEL", "mistral")
    openai_api_key: str | None = os.getenv("OPENAI_API_KEY")
    openai_base_url: str = os.getenv("OPENAI_BASE_URL", "https://api.openai.com/v1")
    openai_chat_model: str | None = os.getenv("OPENAI_CHAT_MODEL")

    @property
    def allow_anonymous(self) -> bool:
        return _env_bool("RAG_ALLOW_ANONYMOUS", "false")

    @property
    def answerer_mode(self) -> str:
        return os.getenv("RAG_ANSWERER", self.answerer_mode_raw).strip().lower()

    @property
    def allowed_content_domains(self) -> tuple[str, ...]:
        return parse_allowed_domains(
            os.getenv("ALLOWED_CONTENT_DOMAINS", self.allowed_content_domains_raw)
        )

    @property
    def api_key_map(self) -> dict[str, str]:
        """Map API keys to the user ids they authenticate."""
        raw = os.getenv("RAG_API_KEY_MAP", self.api_key_map_raw).strip()
        if not raw:
            return {}
        try:
            data = json.loads(raw)
        except json.JSONDecodeError:
            return {}
        if not isinstance(data, dict):
            return {}
        result: dict[str, str] = {}
        for key, value in data.items():
            if isinstance(key, str) and isinstance(value, str) and value.strip():
                result[key] = value.strip()
            elif isinstance(key, str) and isinstance(value, dict):
                user_id = value.get("user_id")
                if isinstance(user_id, str) and user_id.strip():
                    result[key] = user_id.strip()
        return result


settings = Settings()

from __future__ import annotations

"""LLM generation backends and the prompt-driven answer generator."""

import logging
from dataclasses import dataclass
from typing import Protocol

import httpx

from bookmark_rag.rag.answerer import DEFAULT_TITLE, fallback_title
from bookmark_rag.rag.errors import ExternalServiceError, LLMError
from bookmark_rag.rag.types import SearchHit

logger = logging.getLogger(__name__)

ANSWER_TEMPERATURE = 0.7
TITLE_TEMPERATURE = 0.5
TITLE_MAX_CHARS = 50


class GenerationBackend(Protocol):
    """Text generation contract: prompt in, text out."""
    model: str

    async def generate(self, prompt: str, temperature: float) -> str:
        raise NotImplementedError


@dataclass(frozen=True)
class OllamaBackend:
    """Generation backend using the Ollama generate API."""
    base_url: str
    model: str
    timeout: float = 15.0
    max_tokens: int = 512
    transport: httpx.AsyncBaseTransport | None = None

    async def generate(self, prompt: str, temperature: float) -> str:
        payload = {
            "model": self.model,
            "prompt": prompt,
            "stream": False,
            "options": {
                "temperature": temperature,
                "num_predict": self.max_tokens,
            },
        }
        try:
            async with httpx.AsyncClient(timeout=self.timeout, transport=self.transport) as client:
                response = await client.post(f"{self.base_url}/api/generate", json=payload)
                response.raise_for_status()
                data = response.json()
        except (httpx.HTTPError, ValueError) as exc:
            raise LLMError(str(exc) or type(exc).__name__) from exc
        content = data.get("response") if isinstance(data, dict) else None
        if not isinstance(content, str):
            raise LLMError("Invalid Ollama response")
        return content


@dataclass(frozen=True)
class OpenAIBackend:
    """Generation backend using an OpenAI compatible chat completions API."""
    api_key: str
    base_url: str
    model: str
    timeout: float = 15.0
    max_tokens: int = 512
    transport: httpx.AsyncBaseTransport | None = None

    async def generate(self, prompt: str, temperature: float) -> str:
        payload = {
            "model": self.model,
            "messages": [{"role": "user", "content": prompt}],
            "temperature": temperature,
            "max_tokens": self.max_tokens,
        }
        headers = {"Authorization": f"Bearer {self.api_key}"}
        try:
            async with httpx.AsyncClient(timeout=self.timeout, transport=self.transport) as client:
                response = await client.post(
                    f"{self.base_url}/chat/completions",
                    json=payload,
                    headers=headers,
                )
                response.raise_for_status()
                data = response.json()
        except (httpx.HTTPError, ValueError) as exc:
            raise LLMError(str(exc) or type(exc).__name__) from exc
        choices = data.get("choices") if isinstance(data, dict) else None
        if not isinstance(choices, list) or not choices or not isinstance(choices[0], dict):
            raise LLMError("Invalid OpenAI response")
        message = choices[0].get("message")
        content = message.get("content") if isinstance(message, dict) else None
        if not isinstance(content, str):
            raise LLMError("Invalid OpenAI response content")
        return content


def build_answer_prompt(question: str, contexts: list[SearchHit]) -> str:
    """Build the grounded answer prompt, one numbered block per source."""
    context_text = "\n---\n\n".join(
        f"[Post {idx}]\n{hit.text}\n" for idx, hit in enumerate(contexts, start=1)
    )
    plural = "s" if len(contexts) != 1 else ""
    return (
        "You are a helpful assistant answering questions based on the user's saved content.\n\n"
        f"User's Question: {question}\n\n"
        f"Retrieved Content from {len(contexts)} Saved Post{plural}:\n"
        f"{context_text}\n"
        "Based only on the context above:\n"
        "1. Provide a clear summary answering the user's question\n"
        "2. If multiple relevant posts are found, briefly describe what each post contains\n"
        "3. If the context doesn't contain relevant information, say so clearly\n\n"
        "Keep your answer helpful and well-structured (3-5 sentences)."
    )


def build_title_prompt(question: str) -> str:
    return (
        f'Generate a very short (3-5 words) title for this question: "{question}". '
        "Only output the title, nothing else."
    )


@dataclass(frozen=True)
class LLMAnswerGenerator:
    """Answer and title generation through a text generation backend."""
    backend: GenerationBackend
    answer_temperature: float = ANSWER_TEMPERATURE
    title_temperature: float = TITLE_TEMPERATURE

    async def generate_answer(self, question: str, contexts: list[SearchHit]) -> str:
        """Generate a grounded answer; backend failures are fatal."""
        prompt = build_answer_prompt(question, contexts)
        try:
            answer = await self.backend.generate(prompt, self.answer_temperature)
        except ExternalServiceError as exc:
            logger.error(
                "llm_answer_failed",
                extra={"model": self.backend.model, "error": type(exc).__name__},
            )
            raise ExternalServiceError(
                "Failed to generate answer. Make sure the generation backend is "
                "reachable (for Ollama: ollama serve)."
            ) from exc
        return answer.strip() or "Unable to generate answer"

    async def generate_title(self, question: str) -> str:
        """Generate a short title, degrading to the question prefix on failure."""
        try:
            title = await self.backend.generate(build_title_prompt(question), self.title_temperature)
        except ExternalServiceError as exc:
            logger.warning(
                "llm_title_failed",
                extra={"model": self.backend.model, "error": type(exc).__name__},
            )
            return fallback_title(question)
        if not isinstance(title, str):
            return DEFAULT_TITLE
        return title.strip().strip('"')[:TITLE_MAX_CHARS].strip() or DEFAULT_TITLE


def build_generation_backend(
    provider: str,
    *,
    ollama_base_url: str,
    ollama_model: str,
    openai_api_key: str | None,
    openai_base_url: str,
    openai_model: str | None,
    timeout: float,
    max_tokens: int,
) -> OllamaBackend | OpenAIBackend:
    """Factory for generation backends based on provider."""
    normalized = provider.strip().lower()
    if normalized == "openai":
        if not openai_api_key:
            raise LLMError("OPENAI_API_KEY is required for OpenAI provider")
        if not openai_model:
            raise LLMError("OPENAI_CHAT_MODEL is required for OpenAI provider")
        return OpenAIBackend(
            api_key=openai_api_key,
            base_url=openai_base_url.rstrip("/"),
            model=openai_model,
            timeout=timeout,
            max_tokens=max_tokens,
        )
    return OllamaBackend(
        base_url=ollama_base_url.rstrip("/"),
        model=ollama_model,
        timeout=timeout,
        max_tokens=max_tokens,
    )

from __future__ import annotations

import json

import httpx
import pytest

from bookmark_rag.rag.answerer import DEFAULT_TITLE, ExtractiveAnswerGenerator
from bookmark_rag.rag.errors import ExternalServiceError, LLMError
from bookmark_rag.rag.llm import (
    LLMAnswerGenerator,
    OllamaBackend,
    OpenAIBackend,
    build_answer_prompt,
    build_generation_backend,
)
from bookmark_rag.rag.types import SearchHit


def hit(content_id: str, text: str, score: float = 0.5) -> SearchHit:
    return SearchHit(
        record_id=f"{content_id}-chunk-0",
        score=score,
        content_id=content_id,
        text=text,
        chunk_index=0,
    )


class ScriptedBackend:
    model = "scripted"

    def __init__(self, answer: str = "answer", title: str | Exception = "Title") -> None:
        self.answer = answer
        self.title = title
        self.prompts: list[tuple[str, float]] = []

    async def generate(self, prompt: str, temperature: float) -> str:
        self.prompts.append((prompt, temperature))
        if prompt.startswith("Generate a very short"):
            if isinstance(self.title, Exception):
                raise self.title
            return self.title
        return self.answer


def test_answer_prompt_enumerates_posts() -> None:
    prompt = build_answer_prompt(
        "What about Rust?", [hit("a", "Rust is fast."), hit("b", "Cargo builds crates.")]
    )

    assert "User's Question: What about Rust?" in prompt
    assert "Retrieved Content from 2 Saved Posts:" in prompt
    assert "[Post 1]\nRust is fast." in prompt
    assert "[Post 2]\nCargo builds crates." in prompt
    assert "\n---\n" in prompt
    assert "(3-5 sentences)" in prompt


@pytest.mark.anyio
async def test_generator_uses_answer_and_title_temperatures() -> None:
    backend = ScriptedBackend(answer="  Rust is fast.  ", title='"Rust Speed Notes"')
    generator = LLMAnswerGenerator(backend=backend)

    answer = await generator.generate_answer("Is Rust fast?", [hit("a", "Rust is fast.")])
    title = await generator.generate_title("Is Rust fast?")

    assert answer == "Rust is fast."
    assert title == "Rust Speed Notes"
    assert [temperature for _, temperature in backend.prompts] == [0.7, 0.5]


@pytest.mark.anyio
async def test_title_falls_back_to_question_on_failure() -> None:
    generator = LLMAnswerGenerator(backend=ScriptedBackend(title=LLMError("timeout")))
    question = "What did I save about ownership and borrowing in Rust last week?"

    title = await generator.generate_title(question)

    assert title == question[:50].strip()


@pytest.mark.anyio
async def test_empty_title_uses_default() -> None:
    generator = LLMAnswerGenerator(backend=ScriptedBackend(title="   "))

    assert await generator.generate_title("Anything?") == DEFAULT_TITLE


@pytest.mark.anyio
async def test_answer_failure_is_external_service_error() -> None:
    class DownBackend(ScriptedBackend):
        async def generate(self, prompt: str, temperature: float) -> str:
            raise LLMError("connection refused")

    generator = LLMAnswerGenerator(backend=DownBackend())

    with pytest.raises(ExternalServiceError) as excinfo:
        await generator.generate_answer("q", [hit("a", "text")])
    assert "ollama serve" in str(excinfo.value)


@pytest.mark.anyio
async def test_ollama_backend_posts_generate_request() -> None:
    seen: list[dict] = []

    def handler(request: httpx.Request) -> httpx.Response:
        assert request.url.path == "/api/generate"
        seen.append(json.loads(request.content))
        return httpx.Response(200, json={"response": "Rust is memory safe."})

    backend = OllamaBackend(
        base_url="http://ollama.test",
        model="mistral",
        transport=httpx.MockTransport(handler),
    )

    text = await backend.generate("prompt text", 0.7)

    assert text == "Rust is memory safe."
    assert seen[0]["model"] == "mistral"
    assert seen[0]["stream"] is False
    assert seen[0]["options"]["temperature"] == 0.7


@pytest.mark.anyio
async def test_ollama_backend_errors_raise_llm_error() -> None:
    def handler(request: httpx.Request) -> httpx.Response:
        return httpx.Response(500, json={"error": "model not found"})

    backend = OllamaBackend(
        base_url="http://ollama.test",
        model="mistral",
        transport=httpx.MockTransport(handler),
    )

    with pytest.raises(LLMError):
        await backend.generate("prompt", 0.5)


@pytest.mark.anyio
async def test_openai_backend_reads_first_choice() -> None:
    def handler(request: httpx.Request) -> httpx.Response:
        assert request.url.path == "/v1/chat/completions"
        assert request.headers["authorization"] == "Bearer sk-test"
        return httpx.Response(
            200, json={"choices": [{"message": {"role": "assistant", "content": "Hi"}}]}
        )

    backend = OpenAIBackend(
        api_key="sk-test",
        base_url="https://api.openai.test/v1",
        model="gpt-4o-mini",
        transport=httpx.MockTransport(handler),
    )

    assert await backend.generate("prompt", 0.7) == "Hi"


@pytest.mark.anyio
@pytest.mark.parametrize(
    "body",
    [
        {"choices": ["oops"]},
        {"choices": [{"message": "oops"}]},
        {"choices": {"0": {"message": {"content": "Hi"}}}},
        {"choices": [{"message": {"content": 42}}]},
        ["not", "an", "object"],
    ],
)
async def test_openai_backend_rejects_malformed_choices(body) -> None:
    def handler(request: httpx.Request) -> httpx.Response:
        return httpx.Response(200, json=body)

    backend = OpenAIBackend(
        api_key="sk-test",
        base_url="https://api.openai.test/v1",
        model="gpt-4o-mini",
        transport=httpx.MockTransport(handler),
    )

    with pytest.raises(LLMError):
        await backend.generate("prompt", 0.7)


def test_openai_provider_requires_key() -> None:
    with pytest.raises(LLMError):
        build_generation_backend(
            "openai",
            ollama_base_url="http://localhost:11434",
            ollama_model="mistral",
            openai_api_key=None,
            openai_base_url="https://api.openai.com/v1",
            openai_model="gpt-4o-mini",
            timeout=5,
            max_tokens=64,
        )


@pytest.mark.anyio
async def test_extractive_generator_summarizes_sources() -> None:
    generator = ExtractiveAnswerGenerator(max_chars=20)

    single = await generator.generate_answer("q", [hit("a", "Rust is fast and safe for systems work")])
    multi = await generator.generate_answer(
        "q", [hit("a", "low score", 0.1), hit("b", "best match", 0.9)]
    )

    assert single == "Based on your saved content: Rust is fast and..."
    assert multi == "Based on 2 of your saved posts: best match"

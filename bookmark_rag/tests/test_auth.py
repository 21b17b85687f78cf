from __future__ import annotations

import os

import httpx
import pytest

from bookmark_rag.app.dependencies import reset_service_cache
from bookmark_rag.app.main import app

pytestmark = pytest.mark.anyio


def get_client() -> httpx.AsyncClient:
    reset_service_cache()
    transport = httpx.ASGITransport(app=app)
    return httpx.AsyncClient(transport=transport, base_url="http://test")


async def test_api_key_required_for_chat() -> None:
    original = os.environ.get("RAG_API_KEY_MAP")
    os.environ["RAG_API_KEY_MAP"] = '{"secret": "alice"}'
    try:
        async with get_client() as client:
            response = await client.post("/chat", json={"question": "test"})
            assert response.status_code == 401

            wrong = await client.post(
                "/chat",
                json={"question": "test"},
                headers={"X-API-Key": "nope"},
            )
            assert wrong.status_code == 401

            ok_response = await client.post(
                "/chat",
                json={"question": "test"},
                headers={"X-API-Key": "secret"},
            )
            assert ok_response.status_code == 200
    finally:
        if original is None:
            os.environ.pop("RAG_API_KEY_MAP", None)
        else:
            os.environ["RAG_API_KEY_MAP"] = original


async def test_anonymous_access_can_be_disabled(monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.setenv("RAG_ALLOW_ANONYMOUS", "false")
    async with get_client() as client:
        response = await client.delete("/index/bm-1")

    assert response.status_code == 401
    assert response.headers["www-authenticate"] == "Bearer"


async def test_health_is_public(monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.setenv("RAG_API_KEY_MAP", '{"secret": "alice"}')
    async with get_client() as client:
        response = await client.get("/health")

    assert response.status_code == 200

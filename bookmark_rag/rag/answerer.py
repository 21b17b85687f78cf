from __future__ import annotations

"""Answer generator contract and a simple non-LLM extractive generator."""

from dataclasses import dataclass
from typing import Protocol

from bookmark_rag.rag.types import SearchHit

DEFAULT_TITLE = "Chat Conversation"


class AnswerGenerator(Protocol):
    """Produces an answer from retrieved context and a title for the chat."""

    async def generate_answer(self, question: str, contexts: list[SearchHit]) -> str:
        raise NotImplementedError

    async def generate_title(self, question: str) -> str:
        raise NotImplementedError


def fallback_title(question: str, limit: int = 50) -> str:
    """Title used when no generated title is available."""
    return question.strip()[:limit].strip() or DEFAULT_TITLE


@dataclass
class ExtractiveAnswerGenerator:
    """Quote the highest scoring source instead of calling an LLM."""
    max_chars: int = 480

    async def generate_answer(self, question: str, contexts: list[SearchHit]) -> str:
        if not contexts:
            return ""
        best = max(contexts, key=lambda hit: hit.score)
        snippet = self._truncate(best.text.strip())
        if len(contexts) == 1:
            return f"Based on your saved content: {snippet}"
        return f"Based on {len(contexts)} of your saved posts: {snippet}"

    async def generate_title(self, question: str) -> str:
        return fallback_title(question)

    def _truncate(self, text: str) -> str:
        """Trim text to the max character budget without cutting words."""
        if len(text) <= self.max_chars:
            return text
        return text[: self.max_chars].rsplit(" ", 1)[0] + "..."

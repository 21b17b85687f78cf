from __future__ import annotations

from dataclasses import dataclass


NO_CONTENT_ANSWER = (
    "I couldn't find any relevant content in your saved items to answer this question. "
    "Try saving more content related to your query."
)
MAX_QUESTION_CHARS = 1000


@dataclass(frozen=True)
class GuardrailResult:
    allowed: bool
    reason: str


def check_question(question: str, max_chars: int = MAX_QUESTION_CHARS) -> GuardrailResult:
    cleaned = question.strip()
    if not cleaned:
        return GuardrailResult(allowed=False, reason="empty_question")
    if len(cleaned) > max_chars:
        return GuardrailResult(allowed=False, reason="question_too_long")
    return GuardrailResult(allowed=True, reason="ok")

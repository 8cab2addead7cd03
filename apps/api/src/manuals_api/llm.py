from __future__ import annotations

from collections.abc import Sequence
from dataclasses import dataclass
from typing import Protocol

import httpx

HISTORY_TURNS = 4

SYSTEM_PROMPT = (
    "You are a training assistant for a direct-sales team. Answer questions, "
    "explain procedures and give advice based only on the company's official manuals.\n"
    "- Use only information found in the provided context.\n"
    "- Cite the source document and, when visible, the section it came from.\n"
    "- Format the answer in Markdown: bold key concepts, numbered lists for procedures.\n"
    "- Never speculate or use outside knowledge.\n"
    "- If the context does not contain the answer, reply exactly: "
    '"Sorry, I could not find that information in our manuals."'
)


class LLMClientError(RuntimeError):
    pass


@dataclass(frozen=True)
class ChatTurn:
    role: str
    content: str


@dataclass(frozen=True)
class ChatResult:
    answer: str
    model: str
    used_fallback: bool


class LLMClient(Protocol):
    def generate_answer(
        self,
        *,
        question: str,
        context: str,
        history: Sequence[ChatTurn] = (),
    ) -> ChatResult: ...


class OllamaChatClient:
    def __init__(
        self,
        *,
        base_url: str,
        default_model: str,
        fallback_model: str,
        timeout_seconds: float = 30.0,
        temperature: float = 0.7,
        max_tokens: int = 500,
    ) -> None:
        self._base_url = base_url.rstrip("/")
        self._default_model = default_model
        self._fallback_model = fallback_model
        self._timeout_seconds = timeout_seconds
        self._temperature = temperature
        self._max_tokens = max_tokens

    def generate_answer(
        self,
        *,
        question: str,
        context: str,
        history: Sequence[ChatTurn] = (),
    ) -> ChatResult:
        messages = self._build_messages(question=question, context=context, history=history)
        for model, used_fallback in self._model_candidates():
            try:
                content = self._chat_completion(model=model, messages=messages)
            except (httpx.HTTPError, ValueError) as exc:
                if used_fallback or not self._has_fallback():
                    raise LLMClientError(str(exc)) from exc
                continue

            return ChatResult(answer=content, model=model, used_fallback=used_fallback)

        raise LLMClientError("No model candidates configured")

    def _has_fallback(self) -> bool:
        return bool(self._fallback_model) and self._fallback_model != self._default_model

    def _model_candidates(self) -> list[tuple[str, bool]]:
        candidates: list[tuple[str, bool]] = [(self._default_model, False)]
        if self._has_fallback():
            candidates.append((self._fallback_model, True))
        return candidates

    @staticmethod
    def _build_messages(
        *,
        question: str,
        context: str,
        history: Sequence[ChatTurn],
    ) -> list[dict[str, str]]:
        messages = [{"role": "system", "content": SYSTEM_PROMPT}]
        messages.extend(
            {"role": turn.role, "content": turn.content}
            for turn in list(history)[-HISTORY_TURNS:]
        )
        messages.append(
            {"role": "user", "content": f'Question: "{question}"\n\nContext:\n{context}'}
        )
        return messages

    def _chat_completion(self, *, model: str, messages: list[dict[str, str]]) -> str:
        response = httpx.post(
            f"{self._base_url}/chat/completions",
            json={
                "model": model,
                "messages": messages,
                "temperature": self._temperature,
                "max_tokens": self._max_tokens,
            },
            timeout=self._timeout_seconds,
        )
        response.raise_for_status()

        payload = response.json()
        choices = payload.get("choices")
        if not isinstance(choices, list) or not choices:
            raise ValueError("Invalid chat completion payload: missing choices")

        message = choices[0].get("message") if isinstance(choices[0], dict) else None
        content = message.get("content") if isinstance(message, dict) else None
        if not isinstance(content, str) or not content.strip():
            raise ValueError("Invalid chat completion payload: missing assistant content")

        return content.strip()

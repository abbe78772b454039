"""Completion clients for ragchat."""

from __future__ import annotations

from dataclasses import dataclass
from typing import Any, Protocol, Sequence

import httpx

from ragchat.errors import CompletionFailure, ConfigurationMissing
from ragchat.metrics.observability import get_logger
from ragchat.models import ChatTurn

LOGGER = get_logger("generation")


@dataclass(frozen=True)
class GenerationConfig:
    """Configuration for answer generation."""

    model: str = "gemini-2.0-flash"
    max_tokens: int = 1000
    temperature: float = 0.7
    timeout_seconds: float = 30.0


class CompletionClient(Protocol):
    """Protocol describing completion behaviour."""

    def complete(self, messages: Sequence[ChatTurn], max_tokens: int, temperature: float) -> str:
        """Return answer text for the messages; raises ``CompletionFailure``."""


class TemplateCompletionClient:
    """Simple deterministic generator used for tests and offline environments."""

    def complete(self, messages: Sequence[ChatTurn], max_tokens: int, temperature: float) -> str:
        question = messages[-1].content if messages else ""
        system = messages[0].content if messages and messages[0].role == "system" else ""
        if "Context:" not in system:
            return "I do not have enough information to answer that. Please contact the administration."
        first_source = next(
            (line[len("[1] Source: "):] for line in system.splitlines() if line.startswith("[1] Source: ")),
            "the provided documents",
        )
        return f"Based on the provided documents, here is what I found about '{question}'. [Source: {first_source}]"


class GeminiCompletionClient:
    """Calls the Gemini ``generateContent`` REST endpoint (non-streaming)."""

    def __init__(
        self,
        api_key: str | None,
        config: GenerationConfig | None = None,
        *,
        base_url: str = "https://generativelanguage.googleapis.com/v1beta",
        client: httpx.Client | None = None,
    ) -> None:
        self._api_key = api_key
        self._config = config or GenerationConfig()
        self._base_url = base_url.rstrip("/")
        self._client = client or httpx.Client(timeout=self._config.timeout_seconds)

    def complete(self, messages: Sequence[ChatTurn], max_tokens: int, temperature: float) -> str:
        if not self._api_key:
            raise ConfigurationMissing("gemini api key is not configured")
        url = f"{self._base_url}/models/{self._config.model}:generateContent"
        payload = self._build_payload(messages, max_tokens=max_tokens, temperature=temperature)
        try:
            response = self._client.post(
                url,
                json=payload,
                headers={"x-goog-api-key": self._api_key},
                timeout=self._config.timeout_seconds,
            )
        except httpx.TimeoutException as exc:
            raise CompletionFailure("timeout", "completion request timed out") from exc
        except httpx.RequestError as exc:
            raise CompletionFailure("network", f"completion request failed: {exc.__class__.__name__}") from exc

        if response.status_code != 200:
            LOGGER.warning(
                "generation.upstream_status",
                status=response.status_code,
                body=response.text[:200],
            )
            raise CompletionFailure(
                "status",
                f"completion provider returned {response.status_code}",
                upstream_status=response.status_code,
            )
        try:
            body = response.json()
        except ValueError as exc:
            raise CompletionFailure("malformed", "completion response is not JSON", upstream_status=200) from exc
        text = self._extract_text(body)
        if not text:
            finish_reason = self._finish_reason(body)
            raise CompletionFailure(
                "empty",
                f"completion response has no text (finish_reason={finish_reason})",
                upstream_status=200,
            )
        return text

    @staticmethod
    def _build_payload(messages: Sequence[ChatTurn], *, max_tokens: int, temperature: float) -> dict[str, Any]:
        system_parts = [{"text": turn.content} for turn in messages if turn.role == "system"]
        contents = [
            {
                "role": "user" if turn.role == "user" else "model",
                "parts": [{"text": turn.content}],
            }
            for turn in messages
            if turn.role != "system"
        ]
        payload: dict[str, Any] = {
            "contents": contents,
            "generationConfig": {"maxOutputTokens": max_tokens, "temperature": temperature},
        }
        if system_parts:
            payload["systemInstruction"] = {"parts": system_parts}
        return payload

    @staticmethod
    def _extract_text(body: Any) -> str:
        if not isinstance(body, dict):
            return ""
        candidates = body.get("candidates") or []
        if not candidates or not isinstance(candidates[0], dict):
            return ""
        parts = (candidates[0].get("content") or {}).get("parts") or []
        texts = [part.get("text", "") for part in parts if isinstance(part, dict)]
        return "".join(texts).strip()

    @staticmethod
    def _finish_reason(body: Any) -> str | None:
        if isinstance(body, dict):
            candidates = body.get("candidates") or []
            if candidates and isinstance(candidates[0], dict):
                return candidates[0].get("finishReason")
        return None

"""Embedding clients for ragchat."""

from __future__ import annotations

import hashlib
import math
from dataclasses import dataclass
from typing import Protocol, Tuple

import httpx

from ragchat.errors import ConfigurationMissing, EmbeddingFailure
from ragchat.metrics.observability import get_logger

LOGGER = get_logger("embeddings")


@dataclass(frozen=True)
class EmbeddingConfig:
    """Configuration for embedding clients."""

    model: str = "text-embedding-004"
    dim: int = 768
    max_chars: int = 8000
    timeout_seconds: float = 10.0
    normalize: bool = True


class EmbeddingClient(Protocol):
    """Protocol describing embedding behaviour."""

    @property
    def model(self) -> str:
        """Identifier of the model producing the vectors."""

    def embed(self, text: str) -> Tuple[float, ...]:
        """Return the embedding vector for ``text``; raises ``EmbeddingFailure``."""


def truncate_text(text: str, max_chars: int) -> str:
    if max_chars <= 0 or len(text) <= max_chars:
        return text
    return text[:max_chars]


class HashEmbeddingClient:
    """Deterministic lightweight embedding fallback used for testing."""

    def __init__(self, config: EmbeddingConfig | None = None) -> None:
        self._config = config or EmbeddingConfig()

    @property
    def model(self) -> str:
        return f"hash-{self._config.dim}"

    def embed(self, text: str) -> Tuple[float, ...]:
        text = truncate_text(text, self._config.max_chars)
        digest = hashlib.sha256(text.encode("utf-8")).digest()
        repeat = (self._config.dim + len(digest) - 1) // len(digest)
        raw = (digest * repeat)[: self._config.dim]
        vector = [byte / 255.0 for byte in raw]
        if self._config.normalize:
            norm = math.sqrt(sum(value * value for value in vector)) or 1.0
            vector = [value / norm for value in vector]
        return tuple(vector)


class GeminiEmbeddingClient:
    """Calls the Gemini ``embedContent`` REST endpoint."""

    def __init__(
        self,
        api_key: str | None,
        config: EmbeddingConfig | None = None,
        *,
        base_url: str = "https://generativelanguage.googleapis.com/v1beta",
        client: httpx.Client | None = None,
    ) -> None:
        self._api_key = api_key
        self._config = config or EmbeddingConfig()
        self._base_url = base_url.rstrip("/")
        self._client = client or httpx.Client(timeout=self._config.timeout_seconds)

    @property
    def model(self) -> str:
        return self._config.model

    def embed(self, text: str) -> Tuple[float, ...]:
        if not self._api_key:
            raise ConfigurationMissing("gemini api key is not configured")
        payload = {
            "model": f"models/{self._config.model}",
            "content": {"parts": [{"text": truncate_text(text, self._config.max_chars)}]},
        }
        url = f"{self._base_url}/models/{self._config.model}:embedContent"
        try:
            response = self._client.post(
                url,
                json=payload,
                headers={"x-goog-api-key": self._api_key},
                timeout=self._config.timeout_seconds,
            )
        except httpx.TimeoutException as exc:
            raise EmbeddingFailure("timeout", "embedding request timed out") from exc
        except httpx.RequestError as exc:
            raise EmbeddingFailure("network", f"embedding request failed: {exc.__class__.__name__}") from exc

        if response.status_code != 200:
            LOGGER.warning(
                "embedding.upstream_status",
                status=response.status_code,
                body=response.text[:200],
            )
            raise EmbeddingFailure(
                "status",
                f"embedding provider returned {response.status_code}",
                upstream_status=response.status_code,
            )
        return self._parse_vector(response)

    def _parse_vector(self, response: httpx.Response) -> Tuple[float, ...]:
        try:
            values = response.json()["embedding"]["values"]
            vector = tuple(float(value) for value in values)
        except (ValueError, KeyError, TypeError) as exc:
            raise EmbeddingFailure("malformed", "embedding response has no vector", upstream_status=200) from exc
        if len(vector) != self._config.dim:
            raise EmbeddingFailure(
                "malformed",
                f"embedding dimension {len(vector)} does not match configured {self._config.dim}",
                upstream_status=200,
            )
        return vector

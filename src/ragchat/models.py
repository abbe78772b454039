"""Shared domain models used across the ragchat pipeline."""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Literal, Sequence, Tuple, Union

Role = Literal["system", "user", "assistant"]


@dataclass(frozen=True)
class Identity:
    """Caller identity returned by the auth collaborator."""

    user_id: str
    email: str | None = None


@dataclass(frozen=True)
class RateWindow:
    """Fixed rate-limit window for a single (user_id, endpoint) key."""

    user_id: str
    endpoint: str
    request_count: int
    window_start: float


@dataclass(frozen=True)
class Allowed:
    """The request fits in the current window."""

    window: RateWindow


@dataclass(frozen=True)
class Denied:
    """The window is exhausted; ``retry_after`` is in seconds."""

    window: RateWindow
    retry_after: float


Admission = Union[Allowed, Denied]


@dataclass(frozen=True)
class Document:
    """Corpus entry as owned by the ingestion side."""

    id: str
    title: str
    content: str
    embedding: Tuple[float, ...] | None = None


@dataclass(frozen=True)
class RetrievalMatch:
    """Document returned from the vector store during retrieval."""

    document_id: str
    title: str
    content: str
    similarity: float


@dataclass(frozen=True)
class ChatTurn:
    role: Role
    content: str


@dataclass(frozen=True)
class Citation:
    id: str
    similarity: float


@dataclass(frozen=True)
class ChatQuery:
    """Validated chat request: prior history plus the new user question."""

    history: Sequence[ChatTurn]
    question: str


@dataclass(frozen=True)
class EmbedQuery:
    """Validated embed-only request."""

    text: str


@dataclass(frozen=True)
class Answer:
    """Generated assistant turn with the citations it was grounded on."""

    text: str
    citations: Sequence[Citation] = field(default_factory=tuple)
    latency_ms: float = 0.0

    @property
    def turn(self) -> ChatTurn:
        return ChatTurn(role="assistant", content=self.text)


@dataclass(frozen=True)
class EmbeddingResult:
    vector: Tuple[float, ...]

    @property
    def dimensions(self) -> int:
        return len(self.vector)

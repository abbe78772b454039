from __future__ import annotations

from typing import Callable, Sequence

import pytest

from ragchat.auth import StaticTokenAuthenticator
from ragchat.models import ChatTurn, RetrievalMatch
from ragchat.ratelimit import InMemoryRateLimitStore, RateLimiter
from ragchat.retrieval import RetrievalConfig, RetrievalEngine
from ragchat.services.chat import ChatService
from ragchat.services.generation import GenerationConfig

TOKEN = "token-u1"
USER_ID = "user-1"


class FakeClock:
    def __init__(self, now: float = 1000.0) -> None:
        self.now = now

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


class FakeEmbedder:
    model = "fake-embedding"

    def __init__(self, vector: Sequence[float] = (1.0, 0.0, 0.0, 0.0), error: Exception | None = None) -> None:
        self.vector = tuple(vector)
        self.error = error
        self.calls: list[str] = []

    def embed(self, text: str) -> tuple[float, ...]:
        self.calls.append(text)
        if self.error is not None:
            raise self.error
        return self.vector


class FakeDocumentStore:
    def __init__(self, matches: Sequence[RetrievalMatch] = (), error: Exception | None = None) -> None:
        self.matches = list(matches)
        self.error = error
        self.calls: list[tuple[tuple[float, ...], float, int]] = []

    def match_documents(self, query_vector, *, threshold: float, count: int) -> Sequence[RetrievalMatch]:
        self.calls.append((tuple(query_vector), threshold, count))
        if self.error is not None:
            raise self.error
        return list(self.matches)


class FakeCompletion:
    def __init__(self, text: str = "Here is the answer.", error: Exception | None = None) -> None:
        self.text = text
        self.error = error
        self.calls: list[list[ChatTurn]] = []

    def complete(self, messages: Sequence[ChatTurn], max_tokens: int, temperature: float) -> str:
        self.calls.append(list(messages))
        if self.error is not None:
            raise self.error
        return self.text


def match(doc_id: str, similarity: float, title: str | None = None) -> RetrievalMatch:
    return RetrievalMatch(
        document_id=doc_id,
        title=title or f"Title {doc_id}",
        content=f"Content of {doc_id}",
        similarity=similarity,
    )


class Pipeline:
    """Bundle of a ChatService and the fakes wired into it."""

    def __init__(
        self,
        *,
        embedder: FakeEmbedder | None = None,
        store: FakeDocumentStore | None = None,
        completion: FakeCompletion | None = None,
        limit: int = 10,
        window_seconds: float = 60.0,
    ) -> None:
        self.clock = FakeClock()
        self.embedder = embedder or FakeEmbedder()
        self.store = store or FakeDocumentStore()
        self.completion = completion or FakeCompletion()
        self.rate_store = InMemoryRateLimitStore()
        self.rate_limiter = RateLimiter(self.rate_store, limit=limit, window_seconds=window_seconds, clock=self.clock)
        self.service = ChatService(
            authenticator=StaticTokenAuthenticator({TOKEN: USER_ID}),
            rate_limiter=self.rate_limiter,
            embedder=self.embedder,
            retrieval=RetrievalEngine(self.store, RetrievalConfig(threshold=0.1, top_k=3)),
            completion=self.completion,
            generation=GenerationConfig(max_tokens=256, temperature=0.2),
        )


@pytest.fixture
def make_pipeline() -> Callable[..., Pipeline]:
    return Pipeline

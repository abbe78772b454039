"""Request orchestration: auth, rate limit, retrieval, prompt and completion."""

from __future__ import annotations

import time
from enum import Enum
from typing import Sequence, Union

from ragchat.auth import Authenticator
from ragchat.embeddings import EmbeddingClient
from ragchat.errors import (
    CompletionFailure,
    EmbeddingFailure,
    InvalidInput,
    RagChatError,
    RateLimited,
    RetrievalFailure,
    UnknownFailure,
    UpstreamCompletion,
)
from ragchat.metrics.observability import PipelineMetrics, TimedSection, get_logger
from ragchat.models import (
    Answer,
    ChatQuery,
    ChatTurn,
    Citation,
    Denied,
    EmbeddingResult,
    EmbedQuery,
    Identity,
    RetrievalMatch,
)
from ragchat.ratelimit import RateLimiter
from ragchat.retrieval import RetrievalEngine
from ragchat.services.generation import CompletionClient, GenerationConfig
from ragchat.services.prompt import PromptBuilder


class Stage(str, Enum):
    RECEIVED = "received"
    AUTHENTICATED = "authenticated"
    RATE_CHECKED = "rate_checked"
    EMBEDDED = "embedded"
    RETRIEVED = "retrieved"
    PROMPT_BUILT = "prompt_built"
    COMPLETED = "completed"
    RESPONDED = "responded"
    FAILED = "failed"


_ORDER = [stage for stage in Stage if stage is not Stage.FAILED]


class RequestTrace:
    """Tracks one request through the pipeline and enforces stage order."""

    def __init__(self, endpoint: str) -> None:
        self.endpoint = endpoint
        self.stage = Stage.RECEIVED
        self.user_id: str | None = None
        self.started = time.perf_counter()

    def advance(self, stage: Stage) -> None:
        if self.stage is Stage.FAILED or _ORDER.index(stage) <= _ORDER.index(self.stage):
            raise RuntimeError(f"illegal pipeline transition {self.stage.value} -> {stage.value}")
        self.stage = stage

    @property
    def elapsed_ms(self) -> float:
        return (time.perf_counter() - self.started) * 1000


ChatRequest = Union[ChatQuery, EmbedQuery]


class ChatService:
    """Orchestrates one request end to end.

    Order is fixed: authenticate, rate-limit, embed, retrieve, assemble,
    complete, respond. Embedding and retrieval failures degrade to an
    ungrounded answer; everything else that fails ends the request with a
    :class:`RagChatError`.
    """

    def __init__(
        self,
        *,
        authenticator: Authenticator,
        rate_limiter: RateLimiter,
        embedder: EmbeddingClient,
        retrieval: RetrievalEngine,
        completion: CompletionClient,
        prompt_builder: PromptBuilder | None = None,
        generation: GenerationConfig | None = None,
        chat_endpoint: str = "chat-handler",
        embed_endpoint: str = "embed",
    ) -> None:
        self._authenticator = authenticator
        self._rate_limiter = rate_limiter
        self._embedder = embedder
        self._retrieval = retrieval
        self._completion = completion
        self._prompt_builder = prompt_builder or PromptBuilder()
        self._generation = generation or GenerationConfig()
        self._chat_endpoint = chat_endpoint
        self._embed_endpoint = embed_endpoint
        self._logger = get_logger("chat")

    def handle(self, credential: str | None, request: ChatRequest) -> Answer | EmbeddingResult:
        if isinstance(request, EmbedQuery):
            return self.embed(credential, request)
        return self.chat(credential, request)

    def chat(self, credential: str | None, query: ChatQuery) -> Answer:
        trace = RequestTrace(self._chat_endpoint)
        try:
            self._admit(credential, trace)
            self._validate(query)
            matches = self._ground(query.question, trace)
            messages = self._prompt_builder.assemble(query.history, matches, query.question)
            trace.advance(Stage.PROMPT_BUILT)
            text = self._complete(messages)
            trace.advance(Stage.COMPLETED)
        except RagChatError as exc:
            self._record_failure(trace, exc)
            raise
        except Exception as exc:
            wrapped = UnknownFailure(f"unexpected {exc.__class__.__name__}")
            self._record_failure(trace, wrapped)
            raise wrapped from exc

        citations = tuple(Citation(id=match.document_id, similarity=match.similarity) for match in matches)
        trace.advance(Stage.RESPONDED)
        answer = Answer(text=text, citations=citations, latency_ms=trace.elapsed_ms)
        PipelineMetrics.observe_outcome(trace.endpoint, "ok")
        self._logger.info(
            "chat.completed",
            user_id=trace.user_id,
            endpoint=trace.endpoint,
            documents_used=len(citations),
            has_context=bool(citations),
            question_chars=len(query.question),
            response_time_ms=round(answer.latency_ms, 2),
        )
        return answer

    def embed(self, credential: str | None, query: EmbedQuery) -> EmbeddingResult:
        trace = RequestTrace(self._embed_endpoint)
        try:
            self._admit(credential, trace)
            if not query.text.strip():
                raise InvalidInput("embed text is empty")
            with TimedSection(PipelineMetrics.observe_embedding):
                vector = self._embedder.embed(query.text)
            trace.advance(Stage.EMBEDDED)
        except RagChatError as exc:
            self._record_failure(trace, exc)
            raise
        except Exception as exc:
            wrapped = UnknownFailure(f"unexpected {exc.__class__.__name__}")
            self._record_failure(trace, wrapped)
            raise wrapped from exc
        trace.advance(Stage.RESPONDED)
        PipelineMetrics.observe_outcome(trace.endpoint, "ok")
        self._logger.info("embed.completed", user_id=trace.user_id, dimensions=len(vector))
        return EmbeddingResult(vector=tuple(vector))

    def _admit(self, credential: str | None, trace: RequestTrace) -> Identity:
        identity = self._authenticator.authenticate(credential)
        trace.user_id = identity.user_id
        trace.advance(Stage.AUTHENTICATED)
        admission = self._rate_limiter.admit(identity.user_id, trace.endpoint)
        if isinstance(admission, Denied):
            raise RateLimited(admission.retry_after, f"{admission.window.request_count} requests in window")
        trace.advance(Stage.RATE_CHECKED)
        return identity

    def _ground(self, question: str, trace: RequestTrace) -> list[RetrievalMatch]:
        try:
            with TimedSection(PipelineMetrics.observe_embedding):
                vector = self._embedder.embed(question)
        except EmbeddingFailure as exc:
            self._degrade(trace, "embedding", exc)
            trace.advance(Stage.RETRIEVED)
            return []
        trace.advance(Stage.EMBEDDED)
        try:
            matches = self._retrieval.retrieve(vector)
        except RetrievalFailure as exc:
            self._degrade(trace, "retrieval", exc)
            matches = []
        trace.advance(Stage.RETRIEVED)
        return matches

    def _complete(self, messages: Sequence[ChatTurn]) -> str:
        try:
            with TimedSection(PipelineMetrics.observe_generation):
                return self._completion.complete(
                    messages,
                    self._generation.max_tokens,
                    self._generation.temperature,
                )
        except CompletionFailure as exc:
            raise UpstreamCompletion(exc) from exc

    @staticmethod
    def _validate(query: ChatQuery) -> None:
        if not isinstance(query.question, str) or not query.question.strip():
            raise InvalidInput("question is empty")
        for turn in query.history:
            if turn.role not in ("user", "assistant") or not isinstance(turn.content, str):
                raise InvalidInput(f"history turn has unsupported role {turn.role!r}")

    def _degrade(self, trace: RequestTrace, stage: str, exc: RagChatError) -> None:
        PipelineMetrics.observe_degraded(stage)
        self._logger.warning(
            f"{stage}.degraded",
            user_id=trace.user_id,
            endpoint=trace.endpoint,
            reason=getattr(exc, "reason", exc.kind),
            upstream_status=getattr(exc, "upstream_status", None),
            detail=exc.detail,
        )

    def _record_failure(self, trace: RequestTrace, exc: RagChatError) -> None:
        failed_at = trace.stage
        trace.stage = Stage.FAILED
        PipelineMetrics.observe_outcome(trace.endpoint, exc.kind)
        log = self._logger.warning if exc.status_code < 500 else self._logger.error
        log(
            "chat.failed",
            user_id=trace.user_id,
            endpoint=trace.endpoint,
            kind=exc.kind,
            stage=failed_at.value,
            upstream_status=getattr(exc, "upstream_status", None),
            detail=exc.detail,
            response_time_ms=round(trace.elapsed_ms, 2),
        )

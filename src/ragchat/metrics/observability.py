"""Observability helpers for ragchat."""

from __future__ import annotations

import logging
import time
from contextvars import ContextVar
from typing import Iterable

import structlog
from prometheus_client import Counter, Histogram

_logger_configured = False
_correlation_id_var: ContextVar[str] = ContextVar("correlation_id", default="-")


def configure_logging(level: int = logging.INFO) -> None:
    global _logger_configured  # noqa: PLW0603 - module-level guard
    if _logger_configured:
        return
    logging.basicConfig(level=level, format="%(message)s")
    structlog.configure(
        processors=[
            structlog.contextvars.merge_contextvars,
            structlog.processors.add_log_level,
            structlog.processors.TimeStamper(fmt="iso", utc=True),
            structlog.processors.JSONRenderer(),
        ],
        wrapper_class=structlog.make_filtering_bound_logger(level),
        context_class=dict,
        logger_factory=structlog.stdlib.LoggerFactory(),
        cache_logger_on_first_use=True,
    )
    _logger_configured = True


def bind_correlation_id(correlation_id: str) -> None:
    structlog.contextvars.bind_contextvars(correlation_id=correlation_id)
    _correlation_id_var.set(correlation_id)


def clear_correlation_id() -> None:
    structlog.contextvars.clear_contextvars()
    _correlation_id_var.set("-")


def get_correlation_id() -> str:
    return _correlation_id_var.get()


def get_logger(name: str = "ragchat") -> structlog.BoundLogger:
    configure_logging()
    return structlog.get_logger(name)


def _clamp_score(score: float) -> float:
    if score < -1.0:
        return -1.0
    if score > 1.0:
        return 1.0
    return score


class PipelineMetrics:
    """Prometheus metrics for pipeline stages."""

    embedding_latency = Histogram(
        "ragchat_embedding_duration_seconds",
        "Time spent embedding text.",
        buckets=(0.05, 0.1, 0.25, 0.5, 1.0, 2.5, 5.0, 10.0),
    )
    retrieval_latency = Histogram(
        "ragchat_retrieval_duration_seconds",
        "Time spent retrieving matching documents.",
        buckets=(0.01, 0.05, 0.1, 0.5, 1.0, 2.0, 5.0),
    )
    retrieved_match_count = Histogram(
        "ragchat_retrieved_match_count",
        "Number of matches returned by retrieval.",
        buckets=(0, 1, 2, 3, 5, 8, 13),
    )
    match_similarity = Histogram(
        "ragchat_match_similarity",
        "Cosine similarity of retrieved matches.",
        buckets=(-0.5, 0.0, 0.25, 0.5, 0.75, 1.0),
    )
    generation_latency = Histogram(
        "ragchat_generation_duration_seconds",
        "Time spent generating answers.",
        buckets=(0.1, 0.5, 1.0, 2.0, 5.0, 10.0, 30.0),
    )
    rate_limit_decisions = Counter(
        "ragchat_rate_limit_decisions_total",
        "Rate limiter outcomes per endpoint.",
        ["endpoint", "outcome"],
    )
    request_outcomes = Counter(
        "ragchat_requests_total",
        "Requests handled by the orchestrator, by outcome kind.",
        ["endpoint", "outcome"],
    )
    degraded_requests = Counter(
        "ragchat_degraded_requests_total",
        "Requests answered without grounding because a stage failed.",
        ["stage"],
    )

    @classmethod
    def observe_embedding(cls, duration_seconds: float) -> None:
        cls.embedding_latency.observe(duration_seconds)

    @classmethod
    def observe_retrieval(
        cls,
        duration_seconds: float,
        match_count: int,
        scores: Iterable[float],
    ) -> None:
        cls.retrieval_latency.observe(duration_seconds)
        cls.retrieved_match_count.observe(match_count)
        for score in scores:
            cls.match_similarity.observe(_clamp_score(score))

    @classmethod
    def observe_generation(cls, duration_seconds: float) -> None:
        cls.generation_latency.observe(duration_seconds)

    @classmethod
    def observe_admission(cls, endpoint: str, allowed: bool) -> None:
        cls.rate_limit_decisions.labels(endpoint=endpoint, outcome="allowed" if allowed else "denied").inc()

    @classmethod
    def observe_outcome(cls, endpoint: str, outcome: str) -> None:
        cls.request_outcomes.labels(endpoint=endpoint, outcome=outcome).inc()

    @classmethod
    def observe_degraded(cls, stage: str) -> None:
        cls.degraded_requests.labels(stage=stage).inc()


class TimedSection:
    """Context manager capturing elapsed time for metrics."""

    def __init__(self, callback) -> None:
        self._callback = callback
        self._start = 0.0
        self.elapsed = 0.0

    def __enter__(self) -> "TimedSection":
        self._start = time.perf_counter()
        return self

    def __exit__(self, exc_type, exc, tb) -> None:  # noqa: D401
        self.elapsed = time.perf_counter() - self._start
        self._callback(self.elapsed)


__all__ = [
    "PipelineMetrics",
    "TimedSection",
    "bind_correlation_id",
    "clear_correlation_id",
    "configure_logging",
    "get_correlation_id",
    "get_logger",
]

"""Retrieval policy built on top of document stores."""

from __future__ import annotations

import time
from dataclasses import dataclass
from typing import Sequence

from ragchat.embeddings import DocumentStore
from ragchat.metrics.observability import PipelineMetrics, get_logger
from ragchat.models import RetrievalMatch


@dataclass(frozen=True)
class RetrievalConfig:
    """Configuration for retrieval."""

    threshold: float = 0.1
    top_k: int = 3


class RetrievalEngine:
    """Applies threshold and top-k policy to nearest-neighbour results.

    Stores are expected to filter and limit already; the policy is re-applied
    here so every caller gets the same guarantees whatever the backend does.
    """

    def __init__(self, store: DocumentStore, config: RetrievalConfig | None = None) -> None:
        self._store = store
        self._config = config or RetrievalConfig()
        self._logger = get_logger("retrieval")

    @property
    def config(self) -> RetrievalConfig:
        return self._config

    def retrieve(
        self,
        query_vector: Sequence[float],
        threshold: float | None = None,
        k: int | None = None,
    ) -> list[RetrievalMatch]:
        threshold = self._config.threshold if threshold is None else threshold
        limit = self._config.top_k if k is None else k
        if limit <= 0:
            return []
        start = time.perf_counter()
        candidates = self._store.match_documents(query_vector, threshold=threshold, count=limit)
        matches = [match for match in candidates if match.similarity > threshold]
        # sorted() is stable, so ties keep the store's order
        matches = sorted(matches, key=lambda match: match.similarity, reverse=True)[:limit]
        duration = time.perf_counter() - start
        PipelineMetrics.observe_retrieval(duration, len(matches), (match.similarity for match in matches))
        self._logger.info(
            "retrieval.complete",
            match_count=len(matches),
            threshold=threshold,
            top_k=limit,
            duration_seconds=duration,
        )
        return matches

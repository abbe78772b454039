"""Fixed-window rate limiting per (user, endpoint)."""

from __future__ import annotations

import threading
import time
from contextlib import contextmanager
from dataclasses import replace
from typing import Callable, Iterator, Protocol, Tuple

from ragchat.metrics.observability import PipelineMetrics, get_logger
from ragchat.models import Admission, Allowed, Denied, RateWindow

WindowKey = Tuple[str, str]


class RateLimitStore(Protocol):
    """Persistence for rate windows with an atomic conditional update."""

    def increment(
        self,
        user_id: str,
        endpoint: str,
        *,
        now: float,
        limit: int,
        window_seconds: float,
    ) -> tuple[RateWindow, bool]:
        """Apply one request to the key's window in a single atomic step.

        Creates or resets the window (count 1) when it is missing or expired,
        increments it while below ``limit`` and otherwise leaves it untouched.
        Returns the resulting window and whether the request was admitted.
        """

    def get(self, user_id: str, endpoint: str) -> RateWindow | None:
        """Return the stored window for the key, if any."""

    def purge_before(self, horizon: float) -> int:
        """Delete windows that started before ``horizon``; returns the count removed."""


class InMemoryRateLimitStore:
    """Process-local store guarded by one lock per key."""

    def __init__(self) -> None:
        self._windows: dict[WindowKey, RateWindow] = {}
        self._locks: dict[WindowKey, threading.Lock] = {}
        self._locks_guard = threading.Lock()

    def _lock_for(self, key: WindowKey) -> threading.Lock:
        lock = self._locks.get(key)
        if lock is None:
            with self._locks_guard:
                lock = self._locks.setdefault(key, threading.Lock())
        return lock

    @contextmanager
    def _holding(self, key: WindowKey) -> Iterator[None]:
        # A purge may retire the lock while we wait on it; retry with the current one.
        while True:
            lock = self._lock_for(key)
            lock.acquire()
            if self._locks.get(key) is lock:
                break
            lock.release()
        try:
            yield
        finally:
            lock.release()

    def increment(
        self,
        user_id: str,
        endpoint: str,
        *,
        now: float,
        limit: int,
        window_seconds: float,
    ) -> tuple[RateWindow, bool]:
        key = (user_id, endpoint)
        with self._holding(key):
            current = self._windows.get(key)
            if current is None or now - current.window_start >= window_seconds:
                updated = RateWindow(user_id=user_id, endpoint=endpoint, request_count=1, window_start=now)
            elif current.request_count < limit:
                updated = replace(current, request_count=current.request_count + 1)
            else:
                return current, False
            self._windows[key] = updated
            return updated, True

    def get(self, user_id: str, endpoint: str) -> RateWindow | None:
        return self._windows.get((user_id, endpoint))

    def purge_before(self, horizon: float) -> int:
        removed = 0
        for key in list(self._windows):
            with self._holding(key):
                window = self._windows.get(key)
                if window is not None and window.window_start < horizon:
                    del self._windows[key]
                    with self._locks_guard:
                        self._locks.pop(key, None)
                    removed += 1
        return removed


class RateLimiter:
    """Admits or denies requests against a configured fixed window."""

    def __init__(
        self,
        store: RateLimitStore,
        *,
        limit: int = 10,
        window_seconds: float = 60.0,
        clock: Callable[[], float] = time.time,
    ) -> None:
        if limit < 1:
            raise ValueError("rate limit must allow at least one request per window")
        if window_seconds <= 0:
            raise ValueError("rate limit window must be positive")
        self._store = store
        self._limit = limit
        self._window = float(window_seconds)
        self._clock = clock
        self._logger = get_logger("ratelimit")

    @property
    def limit(self) -> int:
        return self._limit

    @property
    def window_seconds(self) -> float:
        return self._window

    def admit(self, user_id: str, endpoint: str) -> Admission:
        now = self._clock()
        window, admitted = self._store.increment(
            user_id,
            endpoint,
            now=now,
            limit=self._limit,
            window_seconds=self._window,
        )
        PipelineMetrics.observe_admission(endpoint, admitted)
        if admitted:
            return Allowed(window=window)
        retry_after = max(window.window_start + self._window - now, 0.0)
        self._logger.info(
            "rate_limit.denied",
            user_id=user_id,
            endpoint=endpoint,
            request_count=window.request_count,
            retry_after=retry_after,
        )
        return Denied(window=window, retry_after=retry_after)

    def purge_stale(self, retention_seconds: float = 3600.0) -> int:
        """Housekeeping hook: drop windows older than the retention horizon."""

        return self._store.purge_before(self._clock() - retention_seconds)

"""Rate limiting components."""

from .service import InMemoryRateLimitStore, RateLimiter, RateLimitStore
from .store import SqlRateLimitStore

__all__ = ["InMemoryRateLimitStore", "RateLimiter", "RateLimitStore", "SqlRateLimitStore"]

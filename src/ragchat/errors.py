"""Error taxonomy for the request pipeline.

Every failure carries a stable ``kind``, the HTTP status it maps to and a
generic message that is safe to show to end users. Diagnostic detail goes in
the exception message and is only ever logged.
"""

from __future__ import annotations


class RagChatError(RuntimeError):
    """Base class for pipeline failures."""

    kind = "unknown"
    status_code = 500
    user_message = "Something went wrong. Please try again later."

    def __init__(self, detail: str | None = None) -> None:
        super().__init__(detail or self.user_message)
        self.detail = detail or self.user_message


class Unauthenticated(RagChatError):
    kind = "unauthenticated"
    status_code = 401
    user_message = "Unauthorized. Please sign in again."


class RateLimited(RagChatError):
    kind = "rate_limited"
    status_code = 429
    user_message = "Rate limit exceeded. Please try again later."

    def __init__(self, retry_after: float, detail: str | None = None) -> None:
        super().__init__(detail)
        self.retry_after = retry_after


class InvalidInput(RagChatError):
    kind = "invalid_input"
    status_code = 400
    user_message = "The request is missing a valid message."


class UpstreamError(RagChatError):
    """Failure of an outbound provider call.

    ``reason`` is one of ``status``, ``malformed``, ``empty``, ``network`` or
    ``timeout``; ``upstream_status`` is set when the provider answered.
    """

    status_code = 502

    def __init__(self, reason: str, detail: str | None = None, *, upstream_status: int | None = None) -> None:
        super().__init__(detail or reason)
        self.reason = reason
        self.upstream_status = upstream_status


class EmbeddingFailure(UpstreamError):
    kind = "embedding_failure"
    user_message = "We could not process your text right now. Please try again later."


class RetrievalFailure(RagChatError):
    kind = "retrieval_failure"
    status_code = 502
    user_message = "Document search is unavailable right now. Please try again later."


class CompletionFailure(UpstreamError):
    kind = "upstream_completion"
    user_message = "The assistant is unavailable right now. Please try again later."


class UpstreamCompletion(RagChatError):
    """Terminal orchestrator outcome wrapping a :class:`CompletionFailure`."""

    kind = "upstream_completion"
    status_code = 502
    user_message = "The assistant is unavailable right now. Please check your connection and try again later."

    def __init__(self, cause: CompletionFailure) -> None:
        super().__init__(str(cause))
        self.reason = cause.reason
        self.upstream_status = cause.upstream_status


class ConfigurationMissing(RagChatError):
    kind = "configuration_missing"
    status_code = 500
    user_message = "The service is not configured correctly. Please contact support."


class UnknownFailure(RagChatError):
    kind = "unknown"


__all__ = [
    "CompletionFailure",
    "ConfigurationMissing",
    "EmbeddingFailure",
    "InvalidInput",
    "RagChatError",
    "RateLimited",
    "RetrievalFailure",
    "Unauthenticated",
    "UnknownFailure",
    "UpstreamCompletion",
    "UpstreamError",
]

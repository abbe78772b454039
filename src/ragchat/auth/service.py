"""Authentication collaborators: resolve a bearer credential to an identity."""

from __future__ import annotations

import hmac
from typing import Mapping, Protocol

import httpx

from ragchat.errors import ConfigurationMissing, Unauthenticated, UnknownFailure
from ragchat.metrics.observability import get_logger
from ragchat.models import Identity

LOGGER = get_logger("auth")


class Authenticator(Protocol):
    """Resolve a credential to an :class:`Identity` or raise ``Unauthenticated``."""

    def authenticate(self, credential: str | None) -> Identity:
        ...


def bearer_token(authorization: str | None) -> str | None:
    """Extract the token from an ``Authorization: Bearer <token>`` header value."""

    if not authorization:
        return None
    scheme, _, token = authorization.strip().partition(" ")
    if scheme.lower() != "bearer" or not token.strip():
        return None
    return token.strip()


class StaticTokenAuthenticator:
    """Fixed token-to-user mapping for development and tests."""

    def __init__(self, tokens: Mapping[str, str]) -> None:
        self._tokens = dict(tokens)

    def authenticate(self, credential: str | None) -> Identity:
        if not credential:
            raise Unauthenticated("missing credential")
        for token, user_id in self._tokens.items():
            if hmac.compare_digest(token, credential):
                return Identity(user_id=user_id)
        raise Unauthenticated("unknown token")


class SupabaseAuthenticator:
    """Validates access tokens against the Supabase auth ``/user`` endpoint."""

    def __init__(
        self,
        url: str | None,
        anon_key: str | None,
        *,
        timeout_seconds: float = 5.0,
        client: httpx.Client | None = None,
    ) -> None:
        self._url = (url or "").rstrip("/")
        self._anon_key = anon_key
        self._timeout = timeout_seconds
        self._client = client or httpx.Client(timeout=timeout_seconds)

    def authenticate(self, credential: str | None) -> Identity:
        if not credential:
            raise Unauthenticated("missing credential")
        if not self._url or not self._anon_key:
            raise ConfigurationMissing("supabase url or anon key is not configured")
        try:
            response = self._client.get(
                f"{self._url}/auth/v1/user",
                headers={"apikey": self._anon_key, "Authorization": f"Bearer {credential}"},
                timeout=self._timeout,
            )
        except httpx.TimeoutException as exc:
            LOGGER.error("auth.timeout")
            raise UnknownFailure("auth service timed out") from exc
        except httpx.RequestError as exc:
            LOGGER.error("auth.unreachable", detail=exc.__class__.__name__)
            raise UnknownFailure("auth service unreachable") from exc

        if response.status_code in (401, 403):
            raise Unauthenticated(f"auth service rejected token ({response.status_code})")
        if response.status_code != 200:
            LOGGER.error("auth.upstream_status", status=response.status_code)
            raise UnknownFailure(f"auth service returned {response.status_code}")
        try:
            body = response.json()
        except ValueError as exc:
            raise UnknownFailure("auth service returned invalid JSON") from exc
        user_id = body.get("id") if isinstance(body, dict) else None
        if not user_id:
            raise Unauthenticated("auth service returned no user")
        return Identity(user_id=str(user_id), email=body.get("email"))

"""Runtime configuration for the ragchat services."""

from __future__ import annotations

from functools import lru_cache
from pathlib import Path
from typing import Literal, Optional

from pydantic import SecretStr
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """Environment-backed configuration model."""

    model_config = SettingsConfigDict(env_prefix="ragchat_", env_file=".env", case_sensitive=False)

    environment: Literal["dev", "test", "prod"] = "dev"

    # Provider credentials
    gemini_api_key: SecretStr | None = None
    gemini_base_url: str = "https://generativelanguage.googleapis.com/v1beta"

    # Embeddings (documents and queries must share model and dimension)
    embedding_provider: Literal["gemini", "hash"] = "gemini"
    embedding_model: str = "text-embedding-004"
    embedding_dim: int = 768
    embedding_max_chars: int = 8000
    embedding_timeout_seconds: float = 10.0

    # Generation
    completion_provider: Literal["gemini", "template"] = "gemini"
    completion_model: str = "gemini-2.0-flash"
    completion_max_tokens: int = 1000
    completion_temperature: float = 0.7
    completion_timeout_seconds: float = 30.0

    # Retrieval
    match_threshold: float = 0.1
    match_count: int = 3
    document_store: Literal["chroma", "pgvector"] = "chroma"
    chroma_persist_dir: Path | None = Path("./.chroma")
    chroma_collection: str = "ragchat-documents"
    chroma_host: str | None = None
    chroma_port: int | None = None
    chroma_ssl: bool = False
    pgvector_url: str | None = None

    # Prompt assembly
    passage_max_chars: int = 2000
    assistant_persona: str = "You are a helpful and enthusiastic college assistant chatbot."
    fallback_contact: str = "the college administration"

    # Rate limiting: fixed window per (user, endpoint)
    rate_limit_requests: int = 10
    rate_limit_window_seconds: int = 60
    rate_limit_store: Literal["memory", "sql"] = "memory"
    rate_limit_database_url: str = "sqlite:///./ragchat-rate-limits.db"
    rate_limit_timeout_seconds: float = 5.0
    chat_endpoint: str = "chat-handler"
    embed_endpoint: str = "embed"

    # Authentication
    auth_provider: Literal["supabase", "static"] = "supabase"
    supabase_url: str | None = None
    supabase_anon_key: SecretStr | None = None
    auth_timeout_seconds: float = 5.0
    # "token:user_id" pairs, comma separated; only honoured by the static provider
    static_tokens: str = ""

    # CORS
    cors_allow_origins: tuple[str, ...] = ()
    cors_allow_credentials: bool = False
    cors_allow_methods: tuple[str, ...] = ("POST", "OPTIONS")
    cors_allow_headers: tuple[str, ...] = ("authorization", "x-client-info", "apikey", "content-type")

    @property
    def is_test(self) -> bool:
        return self.environment == "test"

    @property
    def static_token_map(self) -> dict[str, str]:
        tokens: dict[str, str] = {}
        for pair in self.static_tokens.split(","):
            token, sep, user_id = pair.strip().partition(":")
            if sep and token and user_id:
                tokens[token] = user_id
        return tokens


@lru_cache(maxsize=1)
def _cached_settings() -> Settings:
    return Settings()


def get_settings(override: Optional[dict[str, object]] = None) -> Settings:
    """Return settings, optionally overriding values without mutating cache."""

    if override:
        return Settings(**override)
    return _cached_settings()

"""Construct pipeline collaborators from ``Settings``.

Shared by the HTTP app and the admin CLI. Builders are lazy: nothing here
touches a store or provider until one of them is called.
"""

from __future__ import annotations

from dataclasses import dataclass

import chromadb

from ragchat.auth import Authenticator, StaticTokenAuthenticator, SupabaseAuthenticator
from ragchat.config import Settings
from ragchat.embeddings import (
    ChromaDocumentStore,
    DocumentStore,
    EmbeddingClient,
    EmbeddingConfig,
    GeminiEmbeddingClient,
    HashEmbeddingClient,
    PgVectorDocumentStore,
)
from ragchat.errors import ConfigurationMissing
from ragchat.ratelimit import InMemoryRateLimitStore, RateLimiter, RateLimitStore, SqlRateLimitStore
from ragchat.retrieval import RetrievalConfig, RetrievalEngine
from ragchat.services.chat import ChatService
from ragchat.services.generation import (
    CompletionClient,
    GeminiCompletionClient,
    GenerationConfig,
    TemplateCompletionClient,
)
from ragchat.services.prompt import PromptBuilder, PromptBuilderConfig


@dataclass(frozen=True)
class AppDependencies:
    chat_service: ChatService
    rate_limiter: RateLimiter
    document_store: DocumentStore


def _secret(value) -> str | None:
    return value.get_secret_value() if value is not None else None


def build_embedder(settings: Settings) -> EmbeddingClient:
    config = EmbeddingConfig(
        model=settings.embedding_model,
        dim=settings.embedding_dim,
        max_chars=settings.embedding_max_chars,
        timeout_seconds=settings.embedding_timeout_seconds,
    )
    if settings.embedding_provider == "hash":
        return HashEmbeddingClient(config)
    return GeminiEmbeddingClient(_secret(settings.gemini_api_key), config, base_url=settings.gemini_base_url)


def build_document_store(settings: Settings, embedding_model: str) -> DocumentStore:
    if settings.document_store == "pgvector":
        if not settings.pgvector_url:
            raise ConfigurationMissing("pgvector_url is required for the pgvector document store")
        return PgVectorDocumentStore.from_url(
            settings.pgvector_url,
            embedding_model=embedding_model,
            embedding_dim=settings.embedding_dim,
        )
    chroma_client = None
    if settings.chroma_host:
        chroma_client = chromadb.HttpClient(
            host=settings.chroma_host,
            port=settings.chroma_port or 8000,
            ssl=settings.chroma_ssl,
        )
    return ChromaDocumentStore(
        settings.chroma_collection,
        embedding_model=embedding_model,
        embedding_dim=settings.embedding_dim,
        client=chroma_client,
        persist_directory=None if chroma_client else settings.chroma_persist_dir,
    )


def build_rate_limit_store(settings: Settings) -> RateLimitStore:
    if settings.rate_limit_store == "sql":
        return SqlRateLimitStore.from_url(
            settings.rate_limit_database_url,
            timeout_seconds=settings.rate_limit_timeout_seconds,
        )
    return InMemoryRateLimitStore()


def build_rate_limiter(settings: Settings) -> RateLimiter:
    return RateLimiter(
        build_rate_limit_store(settings),
        limit=settings.rate_limit_requests,
        window_seconds=settings.rate_limit_window_seconds,
    )


def build_authenticator(settings: Settings) -> Authenticator:
    if settings.auth_provider == "static":
        return StaticTokenAuthenticator(settings.static_token_map)
    return SupabaseAuthenticator(
        settings.supabase_url,
        _secret(settings.supabase_anon_key),
        timeout_seconds=settings.auth_timeout_seconds,
    )


def build_completion(settings: Settings, generation: GenerationConfig) -> CompletionClient:
    if settings.completion_provider == "template":
        return TemplateCompletionClient()
    return GeminiCompletionClient(_secret(settings.gemini_api_key), generation, base_url=settings.gemini_base_url)


def build_dependencies(settings: Settings) -> AppDependencies:
    embedder = build_embedder(settings)
    document_store = build_document_store(settings, embedder.model)
    rate_limiter = build_rate_limiter(settings)
    generation = GenerationConfig(
        model=settings.completion_model,
        max_tokens=settings.completion_max_tokens,
        temperature=settings.completion_temperature,
        timeout_seconds=settings.completion_timeout_seconds,
    )
    chat_service = ChatService(
        authenticator=build_authenticator(settings),
        rate_limiter=rate_limiter,
        embedder=embedder,
        retrieval=RetrievalEngine(
            document_store,
            RetrievalConfig(threshold=settings.match_threshold, top_k=settings.match_count),
        ),
        completion=build_completion(settings, generation),
        prompt_builder=PromptBuilder(
            PromptBuilderConfig(
                persona=settings.assistant_persona,
                fallback_contact=settings.fallback_contact,
                passage_max_chars=settings.passage_max_chars,
            )
        ),
        generation=generation,
        chat_endpoint=settings.chat_endpoint,
        embed_endpoint=settings.embed_endpoint,
    )
    return AppDependencies(chat_service=chat_service, rate_limiter=rate_limiter, document_store=document_store)

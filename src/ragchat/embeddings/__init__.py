"""Embedding clients and document stores."""

from .service import EmbeddingClient, EmbeddingConfig, GeminiEmbeddingClient, HashEmbeddingClient
from .store import ChromaDocumentStore, DocumentStore, PgVectorDocumentStore

__all__ = [
    "ChromaDocumentStore",
    "DocumentStore",
    "EmbeddingClient",
    "EmbeddingConfig",
    "GeminiEmbeddingClient",
    "HashEmbeddingClient",
    "PgVectorDocumentStore",
]

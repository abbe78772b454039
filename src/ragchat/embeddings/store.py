"""Document stores exposing nearest-neighbour search over embeddings."""

from __future__ import annotations

from pathlib import Path
from typing import Iterable, Mapping, Protocol, Sequence

import chromadb
from chromadb.api import ClientAPI
from sqlalchemy import create_engine, text
from sqlalchemy.engine import Engine
from sqlalchemy.exc import SQLAlchemyError

from ragchat.errors import RetrievalFailure
from ragchat.metrics.observability import get_logger
from ragchat.models import Document, RetrievalMatch


class DocumentStore(Protocol):
    """Vector search collaborator over the document corpus."""

    def match_documents(
        self,
        query_vector: Sequence[float],
        *,
        threshold: float,
        count: int,
    ) -> Sequence[RetrievalMatch]:
        """Return up to ``count`` documents with similarity above ``threshold``."""


class ChromaDocumentStore:
    """Chroma-backed document store using a cosine HNSW index.

    The collection records the embedding model and dimension it was built
    with; queries are refused when they do not agree with it.
    """

    def __init__(
        self,
        collection_name: str = "ragchat-documents",
        *,
        embedding_model: str,
        embedding_dim: int = 768,
        client: ClientAPI | None = None,
        persist_directory: str | Path | None = None,
    ) -> None:
        if client is not None:
            self._client = client
        elif persist_directory is not None:
            self._client = chromadb.PersistentClient(path=str(persist_directory))
        else:
            self._client = chromadb.EphemeralClient()
        self._collection = self._client.get_or_create_collection(
            name=collection_name,
            metadata={
                "hnsw:space": "cosine",
                "embedding_model": embedding_model,
                "embedding_dim": embedding_dim,
            },
        )
        self._embedding_model = embedding_model
        self._embedding_dim = embedding_dim
        self._logger = get_logger("store.chroma")

    @property
    def embedding_model(self) -> str:
        return self._embedding_model

    def _check_compatible(self, vector_length: int) -> None:
        metadata = self._collection.metadata or {}
        stored_model = metadata.get("embedding_model")
        if stored_model is not None and stored_model != self._embedding_model:
            raise RetrievalFailure(
                f"collection built with {stored_model!r}, queries use {self._embedding_model!r}"
            )
        if vector_length != self._embedding_dim:
            raise RetrievalFailure(
                f"vector dimension {vector_length} does not match store dimension {self._embedding_dim}"
            )

    def upsert(self, documents: Sequence[Document]) -> Sequence[str]:
        ids: list[str] = []
        titles: list[str] = []
        contents: list[str] = []
        vectors: list[list[float]] = []
        for document in documents:
            if document.embedding is None:
                raise ValueError(f"Document {document.id} has no embedding")
            self._check_compatible(len(document.embedding))
            ids.append(document.id)
            titles.append(document.title)
            contents.append(document.content)
            vectors.append(list(document.embedding))
        if not ids:
            return []
        self._collection.upsert(
            ids=ids,
            documents=contents,
            embeddings=vectors,
            metadatas=[{"title": title} for title in titles],
        )
        return ids

    def match_documents(
        self,
        query_vector: Sequence[float],
        *,
        threshold: float,
        count: int,
    ) -> Sequence[RetrievalMatch]:
        if count <= 0:
            return []
        self._check_compatible(len(query_vector))
        try:
            results = self._collection.query(
                query_embeddings=[list(query_vector)],
                n_results=count,
                include=["documents", "metadatas", "distances"],
            )
        except Exception as exc:
            self._logger.error("store.query_failed", detail=str(exc))
            raise RetrievalFailure("document search failed") from exc
        matches = self._deserialize_results(results)
        return [match for match in matches if match.similarity > threshold]

    def reset(self) -> None:
        existing = self._collection.get()
        ids = existing.get("ids") or []
        if ids:
            self._collection.delete(ids=ids)

    def count(self) -> int:
        return int(self._collection.count())

    def _deserialize_results(self, results: Mapping[str, object]) -> list[RetrievalMatch]:
        ids = self._first(results.get("ids", []))
        documents = self._first(results.get("documents", []))
        metadatas = self._first(results.get("metadatas", []))
        distances = self._first(results.get("distances", []))
        matches: list[RetrievalMatch] = []
        for doc_id, content, metadata, distance in zip(ids, documents, metadatas, distances, strict=False):
            if distance is None:
                continue
            matches.append(
                RetrievalMatch(
                    document_id=str(doc_id),
                    title=str((metadata or {}).get("title", "")),
                    content=content or "",
                    similarity=1.0 - float(distance),
                )
            )
        return matches

    @staticmethod
    def _first(value: object) -> Iterable:
        if isinstance(value, list):
            return value[0] if value else []
        return []


class PgVectorDocumentStore:
    """Postgres + pgvector store calling the ``match_documents`` SQL function.

    The function computes ``1 - (embedding <=> query_embedding)`` and applies
    the threshold and limit on the database side.
    """

    _QUERY = text(
        "SELECT id, title, content, similarity "
        "FROM match_documents(CAST(:query_embedding AS vector), :match_threshold, :match_count)"
    )

    def __init__(self, engine: Engine, *, embedding_model: str, embedding_dim: int = 768) -> None:
        self._engine = engine
        self._embedding_model = embedding_model
        self._embedding_dim = embedding_dim
        self._logger = get_logger("store.pgvector")

    @classmethod
    def from_url(cls, url: str, *, embedding_model: str, embedding_dim: int = 768, timeout_seconds: float = 5.0) -> "PgVectorDocumentStore":
        engine = create_engine(
            url,
            connect_args={
                "connect_timeout": max(1, int(timeout_seconds)),
                "options": f"-c statement_timeout={int(timeout_seconds * 1000)}",
            },
            pool_pre_ping=True,
        )
        return cls(engine, embedding_model=embedding_model, embedding_dim=embedding_dim)

    @property
    def embedding_model(self) -> str:
        return self._embedding_model

    def match_documents(
        self,
        query_vector: Sequence[float],
        *,
        threshold: float,
        count: int,
    ) -> Sequence[RetrievalMatch]:
        if count <= 0:
            return []
        if len(query_vector) != self._embedding_dim:
            raise RetrievalFailure(
                f"vector dimension {len(query_vector)} does not match store dimension {self._embedding_dim}"
            )
        params = {
            "query_embedding": to_vector_literal(query_vector),
            "match_threshold": threshold,
            "match_count": count,
        }
        try:
            with self._engine.connect() as conn:
                rows = conn.execute(self._QUERY, params).all()
        except SQLAlchemyError as exc:
            self._logger.error("store.query_failed", detail=str(exc))
            raise RetrievalFailure("document search failed") from exc
        return [
            RetrievalMatch(
                document_id=str(row.id),
                title=row.title or "",
                content=row.content or "",
                similarity=float(row.similarity),
            )
            for row in rows
        ]


def to_vector_literal(vector: Sequence[float]) -> str:
    """Render a vector in pgvector's text input format."""

    return "[" + ",".join(repr(float(value)) for value in vector) + "]"

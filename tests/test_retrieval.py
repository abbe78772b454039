from __future__ import annotations

import math
from uuid import uuid4

import chromadb
import pytest

from conftest import FakeDocumentStore, match
from ragchat.embeddings.store import ChromaDocumentStore, to_vector_literal
from ragchat.errors import RetrievalFailure
from ragchat.models import Document
from ragchat.retrieval import RetrievalConfig, RetrievalEngine


def _vector_with_similarity(similarity: float) -> tuple[float, ...]:
    # cosine similarity against the unit query (1, 0, 0, 0)
    return (similarity, math.sqrt(1.0 - similarity * similarity), 0.0, 0.0)


def _chroma_store() -> ChromaDocumentStore:
    return ChromaDocumentStore(
        f"retrieval-{uuid4().hex}",
        embedding_model="fake-embedding",
        embedding_dim=4,
        client=chromadb.EphemeralClient(),
    )


def test_threshold_and_top_k_with_fake_store():
    store = FakeDocumentStore([match("a", 0.4), match("b", 0.9), match("c", 0.3), match("d", 0.6)])
    engine = RetrievalEngine(store)
    results = engine.retrieve((1.0, 0.0, 0.0, 0.0), threshold=0.5, k=3)
    assert [m.similarity for m in results] == [0.9, 0.6]
    assert [m.document_id for m in results] == ["b", "d"]
    assert store.calls == [((1.0, 0.0, 0.0, 0.0), 0.5, 3)]


def test_similarity_equal_to_threshold_is_excluded():
    engine = RetrievalEngine(FakeDocumentStore([match("a", 0.5), match("b", 0.51)]))
    results = engine.retrieve((1.0,), threshold=0.5, k=5)
    assert [m.document_id for m in results] == ["b"]


def test_never_more_than_k_matches():
    store = FakeDocumentStore([match(str(i), 0.9 - i * 0.01) for i in range(10)])
    engine = RetrievalEngine(store)
    for k in range(0, 12):
        results = engine.retrieve((1.0,), threshold=0.0, k=k)
        assert len(results) <= k
        assert all(m.similarity > 0.0 for m in results)


def test_ties_keep_store_order():
    store = FakeDocumentStore([match("first", 0.7), match("second", 0.7), match("top", 0.8)])
    results = RetrievalEngine(store).retrieve((1.0,), threshold=0.1, k=3)
    assert [m.document_id for m in results] == ["top", "first", "second"]


def test_defaults_come_from_config():
    store = FakeDocumentStore([match("a", 0.2), match("b", 0.15), match("c", 0.12), match("d", 0.11)])
    engine = RetrievalEngine(store, RetrievalConfig(threshold=0.1, top_k=3))
    results = engine.retrieve((1.0,))
    assert [m.document_id for m in results] == ["a", "b", "c"]


def test_empty_store_is_not_an_error():
    assert RetrievalEngine(FakeDocumentStore()).retrieve((1.0,), threshold=0.5, k=3) == []


def test_chroma_store_scenario_threshold_half_top_three():
    store = _chroma_store()
    documents = [
        Document(id=f"doc-{s}", title=f"Doc {s}", content=f"content {s}", embedding=_vector_with_similarity(s))
        for s in (0.9, 0.6, 0.4, 0.3)
    ]
    store.upsert(documents)
    assert store.count() == 4

    results = RetrievalEngine(store).retrieve((1.0, 0.0, 0.0, 0.0), threshold=0.5, k=3)

    assert [m.document_id for m in results] == ["doc-0.9", "doc-0.6"]
    assert results[0].similarity == pytest.approx(0.9, abs=1e-4)
    assert results[1].similarity == pytest.approx(0.6, abs=1e-4)
    assert results[0].title == "Doc 0.9"
    assert results[0].content == "content 0.9"


def test_chroma_store_rejects_vectors_of_another_dimension():
    store = _chroma_store()
    with pytest.raises(RetrievalFailure):
        store.match_documents((1.0, 0.0), threshold=0.1, count=3)
    with pytest.raises(RetrievalFailure):
        store.upsert([Document(id="x", title="x", content="x", embedding=(1.0, 0.0))])


def test_chroma_store_refuses_queries_from_another_embedding_model(tmp_path):
    built = ChromaDocumentStore("handbook", embedding_model="model-a", embedding_dim=4, persist_directory=tmp_path)
    built.upsert([Document(id="a", title="A", content="a", embedding=_vector_with_similarity(0.8))])

    reopened = ChromaDocumentStore("handbook", embedding_model="model-b", embedding_dim=4, persist_directory=tmp_path)

    with pytest.raises(RetrievalFailure) as excinfo:
        reopened.match_documents((1.0, 0.0, 0.0, 0.0), threshold=0.1, count=3)
    assert "model-a" in str(excinfo.value)
    assert [m.document_id for m in built.match_documents((1.0, 0.0, 0.0, 0.0), threshold=0.1, count=3)] == ["a"]


def test_chroma_store_requires_embeddings_on_upsert():
    store = _chroma_store()
    with pytest.raises(ValueError):
        store.upsert([Document(id="x", title="x", content="x")])


def test_chroma_store_reset_clears_collection():
    store = _chroma_store()
    store.upsert([Document(id="a", title="A", content="a", embedding=_vector_with_similarity(0.8))])
    store.reset()
    assert store.count() == 0


def test_pgvector_literal_format():
    assert to_vector_literal([1, 0.5, -0.25]) == "[1.0,0.5,-0.25]"

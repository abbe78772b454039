"""Tests for the FastAPI application boundary."""

from __future__ import annotations

import httpx
from fastapi.testclient import TestClient

from conftest import TOKEN, FakeDocumentStore, FakeEmbedder, Pipeline, match
from ragchat.api.app import AppDependencies, create_app
from ragchat.config import Settings
from ragchat.errors import EmbeddingFailure
from ragchat.services.generation import GeminiCompletionClient, GenerationConfig

AUTH = {"Authorization": f"Bearer {TOKEN}"}
CHAT = {"messages": [{"role": "user", "content": "Hi"}, {"role": "assistant", "content": "Hello"}, {"role": "user", "content": "When is enrollment?"}]}


def create_test_client(pipeline: Pipeline) -> TestClient:
    deps = AppDependencies(
        chat_service=pipeline.service,
        rate_limiter=pipeline.rate_limiter,
        document_store=pipeline.store,
    )
    app = create_app(settings=Settings(environment="test"), dependencies=deps)
    return TestClient(app)


def test_chat_returns_answer_and_citations():
    pipeline = Pipeline(store=FakeDocumentStore([match("7", 0.82), match("9", 0.4)]))
    client = create_test_client(pipeline)

    response = client.post("/chat", json=CHAT, headers=AUTH)

    assert response.status_code == 200, response.text
    assert response.json() == {
        "response": "Here is the answer.",
        "citations": [{"id": "7", "similarity": 0.82}, {"id": "9", "similarity": 0.4}],
    }
    assert "X-Correlation-ID" in response.headers


def test_legacy_path_is_served():
    client = create_test_client(Pipeline())
    response = client.post("/chat-handler", json=CHAT, headers=AUTH)
    assert response.status_code == 200
    assert response.json()["citations"] == []


def test_missing_credentials_is_401():
    client = create_test_client(Pipeline())
    response = client.post("/chat", json=CHAT)
    assert response.status_code == 401
    assert response.json()["error"] == "Unauthorized. Please sign in again."


def test_rate_limited_is_429_with_retry_after():
    client = create_test_client(Pipeline(limit=1))
    assert client.post("/chat", json=CHAT, headers=AUTH).status_code == 200

    response = client.post("/chat", json=CHAT, headers=AUTH)

    assert response.status_code == 429
    body = response.json()
    assert body["error"].startswith("Rate limit exceeded")
    assert body["retry_after"] == 60.0
    assert response.headers["Retry-After"] == "60"


def test_malformed_bodies_are_400():
    client = create_test_client(Pipeline())
    bad_bodies = [
        {},
        {"messages": []},
        {"messages": [{"role": "user"}]},
        {"messages": [{"role": "robot", "content": "hi"}]},
        {"messages": [{"role": "user", "content": "hi"}, {"role": "assistant", "content": "yo"}]},
        {"action": "embed"},
        {"action": "delete", "text": "x"},
    ]
    for body in bad_bodies:
        response = client.post("/chat", json=body, headers=AUTH)
        assert response.status_code == 400, body
        assert "error" in response.json()

    response = client.post("/chat", content=b"not json", headers={**AUTH, "Content-Type": "application/json"})
    assert response.status_code == 400


def test_embed_action_returns_vector():
    client = create_test_client(Pipeline(embedder=FakeEmbedder(vector=(0.1, 0.2, 0.3, 0.4))))
    response = client.post("/chat", json={"action": "embed", "text": "hello"}, headers=AUTH)
    assert response.status_code == 200
    assert response.json() == {"embedding": [0.1, 0.2, 0.3, 0.4], "dimensions": 4}


def test_embed_action_failure_is_surfaced():
    client = create_test_client(Pipeline(embedder=FakeEmbedder(error=EmbeddingFailure("network", "reset"))))
    response = client.post("/chat", json={"action": "embed", "text": "hello"}, headers=AUTH)
    assert response.status_code == 502
    assert "reset" not in response.json()["error"]


def test_chat_survives_embedding_outage():
    pipeline = Pipeline(embedder=FakeEmbedder(error=EmbeddingFailure("network", "reset")))
    client = create_test_client(pipeline)
    response = client.post("/chat", json=CHAT, headers=AUTH)
    assert response.status_code == 200
    assert response.json()["citations"] == []


def test_upstream_completion_error_does_not_leak_body():
    leaked = "INTERNAL: quota project 1234 key AIza-secret exhausted"

    def handler(request: httpx.Request) -> httpx.Response:
        return httpx.Response(500, text=leaked)

    completion = GeminiCompletionClient(
        "test-key",
        GenerationConfig(),
        base_url="https://gemini.test/v1beta",
        client=httpx.Client(transport=httpx.MockTransport(handler)),
    )
    client = create_test_client(Pipeline(completion=completion))

    response = client.post("/chat", json=CHAT, headers=AUTH)

    assert response.status_code == 502
    assert leaked not in response.text
    assert "AIza" not in response.text
    assert "try again later" in response.json()["error"]


def test_health_endpoints():
    client = create_test_client(Pipeline())
    assert client.get("/healthz").json()["status"] == "ok"
    assert client.head("/healthz").status_code == 200
    assert client.get("/livez").json() == {"status": "alive"}
    metrics = client.get("/metrics")
    assert metrics.status_code == 200
    assert "ragchat_requests_total" in metrics.text

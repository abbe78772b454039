from __future__ import annotations

import json

import httpx
import pytest

from ragchat.errors import CompletionFailure, ConfigurationMissing
from ragchat.models import ChatTurn
from ragchat.services.generation import GeminiCompletionClient, GenerationConfig, TemplateCompletionClient
from ragchat.services.prompt import PromptBuilder

from conftest import match

MESSAGES = [
    ChatTurn(role="system", content="Be helpful."),
    ChatTurn(role="user", content="Hi"),
    ChatTurn(role="assistant", content="Hello!"),
    ChatTurn(role="user", content="Where is the gym?"),
]


def _client(handler, api_key: str | None = "test-key") -> GeminiCompletionClient:
    http = httpx.Client(transport=httpx.MockTransport(handler))
    return GeminiCompletionClient(api_key, GenerationConfig(), base_url="https://gemini.test/v1beta", client=http)


def _answer(text: str) -> dict:
    return {"candidates": [{"content": {"role": "model", "parts": [{"text": text}]}, "finishReason": "STOP"}]}


def test_payload_maps_roles_and_generation_settings():
    seen: dict[str, object] = {}

    def handler(request: httpx.Request) -> httpx.Response:
        seen["url"] = str(request.url)
        seen["body"] = json.loads(request.content)
        return httpx.Response(200, json=_answer("Building C."))

    text = _client(handler).complete(MESSAGES, 1000, 0.3)

    assert text == "Building C."
    assert seen["url"] == "https://gemini.test/v1beta/models/gemini-2.0-flash:generateContent"
    body = seen["body"]
    assert body["systemInstruction"] == {"parts": [{"text": "Be helpful."}]}
    assert [c["role"] for c in body["contents"]] == ["user", "model", "user"]
    assert body["contents"][-1]["parts"][0]["text"] == "Where is the gym?"
    assert body["generationConfig"] == {"maxOutputTokens": 1000, "temperature": 0.3}


def test_non_success_status_is_classified():
    def handler(request: httpx.Request) -> httpx.Response:
        return httpx.Response(500, text='{"error": "internal stack trace"}')

    with pytest.raises(CompletionFailure) as excinfo:
        _client(handler).complete(MESSAGES, 100, 0.5)
    assert excinfo.value.reason == "status"
    assert excinfo.value.upstream_status == 500
    assert "stack trace" not in str(excinfo.value)


@pytest.mark.parametrize(
    "payload",
    [
        {"candidates": []},
        {"candidates": [{"finishReason": "SAFETY"}]},
        _answer("   "),
    ],
)
def test_empty_answer_is_classified(payload):
    def handler(request: httpx.Request) -> httpx.Response:
        return httpx.Response(200, json=payload)

    with pytest.raises(CompletionFailure) as excinfo:
        _client(handler).complete(MESSAGES, 100, 0.5)
    assert excinfo.value.reason == "empty"


def test_network_failure_and_timeout_are_classified():
    def refuse(request: httpx.Request) -> httpx.Response:
        raise httpx.ConnectError("no route", request=request)

    def slow(request: httpx.Request) -> httpx.Response:
        raise httpx.ReadTimeout("slow", request=request)

    with pytest.raises(CompletionFailure) as network:
        _client(refuse).complete(MESSAGES, 100, 0.5)
    with pytest.raises(CompletionFailure) as timeout:
        _client(slow).complete(MESSAGES, 100, 0.5)
    assert network.value.reason == "network"
    assert timeout.value.reason == "timeout"


def test_missing_key_is_configuration_error():
    with pytest.raises(ConfigurationMissing):
        _client(lambda request: httpx.Response(200, json=_answer("x")), api_key=None).complete(MESSAGES, 10, 0.1)


def test_template_client_cites_first_source_when_grounded():
    messages = PromptBuilder().assemble([], [match("d1", 0.9, "Gym Guide")], "Where is the gym?")
    text = TemplateCompletionClient().complete(messages, 100, 0.0)
    assert "[Source: Gym Guide]" in text


def test_template_client_admits_ignorance_without_context():
    messages = PromptBuilder().assemble([], [], "Where is the gym?")
    assert "do not have enough information" in TemplateCompletionClient().complete(messages, 100, 0.0)

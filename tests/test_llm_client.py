import json

import pytest
import requests

from gellobit.errors import AIUnavailable, ConfigurationError
from gellobit.utils.llm import llm_client
from gellobit.utils.llm.llm_client import (
    AnthropicClient,
    OpenAICompatibleClient,
    ProviderConfig,
    build_client,
    extract_json_object,
)


class FakeResponse:
    def __init__(self, status_code: int = 200, payload=None, headers=None):
        self.status_code = status_code
        self._payload = payload or {}
        self.headers = headers or {}
        self.text = json.dumps(self._payload)

    def json(self):
        return self._payload

    def raise_for_status(self):
        if self.status_code >= 400:
            raise requests.HTTPError(f"{self.status_code} error", response=self)


def _chat(content: str) -> dict:
    return {"choices": [{"message": {"content": content}}]}


@pytest.fixture
def sleeps(monkeypatch):
    waited = []
    monkeypatch.setattr(llm_client.time, "sleep", lambda s: waited.append(s))
    return waited


def _queue(monkeypatch, responses):
    calls = []

    def fake_post(url, json=None, headers=None, timeout=None):
        calls.append({"url": url, "json": json, "headers": headers})
        item = responses.pop(0)
        if isinstance(item, Exception):
            raise item
        return item

    monkeypatch.setattr(llm_client.requests, "post", fake_post)
    return calls


def _openai(max_retries: int = 3) -> OpenAICompatibleClient:
    return build_client(ProviderConfig(provider="openai", model="gpt-4o-mini", api_key="sk-test"), max_retries=max_retries)


def test_extract_json_object_handles_fences_prose_and_comments() -> None:
    fenced = 'Here you go:\n```json\n{"valid": true, // ok\n "title": "a {b} c"}\n```'
    assert json.loads(extract_json_object(fenced)) == {"valid": True, "title": "a {b} c"}

    prose = 'Sure! {"valid": false, "reason": "old"} Hope this helps.'
    assert json.loads(extract_json_object(prose)) == {"valid": False, "reason": "old"}

    commented = '/* verdict */ {"url": "https://x.com/a", "valid": true}'
    assert json.loads(extract_json_object(commented)) == {"url": "https://x.com/a", "valid": True}


def test_openai_compatible_request_shape(monkeypatch, sleeps) -> None:
    calls = _queue(monkeypatch, [FakeResponse(payload=_chat('{"valid": true}'))])

    text = _openai().complete("system", "user")

    assert text == '{"valid": true}'
    assert calls[0]["url"] == "https://api.openai.com/v1/chat/completions"
    assert calls[0]["headers"]["Authorization"] == "Bearer sk-test"
    assert calls[0]["json"]["messages"][0] == {"role": "system", "content": "system"}
    assert sleeps == []


def test_rate_limit_retried_with_backoff(monkeypatch, sleeps) -> None:
    _queue(monkeypatch, [
        FakeResponse(429, headers={"Retry-After": "1"}),
        FakeResponse(503),
        FakeResponse(payload=_chat("ok")),
    ])

    assert _openai().complete("s", "u") == "ok"
    assert sleeps == [2, 4]


def test_retry_after_is_honoured_up_to_cap(monkeypatch, sleeps) -> None:
    _queue(monkeypatch, [FakeResponse(429, headers={"Retry-After": "600"}), FakeResponse(payload=_chat("ok"))])
    assert _openai().complete("s", "u") == "ok"
    assert sleeps == [60]


def test_exhausted_retries_raise_ai_unavailable(monkeypatch, sleeps) -> None:
    _queue(monkeypatch, [requests.Timeout("slow"), FakeResponse(502), FakeResponse(payload=_chat("   "))])

    with pytest.raises(AIUnavailable):
        _openai().complete("s", "u")
    assert sleeps == [2, 4]


def test_client_errors_are_not_retried(monkeypatch, sleeps) -> None:
    calls = _queue(monkeypatch, [FakeResponse(401, payload={"error": "bad key"})])

    with pytest.raises(AIUnavailable):
        _openai().complete("s", "u")
    assert len(calls) == 1
    assert sleeps == []


def test_anthropic_joins_text_blocks(monkeypatch, sleeps) -> None:
    calls = _queue(monkeypatch, [FakeResponse(payload={"content": [
        {"type": "text", "text": '{"valid": '},
        {"type": "text", "text": "false}"},
    ]})])
    client = build_client(ProviderConfig(provider="anthropic", model="claude-x", api_key="k"))

    assert isinstance(client, AnthropicClient)
    assert client.complete("s", "u") == '{"valid": false}'
    assert calls[0]["url"] == "https://api.anthropic.com/v1/messages"
    assert calls[0]["json"]["system"] == "s"


def test_build_client_validation() -> None:
    with pytest.raises(ConfigurationError):
        build_client(ProviderConfig(provider="mystery", model="m"))
    with pytest.raises(ConfigurationError):
        build_client(ProviderConfig(provider="openai", model="m"))

    deepseek = build_client(ProviderConfig(provider="deepseek", model="deepseek-chat", api_key="k"))
    assert deepseek.base_url == "https://api.deepseek.com/v1"
    ollama = build_client(ProviderConfig(provider="ollama", model="llama3"))
    assert ollama.base_url == "http://localhost:11434"

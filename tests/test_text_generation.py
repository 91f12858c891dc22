import json

import pytest
import requests

import engines.text_generation as text_generation
from engines.text_generation import LLMTextGenerator


class _FakeResponse:
    def __init__(self, status_code, payload):
        self.status_code = status_code
        self._payload = payload
        self.text = "" if isinstance(payload, Exception) else json.dumps(payload)

    def json(self):
        if isinstance(self._payload, Exception):
            raise self._payload
        return self._payload

    def raise_for_status(self):
        if self.status_code >= 400:
            raise requests.HTTPError(response=self)


class _FakePost:
    def __init__(self, *responses):
        self.responses = list(responses)
        self.calls = []

    def __call__(self, url, json=None, timeout=None):
        self.calls.append({"url": url, "json": json, "timeout": timeout})
        response = self.responses.pop(0)
        if isinstance(response, Exception):
            raise response
        return response


@pytest.fixture
def generator():
    return LLMTextGenerator(url="http://llm.test/v1/chat/completions", model_id="tiny", timeout=5)


def _install(monkeypatch, *responses):
    fake = _FakePost(*responses)
    monkeypatch.setattr(text_generation.requests, "post", fake)
    return fake


def test_generate_returns_stripped_text(monkeypatch, generator):
    fake = _install(monkeypatch, _FakeResponse(200, {"choices": [{"message": {"content": "  What comes first?\n"}}]}))

    result = generator.generate("Help the student", temperature=0.4, max_tokens=120)

    assert result.ok
    assert result.text == "What comes first?"
    payload = fake.calls[0]["json"]
    assert payload["model"] == "tiny"
    assert payload["temperature"] == 0.4
    assert payload["max_tokens"] == 120
    assert payload["messages"][-1] == {"role": "user", "content": "Help the student"}
    assert fake.calls[0]["timeout"] == 5


def test_bad_request_retries_with_minimal_payload(monkeypatch, generator):
    fake = _install(
        monkeypatch,
        _FakeResponse(400, {"error": "invalid"}),
        _FakeResponse(200, {"choices": [{"text": "Try again"}]}),
    )

    result = generator.generate("prompt")

    assert result.ok and result.text == "Try again"
    assert len(fake.calls) == 2
    assert "temperature" not in fake.calls[1]["json"]


def test_max_tokens_can_be_withheld(monkeypatch):
    fake = _install(monkeypatch, _FakeResponse(200, {"choices": [{"message": {"content": "ok"}}]}))
    LLMTextGenerator(url="http://llm.test", send_max_tokens=False).generate("prompt")
    assert "max_tokens" not in fake.calls[0]["json"]


@pytest.mark.parametrize(
    "response, error",
    [
        (_FakeResponse(503, {"error": "busy"}), "LLM-HTTP 503"),
        (requests.ConnectionError("refused"), "LLM error: refused"),
        (_FakeResponse(200, ValueError("not json")), "LLM error: not json"),
        (_FakeResponse(200, {"choices": []}), "Unexpected LLM response"),
        (_FakeResponse(200, {"choices": [{"message": {"content": "   "}}]}), "Unexpected LLM response"),
    ],
)
def test_failures_are_returned_not_raised(monkeypatch, generator, response, error):
    _install(monkeypatch, response)

    result = generator.generate("prompt")

    assert not result.ok
    assert result.text == ""
    assert result.error == error


def test_settings_come_from_environment(monkeypatch):
    monkeypatch.delenv("LLM_URL", raising=False)
    monkeypatch.setenv("GPT4ALL_URL", "http://fallback.test/v1")
    monkeypatch.setenv("MODEL_ID", "env-model")
    monkeypatch.setenv("LLM_TIMEOUT", "12.5")

    client = LLMTextGenerator()

    assert client.url == "http://fallback.test/v1"
    assert client.model_id == "env-model"
    assert client.timeout == 12.5

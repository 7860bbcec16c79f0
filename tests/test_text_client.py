import json

import httpx
import pytest

from priorauth_eval.llm import (
    LLMGenerationError,
    LLMTimeoutError,
    ResponseShape,
    TextLLMClient,
    normalize_response,
)


def _client(config, handler):
    return TextLLMClient(config, transport=httpx.MockTransport(handler), retry_backoff_seconds=0)


def test_normalize_message_content():
    normalized = normalize_response({"model": "llama3", "message": {"role": "assistant", "content": "Letter"}})
    assert normalized.shape is ResponseShape.MESSAGE_CONTENT
    assert normalized.resolve_text() == "Letter"
    assert normalized.model == "llama3"


def test_normalize_choices_message_content():
    normalized = normalize_response({"choices": [{"message": {"content": "  Letter  "}}]})
    assert normalized.shape is ResponseShape.CHOICES_MESSAGE_CONTENT
    assert normalized.resolve_text() == "Letter"


def test_normalize_bare_response():
    normalized = normalize_response({"response": "Letter"})
    assert normalized.shape is ResponseShape.RESPONSE
    assert normalized.resolve_text() == "Letter"


def test_normalize_prefers_message_content():
    payload = {"message": {"content": "first"}, "choices": [{"message": {"content": "second"}}], "response": "third"}
    assert normalize_response(payload).resolve_text() == "first"


def test_normalize_skips_empty_higher_priority_shape():
    payload = {"message": {"content": "   "}, "response": "fallback"}
    normalized = normalize_response(payload)
    assert normalized.shape is ResponseShape.RESPONSE
    assert normalized.resolve_text() == "fallback"


@pytest.mark.parametrize("payload", [{}, {"choices": []}, {"message": "text"}, ["not", "a", "dict"], None])
def test_normalize_unknown_shapes(payload):
    normalized = normalize_response(payload)
    assert normalized.shape is ResponseShape.UNKNOWN
    assert normalized.resolve_text() == ""


def test_chat_posts_model_messages_and_options(config):
    seen = {}

    def handler(request):
        seen["url"] = str(request.url)
        seen["body"] = json.loads(request.content)
        return httpx.Response(200, json={"model": "llama3:8b", "message": {"content": "Dear Reviewer"}})

    client = _client(config, handler)
    reply = client.chat("prompt", system="system", temperature=0.1, max_tokens=64)

    assert seen["url"] == config.llm_url
    body = seen["body"]
    assert body["model"] == "test-model"
    assert body["stream"] is False
    assert body["messages"] == [
        {"role": "system", "content": "system"},
        {"role": "user", "content": "prompt"},
    ]
    assert body["options"] == {"temperature": 0.1, "num_predict": 64}
    assert reply.text == "Dear Reviewer"
    assert reply.model == "llama3:8b"
    assert reply.shape is ResponseShape.MESSAGE_CONTENT


def test_generate_uses_generation_settings(config):
    seen = {}

    def handler(request):
        seen["body"] = json.loads(request.content)
        return httpx.Response(200, json={"response": "Letter"})

    reply = _client(config, handler).generate("prompt")
    assert reply.text == "Letter"
    assert seen["body"]["options"]["temperature"] == config.generation_temperature
    assert seen["body"]["options"]["num_predict"] == config.generation_max_tokens


def test_generate_rejects_empty_content(config):
    client = _client(config, lambda request: httpx.Response(200, json={"done": True}))
    with pytest.raises(LLMGenerationError, match="empty content"):
        client.generate("prompt")


def test_chat_maps_timeout(config):
    def handler(request):
        raise httpx.ReadTimeout("slow", request=request)

    with pytest.raises(LLMTimeoutError) as excinfo:
        _client(config, handler).chat("prompt", timeout_seconds=1.5)
    assert excinfo.value.timeout_seconds == 1.5


def test_chat_retries_once_on_server_error(config):
    calls = []

    def handler(request):
        calls.append(request)
        if len(calls) == 1:
            return httpx.Response(503, text="busy")
        return httpx.Response(200, json={"message": {"content": "ok"}})

    reply = _client(config, handler).chat("prompt")
    assert reply.text == "ok"
    assert len(calls) == 2


def test_chat_raises_after_second_server_error(config):
    calls = []

    def handler(request):
        calls.append(request)
        return httpx.Response(500, text="boom")

    with pytest.raises(LLMGenerationError, match="HTTP 500"):
        _client(config, handler).chat("prompt")
    assert len(calls) == 2


def test_chat_does_not_retry_client_errors(config):
    calls = []

    def handler(request):
        calls.append(request)
        return httpx.Response(404, text="no such model")

    with pytest.raises(LLMGenerationError, match="HTTP 404"):
        _client(config, handler).chat("prompt")
    assert len(calls) == 1


def test_chat_rejects_invalid_json(config):
    client = _client(config, lambda request: httpx.Response(200, text="not json"))
    with pytest.raises(LLMGenerationError, match="invalid JSON"):
        client.chat("prompt")


def test_chat_skips_retry_when_backoff_exceeds_deadline(config, monkeypatch):
    calls = []
    sleeps = []

    def handler(request):
        calls.append(request)
        return httpx.Response(503, text="busy")

    monkeypatch.setattr("priorauth_eval.llm.text_client.time.sleep", sleeps.append)
    client = TextLLMClient(config, transport=httpx.MockTransport(handler), retry_backoff_seconds=10)

    with pytest.raises(LLMGenerationError, match="HTTP 503"):
        client.chat("prompt", timeout_seconds=5)
    assert len(calls) == 1
    assert sleeps == []


def test_chat_without_retry_sends_one_request(config):
    calls = []

    def handler(request):
        calls.append(request)
        return httpx.Response(502, text="bad gateway")

    with pytest.raises(LLMGenerationError, match="HTTP 502"):
        _client(config, handler).chat("prompt", retry=False)
    assert len(calls) == 1

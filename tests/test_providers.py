"""Provider adapters exercised against mocked HTTP backends."""

from __future__ import annotations

import json

import httpx
import pytest

from docrag.errors import ProviderCallError, RateLimitedError, ValidationError
from docrag.providers.http import (
    GEMINI_SPEC,
    OLLAMA_SPEC,
    OPENAI_SPEC,
    HttpChatProvider,
    HttpConnection,
    HttpEmbeddingProvider,
)
from docrag.providers.offline import NO_CONTEXT_ANSWER, HashEmbeddingProvider, TemplateChatProvider
from docrag.providers.ratelimit import TokenBucket
from docrag.providers.retry import RetryPolicy

FAST_RETRY = RetryPolicy(max_attempts=2, initial_delay=0.0, max_delay=0.0, jitter=False)


class Recorder:
    """Mock transport handler that records requests and replays responses."""

    def __init__(self, *responses: httpx.Response) -> None:
        self._responses = list(responses)
        self.requests: list[httpx.Request] = []

    def __call__(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(request)
        if len(self._responses) > 1:
            return self._responses.pop(0)
        return self._responses[0]

    def body(self, index: int = -1) -> dict:
        return json.loads(self.requests[index].content)


def _embedder(spec, handler, *, api_key: str | None = "secret", bucket: TokenBucket | None = None, model=None):
    return HttpEmbeddingProvider(
        spec,
        HttpConnection(base_url="http://backend.test", api_key=api_key),
        model=model or spec.default_embedding_model,
        rate_limiter=bucket or TokenBucket(100, 100.0),
        retry_policy=FAST_RETRY,
        client=httpx.Client(transport=httpx.MockTransport(handler)),
    )


def _chat(spec, handler, *, api_key: str | None = "secret"):
    return HttpChatProvider(
        spec,
        HttpConnection(base_url="http://backend.test", api_key=api_key),
        model=spec.default_chat_model,
        rate_limiter=TokenBucket(100, 100.0),
        retry_policy=FAST_RETRY,
        client=httpx.Client(transport=httpx.MockTransport(handler)),
    )


def test_openai_embedding_request_shape_and_auth():
    handler = Recorder(httpx.Response(200, json={"data": [{"index": 0, "embedding": [0.1, 0.2]}]}))
    provider = _embedder(OPENAI_SPEC, handler)

    assert provider.generate_embedding("  hello  ") == (0.1, 0.2)

    request = handler.requests[0]
    assert request.url.path == "/v1/embeddings"
    assert request.headers["Authorization"] == "Bearer secret"
    assert handler.body() == {"input": ["hello"], "model": "text-embedding-3-small", "encoding_format": "float"}


def test_openai_batch_is_one_request_ordered_by_index():
    payload = {"data": [{"index": 1, "embedding": [0.2]}, {"index": 0, "embedding": [0.1]}]}
    handler = Recorder(httpx.Response(200, json=payload))
    provider = _embedder(OPENAI_SPEC, handler)

    assert provider.generate_batch_embeddings(["a", "b"]) == [(0.1,), (0.2,)]
    assert len(handler.requests) == 1


def test_gemini_embedding_uses_query_key_and_model_path():
    handler = Recorder(httpx.Response(200, json={"embedding": {"values": [0.5, -0.5]}}))
    provider = _embedder(GEMINI_SPEC, handler, api_key="g-key", model="text-embedding-004")

    assert provider.generate_embedding("hello") == (0.5, -0.5)

    request = handler.requests[0]
    assert request.url.path == "/v1beta/models/text-embedding-004:embedContent"
    assert request.url.params["key"] == "g-key"
    assert "Authorization" not in request.headers
    assert handler.body()["content"] == {"parts": [{"text": "hello"}]}


def test_ollama_batch_is_sequential():
    handler = Recorder(httpx.Response(200, json={"embedding": [0.3, 0.4]}))
    provider = _embedder(OLLAMA_SPEC, handler, api_key=None)

    vectors = provider.generate_batch_embeddings(["one", "two", "three"])

    assert vectors == [(0.3, 0.4)] * 3
    assert [json.loads(r.content)["prompt"] for r in handler.requests] == ["one", "two", "three"]
    assert all(r.url.path == "/api/embeddings" for r in handler.requests)


def test_sequential_batch_failure_names_the_text():
    responses = [httpx.Response(200, json={"embedding": [0.1]})] + [httpx.Response(500, text="down")] * 3
    handler = Recorder(*responses)
    provider = _embedder(OLLAMA_SPEC, handler, api_key=None)

    with pytest.raises(ProviderCallError, match="failed to get embedding for text 1") as excinfo:
        provider.generate_batch_embeddings(["one", "two"])
    assert excinfo.value.status_code == 500


def test_transient_server_error_is_retried():
    handler = Recorder(
        httpx.Response(500, text="overloaded"),
        httpx.Response(200, json={"embedding": [0.1]}),
    )
    provider = _embedder(OLLAMA_SPEC, handler, api_key=None)

    assert provider.generate_embedding("hello") == (0.1,)
    assert len(handler.requests) == 2


def test_persistent_error_surfaces_status_and_body_after_retries():
    handler = Recorder(httpx.Response(503, text="unavailable"))
    provider = _embedder(OLLAMA_SPEC, handler, api_key=None)

    with pytest.raises(ProviderCallError) as excinfo:
        provider.generate_embedding("hello")

    assert excinfo.value.status_code == 503
    assert excinfo.value.body == "unavailable"
    assert len(handler.requests) == FAST_RETRY.max_attempts + 1


def test_rate_limited_call_never_reaches_backend():
    handler = Recorder(httpx.Response(200, json={"embedding": [0.1]}))
    provider = _embedder(OLLAMA_SPEC, handler, api_key=None, bucket=TokenBucket(1, 0.0))

    provider.generate_embedding("first")
    with pytest.raises(RateLimitedError, match="rate limit exceeded"):
        provider.generate_embedding("second")
    assert len(handler.requests) == 1


def test_blank_input_is_rejected_before_any_request():
    handler = Recorder(httpx.Response(200, json={"embedding": [0.1]}))
    provider = _embedder(OLLAMA_SPEC, handler, api_key=None)

    with pytest.raises(ValidationError):
        provider.generate_embedding("   ")
    with pytest.raises(ValidationError):
        provider.generate_batch_embeddings(["ok", " "])
    with pytest.raises(ValidationError):
        provider.generate_batch_embeddings([])
    assert handler.requests == []


def test_malformed_payload_is_a_provider_error():
    handler = Recorder(httpx.Response(200, json={"unexpected": True}))
    provider = _embedder(OLLAMA_SPEC, handler, api_key=None)

    with pytest.raises(ProviderCallError, match="unexpected Ollama response payload"):
        provider.generate_embedding("hello")


def test_openai_chat_sends_context_as_system_message():
    handler = Recorder(httpx.Response(200, json={"choices": [{"message": {"content": " Twenty days. "}}]}))
    provider = _chat(OPENAI_SPEC, handler)

    assert provider.generate_response("How many days?", "Employees get twenty days.") == "Twenty days."

    body = handler.body()
    assert body["temperature"] == 0.1
    assert [m["role"] for m in body["messages"]] == ["system", "user"]
    assert "Employees get twenty days." in body["messages"][0]["content"]


def test_openai_chat_without_context_sends_prompt_only():
    handler = Recorder(httpx.Response(200, json={"choices": [{"message": {"content": "ok"}}]}))
    provider = _chat(OPENAI_SPEC, handler)

    provider.generate_response("safe prompt", "")

    assert handler.body()["messages"] == [{"role": "user", "content": "safe prompt"}]


def test_gemini_chat_request_and_response():
    payload = {"candidates": [{"content": {"parts": [{"text": "answer"}]}}]}
    handler = Recorder(httpx.Response(200, json=payload))
    provider = _chat(GEMINI_SPEC, handler, api_key="g-key")

    assert provider.model_name == "models/gemini-1.5-flash"
    assert provider.generate_response("question") == "answer"
    assert handler.requests[0].url.path == "/v1beta/models/gemini-1.5-flash:generateContent"
    assert handler.body()["generationConfig"] == {"temperature": 0.1, "maxOutputTokens": 1000}


def test_ollama_chat_is_not_streamed():
    handler = Recorder(httpx.Response(200, json={"response": "answer"}))
    provider = _chat(OLLAMA_SPEC, handler, api_key=None)

    assert provider.generate_response("question") == "answer"
    assert handler.body() == {"model": "llama3", "prompt": "question", "stream": False}


def test_blank_prompt_is_rejected():
    handler = Recorder(httpx.Response(200, json={"response": "answer"}))
    provider = _chat(OLLAMA_SPEC, handler, api_key=None)
    with pytest.raises(ValidationError):
        provider.generate_response("  ")
    assert handler.requests == []


def test_hash_embeddings_are_deterministic_and_normalized():
    provider = HashEmbeddingProvider(dim=16)
    first = provider.generate_embedding("alpha")
    assert first == provider.generate_embedding("alpha")
    assert len(first) == 16
    assert sum(value * value for value in first) == pytest.approx(1.0)
    assert provider.generate_embedding("alpha") != provider.generate_embedding("beta")


def test_template_chat_answers_from_first_document():
    chat = TemplateChatProvider()
    prompt = "CONTEXT FROM DOCUMENTS:\nDocument 1: Remote work is allowed. Document 2: Other.\n\nQUESTION: Can I?"
    assert chat.generate_response(prompt) == "According to the provided documents: Remote work is allowed."
    assert chat.generate_response("QUESTION: anything?") == NO_CONTEXT_ANSWER

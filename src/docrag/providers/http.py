"""HTTP/JSON adapters for the supported AI backends.

OpenAI, Gemini and Ollama differ only in endpoint, auth style and payload
shape, so a single pair of adapters is parameterized by an
:class:`HttpProviderSpec` per backend. Every call goes through the same path:
validate input, take a token from the shared bucket, run the HTTP exchange
under the backoff retrier and turn the payload into a vector or text.
"""

from __future__ import annotations

import threading
from dataclasses import dataclass
from typing import Any, Callable, Literal, Mapping, Sequence

import httpx

from docrag.errors import ProviderCallError, RateLimitedError, ValidationError
from docrag.metrics.observability import PipelineMetrics, TimedSection, get_logger
from docrag.models import Vector
from docrag.providers.base import ProviderKind
from docrag.providers.ratelimit import TokenBucket
from docrag.providers.retry import DEFAULT_RETRY_POLICY, RetryPolicy, retry_with_backoff

LOGGER = get_logger("providers")

Payload = Mapping[str, Any]

CHAT_TEMPERATURE = 0.1

_CONTEXT_INSTRUCTIONS = (
    "You are a helpful assistant that answers questions based on provided context.\n"
    "Use the following context to answer the user's question. If the context doesn't contain "
    "enough information to answer the question, say so clearly."
)


def _with_context(prompt: str, context: str) -> str:
    if not context:
        return prompt
    return f"{_CONTEXT_INSTRUCTIONS}\n\nContext:\n{context}\n\nQuestion: {prompt}"


@dataclass(frozen=True)
class HttpProviderSpec:
    """Endpoint, auth and payload shape of one backend."""

    kind: ProviderKind
    display_name: str
    embed_path: str
    chat_path: str
    default_embedding_model: str
    default_chat_model: str
    default_dimension: int
    native_batch: bool
    auth: Literal["bearer", "query_key", "none"]
    build_embedding_request: Callable[[Sequence[str], str], Payload]
    parse_embeddings: Callable[[Payload], list[Sequence[float]]]
    build_chat_request: Callable[[str, str, str], Payload]
    parse_chat: Callable[[Payload], str]
    normalize_model: Callable[[str], str] = lambda model: model


@dataclass(frozen=True)
class HttpConnection:
    """Where and how to reach a backend."""

    base_url: str
    api_key: str | None = None
    timeout: float = 60.0


# OpenAI


def _openai_embedding_request(texts: Sequence[str], model: str) -> Payload:
    return {"input": list(texts), "model": model, "encoding_format": "float"}


def _openai_parse_embeddings(payload: Payload) -> list[Sequence[float]]:
    data = sorted(payload["data"], key=lambda item: item.get("index", 0))
    return [item["embedding"] for item in data]


def _openai_chat_request(prompt: str, context: str, model: str) -> Payload:
    messages = []
    if context:
        messages.append({"role": "system", "content": f"{_CONTEXT_INSTRUCTIONS}\n\nContext:\n{context}"})
    messages.append({"role": "user", "content": prompt})
    return {"model": model, "messages": messages, "temperature": CHAT_TEMPERATURE, "max_tokens": 2000}


def _openai_parse_chat(payload: Payload) -> str:
    return payload["choices"][0]["message"]["content"]


# Gemini


def _gemini_model(model: str) -> str:
    return model if model.startswith("models/") else f"models/{model}"


def _gemini_embedding_request(texts: Sequence[str], model: str) -> Payload:
    return {"model": model, "content": {"parts": [{"text": texts[0]}]}}


def _gemini_parse_embeddings(payload: Payload) -> list[Sequence[float]]:
    return [payload["embedding"]["values"]]


def _gemini_chat_request(prompt: str, context: str, model: str) -> Payload:
    return {
        "contents": [{"role": "user", "parts": [{"text": _with_context(prompt, context)}]}],
        "generationConfig": {"temperature": CHAT_TEMPERATURE, "maxOutputTokens": 1000},
    }


def _gemini_parse_chat(payload: Payload) -> str:
    return payload["candidates"][0]["content"]["parts"][0]["text"]


# Ollama


def _ollama_embedding_request(texts: Sequence[str], model: str) -> Payload:
    return {"model": model, "prompt": texts[0]}


def _ollama_parse_embeddings(payload: Payload) -> list[Sequence[float]]:
    return [payload["embedding"]]


def _ollama_chat_request(prompt: str, context: str, model: str) -> Payload:
    text = _with_context(prompt, context)
    if context:
        text += "\n\nAnswer:"
    return {"model": model, "prompt": text, "stream": False}


def _ollama_parse_chat(payload: Payload) -> str:
    return payload["response"]


OPENAI_SPEC = HttpProviderSpec(
    kind=ProviderKind.OPENAI,
    display_name="OpenAI",
    embed_path="/v1/embeddings",
    chat_path="/v1/chat/completions",
    default_embedding_model="text-embedding-3-small",
    default_chat_model="gpt-3.5-turbo",
    default_dimension=1536,
    native_batch=True,
    auth="bearer",
    build_embedding_request=_openai_embedding_request,
    parse_embeddings=_openai_parse_embeddings,
    build_chat_request=_openai_chat_request,
    parse_chat=_openai_parse_chat,
)

GEMINI_SPEC = HttpProviderSpec(
    kind=ProviderKind.GEMINI,
    display_name="Gemini",
    embed_path="/v1beta/{model}:embedContent",
    chat_path="/v1beta/{model}:generateContent",
    default_embedding_model="models/text-embedding-004",
    default_chat_model="models/gemini-1.5-flash",
    default_dimension=768,
    native_batch=False,
    auth="query_key",
    build_embedding_request=_gemini_embedding_request,
    parse_embeddings=_gemini_parse_embeddings,
    build_chat_request=_gemini_chat_request,
    parse_chat=_gemini_parse_chat,
    normalize_model=_gemini_model,
)

OLLAMA_SPEC = HttpProviderSpec(
    kind=ProviderKind.LOCAL,
    display_name="Ollama",
    embed_path="/api/embeddings",
    chat_path="/api/generate",
    default_embedding_model="nomic-embed-text",
    default_chat_model="llama3",
    default_dimension=768,
    native_batch=False,
    auth="none",
    build_embedding_request=_ollama_embedding_request,
    parse_embeddings=_ollama_parse_embeddings,
    build_chat_request=_ollama_chat_request,
    parse_chat=_ollama_parse_chat,
)

SPECS: Mapping[ProviderKind, HttpProviderSpec] = {
    ProviderKind.OPENAI: OPENAI_SPEC,
    ProviderKind.GEMINI: GEMINI_SPEC,
    ProviderKind.LOCAL: OLLAMA_SPEC,
}


class _HttpProvider:
    """Shared call path of the embedding and chat adapters."""

    _operation_prefix = "provider"

    def __init__(
        self,
        spec: HttpProviderSpec,
        connection: HttpConnection,
        *,
        model: str,
        rate_limiter: TokenBucket,
        retry_policy: RetryPolicy = DEFAULT_RETRY_POLICY,
        client: httpx.Client | None = None,
    ) -> None:
        self._spec = spec
        self._connection = connection
        self._model = spec.normalize_model(model)
        self._rate_limiter = rate_limiter
        self._retry_policy = retry_policy
        self._owns_client = client is None
        self._client = client or httpx.Client(timeout=connection.timeout)

    @property
    def provider_name(self) -> str:
        return self._spec.display_name

    @property
    def kind(self) -> ProviderKind:
        return self._spec.kind

    def close(self) -> None:
        if self._owns_client:
            self._client.close()

    def _url(self, template: str) -> str:
        return self._connection.base_url.rstrip("/") + template.format(model=self._model)

    def _auth(self) -> tuple[dict[str, str], dict[str, str]]:
        headers = {"Content-Type": "application/json"}
        params: dict[str, str] = {}
        if self._spec.auth == "bearer":
            headers["Authorization"] = f"Bearer {self._connection.api_key}"
        elif self._spec.auth == "query_key":
            params["key"] = self._connection.api_key or ""
        return headers, params

    def _post(self, template: str, payload: Payload) -> Payload:
        name = self._spec.display_name
        headers, params = self._auth()
        try:
            response = self._client.post(self._url(template), json=payload, headers=headers, params=params)
        except httpx.HTTPError as exc:
            LOGGER.error("provider.request_failed", provider=name, error=str(exc))
            raise ProviderCallError(f"{name} request failed: {exc}") from exc
        if not response.is_success:
            body = response.text
            LOGGER.error("provider.bad_status", provider=name, status=response.status_code, body=body)
            raise ProviderCallError(
                f"{name} API error: {response.status_code} {response.reason_phrase} - {body}",
                status_code=response.status_code,
                body=body,
            )
        try:
            return response.json()
        except ValueError as exc:
            raise ProviderCallError(f"{name} returned invalid JSON: {exc}") from exc

    def _parse(self, parser: Callable[[Payload], Any], payload: Payload) -> Any:
        try:
            return parser(payload)
        except (AttributeError, KeyError, IndexError, TypeError) as exc:
            raise ProviderCallError(f"unexpected {self._spec.display_name} response payload: {exc!r}") from exc

    def _call(self, operation: str, fn: Callable[[], Any], cancel: threading.Event | None) -> Any:
        name = self._spec.display_name
        if not self._rate_limiter.allow():
            LOGGER.warning("provider.rate_limited", provider=name, operation=operation)
            PipelineMetrics.rate_limited.labels(provider=name).inc()
            raise RateLimitedError("rate limit exceeded, please try again later")
        observe = PipelineMetrics.provider_latency.labels(provider=name, operation=operation).observe
        with TimedSection(observe):
            try:
                return retry_with_backoff(self._retry_policy, fn, cancel=cancel)
            except ProviderCallError as exc:
                LOGGER.error("provider.call_failed", provider=name, operation=operation, error=str(exc))
                raise


class HttpEmbeddingProvider(_HttpProvider):
    """Embedding adapter for any :class:`HttpProviderSpec`."""

    def generate_embedding(self, text: str, *, cancel: threading.Event | None = None) -> Vector:
        cleaned = (text or "").strip()
        if not cleaned:
            raise ValidationError("text cannot be empty")
        vectors = self._call("embed", lambda: self._request_embeddings([cleaned]), cancel)
        return vectors[0]

    def generate_batch_embeddings(
        self,
        texts: Sequence[str],
        *,
        cancel: threading.Event | None = None,
    ) -> list[Vector]:
        if not texts:
            raise ValidationError("texts cannot be empty")
        cleaned = [(text or "").strip() for text in texts]
        for index, text in enumerate(cleaned):
            if not text:
                raise ValidationError(f"text {index} cannot be empty")

        if not self._spec.native_batch:
            vectors: list[Vector] = []
            for index, text in enumerate(cleaned):
                try:
                    vectors.append(self.generate_embedding(text, cancel=cancel))
                except ProviderCallError as exc:
                    raise type(exc)(
                        f"failed to get embedding for text {index}: {exc}",
                        status_code=exc.status_code,
                        body=exc.body,
                    ) from exc
            LOGGER.info("provider.batch_embedded", provider=self.provider_name, text_count=len(vectors))
            return vectors

        vectors = self._call("embed_batch", lambda: self._request_embeddings(cleaned), cancel)
        LOGGER.info("provider.batch_embedded", provider=self.provider_name, text_count=len(vectors))
        return vectors

    def _request_embeddings(self, texts: Sequence[str]) -> list[Vector]:
        payload = self._post(self._spec.embed_path, self._spec.build_embedding_request(texts, self._model))
        raw_vectors = self._parse(self._spec.parse_embeddings, payload)
        if len(raw_vectors) != len(texts):
            raise ProviderCallError(
                f"{self.provider_name} returned {len(raw_vectors)} embeddings for {len(texts)} texts",
            )
        vectors: list[Vector] = []
        for index, raw in enumerate(raw_vectors):
            if not raw:
                raise ProviderCallError(f"no embedding data received for text {index}")
            try:
                vectors.append(tuple(float(value) for value in raw))
            except (TypeError, ValueError) as exc:
                raise ProviderCallError(f"non-numeric embedding data for text {index}") from exc
        return vectors


class HttpChatProvider(_HttpProvider):
    """Chat completion adapter for any :class:`HttpProviderSpec`."""

    @property
    def model_name(self) -> str:
        return self._model

    def generate_response(
        self,
        prompt: str,
        context: str = "",
        *,
        cancel: threading.Event | None = None,
    ) -> str:
        if not (prompt or "").strip():
            raise ValidationError("prompt cannot be empty")
        answer = self._call("chat", lambda: self._request_chat(prompt, context), cancel)
        LOGGER.info(
            "provider.chat_complete",
            provider=self.provider_name,
            prompt_length=len(prompt),
            response_length=len(answer),
        )
        return answer

    def _request_chat(self, prompt: str, context: str) -> str:
        payload = self._post(self._spec.chat_path, self._spec.build_chat_request(prompt, context, self._model))
        text = self._parse(self._spec.parse_chat, payload)
        if not isinstance(text, str):
            raise ProviderCallError(f"no response text received from {self.provider_name}")
        return text.strip()


__all__ = [
    "GEMINI_SPEC",
    "HttpChatProvider",
    "HttpConnection",
    "HttpEmbeddingProvider",
    "HttpProviderSpec",
    "OLLAMA_SPEC",
    "OPENAI_SPEC",
    "SPECS",
]

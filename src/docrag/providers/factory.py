"""Select and build the configured AI backend."""

from __future__ import annotations

from typing import Mapping

import httpx

from docrag.config import Settings
from docrag.errors import ProviderConfigError
from docrag.metrics.observability import get_logger
from docrag.providers.base import ProviderKind
from docrag.providers.http import SPECS, HttpChatProvider, HttpConnection, HttpEmbeddingProvider
from docrag.providers.ratelimit import TokenBucket
from docrag.providers.retry import RetryPolicy

LOGGER = get_logger("factory")

# Known embedding sizes; anything else falls back to the provider default.
EMBEDDING_DIMENSIONS: Mapping[str, int] = {
    "text-embedding-3-small": 1536,
    "text-embedding-ada-002": 1536,
    "text-embedding-3-large": 3072,
    "models/embedding-001": 768,
    "models/text-embedding-004": 768,
    "nomic-embed-text": 768,
    "mxbai-embed-large": 1024,
    "all-minilm": 384,
}


class ProviderFactory:
    """Builds embedding and chat providers from settings.

    Selection is a strict priority: the local model server when
    ``use_local_ai`` is set, then Gemini when its key is present, then OpenAI
    when its key is present. With none of these the configuration is invalid.
    All providers built by one factory share the same token bucket.
    """

    def __init__(
        self,
        settings: Settings,
        *,
        rate_limiter: TokenBucket | None = None,
        retry_policy: RetryPolicy | None = None,
        client: httpx.Client | None = None,
    ) -> None:
        self._settings = settings
        self._rate_limiter = rate_limiter or TokenBucket.from_settings(settings)
        self._retry_policy = retry_policy or RetryPolicy.from_settings(settings)
        self._client = client

    @property
    def rate_limiter(self) -> TokenBucket:
        return self._rate_limiter

    def determine_provider(self) -> ProviderKind:
        settings = self._settings
        if settings.use_local_ai:
            return ProviderKind.LOCAL
        if settings.google_ai_api_key:
            return ProviderKind.GEMINI
        if settings.openai_api_key:
            return ProviderKind.OPENAI
        raise ProviderConfigError(
            "no AI provider configured: set DOCRAG_USE_LOCAL_AI, DOCRAG_GOOGLE_AI_API_KEY or DOCRAG_OPENAI_API_KEY",
        )

    @property
    def current_provider(self) -> ProviderKind:
        return self.determine_provider()

    def validate_configuration(self) -> ProviderKind:
        """Check the selected provider's connection parameter; performs no I/O."""

        kind = self.determine_provider()
        settings = self._settings
        if kind is ProviderKind.OPENAI and not settings.openai_api_key:
            raise ProviderConfigError("DOCRAG_OPENAI_API_KEY is required for OpenAI provider")
        if kind is ProviderKind.GEMINI and not settings.google_ai_api_key:
            raise ProviderConfigError("DOCRAG_GOOGLE_AI_API_KEY is required for Gemini provider")
        if kind is ProviderKind.LOCAL and not settings.ollama_base_url:
            raise ProviderConfigError("DOCRAG_OLLAMA_BASE_URL is required for Ollama provider")
        return kind

    def embedding_model(self) -> str:
        spec = SPECS[self.determine_provider()]
        return spec.normalize_model(self._settings.embedding_model or spec.default_embedding_model)

    def chat_model(self) -> str:
        spec = SPECS[self.determine_provider()]
        return spec.normalize_model(self._settings.chat_model or spec.default_chat_model)

    def expected_dimensions(self) -> int:
        """Embedding size of the active provider and model."""

        if self._settings.embedding_dim:
            return self._settings.embedding_dim
        spec = SPECS[self.determine_provider()]
        return EMBEDDING_DIMENSIONS.get(self.embedding_model(), spec.default_dimension)

    def create_embedding_provider(self) -> HttpEmbeddingProvider:
        kind = self.validate_configuration()
        provider = HttpEmbeddingProvider(
            SPECS[kind],
            self._connection(kind),
            model=self.embedding_model(),
            rate_limiter=self._rate_limiter,
            retry_policy=self._retry_policy,
            client=self._client,
        )
        LOGGER.info("factory.embedding_provider", provider=provider.provider_name, model=self.embedding_model())
        return provider

    def create_chat_provider(self) -> HttpChatProvider:
        kind = self.validate_configuration()
        provider = HttpChatProvider(
            SPECS[kind],
            self._connection(kind),
            model=self.chat_model(),
            rate_limiter=self._rate_limiter,
            retry_policy=self._retry_policy,
            client=self._client,
        )
        LOGGER.info("factory.chat_provider", provider=provider.provider_name, model=provider.model_name)
        return provider

    def _connection(self, kind: ProviderKind) -> HttpConnection:
        settings = self._settings
        timeout = settings.request_timeout_seconds
        if kind is ProviderKind.LOCAL:
            return HttpConnection(base_url=settings.ollama_base_url, timeout=timeout)
        if kind is ProviderKind.GEMINI:
            return HttpConnection(base_url=settings.gemini_base_url, api_key=settings.google_ai_api_key, timeout=timeout)
        return HttpConnection(base_url=settings.openai_base_url, api_key=settings.openai_api_key, timeout=timeout)


__all__ = ["EMBEDDING_DIMENSIONS", "ProviderFactory"]

from __future__ import annotations

import httpx
import pytest

from docrag.config import Settings
from docrag.errors import ProviderConfigError
from docrag.providers import ProviderFactory, ProviderKind


def _settings(**overrides) -> Settings:
    values = {"use_local_ai": False, "openai_api_key": None, "google_ai_api_key": None, "embedding_dim": None}
    values.update(overrides)
    return Settings(_env_file=None, **values)


def test_local_wins_over_every_key():
    factory = ProviderFactory(_settings(use_local_ai=True, openai_api_key="o", google_ai_api_key="g"))
    assert factory.determine_provider() is ProviderKind.LOCAL


def test_gemini_wins_over_openai():
    factory = ProviderFactory(_settings(openai_api_key="o", google_ai_api_key="g"))
    assert factory.current_provider is ProviderKind.GEMINI


def test_openai_is_last_resort():
    factory = ProviderFactory(_settings(openai_api_key="o"))
    assert factory.validate_configuration() is ProviderKind.OPENAI


def test_no_provider_is_a_configuration_error():
    with pytest.raises(ProviderConfigError, match="no AI provider configured"):
        ProviderFactory(_settings()).determine_provider()


def test_local_provider_requires_base_url():
    factory = ProviderFactory(_settings(use_local_ai=True, ollama_base_url=""))
    with pytest.raises(ProviderConfigError, match="DOCRAG_OLLAMA_BASE_URL is required for Ollama provider"):
        factory.validate_configuration()
    with pytest.raises(ProviderConfigError):
        factory.create_embedding_provider()


@pytest.mark.parametrize(
    ("overrides", "expected"),
    [
        ({"openai_api_key": "o"}, 1536),
        ({"openai_api_key": "o", "embedding_model": "text-embedding-3-large"}, 3072),
        ({"google_ai_api_key": "g"}, 768),
        ({"use_local_ai": True, "embedding_model": "mxbai-embed-large"}, 1024),
        ({"use_local_ai": True, "embedding_model": "some-custom-model"}, 768),
        ({"openai_api_key": "o", "embedding_dim": 256}, 256),
    ],
)
def test_expected_dimensions(overrides, expected):
    assert ProviderFactory(_settings(**overrides)).expected_dimensions() == expected


def test_gemini_model_names_are_normalized():
    factory = ProviderFactory(_settings(google_ai_api_key="g", embedding_model="embedding-001", chat_model="gemini-pro"))
    assert factory.embedding_model() == "models/embedding-001"
    assert factory.chat_model() == "models/gemini-pro"
    assert factory.expected_dimensions() == 768


def test_providers_share_one_rate_limiter():
    client = httpx.Client(transport=httpx.MockTransport(lambda request: httpx.Response(200, json={})))
    factory = ProviderFactory(_settings(openai_api_key="o", rate_limit_max_tokens=5), client=client)

    embedder = factory.create_embedding_provider()
    chat = factory.create_chat_provider()

    assert embedder.provider_name == chat.provider_name == "OpenAI"
    assert chat.model_name == "gpt-3.5-turbo"
    assert embedder._rate_limiter is chat._rate_limiter is factory.rate_limiter
    assert factory.rate_limiter.max_tokens == 5

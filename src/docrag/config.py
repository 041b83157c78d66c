"""Runtime configuration for the DocRAG services."""

from __future__ import annotations

from functools import lru_cache
from pathlib import Path
from typing import Literal, Optional

from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """Environment-backed configuration model."""

    model_config = SettingsConfigDict(env_prefix="docrag_", env_file=".env", case_sensitive=False)

    environment: Literal["dev", "test", "prod"] = "dev"
    log_level: str = "INFO"
    # JSON lines; false switches to the human readable console renderer
    log_json: bool = True

    # AI providers. Priority: local (Ollama) > Gemini > OpenAI
    use_local_ai: bool = False
    openai_api_key: str | None = None
    google_ai_api_key: str | None = None
    ollama_base_url: str = "http://localhost:11434"
    openai_base_url: str = "https://api.openai.com"
    gemini_base_url: str = "https://generativelanguage.googleapis.com"
    # Deterministic hash embeddings and template answers; no network calls
    use_offline_providers: bool = False

    # None picks the active provider's default model
    embedding_model: str | None = None
    chat_model: str | None = None
    # None derives the dimension from the active provider/model
    embedding_dim: int | None = None
    request_timeout_seconds: float = 60.0

    # Outbound call budget shared by every provider call
    rate_limit_max_tokens: int = 10
    rate_limit_refill_rate: float = 1.0

    retry_max_attempts: int = 3
    retry_initial_delay_seconds: float = 1.0
    retry_max_delay_seconds: float = 30.0
    retry_multiplier: float = 2.0
    retry_jitter: bool = True

    # Guardrails
    guardrail_min_question_length: int = 3
    guardrail_max_question_length: int = 1000
    guardrail_require_document_focus: bool = True
    guardrail_strict_mode: bool = True
    guardrail_extra_blocked_phrases: tuple[str, ...] | str = ()

    # Retrieval / ingestion
    max_chunks: int = 10
    chunk_size: int = 1000
    max_upload_size_mb: int = 10
    allowed_extensions: tuple[str, ...] | str = (".pdf", ".docx", ".txt", ".md")

    chroma_persist_dir: Path = Path("./.chroma")
    chroma_collection: str = "docrag-chunks"
    chroma_host: str | None = None
    chroma_port: int | None = None
    chroma_ssl: bool = False

    @property
    def allowed_extensions_tuple(self) -> tuple[str, ...]:
        return _split_csv(self.allowed_extensions) or (".pdf", ".docx", ".txt", ".md")

    @property
    def extra_blocked_phrases(self) -> tuple[str, ...]:
        return _split_csv(self.guardrail_extra_blocked_phrases)


def _split_csv(value: tuple[str, ...] | str) -> tuple[str, ...]:
    if isinstance(value, tuple):
        return value
    return tuple(part.strip() for part in value.split(",") if part.strip())


@lru_cache(maxsize=1)
def _cached_settings() -> Settings:
    return Settings()


def get_settings(override: Optional[dict[str, object]] = None) -> Settings:
    """Return settings, optionally overriding values without mutating cache."""

    if override:
        return Settings(**override)
    return _cached_settings()

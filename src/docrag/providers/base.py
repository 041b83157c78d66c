"""Capability interfaces implemented by every AI backend."""

from __future__ import annotations

import threading
from enum import Enum
from typing import Protocol, Sequence

from docrag.models import Vector


class ProviderKind(str, Enum):
    """Backends the factory can select."""

    LOCAL = "ollama"
    OPENAI = "openai"
    GEMINI = "gemini"


class EmbeddingProvider(Protocol):
    """Protocol describing embedding behaviour."""

    @property
    def provider_name(self) -> str:
        """Human readable backend name."""

    def generate_embedding(self, text: str, *, cancel: threading.Event | None = None) -> Vector:
        """Return the embedding for a single text."""

    def generate_batch_embeddings(
        self,
        texts: Sequence[str],
        *,
        cancel: threading.Event | None = None,
    ) -> list[Vector]:
        """Return one embedding per text; any failure fails the whole batch."""


class ChatProvider(Protocol):
    """Protocol describing chat completion behaviour."""

    @property
    def provider_name(self) -> str:
        """Human readable backend name."""

    @property
    def model_name(self) -> str:
        """Model used for completions."""

    def generate_response(
        self,
        prompt: str,
        context: str = "",
        *,
        cancel: threading.Event | None = None,
    ) -> str:
        """Return the model's answer to ``prompt``."""


__all__ = ["ChatProvider", "EmbeddingProvider", "ProviderKind"]

"""Deterministic providers used for tests and offline environments."""

from __future__ import annotations

import hashlib
import math
import re
import threading
from typing import Sequence

from docrag.errors import ValidationError
from docrag.models import Vector

_FIRST_DOCUMENT = re.compile(r"Document 1:\s*(.*?)(?:\s+Document \d+:|\s+QUESTION:|$)", re.DOTALL)

NO_CONTEXT_ANSWER = "I don't have that information in the provided documents."


class HashEmbeddingProvider:
    """Deterministic lightweight embedding derived from a SHA-256 digest."""

    def __init__(self, dim: int = 768, *, normalize: bool = True) -> None:
        self._dim = dim
        self._normalize = normalize

    @property
    def provider_name(self) -> str:
        return "Hash"

    def _hash_to_vector(self, text: str) -> Vector:
        digest = hashlib.sha256(text.encode("utf-8")).digest()
        repeat = (self._dim + len(digest) - 1) // len(digest)
        raw = (digest * repeat)[: self._dim]
        vector = [byte / 255.0 for byte in raw]
        if self._normalize:
            norm = math.sqrt(sum(value * value for value in vector)) or 1.0
            vector = [value / norm for value in vector]
        return tuple(vector)

    def generate_embedding(self, text: str, *, cancel: threading.Event | None = None) -> Vector:
        if not (text or "").strip():
            raise ValidationError("text cannot be empty")
        return self._hash_to_vector(text.strip())

    def generate_batch_embeddings(
        self,
        texts: Sequence[str],
        *,
        cancel: threading.Event | None = None,
    ) -> list[Vector]:
        if not texts:
            raise ValidationError("texts cannot be empty")
        return [self.generate_embedding(text, cancel=cancel) for text in texts]


class TemplateChatProvider:
    """Answers with the first document block of the prompt."""

    @property
    def provider_name(self) -> str:
        return "Template"

    @property
    def model_name(self) -> str:
        return "template"

    def generate_response(
        self,
        prompt: str,
        context: str = "",
        *,
        cancel: threading.Event | None = None,
    ) -> str:
        if not (prompt or "").strip():
            raise ValidationError("prompt cannot be empty")
        match = _FIRST_DOCUMENT.search(f"{prompt}\n{context}")
        if match is None or not match.group(1).strip():
            return NO_CONTEXT_ANSWER
        return f"According to the provided documents: {match.group(1).strip()}"


__all__ = ["HashEmbeddingProvider", "NO_CONTEXT_ANSWER", "TemplateChatProvider"]

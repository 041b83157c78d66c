"""Exception taxonomy shared by every DocRAG component."""

from __future__ import annotations

from typing import TYPE_CHECKING, Sequence

if TYPE_CHECKING:  # pragma: no cover
    from docrag.guardrails.engine import GuardrailViolation


class DocRAGError(RuntimeError):
    """Base class for errors raised by the DocRAG core."""


class ValidationError(DocRAGError):
    """Raised when an input has the wrong shape, is empty or out of bounds."""


class PolicyViolationError(DocRAGError):
    """Raised when a question is rejected by an error-severity guardrail."""

    def __init__(self, violations: Sequence["GuardrailViolation"]) -> None:
        self.violations = tuple(violations)
        first = self.violations[0] if self.violations else None
        self.kind = first.kind if first else "content_violation"
        self.suggestion = next((v.suggestion for v in self.violations if v.suggestion), None)
        super().__init__(first.message if first else "Question rejected by content policy.")


class ProviderConfigError(DocRAGError):
    """Raised when the selected AI provider is missing a required setting."""


class ProviderCallError(DocRAGError):
    """Raised when a provider call fails after the retry budget is exhausted."""

    def __init__(self, message: str, *, status_code: int | None = None, body: str | None = None) -> None:
        super().__init__(message)
        self.status_code = status_code
        self.body = body


class RateLimitedError(ProviderCallError):
    """Raised when the outbound token bucket denies a provider call."""


class OperationCancelledError(DocRAGError):
    """Raised when the caller cancels an in-flight provider operation."""


class CorruptedDataError(DocRAGError):
    """Raised when a stored vector cannot be decoded."""


class PersistenceError(DocRAGError):
    """Raised when the document store fails; the enclosing transaction is rolled back."""


__all__ = [
    "CorruptedDataError",
    "DocRAGError",
    "OperationCancelledError",
    "PersistenceError",
    "PolicyViolationError",
    "ProviderCallError",
    "ProviderConfigError",
    "RateLimitedError",
    "ValidationError",
]

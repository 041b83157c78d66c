from .engine import (
    DEFAULT_GUARDRAIL_CONFIG,
    GuardrailConfig,
    GuardrailViolation,
    create_safe_prompt,
    guardrail_status,
    has_errors,
    log_violation,
    log_violations,
    sanitize_question,
    validate_question,
    validate_response,
    warning_messages,
)
from .rules import Severity

__all__ = [
    "DEFAULT_GUARDRAIL_CONFIG",
    "GuardrailConfig",
    "GuardrailViolation",
    "Severity",
    "create_safe_prompt",
    "guardrail_status",
    "has_errors",
    "log_violation",
    "log_violations",
    "sanitize_question",
    "validate_question",
    "validate_response",
    "warning_messages",
]

"""Static rule table evaluated by the guardrail engine.

Rules are data: adding a pattern to a table below is enough to enforce it.
The engine walks :data:`INPUT_RULES` in order and emits one violation per
matching rule, no matter how many of the rule's patterns match.
"""

from __future__ import annotations

import re
from dataclasses import dataclass
from enum import Enum
from typing import TYPE_CHECKING, Sequence

if TYPE_CHECKING:  # pragma: no cover
    from docrag.guardrails.engine import GuardrailConfig


class Severity(str, Enum):
    WARNING = "warning"
    ERROR = "error"


DEFAULT_ALLOWED_TOPICS: tuple[str, ...] = ("documents", "company", "policy", "procedure", "information", "data")

DEFAULT_BLOCKED_PHRASES: tuple[str, ...] = (
    # prompt injection
    "ignore previous instructions",
    "forget your role",
    "you are now",
    "new instructions",
    "system prompt",
    "override instructions",
    "disregard context",
    "act as",
    "pretend to be",
    "role play",
    "simulate",
    # jailbreaks
    "jailbreak",
    "developer mode",
    "sudo mode",
    "admin mode",
    "bypass restrictions",
    "remove limitations",
    "unrestricted mode",
    "dan mode",
    # prompt extraction
    "what is your system prompt",
    "show me your instructions",
    "reveal your prompt",
    "what are your guidelines",
    "internal instructions",
    "backend prompt",
    # off-topic requests
    "write code",
    "write poetry",
    "tell me a joke",
    "creative writing",
    "personal advice",
    "relationship advice",
    "medical advice",
    "legal advice",
    "financial advice",
    # harmful content
    "hack",
    "exploit",
    "vulnerability",
    "malware",
    "virus",
    "illegal",
    "harmful",
    "dangerous",
    # data extraction
    "dump database",
    "show all data",
    "export everything",
    "list all files",
    "system information",
    "configuration details",
)

# A question mentioning any of these is about the documents.
DOCUMENT_TERMS: tuple[str, ...] = (
    "document", "policy", "procedure", "guideline", "manual", "handbook",
    "company", "organization", "team", "department", "process", "workflow",
    "information", "data", "details", "specification", "requirement",
    "rule", "regulation", "standard", "protocol", "instruction",
    "according to", "based on", "mentioned in", "stated in",
    "employee handbook", "company policy", "documentation",
)

QUESTION_WORDS: tuple[str, ...] = ("what", "how", "when", "where", "why", "who", "which")

# Counts only together with a question word.
DOCUMENT_CONTEXT_TERMS: tuple[str, ...] = (
    "policy", "procedure", "company", "organization", "department",
    "document", "manual", "handbook", "guideline", "rule", "regulation",
    "process", "workflow", "requirement", "specification",
)

RESPONSE_SCOPE_MARKERS: tuple[str, ...] = (
    "i don't have access to",
    "i cannot access",
    "as an ai",
    "i'm not able to",
    "based on my general knowledge",
    "generally speaking",
    "in my opinion",
    "i think",
    "i believe",
)

MAX_RESPONSE_LENGTH = 5000


def _compile(patterns: Sequence[str], flags: int = re.IGNORECASE) -> tuple[re.Pattern[str], ...]:
    return tuple(re.compile(pattern, flags) for pattern in patterns)


@dataclass(frozen=True)
class Rule:
    """One entry of the rule table."""

    kind: str
    severity: Severity
    message: str
    suggestion: str | None = None
    patterns: tuple[re.Pattern[str], ...] = ()

    def applies(self, config: "GuardrailConfig") -> bool:
        return True

    def severity_for(self, config: "GuardrailConfig") -> Severity:
        return self.severity

    def matches(self, text: str, config: "GuardrailConfig") -> bool:
        return any(pattern.search(text) for pattern in self.patterns)


@dataclass(frozen=True)
class BlockedPhraseRule(Rule):
    """Case-insensitive substring match against the configured phrase list.

    Outside strict mode a match is downgraded to a warning.
    """

    def severity_for(self, config: "GuardrailConfig") -> Severity:
        return self.severity if config.strict_mode else Severity.WARNING

    def matches(self, text: str, config: "GuardrailConfig") -> bool:
        lowered = text.lower()
        return any(phrase.lower() in lowered for phrase in config.blocked_phrases if phrase)


@dataclass(frozen=True)
class DocumentFocusRule(Rule):
    """Matches questions that do not look like they are about the documents."""

    def applies(self, config: "GuardrailConfig") -> bool:
        return config.require_document_focus

    def matches(self, text: str, config: "GuardrailConfig") -> bool:
        return not is_document_focused(text)


def is_document_focused(text: str) -> bool:
    lowered = text.lower()
    if any(term in lowered for term in DOCUMENT_TERMS):
        return True
    has_question_word = any(word in lowered for word in QUESTION_WORDS)
    has_context = any(term in lowered for term in DOCUMENT_CONTEXT_TERMS)
    return has_question_word and has_context


CONTENT_RULE = BlockedPhraseRule(
    kind="content_violation",
    severity=Severity.ERROR,
    message="Question contains inappropriate content or potential security risk.",
    suggestion="Please rephrase your question to focus on information from your uploaded documents.",
)

INJECTION_RULE = Rule(
    kind="injection_attempt",
    severity=Severity.ERROR,
    message="Potential prompt injection detected.",
    suggestion="Please ask a straightforward question about your documents.",
    patterns=_compile(
        (
            r"ignore\s+(previous|prior|all)\s+instructions",
            r"you\s+are\s+now\s+",
            r"forget\s+(everything|your\s+role|instructions)",
            r"new\s+(role|instructions|system)",
            r"act\s+as\s+(if\s+)?",
            r"pretend\s+(to\s+be|that)",
            r"simulate\s+",
            r"system:\s*",
            r"user:\s*",
            r"assistant:\s*",
            r"\\n\\n",
            r"<\|.*?\|>",
            r"\[.*?\]",
        )
    ),
)

DOCUMENT_FOCUS_RULE = DocumentFocusRule(
    kind="off_topic",
    severity=Severity.WARNING,
    message="Question appears to be off-topic. Please ask about information in your uploaded documents.",
    suggestion="Try asking about policies, procedures, or other information contained in your documents.",
)

SUSPICIOUS_RULE = Rule(
    kind="suspicious_pattern",
    severity=Severity.WARNING,
    message="Question contains suspicious patterns that may not be appropriate for document search.",
    patterns=_compile((r"[A-Z]{50,}",), flags=0)
    + _compile(
        (
            r"\?{3,}",
            r"!{3,}",
            r"<script",
            r"javascript:",
            r"eval\(",
            r"function\s*\(",
            r"union\s+select",
            r"drop\s+table",
            r"insert\s+into",
            r"delete\s+from",
            r"sudo\s+",
            r"rm\s+-rf",
            r"wget\s+",
            r"curl\s+",
        )
    ),
)

# Evaluated in this order after the length check.
INPUT_RULES: tuple[Rule, ...] = (CONTENT_RULE, INJECTION_RULE, DOCUMENT_FOCUS_RULE, SUSPICIOUS_RULE)


__all__ = [
    "BlockedPhraseRule",
    "CONTENT_RULE",
    "DEFAULT_ALLOWED_TOPICS",
    "DEFAULT_BLOCKED_PHRASES",
    "DOCUMENT_CONTEXT_TERMS",
    "DOCUMENT_FOCUS_RULE",
    "DOCUMENT_TERMS",
    "DocumentFocusRule",
    "INJECTION_RULE",
    "INPUT_RULES",
    "MAX_RESPONSE_LENGTH",
    "QUESTION_WORDS",
    "RESPONSE_SCOPE_MARKERS",
    "Rule",
    "SUSPICIOUS_RULE",
    "Severity",
    "is_document_focused",
]

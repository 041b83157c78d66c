"""Shared domain models used across the DocRAG pipeline."""

from __future__ import annotations

import time
from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from pathlib import Path
from typing import Sequence, Tuple
from uuid import uuid4

Vector = Tuple[float, ...]


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


@dataclass(frozen=True)
class DocumentMetadata:
    """Metadata captured for an ingested document."""

    document_id: str
    name: str
    original_filename: str
    uploaded_at: datetime = field(default_factory=_utcnow)

    @classmethod
    def for_upload(cls, original_filename: str) -> "DocumentMetadata":
        path = Path(original_filename)
        name = f"doc_{int(time.time())}_{path.stem}{path.suffix}"
        return cls(document_id=uuid4().hex, name=name, original_filename=original_filename)


@dataclass(frozen=True)
class DocumentChunk:
    """Contiguous slice of document text together with its embedding."""

    chunk_id: str
    document_id: str
    content: str
    vector: Vector
    chunk_index: int
    size: int
    content_type: str = "text/plain"


@dataclass(frozen=True)
class RetrievedChunk:
    """Chunk returned from the store during similarity search."""

    chunk: DocumentChunk
    distance: float | None = None


class PipelineState(str, Enum):
    """States a question moves through inside the orchestrator."""

    RECEIVED = "received"
    VALIDATED = "validated"
    EMBEDDED = "embedded"
    RETRIEVED = "retrieved"
    PROMPTED = "prompted"
    ANSWERED = "answered"
    REJECTED = "rejected"
    FAILED = "failed"


@dataclass(frozen=True)
class QueryResult:
    """Answer produced for a question along with its guardrail warnings."""

    question: str
    answer: str
    warnings: Sequence[str]
    state: PipelineState
    query_id: str
    latency_ms: float
    chunks: Sequence[RetrievedChunk] = ()
    response_warnings: Sequence[str] = ()

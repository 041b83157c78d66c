"""Pydantic models for the DocRAG API."""

from __future__ import annotations

from datetime import datetime
from typing import Any, Dict, List, Optional

from pydantic import BaseModel, Field


class QueryRequest(BaseModel):
    question: str = Field(..., description="End-user question to answer")


class QueryResponse(BaseModel):
    question: str = Field(..., description="Sanitized question that was answered")
    answer: str
    warnings: List[str] = Field(default_factory=list, description="Non-blocking guardrail warnings")
    query_id: Optional[str] = None
    latency_ms: Optional[float] = None


class PolicyViolationResponse(BaseModel):
    error: str
    type: str
    suggestions: Optional[str] = None


class TextIngestionRequest(BaseModel):
    """Payload for ingesting raw text content."""

    text: str = Field(..., description="Document text to ingest")
    filename: str = Field(..., min_length=1, description="Original filename of the document")
    content_type: str = Field(default="text/plain")
    chunk_size: Optional[int] = Field(default=None, ge=1, description="Override the configured chunk size")


class DocumentSummary(BaseModel):
    id: str = Field(..., description="Stable identifier for the ingested document")
    name: str = Field(..., description="Generated storage name")
    original_filename: str
    uploaded_at: datetime


class DocumentIngestionResponse(BaseModel):
    message: str
    document: DocumentSummary
    chunk_count: int = Field(..., ge=0)


class DocumentListResponse(BaseModel):
    documents: List[DocumentSummary]


class ChunkModel(BaseModel):
    id: str
    document_id: str
    chunk_index: int
    size: int
    content_type: str
    content: str
    embedding: Optional[str] = Field(default=None, description="Embedding in bracketed decimal text form")


class ChunkListResponse(BaseModel):
    document_id: str
    chunks: List[ChunkModel]


class GuardrailStatusResponse(BaseModel):
    status: Dict[str, Any]

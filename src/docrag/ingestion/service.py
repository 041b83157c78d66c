"""Document ingestion pipeline: sanitize, chunk, embed, persist."""

from __future__ import annotations

import re
import threading
import time
from dataclasses import dataclass
from typing import List, Sequence
from uuid import uuid4

from langchain_text_splitters import CharacterTextSplitter

from docrag.errors import ProviderCallError, ValidationError
from docrag.metrics.observability import PipelineMetrics, TimedSection, get_logger
from docrag.models import DocumentChunk, DocumentMetadata
from docrag.providers.base import EmbeddingProvider
from docrag.retrieval.store import DocumentStore

LOGGER = get_logger("ingestion")

DEFAULT_CHUNK_SIZE = 1000

_WHITESPACE = re.compile(r"\s+")
_KEPT_CONTROLS = {"\n", "\r", "\t"}


def sanitize_utf8(text: str) -> str:
    """Strip NUL, BOM, control characters and lone surrogates, then trim."""

    kept: List[str] = []
    for ch in text or "":
        code = ord(ch)
        if ch == "\ufeff" or 0xD800 <= code <= 0xDFFF:
            continue
        if code < 32 and ch not in _KEPT_CONTROLS:
            continue
        kept.append(ch)
    return "".join(kept).strip()


def split_into_chunks(text: str, chunk_size: int) -> list[str]:
    """Greedily pack whitespace-separated words into chunks of at most ``chunk_size`` characters.

    Words are never split; a word longer than ``chunk_size`` becomes a chunk of
    its own.
    """

    if chunk_size <= 0:
        raise ValidationError("chunk size must be positive")
    normalized = _WHITESPACE.sub(" ", text or "").strip()
    if not normalized:
        return []
    splitter = CharacterTextSplitter(
        separator=" ",
        chunk_size=chunk_size,
        chunk_overlap=0,
        length_function=len,
    )
    return [chunk for chunk in splitter.split_text(normalized) if chunk]


@dataclass(frozen=True)
class IngestedDocument:
    metadata: DocumentMetadata
    chunks: Sequence[DocumentChunk]


class IngestionService:
    """Turns extracted document text into persisted, embedded chunks."""

    def __init__(
        self,
        embedder: EmbeddingProvider,
        store: DocumentStore,
        *,
        chunk_size: int = DEFAULT_CHUNK_SIZE,
    ) -> None:
        if chunk_size <= 0:
            raise ValueError("chunk_size must be positive")
        self._embedder = embedder
        self._store = store
        self._chunk_size = chunk_size

    def ingest(
        self,
        text: str,
        *,
        filename: str,
        content_type: str = "text/plain",
        chunk_size: int | None = None,
        cancel: threading.Event | None = None,
    ) -> list[DocumentChunk]:
        document = self.ingest_document(
            text,
            filename=filename,
            content_type=content_type,
            chunk_size=chunk_size,
            cancel=cancel,
        )
        return list(document.chunks)

    def ingest_document(
        self,
        text: str,
        *,
        filename: str,
        content_type: str = "text/plain",
        chunk_size: int | None = None,
        cancel: threading.Event | None = None,
    ) -> IngestedDocument:
        """Chunk, embed and store one document atomically.

        Either the document and every one of its chunks are stored, or nothing
        is: embedding failures happen before the store is touched and store
        failures roll back the whole transaction.
        """

        if not (filename or "").strip():
            raise ValidationError("filename is required")
        size = self._chunk_size if chunk_size is None else chunk_size
        if size <= 0:
            raise ValidationError("chunk size must be positive")
        content = sanitize_utf8(text)
        if not content:
            raise ValidationError("document contains no text")

        start = time.perf_counter()
        pieces = split_into_chunks(content, size)
        if not pieces:
            raise ValidationError("document contains no text")

        with TimedSection() as embedding_timer:
            vectors = self._embedder.generate_batch_embeddings(pieces, cancel=cancel)
        LOGGER.info("ingestion.embedded", chunk_count=len(pieces), duration_seconds=embedding_timer.elapsed)
        if len(vectors) != len(pieces):
            raise ProviderCallError(f"expected {len(pieces)} embeddings, received {len(vectors)}")

        metadata = DocumentMetadata.for_upload(filename.strip())
        chunks: List[DocumentChunk] = []
        for index, (piece, vector) in enumerate(zip(pieces, vectors)):
            cleaned = sanitize_utf8(piece)
            chunks.append(
                DocumentChunk(
                    chunk_id=uuid4().hex,
                    document_id=metadata.document_id,
                    content=cleaned,
                    vector=tuple(vector),
                    chunk_index=index,
                    size=len(cleaned.encode("utf-8")),
                    content_type=content_type or "text/plain",
                )
            )

        with self._store.transaction() as tx:
            tx.save_document(metadata)
            for chunk in chunks:
                tx.save_chunk(chunk)

        duration = time.perf_counter() - start
        PipelineMetrics.observe_ingestion(duration, len(chunks))
        LOGGER.info(
            "ingestion.complete",
            document_id=metadata.document_id,
            filename=metadata.original_filename,
            chunk_count=len(chunks),
            duration_seconds=duration,
        )
        return IngestedDocument(metadata=metadata, chunks=tuple(chunks))


__all__ = [
    "DEFAULT_CHUNK_SIZE",
    "IngestedDocument",
    "IngestionService",
    "sanitize_utf8",
    "split_into_chunks",
]

"""Document chunk persistence and nearest-neighbour search."""

from __future__ import annotations

import time
from contextlib import contextmanager
from datetime import datetime
from pathlib import Path
from typing import ContextManager, Iterator, Mapping, MutableMapping, Protocol, Sequence

import chromadb
from chromadb.api import ClientAPI

from docrag.config import Settings
from docrag.embeddings.codec import repair_vector
from docrag.errors import PersistenceError
from docrag.metrics.observability import get_logger
from docrag.models import DocumentChunk, DocumentMetadata, RetrievedChunk, Vector

LOGGER = get_logger("store")

# Extra rows fetched past the limit so ties at the cutoff can be ordered.
TIE_OVERFETCH = 8


class StoreTransaction:
    """Unit of work collecting writes until the enclosing block commits."""

    def __init__(self) -> None:
        self.documents: dict[str, DocumentMetadata] = {}
        self.chunks: list[DocumentChunk] = []

    def save_document(self, metadata: DocumentMetadata) -> None:
        self.documents[metadata.document_id] = metadata

    def save_chunk(self, chunk: DocumentChunk) -> None:
        self.chunks.append(chunk)


class DocumentStore(Protocol):
    """Protocol for chunk persistence backends."""

    def transaction(self) -> ContextManager[StoreTransaction]:
        """Collect writes that apply all together or not at all."""

    def similarity_search(self, vector: Sequence[float], limit: int) -> list[RetrievedChunk]:
        """Return up to ``limit`` chunks nearest to ``vector``, closest first."""

    def get_chunks_by_document_id(self, document_id: str) -> list[DocumentChunk]:
        """Return a document's chunks ordered by chunk index."""

    def list_documents(self) -> list[DocumentMetadata]:
        """Return every stored document, newest first."""

    def delete_document(self, document_id: str) -> bool:
        """Remove a document and its chunks; ``False`` if it did not exist."""

    def count(self) -> int:
        """Return total number of stored chunks."""


def _validate_chunk(chunk: DocumentChunk, documents: Mapping[str, DocumentMetadata]) -> None:
    if not chunk.content:
        raise PersistenceError(f"chunk {chunk.chunk_id}: chunk content cannot be empty")
    if not chunk.document_id or chunk.document_id not in documents:
        raise PersistenceError(f"chunk {chunk.chunk_id}: valid document ID is required")
    if chunk.chunk_index < 0:
        raise PersistenceError(f"chunk {chunk.chunk_id}: chunk index must be non-negative")
    if not chunk.vector:
        raise PersistenceError(f"chunk {chunk.chunk_id}: embedding cannot be empty")


class ChromaDocumentStore:
    """Chroma-backed document store.

    Document metadata is denormalized onto every chunk record, so a document
    exists exactly as long as it has chunks. Each record also carries an
    insertion sequence number that breaks distance ties deterministically.
    """

    def __init__(
        self,
        collection_name: str = "docrag-chunks",
        *,
        client: ClientAPI | None = None,
        persist_directory: str | Path | None = None,
        expected_dim: int = 0,
    ) -> None:
        if client is not None:
            self._client = client
        elif persist_directory is not None:
            self._client = chromadb.PersistentClient(path=str(persist_directory))
        else:
            self._client = chromadb.EphemeralClient()
        self._collection = self._client.get_or_create_collection(
            name=collection_name,
            metadata={"hnsw:space": "cosine"},
        )
        self._expected_dim = expected_dim

    @classmethod
    def from_settings(cls, settings: Settings, *, expected_dim: int = 0) -> "ChromaDocumentStore":
        client = None
        if settings.chroma_host:
            client = chromadb.HttpClient(
                host=settings.chroma_host,
                port=settings.chroma_port or 8000,
                ssl=settings.chroma_ssl,
            )
        return cls(
            settings.chroma_collection,
            client=client,
            persist_directory=None if client else settings.chroma_persist_dir,
            expected_dim=expected_dim,
        )

    @contextmanager
    def transaction(self) -> Iterator[StoreTransaction]:
        tx = StoreTransaction()
        try:
            yield tx
        except Exception as exc:
            LOGGER.warning("store.transaction_rolled_back", reason=str(exc), buffered_chunks=len(tx.chunks))
            raise
        self._commit(tx)

    def _commit(self, tx: StoreTransaction) -> None:
        if not tx.chunks:
            LOGGER.info("store.transaction_empty", documents=len(tx.documents))
            return
        ids = [chunk.chunk_id for chunk in tx.chunks]
        try:
            if len(set(ids)) != len(ids):
                raise PersistenceError("duplicate chunk id in transaction")
            for chunk in tx.chunks:
                _validate_chunk(chunk, tx.documents)
            base_seq = time.time_ns()
            self._collection.add(
                ids=ids,
                documents=[chunk.content for chunk in tx.chunks],
                embeddings=[list(chunk.vector) for chunk in tx.chunks],
                metadatas=[
                    self._serialize_chunk(chunk, tx.documents[chunk.document_id], base_seq + offset)
                    for offset, chunk in enumerate(tx.chunks)
                ],
            )
        except PersistenceError as exc:
            LOGGER.error("store.commit_rejected", detail=str(exc))
            raise
        except Exception as exc:
            LOGGER.error("store.commit_failed", detail=str(exc), chunk_count=len(ids))
            self._compensate(ids)
            raise PersistenceError(f"failed to save chunks: {exc}") from exc
        LOGGER.info("store.committed", documents=len(tx.documents), chunks=len(ids))

    def _compensate(self, ids: Sequence[str]) -> None:
        try:
            self._collection.delete(ids=list(ids))
        except Exception as exc:  # noqa: BLE001 - original failure is what surfaces
            LOGGER.error("store.rollback_failed", detail=str(exc))

    def similarity_search(self, vector: Sequence[float], limit: int) -> list[RetrievedChunk]:
        if limit <= 0:
            return []
        total = self.count()
        if total == 0:
            return []
        LOGGER.info("store.similarity_search", embedding_length=len(vector), limit=limit)
        fetch = min(total, limit + TIE_OVERFETCH)
        while True:
            ranked = self._ranked_query(vector, fetch)
            # Widen until the row at the cutoff is strictly closer than the last one fetched.
            if fetch >= total or len(ranked) <= limit or ranked[limit - 1][0] < ranked[-1][0]:
                break
            fetch = min(total, fetch * 2)
        LOGGER.info("store.similarity_search_complete", total_chunks_found=min(len(ranked), limit), fetched=fetch)
        return [item[2] for item in ranked[:limit]]

    def _ranked_query(self, vector: Sequence[float], n_results: int) -> list[tuple[float, int, RetrievedChunk]]:
        try:
            results = self._collection.query(
                query_embeddings=[list(vector)],
                n_results=n_results,
                include=["documents", "metadatas", "distances", "embeddings"],
            )
        except Exception as exc:
            LOGGER.error("store.query_failed", detail=str(exc))
            raise PersistenceError(f"similarity search failed: {exc}") from exc

        ids = self._first(results.get("ids"))
        documents = self._first(results.get("documents"))
        metadatas = self._first(results.get("metadatas"))
        distances = self._first(results.get("distances"))
        embeddings = self._first(results.get("embeddings"))
        ranked: list[tuple[float, int, RetrievedChunk]] = []
        for position, chunk_id in enumerate(ids):
            metadata = metadatas[position] or {}
            distance = float(distances[position]) if len(distances) > position else None
            chunk = self._deserialize_chunk(
                chunk_id,
                documents[position],
                metadata,
                embeddings[position] if len(embeddings) > position else (),
            )
            ranked.append(
                (
                    distance if distance is not None else float("inf"),
                    int(metadata.get("seq", 0)),
                    RetrievedChunk(chunk=chunk, distance=distance),
                )
            )
        ranked.sort(key=lambda item: (item[0], item[1]))
        return ranked

    def get_chunks_by_document_id(self, document_id: str) -> list[DocumentChunk]:
        results = self._get(where={"document_id": document_id}, include=["documents", "metadatas", "embeddings"])
        ids = results.get("ids") or []
        documents = results.get("documents") or []
        metadatas = results.get("metadatas") or []
        embeddings = self._sequence(results.get("embeddings"))
        chunks = [
            self._deserialize_chunk(
                chunk_id,
                documents[position],
                metadatas[position] or {},
                embeddings[position] if len(embeddings) > position else (),
            )
            for position, chunk_id in enumerate(ids)
        ]
        return sorted(chunks, key=lambda chunk: chunk.chunk_index)

    def list_documents(self) -> list[DocumentMetadata]:
        results = self._get(include=["metadatas"])
        documents: dict[str, DocumentMetadata] = {}
        for metadata in results.get("metadatas") or []:
            if not metadata:
                continue
            document_id = str(metadata.get("document_id", ""))
            if document_id and document_id not in documents:
                documents[document_id] = self._deserialize_document(metadata)
        return sorted(documents.values(), key=lambda doc: doc.uploaded_at, reverse=True)

    def delete_document(self, document_id: str) -> bool:
        existing = self._get(where={"document_id": document_id}, include=["metadatas"])
        ids = existing.get("ids") or []
        if not ids:
            return False
        try:
            self._collection.delete(ids=list(ids))
        except Exception as exc:
            raise PersistenceError(f"failed to delete document {document_id}: {exc}") from exc
        LOGGER.info("store.document_deleted", document_id=document_id, chunks=len(ids))
        return True

    def count(self) -> int:
        try:
            return int(self._collection.count())
        except Exception as exc:
            raise PersistenceError(f"failed to count chunks: {exc}") from exc

    def _get(self, **kwargs: object) -> Mapping[str, object]:
        try:
            return self._collection.get(**kwargs)
        except Exception as exc:
            raise PersistenceError(f"failed to read chunks: {exc}") from exc

    @staticmethod
    def _serialize_chunk(chunk: DocumentChunk, document: DocumentMetadata, seq: int) -> MutableMapping[str, object]:
        return {
            "document_id": document.document_id,
            "document_name": document.name,
            "original_filename": document.original_filename,
            "uploaded_at": document.uploaded_at.isoformat(),
            "chunk_index": chunk.chunk_index,
            "size": chunk.size,
            "content_type": chunk.content_type or "text/plain",
            "seq": seq,
        }

    @staticmethod
    def _deserialize_document(metadata: Mapping[str, object]) -> DocumentMetadata:
        return DocumentMetadata(
            document_id=str(metadata.get("document_id", "")),
            name=str(metadata.get("document_name", "")),
            original_filename=str(metadata.get("original_filename", "")),
            uploaded_at=datetime.fromisoformat(str(metadata["uploaded_at"])),
        )

    def _deserialize_chunk(
        self,
        chunk_id: str,
        document: str | None,
        metadata: Mapping[str, object],
        embedding: Sequence[float],
    ) -> DocumentChunk:
        vector: Vector = repair_vector(list(embedding), self._expected_dim) if len(embedding) else ()
        content = document or ""
        return DocumentChunk(
            chunk_id=chunk_id,
            document_id=str(metadata.get("document_id", "")),
            content=content,
            vector=vector,
            chunk_index=int(metadata.get("chunk_index", 0)),
            size=int(metadata.get("size", len(content.encode("utf-8")))),
            content_type=str(metadata.get("content_type", "text/plain")),
        )

    @staticmethod
    def _sequence(value: object) -> Sequence:
        if value is None:
            return []
        return value  # type: ignore[return-value]

    @classmethod
    def _first(cls, value: object) -> Sequence:
        value = cls._sequence(value)
        return value[0] if len(value) else []


__all__ = ["ChromaDocumentStore", "DocumentStore", "StoreTransaction"]

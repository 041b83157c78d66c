"""Tests for ingestion-related helpers."""

from __future__ import annotations

from pathlib import Path
from uuid import uuid4

import chromadb
import pytest

from docrag.errors import ProviderCallError, ValidationError
from docrag.ingestion import (
    IngestionService,
    UnsupportedFileTypeError,
    extract_text,
    sanitize_utf8,
    split_into_chunks,
)
from docrag.providers import HashEmbeddingProvider
from docrag.retrieval import ChromaDocumentStore


def _store() -> ChromaDocumentStore:
    return ChromaDocumentStore(f"ingest-{uuid4().hex}", client=chromadb.EphemeralClient())


class BrokenEmbedder:
    provider_name = "Broken"

    def generate_embedding(self, text, *, cancel=None):
        raise ProviderCallError("backend unavailable")

    def generate_batch_embeddings(self, texts, *, cancel=None):
        raise ProviderCallError("backend unavailable")


class ShortEmbedder(HashEmbeddingProvider):
    def generate_batch_embeddings(self, texts, *, cancel=None):
        return super().generate_batch_embeddings(texts, cancel=cancel)[:-1]


def test_split_packs_words_greedily():
    assert split_into_chunks("one two three four", 9) == ["one two", "three", "four"]


def test_split_keeps_oversized_word_whole():
    assert split_into_chunks("tiny supercalifragilistic end", 6) == ["tiny", "supercalifragilistic", "end"]


def test_split_normalizes_whitespace():
    assert split_into_chunks("  alpha\n\n beta\tgamma  ", 100) == ["alpha beta gamma"]
    assert split_into_chunks("   ", 10) == []


def test_split_rejects_non_positive_size():
    with pytest.raises(ValidationError):
        split_into_chunks("text", 0)


def test_sanitize_utf8_strips_invisible_characters():
    assert sanitize_utf8("\ufeff Hello\x00 world\x07\n") == "Hello world"
    assert sanitize_utf8("line one\n\tline two") == "line one\n\tline two"
    assert sanitize_utf8("bad \ud800 surrogate") == "bad  surrogate"


def test_ingest_stores_document_and_chunks():
    store = _store()
    service = IngestionService(HashEmbeddingProvider(dim=8), store, chunk_size=20)

    document = service.ingest_document(
        "Employees receive 20 vacation days per year. Requests need manager approval.",
        filename="handbook.txt",
    )

    assert len(document.chunks) > 1
    assert [chunk.chunk_index for chunk in document.chunks] == list(range(len(document.chunks)))
    assert all(len(chunk.vector) == 8 for chunk in document.chunks)
    assert all(chunk.size == len(chunk.content.encode("utf-8")) for chunk in document.chunks)
    assert document.metadata.original_filename == "handbook.txt"
    assert document.metadata.name.endswith("_handbook.txt")

    assert store.count() == len(document.chunks)
    stored = store.get_chunks_by_document_id(document.metadata.document_id)
    assert [chunk.content for chunk in stored] == [chunk.content for chunk in document.chunks]
    assert [doc.document_id for doc in store.list_documents()] == [document.metadata.document_id]


def test_ingest_returns_chunks_with_per_call_chunk_size():
    service = IngestionService(HashEmbeddingProvider(dim=8), _store())
    chunks = service.ingest("one two three four", filename="notes.md", content_type="text/markdown", chunk_size=9)
    assert [chunk.content for chunk in chunks] == ["one two", "three", "four"]
    assert {chunk.content_type for chunk in chunks} == {"text/markdown"}


def test_embedding_failure_stores_nothing():
    store = _store()
    service = IngestionService(BrokenEmbedder(), store)
    with pytest.raises(ProviderCallError):
        service.ingest("some policy text", filename="policy.txt")
    assert store.count() == 0
    assert store.list_documents() == []


def test_embedding_count_mismatch_is_an_error():
    store = _store()
    service = IngestionService(ShortEmbedder(dim=8), store, chunk_size=9)
    with pytest.raises(ProviderCallError, match="expected 3 embeddings"):
        service.ingest("one two three four", filename="notes.txt")
    assert store.count() == 0


@pytest.mark.parametrize(
    ("text", "filename"),
    [("some text", " "), ("\x00\ufeff  ", "empty.txt"), ("", "empty.txt")],
)
def test_invalid_inputs_are_rejected(text: str, filename: str):
    service = IngestionService(HashEmbeddingProvider(dim=8), _store())
    with pytest.raises(ValidationError):
        service.ingest(text, filename=filename)


def test_extract_text_reads_plain_text(tmp_path: Path) -> None:
    document = tmp_path / "example.txt"
    document.write_text("Hello world", encoding="utf-8")
    assert extract_text(document) == "Hello world"


def test_extract_text_rejects_unknown_extension(tmp_path: Path) -> None:
    document = tmp_path / "archive.zip"
    document.write_bytes(b"PK")
    with pytest.raises(UnsupportedFileTypeError):
        extract_text(document)

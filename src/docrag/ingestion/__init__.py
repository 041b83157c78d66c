"""Document ingestion pipeline."""

from .extraction import ExtractionError, UnsupportedFileTypeError, extract_text
from .service import (
    DEFAULT_CHUNK_SIZE,
    IngestedDocument,
    IngestionService,
    sanitize_utf8,
    split_into_chunks,
)

__all__ = [
    "DEFAULT_CHUNK_SIZE",
    "ExtractionError",
    "IngestedDocument",
    "IngestionService",
    "UnsupportedFileTypeError",
    "extract_text",
    "sanitize_utf8",
    "split_into_chunks",
]

"""Text extraction for uploaded files via LangChain loaders."""

from __future__ import annotations

from pathlib import Path
from typing import Mapping

from langchain_community.document_loaders import Docx2txtLoader, PyPDFLoader, TextLoader
from langchain_community.document_loaders.base import BaseLoader

from docrag.errors import DocRAGError, ValidationError
from docrag.metrics.observability import get_logger

LOGGER = get_logger("extraction")

_LOADERS: Mapping[str, type[BaseLoader]] = {
    ".pdf": PyPDFLoader,
    ".docx": Docx2txtLoader,
    ".txt": TextLoader,
    ".md": TextLoader,
}

CONTENT_TYPES: Mapping[str, str] = {
    ".pdf": "application/pdf",
    ".docx": "application/vnd.openxmlformats-officedocument.wordprocessingml.document",
    ".txt": "text/plain",
    ".md": "text/markdown",
}


class UnsupportedFileTypeError(ValidationError):
    """Raised when no loader handles the file extension."""


class ExtractionError(DocRAGError):
    """Raised when a loader fails to read a supported file."""


def extract_text(path: Path, *, encoding: str = "utf-8") -> str:
    """Return the text of ``path``, pages joined by blank lines."""

    suffix = path.suffix.lower()
    loader_cls = _LOADERS.get(suffix)
    if loader_cls is None:
        raise UnsupportedFileTypeError(f"Unsupported document type: {suffix or '<none>'}")
    if loader_cls is TextLoader:
        loader: BaseLoader = TextLoader(str(path), encoding=encoding)
    else:
        loader = loader_cls(str(path))
    try:
        documents = loader.load()
    except Exception as exc:  # loader-specific errors
        raise ExtractionError(f"Failed to load {path.name}: {exc}") from exc
    text = "\n\n".join(document.page_content for document in documents if document.page_content)
    LOGGER.info("extraction.complete", filename=path.name, pages=len(documents), characters=len(text))
    return text


__all__ = [
    "CONTENT_TYPES",
    "ExtractionError",
    "UnsupportedFileTypeError",
    "extract_text",
]

"""Service layer for DocRAG."""

from .query import NO_RELEVANT_INFORMATION, RAGOrchestrator, build_context

__all__ = ["NO_RELEVANT_INFORMATION", "RAGOrchestrator", "build_context"]

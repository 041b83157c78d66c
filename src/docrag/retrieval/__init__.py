from .store import ChromaDocumentStore, DocumentStore, StoreTransaction

__all__ = ["ChromaDocumentStore", "DocumentStore", "StoreTransaction"]

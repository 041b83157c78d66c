"""FastAPI application exposing DocRAG services."""

from __future__ import annotations

import tempfile
from dataclasses import dataclass
from pathlib import Path
from uuid import uuid4

from fastapi import Depends, FastAPI, File, HTTPException, Request, UploadFile, status
from fastapi.concurrency import run_in_threadpool
from fastapi.responses import JSONResponse, Response
from prometheus_client import CONTENT_TYPE_LATEST, generate_latest

from docrag.api.schemas import (
    ChunkListResponse,
    ChunkModel,
    DocumentIngestionResponse,
    DocumentListResponse,
    DocumentSummary,
    GuardrailStatusResponse,
    PolicyViolationResponse,
    QueryRequest,
    QueryResponse,
    TextIngestionRequest,
)
from docrag.config import Settings, get_settings
from docrag.embeddings.codec import encode_vector
from docrag.errors import (
    DocRAGError,
    OperationCancelledError,
    PolicyViolationError,
    ProviderCallError,
    ProviderConfigError,
    RateLimitedError,
    ValidationError,
)
from docrag.guardrails.engine import GuardrailConfig, guardrail_status
from docrag.ingestion.extraction import CONTENT_TYPES, extract_text
from docrag.ingestion.service import IngestedDocument, IngestionService
from docrag.metrics.observability import bind_correlation_id, clear_correlation_id, configure_logging, get_logger
from docrag.models import DocumentMetadata
from docrag.providers.factory import ProviderFactory
from docrag.providers.offline import HashEmbeddingProvider, TemplateChatProvider
from docrag.retrieval.store import ChromaDocumentStore, DocumentStore
from docrag.services.query import RAGOrchestrator


@dataclass(frozen=True)
class AppDependencies:
    store: DocumentStore
    ingestion: IngestionService
    orchestrator: RAGOrchestrator
    provider_name: str


def _build_dependencies(settings: Settings) -> AppDependencies:
    guardrail_config = GuardrailConfig.from_settings(settings)
    if settings.use_offline_providers:
        expected_dim = settings.embedding_dim or 768
        embedder = HashEmbeddingProvider(dim=expected_dim)
        chat = TemplateChatProvider()
        provider_name = "offline"
    else:
        factory = ProviderFactory(settings)
        kind = factory.validate_configuration()
        expected_dim = factory.expected_dimensions()
        embedder = factory.create_embedding_provider()
        chat = factory.create_chat_provider()
        provider_name = kind.value
    store = ChromaDocumentStore.from_settings(settings, expected_dim=expected_dim)
    ingestion = IngestionService(embedder, store, chunk_size=settings.chunk_size)
    orchestrator = RAGOrchestrator(
        embedder,
        chat,
        store,
        guardrail_config=guardrail_config,
        max_chunks=settings.max_chunks,
        expected_dim=expected_dim,
    )
    get_logger("api").info(
        "api.dependencies_ready",
        provider=provider_name,
        chat_provider=chat.provider_name,
        chat_model=chat.model_name,
        expected_dim=expected_dim,
    )
    return AppDependencies(store=store, ingestion=ingestion, orchestrator=orchestrator, provider_name=provider_name)


def _summary(metadata: DocumentMetadata) -> DocumentSummary:
    return DocumentSummary(
        id=metadata.document_id,
        name=metadata.name,
        original_filename=metadata.original_filename,
        uploaded_at=metadata.uploaded_at,
    )


def _ingestion_response(document: IngestedDocument) -> DocumentIngestionResponse:
    return DocumentIngestionResponse(
        message="Document uploaded and processed successfully",
        document=_summary(document.metadata),
        chunk_count=len(document.chunks),
    )


def create_app(*, settings: Settings | None = None, dependencies: AppDependencies | None = None) -> FastAPI:
    settings = settings or get_settings()
    configure_logging(settings.log_level, json_logs=settings.log_json)
    deps = dependencies or _build_dependencies(settings)

    logger = get_logger("api")
    app = FastAPI(title="DocRAG API", version="0.1.0")
    app.state.dependencies = deps

    @app.middleware("http")
    async def add_correlation_id(request: Request, call_next):  # type: ignore[override]
        correlation_id = request.headers.get("X-Request-ID", uuid4().hex)
        request.state.correlation_id = correlation_id
        bind_correlation_id(correlation_id)
        try:
            response = await call_next(request)
        finally:
            clear_correlation_id()
        response.headers["X-Correlation-ID"] = correlation_id
        return response

    def _error(request: Request, status_code: int, event: str, exc: Exception) -> JSONResponse:
        correlation_id = getattr(request.state, "correlation_id", uuid4().hex)
        logger.error(event, correlation_id=correlation_id, detail=str(exc))
        return JSONResponse(status_code=status_code, content={"detail": str(exc), "correlation_id": correlation_id})

    @app.exception_handler(PolicyViolationError)
    async def handle_policy_violation(request: Request, exc: PolicyViolationError) -> JSONResponse:
        body = PolicyViolationResponse(error=str(exc), type=exc.kind, suggestions=exc.suggestion)
        return JSONResponse(status_code=status.HTTP_400_BAD_REQUEST, content=body.model_dump())

    @app.exception_handler(ValidationError)
    async def handle_validation_error(request: Request, exc: ValidationError) -> JSONResponse:
        return _error(request, status.HTTP_400_BAD_REQUEST, "request.invalid", exc)

    @app.exception_handler(RateLimitedError)
    async def handle_rate_limited(request: Request, exc: RateLimitedError) -> JSONResponse:
        return _error(request, status.HTTP_429_TOO_MANY_REQUESTS, "provider.rate_limited", exc)

    @app.exception_handler(ProviderCallError)
    async def handle_provider_error(request: Request, exc: ProviderCallError) -> JSONResponse:
        return _error(request, status.HTTP_502_BAD_GATEWAY, "provider.error", exc)

    @app.exception_handler(ProviderConfigError)
    async def handle_provider_config_error(request: Request, exc: ProviderConfigError) -> JSONResponse:
        return _error(request, status.HTTP_503_SERVICE_UNAVAILABLE, "provider.not_configured", exc)

    @app.exception_handler(OperationCancelledError)
    async def handle_cancelled(request: Request, exc: OperationCancelledError) -> JSONResponse:
        return _error(request, status.HTTP_503_SERVICE_UNAVAILABLE, "request.cancelled", exc)

    @app.exception_handler(DocRAGError)
    async def handle_docrag_error(request: Request, exc: DocRAGError) -> JSONResponse:
        return _error(request, status.HTTP_500_INTERNAL_SERVER_ERROR, "docrag.error", exc)

    @app.exception_handler(Exception)
    async def handle_unexpected_error(request: Request, exc: Exception) -> JSONResponse:
        correlation_id = getattr(request.state, "correlation_id", uuid4().hex)
        logger.error("unhandled.error", correlation_id=correlation_id, detail=str(exc))
        return JSONResponse(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            content={"detail": "Internal Server Error", "correlation_id": correlation_id},
        )

    def get_dependencies(request: Request) -> AppDependencies:
        return request.app.state.dependencies

    def get_store(dep: AppDependencies = Depends(get_dependencies)) -> DocumentStore:
        return dep.store

    def get_ingestion(dep: AppDependencies = Depends(get_dependencies)) -> IngestionService:
        return dep.ingestion

    def get_orchestrator(dep: AppDependencies = Depends(get_dependencies)) -> RAGOrchestrator:
        return dep.orchestrator

    @app.post(
        "/query",
        response_model=QueryResponse,
        responses={status.HTTP_400_BAD_REQUEST: {"model": PolicyViolationResponse}},
    )
    def query_documents(
        payload: QueryRequest,
        request: Request,
        orchestrator: RAGOrchestrator = Depends(get_orchestrator),
    ) -> QueryResponse:
        user_id = request.headers.get("X-User-ID") or "anonymous"
        result = orchestrator.query(payload.question, user_id=user_id)
        if result.response_warnings:
            logger.warning(
                "query.response_warnings",
                user_id=user_id,
                query_id=result.query_id,
                violations=len(result.response_warnings),
            )
        return QueryResponse(
            question=result.question,
            answer=result.answer,
            warnings=list(result.warnings),
            query_id=result.query_id,
            latency_ms=result.latency_ms,
        )

    @app.post("/documents/text", response_model=DocumentIngestionResponse, status_code=status.HTTP_201_CREATED)
    def ingest_raw_text(
        payload: TextIngestionRequest,
        ingestion: IngestionService = Depends(get_ingestion),
    ) -> DocumentIngestionResponse:
        document = ingestion.ingest_document(
            payload.text,
            filename=payload.filename,
            content_type=payload.content_type,
            chunk_size=payload.chunk_size,
        )
        return _ingestion_response(document)

    @app.post("/documents", response_model=DocumentIngestionResponse, status_code=status.HTTP_201_CREATED)
    async def upload_document(
        file: UploadFile = File(...),
        ingestion: IngestionService = Depends(get_ingestion),
    ) -> DocumentIngestionResponse:
        filename = file.filename or f"upload-{uuid4().hex}"
        suffix = Path(filename).suffix.lower()
        if suffix not in settings.allowed_extensions_tuple:
            await file.close()
            raise HTTPException(
                status_code=status.HTTP_415_UNSUPPORTED_MEDIA_TYPE,
                detail=f"Unsupported file type: {suffix or 'unknown'}",
            )
        limit = settings.max_upload_size_mb * 1024 * 1024
        with tempfile.TemporaryDirectory() as tmpdir:
            destination = Path(tmpdir) / Path(filename).name
            bytes_written = 0
            with destination.open("wb") as out_f:
                while True:
                    chunk = await file.read(1024 * 1024)
                    if not chunk:
                        break
                    bytes_written += len(chunk)
                    if bytes_written > limit:
                        await file.close()
                        raise HTTPException(
                            status_code=status.HTTP_413_REQUEST_ENTITY_TOO_LARGE,
                            detail=f"File size exceeds {settings.max_upload_size_mb}MB limit",
                        )
                    out_f.write(chunk)
            await file.close()
            if bytes_written == 0:
                raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=f"File is empty: {filename}")
            text = await run_in_threadpool(extract_text, destination)
        content_type = CONTENT_TYPES.get(suffix) or file.content_type or "text/plain"
        document = await run_in_threadpool(
            lambda: ingestion.ingest_document(text, filename=filename, content_type=content_type),
        )
        return _ingestion_response(document)

    @app.get("/documents", response_model=DocumentListResponse)
    def list_documents(store: DocumentStore = Depends(get_store)) -> DocumentListResponse:
        return DocumentListResponse(documents=[_summary(metadata) for metadata in store.list_documents()])

    @app.get("/documents/{document_id}/chunks", response_model=ChunkListResponse)
    def get_document_chunks(document_id: str, store: DocumentStore = Depends(get_store)) -> ChunkListResponse:
        chunks = store.get_chunks_by_document_id(document_id)
        if not chunks:
            raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Document not found")
        return ChunkListResponse(
            document_id=document_id,
            chunks=[
                ChunkModel(
                    id=chunk.chunk_id,
                    document_id=chunk.document_id,
                    chunk_index=chunk.chunk_index,
                    size=chunk.size,
                    content_type=chunk.content_type,
                    content=chunk.content,
                    embedding=encode_vector(chunk.vector),
                )
                for chunk in chunks
            ],
        )

    @app.delete("/documents/{document_id}")
    def delete_document(document_id: str, store: DocumentStore = Depends(get_store)) -> dict[str, str]:
        if not store.delete_document(document_id):
            raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Document not found")
        return {"message": "Document deleted successfully"}

    @app.get("/guardrails/status", response_model=GuardrailStatusResponse)
    def get_guardrail_status(
        orchestrator: RAGOrchestrator = Depends(get_orchestrator),
    ) -> GuardrailStatusResponse:
        return GuardrailStatusResponse(status=guardrail_status(orchestrator.guardrail_config))

    @app.get("/metrics")
    async def metrics() -> Response:
        payload = generate_latest()
        return Response(content=payload, media_type=CONTENT_TYPE_LATEST)

    @app.get("/healthz")
    def healthcheck(dep: AppDependencies = Depends(get_dependencies)) -> dict[str, object]:
        from docrag import __version__

        services: dict[str, str] = {"ai_provider": f"{dep.provider_name}_configured"}
        health = "ok"
        try:
            dep.store.count()
            services["store"] = "healthy"
        except DocRAGError as exc:
            logger.error("health.store_unavailable", detail=str(exc))
            services["store"] = "unhealthy"
            health = "degraded"
        return {
            "status": health,
            "version": __version__,
            "environment": settings.environment,
            "services": services,
        }

    @app.head("/healthz")
    async def healthcheck_head() -> Response:
        return Response(status_code=status.HTTP_200_OK)

    return app


__all__ = ["AppDependencies", "create_app"]

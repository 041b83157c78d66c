"""Question answering pipeline combining guardrails, retrieval and generation."""

from __future__ import annotations

import threading
import time
from typing import Sequence
from uuid import uuid4

from docrag.embeddings.codec import repair_vector
from docrag.errors import (
    DocRAGError,
    OperationCancelledError,
    PersistenceError,
    PolicyViolationError,
    ProviderCallError,
)
from docrag.guardrails.engine import (
    DEFAULT_GUARDRAIL_CONFIG,
    GuardrailConfig,
    create_safe_prompt,
    has_errors,
    log_violations,
    sanitize_question,
    validate_question,
    validate_response,
    warning_messages,
)
from docrag.metrics.observability import PipelineMetrics, get_logger
from docrag.models import PipelineState, QueryResult, RetrievedChunk
from docrag.providers.base import ChatProvider, EmbeddingProvider
from docrag.retrieval.store import DocumentStore

NO_RELEVANT_INFORMATION = "I couldn't find any relevant information in the documents to answer your question."

CONTEXT_HEADER = "Based on the following information from the documents:\n\n"

DEFAULT_MAX_CHUNKS = 10


def build_context(chunks: Sequence[RetrievedChunk]) -> str:
    """Number retrieved chunks in result order under a fixed header."""

    parts = [CONTEXT_HEADER]
    for index, retrieved in enumerate(chunks, start=1):
        parts.append(f"Document {index}:\n{retrieved.chunk.content}\n\n")
    return "".join(parts)


class RAGOrchestrator:
    """Runs a question through the guarded RAG pipeline.

    The pipeline is a linear state machine::

        RECEIVED -> VALIDATED -> EMBEDDED -> RETRIEVED -> PROMPTED -> ANSWERED

    with REJECTED reachable from RECEIVED and FAILED from every later stage.
    Zero retrieved chunks short-circuits RETRIEVED -> ANSWERED with a fixed
    answer and no chat call. Provider calls already retry internally, so no
    stage retries again here.
    """

    def __init__(
        self,
        embedder: EmbeddingProvider,
        chat: ChatProvider,
        store: DocumentStore,
        *,
        guardrail_config: GuardrailConfig | None = None,
        max_chunks: int = DEFAULT_MAX_CHUNKS,
        expected_dim: int = 0,
    ) -> None:
        self._embedder = embedder
        self._chat = chat
        self._store = store
        self._guardrail_config = guardrail_config or DEFAULT_GUARDRAIL_CONFIG
        self._max_chunks = max_chunks
        self._expected_dim = expected_dim
        self._logger = get_logger("query")

    @property
    def guardrail_config(self) -> GuardrailConfig:
        return self._guardrail_config

    def query(
        self,
        question: str,
        *,
        user_id: str = "anonymous",
        cancel: threading.Event | None = None,
    ) -> QueryResult:
        start = time.perf_counter()
        query_id = uuid4().hex
        log = self._logger.bind(query_id=query_id, user_id=user_id)

        cleaned = sanitize_question(question)
        self._transition(log, PipelineState.RECEIVED, question_length=len(cleaned))
        violations = validate_question(cleaned, self._guardrail_config)
        if has_errors(violations):
            log_violations([v for v in violations if v.is_error], user_id, cleaned)
            self._finish(log, PipelineState.REJECTED, start, violation=violations[0].kind)
            raise PolicyViolationError([v for v in violations if v.is_error])
        log_violations(violations, user_id, cleaned)
        warnings = warning_messages(violations)
        self._transition(log, PipelineState.VALIDATED, warnings=len(warnings))

        self._check_cancelled(log, cancel, start)
        try:
            raw_vector = self._embedder.generate_embedding(cleaned, cancel=cancel)
        except DocRAGError:
            self._finish(log, PipelineState.FAILED, start, stage="embedding")
            raise
        except Exception as exc:
            self._finish(log, PipelineState.FAILED, start, stage="embedding")
            raise ProviderCallError(f"failed to get question embedding: {exc}") from exc
        vector = repair_vector(raw_vector, self._expected_dim)
        self._transition(log, PipelineState.EMBEDDED, original_length=len(raw_vector), cleaned_length=len(vector))

        self._check_cancelled(log, cancel, start)
        retrieval_start = time.perf_counter()
        try:
            chunks = self._store.similarity_search(vector, self._max_chunks)
        except PersistenceError:
            self._finish(log, PipelineState.FAILED, start, stage="retrieval")
            raise
        except Exception as exc:
            self._finish(log, PipelineState.FAILED, start, stage="retrieval")
            raise PersistenceError(f"failed to find relevant chunks: {exc}") from exc
        retrieval_duration = time.perf_counter() - retrieval_start
        PipelineMetrics.observe_retrieval(retrieval_duration, len(chunks))
        self._transition(
            log,
            PipelineState.RETRIEVED,
            chunks_found=len(chunks),
            max_chunks=self._max_chunks,
            duration_seconds=retrieval_duration,
        )

        if not chunks:
            log.warning("query.no_relevant_chunks")
            return self._answered(log, start, query_id, cleaned, NO_RELEVANT_INFORMATION, warnings, chunks, ())

        context = build_context(chunks)
        prompt = create_safe_prompt(cleaned, context)
        self._transition(log, PipelineState.PROMPTED, context_length=len(context), prompt_length=len(prompt))

        self._check_cancelled(log, cancel, start)
        generation_start = time.perf_counter()
        try:
            answer = self._chat.generate_response(prompt, "", cancel=cancel)
        except DocRAGError:
            self._finish(log, PipelineState.FAILED, start, stage="generation")
            raise
        except Exception as exc:
            self._finish(log, PipelineState.FAILED, start, stage="generation")
            raise ProviderCallError(f"failed to generate response: {exc}") from exc
        PipelineMetrics.observe_generation(time.perf_counter() - generation_start)

        response_violations = validate_response(answer)
        log_violations(response_violations, user_id, cleaned)
        return self._answered(
            log,
            start,
            query_id,
            cleaned,
            answer,
            warnings,
            chunks,
            tuple(warning_messages(response_violations)),
        )

    def _answered(
        self,
        log,
        start: float,
        query_id: str,
        question: str,
        answer: str,
        warnings: Sequence[str],
        chunks: Sequence[RetrievedChunk],
        response_warnings: Sequence[str],
    ) -> QueryResult:
        latency_ms = self._finish(log, PipelineState.ANSWERED, start, answer_length=len(answer))
        return QueryResult(
            question=question,
            answer=answer,
            warnings=tuple(warnings),
            state=PipelineState.ANSWERED,
            query_id=query_id,
            latency_ms=latency_ms,
            chunks=tuple(chunks),
            response_warnings=tuple(response_warnings),
        )

    def _check_cancelled(self, log, cancel: threading.Event | None, start: float) -> None:
        if cancel is not None and cancel.is_set():
            self._finish(log, PipelineState.FAILED, start, stage="cancelled")
            raise OperationCancelledError("query cancelled")

    @staticmethod
    def _transition(log, state: PipelineState, **fields: object) -> None:
        log.info("query.state", state=state.value, **fields)

    def _finish(self, log, state: PipelineState, start: float, **fields: object) -> float:
        latency_ms = (time.perf_counter() - start) * 1000
        PipelineMetrics.query_outcomes.labels(state=state.value).inc()
        self._transition(log, state, latency_ms=latency_ms, **fields)
        return latency_ms


__all__ = ["CONTEXT_HEADER", "DEFAULT_MAX_CHUNKS", "NO_RELEVANT_INFORMATION", "RAGOrchestrator", "build_context"]

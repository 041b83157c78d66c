"""Structured logging, correlation ids and Prometheus metrics for DocRAG.

Every module logs through :func:`get_logger` with dotted event names
(``"provider.call_failed"``) and key/value context. The HTTP layer binds a
correlation id per request so that all events of one request can be joined.
"""

from __future__ import annotations

import logging
import time
from contextvars import ContextVar
from typing import Callable, Optional

import structlog
from prometheus_client import Counter, Histogram

SERVICE_NAME = "docrag"

_configured_level: Optional[int] = None
_correlation_id_var: ContextVar[str] = ContextVar("correlation_id", default="-")


def _add_service(_logger, _method: str, event_dict: dict) -> dict:
    event_dict.setdefault("service", SERVICE_NAME)
    return event_dict


def configure_logging(level: int | str | None = None, *, json_logs: bool = True) -> None:
    """Configure structlog over stdlib logging.

    Without arguments this only configures once, at INFO. An explicit level
    reconfigures, which is how the API applies ``DOCRAG_LOG_LEVEL``.
    """

    global _configured_level  # noqa: PLW0603 - module-level guard
    if level is None:
        if _configured_level is not None:
            return
        level = logging.INFO
    if isinstance(level, str):
        level = logging.getLevelName(level.upper())
        if not isinstance(level, int):
            level = logging.INFO
    logging.basicConfig(level=level, format="%(message)s")
    logging.getLogger().setLevel(level)
    renderer = structlog.processors.JSONRenderer() if json_logs else structlog.dev.ConsoleRenderer()
    structlog.configure(
        processors=[
            structlog.contextvars.merge_contextvars,
            _add_service,
            structlog.processors.add_log_level,
            structlog.processors.TimeStamper(fmt="iso", utc=True),
            renderer,
        ],
        wrapper_class=structlog.make_filtering_bound_logger(level),
        context_class=dict,
        logger_factory=structlog.stdlib.LoggerFactory(),
        cache_logger_on_first_use=False,
    )
    _configured_level = level


def bind_correlation_id(correlation_id: str) -> None:
    structlog.contextvars.bind_contextvars(correlation_id=correlation_id)
    _correlation_id_var.set(correlation_id)


def clear_correlation_id() -> None:
    structlog.contextvars.unbind_contextvars("correlation_id")
    _correlation_id_var.set("-")


def get_correlation_id() -> str:
    return _correlation_id_var.get()


def get_logger(name: str = SERVICE_NAME) -> structlog.BoundLogger:
    configure_logging()
    return structlog.get_logger(name)


class PipelineMetrics:
    """Prometheus metrics for pipeline stages and provider calls."""

    provider_latency = Histogram(
        "docrag_provider_call_duration_seconds",
        "Time spent in provider calls, retries included.",
        ["provider", "operation"],
        buckets=(0.05, 0.1, 0.5, 1.0, 2.5, 5.0, 10.0, 30.0),
    )
    provider_retries = Counter(
        "docrag_provider_retries_total",
        "Retries issued after a failed provider attempt.",
    )
    rate_limited = Counter(
        "docrag_rate_limited_total",
        "Provider calls rejected by the outbound token bucket.",
        ["provider"],
    )
    guardrail_violations = Counter(
        "docrag_guardrail_violations_total",
        "Guardrail violations detected on questions and answers.",
        ["kind", "severity"],
    )
    query_outcomes = Counter(
        "docrag_query_outcomes_total",
        "Terminal state reached by each question.",
        ["state"],
    )
    ingestion_latency = Histogram(
        "docrag_ingestion_duration_seconds",
        "Time spent ingesting documents.",
        buckets=(0.05, 0.1, 0.5, 1.0, 2.5, 5.0, 10.0),
    )
    ingestion_chunks = Histogram(
        "docrag_ingestion_chunk_count",
        "Chunks produced per ingested document.",
        buckets=(0, 1, 5, 10, 20, 40, 80),
    )
    retrieval_latency = Histogram(
        "docrag_retrieval_duration_seconds",
        "Time spent retrieving context chunks.",
        buckets=(0.01, 0.05, 0.1, 0.5, 1.0, 2.0, 5.0),
    )
    retrieved_chunk_count = Histogram(
        "docrag_retrieved_chunk_count",
        "Number of chunks returned by retrieval.",
        buckets=(0, 1, 2, 3, 5, 8, 13),
    )
    generation_latency = Histogram(
        "docrag_generation_duration_seconds",
        "Time spent generating answers.",
        buckets=(0.05, 0.1, 0.5, 1.0, 2.0, 5.0, 10.0),
    )

    @classmethod
    def observe_ingestion(cls, duration_seconds: float, chunk_count: int) -> None:
        cls.ingestion_latency.observe(duration_seconds)
        cls.ingestion_chunks.observe(chunk_count)

    @classmethod
    def observe_retrieval(cls, duration_seconds: float, chunk_count: int) -> None:
        cls.retrieval_latency.observe(duration_seconds)
        cls.retrieved_chunk_count.observe(chunk_count)

    @classmethod
    def observe_generation(cls, duration_seconds: float) -> None:
        cls.generation_latency.observe(duration_seconds)

    @classmethod
    def observe_violation(cls, kind: str, severity: str) -> None:
        cls.guardrail_violations.labels(kind=kind, severity=severity).inc()


class TimedSection:
    """Times a block and hands the elapsed seconds to ``observe``.

    ``observe`` runs whether or not the block raises; the elapsed time stays
    readable afterwards as :attr:`elapsed`.
    """

    def __init__(self, observe: Callable[[float], None] | None = None) -> None:
        self._observe = observe
        self._start = 0.0
        self.elapsed = 0.0

    def __enter__(self) -> "TimedSection":
        self._start = time.perf_counter()
        return self

    def __exit__(self, exc_type, exc, tb) -> None:
        self.elapsed = time.perf_counter() - self._start
        if self._observe is not None:
            self._observe(self.elapsed)


__all__ = [
    "PipelineMetrics",
    "SERVICE_NAME",
    "TimedSection",
    "bind_correlation_id",
    "clear_correlation_id",
    "configure_logging",
    "get_correlation_id",
    "get_logger",
]

"""Bounded exponential backoff for fallible provider operations."""

from __future__ import annotations

import random
import threading
import time
from dataclasses import dataclass
from typing import Callable, TypeVar

from tenacity import RetryCallState, Retrying, retry_if_exception, stop_after_attempt

from docrag.config import Settings
from docrag.errors import OperationCancelledError
from docrag.metrics.observability import PipelineMetrics, get_logger

LOGGER = get_logger("retry")

T = TypeVar("T")

# Jitter adds up to this fraction of the computed delay.
JITTER_FRACTION = 0.1


@dataclass(frozen=True)
class RetryPolicy:
    """Retry parameters; ``max_attempts`` counts retries after the first call."""

    max_attempts: int = 3
    initial_delay: float = 1.0
    max_delay: float = 30.0
    multiplier: float = 2.0
    jitter: bool = True

    def __post_init__(self) -> None:
        if self.max_attempts < 0:
            raise ValueError("max_attempts must not be negative")
        if self.initial_delay < 0 or self.max_delay < 0:
            raise ValueError("delays must not be negative")
        if self.multiplier <= 0:
            raise ValueError("multiplier must be positive")

    @classmethod
    def from_settings(cls, settings: Settings) -> "RetryPolicy":
        return cls(
            max_attempts=settings.retry_max_attempts,
            initial_delay=settings.retry_initial_delay_seconds,
            max_delay=settings.retry_max_delay_seconds,
            multiplier=settings.retry_multiplier,
            jitter=settings.retry_jitter,
        )


DEFAULT_RETRY_POLICY = RetryPolicy()


def compute_delay(policy: RetryPolicy, attempt: int, *, rand: Callable[[], float] = random.random) -> float:
    """Return the wait before retry number ``attempt`` (1-based)."""

    delay = min(policy.initial_delay * policy.multiplier ** (attempt - 1), policy.max_delay)
    if policy.jitter:
        delay += rand() * delay * JITTER_FRACTION
    return delay


def retry_with_backoff(
    policy: RetryPolicy,
    fn: Callable[[], T],
    *,
    cancel: threading.Event | None = None,
    sleep: Callable[[float], None] = time.sleep,
    retry_on: Callable[[BaseException], bool] | None = None,
) -> T:
    """Call ``fn`` until it succeeds or ``policy.max_attempts`` retries are spent.

    Returns the first successful result and re-raises the last error once the
    retries run out. Errors rejected by ``retry_on`` propagate immediately.
    When ``cancel`` is given, waits are interruptible and a set event aborts
    with :class:`OperationCancelledError`.
    """

    def attempt() -> T:
        if cancel is not None and cancel.is_set():
            raise OperationCancelledError("operation cancelled")
        return fn()

    def should_retry(exc: BaseException) -> bool:
        if not isinstance(exc, Exception) or isinstance(exc, OperationCancelledError):
            return False
        return retry_on is None or retry_on(exc)

    def wait(retry_state: RetryCallState) -> float:
        return compute_delay(policy, retry_state.attempt_number)

    def interruptible_sleep(delay: float) -> None:
        if cancel is None:
            sleep(delay)
        elif cancel.wait(delay):
            raise OperationCancelledError("operation cancelled while waiting to retry")

    def before_sleep(retry_state: RetryCallState) -> None:
        LOGGER.warning(
            "retry.scheduled",
            attempt=retry_state.attempt_number,
            max_attempts=policy.max_attempts,
            delay_seconds=round(retry_state.next_action.sleep, 3),
            error=str(retry_state.outcome.exception()),
        )
        PipelineMetrics.provider_retries.inc()

    def exhausted(retry_state: RetryCallState) -> T:
        LOGGER.error("retry.exhausted", attempts=retry_state.attempt_number, error=str(retry_state.outcome.exception()))
        return retry_state.outcome.result()

    retryer = Retrying(
        stop=stop_after_attempt(policy.max_attempts + 1),
        wait=wait,
        retry=retry_if_exception(should_retry),
        sleep=interruptible_sleep,
        before_sleep=before_sleep,
        retry_error_callback=exhausted,
        reraise=True,
    )
    return retryer(attempt)


__all__ = ["DEFAULT_RETRY_POLICY", "JITTER_FRACTION", "RetryPolicy", "compute_delay", "retry_with_backoff"]

from __future__ import annotations

import threading

import pytest
from prometheus_client import REGISTRY

from docrag.errors import OperationCancelledError, ProviderCallError, ValidationError
from docrag.providers.retry import RetryPolicy, compute_delay, retry_with_backoff

NO_JITTER = RetryPolicy(max_attempts=3, initial_delay=1.0, max_delay=30.0, multiplier=2.0, jitter=False)


class Flaky:
    def __init__(self, failures: int) -> None:
        self.failures = failures
        self.calls = 0

    def __call__(self) -> str:
        self.calls += 1
        if self.calls <= self.failures:
            raise ProviderCallError(f"boom {self.calls}")
        return "ok"


def test_returns_first_success_after_transient_failures():
    sleeps: list[float] = []
    fn = Flaky(failures=2)
    assert retry_with_backoff(NO_JITTER, fn, sleep=sleeps.append) == "ok"
    assert fn.calls == 3
    assert sleeps == [1.0, 2.0]


def test_exhausted_retries_invoke_n_plus_one_times_and_reraise_last_error():
    sleeps: list[float] = []
    fn = Flaky(failures=100)
    with pytest.raises(ProviderCallError, match="boom 4"):
        retry_with_backoff(NO_JITTER, fn, sleep=sleeps.append)
    assert fn.calls == NO_JITTER.max_attempts + 1
    assert sleeps == [1.0, 2.0, 4.0]


def test_zero_retries_calls_once():
    fn = Flaky(failures=100)
    with pytest.raises(ProviderCallError):
        retry_with_backoff(RetryPolicy(max_attempts=0), fn, sleep=lambda _: None)
    assert fn.calls == 1


def test_delay_is_capped_and_jittered_upwards():
    policy = RetryPolicy(initial_delay=1.0, max_delay=5.0, multiplier=2.0, jitter=False)
    assert compute_delay(policy, 1) == 1.0
    assert compute_delay(policy, 3) == 4.0
    assert compute_delay(policy, 4) == 5.0

    jittered = RetryPolicy(initial_delay=1.0, max_delay=5.0, multiplier=2.0, jitter=True)
    assert compute_delay(jittered, 1, rand=lambda: 0.0) == 1.0
    assert compute_delay(jittered, 1, rand=lambda: 1.0) == pytest.approx(1.1)
    assert compute_delay(jittered, 10, rand=lambda: 1.0) == pytest.approx(5.5)


def test_non_retryable_errors_propagate_immediately():
    calls = []

    def fn() -> None:
        calls.append(1)
        raise ValidationError("bad input")

    with pytest.raises(ValidationError):
        retry_with_backoff(
            NO_JITTER,
            fn,
            sleep=lambda _: None,
            retry_on=lambda exc: isinstance(exc, ProviderCallError),
        )
    assert len(calls) == 1


def test_cancelled_before_first_attempt_does_not_call():
    cancel = threading.Event()
    cancel.set()
    fn = Flaky(failures=0)
    with pytest.raises(OperationCancelledError):
        retry_with_backoff(NO_JITTER, fn, cancel=cancel)
    assert fn.calls == 0


def test_cancel_interrupts_backoff_wait():
    cancel = threading.Event()
    calls = []

    def fn() -> None:
        calls.append(1)
        cancel.set()
        raise ProviderCallError("boom")

    with pytest.raises(OperationCancelledError):
        retry_with_backoff(RetryPolicy(initial_delay=30.0, max_delay=30.0), fn, cancel=cancel)
    assert len(calls) == 1


def test_policy_validates_parameters():
    with pytest.raises(ValueError):
        RetryPolicy(max_attempts=-1)
    with pytest.raises(ValueError):
        RetryPolicy(multiplier=0)


def test_each_scheduled_retry_increments_the_retry_counter():
    before = REGISTRY.get_sample_value("docrag_provider_retries_total") or 0.0
    fn = Flaky(failures=2)

    retry_with_backoff(NO_JITTER, fn, sleep=lambda _: None)

    assert REGISTRY.get_sample_value("docrag_provider_retries_total") == before + 2

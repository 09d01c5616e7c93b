"""
driftguard - unit tests for the retry handler

File: tests/unit/resilience/test_retry.py

Purpose
- Validate bounded exponential backoff, retry eligibility and the terminal
  ``validation_failed`` result after exhausting attempts.
"""

from __future__ import annotations

from collections.abc import Awaitable, Callable
from typing import Any

import pytest
from hypothesis import given, settings
from hypothesis import strategies as st

from driftguard.domain.errors import ErrorKind, RetryableStatusError, TransportError
from driftguard.domain.models import IssueType, ValidationResult
from driftguard.resilience.retry import (
    RetryContext,
    RetryHandler,
    RetryPolicy,
    compute_backoff_delay,
)

_CONTEXT = RetryContext(endpoint="/users", method="GET")


class _Recorder:
    def __init__(self) -> None:
        self.delays: list[float] = []

    async def sleep(self, seconds: float) -> None:
        self.delays.append(seconds)


def _handler(recorder: _Recorder, **kwargs: Any) -> RetryHandler:
    return RetryHandler(sleep=recorder.sleep, random_fn=lambda: 0.0, **kwargs)


def _scripted(
    *outcomes: object,
) -> tuple[Callable[[], Awaitable[ValidationResult]], dict[str, int]]:
    remaining = list(outcomes)
    calls = {"count": 0}

    async def operation() -> ValidationResult:
        calls["count"] += 1
        outcome = remaining.pop(0)
        if isinstance(outcome, BaseException):
            raise outcome
        assert isinstance(outcome, ValidationResult)
        return outcome

    return operation, calls


def _ok() -> ValidationResult:
    return ValidationResult(endpoint="/users", method="GET", success=True, status_code=200)


def test_backoff_grows_exponentially_without_jitter() -> None:
    policy = RetryPolicy(base_backoff_seconds=1.0)

    delays = [compute_backoff_delay(n, policy, random_fn=lambda: 0.0) for n in range(4)]

    assert delays == [1.0, 2.0, 4.0, 8.0]


def test_backoff_is_capped() -> None:
    policy = RetryPolicy(base_backoff_seconds=1.0, max_backoff_seconds=30.0)
    assert compute_backoff_delay(10, policy, random_fn=lambda: 1.0) == 30.0


@given(
    attempt=st.integers(min_value=0, max_value=12),
    base=st.floats(min_value=0.0, max_value=5.0),
    jitter=st.floats(min_value=0.0, max_value=1.0),
)
@settings(max_examples=60, derandomize=True, deadline=None)
def test_property_backoff_bounds(attempt: int, base: float, jitter: float) -> None:
    policy = RetryPolicy(base_backoff_seconds=base)

    delay = compute_backoff_delay(attempt, policy, random_fn=lambda: jitter)

    exponential = base * 2**attempt
    assert delay <= policy.max_backoff_seconds
    assert delay >= min(policy.max_backoff_seconds, exponential)
    assert delay <= exponential * (1 + policy.jitter_ratio) + 1e-9


def test_backoff_rejects_out_of_range_random() -> None:
    with pytest.raises(ValueError):
        compute_backoff_delay(0, RetryPolicy(), random_fn=lambda: 1.5)


async def test_returns_first_success_without_sleeping() -> None:
    recorder = _Recorder()
    operation, calls = _scripted(_ok())

    result = await _handler(recorder).with_retry(operation, _CONTEXT)

    assert result.success is True
    assert calls["count"] == 1
    assert recorder.delays == []


async def test_retries_transient_errors_then_succeeds() -> None:
    recorder = _Recorder()
    operation, calls = _scripted(
        TransportError(ErrorKind.REQUEST_TIMEOUT, "Request timeout after 30s"),
        RetryableStatusError(503),
        _ok(),
    )

    result = await _handler(recorder, max_retries=2, base_backoff_seconds=1.0).with_retry(
        operation, _CONTEXT
    )

    assert result.success is True
    assert calls["count"] == 3
    assert recorder.delays == [1.0, 2.0]


async def test_exhausted_retries_produce_validation_failed_issue() -> None:
    recorder = _Recorder()
    error = RetryableStatusError(503)
    operation, calls = _scripted(error, error, error)

    result = await _handler(recorder, max_retries=2).with_retry(operation, _CONTEXT)

    assert calls["count"] == 3
    assert result.success is False
    assert result.metadata.attempts == 3
    (issue,) = result.issues
    assert issue.type is IssueType.VALIDATION_FAILED
    assert issue.message == "Validation failed after 3 attempts: HTTP 503 response"
    assert issue.details["original_error"] == "RetryableStatusError"
    assert issue.details["attempts"] == 3
    assert issue.details["error_kind"] == "RETRYABLE_STATUS"


async def test_non_retryable_error_fails_after_single_attempt() -> None:
    recorder = _Recorder()
    operation, calls = _scripted(ValueError("schema exploded"))

    result = await _handler(recorder, max_retries=5).with_retry(operation, _CONTEXT)

    assert calls["count"] == 1
    assert recorder.delays == []
    assert result.issues[0].message == "Validation failed after 1 attempts: schema exploded"


async def test_on_retry_callback_receives_attempt_details() -> None:
    recorder = _Recorder()
    seen: list[tuple[int, int, str, float]] = []
    operation, _ = _scripted(RetryableStatusError(500), _ok())
    context = RetryContext(
        endpoint="/users",
        method="GET",
        on_retry=lambda attempt, limit, error, delay: seen.append(
            (attempt, limit, str(error), delay)
        ),
    )

    await _handler(recorder, max_retries=2, base_backoff_seconds=0.5).with_retry(
        operation, context
    )

    assert seen == [(1, 2, "HTTP 500 response", 0.5)]


async def test_failing_retry_callback_does_not_abort_retry() -> None:
    recorder = _Recorder()
    operation, calls = _scripted(RetryableStatusError(500), _ok())

    def explode(*_args: object) -> None:
        raise RuntimeError("callback bug")

    context = RetryContext(endpoint="/users", method="GET", on_retry=explode)
    result = await _handler(recorder).with_retry(operation, context)

    assert result.success is True
    assert calls["count"] == 2


async def test_custom_retry_overrides_policy_for_one_call() -> None:
    recorder = _Recorder()
    handler = _handler(recorder, max_retries=3)
    operation, calls = _scripted(RetryableStatusError(502), _ok())

    result = await handler.with_custom_retry(operation, _CONTEXT, max_retries=0)

    assert calls["count"] == 1
    assert result.issues[0].type is IssueType.VALIDATION_FAILED
    assert handler.max_retries == 3


def test_presets() -> None:
    ci = RetryHandler.for_ci()
    dev = RetryHandler.for_development()

    assert (ci.policy.max_retries, ci.policy.base_backoff_seconds) == (3, 2.0)
    assert (dev.policy.max_retries, dev.policy.base_backoff_seconds) == (1, 0.5)

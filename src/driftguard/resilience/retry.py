"""Retry handler with bounded exponential backoff and per-attempt jitter."""

from __future__ import annotations

import asyncio
import random as random_module
from collections.abc import Awaitable, Callable
from dataclasses import dataclass
from typing import Any, TypeAlias

import structlog

from driftguard.constants import (
    BACKOFF_JITTER_RATIO,
    DEFAULT_BASE_BACKOFF_SECONDS,
    DEFAULT_MAX_RETRIES,
    MAX_BACKOFF_SECONDS,
)
from driftguard.domain.errors import EngineError, is_retryable_error
from driftguard.domain.models import Issue, IssueType, ResultMetadata, ValidationResult

SleepFn: TypeAlias = Callable[[float], Awaitable[None]]
RandomFn: TypeAlias = Callable[[], float]
RetryCallback: TypeAlias = Callable[[int, int, BaseException, float], None]
ValidationOperation: TypeAlias = Callable[[], Awaitable[ValidationResult]]


@dataclass(frozen=True, slots=True)
class RetryPolicy:
    max_retries: int = DEFAULT_MAX_RETRIES
    base_backoff_seconds: float = DEFAULT_BASE_BACKOFF_SECONDS
    jitter_ratio: float = BACKOFF_JITTER_RATIO
    max_backoff_seconds: float = MAX_BACKOFF_SECONDS

    def __post_init__(self) -> None:
        if self.max_retries < 0:
            raise ValueError("max_retries must be >= 0")
        if self.base_backoff_seconds < 0:
            raise ValueError("base_backoff_seconds must be >= 0")
        if not (0.0 <= self.jitter_ratio <= 1.0):
            raise ValueError("jitter_ratio must be between 0.0 and 1.0")
        if self.max_backoff_seconds < 0:
            raise ValueError("max_backoff_seconds must be >= 0")


@dataclass(frozen=True, slots=True)
class RetryContext:
    """Identifies the endpoint an operation validates; fresh per ``with_retry`` call."""

    endpoint: str
    method: str
    on_retry: RetryCallback | None = None


def compute_backoff_delay(
    attempt: int,
    policy: RetryPolicy,
    *,
    random_fn: RandomFn = random_module.random,
) -> float:
    """Return ``min(cap, base*2^attempt + jitter)`` for a 0-based ``attempt``."""

    if attempt < 0:
        raise ValueError("attempt must be >= 0")
    random_value = random_fn()
    if not (0.0 <= random_value <= 1.0):
        raise ValueError("random_fn must return values in [0.0, 1.0]")

    exponential = policy.base_backoff_seconds * (2**attempt)
    jitter = random_value * policy.jitter_ratio * exponential
    return min(policy.max_backoff_seconds, exponential + jitter)


class RetryHandler:
    def __init__(
        self,
        max_retries: int = DEFAULT_MAX_RETRIES,
        base_backoff_seconds: float = DEFAULT_BASE_BACKOFF_SECONDS,
        *,
        sleep: SleepFn = asyncio.sleep,
        random_fn: RandomFn = random_module.random,
        logger: Any | None = None,
    ) -> None:
        self._policy = RetryPolicy(
            max_retries=max_retries,
            base_backoff_seconds=base_backoff_seconds,
        )
        self._sleep = sleep
        self._random_fn = random_fn
        self._logger = logger if logger is not None else structlog.get_logger(__name__)

    @classmethod
    def for_ci(cls, **kwargs: Any) -> RetryHandler:
        """More patient preset for shared CI runners."""
        return cls(max_retries=3, base_backoff_seconds=2.0, **kwargs)

    @classmethod
    def for_development(cls, **kwargs: Any) -> RetryHandler:
        return cls(max_retries=1, base_backoff_seconds=0.5, **kwargs)

    @property
    def policy(self) -> RetryPolicy:
        return self._policy

    @property
    def max_retries(self) -> int:
        return self._policy.max_retries

    def is_retryable(self, error: BaseException) -> bool:
        return is_retryable_error(error)

    def backoff_for(self, attempt: int) -> float:
        return compute_backoff_delay(attempt, self._policy, random_fn=self._random_fn)

    async def with_retry(
        self,
        operation: ValidationOperation,
        context: RetryContext,
    ) -> ValidationResult:
        return await self._run(operation, context, self._policy)

    async def with_custom_retry(
        self,
        operation: ValidationOperation,
        context: RetryContext,
        *,
        max_retries: int | None = None,
        base_backoff_seconds: float | None = None,
    ) -> ValidationResult:
        """Run one call under an overridden policy without changing this handler."""
        policy = RetryPolicy(
            max_retries=self._policy.max_retries if max_retries is None else max_retries,
            base_backoff_seconds=(
                self._policy.base_backoff_seconds
                if base_backoff_seconds is None
                else base_backoff_seconds
            ),
            jitter_ratio=self._policy.jitter_ratio,
            max_backoff_seconds=self._policy.max_backoff_seconds,
        )
        return await self._run(operation, context, policy)

    async def _run(
        self,
        operation: ValidationOperation,
        context: RetryContext,
        policy: RetryPolicy,
    ) -> ValidationResult:
        attempt = 0
        while True:
            try:
                return await operation()
            except Exception as exc:  # noqa: BLE001
                attempts_made = attempt + 1
                if not self.is_retryable(exc) or attempt >= policy.max_retries:
                    return self._failure_result(context, exc, attempts_made)

                delay_seconds = compute_backoff_delay(
                    attempt, policy, random_fn=self._random_fn
                )
                self._logger.info(
                    "retry_scheduled",
                    endpoint=context.endpoint,
                    method=context.method,
                    attempt=attempts_made,
                    max_retries=policy.max_retries,
                    backoff_seconds=round(delay_seconds, 3),
                    error=str(exc),
                )
                self._notify(context, attempts_made, policy.max_retries, exc, delay_seconds)
                await self._sleep(delay_seconds)
                attempt += 1

    def _notify(
        self,
        context: RetryContext,
        attempt: int,
        max_retries: int,
        error: BaseException,
        delay_seconds: float,
    ) -> None:
        if context.on_retry is None:
            return
        try:
            context.on_retry(attempt, max_retries, error, delay_seconds)
        except Exception:  # noqa: BLE001
            self._logger.warning(
                "retry_callback_failed",
                endpoint=context.endpoint,
                method=context.method,
                exc_info=True,
            )

    def _failure_result(
        self,
        context: RetryContext,
        error: BaseException,
        attempts: int,
    ) -> ValidationResult:
        final_message = str(error) or type(error).__name__
        details: dict[str, object] = {
            "original_error": type(error).__name__,
            "attempts": attempts,
            "final_error_message": final_message,
        }
        if isinstance(error, EngineError):
            details["error_kind"] = error.kind.value
        self._logger.warning(
            "retry_exhausted",
            endpoint=context.endpoint,
            method=context.method,
            attempts=attempts,
            error=final_message,
        )
        return ValidationResult.failure(
            context.endpoint,
            context.method,
            Issue(
                type=IssueType.VALIDATION_FAILED,
                message=f"Validation failed after {attempts} attempts: {final_message}",
                details=details,
            ),
            metadata=ResultMetadata(attempts=attempts),
        )


__all__ = [
    "RandomFn",
    "RetryCallback",
    "RetryContext",
    "RetryHandler",
    "RetryPolicy",
    "SleepFn",
    "ValidationOperation",
    "compute_backoff_delay",
]

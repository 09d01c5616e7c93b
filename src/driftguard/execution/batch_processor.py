"""
driftguard - batch processor

File: src/driftguard/execution/batch_processor.py

Purpose
- Drive endpoint validation across a whole contract while bounding concurrency and
  request rate, and return exactly one result per endpoint in submission order.

Behavior
- Endpoints are split into batches of ``concurrency``. Batches run one after
  another with ``delay_seconds`` between them; endpoints inside a batch run
  concurrently and their results are appended positionally.
- Per endpoint: rate limiter token -> circuit breaker -> retry handler (optional)
  -> validator.
- A rejected call while the breaker is open yields a ``circuit_breaker_open``
  result. Any other exception yields a ``batch_processing_error`` result. Neither
  aborts sibling endpoints.
- The progress callback sees every result once; its failures are only logged.
"""

from __future__ import annotations

import asyncio
import dataclasses
from collections.abc import Awaitable, Callable, Sequence
from dataclasses import dataclass
from typing import Any, TypeAlias, TypeVar

import structlog

from driftguard.constants import (
    DEFAULT_BATCH_DELAY_SECONDS,
    DEFAULT_CONCURRENCY,
    DEFAULT_FAILURE_THRESHOLD,
    DEFAULT_REQUESTS_PER_SECOND,
    DEFAULT_RESET_TIMEOUT_SECONDS,
    DEFAULT_SUCCESS_THRESHOLD,
)
from driftguard.domain.errors import CircuitBreakerOpenError, ErrorKind
from driftguard.domain.models import (
    TRANSPORT_FAILURE_TYPES,
    EndpointDescriptor,
    Issue,
    IssueType,
    ValidationOptions,
    ValidationResult,
)
from driftguard.resilience.circuit_breaker import CircuitBreaker, CircuitBreakerConfig
from driftguard.resilience.rate_limiter import RateLimiter
from driftguard.resilience.retry import RetryContext, RetryHandler
from driftguard.validation.endpoint_validator import Validator

T = TypeVar("T")
ProgressCallback: TypeAlias = Callable[[ValidationResult], None]
BatchStrategy: TypeAlias = Callable[
    [Sequence[EndpointDescriptor]], Sequence[Sequence[EndpointDescriptor]]
]
SleepFn: TypeAlias = Callable[[float], Awaitable[None]]

_UNSET: Any = object()
# Failures raised before any request was sent never reflect the target's health.
_CLIENT_SIDE_ERROR_KINDS: frozenset[str] = frozenset({ErrorKind.UNRESOLVED_PATH_PARAMETERS.value})


@dataclass(frozen=True, slots=True)
class BatchProcessorConfig:
    concurrency: int = DEFAULT_CONCURRENCY
    delay_seconds: float = DEFAULT_BATCH_DELAY_SECONDS
    requests_per_second: float = DEFAULT_REQUESTS_PER_SECOND
    failure_threshold: int = DEFAULT_FAILURE_THRESHOLD
    reset_timeout_seconds: float = DEFAULT_RESET_TIMEOUT_SECONDS
    success_threshold: int = DEFAULT_SUCCESS_THRESHOLD

    def __post_init__(self) -> None:
        if isinstance(self.concurrency, bool) or self.concurrency < 1:
            raise ValueError("concurrency must be >= 1")
        if self.delay_seconds < 0:
            raise ValueError("delay_seconds must be >= 0")
        if self.requests_per_second <= 0:
            raise ValueError("requests_per_second must be > 0")

    def breaker_config(self) -> CircuitBreakerConfig:
        return CircuitBreakerConfig(
            failure_threshold=self.failure_threshold,
            reset_timeout_seconds=self.reset_timeout_seconds,
            success_threshold=self.success_threshold,
        )

    def to_dict(self) -> dict[str, object]:
        return dataclasses.asdict(self)


def create_batches(items: Sequence[T], batch_size: int) -> list[list[T]]:
    """Split ``items`` into consecutive chunks of at most ``batch_size``."""

    if batch_size < 1:
        raise ValueError("batch_size must be >= 1")
    return [list(items[index : index + batch_size]) for index in range(0, len(items), batch_size)]


def counts_as_breaker_failure(result: ValidationResult) -> bool:
    """A result only trips the breaker when no response was obtained at all."""

    if result.status_code is not None:
        return False
    return any(
        issue.type in TRANSPORT_FAILURE_TYPES
        and issue.details.get("error_kind") not in _CLIENT_SIDE_ERROR_KINDS
        for issue in result.issues
    )


class BatchProcessor:
    def __init__(
        self,
        validator: Validator,
        config: BatchProcessorConfig | None = None,
        *,
        retry_handler: RetryHandler | None = None,
        progress_callback: ProgressCallback | None = None,
        rate_limiter: RateLimiter | None = None,
        circuit_breaker: CircuitBreaker | None = None,
        sleep: SleepFn = asyncio.sleep,
        logger: Any | None = None,
    ) -> None:
        self._validator = validator
        self._config = config if config is not None else BatchProcessorConfig()
        self._retry_handler = retry_handler
        self._progress_callback = progress_callback
        self._logger = logger if logger is not None else structlog.get_logger(__name__)
        self._rate_limiter = (
            rate_limiter
            if rate_limiter is not None
            else RateLimiter(self._config.requests_per_second)
        )
        self._circuit_breaker = (
            circuit_breaker
            if circuit_breaker is not None
            else CircuitBreaker(self._config.breaker_config())
        )
        self._sleep = sleep

    @classmethod
    def for_ci(cls, validator: Validator, **kwargs: Any) -> BatchProcessor:
        """Sequential processing with longer pauses for shared CI runners."""
        config = BatchProcessorConfig(concurrency=1, delay_seconds=0.5)
        return cls(validator, config, **kwargs)

    @classmethod
    def for_development(cls, validator: Validator, **kwargs: Any) -> BatchProcessor:
        config = BatchProcessorConfig(concurrency=5, delay_seconds=0.05)
        return cls(validator, config, **kwargs)

    @property
    def config(self) -> BatchProcessorConfig:
        return self._config

    @property
    def rate_limiter(self) -> RateLimiter:
        return self._rate_limiter

    @property
    def circuit_breaker(self) -> CircuitBreaker:
        return self._circuit_breaker

    @property
    def retry_handler(self) -> RetryHandler | None:
        return self._retry_handler

    def describe(self) -> dict[str, object]:
        return {
            **self._config.to_dict(),
            "has_retry_handler": self._retry_handler is not None,
            "has_progress_callback": self._progress_callback is not None,
        }

    def update_config(
        self,
        *,
        retry_handler: RetryHandler | None = _UNSET,
        progress_callback: ProgressCallback | None = _UNSET,
        **changes: Any,
    ) -> BatchProcessorConfig:
        """Apply ``changes`` to the config and retune the shared limiter and breaker."""
        if changes:
            previous = self._config
            self._config = dataclasses.replace(previous, **changes)
            if self._config.requests_per_second != previous.requests_per_second:
                self._rate_limiter.set_rate(self._config.requests_per_second)
            if self._config.breaker_config() != previous.breaker_config():
                self._circuit_breaker.reconfigure(self._config.breaker_config())
        if retry_handler is not _UNSET:
            self._retry_handler = retry_handler
        if progress_callback is not _UNSET:
            self._progress_callback = progress_callback
        self._logger.info("batch_processor_reconfigured", **self.describe())
        return self._config

    async def process_endpoints(
        self,
        endpoints: Sequence[EndpointDescriptor],
        options: ValidationOptions | None = None,
    ) -> list[ValidationResult]:
        if not endpoints:
            return []
        batches = create_batches(endpoints, self._config.concurrency)
        self._logger.info(
            "batch_processing_started",
            endpoint_count=len(endpoints),
            batch_count=len(batches),
            concurrency=self._config.concurrency,
            delay_seconds=self._config.delay_seconds,
        )
        results = await self._run_batches(batches, options)
        self._logger.info("batch_processing_completed", result_count=len(results))
        return results

    async def process_with_custom_batching(
        self,
        endpoints: Sequence[EndpointDescriptor],
        strategy: BatchStrategy,
        options: ValidationOptions | None = None,
    ) -> list[ValidationResult]:
        if not endpoints:
            return []
        batches = [list(batch) for batch in strategy(endpoints) if batch]
        return await self._run_batches(batches, options)

    async def _run_batches(
        self,
        batches: Sequence[Sequence[EndpointDescriptor]],
        options: ValidationOptions | None,
    ) -> list[ValidationResult]:
        results: list[ValidationResult] = []
        for index, batch in enumerate(batches):
            self._logger.debug(
                "batch_started", batch_index=index + 1, batch_count=len(batches), size=len(batch)
            )
            results.extend(await self._process_batch(batch, options))
            if index < len(batches) - 1 and self._config.delay_seconds > 0:
                await self._sleep(self._config.delay_seconds)
        return results

    async def _process_batch(
        self,
        batch: Sequence[EndpointDescriptor],
        options: ValidationOptions | None,
    ) -> list[ValidationResult]:
        outcomes = await asyncio.gather(
            *(self._process_endpoint(endpoint, options) for endpoint in batch),
            return_exceptions=True,
        )
        results: list[ValidationResult] = []
        for endpoint, outcome in zip(batch, outcomes, strict=True):
            if isinstance(outcome, ValidationResult):
                result = outcome
            elif isinstance(outcome, Exception):
                result = self._error_result(endpoint, outcome)
            else:
                raise outcome
            self._report(result)
            results.append(result)
        return results

    async def _process_endpoint(
        self,
        endpoint: EndpointDescriptor,
        options: ValidationOptions | None,
    ) -> ValidationResult:
        with structlog.contextvars.bound_contextvars(
            endpoint=endpoint.path, method=endpoint.method
        ):
            await self._rate_limiter.acquire()
            try:
                return await self._circuit_breaker.execute(
                    lambda: self._validate(endpoint, options),
                    is_failure=counts_as_breaker_failure,
                )
            except CircuitBreakerOpenError as exc:
                self._logger.warning("endpoint_skipped_circuit_open")
                return ValidationResult.failure(
                    endpoint.path,
                    endpoint.method,
                    Issue(
                        type=IssueType.CIRCUIT_BREAKER_OPEN,
                        message=f"Circuit breaker open: {exc.detail}",
                        details={"state": self._circuit_breaker.state.value},
                    ),
                )

    async def _validate(
        self,
        endpoint: EndpointDescriptor,
        options: ValidationOptions | None,
    ) -> ValidationResult:
        if self._retry_handler is None:
            return await self._validator.validate_endpoint(endpoint.path, endpoint.method, options)
        return await self._retry_handler.with_retry(
            lambda: self._validator.validate_endpoint(
                endpoint.path, endpoint.method, options, raise_retryable=True
            ),
            RetryContext(endpoint=endpoint.path, method=endpoint.method, on_retry=self._on_retry),
        )

    def _on_retry(
        self, attempt: int, max_retries: int, error: BaseException, delay_seconds: float
    ) -> None:
        self._logger.warning(
            "endpoint_retrying",
            attempt=attempt,
            max_retries=max_retries,
            backoff_seconds=round(delay_seconds, 3),
            error=str(error),
        )

    def _report(self, result: ValidationResult) -> None:
        if self._progress_callback is None:
            return
        try:
            self._progress_callback(result)
        except Exception:  # noqa: BLE001
            self._logger.warning(
                "progress_callback_failed",
                endpoint=result.endpoint,
                method=result.method,
                exc_info=True,
            )

    def _error_result(self, endpoint: EndpointDescriptor, error: Exception) -> ValidationResult:
        message = str(error) or type(error).__name__
        self._logger.error(
            "endpoint_processing_failed",
            endpoint=endpoint.path,
            method=endpoint.method,
            error=message,
            exc_info=error,
        )
        kind = getattr(error, "kind", None)
        details: dict[str, object] = {"original_error": type(error).__name__}
        if kind is not None:
            details["error_kind"] = str(kind)
        return ValidationResult.failure(
            endpoint.path,
            endpoint.method,
            Issue(
                type=IssueType.BATCH_PROCESSING_ERROR,
                message=f"Batch processing failed: {message}",
                details=details,
            ),
        )


__all__ = [
    "BatchProcessor",
    "BatchProcessorConfig",
    "BatchStrategy",
    "ProgressCallback",
    "counts_as_breaker_failure",
    "create_batches",
]

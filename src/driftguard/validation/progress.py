"""Validator decorator that reports every produced result to a callback."""

from __future__ import annotations

from collections.abc import Callable
from typing import Any

import structlog

from driftguard.domain.models import EndpointDescriptor, ValidationOptions, ValidationResult
from driftguard.validation.endpoint_validator import Validator

ResultCallback = Callable[[ValidationResult], None]


class ProgressReportingValidator:
    """Wrap a ``Validator`` without mutating it.

    Attributes not defined here are read from the wrapped validator, so callers
    can keep using extras such as ``initialize`` or ``contract``.
    """

    def __init__(
        self,
        wrapped: Validator,
        on_result: ResultCallback,
        *,
        logger: Any | None = None,
    ) -> None:
        self._wrapped = wrapped
        self._on_result = on_result
        self._logger = logger if logger is not None else structlog.get_logger(__name__)
        self._reported = 0

    @property
    def wrapped(self) -> Validator:
        return self._wrapped

    @property
    def reported_count(self) -> int:
        return self._reported

    @property
    def endpoints(self) -> tuple[EndpointDescriptor, ...]:
        return self._wrapped.endpoints

    async def validate_endpoint(
        self,
        path: str,
        method: str,
        options: ValidationOptions | None = None,
        *,
        raise_retryable: bool = False,
    ) -> ValidationResult:
        result = await self._wrapped.validate_endpoint(
            path, method, options, raise_retryable=raise_retryable
        )
        self._reported += 1
        try:
            self._on_result(result)
        except Exception:  # noqa: BLE001
            self._logger.warning(
                "progress_callback_failed",
                endpoint=result.endpoint,
                method=result.method,
                exc_info=True,
            )
        return result

    def __getattr__(self, attribute: str) -> Any:
        # Only reached for names missing on the decorator itself.
        if attribute.startswith("__"):
            raise AttributeError(attribute)
        return getattr(self._wrapped, attribute)


__all__ = ["ProgressReportingValidator", "ResultCallback"]

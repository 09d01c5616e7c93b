"""
driftguard - engine error taxonomy

File: src/driftguard/domain/errors.py

Purpose
- Closed set of engine failure kinds and the exception types that carry them.

What should be included in this file
- ``ErrorKind`` enumerating every failure the engine raises.
- Retryability classification for engine errors and raw OS/network errors.
- Exit-code routing for process entry points.

Functional requirements
- Retryability is a property of the error value, never derived from message codes
  when the error is an ``EngineError``.
"""

from __future__ import annotations

import errno
import socket
from collections.abc import Sequence
from enum import IntEnum, StrEnum
from typing import Final


class ErrorKind(StrEnum):
    NOT_INITIALIZED = "NOT_INITIALIZED"
    UNRESOLVED_PATH_PARAMETERS = "UNRESOLVED_PATH_PARAMETERS"
    DNS_LOOKUP_FAILED = "DNS_LOOKUP_FAILED"
    CONNECTION_REFUSED = "CONNECTION_REFUSED"
    REQUEST_TIMEOUT = "REQUEST_TIMEOUT"
    REQUEST_ABORTED = "REQUEST_ABORTED"
    HTTP_REQUEST_FAILED = "HTTP_REQUEST_FAILED"
    RETRYABLE_STATUS = "RETRYABLE_STATUS"
    CIRCUIT_OPEN = "CIRCUIT_OPEN"
    SCOPE_DISPOSED = "SCOPE_DISPOSED"


class ExitCode(IntEnum):
    """Deterministic process exit-code contract."""

    SUCCESS = 0
    VALIDATION_FAILED = 1
    SETUP_ERROR = 2
    INTERNAL_ERROR = 3


TRANSPORT_KINDS: Final[frozenset[ErrorKind]] = frozenset(
    {
        ErrorKind.DNS_LOOKUP_FAILED,
        ErrorKind.CONNECTION_REFUSED,
        ErrorKind.REQUEST_TIMEOUT,
        ErrorKind.REQUEST_ABORTED,
        ErrorKind.HTTP_REQUEST_FAILED,
    }
)

_RETRYABLE_ERRNOS: Final[frozenset[int]] = frozenset(
    {
        errno.ECONNRESET,
        errno.ETIMEDOUT,
        errno.ECONNREFUSED,
        errno.EPIPE,
        errno.EHOSTUNREACH,
    }
)
_RETRYABLE_MESSAGE_TERMS: Final[tuple[str, ...]] = ("timeout", "timed out", "econnreset")

_EXIT_CODE_BY_KIND: Final[dict[ErrorKind, ExitCode]] = {
    ErrorKind.NOT_INITIALIZED: ExitCode.SETUP_ERROR,
    ErrorKind.UNRESOLVED_PATH_PARAMETERS: ExitCode.VALIDATION_FAILED,
    ErrorKind.DNS_LOOKUP_FAILED: ExitCode.SETUP_ERROR,
    ErrorKind.CONNECTION_REFUSED: ExitCode.SETUP_ERROR,
    ErrorKind.REQUEST_TIMEOUT: ExitCode.SETUP_ERROR,
    ErrorKind.REQUEST_ABORTED: ExitCode.VALIDATION_FAILED,
    ErrorKind.HTTP_REQUEST_FAILED: ExitCode.VALIDATION_FAILED,
    ErrorKind.RETRYABLE_STATUS: ExitCode.VALIDATION_FAILED,
    ErrorKind.CIRCUIT_OPEN: ExitCode.VALIDATION_FAILED,
    ErrorKind.SCOPE_DISPOSED: ExitCode.INTERNAL_ERROR,
}


class EngineError(RuntimeError):
    """Base engine error with deterministic machine-readable fields."""

    def __init__(
        self,
        *,
        kind: ErrorKind,
        detail: str,
        retryable: bool,
        http_status: int | None = None,
    ) -> None:
        self.kind = ErrorKind(kind)
        self.detail = " ".join(str(detail).split()) or self.kind.value
        self.retryable = bool(retryable)
        self.http_status = http_status
        super().__init__(self.detail)

    def describe(self) -> str:
        parts = [f"kind={self.kind.value}", f"retryable={str(self.retryable).lower()}"]
        if self.http_status is not None:
            parts.append(f"http_status={self.http_status}")
        parts.append(f"detail={self.detail}")
        return " ".join(parts)


class NotInitializedError(EngineError):
    """Raised when validation is attempted before a contract was loaded."""

    def __init__(self, detail: str = "validator is not initialized with a contract") -> None:
        super().__init__(kind=ErrorKind.NOT_INITIALIZED, detail=detail, retryable=False)


class UnresolvedPathParametersError(EngineError):
    """Raised when a path template still holds placeholders after substitution."""

    def __init__(self, parameters: Sequence[str]) -> None:
        self.parameters = tuple(parameters)
        rendered = ", ".join(f"{{{name}}}" for name in self.parameters)
        super().__init__(
            kind=ErrorKind.UNRESOLVED_PATH_PARAMETERS,
            detail=f"Unresolved path parameters: {rendered}",
            retryable=False,
        )


class TransportError(EngineError):
    """Classified failure raised by the HTTP transport collaborator."""

    def __init__(
        self,
        kind: ErrorKind,
        detail: str,
        *,
        retryable: bool | None = None,
    ) -> None:
        if kind not in TRANSPORT_KINDS:
            raise ValueError(f"{kind} is not a transport error kind")
        resolved = kind is not ErrorKind.HTTP_REQUEST_FAILED if retryable is None else retryable
        super().__init__(kind=kind, detail=detail, retryable=resolved)


class RetryableStatusError(EngineError):
    """HTTP 5xx/429 response surfaced as an error so it can be retried."""

    def __init__(self, status_code: int, *, detail: str | None = None) -> None:
        super().__init__(
            kind=ErrorKind.RETRYABLE_STATUS,
            detail=detail or f"HTTP {status_code} response",
            retryable=True,
            http_status=status_code,
        )


class CircuitBreakerOpenError(EngineError):
    """Raised when the circuit breaker rejects a call without invoking it."""

    def __init__(self, detail: str = "Circuit breaker is OPEN") -> None:
        super().__init__(kind=ErrorKind.CIRCUIT_OPEN, detail=detail, retryable=False)


class ScopeDisposedError(EngineError):
    def __init__(self, detail: str = "Cannot register resources in a disposed scope") -> None:
        super().__init__(kind=ErrorKind.SCOPE_DISPOSED, detail=detail, retryable=False)


def is_retryable_status(status_code: int) -> bool:
    return status_code >= 500 or status_code == 429


def is_retryable_error(error: BaseException) -> bool:
    """Return whether ``error`` is a transient failure worth retrying."""

    if isinstance(error, EngineError):
        return error.retryable
    if isinstance(error, socket.gaierror):
        return True
    if isinstance(error, OSError) and error.errno in _RETRYABLE_ERRNOS:
        return True
    if isinstance(error, (ConnectionError, TimeoutError)):
        return True
    message = str(error).lower()
    return any(term in message for term in _RETRYABLE_MESSAGE_TERMS)


def exit_code_for_error(error: BaseException) -> ExitCode:
    """Route an exception raised out of a validation run to a process exit code."""

    current: BaseException | None = error
    seen: set[int] = set()
    while current is not None and id(current) not in seen:
        seen.add(id(current))
        if isinstance(current, EngineError):
            return _EXIT_CODE_BY_KIND[current.kind]
        if _is_config_error(current):
            return ExitCode.SETUP_ERROR
        current = current.__cause__ or current.__context__
    return ExitCode.INTERNAL_ERROR


def _is_config_error(error: BaseException) -> bool:
    from driftguard.config.loader import ConfigLoadError
    from driftguard.config.schema import ConfigValidationError

    return isinstance(error, (ConfigLoadError, ConfigValidationError))


__all__ = [
    "CircuitBreakerOpenError",
    "EngineError",
    "ErrorKind",
    "ExitCode",
    "NotInitializedError",
    "RetryableStatusError",
    "ScopeDisposedError",
    "TRANSPORT_KINDS",
    "TransportError",
    "UnresolvedPathParametersError",
    "exit_code_for_error",
    "is_retryable_error",
    "is_retryable_status",
]

"""Frozen domain models for endpoint descriptors, issues and validation results."""

from __future__ import annotations

import dataclasses
import json
from collections.abc import Mapping, Sequence
from dataclasses import dataclass
from datetime import UTC, datetime
from enum import StrEnum
from typing import Final

JSONScalar = str | int | float | bool | None
JSONValue = JSONScalar | list["JSONValue"] | dict[str, "JSONValue"]
JSONSchema = Mapping[str, object]

_HTTP_METHODS: Final[frozenset[str]] = frozenset(
    {"GET", "POST", "PUT", "PATCH", "DELETE", "HEAD", "OPTIONS", "TRACE"}
)


class Severity(StrEnum):
    ERROR = "error"
    WARNING = "warning"
    INFO = "info"


class IssueType(StrEnum):
    """Closed vocabulary of deviations the engine can report."""

    MISSING_FIELD = "missing_field"
    TYPE_MISMATCH = "type_mismatch"
    FORMAT_MISMATCH = "format_mismatch"
    ENUM_VIOLATION = "enum_violation"
    RANGE_VIOLATION = "range_violation"
    LENGTH_VIOLATION = "length_violation"
    PATTERN_VIOLATION = "pattern_violation"
    ARRAY_LENGTH_VIOLATION = "array_length_violation"
    UNEXPECTED_FIELD = "unexpected_field"
    SCHEMA_VIOLATION = "schema_violation"
    SCHEMA_COMPILATION_ERROR = "schema_compilation_error"
    UNEXPECTED_STATUS_CODE = "unexpected_status_code"
    MISSING_HEADER = "missing_header"
    ENDPOINT_NOT_FOUND = "endpoint_not_found"
    NETWORK_ERROR = "network_error"
    VALIDATION_FAILED = "validation_failed"
    CIRCUIT_BREAKER_OPEN = "circuit_breaker_open"
    BATCH_PROCESSING_ERROR = "batch_processing_error"


_SEVERITY_BY_TYPE: Final[Mapping[IssueType, Severity]] = {
    IssueType.MISSING_FIELD: Severity.ERROR,
    IssueType.TYPE_MISMATCH: Severity.ERROR,
    IssueType.SCHEMA_COMPILATION_ERROR: Severity.ERROR,
    IssueType.ENDPOINT_NOT_FOUND: Severity.ERROR,
    IssueType.NETWORK_ERROR: Severity.ERROR,
    IssueType.VALIDATION_FAILED: Severity.ERROR,
    IssueType.BATCH_PROCESSING_ERROR: Severity.ERROR,
    IssueType.FORMAT_MISMATCH: Severity.WARNING,
    IssueType.UNEXPECTED_FIELD: Severity.WARNING,
    IssueType.UNEXPECTED_STATUS_CODE: Severity.WARNING,
    IssueType.MISSING_HEADER: Severity.WARNING,
    IssueType.CIRCUIT_BREAKER_OPEN: Severity.WARNING,
    IssueType.ENUM_VIOLATION: Severity.INFO,
    IssueType.RANGE_VIOLATION: Severity.INFO,
    IssueType.LENGTH_VIOLATION: Severity.INFO,
    IssueType.PATTERN_VIOLATION: Severity.INFO,
    IssueType.ARRAY_LENGTH_VIOLATION: Severity.INFO,
    IssueType.SCHEMA_VIOLATION: Severity.INFO,
}

# Issue types produced when no usable response was obtained.
TRANSPORT_FAILURE_TYPES: Final[frozenset[IssueType]] = frozenset(
    {IssueType.NETWORK_ERROR, IssueType.VALIDATION_FAILED}
)


def severity_for(issue_type: IssueType | str) -> Severity:
    """Return the severity class for ``issue_type``; a pure function of the type."""

    return _SEVERITY_BY_TYPE[IssueType(issue_type)]


def utc_timestamp() -> str:
    """Return the current UTC time as an ISO-8601 string with millisecond precision."""

    return datetime.now(tz=UTC).isoformat(timespec="milliseconds").replace("+00:00", "Z")


def _normalize_method(method: str) -> str:
    if not isinstance(method, str) or not method.strip():
        raise ValueError("method must be a non-empty string")
    return method.strip().upper()


@dataclass(frozen=True, slots=True)
class Issue:
    """Single detected deviation between actual and expected behavior."""

    type: IssueType
    message: str
    field: str | None = None
    details: Mapping[str, object] = dataclasses.field(default_factory=dict)

    def __post_init__(self) -> None:
        object.__setattr__(self, "type", IssueType(self.type))
        object.__setattr__(self, "details", dict(self.details))

    @property
    def severity(self) -> Severity:
        return severity_for(self.type)

    def to_dict(self) -> dict[str, object]:
        return {
            "type": self.type.value,
            "field": self.field,
            "message": self.message,
            "severity": self.severity.value,
            "details": dict(self.details),
        }


@dataclass(frozen=True, slots=True)
class ResultMetadata:
    response_time_ms: float | None = None
    response_size: int | None = None
    attempts: int | None = None

    def to_dict(self) -> dict[str, object]:
        payload: dict[str, object] = {}
        if self.response_time_ms is not None:
            payload["response_time_ms"] = self.response_time_ms
        if self.response_size is not None:
            payload["response_size"] = self.response_size
        if self.attempts is not None:
            payload["attempts"] = self.attempts
        return payload


@dataclass(frozen=True, slots=True)
class ValidationResult:
    """Outcome of validating one endpoint. Immutable once created."""

    endpoint: str
    method: str
    success: bool
    status_code: int | None = None
    issues: tuple[Issue, ...] = ()
    timestamp: str = dataclasses.field(default_factory=utc_timestamp)
    metadata: ResultMetadata = dataclasses.field(default_factory=ResultMetadata)

    def __post_init__(self) -> None:
        object.__setattr__(self, "method", _normalize_method(self.method))
        object.__setattr__(self, "issues", tuple(self.issues))

    @classmethod
    def failure(
        cls,
        endpoint: str,
        method: str,
        issue: Issue,
        *,
        status_code: int | None = None,
        metadata: ResultMetadata | None = None,
    ) -> ValidationResult:
        return cls(
            endpoint=endpoint,
            method=method,
            success=False,
            status_code=status_code,
            issues=(issue,),
            metadata=metadata if metadata is not None else ResultMetadata(),
        )

    def has_issue(self, issue_type: IssueType) -> bool:
        return any(issue.type is issue_type for issue in self.issues)

    def to_dict(self) -> dict[str, object]:
        return {
            "endpoint": self.endpoint,
            "method": self.method,
            "success": self.success,
            "status_code": self.status_code,
            "issues": [issue.to_dict() for issue in self.issues],
            "timestamp": self.timestamp,
            "metadata": self.metadata.to_dict(),
        }

    def to_json(self) -> str:
        return json.dumps(self.to_dict(), sort_keys=True, separators=(",", ":"), default=str)


@dataclass(frozen=True, slots=True)
class ResponseSpec:
    """Expected response for one status code."""

    schema: JSONSchema | None = None
    required_headers: tuple[str, ...] = ()
    description: str | None = None

    def __post_init__(self) -> None:
        object.__setattr__(self, "required_headers", tuple(self.required_headers))


@dataclass(frozen=True, slots=True)
class EndpointDescriptor:
    """One (path template, method) pair with its schema bindings."""

    path: str
    method: str
    request_schema: JSONSchema | None = None
    responses: Mapping[str, ResponseSpec] = dataclasses.field(default_factory=dict)
    summary: str | None = None
    operation_id: str | None = None

    def __post_init__(self) -> None:
        if not isinstance(self.path, str) or not self.path.startswith("/"):
            raise ValueError(f"endpoint path must start with '/': {self.path!r}")
        method = _normalize_method(self.method)
        if method not in _HTTP_METHODS:
            raise ValueError(f"unsupported HTTP method: {self.method!r}")
        object.__setattr__(self, "method", method)
        object.__setattr__(
            self,
            "responses",
            {str(status): spec for status, spec in self.responses.items()},
        )

    @property
    def key(self) -> tuple[str, str]:
        return (self.path, self.method)

    def response_for(self, status_code: int) -> ResponseSpec | None:
        """Return the response spec for ``status_code``, falling back to ``default``."""

        exact = self.responses.get(str(status_code))
        if exact is not None:
            return exact
        return self.responses.get("default")

    def declares_status(self, status_code: int) -> bool:
        return str(status_code) in self.responses


@dataclass(frozen=True, slots=True)
class ContractInfo:
    title: str
    version: str


@dataclass(frozen=True, slots=True)
class Contract:
    """Read-only view of a parsed API contract."""

    info: ContractInfo
    endpoints: tuple[EndpointDescriptor, ...] = ()

    def __post_init__(self) -> None:
        object.__setattr__(self, "endpoints", tuple(self.endpoints))

    def find(self, path: str, method: str) -> EndpointDescriptor | None:
        normalized = method.upper()
        for endpoint in self.endpoints:
            if endpoint.path == path and endpoint.method == normalized:
                return endpoint
        return None


@dataclass(frozen=True, slots=True)
class ValidationOptions:
    """Per-call inputs for a single endpoint validation."""

    path_params: Mapping[str, object] = dataclasses.field(default_factory=dict)
    query_params: Mapping[str, object] = dataclasses.field(default_factory=dict)
    request_body: object | None = None
    headers: Mapping[str, str] = dataclasses.field(default_factory=dict)
    timeout_seconds: float | None = None

    def __post_init__(self) -> None:
        if self.timeout_seconds is not None and self.timeout_seconds <= 0:
            raise ValueError("timeout_seconds must be > 0")


def contract_from_endpoints(
    endpoints: Sequence[EndpointDescriptor],
    *,
    title: str = "untitled",
    version: str = "0.0.0",
) -> Contract:
    return Contract(info=ContractInfo(title=title, version=version), endpoints=tuple(endpoints))


__all__ = [
    "Contract",
    "ContractInfo",
    "EndpointDescriptor",
    "Issue",
    "IssueType",
    "JSONSchema",
    "JSONValue",
    "ResponseSpec",
    "ResultMetadata",
    "Severity",
    "TRANSPORT_FAILURE_TYPES",
    "ValidationOptions",
    "ValidationResult",
    "contract_from_endpoints",
    "severity_for",
    "utc_timestamp",
]

"""
driftguard - endpoint validator

File: src/driftguard/validation/endpoint_validator.py

Purpose
- Validate one live endpoint against its contract descriptor and produce a
  ``ValidationResult``.

Behavior
- Unknown (path, method) pairs produce a terminal ``endpoint_not_found`` result.
- Path placeholders are substituted from ``path_params`` (URL-encoded); leftovers
  are reported as a ``network_error`` result naming them.
- A request body is generated from the request schema when none was supplied.
- Response checks: status lookup with ``default`` fallback, body schema
  conformance, and presence of required headers.
- Transport failures become a single ``network_error`` issue. With
  ``raise_retryable=True`` transient failures and undeclared 5xx/429 responses are
  raised instead, so a retry layer above can act on them.
"""

from __future__ import annotations

import json
import re
from collections.abc import Mapping, Sequence
from typing import Any, Final, Protocol, runtime_checkable
from urllib.parse import quote

import structlog

from driftguard.domain.errors import (
    EngineError,
    NotInitializedError,
    RetryableStatusError,
    UnresolvedPathParametersError,
    is_retryable_error,
    is_retryable_status,
)
from driftguard.domain.models import (
    Contract,
    EndpointDescriptor,
    Issue,
    IssueType,
    ResultMetadata,
    ValidationOptions,
    ValidationResult,
)
from driftguard.transport.http import Transport, TransportRequest, TransportResponse
from driftguard.validation.schema_checker import SchemaChecker

_PLACEHOLDER_RE: Final[re.Pattern[str]] = re.compile(r"\{([^}]+)\}")
_EMPTY_OPTIONS: Final[ValidationOptions] = ValidationOptions()


@runtime_checkable
class Validator(Protocol):
    """Anything the batch processor can drive."""

    @property
    def endpoints(self) -> tuple[EndpointDescriptor, ...]: ...

    async def validate_endpoint(
        self,
        path: str,
        method: str,
        options: ValidationOptions | None = None,
        *,
        raise_retryable: bool = False,
    ) -> ValidationResult: ...


def resolve_path(template: str, path_params: Mapping[str, object]) -> str:
    """Substitute ``{name}`` placeholders; raise when any remain unresolved."""

    resolved = template
    for name, value in path_params.items():
        resolved = resolved.replace(f"{{{name}}}", quote(str(value), safe=""))
    leftovers = _PLACEHOLDER_RE.findall(resolved)
    if leftovers:
        raise UnresolvedPathParametersError(leftovers)
    return resolved


def response_size(body: object | None) -> int:
    if body is None:
        return 0
    return len(json.dumps(body, separators=(",", ":"), ensure_ascii=False, default=str))


class EndpointValidator:
    def __init__(
        self,
        transport: Transport,
        *,
        schema_checker: SchemaChecker | None = None,
        logger: Any | None = None,
    ) -> None:
        self._transport = transport
        self._schema_checker = schema_checker if schema_checker is not None else SchemaChecker()
        self._logger = logger if logger is not None else structlog.get_logger(__name__)
        self._contract: Contract | None = None

    @property
    def contract(self) -> Contract | None:
        return self._contract

    @property
    def endpoints(self) -> tuple[EndpointDescriptor, ...]:
        if self._contract is None:
            return ()
        return self._contract.endpoints

    @property
    def schema_checker(self) -> SchemaChecker:
        return self._schema_checker

    @property
    def is_initialized(self) -> bool:
        return self._contract is not None

    def initialize(self, contract: Contract) -> None:
        self._contract = contract
        self._logger.info(
            "contract_loaded",
            title=contract.info.title,
            version=contract.info.version,
            endpoint_count=len(contract.endpoints),
        )

    async def validate_endpoint(
        self,
        path: str,
        method: str,
        options: ValidationOptions | None = None,
        *,
        raise_retryable: bool = False,
    ) -> ValidationResult:
        if self._contract is None:
            raise NotInitializedError()
        opts = options if options is not None else _EMPTY_OPTIONS
        method = method.upper()

        endpoint = self._contract.find(path, method)
        if endpoint is None:
            return ValidationResult.failure(
                path,
                method,
                Issue(
                    type=IssueType.ENDPOINT_NOT_FOUND,
                    message=f"Endpoint {method} {path} not found in contract",
                ),
            )

        try:
            request = TransportRequest(
                path=resolve_path(endpoint.path, opts.path_params),
                method=method,
                query=dict(opts.query_params),
                body=self._request_body(endpoint, opts.request_body),
                headers=dict(opts.headers),
                timeout_seconds=opts.timeout_seconds,
            )
            response = await self._transport.send(request)
        except Exception as exc:  # noqa: BLE001
            if raise_retryable and is_retryable_error(exc):
                raise
            return self._network_failure(endpoint, exc)

        if (
            raise_retryable
            and is_retryable_status(response.status)
            and not endpoint.declares_status(response.status)
        ):
            raise RetryableStatusError(response.status)

        issues = self.check_response(endpoint, response)
        result = ValidationResult(
            endpoint=endpoint.path,
            method=method,
            success=not issues,
            status_code=response.status,
            issues=tuple(issues),
            metadata=ResultMetadata(
                response_time_ms=response.response_time_ms,
                response_size=response_size(response.body),
            ),
        )
        self._logger.debug(
            "endpoint_validated",
            endpoint=endpoint.path,
            method=method,
            status_code=response.status,
            success=result.success,
            issue_count=len(issues),
        )
        return result

    async def validate_all(
        self, options: ValidationOptions | None = None
    ) -> list[ValidationResult]:
        """Validate every contract endpoint one after another."""
        if self._contract is None:
            raise NotInitializedError()
        results: list[ValidationResult] = []
        for endpoint in self._contract.endpoints:
            results.append(await self.validate_endpoint(endpoint.path, endpoint.method, options))
        return results

    def check_response(
        self, endpoint: EndpointDescriptor, response: TransportResponse
    ) -> list[Issue]:
        spec = endpoint.response_for(response.status)
        if spec is None:
            return [
                Issue(
                    type=IssueType.UNEXPECTED_STATUS_CODE,
                    message=f"Status code {response.status} not defined in contract",
                    details={
                        "actual_status": response.status,
                        "expected_statuses": sorted(endpoint.responses),
                    },
                )
            ]

        issues: list[Issue] = []
        if spec.schema is not None and response.body is not None:
            issues.extend(self._schema_checker.validate_response(response.body, spec.schema))
        issues.extend(_missing_headers(response.headers, spec.required_headers))
        return issues

    def _request_body(self, endpoint: EndpointDescriptor, provided: object | None) -> object | None:
        if provided is not None:
            return provided
        if endpoint.request_schema is None:
            return None
        return self._schema_checker.generate_sample_data(endpoint.request_schema)

    def _network_failure(self, endpoint: EndpointDescriptor, exc: Exception) -> ValidationResult:
        message = str(exc) or type(exc).__name__
        details: dict[str, object] = {"original_error": type(exc).__name__}
        if isinstance(exc, EngineError):
            details["error_kind"] = exc.kind.value
        self._logger.warning(
            "endpoint_network_error",
            endpoint=endpoint.path,
            method=endpoint.method,
            error=message,
        )
        return ValidationResult.failure(
            endpoint.path,
            endpoint.method,
            Issue(
                type=IssueType.NETWORK_ERROR,
                message=f"Network error: {message}",
                details=details,
            ),
        )


def _missing_headers(actual: Mapping[str, str], required: Sequence[str]) -> list[Issue]:
    lowered = {name.lower(): value for name, value in actual.items()}
    return [
        Issue(
            type=IssueType.MISSING_HEADER,
            field=name,
            message=f"Required header '{name}' is missing",
        )
        for name in required
        if not lowered.get(name.lower())
    ]


__all__ = [
    "EndpointValidator",
    "Validator",
    "resolve_path",
    "response_size",
]

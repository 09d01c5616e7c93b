"""
driftguard - unit tests for single-endpoint validation

File: tests/unit/validation/test_endpoint_validator.py

Purpose
- Validate request construction, response checking and failure shaping of the
  endpoint validator against an in-memory transport.

What this test file should cover
- Unknown endpoints and unresolved path placeholders.
- Network failures as results, and re-raising for the retry layer.
- Status lookup with ``default`` fallback, header presence, schema conformance.
- Generated request bodies.
"""

from __future__ import annotations

from typing import Any

import pytest

from driftguard.domain.errors import (
    ErrorKind,
    NotInitializedError,
    RetryableStatusError,
    TransportError,
    UnresolvedPathParametersError,
)
from driftguard.domain.models import (
    EndpointDescriptor,
    IssueType,
    ResponseSpec,
    ValidationOptions,
    contract_from_endpoints,
)
from driftguard.transport.http import TransportRequest
from driftguard.validation.endpoint_validator import (
    EndpointValidator,
    resolve_path,
    response_size,
)


def _validator(transport: Any, *endpoints: EndpointDescriptor) -> EndpointValidator:
    validator = EndpointValidator(transport)
    validator.initialize(contract_from_endpoints(endpoints))
    return validator


def _users_endpoint(**responses: ResponseSpec) -> EndpointDescriptor:
    return EndpointDescriptor(path="/users/{id}", method="GET", responses=responses)


async def test_requires_initialization(make_transport: Any, make_response: Any) -> None:
    validator = EndpointValidator(make_transport(lambda _req: make_response()))

    assert validator.is_initialized is False
    with pytest.raises(NotInitializedError):
        await validator.validate_endpoint("/users", "GET")


async def test_unknown_endpoint_is_reported_without_a_request(
    make_transport: Any, make_response: Any, make_contract: Any
) -> None:
    transport = make_transport(lambda _req: make_response())
    validator = EndpointValidator(transport)
    validator.initialize(make_contract(["/users"]))

    result = await validator.validate_endpoint("/orders", "get")

    assert result.success is False
    assert result.method == "GET"
    assert result.issues[0].type is IssueType.ENDPOINT_NOT_FOUND
    assert result.issues[0].message == "Endpoint GET /orders not found in contract"
    assert transport.requests == []


async def test_unresolved_path_parameter_becomes_network_error(
    make_transport: Any, make_response: Any
) -> None:
    transport = make_transport(lambda _req: make_response())
    validator = _validator(transport, _users_endpoint(**{"200": ResponseSpec()}))

    result = await validator.validate_endpoint("/users/{id}", "GET")

    assert result.issues[0].type is IssueType.NETWORK_ERROR
    assert "{id}" in result.issues[0].message
    assert result.issues[0].details["error_kind"] == "UNRESOLVED_PATH_PARAMETERS"
    assert transport.requests == []


async def test_unresolved_path_parameter_is_not_raised_for_retry(
    make_transport: Any, make_response: Any
) -> None:
    validator = _validator(
        make_transport(lambda _req: make_response()), _users_endpoint(**{"200": ResponseSpec()})
    )

    result = await validator.validate_endpoint("/users/{id}", "GET", raise_retryable=True)

    assert result.issues[0].type is IssueType.NETWORK_ERROR


async def test_request_is_built_from_options(
    make_transport: Any, make_response: Any, user_response_schema: dict[str, object]
) -> None:
    transport = make_transport(lambda _req: make_response(200, {"id": 7, "name": "Ada"}))
    validator = _validator(
        transport, _users_endpoint(**{"200": ResponseSpec(schema=user_response_schema)})
    )
    options = ValidationOptions(
        path_params={"id": "a b"},
        query_params={"expand": "roles"},
        headers={"X-Trace": "1"},
        timeout_seconds=2.5,
    )

    result = await validator.validate_endpoint("/users/{id}", "GET", options)

    assert result.success is True
    assert result.status_code == 200
    assert result.endpoint == "/users/{id}"
    (request,) = transport.requests
    assert request.path == "/users/a%20b"
    assert request.query == {"expand": "roles"}
    assert request.headers == {"X-Trace": "1"}
    assert request.timeout_seconds == 2.5
    assert result.metadata.response_time_ms == 5.0
    assert result.metadata.response_size == len('{"id":7,"name":"Ada"}')


async def test_schema_issues_fail_the_result(
    make_transport: Any, make_response: Any, user_response_schema: dict[str, object]
) -> None:
    transport = make_transport(lambda _req: make_response(200, {"id": "seven"}))
    validator = _validator(
        transport, _users_endpoint(**{"200": ResponseSpec(schema=user_response_schema)})
    )

    result = await validator.validate_endpoint(
        "/users/{id}", "GET", ValidationOptions(path_params={"id": 1})
    )

    assert result.success is False
    assert {issue.type for issue in result.issues} == {
        IssueType.TYPE_MISMATCH,
        IssueType.MISSING_FIELD,
    }


async def test_undeclared_status_is_reported(make_transport: Any, make_response: Any) -> None:
    transport = make_transport(lambda _req: make_response(418))
    validator = _validator(
        transport, _users_endpoint(**{"200": ResponseSpec(), "404": ResponseSpec()})
    )

    result = await validator.validate_endpoint(
        "/users/{id}", "GET", ValidationOptions(path_params={"id": 1})
    )

    (issue,) = result.issues
    assert issue.type is IssueType.UNEXPECTED_STATUS_CODE
    assert issue.message == "Status code 418 not defined in contract"
    assert issue.details["expected_statuses"] == ["200", "404"]
    assert result.status_code == 418


async def test_default_response_covers_undeclared_status(
    make_transport: Any, make_response: Any
) -> None:
    error_schema = {"type": "object", "required": ["error"]}
    transport = make_transport(lambda _req: make_response(404, {"error": "gone"}))
    validator = _validator(
        transport,
        _users_endpoint(**{"200": ResponseSpec(), "default": ResponseSpec(schema=error_schema)}),
    )

    result = await validator.validate_endpoint(
        "/users/{id}", "GET", ValidationOptions(path_params={"id": 1})
    )

    assert result.success is True


async def test_missing_required_header_is_reported(
    make_transport: Any, make_response: Any
) -> None:
    transport = make_transport(
        lambda _req: make_response(200, {"ok": True}, headers={"X-Request-Id": "abc"})
    )
    spec = ResponseSpec(required_headers=("x-request-id", "X-Rate-Limit"))
    validator = _validator(transport, _users_endpoint(**{"200": spec}))

    result = await validator.validate_endpoint(
        "/users/{id}", "GET", ValidationOptions(path_params={"id": 1})
    )

    (issue,) = result.issues
    assert issue.type is IssueType.MISSING_HEADER
    assert issue.field == "X-Rate-Limit"


async def test_transport_failure_becomes_network_error(make_transport: Any) -> None:
    failure = TransportError(ErrorKind.CONNECTION_REFUSED, "Connection refused to http://x")
    validator = _validator(
        make_transport(lambda _req: failure),
        EndpointDescriptor(path="/health", method="GET", responses={"200": ResponseSpec()}),
    )

    result = await validator.validate_endpoint("/health", "GET")

    (issue,) = result.issues
    assert issue.type is IssueType.NETWORK_ERROR
    assert issue.message == "Network error: Connection refused to http://x"
    assert issue.details == {"original_error": "TransportError", "error_kind": "CONNECTION_REFUSED"}
    assert result.status_code is None


async def test_retryable_failure_is_raised_on_request(make_transport: Any) -> None:
    failure = TransportError(ErrorKind.REQUEST_TIMEOUT, "Request timeout after 1s")
    validator = _validator(
        make_transport(lambda _req: failure),
        EndpointDescriptor(path="/health", method="GET", responses={"200": ResponseSpec()}),
    )

    with pytest.raises(TransportError):
        await validator.validate_endpoint("/health", "GET", raise_retryable=True)


async def test_undeclared_server_error_is_raised_for_retry(
    make_transport: Any, make_response: Any
) -> None:
    validator = _validator(
        make_transport(lambda _req: make_response(503)),
        EndpointDescriptor(path="/health", method="GET", responses={"200": ResponseSpec()}),
    )

    with pytest.raises(RetryableStatusError) as excinfo:
        await validator.validate_endpoint("/health", "GET", raise_retryable=True)
    assert excinfo.value.http_status == 503

    plain = await validator.validate_endpoint("/health", "GET")
    assert plain.issues[0].type is IssueType.UNEXPECTED_STATUS_CODE


async def test_declared_server_error_is_validated_not_raised(
    make_transport: Any, make_response: Any
) -> None:
    validator = _validator(
        make_transport(lambda _req: make_response(503, {"retry": True})),
        EndpointDescriptor(
            path="/health",
            method="GET",
            responses={"200": ResponseSpec(), "503": ResponseSpec()},
        ),
    )

    result = await validator.validate_endpoint("/health", "GET", raise_retryable=True)

    assert result.success is True
    assert result.status_code == 503


async def test_request_body_is_generated_from_schema(
    make_transport: Any, make_response: Any
) -> None:
    transport = make_transport(lambda _req: make_response(201, {"id": 1}))
    endpoint = EndpointDescriptor(
        path="/users",
        method="POST",
        request_schema={
            "type": "object",
            "required": ["name"],
            "properties": {"name": {"type": "string"}},
        },
        responses={"201": ResponseSpec()},
    )
    validator = _validator(transport, endpoint)

    await validator.validate_endpoint("/users", "POST")
    await validator.validate_endpoint(
        "/users", "POST", ValidationOptions(request_body={"name": "given"})
    )

    generated, supplied = (request.body for request in transport.requests)
    assert generated == {"name": "sample_xxx"}
    assert supplied == {"name": "given"}


async def test_validate_all_runs_every_endpoint(
    make_transport: Any, make_response: Any, make_contract: Any
) -> None:
    seen: list[str] = []

    def handler(request: TransportRequest) -> Any:
        seen.append(request.path)
        return make_response()

    validator = EndpointValidator(make_transport(handler))
    validator.initialize(make_contract(["/a", "/b", "/c"]))

    results = await validator.validate_all()

    assert [result.endpoint for result in results] == ["/a", "/b", "/c"]
    assert seen == ["/a", "/b", "/c"]


def test_resolve_path_encodes_values() -> None:
    assert resolve_path("/files/{name}", {"name": "a/b"}) == "/files/a%2Fb"
    with pytest.raises(UnresolvedPathParametersError) as excinfo:
        resolve_path("/orgs/{org}/repos/{repo}", {"org": "x"})
    assert excinfo.value.parameters == ("repo",)


def test_response_size() -> None:
    assert response_size(None) == 0
    assert response_size({"a": 1}) == len('{"a":1}')
    assert response_size("héllo") == len('"héllo"')

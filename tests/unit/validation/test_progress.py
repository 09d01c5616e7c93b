"""Unit tests for the progress-reporting validator decorator."""

from __future__ import annotations

from typing import Any

from driftguard.domain.models import ValidationResult
from driftguard.validation.endpoint_validator import EndpointValidator
from driftguard.validation.progress import ProgressReportingValidator


def _initialized(transport: Any, contract: Any) -> EndpointValidator:
    validator = EndpointValidator(transport)
    validator.initialize(contract)
    return validator


async def test_every_result_reaches_the_callback(
    make_transport: Any, make_response: Any, make_contract: Any
) -> None:
    seen: list[ValidationResult] = []
    inner = _initialized(make_transport(lambda _req: make_response()), make_contract(["/a", "/b"]))
    decorated = ProgressReportingValidator(inner, seen.append)

    first = await decorated.validate_endpoint("/a", "GET")
    second = await decorated.validate_endpoint("/missing", "GET")

    assert seen == [first, second]
    assert decorated.reported_count == 2
    assert decorated.endpoints == inner.endpoints


async def test_callback_errors_are_logged_not_raised(
    make_transport: Any,
    make_response: Any,
    make_contract: Any,
    captured_logs: list[dict[str, Any]],
) -> None:
    inner = _initialized(make_transport(lambda _req: make_response()), make_contract(["/a"]))

    def explode(_result: ValidationResult) -> None:
        raise RuntimeError("ui went away")

    decorated = ProgressReportingValidator(inner, explode)

    result = await decorated.validate_endpoint("/a", "GET")

    assert result.success is True
    assert any(entry["event"] == "progress_callback_failed" for entry in captured_logs)


def test_unknown_attributes_are_forwarded(make_transport: Any, make_contract: Any) -> None:
    inner = _initialized(make_transport(lambda _req: None), make_contract(["/a"]))
    decorated = ProgressReportingValidator(inner, lambda _result: None)

    assert decorated.wrapped is inner
    assert decorated.is_initialized is True
    assert decorated.contract is inner.contract

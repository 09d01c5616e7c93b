"""Shared test fixtures: in-memory transports and contract builders."""

from __future__ import annotations

import inspect
from collections.abc import Callable, Iterator, Mapping, Sequence
from typing import Any

import pytest
from structlog.testing import capture_logs

from driftguard.domain.models import (
    Contract,
    EndpointDescriptor,
    ResponseSpec,
    contract_from_endpoints,
)
from driftguard.transport.http import TransportRequest, TransportResponse

Handler = Callable[[TransportRequest], Any]


class FakeTransport:
    """Transport double that records requests and answers through a handler.

    The handler may return a ``TransportResponse``, an exception instance (raised),
    or an awaitable producing either.
    """

    def __init__(self, handler: Handler) -> None:
        self._handler = handler
        self.requests: list[TransportRequest] = []

    async def send(self, request: TransportRequest) -> TransportResponse:
        self.requests.append(request)
        outcome = self._handler(request)
        if inspect.isawaitable(outcome):
            outcome = await outcome
        if isinstance(outcome, BaseException):
            raise outcome
        return outcome


def json_response(
    status: int = 200,
    body: object | None = None,
    *,
    headers: Mapping[str, str] | None = None,
    response_time_ms: float = 5.0,
) -> TransportResponse:
    merged = {"content-type": "application/json", **dict(headers or {})}
    return TransportResponse(
        status=status,
        headers=merged,
        body=body,
        response_time_ms=response_time_ms,
    )


def sequence_handler(outcomes: Sequence[object]) -> Handler:
    """Answer successive requests with successive outcomes; the last one repeats."""
    remaining = list(outcomes)

    def handler(_request: TransportRequest) -> object:
        if len(remaining) > 1:
            return remaining.pop(0)
        return remaining[0]

    return handler


def user_schema() -> dict[str, object]:
    return {
        "type": "object",
        "required": ["id", "name"],
        "properties": {
            "id": {"type": "integer"},
            "name": {"type": "string"},
            "email": {"type": "string", "format": "email"},
        },
    }


def simple_contract(
    paths: Sequence[str],
    *,
    method: str = "GET",
    schema: Mapping[str, object] | None = None,
) -> Contract:
    endpoints = [
        EndpointDescriptor(
            path=path,
            method=method,
            responses={"200": ResponseSpec(schema=schema)},
        )
        for path in paths
    ]
    return contract_from_endpoints(endpoints, title="fixture api", version="1.0.0")


@pytest.fixture
def make_transport() -> Callable[[Handler], FakeTransport]:
    return FakeTransport


@pytest.fixture
def make_response() -> Callable[..., TransportResponse]:
    return json_response


@pytest.fixture
def make_sequence_handler() -> Callable[[Sequence[object]], Handler]:
    return sequence_handler


@pytest.fixture
def make_contract() -> Callable[..., Contract]:
    return simple_contract


@pytest.fixture
def user_response_schema() -> dict[str, object]:
    return user_schema()


@pytest.fixture
def captured_logs() -> Iterator[list[dict[str, Any]]]:
    with capture_logs() as entries:
        yield entries


class FakeClock:
    """Monotonic clock double advanced explicitly or by the paired sleep."""

    def __init__(self, start: float = 1000.0) -> None:
        self.now = start
        self.sleeps: list[float] = []

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds

    async def sleep(self, seconds: float) -> None:
        self.sleeps.append(seconds)
        self.now += seconds


@pytest.fixture
def fake_clock() -> FakeClock:
    return FakeClock()

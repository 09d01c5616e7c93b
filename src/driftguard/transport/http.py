"""
driftguard - HTTP transport

File: src/driftguard/transport/http.py

Purpose
- Execute one request against the target API and return a normalized response, or
  raise a ``TransportError`` whose ``ErrorKind`` classifies the failure.

Behavior
- Every request races against its own timer (``run_with_timeout``).
- Query values of ``None`` are skipped; sequence values repeat the key.
- ``Content-Type`` is dropped for GET requests and requests without a body.
- JSON bodies are decoded when the response declares ``application/json``; other
  bodies stay text. Undecodable JSON falls back to the raw text.
- Response header names are lower-cased.
"""

from __future__ import annotations

import json
import time
from collections.abc import Mapping
from dataclasses import dataclass, field
from typing import Any, Final, Protocol, runtime_checkable

import httpx
import structlog

from driftguard.constants import DEFAULT_REQUEST_TIMEOUT_SECONDS, DEFAULT_USER_AGENT
from driftguard.domain.errors import ErrorKind, TransportError
from driftguard.utils.concurrency import run_with_timeout

_BODY_METHODS: Final[frozenset[str]] = frozenset({"POST", "PUT", "PATCH", "DELETE"})
_DNS_FAILURE_HINTS: Final[tuple[str, ...]] = (
    "name or service not known",
    "nodename nor servname",
    "getaddrinfo failed",
    "temporary failure in name resolution",
    "no address associated with hostname",
)
_REFUSED_HINTS: Final[tuple[str, ...]] = ("connection refused", "connect call failed")


@dataclass(frozen=True, slots=True)
class TransportRequest:
    path: str
    method: str
    query: Mapping[str, object] = field(default_factory=dict)
    body: object | None = None
    headers: Mapping[str, str] = field(default_factory=dict)
    timeout_seconds: float | None = None


@dataclass(frozen=True, slots=True)
class TransportResponse:
    status: int
    headers: Mapping[str, str]
    body: object | None
    response_time_ms: float
    url: str | None = None


@runtime_checkable
class Transport(Protocol):
    async def send(self, request: TransportRequest) -> TransportResponse: ...


class HttpxTransport:
    """``httpx.AsyncClient`` backed transport bound to one base URL."""

    def __init__(
        self,
        base_url: str,
        *,
        default_headers: Mapping[str, str] | None = None,
        timeout_seconds: float = DEFAULT_REQUEST_TIMEOUT_SECONDS,
        client: httpx.AsyncClient | None = None,
        logger: Any | None = None,
    ) -> None:
        if not isinstance(base_url, str) or not base_url.strip():
            raise ValueError("base_url must be a non-empty string")
        if timeout_seconds <= 0:
            raise ValueError("timeout_seconds must be > 0")
        self._base_url = base_url.strip().rstrip("/")
        self._default_headers: dict[str, str] = {
            "Content-Type": "application/json",
            "User-Agent": DEFAULT_USER_AGENT,
            **dict(default_headers or {}),
        }
        self._timeout_seconds = timeout_seconds
        self._owns_client = client is None
        self._client = client if client is not None else httpx.AsyncClient(timeout=None)
        self._logger = logger if logger is not None else structlog.get_logger(__name__)

    @property
    def base_url(self) -> str:
        return self._base_url

    @property
    def timeout_seconds(self) -> float:
        return self._timeout_seconds

    def build_url(self, path: str, query: Mapping[str, object] | None = None) -> httpx.URL:
        joined = self._base_url + (path if path.startswith("/") else f"/{path}")
        params: list[tuple[str, str]] = []
        for key, value in (query or {}).items():
            if value is None:
                continue
            if isinstance(value, (list, tuple)):
                params.extend((key, _query_text(item)) for item in value if item is not None)
            else:
                params.append((key, _query_text(value)))
        url = httpx.URL(joined)
        return url.copy_merge_params(params) if params else url

    async def send(self, request: TransportRequest) -> TransportResponse:
        method = request.method.upper()
        url = self.build_url(request.path, request.query)
        headers = {**self._default_headers, **dict(request.headers)}
        has_body = request.body is not None and method in _BODY_METHODS
        if method == "GET" or not has_body:
            headers = {
                key: value for key, value in headers.items() if key.lower() != "content-type"
            }

        content: str | bytes | None = None
        if has_body:
            body = request.body
            content = body if isinstance(body, (str, bytes)) else json.dumps(body)

        timeout = request.timeout_seconds or self._timeout_seconds
        started = time.perf_counter()
        self._logger.debug("http_request_started", method=method, url=str(url))
        try:
            response = await run_with_timeout(
                self._client.request(
                    method, url, headers=headers, content=content, timeout=timeout
                ),
                timeout,
            )
        except TimeoutError as exc:
            raise TransportError(
                ErrorKind.REQUEST_TIMEOUT, f"Request timeout after {timeout}s"
            ) from exc
        except httpx.TimeoutException as exc:
            raise TransportError(
                ErrorKind.REQUEST_TIMEOUT, f"Request timeout after {timeout}s"
            ) from exc
        except httpx.HTTPError as exc:
            raise classify_httpx_error(exc, url) from exc

        elapsed_ms = round((time.perf_counter() - started) * 1000.0, 3)
        self._logger.debug(
            "http_request_completed",
            method=method,
            url=str(url),
            status=response.status_code,
            response_time_ms=elapsed_ms,
        )
        return TransportResponse(
            status=response.status_code,
            headers={key.lower(): value for key, value in response.headers.items()},
            body=_decode_body(response),
            response_time_ms=elapsed_ms,
            url=str(response.url),
        )

    async def check_connectivity(self, path: str = "/") -> bool:
        """Return whether the target answers at all; any HTTP status counts."""
        try:
            await self.send(TransportRequest(path=path, method="GET"))
        except TransportError as exc:
            self._logger.warning(
                "connectivity_check_failed", kind=exc.kind.value, detail=exc.detail
            )
            return False
        return True

    async def aclose(self) -> None:
        if self._owns_client:
            await self._client.aclose()


def classify_httpx_error(exc: httpx.HTTPError, url: httpx.URL | str) -> TransportError:
    message = str(exc) or type(exc).__name__
    lowered = message.lower()
    if isinstance(exc, httpx.ConnectError):
        if any(hint in lowered for hint in _DNS_FAILURE_HINTS):
            host = url.host if isinstance(url, httpx.URL) else str(url)
            return TransportError(ErrorKind.DNS_LOOKUP_FAILED, f"Cannot resolve hostname: {host}")
        if any(hint in lowered for hint in _REFUSED_HINTS):
            return TransportError(ErrorKind.CONNECTION_REFUSED, f"Connection refused to {url}")
        return TransportError(
            ErrorKind.HTTP_REQUEST_FAILED, f"HTTP request failed: {message}", retryable=True
        )
    if isinstance(exc, (httpx.ReadError, httpx.WriteError, httpx.RemoteProtocolError)):
        return TransportError(ErrorKind.REQUEST_ABORTED, f"Request was aborted: {message}")
    retryable = "timeout" in lowered or "reset" in lowered
    return TransportError(
        ErrorKind.HTTP_REQUEST_FAILED, f"HTTP request failed: {message}", retryable=retryable
    )


def _query_text(value: object) -> str:
    if isinstance(value, bool):
        return "true" if value else "false"
    return str(value)


def _decode_body(response: httpx.Response) -> object | None:
    text = response.text
    if not text:
        return None
    if "application/json" in response.headers.get("content-type", "").lower():
        try:
            return json.loads(text)
        except json.JSONDecodeError:
            return text
    return text


__all__ = [
    "HttpxTransport",
    "Transport",
    "TransportRequest",
    "TransportResponse",
    "classify_httpx_error",
]

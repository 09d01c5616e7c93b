"""Structured logging setup: structlog events rendered as JSON lines with redaction."""

from __future__ import annotations

import json
import logging
import math
import re
import sys
import threading
from collections.abc import Callable, Iterator, Mapping
from contextlib import contextmanager
from datetime import UTC, datetime
from pathlib import Path
from typing import IO, Any, Final

import structlog

JSONScalar = str | int | float | bool | None
JSONValue = JSONScalar | list["JSONValue"] | dict[str, "JSONValue"]
LogRedactor = Callable[[JSONValue], JSONValue]

_REDACTED_VALUE: Final[str] = "***REDACTED***"
_ROOT_LOGGER_NAME: Final[str] = "driftguard"

_CORRELATION_KEYS: Final[tuple[str, ...]] = ("run_id", "endpoint", "method")

_SENSITIVE_KEY_TERMS: Final[tuple[str, ...]] = (
    "secret",
    "token",
    "password",
    "passphrase",
    "api_key",
    "apikey",
    "api-key",
    "authorization",
    "credential",
    "cookie",
    "private_key",
)

_SENSITIVE_ASSIGNMENT_PATTERN: Final[re.Pattern[str]] = re.compile(
    r"(?i)\b(api[_-]?key|token|password|secret|client_secret|authorization)\b\s*([:=])\s*([^\s,;]+)"
)
_BEARER_TOKEN_PATTERN: Final[re.Pattern[str]] = re.compile(r"(?i)\bbearer\s+[A-Za-z0-9._~+/-]+=*")
_BASIC_AUTH_PATTERN: Final[re.Pattern[str]] = re.compile(r"(?i)\bbasic\s+[A-Za-z0-9+/]{8,}=*")
_URL_CREDENTIALS_PATTERN: Final[re.Pattern[str]] = re.compile(r"(?i)(https?://)[^/\s:@]+:[^/\s@]+@")

_STANDARD_LOG_RECORD_FIELDS: Final[frozenset[str]] = frozenset(
    {
        "args",
        "asctime",
        "created",
        "exc_info",
        "exc_text",
        "filename",
        "funcName",
        "levelname",
        "levelno",
        "lineno",
        "message",
        "module",
        "msecs",
        "msg",
        "name",
        "pathname",
        "process",
        "processName",
        "relativeCreated",
        "stack_info",
        "thread",
        "threadName",
        "taskName",
    }
)

_ACTIVE_HANDLE_LOCK = threading.Lock()
_ACTIVE_HANDLE: LoggingHandle | None = None


class _JsonLineFormatter(logging.Formatter):
    """Formatter that emits one canonical JSON object per log line."""

    def __init__(self, *, redactor: LogRedactor) -> None:
        super().__init__()
        self._redactor = redactor

    def format(self, record: logging.LogRecord) -> str:
        event: dict[str, JSONValue] = {
            "timestamp": _iso8601z_from_epoch(record.created),
            "level": record.levelname,
            "logger": record.name,
            "event": _coerce_log_message(self._redactor(record.getMessage())),
        }

        extras = _extract_extra_fields(record)
        for key in _CORRELATION_KEYS:
            value = extras.pop(key, None)
            if value is not None:
                event[key] = self._redactor(value)
        if extras:
            event["fields"] = self._redactor(extras)

        if record.exc_info is not None:
            event["exception"] = _coerce_log_message(
                self._redactor(self.formatException(record.exc_info))
            )
        if record.stack_info:
            event["stack"] = _coerce_log_message(self._redactor(str(record.stack_info)))

        return json.dumps(event, sort_keys=True, separators=(",", ":"), ensure_ascii=False)


class _TextFormatter(logging.Formatter):
    """Human-oriented single-line formatter for local runs."""

    def __init__(self, *, redactor: LogRedactor) -> None:
        super().__init__()
        self._redactor = redactor

    def format(self, record: logging.LogRecord) -> str:
        extras = self._redactor(_extract_extra_fields(record))
        parts = [
            _iso8601z_from_epoch(record.created),
            f"{record.levelname:<7}",
            record.name,
            _coerce_log_message(self._redactor(record.getMessage())),
        ]
        if isinstance(extras, dict):
            parts.extend(f"{key}={_coerce_log_message(extras[key])}" for key in sorted(extras))
        line = " ".join(parts)
        if record.exc_info is not None:
            line = f"{line}\n{self._redactor(self.formatException(record.exc_info))}"
        return line


class LoggingHandle:
    """Runtime handle for an active logging setup."""

    def __init__(self, *, logger: logging.Logger, handler: logging.Handler, level: int) -> None:
        self.logger = logger
        self.handler = handler
        self.level = level
        self._lock = threading.Lock()
        self._is_shutdown = False

    @property
    def is_shutdown(self) -> bool:
        return self._is_shutdown

    def flush(self) -> None:
        self.handler.flush()

    def shutdown(self) -> None:
        with self._lock:
            if self._is_shutdown:
                return
            self.handler.flush()
            self.logger.removeHandler(self.handler)
            self.handler.close()
            self._is_shutdown = True


def configure_logging(
    logging_config: Mapping[str, object] | None = None,
    *,
    stream: IO[str] | None = None,
    redactor: LogRedactor | None = None,
) -> LoggingHandle:
    """Route structlog events through stdlib logging into a single formatted sink.

    Parameters
    ----------
    logging_config:
        Mapping compatible with the ``[logging]`` config section: ``level``,
        ``format`` (``json`` or ``text``) and ``redact_secrets``.
    stream:
        Destination stream; defaults to ``sys.stderr``.
    redactor:
        Extra redaction applied before the default secret redaction.
    """

    cfg = dict(logging_config or {})
    level = _parse_log_level(cfg.get("level", "INFO"))
    log_format = str(cfg.get("format", "json")).strip().lower()
    if log_format not in ("json", "text"):
        raise ValueError(f"unsupported log format {log_format!r}")
    redact_enabled = bool(cfg.get("redact_secrets", True))

    _shutdown_previous_active_handle()

    resolved = _resolve_redactor(redactor, enabled=redact_enabled)
    formatter: logging.Formatter
    if log_format == "json":
        formatter = _JsonLineFormatter(redactor=resolved)
    else:
        formatter = _TextFormatter(redactor=resolved)

    handler = logging.StreamHandler(stream if stream is not None else sys.stderr)
    handler.setLevel(level)
    handler.setFormatter(formatter)

    logger = logging.getLogger(_ROOT_LOGGER_NAME)
    logger.setLevel(level)
    logger.propagate = False
    for existing in list(logger.handlers):
        logger.removeHandler(existing)
        existing.close()
    logger.addHandler(handler)

    structlog.configure(
        processors=[
            structlog.contextvars.merge_contextvars,
            structlog.stdlib.filter_by_level,
            _protect_reserved_keys,
            structlog.stdlib.render_to_log_kwargs,
        ],
        logger_factory=structlog.stdlib.LoggerFactory(),
        wrapper_class=structlog.stdlib.BoundLogger,
        cache_logger_on_first_use=False,
    )

    handle = LoggingHandle(logger=logger, handler=handler, level=level)
    with _ACTIVE_HANDLE_LOCK:
        global _ACTIVE_HANDLE
        _ACTIVE_HANDLE = handle
    return handle


def shutdown_logging(handle: LoggingHandle | None = None) -> None:
    """Detach the sink and restore structlog defaults."""
    resolved = handle if handle is not None else get_active_logging_handle()
    if resolved is None:
        return
    resolved.shutdown()
    with _ACTIVE_HANDLE_LOCK:
        global _ACTIVE_HANDLE
        if _ACTIVE_HANDLE is resolved:
            _ACTIVE_HANDLE = None
            structlog.reset_defaults()


def get_active_logging_handle() -> LoggingHandle | None:
    with _ACTIVE_HANDLE_LOCK:
        return _ACTIVE_HANDLE


@contextmanager
def correlation_scope(**fields: str | None) -> Iterator[None]:
    """Temporarily bind correlation fields (``run_id``, ``endpoint``, ``method``)."""
    bound = {key: value for key, value in fields.items() if value is not None}
    with structlog.contextvars.bound_contextvars(**bound):
        yield


def get_correlation_context() -> dict[str, Any]:
    return dict(structlog.contextvars.get_contextvars())


def default_log_redactor(value: JSONValue) -> JSONValue:
    """Deep redaction of credential-bearing keys and inline secrets."""
    return _redact_value(value, key_context=None)


def _protect_reserved_keys(
    _logger: Any, _method_name: str, event_dict: dict[str, Any]
) -> dict[str, Any]:
    for key in [key for key in event_dict if key in _STANDARD_LOG_RECORD_FIELDS]:
        if key in ("exc_info", "stack_info"):
            continue
        event_dict[f"{key}_"] = event_dict.pop(key)
    return event_dict


def _shutdown_previous_active_handle() -> None:
    existing = get_active_logging_handle()
    if existing is not None:
        existing.shutdown()
    with _ACTIVE_HANDLE_LOCK:
        global _ACTIVE_HANDLE
        _ACTIVE_HANDLE = None


def _parse_log_level(value: object) -> int:
    if isinstance(value, int) and not isinstance(value, bool):
        return value
    if not isinstance(value, str):
        raise ValueError(f"level must be int or str, got {type(value).__name__}")
    parsed = logging.getLevelName(value.strip().upper())
    if isinstance(parsed, int):
        return parsed
    raise ValueError(f"unsupported logging level {value!r}")


def _iso8601z_from_epoch(epoch_seconds: float) -> str:
    timestamp = datetime.fromtimestamp(epoch_seconds, tz=UTC)
    return timestamp.isoformat(timespec="milliseconds").replace("+00:00", "Z")


def _coerce_log_message(value: JSONValue) -> str:
    if isinstance(value, str):
        return value
    if value is None:
        return ""
    if isinstance(value, bool):
        return "true" if value else "false"
    if isinstance(value, (int, float)):
        return str(value)
    return json.dumps(value, sort_keys=True, separators=(",", ":"), ensure_ascii=False)


def _extract_extra_fields(record: logging.LogRecord) -> dict[str, JSONValue]:
    fields: dict[str, JSONValue] = {}
    for key, value in record.__dict__.items():
        if key in _STANDARD_LOG_RECORD_FIELDS or key.startswith("_"):
            continue
        fields[key] = _normalize_json_value(value)
    return fields


def _normalize_json_value(value: object) -> JSONValue:
    if value is None or isinstance(value, (bool, int, str)):
        return value
    if isinstance(value, float):
        return value if math.isfinite(value) else str(value)
    if isinstance(value, datetime):
        if value.tzinfo is None or value.utcoffset() is None:
            value = value.replace(tzinfo=UTC)
        return value.astimezone(UTC).isoformat(timespec="microseconds").replace("+00:00", "Z")
    if isinstance(value, Path):
        return str(value)
    if isinstance(value, bytes):
        return value.decode("utf-8", errors="replace")
    if isinstance(value, Mapping):
        return {str(key): _normalize_json_value(item) for key, item in value.items()}
    if isinstance(value, (list, tuple)):
        return [_normalize_json_value(item) for item in value]
    if isinstance(value, (set, frozenset)):
        return sorted((_normalize_json_value(item) for item in value), key=repr)
    return str(value)


def _resolve_redactor(configured: LogRedactor | None, *, enabled: bool) -> LogRedactor:
    if not enabled:
        return _identity_redactor
    if configured is None:
        return default_log_redactor

    def composed(value: JSONValue) -> JSONValue:
        return default_log_redactor(_normalize_json_value(configured(value)))

    return composed


def _identity_redactor(value: JSONValue) -> JSONValue:
    return value


def _redact_value(value: JSONValue, *, key_context: str | None) -> JSONValue:
    if key_context is not None and _requires_redaction_for_key(key_context):
        return _REDACTED_VALUE
    if isinstance(value, str):
        return _redact_string(value)
    if isinstance(value, list):
        return [_redact_value(item, key_context=None) for item in value]
    if isinstance(value, dict):
        return {key: _redact_value(item, key_context=key) for key, item in value.items()}
    return value


def _requires_redaction_for_key(key: str) -> bool:
    key_lower = key.lower()
    return any(term in key_lower for term in _SENSITIVE_KEY_TERMS)


def _redact_string(text: str) -> str:
    redacted = _SENSITIVE_ASSIGNMENT_PATTERN.sub(
        lambda match: f"{match.group(1)}{match.group(2)}{_REDACTED_VALUE}", text
    )
    redacted = _BEARER_TOKEN_PATTERN.sub(f"Bearer {_REDACTED_VALUE}", redacted)
    redacted = _BASIC_AUTH_PATTERN.sub(f"Basic {_REDACTED_VALUE}", redacted)
    redacted = _URL_CREDENTIALS_PATTERN.sub(rf"\g<1>{_REDACTED_VALUE}@", redacted)
    return redacted


__all__ = [
    "JSONScalar",
    "JSONValue",
    "LogRedactor",
    "LoggingHandle",
    "configure_logging",
    "correlation_scope",
    "default_log_redactor",
    "get_active_logging_handle",
    "get_correlation_context",
    "shutdown_logging",
]

"""
driftguard - configuration schema and validation.

File: src/driftguard/config/schema.py

Purpose
- Define authoritative engine configuration defaults and strict validation rules.

What should be included in this file
- Typed sections for the engine, resilience primitives, transport and logging.
- Validation rules for required fields, types, enums, and numeric constraints.
- Profile overlay validation (``ci``, ``development``) and deterministic deep-merge.
- Redaction rules for sensitive fields.

Functional requirements
- Validate config payloads and return structured errors (field path + message).
- Reject embedded secrets; credentials are referenced by env var name only.
"""

from __future__ import annotations

import copy
import math
import re
from collections.abc import Mapping, Sequence
from dataclasses import dataclass
from typing import Any, Final, Literal, NotRequired, TypedDict

from driftguard.constants import (
    CONFIG_SCHEMA_VERSION,
    DEFAULT_BASE_BACKOFF_SECONDS,
    DEFAULT_BATCH_DELAY_SECONDS,
    DEFAULT_CONCURRENCY,
    DEFAULT_FAILURE_THRESHOLD,
    DEFAULT_MAX_RETRIES,
    DEFAULT_REQUEST_TIMEOUT_SECONDS,
    DEFAULT_REQUESTS_PER_SECOND,
    DEFAULT_RESET_TIMEOUT_SECONDS,
    DEFAULT_SUCCESS_THRESHOLD,
    DEFAULT_USER_AGENT,
)

ConfigSchemaVersion: Final[int] = CONFIG_SCHEMA_VERSION
BUILTIN_PROFILE_NAMES: Final[tuple[str, ...]] = ("ci", "development")
LOG_LEVELS: Final[tuple[str, ...]] = ("DEBUG", "INFO", "WARNING", "ERROR")
LOG_FORMATS: Final[tuple[str, ...]] = ("json", "text")

_ENV_NAME_PATTERN = re.compile(r"^[A-Z_][A-Z0-9_]*$")
_PROFILE_NAME_PATTERN = re.compile(r"^[a-z][a-z0-9_-]*$")
_HEADER_NAME_PATTERN = re.compile(r"^[!#$%&'*+.^_`|~0-9A-Za-z-]+$")
_CAMEL_CASE_BOUNDARY = re.compile(r"([a-z0-9])([A-Z])")
_NON_ALNUM = re.compile(r"[^a-z0-9]+")

_SENSITIVE_KEY_TOKENS: Final[frozenset[str]] = frozenset(
    {
        "secret",
        "token",
        "password",
        "passwd",
        "apikey",
        "private",
        "credential",
        "credentials",
        "authorization",
        "cookie",
    }
)
_SENSITIVE_KEY_PHRASES: Final[tuple[str, ...]] = (
    "api_key",
    "access_token",
    "refresh_token",
    "client_secret",
    "private_key",
    "password",
    "secret",
)
_SECTION_NAMES: Final[tuple[str, ...]] = ("engine", "resilience", "transport", "logging")


class MetaConfig(TypedDict):
    schema_version: int


class EngineConfig(TypedDict):
    concurrency: int
    delay_seconds: float
    requests_per_second: float
    install_signal_handlers: bool


class ResilienceConfig(TypedDict):
    failure_threshold: int
    reset_timeout_seconds: float
    success_threshold: int
    retry_enabled: bool
    max_retries: int
    base_backoff_seconds: float


class TransportConfig(TypedDict):
    base_url: str
    timeout_seconds: float
    user_agent: str
    headers: dict[str, str]
    auth_token_env: NotRequired[str]
    auth_scheme: NotRequired[str]


class LoggingConfig(TypedDict):
    level: Literal["DEBUG", "INFO", "WARNING", "ERROR"]
    format: Literal["json", "text"]
    redact_secrets: bool


class ProfileOverlay(TypedDict, total=False):
    engine: dict[str, object]
    resilience: dict[str, object]
    transport: dict[str, object]
    logging: dict[str, object]


class DriftguardConfig(TypedDict):
    meta: MetaConfig
    engine: EngineConfig
    resilience: ResilienceConfig
    transport: TransportConfig
    logging: LoggingConfig
    profiles: dict[str, ProfileOverlay]


DEFAULT_CONFIG: Final[DriftguardConfig] = {
    "meta": {
        "schema_version": ConfigSchemaVersion,
    },
    "engine": {
        "concurrency": DEFAULT_CONCURRENCY,
        "delay_seconds": DEFAULT_BATCH_DELAY_SECONDS,
        "requests_per_second": DEFAULT_REQUESTS_PER_SECOND,
        "install_signal_handlers": False,
    },
    "resilience": {
        "failure_threshold": DEFAULT_FAILURE_THRESHOLD,
        "reset_timeout_seconds": DEFAULT_RESET_TIMEOUT_SECONDS,
        "success_threshold": DEFAULT_SUCCESS_THRESHOLD,
        "retry_enabled": True,
        "max_retries": DEFAULT_MAX_RETRIES,
        "base_backoff_seconds": DEFAULT_BASE_BACKOFF_SECONDS,
    },
    "transport": {
        "base_url": "http://localhost:3000",
        "timeout_seconds": DEFAULT_REQUEST_TIMEOUT_SECONDS,
        "user_agent": DEFAULT_USER_AGENT,
        "headers": {},
    },
    "logging": {
        "level": "INFO",
        "format": "json",
        "redact_secrets": True,
    },
    "profiles": {
        "ci": {
            "engine": {"concurrency": 1, "delay_seconds": 0.5},
            "resilience": {"max_retries": 3, "base_backoff_seconds": 2.0},
        },
        "development": {
            "engine": {"concurrency": 5, "delay_seconds": 0.05},
            "resilience": {"max_retries": 1, "base_backoff_seconds": 0.5},
            "logging": {"level": "DEBUG", "format": "text"},
        },
    },
}


@dataclass(frozen=True, slots=True)
class ConfigValidationIssue:
    """Single structured validation failure."""

    path: str
    message: str


@dataclass(frozen=True, slots=True)
class ConfigValidationResult:
    """Validation result with normalized config when no issues were found."""

    config: dict[str, Any] | None
    issues: tuple[ConfigValidationIssue, ...]

    @property
    def is_valid(self) -> bool:
        return self.config is not None and not self.issues


class ConfigValidationError(ValueError):
    """Raised when strict config validation fails."""

    def __init__(self, issues: Sequence[ConfigValidationIssue]) -> None:
        self.issues = tuple(issues)
        if not self.issues:
            rendered = "unknown validation failure"
        else:
            rendered = "\n".join(f"- {item.path}: {item.message}" for item in self.issues)
        super().__init__(f"invalid config:\n{rendered}")


class _IssueCollector:
    __slots__ = ("_items",)

    def __init__(self) -> None:
        self._items: list[ConfigValidationIssue] = []

    def add(self, path: str, message: str) -> None:
        self._items.append(ConfigValidationIssue(path=path, message=message))

    def items(self) -> tuple[ConfigValidationIssue, ...]:
        return tuple(self._items)

    @property
    def has_issues(self) -> bool:
        return bool(self._items)


def default_config() -> DriftguardConfig:
    """Return a deep copy of deterministic built-in defaults."""

    return copy.deepcopy(DEFAULT_CONFIG)


def merge_config(base: Mapping[str, object], overlay: Mapping[str, object]) -> dict[str, Any]:
    """Deterministically deep-merge ``overlay`` onto ``base``."""

    merged = _deep_copy_mapping(base)
    _merge_into(merged, overlay)
    return merged


def apply_profile_overlay(config: Mapping[str, object], profile: str | None) -> dict[str, Any]:
    """Apply a named profile overlay and re-validate the resulting config."""

    materialized = _deep_copy_mapping(config)
    if profile is None or not profile.strip():
        return materialized
    selected = profile.strip()

    profiles_raw = materialized.get("profiles")
    if not isinstance(profiles_raw, Mapping):
        raise ConfigValidationError(
            (ConfigValidationIssue("profiles", "profiles section is required"),)
        )
    overlay_raw = profiles_raw.get(selected)
    if overlay_raw is None:
        raise ConfigValidationError(
            (ConfigValidationIssue("profiles", f"profile {selected!r} is not defined"),)
        )
    if not isinstance(overlay_raw, Mapping):
        raise ConfigValidationError(
            (ConfigValidationIssue(f"profiles.{selected}", "profile overlay must be an object"),)
        )

    return assert_valid_config(merge_config(materialized, overlay_raw))


def validate_config(config: Mapping[str, object] | object) -> ConfigValidationResult:
    """Validate config and return structured issues with deterministic paths."""

    issues = _IssueCollector()
    root = _as_object(config, "<root>", issues)
    if root is None:
        return ConfigValidationResult(config=None, issues=issues.items())

    normalized = _validate_root(root, issues)
    if issues.has_issues:
        return ConfigValidationResult(config=None, issues=issues.items())
    return ConfigValidationResult(config=normalized, issues=())


def assert_valid_config(config: Mapping[str, object] | object) -> dict[str, Any]:
    """Validate config and raise ``ConfigValidationError`` on failure."""

    result = validate_config(config)
    if result.config is None:
        raise ConfigValidationError(result.issues)
    return result.config


def redact_config(config: Mapping[str, object] | object) -> dict[str, Any]:
    """Return deterministic redacted representation for logs."""

    if not isinstance(config, Mapping):
        return {}
    redacted = _redact_value(config, parent_key=None)
    if isinstance(redacted, dict):
        return redacted
    return {}


def _validate_root(payload: Mapping[str, object], issues: _IssueCollector) -> dict[str, Any]:
    allowed = {"meta", *_SECTION_NAMES, "profiles"}
    _reject_unknown_keys(payload, allowed, "", issues)
    _require_keys(payload, allowed, "", issues)

    out: dict[str, Any] = {}
    meta = _section(payload, "meta", "", issues)
    if meta is not None:
        out["meta"] = _validate_meta(meta, "meta", issues)
    for name in _SECTION_NAMES:
        section = _section(payload, name, "", issues)
        if section is not None:
            out[name] = _SECTION_VALIDATORS[name](section, name, issues, partial=False)

    profiles = _section(payload, "profiles", "", issues)
    if profiles is not None:
        out["profiles"] = _validate_profiles(profiles, "profiles", issues)
    return out


def _section(
    payload: Mapping[str, object], key: str, path: str, issues: _IssueCollector
) -> dict[str, object] | None:
    if key not in payload:
        return None
    return _as_object(payload[key], _join(path, key), issues)


def _validate_meta(
    payload: Mapping[str, object], path: str, issues: _IssueCollector
) -> dict[str, Any]:
    _reject_unknown_keys(payload, {"schema_version"}, path, issues)
    _require_keys(payload, {"schema_version"}, path, issues)
    out: dict[str, Any] = {}
    if "schema_version" in payload:
        version = _as_int(payload["schema_version"], _join(path, "schema_version"), issues)
        if version is not None:
            if version != ConfigSchemaVersion:
                issues.add(
                    _join(path, "schema_version"),
                    f"unsupported schema version {version}; expected {ConfigSchemaVersion}",
                )
            else:
                out["schema_version"] = version
    return out


def _validate_engine(
    payload: Mapping[str, object], path: str, issues: _IssueCollector, *, partial: bool
) -> dict[str, Any]:
    allowed = {"concurrency", "delay_seconds", "requests_per_second", "install_signal_handlers"}
    _reject_unknown_keys(payload, allowed, path, issues)
    if not partial:
        _require_keys(payload, allowed, path, issues)

    out: dict[str, Any] = {}
    if "concurrency" in payload:
        parsed = _as_int(payload["concurrency"], _join(path, "concurrency"), issues, minimum=1)
        if parsed is not None:
            out["concurrency"] = parsed
    if "delay_seconds" in payload:
        parsed_delay = _as_float(
            payload["delay_seconds"], _join(path, "delay_seconds"), issues, minimum=0.0
        )
        if parsed_delay is not None:
            out["delay_seconds"] = parsed_delay
    if "requests_per_second" in payload:
        parsed_rate = _as_positive_float(
            payload["requests_per_second"], _join(path, "requests_per_second"), issues
        )
        if parsed_rate is not None:
            out["requests_per_second"] = parsed_rate
    if "install_signal_handlers" in payload:
        parsed_flag = _as_bool(
            payload["install_signal_handlers"], _join(path, "install_signal_handlers"), issues
        )
        if parsed_flag is not None:
            out["install_signal_handlers"] = parsed_flag
    return out


def _validate_resilience(
    payload: Mapping[str, object], path: str, issues: _IssueCollector, *, partial: bool
) -> dict[str, Any]:
    allowed = {
        "failure_threshold",
        "reset_timeout_seconds",
        "success_threshold",
        "retry_enabled",
        "max_retries",
        "base_backoff_seconds",
    }
    _reject_unknown_keys(payload, allowed, path, issues)
    if not partial:
        _require_keys(payload, allowed, path, issues)

    out: dict[str, Any] = {}
    for key, minimum in (("failure_threshold", 1), ("success_threshold", 1), ("max_retries", 0)):
        if key in payload:
            parsed = _as_int(payload[key], _join(path, key), issues, minimum=minimum)
            if parsed is not None:
                out[key] = parsed
    for key in ("reset_timeout_seconds", "base_backoff_seconds"):
        if key in payload:
            parsed_seconds = _as_float(payload[key], _join(path, key), issues, minimum=0.0)
            if parsed_seconds is not None:
                out[key] = parsed_seconds
    if "retry_enabled" in payload:
        parsed_flag = _as_bool(payload["retry_enabled"], _join(path, "retry_enabled"), issues)
        if parsed_flag is not None:
            out["retry_enabled"] = parsed_flag
    return out


def _validate_transport(
    payload: Mapping[str, object], path: str, issues: _IssueCollector, *, partial: bool
) -> dict[str, Any]:
    required = {"base_url", "timeout_seconds", "user_agent", "headers"}
    allowed = required | {"auth_token_env", "auth_scheme"}
    _reject_unknown_keys(payload, allowed, path, issues)
    if not partial:
        _require_keys(payload, required, path, issues)

    out: dict[str, Any] = {}
    if "base_url" in payload:
        parsed_url = _as_str(payload["base_url"], _join(path, "base_url"), issues)
        if parsed_url is not None:
            if not parsed_url.startswith(("http://", "https://")):
                issues.add(_join(path, "base_url"), "must start with http:// or https://")
            else:
                out["base_url"] = parsed_url.rstrip("/")
    if "timeout_seconds" in payload:
        parsed_timeout = _as_positive_float(
            payload["timeout_seconds"], _join(path, "timeout_seconds"), issues
        )
        if parsed_timeout is not None:
            out["timeout_seconds"] = parsed_timeout
    if "user_agent" in payload:
        parsed_agent = _as_str(payload["user_agent"], _join(path, "user_agent"), issues)
        if parsed_agent is not None:
            out["user_agent"] = parsed_agent
    if "headers" in payload:
        parsed_headers = _as_headers(payload["headers"], _join(path, "headers"), issues)
        if parsed_headers is not None:
            out["headers"] = parsed_headers
    if "auth_token_env" in payload:
        parsed_env = _as_env_name(payload["auth_token_env"], _join(path, "auth_token_env"), issues)
        if parsed_env is not None:
            out["auth_token_env"] = parsed_env
    if "auth_scheme" in payload:
        parsed_scheme = _as_str(payload["auth_scheme"], _join(path, "auth_scheme"), issues)
        if parsed_scheme is not None:
            out["auth_scheme"] = parsed_scheme
    return out


def _validate_logging(
    payload: Mapping[str, object], path: str, issues: _IssueCollector, *, partial: bool
) -> dict[str, Any]:
    allowed = {"level", "format", "redact_secrets"}
    _reject_unknown_keys(payload, allowed, path, issues)
    if not partial:
        _require_keys(payload, allowed, path, issues)

    out: dict[str, Any] = {}
    if "level" in payload:
        raw_level = payload["level"]
        if isinstance(raw_level, str):
            raw_level = raw_level.strip().upper()
        parsed_level = _as_enum(raw_level, _join(path, "level"), issues, allowed_values=LOG_LEVELS)
        if parsed_level is not None:
            out["level"] = parsed_level
    if "format" in payload:
        parsed_format = _as_enum(
            payload["format"], _join(path, "format"), issues, allowed_values=LOG_FORMATS
        )
        if parsed_format is not None:
            out["format"] = parsed_format
    if "redact_secrets" in payload:
        parsed_redact = _as_bool(payload["redact_secrets"], _join(path, "redact_secrets"), issues)
        if parsed_redact is not None:
            out["redact_secrets"] = parsed_redact
    return out


_SECTION_VALIDATORS: Final = {
    "engine": _validate_engine,
    "resilience": _validate_resilience,
    "transport": _validate_transport,
    "logging": _validate_logging,
}


def _validate_profiles(
    payload: Mapping[str, object], path: str, issues: _IssueCollector
) -> dict[str, Any]:
    out: dict[str, Any] = {}
    for name in sorted(payload):
        profile_path = _join(path, name)
        if not _PROFILE_NAME_PATTERN.fullmatch(name):
            issues.add(profile_path, "profile names must match ^[a-z][a-z0-9_-]*$")
            continue
        overlay = _as_object(payload[name], profile_path, issues)
        if overlay is None:
            continue
        _reject_unknown_keys(overlay, set(_SECTION_NAMES), profile_path, issues)
        normalized: dict[str, Any] = {}
        for section_name in _SECTION_NAMES:
            section = _section(overlay, section_name, profile_path, issues)
            if section is not None:
                normalized[section_name] = _SECTION_VALIDATORS[section_name](
                    section, _join(profile_path, section_name), issues, partial=True
                )
        out[name] = normalized
    return out


def _as_object(value: object, path: str, issues: _IssueCollector) -> dict[str, object] | None:
    if not isinstance(value, Mapping):
        issues.add(path, f"expected object, got {type(value).__name__}")
        return None
    out: dict[str, object] = {}
    for key, item in value.items():
        if not isinstance(key, str):
            issues.add(path, f"object key must be string, got {type(key).__name__}")
            continue
        out[key] = item
    return out


def _as_str(value: object, path: str, issues: _IssueCollector) -> str | None:
    if not isinstance(value, str):
        issues.add(path, f"expected string, got {type(value).__name__}")
        return None
    parsed = value.strip()
    if not parsed:
        issues.add(path, "must not be empty")
        return None
    return parsed


def _as_env_name(value: object, path: str, issues: _IssueCollector) -> str | None:
    parsed = _as_str(value, path, issues)
    if parsed is None:
        return None
    if not _ENV_NAME_PATTERN.fullmatch(parsed):
        issues.add(path, "must be an env var name (example: DRIFTGUARD_API_TOKEN)")
        return None
    return parsed


def _as_headers(value: object, path: str, issues: _IssueCollector) -> dict[str, str] | None:
    mapping = _as_object(value, path, issues)
    if mapping is None:
        return None
    out: dict[str, str] = {}
    for name in sorted(mapping):
        header_path = _join(path, name)
        if not _HEADER_NAME_PATTERN.fullmatch(name):
            issues.add(header_path, "invalid HTTP header name")
            continue
        if _looks_sensitive_key(name):
            issues.add(
                header_path,
                "embedded credentials are forbidden; use transport.auth_token_env",
            )
            continue
        item = mapping[name]
        if not isinstance(item, str):
            issues.add(header_path, f"expected string, got {type(item).__name__}")
            continue
        out[name] = item
    return out


def _as_bool(value: object, path: str, issues: _IssueCollector) -> bool | None:
    if isinstance(value, bool):
        return value
    issues.add(path, f"expected boolean, got {type(value).__name__}")
    return None


def _as_int(
    value: object,
    path: str,
    issues: _IssueCollector,
    *,
    minimum: int | None = None,
) -> int | None:
    if isinstance(value, bool) or not isinstance(value, int):
        issues.add(path, f"expected integer, got {type(value).__name__}")
        return None
    if minimum is not None and value < minimum:
        issues.add(path, f"must be >= {minimum}")
        return None
    return value


def _as_float(
    value: object,
    path: str,
    issues: _IssueCollector,
    *,
    minimum: float | None = None,
) -> float | None:
    if isinstance(value, bool) or not isinstance(value, (int, float)):
        issues.add(path, f"expected number, got {type(value).__name__}")
        return None
    parsed = float(value)
    if not math.isfinite(parsed):
        issues.add(path, "must be finite")
        return None
    if minimum is not None and parsed < minimum:
        issues.add(path, f"must be >= {minimum}")
        return None
    return parsed


def _as_positive_float(value: object, path: str, issues: _IssueCollector) -> float | None:
    parsed = _as_float(value, path, issues)
    if parsed is None:
        return None
    if parsed <= 0:
        issues.add(path, "must be > 0")
        return None
    return parsed


def _as_enum(
    value: object,
    path: str,
    issues: _IssueCollector,
    *,
    allowed_values: tuple[str, ...],
) -> str | None:
    parsed = _as_str(value, path, issues)
    if parsed is None:
        return None
    if parsed not in allowed_values:
        expected = ", ".join(sorted(allowed_values))
        issues.add(path, f"invalid value {parsed!r}; expected one of: {expected}")
        return None
    return parsed


def _reject_unknown_keys(
    payload: Mapping[str, object],
    allowed: set[str],
    path: str,
    issues: _IssueCollector,
) -> None:
    for key in sorted(payload):
        if key in allowed:
            continue
        key_path = _join(path, key)
        if _looks_sensitive_key(key):
            issues.add(
                key_path,
                "embedded secret values are forbidden; use an *_env key with an env var name",
            )
        else:
            issues.add(key_path, "unknown field")


def _require_keys(
    payload: Mapping[str, object],
    required: set[str],
    path: str,
    issues: _IssueCollector,
) -> None:
    for key in sorted(required):
        if key not in payload:
            issues.add(_join(path, key), "missing required field")


def _looks_sensitive_key(key: str) -> bool:
    normalized = _normalize_key(key)
    if normalized.endswith("_env"):
        return False
    if any(phrase in normalized for phrase in _SENSITIVE_KEY_PHRASES):
        return True
    tokens = tuple(token for token in normalized.split("_") if token)
    return any(token in _SENSITIVE_KEY_TOKENS for token in tokens)


def _normalize_key(key: str) -> str:
    with_boundaries = _CAMEL_CASE_BOUNDARY.sub(r"\1_\2", key.strip())
    return _NON_ALNUM.sub("_", with_boundaries.lower()).strip("_")


def _join(path: str, key: str) -> str:
    if not path:
        return key
    return f"{path}.{key}"


def _merge_into(target: dict[str, Any], overlay: Mapping[str, object]) -> None:
    for key in sorted(overlay):
        value = overlay[key]
        if isinstance(value, Mapping):
            existing = target.get(key)
            if isinstance(existing, dict):
                _merge_into(existing, value)
            else:
                nested: dict[str, Any] = {}
                if isinstance(existing, Mapping):
                    nested = _deep_copy_mapping(existing)
                _merge_into(nested, value)
                target[key] = nested
        else:
            target[key] = copy.deepcopy(value)


def _deep_copy_mapping(value: Mapping[str, object]) -> dict[str, Any]:
    return {key: copy.deepcopy(value[key]) for key in sorted(value)}


def _redact_value(value: object, parent_key: str | None) -> object:
    if isinstance(value, Mapping):
        out: dict[str, object] = {}
        for key in sorted(value):
            item = value[key]
            if _key_is_sensitive_for_redaction(key) and not isinstance(item, bool):
                out[key] = "<redacted>"
            else:
                out[key] = _redact_value(item, key)
        return out
    if isinstance(value, (list, tuple)):
        return [_redact_value(item, parent_key) for item in value]
    return value


def _key_is_sensitive_for_redaction(key: str) -> bool:
    normalized = _normalize_key(key)
    if normalized.endswith("_env"):
        return True
    return _looks_sensitive_key(normalized)


__all__ = [
    "BUILTIN_PROFILE_NAMES",
    "ConfigSchemaVersion",
    "ConfigValidationError",
    "ConfigValidationIssue",
    "ConfigValidationResult",
    "DEFAULT_CONFIG",
    "DriftguardConfig",
    "EngineConfig",
    "LOG_FORMATS",
    "LOG_LEVELS",
    "LoggingConfig",
    "ProfileOverlay",
    "ResilienceConfig",
    "TransportConfig",
    "apply_profile_overlay",
    "assert_valid_config",
    "default_config",
    "merge_config",
    "redact_config",
    "validate_config",
]

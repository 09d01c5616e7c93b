"""
driftguard - schema conformance checker

File: src/driftguard/validation/schema_checker.py

Purpose
- Run response bodies through ``jsonschema`` and translate every raw violation into
  exactly one domain ``Issue`` (per absent or extra property for ``required`` and
  ``additionalProperties``).

Functional requirements
- Compiled validators are cached by the canonical JSON form of their schema.
- Schema compile and reference failures never raise past ``validate_response``;
  they become a single ``schema_compilation_error`` issue.
- OpenAPI 3.0 ``nullable`` and boolean ``exclusiveMinimum``/``exclusiveMaximum``
  are rewritten to their JSON Schema equivalents before compiling.
"""

from __future__ import annotations

import json
import re
from collections.abc import Callable, Iterable, Mapping
from typing import Any, Final

import structlog
from jsonschema import Draft202012Validator
from jsonschema.exceptions import SchemaError, ValidationError
from jsonschema.protocols import Validator as JsonSchemaValidator
from jsonschema.validators import validator_for
from referencing.exceptions import Unresolvable

from driftguard.domain.models import Issue, IssueType, JSONSchema
from driftguard.validation.sample_data import SampleDataGenerator

_ROOT_FIELD: Final[str] = "root"

_ISSUE_TYPE_BY_KEYWORD: Final[Mapping[str, IssueType]] = {
    "required": IssueType.MISSING_FIELD,
    "type": IssueType.TYPE_MISMATCH,
    "format": IssueType.FORMAT_MISMATCH,
    "enum": IssueType.ENUM_VIOLATION,
    "const": IssueType.ENUM_VIOLATION,
    "minimum": IssueType.RANGE_VIOLATION,
    "maximum": IssueType.RANGE_VIOLATION,
    "exclusiveMinimum": IssueType.RANGE_VIOLATION,
    "exclusiveMaximum": IssueType.RANGE_VIOLATION,
    "multipleOf": IssueType.RANGE_VIOLATION,
    "minLength": IssueType.LENGTH_VIOLATION,
    "maxLength": IssueType.LENGTH_VIOLATION,
    "pattern": IssueType.PATTERN_VIOLATION,
    "additionalProperties": IssueType.UNEXPECTED_FIELD,
    "unevaluatedProperties": IssueType.UNEXPECTED_FIELD,
    "minItems": IssueType.ARRAY_LENGTH_VIOLATION,
    "maxItems": IssueType.ARRAY_LENGTH_VIOLATION,
}

_JSON_TYPE_NAMES: Final[tuple[tuple[type, str], ...]] = (
    (bool, "boolean"),
    (int, "integer"),
    (float, "number"),
    (str, "string"),
    (list, "array"),
    (dict, "object"),
)


def json_type_name(value: object) -> str:
    if value is None:
        return "null"
    for python_type, name in _JSON_TYPE_NAMES:
        if isinstance(value, python_type):
            return name
    return type(value).__name__


def normalize_openapi_schema(schema: object) -> object:
    """Rewrite OpenAPI 3.0 dialect keywords into JSON Schema 2020-12."""

    if isinstance(schema, list):
        return [normalize_openapi_schema(item) for item in schema]
    if not isinstance(schema, Mapping):
        return schema

    out: dict[str, object] = {
        key: normalize_openapi_schema(value) for key, value in schema.items()
    }

    if out.pop("nullable", False) is True:
        declared = out.get("type")
        if isinstance(declared, str) and declared != "null":
            out["type"] = [declared, "null"]
        elif isinstance(declared, list) and "null" not in declared:
            out["type"] = [*declared, "null"]
        elif "enum" in out and isinstance(out["enum"], list) and None not in out["enum"]:
            out["enum"] = [*out["enum"], None]

    for exclusive_key, bound_key in (
        ("exclusiveMinimum", "minimum"),
        ("exclusiveMaximum", "maximum"),
    ):
        flag = out.get(exclusive_key)
        if isinstance(flag, bool):
            del out[exclusive_key]
            if flag and bound_key in out:
                out[exclusive_key] = out.pop(bound_key)
    return out


def _canonical_key(schema: JSONSchema) -> str:
    return json.dumps(schema, sort_keys=True, separators=(",", ":"), default=str)


def _json_pointer(path: Iterable[object]) -> str:
    parts = [str(part).replace("~", "~0").replace("/", "~1") for part in path]
    return "/" + "/".join(parts) if parts else ""


def _field_name(path: Iterable[object]) -> str:
    parts = list(path)
    if not parts:
        return _ROOT_FIELD
    return str(parts[-1])


class SchemaChecker:
    """Translate ``jsonschema`` failures into the issue taxonomy."""

    def __init__(
        self,
        *,
        default_validator: type[JsonSchemaValidator] = Draft202012Validator,
        sample_generator: SampleDataGenerator | None = None,
        logger: Any | None = None,
    ) -> None:
        self._default_validator = default_validator
        self._sample_generator = (
            sample_generator if sample_generator is not None else SampleDataGenerator()
        )
        self._logger = logger if logger is not None else structlog.get_logger(__name__)
        self._cache: dict[str, JsonSchemaValidator] = {}

    @property
    def cache_size(self) -> int:
        return len(self._cache)

    def clear_cache(self) -> None:
        self._cache.clear()

    def compile(self, schema: JSONSchema) -> JsonSchemaValidator:
        """Return a cached validator for ``schema``; raises ``SchemaError`` when invalid."""

        key = _canonical_key(schema)
        cached = self._cache.get(key)
        if cached is not None:
            return cached

        normalized = normalize_openapi_schema(schema)
        if not isinstance(normalized, Mapping):
            raise SchemaError(f"schema must be an object, got {json_type_name(schema)}")
        validator_cls = validator_for(normalized, default=self._default_validator)
        validator_cls.check_schema(normalized)
        compiled = validator_cls(normalized, format_checker=validator_cls.FORMAT_CHECKER)
        self._cache[key] = compiled
        return compiled

    def validate_response(self, data: object, schema: JSONSchema | None) -> list[Issue]:
        if schema is None:
            return []
        try:
            compiled = self.compile(schema)
            errors = list(compiled.iter_errors(data))
        except (SchemaError, Unresolvable) as exc:
            return [self._compilation_issue(exc)]

        issues: list[Issue] = []
        consumed_missing: dict[str, set[str]] = {}
        for error in errors:
            issues.extend(self._issues_for(error, consumed_missing))
        if issues:
            self._logger.debug("schema_violations_found", count=len(issues))
        return issues

    def generate_sample_data(self, schema: JSONSchema | None) -> object:
        return self._sample_generator.generate(schema)

    def _compilation_issue(self, exc: BaseException) -> Issue:
        message = getattr(exc, "message", None) or str(exc)
        self._logger.warning("schema_compilation_failed", error=message)
        return Issue(
            type=IssueType.SCHEMA_COMPILATION_ERROR,
            field=None,
            message=f"Failed to compile schema: {message}",
            details={"schema_error": message},
        )

    def _issues_for(
        self,
        error: ValidationError,
        consumed_missing: dict[str, set[str]],
    ) -> list[Issue]:
        keyword = str(error.validator)
        issue_type = _ISSUE_TYPE_BY_KEYWORD.get(keyword, IssueType.SCHEMA_VIOLATION)
        pointer = _json_pointer(error.absolute_path)
        if issue_type is IssueType.MISSING_FIELD:
            return _build_missing(error, pointer, consumed_missing.setdefault(pointer, set()))
        builder = _BUILDERS.get(issue_type, _build_generic)
        return builder(error, pointer, keyword)


def _build_missing(error: ValidationError, pointer: str, consumed: set[str]) -> list[Issue]:
    instance = error.instance if isinstance(error.instance, Mapping) else {}
    required = error.validator_value if isinstance(error.validator_value, list) else []
    missing = [name for name in required if name not in instance and name not in consumed]
    name = str(missing[0]) if missing else _field_name(error.absolute_path)
    consumed.add(name)
    return [
        Issue(
            type=IssueType.MISSING_FIELD,
            field=name,
            message=f"Required field '{name}' is missing",
            details={"field_path": pointer, "schema_path": _json_pointer(error.schema_path)},
        )
    ]


def _build_type(error: ValidationError, pointer: str, keyword: str) -> list[Issue]:
    name = _field_name(error.absolute_path)
    expected = error.validator_value
    actual = json_type_name(error.instance)
    rendered = " or ".join(expected) if isinstance(expected, list) else str(expected)
    return [
        Issue(
            type=IssueType.TYPE_MISMATCH,
            field=name,
            message=f"Field '{name}' should be {rendered} but got {actual}",
            details={
                "expected": expected,
                "actual": actual,
                "value": error.instance,
                "field_path": pointer,
            },
        )
    ]


def _build_format(error: ValidationError, pointer: str, keyword: str) -> list[Issue]:
    name = _field_name(error.absolute_path)
    return [
        Issue(
            type=IssueType.FORMAT_MISMATCH,
            field=name,
            message=f"Field '{name}' does not match format '{error.validator_value}'",
            details={
                "expected_format": error.validator_value,
                "actual_value": error.instance,
                "field_path": pointer,
            },
        )
    ]


def _build_enum(error: ValidationError, pointer: str, keyword: str) -> list[Issue]:
    name = _field_name(error.absolute_path)
    raw_allowed = error.validator_value if keyword == "enum" else [error.validator_value]
    allowed = list(raw_allowed) if isinstance(raw_allowed, list) else [raw_allowed]
    rendered = ", ".join(str(item) for item in allowed)
    return [
        Issue(
            type=IssueType.ENUM_VIOLATION,
            field=name,
            message=f"Field '{name}' must be one of: {rendered}",
            details={
                "allowed_values": allowed,
                "actual_value": error.instance,
                "field_path": pointer,
            },
        )
    ]


def _build_bounded(error: ValidationError, pointer: str, keyword: str) -> list[Issue]:
    issue_type = _ISSUE_TYPE_BY_KEYWORD[keyword]
    name = _field_name(error.absolute_path)
    details: dict[str, object] = {
        "constraint": keyword,
        "limit": error.validator_value,
        "field_path": pointer,
    }
    if issue_type is IssueType.RANGE_VIOLATION:
        details["actual_value"] = error.instance
        message = f"Field '{name}' {error.message}"
    elif issue_type is IssueType.PATTERN_VIOLATION:
        details["actual_value"] = error.instance
        message = f"Field '{name}' does not match required pattern"
    else:
        instance = error.instance
        details["actual_length"] = len(instance) if isinstance(instance, (str, list)) else None
        prefix = "Array" if issue_type is IssueType.ARRAY_LENGTH_VIOLATION else "Field"
        message = f"{prefix} '{name}' {error.message}"
    return [Issue(type=issue_type, field=name, message=message, details=details)]


def _build_unexpected(error: ValidationError, pointer: str, keyword: str) -> list[Issue]:
    instance = error.instance if isinstance(error.instance, Mapping) else {}
    extras = _extra_properties(instance, error.schema)
    if not extras:
        return _build_generic(error, pointer, keyword)
    return [
        Issue(
            type=IssueType.UNEXPECTED_FIELD,
            field=name,
            message=f"Unexpected field '{name}' found",
            details={"field_path": pointer, "unexpected_field": name},
        )
        for name in extras
    ]


def _build_generic(error: ValidationError, pointer: str, keyword: str) -> list[Issue]:
    name = _field_name(error.absolute_path)
    return [
        Issue(
            type=IssueType.SCHEMA_VIOLATION,
            field=name,
            message=error.message or f"Schema validation failed for '{name}'",
            details={
                "keyword": keyword,
                "field_path": pointer,
                "schema_path": _json_pointer(error.schema_path),
            },
        )
    ]


def _extra_properties(instance: Mapping[str, object], schema: object) -> list[str]:
    if not isinstance(schema, Mapping):
        return []
    declared = schema.get("properties")
    known = set(declared) if isinstance(declared, Mapping) else set()
    patterns = schema.get("patternProperties")
    compiled = (
        [re.compile(pattern) for pattern in patterns] if isinstance(patterns, Mapping) else []
    )
    return [
        str(key)
        for key in instance
        if key not in known and not any(regex.search(str(key)) for regex in compiled)
    ]


_BUILDERS: Final[Mapping[IssueType, Callable[[ValidationError, str, str], list[Issue]]]] = {
    IssueType.TYPE_MISMATCH: _build_type,
    IssueType.FORMAT_MISMATCH: _build_format,
    IssueType.ENUM_VIOLATION: _build_enum,
    IssueType.RANGE_VIOLATION: _build_bounded,
    IssueType.LENGTH_VIOLATION: _build_bounded,
    IssueType.PATTERN_VIOLATION: _build_bounded,
    IssueType.ARRAY_LENGTH_VIOLATION: _build_bounded,
    IssueType.UNEXPECTED_FIELD: _build_unexpected,
}


__all__ = ["SchemaChecker", "json_type_name", "normalize_openapi_schema"]

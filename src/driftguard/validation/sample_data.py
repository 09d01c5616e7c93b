"""Deterministic minimal sample payloads generated from JSON schemas."""

from __future__ import annotations

import math
from collections.abc import Mapping
from typing import Any, Final

import structlog

from driftguard.constants import SAMPLE_DEPTH_LIMIT, SAMPLE_OPTIONAL_PROPERTY_LIMIT

_FORMAT_SAMPLES: Final[Mapping[str, str]] = {
    "email": "test@example.com",
    "date": "2023-01-01",
    "date-time": "2023-01-01T00:00:00Z",
    "uri": "https://example.com",
    "url": "https://example.com",
    "uuid": "123e4567-e89b-12d3-a456-426614174000",
    "password": "password123",
    "byte": "aGVsbG8gd29ybGQ=",
    "binary": "binary_data",
}
_STRING_PREFIX: Final[str] = "sample_"
_DEFAULT_NUMBER_SPAN: Final[float] = 100.0


class SampleDataGenerator:
    """Produce the smallest reasonable value that satisfies a schema.

    Generation order per schema node: ``$ref`` (local pointers only), ``oneOf``/``anyOf``
    first branch, ``allOf`` merge, ``example``, ``default``, ``enum`` first entry, then
    the declared or inferred ``type``. Recursion stops at ``depth_limit`` with ``None``.
    """

    def __init__(
        self,
        *,
        depth_limit: int = SAMPLE_DEPTH_LIMIT,
        logger: Any | None = None,
    ) -> None:
        if depth_limit < 0:
            raise ValueError("depth_limit must be >= 0")
        self._depth_limit = depth_limit
        self._logger = logger if logger is not None else structlog.get_logger(__name__)

    def generate(self, schema: Mapping[str, object] | None) -> object:
        if not isinstance(schema, Mapping):
            return None
        return self._value(schema, root=schema, depth=0)

    def _value(
        self, schema: Mapping[str, object], *, root: Mapping[str, object], depth: int
    ) -> object:
        if depth > self._depth_limit:
            return None

        ref = schema.get("$ref")
        if isinstance(ref, str):
            target = _resolve_local_ref(root, ref)
            if target is None:
                self._logger.debug("sample_data_unresolved_ref", ref=ref)
                return None
            return self._value(target, root=root, depth=depth + 1)

        for combinator in ("oneOf", "anyOf"):
            options = schema.get(combinator)
            if isinstance(options, list) and options and isinstance(options[0], Mapping):
                return self._value(options[0], root=root, depth=depth + 1)

        all_of = schema.get("allOf")
        if isinstance(all_of, list) and all_of:
            return self._value(_merge_all_of(schema, all_of), root=root, depth=depth + 1)

        for hint in ("example", "default"):
            if hint in schema:
                return schema[hint]

        enum = schema.get("enum")
        if isinstance(enum, list) and enum:
            return enum[0]

        schema_type = _primary_type(schema)
        if schema_type == "object":
            return self._object(schema, root=root, depth=depth)
        if schema_type == "array":
            return self._array(schema, root=root, depth=depth)
        if schema_type == "string":
            return _string(schema)
        if schema_type in ("number", "integer"):
            return _number(schema, integer=schema_type == "integer")
        if schema_type == "boolean":
            return True
        return None

    def _object(
        self, schema: Mapping[str, object], *, root: Mapping[str, object], depth: int
    ) -> dict[str, object]:
        properties = schema.get("properties")
        props: Mapping[str, object] = properties if isinstance(properties, Mapping) else {}
        required_raw = schema.get("required")
        required: list[str] = []
        if isinstance(required_raw, list):
            required = [name for name in required_raw if isinstance(name, str)]

        out: dict[str, object] = {}
        for name in required:
            prop_schema = props.get(name)
            if isinstance(prop_schema, Mapping):
                out[name] = self._value(prop_schema, root=root, depth=depth + 1)

        optional = [name for name in props if name not in required]
        for name in optional[:SAMPLE_OPTIONAL_PROPERTY_LIMIT]:
            prop_schema = props[name]
            if isinstance(prop_schema, Mapping):
                out[name] = self._value(prop_schema, root=root, depth=depth + 1)
        return out

    def _array(
        self, schema: Mapping[str, object], *, root: Mapping[str, object], depth: int
    ) -> list[object]:
        items = schema.get("items")
        if not isinstance(items, Mapping):
            return []
        min_items = _as_count(schema.get("minItems")) or 1
        max_items = min(_as_count(schema.get("maxItems")) or 3, 3)
        count = max(min_items, min(max_items, 2))
        return [self._value(items, root=root, depth=depth + 1) for _ in range(count)]


def _primary_type(schema: Mapping[str, object]) -> str | None:
    declared = schema.get("type")
    if isinstance(declared, list):
        non_null = [item for item in declared if isinstance(item, str) and item != "null"]
        declared = non_null[0] if non_null else None
    if isinstance(declared, str):
        return declared
    if "properties" in schema:
        return "object"
    if "items" in schema:
        return "array"
    return None


def _string(schema: Mapping[str, object]) -> str:
    fmt = schema.get("format")
    if isinstance(fmt, str) and fmt in _FORMAT_SAMPLES:
        return _FORMAT_SAMPLES[fmt]

    pattern = schema.get("pattern")
    if isinstance(pattern, str):
        if "\\d" in pattern:
            return "123"
        if "[a-zA-Z]" in pattern:
            return "abc"

    min_length = _as_count(schema.get("minLength")) or 1
    max_length = min(_as_count(schema.get("maxLength")) or 20, 20)
    target = max(min_length, min(max_length, 10))
    if target < len(_STRING_PREFIX):
        return "x" * target
    return _STRING_PREFIX + "x" * (target - len(_STRING_PREFIX))


def _number(schema: Mapping[str, object], *, integer: bool) -> int | float:
    step = 1 if integer else 0.1
    minimum = _as_number(schema.get("minimum"), math.nan)
    maximum = _as_number(schema.get("maximum"), math.nan)

    exclusive_min = schema.get("exclusiveMinimum")
    if exclusive_min is True and not math.isnan(minimum):
        minimum += step
    elif isinstance(exclusive_min, (int, float)) and not isinstance(exclusive_min, bool):
        minimum = float(exclusive_min) + step

    exclusive_max = schema.get("exclusiveMaximum")
    if exclusive_max is True and not math.isnan(maximum):
        maximum -= step
    elif isinstance(exclusive_max, (int, float)) and not isinstance(exclusive_max, bool):
        maximum = float(exclusive_max) - step

    # Missing bounds default to 0..100, shifted past a declared bound outside it.
    if math.isnan(minimum):
        minimum = maximum - _DEFAULT_NUMBER_SPAN if maximum < 0 else 0.0
    if math.isnan(maximum):
        span = _DEFAULT_NUMBER_SPAN
        maximum = minimum + span if minimum >= span else span

    value = minimum + (maximum - minimum) * 0.5
    if integer:
        return math.floor(value + 0.5)
    return value


def _merge_all_of(schema: Mapping[str, object], parts: list[object]) -> dict[str, object]:
    merged: dict[str, object] = {key: value for key, value in schema.items() if key != "allOf"}
    own_properties = merged.get("properties")
    own_required = merged.get("required")
    properties: dict[str, object] = (
        dict(own_properties) if isinstance(own_properties, Mapping) else {}
    )
    required: list[object] = list(own_required) if isinstance(own_required, list) else []
    for part in parts:
        if not isinstance(part, Mapping):
            continue
        for key, value in part.items():
            if key == "properties" and isinstance(value, Mapping):
                properties.update(value)
            elif key == "required" and isinstance(value, list):
                required.extend(item for item in value if item not in required)
            else:
                merged.setdefault(key, value)
    if properties:
        merged["properties"] = properties
        merged.setdefault("type", "object")
    if required:
        merged["required"] = required
    return merged


def _resolve_local_ref(root: Mapping[str, object], ref: str) -> Mapping[str, object] | None:
    if not ref.startswith("#"):
        return None
    node: object = root
    for raw in ref.lstrip("#").split("/"):
        if not raw:
            continue
        part = raw.replace("~1", "/").replace("~0", "~")
        if not isinstance(node, Mapping) or part not in node:
            return None
        node = node[part]
    return node if isinstance(node, Mapping) else None


def _as_number(value: object, fallback: float) -> float:
    if isinstance(value, (int, float)) and not isinstance(value, bool):
        return float(value)
    return fallback


def _as_count(value: object) -> int | None:
    if isinstance(value, int) and not isinstance(value, bool) and value > 0:
        return value
    return None


__all__ = ["SampleDataGenerator"]

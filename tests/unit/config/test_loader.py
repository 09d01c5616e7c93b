"""
driftguard - unit tests for config loader

File: tests/unit/config/test_loader.py

Purpose
- Validate deterministic config loading from defaults, TOML, payload, env and
  explicit overrides.

What this test file should cover
- Precedence: overrides > env > payload > file > defaults.
- Deterministic env var path mapping and type coercion.
- Profile selection by argument, override and env.
- Auth header resolution from an env var reference.
- Redacted effective config dumping.
"""

from __future__ import annotations

import hashlib
import json
from pathlib import Path
from typing import Any

import pytest

from driftguard.config.loader import (
    ConfigLoadError,
    dump_effective_config,
    load_config,
    resolve_auth_header,
)
from driftguard.config.schema import ConfigValidationError


def _write_config(path: Path, text: str) -> None:
    path.parent.mkdir(parents=True, exist_ok=True)
    path.write_text(text, encoding="utf-8")


def _sha256_json(data: dict[str, object]) -> str:
    payload = json.dumps(data, sort_keys=True, separators=(",", ":"), ensure_ascii=False)
    return hashlib.sha256(payload.encode("utf-8")).hexdigest()


def test_loader_precedence_default_file_payload_env_override(tmp_path: Path) -> None:
    config_path = tmp_path / "driftguard.toml"
    _write_config(config_path, "[engine]\nconcurrency = 4\n")

    default_loaded = load_config(environ={})
    file_loaded = load_config(config_path=config_path, environ={})
    payload_loaded = load_config(
        {"engine": {"concurrency": 5}}, config_path=config_path, environ={}
    )
    env = {"DRIFTGUARD_ENGINE_CONCURRENCY": "6"}
    env_loaded = load_config({"engine": {"concurrency": 5}}, config_path=config_path, environ=env)
    override_loaded = load_config(
        {"engine": {"concurrency": 5}},
        config_path=config_path,
        environ=env,
        overrides={"engine.concurrency": 7},
    )

    assert default_loaded["engine"]["concurrency"] == 3
    assert file_loaded["engine"]["concurrency"] == 4
    assert payload_loaded["engine"]["concurrency"] == 5
    assert env_loaded["engine"]["concurrency"] == 6
    assert override_loaded["engine"]["concurrency"] == 7


def test_env_mapping_coerces_types() -> None:
    loaded = load_config(
        environ={
            "DRIFTGUARD_ENGINE_REQUESTS_PER_SECOND": "2.5",
            "DRIFTGUARD_RESILIENCE_RETRY_ENABLED": "no",
            "DRIFTGUARD_TRANSPORT_BASE_URL": "https://api.example.com/",
            "DRIFTGUARD_LOGGING_LEVEL": "debug",
        }
    )

    assert loaded["engine"]["requests_per_second"] == 2.5
    assert loaded["resilience"]["retry_enabled"] is False
    assert loaded["transport"]["base_url"] == "https://api.example.com"
    assert loaded["logging"]["level"] == "DEBUG"


@pytest.mark.parametrize(
    ("env_name", "raw"),
    [
        ("DRIFTGUARD_ENGINE_CONCURRENCY", "many"),
        ("DRIFTGUARD_ENGINE_DELAY_SECONDS", "soon"),
        ("DRIFTGUARD_RESILIENCE_RETRY_ENABLED", "maybe"),
    ],
)
def test_invalid_env_coercion_raises_actionable_error(env_name: str, raw: str) -> None:
    with pytest.raises(ConfigLoadError, match=env_name):
        load_config(environ={env_name: raw})


def test_env_values_are_still_validated() -> None:
    with pytest.raises(ConfigValidationError, match="engine.concurrency"):
        load_config(environ={"DRIFTGUARD_ENGINE_CONCURRENCY": "0"})


def test_loader_is_deterministic_for_same_inputs(tmp_path: Path) -> None:
    config_path = tmp_path / "driftguard.toml"
    _write_config(config_path, "")
    env = {"DRIFTGUARD_ENGINE_CONCURRENCY": "6", "DRIFTGUARD_LOGGING_FORMAT": "text"}
    overrides = {"resilience.max_retries": 4}

    first = load_config(config_path=config_path, environ=env, overrides=overrides)
    second = load_config(config_path=config_path, environ=env, overrides=overrides)

    assert _sha256_json(first) == _sha256_json(second)


@pytest.mark.parametrize(
    ("kwargs", "expected_concurrency"),
    [
        ({"profile": "ci"}, 1),
        ({"overrides": {"profile": "development"}}, 5),
        ({"environ": {"DRIFTGUARD_PROFILE": "ci"}}, 1),
    ],
)
def test_profile_selection(kwargs: dict[str, Any], expected_concurrency: int) -> None:
    kwargs.setdefault("environ", {})
    loaded = load_config(**kwargs)

    assert loaded["engine"]["concurrency"] == expected_concurrency


def test_unknown_profile_is_rejected() -> None:
    with pytest.raises(ConfigValidationError, match="profile 'staging' is not defined"):
        load_config(profile="staging", environ={})


def test_missing_file_and_bad_toml(tmp_path: Path) -> None:
    with pytest.raises(ConfigLoadError, match="config file not found"):
        load_config(config_path=tmp_path / "absent.toml", environ={})

    broken = tmp_path / "broken.toml"
    _write_config(broken, "[engine\nconcurrency = ")
    with pytest.raises(ConfigLoadError, match="invalid TOML"):
        load_config(config_path=broken, environ={})


def test_resolve_auth_header_from_env() -> None:
    loaded = load_config(
        {"transport": {"auth_token_env": "API_TOKEN", "auth_scheme": "Token"}}, environ={}
    )

    assert resolve_auth_header(loaded, {"API_TOKEN": " abc "}) == {"Authorization": "Token abc"}
    assert resolve_auth_header(load_config(environ={}), {}) == {}
    with pytest.raises(ConfigLoadError, match="API_TOKEN is not set"):
        resolve_auth_header(loaded, {"API_TOKEN": "  "})


def test_dump_effective_config_is_redacted_and_deterministic() -> None:
    loaded = load_config({"transport": {"auth_token_env": "API_TOKEN"}}, environ={})

    first = dump_effective_config(loaded)
    second = dump_effective_config(loaded)

    assert first == second
    parsed = json.loads(first)
    assert parsed["transport"]["auth_token_env"] == "<redacted>"
    assert parsed["transport"]["base_url"] == "http://localhost:3000"

"""Unit tests for typed engine settings built from a loaded config."""

from __future__ import annotations

import pytest

from driftguard.config.loader import ConfigLoadError, load_config
from driftguard.config.schema import ConfigValidationError
from driftguard.config.settings import EngineSettings
from driftguard.constants import DEFAULT_USER_AGENT


def test_defaults_map_onto_settings() -> None:
    settings = EngineSettings.from_config(load_config(environ={}), environ={})

    assert settings.base_url == "http://localhost:3000"
    assert settings.headers == {"User-Agent": DEFAULT_USER_AGENT}
    assert settings.batch.concurrency == 3
    assert settings.batch.failure_threshold == 5
    assert settings.retry_enabled is True
    assert settings.install_signal_handlers is False
    assert (settings.log_level, settings.log_format, settings.redact_secrets) == (
        "INFO",
        "json",
        True,
    )


def test_headers_merge_custom_agent_and_auth() -> None:
    config = load_config(
        {
            "transport": {
                "user_agent": "contract-ci/2",
                "headers": {"Accept": "application/json"},
                "auth_token_env": "API_TOKEN",
            }
        },
        environ={},
    )

    settings = EngineSettings.from_config(config, environ={"API_TOKEN": "s3cr3t"})

    assert settings.headers == {
        "User-Agent": "contract-ci/2",
        "Accept": "application/json",
        "Authorization": "Bearer s3cr3t",
    }


def test_missing_auth_token_is_a_load_error() -> None:
    config = load_config({"transport": {"auth_token_env": "API_TOKEN"}}, environ={})

    with pytest.raises(ConfigLoadError):
        EngineSettings.from_config(config, environ={})


def test_invalid_mapping_is_rejected() -> None:
    with pytest.raises(ConfigValidationError):
        EngineSettings.from_config({"engine": {"concurrency": 2}})


def test_retry_handler_follows_settings() -> None:
    enabled = EngineSettings.from_config(
        load_config({"resilience": {"max_retries": 4, "base_backoff_seconds": 0.25}}, environ={}),
        environ={},
    )
    disabled = EngineSettings.from_config(
        load_config({"resilience": {"retry_enabled": False}}, environ={}), environ={}
    )

    handler = enabled.build_retry_handler()
    assert handler is not None
    assert handler.max_retries == 4
    assert handler.policy.base_backoff_seconds == 0.25
    assert disabled.build_retry_handler() is None


def test_ci_profile_settings() -> None:
    settings = EngineSettings.from_config(load_config(profile="ci", environ={}), environ={})

    assert settings.batch.concurrency == 1
    assert settings.batch.delay_seconds == 0.5
    assert settings.max_retries == 3


def test_logging_config_mirrors_logging_section() -> None:
    config = load_config(
        {"logging": {"level": "warning", "format": "text", "redact_secrets": False}}, environ={}
    )

    settings = EngineSettings.from_config(config, environ={})

    assert settings.logging_config() == {
        "level": "WARNING",
        "format": "text",
        "redact_secrets": False,
    }

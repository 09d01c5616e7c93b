"""Typed engine settings derived from a validated config mapping."""

from __future__ import annotations

from collections.abc import Mapping
from dataclasses import dataclass, field
from typing import Any

from driftguard.config.loader import resolve_auth_header
from driftguard.config.schema import assert_valid_config
from driftguard.execution.batch_processor import BatchProcessorConfig
from driftguard.resilience.retry import RetryHandler


@dataclass(frozen=True, slots=True)
class EngineSettings:
    base_url: str
    timeout_seconds: float
    user_agent: str
    headers: Mapping[str, str] = field(default_factory=dict)
    batch: BatchProcessorConfig = field(default_factory=BatchProcessorConfig)
    retry_enabled: bool = True
    max_retries: int = 2
    base_backoff_seconds: float = 1.0
    install_signal_handlers: bool = False
    log_level: str = "INFO"
    log_format: str = "json"
    redact_secrets: bool = True

    @classmethod
    def from_config(
        cls,
        config: Mapping[str, object],
        *,
        environ: Mapping[str, str] | None = None,
    ) -> EngineSettings:
        validated = assert_valid_config(config)
        engine: dict[str, Any] = validated["engine"]
        resilience: dict[str, Any] = validated["resilience"]
        transport: dict[str, Any] = validated["transport"]
        logging_section: dict[str, Any] = validated["logging"]

        headers = {"User-Agent": transport["user_agent"], **transport["headers"]}
        headers.update(resolve_auth_header(validated, environ))
        return cls(
            base_url=transport["base_url"],
            timeout_seconds=transport["timeout_seconds"],
            user_agent=transport["user_agent"],
            headers=headers,
            batch=BatchProcessorConfig(
                concurrency=engine["concurrency"],
                delay_seconds=engine["delay_seconds"],
                requests_per_second=engine["requests_per_second"],
                failure_threshold=resilience["failure_threshold"],
                reset_timeout_seconds=resilience["reset_timeout_seconds"],
                success_threshold=resilience["success_threshold"],
            ),
            retry_enabled=resilience["retry_enabled"],
            max_retries=resilience["max_retries"],
            base_backoff_seconds=resilience["base_backoff_seconds"],
            install_signal_handlers=engine["install_signal_handlers"],
            log_level=logging_section["level"],
            log_format=logging_section["format"],
            redact_secrets=logging_section["redact_secrets"],
        )

    def logging_config(self) -> dict[str, object]:
        """The ``[logging]`` section in the shape ``configure_logging`` accepts."""
        return {
            "level": self.log_level,
            "format": self.log_format,
            "redact_secrets": self.redact_secrets,
        }

    def build_retry_handler(self, **kwargs: Any) -> RetryHandler | None:
        if not self.retry_enabled:
            return None
        return RetryHandler(
            max_retries=self.max_retries,
            base_backoff_seconds=self.base_backoff_seconds,
            **kwargs,
        )


__all__ = ["EngineSettings"]

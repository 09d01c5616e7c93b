"""Public observability primitives: structured logging setup and correlation."""

from driftguard.observability.logging import (
    LoggingHandle,
    LogRedactor,
    configure_logging,
    correlation_scope,
    default_log_redactor,
    get_active_logging_handle,
    get_correlation_context,
    shutdown_logging,
)

__all__ = [
    "LogRedactor",
    "LoggingHandle",
    "configure_logging",
    "correlation_scope",
    "default_log_redactor",
    "get_active_logging_handle",
    "get_correlation_context",
    "shutdown_logging",
]

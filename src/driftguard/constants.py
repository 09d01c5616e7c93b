"""Stable defaults shared across the engine."""

from __future__ import annotations

from typing import Final

# Configuration.
CONFIG_SCHEMA_VERSION: Final[int] = 1
ENV_PREFIX: Final[str] = "DRIFTGUARD_"

# Batch processing.
DEFAULT_CONCURRENCY: Final[int] = 3
DEFAULT_BATCH_DELAY_SECONDS: Final[float] = 0.1
DEFAULT_REQUESTS_PER_SECOND: Final[float] = 10.0

# Circuit breaker.
DEFAULT_FAILURE_THRESHOLD: Final[int] = 5
DEFAULT_RESET_TIMEOUT_SECONDS: Final[float] = 60.0
DEFAULT_SUCCESS_THRESHOLD: Final[int] = 3

# Retry handler.
DEFAULT_MAX_RETRIES: Final[int] = 2
DEFAULT_BASE_BACKOFF_SECONDS: Final[float] = 1.0
BACKOFF_JITTER_RATIO: Final[float] = 0.1
MAX_BACKOFF_SECONDS: Final[float] = 30.0

# Transport.
DEFAULT_REQUEST_TIMEOUT_SECONDS: Final[float] = 30.0
DEFAULT_USER_AGENT: Final[str] = "driftguard-validator/0.1"

# Sample data generation.
SAMPLE_DEPTH_LIMIT: Final[int] = 10
SAMPLE_OPTIONAL_PROPERTY_LIMIT: Final[int] = 3

# Process lifecycle.
MAX_LIFECYCLE_LISTENERS: Final[int] = 10

# Performance buckets (milliseconds).
FAST_RESPONSE_MS: Final[float] = 200.0
SLOW_RESPONSE_MS: Final[float] = 1000.0

__all__ = [
    "BACKOFF_JITTER_RATIO",
    "CONFIG_SCHEMA_VERSION",
    "DEFAULT_BASE_BACKOFF_SECONDS",
    "DEFAULT_BATCH_DELAY_SECONDS",
    "DEFAULT_CONCURRENCY",
    "DEFAULT_FAILURE_THRESHOLD",
    "DEFAULT_MAX_RETRIES",
    "DEFAULT_REQUESTS_PER_SECOND",
    "DEFAULT_REQUEST_TIMEOUT_SECONDS",
    "DEFAULT_RESET_TIMEOUT_SECONDS",
    "DEFAULT_SUCCESS_THRESHOLD",
    "DEFAULT_USER_AGENT",
    "ENV_PREFIX",
    "FAST_RESPONSE_MS",
    "MAX_BACKOFF_SECONDS",
    "MAX_LIFECYCLE_LISTENERS",
    "SAMPLE_DEPTH_LIMIT",
    "SAMPLE_OPTIONAL_PROPERTY_LIMIT",
    "SLOW_RESPONSE_MS",
]

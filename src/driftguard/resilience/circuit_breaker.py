"""
driftguard - circuit breaker

File: src/driftguard/resilience/circuit_breaker.py

Purpose
- Three-state guard (CLOSED/OPEN/HALF_OPEN) that stops sending work to a target
  experiencing sustained failure.

Behavior
- CLOSED: failures increment a counter; reaching the threshold opens the breaker.
  Any success resets the counter.
- OPEN: calls are rejected with ``CircuitBreakerOpenError`` without running the
  operation. Once ``reset_timeout_seconds`` has passed since the last failure, the
  next call moves the breaker to HALF_OPEN and runs.
- HALF_OPEN: any failure reopens immediately; ``success_threshold`` consecutive
  successes close it.

The transition out of OPEN is evaluated lazily on the next call, never by a timer.
"""

from __future__ import annotations

import time
from collections.abc import Awaitable, Callable
from dataclasses import dataclass
from enum import StrEnum
from typing import Any, TypeAlias, TypeVar

import structlog

from driftguard.constants import (
    DEFAULT_FAILURE_THRESHOLD,
    DEFAULT_RESET_TIMEOUT_SECONDS,
    DEFAULT_SUCCESS_THRESHOLD,
)
from driftguard.domain.errors import CircuitBreakerOpenError

T = TypeVar("T")
ClockFn: TypeAlias = Callable[[], float]


class CircuitState(StrEnum):
    CLOSED = "CLOSED"
    OPEN = "OPEN"
    HALF_OPEN = "HALF_OPEN"


@dataclass(frozen=True, slots=True)
class CircuitBreakerConfig:
    failure_threshold: int = DEFAULT_FAILURE_THRESHOLD
    reset_timeout_seconds: float = DEFAULT_RESET_TIMEOUT_SECONDS
    success_threshold: int = DEFAULT_SUCCESS_THRESHOLD

    def __post_init__(self) -> None:
        if self.failure_threshold < 1:
            raise ValueError("failure_threshold must be >= 1")
        if self.reset_timeout_seconds < 0:
            raise ValueError("reset_timeout_seconds must be >= 0")
        if self.success_threshold < 1:
            raise ValueError("success_threshold must be >= 1")


class CircuitBreaker:
    """Shared breaker; all counters mutate synchronously between awaits."""

    def __init__(
        self,
        config: CircuitBreakerConfig | None = None,
        *,
        clock: ClockFn = time.monotonic,
        logger: Any | None = None,
    ) -> None:
        self._config = config if config is not None else CircuitBreakerConfig()
        self._clock = clock
        self._logger = logger if logger is not None else structlog.get_logger(__name__)
        self._state = CircuitState.CLOSED
        self._failure_count = 0
        self._success_count = 0
        self._last_failure_time: float | None = None

    @property
    def config(self) -> CircuitBreakerConfig:
        return self._config

    @property
    def state(self) -> CircuitState:
        return self._state

    @property
    def failure_count(self) -> int:
        return self._failure_count

    @property
    def success_count(self) -> int:
        return self._success_count

    @property
    def last_failure_time(self) -> float | None:
        return self._last_failure_time

    def reconfigure(self, config: CircuitBreakerConfig) -> None:
        self._config = config

    async def execute(
        self,
        operation: Callable[[], Awaitable[T]],
        *,
        is_failure: Callable[[T], bool] | None = None,
    ) -> T:
        """Run ``operation`` through the breaker.

        ``is_failure`` lets a caller count a returned value as a failure without
        turning it into an exception; the value is still returned.
        """
        if self._state is CircuitState.OPEN:
            if not self._reset_timeout_elapsed():
                raise CircuitBreakerOpenError()
            self._transition(CircuitState.HALF_OPEN)
            self._success_count = 0

        try:
            result = await operation()
        except Exception:
            self._on_failure()
            raise

        if is_failure is not None and is_failure(result):
            self._on_failure()
        else:
            self._on_success()
        return result

    def reset(self) -> None:
        if self._state is not CircuitState.CLOSED:
            self._transition(CircuitState.CLOSED)
        self._failure_count = 0
        self._success_count = 0
        self._last_failure_time = None

    def snapshot(self) -> dict[str, object]:
        return {
            "state": self._state.value,
            "failure_count": self._failure_count,
            "success_count": self._success_count,
            "last_failure_time": self._last_failure_time,
            "failure_threshold": self._config.failure_threshold,
            "reset_timeout_seconds": self._config.reset_timeout_seconds,
            "success_threshold": self._config.success_threshold,
        }

    def _reset_timeout_elapsed(self) -> bool:
        if self._last_failure_time is None:
            return True
        return self._clock() - self._last_failure_time > self._config.reset_timeout_seconds

    def _on_success(self) -> None:
        if self._state is CircuitState.HALF_OPEN:
            self._success_count += 1
            if self._success_count >= self._config.success_threshold:
                self._transition(CircuitState.CLOSED)
                self._failure_count = 0
                self._success_count = 0
            return
        self._failure_count = 0

    def _on_failure(self) -> None:
        self._last_failure_time = self._clock()
        if self._state is CircuitState.HALF_OPEN:
            self._transition(CircuitState.OPEN)
            self._failure_count = 0
            self._success_count = 0
            return

        self._failure_count += 1
        if (
            self._state is CircuitState.CLOSED
            and self._failure_count >= self._config.failure_threshold
        ):
            self._transition(CircuitState.OPEN)

    def _transition(self, target: CircuitState) -> None:
        previous = self._state
        self._state = target
        self._logger.info(
            "circuit_breaker_state_changed",
            previous_state=previous.value,
            state=target.value,
            failure_count=self._failure_count,
            success_count=self._success_count,
        )


__all__ = ["CircuitBreaker", "CircuitBreakerConfig", "CircuitState"]

"""Utility exports for async coordination helpers."""

from driftguard.utils.concurrency import (
    CancellationToken,
    close_unscheduled_coroutine,
    maybe_await,
    run_with_timeout,
)

__all__ = ["CancellationToken", "close_unscheduled_coroutine", "maybe_await", "run_with_timeout"]

"""
driftguard - process lifecycle hooks

File: src/driftguard/execution/lifecycle.py

Purpose
- Give an in-flight validation run a chance to release its resources when the
  process is interrupted or crashes.

Behavior
- Nothing is installed at construction time. ``start()`` installs termination
  signal handlers (SIGINT, SIGTERM, SIGHUP where available), an event-loop exception
  handler and a ``sys.excepthook``; ``stop()`` restores what was there before.
- A signal runs ``manager.cleanup(force=True)`` and then exits with 0, or 1 when
  cleanup itself raised.
- An uncaught exception runs ``manager.force_cleanup()`` and then defers to the
  previously installed hook.
- Installation is skipped while pytest is running a test unless ``force=True``,
  and at most ``MAX_LIFECYCLE_LISTENERS`` lifecycles may be installed at once.
"""

from __future__ import annotations

import asyncio
import os
import signal
import sys
from collections.abc import Callable, Mapping
from types import TracebackType
from typing import Any, Final

import structlog

from driftguard.constants import MAX_LIFECYCLE_LISTENERS
from driftguard.execution.resource_manager import ResourceManager

ExitFn = Callable[[int], object]
ExceptHook = Callable[[type[BaseException], BaseException, TracebackType | None], Any]

_SIGNAL_NAMES: Final[tuple[str, ...]] = ("SIGINT", "SIGTERM", "SIGHUP")
_installed_count = 0


def installed_lifecycle_count() -> int:
    return _installed_count


def _under_pytest(environ: Mapping[str, str]) -> bool:
    return "PYTEST_CURRENT_TEST" in environ


class ProcessLifecycle:
    def __init__(
        self,
        manager: ResourceManager,
        *,
        exit_fn: ExitFn = sys.exit,
        force: bool = False,
        environ: Mapping[str, str] | None = None,
        logger: Any | None = None,
    ) -> None:
        self._manager = manager
        self._exit_fn = exit_fn
        self._force = force
        self._environ = environ if environ is not None else os.environ
        self._logger = logger if logger is not None else structlog.get_logger(__name__)
        self._loop: asyncio.AbstractEventLoop | None = None
        self._signals: list[signal.Signals] = []
        self._previous_loop_handler: Any = None
        self._previous_excepthook: ExceptHook | None = None
        self._shutdown_task: asyncio.Task[None] | None = None
        self._installed = False

    @property
    def installed(self) -> bool:
        return self._installed

    @property
    def signals(self) -> tuple[signal.Signals, ...]:
        return tuple(self._signals)

    def start(self) -> bool:
        """Install the hooks on the running loop; returns whether anything was installed."""
        global _installed_count

        if self._installed:
            return True
        if not self._force and _under_pytest(self._environ):
            self._logger.debug("lifecycle_hooks_skipped", reason="test_context")
            return False
        if _installed_count >= MAX_LIFECYCLE_LISTENERS:
            self._logger.warning(
                "lifecycle_hooks_skipped", reason="listener_cap", cap=MAX_LIFECYCLE_LISTENERS
            )
            return False

        loop = asyncio.get_running_loop()
        self._loop = loop
        for signal_name in _SIGNAL_NAMES:
            signum = getattr(signal, signal_name, None)
            if signum is None:
                continue
            try:
                loop.add_signal_handler(signum, self._on_signal, signum)
            except (NotImplementedError, RuntimeError, ValueError):
                self._logger.debug("signal_handler_unavailable", signal=signal_name)
                continue
            self._signals.append(signum)

        self._previous_loop_handler = loop.get_exception_handler()
        loop.set_exception_handler(self._on_loop_exception)
        self._previous_excepthook = sys.excepthook
        sys.excepthook = self._excepthook

        self._installed = True
        _installed_count += 1
        self._logger.debug(
            "lifecycle_hooks_installed", signals=[sig.name for sig in self._signals]
        )
        return True

    def stop(self) -> None:
        global _installed_count

        if not self._installed:
            return
        loop = self._loop
        if loop is not None and not loop.is_closed():
            for signum in self._signals:
                loop.remove_signal_handler(signum)
            if loop.get_exception_handler() == self._on_loop_exception:
                loop.set_exception_handler(self._previous_loop_handler)
        if sys.excepthook == self._excepthook and self._previous_excepthook is not None:
            sys.excepthook = self._previous_excepthook

        self._signals.clear()
        self._loop = None
        self._previous_loop_handler = None
        self._previous_excepthook = None
        self._installed = False
        _installed_count = max(0, _installed_count - 1)
        self._logger.debug("lifecycle_hooks_removed")

    async def __aenter__(self) -> ProcessLifecycle:
        self.start()
        return self

    async def __aexit__(self, *exc_info: object) -> None:
        self.stop()

    def _on_signal(self, signum: signal.Signals) -> None:
        self._logger.info("termination_signal_received", signal=signum.name)
        if self._shutdown_task is not None and not self._shutdown_task.done():
            return
        loop = self._loop if self._loop is not None else asyncio.get_running_loop()
        self._shutdown_task = loop.create_task(self._shutdown(signum))

    async def _shutdown(self, signum: signal.Signals) -> None:
        try:
            report = await self._manager.cleanup(force=True)
        except Exception:  # noqa: BLE001
            self._logger.error("graceful_shutdown_failed", signal=signum.name, exc_info=True)
            self._exit_fn(1)
            return
        self._logger.info(
            "graceful_shutdown_completed",
            signal=signum.name,
            succeeded=report.succeeded,
            failed=report.failed,
        )
        self._exit_fn(0)

    def _on_loop_exception(
        self, loop: asyncio.AbstractEventLoop, context: dict[str, Any]
    ) -> None:
        error = context.get("exception")
        self._logger.error(
            "unhandled_async_exception",
            detail=context.get("message"),
            error=str(error) if error is not None else None,
        )
        if self._previous_loop_handler is not None:
            self._previous_loop_handler(loop, context)
        else:
            loop.default_exception_handler(context)

    def _excepthook(
        self,
        exc_type: type[BaseException],
        exc: BaseException,
        traceback: TracebackType | None,
    ) -> None:
        self._logger.error("uncaught_exception", error_type=exc_type.__name__, error=str(exc))
        try:
            self._manager.force_cleanup()
        except Exception:  # noqa: BLE001
            self._logger.error("emergency_cleanup_failed", exc_info=True)
        previous = self._previous_excepthook or sys.__excepthook__
        previous(exc_type, exc, traceback)


__all__ = ["ProcessLifecycle", "installed_lifecycle_count"]

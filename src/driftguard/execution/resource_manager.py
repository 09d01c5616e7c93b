"""
driftguard - resource manager

File: src/driftguard/execution/resource_manager.py

Purpose
- Track every resource and timer allocated during a validation run and run each
  resource's cleanup exactly once.

Behavior
- Cleanup callables take no arguments and may be sync or async.
- ``cleanup()`` drains the registry before running any cleanup, so a resource can
  never be cleaned twice. Concurrent callers await the same in-flight task.
  ``cleanup(force=True)`` starts a new pass over whatever is still registered.
- Individual cleanup failures are logged and counted, never raised.
- Scopes register through their parent and can be disposed independently; only the
  scope's own resources leave the parent.
"""

from __future__ import annotations

import asyncio
import inspect
from collections import Counter
from collections.abc import Awaitable, Callable
from dataclasses import dataclass
from typing import Any, TypeAlias

import structlog

from driftguard.domain.errors import ScopeDisposedError
from driftguard.utils.concurrency import close_unscheduled_coroutine, maybe_await

CleanupFn: TypeAlias = Callable[[], object]
TimerCallback: TypeAlias = Callable[[], object]


@dataclass(frozen=True, slots=True)
class _Entry:
    resource: object
    cleanup: CleanupFn | None
    type_tag: str


@dataclass(frozen=True, slots=True)
class CleanupReport:
    succeeded: int = 0
    failed: int = 0
    timers_cleared: int = 0

    @property
    def ok(self) -> bool:
        return self.failed == 0


class ManagedTimer:
    """Handle for a one-shot timer or a repeating interval owned by a manager."""

    def __init__(self, description: str, *, repeating: bool) -> None:
        self.description = description
        self.repeating = repeating
        self._handle: asyncio.TimerHandle | None = None
        self._task: asyncio.Task[None] | None = None
        self._cancelled = False

    @property
    def cancelled(self) -> bool:
        return self._cancelled

    def cancel(self) -> None:
        self._cancelled = True
        if self._handle is not None:
            self._handle.cancel()
        if self._task is not None:
            self._task.cancel()


class ResourceManager:
    def __init__(self, *, logger: Any | None = None) -> None:
        self._logger = logger if logger is not None else structlog.get_logger(__name__)
        self._entries: dict[int, _Entry] = {}
        self._timers: dict[int, ManagedTimer] = {}
        self._active_cleanups = 0
        self._cleanup_task: asyncio.Task[CleanupReport] | None = None
        self._detached: set[asyncio.Future[Any]] = set()

    @property
    def is_cleaning_up(self) -> bool:
        return self._active_cleanups > 0

    @property
    def resource_count(self) -> int:
        return len(self._entries)

    @property
    def timer_count(self) -> int:
        return len(self._timers)

    def register(
        self,
        resource: object,
        cleanup: CleanupFn | None = None,
        type_tag: str = "unknown",
    ) -> bool:
        """Track ``resource``; returns ``False`` when ignored during cleanup."""
        if self.is_cleaning_up:
            self._logger.warning("resource_register_during_cleanup", type_tag=type_tag)
            return False
        self._entries[id(resource)] = _Entry(resource=resource, cleanup=cleanup, type_tag=type_tag)
        return True

    def unregister(self, resource: object) -> None:
        self._entries.pop(id(resource), None)

    def is_registered(self, resource: object) -> bool:
        return id(resource) in self._entries

    def create_timer(
        self,
        callback: TimerCallback,
        delay_seconds: float,
        description: str = "timer",
    ) -> ManagedTimer:
        if delay_seconds < 0:
            raise ValueError("delay_seconds must be >= 0")
        timer = ManagedTimer(description, repeating=False)

        def _fire() -> None:
            self._timers.pop(id(timer), None)
            self._invoke_timer_callback(timer, callback)

        timer._handle = asyncio.get_running_loop().call_later(delay_seconds, _fire)
        self._timers[id(timer)] = timer
        return timer

    def create_interval(
        self,
        callback: TimerCallback,
        interval_seconds: float,
        description: str = "interval",
    ) -> ManagedTimer:
        if interval_seconds <= 0:
            raise ValueError("interval_seconds must be > 0")
        timer = ManagedTimer(description, repeating=True)

        async def _loop() -> None:
            while True:
                await asyncio.sleep(interval_seconds)
                try:
                    await maybe_await(callback())
                except Exception:  # noqa: BLE001
                    self._logger.warning(
                        "interval_callback_failed", description=description, exc_info=True
                    )

        timer._task = asyncio.get_running_loop().create_task(_loop())
        self._timers[id(timer)] = timer
        return timer

    def clear_timer(self, timer: ManagedTimer) -> None:
        timer.cancel()
        self._timers.pop(id(timer), None)

    def status(self) -> dict[str, object]:
        return {
            "resource_count": len(self._entries),
            "timer_count": len(self._timers),
            "is_cleaning_up": self.is_cleaning_up,
            "types": dict(Counter(entry.type_tag for entry in self._entries.values())),
        }

    async def cleanup(self, force: bool = False) -> CleanupReport:
        in_flight = self._cleanup_task
        if in_flight is not None and not in_flight.done() and not force:
            return await asyncio.shield(in_flight)

        task = asyncio.ensure_future(self._perform_cleanup())
        self._cleanup_task = task
        try:
            return await asyncio.shield(task)
        finally:
            if self._cleanup_task is task and task.done():
                self._cleanup_task = None

    def force_cleanup(self) -> CleanupReport:
        """Synchronous best-effort cleanup; async cleanups are scheduled, not awaited."""
        self._logger.warning("force_cleanup_started", resource_count=len(self._entries))
        timers_cleared = self._clear_all_timers()
        entries = self._drain()
        succeeded = failed = 0
        for entry in entries:
            if entry.cleanup is None:
                succeeded += 1
                continue
            try:
                outcome = entry.cleanup()
            except Exception:  # noqa: BLE001
                failed += 1
                self._logger.warning(
                    "resource_cleanup_failed", type_tag=entry.type_tag, exc_info=True
                )
                continue
            if inspect.isawaitable(outcome):
                self._detach(outcome, entry.type_tag)
            succeeded += 1
        report = CleanupReport(succeeded=succeeded, failed=failed, timers_cleared=timers_cleared)
        self._logger.warning("force_cleanup_completed", succeeded=succeeded, failed=failed)
        return report

    def create_scope(self) -> ScopedResourceManager:
        return ScopedResourceManager(self, logger=self._logger)

    async def __aenter__(self) -> ResourceManager:
        return self

    async def __aexit__(self, *exc_info: object) -> None:
        await self.cleanup()

    async def _perform_cleanup(self) -> CleanupReport:
        self._active_cleanups += 1
        try:
            self._logger.info("resource_cleanup_started", resource_count=len(self._entries))
            timers_cleared = self._clear_all_timers()
            report = await self._run_entries(self._drain())
            report = CleanupReport(
                succeeded=report.succeeded, failed=report.failed, timers_cleared=timers_cleared
            )
            self._logger.info(
                "resource_cleanup_completed",
                succeeded=report.succeeded,
                failed=report.failed,
                timers_cleared=timers_cleared,
            )
            return report
        finally:
            self._active_cleanups -= 1

    async def _run_entries(self, entries: list[_Entry]) -> CleanupReport:
        outcomes = await asyncio.gather(
            *(self._safe_cleanup(entry) for entry in entries), return_exceptions=True
        )
        failed = 0
        for entry, outcome in zip(entries, outcomes, strict=True):
            if isinstance(outcome, Exception):
                failed += 1
                self._logger.warning(
                    "resource_cleanup_failed",
                    type_tag=entry.type_tag,
                    error=str(outcome) or type(outcome).__name__,
                )
            elif isinstance(outcome, BaseException):
                raise outcome
        return CleanupReport(succeeded=len(entries) - failed, failed=failed)

    async def _safe_cleanup(self, entry: _Entry) -> None:
        if entry.cleanup is None:
            return
        await maybe_await(entry.cleanup())
        self._logger.debug("resource_cleaned", type_tag=entry.type_tag)

    def _take(self, resources: list[object]) -> list[_Entry]:
        taken: list[_Entry] = []
        for resource in resources:
            entry = self._entries.pop(id(resource), None)
            if entry is not None:
                taken.append(entry)
        return taken

    def _drain(self) -> list[_Entry]:
        entries = list(self._entries.values())
        self._entries.clear()
        return entries

    def _clear_all_timers(self) -> int:
        timers = list(self._timers.values())
        self._timers.clear()
        for timer in timers:
            timer.cancel()
            self._logger.debug("timer_cleared", description=timer.description)
        return len(timers)

    def _invoke_timer_callback(self, timer: ManagedTimer, callback: TimerCallback) -> None:
        try:
            outcome = callback()
        except Exception:  # noqa: BLE001
            self._logger.warning(
                "timer_callback_failed", description=timer.description, exc_info=True
            )
            return
        if inspect.isawaitable(outcome):
            self._detach(outcome, timer.description)

    def _detach(self, awaitable: Awaitable[Any], label: str) -> None:
        try:
            loop = asyncio.get_running_loop()
        except RuntimeError:
            close_unscheduled_coroutine(awaitable)
            self._logger.warning("async_cleanup_skipped_no_loop", label=label)
            return
        future = asyncio.ensure_future(awaitable, loop=loop)
        self._detached.add(future)
        future.add_done_callback(self._detached.discard)


class ScopedResourceManager:
    """Child registry whose members also live in the parent until disposed."""

    def __init__(self, parent: ResourceManager, *, logger: Any | None = None) -> None:
        self._parent = parent
        self._logger = logger if logger is not None else structlog.get_logger(__name__)
        self._resources: dict[int, object] = {}
        self._disposed = False
        self._dispose_task: asyncio.Future[CleanupReport] | None = None

    @property
    def parent(self) -> ResourceManager:
        return self._parent

    @property
    def disposed(self) -> bool:
        return self._disposed

    @property
    def resource_count(self) -> int:
        return len(self._resources)

    def register(
        self,
        resource: object,
        cleanup: CleanupFn | None = None,
        type_tag: str = "scoped",
    ) -> bool:
        if self._disposed:
            raise ScopeDisposedError()
        if not self._parent.register(resource, cleanup, type_tag):
            return False
        self._resources[id(resource)] = resource
        return True

    async def dispose(self) -> CleanupReport:
        in_flight = self._dispose_task
        if in_flight is not None:
            if in_flight.done():
                return CleanupReport()
            return await asyncio.shield(in_flight)
        self._disposed = True
        task = asyncio.ensure_future(self._dispose_entries())
        self._dispose_task = task
        return await asyncio.shield(task)

    async def _dispose_entries(self) -> CleanupReport:
        entries = self._parent._take(list(self._resources.values()))
        self._resources.clear()
        report = await self._parent._run_entries(entries)
        self._logger.debug("scope_disposed", succeeded=report.succeeded, failed=report.failed)
        return report

    async def __aenter__(self) -> ScopedResourceManager:
        return self

    async def __aexit__(self, *exc_info: object) -> None:
        await self.dispose()


__all__ = [
    "CleanupFn",
    "CleanupReport",
    "ManagedTimer",
    "ResourceManager",
    "ScopedResourceManager",
]

"""
driftguard - validation system assembly

File: src/driftguard/execution/system.py

Purpose
- Build a ready-to-run engine from ``EngineSettings`` and drive one complete
  validation run of a contract.

Behavior
- ``ValidationSystem`` wires transport -> endpoint validator -> retry handler ->
  batch processor -> results aggregator by plain construction.
- ``run_validation`` resolves config, opens a resource scope for the system,
  optionally installs process lifecycle hooks, and reports a ``RunOutcome`` whose
  exit code is 1 when any endpoint failed.
- Setup failures (bad config, missing auth env, uninitialized validator) never
  raise out of ``run_validation``; they are mapped through ``exit_code_for_error``.
"""

from __future__ import annotations

import uuid
from collections.abc import Mapping, Sequence
from dataclasses import dataclass, field
from typing import IO, Any

import structlog

from driftguard.config.loader import ConfigLoadError, load_config
from driftguard.config.schema import ConfigValidationError
from driftguard.config.settings import EngineSettings
from driftguard.domain.errors import (
    EngineError,
    ExitCode,
    NotInitializedError,
    exit_code_for_error,
)
from driftguard.domain.models import Contract, ValidationOptions, ValidationResult
from driftguard.execution.aggregator import ResultsAggregator, Statistics, compute_statistics
from driftguard.execution.batch_processor import BatchProcessor, ProgressCallback
from driftguard.execution.lifecycle import ProcessLifecycle
from driftguard.execution.resource_manager import ResourceManager
from driftguard.observability.logging import (
    configure_logging,
    correlation_scope,
    shutdown_logging,
)
from driftguard.transport.http import HttpxTransport, Transport
from driftguard.validation.endpoint_validator import EndpointValidator

_SETUP_ERRORS = (ConfigLoadError, ConfigValidationError, EngineError)


@dataclass(frozen=True, slots=True)
class RunOutcome:
    results: tuple[ValidationResult, ...] = ()
    statistics: Statistics = field(default_factory=lambda: compute_statistics(()))
    exit_code: ExitCode = ExitCode.SUCCESS
    error: str | None = None

    @property
    def ok(self) -> bool:
        return self.exit_code is ExitCode.SUCCESS

    def to_dict(self) -> dict[str, object]:
        return {
            "exit_code": int(self.exit_code),
            "error": self.error,
            "statistics": self.statistics.to_dict(),
            "results": [result.to_dict() for result in self.results],
        }


class ValidationSystem:
    """One engine instance: a transport, a validator and the run machinery around it."""

    def __init__(
        self,
        settings: EngineSettings,
        *,
        transport: Transport | None = None,
        progress_callback: ProgressCallback | None = None,
        logger: Any | None = None,
    ) -> None:
        self._settings = settings
        self._logger = logger if logger is not None else structlog.get_logger(__name__)
        self._owned_transport: HttpxTransport | None = None
        if transport is None:
            self._owned_transport = HttpxTransport(
                settings.base_url,
                default_headers=settings.headers,
                timeout_seconds=settings.timeout_seconds,
            )
            transport = self._owned_transport
        self._transport = transport
        self._validator = EndpointValidator(transport)
        self._processor = BatchProcessor(
            self._validator,
            settings.batch,
            retry_handler=settings.build_retry_handler(),
            progress_callback=progress_callback,
        )
        self._aggregator = ResultsAggregator()
        self._closed = False

    @property
    def settings(self) -> EngineSettings:
        return self._settings

    @property
    def transport(self) -> Transport:
        return self._transport

    @property
    def validator(self) -> EndpointValidator:
        return self._validator

    @property
    def processor(self) -> BatchProcessor:
        return self._processor

    @property
    def aggregator(self) -> ResultsAggregator:
        return self._aggregator

    @property
    def closed(self) -> bool:
        return self._closed

    def initialize(self, contract: Contract) -> None:
        self._validator.initialize(contract)

    async def validate_all_endpoints(
        self, options: ValidationOptions | None = None
    ) -> list[ValidationResult]:
        if not self._validator.is_initialized:
            raise NotInitializedError()
        self._aggregator.start_tracking()
        try:
            results = await self._processor.process_endpoints(self._validator.endpoints, options)
            self._aggregator.add_results(results)
        finally:
            self._aggregator.stop_tracking()
        return results

    async def aclose(self) -> None:
        if self._closed:
            return
        self._closed = True
        if self._owned_transport is not None:
            await self._owned_transport.aclose()
        self._logger.debug("validation_system_closed")


def resolve_settings(
    config: EngineSettings | Mapping[str, object] | None,
    *,
    environ: Mapping[str, str] | None = None,
) -> EngineSettings:
    if isinstance(config, EngineSettings):
        return config
    loaded = load_config(config, environ=environ)
    return EngineSettings.from_config(loaded, environ=environ)


async def run_validation(
    contract: Contract,
    config: EngineSettings | Mapping[str, object] | None = None,
    *,
    options: ValidationOptions | None = None,
    transport: Transport | None = None,
    progress_callback: ProgressCallback | None = None,
    environ: Mapping[str, str] | None = None,
    install_lifecycle: bool | None = None,
    manager: ResourceManager | None = None,
    run_id: str | None = None,
    configure_logs: bool = False,
    log_stream: IO[str] | None = None,
    logger: Any | None = None,
) -> RunOutcome:
    """Validate every endpoint of ``contract`` and summarize the run.

    Every log event emitted during the run carries ``run_id``; a random one is
    generated when none is given. With ``configure_logs`` the ``[logging]``
    settings are applied to a sink on ``log_stream`` (stderr by default) for
    the duration of the run.
    """

    log = logger if logger is not None else structlog.get_logger(__name__)
    with correlation_scope(run_id=run_id or uuid.uuid4().hex):
        try:
            settings = resolve_settings(config, environ=environ)
        except _SETUP_ERRORS as exc:
            return _setup_failure(log, exc)

        handle = (
            configure_logging(settings.logging_config(), stream=log_stream)
            if configure_logs
            else None
        )
        try:
            return await _run_with_settings(
                contract,
                settings,
                options=options,
                transport=transport,
                progress_callback=progress_callback,
                environ=environ,
                install_lifecycle=install_lifecycle,
                manager=manager,
                log=log,
            )
        finally:
            if handle is not None:
                shutdown_logging(handle)


async def _run_with_settings(
    contract: Contract,
    settings: EngineSettings,
    *,
    options: ValidationOptions | None,
    transport: Transport | None,
    progress_callback: ProgressCallback | None,
    environ: Mapping[str, str] | None,
    install_lifecycle: bool | None,
    manager: ResourceManager | None,
    log: Any,
) -> RunOutcome:
    try:
        system = ValidationSystem(
            settings, transport=transport, progress_callback=progress_callback
        )
    except _SETUP_ERRORS as exc:
        return _setup_failure(log, exc)

    resources = manager if manager is not None else ResourceManager()
    wants_lifecycle = (
        settings.install_signal_handlers if install_lifecycle is None else install_lifecycle
    )
    lifecycle = ProcessLifecycle(resources, environ=environ) if wants_lifecycle else None
    if lifecycle is not None:
        lifecycle.start()

    try:
        async with resources.create_scope() as scope:
            scope.register(system, system.aclose, "validation_system")
            try:
                system.initialize(contract)
                results = await system.validate_all_endpoints(options)
            except _SETUP_ERRORS as exc:
                return _setup_failure(log, exc)
    finally:
        if lifecycle is not None:
            lifecycle.stop()

    statistics = system.aggregator.statistics()
    exit_code = exit_code_for_results(results)
    log.info(
        "validation_run_completed",
        total=statistics.total,
        passed=statistics.passed,
        failed=statistics.failed,
        exit_code=int(exit_code),
    )
    return RunOutcome(results=tuple(results), statistics=statistics, exit_code=exit_code)


def exit_code_for_results(results: Sequence[ValidationResult]) -> ExitCode:
    if any(not result.success for result in results):
        return ExitCode.VALIDATION_FAILED
    return ExitCode.SUCCESS


def _setup_failure(log: Any, exc: BaseException) -> RunOutcome:
    exit_code = exit_code_for_error(exc)
    detail = exc.describe() if isinstance(exc, EngineError) else str(exc)
    log.error("validation_setup_failed", error=detail, exit_code=int(exit_code))
    return RunOutcome(exit_code=exit_code, error=detail)


__all__ = [
    "RunOutcome",
    "ValidationSystem",
    "exit_code_for_results",
    "resolve_settings",
    "run_validation",
]

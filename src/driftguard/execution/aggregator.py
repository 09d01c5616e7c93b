"""Results aggregation with change-driven statistics caching."""

from __future__ import annotations

import csv
import io
import json
import time
from collections import Counter
from collections.abc import Callable, Iterable
from dataclasses import dataclass
from typing import Any

import structlog

from driftguard.constants import FAST_RESPONSE_MS, SLOW_RESPONSE_MS
from driftguard.domain.models import TRANSPORT_FAILURE_TYPES, ValidationResult

_CSV_COLUMNS = (
    "endpoint",
    "method",
    "success",
    "status_code",
    "issue_count",
    "response_time_ms",
    "timestamp",
)


@dataclass(frozen=True, slots=True)
class Statistics:
    """Snapshot of aggregate run statistics; recomputed only after changes."""

    total: int
    passed: int
    failed: int
    errors: int
    total_issues: int
    issues_by_type: dict[str, int]
    issues_by_severity: dict[str, int]
    success_rate: int
    avg_response_time_ms: float
    min_response_time_ms: float
    max_response_time_ms: float
    total_response_time_ms: float
    endpoints_by_method: dict[str, int]
    status_code_distribution: dict[str, int]
    duration_seconds: float
    throughput_per_second: float

    def to_dict(self) -> dict[str, object]:
        return {
            "total": self.total,
            "passed": self.passed,
            "failed": self.failed,
            "errors": self.errors,
            "total_issues": self.total_issues,
            "issues_by_type": dict(self.issues_by_type),
            "issues_by_severity": dict(self.issues_by_severity),
            "success_rate": self.success_rate,
            "avg_response_time_ms": self.avg_response_time_ms,
            "min_response_time_ms": self.min_response_time_ms,
            "max_response_time_ms": self.max_response_time_ms,
            "total_response_time_ms": self.total_response_time_ms,
            "endpoints_by_method": dict(self.endpoints_by_method),
            "status_code_distribution": dict(self.status_code_distribution),
            "duration_seconds": self.duration_seconds,
            "throughput_per_second": self.throughput_per_second,
        }


def compute_statistics(
    results: Iterable[ValidationResult], *, duration_seconds: float = 0.0
) -> Statistics:
    passed = failed = errors = total_issues = 0
    issues_by_type: Counter[str] = Counter()
    issues_by_severity: Counter[str] = Counter()
    by_method: Counter[str] = Counter()
    by_status: Counter[str] = Counter()
    response_times: list[float] = []

    total = 0
    for result in results:
        total += 1
        if result.success:
            passed += 1
        else:
            failed += 1
        total_issues += len(result.issues)
        for issue in result.issues:
            issues_by_type[issue.type.value] += 1
            issues_by_severity[issue.severity.value] += 1
            if issue.type in TRANSPORT_FAILURE_TYPES:
                errors += 1
        by_method[result.method] += 1
        by_status["error" if result.status_code is None else str(result.status_code)] += 1
        if result.metadata.response_time_ms:
            response_times.append(result.metadata.response_time_ms)

    total_time = sum(response_times)
    throughput = round(total / duration_seconds, 3) if duration_seconds > 0 else 0.0
    return Statistics(
        total=total,
        passed=passed,
        failed=failed,
        errors=errors,
        total_issues=total_issues,
        issues_by_type=dict(issues_by_type),
        issues_by_severity=dict(issues_by_severity),
        success_rate=round(passed / total * 100) if total else 0,
        avg_response_time_ms=round(total_time / len(response_times), 3) if response_times else 0.0,
        min_response_time_ms=min(response_times, default=0.0),
        max_response_time_ms=max(response_times, default=0.0),
        total_response_time_ms=round(total_time, 3),
        endpoints_by_method=dict(by_method),
        status_code_distribution=dict(by_status),
        duration_seconds=round(duration_seconds, 6),
        throughput_per_second=throughput,
    )


class ResultsAggregator:
    def __init__(
        self,
        *,
        clock: Callable[[], float] = time.monotonic,
        logger: Any | None = None,
    ) -> None:
        self._clock = clock
        self._logger = logger if logger is not None else structlog.get_logger(__name__)
        self._results: list[ValidationResult] = []
        self._started_at: float | None = None
        self._stopped_at: float | None = None
        self._cached: Statistics | None = None

    @property
    def results(self) -> tuple[ValidationResult, ...]:
        return tuple(self._results)

    def __len__(self) -> int:
        return len(self._results)

    def start_tracking(self) -> None:
        self._started_at = self._clock()
        self._stopped_at = None
        self._results.clear()
        self._cached = None

    def stop_tracking(self) -> None:
        self._stopped_at = self._clock()
        self._cached = None
        self._logger.debug(
            "result_tracking_stopped",
            result_count=len(self._results),
            duration_seconds=round(self.duration_seconds(), 3),
        )

    def duration_seconds(self) -> float:
        if self._started_at is None:
            return 0.0
        end = self._stopped_at if self._stopped_at is not None else self._clock()
        return max(0.0, end - self._started_at)

    def add_result(self, result: ValidationResult) -> None:
        self._results.append(result)
        self._cached = None

    def add_results(self, results: Iterable[ValidationResult]) -> None:
        self._results.extend(results)
        self._cached = None

    def clear(self) -> None:
        self._results.clear()
        self._started_at = None
        self._stopped_at = None
        self._cached = None

    def statistics(self) -> Statistics:
        # Statistics of a run still being tracked are never cached.
        if self._cached is not None:
            return self._cached
        stats = compute_statistics(self._results, duration_seconds=self.duration_seconds())
        if self._started_at is None or self._stopped_at is not None:
            self._cached = stats
        return stats

    def failed_results(self) -> list[ValidationResult]:
        return [result for result in self._results if not result.success]

    def successful_results(self) -> list[ValidationResult]:
        return [result for result in self._results if result.success]

    def results_by_method(self, method: str) -> list[ValidationResult]:
        wanted = method.upper()
        return [result for result in self._results if result.method == wanted]

    def results_by_status_code(self, status_code: int | str) -> list[ValidationResult]:
        wanted = int(status_code)
        return [result for result in self._results if result.status_code == wanted]

    def most_common_issues(self, limit: int = 10) -> list[dict[str, object]]:
        counts = Counter(self.statistics().issues_by_type)
        return [
            {"type": issue_type, "count": count} for issue_type, count in counts.most_common(limit)
        ]

    def performance_insights(self) -> dict[str, object]:
        fastest: ValidationResult | None = None
        slowest: ValidationResult | None = None
        distribution = {"fast": 0, "medium": 0, "slow": 0}
        for result in self._results:
            elapsed = result.metadata.response_time_ms
            if not elapsed:
                continue
            if fastest is None or elapsed < (fastest.metadata.response_time_ms or 0.0):
                fastest = result
            if slowest is None or elapsed > (slowest.metadata.response_time_ms or 0.0):
                slowest = result
            if elapsed < FAST_RESPONSE_MS:
                distribution["fast"] += 1
            elif elapsed <= SLOW_RESPONSE_MS:
                distribution["medium"] += 1
            else:
                distribution["slow"] += 1
        return {
            "average_response_time_ms": self.statistics().avg_response_time_ms,
            "fastest_endpoint": _timing_entry(fastest),
            "slowest_endpoint": _timing_entry(slowest),
            "distribution": distribution,
        }

    def summary(self) -> dict[str, object]:
        stats = self.statistics()
        performance = self.performance_insights()
        return {
            "overview": {
                "total": stats.total,
                "passed": stats.passed,
                "failed": stats.failed,
                "success_rate": stats.success_rate,
                "duration_seconds": stats.duration_seconds,
                "throughput_per_second": stats.throughput_per_second,
            },
            "performance": performance,
            "issues": {
                "total": stats.total_issues,
                "top_issues": self.most_common_issues(5),
                "by_severity": dict(stats.issues_by_severity),
                "error_rate": round(stats.errors / stats.total * 100) if stats.total else 0,
            },
            "distribution": {
                "by_method": dict(stats.endpoints_by_method),
                "by_status_code": dict(stats.status_code_distribution),
            },
        }

    def export(self, fmt: str = "json") -> str:
        normalized = fmt.lower()
        if normalized == "json":
            return json.dumps(
                {
                    "results": [result.to_dict() for result in self._results],
                    "statistics": self.statistics().to_dict(),
                    "summary": self.summary(),
                },
                indent=2,
                default=str,
            )
        if normalized == "csv":
            return self._export_csv()
        if normalized == "summary":
            return self._export_summary()
        raise ValueError(f"Unsupported export format: {fmt}")

    def _export_csv(self) -> str:
        buffer = io.StringIO()
        writer = csv.writer(buffer, lineterminator="\n")
        writer.writerow(_CSV_COLUMNS)
        for result in self._results:
            writer.writerow(
                (
                    result.endpoint,
                    result.method,
                    "true" if result.success else "false",
                    _blank_if_none(result.status_code),
                    len(result.issues),
                    _blank_if_none(result.metadata.response_time_ms),
                    result.timestamp,
                )
            )
        return buffer.getvalue()

    def _export_summary(self) -> str:
        stats = self.statistics()
        lines = [
            "Validation summary",
            f"Total endpoints: {stats.total}",
            f"Passed: {stats.passed}",
            f"Failed: {stats.failed}",
            f"Success rate: {stats.success_rate}%",
            f"Average response time: {stats.avg_response_time_ms}ms",
            f"Duration: {stats.duration_seconds}s",
        ]
        top = self.most_common_issues(5)
        if top:
            lines.append("Top issues:")
            lines.extend(f"  {entry['type']}: {entry['count']}" for entry in top)
        return "\n".join(lines)


def _blank_if_none(value: object | None) -> object:
    return "" if value is None else value


def _timing_entry(result: ValidationResult | None) -> dict[str, object] | None:
    if result is None:
        return None
    return {
        "endpoint": result.endpoint,
        "method": result.method,
        "response_time_ms": result.metadata.response_time_ms,
    }


__all__ = ["ResultsAggregator", "Statistics", "compute_statistics"]

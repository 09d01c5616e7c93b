"""Unit tests for result aggregation, statistics caching and export formats."""

from __future__ import annotations

import csv
import io
import json
from typing import Any

import pytest

from driftguard.domain.models import Issue, IssueType, ResultMetadata, ValidationResult
from driftguard.execution.aggregator import ResultsAggregator, compute_statistics


def _result(
    endpoint: str,
    *,
    method: str = "GET",
    status: int | None = 200,
    elapsed: float | None = 100.0,
    issues: tuple[Issue, ...] = (),
) -> ValidationResult:
    return ValidationResult(
        endpoint=endpoint,
        method=method,
        success=not issues,
        status_code=status,
        issues=issues,
        metadata=ResultMetadata(response_time_ms=elapsed),
    )


def _sample_results() -> list[ValidationResult]:
    return [
        _result("/fast", elapsed=50.0),
        _result("/medium", method="POST", elapsed=500.0),
        _result(
            "/broken",
            status=200,
            elapsed=1500.0,
            issues=(
                Issue(type=IssueType.TYPE_MISMATCH, message="t", field="id"),
                Issue(type=IssueType.UNEXPECTED_FIELD, message="u", field="x"),
            ),
        ),
        _result(
            "/down",
            status=None,
            elapsed=None,
            issues=(Issue(type=IssueType.NETWORK_ERROR, message="Network error: refused"),),
        ),
    ]


def test_statistics_of_empty_run() -> None:
    stats = compute_statistics([])

    assert stats.total == 0
    assert stats.success_rate == 0
    assert stats.avg_response_time_ms == 0.0
    assert stats.throughput_per_second == 0.0


def test_statistics_counts_and_distributions() -> None:
    stats = compute_statistics(_sample_results(), duration_seconds=2.0)

    assert (stats.total, stats.passed, stats.failed, stats.errors) == (4, 2, 2, 1)
    assert stats.total_issues == 3
    assert stats.success_rate == 50
    assert stats.issues_by_type == {
        "type_mismatch": 1,
        "unexpected_field": 1,
        "network_error": 1,
    }
    assert stats.issues_by_severity == {"error": 2, "warning": 1}
    assert stats.endpoints_by_method == {"GET": 3, "POST": 1}
    assert stats.status_code_distribution == {"200": 3, "error": 1}
    assert stats.min_response_time_ms == 50.0
    assert stats.max_response_time_ms == 1500.0
    assert stats.avg_response_time_ms == pytest.approx(683.333)
    assert stats.throughput_per_second == 2.0


def test_statistics_are_cached_until_results_change(fake_clock: Any) -> None:
    aggregator = ResultsAggregator(clock=fake_clock)
    aggregator.start_tracking()
    aggregator.add_result(_result("/a"))
    fake_clock.advance(4.0)
    aggregator.stop_tracking()

    first = aggregator.statistics()
    assert aggregator.statistics() is first
    assert first.duration_seconds == 4.0

    aggregator.add_result(_result("/b"))
    second = aggregator.statistics()
    assert second is not first
    assert second.total == 2


def test_statistics_during_tracking_reflect_elapsed_time(fake_clock: Any) -> None:
    aggregator = ResultsAggregator(clock=fake_clock)
    aggregator.start_tracking()
    fake_clock.advance(1.0)
    early = aggregator.statistics()
    fake_clock.advance(1.0)

    assert aggregator.statistics().duration_seconds == 2.0
    assert early.duration_seconds == 1.0


def test_filters_and_queries() -> None:
    aggregator = ResultsAggregator()
    aggregator.add_results(_sample_results())

    assert [r.endpoint for r in aggregator.failed_results()] == ["/broken", "/down"]
    assert [r.endpoint for r in aggregator.successful_results()] == ["/fast", "/medium"]
    assert [r.endpoint for r in aggregator.results_by_method("post")] == ["/medium"]
    assert len(aggregator.results_by_status_code("200")) == 3
    assert aggregator.most_common_issues(2)[0]["count"] == 1
    assert len(aggregator) == 4


def test_performance_insights() -> None:
    aggregator = ResultsAggregator()
    aggregator.add_results(_sample_results())

    insights = aggregator.performance_insights()

    assert insights["distribution"] == {"fast": 1, "medium": 1, "slow": 1}
    fastest = insights["fastest_endpoint"]
    slowest = insights["slowest_endpoint"]
    assert isinstance(fastest, dict) and fastest["endpoint"] == "/fast"
    assert isinstance(slowest, dict) and slowest["endpoint"] == "/broken"


def test_summary_error_rate() -> None:
    aggregator = ResultsAggregator()
    aggregator.add_results(_sample_results())

    summary = aggregator.summary()

    issues = summary["issues"]
    assert isinstance(issues, dict)
    assert issues["error_rate"] == 25
    assert issues["total"] == 3


def test_json_export_round_trips_statistics() -> None:
    aggregator = ResultsAggregator()
    aggregator.add_results(_sample_results())

    payload = json.loads(aggregator.export("json"))

    assert len(payload["results"]) == 4
    assert payload["statistics"]["total"] == 4
    assert payload["summary"]["overview"]["failed"] == 2


def test_csv_export_has_one_row_per_result() -> None:
    aggregator = ResultsAggregator()
    aggregator.add_results(_sample_results())

    rows = list(csv.DictReader(io.StringIO(aggregator.export("CSV"))))

    assert [row["endpoint"] for row in rows] == ["/fast", "/medium", "/broken", "/down"]
    assert rows[3]["status_code"] == ""
    assert rows[3]["response_time_ms"] == ""
    assert rows[2]["issue_count"] == "2"
    assert rows[0]["success"] == "true"


def test_summary_export_lists_top_issues() -> None:
    aggregator = ResultsAggregator()
    aggregator.add_results(_sample_results())

    text = aggregator.export("summary")

    assert text.startswith("Validation summary\nTotal endpoints: 4")
    assert "Success rate: 50%" in text
    assert "  network_error: 1" in text


def test_unknown_export_format_rejected() -> None:
    with pytest.raises(ValueError, match="Unsupported export format: xml"):
        ResultsAggregator().export("xml")


def test_clear_resets_everything(fake_clock: Any) -> None:
    aggregator = ResultsAggregator(clock=fake_clock)
    aggregator.start_tracking()
    aggregator.add_results(_sample_results())
    aggregator.clear()

    assert aggregator.results == ()
    assert aggregator.duration_seconds() == 0.0
    assert aggregator.statistics().total == 0

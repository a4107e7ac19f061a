"""Tests for baseline comparison, windowed trends, and trend direction."""

from datetime import datetime, timedelta, timezone

import pytest

from reliability.analysis.models import PlatformHealth
from reliability.analysis.trends import (
    analyze_platform_trend,
    analyze_trends,
    calculate_trend,
    compare_with_baseline,
)
from reliability.checks.models import Severity
from reliability.core.history import HistoryStore

NOW = datetime(2026, 10, 15, 9, 0, tzinfo=timezone.utc)


def _snap(
    success=90.0, accuracy=90.0, ms=2000, errors=None, at=NOW, score=85, platform="linktree", **kw
):
    return PlatformHealth(
        platform=platform,
        timestamp=at,
        total_tests=10,
        success_rate=success,
        avg_accuracy=accuracy,
        avg_completeness=90.0,
        avg_response_time=ms,
        error_histogram=errors or {},
        health_score=score,
        status="healthy",
        **kw,
    )


# ── Baseline Comparison ──────────────────────────────────────────────


def test_success_drop_is_degradation():
    comparison = compare_with_baseline(_snap(success=60.0), _snap(success=90.0))

    assert comparison.degradation_detected
    assert comparison.overall_change == "degraded"
    assert comparison.success_rate_delta == -30.0
    alert = comparison.alerts[0]
    assert alert.type == "success_rate_drop"
    assert alert.severity.rank >= Severity.HIGH.rank


@pytest.mark.parametrize(
    "current, severity",
    [(80.0, Severity.HIGH), (70.0, Severity.CRITICAL), (85.0, None)],
)
def test_success_drop_severity(current, severity):
    comparison = compare_with_baseline(_snap(success=current), _snap(success=90.0))
    drops = [a for a in comparison.alerts if a.type == "success_rate_drop"]
    if severity is None:
        assert drops == []
        assert not comparison.degradation_detected
    else:
        assert drops[0].severity == severity


def test_accuracy_drop():
    medium = compare_with_baseline(_snap(accuracy=80.0), _snap(accuracy=90.0))
    assert medium.degradation_detected
    assert medium.alerts[0].type == "accuracy_drop"
    assert medium.alerts[0].severity == Severity.MEDIUM

    high = compare_with_baseline(_snap(accuracy=70.0), _snap(accuracy=90.0))
    assert high.alerts[0].severity == Severity.HIGH


def test_response_time_regression():
    comparison = compare_with_baseline(_snap(ms=8000), _snap(ms=2000))
    assert comparison.degradation_detected
    assert comparison.response_time_delta == 6000
    alert = comparison.alerts[0]
    assert alert.type == "response_time_increase"
    assert alert.severity == Severity.MEDIUM
    assert alert.change_percentage == 300.0


def test_new_error_types():
    comparison = compare_with_baseline(
        _snap(errors={"TIMEOUT": 1, "CAPTCHA_REQUIRED": 2}), _snap(errors={"TIMEOUT": 3})
    )
    assert comparison.new_error_types == ["CAPTCHA_REQUIRED"]
    assert comparison.alerts[0].type == "new_errors"
    assert comparison.alerts[0].severity == Severity.MEDIUM
    # New errors alone are not degradation
    assert not comparison.degradation_detected


def test_improvement():
    comparison = compare_with_baseline(_snap(success=95.0), _snap(success=80.0))
    assert comparison.improvement_detected
    assert not comparison.degradation_detected
    assert comparison.overall_change == "improved"
    assert comparison.alerts == []


def test_stable():
    comparison = compare_with_baseline(_snap(), _snap())
    assert comparison.overall_change == "stable"
    assert comparison.worst_severity is None


# ── Windowed Trends ──────────────────────────────────────────────────


def test_window_uses_earliest_snapshot_in_range():
    history = [
        _snap(success=40.0, at=NOW - timedelta(days=10)),  # outside the 7-day window
        _snap(success=90.0, at=NOW - timedelta(days=6)),
        _snap(success=85.0, at=NOW - timedelta(days=3)),
        _snap(success=60.0, at=NOW),
    ]
    comparison = analyze_platform_trend(history, now=NOW)
    assert comparison.success_rate_delta == -30.0
    assert comparison.snapshots_compared == 3
    assert comparison.baseline_at == NOW - timedelta(days=6)


def test_not_enough_history():
    assert analyze_platform_trend([_snap()], now=NOW) is None
    old = [_snap(at=NOW - timedelta(days=9)), _snap(at=NOW)]
    assert analyze_platform_trend(old, now=NOW) is None


def test_partial_snapshots_are_not_baselines():
    history = [
        _snap(success=10.0, at=NOW - timedelta(days=2), partial=True),
        _snap(success=90.0, at=NOW - timedelta(days=1)),
        _snap(success=88.0, at=NOW),
    ]
    comparison = analyze_platform_trend(history, now=NOW)
    assert comparison.success_rate_delta == -2.0
    assert not comparison.degradation_detected


def test_analyze_trends_from_store(tmp_path):
    store = HistoryStore(tmp_path / "history.db")
    try:
        store.append(
            [_snap(success=90.0, at=NOW - timedelta(days=1)), _snap(platform="instagram")],
            now=NOW,
        )
        store.append([_snap(success=60.0, at=NOW)], now=NOW)

        comparisons = analyze_trends(store, ["linktree", "instagram"], now=NOW)
    finally:
        store.close()

    assert set(comparisons) == {"linktree"}
    assert comparisons["linktree"].degradation_detected
    assert comparisons["linktree"].alerts[0].type == "success_rate_drop"


# ── Direction ────────────────────────────────────────────────────────


def test_trend_direction():
    def series(*scores):
        return [_snap(score=s, at=NOW + timedelta(hours=i)) for i, s in enumerate(scores)]

    assert calculate_trend(series(80)) == "unknown"
    assert calculate_trend(series(60, 70, 80)) == "improving"
    assert calculate_trend(series(80, 70, 60)) == "degrading"
    assert calculate_trend(series(80, 82, 81)) == "stable"
    # Only the last three points count
    assert calculate_trend(series(10, 80, 80, 80)) == "stable"


def test_trend_direction_sorts_by_time():
    shuffled = [
        _snap(score=80, at=NOW),
        _snap(score=60, at=NOW - timedelta(hours=2)),
        _snap(score=70, at=NOW - timedelta(hours=1)),
    ]
    assert calculate_trend(shuffled) == "improving"

"""Trend analysis: compare current platform health against recorded history."""

import logging
from collections.abc import Iterable, Sequence
from datetime import datetime, timedelta, timezone

from reliability.analysis.models import (
    Alert,
    BaselineComparison,
    PlatformHealth,
    TrendDirection,
)
from reliability.checks.models import Severity
from reliability.core.history import HistoryStore
from reliability.core.settings import TrendSettings

logger = logging.getLogger(__name__)


# ── Baseline Comparison ──────────────────────────────────────────────


def compare_with_baseline(
    current: PlatformHealth,
    baseline: PlatformHealth,
    settings: TrendSettings | None = None,
) -> BaselineComparison:
    """Deltas, alerts, and degradation/improvement flags between two snapshots."""
    settings = settings or TrendSettings()

    success_delta = current.success_rate - baseline.success_rate
    accuracy_delta = current.avg_accuracy - baseline.avg_accuracy
    response_delta = current.avg_response_time - baseline.avg_response_time
    new_errors = sorted(set(current.error_histogram) - set(baseline.error_histogram))

    alerts: list[Alert] = []

    # Success rate
    if success_delta <= -settings.success_drop_critical:
        alerts.append(
            _alert(
                "success_rate_drop",
                Severity.CRITICAL,
                f"Success rate dropped significantly: "
                f"{baseline.success_rate}% → {current.success_rate}%",
                current.success_rate,
                baseline.success_rate,
                success_delta,
            )
        )
    elif success_delta <= -settings.success_drop:
        alerts.append(
            _alert(
                "success_rate_drop",
                Severity.HIGH,
                f"Success rate decreased: {baseline.success_rate}% → {current.success_rate}%",
                current.success_rate,
                baseline.success_rate,
                success_delta,
            )
        )

    # Accuracy
    if accuracy_delta <= -settings.accuracy_drop_high:
        alerts.append(
            _alert(
                "accuracy_drop",
                Severity.HIGH,
                f"Accuracy dropped: {baseline.avg_accuracy}% → {current.avg_accuracy}%",
                current.avg_accuracy,
                baseline.avg_accuracy,
                accuracy_delta,
            )
        )
    elif accuracy_delta <= -settings.accuracy_drop:
        alerts.append(
            _alert(
                "accuracy_drop",
                Severity.MEDIUM,
                f"Accuracy decreased: {baseline.avg_accuracy}% → {current.avg_accuracy}%",
                current.avg_accuracy,
                baseline.avg_accuracy,
                accuracy_delta,
            )
        )

    # Response time
    if response_delta >= settings.response_time_increase_ms:
        change = (
            response_delta / baseline.avg_response_time * 100
            if baseline.avg_response_time
            else 100.0
        )
        alerts.append(
            _alert(
                "response_time_increase",
                Severity.MEDIUM,
                f"Response time increased significantly: "
                f"{baseline.avg_response_time}ms → {current.avg_response_time}ms",
                current.avg_response_time,
                baseline.avg_response_time,
                change,
            )
        )

    # Error types absent from the baseline
    if new_errors:
        alerts.append(
            _alert(
                "new_errors",
                Severity.MEDIUM,
                f"New error types detected: {', '.join(new_errors)}",
                len(new_errors),
                0,
                100.0,
            )
        )

    degradation = (
        success_delta <= -settings.success_drop
        or accuracy_delta <= -settings.accuracy_drop
        or response_delta >= settings.response_time_increase_ms
    )
    improvement = success_delta >= settings.improvement

    if degradation:
        overall = "degraded"
    elif improvement:
        overall = "improved"
    else:
        overall = "stable"

    return BaselineComparison(
        platform=current.platform,
        baseline_at=baseline.timestamp,
        current_at=current.timestamp,
        success_rate_delta=round(success_delta, 2),
        accuracy_delta=round(accuracy_delta, 2),
        response_time_delta=int(response_delta),
        new_error_types=new_errors,
        degradation_detected=degradation,
        improvement_detected=improvement,
        alerts=alerts,
        overall_change=overall,
    )


def _alert(kind, severity, message, current, previous, change) -> Alert:
    return Alert(
        type=kind,
        severity=severity,
        message=message,
        current_value=current,
        previous_value=previous,
        change_percentage=round(change, 2),
    )


# ── Windowed Trends ──────────────────────────────────────────────────


def analyze_platform_trend(
    history: Sequence[PlatformHealth],
    settings: TrendSettings | None = None,
    now: datetime | None = None,
) -> BaselineComparison | None:
    """Compare the latest snapshot to the earliest one inside the trailing window.

    Partial snapshots (runs cut short by the wall-clock budget) are ignored.
    Returns None when fewer than two complete snapshots fall inside the window.
    """
    settings = settings or TrendSettings()
    now = now or datetime.now(timezone.utc)
    cutoff = now - timedelta(days=settings.window_days)

    recent = sorted(
        (h for h in history if not h.partial and _aware(h.timestamp) > cutoff),
        key=lambda h: _aware(h.timestamp),
    )
    if len(recent) < 2:
        return None

    comparison = compare_with_baseline(recent[-1], recent[0], settings)
    comparison.snapshots_compared = len(recent)
    return comparison


def analyze_trends(
    store: HistoryStore,
    platforms: Iterable[str],
    settings: TrendSettings | None = None,
    now: datetime | None = None,
) -> dict[str, BaselineComparison]:
    """Windowed comparison for each platform that has enough history."""
    settings = settings or TrendSettings()
    now = now or datetime.now(timezone.utc)
    since = now - timedelta(days=settings.window_days)

    comparisons: dict[str, BaselineComparison] = {}
    for platform in platforms:
        comparison = analyze_platform_trend(store.load(platform, since=since), settings, now)
        if comparison is None:
            logger.info("%s: not enough history in the last %d days", platform, settings.window_days)
            continue
        comparisons[platform] = comparison
        if comparison.degradation_detected:
            logger.warning(
                "%s degraded over %d snapshots: %s",
                platform,
                comparison.snapshots_compared,
                "; ".join(a.message for a in comparison.alerts),
            )
    return comparisons


def calculate_trend(
    history: Sequence[PlatformHealth],
    settings: TrendSettings | None = None,
) -> TrendDirection:
    """Direction of the health score over the most recent snapshots."""
    settings = settings or TrendSettings()
    if len(history) < 2:
        return "unknown"

    ordered = sorted(history, key=lambda h: _aware(h.timestamp))
    recent = ordered[-settings.direction_points:]
    steps = [b.health_score - a.health_score for a, b in zip(recent, recent[1:])]
    average = sum(steps) / len(steps)

    if average >= settings.direction_threshold:
        return "improving"
    if average <= -settings.direction_threshold:
        return "degrading"
    return "stable"


def _aware(value: datetime) -> datetime:
    return value if value.tzinfo else value.replace(tzinfo=timezone.utc)

"""Per-platform health aggregation and run summaries."""

import logging
from collections import Counter
from collections.abc import Sequence
from datetime import datetime, timezone

from reliability.analysis.models import PlatformHealth, RunSummary, StatusTier
from reliability.checks.models import AttemptResult
from reliability.checks.scoring import round_half_up
from reliability.core.settings import HealthSettings, StatusTiers

logger = logging.getLogger(__name__)


# ── Scores ───────────────────────────────────────────────────────────


def compute_health_score(
    success_rate: float,
    avg_accuracy: float,
    avg_completeness: float,
    avg_response_time: float,
    settings: HealthSettings | None = None,
) -> int:
    """Weighted 0-100 health score.

    Speed contributes max(0, 100 - response_time / scale), so a 10s average
    at the default scale contributes nothing.
    """
    settings = settings or HealthSettings()
    w = settings.weights
    speed = max(0.0, 100 - avg_response_time / settings.response_time_scale_ms)
    score = (
        success_rate * w.success_rate
        + avg_accuracy * w.accuracy
        + avg_completeness * w.completeness
        + speed * w.speed
    )
    return min(100, max(0, round_half_up(score)))


def status_tier(health_score: int, tiers: StatusTiers | None = None) -> StatusTier:
    tiers = tiers or StatusTiers()
    if health_score >= tiers.excellent:
        return "excellent"
    if health_score >= tiers.healthy:
        return "healthy"
    if health_score >= tiers.warning:
        return "warning"
    return "critical"


def performance_grade(health: PlatformHealth) -> tuple[str, str]:
    """Letter grade and description for a platform's health score."""
    score = health.health_score
    if score >= 95:
        return "A+", "Exceptional performance"
    if score >= 90:
        return "A", "Excellent performance"
    if score >= 80:
        return "B", "Good performance"
    if score >= 70:
        return "C", "Acceptable performance"
    if score >= 50:
        return "D", "Poor performance - needs improvement"
    return "F", "Critical issues - immediate attention required"


# ── Aggregation ──────────────────────────────────────────────────────


def aggregate_platform_health(
    results: Sequence[AttemptResult],
    platform: str,
    settings: HealthSettings | None = None,
    partial: bool = False,
    timestamp: datetime | None = None,
) -> PlatformHealth:
    """Roll one platform's attempt results into a health snapshot."""
    settings = settings or HealthSettings()
    timestamp = timestamp or datetime.now(timezone.utc)
    mine = [r for r in results if r.platform == platform]

    if not mine:
        return PlatformHealth(
            platform=platform,
            timestamp=timestamp,
            total_tests=0,
            success_rate=0,
            avg_accuracy=0,
            avg_completeness=0,
            avg_response_time=0,
            health_score=0,
            status="critical",
            partial=partial,
        )

    successful = [r for r in mine if r.overall_success]
    success_rate = len(successful) / len(mine) * 100
    avg_accuracy = _mean([r.accuracy_score for r in successful])
    avg_completeness = _mean([r.completeness_score for r in successful])
    avg_response_time = _mean([r.response_time_ms for r in mine])

    errors = Counter(
        r.error_details.type.value for r in mine if not r.success and r.error_details
    )
    integrity_failures = sum(
        1 for r in mine if r.success and r.data_integrity_valid is False
    )
    issues = Counter(i.kind.value for r in mine for i in r.validation_issues)

    health_score = compute_health_score(
        success_rate, avg_accuracy, avg_completeness, avg_response_time, settings
    )

    return PlatformHealth(
        platform=platform,
        timestamp=timestamp,
        total_tests=len(mine),
        success_rate=round(success_rate, 2),
        avg_accuracy=round(avg_accuracy, 2),
        avg_completeness=round(avg_completeness, 2),
        avg_response_time=round_half_up(avg_response_time),
        error_histogram=dict(errors),
        integrity_failures=integrity_failures,
        issue_histogram=dict(issues),
        health_score=health_score,
        status=status_tier(health_score, settings.tiers),
        partial=partial,
    )


def aggregate_run(
    results: Sequence[AttemptResult],
    settings: HealthSettings | None = None,
    partial: bool = False,
    timestamp: datetime | None = None,
) -> dict[str, PlatformHealth]:
    """Health for every platform present in results, keyed by platform."""
    timestamp = timestamp or datetime.now(timezone.utc)
    platforms = sorted({r.platform for r in results})
    health = {
        p: aggregate_platform_health(results, p, settings, partial, timestamp)
        for p in platforms
    }
    for p, h in health.items():
        logger.info(
            "%s: %.1f%% success, health %d (%s)%s",
            p,
            h.success_rate,
            h.health_score,
            h.status,
            " [partial]" if partial else "",
        )
    return health


def summarize_run(
    results: Sequence[AttemptResult],
    health: dict[str, PlatformHealth],
    partial: bool = False,
) -> RunSummary:
    successful = [r for r in results if r.overall_success]
    errors = Counter(
        r.error_details.type.value for r in results if not r.success and r.error_details
    )
    return RunSummary(
        total_tests=len(results),
        successful_tests=len(successful),
        failed_tests=len(results) - len(successful),
        success_rate=round(len(successful) / len(results) * 100, 2) if results else 0.0,
        avg_response_time=round_half_up(_mean([r.response_time_ms for r in results])),
        avg_accuracy=round(_mean([r.accuracy_score for r in successful]), 2),
        error_breakdown=dict(errors),
        platforms=health,
        partial=partial,
        timestamp=datetime.now(timezone.utc),
    )


# ── Helpers ──────────────────────────────────────────────────────────


def _mean(values: Sequence[float]) -> float:
    return sum(values) / len(values) if values else 0.0

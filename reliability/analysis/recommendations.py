"""Rule table turning platform health and trend alerts into ranked actions."""

from collections.abc import Mapping

from reliability.analysis.models import BaselineComparison, PlatformHealth, Recommendation
from reliability.checks.models import ErrorType, IssueKind, Severity

_CONTAMINATION_KINDS = (IssueKind.STALE_DATA.value, IssueKind.WRONG_USER_DATA.value)


def compose_recommendations(
    health: Mapping[str, PlatformHealth],
    comparisons: Mapping[str, BaselineComparison] | None = None,
) -> list[Recommendation]:
    """Deterministic, severity-ranked actions. Pure: same input, same output."""
    comparisons = comparisons or {}
    recs: list[Recommendation] = []

    for platform, h in health.items():
        # Headline rule: first match only
        if h.success_rate < 50:
            recs.append(
                Recommendation(
                    platform=platform,
                    severity=Severity.CRITICAL,
                    action="Fix immediately - blocking core functionality",
                    reason=f"Success rate is only {h.success_rate:.1f}%",
                    priority=1,
                )
            )
        elif h.success_rate < 70:
            recs.append(
                Recommendation(
                    platform=platform,
                    severity=Severity.HIGH,
                    action="Investigate and fix major issues",
                    reason=f"Success rate below target ({h.success_rate:.1f}% < 70%)",
                    priority=2,
                )
            )
        elif h.avg_accuracy < 80:
            recs.append(
                Recommendation(
                    platform=platform,
                    severity=Severity.MEDIUM,
                    action="Improve data accuracy",
                    reason=f"Accuracy below target ({h.avg_accuracy:.1f}% < 80%)",
                    priority=3,
                )
            )
        elif h.avg_response_time > 10_000:
            recs.append(
                Recommendation(
                    platform=platform,
                    severity=Severity.LOW,
                    action="Optimize for better performance",
                    reason=f"Response time above target ({h.avg_response_time}ms > 10s)",
                    priority=4,
                )
            )

        # Additive rules
        contaminated = sum(h.issue_histogram.get(k, 0) for k in _CONTAMINATION_KINDS)
        if contaminated:
            recs.append(
                Recommendation(
                    platform=platform,
                    severity=Severity.CRITICAL,
                    action="Audit extractor session isolation - stale or foreign data returned",
                    reason=f"{contaminated} stale/wrong-subject integrity issue(s) this run",
                    priority=1,
                )
            )

        if h.error_histogram.get(ErrorType.SELECTOR_NOT_FOUND.value):
            recs.append(
                Recommendation(
                    platform=platform,
                    severity=Severity.HIGH,
                    action="Update extraction logic - platform changed structure",
                    reason=(
                        f"{h.error_histogram[ErrorType.SELECTOR_NOT_FOUND.value]} "
                        "selector-not-found failure(s)"
                    ),
                    priority=2,
                )
            )

        if h.error_histogram.get(ErrorType.RATE_LIMITED.value):
            recs.append(
                Recommendation(
                    platform=platform,
                    severity=Severity.MEDIUM,
                    action="Add pacing or proxy rotation",
                    reason="Platform is blocking requests due to rate limits",
                    priority=3,
                )
            )

        comparison = comparisons.get(platform)
        if comparison is not None and comparison.degradation_detected:
            recs.append(
                Recommendation(
                    platform=platform,
                    severity=Severity.HIGH,
                    action="Investigate recent degradation",
                    reason="; ".join(a.message for a in comparison.alerts)
                    or "Degradation detected against baseline",
                    priority=2,
                )
            )

    return sorted(recs, key=lambda r: (r.priority, r.platform, r.action))

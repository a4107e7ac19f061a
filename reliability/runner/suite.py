"""One complete reliability run: execute, aggregate, record, compare, recommend."""

import logging
import time
from collections.abc import Callable, Mapping, Sequence
from datetime import datetime
from typing import Optional

from pydantic import BaseModel

from reliability.analysis.health import aggregate_run, summarize_run
from reliability.analysis.models import (
    BaselineComparison,
    PlatformHealth,
    Recommendation,
    RunSummary,
)
from reliability.analysis.recommendations import compose_recommendations
from reliability.analysis.trends import analyze_trends, calculate_trend
from reliability.checks.integrity import SignatureRegistry
from reliability.core.history import HistoryStore
from reliability.core.matrix import MatrixEntry
from reliability.core.settings import ReliabilitySettings
from reliability.runner.attempt import AttemptRunner, ExtractorFactory
from reliability.runner.matrix import RunReport, run_matrix

logger = logging.getLogger(__name__)


class SuiteOutcome(BaseModel):
    """Everything one run hands to the report sink."""

    report: RunReport
    health: dict[str, PlatformHealth]
    summary: RunSummary
    comparisons: dict[str, BaselineComparison]
    recommendations: list[Recommendation]
    settings_hash: str

    @property
    def has_critical_platform(self) -> bool:
        return any(h.status == "critical" for h in self.health.values())


def run_suite(
    entries: Sequence[MatrixEntry],
    extractors: Mapping[str, ExtractorFactory],
    settings: ReliabilitySettings | None = None,
    store: HistoryStore | None = None,
    workers: Optional[int] = None,
    max_run_seconds: Optional[float] = None,
    sleep: Callable[[float], None] = time.sleep,
    now: datetime | None = None,
) -> SuiteOutcome:
    """Run every entry once and derive health, trends, and recommendations.

    The signature registry lives for this run only. History is written once,
    after all attempts have finished.
    """
    settings = settings or ReliabilitySettings()
    runner = AttemptRunner(extractors, settings, registry=SignatureRegistry(), sleep=sleep)

    report = run_matrix(
        entries, runner, workers=workers, max_run_seconds=max_run_seconds, sleep=sleep
    )
    snapshot_at = now or report.finished_at
    health = aggregate_run(
        report.results, settings.health, partial=report.partial, timestamp=snapshot_at
    )

    comparisons: dict[str, BaselineComparison] = {}
    if store is not None:
        for platform, h in health.items():
            h.trend = calculate_trend(store.load(platform) + [h], settings.trends)
        store.append(list(health.values()), now=snapshot_at)
        comparisons = analyze_trends(store, health.keys(), settings.trends, now=snapshot_at)

    summary = summarize_run(report.results, health, partial=report.partial)
    recommendations = compose_recommendations(health, comparisons)

    for rec in recommendations:
        logger.info("[%s] %s: %s (%s)", rec.severity.value, rec.platform, rec.action, rec.reason)

    return SuiteOutcome(
        report=report,
        health=health,
        summary=summary,
        comparisons=comparisons,
        recommendations=recommendations,
        settings_hash=settings.settings_hash(),
    )

#!/usr/bin/env python3
"""Reliability run: test matrix -> attempts -> health -> trends -> recommendations."""

import argparse
import json
import logging
import sys
import time
from pathlib import Path

# Ensure project root is on sys.path
PROJECT_ROOT = Path(__file__).resolve().parent.parent
sys.path.insert(0, str(PROJECT_ROOT))

from reliability.analysis.health import performance_grade
from reliability.core.history import HistoryStore
from reliability.core.matrix import load_test_matrix
from reliability.core.settings import load_settings
from reliability.exporters import export_all
from reliability.extractors.fixtures import fixture_extractors
from reliability.runner.suite import SuiteOutcome, run_suite

logging.basicConfig(
    level=logging.INFO,
    format="%(asctime)s [%(levelname)s] %(name)s: %(message)s",
    datefmt="%H:%M:%S",
)
logger = logging.getLogger("reliability")

DEFAULT_SETTINGS = PROJECT_ROOT / "config" / "reliability_v1.yaml"
DEFAULT_MATRIX = PROJECT_ROOT / "matrices" / "creator_accounts_v1.yaml"


# ── Run ──────────────────────────────────────────────────────────────


def run_reliability(
    mode: str = "quick",
    platform: str | None = None,
    username: str | None = None,
    workers: int | None = None,
    max_run_seconds: float | None = None,
    settings_path: str | None = None,
    matrix_path: str | None = None,
    history_path: str | None = None,
    output_dir: str | None = None,
) -> SuiteOutcome:
    """Run the selected slice of the test matrix and export the results."""
    t_start = time.time()

    # ── Load configuration ───────────────────────────────────
    settings = load_settings(settings_path or DEFAULT_SETTINGS)
    matrix = load_test_matrix(matrix_path or DEFAULT_MATRIX)
    logger.info(
        "Matrix v%s (%d accounts), settings %s",
        matrix.version,
        len(matrix.accounts),
        settings.settings_hash()[:12],
    )

    extractors = fixture_extractors()
    entries = matrix.entries(
        mode=mode, platform=platform, username=username, available=extractors.keys()
    )
    if not entries:
        logger.error("No tests selected (mode=%s, platform=%s, username=%s)", mode, platform, username)
        sys.exit(2)

    # ── Execute ──────────────────────────────────────────────
    store = HistoryStore(history_path, retention_days=settings.history.retention_days)
    try:
        outcome = run_suite(
            entries,
            extractors,
            settings=settings,
            store=store,
            workers=workers,
            max_run_seconds=max_run_seconds,
        )
    finally:
        store.close()

    # ── Export ───────────────────────────────────────────────
    paths = export_all(outcome, output_dir)

    # ── Final summary ────────────────────────────────────────
    elapsed = time.time() - t_start
    _log_summary(outcome)
    logger.info("RUN COMPLETE in %.1fs", elapsed)
    logger.info("Outputs: %s", json.dumps(paths, indent=2))
    return outcome


def _log_summary(outcome: SuiteOutcome) -> None:
    summary = outcome.summary
    logger.info("=" * 60)
    logger.info(
        "%d tests, %d passed, %d failed (%.1f%% success)%s",
        summary.total_tests,
        summary.successful_tests,
        summary.failed_tests,
        summary.success_rate,
        " [PARTIAL]" if summary.partial else "",
    )
    for platform, health in sorted(outcome.health.items()):
        grade, description = performance_grade(health)
        logger.info(
            "  %-10s health %3d (%s, trend %s) grade %s - %s",
            platform,
            health.health_score,
            health.status,
            health.trend,
            grade,
            description,
        )
    for platform, comparison in sorted(outcome.comparisons.items()):
        for alert in comparison.alerts:
            logger.warning("  [%s] %s: %s", alert.severity.value, platform, alert.message)
    logger.info("=" * 60)


# ── CLI ──────────────────────────────────────────────────────────────


def main():
    parser = argparse.ArgumentParser(description="Run extractor reliability tests")
    parser.add_argument(
        "--mode",
        choices=("quick", "full"),
        default="quick",
        help="quick: flagged accounts only; full: every account",
    )
    parser.add_argument("--platform", default=None, help="Only test this platform")
    parser.add_argument("--username", default=None, help="Only test this account")
    parser.add_argument(
        "--workers",
        type=int,
        default=None,
        help="Concurrent attempts (default from settings; 1 = sequential with pacing)",
    )
    parser.add_argument(
        "--max-run-seconds",
        type=float,
        default=None,
        help="Wall-clock budget; unfinished tests are dropped and the run marked partial",
    )
    parser.add_argument("--settings", default=None, help="Path to settings YAML file")
    parser.add_argument("--matrix", default=None, help="Path to test matrix YAML file")
    parser.add_argument("--history", default=None, help="Path to history SQLite database")
    parser.add_argument("--output", default=None, help="Directory for JSON results")
    args = parser.parse_args()

    outcome = run_reliability(
        mode=args.mode,
        platform=args.platform,
        username=args.username,
        workers=args.workers,
        max_run_seconds=args.max_run_seconds,
        settings_path=args.settings,
        matrix_path=args.matrix,
        history_path=args.history,
        output_dir=args.output,
    )
    sys.exit(1 if outcome.has_critical_platform else 0)


if __name__ == "__main__":
    main()

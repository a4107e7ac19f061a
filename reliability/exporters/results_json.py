"""Structured JSON handoff of a run to the external rendering layer."""

import json
import logging
from datetime import datetime, timezone
from pathlib import Path

from reliability.runner.suite import SuiteOutcome

logger = logging.getLogger(__name__)


def build_run_document(outcome: SuiteOutcome) -> dict:
    """JSON-safe dict of the run: summary, health, trends, actions, raw results."""
    return {
        "run_id": outcome.report.run_id,
        "generated_at": datetime.now(timezone.utc).isoformat(),
        "settings_hash": outcome.settings_hash,
        "partial": outcome.report.partial,
        "summary": outcome.summary.model_dump(mode="json", exclude={"platforms"}),
        "platform_health": {
            p: h.model_dump(mode="json") for p, h in outcome.health.items()
        },
        "comparisons": {
            p: c.model_dump(mode="json") for p, c in outcome.comparisons.items()
        },
        "recommendations": [r.model_dump(mode="json") for r in outcome.recommendations],
        "detailed_results": [r.model_dump(mode="json") for r in outcome.report.results],
    }


def export_run_json(outcome: SuiteOutcome, output_path: str) -> None:
    """Write the run document to output_path."""
    doc = build_run_document(outcome)
    Path(output_path).parent.mkdir(parents=True, exist_ok=True)
    with open(output_path, "w") as f:
        json.dump(doc, f, indent=2)
    logger.info(
        "Run results written to %s (%d results)", output_path, len(doc["detailed_results"])
    )


def export_alerts_json(outcome: SuiteOutcome, output_path: str) -> int:
    """Write only the alerts, flattened with their platform. Returns alert count."""
    alerts = [
        {"platform": p, **a.model_dump(mode="json")}
        for p, c in sorted(outcome.comparisons.items())
        for a in c.alerts
    ]
    Path(output_path).parent.mkdir(parents=True, exist_ok=True)
    with open(output_path, "w") as f:
        json.dump(alerts, f, indent=2)
    logger.info("%d alert(s) written to %s", len(alerts), output_path)
    return len(alerts)

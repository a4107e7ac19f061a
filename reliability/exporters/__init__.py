"""Export convenience function."""

import logging
from datetime import datetime, timezone
from pathlib import Path

from reliability.exporters.results_json import export_alerts_json, export_run_json
from reliability.runner.suite import SuiteOutcome

logger = logging.getLogger(__name__)


def export_all(outcome: SuiteOutcome, output_dir: str | None = None) -> dict:
    """Run all exports and return dict of file paths created."""
    if output_dir is None:
        output_dir = str(Path("data") / "results")

    out = Path(output_dir)
    out.mkdir(parents=True, exist_ok=True)
    stamp = datetime.now(timezone.utc).strftime("%Y-%m-%dT%H-%M-%S")

    paths = {}

    results_path = str(out / f"reliability_{stamp}.json")
    export_run_json(outcome, results_path)
    paths["results_json"] = results_path

    alerts_path = str(out / f"alerts_{stamp}.json")
    export_alerts_json(outcome, alerts_path)
    paths["alerts_json"] = alerts_path

    logger.info("All exports written to %s", output_dir)
    return paths

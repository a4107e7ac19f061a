"""Run a test matrix: sequential with pacing, or on a bounded worker pool."""

import logging
import queue
import threading
import time
import uuid
from collections.abc import Callable, Sequence
from datetime import datetime, timezone
from typing import Optional

from pydantic import BaseModel, Field

from reliability.checks.models import AttemptResult
from reliability.core.matrix import MatrixEntry
from reliability.runner.attempt import AttemptRunner

logger = logging.getLogger(__name__)


# ── Run Report ───────────────────────────────────────────────────────


class RunReport(BaseModel):
    """All attempt results from one run of a matrix."""

    run_id: str
    started_at: datetime
    finished_at: datetime
    planned: int
    workers: int
    results: list[AttemptResult] = Field(default_factory=list)
    partial: bool = False

    @property
    def completed(self) -> int:
        return len(self.results)


# ── Public API ───────────────────────────────────────────────────────


def run_matrix(
    entries: Sequence[MatrixEntry],
    runner: AttemptRunner,
    workers: Optional[int] = None,
    max_run_seconds: Optional[float] = None,
    sleep: Callable[[float], None] = time.sleep,
    clock: Callable[[], float] = time.monotonic,
) -> RunReport:
    """Execute every entry and collect results.

    workers=1 runs one attempt at a time with a fixed inter-attempt delay.
    workers>1 runs attempts on a bounded pool without pacing. If the wall-clock
    budget runs out, the report holds what finished and is marked partial.
    """
    cfg = runner.settings.runner
    workers = workers or cfg.workers
    if max_run_seconds is None:
        max_run_seconds = cfg.max_run_seconds

    started_at = datetime.now(timezone.utc)
    total = len(entries)
    logger.info("Starting run of %d tests (%d worker(s))", total, workers)

    if workers <= 1:
        results, partial = _run_sequential(
            entries, runner, cfg.inter_attempt_delay_ms / 1000, max_run_seconds, sleep, clock
        )
    else:
        results, partial = _run_pool(entries, runner, workers, max_run_seconds)

    if partial:
        logger.warning(
            "Run budget of %.1fs exhausted - %d/%d tests completed",
            max_run_seconds,
            len(results),
            total,
        )
    successes = sum(1 for r in results if r.overall_success)
    logger.info("Run complete: %d tests, %d succeeded", len(results), successes)

    return RunReport(
        run_id=uuid.uuid4().hex,
        started_at=started_at,
        finished_at=datetime.now(timezone.utc),
        planned=total,
        workers=workers,
        results=results,
        partial=partial,
    )


# ── Execution Modes ──────────────────────────────────────────────────


def _run_sequential(
    entries: Sequence[MatrixEntry],
    runner: AttemptRunner,
    delay_s: float,
    budget_s: Optional[float],
    sleep: Callable[[float], None],
    clock: Callable[[], float],
) -> tuple[list[AttemptResult], bool]:
    results: list[AttemptResult] = []
    start = clock()
    total = len(entries)

    for i, entry in enumerate(entries, 1):
        if budget_s is not None and clock() - start >= budget_s:
            return results, True

        results.append(runner.run(entry.subject, entry.expected))
        if i % 10 == 0 or i == total:
            logger.info("Tested %d/%d", i, total)

        if i < total and delay_s > 0:
            sleep(delay_s)

    return results, False


def _run_pool(
    entries: Sequence[MatrixEntry],
    runner: AttemptRunner,
    workers: int,
    budget_s: Optional[float],
) -> tuple[list[AttemptResult], bool]:
    pending: "queue.Queue[tuple[int, MatrixEntry]]" = queue.Queue()
    for item in enumerate(entries):
        pending.put(item)

    finished: dict[int, AttemptResult] = {}
    crashed: set[int] = set()
    lock = threading.Lock()
    stop = threading.Event()

    def work() -> None:
        while not stop.is_set():
            try:
                i, entry = pending.get_nowait()
            except queue.Empty:
                return
            try:
                result = runner.run(entry.subject, entry.expected)
            except Exception as exc:
                # AttemptRunner.run never raises; this only guards a broken runner
                logger.error("Attempt worker crashed on %s: %s", entry.subject.key, exc)
                with lock:
                    crashed.add(i)
                continue
            with lock:
                if not stop.is_set():
                    finished[i] = result

    # Daemon workers: a budget-abandoned attempt must not block process exit
    threads = [
        threading.Thread(target=work, name=f"attempt-{n}", daemon=True)
        for n in range(min(workers, len(entries)))
    ]
    for t in threads:
        t.start()

    deadline = None if budget_s is None else time.monotonic() + budget_s
    for t in threads:
        t.join(None if deadline is None else max(0.0, deadline - time.monotonic()))

    with lock:
        stop.set()
        partial = len(finished) + len(crashed) < len(entries)
        return [finished[i] for i in sorted(finished)], partial

"""Tests for matrix execution: pacing, worker pool, wall-clock budget."""

import subprocess
import sys
import textwrap
import threading
import time
from pathlib import Path

from reliability.checks.models import Subject
from reliability.core.matrix import ExpectedProfile, MatrixEntry
from reliability.core.settings import ReliabilitySettings, RunnerSettings
from reliability.runner.attempt import AttemptRunner
from reliability.runner.matrix import run_matrix


class EchoExtractor:
    """Returns a distinct, self-consistent payload for every subject."""

    def extract(self, subject):
        return {"username": subject.username, "bio": f"bio of {subject.username}"}


def _entries(n, platform="instagram"):
    return [
        MatrixEntry(
            subject=Subject(platform=platform, username=f"user{i}"),
            expected=ExpectedProfile(),
        )
        for i in range(n)
    ]


def _runner(extractor_cls=EchoExtractor, **runner):
    settings = ReliabilitySettings(runner=RunnerSettings(**runner))
    return AttemptRunner({"instagram": extractor_cls}, settings, sleep=lambda s: None)


# ── Sequential ───────────────────────────────────────────────────────


def test_sequential_paces_between_attempts():
    sleeps = []
    runner = _runner(inter_attempt_delay_ms=1500)
    report = run_matrix(_entries(3), runner, workers=1, sleep=sleeps.append)

    assert report.completed == 3
    assert not report.partial
    # Delay between attempts only, not after the last
    assert sleeps == [1.5, 1.5]
    assert [r.username for r in report.results] == ["user0", "user1", "user2"]


def test_sequential_budget_marks_partial():
    ticks = iter([0.0, 0.0, 5.0, 20.0, 30.0])
    runner = _runner(inter_attempt_delay_ms=0)
    report = run_matrix(
        _entries(4), runner, workers=1, max_run_seconds=10, sleep=lambda s: None, clock=lambda: next(ticks)
    )

    assert report.partial
    assert report.planned == 4
    assert report.completed == 2


def test_empty_matrix():
    report = run_matrix([], _runner(), workers=1)
    assert report.completed == 0
    assert not report.partial


# ── Worker Pool ──────────────────────────────────────────────────────


def test_pool_runs_concurrently_and_keeps_order():
    active = []
    peak = []
    lock = threading.Lock()

    class SlowExtractor(EchoExtractor):
        def extract(self, subject):
            with lock:
                active.append(subject)
                peak.append(len(active))
            time.sleep(0.05)
            with lock:
                active.remove(subject)
            return super().extract(subject)

    report = run_matrix(_entries(6), _runner(SlowExtractor), workers=3)

    assert report.completed == 6
    assert report.workers == 3
    assert max(peak) > 1
    assert max(peak) <= 3
    assert [r.username for r in report.results] == [f"user{i}" for i in range(6)]


def test_pool_budget_drops_unfinished():
    release = threading.Event()

    class MostlyHanging(EchoExtractor):
        def extract(self, subject):
            if subject.username != "user0":
                release.wait(5)
            return super().extract(subject)

    runner = _runner(MostlyHanging, timeout_ms=10_000)
    try:
        report = run_matrix(_entries(3), runner, workers=3, max_run_seconds=0.5)
    finally:
        release.set()

    assert report.partial
    assert [r.username for r in report.results] == ["user0"]


def test_workers_default_from_settings():
    report = run_matrix(_entries(2), _runner(workers=2))
    assert report.workers == 2
    assert report.completed == 2


def test_pool_budget_does_not_block_process_exit():
    script = textwrap.dedent(
        """
        import threading

        from reliability.checks.models import Subject
        from reliability.core.matrix import ExpectedProfile, MatrixEntry
        from reliability.core.settings import ReliabilitySettings, RunnerSettings
        from reliability.runner.attempt import AttemptRunner
        from reliability.runner.matrix import run_matrix

        class Forever:
            def extract(self, subject):
                threading.Event().wait()

        settings = ReliabilitySettings(runner=RunnerSettings(timeout_ms=600_000))
        runner = AttemptRunner({"instagram": Forever}, settings)
        entries = [
            MatrixEntry(subject=Subject(platform="instagram", username=f"u{i}"), expected=ExpectedProfile())
            for i in range(2)
        ]
        report = run_matrix(entries, runner, workers=2, max_run_seconds=0.3)
        print(report.partial, report.completed)
        """
    )
    done = subprocess.run(
        [sys.executable, "-c", script],
        cwd=Path(__file__).resolve().parent.parent,
        capture_output=True,
        text=True,
        timeout=30,
    )

    assert done.returncode == 0, done.stderr
    assert done.stdout.strip() == "True 0"

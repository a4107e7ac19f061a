"""Tests for the extraction attempt runner (timeouts, retries, finalization)."""

import random
import subprocess
import sys
import textwrap
import threading
from pathlib import Path
from unittest.mock import MagicMock

import pytest

from reliability.checks.integrity import SignatureRegistry
from reliability.checks.models import ErrorType, ExtractionOutcome, IssueKind, Subject
from reliability.core.matrix import ExpectedProfile
from reliability.core.settings import ReliabilitySettings, RunnerSettings
from reliability.runner.attempt import AttemptRunner, extractor_session

ROOT = Path(__file__).resolve().parent.parent
CRISTIANO = Subject(platform="instagram", username="cristiano")
CRISTIANO_EXPECTED = ExpectedProfile(
    is_verified=True,
    min_followers=600_000_000,
    max_followers=650_000_000,
    bio_keywords=["footballer"],
)
CRISTIANO_PAYLOAD = {
    "username": "cristiano",
    "followerCount": 615_000_000,
    "bio": "Portuguese footballer, CR7",
    "isVerified": True,
}


def _settings(**runner):
    defaults = dict(timeout_ms=1000, max_retries=3, backoff_base_ms=1000, backoff_jitter_ms=0)
    defaults.update(runner)
    return ReliabilitySettings(runner=RunnerSettings(**defaults))


class ScriptedExtractor:
    """Plays back a shared script of responses: exceptions are raised, anything else returned."""

    def __init__(self, script, calls):
        self.script = script
        self.calls = calls
        self.closed = False

    def extract(self, subject):
        step = self.script[min(len(self.calls), len(self.script) - 1)]
        self.calls.append(subject)
        if isinstance(step, BaseException):
            raise step
        return step

    def close(self):
        self.closed = True


def _runner(script, sleeps=None, **runner_settings):
    calls = []
    sessions = []

    def factory():
        ext = ScriptedExtractor(script, calls)
        sessions.append(ext)
        return ext

    sleeps = sleeps if sleeps is not None else []
    runner = AttemptRunner(
        {"instagram": factory},
        _settings(**runner_settings),
        sleep=sleeps.append,
        rng=random.Random(7),
    )
    return runner, calls, sessions


# ── Success Path ─────────────────────────────────────────────────────


def test_known_creator_succeeds():
    runner, calls, _ = _runner([CRISTIANO_PAYLOAD])
    result = runner.run(CRISTIANO, CRISTIANO_EXPECTED)

    assert result.success
    assert result.overall_success
    assert result.data_integrity_valid
    assert result.accuracy_score >= 80
    assert result.retry_count == 0
    assert result.error_details is None
    assert len(calls) == 1


def test_extraction_outcome_is_accepted():
    outcome = ExtractionOutcome(success=True, payload=CRISTIANO_PAYLOAD)
    runner, _, _ = _runner([outcome])
    assert runner.run(CRISTIANO, CRISTIANO_EXPECTED).success


def test_failed_outcome_is_classified():
    outcome = ExtractionOutcome(success=False, error="Profile not found", error_code="404")
    runner, calls, _ = _runner([outcome])
    result = runner.run(CRISTIANO)

    assert not result.success
    assert result.error_details.type == ErrorType.NOT_FOUND
    assert len(calls) == 1


def test_integrity_failure_downgrades_success():
    wrong = dict(CRISTIANO_PAYLOAD, username="mrbeast")
    runner, _, _ = _runner([wrong])
    result = runner.run(CRISTIANO, CRISTIANO_EXPECTED)

    assert result.success
    assert not result.overall_success
    assert result.data_integrity_valid is False
    assert result.validation_issues[0].kind == IssueKind.WRONG_USER_DATA
    assert result.integrity_score == 50


def test_contaminated_payload_fails_across_subjects():
    registry = SignatureRegistry()
    payload = {
        "followerCount": 600_000_000,
        "bio": "Portuguese footballer, CR7",
        "bioLink": "https://goat.com/cristiano",
    }
    runner = AttemptRunner(
        {"instagram": lambda: MagicMock(extract=MagicMock(return_value=payload))},
        _settings(),
        registry=registry,
        sleep=lambda s: None,
    )
    first = runner.run(CRISTIANO)
    second = runner.run(Subject(platform="instagram", username="smallcreator"))

    assert first.overall_success
    assert second.success
    assert not second.overall_success
    assert second.data_integrity_valid is False
    assert IssueKind.STALE_DATA in {i.kind for i in second.validation_issues}


# ── Retries ──────────────────────────────────────────────────────────


def test_rate_limited_then_success():
    sleeps = []
    script = [RuntimeError("HTTP 429"), RuntimeError("HTTP 429"), CRISTIANO_PAYLOAD]
    runner, calls, sessions = _runner(script, sleeps=sleeps)
    result = runner.run(CRISTIANO, CRISTIANO_EXPECTED)

    assert result.success
    assert result.retry_count == 2
    assert result.attempts == 3
    assert result.error_details is None
    assert len(calls) == 3
    # Exponential backoff without jitter: 1s, 2s
    assert sleeps == [1.0, 2.0]
    # Fresh session per try, each one released
    assert len(sessions) == 3
    assert all(s.closed for s in sessions)


def test_timeouts_exhaust_retries():
    sleeps = []
    runner, calls, _ = _runner([TimeoutError("Navigation timeout")], sleeps=sleeps)
    result = runner.run(CRISTIANO)

    assert not result.success
    assert result.error_details.type == ErrorType.TIMEOUT
    assert result.error_details.is_retryable
    assert result.retry_count == 3
    assert len(calls) == 4
    assert sleeps == [1.0, 2.0, 4.0]


def test_non_retryable_fails_fast():
    runner, calls, _ = _runner([RuntimeError("waiting for selector .bio failed")])
    result = runner.run(CRISTIANO)

    assert result.error_details.type == ErrorType.SELECTOR_NOT_FOUND
    assert result.retry_count == 0
    assert len(calls) == 1


def test_zero_retries():
    runner, calls, _ = _runner([RuntimeError("network down")], max_retries=0)
    result = runner.run(CRISTIANO)
    assert result.retry_count == 0
    assert len(calls) == 1


def test_backoff_jitter_bounds():
    runner = AttemptRunner({}, _settings(backoff_jitter_ms=250), rng=random.Random(1))
    for attempt in range(4):
        delay = runner.backoff_ms(attempt)
        assert 1000 * 2**attempt <= delay <= 1000 * 2**attempt + 250


# ── Timeout ──────────────────────────────────────────────────────────


def test_hung_extractor_is_abandoned():
    release = threading.Event()
    cancelled = []

    class Hanging:
        def extract(self, subject):
            release.wait(5)
            return CRISTIANO_PAYLOAD

        def cancel(self):
            cancelled.append(True)

    runner = AttemptRunner(
        {"instagram": Hanging}, _settings(timeout_ms=50, max_retries=0), sleep=lambda s: None
    )
    try:
        result = runner.run(CRISTIANO)
    finally:
        release.set()

    assert not result.success
    assert result.error_details.type == ErrorType.TIMEOUT
    assert result.error_details.message == "Operation timed out after 50ms"
    assert cancelled == [True]


def test_abandoned_call_does_not_block_process_exit():
    script = textwrap.dedent(
        """
        import threading

        from reliability.checks.models import Subject
        from reliability.core.settings import ReliabilitySettings, RunnerSettings
        from reliability.runner.attempt import AttemptRunner

        class Forever:
            def extract(self, subject):
                threading.Event().wait()

        settings = ReliabilitySettings(runner=RunnerSettings(timeout_ms=200, max_retries=0))
        result = AttemptRunner({"instagram": Forever}, settings).run(
            Subject(platform="instagram", username="cristiano")
        )
        print(result.error_details.type.value)
        """
    )
    done = subprocess.run(
        [sys.executable, "-c", script],
        cwd=ROOT,
        capture_output=True,
        text=True,
        timeout=30,
    )

    assert done.returncode == 0, done.stderr
    assert done.stdout.strip() == "TIMEOUT"


# ── Isolation ────────────────────────────────────────────────────────


def test_schema_violation_is_unknown_and_not_retried():
    runner, calls, _ = _runner([{"followerCount": "lots"}])
    result = runner.run(CRISTIANO)

    assert not result.success
    assert result.error_details.type == ErrorType.UNKNOWN
    assert not result.error_details.is_retryable
    assert "schema" in result.error_details.message.lower()
    assert len(calls) == 1


def test_non_mapping_payload_is_schema_error():
    runner, _, _ = _runner(["<html>"])
    assert runner.run(CRISTIANO).error_details.type == ErrorType.UNKNOWN


def test_missing_platform_is_unknown():
    runner, _, _ = _runner([CRISTIANO_PAYLOAD])
    result = runner.run(Subject(platform="tiktok", username="cristiano"))
    assert not result.success
    assert result.error_details.type == ErrorType.UNKNOWN


def test_factory_crash_never_escapes():
    def broken():
        raise ValueError("boom")

    runner = AttemptRunner({"instagram": broken}, _settings(), sleep=lambda s: None)
    result = runner.run(CRISTIANO)
    assert not result.success
    assert result.error_details.type == ErrorType.UNKNOWN


def test_close_failure_does_not_fail_attempt():
    extractor = MagicMock()
    extractor.extract.return_value = CRISTIANO_PAYLOAD
    extractor.close.side_effect = RuntimeError("browser already gone")

    runner = AttemptRunner({"instagram": lambda: extractor}, _settings(), sleep=lambda s: None)
    result = runner.run(CRISTIANO, CRISTIANO_EXPECTED)

    assert result.success
    extractor.close.assert_called_once()


def test_extractor_session_closes_on_error():
    extractor = MagicMock()
    with pytest.raises(KeyError):
        with extractor_session(lambda: extractor):
            raise KeyError("x")
    extractor.close.assert_called_once()


# ── Result Bounds ────────────────────────────────────────────────────


@pytest.mark.parametrize(
    "step",
    [
        CRISTIANO_PAYLOAD,
        dict(CRISTIANO_PAYLOAD, username="someone_else", followerCount=1),
        RuntimeError("429"),
        ValueError("???"),
    ],
)
def test_scores_stay_in_bounds(step):
    runner, _, _ = _runner([step])
    result = runner.run(CRISTIANO, CRISTIANO_EXPECTED)
    for score in (result.accuracy_score, result.completeness_score, result.integrity_score or 0):
        assert 0 <= score <= 100
    assert result.retry_count <= 3

"""Extraction attempt runner: timeout, classified retry with backoff, scoring.

One call to `AttemptRunner.run` drives a single (subject, expected) test to a
finalized `AttemptResult`. Nothing raised by an extractor escapes it.
"""

import logging
import random
import threading
import time
from collections.abc import Callable, Iterator, Mapping
from concurrent.futures import Future
from concurrent.futures import TimeoutError as FuturesTimeoutError
from contextlib import contextmanager
from datetime import datetime, timezone
from typing import Any, Optional, Protocol

from reliability.checks.errors import classify_error
from reliability.checks.integrity import SignatureRegistry, validate_integrity
from reliability.checks.models import (
    AttemptResult,
    ErrorDetails,
    ErrorType,
    ExtractionOutcome,
    PayloadSchemaError,
    ProfilePayload,
    Subject,
    parse_payload,
)
from reliability.checks.scoring import (
    calculate_accuracy,
    calculate_completeness,
    calculate_field_completeness,
)
from reliability.core.matrix import ExpectedProfile
from reliability.core.settings import ReliabilitySettings

logger = logging.getLogger(__name__)


# ── Extractor Contract ───────────────────────────────────────────────


class PlatformExtractor(Protocol):
    """One platform's extraction capability.

    May also define `close()` (session teardown) and `cancel()` (best-effort
    abort after a timeout).
    """

    def extract(self, subject: Subject) -> ExtractionOutcome | Mapping[str, Any]: ...


ExtractorFactory = Callable[[], PlatformExtractor]


class ExtractionFailed(Exception):
    """An extractor reported failure through an ExtractionOutcome."""

    def __init__(self, message: str, code: Optional[str] = None):
        super().__init__(message)
        self.code = code


class ExtractionTimeout(TimeoutError):
    """The extractor did not answer within the configured timeout."""


@contextmanager
def extractor_session(factory: ExtractorFactory) -> Iterator[PlatformExtractor]:
    """Construct a fresh extractor and release it when the attempt ends."""
    extractor = factory()
    try:
        yield extractor
    finally:
        close = getattr(extractor, "close", None)
        if callable(close):
            try:
                close()
            except Exception as exc:
                logger.warning(
                    "Failed to close %s session: %s", type(extractor).__name__, exc
                )


# ── Runner ───────────────────────────────────────────────────────────


class AttemptRunner:
    """Runs single (subject, expected) tests against registered extractors."""

    def __init__(
        self,
        extractors: Mapping[str, ExtractorFactory],
        settings: ReliabilitySettings | None = None,
        registry: SignatureRegistry | None = None,
        sleep: Callable[[float], None] = time.sleep,
        rng: random.Random | None = None,
    ):
        self.extractors = dict(extractors)
        self.settings = settings or ReliabilitySettings()
        self.registry = registry if registry is not None else SignatureRegistry()
        self._sleep = sleep
        self._rng = rng or random.Random()

    def backoff_ms(self, attempt: int) -> float:
        """base * 2^attempt plus uniform jitter."""
        cfg = self.settings.runner
        jitter = self._rng.uniform(0, cfg.backoff_jitter_ms) if cfg.backoff_jitter_ms else 0.0
        return cfg.backoff_base_ms * (2**attempt) + jitter

    def run(self, subject: Subject, expected: ExpectedProfile | None = None) -> AttemptResult:
        """Test one subject. Always returns a result; never raises."""
        expected = expected or ExpectedProfile()
        try:
            return self._run(subject, expected)
        except Exception as exc:
            logger.error("Unexpected failure testing %s: %s", subject.key, exc, exc_info=True)
            details = ErrorDetails(
                type=ErrorType.UNKNOWN,
                message=str(exc) or type(exc).__name__,
                is_retryable=False,
            )
            return self._failure(subject, details, elapsed_ms=0, retry_count=0)

    # ── State Machine ────────────────────────────────────────

    def _run(self, subject: Subject, expected: ExpectedProfile) -> AttemptResult:
        max_retries = self.settings.runner.max_retries
        attempt = 0

        while True:
            started = time.monotonic()
            try:
                payload = self._extract_once(subject)
            except PayloadSchemaError as exc:
                details = ErrorDetails(
                    type=ErrorType.UNKNOWN, message=str(exc), is_retryable=False
                )
                return self._failure(subject, details, _elapsed_ms(started), attempt)
            except Exception as exc:
                elapsed = _elapsed_ms(started)
                details = classify_error(exc)
                if details.is_retryable and attempt < max_retries:
                    delay = self.backoff_ms(attempt)
                    logger.warning(
                        "%s failed with %s (attempt %d/%d) - retrying in %.0fms",
                        subject.key,
                        details.type.value,
                        attempt + 1,
                        max_retries + 1,
                        delay,
                    )
                    self._sleep(delay / 1000)
                    attempt += 1
                    continue
                logger.info(
                    "%s failed with %s after %d attempt(s): %s",
                    subject.key,
                    details.type.value,
                    attempt + 1,
                    details.message,
                )
                return self._failure(subject, details, elapsed, attempt)

            return self._success(subject, expected, payload, _elapsed_ms(started), attempt)

    def _extract_once(self, subject: Subject) -> ProfilePayload:
        factory = self.extractors.get(subject.platform)
        if factory is None:
            raise LookupError(f"No extractor registered for platform: {subject.platform}")

        with extractor_session(factory) as extractor:
            raw = self._call_with_timeout(extractor, subject)

        if isinstance(raw, ExtractionOutcome):
            if not raw.success:
                raise ExtractionFailed(
                    raw.error or "Extractor reported failure", code=raw.error_code
                )
            raw = raw.payload if raw.payload is not None else {}
        return parse_payload(raw)

    def _call_with_timeout(self, extractor: PlatformExtractor, subject: Subject) -> Any:
        timeout_ms = self.settings.runner.timeout_ms
        future: Future = Future()

        def call() -> None:
            if not future.set_running_or_notify_cancel():
                return
            try:
                future.set_result(extractor.extract(subject))
            except BaseException as exc:
                future.set_exception(exc)

        # Daemon thread: an abandoned call must not hold the process open at exit
        threading.Thread(
            target=call, name=f"extract-{subject.platform}", daemon=True
        ).start()
        try:
            return future.result(timeout=timeout_ms / 1000)
        except FuturesTimeoutError:
            if future.done():
                # The extractor raised its own timeout error
                raise
            _signal_cancel(extractor)
            raise ExtractionTimeout(f"Operation timed out after {timeout_ms}ms") from None

    # ── Finalization ─────────────────────────────────────────

    def _success(
        self,
        subject: Subject,
        expected: ExpectedProfile,
        payload: ProfilePayload,
        elapsed_ms: int,
        retry_count: int,
    ) -> AttemptResult:
        accuracy = calculate_accuracy(payload, expected, self.settings.scoring)

        completeness = None
        if expected.expected_links is not None:
            completeness = calculate_completeness(payload.links, expected.expected_links)
            completeness_score = completeness.completeness_percentage
        else:
            completeness_score = calculate_field_completeness(payload)

        verdict = validate_integrity(
            subject, payload, expected, self.registry, self.settings.integrity
        )
        if not verdict.is_valid:
            logger.warning(
                "%s extracted but failed integrity (%s, confidence %d): %s",
                subject.key,
                verdict.severity.value if verdict.severity else "-",
                verdict.confidence,
                "; ".join(i.description for i in verdict.issues),
            )

        return AttemptResult(
            platform=subject.platform,
            username=subject.username,
            success=True,
            overall_success=verdict.is_valid,
            response_time_ms=elapsed_ms,
            accuracy_score=accuracy.overall_accuracy,
            completeness_score=completeness_score,
            integrity_score=verdict.confidence,
            data_integrity_valid=verdict.is_valid,
            validation_issues=list(verdict.issues),
            accuracy=accuracy,
            completeness=completeness,
            extracted_data=payload.model_dump(mode="json"),
            retry_count=retry_count,
            timestamp=_now(),
        )

    def _failure(
        self,
        subject: Subject,
        details: ErrorDetails,
        elapsed_ms: int,
        retry_count: int,
    ) -> AttemptResult:
        return AttemptResult(
            platform=subject.platform,
            username=subject.username,
            success=False,
            overall_success=False,
            response_time_ms=elapsed_ms,
            accuracy_score=0,
            completeness_score=0,
            error_details=details,
            retry_count=retry_count,
            timestamp=_now(),
        )


# ── Helpers ──────────────────────────────────────────────────────────


def _signal_cancel(extractor: PlatformExtractor) -> None:
    cancel = getattr(extractor, "cancel", None)
    if not callable(cancel):
        return
    try:
        cancel()
    except Exception as exc:
        logger.warning("Cancel signal to %s failed: %s", type(extractor).__name__, exc)


def _elapsed_ms(started: float) -> int:
    return int(round((time.monotonic() - started) * 1000))


def _now() -> datetime:
    return datetime.now(timezone.utc)

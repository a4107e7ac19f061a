"""Data integrity validation: catch wrong-subject and stale/contaminated payloads.

An extractor can report success while returning another subject's data, for
example when a browser session or cache leaks between calls. Four independent
checks look for that:

1. Identity: the payload's own username/platform must match the subject.
2. Content plausibility: bio text must overlap the expected keywords.
3. Numeric plausibility: follower counts must sit near the expected range.
4. Duplicate signatures: within one run, two different subjects must never
   produce the same high-cardinality fingerprint.

Issues are data, never exceptions. Each one lowers confidence by its
severity's penalty.
"""

import hashlib
import logging
import threading
from typing import Optional

from reliability.checks.models import (
    IntegrityIssue,
    IntegrityVerdict,
    IssueKind,
    ProfilePayload,
    Severity,
    Subject,
    highest_severity,
    normalize_identity,
)
from reliability.checks.scoring import keyword_matches
from reliability.core.matrix import ExpectedProfile
from reliability.core.settings import IntegritySettings

logger = logging.getLogger(__name__)


# ── Signature Registry ───────────────────────────────────────────────


class SignatureRegistry:
    """Run-scoped map of payload fingerprint -> first subject that produced it.

    Attempts may run concurrently, so check-and-insert happens under a lock:
    two racing subjects always see each other.
    """

    def __init__(self) -> None:
        self._owners: dict[str, Subject] = {}
        self._lock = threading.Lock()

    def claim(self, fingerprint: str, subject: Subject) -> Optional[Subject]:
        """Register subject for fingerprint; return a conflicting owner, if any."""
        with self._lock:
            owner = self._owners.setdefault(fingerprint, subject)
        if owner.identity != subject.identity:
            return owner
        return None

    def owner_of(self, fingerprint: str) -> Optional[Subject]:
        with self._lock:
            return self._owners.get(fingerprint)

    def __len__(self) -> int:
        with self._lock:
            return len(self._owners)


def payload_fingerprint(payload: ProfilePayload, min_fields: int = 2) -> Optional[str]:
    """SHA-256 over bio, follower count, and link component.

    Returns None when too few components are populated to be distinctive.
    A set of two or more links counts as two components.
    """
    bio = " ".join((payload.bio or "").lower().split())
    count = "" if payload.follower_count is None else str(payload.follower_count)

    link_weight = 0
    if payload.bio_link or payload.external_url:
        link = (payload.bio_link or payload.external_url).strip().lower()
        link_weight = 1
    else:
        urls = sorted({u.strip().lower() for u in payload.link_urls})
        link = "|".join(urls)
        link_weight = 2 if len(urls) >= 2 else len(urls)

    populated = (1 if bio else 0) + (1 if count else 0) + link_weight
    if populated < min_fields:
        return None

    blob = "\x1f".join((bio, count, link)).encode()
    return hashlib.sha256(blob).hexdigest()


# ── Individual Checks ────────────────────────────────────────────────


def _check_identity(subject: Subject, payload: ProfilePayload) -> list[IntegrityIssue]:
    issues = []
    if payload.username and normalize_identity(payload.username) != subject.identity:
        issues.append(
            IntegrityIssue(
                kind=IssueKind.WRONG_USER_DATA,
                field="username",
                expected=subject.username,
                actual=payload.username,
                description=(
                    f"Extractor returned data for '{payload.username}' "
                    f"when requesting '{subject.username}'"
                ),
                severity=Severity.CRITICAL,
            )
        )
    if payload.platform and payload.platform.strip().lower() != subject.platform.lower():
        issues.append(
            IntegrityIssue(
                kind=IssueKind.WRONG_USER_DATA,
                field="platform",
                expected=subject.platform,
                actual=payload.platform,
                description=(
                    f"Platform mismatch: expected '{subject.platform}', "
                    f"got '{payload.platform}'"
                ),
                severity=Severity.CRITICAL,
            )
        )
    return issues


def _check_content(
    subject: Subject,
    payload: ProfilePayload,
    expected: ExpectedProfile,
    settings: IntegritySettings,
) -> list[IntegrityIssue]:
    issues = []
    keywords = expected.bio_keywords
    if keywords and payload.bio:
        matches = keyword_matches(payload.bio, keywords)
        if matches == 0:
            issues.append(
                IntegrityIssue(
                    kind=IssueKind.PATTERN_MISMATCH,
                    field="bio",
                    expected=list(keywords),
                    actual=payload.bio,
                    description=f"Bio contains none of the expected keywords for {subject.username}",
                    severity=Severity.HIGH,
                )
            )
        mismatch_ratio = (len(keywords) - matches) / len(keywords)
        if mismatch_ratio > settings.keyword_mismatch_ratio:
            issues.append(
                IntegrityIssue(
                    kind=IssueKind.WRONG_USER_DATA,
                    field="bio",
                    expected=f"Bio for {subject.username}",
                    actual=payload.bio,
                    description=(
                        f"Bio content doesn't match {subject.username} "
                        "- may be wrong user's data"
                    ),
                    severity=Severity.CRITICAL,
                )
            )

    if expected.expected_links and payload.link_urls:
        joined = " ".join(payload.link_urls).lower()
        if not any(link.lower() in joined for link in expected.expected_links):
            issues.append(
                IntegrityIssue(
                    kind=IssueKind.PATTERN_MISMATCH,
                    field="links",
                    expected=list(expected.expected_links),
                    actual=payload.link_urls,
                    description=(
                        f"No expected links found for {subject.username} "
                        "- may be wrong account data"
                    ),
                    severity=Severity.HIGH,
                )
            )
    return issues


def _check_numeric(
    subject: Subject,
    payload: ProfilePayload,
    expected: ExpectedProfile,
    settings: IntegritySettings,
) -> list[IntegrityIssue]:
    count = payload.follower_count
    if count is None or expected.min_followers is None:
        return []

    low = expected.min_followers
    high = expected.max_followers or low * settings.default_max_growth
    issues = []

    if count < low * settings.min_count_ratio:
        issues.append(
            IntegrityIssue(
                kind=IssueKind.IMPOSSIBLE_VALUE,
                field="follower_count",
                expected=f"{low:,}+",
                actual=f"{count:,}",
                description=f"Follower count too low for {subject.username} - may be wrong account",
                severity=Severity.HIGH,
            )
        )
    if count > high * settings.max_count_ratio:
        issues.append(
            IntegrityIssue(
                kind=IssueKind.IMPOSSIBLE_VALUE,
                field="follower_count",
                expected=f"<{int(high):,}",
                actual=f"{count:,}",
                description=f"Follower count unrealistically high for {subject.username}",
                severity=Severity.MEDIUM,
            )
        )
    return issues


def _check_signature(
    subject: Subject,
    payload: ProfilePayload,
    registry: Optional[SignatureRegistry],
    settings: IntegritySettings,
) -> list[IntegrityIssue]:
    if registry is None:
        return []
    fingerprint = payload_fingerprint(payload, settings.min_fingerprint_fields)
    if fingerprint is None:
        return []

    owner = registry.claim(fingerprint, subject)
    if owner is None:
        return []

    logger.warning(
        "Duplicate payload signature: %s returned the same data as %s",
        subject.key,
        owner.key,
    )
    return [
        IntegrityIssue(
            kind=IssueKind.STALE_DATA,
            field="fingerprint",
            expected=f"unique data for {subject.key}",
            actual=f"identical to {owner.key}",
            description="Extractor appears to be returning cached/stale data from another subject",
            severity=Severity.CRITICAL,
        )
    ]


# ── Public API ───────────────────────────────────────────────────────


def validate_integrity(
    subject: Subject,
    payload: ProfilePayload,
    expected: ExpectedProfile | None = None,
    registry: SignatureRegistry | None = None,
    settings: IntegritySettings | None = None,
) -> IntegrityVerdict:
    """Run all integrity checks and fold them into a verdict."""
    settings = settings or IntegritySettings()
    expected = expected or ExpectedProfile()

    issues: list[IntegrityIssue] = []
    issues += _check_identity(subject, payload)
    issues += _check_content(subject, payload, expected, settings)
    issues += _check_numeric(subject, payload, expected, settings)
    issues += _check_signature(subject, payload, registry, settings)

    penalty = sum(settings.penalties[i.severity.value] for i in issues)

    return IntegrityVerdict(
        is_valid=not issues,
        confidence=max(0, 100 - penalty),
        issues=issues,
        severity=highest_severity(i.severity for i in issues),
    )

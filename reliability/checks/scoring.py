"""Accuracy and completeness scoring against expected profiles."""

import logging
import math
from collections.abc import Mapping, Sequence
from typing import Any, Optional

import tldextract

from reliability.checks.models import (
    AccuracyMetrics,
    CompletenessMetrics,
    LinkItem,
    ProfilePayload,
)
from reliability.core.matrix import ExpectedProfile
from reliability.core.settings import ScoringSettings

logger = logging.getLogger(__name__)

# Bundled public-suffix snapshot only; scoring must not touch the network.
_EXTRACT = tldextract.TLDExtract(suffix_list_urls=())

_REQUIRED_FIELDS = ("username", "platform")
_OPTIONAL_FIELDS = ("bio", "follower_count", "bio_link")


# ── Accuracy ─────────────────────────────────────────────────────────


def calculate_accuracy(
    actual: Optional[ProfilePayload],
    expected: Optional[ExpectedProfile],
    settings: ScoringSettings | None = None,
) -> AccuracyMetrics:
    """Score extracted data against each expectation dimension that applies.

    A dimension is only checked when it is both expected and derivable from
    the payload. No checked dimensions means an accuracy of 0.
    """
    settings = settings or ScoringSettings()
    metrics = AccuracyMetrics()
    if actual is None or expected is None:
        return metrics

    checked = 0
    passed = 0

    # Follower count: range with partial credit by relative variance
    if expected.min_followers is not None and actual.follower_count is not None:
        metrics.checked_fields.append("follower_count")
        checked += 1
        score, ok = _follower_score(actual.follower_count, expected, settings)
        metrics.follower_accuracy = score
        passed += ok

    # Bio keywords
    if expected.bio_keywords and actual.bio:
        metrics.checked_fields.append("bio_keywords")
        checked += 1
        matches = keyword_matches(actual.bio, expected.bio_keywords)
        metrics.bio_accuracy = matches / len(expected.bio_keywords) * 100
        passed += metrics.bio_accuracy >= settings.keyword_pass_ratio * 100

    # Verification badge
    if expected.is_verified is not None and actual.is_verified is not None:
        metrics.checked_fields.append("is_verified")
        checked += 1
        if actual.is_verified == expected.is_verified:
            metrics.verification_accuracy = 100
            passed += 1

    # Bio link: presence, substring, pattern
    if (
        expected.has_bio_link is not None
        or expected.bio_link_contains
        or expected.link_pattern
    ):
        metrics.checked_fields.append("bio_link")
        checked += 1
        metrics.link_accuracy = _link_score(actual, expected)
        passed += metrics.link_accuracy >= settings.link_pass_score

    metrics.overall_accuracy = round_half_up(passed / checked * 100) if checked else 0
    return metrics


def _follower_score(
    count: int, expected: ExpectedProfile, settings: ScoringSettings
) -> tuple[float, bool]:
    low = expected.min_followers
    high = expected.max_followers or low * (1 + settings.follower_default_growth)
    if low <= count <= high:
        return 100.0, True
    # A zero bound has no relative variance; score against the other one
    terms = [abs(count - bound) / bound for bound in (low, high) if bound]
    if not terms:
        return 0.0, False
    variance = min(terms)
    return max(0.0, 100 - variance * 100), variance <= settings.follower_pass_variance


def _link_score(actual: ProfilePayload, expected: ExpectedProfile) -> float:
    link = actual.bio_link or actual.external_url or ""
    earned = 0
    possible = 0

    if expected.has_bio_link is not None:
        possible += 40
        if bool(link) == expected.has_bio_link:
            earned += 40

    if expected.bio_link_contains:
        possible += 30
        if link and expected.bio_link_contains.lower() in link.lower():
            earned += 30

    regex = expected.link_regex()
    if regex is not None:
        possible += 30
        if link and regex.search(link):
            earned += 30

    return earned / possible * 100 if possible else 0.0


def keyword_matches(text: str, keywords: Sequence[str]) -> int:
    """Count keywords appearing (case-insensitively) in text."""
    lowered = text.lower()
    return sum(1 for kw in keywords if kw.lower() in lowered)


# ── Completeness ─────────────────────────────────────────────────────


def calculate_completeness(
    actual_links: Optional[Sequence[Any]],
    expected_links: Optional[Sequence[str]],
) -> CompletenessMetrics:
    """How many expected links were found (exact substring, then same domain)."""
    urls = [_link_url(link).lower() for link in (actual_links or [])]
    urls = [u for u in urls if u]

    if not expected_links:
        return CompletenessMetrics(
            expected_count=0,
            found_count=len(urls),
            completeness_percentage=100 if urls else 0,
        )

    actual_domains = {registrable_domain(u) for u in urls}
    exact = 0
    by_domain = 0
    missing: list[str] = []

    for link in expected_links:
        lowered = link.lower()
        if any(lowered in url for url in urls):
            exact += 1
        elif registrable_domain(lowered) in actual_domains:
            by_domain += 1
        else:
            missing.append(link)

    return CompletenessMetrics(
        expected_count=len(expected_links),
        found_count=len(urls),
        exact_matches=exact,
        domain_matches=by_domain,
        completeness_percentage=round_half_up((exact + by_domain) / len(expected_links) * 100),
        missing_links=missing,
    )


def calculate_field_completeness(payload: Optional[ProfilePayload]) -> int:
    """Profile-field completeness: required fields weigh 70%, optional 30%."""
    if payload is None:
        return 0
    found_required = sum(1 for f in _REQUIRED_FIELDS if getattr(payload, f))
    found_optional = sum(1 for f in _OPTIONAL_FIELDS if getattr(payload, f))
    score = (
        found_required / len(_REQUIRED_FIELDS) * 70
        + found_optional / len(_OPTIONAL_FIELDS) * 30
    )
    return round_half_up(score)


# ── Helpers ──────────────────────────────────────────────────────────


def registrable_domain(url: str) -> str:
    """Registrable domain of a URL (e.g. 'shop.example.co.uk' -> 'example.co.uk')."""
    ext = _EXTRACT(url.strip().lower())
    if ext.domain and ext.suffix:
        return f"{ext.domain}.{ext.suffix}"
    return ext.domain or url.strip().lower()


def _link_url(link: Any) -> str:
    if isinstance(link, str):
        return link
    if isinstance(link, LinkItem):
        return link.url
    if isinstance(link, Mapping):
        return link.get("url") or link.get("originalUrl") or ""
    return ""


def round_half_up(value: float) -> int:
    return int(math.floor(value + 0.5))

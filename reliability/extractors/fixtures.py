"""Deterministic fixture extractors for offline runs and tests.

Known users get their own canned profile. Unknown users get Cristiano's
profile back, which mimics the shared-session caching bug and should always
be caught by the integrity checks.
"""

import copy
import time
from collections.abc import Callable, Mapping
from typing import Any, Optional

from reliability.checks.models import Subject

FIXTURES: dict[str, dict[str, dict[str, Any]]] = {
    "cristiano": {
        "instagram": {
            "followerCount": 615_000_000,
            "bio": "Portuguese footballer, CR7, Manchester United",
            "isVerified": True,
            "bioLink": "https://goat.com/cristiano",
        },
    },
    "therock": {
        "instagram": {
            "followerCount": 395_000_000,
            "bio": "Actor, producer, tequila, Project Rock",
            "isVerified": True,
            "bioLink": "https://linktr.ee/therock",
        },
        "linktree": {
            "links": [
                {"title": "Teremana Tequila", "url": "https://teremana.com"},
                {"title": "Project Rock", "url": "https://projectrock.com"},
                {"title": "ZOA Energy", "url": "https://zoaenergy.com"},
                {"title": "Seven Bucks", "url": "https://sevenbucksprod.com"},
            ]
        },
    },
    "mrbeast": {
        "instagram": {
            "followerCount": 60_000_000,
            "bio": "YouTube creator, philanthropy, chocolate",
            "isVerified": True,
            "bioLink": "https://linktr.ee/mrbeast",
        },
    },
}

# Served for users without a fixture: someone else's data.
CONTAMINATED: dict[str, dict[str, Any]] = {
    "instagram": {
        "followerCount": 600_000_000,
        "bio": "Portuguese footballer, CR7",
        "isVerified": True,
        "bioLink": "https://goat.com/cristiano",
    },
    "linktree": {
        "links": [
            {"title": "Teremana Tequila", "url": "https://teremana.com"},
            {"title": "Project Rock", "url": "https://projectrock.com"},
        ]
    },
}


class FixtureExtractor:
    """Serves canned payloads for one platform, optionally with latency."""

    def __init__(
        self,
        platform: str,
        fixtures: Mapping[str, Mapping[str, Mapping[str, Any]]] | None = None,
        fallback: Optional[Mapping[str, Any]] = None,
        latency_seconds: float = 0.0,
    ):
        self.platform = platform
        self.fixtures = fixtures if fixtures is not None else FIXTURES
        self.fallback = fallback if fallback is not None else CONTAMINATED.get(platform)
        self.latency_seconds = latency_seconds
        self.closed = False

    def extract(self, subject: Subject) -> dict[str, Any]:
        if self.latency_seconds:
            time.sleep(self.latency_seconds)

        profile = self.fixtures.get(subject.username.lower(), {}).get(self.platform)
        if profile is None:
            if self.fallback is None:
                raise LookupError(f"User not found: {subject.username}")
            profile = self.fallback

        payload = copy.deepcopy(dict(profile))
        payload.setdefault("username", subject.username)
        payload.setdefault("platform", self.platform)
        return payload

    def close(self) -> None:
        self.closed = True


def fixture_extractors(
    platforms: tuple[str, ...] = ("instagram", "linktree"),
    latency_seconds: float = 0.0,
) -> dict[str, Callable[[], FixtureExtractor]]:
    """Factories producing a fresh FixtureExtractor per attempt."""
    return {
        p: (lambda p=p: FixtureExtractor(p, latency_seconds=latency_seconds))
        for p in platforms
    }

"""Test matrix: expected profiles per (platform, username), YAML loader, selection."""

import hashlib
import json
import re
from collections.abc import Collection
from pathlib import Path
from typing import Literal, Optional

import yaml
from pydantic import AliasChoices, BaseModel, ConfigDict, Field, field_validator

from reliability.checks.models import Subject, normalize_identity


# ── Expected Profile ─────────────────────────────────────────────────


class ExpectedProfile(BaseModel):
    """Read-only oracle for one subject on one platform."""

    model_config = ConfigDict(frozen=True)

    exists: bool = True
    should_not_exist: bool = False
    is_private: Optional[bool] = None
    is_verified: Optional[bool] = None
    min_followers: Optional[int] = Field(
        default=None, ge=0, validation_alias=AliasChoices("min_followers", "min_subscribers")
    )
    max_followers: Optional[int] = Field(
        default=None, ge=0, validation_alias=AliasChoices("max_followers", "max_subscribers")
    )
    bio_keywords: list[str] = Field(default_factory=list)
    has_bio_link: Optional[bool] = None
    bio_link_contains: Optional[str] = None
    link_pattern: Optional[str] = Field(
        default=None, description="Case-insensitive regex the bio link should match"
    )
    expected_links: Optional[list[str]] = None
    min_links: Optional[int] = Field(default=None, ge=0)
    max_links: Optional[int] = Field(default=None, ge=0)

    @field_validator("link_pattern")
    @classmethod
    def pattern_compiles(cls, v: Optional[str]) -> Optional[str]:
        if v is not None:
            try:
                re.compile(v)
            except re.error as exc:
                raise ValueError(f"Invalid link_pattern {v!r}: {exc}") from exc
        return v

    def link_regex(self) -> Optional[re.Pattern]:
        return re.compile(self.link_pattern, re.IGNORECASE) if self.link_pattern else None


# ── Accounts ─────────────────────────────────────────────────────────


class TestAccount(BaseModel):
    """A creator with expected profiles on one or more platforms."""

    __test__ = False

    username: str
    reason: str = ""
    category: Literal[
        "mega_creator", "content_creator", "business", "small_creator", "edge_case"
    ]
    quick: bool = False
    platforms: dict[str, ExpectedProfile] = Field(default_factory=dict)


class MatrixEntry(BaseModel):
    """One planned test: a subject and its expected profile."""

    model_config = ConfigDict(frozen=True)

    subject: Subject
    expected: ExpectedProfile


class TestMatrix(BaseModel):
    """Top-level expected-profile store."""

    __test__ = False

    version: str
    accounts: list[TestAccount]

    @field_validator("accounts")
    @classmethod
    def unique_usernames(cls, v: list[TestAccount]) -> list[TestAccount]:
        seen: set[str] = set()
        for account in v:
            key = normalize_identity(account.username)
            if key in seen:
                raise ValueError(f"Duplicate account in test matrix: {account.username}")
            seen.add(key)
        return v

    # ── Selection ────────────────────────────────────────────

    def entries(
        self,
        mode: Literal["quick", "full"] = "full",
        platform: str | None = None,
        username: str | None = None,
        available: Collection[str] | None = None,
    ) -> list[MatrixEntry]:
        """Select the (subject, expected) pairs to run.

        A single platform/username pair not present in the matrix is still
        returned, with an empty expectation.
        """
        if mode not in ("quick", "full"):
            raise ValueError(f"Invalid mode: {mode} (valid: quick, full)")

        if platform and username:
            expected = self.expected_for(platform, username) or ExpectedProfile()
            return [MatrixEntry(subject=Subject(platform=platform, username=username), expected=expected)]

        accounts = [a for a in self.accounts if mode == "full" or a.quick]
        if username:
            accounts = [a for a in accounts if normalize_identity(a.username) == normalize_identity(username)]

        selected: list[MatrixEntry] = []
        for account in accounts:
            for name, expected in account.platforms.items():
                if platform and name != platform:
                    continue
                if available is not None and name not in available:
                    continue
                if not expected.exists:
                    continue
                selected.append(
                    MatrixEntry(
                        subject=Subject(platform=name, username=account.username),
                        expected=expected,
                    )
                )
        return selected

    def expected_for(self, platform: str, username: str) -> ExpectedProfile | None:
        key = normalize_identity(username)
        for account in self.accounts:
            if normalize_identity(account.username) == key:
                return account.platforms.get(platform)
        return None

    def accounts_by_category(self, category: str) -> list[TestAccount]:
        return [a for a in self.accounts if a.category == category]

    def matrix_hash(self) -> str:
        """SHA-256 of the matrix contents (canonical JSON)."""
        blob = json.dumps(self.model_dump(), sort_keys=True, default=str).encode()
        return hashlib.sha256(blob).hexdigest()


def load_test_matrix(path: str | Path) -> TestMatrix:
    """Load a YAML test matrix from disk and return a validated model."""
    path = Path(path)
    with open(path) as f:
        raw = yaml.safe_load(f)
    return TestMatrix.model_validate(raw)

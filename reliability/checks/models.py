"""Shared data models for extraction attempts, scoring, and integrity checks."""

from collections.abc import Iterable, Mapping
from datetime import datetime
from enum import Enum
from typing import Any, Optional

from pydantic import (
    AliasChoices,
    BaseModel,
    ConfigDict,
    Field,
    ValidationError,
    field_validator,
)


# ── Enumerations ─────────────────────────────────────────────────────


class Severity(str, Enum):
    CRITICAL = "CRITICAL"
    HIGH = "HIGH"
    MEDIUM = "MEDIUM"
    LOW = "LOW"

    @property
    def rank(self) -> int:
        return _SEVERITY_RANK[self]


_SEVERITY_RANK = {
    Severity.LOW: 1,
    Severity.MEDIUM: 2,
    Severity.HIGH: 3,
    Severity.CRITICAL: 4,
}


def highest_severity(severities: Iterable[Severity]) -> Optional[Severity]:
    """Most severe entry, or None for an empty iterable."""
    return max(severities, key=lambda s: s.rank, default=None)


class ErrorType(str, Enum):
    TIMEOUT = "TIMEOUT"
    SELECTOR_NOT_FOUND = "SELECTOR_NOT_FOUND"
    RATE_LIMITED = "RATE_LIMITED"
    AUTH_REQUIRED = "AUTH_REQUIRED"
    NOT_FOUND = "NOT_FOUND"
    NETWORK_ERROR = "NETWORK_ERROR"
    CAPTCHA_REQUIRED = "CAPTCHA_REQUIRED"
    UNKNOWN = "UNKNOWN"


class IssueKind(str, Enum):
    WRONG_USER_DATA = "WRONG_USER_DATA"
    STALE_DATA = "STALE_DATA"
    IMPOSSIBLE_VALUE = "IMPOSSIBLE_VALUE"
    PATTERN_MISMATCH = "PATTERN_MISMATCH"


# ── Subject ──────────────────────────────────────────────────────────


class Subject(BaseModel):
    """A (platform, identity) pair under test."""

    model_config = ConfigDict(frozen=True)

    platform: str
    username: str

    @property
    def identity(self) -> str:
        return normalize_identity(self.username)

    @property
    def key(self) -> str:
        return f"{self.platform}/{self.username}"


def normalize_identity(value: str) -> str:
    """Lowercase and drop a leading '@' handle marker."""
    return value.strip().lstrip("@").lower()


# ── Extractor Payload ────────────────────────────────────────────────


class PayloadSchemaError(ValueError):
    """Raised when an extractor payload fails boundary validation."""


class LinkItem(BaseModel):
    model_config = ConfigDict(extra="allow")

    url: str = Field(validation_alias=AliasChoices("url", "originalUrl", "href"))
    title: Optional[str] = None


class ProfilePayload(BaseModel):
    """Schema-checked view over an extractor's key-value payload."""

    model_config = ConfigDict(extra="allow")

    username: Optional[str] = None
    platform: Optional[str] = None
    bio: Optional[str] = None
    follower_count: Optional[int] = Field(
        default=None,
        ge=0,
        validation_alias=AliasChoices("follower_count", "followerCount", "subscriberCount"),
    )
    is_verified: Optional[bool] = Field(
        default=None, validation_alias=AliasChoices("is_verified", "isVerified")
    )
    bio_link: Optional[str] = Field(
        default=None, validation_alias=AliasChoices("bio_link", "bioLink")
    )
    external_url: Optional[str] = Field(
        default=None, validation_alias=AliasChoices("external_url", "externalUrl")
    )
    links: list[LinkItem] = Field(default_factory=list)

    @field_validator("links", mode="before")
    @classmethod
    def coerce_link_strings(cls, v: Any) -> Any:
        if v is None:
            return []
        if isinstance(v, (list, tuple)):
            return [{"url": item} if isinstance(item, str) else item for item in v]
        return v

    @property
    def primary_link(self) -> Optional[str]:
        if self.bio_link:
            return self.bio_link
        if self.external_url:
            return self.external_url
        if self.links:
            return self.links[0].url
        return None

    @property
    def link_urls(self) -> list[str]:
        return [link.url for link in self.links if link.url]


def parse_payload(raw: Any) -> ProfilePayload:
    """Validate a raw extractor payload at the boundary."""
    if isinstance(raw, ProfilePayload):
        return raw
    if isinstance(raw, BaseModel):
        raw = raw.model_dump()
    if not isinstance(raw, Mapping):
        raise PayloadSchemaError(
            f"Payload schema invalid: expected a mapping, got {type(raw).__name__}"
        )
    try:
        return ProfilePayload.model_validate(dict(raw))
    except ValidationError as exc:
        fields = ", ".join(".".join(str(p) for p in e["loc"]) for e in exc.errors())
        raise PayloadSchemaError(f"Payload schema invalid for field(s): {fields}") from exc


class ExtractionOutcome(BaseModel):
    """Explicit result shape an extractor may return instead of raising."""

    success: bool
    payload: Optional[dict] = None
    error: Optional[str] = None
    error_code: Optional[str] = None


# ── Errors ───────────────────────────────────────────────────────────


class ErrorDetails(BaseModel):
    type: ErrorType
    message: str
    code: Optional[str] = None
    is_retryable: bool


# ── Scores ───────────────────────────────────────────────────────────


class AccuracyMetrics(BaseModel):
    follower_accuracy: float = 0
    bio_accuracy: float = 0
    verification_accuracy: float = 0
    link_accuracy: float = 0
    overall_accuracy: int = Field(default=0, ge=0, le=100)
    checked_fields: list[str] = Field(default_factory=list)


class CompletenessMetrics(BaseModel):
    expected_count: int
    found_count: int
    exact_matches: int = 0
    domain_matches: int = 0
    completeness_percentage: int = Field(ge=0, le=100)
    missing_links: list[str] = Field(default_factory=list)


# ── Integrity ────────────────────────────────────────────────────────


class IntegrityIssue(BaseModel):
    kind: IssueKind
    field: str
    expected: Any = None
    actual: Any = None
    description: str
    severity: Severity


class IntegrityVerdict(BaseModel):
    """Derived judgment on whether a payload belongs to the requested subject."""

    model_config = ConfigDict(frozen=True)

    is_valid: bool
    confidence: int = Field(ge=0, le=100)
    issues: list[IntegrityIssue] = Field(default_factory=list)
    severity: Optional[Severity] = None

    @property
    def has_critical(self) -> bool:
        return any(i.severity is Severity.CRITICAL for i in self.issues)


# ── Attempt Result ───────────────────────────────────────────────────


class AttemptResult(BaseModel):
    """Finalized record of one (subject, platform) test including retries.

    `success` is the extractor's own outcome. `overall_success` additionally
    requires the payload to pass integrity validation.
    """

    model_config = ConfigDict(frozen=True)

    platform: str
    username: str
    success: bool
    overall_success: bool
    response_time_ms: int = Field(ge=0)
    accuracy_score: int = Field(ge=0, le=100)
    completeness_score: int = Field(ge=0, le=100)
    integrity_score: Optional[int] = Field(default=None, ge=0, le=100)
    data_integrity_valid: Optional[bool] = None
    validation_issues: list[IntegrityIssue] = Field(default_factory=list)
    accuracy: Optional[AccuracyMetrics] = None
    completeness: Optional[CompletenessMetrics] = None
    error_details: Optional[ErrorDetails] = None
    extracted_data: Optional[dict] = None
    retry_count: int = Field(ge=0)
    timestamp: datetime

    @property
    def subject(self) -> Subject:
        return Subject(platform=self.platform, username=self.username)

    @property
    def attempts(self) -> int:
        return self.retry_count + 1

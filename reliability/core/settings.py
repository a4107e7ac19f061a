"""Reliability settings: tunable thresholds, YAML loader, and settings hashing."""

import hashlib
import json
from pathlib import Path
from typing import Optional

import yaml
from pydantic import BaseModel, Field, field_validator, model_validator


# ── Runner ───────────────────────────────────────────────────────────


class RunnerSettings(BaseModel):
    """Timeout, retry, and pacing for extraction attempts."""

    timeout_ms: int = Field(default=10_000, gt=0)
    max_retries: int = Field(default=3, ge=0)
    backoff_base_ms: int = Field(default=1_000, ge=0)
    backoff_jitter_ms: int = Field(default=250, ge=0)
    inter_attempt_delay_ms: int = Field(default=1_000, ge=0)
    workers: int = Field(default=1, ge=1)
    max_run_seconds: Optional[float] = Field(
        default=None, gt=0, description="Wall-clock budget for one run; None = unbounded"
    )


# ── Scoring ──────────────────────────────────────────────────────────


class ScoringSettings(BaseModel):
    """Pass rules for the accuracy dimensions."""

    keyword_pass_ratio: float = Field(default=0.8, gt=0, le=1)
    follower_default_growth: float = Field(default=0.1, ge=0)
    follower_pass_variance: float = Field(default=0.2, ge=0)
    link_pass_score: int = Field(default=70, ge=0, le=100)


# ── Integrity ────────────────────────────────────────────────────────


class IntegritySettings(BaseModel):
    """Confidence penalties and plausibility bounds.

    Penalties were never calibrated against labelled ground truth, so they
    are exposed here rather than baked into the validator.
    """

    penalties: dict[str, int] = Field(
        default_factory=lambda: {"CRITICAL": 50, "HIGH": 30, "MEDIUM": 15, "LOW": 5}
    )
    keyword_mismatch_ratio: float = Field(default=0.8, gt=0, le=1)
    min_count_ratio: float = Field(default=0.5, gt=0)
    max_count_ratio: float = Field(default=3.0, gt=0)
    default_max_growth: float = Field(default=2.0, gt=0)
    min_fingerprint_fields: int = Field(default=2, ge=1, le=3)

    @field_validator("penalties")
    @classmethod
    def all_severities_present(cls, v: dict[str, int]) -> dict[str, int]:
        v = {k.upper(): n for k, n in v.items()}
        missing = {"CRITICAL", "HIGH", "MEDIUM", "LOW"} - set(v)
        if missing:
            raise ValueError(f"Missing penalties for: {', '.join(sorted(missing))}")
        if any(n < 0 for n in v.values()):
            raise ValueError("Penalties must be non-negative")
        return v


# ── Health ───────────────────────────────────────────────────────────


class HealthWeights(BaseModel):
    success_rate: float = 0.4
    accuracy: float = 0.3
    completeness: float = 0.2
    speed: float = 0.1

    @model_validator(mode="after")
    def weights_sum_to_one(self) -> "HealthWeights":
        total = self.success_rate + self.accuracy + self.completeness + self.speed
        if abs(total - 1.0) > 1e-6:
            raise ValueError(f"Health weights must sum to 1.0 (got {total:.4f})")
        return self


class StatusTiers(BaseModel):
    excellent: int = 90
    healthy: int = 75
    warning: int = 50

    @model_validator(mode="after")
    def strictly_descending(self) -> "StatusTiers":
        if not (self.excellent > self.healthy > self.warning):
            raise ValueError("Status tiers must satisfy excellent > healthy > warning")
        return self


class HealthSettings(BaseModel):
    weights: HealthWeights = Field(default_factory=HealthWeights)
    response_time_scale_ms: float = Field(default=100.0, gt=0)
    tiers: StatusTiers = Field(default_factory=StatusTiers)


# ── Trends ───────────────────────────────────────────────────────────


class TrendSettings(BaseModel):
    """Degradation thresholds (percentage points / milliseconds)."""

    window_days: int = Field(default=7, ge=1)
    success_drop: float = 10.0
    success_drop_critical: float = 20.0
    accuracy_drop: float = 10.0
    accuracy_drop_high: float = 15.0
    response_time_increase_ms: float = 5_000.0
    improvement: float = 10.0
    direction_points: int = Field(default=3, ge=2)
    direction_threshold: float = 5.0


# ── History ──────────────────────────────────────────────────────────


class HistorySettings(BaseModel):
    retention_days: int = Field(default=30, ge=1)


# ── Top-level ────────────────────────────────────────────────────────


class ReliabilitySettings(BaseModel):
    """All tunable parameters for one reliability run."""

    runner: RunnerSettings = Field(default_factory=RunnerSettings)
    scoring: ScoringSettings = Field(default_factory=ScoringSettings)
    integrity: IntegritySettings = Field(default_factory=IntegritySettings)
    health: HealthSettings = Field(default_factory=HealthSettings)
    trends: TrendSettings = Field(default_factory=TrendSettings)
    history: HistorySettings = Field(default_factory=HistorySettings)

    def settings_hash(self) -> str:
        """SHA-256 of the full settings tree (canonical JSON)."""
        blob = json.dumps(self.model_dump(), sort_keys=True, default=str).encode()
        return hashlib.sha256(blob).hexdigest()


def load_settings(path: str | Path | None = None) -> ReliabilitySettings:
    """Load settings from YAML; a missing path or empty file yields defaults."""
    if path is None:
        return ReliabilitySettings()
    path = Path(path)
    with open(path) as f:
        raw = yaml.safe_load(f)
    return ReliabilitySettings.model_validate(raw or {})

"""Aggregate models: platform health, run summaries, alerts, recommendations."""

from datetime import datetime
from typing import Literal, Optional

from pydantic import BaseModel, Field

from reliability.checks.models import Severity

StatusTier = Literal["excellent", "healthy", "warning", "critical"]
TrendDirection = Literal["improving", "stable", "degrading", "unknown"]


class PlatformHealth(BaseModel):
    """Aggregate over one run's attempt results for a single platform."""

    platform: str
    timestamp: datetime
    total_tests: int = Field(ge=0)
    success_rate: float = Field(ge=0, le=100)
    avg_accuracy: float = Field(ge=0, le=100)
    avg_completeness: float = Field(ge=0, le=100)
    avg_response_time: int = Field(ge=0, description="Milliseconds")
    error_histogram: dict[str, int] = Field(default_factory=dict)
    integrity_failures: int = 0
    issue_histogram: dict[str, int] = Field(default_factory=dict)
    health_score: int = Field(ge=0, le=100)
    status: StatusTier
    trend: TrendDirection = "unknown"
    partial: bool = False


class RunSummary(BaseModel):
    """Totals across every platform in one run."""

    total_tests: int
    successful_tests: int
    failed_tests: int
    success_rate: float
    avg_response_time: int
    avg_accuracy: float
    error_breakdown: dict[str, int] = Field(default_factory=dict)
    platforms: dict[str, PlatformHealth] = Field(default_factory=dict)
    partial: bool = False
    timestamp: datetime


class Alert(BaseModel):
    type: Literal["success_rate_drop", "accuracy_drop", "response_time_increase", "new_errors"]
    severity: Severity
    message: str
    current_value: float
    previous_value: float
    change_percentage: float


class BaselineComparison(BaseModel):
    """Deltas and alerts between a baseline and the current snapshot."""

    platform: str
    baseline_at: datetime
    current_at: datetime
    success_rate_delta: float
    accuracy_delta: float
    response_time_delta: int
    new_error_types: list[str] = Field(default_factory=list)
    degradation_detected: bool
    improvement_detected: bool
    alerts: list[Alert] = Field(default_factory=list)
    overall_change: Literal["improved", "stable", "degraded"]
    snapshots_compared: int = 2

    @property
    def worst_severity(self) -> Optional[Severity]:
        return max((a.severity for a in self.alerts), key=lambda s: s.rank, default=None)


class Recommendation(BaseModel):
    platform: str
    severity: Severity
    action: str
    reason: str
    priority: int = Field(ge=1)

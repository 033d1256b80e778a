"""Baseline, drift and monitoring models."""

from __future__ import annotations

from dataclasses import asdict, dataclass, field
from datetime import datetime
from enum import Enum
from typing import Any


class FindingStatus(str, Enum):
    """Assessed status of one control."""

    COMPLIANT = "compliant"
    PARTIAL = "partial"
    NON_COMPLIANT = "non_compliant"
    NOT_APPLICABLE = "not_applicable"


_STATUS_SCORES = {
    FindingStatus.COMPLIANT.value: 100,
    FindingStatus.NOT_APPLICABLE.value: 100,
    FindingStatus.PARTIAL.value: 50,
}


def score_for_status(status: str) -> int:
    """Score a finding status; unknown statuses score 0."""
    return _STATUS_SCORES.get(status, 0)


class DriftType(str, Enum):
    IMPROVED = "improved"
    DEGRADED = "degraded"
    UNCHANGED = "unchanged"


class DriftSeverity(str, Enum):
    CRITICAL = "critical"
    HIGH = "high"
    MEDIUM = "medium"
    LOW = "low"


@dataclass(frozen=True)
class ServiceContext:
    """Who is acting and for which tenant."""

    tenant_id: str
    user_id: str = "system"
    request_id: str | None = None


@dataclass(frozen=True)
class Assessment:
    """Summary of one assessment as seen by the monitoring engine."""

    id: str
    tenant_id: str
    framework_id: str
    overall_score: float
    status: str = "completed"
    completed_at: datetime | None = None
    compliant_count: int = 0
    partial_count: int = 0
    non_compliant_count: int = 0
    not_applicable_count: int = 0


@dataclass(frozen=True)
class ControlFinding:
    """Current finding for one control within one assessment."""

    control_id: str
    status: str
    evidence_count: int = 0
    risk_category: str | None = None
    control_number: str = ""
    control_title: str = ""


@dataclass(frozen=True)
class ControlScore:
    """Per-control entry of a baseline."""

    status: str
    score: int
    evidence_count: int


@dataclass(frozen=True)
class ComplianceBaseline:
    """Immutable per-control snapshot captured from a completed assessment."""

    id: str
    tenant_id: str
    assessment_id: str
    framework_id: str
    overall_score: float
    control_scores: dict[str, ControlScore]
    captured_at: datetime
    captured_by: str
    notes: str | None = None


@dataclass(frozen=True)
class DriftResult:
    """Comparison of one control's baseline entry against current state."""

    control_id: str
    control_number: str
    control_title: str
    previous_status: str
    current_status: str
    previous_score: int
    current_score: int
    score_delta: int
    drift_type: DriftType
    evidence_changed: bool
    severity: DriftSeverity

    def to_dict(self) -> dict[str, Any]:
        data = asdict(self)
        data["drift_type"] = self.drift_type.value
        data["severity"] = self.severity.value
        return data


@dataclass
class MonitoringCheckResult:
    """Result of one composite scheduled check; persisted as an audit record."""

    check_id: str
    tenant_id: str
    framework_id: str
    checked_at: datetime
    previous_score: float
    current_score: float
    score_delta: float
    drifts: list[DriftResult] = field(default_factory=list)
    expired_evidence: int = 0
    expiring_evidence: int = 0
    overdue_remediations: int = 0
    alerts_created: int = 0


@dataclass(frozen=True)
class ComplianceTrendPoint:
    date: datetime
    score: float
    compliant_count: int
    partial_count: int
    non_compliant_count: int
    not_applicable_count: int


class MonitoringStatus(str, Enum):
    HEALTHY = "healthy"
    WARNING = "warning"
    CRITICAL = "critical"


@dataclass(frozen=True)
class MonitoringHealth:
    last_check_at: datetime | None
    active_alerts: int
    unacknowledged_alerts: int
    expired_evidence: int
    overdue_remediations: int
    status: MonitoringStatus

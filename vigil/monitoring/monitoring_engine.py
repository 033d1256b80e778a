"""Continuous compliance monitoring.

Captures baselines from completed assessments, detects per-control drift
against the latest baseline, and runs the composite scheduled check that
raises alerts through the alerting collaborator.
"""

from __future__ import annotations

import asyncio
import logging
import uuid
from datetime import datetime, timedelta, timezone
from typing import Any, Protocol

from config.settings import settings
from vigil.errors import AssessmentNotFoundError
from vigil.models import (
    AlertRequest,
    AlertSeverity,
    AlertType,
    Assessment,
    ComplianceBaseline,
    ComplianceTrendPoint,
    ControlFinding,
    ControlScore,
    DriftResult,
    DriftSeverity,
    DriftType,
    MonitoringCheckResult,
    MonitoringHealth,
    MonitoringStatus,
    ServiceContext,
    score_for_status,
)
from vigil.tracing import log_event

logger = logging.getLogger(__name__)

SCORE_DROP_ALERT_THRESHOLD = 10
SCORE_DROP_CRITICAL_THRESHOLD = 25


class AssessmentSource(Protocol):
    async def get_latest_completed_assessment(
        self, tenant_id: str, framework_id: str
    ) -> Assessment | None: ...

    async def get_completed_assessment(
        self, tenant_id: str, assessment_id: str
    ) -> Assessment | None: ...

    async def get_findings(self, tenant_id: str, assessment_id: str) -> list[ControlFinding]: ...

    async def list_completed_since(
        self, tenant_id: str, framework_id: str, since: datetime
    ) -> list[Assessment]: ...


def classify_drift(delta: int) -> DriftType:
    if delta > 0:
        return DriftType.IMPROVED
    if delta < 0:
        return DriftType.DEGRADED
    return DriftType.UNCHANGED


def drift_severity(drift_type: DriftType, risk_category: str | None, delta: int) -> DriftSeverity:
    """Severity of a drift; anything other than degraded is low."""
    if drift_type != DriftType.DEGRADED:
        return DriftSeverity.LOW
    if risk_category == "critical" or delta <= -50:
        return DriftSeverity.CRITICAL
    if risk_category == "high" or delta <= -25:
        return DriftSeverity.HIGH
    if risk_category == "medium":
        return DriftSeverity.MEDIUM
    return DriftSeverity.LOW


def compute_drift(
    baseline: ComplianceBaseline, findings: list[ControlFinding]
) -> list[DriftResult]:
    """Compare current findings against a baseline.

    Controls missing from the baseline are skipped. Controls with no score
    change and an unchanged evidence count are omitted.
    """
    drifts = []
    for finding in findings:
        previous = baseline.control_scores.get(finding.control_id)
        if previous is None:
            continue

        current_score = score_for_status(finding.status)
        delta = current_score - previous.score
        evidence_changed = finding.evidence_count != previous.evidence_count
        if delta == 0 and not evidence_changed:
            continue

        drift_type = classify_drift(delta)
        drifts.append(
            DriftResult(
                control_id=finding.control_id,
                control_number=finding.control_number,
                control_title=finding.control_title,
                previous_status=previous.status,
                current_status=finding.status,
                previous_score=previous.score,
                current_score=current_score,
                score_delta=delta,
                drift_type=drift_type,
                evidence_changed=evidence_changed,
                severity=drift_severity(drift_type, finding.risk_category, delta),
            )
        )
    return drifts


def monitoring_status(
    unacknowledged_alerts: int, overdue_remediations: int, expired_evidence: int
) -> MonitoringStatus:
    if unacknowledged_alerts > 10 or overdue_remediations > 10 or expired_evidence > 20:
        return MonitoringStatus.CRITICAL
    if unacknowledged_alerts > 5 or overdue_remediations > 5 or expired_evidence > 10:
        return MonitoringStatus.WARNING
    return MonitoringStatus.HEALTHY


class MonitoringEngine:
    """Baselines, drift detection and scheduled compliance checks."""

    def __init__(
        self,
        assessment_store: AssessmentSource,
        evidence_store: Any,
        alert_store: Any,
        remediation_store: Any,
        baseline_store: Any,
        check_store: Any,
        expiring_evidence_days: int = settings.expiring_evidence_days,
    ):
        self.assessments = assessment_store
        self.evidence = evidence_store
        self.alerts = alert_store
        self.remediations = remediation_store
        self.baselines = baseline_store
        self.checks = check_store
        self.expiring_evidence_days = expiring_evidence_days

    async def capture_baseline(
        self,
        context: ServiceContext,
        assessment_id: str,
        notes: str | None = None,
    ) -> ComplianceBaseline:
        """Snapshot per-control scores of a completed assessment.

        Raises:
            AssessmentNotFoundError: If no completed assessment has that id.
        """
        assessment = await self.assessments.get_completed_assessment(
            context.tenant_id, assessment_id
        )
        if assessment is None:
            raise AssessmentNotFoundError(f"Completed assessment not found: {assessment_id}")

        findings = await self.assessments.get_findings(context.tenant_id, assessment_id)
        baseline = ComplianceBaseline(
            id=str(uuid.uuid4()),
            tenant_id=context.tenant_id,
            assessment_id=assessment_id,
            framework_id=assessment.framework_id,
            overall_score=assessment.overall_score,
            control_scores={
                f.control_id: ControlScore(
                    status=f.status,
                    score=score_for_status(f.status),
                    evidence_count=f.evidence_count,
                )
                for f in findings
            },
            captured_at=datetime.now(timezone.utc),
            captured_by=context.user_id,
            notes=notes,
        )
        await self.baselines.save_baseline(baseline)

        log_event(
            "baseline_captured",
            f"monitoring:{context.tenant_id}",
            f"Baseline {baseline.id} captured from assessment {assessment_id}",
            {
                "framework_id": baseline.framework_id,
                "overall_score": baseline.overall_score,
                "controls": len(baseline.control_scores),
            },
        )
        return baseline

    async def get_latest_baseline(
        self, tenant_id: str, framework_id: str
    ) -> ComplianceBaseline | None:
        return await self.baselines.get_latest(tenant_id, framework_id)

    async def list_baselines(
        self, tenant_id: str, framework_id: str | None = None, limit: int = 10
    ) -> list[ComplianceBaseline]:
        return await self.baselines.list_baselines(tenant_id, framework_id, limit)

    async def detect_drift(
        self, tenant_id: str, framework_id: str, current_assessment_id: str
    ) -> list[DriftResult]:
        """Drift of an assessment against the latest baseline; empty without one."""
        baseline = await self.get_latest_baseline(tenant_id, framework_id)
        if baseline is None:
            logger.info("No baseline found for drift detection: %s/%s", tenant_id, framework_id)
            return []

        findings = await self.assessments.get_findings(tenant_id, current_assessment_id)
        return compute_drift(baseline, findings)

    async def run_scheduled_check(
        self, tenant_id: str, framework_id: str
    ) -> MonitoringCheckResult:
        """Run the composite monitoring check and raise alerts for what it finds."""
        check_id = str(uuid.uuid4())
        checked_at = datetime.now(timezone.utc)
        logger.info(
            "Starting scheduled compliance check %s for %s/%s", check_id, tenant_id, framework_id
        )

        assessment = await self.assessments.get_latest_completed_assessment(
            tenant_id, framework_id
        )
        if assessment is None:
            logger.warning(
                "No completed assessment found for monitoring: %s/%s", tenant_id, framework_id
            )
            return MonitoringCheckResult(
                check_id=check_id,
                tenant_id=tenant_id,
                framework_id=framework_id,
                checked_at=checked_at,
                previous_score=0,
                current_score=0,
                score_delta=0,
            )

        current_score = assessment.overall_score
        baseline = await self.get_latest_baseline(tenant_id, framework_id)
        previous_score = baseline.overall_score if baseline else current_score

        drifts = await self.detect_drift(tenant_id, framework_id, assessment.id)
        expiring = await self.evidence.list_expiring_within(tenant_id, self.expiring_evidence_days)
        expired_count = await self.evidence.mark_expired(tenant_id)
        overdue = await self.remediations.count_overdue(tenant_id)

        context = ServiceContext(tenant_id=tenant_id, request_id=f"monitoring-{check_id}")
        alerts = self._build_alerts(
            framework_id=framework_id,
            assessment_id=assessment.id,
            baseline=baseline,
            previous_score=previous_score,
            current_score=current_score,
            drifts=drifts,
            expiring=expiring,
            expired_count=expired_count,
            overdue=overdue,
        )
        for alert in alerts:
            await self.alerts.create_alert(context, alert)

        result = MonitoringCheckResult(
            check_id=check_id,
            tenant_id=tenant_id,
            framework_id=framework_id,
            checked_at=checked_at,
            previous_score=previous_score,
            current_score=current_score,
            score_delta=current_score - previous_score,
            drifts=drifts,
            expired_evidence=expired_count,
            expiring_evidence=len(expiring),
            overdue_remediations=overdue,
            alerts_created=len(alerts),
        )
        await self.checks.save_check(result)

        log_event(
            "check_completed",
            f"monitoring:{tenant_id}",
            f"Scheduled check {check_id} completed for {framework_id}",
            {
                "current_score": current_score,
                "drifts": len(drifts),
                "alerts_created": len(alerts),
            },
        )
        return result

    def _build_alerts(
        self,
        framework_id: str,
        assessment_id: str,
        baseline: ComplianceBaseline | None,
        previous_score: float,
        current_score: float,
        drifts: list[DriftResult],
        expiring: list[dict[str, Any]],
        expired_count: int,
        overdue: int,
    ) -> list[AlertRequest]:
        alerts = []
        drop = previous_score - current_score

        if baseline is not None and drop > SCORE_DROP_ALERT_THRESHOLD:
            alerts.append(
                AlertRequest(
                    type=AlertType.DRIFT,
                    severity=(
                        AlertSeverity.CRITICAL
                        if drop > SCORE_DROP_CRITICAL_THRESHOLD
                        else AlertSeverity.WARNING
                    ),
                    title=f"Compliance Score Dropped: {framework_id}",
                    message=(
                        f"Overall compliance score dropped from {previous_score}% to "
                        f"{current_score}% ({drop} point decrease)"
                    ),
                    details={
                        "framework_id": framework_id,
                        "previous_score": previous_score,
                        "current_score": current_score,
                        "delta": current_score - previous_score,
                    },
                    framework_id=framework_id,
                    assessment_id=assessment_id,
                )
            )

        for drift in drifts:
            if drift.drift_type == DriftType.DEGRADED and drift.severity == DriftSeverity.CRITICAL:
                alerts.append(
                    AlertRequest(
                        type=AlertType.DRIFT,
                        severity=AlertSeverity.CRITICAL,
                        title=(
                            "Critical Control Degraded: "
                            f"{drift.control_number or drift.control_id}"
                        ),
                        message=(
                            f'Control "{drift.control_title}" status changed from '
                            f"{drift.previous_status} to {drift.current_status}"
                        ),
                        details=drift.to_dict(),
                        framework_id=framework_id,
                        control_id=drift.control_id,
                    )
                )

        if expiring:
            alerts.append(
                AlertRequest(
                    type=AlertType.EXPIRATION,
                    severity=AlertSeverity.WARNING,
                    title="Evidence Expiring Soon",
                    message=(
                        f"{len(expiring)} evidence items will expire in the next "
                        f"{self.expiring_evidence_days} days"
                    ),
                    details={
                        "count": len(expiring),
                        "evidence_ids": [e.get("id") for e in expiring[:10]],
                    },
                    framework_id=framework_id,
                )
            )

        if expired_count > 0:
            alerts.append(
                AlertRequest(
                    type=AlertType.EXPIRATION,
                    severity=AlertSeverity.ERROR,
                    title="Evidence Expired",
                    message=(
                        f"{expired_count} evidence items have expired and need to be refreshed"
                    ),
                    details={"expired_count": expired_count},
                    framework_id=framework_id,
                )
            )

        if overdue > 0:
            alerts.append(
                AlertRequest(
                    type=AlertType.OVERDUE_REMEDIATION,
                    severity=AlertSeverity.ERROR if overdue > 5 else AlertSeverity.WARNING,
                    title="Overdue Remediations",
                    message=f"{overdue} remediation tasks are past their due date",
                    details={"overdue_count": overdue},
                    framework_id=framework_id,
                )
            )
        return alerts

    async def get_compliance_trend(
        self, tenant_id: str, framework_id: str, days: int = 90
    ) -> list[ComplianceTrendPoint]:
        """Scores of completed assessments in the last ``days``, oldest first."""
        since = datetime.now(timezone.utc) - timedelta(days=days)
        assessments = await self.assessments.list_completed_since(tenant_id, framework_id, since)
        return [
            ComplianceTrendPoint(
                date=a.completed_at or since,
                score=a.overall_score,
                compliant_count=a.compliant_count,
                partial_count=a.partial_count,
                non_compliant_count=a.non_compliant_count,
                not_applicable_count=a.not_applicable_count,
            )
            for a in assessments
        ]

    async def get_monitoring_health(self, tenant_id: str) -> MonitoringHealth:
        last_check_at, (active, unacknowledged), expired, overdue = await asyncio.gather(
            self.checks.get_last_check_at(tenant_id),
            self.alerts.count_active(tenant_id),
            self.evidence.count_expired(tenant_id),
            self.remediations.count_overdue(tenant_id),
        )
        return MonitoringHealth(
            last_check_at=last_check_at,
            active_alerts=active,
            unacknowledged_alerts=unacknowledged,
            expired_evidence=expired,
            overdue_remediations=overdue,
            status=monitoring_status(unacknowledged, overdue, expired),
        )

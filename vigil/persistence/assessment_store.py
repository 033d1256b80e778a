"""Read access to assessments and control findings."""

from __future__ import annotations

from collections import Counter
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from typing import Any

from supabase._async.client import AsyncClient

from vigil.models import Assessment, ControlFinding

ASSESSMENTS_TABLE = "compliance_assessments"
FINDINGS_TABLE = "control_findings"
EVIDENCE_TABLE = "compliance_evidence"
COMPLETED = "completed"


def _parse_timestamp(value: Any) -> datetime | None:
    if not value:
        return None
    if isinstance(value, datetime):
        return value
    parsed = datetime.fromisoformat(str(value).replace("Z", "+00:00"))
    return parsed if parsed.tzinfo else parsed.replace(tzinfo=timezone.utc)


def row_to_assessment(row: dict[str, Any]) -> Assessment:
    return Assessment(
        id=row["id"],
        tenant_id=row["tenant_id"],
        framework_id=row["framework_id"],
        overall_score=float(row.get("overall_score") or 0),
        status=row.get("status", COMPLETED),
        completed_at=_parse_timestamp(row.get("completed_at")),
        compliant_count=row.get("compliant_controls") or 0,
        partial_count=row.get("partial_controls") or 0,
        non_compliant_count=row.get("non_compliant_controls") or 0,
        not_applicable_count=row.get("not_applicable_controls") or 0,
    )


@dataclass
class AssessmentStore:
    """Supabase-backed reads over assessments."""

    client: AsyncClient

    async def get_latest_completed_assessment(
        self, tenant_id: str, framework_id: str
    ) -> Assessment | None:
        response = await (
            self.client.table(ASSESSMENTS_TABLE)
            .select("*")
            .eq("tenant_id", tenant_id)
            .eq("framework_id", framework_id)
            .eq("status", COMPLETED)
            .order("completed_at", desc=True)
            .limit(1)
            .execute()
        )
        return row_to_assessment(response.data[0]) if response.data else None

    async def get_completed_assessment(
        self, tenant_id: str, assessment_id: str
    ) -> Assessment | None:
        response = await (
            self.client.table(ASSESSMENTS_TABLE)
            .select("*")
            .eq("tenant_id", tenant_id)
            .eq("id", assessment_id)
            .eq("status", COMPLETED)
            .limit(1)
            .execute()
        )
        return row_to_assessment(response.data[0]) if response.data else None

    async def get_findings(self, tenant_id: str, assessment_id: str) -> list[ControlFinding]:
        """Findings for an assessment with control details and approved evidence counts."""
        response = await (
            self.client.table(FINDINGS_TABLE)
            .select("control_id, status, compliance_controls(control_number, title, risk_category)")
            .eq("tenant_id", tenant_id)
            .eq("assessment_id", assessment_id)
            .execute()
        )
        rows = response.data or []
        control_ids = [row["control_id"] for row in rows]

        counts: Counter[str] = Counter()
        if control_ids:
            evidence = await (
                self.client.table(EVIDENCE_TABLE)
                .select("control_id")
                .eq("tenant_id", tenant_id)
                .eq("status", "approved")
                .in_("control_id", control_ids)
                .execute()
            )
            counts.update(row["control_id"] for row in (evidence.data or []))

        findings = []
        for row in rows:
            control = row.get("compliance_controls") or {}
            findings.append(
                ControlFinding(
                    control_id=row["control_id"],
                    status=row.get("status") or "",
                    evidence_count=counts[row["control_id"]],
                    risk_category=control.get("risk_category"),
                    control_number=control.get("control_number") or "",
                    control_title=control.get("title") or "",
                )
            )
        return findings

    async def list_completed_since(
        self, tenant_id: str, framework_id: str, since: datetime
    ) -> list[Assessment]:
        """Completed assessments since ``since``, oldest first."""
        response = await (
            self.client.table(ASSESSMENTS_TABLE)
            .select("*")
            .eq("tenant_id", tenant_id)
            .eq("framework_id", framework_id)
            .eq("status", COMPLETED)
            .gte("completed_at", since.isoformat())
            .order("completed_at", desc=False)
            .execute()
        )
        return [row_to_assessment(row) for row in (response.data or [])]

    async def list_recent_tenant_frameworks(self, days: int = 30) -> list[tuple[str, str]]:
        """Distinct (tenant, framework) pairs with a completed assessment in ``days``."""
        since = datetime.now(timezone.utc) - timedelta(days=days)
        response = await (
            self.client.table(ASSESSMENTS_TABLE)
            .select("tenant_id, framework_id")
            .eq("status", COMPLETED)
            .gt("completed_at", since.isoformat())
            .execute()
        )
        return sorted({(row["tenant_id"], row["framework_id"]) for row in (response.data or [])})

"""Remediation due-date queries over control findings."""

from __future__ import annotations

from collections import Counter
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone

from supabase._async.client import AsyncClient

FINDINGS_TABLE = "control_findings"
IN_PROGRESS = "in_progress"


@dataclass
class RemediationStore:
    """Supabase-backed remediation collaborator."""

    client: AsyncClient

    def _in_progress(self, columns: str, **kwargs):
        return (
            self.client.table(FINDINGS_TABLE)
            .select(columns, **kwargs)
            .eq("remediation_status", IN_PROGRESS)
        )

    async def count_overdue(self, tenant_id: str) -> int:
        now = datetime.now(timezone.utc).isoformat()
        result = await (
            self._in_progress("id", count="exact")
            .eq("tenant_id", tenant_id)
            .lt("remediation_due_date", now)
            .execute()
        )
        return result.count or 0

    async def list_overdue_by_tenant(self) -> dict[str, list[str]]:
        """Overdue in-progress remediations as ``tenant_id -> control ids``."""
        now = datetime.now(timezone.utc).isoformat()
        result = await (
            self._in_progress("tenant_id, control_id")
            .lt("remediation_due_date", now)
            .execute()
        )
        overdue: dict[str, list[str]] = {}
        for row in result.data or []:
            overdue.setdefault(row["tenant_id"], []).append(row["control_id"])
        return overdue

    async def list_due_soon_by_tenant(self, days: int = 7) -> dict[str, int]:
        """Count of remediations due within ``days`` per tenant."""
        now = datetime.now(timezone.utc)
        result = await (
            self._in_progress("tenant_id")
            .gt("remediation_due_date", now.isoformat())
            .lt("remediation_due_date", (now + timedelta(days=days)).isoformat())
            .execute()
        )
        return dict(Counter(row["tenant_id"] for row in (result.data or [])))

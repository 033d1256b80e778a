"""Alert persistence using the Supabase REST API."""

from __future__ import annotations

import logging
import uuid
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from typing import Any

from supabase._async.client import AsyncClient

from vigil.models import AlertRequest, AlertSeverity, EscalationStatus, ServiceContext

logger = logging.getLogger(__name__)

ALERTS_TABLE = "compliance_alerts"
DUPLICATE_WINDOW = timedelta(hours=1)


def _ago(delta: timedelta) -> str:
    return (datetime.now(timezone.utc) - delta).isoformat()


@dataclass
class AlertStore:
    """Supabase-backed alerting collaborator."""

    client: AsyncClient

    async def create_alert(
        self, context: ServiceContext, request: AlertRequest
    ) -> dict[str, Any]:
        """Create an alert.

        An unresolved alert with the same type and title raised within the
        last hour is returned instead of creating a duplicate.
        """
        existing = await (
            self.client.table(ALERTS_TABLE)
            .select("*")
            .eq("tenant_id", context.tenant_id)
            .eq("alert_type", request.type.value)
            .eq("title", request.title)
            .eq("resolved", False)
            .gt("created_at", _ago(DUPLICATE_WINDOW))
            .order("created_at", desc=True)
            .limit(1)
            .execute()
        )
        if existing.data:
            logger.debug(
                "Suppressing duplicate alert for %s: %s", context.tenant_id, request.title
            )
            return existing.data[0]

        row = {
            "id": str(uuid.uuid4()),
            "tenant_id": context.tenant_id,
            "assessment_id": request.assessment_id,
            "control_id": request.control_id,
            "framework_id": request.framework_id,
            "alert_type": request.type.value,
            "severity": request.severity.value,
            "title": request.title,
            "message": request.message,
            "details": request.details,
        }
        result = await self.client.table(ALERTS_TABLE).insert(row).execute()
        logger.info(
            "Alert created for %s: [%s] %s",
            context.tenant_id, request.severity.value, request.title,
        )
        return result.data[0] if result.data else row

    async def count_active(self, tenant_id: str) -> tuple[int, int]:
        """Return ``(unresolved, unresolved and unacknowledged)`` alert counts."""
        total = await (
            self.client.table(ALERTS_TABLE)
            .select("id", count="exact")
            .eq("tenant_id", tenant_id)
            .eq("resolved", False)
            .execute()
        )
        unacknowledged = await (
            self.client.table(ALERTS_TABLE)
            .select("id", count="exact")
            .eq("tenant_id", tenant_id)
            .eq("resolved", False)
            .eq("acknowledged", False)
            .execute()
        )
        return total.count or 0, unacknowledged.count or 0

    async def _count_unacknowledged(
        self, tenant_id: str, severity: AlertSeverity, older_than: timedelta | None = None
    ) -> int:
        query = (
            self.client.table(ALERTS_TABLE)
            .select("id", count="exact")
            .eq("tenant_id", tenant_id)
            .eq("severity", severity.value)
            .eq("acknowledged", False)
            .eq("resolved", False)
        )
        if older_than is not None:
            query = query.lt("created_at", _ago(older_than))
        result = await query.execute()
        return result.count or 0

    async def get_escalation_status(self, tenant_id: str) -> EscalationStatus:
        return EscalationStatus(
            critical_unacknowledged=await self._count_unacknowledged(
                tenant_id, AlertSeverity.CRITICAL
            ),
            critical_older_than_1_hour=await self._count_unacknowledged(
                tenant_id, AlertSeverity.CRITICAL, timedelta(hours=1)
            ),
            error_older_than_24_hours=await self._count_unacknowledged(
                tenant_id, AlertSeverity.ERROR, timedelta(hours=24)
            ),
        )

    async def cleanup_old_alerts(self, tenant_id: str, days_old: int = 90) -> int:
        """Delete resolved alerts resolved more than ``days_old`` days ago."""
        result = await (
            self.client.table(ALERTS_TABLE)
            .delete()
            .eq("tenant_id", tenant_id)
            .eq("resolved", True)
            .lt("resolved_at", _ago(timedelta(days=days_old)))
            .execute()
        )
        count = len(result.data or [])
        if count:
            logger.info("Cleaned up %d old alerts for %s", count, tenant_id)
        return count

    async def _tenants_where_resolved(self, resolved: bool) -> list[str]:
        result = await (
            self.client.table(ALERTS_TABLE)
            .select("tenant_id")
            .eq("resolved", resolved)
            .execute()
        )
        return sorted({row["tenant_id"] for row in (result.data or [])})

    async def list_tenants_with_unresolved_alerts(self) -> list[str]:
        return await self._tenants_where_resolved(False)

    async def list_tenants_with_resolved_alerts(self) -> list[str]:
        return await self._tenants_where_resolved(True)

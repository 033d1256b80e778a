"""Evidence persistence using the Supabase REST API."""

from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from typing import Any

from supabase._async.client import AsyncClient

from vigil.models import CollectedEvidence, EvidenceStatus

logger = logging.getLogger(__name__)

EVIDENCE_TABLE = "compliance_evidence"
LINKS_TABLE = "control_evidence_links"


def evidence_to_row(
    tenant_id: str, evidence: CollectedEvidence, source_adapter_id: str
) -> dict[str, Any]:
    """Build the ``compliance_evidence`` row for collected evidence."""
    return {
        "tenant_id": tenant_id,
        "external_id": evidence.external_id,
        "control_id": evidence.control_mappings[0] if evidence.control_mappings else "GENERAL",
        "type": evidence.type,
        "title": evidence.title,
        "description": evidence.description,
        "source_system": evidence.source,
        "source_url": source_adapter_id,
        "collected_at": evidence.collected_at.isoformat(),
        "collected_by": "system",
        "valid_until": evidence.expires_at.isoformat() if evidence.expires_at else None,
        "status": "approved" if evidence.status == EvidenceStatus.VALID else "pending",
        "metadata": {
            **evidence.metadata,
            "raw_data": evidence.raw_data,
            "severity": evidence.severity.value if evidence.severity else None,
            "control_mappings": list(evidence.control_mappings),
            "adapter_id": source_adapter_id,
        },
    }


@dataclass
class EvidenceStore:
    """Supabase-backed store for compliance evidence."""

    client: AsyncClient

    async def upsert_evidence(
        self,
        tenant_id: str,
        evidence: CollectedEvidence,
        source_adapter_id: str,
    ) -> dict[str, Any]:
        """Insert or update evidence keyed by ``(tenant_id, external_id)``.

        Also links the stored row to every mapped control.
        """
        row = evidence_to_row(tenant_id, evidence, source_adapter_id)
        result = await (
            self.client.table(EVIDENCE_TABLE)
            .upsert(row, on_conflict="tenant_id,external_id")
            .execute()
        )
        stored = result.data[0] if result.data else row

        evidence_id = stored.get("id")
        if evidence_id and evidence.control_mappings:
            links = [
                {"evidence_id": evidence_id, "control_id": control_id, "linked_by": "system"}
                for control_id in evidence.control_mappings
            ]
            await (
                self.client.table(LINKS_TABLE)
                .upsert(links, on_conflict="evidence_id,control_id", ignore_duplicates=True)
                .execute()
            )
        return stored

    async def mark_expired(self, tenant_id: str) -> int:
        """Mark evidence past its validity as expired; returns the count."""
        now = datetime.now(timezone.utc).isoformat()
        result = await (
            self.client.table(EVIDENCE_TABLE)
            .update({"status": EvidenceStatus.EXPIRED.value, "updated_at": now})
            .eq("tenant_id", tenant_id)
            .neq("status", EvidenceStatus.EXPIRED.value)
            .lt("valid_until", now)
            .execute()
        )
        count = len(result.data or [])
        if count:
            logger.info("Marked %d evidence items expired for %s", count, tenant_id)
        return count

    async def list_expiring_within(self, tenant_id: str, days: int) -> list[dict[str, Any]]:
        """Evidence still valid now but expiring within ``days``."""
        now = datetime.now(timezone.utc)
        result = await (
            self.client.table(EVIDENCE_TABLE)
            .select("id, title, control_id, valid_until")
            .eq("tenant_id", tenant_id)
            .neq("status", EvidenceStatus.EXPIRED.value)
            .gte("valid_until", now.isoformat())
            .lte("valid_until", (now + timedelta(days=days)).isoformat())
            .order("valid_until", desc=False)
            .execute()
        )
        return result.data or []

    async def count_expired(self, tenant_id: str) -> int:
        result = await (
            self.client.table(EVIDENCE_TABLE)
            .select("id", count="exact")
            .eq("tenant_id", tenant_id)
            .eq("status", EvidenceStatus.EXPIRED.value)
            .execute()
        )
        return result.count or 0

    async def list_tenants(self) -> list[str]:
        result = await self.client.table(EVIDENCE_TABLE).select("tenant_id").execute()
        return sorted({row["tenant_id"] for row in (result.data or [])})

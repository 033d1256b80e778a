"""Splunk SIEM adapter."""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from typing import Any

import httpx

from vigil.adapters.base_adapter import EvidenceAdapter, json_or_empty
from vigil.models import (
    AdapterHealthStatus,
    CollectedEvidence,
    CollectionError,
    CollectionOptions,
    CollectionResult,
    EvidenceSeverity,
    EvidenceStatus,
)

SEARCH_ENDPOINT = "/services/search/jobs"
SERVER_INFO_ENDPOINT = "/services/server/info"
DEFAULT_LOOKBACK_HOURS = 24


@dataclass(frozen=True)
class SplunkSearch:
    """One evidence category backed by a oneshot search."""

    key: str
    title: str
    evidence_type: str
    query: str
    base_controls: tuple[str, ...]


SEARCHES = (
    SplunkSearch(
        key="logging",
        title="Security Logging Coverage",
        evidence_type="log_summary",
        query="| tstats count where index=* by index, sourcetype",
        base_controls=("ISO27001:A.8.15", "ISO27001:A.8.16", "NIS2:LOG.1"),
    ),
    SplunkSearch(
        key="incidents",
        title="Security Incidents",
        evidence_type="incident_report",
        query="search index=notable | table _time, source, sourcetype, eventtype, severity, category, signature",
        base_controls=("ISO27001:A.5.24", "SOC2:CC7.2"),
    ),
    SplunkSearch(
        key="authentication",
        title="Authentication Activity",
        evidence_type="access_log",
        query="search tag=authentication | stats count by action, user, sourcetype",
        base_controls=("ISO27001:A.8.15", "SOC2:CC6.1"),
    ),
)


def _lower(event: dict[str, Any], key: str) -> str:
    value = event.get(key)
    return value.lower() if isinstance(value, str) else ""


class SplunkAdapter(EvidenceAdapter):
    """Collects logging, incident and authentication evidence from Splunk."""

    @property
    def adapter_type_name(self) -> str:
        return "Splunk Enterprise SIEM"

    @property
    def supported_control_types(self) -> list[str]:
        return [
            "ISO27001:A.8.15",  # Logging
            "ISO27001:A.8.16",  # Monitoring activities
            "ISO27001:A.5.24",  # Incident management
            "SOC2:CC7.2",
            "SOC2:CC6.1",
            "SOC2:CC7.3",
            "GDPR:ART.33",
            "NIS2:INC.1",
            "NIS2:INC.2",
            "NIS2:LOG.1",
        ]

    def _headers(self) -> dict[str, str]:
        return {**self.get_auth_headers(), "Accept": "application/json"}

    async def health_check(self) -> AdapterHealthStatus:
        started = datetime.now(timezone.utc)
        try:
            response = await self.fetch_with_retry(
                "GET",
                self.build_url(SERVER_INFO_ENDPOINT, {"output_mode": "json"}),
                max_retries=1,
                headers=self._headers(),
            )
        except httpx.HTTPError as e:
            return self._health(False, started, f"Connection failed: {e}")

        if not response.is_success:
            return self._health(False, started, f"Splunk API returned {response.status_code}")

        entries = json_or_empty(response).get("entry") or [{}]
        content = entries[0].get("content", {}) if isinstance(entries[0], dict) else {}
        return self._health(
            True,
            started,
            details={
                "server_name": content.get("serverName"),
                "version": content.get("version"),
            },
        )

    async def collect_evidence(
        self, options: CollectionOptions | None = None
    ) -> CollectionResult:
        options = options or CollectionOptions()
        started_at = datetime.now(timezone.utc)
        evidence: list[CollectedEvidence] = []
        errors: list[CollectionError] = []

        earliest = options.from_date or started_at - timedelta(hours=DEFAULT_LOOKBACK_HOURS)
        for search in SEARCHES:
            try:
                rows = await self.run_search(search.query, earliest, options.limit)
            except httpx.HTTPError as e:
                errors.append(
                    CollectionError(
                        code="SEARCH_FAILED",
                        message=str(e),
                        details={"category": search.key},
                    )
                )
                continue
            if rows:
                evidence.append(self._search_evidence(search, rows, started_at))

        self.logger.info(
            "Splunk collection finished: %d evidence, %d errors", len(evidence), len(errors)
        )
        return CollectionResult.build(started_at, evidence, errors)

    def map_to_controls(self, raw_data: Any) -> list[str]:
        controls: set[str] = set()
        if not isinstance(raw_data, list):
            return []

        for event in raw_data:
            if not isinstance(event, dict):
                continue
            event_type = _lower(event, "eventtype")
            source_type = _lower(event, "sourcetype")
            severity = _lower(event, "severity")
            category = _lower(event, "category")

            if "security" in event_type or "incident" in event_type or "incident" in category:
                controls.update(("ISO27001:A.5.24", "SOC2:CC7.2", "NIS2:INC.1"))
                if severity in ("critical", "high"):
                    controls.update(("GDPR:ART.33", "NIS2:INC.2"))
            if "auth" in source_type or "authentication" in event_type or "login" in event_type:
                controls.update(("ISO27001:A.8.15", "SOC2:CC6.1"))
            if "access" in source_type or "access" in event_type:
                controls.update(("ISO27001:A.8.16", "SOC2:CC6.1"))
            if "change" in event_type or "change" in category:
                controls.add("SOC2:CC7.3")
        return sorted(controls)

    async def run_search(
        self,
        query: str,
        earliest: datetime,
        limit: int | None = None,
    ) -> list[dict[str, Any]]:
        """Run a oneshot search and return its result rows."""
        data = {
            "search": query,
            "exec_mode": "oneshot",
            "output_mode": "json",
            "earliest_time": self.format_date(earliest, "epoch"),
        }
        if limit is not None:
            data["count"] = str(limit)
        response = await self.fetch_with_retry(
            "POST",
            self.build_url(SEARCH_ENDPOINT),
            headers=self._headers(),
            data=data,
        )
        response.raise_for_status()
        rows = json_or_empty(response).get("results", [])
        if not isinstance(rows, list):
            return []
        return [r for r in rows if isinstance(r, dict)]

    def _search_evidence(
        self,
        search: SplunkSearch,
        rows: list[dict[str, Any]],
        collected_at: datetime,
    ) -> CollectedEvidence:
        severities = {_lower(r, "severity") for r in rows}
        if "critical" in severities:
            severity = EvidenceSeverity.CRITICAL
        elif "high" in severities:
            severity = EvidenceSeverity.HIGH
        else:
            severity = EvidenceSeverity.INFO

        controls = sorted(set(search.base_controls) | set(self.map_to_controls(rows)))
        return CollectedEvidence(
            external_id=f"splunk-{search.key}-{self.config.id}-{collected_at:%Y%m%d%H}",
            type=search.evidence_type,
            title=search.title,
            description=f"{len(rows)} result rows for {search.key} search",
            raw_data={"query": search.query, "results": rows},
            collected_at=collected_at,
            source="splunk",
            control_mappings=controls,
            severity=severity,
            status=EvidenceStatus.VALID,
            expires_at=collected_at + timedelta(hours=24),
            metadata={"row_count": len(rows)},
        )

"""Qualys vulnerability scanner adapter."""

from __future__ import annotations

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

SCAN_ENDPOINT = "/api/2.0/fo/scan/"
CRITICAL_QUALYS_SEVERITY = 4
DEFAULT_LOOKBACK_DAYS = 7

BASE_CONTROLS = ("ISO27001:A.8.8", "SOC2:CC7.1", "NIS2:VULN.1")


def _text(value: Any) -> str:
    return value.lower() if isinstance(value, str) else ""


class QualysAdapter(EvidenceAdapter):
    """Collects scan summaries and critical vulnerabilities from Qualys."""

    @property
    def adapter_type_name(self) -> str:
        return "Qualys Vulnerability Scanner"

    @property
    def supported_control_types(self) -> list[str]:
        return [
            "ISO27001:A.8.8",  # Management of technical vulnerabilities
            "ISO27001:A.8.7",  # Protection against malware
            "ISO27001:A.8.9",  # Configuration management
            "SOC2:CC7.1",
            "NIS2:VULN.1",
            "NIS2:VULN.2",
            "GDPR:ART.32",
            "PCI-DSS:11.2",
            "PCI-DSS:6.1",
        ]

    def _headers(self) -> dict[str, str]:
        return {
            **self.get_auth_headers(),
            "X-Requested-With": "Vigil",
            "Accept": "application/json",
        }

    async def health_check(self) -> AdapterHealthStatus:
        started = datetime.now(timezone.utc)
        try:
            response = await self.fetch_with_retry(
                "GET",
                self.build_url(SCAN_ENDPOINT, {"action": "list", "echo_request": 1}),
                max_retries=1,
                headers=self._headers(),
            )
        except httpx.HTTPError as e:
            return self._health(False, started, f"Connection failed: {e}")

        if not response.is_success:
            return self._health(False, started, f"Qualys API returned {response.status_code}")
        return self._health(True, started, details={"api_version": "2.0"})

    async def collect_evidence(
        self, options: CollectionOptions | None = None
    ) -> CollectionResult:
        options = options or CollectionOptions()
        started_at = datetime.now(timezone.utc)
        evidence: list[CollectedEvidence] = []
        errors: list[CollectionError] = []

        from_date = options.from_date or started_at - timedelta(days=DEFAULT_LOOKBACK_DAYS)
        try:
            scans = await self._fetch_recent_scans(from_date)
        except httpx.HTTPError as e:
            errors.append(CollectionError(code="SCAN_LIST_FAILED", message=str(e)))
            return CollectionResult.failed(started_at, errors)

        if options.limit is not None:
            scans = scans[: options.limit]

        for scan in scans:
            scan_ref = scan.get("scan_ref") or scan.get("scan_id")
            try:
                vulns = await self._fetch_scan_vulnerabilities(str(scan_ref))
            except httpx.HTTPError as e:
                errors.append(
                    CollectionError(
                        code="SCAN_FETCH_FAILED",
                        message=str(e),
                        details={"scan_ref": scan_ref},
                    )
                )
                continue

            evidence.append(self._scan_evidence(scan, vulns, started_at))
            for vuln in vulns:
                if isinstance(vuln, dict) and _severity_of(vuln) >= CRITICAL_QUALYS_SEVERITY:
                    evidence.append(self._vulnerability_evidence(scan, vuln, started_at))

        if options.control_ids:
            wanted = set(options.control_ids)
            evidence = [e for e in evidence if wanted.intersection(e.control_mappings)]

        self.logger.info(
            "Qualys collection finished: %d evidence, %d errors", len(evidence), len(errors)
        )
        return CollectionResult.build(started_at, evidence, errors)

    def map_to_controls(self, raw_data: Any) -> list[str]:
        controls: set[str] = set(BASE_CONTROLS)
        if not isinstance(raw_data, list):
            return sorted(controls)

        for vuln in raw_data:
            if not isinstance(vuln, dict):
                continue
            title = _text(vuln.get("title"))
            category = _text(vuln.get("category"))

            if any(k in title for k in ("malware", "virus", "trojan")) or "malware" in category:
                controls.add("ISO27001:A.8.7")
            if vuln.get("cve_list"):
                controls.add("NIS2:VULN.2")
            if "misconfigur" in title or "default" in title or "config" in category:
                controls.add("ISO27001:A.8.9")
            if vuln.get("pci_flag"):
                controls.add("PCI-DSS:11.2")
                controls.add("PCI-DSS:6.1")
            if vuln.get("ssl") or any(k in title for k in ("ssl", "tls", "certificate")):
                controls.add("GDPR:ART.32")
        return sorted(controls)

    async def _fetch_recent_scans(self, from_date: datetime) -> list[dict[str, Any]]:
        response = await self.fetch_with_retry(
            "GET",
            self.build_url(
                SCAN_ENDPOINT,
                {
                    "action": "list",
                    "state": "Finished",
                    "launched_after_datetime": self.format_date(from_date),
                },
            ),
            headers=self._headers(),
        )
        response.raise_for_status()
        payload = json_or_empty(response)
        scans = payload.get("scans", [])
        if not isinstance(scans, list):
            return []
        return [s for s in scans if isinstance(s, dict)]

    async def _fetch_scan_vulnerabilities(self, scan_ref: str) -> list[dict[str, Any]]:
        response = await self.fetch_with_retry(
            "GET",
            self.build_url(SCAN_ENDPOINT, {"action": "fetch", "scan_ref": scan_ref}),
            headers=self._headers(),
        )
        response.raise_for_status()
        vulns = json_or_empty(response).get("vulnerabilities", [])
        return vulns if isinstance(vulns, list) else []

    def _scan_evidence(
        self,
        scan: dict[str, Any],
        vulns: list[dict[str, Any]],
        collected_at: datetime,
    ) -> CollectedEvidence:
        counts = {level: 0 for level in range(1, 6)}
        for vuln in vulns:
            if isinstance(vuln, dict):
                level = _severity_of(vuln)
                if level in counts:
                    counts[level] += 1

        if counts[5]:
            severity = EvidenceSeverity.CRITICAL
        elif counts[4]:
            severity = EvidenceSeverity.HIGH
        elif counts[3]:
            severity = EvidenceSeverity.MEDIUM
        else:
            severity = EvidenceSeverity.LOW

        scan_id = scan.get("scan_id") or scan.get("scan_ref")
        return CollectedEvidence(
            external_id=f"qualys-scan-{scan_id}",
            type="vulnerability_scan",
            title=f"Vulnerability Scan: {scan.get('title', scan_id)}",
            description=(
                f"Scan of {scan.get('target', 'unknown targets')} found {len(vulns)} "
                f"vulnerabilities (critical={counts[5]}, high={counts[4]}, medium={counts[3]})"
            ),
            raw_data={"scan": scan, "severity_counts": counts},
            collected_at=collected_at,
            source="qualys",
            control_mappings=self.map_to_controls(vulns),
            severity=severity,
            status=EvidenceStatus.VALID,
            expires_at=collected_at + timedelta(days=7),
        )

    def _vulnerability_evidence(
        self,
        scan: dict[str, Any],
        vuln: dict[str, Any],
        collected_at: datetime,
    ) -> CollectedEvidence:
        scan_id = scan.get("scan_id") or scan.get("scan_ref")
        return CollectedEvidence(
            external_id=f"qualys-vuln-{scan_id}-{vuln.get('qid')}",
            type="vulnerability_finding",
            title=f"Critical Vulnerability: {vuln.get('title', vuln.get('qid'))}",
            description=str(vuln.get("diagnosis") or vuln.get("title") or ""),
            raw_data=vuln,
            collected_at=collected_at,
            source="qualys",
            control_mappings=self.map_to_controls([vuln]),
            severity=_map_qualys_severity(_severity_of(vuln)),
            status=EvidenceStatus.VALID,
            expires_at=collected_at + timedelta(hours=24),
            metadata={
                "qid": vuln.get("qid"),
                "cves": vuln.get("cve_list") or [],
                "affected_hosts": vuln.get("affected_hosts") or [],
                "scan_id": scan_id,
            },
        )


def _severity_of(vuln: dict[str, Any]) -> int:
    try:
        return int(vuln.get("severity") or 0)
    except (TypeError, ValueError):
        return 0


def _map_qualys_severity(level: int) -> EvidenceSeverity:
    if level >= 5:
        return EvidenceSeverity.CRITICAL
    if level == 4:
        return EvidenceSeverity.HIGH
    if level == 3:
        return EvidenceSeverity.MEDIUM
    if level == 2:
        return EvidenceSeverity.LOW
    return EvidenceSeverity.INFO

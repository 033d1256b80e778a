"""AWS Config adapter."""

from __future__ import annotations

from datetime import datetime, timedelta, timezone
from typing import Any

import httpx

from vigil.adapters.base_adapter import EvidenceAdapter, json_or_empty
from vigil.errors import CollectionFault
from vigil.models import (
    AdapterHealthStatus,
    CollectedEvidence,
    CollectionError,
    CollectionOptions,
    CollectionResult,
    EvidenceSeverity,
    EvidenceStatus,
)

TARGET_PREFIX = "StarlingDoveService"

RULE_CATEGORIES = {
    "encryption": ("encrypt", "kms", "ssl", "tls"),
    "access_control": ("iam", "access", "mfa", "password"),
    "network_security": ("vpc", "security-group", "nacl", "network"),
}


def _rule_name(rule: Any) -> str:
    if not isinstance(rule, dict):
        return ""
    name = rule.get("ConfigRuleName")
    return name.lower() if isinstance(name, str) else ""


def _source_id(rule: Any) -> str:
    if not isinstance(rule, dict) or not isinstance(rule.get("Source"), dict):
        return ""
    ident = rule["Source"].get("SourceIdentifier")
    return ident.lower() if isinstance(ident, str) else ""


class AWSConfigAdapter(EvidenceAdapter):
    """Collects config-rule compliance from the AWS Config JSON API.

    Requests go to the configured regional endpoint. Signing is left to a
    proxy or credential broker in front of ``base_url`` for iam_role configs.
    """

    @property
    def adapter_type_name(self) -> str:
        return "AWS Config"

    @property
    def supported_control_types(self) -> list[str]:
        return [
            "ISO27001:A.8.9",  # Configuration management
            "ISO27001:A.8.2",  # Privileged access rights
            "ISO27001:A.8.24",  # Use of cryptography
            "ISO27001:A.8.20",  # Network security
            "ISO27001:A.8.21",
            "SOC2:CC6.1",
            "SOC2:CC8.1",
            "GDPR:ART.32",
            "NIS2:NET.1",
            "NIS2:ACC.1",
            "AWS:CIS.1.1",
        ]

    async def _call(
        self, action: str, body: dict[str, Any] | None = None, **kwargs: Any
    ) -> httpx.Response:
        headers = {
            **self.get_auth_headers(),
            "Content-Type": "application/x-amz-json-1.1",
            "X-Amz-Target": f"{TARGET_PREFIX}.{action}",
        }
        return await self.fetch_with_retry(
            "POST", self.build_url("/"), headers=headers, json=body or {}, **kwargs
        )

    async def health_check(self) -> AdapterHealthStatus:
        started = datetime.now(timezone.utc)
        try:
            response = await self._call("DescribeConfigurationRecorderStatus", max_retries=1)
        except httpx.HTTPError as e:
            return self._health(False, started, f"Connection failed: {e}")

        if not response.is_success:
            return self._health(False, started, f"AWS Config returned {response.status_code}")

        recorders = json_or_empty(response).get("ConfigurationRecordersStatus") or []
        recording = any(isinstance(r, dict) and r.get("recording") for r in recorders)
        return self._health(True, started, details={"recording": recording})

    async def collect_evidence(
        self, options: CollectionOptions | None = None
    ) -> CollectionResult:
        started_at = datetime.now(timezone.utc)
        evidence: list[CollectedEvidence] = []
        errors: list[CollectionError] = []

        try:
            rules = await self._get_config_rules()
            compliance = await self._get_compliance_by_rule()
        except httpx.HTTPError as e:
            errors.append(CollectionError(code="AWS_API_FAILED", message=str(e)))
            return CollectionResult.failed(started_at, errors)

        evidence.append(self._overall_evidence(rules, compliance, started_at))
        for category, keywords in RULE_CATEGORIES.items():
            matched = [r for r in rules if any(k in _rule_name(r) for k in keywords)]
            if matched:
                evidence.append(self._category_evidence(category, matched, compliance, started_at))

        if options and options.control_ids:
            wanted = set(options.control_ids)
            evidence = [e for e in evidence if wanted.intersection(e.control_mappings)]

        return CollectionResult.build(started_at, evidence, errors)

    def map_to_controls(self, raw_data: Any) -> list[str]:
        controls: set[str] = set()
        if not isinstance(raw_data, list):
            return []

        for rule in raw_data:
            name = _rule_name(rule)
            source_id = _source_id(rule)
            if not name and not source_id:
                continue
            if any(k in name for k in ("encrypt", "kms", "ssl", "tls")) or "encrypted" in source_id:
                controls.update(("ISO27001:A.8.24", "GDPR:ART.32"))
            access_keywords = ("iam", "access", "mfa", "password", "policy")
            if any(k in name for k in access_keywords) or "iam" in source_id:
                controls.update(("ISO27001:A.8.2", "SOC2:CC6.1", "NIS2:ACC.1"))
            network_keywords = ("vpc", "security-group", "nacl", "network", "sg-")
            if any(k in name for k in network_keywords) or "vpc" in source_id:
                controls.update(("NIS2:NET.1", "ISO27001:A.8.20", "ISO27001:A.8.21"))
            if any(k in name for k in ("config", "cloudtrail", "logging")):
                controls.update(("ISO27001:A.8.9", "SOC2:CC8.1"))
            if "cis" in name or "cis" in source_id:
                controls.add("AWS:CIS.1.1")
        return sorted(controls)

    async def _get_config_rules(self) -> list[dict[str, Any]]:
        rules: list[dict[str, Any]] = []
        token: str | None = None
        seen: set[str] = set()
        while True:
            response = await self._call("DescribeConfigRules", {"NextToken": token} if token else {})
            response.raise_for_status()
            payload = json_or_empty(response)
            page = payload.get("ConfigRules") or []
            rules.extend(r for r in page if isinstance(r, dict))
            token = payload.get("NextToken")
            if not token:
                return rules
            if token in seen:
                raise CollectionFault(
                    f"DescribeConfigRules repeated NextToken {token!r}", code="PAGINATION_LOOP"
                )
            seen.add(token)

    async def _get_compliance_by_rule(self) -> dict[str, str]:
        response = await self._call("DescribeComplianceByConfigRule")
        response.raise_for_status()
        result: dict[str, str] = {}
        for item in json_or_empty(response).get("ComplianceByConfigRules") or []:
            if not isinstance(item, dict):
                continue
            compliance = item.get("Compliance") or {}
            result[str(item.get("ConfigRuleName"))] = compliance.get(
                "ComplianceType", "INSUFFICIENT_DATA"
            )
        return result

    def _overall_evidence(
        self,
        rules: list[dict[str, Any]],
        compliance: dict[str, str],
        collected_at: datetime,
    ) -> CollectedEvidence:
        non_compliant = [n for n, c in compliance.items() if c == "NON_COMPLIANT"]
        compliant = [n for n, c in compliance.items() if c == "COMPLIANT"]
        evaluated = len(compliant) + len(non_compliant)
        rate = round(100 * len(compliant) / evaluated) if evaluated else 100
        if rate < 70:
            severity = EvidenceSeverity.HIGH
        elif rate < 90:
            severity = EvidenceSeverity.MEDIUM
        else:
            severity = EvidenceSeverity.LOW
        return CollectedEvidence(
            external_id=f"aws-config-overall-{self.config.id}-{collected_at:%Y%m%d}",
            type="configuration_compliance",
            title="AWS Config Rule Compliance Summary",
            description=(
                f"{len(compliant)} of {evaluated} evaluated rules compliant ({rate}%), "
                f"{len(rules)} rules configured"
            ),
            raw_data={"compliance": compliance, "rule_count": len(rules)},
            collected_at=collected_at,
            source="aws-config",
            control_mappings=self.map_to_controls(rules),
            severity=severity,
            status=EvidenceStatus.VALID,
            expires_at=collected_at + timedelta(days=1),
            metadata={"compliance_rate": rate, "non_compliant_rules": non_compliant[:20]},
        )

    def _category_evidence(
        self,
        category: str,
        rules: list[dict[str, Any]],
        compliance: dict[str, str],
        collected_at: datetime,
    ) -> CollectedEvidence:
        names = [r.get("ConfigRuleName") for r in rules]
        failing = [n for n in names if compliance.get(str(n)) == "NON_COMPLIANT"]
        return CollectedEvidence(
            external_id=f"aws-config-{category}-{self.config.id}-{collected_at:%Y%m%d}",
            type="configuration_compliance",
            title=f"AWS {category.replace('_', ' ').title()} Rules",
            description=f"{len(rules) - len(failing)} of {len(rules)} {category} rules compliant",
            raw_data={"rules": rules, "non_compliant": failing},
            collected_at=collected_at,
            source="aws-config",
            control_mappings=self.map_to_controls(rules),
            severity=EvidenceSeverity.HIGH if failing else EvidenceSeverity.INFO,
            status=EvidenceStatus.VALID,
            expires_at=collected_at + timedelta(days=1),
        )

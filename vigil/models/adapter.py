"""Adapter configuration and health models."""

from __future__ import annotations

import json
import logging
from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Any

logger = logging.getLogger(__name__)


class AuthType(str, Enum):
    """Authentication scheme used to reach an external system."""

    API_KEY = "api_key"
    BASIC = "basic"
    OAUTH2 = "oauth2"
    IAM_ROLE = "iam_role"
    CERTIFICATE = "certificate"


class AdapterType(str, Enum):
    """Adapter categories by function."""

    VULNERABILITY_SCANNER = "vulnerability_scanner"  # Qualys, Nessus, Rapid7
    SIEM = "siem"  # Splunk, Elastic, Sumo Logic
    CLOUD_CONFIG = "cloud_config"  # AWS Config, Azure Policy
    CODE_SCANNER = "code_scanner"  # SonarQube, Snyk
    IDENTITY_PROVIDER = "identity_provider"  # Okta, Azure AD
    ENDPOINT_PROTECTION = "endpoint_protection"  # CrowdStrike, SentinelOne
    NETWORK_SECURITY = "network_security"  # Palo Alto, Fortinet
    CONTAINER_SECURITY = "container_security"  # Aqua, Sysdig


@dataclass(frozen=True)
class AdapterCredentials:
    """Credentials for one adapter, discriminated by ``auth_type``."""

    auth_type: AuthType | None
    api_key: str | None = None
    client_id: str | None = None
    client_secret: str | None = None
    username: str | None = None
    password: str | None = None
    role_arn: str | None = None
    certificate_path: str | None = None
    private_key_path: str | None = None
    access_token: str | None = None
    refresh_token: str | None = None
    token_expiry: datetime | None = None

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "AdapterCredentials":
        raw_auth = data.get("auth_type") or data.get("authType")
        try:
            auth_type = AuthType(raw_auth) if raw_auth else None
        except ValueError:
            auth_type = None
        expiry = data.get("token_expiry")
        if isinstance(expiry, str):
            try:
                expiry = datetime.fromisoformat(expiry)
            except ValueError:
                expiry = None
        return cls(
            auth_type=auth_type,
            api_key=data.get("api_key"),
            client_id=data.get("client_id"),
            client_secret=data.get("client_secret"),
            username=data.get("username"),
            password=data.get("password"),
            role_arn=data.get("role_arn"),
            certificate_path=data.get("certificate_path"),
            private_key_path=data.get("private_key_path"),
            access_token=data.get("access_token"),
            refresh_token=data.get("refresh_token"),
            token_expiry=expiry,
        )


@dataclass(frozen=True)
class AdapterConfig:
    """Configuration for one adapter instance.

    Immutable after construction and owned by the adapter built from it.
    ``type`` is kept as the declared string so that configs naming a
    category this build does not know can still be loaded and rejected at
    registration time.
    """

    id: str
    tenant_id: str
    name: str
    type: str
    base_url: str
    credentials: AdapterCredentials | None
    polling_interval_ms: int | None = None
    enabled: bool = True
    metadata: dict[str, Any] = field(default_factory=dict)

    def sanitized(self) -> dict[str, Any]:
        """Return the config as a dict with every secret removed."""
        auth_type = self.credentials.auth_type if self.credentials else None
        return {
            "id": self.id,
            "tenant_id": self.tenant_id,
            "name": self.name,
            "type": self.type,
            "base_url": self.base_url,
            "credentials": {"auth_type": auth_type.value if auth_type else None},
            "polling_interval_ms": self.polling_interval_ms,
            "enabled": self.enabled,
            "metadata": dict(self.metadata),
        }

    @classmethod
    def from_record(cls, rec: dict[str, Any]) -> "AdapterConfig":
        """Build a config from a stored adapter row.

        Credentials and metadata may arrive as JSON strings.
        """
        credentials = rec.get("credentials")
        if isinstance(credentials, str):
            try:
                credentials = json.loads(credentials)
            except ValueError:
                logger.warning("Failed to parse credentials for adapter %s", rec.get("id"))
                credentials = {"auth_type": AuthType.API_KEY.value}

        metadata = rec.get("metadata")
        if isinstance(metadata, str):
            try:
                metadata = json.loads(metadata)
            except ValueError:
                metadata = {}

        return cls(
            id=rec["id"],
            tenant_id=rec["tenant_id"],
            name=rec.get("name") or rec["id"],
            type=rec.get("adapter_type") or rec.get("type") or "",
            base_url=rec.get("base_url") or "",
            credentials=AdapterCredentials.from_dict(credentials) if credentials else None,
            polling_interval_ms=rec.get("polling_interval_ms") or None,
            enabled=bool(rec.get("enabled", True)),
            metadata=metadata or {},
        )


@dataclass(frozen=True)
class AdapterHealthStatus:
    """Outcome of one connectivity probe."""

    healthy: bool
    last_check_at: datetime
    latency_ms: float
    error_message: str | None = None
    details: dict[str, Any] = field(default_factory=dict)

    def to_dict(self) -> dict[str, Any]:
        return {
            "healthy": self.healthy,
            "last_check_at": self.last_check_at.isoformat(),
            "latency_ms": self.latency_ms,
            "error_message": self.error_message,
            "details": self.details,
        }


@dataclass
class AdapterHealthSummary:
    """Per-adapter entry in a registry health report."""

    id: str
    name: str
    type: str
    healthy: bool
    last_check_at: datetime | None = None
    latency_ms: float | None = None
    error_message: str | None = None


@dataclass
class RegistryHealth:
    """Aggregate health of a tenant's adapter registry."""

    initialized: bool
    adapter_count: int
    healthy_count: int
    unhealthy_count: int
    adapters: list[AdapterHealthSummary] = field(default_factory=list)

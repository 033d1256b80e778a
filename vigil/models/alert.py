"""Alert models consumed by the alerting collaborator."""

from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum
from typing import Any


class AlertType(str, Enum):
    DRIFT = "drift"
    EXPIRATION = "expiration"
    OVERDUE_REMEDIATION = "overdue_remediation"
    COMPLIANCE_BREACH = "compliance_breach"
    COLLECTION_FAILURE = "collection_failure"


class AlertSeverity(str, Enum):
    INFO = "info"
    WARNING = "warning"
    ERROR = "error"
    CRITICAL = "critical"


@dataclass
class AlertRequest:
    """Payload for ``AlertStore.create_alert``."""

    type: AlertType
    severity: AlertSeverity
    title: str
    message: str
    details: dict[str, Any] = field(default_factory=dict)
    framework_id: str | None = None
    assessment_id: str | None = None
    control_id: str | None = None


@dataclass(frozen=True)
class EscalationStatus:
    """Unacknowledged alerts past their escalation age for one tenant."""

    critical_unacknowledged: int
    critical_older_than_1_hour: int
    error_older_than_24_hours: int

    @property
    def escalation_required(self) -> bool:
        return self.critical_older_than_1_hour > 0 or self.error_older_than_24_hours > 0

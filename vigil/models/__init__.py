"""Domain models for the Vigil compliance monitoring engine."""

from vigil.models.adapter import (
    AdapterConfig,
    AdapterCredentials,
    AdapterHealthStatus,
    AdapterHealthSummary,
    AdapterType,
    AuthType,
    RegistryHealth,
)
from vigil.models.alert import (
    AlertRequest,
    AlertSeverity,
    AlertType,
    EscalationStatus,
)
from vigil.models.evidence import (
    BulkCollectionResult,
    CollectedEvidence,
    CollectionError,
    CollectionMetadata,
    CollectionOptions,
    CollectionResult,
    EvidenceSeverity,
    EvidenceStatus,
    is_collected_evidence,
)
from vigil.models.job import JobResult, ScheduleConfig
from vigil.models.monitoring import (
    Assessment,
    ComplianceBaseline,
    ComplianceTrendPoint,
    ControlFinding,
    ControlScore,
    DriftResult,
    DriftSeverity,
    DriftType,
    FindingStatus,
    MonitoringCheckResult,
    MonitoringHealth,
    MonitoringStatus,
    ServiceContext,
    score_for_status,
)

__all__ = [
    # Adapter
    "AdapterConfig",
    "AdapterCredentials",
    "AdapterHealthStatus",
    "AdapterHealthSummary",
    "AdapterType",
    "AuthType",
    "RegistryHealth",
    # Evidence
    "BulkCollectionResult",
    "CollectedEvidence",
    "CollectionError",
    "CollectionMetadata",
    "CollectionOptions",
    "CollectionResult",
    "EvidenceSeverity",
    "EvidenceStatus",
    "is_collected_evidence",
    # Monitoring
    "Assessment",
    "ComplianceBaseline",
    "ComplianceTrendPoint",
    "ControlFinding",
    "ControlScore",
    "DriftResult",
    "DriftSeverity",
    "DriftType",
    "FindingStatus",
    "MonitoringCheckResult",
    "MonitoringHealth",
    "MonitoringStatus",
    "ServiceContext",
    "score_for_status",
    # Alerts
    "AlertRequest",
    "AlertSeverity",
    "AlertType",
    "EscalationStatus",
    # Jobs
    "JobResult",
    "ScheduleConfig",
]

"""Persistence collaborators for Vigil."""

from vigil.persistence.adapter_config_store import AdapterConfigStore, YamlAdapterConfigStore
from vigil.persistence.alert_store import AlertStore
from vigil.persistence.assessment_store import AssessmentStore
from vigil.persistence.evidence_store import EvidenceStore
from vigil.persistence.monitoring_store import (
    BaselineStore,
    MonitoringCheckStore,
    baseline_to_record,
    check_to_record,
    ensure_schema,
    record_to_baseline,
)
from vigil.persistence.remediation_store import RemediationStore

__all__ = [
    "AdapterConfigStore",
    "YamlAdapterConfigStore",
    "AlertStore",
    "AssessmentStore",
    "EvidenceStore",
    "RemediationStore",
    "BaselineStore",
    "MonitoringCheckStore",
    "baseline_to_record",
    "check_to_record",
    "record_to_baseline",
    "ensure_schema",
]

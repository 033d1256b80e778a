"""Baseline capture, drift detection and scheduled compliance checks."""

from vigil.monitoring.monitoring_engine import (
    MonitoringEngine,
    classify_drift,
    compute_drift,
    drift_severity,
    monitoring_status,
)

__all__ = [
    "MonitoringEngine",
    "classify_drift",
    "compute_drift",
    "drift_severity",
    "monitoring_status",
]

"""Recurring compliance jobs."""

from vigil.scheduler.compliance_scheduler import (
    CancellationToken,
    ComplianceScheduler,
    JOB_HISTORY,
    JobHistory,
    JobId,
    SchedulerServices,
    default_schedules,
    overdue_severity,
)

__all__ = [
    "JOB_HISTORY",
    "CancellationToken",
    "ComplianceScheduler",
    "JobHistory",
    "JobId",
    "SchedulerServices",
    "default_schedules",
    "overdue_severity",
]

"""Compliance scheduler.

Runs the recurring monitoring jobs: daily compliance checks, alert
escalation, evidence expiration, alert cleanup, remediation due dates and
adapter evidence collection. Every job fans out over tenants and isolates
per-tenant failures.
"""

from __future__ import annotations

import asyncio
import logging
import threading
from collections import deque
from dataclasses import asdict, dataclass
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Awaitable, Callable

from config.settings import settings
from vigil.adapters.adapter_registry import AdapterRegistryStore
from vigil.errors import SchedulingFault, UnknownJobError
from vigil.models import (
    AlertRequest,
    AlertSeverity,
    AlertType,
    JobResult,
    ScheduleConfig,
    ServiceContext,
)
from vigil.monitoring.monitoring_engine import MonitoringEngine
from vigil.scheduler import config
from vigil.tracing import log_event

logger = logging.getLogger(__name__)

COMPONENT = "scheduler"
STATUS_RESULTS = 10


class JobId(str, Enum):
    DAILY_COMPLIANCE_CHECK = "daily_compliance_check"
    HOURLY_ALERT_CHECK = "hourly_alert_check"
    EVIDENCE_EXPIRATION = "evidence_expiration"
    ALERT_CLEANUP = "alert_cleanup"
    REMEDIATION_CHECK = "remediation_check"
    EVIDENCE_COLLECTION = "evidence_collection"


def default_schedules() -> dict[JobId, ScheduleConfig]:
    """Job table with intervals and enable flags from the environment."""
    return {
        JobId.DAILY_COMPLIANCE_CHECK: ScheduleConfig(
            enabled=config.DAILY_COMPLIANCE_CHECK_ENABLED,
            interval_ms=config.DAILY_COMPLIANCE_CHECK_INTERVAL_MS,
            name="Daily Compliance Check",
        ),
        JobId.HOURLY_ALERT_CHECK: ScheduleConfig(
            enabled=config.HOURLY_ALERT_CHECK_ENABLED,
            interval_ms=config.HOURLY_ALERT_CHECK_INTERVAL_MS,
            name="Hourly Alert Check",
        ),
        JobId.EVIDENCE_EXPIRATION: ScheduleConfig(
            enabled=config.EVIDENCE_EXPIRATION_ENABLED,
            interval_ms=config.EVIDENCE_EXPIRATION_INTERVAL_MS,
            name="Evidence Expiration Check",
        ),
        JobId.ALERT_CLEANUP: ScheduleConfig(
            enabled=config.ALERT_CLEANUP_ENABLED,
            interval_ms=config.ALERT_CLEANUP_INTERVAL_MS,
            name="Alert Cleanup",
        ),
        JobId.REMEDIATION_CHECK: ScheduleConfig(
            enabled=config.REMEDIATION_CHECK_ENABLED,
            interval_ms=config.REMEDIATION_CHECK_INTERVAL_MS,
            name="Remediation Due Date Check",
        ),
        JobId.EVIDENCE_COLLECTION: ScheduleConfig(
            enabled=config.EVIDENCE_COLLECTION_ENABLED,
            interval_ms=config.EVIDENCE_COLLECTION_INTERVAL_MS,
            name="Automatic Evidence Collection",
        ),
    }


class JobHistory:
    """Bounded, thread-safe history of job results; oldest evicted first."""

    def __init__(self, limit: int = settings.job_history_limit):
        self._results: deque[JobResult] = deque(maxlen=limit)
        self._lock = threading.Lock()

    def append(self, result: JobResult) -> None:
        with self._lock:
            self._results.append(result)

    def snapshot(self) -> list[JobResult]:
        with self._lock:
            return list(self._results)

    def recent(self, n: int) -> list[JobResult]:
        with self._lock:
            return list(self._results)[-n:] if n > 0 else []

    def __len__(self) -> int:
        with self._lock:
            return len(self._results)


# Process-wide job history shared by every scheduler that is not given one.
JOB_HISTORY = JobHistory()


class CancellationToken:
    """Cooperative shutdown signal passed to every job body."""

    def __init__(self):
        self._event = asyncio.Event()

    def cancel(self) -> None:
        self._event.set()

    @property
    def cancelled(self) -> bool:
        return self._event.is_set()

    async def wait(self, timeout: float | None = None) -> bool:
        """Wait up to ``timeout`` seconds; True if cancelled meanwhile."""
        try:
            await asyncio.wait_for(self._event.wait(), timeout)
        except asyncio.TimeoutError:
            return False
        return True


@dataclass
class SchedulerServices:
    """Collaborators the job bodies work through."""

    monitoring: MonitoringEngine
    assessment_store: Any
    evidence_store: Any
    alert_store: Any
    remediation_store: Any
    config_store: Any
    registries: AdapterRegistryStore


def _system_context(job_id: JobId) -> ServiceContext:
    stamp = int(datetime.now(timezone.utc).timestamp() * 1000)
    return ServiceContext(tenant_id="", request_id=f"scheduler-{job_id.value}-{stamp}")


def _for_tenant(context: ServiceContext, tenant_id: str) -> ServiceContext:
    return ServiceContext(
        tenant_id=tenant_id, user_id=context.user_id, request_id=context.request_id
    )


def overdue_severity(count: int) -> AlertSeverity:
    if count > 10:
        return AlertSeverity.CRITICAL
    if count > 5:
        return AlertSeverity.ERROR
    return AlertSeverity.WARNING


class ComplianceScheduler:
    """Timer-driven runner for the compliance monitoring jobs."""

    def __init__(
        self,
        services: SchedulerServices,
        schedules: dict[JobId, ScheduleConfig] | None = None,
        startup_delay_s: float = settings.scheduler_startup_delay_seconds,
        history: JobHistory | None = None,
    ):
        self.services = services
        self.schedules = schedules or default_schedules()
        self.startup_delay_s = startup_delay_s
        self.history = history if history is not None else JOB_HISTORY
        self._token = CancellationToken()
        self._tasks: dict[str, asyncio.Task] = {}
        self._startup_task: asyncio.Task | None = None
        self._running = False
        self._bodies: dict[JobId, Callable[[CancellationToken], Awaitable[dict[str, Any]]]] = {
            JobId.DAILY_COMPLIANCE_CHECK: self._run_daily_compliance_check,
            JobId.HOURLY_ALERT_CHECK: self._run_hourly_alert_check,
            JobId.EVIDENCE_EXPIRATION: self._run_evidence_expiration_check,
            JobId.ALERT_CLEANUP: self._run_alert_cleanup,
            JobId.REMEDIATION_CHECK: self._run_remediation_check,
            JobId.EVIDENCE_COLLECTION: self._run_evidence_collection,
        }

    @property
    def is_running(self) -> bool:
        return self._running

    def start(self, custom_schedules: dict[JobId, ScheduleConfig] | None = None) -> None:
        """Arm one loop per enabled job plus a delayed run of every job.

        Must be called from a running event loop.
        """
        if self._running:
            logger.warning("Scheduler already running")
            return

        if custom_schedules:
            self.schedules = {**self.schedules, **custom_schedules}

        self._token = CancellationToken()
        self._running = True
        for job_id, schedule in self.schedules.items():
            if not schedule.enabled:
                continue
            self._tasks[job_id.value] = asyncio.create_task(
                self._job_loop(job_id, schedule.interval_ms / 1000),
                name=f"vigil-job-{job_id.value}",
            )
            logger.info(
                "Scheduled job %s (%s) every %d minutes",
                job_id.value, schedule.name, schedule.interval_ms // 60000,
            )

        self._startup_task = asyncio.create_task(self._startup_run(), name="vigil-startup-run")
        log_event("started", COMPONENT, f"Scheduler started with {len(self._tasks)} jobs")

    async def stop(self) -> None:
        """Stop scheduling; a job already executing is allowed to finish."""
        if not self._running:
            return
        self._token.cancel()
        tasks = list(self._tasks.values())
        if self._startup_task is not None:
            tasks.append(self._startup_task)
        await asyncio.gather(*tasks, return_exceptions=True)
        self._tasks.clear()
        self._startup_task = None
        self._running = False
        log_event("stopped", COMPONENT, "Scheduler stopped")

    async def _startup_run(self) -> None:
        token = self._token
        if await token.wait(self.startup_delay_s):
            return
        await self.run_all_checks(token)

    async def _job_loop(self, job_id: JobId, interval_s: float) -> None:
        token = self._token
        while not token.cancelled:
            if await token.wait(interval_s):
                break
            await self._run_job(job_id, token)

    async def run_all_checks(
        self, token: CancellationToken | None = None
    ) -> dict[str, JobResult]:
        """Run every enabled job once, one after another.

        Manual runs get their own token, so they work whether or not the
        scheduler is running. The startup run passes the shutdown token.
        """
        token = token or CancellationToken()
        results = {}
        for job_id, schedule in self.schedules.items():
            if not schedule.enabled:
                continue
            if token.cancelled:
                break
            results[job_id.value] = await self._run_job(job_id, token)
        return results

    async def trigger_job(self, job_id: str) -> JobResult:
        """Run one job now, outside its schedule.

        Raises:
            UnknownJobError: If ``job_id`` is not in the job table.
        """
        try:
            key = JobId(job_id)
        except ValueError:
            raise UnknownJobError(job_id) from None
        if key not in self.schedules:
            raise UnknownJobError(job_id)
        return await self._run_job(key, CancellationToken())

    def get_job_results(self) -> list[JobResult]:
        return self.history.snapshot()

    def get_status(self) -> dict[str, Any]:
        return {
            "is_running": self._running,
            "active_jobs": list(self._tasks),
            "last_results": self.history.recent(STATUS_RESULTS),
        }

    async def _run_job(self, job_id: JobId, token: CancellationToken) -> JobResult:
        schedule = self.schedules.get(job_id)
        name = schedule.name if schedule else job_id.value
        started_at = datetime.now(timezone.utc)
        logger.info("Starting job %s (%s)", job_id.value, name)

        success = True
        error: str | None = None
        details: dict[str, Any] = {}
        try:
            details = await self._bodies[job_id](token)
        except Exception as e:
            fault = SchedulingFault(job_id.value, e)
            success = False
            error = str(fault)
            logger.exception("Job %s failed: %s", fault.job_id, fault)

        completed_at = datetime.now(timezone.utc)
        result = JobResult(
            job_name=job_id.value,
            started_at=started_at,
            completed_at=completed_at,
            duration_ms=(completed_at - started_at).total_seconds() * 1000,
            success=success,
            error=error,
            details=details,
        )
        self.history.append(result)
        log_event(
            "job_completed" if success else "job_failed",
            COMPONENT,
            f"{job_id.value} finished in {result.duration_ms:.0f}ms",
            {"error": error, **details} if error else details,
            level=logging.INFO if success else logging.ERROR,
        )
        return result

    async def _run_daily_compliance_check(self, token: CancellationToken) -> dict[str, Any]:
        pairs = await self.services.assessment_store.list_recent_tenant_frameworks(
            config.RECENT_ASSESSMENT_DAYS
        )
        checks_run = alerts_created = errors = 0
        for tenant_id, framework_id in pairs:
            if token.cancelled:
                break
            try:
                result = await self.services.monitoring.run_scheduled_check(tenant_id, framework_id)
                checks_run += 1
                alerts_created += result.alerts_created
            except Exception as e:
                errors += 1
                logger.error(
                    "Compliance check failed for %s/%s: %s", tenant_id, framework_id, e
                )
        return {"checks_run": checks_run, "alerts_created": alerts_created, "errors": errors}

    async def _run_hourly_alert_check(self, token: CancellationToken) -> dict[str, Any]:
        alerts = self.services.alert_store
        context = _system_context(JobId.HOURLY_ALERT_CHECK)
        tenants_checked = escalations_triggered = 0
        for tenant_id in await alerts.list_tenants_with_unresolved_alerts():
            if token.cancelled:
                break
            try:
                escalation = await alerts.get_escalation_status(tenant_id)
                tenants_checked += 1
                if not escalation.escalation_required:
                    continue
                escalations_triggered += 1
                await alerts.create_alert(
                    _for_tenant(context, tenant_id),
                    AlertRequest(
                        type=AlertType.COMPLIANCE_BREACH,
                        severity=AlertSeverity.CRITICAL,
                        title="Alert Escalation Required",
                        message=(
                            f"{escalation.critical_older_than_1_hour} critical alerts "
                            "unacknowledged for over 1 hour. "
                            f"{escalation.error_older_than_24_hours} error alerts "
                            "unacknowledged for over 24 hours."
                        ),
                        details=asdict(escalation),
                    ),
                )
                logger.warning("Alert escalation triggered for %s: %s", tenant_id, escalation)
            except Exception as e:
                logger.error("Alert check failed for %s: %s", tenant_id, e)
        return {"tenants_checked": tenants_checked, "escalations_triggered": escalations_triggered}

    async def _run_evidence_expiration_check(self, token: CancellationToken) -> dict[str, Any]:
        evidence = self.services.evidence_store
        tenants_checked = expired_marked = expiring_found = 0
        for tenant_id in await evidence.list_tenants():
            if token.cancelled:
                break
            try:
                expired_marked += await evidence.mark_expired(tenant_id)
                expiring = await evidence.list_expiring_within(
                    tenant_id, settings.expiring_evidence_days
                )
                expiring_found += len(expiring)
                tenants_checked += 1
            except Exception as e:
                logger.error("Evidence expiration check failed for %s: %s", tenant_id, e)
        return {
            "tenants_checked": tenants_checked,
            "expired_marked": expired_marked,
            "expiring_found": expiring_found,
        }

    async def _run_alert_cleanup(self, token: CancellationToken) -> dict[str, Any]:
        alerts = self.services.alert_store
        tenants_processed = alerts_deleted = 0
        for tenant_id in await alerts.list_tenants_with_resolved_alerts():
            if token.cancelled:
                break
            try:
                alerts_deleted += await alerts.cleanup_old_alerts(
                    tenant_id, settings.alert_retention_days
                )
                tenants_processed += 1
            except Exception as e:
                logger.error("Alert cleanup failed for %s: %s", tenant_id, e)
        return {"tenants_processed": tenants_processed, "alerts_deleted": alerts_deleted}

    async def _run_remediation_check(self, token: CancellationToken) -> dict[str, Any]:
        remediations = self.services.remediation_store
        alerts = self.services.alert_store
        context = _system_context(JobId.REMEDIATION_CHECK)

        overdue = await remediations.list_overdue_by_tenant()
        tenants_with_overdue = total_overdue = alerts_created = 0
        for tenant_id, control_ids in overdue.items():
            if token.cancelled:
                break
            count = len(control_ids)
            total_overdue += count
            tenants_with_overdue += 1
            try:
                await alerts.create_alert(
                    _for_tenant(context, tenant_id),
                    AlertRequest(
                        type=AlertType.OVERDUE_REMEDIATION,
                        severity=overdue_severity(count),
                        title=f"{count} Remediation Tasks Overdue",
                        message=(
                            f"{count} remediation tasks have passed their due date "
                            "and require immediate attention."
                        ),
                        details={"overdue_count": count, "control_ids": control_ids[:20]},
                    ),
                )
                alerts_created += 1
            except Exception as e:
                logger.error("Remediation alert creation failed for %s: %s", tenant_id, e)

        due_soon = await remediations.list_due_soon_by_tenant(config.REMEDIATION_DUE_SOON_DAYS)
        for tenant_id, count in due_soon.items():
            if token.cancelled:
                break
            try:
                await alerts.create_alert(
                    _for_tenant(context, tenant_id),
                    AlertRequest(
                        type=AlertType.OVERDUE_REMEDIATION,
                        severity=AlertSeverity.INFO,
                        title=(
                            f"{count} Remediations Due Within "
                            f"{config.REMEDIATION_DUE_SOON_DAYS} Days"
                        ),
                        message=(
                            f"{count} remediation tasks are due within the next "
                            f"{config.REMEDIATION_DUE_SOON_DAYS} days."
                        ),
                        details={"due_soon_count": count},
                    ),
                )
                alerts_created += 1
            except Exception as e:
                logger.debug("Due-soon alert not created for %s: %s", tenant_id, e)

        return {
            "tenants_with_overdue": tenants_with_overdue,
            "total_overdue": total_overdue,
            "tenants_with_due_soon": len(due_soon),
            "alerts_created": alerts_created,
        }

    async def _run_evidence_collection(self, token: CancellationToken) -> dict[str, Any]:
        services = self.services
        tenants_processed = adapters_run = evidence_collected = evidence_stored = errors = 0
        for tenant_id in await services.config_store.list_tenants_with_enabled_adapters():
            if token.cancelled:
                break
            try:
                registry = await services.registries.get_or_create(tenant_id, auto_initialize=True)
                tenants_processed += 1

                result = await registry.collect_all_evidence()
                adapters_run += result.total_adapters
                evidence_collected += result.total_evidence_collected
                errors += result.failed_adapters

                for adapter_id, collection in result.results.items():
                    for item in collection.evidence:
                        try:
                            await services.evidence_store.upsert_evidence(tenant_id, item, adapter_id)
                            evidence_stored += 1
                        except Exception as e:
                            errors += 1
                            logger.warning(
                                "Failed to store evidence %s from %s: %s",
                                item.external_id, adapter_id, e,
                            )
            except Exception as e:
                errors += 1
                logger.error("Evidence collection failed for %s: %s", tenant_id, e)
        return {
            "tenants_processed": tenants_processed,
            "adapters_run": adapters_run,
            "evidence_collected": evidence_collected,
            "evidence_stored": evidence_stored,
            "errors": errors,
        }

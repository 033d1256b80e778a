"""Tests for the compliance scheduler and its job bodies."""

import asyncio
from datetime import datetime, timezone
from unittest.mock import AsyncMock, MagicMock

import pytest

from vigil.errors import UnknownJobError
from vigil.models import (
    AlertSeverity,
    AlertType,
    BulkCollectionResult,
    CollectedEvidence,
    CollectionResult,
    EscalationStatus,
    JobResult,
    ScheduleConfig,
)
from vigil.scheduler import (
    JOB_HISTORY,
    CancellationToken,
    ComplianceScheduler,
    JobHistory,
    JobId,
    SchedulerServices,
    default_schedules,
    overdue_severity,
)
from vigil.scheduler.config import HOUR_MS

NOW = datetime(2026, 6, 1, tzinfo=timezone.utc)


def schedules(*enabled: JobId) -> dict[JobId, ScheduleConfig]:
    """Job table with only ``enabled`` jobs switched on, all hourly."""
    return {
        job_id: ScheduleConfig(enabled=job_id in enabled, interval_ms=HOUR_MS, name=job_id.value)
        for job_id in JobId
    }


def make_evidence(external_id):
    return CollectedEvidence(
        external_id=external_id,
        type="test",
        title="t",
        description="d",
        raw_data={},
        collected_at=NOW,
        source="fake",
    )


@pytest.fixture
def services():
    assessment_store = AsyncMock()
    assessment_store.list_recent_tenant_frameworks.return_value = []
    evidence_store = AsyncMock()
    evidence_store.list_tenants.return_value = []
    alert_store = AsyncMock()
    alert_store.list_tenants_with_unresolved_alerts.return_value = []
    alert_store.list_tenants_with_resolved_alerts.return_value = []
    remediation_store = AsyncMock()
    remediation_store.list_overdue_by_tenant.return_value = {}
    remediation_store.list_due_soon_by_tenant.return_value = {}
    config_store = AsyncMock()
    config_store.list_tenants_with_enabled_adapters.return_value = []
    return SchedulerServices(
        monitoring=AsyncMock(),
        assessment_store=assessment_store,
        evidence_store=evidence_store,
        alert_store=alert_store,
        remediation_store=remediation_store,
        config_store=config_store,
        registries=AsyncMock(),
    )


@pytest.fixture
def scheduler(services):
    return ComplianceScheduler(
        services, schedules=schedules(*JobId), startup_delay_s=0.01, history=JobHistory()
    )


def created_alerts(services):
    return [c.args for c in services.alert_store.create_alert.await_args_list]


class TestJobHistory:
    def make_result(self, i):
        return JobResult(
            job_name=f"job-{i}",
            started_at=NOW,
            completed_at=NOW,
            duration_ms=0.0,
            success=True,
        )

    def test_bounded_to_limit(self):
        history = JobHistory(limit=100)
        for i in range(150):
            history.append(self.make_result(i))

        snapshot = history.snapshot()
        assert len(history) == 100
        assert snapshot[0].job_name == "job-50"
        assert snapshot[-1].job_name == "job-149"

    def test_recent(self):
        history = JobHistory(limit=100)
        for i in range(15):
            history.append(self.make_result(i))

        assert [r.job_name for r in history.recent(3)] == ["job-12", "job-13", "job-14"]
        assert history.recent(0) == []


class TestCancellationToken:
    @pytest.mark.asyncio
    async def test_wait_times_out(self):
        assert await CancellationToken().wait(0.01) is False

    @pytest.mark.asyncio
    async def test_wait_returns_on_cancel(self):
        token = CancellationToken()
        token.cancel()

        assert token.cancelled
        assert await token.wait(10) is True


class TestSchedules:
    def test_default_table(self):
        table = default_schedules()

        assert set(table) == set(JobId)
        assert table[JobId.DAILY_COMPLIANCE_CHECK].name == "Daily Compliance Check"
        assert table[JobId.HOURLY_ALERT_CHECK].interval_ms == HOUR_MS

    @pytest.mark.parametrize(
        "count, expected",
        [
            (1, AlertSeverity.WARNING),
            (5, AlertSeverity.WARNING),
            (6, AlertSeverity.ERROR),
            (10, AlertSeverity.ERROR),
            (11, AlertSeverity.CRITICAL),
        ],
    )
    def test_overdue_severity(self, count, expected):
        assert overdue_severity(count) == expected


class TestTriggerJob:
    @pytest.mark.asyncio
    async def test_unknown_job(self, scheduler):
        with pytest.raises(UnknownJobError):
            await scheduler.trigger_job("weekly_report")

    @pytest.mark.asyncio
    async def test_failed_body_becomes_failed_result(self, scheduler, services):
        services.assessment_store.list_recent_tenant_frameworks.side_effect = ConnectionError(
            "db down"
        )

        result = await scheduler.trigger_job("daily_compliance_check")

        assert result.success is False
        assert result.error == "db down"
        assert scheduler.get_job_results() == [result]

    @pytest.mark.asyncio
    async def test_blank_error_uses_exception_name(self, scheduler, services):
        services.evidence_store.list_tenants.side_effect = TimeoutError()

        result = await scheduler.trigger_job("evidence_expiration")

        assert result.error == "TimeoutError"

    @pytest.mark.asyncio
    async def test_run_all_checks_continues_after_failure(self, scheduler, services):
        services.alert_store.list_tenants_with_unresolved_alerts.side_effect = RuntimeError("x")

        results = await scheduler.run_all_checks()

        assert list(results) == [j.value for j in JobId]
        assert results["hourly_alert_check"].success is False
        assert all(r.success for k, r in results.items() if k != "hourly_alert_check")

    @pytest.mark.asyncio
    async def test_run_all_checks_skips_disabled(self, services):
        scheduler = ComplianceScheduler(
            services,
            schedules=schedules(JobId.ALERT_CLEANUP),
            startup_delay_s=0,
            history=JobHistory(),
        )

        results = await scheduler.run_all_checks()

        assert list(results) == ["alert_cleanup"]


class TestJobBodies:
    @pytest.mark.asyncio
    async def test_daily_check_isolates_tenants(self, scheduler, services):
        services.assessment_store.list_recent_tenant_frameworks.return_value = [
            ("t1", "iso27001"),
            ("t2", "soc2"),
        ]
        services.monitoring.run_scheduled_check.side_effect = [
            RuntimeError("t1 broken"),
            MagicMock(alerts_created=2),
        ]

        result = await scheduler.trigger_job("daily_compliance_check")

        assert result.success
        assert result.details == {"checks_run": 1, "alerts_created": 2, "errors": 1}
        services.assessment_store.list_recent_tenant_frameworks.assert_awaited_once_with(30)

    @pytest.mark.asyncio
    async def test_daily_check_stops_when_cancelled(self, scheduler, services):
        services.assessment_store.list_recent_tenant_frameworks.return_value = [
            ("t1", "a"), ("t2", "b"), ("t3", "c"),
        ]
        token = CancellationToken()

        async def check_and_cancel(tenant_id, framework_id):
            token.cancel()
            return MagicMock(alerts_created=0)

        services.monitoring.run_scheduled_check.side_effect = check_and_cancel

        details = await scheduler._run_daily_compliance_check(token)

        assert details["checks_run"] == 1

    @pytest.mark.asyncio
    async def test_hourly_escalation(self, scheduler, services):
        services.alert_store.list_tenants_with_unresolved_alerts.return_value = ["t1", "t2"]
        services.alert_store.get_escalation_status.side_effect = [
            EscalationStatus(critical_unacknowledged=2, critical_older_than_1_hour=1,
                             error_older_than_24_hours=0),
            EscalationStatus(critical_unacknowledged=0, critical_older_than_1_hour=0,
                             error_older_than_24_hours=0),
        ]

        result = await scheduler.trigger_job("hourly_alert_check")

        assert result.details == {"tenants_checked": 2, "escalations_triggered": 1}
        [(context, alert)] = created_alerts(services)
        assert context.tenant_id == "t1"
        assert alert.type == AlertType.COMPLIANCE_BREACH
        assert alert.severity == AlertSeverity.CRITICAL
        assert alert.title == "Alert Escalation Required"
        assert alert.details["critical_older_than_1_hour"] == 1

    @pytest.mark.asyncio
    async def test_evidence_expiration(self, scheduler, services):
        services.evidence_store.list_tenants.return_value = ["t1", "t2"]
        services.evidence_store.mark_expired.side_effect = [2, RuntimeError("t2 broken")]
        services.evidence_store.list_expiring_within.return_value = [{"id": "e1"}]

        result = await scheduler.trigger_job("evidence_expiration")

        assert result.details == {"tenants_checked": 1, "expired_marked": 2, "expiring_found": 1}

    @pytest.mark.asyncio
    async def test_alert_cleanup(self, scheduler, services):
        services.alert_store.list_tenants_with_resolved_alerts.return_value = ["t1"]
        services.alert_store.cleanup_old_alerts.return_value = 4

        result = await scheduler.trigger_job("alert_cleanup")

        assert result.details == {"tenants_processed": 1, "alerts_deleted": 4}
        services.alert_store.cleanup_old_alerts.assert_awaited_once_with("t1", 90)

    @pytest.mark.asyncio
    async def test_remediation_check(self, scheduler, services):
        services.remediation_store.list_overdue_by_tenant.return_value = {
            "t1": [f"c{i}" for i in range(12)],
            "t2": ["c1"],
        }
        services.remediation_store.list_due_soon_by_tenant.return_value = {"t3": 2}

        result = await scheduler.trigger_job("remediation_check")

        assert result.details == {
            "tenants_with_overdue": 2,
            "total_overdue": 13,
            "tenants_with_due_soon": 1,
            "alerts_created": 3,
        }
        alerts = [(ctx.tenant_id, alert.severity) for ctx, alert in created_alerts(services)]
        assert alerts == [
            ("t1", AlertSeverity.CRITICAL),
            ("t2", AlertSeverity.WARNING),
            ("t3", AlertSeverity.INFO),
        ]
        services.remediation_store.list_due_soon_by_tenant.assert_awaited_once_with(7)

    @pytest.mark.asyncio
    async def test_evidence_collection(self, scheduler, services):
        registry = AsyncMock()
        registry.collect_all_evidence.return_value = BulkCollectionResult(
            total_adapters=2,
            successful_adapters=1,
            failed_adapters=1,
            total_evidence_collected=2,
            results={
                "a1": CollectionResult.build(NOW, [make_evidence("e1"), make_evidence("e2")], []),
                "a2": CollectionResult.failed_from_exception(RuntimeError("down")),
            },
            duration_ms=5.0,
        )
        services.config_store.list_tenants_with_enabled_adapters.return_value = ["t1", "t2"]
        services.registries.get_or_create.side_effect = [registry, RuntimeError("no configs")]
        services.evidence_store.upsert_evidence.side_effect = [{"id": "1"}, RuntimeError("dup")]

        result = await scheduler.trigger_job("evidence_collection")

        assert result.success
        assert result.details == {
            "tenants_processed": 1,
            "adapters_run": 2,
            "evidence_collected": 2,
            "evidence_stored": 1,
            "errors": 3,
        }
        first_upsert = services.evidence_store.upsert_evidence.await_args_list[0]
        assert first_upsert.args[0] == "t1"
        assert first_upsert.args[2] == "a1"


class TestLifecycle:
    @pytest.mark.asyncio
    async def test_start_runs_startup_checks(self, scheduler):
        scheduler.start()
        try:
            assert scheduler.is_running
            assert sorted(scheduler.get_status()["active_jobs"]) == sorted(j.value for j in JobId)

            for _ in range(100):
                if len(scheduler.get_job_results()) == len(JobId):
                    break
                await asyncio.sleep(0.01)
        finally:
            await scheduler.stop()

        assert len(scheduler.get_job_results()) == len(JobId)
        assert scheduler.is_running is False
        assert scheduler.get_status()["active_jobs"] == []

    @pytest.mark.asyncio
    async def test_start_twice_is_noop(self, scheduler):
        scheduler.start()
        tasks = dict(scheduler._tasks)
        scheduler.start()

        assert scheduler._tasks == tasks
        await scheduler.stop()

    @pytest.mark.asyncio
    async def test_stop_lets_running_job_finish(self, services):
        started = asyncio.Event()
        release = asyncio.Event()

        async def slow_tenants():
            started.set()
            await release.wait()
            return []

        services.alert_store.list_tenants_with_unresolved_alerts.side_effect = slow_tenants
        scheduler = ComplianceScheduler(
            services,
            schedules=schedules(JobId.HOURLY_ALERT_CHECK),
            startup_delay_s=0.01,
            history=JobHistory(),
        )

        scheduler.start()
        await asyncio.wait_for(started.wait(), 1)
        stopping = asyncio.create_task(scheduler.stop())
        await asyncio.sleep(0.02)
        assert not stopping.done()

        release.set()
        await asyncio.wait_for(stopping, 1)

        [result] = scheduler.get_job_results()
        assert result.success
        assert result.job_name == "hourly_alert_check"

    @pytest.mark.asyncio
    async def test_stop_before_startup_delay_skips_run(self, services):
        scheduler = ComplianceScheduler(
            services, schedules=schedules(*JobId), startup_delay_s=60, history=JobHistory()
        )

        scheduler.start()
        await scheduler.stop()

        assert scheduler.get_job_results() == []

    @pytest.mark.asyncio
    async def test_status_shows_last_ten(self, scheduler):
        for _ in range(3):
            await scheduler.run_all_checks()

        status = scheduler.get_status()

        assert status["is_running"] is False
        assert len(status["last_results"]) == 10
        assert len(scheduler.get_job_results()) == 18

    @pytest.mark.asyncio
    async def test_manual_runs_work_after_stop(self, scheduler, services):
        services.assessment_store.list_recent_tenant_frameworks.return_value = [("t1", "iso27001")]
        services.monitoring.run_scheduled_check.return_value = MagicMock(alerts_created=0)

        scheduler.start()
        await scheduler.stop()
        all_results = await scheduler.run_all_checks()
        triggered = await scheduler.trigger_job("daily_compliance_check")

        assert list(all_results) == [j.value for j in JobId]
        assert all_results["daily_compliance_check"].details["checks_run"] == 1
        assert triggered.details["checks_run"] == 1
        assert services.monitoring.run_scheduled_check.await_count == 2

    @pytest.mark.asyncio
    async def test_schedulers_share_default_history(self, services):
        first = ComplianceScheduler(services, schedules=schedules(JobId.ALERT_CLEANUP))
        second = ComplianceScheduler(services, schedules=schedules(JobId.ALERT_CLEANUP))
        before = len(JOB_HISTORY)

        result = await first.trigger_job("alert_cleanup")

        assert first.history is second.history is JOB_HISTORY
        assert len(JOB_HISTORY) == min(before + 1, 100)
        assert second.get_job_results()[-1] is result

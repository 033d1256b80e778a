"""Tests for the vigil command line."""

from unittest.mock import AsyncMock, patch

import pytest
from click.testing import CliRunner

from vigil.cli.commands import vigil
from vigil.errors import AssessmentNotFoundError
from vigil.scheduler import SchedulerServices


@pytest.fixture
def services():
    evidence_store = AsyncMock()
    evidence_store.list_tenants.return_value = ["t1"]
    evidence_store.mark_expired.return_value = 1
    evidence_store.list_expiring_within.return_value = []
    return SchedulerServices(
        monitoring=AsyncMock(),
        assessment_store=AsyncMock(),
        evidence_store=evidence_store,
        alert_store=AsyncMock(),
        remediation_store=AsyncMock(),
        config_store=AsyncMock(),
        registries=AsyncMock(),
    )


def invoke(services, *args):
    with patch("vigil.cli.commands._build_services", AsyncMock(return_value=services)):
        return CliRunner().invoke(vigil, list(args))


class TestCli:
    def test_jobs_lists_every_job(self):
        result = CliRunner().invoke(vigil, ["jobs"])

        assert result.exit_code == 0
        for job_id in (
            "daily_compliance_check",
            "hourly_alert_check",
            "evidence_expiration",
            "alert_cleanup",
            "remediation_check",
            "evidence_collection",
        ):
            assert job_id in result.output

    def test_trigger_prints_result(self, services):
        result = invoke(services, "trigger", "evidence_expiration")

        assert result.exit_code == 0
        assert '"success": true' in result.output
        assert '"expired_marked": 1' in result.output
        services.registries.clear.assert_awaited_once()

    def test_trigger_unknown_job(self, services):
        result = invoke(services, "trigger", "weekly_report")

        assert result.exit_code == 1
        assert "Unknown job: weekly_report" in result.output

    def test_baseline_missing_assessment(self, services):
        services.monitoring.capture_baseline.side_effect = AssessmentNotFoundError(
            "Completed assessment not found: as-9"
        )

        result = invoke(services, "baseline", "t1", "as-9")

        assert result.exit_code == 1
        assert "Completed assessment not found" in result.output

    def test_doctor_reports_each_backend(self):
        with (
            patch("vigil.cli.commands.check_supabase", AsyncMock(return_value=None)),
            patch(
                "vigil.cli.commands.check_database",
                AsyncMock(return_value="DATABASE_URL is not set"),
            ),
        ):
            result = CliRunner().invoke(vigil, ["doctor"])

        assert result.exit_code == 1
        assert "supabase   ok" in result.output
        assert "database   FAILED: DATABASE_URL is not set" in result.output

    def test_doctor_all_ok(self):
        with (
            patch("vigil.cli.commands.check_supabase", AsyncMock(return_value=None)),
            patch("vigil.cli.commands.check_database", AsyncMock(return_value=None)),
        ):
            result = CliRunner().invoke(vigil, ["doctor"])

        assert result.exit_code == 0

"""Tests for baseline and monitoring check persistence."""

from datetime import datetime, timezone
from unittest.mock import AsyncMock, MagicMock

import pytest

from vigil.db import normalize_db_url
from vigil.models import (
    ComplianceBaseline,
    ControlScore,
    DriftResult,
    DriftSeverity,
    DriftType,
    MonitoringCheckResult,
)
from vigil.persistence import (
    BaselineStore,
    MonitoringCheckStore,
    baseline_to_record,
    check_to_record,
    record_to_baseline,
)
from vigil.persistence.models import BaselineRecord

NOW = datetime(2026, 6, 1, tzinfo=timezone.utc)


@pytest.fixture
def baseline():
    return ComplianceBaseline(
        id="baseline-1",
        tenant_id="tenant-1",
        assessment_id="assessment-1",
        framework_id="iso27001",
        overall_score=87.5,
        control_scores={
            "c1": ControlScore("compliant", 100, 3),
            "c2": ControlScore("partial", 50, 0),
        },
        captured_at=NOW,
        captured_by="auditor",
        notes="Q2",
    )


def make_sessionmaker(record=None):
    """Sessionmaker mock whose sessions return ``record`` from any select."""
    session = MagicMock()
    session.__aenter__.return_value = session
    session.commit = AsyncMock()
    result = MagicMock()
    result.scalars.return_value.first.return_value = record
    result.scalars.return_value.all.return_value = [record] if record else []
    session.execute = AsyncMock(return_value=result)
    return MagicMock(return_value=session), session


class TestConverters:
    def test_baseline_record_round_trip(self, baseline):
        record = baseline_to_record(baseline)

        assert record.control_scores["c1"] == {
            "status": "compliant", "score": 100, "evidence_count": 3,
        }
        assert record_to_baseline(record) == baseline

    def test_camel_case_evidence_count(self):
        record = BaselineRecord(
            id="b", tenant_id="t", assessment_id="a", framework_id="f",
            overall_score=50.0,
            control_scores={"c1": {"status": "partial", "score": 50, "evidenceCount": 4}},
            captured_at=NOW, captured_by="system",
        )

        assert record_to_baseline(record).control_scores["c1"].evidence_count == 4

    def test_check_record(self):
        drift = DriftResult(
            control_id="c1", control_number="A.1", control_title="Policy",
            previous_status="compliant", current_status="non_compliant",
            previous_score=100, current_score=0, score_delta=-100,
            drift_type=DriftType.DEGRADED, evidence_changed=False,
            severity=DriftSeverity.CRITICAL,
        )
        result = MonitoringCheckResult(
            check_id="check-1", tenant_id="tenant-1", framework_id="iso27001",
            checked_at=NOW, previous_score=90, current_score=60, score_delta=-30,
            drifts=[drift], alerts_created=2,
        )

        record = check_to_record(result)

        assert record.drift_count == 1
        assert record.drifts[0]["drift_type"] == "degraded"
        assert record.drifts[0]["severity"] == "critical"
        assert record.alerts_created == 2


class TestBaselineStore:
    @pytest.mark.asyncio
    async def test_save_commits(self, baseline):
        maker, session = make_sessionmaker()

        await BaselineStore(maker).save_baseline(baseline)

        added = session.add.call_args.args[0]
        assert isinstance(added, BaselineRecord)
        assert added.id == "baseline-1"
        session.commit.assert_awaited_once()

    @pytest.mark.asyncio
    async def test_get_latest(self, baseline):
        maker, _ = make_sessionmaker(baseline_to_record(baseline))

        latest = await BaselineStore(maker).get_latest("tenant-1", "iso27001")

        assert latest == baseline

    @pytest.mark.asyncio
    async def test_get_latest_missing(self):
        maker, _ = make_sessionmaker(None)

        assert await BaselineStore(maker).get_latest("tenant-1", "iso27001") is None

    @pytest.mark.asyncio
    async def test_list_baselines(self, baseline):
        maker, _ = make_sessionmaker(baseline_to_record(baseline))

        baselines = await BaselineStore(maker).list_baselines("tenant-1", "iso27001", limit=5)

        assert baselines == [baseline]


class TestMonitoringCheckStore:
    @pytest.mark.asyncio
    async def test_last_check_at(self):
        maker, _ = make_sessionmaker(NOW)

        assert await MonitoringCheckStore(maker).get_last_check_at("tenant-1") == NOW


class TestNormalizeDbUrl:
    @pytest.mark.parametrize(
        "url, expected",
        [
            ("postgres://u:p@h/db", "postgresql+asyncpg://u:p@h/db"),
            ("postgresql://u:p@h/db", "postgresql+asyncpg://u:p@h/db"),
            ("postgresql+asyncpg://u:p@h/db", "postgresql+asyncpg://u:p@h/db"),
            ("sqlite+aiosqlite:///x.db", "sqlite+aiosqlite:///x.db"),
        ],
    )
    def test_rewrites_driver(self, url, expected):
        assert normalize_db_url(url) == expected

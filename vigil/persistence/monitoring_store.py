"""Persistence for baselines and monitoring check records."""

from __future__ import annotations

from datetime import datetime
from typing import Any

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from vigil.db import get_async_engine, get_sessionmaker
from vigil.models import ComplianceBaseline, ControlScore, MonitoringCheckResult
from vigil.persistence.models import Base, BaselineRecord, MonitoringCheckRecord


async def ensure_schema() -> None:
    """Create tables if they do not exist."""
    async with get_async_engine().begin() as conn:
        await conn.run_sync(Base.metadata.create_all)


def baseline_to_record(baseline: ComplianceBaseline) -> BaselineRecord:
    return BaselineRecord(
        id=baseline.id,
        tenant_id=baseline.tenant_id,
        assessment_id=baseline.assessment_id,
        framework_id=baseline.framework_id,
        overall_score=baseline.overall_score,
        control_scores={
            control_id: {
                "status": score.status,
                "score": score.score,
                "evidence_count": score.evidence_count,
            }
            for control_id, score in baseline.control_scores.items()
        },
        captured_at=baseline.captured_at,
        captured_by=baseline.captured_by,
        notes=baseline.notes,
    )


def record_to_baseline(record: BaselineRecord) -> ComplianceBaseline:
    scores: dict[str, Any] = record.control_scores or {}
    return ComplianceBaseline(
        id=record.id,
        tenant_id=record.tenant_id,
        assessment_id=record.assessment_id,
        framework_id=record.framework_id,
        overall_score=record.overall_score,
        control_scores={
            control_id: ControlScore(
                status=entry.get("status", ""),
                score=int(entry.get("score", 0)),
                evidence_count=int(entry.get("evidence_count", entry.get("evidenceCount", 0))),
            )
            for control_id, entry in scores.items()
        },
        captured_at=record.captured_at,
        captured_by=record.captured_by,
        notes=record.notes,
    )


def check_to_record(result: MonitoringCheckResult) -> MonitoringCheckRecord:
    return MonitoringCheckRecord(
        id=result.check_id,
        tenant_id=result.tenant_id,
        framework_id=result.framework_id,
        checked_at=result.checked_at,
        previous_score=result.previous_score,
        current_score=result.current_score,
        score_delta=result.score_delta,
        drift_count=len(result.drifts),
        drifts=[d.to_dict() for d in result.drifts],
        expired_evidence=result.expired_evidence,
        expiring_evidence=result.expiring_evidence,
        overdue_remediations=result.overdue_remediations,
        alerts_created=result.alerts_created,
    )


class _SessionStore:
    def __init__(self, sessionmaker: async_sessionmaker[AsyncSession] | None = None):
        self._sessionmaker = sessionmaker

    def _session(self) -> AsyncSession:
        maker = self._sessionmaker or get_sessionmaker()
        return maker()


class BaselineStore(_SessionStore):
    """Postgres-backed baseline store. Baselines are insert-only."""

    async def save_baseline(self, baseline: ComplianceBaseline) -> None:
        async with self._session() as session:
            session.add(baseline_to_record(baseline))
            await session.commit()

    async def get_latest(self, tenant_id: str, framework_id: str) -> ComplianceBaseline | None:
        async with self._session() as session:
            result = await session.execute(
                select(BaselineRecord)
                .where(
                    BaselineRecord.tenant_id == tenant_id,
                    BaselineRecord.framework_id == framework_id,
                )
                .order_by(BaselineRecord.captured_at.desc())
                .limit(1)
            )
            record = result.scalars().first()
        return record_to_baseline(record) if record else None

    async def list_baselines(
        self, tenant_id: str, framework_id: str | None = None, limit: int = 10
    ) -> list[ComplianceBaseline]:
        query = select(BaselineRecord).where(BaselineRecord.tenant_id == tenant_id)
        if framework_id:
            query = query.where(BaselineRecord.framework_id == framework_id)
        query = query.order_by(BaselineRecord.captured_at.desc()).limit(limit)
        async with self._session() as session:
            result = await session.execute(query)
            records = result.scalars().all()
        return [record_to_baseline(r) for r in records]


class MonitoringCheckStore(_SessionStore):
    """Postgres-backed audit trail of scheduled checks."""

    async def save_check(self, result: MonitoringCheckResult) -> None:
        async with self._session() as session:
            session.add(check_to_record(result))
            await session.commit()

    async def get_last_check_at(self, tenant_id: str) -> datetime | None:
        async with self._session() as session:
            result = await session.execute(
                select(MonitoringCheckRecord.checked_at)
                .where(MonitoringCheckRecord.tenant_id == tenant_id)
                .order_by(MonitoringCheckRecord.checked_at.desc())
                .limit(1)
            )
            return result.scalars().first()

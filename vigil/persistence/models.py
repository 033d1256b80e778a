"""SQLAlchemy models for Vigil persistence."""

from __future__ import annotations

from datetime import datetime, timezone

from sqlalchemy import DateTime, Float, Integer, JSON, String, Text
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column


def _utc_now() -> datetime:
    return datetime.now(timezone.utc)


class Base(DeclarativeBase):
    """Declarative base."""


class BaselineRecord(Base):
    """Immutable compliance baseline captured from a completed assessment."""

    __tablename__ = "compliance_baselines"

    id: Mapped[str] = mapped_column(String(64), primary_key=True)
    tenant_id: Mapped[str] = mapped_column(String(255), index=True)
    assessment_id: Mapped[str] = mapped_column(String(64), index=True)
    framework_id: Mapped[str] = mapped_column(String(64), index=True)
    overall_score: Mapped[float] = mapped_column(Float)
    control_scores: Mapped[dict] = mapped_column(JSON, default=dict)
    captured_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), default=_utc_now, index=True
    )
    captured_by: Mapped[str] = mapped_column(String(255))
    notes: Mapped[str | None] = mapped_column(Text, nullable=True)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=_utc_now)


class MonitoringCheckRecord(Base):
    """Audit record of one scheduled compliance check."""

    __tablename__ = "compliance_monitoring_checks"

    id: Mapped[str] = mapped_column(String(64), primary_key=True)
    tenant_id: Mapped[str] = mapped_column(String(255), index=True)
    framework_id: Mapped[str] = mapped_column(String(64), index=True)
    checked_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), default=_utc_now, index=True
    )
    previous_score: Mapped[float] = mapped_column(Float)
    current_score: Mapped[float] = mapped_column(Float)
    score_delta: Mapped[float] = mapped_column(Float)
    drift_count: Mapped[int] = mapped_column(Integer, default=0)
    drifts: Mapped[list] = mapped_column(JSON, default=list)
    expired_evidence: Mapped[int] = mapped_column(Integer, default=0)
    expiring_evidence: Mapped[int] = mapped_column(Integer, default=0)
    overdue_remediations: Mapped[int] = mapped_column(Integer, default=0)
    alerts_created: Mapped[int] = mapped_column(Integer, default=0)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=_utc_now)

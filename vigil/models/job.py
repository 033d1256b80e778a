"""Scheduler job models."""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
from typing import Any


@dataclass(frozen=True)
class ScheduleConfig:
    """Schedule for one named job."""

    enabled: bool
    interval_ms: int
    name: str


@dataclass(frozen=True)
class JobResult:
    """One scheduler execution record."""

    job_name: str
    started_at: datetime
    completed_at: datetime
    duration_ms: float
    success: bool
    error: str | None = None
    details: dict[str, Any] = field(default_factory=dict)

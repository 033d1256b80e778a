"""Collected evidence and collection result models."""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Sequence


class EvidenceSeverity(str, Enum):
    """Severity attached to a piece of evidence."""

    CRITICAL = "critical"
    HIGH = "high"
    MEDIUM = "medium"
    LOW = "low"
    INFO = "info"


class EvidenceStatus(str, Enum):
    """Lifecycle status of collected evidence."""

    VALID = "valid"
    EXPIRED = "expired"
    SUPERSEDED = "superseded"
    PENDING_REVIEW = "pending_review"


@dataclass
class CollectedEvidence:
    """A unit of evidence produced by one adapter run.

    ``external_id`` is the source system's identifier and is the key for
    idempotent upserts. ``raw_data`` is kept untouched for audit.
    """

    external_id: str
    type: str
    title: str
    description: str
    raw_data: dict[str, Any]
    collected_at: datetime
    source: str
    control_mappings: list[str] = field(default_factory=list)
    severity: EvidenceSeverity | None = None
    status: EvidenceStatus = EvidenceStatus.VALID
    expires_at: datetime | None = None
    metadata: dict[str, Any] = field(default_factory=dict)

    def to_dict(self) -> dict[str, Any]:
        """Serialize into a JSON-friendly dict."""
        return {
            "external_id": self.external_id,
            "type": self.type,
            "title": self.title,
            "description": self.description,
            "raw_data": self.raw_data,
            "collected_at": self.collected_at.isoformat(),
            "source": self.source,
            "control_mappings": list(self.control_mappings),
            "severity": self.severity.value if self.severity else None,
            "status": self.status.value,
            "expires_at": self.expires_at.isoformat() if self.expires_at else None,
            "metadata": self.metadata,
        }


def is_collected_evidence(obj: Any) -> bool:
    """Return True if ``obj`` is structurally valid collected evidence."""
    if not isinstance(obj, CollectedEvidence):
        return False
    return (
        isinstance(obj.external_id, str)
        and isinstance(obj.type, str)
        and isinstance(obj.title, str)
        and isinstance(obj.description, str)
        and isinstance(obj.source, str)
        and isinstance(obj.collected_at, datetime)
        and isinstance(obj.control_mappings, list)
        and isinstance(obj.status, EvidenceStatus)
    )


@dataclass
class CollectionOptions:
    """Filters for one evidence pull."""

    control_ids: list[str] | None = None
    from_date: datetime | None = None
    to_date: datetime | None = None
    limit: int | None = None
    include_raw_data: bool = True


@dataclass(frozen=True)
class CollectionError:
    """Structured error captured during collection."""

    code: str
    message: str
    details: dict[str, Any] = field(default_factory=dict)


@dataclass(frozen=True)
class CollectionMetadata:
    """Timing and item counts of one collection run."""

    started_at: datetime
    completed_at: datetime
    duration_ms: float
    items_collected: int
    items_failed: int


@dataclass(frozen=True)
class CollectionResult:
    """Per-adapter collection outcome.

    This is the only value ``EvidenceAdapter.collect`` returns; failures are
    carried in ``errors`` instead of being raised.
    """

    success: bool
    evidence: tuple[CollectedEvidence, ...]
    errors: tuple[CollectionError, ...]
    metadata: CollectionMetadata

    @classmethod
    def _finish(
        cls,
        success: bool,
        started_at: datetime,
        evidence: Sequence[CollectedEvidence],
        errors: Sequence[CollectionError],
    ) -> "CollectionResult":
        completed_at = datetime.now(timezone.utc)
        return cls(
            success=success,
            evidence=tuple(evidence),
            errors=tuple(errors),
            metadata=CollectionMetadata(
                started_at=started_at,
                completed_at=completed_at,
                duration_ms=(completed_at - started_at).total_seconds() * 1000,
                items_collected=len(evidence),
                items_failed=len(errors),
            ),
        )

    @classmethod
    def ok(
        cls,
        started_at: datetime,
        evidence: Sequence[CollectedEvidence],
        errors: Sequence[CollectionError] = (),
    ) -> "CollectionResult":
        """Successful result, possibly carrying non-fatal errors."""
        return cls._finish(True, started_at, evidence, errors)

    @classmethod
    def failed(
        cls,
        started_at: datetime,
        errors: Sequence[CollectionError],
        evidence: Sequence[CollectedEvidence] = (),
    ) -> "CollectionResult":
        return cls._finish(False, started_at, evidence, errors)

    @classmethod
    def build(
        cls,
        started_at: datetime,
        evidence: list[CollectedEvidence],
        errors: list[CollectionError],
    ) -> "CollectionResult":
        """Build a result; success unless errors exist and nothing was collected."""
        if errors and not evidence:
            return cls.failed(started_at, errors)
        return cls.ok(started_at, evidence, errors)

    @classmethod
    def failed_from_exception(
        cls,
        exc: BaseException,
        code: str = "COLLECTION_EXCEPTION",
        started_at: datetime | None = None,
    ) -> "CollectionResult":
        """Synthetic failed result for an exception raised during collection."""
        now = datetime.now(timezone.utc)
        started = started_at or now
        return cls(
            success=False,
            evidence=(),
            errors=(
                CollectionError(
                    code=code,
                    message=str(exc) or type(exc).__name__,
                    details={"exception_type": type(exc).__name__},
                ),
            ),
            metadata=CollectionMetadata(
                started_at=started,
                completed_at=now,
                duration_ms=(now - started).total_seconds() * 1000,
                items_collected=0,
                items_failed=1,
            ),
        )


@dataclass
class BulkCollectionResult:
    """Aggregate over all adapters in one registry run."""

    total_adapters: int
    successful_adapters: int
    failed_adapters: int
    total_evidence_collected: int
    results: dict[str, CollectionResult]
    duration_ms: float

    @property
    def success(self) -> bool:
        return self.failed_adapters == 0

"""Tests for domain models."""

from datetime import datetime, timedelta, timezone

from vigil.models import (
    AdapterConfig,
    AuthType,
    BulkCollectionResult,
    CollectedEvidence,
    CollectionError,
    CollectionResult,
    EscalationStatus,
    is_collected_evidence,
    score_for_status,
)

NOW = datetime(2026, 6, 1, tzinfo=timezone.utc)


def make_evidence():
    return CollectedEvidence(
        external_id="e1",
        type="test",
        title="t",
        description="d",
        raw_data={},
        collected_at=NOW,
        source="fake",
    )


class TestAdapterConfig:
    def test_from_record_parses_json_strings(self):
        config = AdapterConfig.from_record(
            {
                "id": "a1",
                "tenant_id": "t1",
                "adapter_type": "splunk",
                "base_url": "https://splunk.example.com",
                "credentials": '{"authType": "basic", "username": "u", "password": "p"}',
                "metadata": "{not json",
                "polling_interval_ms": 0,
            }
        )

        assert config.name == "a1"
        assert config.type == "splunk"
        assert config.credentials.auth_type == AuthType.BASIC
        assert config.metadata == {}
        assert config.polling_interval_ms is None

    def test_unparseable_credentials_fall_back_to_api_key(self):
        config = AdapterConfig.from_record(
            {"id": "a1", "tenant_id": "t1", "type": "qualys", "credentials": "{oops"}
        )

        assert config.credentials.auth_type == AuthType.API_KEY
        assert config.credentials.api_key is None

    def test_unknown_auth_type(self):
        config = AdapterConfig.from_record(
            {"id": "a1", "tenant_id": "t1", "credentials": {"auth_type": "kerberos"}}
        )

        assert config.credentials.auth_type is None


class TestCollectionResult:
    def test_partial_success(self):
        result = CollectionResult.build(
            NOW, [make_evidence()], [CollectionError(code="X", message="m")]
        )

        assert result.success
        assert result.metadata.items_collected == 1
        assert result.metadata.items_failed == 1

    def test_errors_only_is_failure(self):
        result = CollectionResult.build(NOW, [], [CollectionError(code="X", message="m")])

        assert result.success is False

    def test_empty_is_success(self):
        assert CollectionResult.build(NOW, [], []).success

    def test_ok_and_failed_constructors(self):
        ok = CollectionResult.ok(NOW, [make_evidence()])
        failed = CollectionResult.failed(NOW, [CollectionError(code="X", message="m")])

        assert ok.success and ok.errors == ()
        assert failed.success is False
        assert failed.evidence == ()
        assert failed.metadata.items_failed == 1

    def test_failed_from_exception_without_message(self):
        started = datetime.now(timezone.utc) - timedelta(seconds=1)

        result = CollectionResult.failed_from_exception(TimeoutError(), started_at=started)

        assert result.errors[0].message == "TimeoutError"
        assert result.errors[0].details == {"exception_type": "TimeoutError"}
        assert result.metadata.duration_ms >= 1000

    def test_bulk_success(self):
        bulk = BulkCollectionResult(
            total_adapters=1, successful_adapters=1, failed_adapters=0,
            total_evidence_collected=0, results={}, duration_ms=0.0,
        )
        assert bulk.success


class TestHelpers:
    def test_is_collected_evidence(self):
        assert is_collected_evidence(make_evidence())
        assert not is_collected_evidence({"external_id": "e1"})

    def test_status_scores(self):
        assert score_for_status("compliant") == 100
        assert score_for_status("not_applicable") == 100
        assert score_for_status("partial") == 50
        assert score_for_status("non_compliant") == 0
        assert score_for_status("whatever") == 0

    def test_escalation_required(self):
        assert not EscalationStatus(5, 0, 0).escalation_required
        assert EscalationStatus(0, 0, 1).escalation_required

    def test_evidence_to_dict(self):
        data = make_evidence().to_dict()

        assert data["collected_at"] == NOW.isoformat()
        assert data["status"] == "valid"
        assert data["severity"] is None

"""Tests for the YAML adapter configuration store."""

from datetime import datetime, timezone

import pytest

from vigil.errors import StoreError
from vigil.models import AdapterHealthStatus, AuthType
from vigil.persistence import YamlAdapterConfigStore

ADAPTERS_YAML = """
adapters:
  - id: qualys-prod
    tenant_id: tenant-1
    name: Qualys Production
    type: qualys
    base_url: https://qualysapi.example.com
    credentials:
      auth_type: basic
      username: scanner
      password: hunter2
  - id: splunk-prod
    tenant_id: tenant-1
    name: Splunk
    type: splunk
    base_url: https://splunk.example.com:8089
    enabled: false
    credentials:
      auth_type: api_key
      api_key: abc
  - id: aws-eu
    tenant_id: tenant-2
    type: aws-config
    base_url: https://config.eu-west-1.amazonaws.com
    credentials:
      auth_type: iam_role
      role_arn: arn:aws:iam::123:role/vigil
    metadata:
      region: eu-west-1
"""


@pytest.fixture
def store(tmp_path):
    path = tmp_path / "adapters.yaml"
    path.write_text(ADAPTERS_YAML)
    return YamlAdapterConfigStore(path)


class TestYamlAdapterConfigStore:
    @pytest.mark.asyncio
    async def test_lists_enabled_for_tenant(self, store):
        configs = await store.list_enabled_adapter_configs("tenant-1")

        assert [c.id for c in configs] == ["qualys-prod"]
        assert configs[0].credentials.auth_type == AuthType.BASIC
        assert configs[0].credentials.username == "scanner"

    @pytest.mark.asyncio
    async def test_name_defaults_to_id(self, store):
        [config] = await store.list_enabled_adapter_configs("tenant-2")

        assert config.name == "aws-eu"
        assert config.type == "aws-config"
        assert config.metadata == {"region": "eu-west-1"}

    @pytest.mark.asyncio
    async def test_tenants(self, store):
        assert await store.list_tenants_with_enabled_adapters() == ["tenant-1", "tenant-2"]

    @pytest.mark.asyncio
    async def test_health_is_kept_in_memory(self, store):
        status = AdapterHealthStatus(
            healthy=False, last_check_at=datetime.now(timezone.utc), latency_ms=5.0
        )

        await store.update_health("tenant-1", "qualys-prod", status)
        await store.update_last_collection_time("tenant-1", "qualys-prod")

        assert store.health[("tenant-1", "qualys-prod")] is status
        assert ("tenant-1", "qualys-prod") in store.last_collection_at

    @pytest.mark.asyncio
    async def test_bad_structure(self, tmp_path):
        path = tmp_path / "adapters.yaml"
        path.write_text("adapters: not-a-list\n")

        with pytest.raises(StoreError):
            await YamlAdapterConfigStore(path).list_enabled_adapter_configs("tenant-1")

    @pytest.mark.asyncio
    async def test_empty_file(self, tmp_path):
        path = tmp_path / "adapters.yaml"
        path.write_text("")

        assert await YamlAdapterConfigStore(path).list_enabled_adapter_configs("tenant-1") == []

"""Shared fixtures for Vigil tests."""

from unittest.mock import AsyncMock, MagicMock

import pytest

from vigil.models import AdapterConfig, AdapterCredentials, AuthType

QUERY_METHODS = (
    "select", "eq", "neq", "lt", "gt", "gte", "lte", "in_",
    "order", "limit", "update", "insert", "upsert", "delete",
)


def make_query(*responses):
    """A Supabase query builder mock whose ``execute`` yields ``responses`` in order."""
    query = MagicMock()
    for name in QUERY_METHODS:
        getattr(query, name).return_value = query
    query.execute = AsyncMock(
        side_effect=[MagicMock(data=data, count=count) for data, count in responses]
    )
    return query


@pytest.fixture
def supabase_client():
    """Factory: client whose ``table()`` returns a query yielding the given (data, count) pairs."""

    def _make(*responses):
        client = MagicMock()
        client.table.return_value = make_query(*responses)
        return client

    return _make


@pytest.fixture
def adapter_config():
    """Factory for adapter configs with api_key credentials."""

    def _make(
        adapter_id: str = "adapter-1",
        adapter_type: str = "qualys",
        base_url: str = "https://vendor.example.com",
        tenant_id: str = "tenant-1",
        **kwargs,
    ) -> AdapterConfig:
        credentials = kwargs.pop(
            "credentials", AdapterCredentials(auth_type=AuthType.API_KEY, api_key="secret-key")
        )
        return AdapterConfig(
            id=adapter_id,
            tenant_id=tenant_id,
            name=kwargs.pop("name", f"{adapter_type} {adapter_id}"),
            type=adapter_type,
            base_url=base_url,
            credentials=credentials,
            **kwargs,
        )

    return _make

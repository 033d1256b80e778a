"""Adapter configuration stores."""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from datetime import datetime, timezone
from pathlib import Path
from typing import Any

import yaml
from supabase._async.client import AsyncClient

from vigil.errors import StoreError
from vigil.models import AdapterConfig, AdapterHealthStatus

logger = logging.getLogger(__name__)

ADAPTERS_TABLE = "compliance_adapters"


def _utc_now_iso() -> str:
    return datetime.now(timezone.utc).isoformat()


def _configs_from_rows(rows: list[dict[str, Any]]) -> list[AdapterConfig]:
    configs = []
    for row in rows:
        try:
            configs.append(AdapterConfig.from_record(row))
        except (KeyError, TypeError) as e:
            logger.warning("Skipping malformed adapter row %s: %s", row.get("id"), e)
    return configs


@dataclass
class AdapterConfigStore:
    """Supabase-backed store for adapter configurations."""

    client: AsyncClient

    async def list_enabled_adapter_configs(self, tenant_id: str) -> list[AdapterConfig]:
        """Get enabled adapter configs for a tenant, oldest first."""
        response = await (
            self.client.table(ADAPTERS_TABLE)
            .select("*")
            .eq("tenant_id", tenant_id)
            .eq("enabled", True)
            .order("created_at", desc=False)
            .execute()
        )
        return _configs_from_rows(response.data or [])

    async def update_health(
        self, tenant_id: str, adapter_id: str, status: AdapterHealthStatus
    ) -> None:
        """Record the latest health probe for an adapter."""
        await (
            self.client.table(ADAPTERS_TABLE)
            .update(
                {
                    "health_status": status.to_dict(),
                    "last_health_check_at": status.last_check_at.isoformat(),
                    "updated_at": _utc_now_iso(),
                }
            )
            .eq("tenant_id", tenant_id)
            .eq("id", adapter_id)
            .execute()
        )

    async def update_last_collection_time(self, tenant_id: str, adapter_id: str) -> None:
        now = _utc_now_iso()
        await (
            self.client.table(ADAPTERS_TABLE)
            .update({"last_collection_at": now, "updated_at": now})
            .eq("tenant_id", tenant_id)
            .eq("id", adapter_id)
            .execute()
        )

    async def list_tenants_with_enabled_adapters(self) -> list[str]:
        response = await (
            self.client.table(ADAPTERS_TABLE)
            .select("tenant_id")
            .eq("enabled", True)
            .execute()
        )
        return sorted({row["tenant_id"] for row in (response.data or [])})


@dataclass
class YamlAdapterConfigStore:
    """Adapter configurations read from a YAML file.

    The file holds a top-level ``adapters`` list of records in the same
    shape as the ``compliance_adapters`` table. Health and collection times
    are kept in memory only.
    """

    path: Path
    health: dict[tuple[str, str], AdapterHealthStatus] = field(default_factory=dict)
    last_collection_at: dict[tuple[str, str], datetime] = field(default_factory=dict)

    def __post_init__(self) -> None:
        self.path = Path(self.path)

    def _load_rows(self) -> list[dict[str, Any]]:
        with open(self.path) as f:
            data = yaml.safe_load(f) or {}
        if not isinstance(data, dict) or not isinstance(data.get("adapters", []), list):
            raise StoreError(f"{self.path}: expected a mapping with an 'adapters' list")
        return [row for row in data.get("adapters", []) if isinstance(row, dict)]

    def _enabled_configs(self) -> list[AdapterConfig]:
        return [c for c in _configs_from_rows(self._load_rows()) if c.enabled]

    async def list_enabled_adapter_configs(self, tenant_id: str) -> list[AdapterConfig]:
        return [c for c in self._enabled_configs() if c.tenant_id == tenant_id]

    async def update_health(
        self, tenant_id: str, adapter_id: str, status: AdapterHealthStatus
    ) -> None:
        self.health[(tenant_id, adapter_id)] = status

    async def update_last_collection_time(self, tenant_id: str, adapter_id: str) -> None:
        self.last_collection_at[(tenant_id, adapter_id)] = datetime.now(timezone.utc)

    async def list_tenants_with_enabled_adapters(self) -> list[str]:
        return sorted({c.tenant_id for c in self._enabled_configs()})

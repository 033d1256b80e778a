"""Adapter registry.

Manages the lifecycle and discovery of evidence adapters for one tenant, and
owns the per-tenant registry store used by the scheduler and CLI.
"""

from __future__ import annotations

import asyncio
import logging
import time
from datetime import datetime, timezone
from enum import Enum
from typing import Callable, Protocol, Sequence, TypeVar

from config.settings import settings
from vigil.adapters.aws_config_adapter import AWSConfigAdapter
from vigil.adapters.base_adapter import EvidenceAdapter
from vigil.adapters.qualys_adapter import QualysAdapter
from vigil.adapters.splunk_adapter import SplunkAdapter
from vigil.errors import RegistryInitializationError, UnknownAdapterKindError
from vigil.models import (
    AdapterConfig,
    AdapterHealthStatus,
    AdapterHealthSummary,
    BulkCollectionResult,
    CollectionOptions,
    CollectionResult,
    RegistryHealth,
)
from vigil.tracing import log_event

logger = logging.getLogger(__name__)

T = TypeVar("T")


class AdapterKind(str, Enum):
    """Constructor keys accepted in ``type`` or ``metadata.adapter_class``."""

    QUALYS = "qualys"
    SPLUNK = "splunk"
    AWS_CONFIG = "aws_config"
    # Category defaults
    VULNERABILITY_SCANNER = "vulnerability_scanner"
    SIEM = "siem"
    CLOUD_CONFIG = "cloud_config"


AdapterFactory = Callable[[AdapterConfig], EvidenceAdapter]

ADAPTER_FACTORIES: dict[AdapterKind, AdapterFactory] = {
    AdapterKind.QUALYS: QualysAdapter,
    AdapterKind.VULNERABILITY_SCANNER: QualysAdapter,
    AdapterKind.SPLUNK: SplunkAdapter,
    AdapterKind.SIEM: SplunkAdapter,
    AdapterKind.AWS_CONFIG: AWSConfigAdapter,
    AdapterKind.CLOUD_CONFIG: AWSConfigAdapter,
}


def resolve_adapter_kind(config: AdapterConfig) -> AdapterKind:
    """Resolve the constructor key for a config.

    ``metadata["adapter_class"]`` wins over ``type``. Hyphens are accepted
    in place of underscores (``aws-config``).

    Raises:
        UnknownAdapterKindError: If the key names no known adapter.
    """
    key = config.metadata.get("adapter_class") or config.type
    normalized = str(key or "").strip().lower().replace("-", "_")
    try:
        return AdapterKind(normalized)
    except ValueError:
        raise UnknownAdapterKindError(config.type, str(key)) from None


def batched(items: Sequence[T], size: int) -> list[list[T]]:
    """Split ``items`` into consecutive chunks of at most ``size``."""
    if size < 1:
        raise ValueError("batch size must be at least 1")
    return [list(items[i:i + size]) for i in range(0, len(items), size)]


def get_supported_adapter_types() -> list[dict[str, str]]:
    """List the adapter types this build can construct."""
    return [
        {
            "type": AdapterKind.QUALYS.value,
            "name": "Qualys Vulnerability Scanner",
            "description": "Collect vulnerability scan results from Qualys Cloud Platform",
        },
        {
            "type": AdapterKind.SPLUNK.value,
            "name": "Splunk Enterprise SIEM",
            "description": "Collect security events and logs from Splunk Enterprise",
        },
        {
            "type": AdapterKind.AWS_CONFIG.value,
            "name": "AWS Config",
            "description": "Collect cloud configuration compliance from AWS Config",
        },
    ]


class AdapterConfigSource(Protocol):
    """What the registry needs from an adapter config store."""

    async def list_enabled_adapter_configs(self, tenant_id: str) -> list[AdapterConfig]: ...

    async def update_health(
        self, tenant_id: str, adapter_id: str, status: AdapterHealthStatus
    ) -> None: ...

    async def update_last_collection_time(self, tenant_id: str, adapter_id: str) -> None: ...


class RegistryState(str, Enum):
    UNINITIALIZED = "uninitialized"
    INITIALIZING = "initializing"
    INITIALIZED = "initialized"
    FAILED = "failed"


class AdapterRegistry:
    """Manages evidence adapters for a single tenant.

    One adapter failing to register, collect or answer a health probe never
    affects the others.
    """

    def __init__(
        self,
        tenant_id: str,
        config_store: AdapterConfigSource,
        batch_size: int = settings.collection_batch_size,
        factories: dict[AdapterKind, AdapterFactory] | None = None,
    ):
        self.tenant_id = tenant_id
        self.config_store = config_store
        self.batch_size = batch_size
        self._factories = factories or ADAPTER_FACTORIES
        self._adapters: dict[str, EvidenceAdapter] = {}
        self._lock = asyncio.Lock()
        self.state = RegistryState.UNINITIALIZED
        self.initialization_error: Exception | None = None

    @property
    def initialized(self) -> bool:
        return self.state == RegistryState.INITIALIZED

    @property
    def component(self) -> str:
        return f"registry:{self.tenant_id}"

    async def initialize(self) -> None:
        """Load enabled configs and register each adapter.

        Raises:
            RegistryInitializationError: If the config store cannot be read.
        """
        if self.state in (RegistryState.INITIALIZED, RegistryState.INITIALIZING):
            logger.warning("Adapter registry for %s already initialized", self.tenant_id)
            return

        self.state = RegistryState.INITIALIZING
        logger.info("Initializing adapter registry for tenant %s", self.tenant_id)

        try:
            configs = await self.config_store.list_enabled_adapter_configs(self.tenant_id)
        except Exception as e:
            self.state = RegistryState.FAILED
            self.initialization_error = e
            logger.error("Failed to load adapter configs for %s: %s", self.tenant_id, e)
            raise RegistryInitializationError(
                f"Failed to load adapter configs for {self.tenant_id}: {e}"
            ) from e

        for config in configs:
            if not config.enabled:
                logger.debug("Skipping disabled adapter %s (%s)", config.id, config.name)
                continue
            try:
                await self.register_adapter(config)
            except Exception as e:
                logger.error(
                    "Failed to register adapter %s (%s), continuing with others: %s",
                    config.id, config.name, e,
                )

        self.state = RegistryState.INITIALIZED
        self.initialization_error = None
        log_event(
            "initialized",
            self.component,
            f"{len(self._adapters)} of {len(configs)} adapters registered",
            {"adapter_ids": list(self._adapters)},
        )

    async def register_adapter(self, config: AdapterConfig) -> EvidenceAdapter:
        """Construct, initialize and store an adapter.

        Raises:
            UnknownAdapterKindError: If no implementation matches the config.
            AdapterConfigurationError: If the config fails validation.
            AdapterConnectivityError: If the initial health probe fails.
        """
        async with self._lock:
            kind = resolve_adapter_kind(config)
            adapter = self._factories[kind](config)
            try:
                await adapter.initialize()
            except Exception:
                await adapter.aclose()
                raise
            finally:
                if adapter.last_health_check is not None:
                    await self._persist_health(config.id, adapter.last_health_check)

            previous = self._adapters.get(config.id)
            if previous is not None and previous is not adapter:
                await previous.aclose()
            self._adapters[config.id] = adapter

        log_event(
            "register",
            self.component,
            f"Registered adapter {config.id}",
            {"type": config.type, "kind": kind.value, "name": config.name},
        )
        return adapter

    async def unregister_adapter(self, adapter_id: str) -> bool:
        """Remove an adapter; False when it was not registered."""
        async with self._lock:
            adapter = self._adapters.pop(adapter_id, None)
        if adapter is None:
            return False
        await adapter.aclose()
        log_event("unregister", self.component, f"Unregistered adapter {adapter_id}")
        return True

    def get_adapter(self, adapter_id: str) -> EvidenceAdapter | None:
        return self._adapters.get(adapter_id)

    def get_all_adapters(self) -> list[EvidenceAdapter]:
        return list(self._adapters.values())

    def get_adapters_by_control_type(self, control_id: str) -> list[EvidenceAdapter]:
        """Adapters whose supported controls include ``control_id``."""
        return [a for a in self._adapters.values() if control_id in a.supported_control_types]

    def get_adapters_by_type(self, adapter_type: str) -> list[EvidenceAdapter]:
        return [a for a in self._adapters.values() if a.type == adapter_type]

    async def collect_all_evidence(
        self, options: CollectionOptions | None = None
    ) -> BulkCollectionResult:
        """Collect from every registered adapter.

        Adapters run concurrently within a batch; batches run one after
        another.
        """
        started = time.monotonic()
        adapters = self.get_all_adapters()
        results: dict[str, CollectionResult] = {}
        successful = failed = total_evidence = 0

        for batch in batched(adapters, self.batch_size):
            outcomes = await asyncio.gather(
                *(adapter.collect(options) for adapter in batch),
                return_exceptions=True,
            )
            for adapter, outcome in zip(batch, outcomes):
                if isinstance(outcome, BaseException):
                    logger.error("Adapter %s collection failed: %s", adapter.id, outcome)
                    outcome = CollectionResult.failed_from_exception(outcome)
                else:
                    await self._record_collection(adapter.id)

                results[adapter.id] = outcome
                if outcome.success:
                    successful += 1
                    total_evidence += len(outcome.evidence)
                else:
                    failed += 1

        result = BulkCollectionResult(
            total_adapters=len(adapters),
            successful_adapters=successful,
            failed_adapters=failed,
            total_evidence_collected=total_evidence,
            results=results,
            duration_ms=(time.monotonic() - started) * 1000,
        )
        log_event(
            "collect",
            self.component,
            "Bulk evidence collection completed",
            {
                "total_adapters": result.total_adapters,
                "successful": successful,
                "failed": failed,
                "evidence": total_evidence,
                "duration_ms": round(result.duration_ms),
            },
        )
        return result

    async def health_check_all(self) -> dict[str, AdapterHealthStatus]:
        """Probe every adapter in turn and persist each status."""
        statuses: dict[str, AdapterHealthStatus] = {}
        for adapter in self.get_all_adapters():
            started = time.monotonic()
            try:
                status = await adapter.health_check()
            except Exception as e:
                status = AdapterHealthStatus(
                    healthy=False,
                    last_check_at=datetime.now(timezone.utc),
                    latency_ms=(time.monotonic() - started) * 1000,
                    error_message=str(e) or type(e).__name__,
                )
            statuses[adapter.id] = status
            await self._persist_health(adapter.id, status)
        return statuses

    def get_health(self) -> RegistryHealth:
        """Aggregate health from each adapter's last probe."""
        summaries = []
        for adapter in self._adapters.values():
            last = adapter.last_health_check
            summaries.append(
                AdapterHealthSummary(
                    id=adapter.id,
                    name=adapter.name,
                    type=adapter.type,
                    healthy=bool(last and last.healthy),
                    last_check_at=last.last_check_at if last else None,
                    latency_ms=last.latency_ms if last else None,
                    error_message=last.error_message if last else None,
                )
            )
        healthy = sum(1 for s in summaries if s.healthy)
        return RegistryHealth(
            initialized=self.initialized,
            adapter_count=len(summaries),
            healthy_count=healthy,
            unhealthy_count=len(summaries) - healthy,
            adapters=summaries,
        )

    async def aclose(self) -> None:
        """Close every adapter's HTTP client."""
        for adapter in self.get_all_adapters():
            await adapter.aclose()

    async def _persist_health(self, adapter_id: str, status: AdapterHealthStatus) -> None:
        try:
            await self.config_store.update_health(self.tenant_id, adapter_id, status)
        except Exception as e:
            logger.warning("Failed to update health for adapter %s: %s", adapter_id, e)

    async def _record_collection(self, adapter_id: str) -> None:
        try:
            await self.config_store.update_last_collection_time(self.tenant_id, adapter_id)
        except Exception as e:
            logger.warning("Failed to update collection time for adapter %s: %s", adapter_id, e)


class AdapterRegistryStore:
    """Owns one ``AdapterRegistry`` per tenant."""

    def __init__(
        self,
        config_store: AdapterConfigSource,
        batch_size: int = settings.collection_batch_size,
        registry_factory: Callable[..., AdapterRegistry] = AdapterRegistry,
    ):
        self.config_store = config_store
        self.batch_size = batch_size
        self._registry_factory = registry_factory
        self._registries: dict[str, AdapterRegistry] = {}
        self._lock = asyncio.Lock()

    async def get_or_create(
        self, tenant_id: str, auto_initialize: bool = True
    ) -> AdapterRegistry:
        """Return the tenant's registry, creating it on first use.

        Concurrent callers for the same tenant get the same instance.
        """
        async with self._lock:
            registry = self._registries.get(tenant_id)
            if registry is None:
                registry = self._registry_factory(
                    tenant_id, self.config_store, batch_size=self.batch_size
                )
                self._registries[tenant_id] = registry
            if auto_initialize and not registry.initialized:
                await registry.initialize()
        return registry

    def get(self, tenant_id: str) -> AdapterRegistry | None:
        return self._registries.get(tenant_id)

    def tenants(self) -> list[str]:
        return list(self._registries)

    async def clear(self, tenant_id: str | None = None) -> None:
        """Drop one tenant's registry, or all of them."""
        async with self._lock:
            if tenant_id is None:
                dropped = list(self._registries.values())
                self._registries.clear()
            else:
                registry = self._registries.pop(tenant_id, None)
                dropped = [registry] if registry else []
        for registry in dropped:
            await registry.aclose()


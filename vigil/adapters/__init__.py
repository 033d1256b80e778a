"""Evidence collection adapters and the per-tenant adapter registry."""

from vigil.adapters.adapter_registry import (
    ADAPTER_FACTORIES,
    AdapterKind,
    AdapterRegistry,
    AdapterRegistryStore,
    RegistryState,
    batched,
    get_supported_adapter_types,
    resolve_adapter_kind,
)
from vigil.adapters.aws_config_adapter import AWSConfigAdapter
from vigil.adapters.base_adapter import EvidenceAdapter
from vigil.adapters.qualys_adapter import QualysAdapter
from vigil.adapters.retry import RetryConfig, RetryExecutor, parse_retry_after
from vigil.adapters.splunk_adapter import SplunkAdapter

__all__ = [
    "ADAPTER_FACTORIES",
    "AdapterKind",
    "AdapterRegistry",
    "AdapterRegistryStore",
    "RegistryState",
    "batched",
    "get_supported_adapter_types",
    "resolve_adapter_kind",
    "EvidenceAdapter",
    "QualysAdapter",
    "SplunkAdapter",
    "AWSConfigAdapter",
    "RetryConfig",
    "RetryExecutor",
    "parse_retry_after",
]

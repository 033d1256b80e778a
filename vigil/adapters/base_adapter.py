"""Evidence collection adapter base.

Every integration with an external security or operations tool implements
``EvidenceAdapter``. The registry only talks to adapters through this
contract, so an integration is treated as an untrusted black box.
"""

from __future__ import annotations

import base64
import logging
import random
from abc import ABC, abstractmethod
from datetime import datetime, timezone
from typing import Any
from urllib.parse import urlencode, urljoin

import httpx

from vigil.adapters.retry import RetryConfig, RetryExecutor
from vigil.errors import AdapterConfigurationError, AdapterConnectivityError, CollectionFault
from vigil.models import (
    AdapterConfig,
    AdapterHealthStatus,
    AuthType,
    CollectionOptions,
    CollectionResult,
)


class EvidenceAdapter(ABC):
    """Abstract base class for evidence collection adapters.

    Subclasses implement:
    - supported_control_types: control ids this adapter provides evidence for
    - adapter_type_name: human-readable vendor name
    - health_check(): probe connectivity; failures are returned, not raised
    - collect_evidence(): pull evidence from the external system
    - map_to_controls(): map raw vendor records to control ids
    """

    def __init__(
        self,
        config: AdapterConfig,
        retry_executor: RetryExecutor | None = None,
        transport: httpx.AsyncBaseTransport | None = None,
    ):
        self.config = config
        self.logger = logging.getLogger(f"vigil.adapter.{config.type}.{config.id}")
        self._retry = retry_executor or RetryExecutor()
        self._transport = transport
        self._client: httpx.AsyncClient | None = None
        self._last_health_check: AdapterHealthStatus | None = None
        self._initialized = False

    @property
    @abstractmethod
    def supported_control_types(self) -> list[str]:
        """Control ids in ``FRAMEWORK:CONTROL`` form, e.g. ``ISO27001:A.8.8``."""

    @property
    @abstractmethod
    def adapter_type_name(self) -> str:
        """Human-readable name for this adapter type."""

    @abstractmethod
    async def health_check(self) -> AdapterHealthStatus:
        """Check connectivity and authentication with the external system."""

    @abstractmethod
    async def collect_evidence(
        self, options: CollectionOptions | None = None
    ) -> CollectionResult:
        """Collect evidence from the external system."""

    @abstractmethod
    def map_to_controls(self, raw_data: Any) -> list[str]:
        """Map raw vendor data to a sorted, de-duplicated list of control ids.

        Must never raise on malformed input.
        """

    async def initialize(self) -> None:
        """Validate config and perform one health probe.

        Raises:
            AdapterConfigurationError: If the config is invalid.
            AdapterConnectivityError: If the health probe reports unhealthy.
        """
        if self._initialized:
            self.logger.warning("Adapter %s already initialized", self.config.id)
            return

        self.logger.info(
            "Initializing adapter %s (type=%s, base_url=%s)",
            self.config.id, self.config.type, self.config.base_url,
        )
        self.validate_config()

        health = await self.health_check()
        if not health.healthy:
            self.logger.error(
                "Adapter %s initialization failed: %s (latency=%.0fms)",
                self.config.id, health.error_message, health.latency_ms,
            )
            self._last_health_check = health
            raise AdapterConnectivityError(self.config.id, health.error_message)

        self._last_health_check = health
        self._initialized = True
        self.logger.info(
            "Adapter %s initialized (latency=%.0fms, controls=%d)",
            self.config.id, health.latency_ms, len(self.supported_control_types),
        )

    def validate_config(self) -> None:
        """Validate required fields for the configured auth type."""
        config = self.config
        if not config.id:
            raise AdapterConfigurationError("Adapter ID is required")
        if not config.base_url:
            raise AdapterConfigurationError("Adapter base URL is required")
        if config.credentials is None:
            raise AdapterConfigurationError("Adapter credentials are required")

        creds = config.credentials
        if creds.auth_type is None:
            raise AdapterConfigurationError("Adapter authentication type is required")

        if creds.auth_type == AuthType.API_KEY and not creds.api_key:
            raise AdapterConfigurationError("API key is required for api_key authentication")
        if creds.auth_type == AuthType.BASIC and not (creds.username and creds.password):
            raise AdapterConfigurationError(
                "Username and password are required for basic authentication"
            )
        if creds.auth_type == AuthType.OAUTH2 and not (creds.client_id and creds.client_secret):
            raise AdapterConfigurationError(
                "Client ID and secret are required for OAuth2 authentication"
            )
        if creds.auth_type == AuthType.CERTIFICATE and not creds.certificate_path:
            raise AdapterConfigurationError(
                "Certificate path is required for certificate authentication"
            )
        # iam_role uses instance credentials or the environment

    async def collect(self, options: CollectionOptions | None = None) -> CollectionResult:
        """Collect evidence, converting any escaping exception into a result.

        This is the boundary the registry calls; it always returns a
        ``CollectionResult``.
        """
        started_at = datetime.now(timezone.utc)
        try:
            return await self.collect_evidence(options)
        except CollectionFault as e:
            self.logger.error("Adapter %s collection failed [%s]: %s", self.config.id, e.code, e)
            return CollectionResult.failed_from_exception(e, code=e.code, started_at=started_at)
        except Exception as e:
            self.logger.exception("Adapter %s collection raised", self.config.id)
            return CollectionResult.failed_from_exception(
                e, code=CollectionFault.code, started_at=started_at
            )

    def sanitized_config(self) -> dict[str, Any]:
        """Adapter configuration without secrets."""
        return self.config.sanitized()

    @property
    def last_health_check(self) -> AdapterHealthStatus | None:
        return self._last_health_check

    @property
    def initialized(self) -> bool:
        return self._initialized

    @property
    def id(self) -> str:
        return self.config.id

    @property
    def type(self) -> str:
        return self.config.type

    @property
    def name(self) -> str:
        return self.config.name

    def calculate_backoff(
        self,
        attempt: int,
        base_delay_ms: float = 1000,
        max_delay_ms: float = 30000,
    ) -> float:
        """Exponential backoff with up to one second of jitter, in ms."""
        return RetryConfig(base_delay_ms=base_delay_ms, max_delay_ms=max_delay_ms).get_delay(
            attempt, random.random
        )

    def _get_client(self) -> httpx.AsyncClient:
        if self._client is None:
            kwargs: dict[str, Any] = {}
            if self._transport is not None:
                kwargs["transport"] = self._transport
            creds = self.config.credentials
            if creds and creds.auth_type == AuthType.CERTIFICATE and creds.certificate_path:
                # Certificate auth is handled at the transport layer
                kwargs["cert"] = (
                    (creds.certificate_path, creds.private_key_path)
                    if creds.private_key_path
                    else creds.certificate_path
                )
            self._client = httpx.AsyncClient(**kwargs)
        return self._client

    async def fetch_with_retry(
        self,
        method: str,
        url: str,
        max_retries: int | None = None,
        **kwargs: Any,
    ) -> httpx.Response:
        """Make an HTTP request through the retry executor."""
        return await self._retry.request(
            self._get_client(), method, url, max_retries=max_retries, **kwargs
        )

    async def aclose(self) -> None:
        """Close the underlying HTTP client."""
        if self._client is not None:
            await self._client.aclose()
            self._client = None

    def get_auth_headers(self) -> dict[str, str]:
        """Authorization headers for the configured auth type."""
        creds = self.config.credentials
        if creds is None:
            return {}

        if creds.auth_type == AuthType.API_KEY:
            return {"Authorization": f"Bearer {creds.api_key}"}
        if creds.auth_type == AuthType.BASIC:
            token = base64.b64encode(f"{creds.username}:{creds.password}".encode()).decode()
            return {"Authorization": f"Basic {token}"}
        if creds.auth_type == AuthType.OAUTH2:
            if creds.access_token:
                return {"Authorization": f"Bearer {creds.access_token}"}
            raise AdapterConfigurationError("OAuth2 access token not available")
        # iam_role is signed per cloud provider; certificate is transport level
        return {}

    def build_url(self, path: str, params: dict[str, Any] | None = None) -> str:
        """Join ``path`` onto the base URL, dropping None-valued params."""
        base = self.config.base_url
        if not base.endswith("/"):
            base += "/"
        url = urljoin(base, path.lstrip("/"))
        if params:
            query = {k: str(v).lower() if isinstance(v, bool) else str(v)
                     for k, v in params.items() if v is not None}
            if query:
                url = f"{url}?{urlencode(query)}"
        return url

    @staticmethod
    def parse_date(value: str | None) -> datetime | None:
        """Parse an ISO date string; None on empty or invalid input."""
        if not value:
            return None
        try:
            parsed = datetime.fromisoformat(value.replace("Z", "+00:00"))
        except ValueError:
            return None
        if parsed.tzinfo is None:
            parsed = parsed.replace(tzinfo=timezone.utc)
        return parsed

    @staticmethod
    def format_date(value: datetime, fmt: str = "iso") -> str:
        """Format a date for vendor APIs: ``iso``, ``epoch`` or ``ymd``."""
        if fmt == "epoch":
            return str(int(value.timestamp()))
        if fmt == "ymd":
            return value.strftime("%Y-%m-%d")
        return value.isoformat()

    def _health(
        self,
        healthy: bool,
        started: datetime,
        error_message: str | None = None,
        details: dict[str, Any] | None = None,
    ) -> AdapterHealthStatus:
        now = datetime.now(timezone.utc)
        return AdapterHealthStatus(
            healthy=healthy,
            last_check_at=now,
            latency_ms=(now - started).total_seconds() * 1000,
            error_message=error_message,
            details=details or {},
        )

    def __repr__(self) -> str:
        return f"{type(self).__name__}(id={self.config.id!r}, type={self.config.type!r})"


def json_or_empty(response: httpx.Response) -> dict[str, Any]:
    """Decode a JSON object body; anything else becomes an empty dict."""
    try:
        payload = response.json()
    except ValueError:
        return {}
    return payload if isinstance(payload, dict) else {}

"""Shared async Supabase client for the collaborator stores."""

from __future__ import annotations

import logging

from supabase._async.client import AsyncClient, create_client as create_async_client

from config.settings import settings

logger = logging.getLogger(__name__)

# Any table the service role can read works as a reachability probe.
PROBE_TABLE = "compliance_adapters"

_async_client: AsyncClient | None = None


async def get_async_supabase_client() -> AsyncClient:
    global _async_client
    if _async_client is None:
        missing = [
            name
            for name, value in (
                ("SUPABASE_URL", settings.supabase_url),
                ("SUPABASE_SERVICE_ROLE_KEY", settings.supabase_service_role_key),
            )
            if not value
        ]
        if missing:
            raise RuntimeError(f"{', '.join(missing)} not set")
        _async_client = await create_async_client(
            settings.supabase_url,
            settings.supabase_service_role_key,
        )
    return _async_client


def reset_supabase_client() -> None:
    """Forget the cached client (tests and settings reloads)."""
    global _async_client
    _async_client = None


async def check_supabase() -> str | None:
    """Probe the adapters table. Returns None when reachable, else the error text."""
    try:
        client = await get_async_supabase_client()
        await client.table(PROBE_TABLE).select("id").limit(1).execute()
    except Exception as e:
        logger.warning("Supabase check failed: %s", e)
        return str(e)
    return None

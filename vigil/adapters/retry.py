"""Retry executor for outbound adapter requests."""

from __future__ import annotations

import asyncio
import logging
import random
from dataclasses import dataclass
from datetime import datetime, timezone
from email.utils import parsedate_to_datetime
from typing import Any, Awaitable, Callable

import httpx

from config.settings import settings

logger = logging.getLogger(__name__)

RETRYABLE_STATUS_FLOOR = 500
RATE_LIMITED_STATUS = 429


@dataclass
class RetryConfig:
    """Configuration for retry behavior with exponential backoff.

    All delays are in milliseconds.
    """

    max_retries: int = settings.retry_max_retries
    base_delay_ms: float = settings.retry_base_delay_ms
    max_delay_ms: float = settings.retry_max_delay_ms
    exponential_base: float = 2.0
    jitter_ms: float = 1000.0
    max_retry_after_ms: float = 120_000.0
    timeout_seconds: float = settings.http_timeout_seconds

    def get_delay(self, attempt: int, rng: Callable[[], float] = random.random) -> float:
        """Calculate the delay before the attempt following ``attempt``.

        Args:
            attempt: The attempt index that just failed (0-indexed).
            rng: Source of uniform values in [0, 1).

        Returns:
            ``min(base * 2**attempt + jitter, max_delay)`` with jitter in
            ``[0, jitter_ms)``.
        """
        delay = self.base_delay_ms * (self.exponential_base ** attempt)
        jitter = rng() * self.jitter_ms
        return min(delay + jitter, self.max_delay_ms)


def parse_retry_after(value: str | None, now: datetime | None = None) -> float | None:
    """Parse a ``Retry-After`` header into milliseconds.

    Accepts delta-seconds or an HTTP date. Returns None when absent or
    unparseable.
    """
    if not value:
        return None
    value = value.strip()
    try:
        seconds = float(value)
    except ValueError:
        try:
            when = parsedate_to_datetime(value)
        except (TypeError, ValueError):
            return None
        if when.tzinfo is None:
            when = when.replace(tzinfo=timezone.utc)
        seconds = (when - (now or datetime.now(timezone.utc))).total_seconds()
    return max(seconds, 0.0) * 1000


class RetryExecutor:
    """Runs one HTTP request under the retry policy.

    - 5xx and transport errors are retried up to ``max_retries`` extra times.
    - 429 waits for ``Retry-After`` when present, else the backoff schedule.
    - Other 4xx and all 2xx/3xx responses are returned immediately.
    - When retries are exhausted the last error is raised.

    The executor keeps no state between calls.
    """

    def __init__(
        self,
        config: RetryConfig | None = None,
        sleep: Callable[[float], Awaitable[Any]] = asyncio.sleep,
        rng: Callable[[], float] = random.random,
    ):
        self.config = config or RetryConfig()
        self._sleep = sleep
        self._rng = rng

    def backoff_ms(self, attempt: int) -> float:
        return self.config.get_delay(attempt, self._rng)

    async def request(
        self,
        client: httpx.AsyncClient,
        method: str,
        url: str,
        max_retries: int | None = None,
        **kwargs: Any,
    ) -> httpx.Response:
        """Send a request, retrying according to the policy.

        Args:
            client: The httpx client to send through.
            method: HTTP method.
            url: Absolute URL.
            max_retries: Override for ``config.max_retries``.
            **kwargs: Passed to ``client.request``.

        Returns:
            The final response.

        Raises:
            httpx.HTTPStatusError: If the last attempt still returned 5xx/429.
            httpx.TransportError: If the last attempt failed at transport level.
        """
        retries = self.config.max_retries if max_retries is None else max_retries
        kwargs.setdefault("timeout", httpx.Timeout(self.config.timeout_seconds))
        last_error: Exception | None = None

        for attempt in range(retries + 1):
            is_last = attempt == retries
            try:
                response = await client.request(method, url, **kwargs)
            except httpx.TransportError as e:
                last_error = e
                if is_last:
                    break
                wait_ms = self.backoff_ms(attempt)
                logger.warning(
                    "Request failed (attempt %d/%d), retrying in %.0fms: %s %s: %s",
                    attempt + 1, retries + 1, wait_ms, method, url, e,
                )
                await self._sleep(wait_ms / 1000)
                continue

            status = response.status_code
            if status >= RETRYABLE_STATUS_FLOOR:
                last_error = httpx.HTTPStatusError(
                    f"Server error: {status}", request=response.request, response=response
                )
                if is_last:
                    break
                wait_ms = self.backoff_ms(attempt)
                logger.debug(
                    "Server error %d (attempt %d/%d), retrying in %.0fms: %s",
                    status, attempt + 1, retries + 1, wait_ms, url,
                )
                await self._sleep(wait_ms / 1000)
                continue

            if status == RATE_LIMITED_STATUS:
                last_error = httpx.HTTPStatusError(
                    "Rate limited: 429", request=response.request, response=response
                )
                if is_last:
                    break
                retry_after = parse_retry_after(response.headers.get("Retry-After"))
                if retry_after is None:
                    wait_ms = self.backoff_ms(attempt)
                else:
                    wait_ms = min(retry_after, self.config.max_retry_after_ms)
                logger.warning("Rate limited, waiting %.0fms before retry: %s", wait_ms, url)
                await self._sleep(wait_ms / 1000)
                continue

            return response

        raise last_error or httpx.TransportError("Request failed after retries")

"""Tests for the retry executor and backoff policy."""

from datetime import datetime, timedelta, timezone
from email.utils import format_datetime

import httpx
import pytest

from vigil.adapters.retry import RetryConfig, RetryExecutor, parse_retry_after


class RecordingSleep:
    """Async sleep stand-in that records requested delays in seconds."""

    def __init__(self):
        self.calls: list[float] = []

    async def __call__(self, seconds: float) -> None:
        self.calls.append(seconds)


def scripted_client(*responses):
    """Client whose transport replays ``responses`` (status or exception) in order."""
    calls = []

    def handler(request: httpx.Request) -> httpx.Response:
        calls.append(request)
        item = responses[min(len(calls), len(responses)) - 1]
        if isinstance(item, Exception):
            raise item
        status, headers = item if isinstance(item, tuple) else (item, {})
        return httpx.Response(status, headers=headers, json={"ok": status < 400})

    return httpx.AsyncClient(transport=httpx.MockTransport(handler)), calls


class TestRetryConfig:
    def test_defaults(self):
        config = RetryConfig()
        assert config.max_retries == 3
        assert config.base_delay_ms == 1000
        assert config.max_delay_ms == 30000

    @pytest.mark.parametrize("attempt", range(7))
    def test_delay_within_backoff_window(self, attempt):
        config = RetryConfig()
        low = config.get_delay(attempt, rng=lambda: 0.0)
        high = config.get_delay(attempt, rng=lambda: 0.999)

        expected_floor = min(1000 * 2 ** attempt, 30000)
        assert low == expected_floor
        assert expected_floor <= high <= min(1000 * 2 ** attempt + 1000, 30000)

    def test_delay_is_capped(self):
        config = RetryConfig()
        assert config.get_delay(10, rng=lambda: 0.5) == 30000


class TestParseRetryAfter:
    def test_seconds(self):
        assert parse_retry_after("5") == 5000

    def test_missing(self):
        assert parse_retry_after(None) is None
        assert parse_retry_after("") is None

    def test_garbage(self):
        assert parse_retry_after("soon") is None

    def test_http_date(self):
        now = datetime(2026, 1, 1, 12, 0, 0, tzinfo=timezone.utc)
        header = format_datetime(now + timedelta(seconds=10), usegmt=True)
        assert parse_retry_after(header, now=now) == 10000

    def test_past_date_is_zero(self):
        now = datetime(2026, 1, 1, 12, 0, 0, tzinfo=timezone.utc)
        header = format_datetime(now - timedelta(seconds=10), usegmt=True)
        assert parse_retry_after(header, now=now) == 0


class TestRetryExecutor:
    @pytest.mark.asyncio
    async def test_success_first_try(self):
        sleep = RecordingSleep()
        client, calls = scripted_client(200)
        executor = RetryExecutor(sleep=sleep)

        response = await executor.request(client, "GET", "https://vendor.example.com/x")

        assert response.status_code == 200
        assert len(calls) == 1
        assert sleep.calls == []

    @pytest.mark.asyncio
    async def test_retry_after_is_honored(self):
        sleep = RecordingSleep()
        client, calls = scripted_client((429, {"Retry-After": "5"}), 200)
        executor = RetryExecutor(sleep=sleep, rng=lambda: 0.0)

        response = await executor.request(client, "GET", "https://vendor.example.com/x")

        assert response.status_code == 200
        assert len(calls) == 2
        assert sleep.calls == [5.0]

    @pytest.mark.asyncio
    async def test_retry_after_is_capped(self):
        sleep = RecordingSleep()
        client, _ = scripted_client((429, {"Retry-After": "3600"}), 200)
        executor = RetryExecutor(sleep=sleep)

        await executor.request(client, "GET", "https://vendor.example.com/x")

        assert sleep.calls == [120.0]

    @pytest.mark.asyncio
    async def test_429_without_header_uses_backoff(self):
        sleep = RecordingSleep()
        client, _ = scripted_client(429, 200)
        executor = RetryExecutor(sleep=sleep, rng=lambda: 0.0)

        await executor.request(client, "GET", "https://vendor.example.com/x")

        assert sleep.calls == [1.0]

    @pytest.mark.asyncio
    async def test_server_error_retried_then_succeeds(self):
        sleep = RecordingSleep()
        client, calls = scripted_client(503, 502, 200)
        executor = RetryExecutor(sleep=sleep, rng=lambda: 0.0)

        response = await executor.request(client, "GET", "https://vendor.example.com/x")

        assert response.status_code == 200
        assert len(calls) == 3
        assert sleep.calls == [1.0, 2.0]

    @pytest.mark.asyncio
    async def test_server_error_exhausts_retries(self):
        sleep = RecordingSleep()
        client, calls = scripted_client(500)
        executor = RetryExecutor(sleep=sleep, rng=lambda: 0.0)

        with pytest.raises(httpx.HTTPStatusError):
            await executor.request(client, "GET", "https://vendor.example.com/x")

        assert len(calls) == 4
        assert len(sleep.calls) == 3

    @pytest.mark.asyncio
    async def test_max_retries_override(self):
        sleep = RecordingSleep()
        client, calls = scripted_client(500)
        executor = RetryExecutor(sleep=sleep)

        with pytest.raises(httpx.HTTPStatusError):
            await executor.request(client, "GET", "https://vendor.example.com/x", max_retries=1)

        assert len(calls) == 2

    @pytest.mark.asyncio
    async def test_client_error_not_retried(self):
        sleep = RecordingSleep()
        client, calls = scripted_client(404)
        executor = RetryExecutor(sleep=sleep)

        response = await executor.request(client, "GET", "https://vendor.example.com/x")

        assert response.status_code == 404
        assert len(calls) == 1
        assert sleep.calls == []

    @pytest.mark.asyncio
    async def test_transport_error_retried(self):
        sleep = RecordingSleep()
        client, calls = scripted_client(httpx.ConnectError("refused"), 200)
        executor = RetryExecutor(sleep=sleep, rng=lambda: 0.0)

        response = await executor.request(client, "GET", "https://vendor.example.com/x")

        assert response.status_code == 200
        assert len(calls) == 2

    @pytest.mark.asyncio
    async def test_transport_error_exhausted_is_raised(self):
        sleep = RecordingSleep()
        client, calls = scripted_client(httpx.ConnectError("refused"))
        executor = RetryExecutor(sleep=sleep)

        with pytest.raises(httpx.ConnectError):
            await executor.request(client, "GET", "https://vendor.example.com/x")

        assert len(calls) == 4

"""
Tests for Fixed Window Rate Limiter

Tests for:
- Window accounting and reset
- Per-client isolation
- Retry-after and headers
- Expired entry sweeping and store bounds
- Client IP extraction
"""

import asyncio
from dataclasses import replace

import pytest
from starlette.requests import Request

from playground.rate_limiter import (
    FixedWindowRateLimiter,
    InMemoryRateLimitStore,
    RateLimitEntry,
    RateLimitResult,
    get_client_ip,
)


@pytest.fixture
def rate_limiter(clock):
    """Default 30 requests / 60 seconds limiter on a fake clock."""
    return FixedWindowRateLimiter(max_requests=30, window_seconds=60, clock=clock)


def make_request(headers=None, client=("203.0.113.7", 50000)):
    scope = {
        "type": "http",
        "method": "GET",
        "path": "/resource",
        "headers": [(k.lower().encode(), v.encode()) for k, v in (headers or {}).items()],
        "client": client,
    }
    return Request(scope)


class TestRateLimitResult:
    """Tests for rate limit result and headers."""

    def test_get_headers_allowed(self):
        result = RateLimitResult(allowed=True, limit=30, remaining=12)

        headers = result.get_headers()

        assert headers["X-RateLimit-Limit"] == "30"
        assert headers["X-RateLimit-Remaining"] == "12"
        assert "Retry-After" not in headers

    def test_get_headers_limited(self):
        result = RateLimitResult(allowed=False, limit=30, remaining=0, retry_after=42)

        headers = result.get_headers()

        assert headers["Retry-After"] == "42"
        assert headers["X-RateLimit-Remaining"] == "0"


class TestFixedWindow:
    """Tests for window accounting."""

    def test_first_request_allowed(self, rate_limiter):
        result = rate_limiter.check("1.2.3.4")

        assert result.allowed is True
        assert result.remaining == 29

    def test_thirtieth_allowed_thirty_first_limited(self, rate_limiter):
        """30 requests pass in one window; the 31st is refused."""
        results = [rate_limiter.check("1.2.3.4") for _ in range(30)]

        assert all(r.allowed for r in results)
        assert results[-1].remaining == 0

        limited = rate_limiter.check("1.2.3.4")

        assert limited.allowed is False
        assert limited.retry_after == 60

    def test_retry_after_counts_down(self, rate_limiter, clock):
        for _ in range(30):
            rate_limiter.check("1.2.3.4")

        clock.advance(45.5)
        result = rate_limiter.check("1.2.3.4")

        assert result.allowed is False
        assert result.retry_after == 15

    def test_retry_after_is_at_least_one(self, rate_limiter, clock):
        for _ in range(30):
            rate_limiter.check("1.2.3.4")

        clock.advance(60)  # exactly at reset_at, window not yet elapsed
        result = rate_limiter.check("1.2.3.4")

        assert result.allowed is False
        assert result.retry_after == 1

    def test_window_resets_after_elapsed(self, rate_limiter, clock):
        """After 61 seconds a fresh window starts with count 1."""
        for _ in range(31):
            rate_limiter.check("1.2.3.4")

        clock.advance(61)
        result = rate_limiter.check("1.2.3.4")

        assert result.allowed is True
        assert result.remaining == 29

    def test_limited_requests_keep_counting(self, rate_limiter):
        for _ in range(35):
            rate_limiter.check("1.2.3.4")

        assert rate_limiter.store.get("1.2.3.4").count == 35

    def test_clients_are_isolated(self, rate_limiter):
        for _ in range(31):
            rate_limiter.check("1.2.3.4")

        assert rate_limiter.check("5.6.7.8").allowed is True

    def test_defaults_from_config(self, monkeypatch):
        from playground.config import get_playground_config

        monkeypatch.setenv("RATE_LIMIT_MAX_REQUESTS", "2")
        monkeypatch.setenv("RATE_LIMIT_WINDOW_SECONDS", "10")
        get_playground_config.cache_clear()

        limiter = FixedWindowRateLimiter()

        assert limiter.max_requests == 2
        assert limiter.window_seconds == 10
        assert limiter.check("a").allowed
        assert limiter.check("a").allowed
        assert not limiter.check("a").allowed


class TestSweep:
    """Tests for expired entry removal."""

    def test_sweep_removes_only_expired(self, rate_limiter, clock):
        rate_limiter.check("old")
        clock.advance(30)
        rate_limiter.check("new")
        clock.advance(31)

        removed = rate_limiter.sweep()

        assert removed == 1
        assert rate_limiter.store.get("old") is None
        assert rate_limiter.store.get("new") is not None

    @pytest.mark.asyncio
    async def test_run_sweeper_sweeps_periodically(self, rate_limiter, clock):
        rate_limiter.check("old")
        clock.advance(61)

        task = asyncio.create_task(rate_limiter.run_sweeper(0.01))
        await asyncio.sleep(0.05)
        task.cancel()
        with pytest.raises(asyncio.CancelledError):
            await task

        assert len(rate_limiter.store) == 0


class TestInMemoryStore:
    """Tests for the bounded store."""

    def test_evicts_entry_closest_to_reset_when_full(self):
        store = InMemoryRateLimitStore(max_entries=2)
        store.set("a", RateLimitEntry(count=1, reset_at=100))
        store.set("b", RateLimitEntry(count=1, reset_at=50))

        store.set("c", RateLimitEntry(count=1, reset_at=200))

        assert len(store) == 2
        assert store.get("b") is None
        assert store.get("a") is not None
        assert store.get("c") is not None

    def test_updating_existing_key_does_not_evict(self):
        store = InMemoryRateLimitStore(max_entries=1)
        store.set("a", RateLimitEntry(count=1, reset_at=100))

        store.set("a", RateLimitEntry(count=2, reset_at=100))

        assert store.get("a").count == 2

    def test_unbounded_by_default(self):
        store = InMemoryRateLimitStore()
        for i in range(100):
            store.set(str(i), RateLimitEntry(count=1, reset_at=i))

        assert len(store) == 100


class CopyingStore(InMemoryRateLimitStore):
    """Store that hands out and keeps copies, like a serializing backend."""

    def get(self, key):
        entry = super().get(key)
        return replace(entry) if entry is not None else None

    def set(self, key, entry):
        super().set(key, replace(entry))


class TestStoreContract:
    """The limiter only talks to its store through get/set/sweep."""

    def test_counts_persist_through_copying_store(self, clock):
        limiter = FixedWindowRateLimiter(
            max_requests=30, window_seconds=60, store=CopyingStore(), clock=clock
        )

        results = [limiter.check("client") for _ in range(31)]

        assert all(r.allowed for r in results[:30])
        assert results[29].remaining == 0
        assert results[30].allowed is False


class TestClientIp:
    """Tests for client attribution."""

    def test_first_forwarded_hop(self):
        request = make_request({"X-Forwarded-For": "198.51.100.1, 10.0.0.1"})

        assert get_client_ip(request) == "198.51.100.1"

    def test_real_ip_header(self):
        request = make_request({"X-Real-IP": "198.51.100.2"})

        assert get_client_ip(request) == "198.51.100.2"

    def test_forwarded_for_preferred_over_real_ip(self):
        request = make_request({"X-Forwarded-For": "198.51.100.1", "X-Real-IP": "198.51.100.2"})

        assert get_client_ip(request) == "198.51.100.1"

    def test_peer_address(self):
        assert get_client_ip(make_request()) == "203.0.113.7"

    def test_unknown_without_any_source(self):
        assert get_client_ip(make_request(client=None)) == "unknown"

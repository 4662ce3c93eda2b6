"""
Fixed Window Rate Limiter

Per-client request budget for the proxy endpoints. Each client owns one
active window of fixed length; the window restarts on the first request
after it has elapsed.

State lives in an injectable store so tests can swap the clock and bound
the store. Not distributed: counts are only correct for a single process.
"""

import asyncio
import math
import time
from dataclasses import dataclass
from typing import Callable, Dict, Optional, Protocol

from fastapi import Request

from observability.logging_config import get_logger
from observability.metrics import metrics
from playground.config import get_playground_config

logger = get_logger(__name__)

UNKNOWN_CLIENT = "unknown"


# -----------------------------------------------------------------------------
# Models
# -----------------------------------------------------------------------------


@dataclass
class RateLimitEntry:
    """Request count for one client's current window."""

    count: int
    reset_at: float

    def expired(self, now: float) -> bool:
        return now > self.reset_at


@dataclass(frozen=True)
class RateLimitResult:
    """Result of a rate limit check."""

    allowed: bool
    limit: int
    remaining: int
    retry_after: Optional[int] = None

    def get_headers(self) -> Dict[str, str]:
        """Generate rate limit headers for HTTP response."""
        headers = {
            "X-RateLimit-Limit": str(self.limit),
            "X-RateLimit-Remaining": str(max(0, self.remaining)),
        }
        if self.retry_after is not None:
            headers["Retry-After"] = str(self.retry_after)
        return headers


# -----------------------------------------------------------------------------
# Stores
# -----------------------------------------------------------------------------


class RateLimitStore(Protocol):
    """Storage for rate limit entries."""

    def get(self, key: str) -> Optional[RateLimitEntry]: ...

    def set(self, key: str, entry: RateLimitEntry) -> None: ...

    def sweep(self, now: float) -> int: ...

    def __len__(self) -> int: ...


class InMemoryRateLimitStore:
    """
    Dict-backed store.

    Read-modify-write of one entry happens without an await in between, so
    on a single event loop no lock is needed. When max_entries is reached,
    the entry closest to reset is evicted to make room.
    """

    def __init__(self, max_entries: Optional[int] = None):
        self._entries: Dict[str, RateLimitEntry] = {}
        self.max_entries = max_entries

    def get(self, key: str) -> Optional[RateLimitEntry]:
        return self._entries.get(key)

    def set(self, key: str, entry: RateLimitEntry) -> None:
        if (
            self.max_entries is not None
            and key not in self._entries
            and len(self._entries) >= self.max_entries
        ):
            self._evict_oldest()
        self._entries[key] = entry

    def sweep(self, now: float) -> int:
        """Delete entries whose window has elapsed."""
        expired = [key for key, entry in list(self._entries.items()) if entry.expired(now)]
        for key in expired:
            self._entries.pop(key, None)
        return len(expired)

    def _evict_oldest(self) -> None:
        # Earliest reset_at is either already expired or the closest to it
        oldest = min(self._entries, key=lambda k: self._entries[k].reset_at)
        del self._entries[oldest]
        logger.warning("rate_limit_store_full", evicted=oldest, max_entries=self.max_entries)

    def __len__(self) -> int:
        return len(self._entries)


# -----------------------------------------------------------------------------
# Rate Limiter
# -----------------------------------------------------------------------------


class FixedWindowRateLimiter:
    """
    Per-client fixed window limiter.

    - First request (or first after the window elapsed) starts a new window
      with count 1 and is allowed
    - Later requests increment the count; exceeding max_requests is limited
      with the whole seconds left until reset
    - A background sweep drops elapsed entries to bound memory
    """

    def __init__(
        self,
        max_requests: Optional[int] = None,
        window_seconds: Optional[float] = None,
        store: Optional[RateLimitStore] = None,
        clock: Callable[[], float] = time.monotonic,
    ):
        config = get_playground_config()
        self.max_requests = max_requests if max_requests is not None else config.rate_limit_max_requests
        self.window_seconds = (
            window_seconds if window_seconds is not None else config.rate_limit_window_seconds
        )
        self.store = store if store is not None else InMemoryRateLimitStore(config.rate_limit_max_entries)
        self.clock = clock

    def check(self, client_id: str) -> RateLimitResult:
        """
        Count a request from client_id against its window.

        Args:
            client_id: Client identifier (usually the resolved IP)

        Returns:
            RateLimitResult with allowed status and retry metadata
        """
        now = self.clock()
        entry = self.store.get(client_id)

        if entry is None or entry.expired(now):
            self.store.set(client_id, RateLimitEntry(count=1, reset_at=now + self.window_seconds))
            metrics.record_rate_limit(limited=False, entries=len(self.store))
            return RateLimitResult(
                allowed=True,
                limit=self.max_requests,
                remaining=self.max_requests - 1,
            )

        entry.count += 1
        self.store.set(client_id, entry)

        if entry.count > self.max_requests:
            retry_after = max(1, math.ceil(entry.reset_at - now))
            metrics.record_rate_limit(limited=True, entries=len(self.store))
            logger.warning(
                "rate_limited",
                client=client_id,
                count=entry.count,
                limit=self.max_requests,
                retry_after=retry_after,
            )
            return RateLimitResult(
                allowed=False,
                limit=self.max_requests,
                remaining=0,
                retry_after=retry_after,
            )

        return RateLimitResult(
            allowed=True,
            limit=self.max_requests,
            remaining=self.max_requests - entry.count,
        )

    def sweep(self) -> int:
        """Remove expired entries now."""
        removed = self.store.sweep(self.clock())
        if removed:
            logger.debug("rate_limit_sweep", removed=removed, remaining=len(self.store))
        metrics.record_rate_limit(limited=False, entries=len(self.store))
        return removed

    async def run_sweeper(self, interval_seconds: float) -> None:
        """Sweep expired entries forever on a fixed interval."""
        while True:
            await asyncio.sleep(interval_seconds)
            self.sweep()


# -----------------------------------------------------------------------------
# Helper Functions
# -----------------------------------------------------------------------------


def get_client_ip(request: Request) -> str:
    """
    Extract client IP from request.

    First X-Forwarded-For hop, else X-Real-IP, else the peer address.
    Unattributable clients share the "unknown" bucket.
    """
    forwarded = request.headers.get("X-Forwarded-For")
    if forwarded:
        first = forwarded.split(",")[0].strip()
        return first or UNKNOWN_CLIENT
    real_ip = request.headers.get("X-Real-IP")
    if real_ip and real_ip.strip():
        return real_ip.strip()
    return request.client.host if request.client and request.client.host else UNKNOWN_CLIENT

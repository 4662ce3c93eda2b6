"""
Upstream Client - HTTP Client for Proxy to Identity Provider Communication

Async HTTP client for the single outbound call each proxy request makes
(token endpoint, discovery document, JWKS). Every call is bounded by a
deadline and a response-size ceiling. Nothing is retried.
"""

import asyncio
import json
import time
from dataclasses import dataclass
from typing import Any, Mapping, Optional

import httpx

from observability.logging_config import get_logger
from observability.metrics import metrics
from playground.config import get_playground_config
from playground.errors import ResponseTooLarge, UpstreamTimeout, UpstreamUnavailable

logger = get_logger(__name__)

TARGET_LABELS = {
    "token": "Token endpoint",
    "discovery": "Discovery endpoint",
    "jwks": "JWKS endpoint",
}


@dataclass
class UpstreamResponse:
    """Fully read, size-checked upstream response."""

    status_code: int
    content_type: str
    text: str

    @property
    def ok(self) -> bool:
        return 200 <= self.status_code < 300


class UpstreamClient:
    """
    HTTP client for identity provider endpoints.

    Features:
    - Connection pooling
    - Redirects disabled (a validated URL cannot bounce to an internal one)
    - Overall deadline per call, reported as UpstreamTimeout
    - Streaming body read aborted past max_response_bytes
    """

    def __init__(
        self,
        timeout: Optional[float] = None,
        max_response_bytes: Optional[int] = None,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        """
        Initialize upstream client.

        Args:
            timeout: Default deadline in seconds
            max_response_bytes: Largest accepted body
            transport: Optional httpx transport (tests inject a MockTransport)
        """
        config = get_playground_config()
        self.timeout = timeout if timeout is not None else config.fetch_timeout_seconds
        self.max_response_bytes = (
            max_response_bytes if max_response_bytes is not None else config.max_response_bytes
        )
        self._transport = transport
        self._client: Optional[httpx.AsyncClient] = None

    async def _get_client(self) -> httpx.AsyncClient:
        """Get or create HTTP client with connection pooling."""
        if self._client is None or self._client.is_closed:
            self._client = httpx.AsyncClient(
                timeout=httpx.Timeout(self.timeout),
                follow_redirects=False,
                limits=httpx.Limits(max_connections=100, max_keepalive_connections=20),
                transport=self._transport,
            )
        return self._client

    @property
    def is_open(self) -> bool:
        return self._client is None or not self._client.is_closed

    async def close(self) -> None:
        """Close the HTTP client."""
        if self._client and not self._client.is_closed:
            await self._client.aclose()
            self._client = None

    async def get_json(self, url: str, target: str, timeout: Optional[float] = None) -> Any:
        """
        Fetch and parse a JSON document.

        Raises:
            UpstreamTimeout: Deadline exceeded
            ResponseTooLarge: Body over the ceiling
            UpstreamUnavailable: Transport error, non-2xx status or invalid JSON
        """
        response = await self._send(
            "GET", url, target, timeout, headers={"Accept": "application/json"}
        )
        if not response.ok:
            raise UpstreamUnavailable(f"HTTP {response.status_code}")
        try:
            return json.loads(response.text)
        except ValueError as e:
            raise UpstreamUnavailable("response is not valid JSON") from e

    async def post_form(
        self,
        url: str,
        form: Mapping[str, str],
        target: str = "token",
        timeout: Optional[float] = None,
    ) -> UpstreamResponse:
        """
        POST an application/x-www-form-urlencoded body.

        Non-2xx responses are returned, not raised, so callers can surface
        the provider's own error body.
        """
        return await self._send(
            "POST",
            url,
            target,
            timeout,
            data=dict(form),
            headers={
                "Content-Type": "application/x-www-form-urlencoded",
                "Accept": "application/json",
            },
        )

    async def _send(
        self,
        method: str,
        url: str,
        target: str,
        timeout: Optional[float],
        **kwargs: Any,
    ) -> UpstreamResponse:
        deadline = timeout if timeout is not None else self.timeout
        label = TARGET_LABELS.get(target, "Upstream")
        start_time = time.perf_counter()
        client = await self._get_client()

        try:
            response = await asyncio.wait_for(
                self._read_bounded(client, method, url, deadline, label, **kwargs),
                timeout=deadline,
            )
        except (asyncio.TimeoutError, httpx.TimeoutException) as e:
            metrics.record_upstream(target, "timeout", time.perf_counter() - start_time)
            logger.warning("upstream_timeout", target=target, url=url, timeout=deadline)
            raise UpstreamTimeout(
                f"{label} did not respond within {deadline:g} seconds"
            ) from e
        except ResponseTooLarge:
            metrics.record_upstream(target, "too_large", time.perf_counter() - start_time)
            logger.warning("upstream_response_too_large", target=target, url=url)
            raise
        except httpx.RequestError as e:
            metrics.record_upstream(target, "error", time.perf_counter() - start_time)
            logger.warning("upstream_request_error", target=target, url=url, error=str(e))
            raise UpstreamUnavailable(str(e) or e.__class__.__name__) from e

        metrics.record_upstream(
            target, str(response.status_code), time.perf_counter() - start_time
        )
        logger.info(
            "upstream_response",
            target=target,
            url=url,
            status_code=response.status_code,
            duration_ms=int((time.perf_counter() - start_time) * 1000),
        )
        return response

    async def _read_bounded(
        self,
        client: httpx.AsyncClient,
        method: str,
        url: str,
        timeout: float,
        label: str,
        **kwargs: Any,
    ) -> UpstreamResponse:
        too_large = f"{label} response too large"

        async with client.stream(method, url, timeout=httpx.Timeout(timeout), **kwargs) as response:
            declared = response.headers.get("content-length")
            if declared and declared.isdigit() and int(declared) > self.max_response_bytes:
                raise ResponseTooLarge(too_large, upstream_status=response.status_code)

            body = bytearray()
            async for chunk in response.aiter_bytes():
                body.extend(chunk)
                if len(body) > self.max_response_bytes:
                    raise ResponseTooLarge(too_large, upstream_status=response.status_code)

            return UpstreamResponse(
                status_code=response.status_code,
                content_type=response.headers.get("content-type", ""),
                text=body.decode(response.encoding or "utf-8", errors="replace"),
            )

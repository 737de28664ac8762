"""
Async HTTP client for the Pitchside upstreams: the paged prediction
endpoint and the hub's negotiate call.

Each attempt is timed and counted per upstream. 429, 5xx, timeouts and
transport errors are retried with a short backoff; any other 4xx is
raised at once.
"""
from __future__ import annotations

import asyncio
import time
from typing import Any, Awaitable, Callable, Optional

import httpx

from shared.config import get_settings
from shared.utils.logging import get_logger
from shared.utils.metrics import UPSTREAM_LATENCY, UPSTREAM_REQUESTS

logger = get_logger(__name__)

MAX_BACKOFF_S = 10.0


def _retryable(status_code: int) -> bool:
    return status_code == 429 or status_code >= 500


def _backoff(attempt: int, response: Optional[httpx.Response] = None) -> float:
    """Retry-After when the upstream sent one, else linear in the attempt."""
    if response is not None and "Retry-After" in response.headers:
        try:
            return min(float(response.headers["Retry-After"]), MAX_BACKOFF_S)
        except ValueError:
            pass
    return min(float(attempt), MAX_BACKOFF_S)


class UpstreamHTTPClient:
    """
    httpx.AsyncClient wrapper with per-upstream retry and metrics.

    Args:
        upstream: Metric/log label, e.g. "predictions" or "hub".
        base_url: Prefix for relative paths; absolute URLs bypass it.
        transport: Optional httpx transport (tests pass httpx.MockTransport).
    """

    def __init__(
        self,
        upstream: str,
        base_url: str = "",
        headers: dict[str, str] | None = None,
        timeout_s: float | None = None,
        max_retries: int = 2,
        transport: httpx.AsyncBaseTransport | None = None,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
    ) -> None:
        self._upstream = upstream
        self._base_url = base_url.rstrip("/")
        self._timeout = timeout_s or get_settings().prediction_request_timeout_s
        self._max_attempts = max(1, max_retries)
        self._headers = headers or {}
        self._transport = transport
        self._sleep = sleep
        self._client: Optional[httpx.AsyncClient] = None

    @property
    def started(self) -> bool:
        return self._client is not None

    async def start(self) -> None:
        if self._client is not None:
            return
        self._client = httpx.AsyncClient(
            base_url=self._base_url,
            headers=self._headers,
            timeout=httpx.Timeout(self._timeout, connect=5.0),
            follow_redirects=True,
            limits=httpx.Limits(max_connections=10, max_keepalive_connections=5),
            transport=self._transport,
        )

    async def close(self) -> None:
        client, self._client = self._client, None
        if client is not None:
            await client.aclose()

    async def get(self, path: str, params: dict[str, Any] | None = None) -> httpx.Response:
        return await self.request("GET", path, params=params)

    async def post(self, path: str, params: dict[str, Any] | None = None) -> httpx.Response:
        return await self.request("POST", path, params=params)

    async def request(
        self,
        method: str,
        path: str,
        params: dict[str, Any] | None = None,
    ) -> httpx.Response:
        """
        Send a request, retrying transient failures.

        Raises:
            httpx.HTTPStatusError: non-retryable status, or retries exhausted.
            httpx.TransportError: timeouts/connection errors after the last attempt.
        """
        if self._client is None:
            raise RuntimeError("UpstreamHTTPClient not started. Call start() first.")

        for attempt in range(1, self._max_attempts + 1):
            try:
                return await self._attempt(self._client, method, path, params)
            except httpx.HTTPStatusError as exc:
                if not _retryable(exc.response.status_code) or attempt == self._max_attempts:
                    raise
                delay = _backoff(attempt, exc.response)
                reason = f"status {exc.response.status_code}"
            except httpx.TransportError as exc:
                if attempt == self._max_attempts:
                    raise
                delay = _backoff(attempt)
                reason = type(exc).__name__

            logger.warning(
                "upstream_retry",
                upstream=self._upstream,
                path=path,
                attempt=attempt,
                reason=reason,
                delay_s=delay,
            )
            await self._sleep(delay)

        raise RuntimeError(f"{self._upstream}: no attempt was made")

    async def _attempt(
        self,
        client: httpx.AsyncClient,
        method: str,
        path: str,
        params: dict[str, Any] | None,
    ) -> httpx.Response:
        start = time.perf_counter()
        status = "error"
        try:
            resp = await client.request(method, path, params=params)
            status = str(resp.status_code)
            resp.raise_for_status()
            return resp
        except httpx.TimeoutException:
            status = "timeout"
            raise
        finally:
            elapsed = time.perf_counter() - start
            UPSTREAM_REQUESTS.labels(upstream=self._upstream, status=status).inc()
            UPSTREAM_LATENCY.labels(upstream=self._upstream).observe(elapsed)
            logger.debug(
                "upstream_request",
                upstream=self._upstream,
                method=method,
                path=path,
                status=status,
                latency_ms=round(elapsed * 1000, 2),
            )

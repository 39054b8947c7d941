"""
Rate-limited HTTP fetch client with retry logic.

This module provides:
- A per-host request pacer (minimum interval between request starts)
- Retry on 429 honouring the Retry-After hint
- Linear backoff (base_delay x attempt) on 5xx, timeouts and network errors
- 404 passed through as "zero results" for the caller to interpret
- Every other non-2xx status raised immediately as UpstreamError
"""

import asyncio
import logging
import time
from typing import Dict, Any, Optional, Callable, Awaitable

import httpx

from core.config import settings
from core.exceptions import (
    FetchError,
    RateLimited,
    NetworkError,
    FetchTimeout,
    UpstreamError,
)

logger = logging.getLogger(__name__)

Clock = Callable[[], float]
Sleep = Callable[[float], Awaitable[None]]


class RequestPacer:
    """
    Lease on one upstream host.

    Holds the last request start time for that host only, so runs against
    different hosts never contend. Clock and sleep are injectable for tests.
    """

    def __init__(
        self,
        host: str,
        min_interval: float,
        clock: Clock = time.monotonic,
        sleep: Sleep = asyncio.sleep
    ):
        self.host = host
        self.min_interval = min_interval
        self._clock = clock
        self._sleep = sleep
        self._last_request: Optional[float] = None
        self._lock = asyncio.Lock()

    async def acquire(self) -> float:
        """Wait until a request may start, then claim the slot. Returns the slot time."""
        async with self._lock:
            now = self._clock()
            if self._last_request is not None:
                while True:
                    remaining = self._last_request + self.min_interval - now
                    if remaining <= 0:
                        break
                    await self._sleep(remaining)
                    now = self._clock()
            self._last_request = now
            return now


class PacerRegistry:
    """One pacer per upstream host, created lazily."""

    def __init__(
        self,
        intervals: Optional[Dict[str, float]] = None,
        default_interval: float = 0.0,
        clock: Clock = time.monotonic,
        sleep: Sleep = asyncio.sleep
    ):
        self.intervals = intervals or {}
        self.default_interval = default_interval
        self._clock = clock
        self._sleep = sleep
        self._pacers: Dict[str, RequestPacer] = {}

    def pacer_for(self, url: str) -> RequestPacer:
        host = httpx.URL(url).host
        if host not in self._pacers:
            self._pacers[host] = RequestPacer(
                host,
                self.intervals.get(host, self.default_interval),
                clock=self._clock,
                sleep=self._sleep
            )
        return self._pacers[host]


class RateLimitedFetcher:
    """
    Single GET request with pacing, retries and timeout.

    Attributes:
        max_attempts: Attempt ceiling including the first try (default: 3)
        base_delay: Backoff unit in seconds; attempt n waits base_delay * n
        timeout: Per-request timeout in seconds (default: 30)
    """

    def __init__(
        self,
        client: httpx.AsyncClient,
        pacers: PacerRegistry,
        max_attempts: Optional[int] = None,
        base_delay: Optional[float] = None,
        timeout: Optional[float] = None,
        sleep: Sleep = asyncio.sleep,
        log: Optional[logging.LoggerAdapter] = None
    ):
        self.client = client
        self.pacers = pacers
        self.max_attempts = max_attempts or settings.MAX_RETRIES
        self.base_delay = settings.RETRY_BASE_DELAY if base_delay is None else base_delay
        self.timeout = timeout or settings.REQUEST_TIMEOUT
        self._sleep = sleep
        self.log = log or logger

    async def fetch(
        self,
        url: str,
        params: Optional[Dict[str, Any]] = None,
        headers: Optional[Dict[str, str]] = None
    ) -> httpx.Response:
        """
        Fetch a URL, retrying transient failures.

        Returns:
            The response for a 2xx or a 404 status

        Raises:
            RateLimited, UpstreamError, NetworkError, FetchTimeout: the last
            error once attempts are exhausted, or immediately for a
            non-retryable status
        """
        pacer = self.pacers.pacer_for(url)
        last_error: Optional[FetchError] = None

        for attempt in range(1, self.max_attempts + 1):
            await pacer.acquire()
            context = {"url": url, "attempt": attempt}
            delay = self.base_delay * attempt

            try:
                self.log.debug(f"GET {url} (attempt {attempt}/{self.max_attempts})")
                response = await self.client.get(
                    url,
                    params=params,
                    headers=headers,
                    timeout=self.timeout
                )

            except httpx.TimeoutException as e:
                last_error = FetchTimeout(
                    f"Request timed out after {self.timeout}s",
                    context=context,
                    original_exception=e
                )

            except httpx.TransportError as e:
                last_error = NetworkError(
                    f"Network error: {e}",
                    context=context,
                    original_exception=e
                )

            else:
                status = response.status_code
                if response.is_success or status == 404:
                    return response

                if status == 429:
                    retry_after = _parse_retry_after(response.headers.get("retry-after"))
                    if retry_after is not None:
                        delay = retry_after
                    last_error = RateLimited(
                        f"Rate limited by {pacer.host}",
                        context=context,
                        retry_after=retry_after
                    )

                elif status >= 500:
                    last_error = UpstreamError(
                        f"Server error {status}",
                        status_code=status,
                        context={**context, "response_body": response.text[:500]}
                    )

                else:
                    raise UpstreamError(
                        f"Unexpected status {status}",
                        status_code=status,
                        context={**context, "response_body": response.text[:500]}
                    )

            if attempt < self.max_attempts:
                self.log.warning(
                    f"{type(last_error).__name__} on {url}. "
                    f"Retrying in {delay}s (attempt {attempt}/{self.max_attempts})"
                )
                await self._sleep(delay)

        self.log.error(f"Giving up on {url} after {self.max_attempts} attempts: {last_error.message}")
        raise last_error


def _parse_retry_after(value: Optional[str]) -> Optional[float]:
    """Retry-After in seconds; HTTP-date values are ignored."""
    if not value:
        return None
    try:
        seconds = float(value.strip())
    except ValueError:
        return None
    return max(seconds, 0.0)


def json_object(response: httpx.Response, url: str) -> Dict[str, Any]:
    """
    Decode a JSON object body.

    A 200 carrying a maintenance page or any other non-object body is an
    upstream fault, raised as UpstreamError so callers isolate it like
    any other failed request.
    """
    try:
        payload = response.json()
    except ValueError as e:
        raise UpstreamError(
            "Malformed response body: not JSON",
            status_code=response.status_code,
            context={"url": url, "response_body": response.text[:200]},
            original_exception=e
        )
    if not isinstance(payload, dict):
        raise UpstreamError(
            f"Malformed response body: expected an object, got {type(payload).__name__}",
            status_code=response.status_code,
            context={"url": url}
        )
    return payload

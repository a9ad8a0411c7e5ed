"""
Async client for metadata endpoints (version lists, loader listings, installer
profiles) with caching, circuit breaker protection and adaptive rate limiting.
"""

import asyncio
import logging
import time
from typing import Any, Awaitable, Callable, Optional

import aiohttp

from craftkit.exceptions import CircuitOpenError, NetworkError
from craftkit.models.config import RetryPolicy, TimeoutPolicy
from craftkit.storage.cache import CacheManager
from craftkit.utils.circuit_breaker import CircuitBreaker

from .rate_limiter import AdaptiveRateLimiter, parse_retry_after

log = logging.getLogger(__name__)


def _is_transient(exc: BaseException) -> bool:
    return isinstance(exc, NetworkError) and exc.retryable


class MetaClient:
    """
    Optimized async client for JSON and text metadata.

    Features:
    - Connection pooling with a shared aiohttp session
    - Internal retries of transient faults with exponential backoff
    - Circuit breaker for endpoint resilience
    - Adaptive rate limiting honouring `Retry-After`
    - Optional TTL cache for listings
    """

    def __init__(
        self,
        cache: Optional[CacheManager] = None,
        retry_policy: Optional[RetryPolicy] = None,
        timeouts: Optional[TimeoutPolicy] = None,
        user_agent: Optional[str] = None,
        max_connections: int = 8,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
    ):
        """
        Initializes the client.

        Args:
            cache: Cache for listing responses; None disables caching.
            retry_policy: Backoff and retryable statuses for transient faults.
            timeouts: Connect and read timeouts.
            user_agent: User-Agent header sent with every request.
            max_connections: Tunes the connection pool.
        """
        self.cache = cache
        self.retry_policy = retry_policy or RetryPolicy()
        self.timeouts = timeouts or TimeoutPolicy()
        self.user_agent = user_agent
        self.max_connections = max_connections
        self.sleep = sleep

        self._session: Optional[aiohttp.ClientSession] = None
        self._rate_limiter = AdaptiveRateLimiter()
        self._circuit_breaker = CircuitBreaker(
            failure_threshold=5,
            recovery_timeout=60,
            success_threshold=2,
            is_failure=_is_transient,
        )

    async def get_session(self) -> aiohttp.ClientSession:
        """Ensures an active aiohttp session is available."""
        if self._session is None or self._session.closed:
            connector = aiohttp.TCPConnector(
                limit=self.max_connections * 2,
                limit_per_host=self.max_connections,
                ttl_dns_cache=300,
                enable_cleanup_closed=True,
            )
            headers = {"Accept-Encoding": "gzip, deflate"}
            if self.user_agent:
                headers["User-Agent"] = self.user_agent
            self._session = aiohttp.ClientSession(
                connector=connector,
                headers=headers,
                timeout=aiohttp.ClientTimeout(
                    total=None,
                    sock_connect=self.timeouts.connect,
                    sock_read=self.timeouts.read,
                ),
            )
        return self._session

    async def close(self) -> None:
        """Gracefully closes the aiohttp session."""
        if self._session and not self._session.closed:
            await self._session.close()

    async def __aenter__(self) -> "MetaClient":
        await self.get_session()
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb) -> None:
        await self.close()

    async def _request_once(self, url: str, as_type: str) -> Any:
        session = await self.get_session()
        async with self._circuit_breaker:
            await self._rate_limiter.acquire()
            start_time = time.monotonic()
            try:
                async with session.get(url, allow_redirects=True) as r:
                    duration_ms = (time.monotonic() - start_time) * 1000
                    log.debug(f"GET {url} -> {r.status} ({duration_ms:.0f} ms)")
                    if r.status == 429:
                        await self._rate_limiter.on_429(
                            parse_retry_after(r.headers.get("Retry-After"))
                        )
                    if r.status >= 400:
                        raise NetworkError(
                            f"HTTP {r.status} for {url}",
                            url=url,
                            status=r.status,
                            retryable=self.retry_policy.is_retryable(r.status),
                        )
                    if as_type == "json":
                        return await r.json(content_type=None)
                    if as_type == "text":
                        return await r.text()
                    return await r.read()
            except (aiohttp.ClientError, asyncio.TimeoutError) as e:
                raise NetworkError(
                    f"Request to {url} failed: {e}", url=url, retryable=True
                ) from e
            except ValueError as e:
                raise NetworkError(
                    f"Malformed response from {url}: {e}", url=url
                ) from e

    async def _request(self, url: str, as_type: str) -> Any:
        attempt = 0
        while True:
            attempt += 1
            try:
                return await self._request_once(url, as_type)
            except CircuitOpenError as e:
                log.error(f"[red]Circuit breaker is open for metadata calls: {e}[/red]")
                raise
            except NetworkError as e:
                if not e.retryable or attempt >= self.retry_policy.max_attempts:
                    raise
                delay = self.retry_policy.delay(attempt)
                log.debug(
                    f"Metadata request {attempt}/{self.retry_policy.max_attempts} "
                    f"failed: {e}. Retrying in {delay:.1f}s..."
                )
            await self.sleep(delay)

    async def get_json(self, url: str, cache_ttl: Optional[float] = None) -> Any:
        """Fetches and decodes JSON, serving it from the cache when fresh."""
        if self.cache is not None and cache_ttl:
            cached = self.cache.get(url, max_age=cache_ttl)
            if cached is not None:
                log.debug(f"Cache hit for {url}")
                return cached
        data = await self._request(url, "json")
        if self.cache is not None and cache_ttl:
            self.cache.set(url, data)
        return data

    async def get_text(self, url: str, cache_ttl: Optional[float] = None) -> str:
        if self.cache is not None and cache_ttl:
            cached = self.cache.get(url, max_age=cache_ttl)
            if cached is not None:
                return cached
        text = await self._request(url, "text")
        if self.cache is not None and cache_ttl:
            self.cache.set(url, text)
        return text

    async def get_bytes(self, url: str) -> bytes:
        return await self._request(url, "bytes")

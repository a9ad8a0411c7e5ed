"""
Handles the low-level streaming of files over HTTP while computing their digest.
"""

import asyncio
import logging
import os

import aiofiles
import aiohttp

from craftkit.constants import RETRYABLE_STATUSES
from craftkit.exceptions import NetworkError
from craftkit.models.config import TimeoutPolicy

from .integrity import HashVerifier

log = logging.getLogger(__name__)


def create_download_session(
    max_workers: int = 8,
    timeouts: TimeoutPolicy | None = None,
    user_agent: str | None = None,
) -> aiohttp.ClientSession:
    """
    Creates an aiohttp ClientSession tuned for many parallel artifact downloads.

    Args:
        max_workers: Maximum concurrent connections (should match the worker count).
        timeouts: Connect and per-read timeouts; there is no total timeout so
            large files are never cut off while data keeps flowing.
        user_agent: Optional User-Agent header.
    """
    timeouts = timeouts or TimeoutPolicy()
    connector = aiohttp.TCPConnector(
        limit=max_workers * 2,
        limit_per_host=max_workers,
        ttl_dns_cache=600,
        keepalive_timeout=30,
        enable_cleanup_closed=True,
    )
    headers = {"Accept-Encoding": "gzip, deflate"}
    if user_agent:
        headers["User-Agent"] = user_agent
    log.debug(f"Created download pool with limit_per_host={max_workers}")
    return aiohttp.ClientSession(
        connector=connector,
        headers=headers,
        timeout=aiohttp.ClientTimeout(
            total=None, sock_connect=timeouts.connect, sock_read=timeouts.read
        ),
    )


class Downloader:
    """Performs a single streamed GET into a file, hashing bytes as they arrive."""

    CHUNK_SIZE = 131072  # 128 KB

    def __init__(
        self,
        session: aiohttp.ClientSession,
        retryable_statuses: frozenset[int] = RETRYABLE_STATUSES,
        chunk_size: int = CHUNK_SIZE,
    ):
        self.session = session
        self.retryable_statuses = retryable_statuses
        self.chunk_size = chunk_size

    async def fetch(
        self, url: str, destination: str | os.PathLike, algorithm: str = "sha1"
    ) -> HashVerifier:
        """
        Streams `url` into `destination` and returns the digest of what was written.

        Raises:
            NetworkError: With `retryable` set for connection problems, timeouts
                and transient statuses.
        """
        verifier = HashVerifier(algorithm)
        try:
            async with self.session.get(url, allow_redirects=True) as response:
                if response.status >= 400:
                    raise NetworkError(
                        f"HTTP {response.status} for {url}",
                        url=url,
                        status=response.status,
                        retryable=response.status in self.retryable_statuses,
                    )
                async with aiofiles.open(destination, "wb") as f:
                    async for chunk in response.content.iter_chunked(self.chunk_size):
                        verifier.update(chunk)
                        await f.write(chunk)
        except (aiohttp.ClientError, asyncio.TimeoutError) as e:
            raise NetworkError(
                f"Request to {url} failed: {e}", url=url, retryable=True
            ) from e
        return verifier

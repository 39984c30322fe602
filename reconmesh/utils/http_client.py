"""Async HTTP client for RECONMESH data sources.

Provides :class:`AsyncHTTPClient`, a thin aiohttp wrapper with per-request
timeouts, retry/backoff on transport failures, User-Agent rotation and proxy
support.  Every outbound call made by a data source goes through it so a hung
remote server can never block shutdown for longer than the timeout.
"""

from __future__ import annotations

import asyncio
import random
from types import TracebackType
from typing import Any, Dict, List, Optional, Type

import aiohttp
from aiohttp import ClientSession, ClientTimeout, TCPConnector

from reconmesh.utils.logger import get_logger

logger = get_logger(__name__)

DEFAULT_USER_AGENTS: List[str] = [
    "Mozilla/5.0 (Windows NT 10.0; Win64; x64) AppleWebKit/537.36 "
    "(KHTML, like Gecko) Chrome/120.0.0.0 Safari/537.36",
    "Mozilla/5.0 (Macintosh; Intel Mac OS X 10_15_7) AppleWebKit/537.36 "
    "(KHTML, like Gecko) Chrome/120.0.0.0 Safari/537.36",
    "Mozilla/5.0 (X11; Linux x86_64; rv:109.0) Gecko/20100101 Firefox/121.0",
]


class AsyncHTTPClient:
    """Async HTTP client with retries and User-Agent rotation.

    Usage::

        async with AsyncHTTPClient(timeout=10) as client:
            resp = await client.get("https://crt.sh/?q=%25.example.com&output=json")
            print(resp["status"], resp["body"][:200])
    """

    def __init__(
        self,
        timeout: float = 10,
        max_connections: int = 20,
        retries: int = 1,
        retry_delay: float = 1.0,
        user_agents: Optional[List[str]] = None,
        proxy: Optional[str] = None,
        headers: Optional[Dict[str, str]] = None,
    ) -> None:
        """Initialise the client (does *not* open a session yet).

        Args:
            timeout: Total per-request timeout in seconds.
            max_connections: Maximum simultaneous TCP connections.
            retries: Number of retry attempts on transport failures.
            retry_delay: Base delay between retries (doubles each attempt).
            user_agents: Pool of User-Agent strings to rotate.
            proxy: Optional HTTP proxy URL.
            headers: Additional default headers sent with every request.
        """
        self._timeout = timeout
        self._max_connections = max_connections
        self._retries = retries
        self._retry_delay = retry_delay
        self._user_agents = user_agents or DEFAULT_USER_AGENTS
        self._proxy = proxy
        self._default_headers: Dict[str, str] = headers or {}
        self._session: Optional[ClientSession] = None

    # ------------------------------------------------------------------
    # Context manager
    # ------------------------------------------------------------------

    async def __aenter__(self) -> "AsyncHTTPClient":
        self._create_session()
        return self

    async def __aexit__(
        self,
        exc_type: Optional[Type[BaseException]],
        exc_val: Optional[BaseException],
        exc_tb: Optional[TracebackType],
    ) -> None:
        await self.close()

    def _create_session(self) -> None:
        """Create the underlying :class:`aiohttp.ClientSession`."""
        connector = TCPConnector(limit=self._max_connections, ttl_dns_cache=300)
        self._session = ClientSession(
            connector=connector,
            timeout=ClientTimeout(total=self._timeout),
            headers=self._default_headers,
        )

    async def close(self) -> None:
        """Close the underlying HTTP session and release connections."""
        if self._session and not self._session.closed:
            await self._session.close()

    # ------------------------------------------------------------------
    # Public HTTP methods
    # ------------------------------------------------------------------

    async def get(self, url: str, **kwargs: Any) -> Dict[str, Any]:
        """Perform an HTTP GET request.

        Args:
            url: Target URL.
            **kwargs: Extra arguments forwarded to :meth:`aiohttp.ClientSession.request`.

        Returns:
            Response dict with ``status``, ``headers``, ``body``, ``url``.
        """
        return await self._request("GET", url, **kwargs)

    async def post(self, url: str, **kwargs: Any) -> Dict[str, Any]:
        """Perform an HTTP POST request."""
        return await self._request("POST", url, **kwargs)

    # ------------------------------------------------------------------
    # Core request logic
    # ------------------------------------------------------------------

    async def _request(self, method: str, url: str, **kwargs: Any) -> Dict[str, Any]:
        """Execute an HTTP request with retry/backoff on transport errors.

        Raises:
            aiohttp.ClientError: After all retries are exhausted.
            asyncio.TimeoutError: When the final attempt timed out.
        """
        if self._session is None:
            self._create_session()

        headers = dict(kwargs.pop("headers", None) or {})
        headers.setdefault("User-Agent", random.choice(self._user_agents))
        kwargs["headers"] = headers

        if self._proxy:
            kwargs["proxy"] = self._proxy

        last_exc: Optional[BaseException] = None
        for attempt in range(self._retries + 1):
            try:
                assert self._session is not None
                async with self._session.request(method, url, **kwargs) as resp:
                    body = await resp.text(errors="replace")
                    return {
                        "status": resp.status,
                        "headers": dict(resp.headers),
                        "body": body,
                        "url": str(resp.url),
                    }
            except (aiohttp.ClientError, asyncio.TimeoutError) as exc:
                last_exc = exc
                if attempt < self._retries:
                    backoff = self._retry_delay * (2 ** attempt)
                    logger.debug(
                        "Request to %s failed (attempt %d/%d): %s; retrying in %.1fs",
                        url,
                        attempt + 1,
                        self._retries + 1,
                        exc,
                        backoff,
                    )
                    await asyncio.sleep(backoff)

        if last_exc is not None:
            raise last_exc
        raise aiohttp.ClientError(f"Request failed: {url}")

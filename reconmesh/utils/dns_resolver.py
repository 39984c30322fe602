"""Async DNS resolver pool for RECONMESH.

Provides :class:`ResolverPool`, an aiodns-based resolver with caching,
retries and priority-aware concurrency control.  Data sources that need DNS
lookups (e.g. Team Cymru TXT queries) receive the shared pool through their
constructor.
"""

from __future__ import annotations

import asyncio
import hashlib
import time
from typing import Any, Dict, List, Optional

import aiodns

from reconmesh.core.errors import ResolveError
from reconmesh.core.requests import DNSAnswer
from reconmesh.utils.logger import get_logger

logger = get_logger(__name__)

# Query priorities: low-priority lookups share the concurrency gate,
# higher priorities bypass it.
PRIORITY_LOW = 0
PRIORITY_HIGH = 1
PRIORITY_CRITICAL = 2

RECORD_TYPES: Dict[str, int] = {
    "A": 1,
    "NS": 2,
    "CNAME": 5,
    "SOA": 6,
    "PTR": 12,
    "MX": 15,
    "TXT": 16,
    "AAAA": 28,
    "SRV": 33,
}


def _cache_key(name: str, record_type: str) -> str:
    """Return an MD5 cache key for a DNS query."""
    return hashlib.md5(f"{name}:{record_type}".encode()).hexdigest()


class DNSCacheEntry:
    """A cached DNS answer list with TTL tracking."""

    def __init__(self, answers: List[DNSAnswer], ttl: int = 300) -> None:
        self.answers = answers
        self.expires_at = time.monotonic() + ttl

    @property
    def expired(self) -> bool:
        return time.monotonic() > self.expires_at


class ResolverPool:
    """Shared async DNS resolver with caching, retries, and priorities.

    Example::

        pool = ResolverPool(nameservers=["8.8.8.8", "1.1.1.1"])
        answers = await pool.resolve("example.com", "TXT", PRIORITY_CRITICAL)
        print([a.data for a in answers])
    """

    def __init__(
        self,
        nameservers: Optional[List[str]] = None,
        timeout: int = 5,
        retries: int = 2,
        cache_ttl: int = 300,
        max_queries: int = 100,
    ) -> None:
        """Initialise the pool (the underlying resolver is created lazily).

        Args:
            nameservers: DNS server IPs.
            timeout: Query timeout in seconds.
            retries: Number of attempts per query.
            cache_ttl: Default cache TTL in seconds.
            max_queries: Max simultaneous low-priority queries.
        """
        self._nameservers = nameservers or ["8.8.8.8", "8.8.4.4", "1.1.1.1"]
        self._timeout = timeout
        self._retries = max(retries, 1)
        self._cache_ttl = cache_ttl
        self._max_queries = max_queries
        self._resolver: Optional[aiodns.DNSResolver] = None
        self._cache: Dict[str, DNSCacheEntry] = {}
        self._sem: Optional[asyncio.Semaphore] = None

    def _init(self) -> None:
        """Create the aiodns resolver and semaphore inside the running loop."""
        self._sem = asyncio.Semaphore(self._max_queries)
        self._resolver = aiodns.DNSResolver(
            nameservers=self._nameservers,
            timeout=self._timeout,
        )

    # ------------------------------------------------------------------
    # Public API
    # ------------------------------------------------------------------

    async def resolve(
        self,
        name: str,
        record_type: str = "A",
        priority: int = PRIORITY_LOW,
    ) -> List[DNSAnswer]:
        """Resolve *name* for the given DNS *record_type*.

        Args:
            name: The DNS name to query.
            record_type: DNS record type string (e.g. ``"A"``, ``"TXT"``).
            priority: One of the ``PRIORITY_*`` constants.

        Returns:
            List of :class:`~reconmesh.core.requests.DNSAnswer` records.

        Raises:
            ResolveError: When every attempt failed or the type is unsupported.
        """
        record_type = record_type.upper()
        if record_type not in RECORD_TYPES:
            raise ResolveError(f"Unsupported record type: {record_type}")
        if self._resolver is None:
            self._init()

        key = _cache_key(name, record_type)
        entry = self._cache.get(key)
        if entry and not entry.expired:
            return entry.answers

        if priority > PRIORITY_LOW:
            answers = await self._resolve_with_retries(name, record_type)
        else:
            assert self._sem is not None
            async with self._sem:
                answers = await self._resolve_with_retries(name, record_type)

        self._cache[key] = DNSCacheEntry(answers, self._cache_ttl)
        return answers

    # ------------------------------------------------------------------
    # Internal resolution logic
    # ------------------------------------------------------------------

    async def _resolve_with_retries(self, name: str, record_type: str) -> List[DNSAnswer]:
        last_exc: Optional[Exception] = None
        for attempt in range(self._retries):
            try:
                return await self._do_resolve(name, record_type)
            except aiodns.error.DNSError as exc:
                last_exc = exc
                if attempt < self._retries - 1:
                    await asyncio.sleep(0.2 * (attempt + 1))
        logger.debug("DNS %s query for %s failed: %s", record_type, name, last_exc)
        raise ResolveError(f"{record_type} query for {name} failed: {last_exc}")

    async def _do_resolve(self, name: str, record_type: str) -> List[DNSAnswer]:
        """Use aiodns to resolve *name*."""
        assert self._resolver is not None
        result = await self._resolver.query(name, record_type)
        return self._format_records(name, result, record_type)

    @staticmethod
    def _format_records(name: str, result: Any, record_type: str) -> List[DNSAnswer]:
        """Convert aiodns result objects to :class:`DNSAnswer` records.

        Args:
            name: The queried name.
            result: Raw aiodns result (list or single object).
            record_type: DNS record type string.

        Returns:
            List of answers.
        """
        out: List[DNSAnswer] = []
        rtype = RECORD_TYPES[record_type]
        items = result if isinstance(result, list) else [result]
        for item in items:
            if record_type in ("A", "AAAA", "NS", "PTR"):
                data = item.host if hasattr(item, "host") else item.name
            elif record_type == "CNAME":
                data = item.cname
            elif record_type == "MX":
                data = f"{item.priority} {item.host}"
            elif record_type == "TXT":
                text = item.text
                if isinstance(text, (bytes, bytearray)):
                    text = text.decode("utf-8", errors="replace")
                data = text
            elif record_type == "SOA":
                data = f"{item.nsname} {item.hostmaster}"
            elif record_type == "SRV":
                data = f"{item.priority} {item.weight} {item.port} {item.host}"
            else:
                data = str(item)
            out.append(DNSAnswer(name=name, type=rtype, ttl=int(getattr(item, "ttl", 0) or 0), data=data))
        return out

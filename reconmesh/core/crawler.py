"""Archive crawler shared by the web-archive data sources.

A single :class:`Crawler` instance is handed to every archive-style source
(Wayback, Archive.today, UK Gov Web Archive) so that one semaphore bounds
the number of simultaneous crawls across all of them.
"""

from __future__ import annotations

import asyncio
import datetime
import random
import re
from typing import TYPE_CHECKING, List, Optional, Set
from urllib.parse import urljoin, urlparse

from reconmesh.core.errors import CrawlerError
from reconmesh.core.filter import StringFilter
from reconmesh.utils.helpers import clean_name, deduplicate
from reconmesh.utils.http_client import AsyncHTTPClient
from reconmesh.utils.logger import get_logger

if TYPE_CHECKING:
    from reconmesh.core.service import BaseService

logger = get_logger(__name__)

_HREF_RE = re.compile(r'<a[^>]+href=["\']([^"\'<>\s]+)["\']', re.IGNORECASE)
_SRC_RE = re.compile(r'<script[^>]+src=["\']([^"\'<>\s]+)["\']', re.IGNORECASE)

# Static assets never worth following
_SKIP_EXTENSIONS = (
    ".png", ".jpg", ".jpeg", ".gif", ".svg", ".ico", ".webp", ".bmp",
    ".css", ".woff", ".woff2", ".ttf", ".eot",
    ".pdf", ".zip", ".gz", ".tar", ".rar", ".7z", ".exe", ".dmg",
    ".mp3", ".mp4", ".avi", ".mov", ".webm", ".xml", ".json",
)


class _CrawlState:
    """Mutable bookkeeping for one crawl."""

    def __init__(self, max_visits: int) -> None:
        self.max_visits = max_visits
        self.visits = 0
        self.names: List[str] = []
        self.seen_urls = StringFilter()

    @property
    def exhausted(self) -> bool:
        return self.visits >= self.max_visits


class Crawler:
    """Domain-restricted, time-bounded crawler over web-archive mirrors.

    Args:
        max_concurrent: Crawls allowed to run at once across every source
            sharing this instance.
        timeout: Wall-clock ceiling for a single crawl in seconds.
        max_visits: Maximum pages fetched by a single crawl.
        request_delay: Mean delay between requests of one worker; the actual
            delay is randomised between 0.5x and 1.5x.
        concurrency: Workers fetching pages within one crawl.
    """

    def __init__(
        self,
        max_concurrent: int = 50,
        timeout: float = 20.0,
        max_visits: int = 50,
        request_delay: float = 1.0,
        concurrency: int = 3,
    ) -> None:
        self.timeout = timeout
        self.max_visits = max_visits
        self.request_delay = request_delay
        self.concurrency = max(1, concurrency)
        self._semaphore = asyncio.Semaphore(max(1, max_concurrent))

    async def crawl(
        self,
        service: "BaseService",
        base_url: str,
        base_domain: str,
        subdomain: str,
        domain: str,
    ) -> List[str]:
        """Walk an archive mirror and return the names under *domain* it mentions.

        Args:
            service: The calling service; supplies config and liveness.
            base_url: Archive URL prefix, e.g. ``http://web.archive.org/web``.
            base_domain: Host the crawl is restricted to.
            subdomain: Name whose archived pages are walked.
            domain: Root domain whose regex selects the names returned.

        Returns:
            Names collected before the visit ceiling or timeout was reached.

        Raises:
            CrawlerError: If no regex exists for *domain*.
        """
        regex = service.config.domain_regex(domain)
        if regex is None:
            raise CrawlerError(f"No subdomain regex for {domain!r}")
        if not subdomain or not base_url:
            return []

        start = f"{base_url.rstrip('/')}/{datetime.date.today().year}/{subdomain}"
        state = _CrawlState(self.max_visits)
        state.seen_urls.duplicate(start)

        async with self._semaphore:
            general = service.config.general
            async with AsyncHTTPClient(
                timeout=general.timeout,
                retries=0,
                user_agents=general.user_agents,
                proxy=general.proxy,
            ) as client:
                queue: "asyncio.Queue[str]" = asyncio.Queue()
                queue.put_nowait(start)
                workers = [
                    asyncio.create_task(
                        self._worker(service, client, queue, state, regex, base_domain)
                    )
                    for _ in range(self.concurrency)
                ]
                try:
                    await asyncio.wait_for(queue.join(), timeout=self.timeout)
                except asyncio.TimeoutError:
                    logger.debug("Crawl of %s for %s timed out after %.0fs", base_domain, subdomain, self.timeout)
                finally:
                    for worker in workers:
                        worker.cancel()
                    await asyncio.gather(*workers, return_exceptions=True)

        return deduplicate(state.names)

    async def _worker(
        self,
        service: "BaseService",
        client: AsyncHTTPClient,
        queue: "asyncio.Queue[str]",
        state: _CrawlState,
        regex: "re.Pattern[str]",
        base_domain: str,
    ) -> None:
        while True:
            url = await queue.get()
            try:
                if state.exhausted or service.quit.is_set():
                    continue
                state.visits += 1
                body = await self._fetch(client, url)
                if body is None:
                    continue
                service.set_active()

                for match in regex.finditer(body):
                    name = clean_name(match.group(0))
                    if name:
                        state.names.append(name)

                for link in _links(body, url, base_domain):
                    if not state.seen_urls.duplicate(link):
                        queue.put_nowait(link)

                if self.request_delay > 0:
                    await asyncio.sleep(self.request_delay * random.uniform(0.5, 1.5))
            finally:
                queue.task_done()

    async def _fetch(self, client: AsyncHTTPClient, url: str) -> Optional[str]:
        try:
            resp = await client.get(url)
        except Exception as exc:  # noqa: BLE001
            logger.debug("Crawler fetch failed for %s: %s", url, exc)
            return None
        if resp["status"] != 200:
            return None
        return resp["body"]


def _links(body: str, page_url: str, base_domain: str) -> Set[str]:
    """Return the followable links in *body* that stay on *base_domain*."""
    links: Set[str] = set()
    for pattern in (_HREF_RE, _SRC_RE):
        for ref in pattern.findall(body):
            link = urljoin(page_url, ref).split("#")[0]
            parsed = urlparse(link)
            if parsed.scheme not in ("http", "https"):
                continue
            if (parsed.hostname or "").lower() != base_domain.lower():
                continue
            if parsed.path.lower().endswith(_SKIP_EXTENSIONS):
                continue
            links.add(link)
    return links

"""Web-archive data sources built on the shared :class:`~reconmesh.core.crawler.Crawler`."""

from __future__ import annotations

from typing import List, Optional

from reconmesh.core import requests
from reconmesh.core.config import Config
from reconmesh.core.crawler import Crawler
from reconmesh.core.eventbus import EventBus
from reconmesh.core.filter import StringFilter
from reconmesh.core.requests import DNSRequest
from reconmesh.core.service import BaseService
from reconmesh.utils.dns_resolver import ResolverPool


class ArchiveService(BaseService):
    """Base class for sources that crawl an archive mirror per discovered name.

    Subclasses only set :attr:`base_url` and :attr:`base_domain`.  The root
    domain and every name that resolves during the run are crawled, each at
    most once per service.

    Args:
        crawler: Shared crawler; a private one is built from ``config.crawler``
            when omitted.
    """

    source_type = requests.ARCHIVE
    base_url: str = ""
    base_domain: str = ""

    def __init__(
        self,
        config: Config,
        bus: EventBus,
        pool: Optional[ResolverPool] = None,
        name_filter: Optional[StringFilter] = None,
        crawler: Optional[Crawler] = None,
    ) -> None:
        super().__init__(config, bus, pool, name_filter)
        self.crawler = crawler if crawler is not None else crawler_from_config(config)
        self._crawled = StringFilter()

    async def on_dns_request(self, req: DNSRequest) -> Optional[List[str]]:
        return await self._crawl(req)

    async def on_name_resolved(self, req: DNSRequest) -> Optional[List[str]]:
        return await self._crawl(req)

    async def _crawl(self, req: DNSRequest) -> Optional[List[str]]:
        if not req.name or self._crawled.duplicate(req.name):
            return None
        return await self.crawler.crawl(self, self.base_url, self.base_domain, req.name, req.domain)


def crawler_from_config(config: Config) -> Crawler:
    """Build a :class:`Crawler` from the ``crawler`` config section."""
    c = config.crawler
    return Crawler(
        max_concurrent=c.max_concurrent,
        timeout=c.timeout,
        max_visits=c.max_visits,
        request_delay=c.request_delay,
    )


class Wayback(ArchiveService):
    """Internet Archive Wayback Machine."""

    name = "Wayback"
    description = "Internet Archive Wayback Machine crawl"
    base_url = "http://web.archive.org/web"
    base_domain = "web.archive.org"


class ArchiveToday(ArchiveService):
    """archive.today (archive.is) snapshots."""

    name = "ArchiveToday"
    description = "archive.today snapshot crawl"
    base_url = "http://archive.is"
    base_domain = "archive.is"


class UKGovArchive(ArchiveService):
    """The UK National Archives government web archive."""

    name = "UKGovArchive"
    description = "UK Government Web Archive crawl"
    base_url = "http://webarchive.nationalarchives.gov.uk"
    base_domain = "webarchive.nationalarchives.gov.uk"

"""The full set of bundled data sources, built against shared dependencies."""

from __future__ import annotations

from typing import List, Optional, Sequence, Type

from reconmesh.core.config import Config
from reconmesh.core.eventbus import EventBus
from reconmesh.core.filter import StringFilter
from reconmesh.core.service import BaseService
from reconmesh.sources import (
    AlienVault,
    ArchiveService,
    ArchiveToday,
    CrtSh,
    HackerTarget,
    Shodan,
    TeamCymru,
    ThreatCrowd,
    UKGovArchive,
    Wayback,
)
from reconmesh.sources.archive import crawler_from_config
from reconmesh.utils.dns_resolver import ResolverPool
from reconmesh.utils.logger import get_logger

logger = get_logger(__name__)

SOURCE_CLASSES: Sequence[Type[BaseService]] = (
    AlienVault,
    ArchiveToday,
    CrtSh,
    HackerTarget,
    Shodan,
    TeamCymru,
    ThreatCrowd,
    UKGovArchive,
    Wayback,
)


def get_all_sources(
    config: Config,
    bus: EventBus,
    pool: Optional[ResolverPool] = None,
    name_filter: Optional[StringFilter] = None,
) -> List[BaseService]:
    """Construct one instance of every bundled data source.

    Every service receives the same *config*, *bus* and *pool*.  The archive
    sources also share one crawler (and so one crawl semaphore) and one
    name filter.  Nothing is started and no I/O is performed.

    Args:
        config: Shared configuration.
        bus: Shared event bus.
        pool: Shared resolver pool.
        name_filter: When given, every service dedups published names through
            this single filter.

    Returns:
        Unstarted services, one per entry in :data:`SOURCE_CLASSES`.
    """
    crawler = crawler_from_config(config)
    archive_filter = name_filter if name_filter is not None else StringFilter()

    services: List[BaseService] = []
    for cls in SOURCE_CLASSES:
        if issubclass(cls, ArchiveService):
            services.append(cls(config, bus, pool, name_filter=archive_filter, crawler=crawler))
        else:
            services.append(cls(config, bus, pool, name_filter=name_filter))
    return services


def exclude_disabled_sources(config: Config, services: List[BaseService]) -> List[BaseService]:
    """Return *services* minus those listed in ``config.disabled_sources``."""
    kept = []
    for srv in services:
        if config.source_disabled(srv.name):
            logger.debug("Data source %s is disabled", srv.name)
            continue
        kept.append(srv)
    return kept

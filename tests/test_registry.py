"""Tests for reconmesh.core.registry."""

from __future__ import annotations

from reconmesh.core.eventbus import EventBus
from reconmesh.core.filter import StringFilter
from reconmesh.core.registry import SOURCE_CLASSES, exclude_disabled_sources, get_all_sources
from reconmesh.core.service import ServiceState
from reconmesh.sources import ArchiveService


def test_one_instance_per_source(sample_config, mock_pool):
    services = get_all_sources(sample_config, EventBus(), mock_pool)
    assert [type(s) for s in services] == list(SOURCE_CLASSES)
    assert len({s.name for s in services}) == len(services)


def test_sources_share_dependencies_and_are_unstarted(sample_config, mock_pool):
    bus = EventBus()
    services = get_all_sources(sample_config, bus, mock_pool)
    for srv in services:
        assert srv.config is sample_config
        assert srv.bus is bus
        assert srv.pool is mock_pool
        assert srv.state is ServiceState.CREATED
        assert srv.request_len() == 0


def test_archive_sources_share_crawler_and_filter(sample_config):
    services = get_all_sources(sample_config, EventBus())
    archives = [s for s in services if isinstance(s, ArchiveService)]
    others = [s for s in services if not isinstance(s, ArchiveService)]

    assert len(archives) == 3
    assert len({id(a.crawler) for a in archives}) == 1
    assert len({id(a.name_filter) for a in archives}) == 1
    assert len({id(o.name_filter) for o in others}) == len(others)


def test_shared_name_filter_reaches_every_source(sample_config):
    shared = StringFilter()
    services = get_all_sources(sample_config, EventBus(), name_filter=shared)
    assert all(s.name_filter is shared for s in services)


def test_exclude_disabled_sources(sample_config):
    sample_config.disabled_sources = ["shodan", "WAYBACK"]
    services = exclude_disabled_sources(sample_config, get_all_sources(sample_config, EventBus()))
    names = {s.name for s in services}
    assert "Shodan" not in names
    assert "Wayback" not in names
    assert len(services) == len(SOURCE_CLASSES) - 2

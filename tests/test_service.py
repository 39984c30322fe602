"""Tests for reconmesh.core.service."""

from __future__ import annotations

import asyncio
import time

import pytest

from reconmesh.core import requests
from reconmesh.core.config import APIKey
from reconmesh.core.errors import ServiceSetupError, ServiceStateError
from reconmesh.core.eventbus import EventBus
from reconmesh.core.filter import StringFilter
from reconmesh.core.requests import AddrRequest, DNSRequest, LogMessage, WhoisRequest
from reconmesh.core.service import BaseService, ServiceState


class EchoSource(BaseService):
    name = "Echo"
    source_type = requests.API

    def __init__(self, *args, **kwargs):
        super().__init__(*args, **kwargs)
        self.calls = []

    async def on_dns_request(self, req):
        self.calls.append(req)
        return ["www." + req.domain]


class BrokenSetupSource(EchoSource):
    name = "BrokenSetup"

    async def on_start(self):
        raise RuntimeError("cannot load wordlist")


class FatalSetupSource(EchoSource):
    name = "FatalSetup"

    async def on_start(self):
        raise ServiceSetupError("no way to run")


class KeyedSource(BaseService):
    name = "Keyed"
    requires_api_key = True


def _request(domain="example.com"):
    return DNSRequest(name=domain, domain=domain)


@pytest.mark.asyncio
async def test_start_twice_launches_one_loop(sample_config, wait_until):
    bus = EventBus()
    names = []
    bus.subscribe(requests.NEW_NAME_TOPIC, names.append)
    srv = EchoSource(sample_config, bus, name_filter=StringFilter())

    await srv.start()
    await srv.start()
    assert srv.state is ServiceState.STARTED
    assert len(srv._tasks) == 1

    srv.send_request(_request())
    assert await wait_until(lambda: len(srv.calls) == 1)
    await bus.join()
    assert [n.name for n in names] == ["www.example.com"]

    await srv.stop()
    await bus.stop()


@pytest.mark.asyncio
async def test_start_after_stop_raises(sample_config):
    bus = EventBus()
    srv = EchoSource(sample_config, bus)
    await srv.start()
    await srv.stop()
    with pytest.raises(ServiceStateError):
        await srv.start()
    await bus.stop()


@pytest.mark.asyncio
async def test_stop_exits_loops_and_is_idempotent(sample_config):
    bus = EventBus()
    srv = EchoSource(sample_config, bus)
    await srv.start()
    assert srv.running

    started = time.monotonic()
    await srv.stop()
    await srv.stop()

    assert time.monotonic() - started < sample_config.general.stop_grace + 0.5
    assert not srv.running
    assert srv.state is ServiceState.STOPPED
    await bus.stop()


@pytest.mark.asyncio
async def test_stop_before_start(sample_config):
    srv = EchoSource(sample_config, EventBus())
    await srv.stop()
    assert srv.state is ServiceState.STOPPED
    assert srv.quit.is_set()


@pytest.mark.asyncio
async def test_stop_removes_tracked_subscriptions(sample_config):
    bus = EventBus()
    srv = EchoSource(sample_config, bus)
    srv.subscribe(requests.NAME_RESOLVED_TOPIC, srv.send_request)
    assert bus.subscriber_count(requests.NAME_RESOLVED_TOPIC) == 1

    await srv.start()
    await srv.stop()
    assert bus.subscriber_count(requests.NAME_RESOLVED_TOPIC) == 0
    await bus.stop()


@pytest.mark.asyncio
async def test_setup_failure_degrades_but_keeps_running(sample_config, wait_until):
    bus = EventBus()
    logs = []
    bus.subscribe(requests.LOG_TOPIC, logs.append)
    srv = BrokenSetupSource(sample_config, bus)

    await srv.start()
    srv.send_request(_request())
    assert await wait_until(lambda: len(srv.calls) == 1)
    await bus.join()

    assert any("setup failed" in m.message and m.level == "error" for m in logs)
    await srv.stop()
    await bus.stop()


@pytest.mark.asyncio
async def test_setup_error_is_raised(sample_config):
    srv = FatalSetupSource(sample_config, EventBus())
    with pytest.raises(ServiceSetupError):
        await srv.start()
    assert srv.state is ServiceState.STOPPED
    assert not srv.running


class AllHooksSource(EchoSource):
    name = "AllHooks"

    async def on_addr_request(self, req):
        pass

    async def on_whois_request(self, req):
        pass


def test_send_request_routes_by_type(sample_config):
    srv = AllHooksSource(sample_config, EventBus())
    assert srv.send_request(_request())
    assert srv.send_request(AddrRequest(address="192.0.2.1"))
    assert srv.send_request(WhoisRequest(domain="example.com"))
    assert srv.dns_requests.qsize() == 1
    assert srv.addr_requests.qsize() == 1
    assert srv.whois_requests.qsize() == 1
    assert srv.request_len() == 3


def test_send_request_rejects_unknown_types(sample_config):
    srv = EchoSource(sample_config, EventBus())
    assert srv.send_request("not a request") is False
    assert srv.send_request(AddrRequest(address="192.0.2.1")) is False
    assert srv.request_len() == 0


def test_send_resolved_uses_its_own_queue(sample_config):
    srv = AllHooksSource(sample_config, EventBus())
    assert srv.send_resolved(_request("www.example.com")) is False

    class Crawling(EchoSource):
        async def on_name_resolved(self, req):
            return None

    crawling = Crawling(sample_config, EventBus())
    assert crawling.send_resolved(_request("www.example.com"))
    assert crawling.send_resolved(AddrRequest(address="192.0.2.1")) is False
    assert crawling.resolved_names.qsize() == 1
    assert crawling.dns_requests.qsize() == 0


def test_send_request_drops_when_queue_full(sample_config):
    sample_config.general.queue_size = 1
    srv = EchoSource(sample_config, EventBus())
    assert srv.send_request(_request())
    assert srv.send_request(_request()) is False


@pytest.mark.asyncio
async def test_send_request_after_stop_is_dropped(sample_config):
    srv = EchoSource(sample_config, EventBus())
    await srv.stop()
    assert srv.send_request(_request()) is False


def test_set_active_and_is_active(sample_config):
    srv = EchoSource(sample_config, EventBus())
    srv._active = time.monotonic() - 60
    assert not srv.is_active(window=10)
    srv.set_active()
    assert srv.is_active(window=10)
    assert srv.last_active == srv._active


@pytest.mark.asyncio
async def test_publish_names_filters_and_dedups(sample_config):
    bus = EventBus()
    got = []
    bus.subscribe(requests.NEW_NAME_TOPIC, got.append)
    sample_config.scope.add_blacklist("internal.example.com")
    srv = EchoSource(sample_config, bus)

    count = srv.publish_names(
        "example.com",
        [
            "WWW.Example.com",
            "www.example.com",
            "2fapi.example.com",
            "*.cdn.example.com",
            "www.badexample.com",
            "other.org",
            "db.internal.example.com",
        ],
    )
    await bus.join()

    assert count == 3
    assert [r.name for r in got] == ["www.example.com", "api.example.com", "cdn.example.com"]
    assert all(r.domain == "example.com" and r.source == "Echo" and r.tag == requests.API for r in got)
    await bus.stop()


@pytest.mark.asyncio
async def test_publish_names_without_regex_is_noop(sample_config):
    bus = EventBus()
    got = []
    bus.subscribe(requests.NEW_NAME_TOPIC, got.append)
    srv = EchoSource(sample_config, bus)

    assert srv.publish_names("not-in-scope.org", ["www.not-in-scope.org"]) == 0
    await bus.join()
    assert got == []
    await bus.stop()


@pytest.mark.asyncio
async def test_publish_is_dropped_after_quit(sample_config):
    bus = EventBus()
    got = []
    bus.subscribe(requests.NEW_NAME_TOPIC, got.append)
    srv = EchoSource(sample_config, bus)
    await srv.stop()

    srv.publish(requests.NEW_NAME_TOPIC, _request())
    await bus.join()
    assert got == []
    await bus.stop()


@pytest.mark.asyncio
async def test_new_address_publishes_once(sample_config):
    bus = EventBus()
    got = []
    bus.subscribe(requests.NEW_ADDR_TOPIC, got.append)
    srv = EchoSource(sample_config, bus)

    assert srv.new_address("192.0.2.7", domain="example.com")
    assert not srv.new_address("192.0.2.7", domain="example.com")
    assert not srv.new_address("not-an-ip")
    await bus.join()
    assert [a.address for a in got] == ["192.0.2.7"]
    await bus.stop()


@pytest.mark.asyncio
async def test_log_publishes_log_message(sample_config):
    bus = EventBus()
    got = []
    bus.subscribe(requests.LOG_TOPIC, got.append)
    srv = EchoSource(sample_config, bus)

    srv.log("hello", level="warning")
    await bus.join()
    assert got == [LogMessage(source="Echo", message="hello", level="warning")]
    await bus.stop()


@pytest.mark.asyncio
async def test_api_key_missing(sample_config):
    bus = EventBus()
    srv = KeyedSource(sample_config, bus)
    await srv.start()
    assert srv.api_key_missing
    await srv.stop()

    sample_config.add_api_key("Keyed", APIKey(key="secret"))
    srv = KeyedSource(sample_config, bus)
    await srv.start()
    assert not srv.api_key_missing
    assert srv.api_key.key == "secret"
    await srv.stop()
    await bus.stop()


@pytest.mark.asyncio
async def test_service_without_hooks_starts_no_loops(sample_config):
    srv = KeyedSource(sample_config, EventBus())
    await srv.start()
    assert srv._tasks == []
    await srv.stop()


def test_stats_and_repr(sample_config):
    srv = EchoSource(sample_config, EventBus())
    stats = srv.stats()
    assert stats["name"] == "Echo"
    assert stats["state"] == "created"
    assert stats["requests_remaining"] == 0
    assert str(srv) == "Echo"
    assert repr(srv) == "<Service Echo (created)>"


@pytest.mark.asyncio
async def test_rate_limit_override_from_config(sample_config):
    sample_config.rate_limits["echo"] = 3.0
    srv = EchoSource(sample_config, EventBus())
    assert srv.limiter.interval == 3.0
    await asyncio.sleep(0)

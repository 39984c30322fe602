"""Tests for reconmesh.core.dispatch, including the end-to-end bus scenarios."""

from __future__ import annotations

import asyncio
import time

import aiohttp
import pytest

from reconmesh.core import requests
from reconmesh.core.config import Config
from reconmesh.core.dispatch import handles
from reconmesh.core.eventbus import EventBus
from reconmesh.core.filter import StringFilter
from reconmesh.core.requests import AddrRequest, ASNRequest, DNSRequest
from reconmesh.core.service import BaseService


class FixedNamesSource(BaseService):
    name = "FixedNames"
    source_type = requests.API

    def __init__(self, *args, names=("www.example.com",), **kwargs):
        super().__init__(*args, **kwargs)
        self.names = list(names)
        self.calls = []

    async def on_dns_request(self, req):
        self.calls.append((time.monotonic(), req))
        return list(self.names)


class FailingSource(BaseService):
    name = "Failing"

    def __init__(self, *args, exc=None, **kwargs):
        super().__init__(*args, **kwargs)
        self.exc = exc or aiohttp.ClientError("connection reset")
        self.calls = []

    async def on_dns_request(self, req):
        self.calls.append(req)
        raise self.exc


class FlakySource(FixedNamesSource):
    """Fails for bad.example.com only."""

    name = "Flaky"

    async def on_dns_request(self, req):
        if req.domain == "bad.example.com":
            self.calls.append((time.monotonic(), req))
            raise asyncio.TimeoutError()
        return await super().on_dns_request(req)


class SlowSource(BaseService):
    name = "Slow"

    def __init__(self, *args, delay=5.0, **kwargs):
        super().__init__(*args, **kwargs)
        self.delay = delay
        self.entered = asyncio.Event()

    async def on_dns_request(self, req):
        self.entered.set()
        await asyncio.sleep(self.delay)
        return ["late.example.com"]


class AddressSource(BaseService):
    name = "Addresses"

    def __init__(self, *args, **kwargs):
        super().__init__(*args, **kwargs)
        self.addrs = []
        self.asns = []

    async def on_addr_request(self, req):
        self.addrs.append(req.address)

    async def on_asn_request(self, req):
        self.asns.append(req)


def _request(domain="example.com"):
    return DNSRequest(name=domain, domain=domain)


# ---------------------------------------------------------------------------
# End-to-end scenarios
# ---------------------------------------------------------------------------


@pytest.mark.asyncio
async def test_dns_request_produces_new_name_fact(sample_config, wait_until):
    bus = EventBus()
    observed = []
    bus.subscribe(requests.NEW_NAME_TOPIC, observed.append)
    srv = FixedNamesSource(sample_config, bus)
    srv.subscribe(requests.DNS_REQUEST_TOPIC, srv.send_request)
    await srv.start()

    bus.publish(requests.DNS_REQUEST_TOPIC, _request())

    assert await wait_until(lambda: len(observed) == 1)
    fact = observed[0]
    assert (fact.name, fact.domain) == ("www.example.com", "example.com")
    assert fact.source == "FixedNames"
    await srv.stop()
    await bus.stop()


@pytest.mark.asyncio
async def test_shared_filter_publishes_duplicate_once(sample_config, wait_until):
    bus = EventBus()
    observed = []
    bus.subscribe(requests.NEW_NAME_TOPIC, observed.append)
    shared = StringFilter()
    first = FixedNamesSource(sample_config, bus, name_filter=shared, names=["dup.example.com"])
    second = FixedNamesSource(sample_config, bus, name_filter=shared, names=["dup.example.com"])
    for srv in (first, second):
        srv.subscribe(requests.DNS_REQUEST_TOPIC, srv.send_request)
        await srv.start()

    bus.publish(requests.DNS_REQUEST_TOPIC, _request())

    assert await wait_until(lambda: len(first.calls) == 1 and len(second.calls) == 1)
    await bus.join()
    assert [f.name for f in observed] == ["dup.example.com"]
    for srv in (first, second):
        await srv.stop()
    await bus.stop()


@pytest.mark.asyncio
async def test_failing_fetch_never_publishes_and_loop_survives(sample_config, wait_until):
    bus = EventBus()
    observed, logs = [], []
    bus.subscribe(requests.NEW_NAME_TOPIC, observed.append)
    bus.subscribe(requests.LOG_TOPIC, logs.append)
    srv = FailingSource(sample_config, bus)
    await srv.start()

    srv.send_request(_request())
    srv.send_request(_request("www.example.com"))

    assert await wait_until(lambda: len(srv.calls) == 2)
    await bus.join()
    assert observed == []
    assert srv.running
    assert len([m for m in logs if m.level == "warning"]) == 2
    await srv.stop()
    await bus.stop()


@pytest.mark.asyncio
async def test_request_after_failure_is_processed_normally(sample_config, wait_until):
    bus = EventBus()
    observed = []
    bus.subscribe(requests.NEW_NAME_TOPIC, observed.append)
    srv = FlakySource(sample_config, bus, names=["ok.example.com"])
    await srv.start()

    srv.send_request(DNSRequest(name="bad.example.com", domain="bad.example.com"))
    srv.send_request(_request())

    assert await wait_until(lambda: len(observed) == 1)
    assert observed[0].name == "ok.example.com"
    await srv.stop()
    await bus.stop()


@pytest.mark.asyncio
async def test_stop_during_slow_fetch_exits_within_grace():
    config = Config(general={"stop_grace": 1.0}, enumeration={"domains": ["example.com"]})
    bus = EventBus()
    observed = []
    bus.subscribe(requests.NEW_NAME_TOPIC, observed.append)
    srv = SlowSource(config, bus, delay=5.0)
    await srv.start()
    srv.send_request(_request())
    await asyncio.wait_for(srv.entered.wait(), timeout=2.0)

    started = time.monotonic()
    await srv.stop()
    elapsed = time.monotonic() - started

    assert elapsed < 2.0
    assert not srv.running
    await bus.join()
    assert observed == []
    await bus.stop()


# ---------------------------------------------------------------------------
# Loop behaviour
# ---------------------------------------------------------------------------


@pytest.mark.asyncio
async def test_calls_are_spaced_by_rate_limit(sample_config, wait_until):
    sample_config.rate_limits["fixednames"] = 0.1
    srv = FixedNamesSource(sample_config, EventBus())
    await srv.start()
    for sub in ("a", "b", "c", "d"):
        srv.send_request(DNSRequest(name=f"{sub}.example.com", domain="example.com"))

    assert await wait_until(lambda: len(srv.calls) == 4)
    stamps = [t for t, _ in srv.calls]
    assert all(b - a >= 0.1 - 0.01 for a, b in zip(stamps, stamps[1:]))
    await srv.stop()


@pytest.mark.asyncio
async def test_requests_processed_in_fifo_order(sample_config, wait_until):
    srv = FixedNamesSource(sample_config, EventBus())
    await srv.start()
    names = [f"n{i}.example.com" for i in range(10)]
    for name in names:
        srv.send_request(DNSRequest(name=name, domain="example.com"))

    assert await wait_until(lambda: len(srv.calls) == 10)
    assert [req.name for _, req in srv.calls] == names
    await srv.stop()


@pytest.mark.asyncio
async def test_out_of_scope_requests_are_skipped(sample_config, wait_until):
    srv = FixedNamesSource(sample_config, EventBus())
    await srv.start()
    srv.send_request(_request("other.org"))
    srv.send_request(DNSRequest(name="", domain=""))
    srv.send_request(_request())

    assert await wait_until(lambda: len(srv.calls) == 1)
    assert srv.calls[0][1].domain == "example.com"
    await srv.stop()


@pytest.mark.asyncio
async def test_parse_errors_are_logged(sample_config, wait_until):
    bus = EventBus()
    logs = []
    bus.subscribe(requests.LOG_TOPIC, logs.append)
    srv = FailingSource(sample_config, bus, exc=ValueError("Expecting value"))
    await srv.start()
    srv.send_request(_request())

    assert await wait_until(lambda: len(logs) == 1)
    assert "Unparseable" in logs[0].message
    await srv.stop()
    await bus.stop()


@pytest.mark.asyncio
async def test_unexpected_errors_are_logged_as_errors(sample_config, wait_until):
    bus = EventBus()
    logs = []
    bus.subscribe(requests.LOG_TOPIC, logs.append)
    srv = FailingSource(sample_config, bus, exc=KeyError("subdomains"))
    await srv.start()
    srv.send_request(_request())

    assert await wait_until(lambda: len(logs) == 1)
    assert logs[0].level == "error"
    assert srv.running
    await srv.stop()
    await bus.stop()


@pytest.mark.asyncio
async def test_reset_limit_after_call(sample_config, wait_until):
    class ResettingSlow(SlowSource):
        name = "ResettingSlow"
        reset_limit_after_call = True

    srv = ResettingSlow(sample_config, EventBus(), delay=0.05)
    await srv.start()
    srv.send_request(_request())
    await srv.entered.wait()
    entered_at = time.monotonic()

    assert await wait_until(lambda: srv.limiter.last_call >= entered_at + 0.04)
    await srv.stop()


@pytest.mark.asyncio
async def test_address_scope_and_asn_eligibility(wait_until):
    config = Config(enumeration={"domains": ["example.com"], "addresses": ["192.0.2.0/24"]})
    srv = AddressSource(config, EventBus())
    await srv.start()
    assert len(srv._tasks) == 2

    srv.send_request(AddrRequest(address="198.51.100.1"))
    srv.send_request(AddrRequest(address="192.0.2.10"))
    srv.send_request(ASNRequest())
    srv.send_request(ASNRequest(address="192.0.2.10"))

    assert await wait_until(lambda: srv.addrs and srv.asns)
    await asyncio.sleep(0.05)
    assert srv.addrs == ["192.0.2.10"]
    assert [r.address for r in srv.asns] == ["192.0.2.10"]
    await srv.stop()


def test_handles_detects_overridden_hooks(sample_config):
    srv = AddressSource(sample_config, EventBus())
    assert handles(srv, "on_addr_request")
    assert handles(srv, "on_asn_request")
    assert not handles(srv, "on_dns_request")
    assert not handles(srv, "on_whois_request")


# ---------------------------------------------------------------------------
# Resolved names
# ---------------------------------------------------------------------------


class ResolvedNamesSource(BaseService):
    name = "ResolvedNames"
    source_type = requests.ARCHIVE

    def __init__(self, *args, **kwargs):
        super().__init__(*args, **kwargs)
        self.resolved = []

    async def on_name_resolved(self, req):
        self.resolved.append(req.name)
        return ["deep." + req.name]


@pytest.mark.asyncio
async def test_resolved_names_do_not_delay_root_queries(sample_config, wait_until):
    bus = EventBus()
    sample_config.rate_limits = {"fixednames": 0.5}
    srv = FixedNamesSource(sample_config, bus, names=())
    srv.subscribe(requests.DNS_REQUEST_TOPIC, srv.send_request)
    srv.subscribe(requests.NAME_RESOLVED_TOPIC, srv.send_resolved)
    await srv.start()

    for i in range(6):
        bus.publish(requests.NAME_RESOLVED_TOPIC, DNSRequest(name=f"n{i}.example.com", domain="example.com"))
    start = time.monotonic()
    bus.publish(requests.DNS_REQUEST_TOPIC, _request())

    assert await wait_until(lambda: len(srv.calls) == 1)
    assert srv.calls[0][0] - start < 0.5
    assert srv.request_len() == 0
    await srv.stop()


@pytest.mark.asyncio
async def test_resolved_names_reach_the_resolved_hook(sample_config, wait_until):
    bus = EventBus()
    observed = []
    bus.subscribe(requests.NEW_NAME_TOPIC, observed.append)
    srv = ResolvedNamesSource(sample_config, bus)
    srv.subscribe(requests.NAME_RESOLVED_TOPIC, srv.send_resolved)
    await srv.start()

    bus.publish(requests.NAME_RESOLVED_TOPIC, DNSRequest(name="www.example.com", domain="example.com"))
    bus.publish(requests.NAME_RESOLVED_TOPIC, DNSRequest(name="www.other.org", domain="other.org"))

    assert await wait_until(lambda: len(observed) == 1)
    assert srv.resolved == ["www.example.com"]
    assert observed[0].name == "deep.www.example.com"
    assert observed[0].tag == requests.ARCHIVE
    await srv.stop()

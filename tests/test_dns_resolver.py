"""Tests for reconmesh.utils.dns_resolver."""

from __future__ import annotations

from types import SimpleNamespace
from unittest.mock import AsyncMock, MagicMock, patch

import aiodns
import pytest

from reconmesh.core.errors import ResolveError
from reconmesh.utils.dns_resolver import PRIORITY_HIGH, RECORD_TYPES, ResolverPool


@pytest.fixture
def fake_resolver():
    resolver = MagicMock()
    resolver.query = AsyncMock(return_value=[SimpleNamespace(host="192.0.2.1", ttl=60)])
    with patch("reconmesh.utils.dns_resolver.aiodns.DNSResolver", return_value=resolver):
        yield resolver


@pytest.mark.asyncio
async def test_resolve_returns_answers(fake_resolver):
    pool = ResolverPool(nameservers=["192.0.2.53"])
    answers = await pool.resolve("www.example.com")
    assert len(answers) == 1
    assert answers[0].data == "192.0.2.1"
    assert answers[0].type == RECORD_TYPES["A"]
    assert answers[0].ttl == 60


@pytest.mark.asyncio
async def test_results_are_cached(fake_resolver):
    pool = ResolverPool()
    await pool.resolve("www.example.com")
    await pool.resolve("www.example.com")
    assert fake_resolver.query.await_count == 1


@pytest.mark.asyncio
async def test_txt_records_are_decoded(fake_resolver):
    fake_resolver.query = AsyncMock(return_value=[SimpleNamespace(text=b"v=spf1 -all", ttl=30)])
    pool = ResolverPool()
    answers = await pool.resolve("example.com", "txt", PRIORITY_HIGH)
    assert answers[0].data == "v=spf1 -all"
    assert answers[0].type == RECORD_TYPES["TXT"]


@pytest.mark.asyncio
async def test_unsupported_record_type(fake_resolver):
    with pytest.raises(ResolveError):
        await ResolverPool().resolve("example.com", "AXFR")


@pytest.mark.asyncio
async def test_failures_raise_after_retries(fake_resolver):
    fake_resolver.query = AsyncMock(side_effect=aiodns.error.DNSError(4, "Domain name not found"))
    pool = ResolverPool(retries=2)
    with pytest.raises(ResolveError):
        await pool.resolve("nxdomain.example.com")
    assert fake_resolver.query.await_count == 2

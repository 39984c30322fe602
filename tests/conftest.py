"""Shared pytest fixtures for the RECONMESH test suite."""

from __future__ import annotations

import asyncio
import time
from typing import Callable
from unittest.mock import AsyncMock, MagicMock

import pytest

from reconmesh.core.config import Config
from reconmesh.core.eventbus import EventBus


@pytest.fixture
def sample_config() -> Config:
    """Return a Config scoped to example.com with short shutdown/idle windows."""
    return Config(
        general={"stop_grace": 0.5},
        enumeration={"domains": ["example.com"], "idle_window": 0.2, "max_duration": 5.0},
    )


@pytest.fixture
def bus() -> EventBus:
    """Return a fresh, unstarted EventBus."""
    return EventBus()


@pytest.fixture
def mock_pool() -> MagicMock:
    """Return a MagicMock simulating the resolver pool."""
    pool = MagicMock()
    pool.resolve = AsyncMock(return_value=[])
    return pool


@pytest.fixture
def wait_until() -> Callable:
    """Return a coroutine function polling *predicate* until true or timeout."""

    async def _wait(predicate: Callable[[], bool], timeout: float = 2.0) -> bool:
        deadline = time.monotonic() + timeout
        while time.monotonic() < deadline:
            if predicate():
                return True
            await asyncio.sleep(0.01)
        return predicate()

    return _wait


@pytest.fixture
def http_response() -> Callable:
    """Return a builder for response dicts shaped like :meth:`AsyncHTTPClient.get` returns."""

    def _build(body: str = "", status: int = 200, headers=None) -> dict:
        return {"status": status, "headers": headers or {}, "body": body, "url": ""}

    return _build

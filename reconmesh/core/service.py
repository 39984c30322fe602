"""Base class for RECONMESH data-source services.

Every data source inherits from :class:`BaseService`, declares its metadata
as class attributes, and overrides one or more of the ``on_*_request`` hooks.
The base class owns the typed inbound queues, the quit signal, the liveness
timestamp, the rate limiter and the lifecycle; the shared
:class:`~reconmesh.core.dispatch.Dispatcher` runs the loops.
"""

from __future__ import annotations

import asyncio
import logging
import time
from enum import Enum
from typing import TYPE_CHECKING, Any, Callable, Dict, Iterable, List, Optional, Tuple

from reconmesh.core import requests
from reconmesh.core.config import APIKey, Config
from reconmesh.core.dispatch import HOOKS, RESOLVED_NAME, Dispatcher, handles
from reconmesh.core.errors import ServiceSetupError, ServiceStateError
from reconmesh.core.eventbus import EventBus
from reconmesh.core.filter import StringFilter
from reconmesh.core.rate_limiter import RateLimiter
from reconmesh.core.requests import AddrRequest, ASNRequest, DNSRequest, LogMessage, WhoisRequest
from reconmesh.utils.helpers import clean_name
from reconmesh.utils.http_client import AsyncHTTPClient
from reconmesh.utils.logger import get_logger

if TYPE_CHECKING:
    from reconmesh.utils.dns_resolver import ResolverPool

_LEVELS = {
    "debug": logging.DEBUG,
    "info": logging.INFO,
    "warning": logging.WARNING,
    "error": logging.ERROR,
}


class ServiceState(Enum):
    """Lifecycle states of a service."""

    CREATED = "created"
    STARTED = "started"
    STOPPED = "stopped"


class BaseService:
    """Common lifecycle and plumbing for every data source.

    Example::

        class MySource(BaseService):
            name = "MySource"
            source_type = requests.API
            rate_limit = 1.0

            async def on_dns_request(self, req):
                return ["www." + req.domain]

        srv = MySource(config, bus)
        await srv.start()
        srv.send_request(DNSRequest(name="example.com", domain="example.com"))
        ...
        await srv.stop()

    Attributes:
        name: Unique service name; also the key for API keys and rate limit
            overrides.
        description: One-line description of the data source.
        source_type: Tag attached to every published fact.
        rate_limit: Minimum seconds between outbound calls.
        requires_api_key: Whether queries need a configured API key.
        api_key_name: Config key to look the API key up by (defaults to *name*).
        reset_limit_after_call: Re-stamp the rate limiter once a call finishes
            so the gap is measured from the end of the previous call.
    """

    name: str = "base"
    description: str = ""
    source_type: str = requests.NONE
    rate_limit: float = 0.0
    requires_api_key: bool = False
    api_key_name: str = ""
    reset_limit_after_call: bool = False

    def __init__(
        self,
        config: Config,
        bus: EventBus,
        pool: Optional["ResolverPool"] = None,
        name_filter: Optional[StringFilter] = None,
    ) -> None:
        """Initialise the service; nothing runs until :meth:`start`.

        Args:
            config: Shared enumeration configuration.
            bus: Shared event bus.
            pool: Shared DNS resolver pool, for sources that need lookups.
            name_filter: Dedup filter for published names.  Pass the same
                instance to several services to dedup across them.
        """
        self.config = config
        self.bus = bus
        self.pool = pool
        self.name_filter = name_filter if name_filter is not None else StringFilter()
        self.addr_filter = StringFilter()
        self.logger = get_logger(f"source.{self.name}")
        self.limiter = RateLimiter(config.rate_limit_for(self.name, self.rate_limit))
        self.api_key: Optional[APIKey] = None

        size = config.general.queue_size
        self._queues: Dict[Any, "asyncio.Queue[Any]"] = {
            DNSRequest: asyncio.Queue(maxsize=size),
            RESOLVED_NAME: asyncio.Queue(maxsize=size),
            AddrRequest: asyncio.Queue(maxsize=size),
            ASNRequest: asyncio.Queue(maxsize=size),
            WhoisRequest: asyncio.Queue(maxsize=size),
        }
        self._quit = asyncio.Event()
        self._state = ServiceState.CREATED
        self._active = time.monotonic()
        self._tasks: List["asyncio.Task[None]"] = []
        self._subscriptions: List[Tuple[str, Callable[[Any], Any]]] = []

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------

    async def start(self) -> None:
        """Run :meth:`on_start` and launch the dispatch loops.

        Calling it again on a running service does nothing.

        Raises:
            ServiceStateError: If the service has already been stopped.
            ServiceSetupError: If :meth:`on_start` reports the service cannot run.
        """
        if self._state is ServiceState.STARTED:
            self.logger.debug("%s has already been started", self.name)
            return
        if self._state is ServiceState.STOPPED:
            raise ServiceStateError(f"{self.name} has been stopped")

        self._state = ServiceState.STARTED
        self.api_key = self.config.get_api_key(self.api_key_name or self.name)
        if self.api_key_missing:
            self.log(f"{self.name}: API key data was not provided", level="warning")

        try:
            await self.on_start()
        except ServiceSetupError:
            self._state = ServiceState.STOPPED
            self._quit.set()
            raise
        except Exception as exc:  # noqa: BLE001
            self.log(f"{self.name}: setup failed, continuing degraded: {exc}", level="error")

        self._tasks = Dispatcher(self).launch()

    async def on_start(self) -> None:
        """Source-specific setup; override as needed."""

    async def stop(self) -> None:
        """Signal the dispatch loops to quit and wait for them to exit.

        Loops still busy after ``config.general.stop_grace`` seconds are
        cancelled.  Calling it again does nothing.
        """
        if self._state is ServiceState.STOPPED:
            return
        self._state = ServiceState.STOPPED

        try:
            await self.on_stop()
        except Exception as exc:  # noqa: BLE001
            self.logger.warning("%s: error during stop: %s", self.name, exc)

        self._quit.set()
        for topic, handler in self._subscriptions:
            self.bus.unsubscribe(topic, handler)
        self._subscriptions.clear()

        if self._tasks:
            _, pending = await asyncio.wait(self._tasks, timeout=self.config.general.stop_grace)
            for task in pending:
                task.cancel()
            await asyncio.gather(*self._tasks, return_exceptions=True)
            self._tasks.clear()

    async def on_stop(self) -> None:
        """Source-specific teardown; override as needed."""

    @property
    def state(self) -> ServiceState:
        return self._state

    @property
    def quit(self) -> asyncio.Event:
        """Event set once the service is stopping."""
        return self._quit

    @property
    def running(self) -> bool:
        """``True`` while at least one dispatch loop is alive."""
        return any(not t.done() for t in self._tasks)

    # ------------------------------------------------------------------
    # Inbound requests
    # ------------------------------------------------------------------

    def send_request(self, req: Any) -> bool:
        """Queue *req* on the inbound queue matching its type.

        Never blocks; the request is dropped if the service has stopped, has
        no hook for its type, or the queue is full.

        Returns:
            ``True`` if the request was queued.
        """
        return self._enqueue(type(req), req)

    def send_resolved(self, req: DNSRequest) -> bool:
        """Queue a name that resolved during the run for :meth:`on_name_resolved`.

        Dropped unless the service overrides that hook.
        """
        if not isinstance(req, DNSRequest):
            return False
        return self._enqueue(RESOLVED_NAME, req)

    def _enqueue(self, key: Any, req: Any) -> bool:
        if self._state is ServiceState.STOPPED:
            return False

        queue = self._queues.get(key)
        if queue is None or not handles(self, HOOKS[key]):
            return False
        try:
            queue.put_nowait(req)
        except asyncio.QueueFull:
            self.logger.debug("%s: request queue full, dropping %r", self.name, req)
            return False
        return True

    @property
    def dns_requests(self) -> "asyncio.Queue[DNSRequest]":
        return self._queues[DNSRequest]

    @property
    def resolved_names(self) -> "asyncio.Queue[DNSRequest]":
        return self._queues[RESOLVED_NAME]

    @property
    def addr_requests(self) -> "asyncio.Queue[AddrRequest]":
        return self._queues[AddrRequest]

    @property
    def asn_requests(self) -> "asyncio.Queue[ASNRequest]":
        return self._queues[ASNRequest]

    @property
    def whois_requests(self) -> "asyncio.Queue[WhoisRequest]":
        return self._queues[WhoisRequest]

    def request_len(self) -> int:
        """Number of requests waiting across all inbound queues."""
        return sum(q.qsize() for q in self._queues.values())

    # ------------------------------------------------------------------
    # Request hooks
    # ------------------------------------------------------------------

    async def on_dns_request(self, req: DNSRequest) -> Optional[Iterable[str]]:
        """Query the source for names under ``req.domain``.

        Names returned here are cleaned, scope-checked, deduplicated and
        published on :data:`~reconmesh.core.requests.NEW_NAME_TOPIC`.
        """
        return None

    async def on_name_resolved(self, req: DNSRequest) -> Optional[Iterable[str]]:
        """Investigate a name that resolved during the run.

        Returned names are published the same way as from
        :meth:`on_dns_request`.
        """
        return None

    async def on_addr_request(self, req: AddrRequest) -> None:
        """Handle an address fact."""

    async def on_asn_request(self, req: ASNRequest) -> None:
        """Handle an ASN lookup request."""

    async def on_whois_request(self, req: WhoisRequest) -> None:
        """Handle a WHOIS lookup request."""

    # ------------------------------------------------------------------
    # Liveness
    # ------------------------------------------------------------------

    def set_active(self) -> None:
        """Record that the service is doing work right now."""
        self._active = time.monotonic()

    def is_active(self, window: float = 10.0) -> bool:
        """Return ``True`` if :meth:`set_active` was called within *window* seconds."""
        return time.monotonic() - self._active <= window

    @property
    def last_active(self) -> float:
        """Monotonic timestamp of the last :meth:`set_active` call."""
        return self._active

    # ------------------------------------------------------------------
    # Publishing
    # ------------------------------------------------------------------

    def publish(self, topic: str, payload: Any) -> None:
        """Publish *payload* on the bus unless the service is stopping."""
        if self._quit.is_set():
            return
        self.bus.publish(topic, payload)

    def publish_names(self, domain: str, names: Iterable[str]) -> int:
        """Publish every new, in-scope name in *names* as a :class:`DNSRequest`.

        Args:
            domain: Root domain the names were found for.
            names: Raw names as scraped or returned by the source.

        Returns:
            Number of facts published.
        """
        regex = self.config.domain_regex(domain)
        if regex is None:
            return 0

        count = 0
        for raw in names:
            name = clean_name(raw)
            if not name or not regex.fullmatch(name):
                continue
            if self.config.blacklisted(name) or self.name_filter.duplicate(name):
                continue
            self.publish(
                requests.NEW_NAME_TOPIC,
                DNSRequest(name=name, domain=domain, tag=self.source_type, source=self.name),
            )
            count += 1
        return count

    def new_address(self, address: str, domain: str = "") -> bool:
        """Publish *address* on :data:`~reconmesh.core.requests.NEW_ADDR_TOPIC` once."""
        req = AddrRequest(address=address.strip(), domain=domain, tag=self.source_type, source=self.name)
        if not req.valid() or self.addr_filter.duplicate(req.address):
            return False
        self.publish(requests.NEW_ADDR_TOPIC, req)
        return True

    def subscribe(self, topic: str, handler: Callable[[Any], Any]) -> None:
        """Subscribe *handler* to *topic* for the lifetime of the service."""
        self.bus.subscribe(topic, handler)
        self._subscriptions.append((topic, handler))

    def log(self, message: str, level: str = "info") -> None:
        """Log *message* and publish it on :data:`~reconmesh.core.requests.LOG_TOPIC`."""
        self.logger.log(_LEVELS.get(level, logging.INFO), message)
        self.publish(requests.LOG_TOPIC, LogMessage(source=self.name, message=message, level=level))

    # ------------------------------------------------------------------
    # Outbound HTTP
    # ------------------------------------------------------------------

    def http_client(self, headers: Optional[Dict[str, str]] = None) -> AsyncHTTPClient:
        """Return an HTTP client configured from ``config.general``."""
        general = self.config.general
        return AsyncHTTPClient(
            timeout=general.timeout,
            retries=general.retries,
            user_agents=general.user_agents,
            proxy=general.proxy,
            headers=headers,
        )

    async def http_get(self, url: str, headers: Optional[Dict[str, str]] = None) -> Dict[str, Any]:
        """GET *url* and feed the response status back into the rate limiter.

        Raises:
            aiohttp.ClientError: On transport failure.
            asyncio.TimeoutError: When the request timed out.
        """
        async with self.http_client(headers) as client:
            resp = await client.get(url)
        self.limiter.record_response(resp["status"], resp["headers"])
        return resp

    # ------------------------------------------------------------------
    # API keys and diagnostics
    # ------------------------------------------------------------------

    @property
    def api_key_missing(self) -> bool:
        """``True`` when the source needs an API key and none is configured."""
        if not self.requires_api_key:
            return False
        return self.api_key is None or not (self.api_key.key or self.api_key.username)

    def stats(self) -> Dict[str, Any]:
        """Snapshot of the service's state for diagnostics."""
        return {
            "name": self.name,
            "state": self._state.value,
            "requests_remaining": self.request_len(),
            "names_seen": len(self.name_filter),
            "rate_limit": self.limiter.interval,
            "idle_seconds": round(time.monotonic() - self._active, 2),
        }

    def __str__(self) -> str:
        return self.name

    def __repr__(self) -> str:
        return f"<Service {self.name} ({self._state.value})>"

"""Enumeration orchestrator for RECONMESH.

:class:`Enumeration` builds the data sources, wires them to the event bus,
seeds one DNS and one WHOIS request per target domain, collects every fact
the mesh produces until it goes quiet, then shuts everything down.
"""

from __future__ import annotations

import asyncio
import inspect
import time
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional

from reconmesh.core import requests
from reconmesh.core.config import Config, load_config
from reconmesh.core.errors import ResolveError, ServiceSetupError
from reconmesh.core.eventbus import EventBus
from reconmesh.core.filter import StringFilter
from reconmesh.core.registry import exclude_disabled_sources, get_all_sources
from reconmesh.core.requests import (
    AddrRequest,
    ASNRequest,
    DNSAnswer,
    DNSRequest,
    LogMessage,
    WhoisRequest,
)
from reconmesh.core.service import BaseService
from reconmesh.utils.dns_resolver import PRIORITY_LOW, RECORD_TYPES, ResolverPool
from reconmesh.utils.logger import get_logger

logger = get_logger(__name__)

SOURCE_NAME = "Enumeration"

# Workers resolving newly discovered names
_RESOLVE_WORKERS = 10


@dataclass
class EnumerationResult:
    """Facts collected during one enumeration run.

    Attributes:
        domains: Root domains that were enumerated.
        started_at: Unix timestamp when the run began.
        finished_at: Unix timestamp when the run ended (or ``None``).
        names: Unique names discovered, in discovery order.
        addresses: Unique addresses discovered.
        asns: ASN records published by the sources.
        whois: WHOIS records published by the sources.
        logs: Messages published on the log topic.
        stats: Summary statistics dictionary.
    """

    domains: List[str]
    started_at: float
    finished_at: Optional[float] = None
    names: List[DNSRequest] = field(default_factory=list)
    addresses: List[AddrRequest] = field(default_factory=list)
    asns: List[ASNRequest] = field(default_factory=list)
    whois: List[WhoisRequest] = field(default_factory=list)
    logs: List[LogMessage] = field(default_factory=list)
    stats: Dict[str, Any] = field(default_factory=dict)

    @property
    def duration(self) -> float:
        """Elapsed run time in seconds."""
        if self.finished_at is None:
            return time.time() - self.started_at
        return self.finished_at - self.started_at

    @property
    def hostnames(self) -> List[str]:
        """Sorted unique names."""
        return sorted({n.name for n in self.names})


class Enumeration:
    """Drives the data-source mesh for a set of root domains.

    Example::

        config = Config()
        config.add_domain("example.com")
        enum = Enumeration(config)
        enum.on_event(print)
        result = await enum.run()
        print(result.hostnames)
    """

    def __init__(
        self,
        config: Optional[Config] = None,
        config_path: Optional[str] = None,
        bus: Optional[EventBus] = None,
        pool: Optional[ResolverPool] = None,
        services: Optional[List[BaseService]] = None,
        domains: Optional[List[str]] = None,
    ) -> None:
        """Initialise the orchestrator.

        Args:
            config: Pre-built :class:`~reconmesh.core.config.Config`.  If
                    ``None`` the configuration is loaded from *config_path*.
            config_path: Optional path to a YAML configuration file.
            bus: Event bus to use; a private one is created when omitted.
            pool: Resolver pool to use; one is built from ``config.dns`` when
                  omitted.
            services: Services to drive.  Defaults to every bundled source
                      not listed in ``config.disabled_sources``.
            domains: Extra root domains added to the configured scope.
        """
        self.config: Config = config or load_config(config_path)
        if domains:
            self.config.add_domains(domains)
        self.bus = bus if bus is not None else EventBus()
        dns = self.config.dns
        self.pool = pool if pool is not None else ResolverPool(
            nameservers=dns.resolvers, timeout=dns.timeout, max_queries=dns.max_queries
        )
        # Shared by every bundled source so a name is published once per run
        self.name_filter = StringFilter()
        self.services = services
        self._seen_names = StringFilter()
        self._seen_addrs = StringFilter()
        self._event_handlers: List[Any] = []
        self._resolve_queue: "asyncio.Queue[DNSRequest]" = asyncio.Queue()
        self._resolving = 0
        self._result = EnumerationResult(domains=[], started_at=time.time())

    # ------------------------------------------------------------------
    # Public API
    # ------------------------------------------------------------------

    def on_event(self, handler: Any) -> None:
        """Register a callable to receive real-time enumeration events.

        Args:
            handler: An async or sync callable that accepts a ``dict`` event.
        """
        self._event_handlers.append(handler)

    async def run(self) -> EnumerationResult:
        """Enumerate every configured domain and return the collected facts.

        Returns:
            :class:`EnumerationResult` with everything the sources found.
        """
        domains = self.config.domains
        result = EnumerationResult(domains=list(domains), started_at=time.time())
        self._result = result
        if not domains:
            logger.warning("No domains in scope; nothing to enumerate")
            result.finished_at = time.time()
            return result

        await self._emit({"event": "enum_started", "domains": list(domains)})

        if self.services is None:
            self.services = exclude_disabled_sources(
                self.config,
                get_all_sources(self.config, self.bus, self.pool, self.name_filter),
            )

        self._subscribe_collectors()
        running = await self._start_services(self.services)
        logger.info("Started %d data sources for %s", len(running), ", ".join(domains))
        self._wire(running)

        workers: List["asyncio.Task[None]"] = []
        if self.config.enumeration.resolve_names:
            workers = [
                asyncio.create_task(self._resolve_worker(), name=f"resolve:{i}")
                for i in range(_RESOLVE_WORKERS)
            ]

        for domain in domains:
            self.bus.publish(
                requests.DNS_REQUEST_TOPIC,
                DNSRequest(name=domain, domain=domain, tag=requests.DNS, source=SOURCE_NAME),
            )
            self.bus.publish(
                requests.WHOIS_REQUEST_TOPIC,
                WhoisRequest(domain=domain, tag=requests.DNS, source=SOURCE_NAME),
            )

        finished = await self._wait_for_quiescence(running)
        if not finished:
            logger.warning(
                "Enumeration hit max duration of %.0fs", self.config.enumeration.max_duration
            )

        await asyncio.gather(*(srv.stop() for srv in running))
        for worker in workers:
            worker.cancel()
        await asyncio.gather(*workers, return_exceptions=True)
        await self.bus.stop()

        result.finished_at = time.time()
        result.stats = {
            "sources": len(running),
            "names": len(result.names),
            "addresses": len(result.addresses),
            "asns": len(result.asns),
            "timed_out": not finished,
            "duration_seconds": round(result.duration, 2),
        }
        await self._emit({"event": "enum_finished", "stats": result.stats})
        return result

    # ------------------------------------------------------------------
    # Setup
    # ------------------------------------------------------------------

    async def _start_services(self, services: List[BaseService]) -> List[BaseService]:
        running: List[BaseService] = []
        for srv in services:
            try:
                await srv.start()
            except ServiceSetupError as exc:
                logger.warning("Data source %s disabled: %s", srv.name, exc)
                continue
            running.append(srv)
        return running

    def _subscribe_collectors(self) -> None:
        self.bus.subscribe(requests.NEW_NAME_TOPIC, self._on_new_name)
        self.bus.subscribe(requests.NEW_ADDR_TOPIC, self._on_new_addr)
        self.bus.subscribe(requests.NEW_ASN_TOPIC, self._on_new_asn)
        self.bus.subscribe(requests.NEW_WHOIS_TOPIC, self._on_new_whois)
        self.bus.subscribe(requests.LOG_TOPIC, self._on_log)

    def _wire(self, services: List[BaseService]) -> None:
        """Feed the request topics into each service's inbound queues."""
        for srv in services:
            self.bus.subscribe(requests.DNS_REQUEST_TOPIC, srv.send_request)
            self.bus.subscribe(requests.NAME_RESOLVED_TOPIC, srv.send_resolved)
            self.bus.subscribe(requests.NEW_ADDR_TOPIC, srv.send_request)
            self.bus.subscribe(requests.IP_TO_ASN_TOPIC, srv.send_request)
            self.bus.subscribe(requests.WHOIS_REQUEST_TOPIC, srv.send_request)

    # ------------------------------------------------------------------
    # Collectors
    # ------------------------------------------------------------------

    async def _on_new_name(self, req: DNSRequest) -> None:
        if not req.valid() or not self.config.is_domain_in_scope(req.name):
            return
        if self._seen_names.duplicate(req.name):
            return

        self._result.names.append(req)
        await self._emit(
            {"event": "name_discovered", "name": req.name, "domain": req.domain, "source": req.source}
        )
        if self.config.enumeration.resolve_names:
            self._resolve_queue.put_nowait(req)

    def _on_new_addr(self, req: AddrRequest) -> None:
        if not req.valid() or self._seen_addrs.duplicate(req.address):
            return

        self._result.addresses.append(req)
        self.bus.publish(
            requests.IP_TO_ASN_TOPIC,
            ASNRequest(address=req.address, tag=req.tag, source=SOURCE_NAME),
        )

    def _on_new_asn(self, req: ASNRequest) -> None:
        self._result.asns.append(req)

    def _on_new_whois(self, req: WhoisRequest) -> None:
        self._result.whois.append(req)

    def _on_log(self, msg: LogMessage) -> None:
        # The publishing service already logged it at its own level
        logger.debug("[%s] %s: %s", msg.source, msg.level, msg.message)
        self._result.logs.append(msg)

    # ------------------------------------------------------------------
    # Name resolution
    # ------------------------------------------------------------------

    async def _resolve_worker(self) -> None:
        while True:
            req = await self._resolve_queue.get()
            self._resolving += 1
            try:
                await self._resolve(req)
            except Exception:  # noqa: BLE001
                logger.exception("Resolution of %s failed", req.name)
            finally:
                self._resolving -= 1
                self._resolve_queue.task_done()

    async def _resolve(self, req: DNSRequest) -> None:
        answers: List[DNSAnswer] = []
        for record_type in ("A", "AAAA"):
            try:
                answers.extend(await self.pool.resolve(req.name, record_type, PRIORITY_LOW))
            except ResolveError:
                continue
        if not answers:
            return

        self.bus.publish(
            requests.NAME_RESOLVED_TOPIC,
            DNSRequest(
                name=req.name,
                domain=req.domain,
                records=tuple(answers),
                tag=req.tag,
                source=req.source,
            ),
        )
        address_types = (RECORD_TYPES["A"], RECORD_TYPES["AAAA"])
        for answer in answers:
            if answer.type in address_types:
                self.bus.publish(
                    requests.NEW_ADDR_TOPIC,
                    AddrRequest(address=answer.data, domain=req.domain, tag=requests.DNS, source=SOURCE_NAME),
                )

    # ------------------------------------------------------------------
    # Quiescence
    # ------------------------------------------------------------------

    def _busy(self, services: List[BaseService]) -> bool:
        window = self.config.enumeration.idle_window
        if self.bus.pending() or self._resolving or self._resolve_queue.qsize():
            return True
        return any(srv.request_len() or srv.is_active(window) for srv in services)

    async def _wait_for_quiescence(self, services: List[BaseService]) -> bool:
        """Wait until nothing is queued or active; ``False`` if max duration hit first."""
        settings = self.config.enumeration
        interval = min(1.0, max(settings.idle_window / 4, 0.01))
        loop = asyncio.get_running_loop()
        deadline = loop.time() + settings.max_duration
        while loop.time() < deadline:
            await asyncio.sleep(interval)
            if not self._busy(services):
                return True
        return False

    async def _emit(self, event: Dict[str, Any]) -> None:
        """Fire *event* to all registered event handlers.

        Args:
            event: Dictionary describing the event.
        """
        for handler in self._event_handlers:
            try:
                if inspect.iscoroutinefunction(handler):
                    await handler(event)
                else:
                    handler(event)
            except Exception:  # noqa: BLE001
                logger.debug("Event handler failed for %s", event.get("event"), exc_info=True)

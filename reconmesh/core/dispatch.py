"""Rate-limited dispatch loop shared by every data source.

:class:`Dispatcher` drives one asyncio task per inbound request queue a
service actually handles.  Root-domain DNS requests and resolved names
arrive on separate queues, so a source that only queries root domains never
spends rate-limit slots on resolved subdomains.  Each loop waits for the first of {quit signal,
next request}, drops out-of-scope requests, waits for the service's rate
limiter, runs the service hook and publishes any names it returns.  A
failing hook is logged and the loop moves on to the next request.
"""

from __future__ import annotations

import asyncio
from typing import TYPE_CHECKING, Any, Awaitable, Callable, List, Optional, Tuple

import aiohttp

from reconmesh.core.requests import AddrRequest, ASNRequest, DNSRequest, WhoisRequest
from reconmesh.utils.logger import get_logger

if TYPE_CHECKING:
    from reconmesh.core.service import BaseService

logger = get_logger(__name__)

Hook = Callable[[Any], Awaitable[Any]]
Eligible = Callable[[Any], bool]

# Queue key for names that resolved during the run; they travel as DNSRequest
# but are kept apart from root-domain requests.
RESOLVED_NAME = "resolved_name"

# (queue key, hook attribute, queue attribute)
_ROUTES: Tuple[Tuple[Any, str, str], ...] = (
    (DNSRequest, "on_dns_request", "dns_requests"),
    (RESOLVED_NAME, "on_name_resolved", "resolved_names"),
    (AddrRequest, "on_addr_request", "addr_requests"),
    (ASNRequest, "on_asn_request", "asn_requests"),
    (WhoisRequest, "on_whois_request", "whois_requests"),
)

HOOKS = {kind: hook_name for kind, hook_name, _ in _ROUTES}


def handles(service: "BaseService", hook_name: str) -> bool:
    """Return ``True`` if *service* overrides the base class hook *hook_name*."""
    from reconmesh.core.service import BaseService

    return getattr(type(service), hook_name) is not getattr(BaseService, hook_name)


class Dispatcher:
    """Runs the select/scope/throttle/fetch/publish loop for a service."""

    def __init__(self, service: "BaseService") -> None:
        self.service = service

    def launch(self) -> List["asyncio.Task[None]"]:
        """Start one loop per handled request type and return the tasks."""
        tasks: List["asyncio.Task[None]"] = []
        for kind, hook_name, queue_name in _ROUTES:
            if not handles(self.service, hook_name):
                continue
            queue = getattr(self.service, queue_name)
            hook = getattr(self.service, hook_name)
            tasks.append(
                asyncio.create_task(
                    self._loop(queue, hook, self._eligibility(kind)),
                    name=f"{self.service.name}:{_route_name(kind)}",
                )
            )
        return tasks

    # ------------------------------------------------------------------
    # Scope checks
    # ------------------------------------------------------------------

    def _eligibility(self, kind: Any) -> Eligible:
        config = self.service.config
        if kind in (DNSRequest, RESOLVED_NAME, WhoisRequest):
            return lambda req: bool(req.domain) and config.is_domain_in_scope(req.domain)
        if kind is AddrRequest:
            return lambda req: bool(req.address) and config.is_address_in_scope(req.address)
        return lambda req: bool(req.address or req.asn)

    # ------------------------------------------------------------------
    # Loop
    # ------------------------------------------------------------------

    async def _loop(self, queue: "asyncio.Queue[Any]", hook: Hook, eligible: Eligible) -> None:
        service = self.service
        quit_waiter = asyncio.ensure_future(service.quit.wait())
        try:
            while True:
                req = await self._next(queue, quit_waiter)
                if req is None:
                    return
                if not eligible(req):
                    continue

                await service.limiter.acquire()
                if service.quit.is_set():
                    return
                await self._handle(hook, req)
        finally:
            quit_waiter.cancel()

    async def _next(
        self, queue: "asyncio.Queue[Any]", quit_waiter: "asyncio.Future[Any]"
    ) -> Optional[Any]:
        """Return the next request, or ``None`` once the quit signal fires."""
        if self.service.quit.is_set():
            return None

        getter = asyncio.ensure_future(queue.get())
        try:
            await asyncio.wait({getter, quit_waiter}, return_when=asyncio.FIRST_COMPLETED)
        finally:
            if not getter.done():
                getter.cancel()

        if self.service.quit.is_set() or getter.cancelled():
            return None
        return getter.result()

    async def _handle(self, hook: Hook, req: Any) -> None:
        service = self.service
        service.set_active()
        try:
            result = await hook(req)
        except asyncio.CancelledError:
            raise
        except (aiohttp.ClientError, asyncio.TimeoutError) as exc:
            service.log(f"Request for {_subject(req)} failed: {exc!r}", level="warning")
        except ValueError as exc:
            service.log(f"Unparseable response for {_subject(req)}: {exc}", level="warning")
        except Exception as exc:  # noqa: BLE001
            logger.debug("Service %s failed on %s", service.name, _subject(req), exc_info=True)
            service.log(f"Unexpected error for {_subject(req)}: {exc!r}", level="error")
        else:
            if isinstance(req, DNSRequest) and result is not None:
                service.publish_names(req.domain, result)
        finally:
            service.set_active()
            if service.reset_limit_after_call:
                service.limiter.touch()


def _route_name(kind: Any) -> str:
    return kind if isinstance(kind, str) else kind.__name__


def _subject(req: Any) -> str:
    for attr in ("domain", "address", "name"):
        value = getattr(req, attr, "")
        if value:
            return str(value)
    return type(req).__name__

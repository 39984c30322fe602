"""In-process publish/subscribe event bus.

Each subscription owns an unbounded :class:`asyncio.Queue` and an adapter
task that feeds the handler one payload at a time, so :meth:`EventBus.publish`
never blocks on a slow subscriber and a failing handler never affects the
others.
"""

from __future__ import annotations

import asyncio
import inspect
import threading
from typing import Any, Callable, Dict, List, Optional

from reconmesh.utils.logger import get_logger

logger = get_logger(__name__)

Handler = Callable[[Any], Any]


class _Subscription:
    """A single (topic, handler) registration and its delivery task."""

    def __init__(self, topic: str, handler: Handler) -> None:
        self.topic = topic
        self.handler = handler
        self.queue: asyncio.Queue[Any] = asyncio.Queue()
        self.task: Optional[asyncio.Task[None]] = None
        self.pending = 0

    def start(self) -> None:
        self.task = asyncio.get_running_loop().create_task(
            self._deliver(), name=f"bus:{self.topic}"
        )

    def put(self, payload: Any) -> None:
        self.pending += 1
        self.queue.put_nowait(payload)

    async def _deliver(self) -> None:
        while True:
            payload = await self.queue.get()
            try:
                result = self.handler(payload)
                if inspect.isawaitable(result):
                    await result
            except asyncio.CancelledError:
                raise
            except Exception:  # noqa: BLE001
                logger.exception(
                    "Subscriber %s failed on topic %s",
                    _handler_name(self.handler),
                    self.topic,
                )
            finally:
                self.pending -= 1
                self.queue.task_done()

    def cancel(self) -> None:
        if self.task is not None and not self.task.done():
            self.task.cancel()
        # Release joiners waiting on payloads that will never be delivered
        while not self.queue.empty():
            self.queue.get_nowait()
            self.pending -= 1
            self.queue.task_done()


def _handler_name(handler: Handler) -> str:
    return getattr(handler, "__qualname__", None) or repr(handler)


class EventBus:
    """Topic-keyed publish/subscribe bus for facts and requests.

    Must be created and used from within a running event loop.  Handlers
    may be plain callables or coroutine functions.

    Example::

        bus = EventBus()
        bus.subscribe(NEW_NAME_TOPIC, lambda req: print(req.name))
        bus.publish(NEW_NAME_TOPIC, DNSRequest(name="www.example.com", domain="example.com"))
        await bus.join()
        await bus.stop()
    """

    def __init__(self) -> None:
        self._lock = threading.Lock()
        self._topics: Dict[str, List[_Subscription]] = {}
        self._stopped = False
        self._loop: Optional[asyncio.AbstractEventLoop] = None

    # ------------------------------------------------------------------
    # Registration
    # ------------------------------------------------------------------

    def subscribe(self, topic: str, handler: Handler) -> None:
        """Register *handler* to receive every later payload published on *topic*.

        Registering the same handler twice for one topic has no effect.

        Args:
            topic: Topic name.
            handler: Sync or async callable taking the payload.
        """
        if not topic or not callable(handler):
            return

        with self._lock:
            if self._stopped:
                return
            if self._loop is None:
                self._loop = asyncio.get_running_loop()
            subs = self._topics.setdefault(topic, [])
            if any(s.handler == handler for s in subs):
                return
            sub = _Subscription(topic, handler)
            sub.start()
            subs.append(sub)

    def unsubscribe(self, topic: str, handler: Handler) -> None:
        """Remove the registration of *handler* on *topic*.

        Payloads queued for it but not yet delivered are dropped.
        """
        with self._lock:
            subs = self._topics.get(topic, [])
            removed = [s for s in subs if s.handler == handler]
            self._topics[topic] = [s for s in subs if s.handler != handler]
        for sub in removed:
            sub.cancel()

    # ------------------------------------------------------------------
    # Publishing
    # ------------------------------------------------------------------

    def publish(self, topic: str, payload: Any) -> None:
        """Deliver *payload* to every current subscriber of *topic*.

        Never blocks.  After :meth:`stop` it silently does nothing.
        Calls from a thread other than the bus's event loop are handed over
        to the loop thread.
        """
        if not topic or self._stopped:
            return

        loop = self._loop
        if loop is not None and not _in_loop(loop):
            if not loop.is_closed():
                loop.call_soon_threadsafe(self._enqueue, topic, payload)
            return
        self._enqueue(topic, payload)

    def _enqueue(self, topic: str, payload: Any) -> None:
        with self._lock:
            if self._stopped:
                return
            subs = list(self._topics.get(topic, ()))
        for sub in subs:
            sub.put(payload)

    # ------------------------------------------------------------------
    # Lifecycle and diagnostics
    # ------------------------------------------------------------------

    async def join(self) -> None:
        """Wait until every payload published so far has been handled."""
        while True:
            busy = [s for s in self._subscriptions() if s.pending > 0]
            if not busy:
                return
            await asyncio.gather(*(s.queue.join() for s in busy))

    def pending(self) -> int:
        """Number of payloads queued but not yet handled across all subscribers."""
        return sum(s.pending for s in self._subscriptions())

    def _subscriptions(self) -> List[_Subscription]:
        with self._lock:
            return [s for topic_subs in self._topics.values() for s in topic_subs]

    def subscriber_count(self, topic: str) -> int:
        """Number of handlers currently registered on *topic*."""
        with self._lock:
            return len(self._topics.get(topic, ()))

    @property
    def stopped(self) -> bool:
        return self._stopped

    async def stop(self) -> None:
        """Stop delivering; later publishes are ignored.  Safe to call twice."""
        with self._lock:
            if self._stopped:
                return
            self._stopped = True
            subs = [s for topic_subs in self._topics.values() for s in topic_subs]
            self._topics.clear()

        tasks = []
        for sub in subs:
            sub.cancel()
            if sub.task is not None:
                tasks.append(sub.task)
        if tasks:
            await asyncio.gather(*tasks, return_exceptions=True)


def _in_loop(loop: asyncio.AbstractEventLoop) -> bool:
    try:
        return asyncio.get_running_loop() is loop
    except RuntimeError:
        return False

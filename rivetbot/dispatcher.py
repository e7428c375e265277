# =============================================================================
# rivetbot -- Event Dispatcher
# =============================================================================
#
# Every handler owns a bounded queue and a worker task. dispatch() awaits
# queue space instead of dropping, so a slow handler slows frame acceptance
# and never loses or reorders its own events.
# =============================================================================

from __future__ import annotations

import asyncio
import inspect
from collections.abc import Awaitable, Callable, Iterable
from typing import Any

from ._logging import logger
from .constants import DISPATCH_QUEUE_SIZE
from .types import GatewayEvent

# Type alias for event handlers
EventHandler = Callable[[GatewayEvent], Any]
AsyncEventHandler = Callable[[GatewayEvent], Awaitable[Any]]

_STOP = object()


class _HandlerWorker:
    """Queue + worker task for one registered handler."""

    def __init__(
        self,
        name: str,
        handler: EventHandler | AsyncEventHandler,
        events: frozenset[str] | None,
        queue_size: int,
    ) -> None:
        self.name = name
        self.handler = handler
        self.events = events
        self.queue: asyncio.Queue[Any] = asyncio.Queue(maxsize=queue_size)
        self.task: asyncio.Task[None] | None = None
        self.closed = asyncio.Event()
        self.handled = 0
        self.failed = 0

    def accepts(self, event: GatewayEvent) -> bool:
        return self.events is None or event.type in self.events

    def start(self) -> None:
        self.closed.clear()
        if self.task is None or self.task.done():
            self.task = asyncio.create_task(self._run(), name=f"rivetbot-handler-{self.name}")

    async def put(self, item: Any) -> None:
        """Queue *item*, waiting for space. Returns early once the worker is closed."""
        if self.closed.is_set():
            return
        if not self.queue.full():
            self.queue.put_nowait(item)
            return

        put = asyncio.ensure_future(self.queue.put(item))
        closed = asyncio.ensure_future(self.closed.wait())
        try:
            await asyncio.wait({put, closed}, return_when=asyncio.FIRST_COMPLETED)
        finally:
            put.cancel()
            closed.cancel()
        if self.closed.is_set():
            self._discard()

    def close(self) -> None:
        """Cancel the worker, discard queued events and release blocked putters."""
        self.closed.set()
        if self.task is not None:
            self.task.cancel()
        self._discard()

    def _discard(self) -> None:
        while not self.queue.empty():
            self.queue.get_nowait()
            self.queue.task_done()

    async def _run(self) -> None:
        while True:
            event = await self.queue.get()
            try:
                if event is _STOP:
                    return
                await self._invoke(event)
            finally:
                self.queue.task_done()

    async def _invoke(self, event: GatewayEvent) -> None:
        try:
            result = self.handler(event)
            if inspect.isawaitable(result):
                await result
            self.handled += 1
        except asyncio.CancelledError:
            raise
        except Exception:
            self.failed += 1
            logger.exception("Handler '%s' failed on %s", self.name, event.type)


class EventDispatcher:
    """Fan out gateway events to registered handlers.

    Handlers may be plain functions or coroutine functions taking one
    :class:`GatewayEvent`. A handler registered without an event filter
    receives every event.

    Example::

        dispatcher = EventDispatcher()

        @dispatcher.on("MESSAGE_CREATE")
        async def log_message(event):
            print(event.payload["content"])

        await dispatcher.start()
        await dispatcher.dispatch(event)
    """

    def __init__(self, *, queue_size: int = DISPATCH_QUEUE_SIZE) -> None:
        self._queue_size = queue_size
        self._workers: dict[str, _HandlerWorker] = {}
        self._running = False
        self._dispatched = 0

    # -- Registration -----------------------------------------------------------

    def add_handler(
        self,
        handler: EventHandler | AsyncEventHandler,
        *,
        events: Iterable[str] | str | None = None,
        name: str | None = None,
    ) -> str:
        """Register *handler*. Returns the name used for :meth:`remove_handler`.

        Args:
            handler: Callable receiving a :class:`GatewayEvent`.
            events: Event type(s) to receive, ``None`` for all.
            name: Unique name, defaults to the handler's qualified name.

        Raises:
            ValueError: A handler with this name is already registered.
        """
        if name is None:
            name = getattr(handler, "__qualname__", None) or repr(handler)
        if name in self._workers:
            raise ValueError(f"Handler '{name}' is already registered")

        if isinstance(events, str):
            events = (events,)
        worker = _HandlerWorker(
            name,
            handler,
            frozenset(events) if events is not None else None,
            self._queue_size,
        )
        self._workers[name] = worker
        if self._running:
            worker.start()
        logger.debug("Registered handler %s for %s", name, events or "all events")
        return name

    def on(
        self, *event_types: str
    ) -> Callable[[EventHandler | AsyncEventHandler], EventHandler | AsyncEventHandler]:
        """Decorator form of :meth:`add_handler`."""

        def decorator(
            fn: EventHandler | AsyncEventHandler,
        ) -> EventHandler | AsyncEventHandler:
            self.add_handler(fn, events=event_types or None)
            return fn

        return decorator

    def remove_handler(self, name: str) -> None:
        """Unregister a handler. Events already queued for it are discarded."""
        worker = self._workers.pop(name, None)
        if worker is not None:
            worker.close()

    @property
    def handler_names(self) -> list[str]:
        return list(self._workers)

    # -- Lifecycle -----------------------------------------------------------

    async def start(self) -> None:
        self._running = True
        for worker in self._workers.values():
            worker.start()

    async def stop(self, drain: bool = True) -> None:
        """Stop all workers.

        With *drain*, queued events are processed first; otherwise workers
        are cancelled immediately.
        """
        self._running = False
        workers = [w for w in self._workers.values() if w.task is not None]
        if drain:
            for worker in workers:
                await worker.put(_STOP)
        else:
            for worker in workers:
                worker.close()
        await asyncio.gather(*(w.task for w in workers), return_exceptions=True)
        for worker in workers:
            worker.task = None
        logger.debug("Dispatcher stopped (%d handlers)", len(workers))

    # -- Dispatch ---------------------------------------------------------------

    async def dispatch(self, event: GatewayEvent) -> None:
        """Queue *event* for every matching handler, waiting for queue space."""
        self._dispatched += 1
        for worker in list(self._workers.values()):
            if worker.accepts(event):
                await worker.put(event)

    async def join(self) -> None:
        """Wait until every queued event has been handled."""
        for worker in list(self._workers.values()):
            await worker.queue.join()

    @property
    def congested(self) -> bool:
        """True when some handler queue is full and the next dispatch may wait."""
        return any(w.queue.full() for w in self._workers.values())

    # -- Stats ----------------------------------------------------------------

    @property
    def stats(self) -> dict[str, Any]:
        return {
            "running": self._running,
            "dispatched": self._dispatched,
            "handlers": {
                name: {
                    "queued": w.queue.qsize(),
                    "handled": w.handled,
                    "failed": w.failed,
                }
                for name, w in self._workers.items()
            },
        }

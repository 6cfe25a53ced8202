"""
Per-client event dispatcher.

Maps an event type (or the `*` wildcard) to the handlers subscribed to it.
Handler failures never reach the emitter: they are re-emitted as `error`
events, and failures of `error` handlers themselves are logged and dropped.
"""
import asyncio
import inspect
import logging
from typing import Any, Callable

logger = logging.getLogger(__name__)

WILDCARD = "*"
ERROR = "error"

EventHandler = Callable[[Any], Any]


class EventDispatcher:
    """Registry of event handlers for one client.

    Each event type holds an insertion-ordered set of handlers, so registering
    the same handler twice for one type is a no-op and it fires once per event.
    Removal matches by handler equality (identity for plain functions).
    Coroutine handlers are scheduled as tasks on the running loop.
    """

    def __init__(self) -> None:
        self._handlers: dict[str, dict[EventHandler, None]] = {}
        self._tasks: set[asyncio.Task] = set()

    def on(self, event_type: str, handler: EventHandler) -> None:
        self._handlers.setdefault(event_type, {})[handler] = None

    def off(self, event_type: str, handler: EventHandler) -> None:
        handlers = self._handlers.get(event_type)
        if handlers is not None:
            handlers.pop(handler, None)

    def handler_count(self, event_type: str) -> int:
        return len(self._handlers.get(event_type, ()))

    def emit(self, event_type: str, payload: Any = None) -> None:
        handlers = self._handlers.get(event_type)
        if not handlers:
            if event_type == ERROR and isinstance(payload, BaseException):
                logger.warning("Unhandled client error: %r", payload)
            return
        # Copy: handlers may subscribe or unsubscribe while we iterate.
        for handler in list(handlers):
            try:
                result = handler(payload)
                if inspect.isawaitable(result):
                    self._track(event_type, result)
            except Exception as exc:
                self._handler_failed(event_type, exc)

    def emit_error(self, err: Any) -> None:
        self.emit(ERROR, err)

    def _track(self, event_type: str, awaitable: Any) -> None:
        task = asyncio.ensure_future(awaitable)
        self._tasks.add(task)

        def _done(t: asyncio.Task) -> None:
            self._tasks.discard(t)
            if t.cancelled():
                return
            exc = t.exception()
            if exc is not None:
                self._handler_failed(event_type, exc)

        task.add_done_callback(_done)

    def _handler_failed(self, event_type: str, exc: BaseException) -> None:
        if event_type == ERROR:
            logger.warning(f"Error handler raised {type(exc).__name__}: {exc}")
            return
        logger.debug(f"Handler for '{event_type}' raised {type(exc).__name__}: {exc}")
        self.emit(ERROR, exc)

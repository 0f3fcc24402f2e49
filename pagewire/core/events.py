"""Event subscription plumbing shared by connections, sessions and page state."""

import asyncio
from collections import defaultdict
from typing import Any, Callable, Dict, List, Optional

from ..utils.logger import PagewireLogger, get_logger


Handler = Callable[[Any], Any]


class ConnectionEvent:
    SESSION_ATTACHED = "sessionattached"
    SESSION_DETACHED = "sessiondetached"
    DISCONNECTED = "disconnected"


class SessionEvent:
    # Emitted on a session when it is torn down, and on the parent when a child attaches.
    DETACHED = "Session.detached"
    ATTACHED = "Session.attached"


class FrameTreeEvent:
    FRAME_ATTACHED = "frameattached"
    FRAME_NAVIGATED = "framenavigated"
    FRAME_NAVIGATED_WITHIN_DOCUMENT = "framenavigatedwithindocument"
    FRAME_DETACHED = "framedetached"
    LIFECYCLE_EVENT = "lifecycleevent"


class ContextEvent:
    CREATED = "contextcreated"
    DESTROYED = "contextdestroyed"


class NetworkEvent:
    REQUEST = "request"
    RESPONSE = "response"
    REQUEST_FINISHED = "requestfinished"
    REQUEST_FAILED = "requestfailed"
    REQUEST_SERVED_FROM_CACHE = "requestservedfromcache"


class EventEmitter:
    """
    Named-event subscriptions with ordered delivery.

    Synchronous emitters call handlers inline, in subscription order. Deferred
    emitters queue each call on the running loop so that observers never run
    inside the event-processing pass that produced the notification; the
    loop's FIFO scheduling keeps emission order. Coroutine handlers are
    scheduled as tasks in both modes. Handler failures are logged and never
    interrupt delivery to the remaining handlers.
    """

    def __init__(self, deferred: bool = False, logger: Optional[PagewireLogger] = None):
        self._handlers: Dict[str, List[Handler]] = defaultdict(list)
        self._deferred = deferred
        self._logger = logger or get_logger()

    def on(self, event: str, handler: Handler) -> Handler:
        self._handlers[event].append(handler)
        return handler

    def off(self, event: str, handler: Handler) -> None:
        handlers = self._handlers.get(event)
        if handlers and handler in handlers:
            handlers.remove(handler)
            if not handlers:
                del self._handlers[event]

    def once(self, event: str, handler: Handler) -> Handler:
        def wrapper(payload: Any) -> Any:
            self.off(event, wrapper)
            return handler(payload)

        return self.on(event, wrapper)

    def remove_all_listeners(self, event: Optional[str] = None) -> None:
        if event is None:
            self._handlers.clear()
        else:
            self._handlers.pop(event, None)

    def listener_count(self, event: str) -> int:
        return len(self._handlers.get(event, ()))

    def emit(self, event: str, payload: Any = None) -> bool:
        """Deliver ``payload`` to every handler of ``event``; returns whether any handler existed."""
        handlers = list(self._handlers.get(event, ()))
        if not handlers:
            return False
        if self._deferred:
            loop = asyncio.get_running_loop()
            for handler in handlers:
                loop.call_soon(self._invoke, event, handler, payload)
        else:
            for handler in handlers:
                self._invoke(event, handler, payload)
        return True

    def _invoke(self, event: str, handler: Handler, payload: Any) -> None:
        try:
            result = handler(payload)
        except Exception as e:
            self._logger.error("events:handler", "Event handler raised", event_name=event, error=str(e))
            return
        if asyncio.iscoroutine(result):
            task = asyncio.ensure_future(result)
            task.add_done_callback(lambda t: self._report(event, t))

    def _report(self, event: str, task: "asyncio.Future") -> None:
        if task.cancelled():
            return
        error = task.exception()
        if error is not None:
            self._logger.error("events:handler", "Async event handler raised", event_name=event, error=str(error))

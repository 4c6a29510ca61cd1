"""
=============================================================================
OBSERVER NOTIFICATIONS
=============================================================================

Every stage of the request pipeline announces itself through a named event.
Observers (the server, an access log, a live dashboard) subscribe by name:

    ┌─────────────────────────────────────────────────────────────────────┐
    │  Emitter        Event               Fires                            │
    ├─────────────────────────────────────────────────────────────────────┤
    │  Message        request-received    once, body fully read           │
    │  Message        response-sent       once, response stream ended     │
    │  Router         route-complete      handler produced a response     │
    │  Router         route-error         request rejected or failed      │
    │  WebServer      log-error           access log could not be written │
    │  WebServer      communication-event request/response telemetry      │
    │  WebServer      error-event         slow or non-200 exchange        │
    └─────────────────────────────────────────────────────────────────────┘

Subscribing the same handler twice to the same event REPLACES the first
subscription. A handler is never called twice for one emission.

Emitters are plain instance attributes, so several servers (and their
routers and messages) can coexist in one process without sharing state.

=============================================================================
"""

import logging
import threading
from typing import Any, Callable, Dict, Iterable, List


logger = logging.getLogger(__name__)

Handler = Callable[[Any], None]


class EventEmitter:
    """
    Named-event publish/subscribe.

    Usage:
        events = EventEmitter({"route-complete", "route-error"})
        events.on("route-error", lambda message: print(message.id))
        events.emit("route-error", message)
    """

    def __init__(self, names: Iterable[str]):
        self._names = frozenset(names)
        self._handlers: Dict[str, List[Handler]] = {}
        self._lock = threading.Lock()

    @property
    def names(self) -> frozenset:
        """Event names this emitter accepts."""
        return self._names

    def _check(self, name: str) -> None:
        if name not in self._names:
            raise ValueError(
                f"Unknown event {name!r}; expected one of {sorted(self._names)}"
            )

    def on(self, name: str, handler: Handler) -> Handler:
        """
        Subscribe a handler to an event.

        Returns the handler so this can be used as a plain call or wrapped
        by a decorator.
        """
        self._check(name)
        with self._lock:
            handlers = [h for h in self._handlers.get(name, []) if h != handler]
            handlers.append(handler)
            self._handlers[name] = handlers
        return handler

    def off(self, name: str, handler: Handler) -> None:
        """Remove a subscription. Unknown handlers are ignored."""
        self._check(name)
        with self._lock:
            handlers = self._handlers.get(name, [])
            self._handlers[name] = [h for h in handlers if h != handler]

    def listeners(self, name: str) -> List[Handler]:
        """Get a snapshot of the handlers subscribed to an event."""
        self._check(name)
        with self._lock:
            return list(self._handlers.get(name, []))

    def emit(self, name: str, payload: Any = None) -> int:
        """
        Deliver an event to every subscriber.

        A failing observer is logged and skipped; it never interrupts the
        pipeline stage that emitted the event.

        Returns:
            Number of handlers that were called.
        """
        called = 0
        for handler in self.listeners(name):
            called += 1
            try:
                handler(payload)
            except Exception as e:
                logger.exception(f"Observer for {name!r} failed: {e}")
        return called

"""
=============================================================================
ROUTER
=============================================================================

Decides how each Message is satisfied. Routing is by EXACT path: no
patterns, no methods, no parameters. Anything not in the table is a
static file.

=============================================================================
ROUTING ALGORITHM
=============================================================================

    ┌─────────────────────────────────────────────────────────────────────┐
    │                                                                      │
    │   route(message)                                                     │
    │        │                                                             │
    │        ├── ?latency=N        sleep N ms on this worker thread        │
    │        │                                                             │
    │        ├── request.forbidden ──► 403            "route-error"        │
    │        │                                                             │
    │        ├── path in table?    ──► handler(message)                    │
    │        │                                                             │
    │        └── otherwise         ──► static file    200 / 404            │
    │                                                                      │
    │   handler returned, response ended   ──► "route-complete"            │
    │   handler raised, or left it unended ──► 500     "route-error"       │
    │   path escapes the root              ──► 403     "route-error"       │
    │                                                                      │
    └─────────────────────────────────────────────────────────────────────┘

Exactly one terminal response is written per Message. A failed handler is
never retried.

=============================================================================
LATENCY SIMULATION
=============================================================================

    GET /report?latency=250

delays routing by 250 ms. It is a testing aid for watching slow
requests in the logs and telemetry, not a production feature. The delay is
a plain sleep on the worker thread that owns the request, so other
connections keep being served by the rest of the pool.

=============================================================================
"""

import logging
import time
from pathlib import Path
from typing import Callable, Dict, List, Optional, Union

from ..events import EventEmitter
from ..handlers.static import ForbiddenPath, StaticFileHandler
from . import writer
from .message import Message


logger = logging.getLogger(__name__)

Handler = Callable[[Message], Optional[Message]]

ROUTER_EVENTS = ("route-complete", "route-error")


def _latency_seconds(message: Message) -> float:
    value = message.param("latency")
    if value is None:
        return 0.0
    try:
        millis = float(value)
    except ValueError:
        logger.debug(f"[{message.id}] Ignoring latency={value!r}")
        return 0.0
    return millis / 1000.0 if millis > 0 else 0.0


class Router:
    """
    Exact-path router with a static-file fallback.

    Usage:
        router = Router("/srv/www")

        @router.route("/status")
        def status(message):
            return writer.write_as_json(message, [{"ok": True}])

        router.add("/favicon.ico", router.ignored)
        router.on("route-error", lambda m: print("failed", m.id))
    """

    def __init__(
        self,
        root_dir: Union[str, Path, None] = None,
        sleep: Callable[[float], None] = time.sleep,
    ):
        self._routes: Dict[str, Handler] = {}
        self._events = EventEmitter(ROUTER_EVENTS)
        self._sleep = sleep
        self._static = StaticFileHandler(root_dir or Path.cwd())

    # =========================================================================
    # CONFIGURATION
    # =========================================================================

    @property
    def root_dir(self) -> Path:
        return self._static.root_dir

    @root_dir.setter
    def root_dir(self, value: Union[str, Path]) -> None:
        """Point the static fallback at another existing directory."""
        self._static = StaticFileHandler(value)

    @property
    def routes(self) -> Dict[str, Handler]:
        """Snapshot of the routing table."""
        return dict(self._routes)

    def add(self, path: str, handler: Handler) -> None:
        """Register a handler for an exact, case-sensitive path."""
        if not path.startswith("/"):
            raise ValueError(f"Route path must start with '/': {path!r}")
        if not callable(handler):
            raise TypeError(f"Handler for {path} is not callable")
        self._routes[path] = handler
        logger.debug(f"Registered route {path} -> {getattr(handler, '__name__', handler)}")

    def remove(self, path: str) -> None:
        self._routes.pop(path, None)

    def route(self, path: str) -> Callable[[Handler], Handler]:
        """Decorator form of add()."""
        def decorator(handler: Handler) -> Handler:
            self.add(path, handler)
            return handler
        return decorator

    def on(self, name: str, handler: Callable[[Message], None]) -> None:
        """Subscribe to "route-complete" or "route-error"."""
        self._events.on(name, handler)

    def off(self, name: str, handler: Callable[[Message], None]) -> None:
        self._events.off(name, handler)

    def list_routes(self) -> List[str]:
        return sorted(self._routes)

    # =========================================================================
    # BUILT-IN HANDLERS
    # =========================================================================

    @staticmethod
    def ignored(message: Message) -> Message:
        """Answer with an empty document (200, no body)."""
        return writer.write_empty_document(message)

    def serve_static(self, message: Message) -> Message:
        return self._static.handle(message)

    # =========================================================================
    # DISPATCH
    # =========================================================================

    def handle(self, message: Message) -> Message:
        """
        Produce exactly one outcome for a message.

        Never raises for handler failures: they become a 500 and a
        "route-error" notification.
        """
        delay = _latency_seconds(message)
        if delay:
            logger.debug(f"[{message.id}] Simulating {delay * 1000:.0f} ms latency")
            self._sleep(delay)

        if message.request.forbidden:
            logger.info(f"[{message.id}] Forbidden client {message.request.client_address[0]}")
            writer.write_not_authorized(message)
            self._events.emit("route-error", message)
            return message

        handler = self._routes.get(message.request.path, self.serve_static)

        try:
            handler(message)
        except ForbiddenPath:
            self._fail(message, None, forbidden=True)
            return message
        except Exception as e:
            logger.exception(f"[{message.id}] Handler for {message.request.path} failed: {e}")
            self._fail(message, e)
            return message

        if not message.response.finished:
            logger.error(f"[{message.id}] Handler for {message.request.path} wrote no response")
            self._fail(message, "Handler produced no response")
            return message

        self._events.emit("route-complete", message)
        return message

    def _fail(self, message: Message, error, forbidden: bool = False) -> None:
        if not message.response.headers_sent:
            if forbidden:
                writer.write_not_authorized(message)
            else:
                writer.write_server_error(message, error)
        elif not message.response.finished:
            message.response.end()
        self._events.emit("route-error", message)

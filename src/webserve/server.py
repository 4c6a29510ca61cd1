"""
=============================================================================
WEB SERVER
=============================================================================

Ties the transport (SocketServer, ThreadPool, Connection) to the request
pipeline (Message, Router, writers) and to the access log.

=============================================================================
ONE EXCHANGE
=============================================================================

    ┌─────────────────────────────────────────────────────────────────────┐
    │                                                                      │
    │   received     head parsed, Message built, body fed in               │
    │      │         ──► "request-received", communication-event(request)  │
    │      ▼                                                               │
    │   authorized   client IP checked against the allow-list              │
    │   | forbidden  (decided before routing, carried on the request)     │
    │      ▼                                                               │
    │   routed       Router.handle(): one writer call or one error         │
    │      ▼                                                               │
    │   responded    response stream ended                                 │
    │      │         ──► "response-sent"                                   │
    │      ▼                                                               │
    │   logged       access-log line appended (or skipped)                 │
    │                ──► communication-event(response)                     │
    │                ──► error-event if slow, unknown or not 200           │
    │                                                                      │
    └─────────────────────────────────────────────────────────────────────┘

=============================================================================
TELEMETRY CODES
=============================================================================

    error-event carries {"id", "uri", "error"} where error is
        418   elapsed time could not be computed
        999   elapsed time above 500 ms
        nnn   the response status, when it is not 200

=============================================================================
"""

import logging
from typing import Callable, Dict, Iterable, Optional, Tuple

from .access import IPAllowList
from .access_log import AccessLog
from .config import ServerConfig
from .core import Connection, RequestTooLarge, SocketServer, ThreadPool
from .events import EventEmitter
from .http import writer
from .http.message import Message
from .http.request import HTTPParseError, HTTPRequest, RequestParser
from .http.response import ResponseStream, Transport
from .http.router import Handler, Router
from .tls import create_ssl_context


logger = logging.getLogger(__name__)

SLOW_THRESHOLD_MS = 500
ELAPSED_UNKNOWN = 418
TOO_SLOW = 999

SERVER_EVENTS = (
    "request-received",
    "response-sent",
    "route-complete",
    "route-error",
    "log-error",
    "communication-event",
    "error-event",
)


def telemetry_error_code(message: Message) -> Optional[int]:
    """Error code for the error-event of a finished exchange, None if healthy."""
    elapsed = message.elapsed_ms
    if elapsed is None:
        return ELAPSED_UNKNOWN
    if elapsed > SLOW_THRESHOLD_MS:
        return TOO_SLOW
    if message.response.status != 200:
        return message.response.status
    return None


class WebServer:
    """
    Static-file HTTP(S) server with exact-path routes.

    =========================================================================
    USAGE
    =========================================================================

        config = ConfigBuilder().directory("./public").port(8000).build()
        server = WebServer(config)

        @server.route("/people")
        def people(message):
            return writer.write_as_json(message, load_people())

        server.on("error-event", lambda event: print(event))
        server.run()

    =========================================================================
    """

    def __init__(self, config: Optional[ServerConfig] = None, router: Optional[Router] = None):
        self.config = config or ServerConfig()
        self.config.validate()

        self._events = EventEmitter(SERVER_EVENTS)
        self._allow = IPAllowList(self.config.allow)

        self.router = router or Router(self.config.root_dir)
        self.router.on("route-complete", self._on_route_complete)
        self.router.on("route-error", self._on_route_error)

        self.access_log = AccessLog(
            path=self.config.log_file,
            enabled=self.config.log_enabled,
            format=self.config.log_format,
            fields=self.config.log_fields,
            on_error=self._on_log_error,
        )

        self._parser = RequestParser(max_request_size=self.config.max_request_size)
        self._thread_pool = ThreadPool(
            min_workers=self.config.min_workers,
            max_workers=self.config.max_workers,
        )
        ssl_context = create_ssl_context(self.config.tls) if self.config.tls else None
        self._socket_server = SocketServer(self.config, ssl_context)
        self._running = False

    # =========================================================================
    # OBSERVERS AND ROUTES
    # =========================================================================

    def on(self, name: str, handler: Callable) -> None:
        """Subscribe to a server event. Subscribing twice replaces."""
        self._events.on(name, handler)

    def off(self, name: str, handler: Callable) -> None:
        self._events.off(name, handler)

    def route(self, path: str) -> Callable[[Handler], Handler]:
        """Register a handler for an exact path (decorator)."""
        return self.router.route(path)

    @property
    def allow_list(self) -> IPAllowList:
        return self._allow

    @property
    def address(self) -> Tuple[str, int]:
        return self._socket_server.address

    @property
    def is_running(self) -> bool:
        return self._running

    # =========================================================================
    # SERVER LIFECYCLE
    # =========================================================================

    def run(self):
        """Start serving. Blocks until shutdown() or SIGINT/SIGTERM."""
        self._setup_logging()
        self._running = True
        self._thread_pool.start()

        try:
            self._socket_server.start(self._handle_connection)
        except KeyboardInterrupt:
            logger.info("Received keyboard interrupt")
        finally:
            self._shutdown()

    def shutdown(self):
        """Ask a running server to stop. Safe from any thread."""
        self._socket_server.shutdown()

    def wait_until_ready(self, timeout: Optional[float] = None) -> bool:
        return self._socket_server.wait_until_ready(timeout)

    def _setup_logging(self):
        level = getattr(logging, self.config.log_level.upper(), logging.INFO)
        logging.basicConfig(
            level=level,
            format="%(asctime)s [%(levelname)s] %(name)s: %(message)s",
            datefmt="%Y-%m-%d %H:%M:%S",
        )
        logging.getLogger("webserve").setLevel(level)

    def _shutdown(self):
        logger.info("Shutting down server...")
        self._running = False
        self._thread_pool.shutdown(wait=True, timeout=30.0)
        logger.info("Server stopped")

    # =========================================================================
    # PIPELINE
    # =========================================================================

    def process(
        self,
        request: HTTPRequest,
        body: Iterable[bytes] = (),
        send: Optional[Transport] = None,
        keep_alive: bool = False,
    ) -> Message:
        """
        Run one exchange end to end.

        Args:
            request: Parsed request head.
            body: Body chunks, in order.
            send: Transport for response bytes (socket sendall wrapper).
            keep_alive: Whether the connection stays open afterwards.

        Returns:
            The finished Message.
        """
        request.forbidden = not self._allow.permits(request.client_address[0])

        defaults: Dict[str, str] = {"Connection": "keep-alive" if keep_alive else "close"}
        if keep_alive:
            defaults["Keep-Alive"] = f"timeout={int(self.config.keep_alive_timeout)}"

        response = ResponseStream(
            send,
            server_name=self.config.server_name,
            default_headers=defaults,
        )
        message = Message(request, response, data_file=self.config.data_file)
        message.on("request-received", self._on_request_received)
        message.on("response-sent", self._on_response_sent)

        for chunk in body:
            message.feed(chunk)
        message.end()

        if not response.finished:
            logger.error(f"[{message.id}] Exchange ended without a response")
            if not response.headers_sent:
                writer.write_server_error(message)
            else:
                response.end()
        return message

    def _on_request_received(self, message: Message) -> None:
        self._events.emit("request-received", message)
        self._events.emit("communication-event", {
            "id": message.id,
            "event-type": "request",
            "log": dict(message.log),
        })
        self.router.handle(message)

    def _on_response_sent(self, message: Message) -> None:
        self.access_log.write(message)
        self._events.emit("response-sent", message)
        self._events.emit("communication-event", {
            "id": message.id,
            "event-type": "response",
            "log": dict(message.log),
        })

        code = telemetry_error_code(message)
        if code is not None:
            self._events.emit("error-event", {
                "id": message.id,
                "uri": message.request.target,
                "error": code,
            })

    def _on_route_complete(self, message: Message) -> None:
        self._events.emit("route-complete", message)

    def _on_route_error(self, message: Message) -> None:
        self._events.emit("route-error", message)

    def _on_log_error(self, event: dict) -> None:
        self._events.emit("log-error", event)

    # =========================================================================
    # CONNECTIONS
    # =========================================================================

    def _handle_connection(self, conn: Connection):
        """Queue a connection on the pool (called by the accept loop)."""
        submitted = self._thread_pool.submit(
            self._process_connection,
            args=(conn,),
            timeout=self.config.timeout,
            block=False,
            on_drop=lambda: self._reject(conn, "waited too long for a worker"),
        )
        if not submitted:
            self._reject(conn, "thread pool full")

    def _reject(self, conn: Connection, reason: str):
        """Answer 503 and close a connection that will never be processed."""
        logger.warning(f"[{conn.id}] Rejecting connection: {reason}")
        try:
            if conn.handshake():
                self._send_error(conn, 503, "Server overloaded")
        finally:
            conn.close()

    def _process_connection(self, conn: Connection):
        """Keep-alive loop for one connection (runs on a worker thread)."""
        with conn:
            if not conn.handshake():
                return

            while self._running:
                try:
                    head = conn.read_head()
                    if head is None:
                        break

                    try:
                        request = self._parser.parse_head(head, conn.address, conn.local_address)
                    except HTTPParseError as e:
                        self._send_error(conn, e.status_code, str(e))
                        break

                    keep_alive = request.is_keep_alive and self.config.keep_alive
                    message = self.process(
                        request,
                        conn.iter_body(request.content_length),
                        conn.send,
                        keep_alive,
                    )

                    if message.response.broken or not keep_alive:
                        break
                    if len(request.body) < request.content_length:
                        break

                    conn.set_keep_alive()

                except RequestTooLarge as e:
                    self._send_error(conn, 413, str(e))
                    break
                except TimeoutError:
                    self._send_error(conn, 408, "Request timeout")
                    break
                except Exception as e:
                    logger.exception(f"[{conn.id}] Connection error: {e}")
                    break

    def _send_error(self, conn: Connection, status: int, text: str):
        """Answer a request that never reached the pipeline, then close."""
        body = f"{text}\n".encode("utf-8")
        response = ResponseStream(
            conn.send,
            server_name=self.config.server_name,
            default_headers={"Connection": "close"},
        )
        response.write_head(status, {
            "Content-Type": "text/plain",
            "Content-Length": str(len(body)),
        })
        response.end(body)


def create_app(config: Optional[ServerConfig] = None) -> WebServer:
    """Factory for a WebServer."""
    return WebServer(config)

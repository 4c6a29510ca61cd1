"""
=============================================================================
HTTP RESPONSE STREAM
=============================================================================

The outbound half of an exchange. Writers fill it in through three calls:

    response.write_head(200, {"Content-Type": "text/csv"})
    response.write(b"a,b\n")
    response.end(b"1,x\n")

    ┌─────────────────────────────────────────────────────────────────────┐
    │                    What goes over the wire                           │
    ├─────────────────────────────────────────────────────────────────────┤
    │                                                                      │
    │   HTTP/1.1 200 OK\r\n                 ← status line                  │
    │   Content-Type: text/csv\r\n          ← writer headers               │
    │   Date: Sat, 17 Oct 2026 ...\r\n      ← auto-added                   │
    │   Server: webserve/1.0\r\n            ← auto-added                   │
    │   Connection: keep-alive\r\n          ← server defaults              │
    │   \r\n                                                               │
    │   a,b\n1,x\n                          ← body chunks, as written      │
    │                                                                      │
    └─────────────────────────────────────────────────────────────────────┘

Write listeners see every body chunk BEFORE it reaches the transport, and
finish listeners run exactly once, when end() is called. Message uses both
to count bytes and to stamp the completion time.

A response can only end once: any write after end() raises
ResponseFinishedError.

=============================================================================
"""

import logging
import threading
import time
from datetime import datetime, timezone
from http import HTTPStatus
from typing import Callable, Dict, List, Optional, Union


logger = logging.getLogger(__name__)

Transport = Callable[[bytes], bool]


class ResponseFinishedError(RuntimeError):
    """Raised when writing to a response that has already ended."""


def status_phrase(status: int) -> str:
    """Reason phrase for a status code ("Not Found" for 404)."""
    try:
        return HTTPStatus(status).phrase
    except ValueError:
        return "Unknown"


def format_http_date(dt: datetime) -> str:
    """
    Format a datetime as an HTTP-date (RFC 7231).

    Example: Wed, 01 Jan 2026 12:00:00 GMT
    """
    days = ["Mon", "Tue", "Wed", "Thu", "Fri", "Sat", "Sun"]
    months = ["Jan", "Feb", "Mar", "Apr", "May", "Jun",
              "Jul", "Aug", "Sep", "Oct", "Nov", "Dec"]
    dt = dt.astimezone(timezone.utc)
    return (
        f"{days[dt.weekday()]}, "
        f"{dt.day:02d} {months[dt.month - 1]} {dt.year} "
        f"{dt.hour:02d}:{dt.minute:02d}:{dt.second:02d} GMT"
    )


class ResponseStream:
    """
    Mutable response sink bound to a transport.

    Attributes:
        status:       Status code (sent with the head).
        headers:      Headers to send with the head.
        headers_sent: True once the head went to the transport.
        finished:     True once end() ran.
        completed_at: time.time() stamped by end().
        broken:       True if the transport reported a failed send.
    """

    def __init__(
        self,
        send: Optional[Transport] = None,
        version: str = "HTTP/1.1",
        server_name: str = "webserve/1.0",
        default_headers: Optional[Dict[str, str]] = None,
    ):
        self.status = 200
        self.headers: Dict[str, str] = {}
        self.version = version
        self.server_name = server_name
        self.headers_sent = False
        self.finished = False
        self.completed_at: Optional[float] = None
        self.broken = False

        self._send = send or (lambda data: True)
        self._defaults = dict(default_headers or {})
        self._write_listeners: List[Callable[[bytes], None]] = []
        self._finish_listeners: List[Callable[["ResponseStream"], None]] = []
        self._lock = threading.RLock()

    # =========================================================================
    # LISTENERS
    # =========================================================================

    def on_write(self, listener: Callable[[bytes], None]) -> None:
        """Register a callback that sees each body chunk before it is sent."""
        self._write_listeners.append(listener)

    def on_finish(self, listener: Callable[["ResponseStream"], None]) -> None:
        """Register a callback that runs once when the response ends."""
        self._finish_listeners.append(listener)

    # =========================================================================
    # WRITING
    # =========================================================================

    def set_header(self, name: str, value: Union[str, int]) -> None:
        if self.headers_sent:
            raise ResponseFinishedError("Headers already sent")
        self.headers[name] = str(value)

    def write_head(self, status: int, headers: Optional[Dict[str, Union[str, int]]] = None) -> None:
        """Send the status line and headers."""
        with self._lock:
            if self.finished:
                raise ResponseFinishedError("Response already ended")
            if self.headers_sent:
                raise ResponseFinishedError("Headers already sent")

            self.status = int(status)
            for name, value in (headers or {}).items():
                self.headers[name] = str(value)

            merged = dict(self.headers)
            merged.setdefault("Date", format_http_date(datetime.now(timezone.utc)))
            merged.setdefault("Server", self.server_name)
            for name, value in self._defaults.items():
                merged.setdefault(name, value)

            lines = [f"{self.version} {self.status} {status_phrase(self.status)}"]
            lines.extend(f"{name}: {value}" for name, value in merged.items())
            head = ("\r\n".join(lines) + "\r\n\r\n").encode("latin-1")

            self.headers_sent = True
            self._transmit(head)

    def write(self, chunk: Union[bytes, str]) -> None:
        """Send one body chunk, sending the head first if needed."""
        with self._lock:
            if self.finished:
                raise ResponseFinishedError("Response already ended")
            if not self.headers_sent:
                self.write_head(self.status)

            data = chunk.encode("utf-8") if isinstance(chunk, str) else bytes(chunk)
            if not data:
                return
            for listener in self._write_listeners:
                listener(data)
            self._transmit(data)

    def end(self, chunk: Union[bytes, str, None] = None) -> None:
        """Finish the response. Finish listeners run exactly once."""
        with self._lock:
            if self.finished:
                raise ResponseFinishedError("Response already ended")
            if chunk:
                self.write(chunk)
            elif not self.headers_sent:
                self.write_head(self.status)

            self.finished = True
            self.completed_at = time.time()
            listeners, self._finish_listeners = self._finish_listeners, []

        for listener in listeners:
            listener(self)

    def _transmit(self, data: bytes) -> None:
        if self.broken:
            return
        if not self._send(data):
            logger.debug("Transport rejected response data; client went away")
            self.broken = True

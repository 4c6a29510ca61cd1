"""
=============================================================================
MESSAGE: ONE REQUEST/RESPONSE EXCHANGE
=============================================================================

A Message pairs an inbound request with its outbound response, and carries
everything needed to log and correlate the exchange.

=============================================================================
LIFECYCLE
=============================================================================

    ┌─────────────────────────────────────────────────────────────────────┐
    │                                                                      │
    │   Message(request, response)     id generated, response hooked       │
    │        │                                                             │
    │        ▼                                                             │
    │   feed(chunk) ... feed(chunk)    body accumulated as it arrives      │
    │        │                                                             │
    │        ▼                                                             │
    │   end()                          cgi parsed, request-side log fields │
    │        │                         ──► "request-received" (once)       │
    │        ▼                                                             │
    │   router + writer                response.write(...) mirrored here   │
    │        │                                                             │
    │        ▼                                                             │
    │   response.end()                 completion stamped, log finalized   │
    │                                  ──► "response-sent" (once)          │
    │                                                                      │
    └─────────────────────────────────────────────────────────────────────┘

=============================================================================
LOG LINE LAYOUTS
=============================================================================

    common    c-ip  -  user  [17/Oct/2026:13:55:36 +0200]  "GET /x?y=1 HTTP/1.1"  200  2326
    extended  common + "referer" + "user-agent"
    w3c       caller-chosen fields, space separated
    default   common + "referer" + "user-agent" + time-taken (ms)

Common-style layouts are tab separated. A field missing from the log
mapping always renders as "-".

=============================================================================
"""

import base64
import binascii
import logging
import random
import socket
import string
import time
from datetime import datetime
from typing import Any, Callable, Dict, List, Optional, Sequence
from urllib.parse import parse_qs

from ..events import EventEmitter
from .request import HTTPRequest
from .response import ResponseStream


logger = logging.getLogger(__name__)

MESSAGE_EVENTS = ("request-received", "response-sent")

_ID_ALPHABET = string.ascii_uppercase + string.digits
_MONTHS = ["Jan", "Feb", "Mar", "Apr", "May", "Jun",
           "Jul", "Aug", "Sep", "Oct", "Nov", "Dec"]
_HOSTNAME = socket.gethostname()


def generate_id() -> str:
    """Millisecond timestamp followed by six random characters from A-Z0-9."""
    suffix = "".join(random.choices(_ID_ALPHABET, k=6))
    return f"{int(time.time() * 1000)}{suffix}"


def basic_auth_username(authorization: str) -> str:
    """
    Extract the user name from an Authorization header.

    The last whitespace-separated token is base64-decoded and the part
    before the first ":" is returned. Anything undecodable yields "".

    Example:
        basic_auth_username("Basic YWxpY2U6c2VjcmV0")  # "alice"
    """
    tokens = (authorization or "").split()
    if not tokens:
        return ""
    try:
        decoded = base64.b64decode(tokens[-1], validate=True).decode("utf-8")
    except (binascii.Error, ValueError):
        return ""
    return decoded.split(":", 1)[0]


def _iso8601(timestamp: float) -> str:
    dt = datetime.fromtimestamp(timestamp).astimezone()
    return dt.strftime("%Y-%m-%dT%H:%M:%S.") + f"{dt.microsecond // 1000:03d}"


def _ncsa_date(timestamp: float) -> str:
    dt = datetime.fromtimestamp(timestamp).astimezone()
    return (
        f"[{dt.day:02d}/{_MONTHS[dt.month - 1]}/{dt.year}:"
        f"{dt.hour:02d}:{dt.minute:02d}:{dt.second:02d} {dt.strftime('%z')}]"
    )


def _field(value: Any) -> str:
    if value is None or value == "":
        return "-"
    return str(value)


class Message:
    """
    One HTTP exchange.

    Attributes:
        id:        Unique per exchange (see generate_id()).
        request:   The parsed HTTPRequest.
        response:  The ResponseStream writers fill in.
        cgi:       Parsed form/query parameters, dict of lists.
        log:       Log field name → value, filled as data becomes available.
        data_file: Base filename for writer side files (None disables them).
    """

    def __init__(
        self,
        request: HTTPRequest,
        response: ResponseStream,
        data_file: Optional[str] = None,
    ):
        self.id = generate_id()
        self.request = request
        self.response = response
        self.data_file = data_file

        self.cgi: Dict[str, List[str]] = {}
        self.log: Dict[str, Any] = {}

        self._events = EventEmitter(MESSAGE_EVENTS)
        self._body = bytearray()
        self._sent = bytearray()
        self._received = False
        self._responded = False

        response.on_write(self._sent.extend)
        response.on_finish(self._on_response_finished)

    # =========================================================================
    # OBSERVERS
    # =========================================================================

    def on(self, name: str, handler: Callable[["Message"], None]) -> None:
        """Subscribe to "request-received" or "response-sent"."""
        self._events.on(name, handler)

    def off(self, name: str, handler: Callable[["Message"], None]) -> None:
        self._events.off(name, handler)

    # =========================================================================
    # REQUEST BODY
    # =========================================================================

    def feed(self, chunk: bytes) -> None:
        """Append one chunk of request body."""
        if self._received:
            raise RuntimeError(f"[{self.id}] Body already complete")
        self._body.extend(chunk)

    def end(self) -> None:
        """
        Mark the request body complete.

        Parses cgi parameters (form body for POST, query string otherwise),
        fills the request-side log fields, then fires "request-received".
        Calling end() again does nothing.
        """
        if self._received:
            return
        self._received = True

        self.request.body = bytes(self._body)
        if self.request.method == "POST":
            self.cgi = parse_qs(self.body, keep_blank_values=True)
        else:
            self.cgi = dict(self.request.query_params)

        self._log_request()
        self._events.emit("request-received", self)

    @property
    def body(self) -> str:
        """The request body decoded as UTF-8 text."""
        return self._body.decode("utf-8", errors="replace")

    def param(self, name: str, default: Optional[str] = None) -> Optional[str]:
        """First cgi value for a parameter."""
        values = self.cgi.get(name)
        return values[0] if values else default

    # =========================================================================
    # RESPONSE
    # =========================================================================

    @property
    def bytes_sent(self) -> int:
        """Body bytes written to the response so far."""
        return len(self._sent)

    @property
    def is_received(self) -> bool:
        return self._received

    @property
    def is_responded(self) -> bool:
        return self._responded

    @property
    def elapsed_ms(self) -> Optional[int]:
        """Milliseconds from request head to response end, None until both exist."""
        started = self.request.received_at
        finished = self.response.completed_at
        if started is None or finished is None:
            return None
        return max(int(round((finished - started) * 1000)), 0)

    def _on_response_finished(self, response: ResponseStream) -> None:
        if self._responded:
            return
        self._responded = True
        self._log_response()
        self._events.emit("response-sent", self)

    # =========================================================================
    # LOG MAPPING
    # =========================================================================

    def _log_request(self) -> None:
        request = self.request
        stem, _, query = request.target.partition("?")
        client_ip = request.client_address[0] if request.client_address else ""
        local_ip, local_port = (request.local_address or ("", 0))[:2]

        self.log.update({
            "c-ip": client_ip,
            "cs-bytes": len(self._body),
            "cs-host": request.host,
            "cs-method": request.method,
            "cs-uri-stem": stem,
            "cs-uri-query": query,
            "cs-username": basic_auth_username(request.get_header("authorization")),
            "cs-version": request.protocol_version,
            "cs(referer)": request.referer,
            "cs(user-agent)": request.user_agent,
            "s-computername": _HOSTNAME,
            "s-ip": local_ip,
            "s-port": local_port or "",
            "s-sitename": "",
        })

    def _log_response(self) -> None:
        completed = self.response.completed_at or time.time()
        stamp = _iso8601(completed)
        self.log.update({
            "date": stamp,
            "time": stamp.split("T", 1)[1].split(".", 1)[0],
            "sc-bytes": self.bytes_sent,
            "sc-status": self.response.status,
        })
        elapsed = self.elapsed_ms
        if elapsed is not None:
            self.log["time-taken"] = elapsed

    def lookup(self, name: str) -> str:
        """Resolve one log field by (case-insensitive) name, "-" if absent."""
        return _field(self.log.get(name.lower()))

    # =========================================================================
    # RENDERING
    # =========================================================================

    def _common(self) -> List[str]:
        log = self.log
        completed = self.response.completed_at or time.time()
        query = log.get("cs-uri-query")
        uri = f"{log.get('cs-uri-stem') or ''}{'?' + query if query else ''}"
        request_line = (
            f"{log.get('cs-method') or 'GET'} {uri} "
            f"HTTP/{log.get('cs-version') or '1.0'}"
        )
        bytes_sent = log.get("sc-bytes")
        return [
            _field(log.get("c-ip")),
            "-",
            _field(log.get("cs-username")),
            _ncsa_date(completed),
            f'"{request_line}"',
            _field(log.get("sc-status")),
            _field(bytes_sent or None),
        ]

    def _quoted(self, name: str) -> str:
        return f'"{self.lookup(name)}"'

    def to_string(self, format: Optional[str] = None, fields: Sequence[str] = ()) -> str:
        """
        Render the exchange as one access-log line.

        Args:
            format: "common", "extended", "w3c" or None for the default.
            fields: Field names for "w3c", in output order.
        """
        if format == "common":
            return "\t".join(self._common())
        if format == "extended":
            extra = [self._quoted("cs(referer)"), self._quoted("cs(user-agent)")]
            return "\t".join(self._common() + extra)
        if format == "w3c":
            return " ".join(self.lookup(name) for name in fields)

        extra = [
            self._quoted("cs(referer)"),
            self._quoted("cs(user-agent)"),
            self.lookup("time-taken"),
        ]
        return "\t".join(self._common() + extra)

    __str__ = to_string

    def __repr__(self) -> str:
        return f"Message(id={self.id!r}, method={self.request.method!r}, target={self.request.target!r})"

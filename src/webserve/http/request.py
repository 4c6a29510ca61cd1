"""
=============================================================================
HTTP REQUEST PARSING
=============================================================================

Turns the head of an HTTP/1.x request (request line + headers) into an
HTTPRequest. The body is NOT parsed here: it is streamed into the Message
chunk by chunk after the head has been read.

    GET /reports/daily?latency=50 HTTP/1.1\r\n      ← request line
    Host: localhost:8000\r\n                        ← headers
    Authorization: Basic YWxpY2U6c2VjcmV0\r\n
    \r\n                                            ← end of head
    ...body...                                      ← Content-Length bytes

REQUEST LINE FORMAT (RFC 7230)
──────────────────────────────

    METHOD SP REQUEST-TARGET SP HTTP-VERSION

    "GET /reports/daily?latency=50 HTTP/1.1"
     ─┬─ ─────────┬──────────────── ───┬────
      │           │                    │
    Method   path + query           Version

Headers are stored with LOWERCASE names: HTTP header names are
case-insensitive, so normalizing once at parse time avoids .lower()
everywhere else.

=============================================================================
"""

import re
import time
from dataclasses import dataclass, field
from typing import Dict, Optional, Tuple
from urllib.parse import parse_qs, unquote, urlsplit


class HTTPParseError(Exception):
    """
    Raised when an HTTP request head is malformed.

    Carries the status code the client should receive:
        400 Bad Request                  malformed syntax
        405 Method Not Allowed           unknown method
        413 Payload Too Large            head or body exceeds the limit
        505 HTTP Version Not Supported   not HTTP/1.0 or HTTP/1.1
    """

    def __init__(self, message: str, status_code: int = 400):
        super().__init__(message)
        self.status_code = status_code


@dataclass
class HTTPRequest:
    """
    Parsed view of one inbound request.

    Attributes:
        method:         GET, POST, ...
        target:         The request target exactly as sent ("/a%20b?x=1").
        path:           URL-decoded path without the query ("/a b").
        query:          Raw query string without "?" ("x=1").
        query_params:   Parsed query, dict of lists.
        version:        "HTTP/1.1" or "HTTP/1.0".
        headers:        Lowercase name → value.
        body:           Raw body bytes, filled in once fully received.
        client_address: (ip, port) of the peer.
        local_address:  (ip, port) of our end of the socket.
        forbidden:      Set by the server's allow-list check before routing.
        received_at:    time.time() when the head was parsed.
    """

    method: str
    target: str
    path: str = "/"
    query: str = ""
    query_params: Dict[str, list] = field(default_factory=dict)
    version: str = "HTTP/1.1"
    headers: Dict[str, str] = field(default_factory=dict)
    body: bytes = b""
    client_address: Tuple[str, int] = ("", 0)
    local_address: Tuple[str, int] = ("", 0)
    forbidden: bool = False
    received_at: float = field(default_factory=time.time)

    @property
    def content_length(self) -> int:
        """Content-Length as an integer, 0 if missing or invalid."""
        try:
            return max(int(self.headers.get("content-length", 0)), 0)
        except ValueError:
            return 0

    @property
    def host(self) -> str:
        return self.headers.get("host", "")

    @property
    def user_agent(self) -> str:
        return self.headers.get("user-agent", "")

    @property
    def referer(self) -> str:
        return self.headers.get("referer", "")

    @property
    def protocol_version(self) -> str:
        """The version number alone: "1.1" for "HTTP/1.1"."""
        return self.version.split("/", 1)[-1]

    @property
    def is_keep_alive(self) -> bool:
        """
        Should the connection stay open after this exchange?

        HTTP/1.1 keeps alive unless "Connection: close".
        HTTP/1.0 closes unless "Connection: keep-alive".
        """
        connection = self.headers.get("connection", "").lower()
        if self.version == "HTTP/1.1":
            return connection != "close"
        return connection == "keep-alive"

    def get_header(self, name: str, default: str = "") -> str:
        """Case-insensitive header lookup."""
        return self.headers.get(name.lower(), default)

    def get_query(self, name: str, default: Optional[str] = None) -> Optional[str]:
        """First value of a query parameter."""
        values = self.query_params.get(name, [])
        return values[0] if values else default


class RequestParser:
    """
    Parses request heads into HTTPRequest objects.

    Usage:
        parser = RequestParser()
        request = parser.parse_head(head_bytes, client_address=("10.0.0.5", 51234))
    """

    VALID_METHODS = {
        "GET", "POST", "PUT", "DELETE", "PATCH",
        "HEAD", "OPTIONS", "TRACE", "CONNECT",
    }

    REQUEST_LINE_PATTERN = re.compile(r"^([A-Z]+) ([^ ]+) (HTTP/\d\.\d)$")
    HEADER_PATTERN = re.compile(r"^([^:]+):\s*(.*)$")

    def __init__(self, max_request_size: int = 10 * 1024 * 1024):
        self.max_request_size = max_request_size

    def parse_head(
        self,
        head: bytes,
        client_address: Tuple[str, int] = ("", 0),
        local_address: Tuple[str, int] = ("", 0),
    ) -> HTTPRequest:
        """
        Parse a request head.

        Args:
            head: Bytes up to (optionally including) the blank line.
            client_address: Peer (ip, port).
            local_address: Our (ip, port).

        Raises:
            HTTPParseError: If the head is malformed or the declared body
                            exceeds max_request_size.
        """
        if len(head) > self.max_request_size:
            raise HTTPParseError(f"Request too large: {len(head)} bytes", status_code=413)

        text = head.decode("iso-8859-1").split("\r\n\r\n", 1)[0]
        lines = text.split("\r\n")
        if not lines or not lines[0]:
            raise HTTPParseError("Empty request")

        method, target, version = self._parse_request_line(lines[0])
        headers = self._parse_headers(lines[1:])

        parts = urlsplit(target)
        request = HTTPRequest(
            method=method,
            target=target,
            path=unquote(parts.path) or "/",
            query=parts.query,
            query_params=parse_qs(parts.query, keep_blank_values=True),
            version=version,
            headers=headers,
            client_address=client_address,
            local_address=local_address,
        )

        if request.content_length > self.max_request_size:
            raise HTTPParseError(
                f"Body too large: {request.content_length} bytes", status_code=413
            )
        return request

    def _parse_request_line(self, line: str) -> Tuple[str, str, str]:
        match = self.REQUEST_LINE_PATTERN.match(line)
        if not match:
            raise HTTPParseError(f"Invalid request line: {line}")

        method, target, version = match.groups()

        if method not in self.VALID_METHODS:
            raise HTTPParseError(f"Invalid method: {method}", status_code=405)

        if version not in ("HTTP/1.0", "HTTP/1.1"):
            raise HTTPParseError(f"Unsupported HTTP version: {version}", status_code=505)

        return method, target, version

    def _parse_headers(self, lines: list) -> Dict[str, str]:
        """
        Parse header lines into a lowercase-keyed dict.

        Continuation lines (leading whitespace) extend the previous header.
        Repeated headers are joined with ", ". Malformed lines are skipped.
        """
        headers: Dict[str, str] = {}
        current = None

        for line in lines:
            if not line:
                continue

            if line[0] in (" ", "\t"):
                if current is not None:
                    headers[current] += " " + line.strip()
                continue

            match = self.HEADER_PATTERN.match(line)
            if not match:
                continue

            name = match.group(1).strip().lower()
            value = match.group(2).strip()
            current = name
            headers[name] = f"{headers[name]}, {value}" if name in headers else value

        return headers


def parse_request(
    data: bytes,
    client_address: Tuple[str, int] = ("", 0),
    max_size: int = 10 * 1024 * 1024,
) -> HTTPRequest:
    """
    Parse a complete raw request (head and body) in one call.

    Handy in tests and tools; the server itself streams the body.
    """
    head, _, body = data.partition(b"\r\n\r\n")
    request = RequestParser(max_request_size=max_size).parse_head(head, client_address)
    request.body = body[:request.content_length]
    return request

"""
=============================================================================
CONNECTION MANAGEMENT
=============================================================================

Wraps one accepted client socket (plain or TLS) with buffered reads that
understand HTTP/1.x framing.

=============================================================================
TCP IS A BYTE STREAM, NOT A MESSAGE PROTOCOL
=============================================================================

recv() returns whatever the kernel has: half a request line, three
requests at once, a head glued to the start of its body. So reads go
through a buffer:

    ┌─────────────────────────────────────────────────────────────────┐
    │  read_head()                                                     │
    │     recv() until "\r\n\r\n" is in the buffer                     │
    │     return everything before it, keep the rest buffered          │
    │                                                                  │
    │  iter_body(content_length)                                       │
    │     yield buffered bytes first, then recv() until exactly        │
    │     content_length bytes were produced                           │
    │     anything beyond stays buffered for the next request          │
    └─────────────────────────────────────────────────────────────────┘

The body is yielded chunk by chunk so the Message can accumulate it as it
arrives instead of the connection holding the whole request.

=============================================================================
KEEP-ALIVE
=============================================================================

After the first request the read timeout drops to keep_alive_timeout. A
timeout while waiting for a FOLLOW-UP request is the normal end of a
persistent connection, not an error.

=============================================================================
"""

import logging
import socket
import ssl
import time
import uuid
from dataclasses import dataclass, field
from enum import Enum
from typing import Iterator, Optional, Tuple


logger = logging.getLogger(__name__)

HEAD_TERMINATOR = b"\r\n\r\n"


class ConnectionState(Enum):
    NEW = "new"
    READING = "reading"
    PROCESSING = "processing"
    WRITING = "writing"
    KEEP_ALIVE = "keep_alive"
    CLOSING = "closing"
    CLOSED = "closed"


class RequestTooLarge(ValueError):
    """Raised when a request head exceeds the size limit."""


@dataclass
class Connection:
    """
    Represents a client connection.

    Attributes:
        socket: The client socket.
        address: Client's (ip, port) tuple.
        id: Short connection identifier for diagnostic logs.
        state: Current connection state.
        requests_handled: Number of request heads read so far.
    """

    socket: socket.socket
    address: Tuple[str, int]

    id: str = field(default_factory=lambda: str(uuid.uuid4())[:8])
    state: ConnectionState = ConnectionState.NEW
    created_at: float = field(default_factory=time.time)
    last_activity: float = field(default_factory=time.time)
    requests_handled: int = 0

    buffer_size: int = 8192
    timeout: Optional[float] = 30.0
    keep_alive_timeout: float = 5.0
    max_request_size: int = 10 * 1024 * 1024

    _buffer: bytes = field(default=b"", repr=False)

    def __post_init__(self):
        self.socket.setblocking(True)
        if self.timeout:
            self.socket.settimeout(self.timeout)

    @property
    def client_ip(self) -> str:
        return self.address[0]

    @property
    def local_address(self) -> Tuple[str, int]:
        """Our end of the socket, ("", 0) if it is no longer available."""
        try:
            return tuple(self.socket.getsockname()[:2])
        except OSError:
            return ("", 0)

    def handshake(self) -> bool:
        """
        Complete the TLS handshake on a wrapped socket.

        Runs on the worker thread so a slow client cannot stall the accept
        loop. Plain sockets have nothing to do.

        Returns:
            False if the handshake failed and the connection is unusable.
        """
        if not isinstance(self.socket, ssl.SSLSocket):
            return True
        try:
            self.socket.do_handshake()
            return True
        except OSError as e:
            logger.info(f"[{self.id}] TLS handshake failed: {e}")
            return False

    # =========================================================================
    # READING
    # =========================================================================

    def read_head(self) -> Optional[bytes]:
        """
        Read the next request head (request line + headers).

        Returns:
            The head bytes without the terminating blank line, or None if
            the client closed the connection or a keep-alive wait expired.

        Raises:
            TimeoutError: if the FIRST request never arrives in time.
            RequestTooLarge: if the head grows past max_request_size.
        """
        self.state = ConnectionState.READING
        self.last_activity = time.time()

        if self.requests_handled > 0:
            self.socket.settimeout(self.keep_alive_timeout)

        try:
            while HEAD_TERMINATOR not in self._buffer:
                chunk = self._recv()
                if not chunk:
                    return None
                self._buffer += chunk
                if len(self._buffer) > self.max_request_size:
                    raise RequestTooLarge(f"Request head too large: {len(self._buffer)} bytes")
        except socket.timeout:
            if self.requests_handled > 0:
                logger.debug(f"[{self.id}] Keep-alive timeout")
                return None
            raise TimeoutError("Request read timeout")
        finally:
            self.socket.settimeout(self.timeout)

        head, _, self._buffer = self._buffer.partition(HEAD_TERMINATOR)
        self.requests_handled += 1
        return head

    def iter_body(self, content_length: int) -> Iterator[bytes]:
        """
        Yield exactly content_length body bytes as they arrive.

        Stops early if the client disconnects mid-body.
        """
        remaining = content_length

        if remaining and self._buffer:
            chunk, self._buffer = self._buffer[:remaining], self._buffer[remaining:]
            remaining -= len(chunk)
            yield chunk

        while remaining > 0:
            try:
                chunk = self._recv()
            except socket.timeout:
                raise TimeoutError("Request body read timeout")
            if not chunk:
                logger.debug(f"[{self.id}] Client closed mid-body, {remaining} bytes short")
                return
            if len(chunk) > remaining:
                chunk, self._buffer = chunk[:remaining], chunk[remaining:]
            remaining -= len(chunk)
            yield chunk

    def _recv(self) -> bytes:
        try:
            data = self.socket.recv(self.buffer_size)
            self.last_activity = time.time()
            return data
        except (ConnectionResetError, BrokenPipeError):
            return b""

    # =========================================================================
    # WRITING
    # =========================================================================

    def send(self, data: bytes) -> bool:
        """
        Send bytes with sendall().

        Returns:
            True if sent, False if the client went away.
        """
        self.state = ConnectionState.WRITING
        try:
            self.socket.sendall(data)
            self.last_activity = time.time()
            return True
        except OSError as e:
            logger.warning(f"[{self.id}] Send failed: {e}")
            return False

    # =========================================================================
    # CLOSING
    # =========================================================================

    def close(self):
        """
        Close the connection gracefully: FIN, drain, release the fd.
        """
        if self.state == ConnectionState.CLOSED:
            return

        self.state = ConnectionState.CLOSING

        try:
            self.socket.shutdown(socket.SHUT_WR)
        except OSError:
            pass

        try:
            self.socket.settimeout(0.5)
            while self.socket.recv(1024):
                pass
        except OSError:
            pass

        try:
            self.socket.close()
        except OSError:
            pass

        self.state = ConnectionState.CLOSED
        logger.debug(f"[{self.id}] Connection closed after {self.requests_handled} requests")

    def set_keep_alive(self):
        self.state = ConnectionState.KEEP_ALIVE

    def __enter__(self):
        return self

    def __exit__(self, exc_type, exc_val, exc_tb):
        self.close()
        return False

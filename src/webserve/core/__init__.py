"""
=============================================================================
CORE NETWORKING
=============================================================================

The transport layer underneath the request pipeline:

    SocketServer   listening socket, accept loop, optional TLS wrapping
    Connection     buffered reads of request heads and bodies, sends
    ThreadPool     worker threads that each own one connection at a time

Nothing in here knows about routing or logging; WebServer wires it to the
Message / Router pipeline.

=============================================================================
"""

from .socket_server import SocketServer
from .connection import Connection, ConnectionState, RequestTooLarge
from .thread_pool import ThreadPool

__all__ = [
    "SocketServer",
    "Connection",
    "ConnectionState",
    "RequestTooLarge",
    "ThreadPool",
]

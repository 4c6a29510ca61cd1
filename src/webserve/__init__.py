"""
=============================================================================
WEBSERVE - Static-File HTTP(S) Server With Structured Access Logging
=============================================================================

Serves a directory over HTTP or HTTPS, dispatches selected exact paths to
custom handlers, enforces an IP allow-list and records every exchange as
one access-log line.

=============================================================================
PACKAGE STRUCTURE
=============================================================================

    webserve/
    ├── __init__.py          # This file - package exports
    ├── __main__.py          # CLI entry point (python -m webserve)
    ├── server.py            # WebServer: pipeline, telemetry, keep-alive loop
    ├── config.py            # ServerConfig dataclass + ConfigBuilder
    ├── access.py            # IP allow-list
    ├── access_log.py        # Access-log file writer
    ├── events.py            # Observer registry
    ├── tls.py               # Key/certificate loading, SSLContext
    ├── core/                # Transport
    │   ├── socket_server.py # Listener and accept loop
    │   ├── connection.py    # Buffered client connection
    │   └── thread_pool.py   # Worker threads
    ├── http/                # Request pipeline
    │   ├── request.py       # Request head parsing
    │   ├── response.py      # Response stream
    │   ├── message.py       # Request/response pair + log fields
    │   ├── writer.py        # CSV/JSON/XML/HTML/file/canned writers
    │   ├── router.py        # Exact-path routing, static fallback
    │   └── mime_types.py    # Content types
    └── handlers/
        └── static.py        # Static file serving

=============================================================================
QUICK START
=============================================================================

    from webserve import ConfigBuilder, WebServer, writer

    config = ConfigBuilder().directory("./public").port(8000).build()
    server = WebServer(config)

    @server.route("/people")
    def people(message):
        return writer.write_as_json(message, [{"name": "Ada", "age": 36}])

    server.run()

=============================================================================
"""

__version__ = "1.0.0"

from .config import ConfigBuilder, ConfigError, ServerConfig
from .server import WebServer, create_app
from .http import Message, Router, writer

__all__ = [
    "WebServer",
    "create_app",
    "ServerConfig",
    "ConfigBuilder",
    "ConfigError",
    "Message",
    "Router",
    "writer",
    "__version__",
]

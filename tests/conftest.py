"""
pytest configuration and fixtures.
"""

import socket
import sys
import threading
from pathlib import Path
from typing import Callable, Generator, List, Optional

import pytest

# Add src to path for imports
sys.path.insert(0, str(Path(__file__).parent.parent / "src"))

from webserve import ServerConfig, WebServer
from webserve.http.message import Message
from webserve.http.request import HTTPRequest, RequestParser
from webserve.http.response import ResponseStream


class FakeTransport:
    """Collects everything a ResponseStream sends."""

    def __init__(self, accept: bool = True):
        self.accept = accept
        self.chunks: List[bytes] = []

    def __call__(self, data: bytes) -> bool:
        self.chunks.append(data)
        return self.accept

    @property
    def data(self) -> bytes:
        return b"".join(self.chunks)

    @property
    def head(self) -> bytes:
        return self.data.partition(b"\r\n\r\n")[0]

    @property
    def body(self) -> bytes:
        return self.data.partition(b"\r\n\r\n")[2]

    @property
    def status(self) -> int:
        return int(self.head.split(b" ", 2)[1])

    def header(self, name: str) -> Optional[str]:
        for line in self.head.decode("latin-1").split("\r\n")[1:]:
            key, _, value = line.partition(":")
            if key.lower() == name.lower():
                return value.strip()
        return None


@pytest.fixture
def transport() -> FakeTransport:
    return FakeTransport()


@pytest.fixture
def sample_get_request() -> bytes:
    """Sample HTTP GET request."""
    return (
        b"GET /reports/today?page=1&limit=10 HTTP/1.1\r\n"
        b"Host: localhost:8000\r\n"
        b"User-Agent: pytest\r\n"
        b"Referer: http://localhost:8000/\r\n"
        b"Authorization: Basic YWxpY2U6c2VjcmV0\r\n"
        b"Connection: keep-alive\r\n"
        b"\r\n"
    )


@pytest.fixture
def sample_post_request() -> bytes:
    """Sample HTTP POST request with a form body."""
    body = b"name=Ada&lang=en&lang=fr"
    return (
        b"POST /submit HTTP/1.1\r\n"
        b"Host: localhost:8000\r\n"
        b"Content-Type: application/x-www-form-urlencoded\r\n"
        + f"Content-Length: {len(body)}\r\n".encode()
        + b"Connection: close\r\n"
        b"\r\n"
    ) + body


@pytest.fixture
def web_root(tmp_path: Path) -> Path:
    """
    A small site:

        www/index.html
        www/style.css
        www/empty.txt          (zero bytes)
        www/docs/index.htm
        www/nodocs/            (no index file)
        secret.txt             (outside the root)
    """
    root = tmp_path / "www"
    root.mkdir()
    (root / "index.html").write_text("<h1>home</h1>")
    (root / "style.css").write_text("body { color: red; }")
    (root / "empty.txt").write_bytes(b"")
    (root / "docs").mkdir()
    (root / "docs" / "index.htm").write_text("<h1>docs</h1>")
    (root / "nodocs").mkdir()
    (tmp_path / "secret.txt").write_text("top secret")
    return root


@pytest.fixture
def make_request() -> Callable[..., HTTPRequest]:
    """Build an HTTPRequest from a method and target."""
    parser = RequestParser()

    def factory(
        method: str = "GET",
        target: str = "/",
        headers: Optional[dict] = None,
        client_ip: str = "127.0.0.1",
    ) -> HTTPRequest:
        lines = [f"{method} {target} HTTP/1.1", "Host: localhost"]
        lines.extend(f"{k}: {v}" for k, v in (headers or {}).items())
        head = "\r\n".join(lines).encode("latin-1")
        return parser.parse_head(head, (client_ip, 50000), ("127.0.0.1", 8000))

    return factory


@pytest.fixture
def make_message(make_request, transport) -> Callable[..., Message]:
    """
    Build a received Message wired to the shared FakeTransport.

    Extra keyword arguments go to make_request.
    """

    def factory(
        target: str = "/",
        method: str = "GET",
        body: bytes = b"",
        data_file: Optional[str] = None,
        forbidden: bool = False,
        **kwargs,
    ) -> Message:
        request = make_request(method, target, **kwargs)
        request.forbidden = forbidden
        message = Message(request, ResponseStream(transport), data_file=data_file)
        if body:
            message.feed(body)
        message.end()
        return message

    return factory


@pytest.fixture
def config(web_root: Path) -> ServerConfig:
    """Test server configuration serving web_root, access log off."""
    return ServerConfig(
        host="127.0.0.1",
        port=0,  # Let OS pick a free port
        min_workers=2,
        max_workers=4,
        timeout=5.0,
        root_dir=str(web_root),
        log_enabled=False,
        log_level="WARNING",
    )


class RunningServer:
    """Runs a WebServer in a background thread."""

    def __init__(self, server: WebServer):
        self.server = server
        self._thread: Optional[threading.Thread] = None

    @property
    def port(self) -> int:
        return self.server.address[1]

    def start(self):
        self._thread = threading.Thread(target=self.server.run, daemon=True)
        self._thread.start()
        if not self.server.wait_until_ready(5.0):
            raise RuntimeError("Server failed to start")

    def stop(self):
        self.server.shutdown()
        if self._thread and self._thread.is_alive():
            self._thread.join(timeout=10.0)

    def request(self, raw: bytes) -> bytes:
        """Send one raw request with Connection: close and read everything."""
        with socket.create_connection(("127.0.0.1", self.port), timeout=5.0) as sock:
            sock.sendall(raw)
            chunks = []
            while True:
                chunk = sock.recv(65536)
                if not chunk:
                    break
                chunks.append(chunk)
        return b"".join(chunks)


@pytest.fixture
def running_server(config: ServerConfig) -> Generator[RunningServer, None, None]:
    """A live server on an ephemeral port."""
    server = WebServer(config)

    @server.route("/people")
    def people(message):
        from webserve import writer
        return writer.write_as_json(message, [{"name": "Ada", "age": 36}])

    running = RunningServer(server)
    running.start()

    yield running

    running.stop()

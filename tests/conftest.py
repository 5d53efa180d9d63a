"""Shared pytest configuration and fixtures."""

import json
import os
import socket
import threading
import time
from http.server import BaseHTTPRequestHandler, ThreadingHTTPServer
from pathlib import Path
from typing import Callable, Iterator, List, Tuple

import pytest
from loguru import logger

from devprox.dispatcher import Dispatcher
from devprox.env import CONSUMED_ENV_VARS
from devprox.proxy import ProxyForwarder
from devprox.routes import RouteTable
from devprox.server import DevproxServer, RequestBody


@pytest.fixture(autouse=True)
def isolated_env(monkeypatch: pytest.MonkeyPatch, tmp_path: Path) -> Iterator[None]:
    """Keep DEVPROX_* values and .env files from the developer machine out of tests."""

    for key in CONSUMED_ENV_VARS:
        monkeypatch.delenv(key, raising=False)
    monkeypatch.setattr(
        "devprox.env.platform_env_file_path", lambda: tmp_path / "platform" / ".env"
    )
    monkeypatch.chdir(tmp_path)
    yield
    for key in CONSUMED_ENV_VARS:
        os.environ.pop(key, None)
    logger.remove()


@pytest.fixture
def static_root(tmp_path: Path) -> Path:
    """A small site plus a file just outside it that must never be served."""

    root = tmp_path / "site"
    root.mkdir()
    (root / "index.html").write_text("<h1>home</h1>")
    (root / "app.js").write_text("console.log('hi');")
    (root / "data.bin").write_bytes(bytes(range(256)) * 1024)
    (root / "docs").mkdir()
    (root / "docs" / "index.html").write_text("<h1>docs</h1>")
    (root / "empty").mkdir()
    (tmp_path / "secret.txt").write_text("top secret")
    return root


class EchoHandler(BaseHTTPRequestHandler):
    """Upstream stand-in: echoes the request back as JSON.

    ``/stream`` answers with a chunked body and ``/slow`` waits before answering.
    ``/ticks`` sends its chunks slowly and ``/endless`` keeps streaming until the
    client goes away.
    """

    protocol_version = "HTTP/1.1"
    delay_seconds = 1.0

    def _echo(self) -> None:
        body = b"".join(RequestBody.from_headers(self.rfile, self.headers))
        self.server.received.append(
            {
                "method": self.command,
                "path": self.path,
                "headers": {k.lower(): v for k, v in self.headers.items()},
                "body": body,
            }
        )

        if self.path.endswith("/slow"):
            time.sleep(self.delay_seconds)

        if self.path.endswith("/ticks"):
            self._stream_chunks([b"tick-%d" % index for index in range(3)], pause=0.6)
            return

        if self.path.endswith("/endless"):
            try:
                self._stream_chunks((b"beat-%d" % index for index in range(200)), pause=0.05)
            except (BrokenPipeError, ConnectionResetError):
                self.server.disconnected.set()
            return

        if self.path.endswith("/stream"):
            self._stream_chunks([b"chunk-%d" % index for index in range(3)], pause=0)
            return

        payload = json.dumps(
            {
                "method": self.command,
                "path": self.path,
                "body": body.decode("latin-1"),
            }
        ).encode()
        self.send_response(201 if self.command == "POST" else 200)
        self.send_header("Content-Type", "application/json")
        self.send_header("Content-Length", str(len(payload)))
        self.send_header("Set-Cookie", "a=1")
        self.send_header("Set-Cookie", "b=2")
        self.send_header("Keep-Alive", "timeout=5")
        self.send_header("Access-Control-Allow-Origin", "http://upstream.example")
        self.end_headers()
        if self.command != "HEAD":
            self.wfile.write(payload)

    def _stream_chunks(self, chunks, *, pause: float) -> None:
        self.send_response(200)
        self.send_header("Content-Type", "text/plain")
        self.send_header("Transfer-Encoding", "chunked")
        self.end_headers()
        for chunk in chunks:
            self.wfile.write(b"%X\r\n%s\r\n" % (len(chunk), chunk))
            time.sleep(pause)
        self.wfile.write(b"0\r\n\r\n")

    do_GET = do_POST = do_PUT = do_PATCH = do_DELETE = do_HEAD = do_OPTIONS = _echo
    do_PROPFIND = _echo

    def log_message(self, format: str, *args) -> None:  # noqa: A002
        pass


class UpstreamServer(ThreadingHTTPServer):
    daemon_threads = True

    def __init__(self) -> None:
        super().__init__(("127.0.0.1", 0), EchoHandler)
        self.received: List[dict] = []
        self.disconnected = threading.Event()

    @property
    def base_url(self) -> str:
        host, port = self.server_address[:2]
        return f"http://{host}:{port}"


@pytest.fixture
def upstream() -> Iterator[UpstreamServer]:
    server = UpstreamServer()
    thread = threading.Thread(target=server.serve_forever, daemon=True)
    thread.start()
    yield server
    server.shutdown()
    server.server_close()


@pytest.fixture
def closed_port() -> int:
    """A local port with nothing listening on it."""

    with socket.socket(socket.AF_INET, socket.SOCK_STREAM) as sock:
        sock.bind(("127.0.0.1", 0))
        return sock.getsockname()[1]


@pytest.fixture
def run_devprox() -> Iterator[Callable[..., str]]:
    """Start devprox servers on ephemeral ports; returns their base URLs."""

    started: List[Tuple[DevproxServer, threading.Thread]] = []

    def _start(
        route_table: RouteTable,
        *,
        extra_headers=(),
        timeout: float = 5.0,
    ) -> str:
        dispatcher = Dispatcher(
            route_table,
            extra_headers=extra_headers,
            forwarder=ProxyForwarder(timeout=timeout),
        )
        server = DevproxServer(("127.0.0.1", 0), dispatcher)
        thread = threading.Thread(target=server.serve_forever, daemon=True)
        thread.start()
        started.append((server, thread))
        host, port = server.server_address[:2]
        return f"http://{host}:{port}"

    yield _start

    for server, thread in started:
        server.shutdown()
        server.server_close()
        server.dispatcher.close()
        thread.join(timeout=5)


@pytest.fixture
def raw_request() -> Callable[[str, str], Tuple[int, bytes]]:
    """Send a request line verbatim (no client-side path normalization)."""

    return _send_raw_request


def _send_raw_request(base_url: str, request_line: str) -> Tuple[int, bytes]:
    host, port = base_url.removeprefix("http://").split(":")
    with socket.create_connection((host, int(port)), timeout=5) as sock:
        sock.sendall(
            f"{request_line}\r\nHost: {host}\r\nConnection: close\r\n\r\n".encode()
        )
        chunks = []
        while True:
            data = sock.recv(65536)
            if not data:
                break
            chunks.append(data)
    response = b"".join(chunks)
    head, _, body = response.partition(b"\r\n\r\n")
    status = int(head.split(b" ", 2)[1])
    return status, body

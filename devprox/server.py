"""Threaded HTTP/1.1 server loop that hands every request to the dispatcher."""

from __future__ import annotations

import socket
from email.utils import formatdate
from http.server import BaseHTTPRequestHandler, ThreadingHTTPServer
from typing import BinaryIO, Iterator, Optional, Sequence, Tuple

import httpx
from loguru import logger

from devprox import __version__
from devprox.dispatcher import Dispatcher
from devprox.messages import IncomingRequest, OutgoingResponse
from devprox.proxy import DEFAULT_TIMEOUT_SECONDS, ProxyForwarder
from devprox.routes import RouteTable

READ_SIZE = 64 * 1024


class RequestBody:
    """Lazy view over the bytes of a request body still sitting on the socket.

    Handles both ``Content-Length`` framing and ``Transfer-Encoding: chunked``.
    The yielded chunks are the decoded payload.
    """

    def __init__(
        self, rfile: BinaryIO, *, length: Optional[int] = None, chunked: bool = False
    ) -> None:
        self._rfile = rfile
        self._remaining = length or 0
        self._chunked = chunked
        self.exhausted = not chunked and not self._remaining

    @classmethod
    def from_headers(cls, rfile: BinaryIO, headers) -> "RequestBody":
        transfer_encoding = (headers.get("Transfer-Encoding") or "").lower()
        if "chunked" in transfer_encoding:
            return cls(rfile, chunked=True)

        raw_length = headers.get("Content-Length")
        if raw_length is None:
            return cls(rfile)
        length = int(raw_length)
        if length < 0:
            raise ValueError(f"negative Content-Length: {raw_length}")
        return cls(rfile, length=length)

    def __iter__(self) -> Iterator[bytes]:
        if self.exhausted:
            return
        if self._chunked:
            yield from self._iter_chunked()
        else:
            yield from self._read_exactly(self._remaining)
        self.exhausted = True

    def _read_exactly(self, size: int) -> Iterator[bytes]:
        remaining = size
        while remaining > 0:
            chunk = self._rfile.read(min(READ_SIZE, remaining))
            if not chunk:
                raise ConnectionResetError("client closed the connection mid-body")
            remaining -= len(chunk)
            yield chunk

    def _iter_chunked(self) -> Iterator[bytes]:
        while True:
            size_line = self._rfile.readline(65537)
            if not size_line:
                raise ConnectionResetError("client closed the connection mid-body")
            size = int(size_line.split(b";", 1)[0].strip(), 16)
            if size == 0:
                break
            yield from self._read_exactly(size)
            self._rfile.readline(65537)

        # Trailer section ends with an empty line.
        while True:
            line = self._rfile.readline(65537)
            if line in (b"\r\n", b"\n", b""):
                break


class DevproxRequestHandler(BaseHTTPRequestHandler):
    protocol_version = "HTTP/1.1"
    server_version = f"devprox/{__version__}"

    def __getattr__(self, name: str):
        # BaseHTTPRequestHandler looks up do_<METHOD>; every method is dispatched.
        if name.startswith("do_"):
            return self._dispatch
        raise AttributeError(name)

    def _dispatch(self) -> None:
        try:
            body = RequestBody.from_headers(self.rfile, self.headers)
        except ValueError:
            self.send_error(400, "Malformed request body framing")
            return

        request = IncomingRequest(
            method=self.command,
            target=self.path,
            headers=httpx.Headers(list(self.headers.items())),
            body=body,
            client_address=self.client_address[:2],
        )
        response = self.server.dispatcher.handle(request)
        try:
            self._write_response(response)
        except (BrokenPipeError, ConnectionResetError) as exc:
            logger.info("Client {} went away: {}", self.address_string(), exc)
            self.close_connection = True
        except httpx.TransportError:
            # Headers are already out; the only signal left is a dropped connection.
            self.close_connection = True
        finally:
            response.close()

        if not body.exhausted:
            self.close_connection = True

    def _write_response(self, response: OutgoingResponse) -> None:
        headers = response.headers
        bodyless = (
            self.command == "HEAD"
            or response.status in (204, 304)
            or 100 <= response.status < 200
        )
        has_length = "content-length" in headers
        chunked = not bodyless and not has_length and self.request_version != "HTTP/1.0"
        if not bodyless and not has_length and not chunked:
            self.close_connection = True

        self.log_request(response.status)
        self.send_response_only(response.status)
        if "server" not in headers:
            self.send_header("Server", self.version_string())
        if "date" not in headers:
            self.send_header("Date", formatdate(usegmt=True))
        for name, value in headers.multi_items():
            self.send_header(name, value)
        if chunked:
            self.send_header("Transfer-Encoding", "chunked")
        if self.close_connection:
            self.send_header("Connection", "close")
        self.end_headers()

        if bodyless:
            return

        for chunk in response.body:
            if not chunk:
                continue
            if chunked:
                self.wfile.write(b"%X\r\n%s\r\n" % (len(chunk), chunk))
            else:
                self.wfile.write(chunk)
        if chunked:
            self.wfile.write(b"0\r\n\r\n")

    def log_message(self, format: str, *args) -> None:  # noqa: A002
        logger.info("{} - {}", self.address_string(), format % args)


class DevproxServer(ThreadingHTTPServer):
    """One thread per connection; the route table is shared read-only."""

    daemon_threads = True

    def __init__(
        self,
        server_address: Tuple[str, int],
        dispatcher: Dispatcher,
        handler_class=DevproxRequestHandler,
    ) -> None:
        if ":" in server_address[0]:
            self.address_family = socket.AF_INET6
        self.dispatcher = dispatcher
        super().__init__(server_address, handler_class)


def serve(
    route_table: RouteTable,
    *,
    extra_headers: Sequence[Tuple[str, str]] = (),
    timeout: Optional[float] = DEFAULT_TIMEOUT_SECONDS,
    verify: bool = True,
) -> None:
    """Run the server until interrupted."""

    dispatcher = Dispatcher(
        route_table,
        extra_headers=extra_headers,
        forwarder=ProxyForwarder(timeout=timeout, verify=verify),
    )
    try:
        server = DevproxServer(route_table.bind_address, dispatcher)
    except OSError:
        dispatcher.close()
        raise

    host, port = server.server_address[:2]
    logger.info("Serving {} on http://{}:{}", route_table.static_root, host, port)
    for rule in route_table.rules:
        logger.info("Proxying {} -> {}", rule.prefix, rule.upstream)

    try:
        server.serve_forever()
    except KeyboardInterrupt:
        pass
    finally:
        server.server_close()
        dispatcher.close()

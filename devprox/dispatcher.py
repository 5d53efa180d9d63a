"""Per-request entry point: route, delegate, then inject configured headers."""

from __future__ import annotations

from typing import Optional, Sequence, Tuple

import httpx
from loguru import logger

from devprox.errors import RequestError
from devprox.messages import IncomingRequest, OutgoingResponse
from devprox.proxy import ProxyForwarder
from devprox.routes import NotFoundTarget, ProxyTarget, RouteTable, StaticTarget
from devprox.static import StaticResolver


def error_response(status: int, reason: str, detail: str = "") -> OutgoingResponse:
    text = f"{status} {reason}"
    if detail and detail != reason:
        text = f"{text}: {detail}"
    payload = (text + "\n").encode("utf-8")
    headers = httpx.Headers(
        {
            "Content-Type": "text/plain; charset=utf-8",
            "Content-Length": str(len(payload)),
        }
    )
    return OutgoingResponse(status=status, headers=headers, body=[payload])


class Dispatcher:
    """Turns every ``IncomingRequest`` into an ``OutgoingResponse``.

    Per-request failures never escape ``handle``; they become the matching
    HTTP status so one broken upstream cannot take the server loop down.
    """

    def __init__(
        self,
        route_table: RouteTable,
        *,
        extra_headers: Sequence[Tuple[str, str]] = (),
        forwarder: Optional[ProxyForwarder] = None,
        resolver: Optional[StaticResolver] = None,
    ) -> None:
        self.route_table = route_table
        self.extra_headers = tuple(extra_headers)
        self.forwarder = forwarder or ProxyForwarder()
        self.resolver = resolver or StaticResolver(route_table.static_root)

    def handle(self, request: IncomingRequest) -> OutgoingResponse:
        target = self.route_table.match(request.path)
        try:
            response = self._delegate(target, request)
        except RequestError as exc:
            response = error_response(exc.status, exc.reason, exc.detail)
        except Exception:
            logger.exception("Unhandled error while serving {} {}", request.method, request.target)
            if isinstance(target, ProxyTarget):
                response = error_response(502, "Bad Gateway")
            else:
                response = error_response(500, "Internal Server Error")

        self.apply_extra_headers(response)
        return response

    def _delegate(self, target, request: IncomingRequest) -> OutgoingResponse:
        if isinstance(target, ProxyTarget):
            return self.forwarder.forward(target.rule, target.rewritten_path, request)
        if isinstance(target, StaticTarget):
            return self.resolver.resolve(target.path)
        if isinstance(target, NotFoundTarget):
            return self.resolver.resolve(None)
        raise TypeError(f"Unknown route target: {target!r}")

    def apply_extra_headers(self, response: OutgoingResponse) -> None:
        for name, value in self.extra_headers:
            response.headers[name] = value

    def close(self) -> None:
        self.forwarder.close()

"""Exception hierarchy shared by the router, resolver and forwarder."""

from __future__ import annotations


class DevproxError(Exception):
    """Base class for every error raised by devprox."""


class ConfigurationError(DevproxError):
    """Invalid settings or route table; the server refuses to start."""


class RequestError(DevproxError):
    """A per-request failure that maps onto an HTTP status code."""

    status = 500
    reason = "Internal Server Error"

    def __init__(self, detail: str = "") -> None:
        super().__init__(detail or self.reason)
        self.detail = detail or self.reason


class ForbiddenError(RequestError):
    status = 403
    reason = "Forbidden"


class NotFoundError(RequestError):
    status = 404
    reason = "Not Found"


class UpstreamUnreachableError(RequestError):
    status = 502
    reason = "Bad Gateway"


class UpstreamTimeoutError(RequestError):
    status = 504
    reason = "Gateway Timeout"

"""Forward matched requests to their upstream and stream the answer back."""

from __future__ import annotations

from typing import Iterator, List, Optional, Tuple

import httpx
from loguru import logger

from devprox.errors import UpstreamTimeoutError, UpstreamUnreachableError
from devprox.messages import IncomingRequest, OutgoingResponse
from devprox.routes import RouteRule

DEFAULT_TIMEOUT_SECONDS = 30.0

# Hop-by-hop headers that should NOT be forwarded (RFC 7230, section 6.1)
HOP_BY_HOP_HEADERS = {
    "connection",
    "keep-alive",
    "proxy-authenticate",
    "proxy-authorization",
    "proxy-connection",
    "te",
    "trailer",
    "trailers",
    "transfer-encoding",
    "upgrade",
}

# httpx adds these to every request unless told otherwise; a proxy must only
# send what the client sent.
_CLIENT_DEFAULT_HEADERS = ("accept", "accept-encoding", "user-agent")

# Recomputed for the upstream hop rather than copied from the client.
_REPLACED_REQUEST_HEADERS = {
    "expect",
    "host",
    "x-forwarded-for",
    "x-forwarded-host",
    "x-forwarded-proto",
}


def _connection_tokens(headers: httpx.Headers) -> set:
    tokens = set()
    for value in headers.get_list("connection", split_commas=True):
        token = value.strip().lower()
        if token:
            tokens.add(token)
    return tokens


def strip_hop_by_hop(headers: httpx.Headers) -> List[Tuple[str, str]]:
    """Drop hop-by-hop headers, including any named in ``Connection``."""
    excluded = HOP_BY_HOP_HEADERS | _connection_tokens(headers)
    return [
        (name, value)
        for name, value in headers.multi_items()
        if name.lower() not in excluded
    ]


def prepare_headers(request: IncomingRequest) -> List[Tuple[str, str]]:
    """Headers for the upstream request.

    ``Host`` is left out so the client derives it from the upstream URL.
    """
    headers = [
        (name, value)
        for name, value in strip_hop_by_hop(request.headers)
        if name.lower() not in _REPLACED_REQUEST_HEADERS
    ]
    if "transfer-encoding" in request.headers:
        # The body is re-framed upstream; a stale length would corrupt it.
        headers = [(name, value) for name, value in headers if name.lower() != "content-length"]

    client_ip = request.client_address[0] if request.client_address else "unknown"
    existing_xff = request.headers.get("x-forwarded-for", "")
    headers.append(("X-Forwarded-For", f"{existing_xff}, {client_ip}".strip(", ")))
    if "host" in request.headers:
        headers.append(("X-Forwarded-Host", request.headers["host"]))
    headers.append(("X-Forwarded-Proto", request.scheme))
    return headers


def build_target_url(rule: RouteRule, rewritten_path: str, query: str) -> str:
    url = rule.origin + rewritten_path
    if query:
        url = f"{url}?{query}"
    return url


class UpstreamBody:
    """Relays the raw upstream body and releases the connection when closed."""

    def __init__(self, response: httpx.Response) -> None:
        self._response = response

    def __iter__(self) -> Iterator[bytes]:
        try:
            for chunk in self._response.iter_raw():
                yield chunk
        except httpx.TransportError as exc:
            logger.warning(
                "Upstream {} failed mid-stream: {}", self._response.url, exc
            )
            raise
        finally:
            self.close()

    def close(self) -> None:
        self._response.close()


class ProxyForwarder:
    """Sends requests upstream over a shared, pooled ``httpx.Client``.

    Failures are never retried: a refused connection or DNS failure becomes
    ``UpstreamUnreachableError`` and a timeout ``UpstreamTimeoutError``.
    """

    def __init__(
        self,
        *,
        timeout: Optional[float] = DEFAULT_TIMEOUT_SECONDS,
        verify: bool = True,
        client: Optional[httpx.Client] = None,
    ) -> None:
        if client is None:
            client = httpx.Client(
                timeout=httpx.Timeout(timeout),
                follow_redirects=False,
                trust_env=False,
                verify=verify,
            )
        for name in _CLIENT_DEFAULT_HEADERS:
            client.headers.pop(name, None)
        self._client = client

    def forward(
        self, rule: RouteRule, rewritten_path: str, request: IncomingRequest
    ) -> OutgoingResponse:
        target_url = build_target_url(rule, rewritten_path, request.query)
        logger.debug("Proxying {} {} -> {}", request.method, request.target, target_url)

        upstream_request = self._client.build_request(
            request.method,
            target_url,
            headers=prepare_headers(request),
            content=iter(request.body) if request.has_body else None,
        )

        try:
            response = self._client.send(upstream_request, stream=True)
        except httpx.TimeoutException as exc:
            logger.error("Proxy timeout for {}: {}", target_url, exc)
            raise UpstreamTimeoutError(f"{rule.origin} did not respond in time") from exc
        except httpx.TransportError as exc:
            logger.error("Failed to reach upstream {}: {}", target_url, exc)
            raise UpstreamUnreachableError(f"cannot connect to {rule.origin}") from exc

        # The timeout covers connect and response start; body reads may idle freely.
        upstream_request.extensions["timeout"] = {
            **upstream_request.extensions.get("timeout", {}),
            "read": None,
        }

        return OutgoingResponse(
            status=response.status_code,
            headers=httpx.Headers(strip_hop_by_hop(response.headers)),
            body=UpstreamBody(response),
        )

    def close(self) -> None:
        self._client.close()

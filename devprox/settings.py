"""Server settings resolved from CLI options and ``DEVPROX_*`` environment variables."""

from __future__ import annotations

import os
from dataclasses import dataclass
from pathlib import Path
from typing import Mapping, Optional, Sequence, Tuple

from loguru import logger

from devprox.errors import ConfigurationError
from devprox.proxy import DEFAULT_TIMEOUT_SECONDS
from devprox.routes import RouteTable

DEFAULT_BIND = ("localhost", 8080)
CORS_HEADER = ("Access-Control-Allow-Origin", "*")

_TRUTHY = {"1", "true", "yes", "on"}


def parse_bind(value: str) -> Tuple[str, int]:
    """Parse ``host:port`` (``[v6addr]:port`` for IPv6, bare ``port`` for localhost)."""

    raw = value.strip()
    if not raw:
        raise ConfigurationError("Bind address is empty")

    if raw.isdigit():
        host, port_text = DEFAULT_BIND[0], raw
    elif raw.startswith("["):
        host, sep, port_text = raw[1:].partition("]:")
        if not sep or not host:
            raise ConfigurationError(f"Invalid IPv6 bind address: {value!r}")
    else:
        host, sep, port_text = raw.rpartition(":")
        if not sep:
            raise ConfigurationError(
                f"Bind address must look like host:port, got {value!r}"
            )
        if ":" in host:
            raise ConfigurationError(
                f"Wrap IPv6 bind addresses in brackets, e.g. [::1]:8080, got {value!r}"
            )

    try:
        port = int(port_text)
    except ValueError as exc:
        raise ConfigurationError(f"Invalid port in bind address {value!r}") from exc
    if not 1 <= port <= 65535:
        raise ConfigurationError(f"Port out of range in bind address {value!r}")
    return host, port


def parse_proxy_spec(value: str) -> Tuple[str, str]:
    """Parse ``PREFIX=URL`` into a ``(prefix, upstream)`` pair."""

    prefix, sep, upstream = value.strip().partition("=")
    prefix = prefix.strip()
    upstream = upstream.strip()
    if not sep or not prefix or not upstream:
        raise ConfigurationError(
            f"Proxy rules look like PREFIX=URL (e.g. /api=http://localhost:3000/api), got {value!r}"
        )
    return prefix, upstream


def parse_header_spec(value: str) -> Tuple[str, str]:
    """Parse ``Name: value`` into a header pair."""

    name, sep, header_value = value.partition(":")
    name = name.strip()
    if not sep or not name or any(ch.isspace() for ch in name):
        raise ConfigurationError(
            f"Headers look like 'Name: value' (e.g. 'Access-Control-Allow-Origin: *'), got {value!r}"
        )
    return name, header_value.strip()


def _split(raw: Optional[str], separator: str) -> list[str]:
    if raw is None:
        return []
    return [part.strip() for part in raw.split(separator) if part.strip()]


def resolve_timeout_seconds(raw: Optional[str]) -> Optional[float]:
    if raw is None or str(raw).strip() == "":
        return DEFAULT_TIMEOUT_SECONDS

    try:
        seconds = float(str(raw).strip())
    except ValueError:
        logger.warning(
            "Invalid DEVPROX_TIMEOUT_SECONDS={!r}; expected number of seconds; using {}",
            raw,
            DEFAULT_TIMEOUT_SECONDS,
        )
        return DEFAULT_TIMEOUT_SECONDS

    if seconds <= 0:
        return None
    return seconds


@dataclass(frozen=True)
class ServerSettings:
    root: Path = Path(".")
    bind: Tuple[str, int] = DEFAULT_BIND
    proxies: Tuple[Tuple[str, str], ...] = ()
    headers: Tuple[Tuple[str, str], ...] = ()
    timeout: Optional[float] = DEFAULT_TIMEOUT_SECONDS
    verify: bool = True

    def to_route_table(self) -> RouteTable:
        return RouteTable.build(self.proxies, self.root, self.bind)


def resolve_settings(
    *,
    env: Optional[Mapping[str, str]] = None,
    root: Optional[Path] = None,
    bind: Optional[str] = None,
    proxies: Sequence[str] = (),
    headers: Sequence[str] = (),
    cors: bool = False,
    timeout: Optional[float] = None,
    insecure: bool = False,
) -> ServerSettings:
    """Merge CLI values over the environment.

    Repeated CLI options (``proxies``, ``headers``) replace the environment
    list entirely rather than extending it.
    """

    source = dict(env) if env is not None else dict(os.environ)

    proxy_specs = list(proxies) or _split(source.get("DEVPROX_PROXY"), ",")
    header_specs = list(headers) or _split(source.get("DEVPROX_HEADERS"), ";")

    parsed_headers = [parse_header_spec(spec) for spec in header_specs]
    env_cors = (source.get("DEVPROX_CORS") or "").strip().lower() in _TRUTHY
    if (cors or env_cors) and not any(
        name.lower() == CORS_HEADER[0].lower() for name, _ in parsed_headers
    ):
        parsed_headers.append(CORS_HEADER)

    if timeout is not None:
        resolved_timeout = timeout if timeout > 0 else None
    else:
        resolved_timeout = resolve_timeout_seconds(source.get("DEVPROX_TIMEOUT_SECONDS"))

    return ServerSettings(
        root=root if root is not None else Path(source.get("DEVPROX_ROOT") or "."),
        bind=parse_bind(bind or source.get("DEVPROX_BIND") or "%s:%d" % DEFAULT_BIND),
        proxies=tuple(parse_proxy_spec(spec) for spec in proxy_specs),
        headers=tuple(parsed_headers),
        timeout=resolved_timeout,
        verify=not insecure,
    )

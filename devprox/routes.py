"""Route table: ordered proxy rules plus the static-serving fallback."""

from __future__ import annotations

import os
from dataclasses import dataclass
from pathlib import Path
from typing import Iterable, Optional, Tuple, Union

import httpx

from devprox.errors import ConfigurationError

_DEFAULT_PORTS = {"http": 80, "https": 443}


@dataclass(frozen=True)
class RouteRule:
    prefix: str
    upstream: httpx.URL

    @classmethod
    def parse(cls, prefix: str, upstream: str) -> "RouteRule":
        if not prefix.startswith("/"):
            raise ConfigurationError(
                f"Proxy prefix must start with '/': {prefix!r}"
            )

        try:
            url = httpx.URL(upstream)
        except (httpx.InvalidURL, TypeError, ValueError) as exc:
            raise ConfigurationError(
                f"Invalid upstream URL for {prefix}: {upstream!r} ({exc})"
            ) from exc

        if url.scheme not in _DEFAULT_PORTS:
            raise ConfigurationError(
                f"Upstream for {prefix} must be an http:// or https:// URL: {upstream!r}"
            )
        if not url.host:
            raise ConfigurationError(
                f"Upstream for {prefix} is missing a host: {upstream!r}"
            )
        if url.query or url.fragment:
            raise ConfigurationError(
                f"Upstream for {prefix} must not carry a query or fragment: {upstream!r}"
            )

        return cls(prefix=prefix, upstream=url)

    @property
    def port(self) -> int:
        return self.upstream.port or _DEFAULT_PORTS[self.upstream.scheme]

    @property
    def origin(self) -> str:
        """``scheme://host:port`` of the upstream, with the port always spelled out."""
        host = self.upstream.host
        if ":" in host:
            host = f"[{host}]"
        return f"{self.upstream.scheme}://{host}:{self.port}"

    def rewrite(self, path: str) -> str:
        """Swap the matched prefix of ``path`` for the upstream's base path."""
        base = self.upstream.path or "/"
        remainder = path[len(self.prefix) :]
        if not remainder:
            return base
        if remainder.startswith("/"):
            return base.rstrip("/") + remainder
        return base + remainder


@dataclass(frozen=True)
class ProxyTarget:
    rule: RouteRule
    rewritten_path: str


@dataclass(frozen=True)
class StaticTarget:
    path: str


@dataclass(frozen=True)
class NotFoundTarget:
    path: str


ResolvedTarget = Union[ProxyTarget, StaticTarget, NotFoundTarget]


@dataclass(frozen=True)
class RouteTable:
    """Immutable routing state shared by every request handler thread.

    ``rules`` are kept in match order: longest prefix first, configuration
    order among prefixes of equal length.
    """

    rules: Tuple[RouteRule, ...]
    static_root: Path
    bind_address: Tuple[str, int]

    @classmethod
    def build(
        cls,
        proxies: Iterable[Tuple[str, str]],
        static_root: Union[str, Path],
        bind_address: Tuple[str, int] = ("localhost", 8080),
    ) -> "RouteTable":
        rules = []
        seen = set()
        for prefix, upstream in proxies:
            if prefix in seen:
                raise ConfigurationError(f"Duplicate proxy prefix: {prefix}")
            seen.add(prefix)
            rules.append(RouteRule.parse(prefix, upstream))

        # sorted() is stable, so equal-length prefixes keep their configured order.
        ordered = tuple(sorted(rules, key=lambda rule: len(rule.prefix), reverse=True))

        return cls(
            rules=ordered,
            static_root=_validate_static_root(static_root),
            bind_address=bind_address,
        )

    def find_rule(self, path: str) -> Optional[RouteRule]:
        for rule in self.rules:
            if path.startswith(rule.prefix):
                return rule
        return None

    def match(self, path: str) -> ResolvedTarget:
        """Resolve a request path (query string already removed) to a target."""
        if not path.startswith("/") or "\x00" in path:
            return NotFoundTarget(path)

        rule = self.find_rule(path)
        if rule is None:
            return StaticTarget(path)
        return ProxyTarget(rule=rule, rewritten_path=rule.rewrite(path))


def _validate_static_root(static_root: Union[str, Path]) -> Path:
    root = Path(static_root).expanduser()
    try:
        resolved = root.resolve(strict=True)
    except (FileNotFoundError, RuntimeError) as exc:
        raise ConfigurationError(f"Static root does not exist: {root}") from exc

    if not resolved.is_dir():
        raise ConfigurationError(f"Static root is not a directory: {root}")
    if not os.access(resolved, os.R_OK | os.X_OK):
        raise ConfigurationError(f"Static root is not readable: {root}")
    return resolved

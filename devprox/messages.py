"""Request and response values passed between the server loop and the core."""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Iterable, Optional, Tuple

import httpx


@dataclass
class IncomingRequest:
    method: str
    target: str
    headers: httpx.Headers = field(default_factory=httpx.Headers)
    body: Iterable[bytes] = ()
    client_address: Optional[Tuple[str, int]] = None
    scheme: str = "http"

    @property
    def path(self) -> str:
        return self.target.split("?", 1)[0]

    @property
    def query(self) -> str:
        _, _, query = self.target.partition("?")
        return query

    @property
    def has_body(self) -> bool:
        return "content-length" in self.headers or "transfer-encoding" in self.headers


@dataclass
class OutgoingResponse:
    """Status, headers and a lazily produced body.

    ``body`` is an iterable of byte chunks. When it also has a ``close``
    method, ``close()`` releases whatever it streams from (a file handle or
    an upstream connection).
    """

    status: int
    headers: httpx.Headers = field(default_factory=httpx.Headers)
    body: Iterable[bytes] = ()

    def close(self) -> None:
        close = getattr(self.body, "close", None)
        if close is not None:
            close()

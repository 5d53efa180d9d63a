"""Resolve request paths against the static root and stream files back."""

from __future__ import annotations

import mimetypes
import os
from email.utils import formatdate
from pathlib import Path
from typing import BinaryIO, Iterator, Optional
from urllib.parse import unquote

import httpx
from loguru import logger

from devprox.errors import ForbiddenError, NotFoundError
from devprox.messages import OutgoingResponse

INDEX_FILE = "index.html"
CHUNK_SIZE = 64 * 1024
DEFAULT_CONTENT_TYPE = "application/octet-stream"


class FileBody:
    """Closeable chunk iterator that owns an open file handle."""

    def __init__(self, handle: BinaryIO, chunk_size: int = CHUNK_SIZE) -> None:
        self._handle = handle
        self._chunk_size = chunk_size

    def __iter__(self) -> Iterator[bytes]:
        try:
            while True:
                chunk = self._handle.read(self._chunk_size)
                if not chunk:
                    break
                yield chunk
        finally:
            self.close()

    def close(self) -> None:
        self._handle.close()


class StaticResolver:
    def __init__(self, root: Path) -> None:
        self.root = root

    def canonicalize(self, request_path: str) -> Path:
        """Map a URL path onto the filesystem, refusing anything outside the root."""
        relative = unquote(request_path.split("?", 1)[0].split("#", 1)[0])
        if "\x00" in relative:
            raise NotFoundError(request_path)

        candidate = self.root.joinpath(*[part for part in relative.split("/") if part])
        try:
            resolved = candidate.resolve()
        except (OSError, RuntimeError) as exc:
            raise NotFoundError(request_path) from exc

        self._ensure_inside_root(resolved, request_path)
        return resolved

    def _ensure_inside_root(self, resolved: Path, request_path: str) -> None:
        if resolved != self.root and self.root not in resolved.parents:
            logger.warning("Rejected path outside static root: {}", request_path)
            raise ForbiddenError(request_path)

    def resolve(self, request_path: Optional[str]) -> OutgoingResponse:
        """Return an ``OutgoingResponse`` for ``request_path``.

        ``None`` stands for a request target that never named a file; it is
        reported as not found like any other missing path.
        """
        if request_path is None:
            raise NotFoundError()

        path = self.canonicalize(request_path)
        if path.is_dir():
            path = (path / INDEX_FILE).resolve()
            self._ensure_inside_root(path, request_path)

        try:
            handle = path.open("rb")
        except (FileNotFoundError, NotADirectoryError, IsADirectoryError):
            raise NotFoundError(request_path)
        except PermissionError:
            logger.debug("Static file is not readable: {}", path)
            raise NotFoundError(request_path)

        try:
            stat = os.fstat(handle.fileno())
        except OSError:
            handle.close()
            raise

        content_type, _ = mimetypes.guess_type(path.name)
        headers = httpx.Headers(
            {
                "Content-Type": content_type or DEFAULT_CONTENT_TYPE,
                "Content-Length": str(stat.st_size),
                "Last-Modified": formatdate(stat.st_mtime, usegmt=True),
            }
        )
        return OutgoingResponse(status=200, headers=headers, body=FileBody(handle))

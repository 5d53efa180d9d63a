"""Public package interface for devprox, a static file server and dev proxy."""

from importlib import metadata

try:
    __version__ = metadata.version("devprox")
except metadata.PackageNotFoundError:  # pragma: no cover - defensive fallback
    __version__ = "0.0.0"

__all__ = ["__version__"]

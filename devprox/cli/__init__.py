"""Command-line interface for devprox."""

from devprox.cli.main import app, main

__all__ = ["app", "main"]

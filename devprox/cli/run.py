from __future__ import annotations

from pathlib import Path
from typing import List, Optional

import typer
from loguru import logger
from rich.console import Console
from rich.markup import escape
from rich.table import Table

from devprox import server
from devprox.errors import ConfigurationError
from devprox.routes import RouteTable
from devprox.settings import ServerSettings, resolve_settings

console = Console()

_ROOT_OPTION = typer.Option(
    None,
    "--root",
    "-r",
    help="Directory to serve static files from. [env: DEVPROX_ROOT, default: .]",
)
_BIND_OPTION = typer.Option(
    None,
    "--bind",
    "-b",
    help="host:port to listen on. [env: DEVPROX_BIND, default: localhost:8080]",
)
_PROXY_OPTION = typer.Option(
    None,
    "--proxy",
    "-p",
    help=(
        "Forward a path prefix upstream, as PREFIX=URL. Repeatable. "
        "Example: --proxy /api=http://localhost:3000/api [env: DEVPROX_PROXY]"
    ),
)
_HEADER_OPTION = typer.Option(
    None,
    "--header",
    "-H",
    help="Response header added to every response, as 'Name: value'. Repeatable. [env: DEVPROX_HEADERS]",
)
_CORS_OPTION = typer.Option(
    False,
    "--cors",
    help="Shortcut for --header 'Access-Control-Allow-Origin: *'. [env: DEVPROX_CORS]",
)
_TIMEOUT_OPTION = typer.Option(
    None,
    "--timeout",
    help="Seconds to wait on an upstream before answering 504; 0 disables. [env: DEVPROX_TIMEOUT_SECONDS, default: 30]",
)


def _load(
    *,
    root: Optional[Path],
    bind: Optional[str],
    proxy: Optional[List[str]],
    header: Optional[List[str]],
    cors: bool,
    timeout: Optional[float],
    insecure: bool = False,
) -> tuple[ServerSettings, RouteTable]:
    try:
        settings = resolve_settings(
            root=root,
            bind=bind,
            proxies=proxy or (),
            headers=header or (),
            cors=cors,
            timeout=timeout,
            insecure=insecure,
        )
        route_table = settings.to_route_table()
    except ConfigurationError as exc:
        logger.error("Invalid configuration: {}", exc)
        console.print(f"[red]Invalid configuration:[/] {escape(str(exc))}")
        raise typer.Exit(code=2) from exc
    return settings, route_table


def serve(
    root: Optional[Path] = _ROOT_OPTION,
    bind: Optional[str] = _BIND_OPTION,
    proxy: Optional[List[str]] = _PROXY_OPTION,
    header: Optional[List[str]] = _HEADER_OPTION,
    cors: bool = _CORS_OPTION,
    timeout: Optional[float] = _TIMEOUT_OPTION,
    insecure: bool = typer.Option(
        False,
        "--insecure",
        help="Skip TLS certificate verification for https:// upstreams.",
    ),
) -> None:
    """Serve a directory and proxy configured prefixes to upstream dev servers."""

    settings, route_table = _load(
        root=root,
        bind=bind,
        proxy=proxy,
        header=header,
        cors=cors,
        timeout=timeout,
        insecure=insecure,
    )
    host, port = route_table.bind_address
    console.print(
        f"[bold green]devprox[/] serving [bold]{escape(str(route_table.static_root))}[/] on http://{host}:{port}"
    )
    try:
        server.serve(
            route_table,
            extra_headers=settings.headers,
            timeout=settings.timeout,
            verify=settings.verify,
        )
    except OSError as exc:
        logger.error("Could not listen on {}:{}: {}", host, port, exc)
        console.print(f"[red]Could not listen on {host}:{port}:[/] {escape(str(exc))}")
        raise typer.Exit(code=1) from exc


def routes(
    root: Optional[Path] = _ROOT_OPTION,
    bind: Optional[str] = _BIND_OPTION,
    proxy: Optional[List[str]] = _PROXY_OPTION,
    header: Optional[List[str]] = _HEADER_OPTION,
    cors: bool = _CORS_OPTION,
    timeout: Optional[float] = _TIMEOUT_OPTION,
) -> None:
    """Print the effective route table in match order without serving."""

    settings, route_table = _load(
        root=root,
        bind=bind,
        proxy=proxy,
        header=header,
        cors=cors,
        timeout=timeout,
    )

    table = Table(title="Proxy rules (first match wins)")
    table.add_column("Prefix", style="cyan")
    table.add_column("Upstream")
    table.add_column("Origin", style="dim")
    for rule in route_table.rules:
        table.add_row(rule.prefix, str(rule.upstream), rule.origin)
    console.print(table)

    host, port = route_table.bind_address
    console.print(f"Static root: {escape(str(route_table.static_root))}")
    console.print(f"Bind:        {host}:{port}")
    if settings.headers:
        console.print("Extra headers:")
        for name, value in settings.headers:
            console.print(f"  {name}: {value}", markup=False)
    timeout_text = "disabled" if settings.timeout is None else f"{settings.timeout:g}s"
    console.print(f"Upstream timeout: {timeout_text}")

from __future__ import annotations

from pathlib import Path
from typing import Any, Dict

import pytest
from typer.testing import CliRunner

from devprox import cli
from devprox import server as server_module


def test_routes_prints_rules_in_match_order(runner: CliRunner, static_root: Path) -> None:
    result = runner.invoke(
        cli.app,
        [
            "routes",
            "--root",
            str(static_root),
            "--proxy",
            "/api=http://localhost:3000/api",
            "--proxy",
            "/api/v2=http://localhost:4000",
            "--cors",
        ],
    )

    assert result.exit_code == 0
    assert result.output.index("/api/v2") < result.output.index("http://localhost:3000/api")
    assert "Access-Control-Allow-Origin: *" in result.output
    assert "localhost:8080" in result.output


def test_routes_reads_proxy_rules_from_env(
    runner: CliRunner, static_root: Path, monkeypatch: pytest.MonkeyPatch
) -> None:
    monkeypatch.setenv("DEVPROX_PROXY", "/graphql=http://localhost:4000/graphql")
    monkeypatch.setenv("DEVPROX_ROOT", str(static_root))

    result = runner.invoke(cli.app, ["routes"])

    assert result.exit_code == 0
    assert "/graphql" in result.output


def test_invalid_configuration_exits_with_code_2(runner: CliRunner, static_root: Path) -> None:
    result = runner.invoke(
        cli.app,
        [
            "routes",
            "--root",
            str(static_root),
            "--proxy",
            "/api=http://localhost:3000",
            "--proxy",
            "/api=http://localhost:4000",
        ],
    )

    assert result.exit_code == 2
    assert "Duplicate proxy prefix" in result.output


def test_missing_root_refuses_to_serve(
    runner: CliRunner, tmp_path: Path, monkeypatch: pytest.MonkeyPatch
) -> None:
    called = []
    monkeypatch.setattr(server_module, "serve", lambda *a, **k: called.append(a))

    result = runner.invoke(cli.app, ["serve", "--root", str(tmp_path / "missing")])

    assert result.exit_code == 2
    assert called == []


def test_serve_passes_settings_to_server_loop(
    runner: CliRunner, static_root: Path, monkeypatch: pytest.MonkeyPatch
) -> None:
    seen: Dict[str, Any] = {}

    def fake_serve(route_table, **kwargs) -> None:
        seen["route_table"] = route_table
        seen.update(kwargs)

    monkeypatch.setattr(server_module, "serve", fake_serve)

    result = runner.invoke(
        cli.app,
        [
            "serve",
            "--root",
            str(static_root),
            "--bind",
            "127.0.0.1:9999",
            "-p",
            "/api=http://localhost:3000/api",
            "-H",
            "X-Dev: 1",
            "--cors",
            "--timeout",
            "2.5",
            "--insecure",
        ],
    )

    assert result.exit_code == 0
    table = seen["route_table"]
    assert table.bind_address == ("127.0.0.1", 9999)
    assert table.static_root == static_root.resolve()
    assert [rule.prefix for rule in table.rules] == ["/api"]
    assert seen["extra_headers"] == (("X-Dev", "1"), ("Access-Control-Allow-Origin", "*"))
    assert seen["timeout"] == 2.5
    assert seen["verify"] is False


def test_serve_reports_bind_failures(
    runner: CliRunner, static_root: Path, monkeypatch: pytest.MonkeyPatch
) -> None:
    def fake_serve(route_table, **kwargs) -> None:
        raise OSError(98, "Address already in use")

    monkeypatch.setattr(server_module, "serve", fake_serve)

    result = runner.invoke(cli.app, ["serve", "--root", str(static_root)])

    assert result.exit_code == 1
    assert "Address already in use" in result.output

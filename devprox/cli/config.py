from __future__ import annotations

from pathlib import Path
from typing import Dict

import questionary
import typer

from devprox.env import CONSUMED_ENV_VARS, loaded_env_file_paths, read_env_file
from devprox.utils import default_env_file_path, default_log_dir

app = typer.Typer(help="Manage devprox configuration values.")
_KNOWN_ENV_KEYS = CONSUMED_ENV_VARS
_KNOWN_ENV_KEYS_SET = set(_KNOWN_ENV_KEYS)


def _write_env_file(path: Path, values: Dict[str, str]) -> None:
    path.parent.mkdir(parents=True, exist_ok=True)

    ordered_keys = [key for key in _KNOWN_ENV_KEYS if key in values]
    ordered_keys.extend(key for key in sorted(values) if key not in _KNOWN_ENV_KEYS_SET)

    lines = [f"{key}={_quote(values[key])}" for key in ordered_keys]
    path.write_text("\n".join(lines) + "\n")


def _quote(value: str) -> str:
    # Header specs contain spaces and ';', which dotenv only keeps when quoted.
    if value == "" or value.replace("_", "").replace("-", "").replace(".", "").isalnum():
        return value
    escaped = value.replace("\\", "\\\\").replace('"', '\\"')
    return f'"{escaped}"'


def _ask_text(*, message: str, default: str = "") -> str:
    try:
        answer = questionary.text(message, default=default).ask()
    except KeyboardInterrupt as exc:
        raise typer.Exit(code=1) from exc

    if answer is None:
        raise typer.Exit(code=1)
    return str(answer).strip()


def _ask_select_key(*, message: str) -> str:
    try:
        answer = questionary.select(message, choices=list(_KNOWN_ENV_KEYS)).ask()
    except KeyboardInterrupt as exc:
        raise typer.Exit(code=1) from exc

    if answer is None:
        raise typer.Exit(code=1)
    return str(answer).strip()


def _normalize_known_key(raw_key: str) -> str:
    key = raw_key.strip().upper()
    if key == "":
        raise typer.BadParameter("Key cannot be empty")
    if key not in _KNOWN_ENV_KEYS_SET:
        known = ", ".join(_KNOWN_ENV_KEYS)
        raise typer.BadParameter(f"Unknown key: {key}. Allowed keys: {known}")
    return key


@app.command("paths")
def config_paths() -> None:
    """Print env/config paths used by devprox."""

    loaded_envs = loaded_env_file_paths()
    typer.echo("Loaded .env files:")
    if loaded_envs:
        for path in loaded_envs:
            typer.echo(f"  {path}")
    else:
        typer.echo("  (none)")

    typer.echo("Default paths:")
    typer.echo(f"  config: {default_env_file_path()}")
    typer.echo(f"  logs:   {default_log_dir()}")


@app.command("init")
def init_config(
    force: bool = typer.Option(
        False,
        "--force",
        help="Overwrite an existing .env file instead of merging into it.",
    )
) -> None:
    """Interactively initialize the devprox .env file."""

    env_path = default_env_file_path()
    existing = {} if force else read_env_file(env_path)

    values = dict(existing)
    values["DEVPROX_ROOT"] = _ask_text(
        message="DEVPROX_ROOT (directory to serve)",
        default=existing.get("DEVPROX_ROOT", "."),
    )
    values["DEVPROX_BIND"] = _ask_text(
        message="DEVPROX_BIND (host:port)",
        default=existing.get("DEVPROX_BIND", "localhost:8080"),
    )
    values["DEVPROX_PROXY"] = _ask_text(
        message="DEVPROX_PROXY (comma-separated PREFIX=URL)",
        default=existing.get("DEVPROX_PROXY", "/api=http://localhost:3000/api"),
    )

    _write_env_file(env_path, values)
    typer.echo(f"Wrote config: {env_path}")


@app.command("set")
def set_config_value(
    key: str | None = typer.Argument(
        None,
        help="Environment variable key (must be a known devprox env var).",
    ),
    value: str | None = typer.Argument(
        None,
        help="Environment variable value. If omitted, you'll be prompted.",
    ),
    interactive: bool = typer.Option(
        False,
        "--interactive",
        "-i",
        help="Use interactive prompts to choose key/value. Pure CLI mode when disabled.",
    ),
) -> None:
    """Set or update a single key in the default devprox .env file."""

    env_path = default_env_file_path()
    values = read_env_file(env_path)

    selected_key: str
    if interactive:
        selected_key = (
            _normalize_known_key(key)
            if key is not None
            else _ask_select_key(message="Select environment variable")
        )
    else:
        if key is None:
            raise typer.BadParameter(
                "Provide KEY and VALUE for pure CLI mode, or pass --interactive."
            )
        selected_key = _normalize_known_key(key)

    selected_value = value
    if selected_value is None:
        selected_value = _ask_text(
            message=selected_key,
            default=values.get(selected_key, ""),
        )

    values[selected_key] = selected_value
    _write_env_file(env_path, values)
    typer.echo(f"Updated {selected_key} in {env_path}")

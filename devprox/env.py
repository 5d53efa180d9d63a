from __future__ import annotations

import os
from pathlib import Path
from typing import Dict, Tuple

from dotenv import dotenv_values
from loguru import logger

from devprox.utils import default_env_file_path

# Every environment variable devprox reads, in the order `config set` writes them.
CONSUMED_ENV_VARS = (
    "DEVPROX_ROOT",
    "DEVPROX_BIND",
    "DEVPROX_PROXY",
    "DEVPROX_HEADERS",
    "DEVPROX_CORS",
    "DEVPROX_TIMEOUT_SECONDS",
    "DEVPROX_LOG_LEVEL",
    "DEVPROX_LOG_DIR",
)

_LOADED_ENV_FILES: Tuple[Path, ...] = ()


def cwd_env_file_path() -> Path:
    return Path.cwd() / ".env"


def platform_env_file_path() -> Path:
    return default_env_file_path()


def _apply_env_values(
    values: Dict[str, str],
    *,
    preserve_keys: set[str],
    allow_override: bool,
) -> tuple[int, int, int, int]:
    """Apply values to os.environ.

    Behavior:
    - Keys present in preserve_keys are never modified.
    - If allow_override=True, keys not in preserve_keys may override existing values.

    Returns:
        (applied_new, overridden_existing, skipped_preserved, skipped_existing)
    """

    applied_new = 0
    overridden_existing = 0
    skipped_preserved = 0
    skipped_existing = 0

    for key, value in values.items():
        if key in preserve_keys:
            skipped_preserved += 1
            continue

        if key in os.environ:
            if allow_override:
                os.environ[key] = value
                overridden_existing += 1
            else:
                skipped_existing += 1
            continue

        os.environ[key] = value
        applied_new += 1

    return applied_new, overridden_existing, skipped_preserved, skipped_existing


def read_env_file(path: Path) -> Dict[str, str]:
    """Parse a .env file, skipping keys without a value; missing files read as empty."""
    if not path.exists():
        return {}
    parsed = dotenv_values(path)
    return {k: v for k, v in parsed.items() if k is not None and v is not None}


def load_env_files() -> Tuple[Path, ...]:
    """Load env vars from both platform and CWD .env files.

    Precedence (highest to lowest):
    1. Existing os.environ
    2. CWD .env
    3. platformdirs user_config .env

    Returns the paths that existed and were read, in load order.
    """

    global _LOADED_ENV_FILES

    # Capture what was already present so we never override a shell-provided value.
    baseline_keys = set(os.environ.keys())
    loaded = []

    # Apply lowest-precedence first; the CWD file may override the platform file.
    for path, allow_override in (
        (platform_env_file_path(), False),
        (cwd_env_file_path(), True),
    ):
        values = read_env_file(path)
        if not values:
            continue
        loaded.append(path)
        applied_new, overridden, preserved, skipped_existing = _apply_env_values(
            values,
            preserve_keys=baseline_keys,
            allow_override=allow_override,
        )
        logger.debug(
            "Loaded env vars from {} (applied_new={}, overridden={}, preserved_shell={}, skipped_existing={}, total={})",
            path,
            applied_new,
            overridden,
            preserved,
            skipped_existing,
            len(values),
        )

    _LOADED_ENV_FILES = tuple(loaded)
    return _LOADED_ENV_FILES


def loaded_env_file_paths() -> Tuple[Path, ...]:
    return _LOADED_ENV_FILES

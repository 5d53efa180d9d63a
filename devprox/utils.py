from __future__ import annotations

import os
from pathlib import Path

from platformdirs import PlatformDirs

_APP_NAME = "devprox"
_PLATFORM_DIRS = PlatformDirs(appname=_APP_NAME)

LOG_DIR_ENV_VAR = "DEVPROX_LOG_DIR"


def default_config_dir() -> Path:
    return Path(_PLATFORM_DIRS.user_config_path)


def default_env_file_path() -> Path:
    """The user-level ``.env`` that ``devprox config set`` writes to."""
    return default_config_dir() / ".env"


def default_log_dir() -> Path:
    override = os.getenv(LOG_DIR_ENV_VAR)
    if override:
        return Path(override)
    return Path(_PLATFORM_DIRS.user_log_path)

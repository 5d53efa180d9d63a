from __future__ import annotations

import datetime as dt
import sys
from pathlib import Path
from typing import Optional

from loguru import logger

from devprox.env import loaded_env_file_paths

_CONSOLE_FORMAT = "<green>{time:HH:mm:ss}</green> | <level>{level: <8}</level> | {message}"
_FILE_FORMAT = "{time:YYYY-MM-DD HH:mm:ss.SSS} | {level: <8} | {thread.name} | {message}"


def log_startup_paths() -> None:
    """Log the same path info shown by `devprox config paths`."""

    loaded_envs = loaded_env_file_paths()
    if loaded_envs:
        logger.info("Loaded .env files: {}", ", ".join(str(p) for p in loaded_envs))
    else:
        logger.info("Loaded .env files: (none)")


def build_log_path(*, log_dir: Path, prefix: str, started_at: dt.datetime) -> Path:
    timestamp = started_at.strftime("%Y%m%d-%H%M%S")
    return log_dir / f"{prefix}-{timestamp}.log"


def configure_logging(
    *,
    level: str = "INFO",
    log_dir: Optional[Path] = None,
    prefix: str = "devprox",
    started_at: Optional[dt.datetime] = None,
) -> Optional[Path]:
    """Route loguru output to stderr and, when ``log_dir`` is set, a per-run file.

    Returns the log file path, if one was created.
    """

    logger.remove()
    logger.add(sys.stderr, level=level.upper(), format=_CONSOLE_FORMAT)

    if log_dir is None:
        return None

    log_dir.mkdir(parents=True, exist_ok=True)
    log_path = build_log_path(
        log_dir=log_dir, prefix=prefix, started_at=started_at or dt.datetime.now()
    )
    logger.add(
        log_path,
        level=level.upper(),
        enqueue=True,
        format=_FILE_FORMAT,
    )
    return log_path

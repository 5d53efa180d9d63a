from __future__ import annotations

import datetime as dt
from pathlib import Path

from loguru import logger

from devprox.logging import build_log_path, configure_logging


def test_build_log_path_uses_prefix_and_timestamp(tmp_path: Path) -> None:
    started_at = dt.datetime(2024, 1, 2, 3, 4, 5)

    path = build_log_path(log_dir=tmp_path, prefix="serve", started_at=started_at)

    assert path == tmp_path / "serve-20240102-030405.log"


def test_configure_logging_without_dir_returns_none() -> None:
    assert configure_logging(level="debug") is None


def test_configure_logging_writes_to_file(tmp_path: Path) -> None:
    log_dir = tmp_path / "logs"

    log_path = configure_logging(
        level="INFO",
        log_dir=log_dir,
        prefix="serve",
        started_at=dt.datetime(2024, 1, 2, 3, 4, 5),
    )
    logger.info("hello from the test")
    logger.complete()

    assert log_path == log_dir / "serve-20240102-030405.log"
    assert "hello from the test" in log_path.read_text()

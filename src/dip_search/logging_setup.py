"""Logging setup using Loguru."""

from __future__ import annotations

import sys
from pathlib import Path

from loguru import logger

from .index_config import resolve_log_file, resolve_log_level


def setup_logger(log_level: str | None = None, log_file: str | None = None) -> None:
    """
    Configure loguru sinks.

    - Console: coloured, human-readable, on stderr
    - File (optional): rotating, compressed
    """
    level = resolve_log_level(log_level)
    target = resolve_log_file(log_file)

    logger.remove()
    logger.add(
        sys.stderr,
        level=level,
        format=(
            "<green>{time:YYYY-MM-DD HH:mm:ss}</green> | "
            "<level>{level: <8}</level> | "
            "<cyan>{name}</cyan>:<cyan>{line}</cyan> - "
            "<level>{message}</level>"
        ),
        colorize=True,
    )

    if target:
        Path(target).parent.mkdir(parents=True, exist_ok=True)
        logger.add(
            target,
            level=level,
            format="{time:YYYY-MM-DD HH:mm:ss} | {level: <8} | {name}:{line} - {message}",
            rotation="10 MB",
            retention="7 days",
            compression="zip",
            enqueue=True,
        )

    logger.debug(f"Logger initialised | level={level} | file={target}")

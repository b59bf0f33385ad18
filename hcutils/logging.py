"""Logging configuration for hcutils.

Structured logging via loguru. The library logger is disabled by default
and only enabled for the duration of one command line run, when
--verbose or --log-file asks for it.

Example:
    from hcutils.logging import LogConfig, setup_logging, teardown_logging

    handler_ids = setup_logging(LogConfig(console=False, file="hcutils.log"))
    try:
        ...
    finally:
        teardown_logging(handler_ids)
"""

from __future__ import annotations

import sys
from dataclasses import dataclass
from pathlib import Path
from typing import Literal

from loguru import logger

logger.disable("hcutils")

type LogLevel = Literal["DEBUG", "INFO", "WARNING", "ERROR"]

CONSOLE_FORMAT = (
    "<green>{time:HH:mm:ss.SSS}</green> | "
    "<level>{level: <8}</level> | "
    "<cyan>{name}</cyan> - <level>{message}</level>"
)

FILE_FORMAT = "{time:YYYY-MM-DD HH:mm:ss.SSS} | {level: <8} | {name}:{function}:{line} - {message}"


@dataclass(frozen=True, slots=True)
class LogConfig:
    """Where one run's log goes.

    Attributes:
        level: Minimum level for stderr output.
        file: Log file, overwritten by each run. Always records DEBUG.
        console: Whether to log to stderr.
    """

    level: LogLevel = "DEBUG"
    file: str | Path | None = None
    console: bool = True


def setup_logging(config: LogConfig) -> list[int]:
    """Enable the hcutils logger and return handler IDs for cleanup."""
    logger.enable("hcutils")
    handler_ids: list[int] = []

    if config.console:
        handler_ids.append(logger.add(
            sys.stderr,
            level=config.level,
            format=CONSOLE_FORMAT,
            colorize=True,
            filter="hcutils",
        ))

    if config.file:
        handler_ids.append(logger.add(
            config.file,
            level="DEBUG",
            format=FILE_FORMAT,
            mode="w",
            diagnose=False,
            filter="hcutils",
        ))

    return handler_ids


def teardown_logging(handler_ids: list[int]) -> None:
    """Remove handlers and disable the hcutils logger again."""
    for hid in handler_ids:
        logger.remove(hid)
    logger.disable("hcutils")

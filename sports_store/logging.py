"""Logging configuration using Loguru.

Store modules log through stdlib ``logging.getLogger(__name__)`` so they stay
usable when embedded in an application with its own logging. Processes that
own their logging (the CLI, services) call ``setup_logging`` once, which
routes every stdlib record into Loguru: a colored console stream plus a
daily-rotated JSON file under ``log_dir``.

Example:
    >>> from sports_store.logging import configure_from_settings, get_logger
    >>> configure_from_settings(Settings(), verbose=True)
    >>> log = get_logger(__name__)
    >>> log.info("Inserted {} player_stats points", 42)

Status Tags:
    >>> from sports_store.logging import SUCCESS, FAIL, WARN
    >>> log.info(f"{SUCCESS} Schema initialized")
    >>> log.warning(f"{WARN} Daily cost at 82% of limit")
    >>> log.error(f"{FAIL} Schema step retention:player_stats failed")
"""

from __future__ import annotations

import logging
import sys
from pathlib import Path
from typing import TYPE_CHECKING, Any

from loguru import logger

if TYPE_CHECKING:
    from sports_store.config import Settings


def _tag(label: str, color: int) -> str:
    return f"\033[{color}m[{label}]\033[0m"


# Color-coded status tags for terminal output
SUCCESS = _tag("SUCCESS", 92)
FAIL = _tag("FAIL", 91)
WARN = _tag("WARN", 93)

# Third-party loggers held at WARNING unless running at DEBUG
NOISY_LOGGERS = ("sqlalchemy.engine", "sqlalchemy.pool", "urllib3")

CONSOLE_FORMAT = (
    "<green>{time:HH:mm:ss}</green> | "
    "<level>{level: <8}</level> | "
    "<cyan>{name}</cyan> | "
    "<level>{message}</level>"
)
FILE_FORMAT = "{time:YYYY-MM-DD HH:mm:ss.SSS} | {level: <8} | {name}:{line} | {message}"


class InterceptHandler(logging.Handler):
    """Forward stdlib log records to Loguru, keeping the original caller."""

    def emit(self, record: logging.LogRecord) -> None:
        try:
            level: str | int = logger.level(record.levelname).name
        except ValueError:
            level = record.levelno

        # Walk out of the logging module so loguru reports the real caller
        frame, depth = logging.currentframe(), 2
        while frame and frame.f_code.co_filename == logging.__file__:
            frame = frame.f_back
            depth += 1

        logger.opt(depth=depth, exception=record.exc_info).log(
            level, record.getMessage()
        )


def setup_logging(
    level: str = "INFO",
    log_dir: str | Path = "logs",
    rotation: str = "1 day",
    retention: str = "30 days",
    serialize: bool = True,
) -> Path:
    """Route all logging through Loguru.

    Replaces any existing Loguru sinks and stdlib root handlers, so calling
    it again reconfigures rather than duplicates output.

    Args:
        level: Minimum log level (DEBUG, INFO, WARNING, ERROR, CRITICAL).
        log_dir: Directory for log files; created if missing.
        rotation: When to rotate log files (e.g., "1 day", "100 MB").
        retention: How long to keep rotated files.
        serialize: Write the file sink as JSON lines.

    Returns:
        The resolved log directory.
    """
    logger.remove()
    logger.add(sys.stderr, level=level, format=CONSOLE_FORMAT, colorize=True)

    log_path = Path(log_dir)
    log_path.mkdir(parents=True, exist_ok=True)
    logger.add(
        log_path / "sports_store_{time:YYYY-MM-DD}.log",
        level=level,
        format=FILE_FORMAT,
        rotation=rotation,
        retention=retention,
        serialize=serialize,
        enqueue=True,  # Thread-safe
    )

    logging.basicConfig(handlers=[InterceptHandler()], level=0, force=True)
    quiet_level = logging.NOTSET if level.upper() == "DEBUG" else logging.WARNING
    for name in NOISY_LOGGERS:
        logging.getLogger(name).setLevel(quiet_level)
    return log_path


def configure_from_settings(settings: Settings, verbose: bool = False) -> Path:
    """Configure logging from store settings; ``verbose`` forces DEBUG."""
    level = "DEBUG" if verbose else settings.log_level
    return setup_logging(level=level, log_dir=settings.log_dir_obj)


def get_logger(name: str) -> Any:
    """Return the Loguru logger bound to a component name.

    Args:
        name: Component name, typically ``__name__``.
    """
    return logger.bind(name=name)


__all__ = [
    "FAIL",
    "SUCCESS",
    "WARN",
    "configure_from_settings",
    "get_logger",
    "logger",
    "setup_logging",
]

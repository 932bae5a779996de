"""Logging setup for dux."""

import sys
from pathlib import Path

from loguru import logger
from platformdirs import user_log_dir


def default_log_dir() -> Path:
    return Path(user_log_dir("dux"))


def setup_logging(
    verbose: bool = False,
    console: bool = True,
    log_dir: Path | None = None,
) -> Path | None:
    """
    Configure loguru sinks.

    Args:
        verbose: Lower the console level to DEBUG
        console: Log to stderr (off while the full-screen browser runs)
        log_dir: Directory for the rotating log file

    Returns:
        Path of the log file, or None if file logging is unavailable
    """
    logger.remove()

    if console:
        logger.add(
            sys.stderr,
            level="DEBUG" if verbose else "WARNING",
            format="<level>{level: <8}</level> | <level>{message}</level>",
            colorize=True,
        )

    directory = log_dir or default_log_dir()
    log_file = directory / "dux.log"
    try:
        directory.mkdir(parents=True, exist_ok=True)
        logger.add(
            str(log_file),
            level="DEBUG",
            format="{time:YYYY-MM-DD HH:mm:ss.SSS} | {level: <8} | {thread.name} | {name}:{function}:{line} - {message}",
            rotation="5 MB",
            retention=3,
            enqueue=True,
            encoding="utf-8",
        )
    except OSError as e:
        logger.warning("File logging disabled: {}", e)
        return None

    logger.debug("Logging initialized (verbose={}, file={})", verbose, log_file)
    return log_file

"""
Centralized logging configuration for scoop_index.

The engine is used as a library, so console output goes to stderr and the
host application decides the level. Timing helpers report how long cache
scans and worker waves take.
"""

import logging
import os
import sys
import time
from contextlib import contextmanager
from pathlib import Path
from typing import Iterator, Optional


LOGGER_NAME = "scoop_index"

# Global logger instance
_logger: Optional[logging.Logger] = None


def setup_logging(
    level: str = "INFO",
    log_file: Optional[str] = None,
    verbose: bool = False,
    quiet: bool = False,
    propagate: bool = False,
) -> logging.Logger:
    """
    Configure logging for the engine.

    Args:
        level: Log level (DEBUG, INFO, WARNING, ERROR, CRITICAL)
        log_file: Optional file path for log output
        verbose: Enable verbose (DEBUG) output
        quiet: Suppress console output (file only)
        propagate: Allow log propagation (useful for testing)

    Returns:
        Configured logger instance
    """
    global _logger

    if verbose:
        effective_level = "DEBUG"
    elif quiet:
        effective_level = "WARNING"
    else:
        effective_level = os.environ.get("SCOOP_INDEX_LOG_LEVEL", level).upper()

    logger = logging.getLogger(LOGGER_NAME)
    logger.setLevel(getattr(logging, effective_level, logging.INFO))
    logger.handlers.clear()

    if not quiet:
        console_handler = logging.StreamHandler(sys.stderr)
        console_handler.setLevel(logger.level)
        console_handler.setFormatter(
            LevelColorFormatter(
                "%(levelname_colored)s %(message)s",
                use_colors=sys.stderr.isatty(),
            )
        )
        logger.addHandler(console_handler)

    if log_file:
        log_path = Path(log_file)
        log_path.parent.mkdir(parents=True, exist_ok=True)

        file_handler = logging.FileHandler(log_file, encoding="utf-8")
        file_handler.setLevel(logging.DEBUG)
        file_handler.setFormatter(logging.Formatter(
            "%(asctime)s [%(levelname)s] %(name)s (pid %(process)d): %(message)s",
            datefmt="%Y-%m-%d %H:%M:%S",
        ))
        logger.addHandler(file_handler)

    logger.propagate = propagate

    _logger = logger
    return logger


def get_logger() -> logging.Logger:
    """
    Get the configured logger instance.

    If logging hasn't been set up, initializes with defaults.
    """
    global _logger
    if _logger is None:
        _logger = setup_logging()
    return _logger


class LevelColorFormatter(logging.Formatter):
    """Formatter that prefixes records with an ANSI-colored level tag."""

    COLORS = {
        "DEBUG": "\033[2m",       # Dim
        "INFO": "\033[36m",       # Cyan
        "WARNING": "\033[33m",    # Yellow
        "ERROR": "\033[31m",      # Red
        "CRITICAL": "\033[1;31m", # Bold Red
    }
    RESET = "\033[0m"

    def __init__(self, fmt: str, use_colors: bool = True):
        super().__init__(fmt)
        self.use_colors = use_colors

    def format(self, record: logging.LogRecord) -> str:
        tag = f"[{record.levelname.lower()}]"
        if self.use_colors:
            color = self.COLORS.get(record.levelname, "")
            record.levelname_colored = f"{color}{tag}{self.RESET}"
        else:
            record.levelname_colored = tag
        return super().format(record)


@contextmanager
def log_elapsed(label: str, level: int = logging.DEBUG) -> Iterator[None]:
    """
    Log how long the wrapped block took, in milliseconds.

    Args:
        label: Description of the timed operation
        level: Log level for the timing message
    """
    start = time.perf_counter()
    try:
        yield
    finally:
        elapsed = round((time.perf_counter() - start) * 1000)
        get_logger().log(level, f"{label} completed in {elapsed}ms")

"""
Common utilities shared across scoop_index modules.
"""

from __future__ import annotations

import os
import sys
import time


def now_ms() -> float:
    """Current wall-clock time in epoch milliseconds."""
    return time.time() * 1000


def vlog(msg: str, verbose: bool = False) -> None:
    """
    Log verbose message using structured logging.

    Args:
        msg: Message to log
        verbose: Whether verbose mode is enabled
    """
    if verbose or os.environ.get("SCOOP_INDEX_DEBUG", "0") == "1":
        try:
            from .logging_config import get_logger
            logger = get_logger()
            logger.info(msg)
        except Exception:
            # Fallback to stderr if logging fails
            try:
                print(f"[scoop_index] {msg}", file=sys.stderr)
            except Exception:
                pass

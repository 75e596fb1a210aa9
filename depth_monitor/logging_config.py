"""
Logging setup for the CLI.

The TUI owns the terminal, so in that mode logs go to a rotating file.
"""

from __future__ import annotations

import logging
import logging.handlers
from pathlib import Path

DETAILED_FORMAT = '%(asctime)s | %(name)-30s | %(levelname)-8s | %(message)s'
DATE_FORMAT = '%Y-%m-%d %H:%M:%S'


def setup_logging(level: str | int = logging.INFO, log_file: str | Path | None = None) -> logging.Logger:
    """
    Configure the root logger once.

    Args:
        level: Logging level name or number
        log_file: Write to this file (10MB x 5 rotation) instead of stderr
    """
    root = logging.getLogger()
    root.setLevel(level)

    # Avoid duplicate handlers on repeated calls
    for handler in list(root.handlers):
        root.removeHandler(handler)
        handler.close()

    if log_file is not None:
        path = Path(log_file)
        path.parent.mkdir(parents=True, exist_ok=True)
        handler: logging.Handler = logging.handlers.RotatingFileHandler(
            path,
            maxBytes=10 * 1024 * 1024,
            backupCount=5,
            encoding='utf-8',
        )
    else:
        handler = logging.StreamHandler()

    handler.setFormatter(logging.Formatter(DETAILED_FORMAT, datefmt=DATE_FORMAT))
    root.addHandler(handler)

    # aiohttp is chatty at DEBUG
    logging.getLogger("aiohttp").setLevel(max(logging.getLogger().level, logging.INFO))
    return root

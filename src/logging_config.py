"""
Logging setup for the adventure-archive command.

Modules log through ``logging.getLogger(__name__)``; the command configures the
package loggers once, so every module under ``adventure`` and ``foundry`` writes
through the same handlers.

Log levels:
    DEBUG: Per-asset relocation, cache hits, storage calls
    INFO: Documents exported/imported, folders created, progress
    WARNING: Assets left external, folders at max depth, missing archive entries
    ERROR: Per-document failures, upload rejections, packaging failures

Usage:
    from logging_config import setup_logging

    setup_logging(["adventure", "foundry"], log_file=Path("export.log"))
"""

import logging
import sys
from pathlib import Path
from typing import List, Optional, Sequence

LOG_FORMAT = "%(asctime)s - %(name)s - %(levelname)s - %(message)s"
DATE_FORMAT = "%Y-%m-%d %H:%M:%S"


def build_handlers(
    level: int = logging.INFO,
    log_file: Optional[Path] = None,
    console_output: bool = True
) -> List[logging.Handler]:
    """
    Create the console and file handlers shared by every package logger.

    Args:
        level: Minimum level the handlers emit
        log_file: Optional path to append logs to (parent directories are created)
        console_output: Whether to write to stdout

    Returns:
        Handlers sharing one formatter
    """
    formatter = logging.Formatter(fmt=LOG_FORMAT, datefmt=DATE_FORMAT)
    handlers: List[logging.Handler] = []

    if console_output:
        handlers.append(logging.StreamHandler(sys.stdout))

    if log_file:
        log_file.parent.mkdir(parents=True, exist_ok=True)
        handlers.append(logging.FileHandler(log_file, mode="a", encoding="utf-8"))

    for handler in handlers:
        handler.setLevel(level)
        handler.setFormatter(formatter)
    return handlers


def setup_logging(
    names: Sequence[str],
    level: int = logging.INFO,
    log_file: Optional[Path] = None,
    console_output: bool = True
) -> List[logging.Logger]:
    """
    Attach one set of handlers to each named package logger.

    Calling it again replaces the handlers from the previous call, closing them.

    Args:
        names: Package logger names, e.g. ["adventure", "foundry"]
        level: Logging level (default: INFO)
        log_file: Optional path to also write logs to
        console_output: Whether to output to console (default: True)

    Returns:
        The configured loggers, in the order given
    """
    if isinstance(names, str):
        names = [names]

    handlers = build_handlers(level, log_file, console_output)
    previous = set()
    loggers = []

    for name in names:
        logger = logging.getLogger(name)
        previous.update(logger.handlers)
        logger.handlers.clear()
        logger.setLevel(level)
        for handler in handlers:
            logger.addHandler(handler)
        loggers.append(logger)

    for handler in previous:
        handler.close()

    return loggers

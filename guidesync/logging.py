"""Logging helpers shared by the guidesync pipeline and CLI."""

from __future__ import annotations

import logging
import sys
from pathlib import Path

_ROOT_NAME = "guidesync"


def get_logger(name: str | None = None) -> logging.Logger:
    """Return a logger nested under ``guidesync``."""
    if not name:
        return logging.getLogger(_ROOT_NAME)
    return logging.getLogger(f"{_ROOT_NAME}.{name}")


def configure_logging(
    *,
    verbose: bool = False,
    quiet: bool = False,
    log_file: Path | None = None,
) -> logging.Logger:
    """Send guidesync records to stderr and, optionally, a log file.

    ``quiet`` keeps only warnings and errors on the console so machine-readable
    output on stdout stays clean; the file sink always records at the
    requested verbosity.
    """
    level = logging.DEBUG if verbose else logging.INFO
    logger = logging.getLogger(_ROOT_NAME)
    logger.setLevel(level)
    logger.propagate = False

    # Repeated CLI invocations in one process must not stack handlers.
    for handler in list(logger.handlers):
        logger.removeHandler(handler)
        handler.close()

    console = logging.StreamHandler(sys.stderr)
    console.setLevel(logging.WARNING if quiet else level)
    console.setFormatter(logging.Formatter("[guidesync] %(levelname)s %(message)s"))
    logger.addHandler(console)

    if log_file is not None:
        sink = logging.FileHandler(log_file, encoding="utf-8")
        sink.setLevel(level)
        sink.setFormatter(
            logging.Formatter("%(asctime)s %(levelname)s %(name)s [%(threadName)s]: %(message)s")
        )
        logger.addHandler(sink)

    return logger


def log_transition(logger: logging.Logger, project: Path, state: str) -> None:
    """Record a pipeline state change for one project at DEBUG level."""
    if logger.isEnabledFor(logging.DEBUG):
        logger.debug("%s -> %s", project, state)


__all__ = ["configure_logging", "get_logger", "log_transition"]

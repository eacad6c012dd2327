"""Logging setup for the spmcache CLI.

Records emitted by the `spmcache/*` loggers (tier lookups, downloads,
builds, ledger updates) are shown from INFO, or DEBUG with `--verbose`.
Third-party loggers (requests, urllib3, filelock) only get through from
WARNING, so that `--verbose` does not drown the tier events.
"""

from __future__ import annotations

import logging
import os
import sys

import colorlog

LOGGER_PREFIX = "spmcache/"

LOG_COLORS = {
    "DEBUG": "cyan",
    "INFO": "green",
    "WARNING": "bold_yellow",
    "ERROR": "bold_red",
    "CRITICAL": "bold_red,bg_white",
}


class ScopeFilter(logging.Filter):
    """Pass every spmcache record, and only warnings from other loggers."""

    def filter(self, record: logging.LogRecord) -> bool:
        if record.name.startswith(LOGGER_PREFIX):
            return True
        return record.levelno >= logging.WARNING


def _use_color() -> bool:
    if os.getenv("NO_COLOR") is not None:
        return False
    return sys.stderr.isatty()


def configure_logging(verbose: bool) -> None:
    """Send the resolution events to stderr, replacing any previous setup."""
    handler = logging.StreamHandler(sys.stderr)
    handler.addFilter(ScopeFilter())
    handler.setFormatter(
        colorlog.ColoredFormatter(
            fmt="%(log_color)s%(levelname)-8s%(reset)s %(asctime)s <%(name)s> %(message)s",
            datefmt="%H:%M:%S",
            log_colors=LOG_COLORS,
            no_color=not _use_color(),
        )
    )
    logging.basicConfig(
        level=logging.DEBUG if verbose else logging.INFO,
        handlers=[handler],
        force=True,
    )

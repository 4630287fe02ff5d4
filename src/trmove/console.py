"""
Log output for trmove commands.

Three renderings of the same records:

- journald: ``<N>message`` syslog priority prefixes, for hooks running under
  ``systemd-cat --level-prefix=yes``
- terminal: colored by level
- plain: bare messages (pipes, files)

``TRMOVE_LOG_FILE`` additionally appends timestamped records to a file.
"""

import logging
import os
import sys
from pathlib import Path
from typing import Optional

import click

NOTICE = 25
logging.addLevelName(NOTICE, "NOTICE")

_SYSLOG_PRIORITIES = {
    logging.CRITICAL: 2,
    logging.ERROR: 3,
    logging.WARNING: 4,
    NOTICE: 5,
    logging.INFO: 6,
    logging.DEBUG: 7,
}

_COLORS = {
    logging.CRITICAL: "red",
    logging.ERROR: "red",
    logging.WARNING: "yellow",
    NOTICE: "green",
}


def syslog_priority(levelno: int) -> int:
    for level in sorted(_SYSLOG_PRIORITIES, reverse=True):
        if levelno >= level:
            return _SYSLOG_PRIORITIES[level]
    return 7


class JournalFormatter(logging.Formatter):
    def format(self, record: logging.LogRecord) -> str:
        return f"<{syslog_priority(record.levelno)}>{super().format(record)}"


class ColorFormatter(logging.Formatter):
    def format(self, record: logging.LogRecord) -> str:
        message = super().format(record)
        color = None
        for level in sorted(_COLORS, reverse=True):
            if record.levelno >= level:
                color = _COLORS[level]
                break
        return click.style(message, fg=color) if color else message


class _SplitStreamHandler(logging.StreamHandler):
    """Warnings and worse to stderr, everything else to stdout."""

    def __init__(self):
        super().__init__(sys.stdout)

    def emit(self, record: logging.LogRecord) -> None:
        self.stream = sys.stderr if record.levelno >= logging.WARNING else sys.stdout
        super().emit(record)


def setup_logging(debug: bool = False, systemd: bool = False,
                  log_file: Optional[str] = None) -> logging.Logger:
    """
    Configure the ``trmove`` logger tree. Safe to call more than once.

    Args:
        debug: Log DEBUG records
        systemd: Use journald priority prefixes
        log_file: Extra log file (default from TRMOVE_LOG_FILE)
    """
    root = logging.getLogger("trmove")
    for handler in list(root.handlers):
        root.removeHandler(handler)
        handler.close()
    root.setLevel(logging.DEBUG if debug else logging.INFO)
    root.propagate = False

    handler = _SplitStreamHandler()
    if systemd:
        handler.setFormatter(JournalFormatter("%(message)s"))
    elif sys.stdout.isatty():
        handler.setFormatter(ColorFormatter("%(message)s"))
    else:
        handler.setFormatter(logging.Formatter("%(message)s"))
    root.addHandler(handler)

    log_file = log_file or os.environ.get("TRMOVE_LOG_FILE")
    if log_file:
        path = Path(os.path.expanduser(log_file))
        try:
            path.parent.mkdir(parents=True, exist_ok=True)
            file_handler = logging.FileHandler(path, encoding="utf-8")
        except OSError as e:
            root.warning("cannot open log file %s: %s", path, e)
        else:
            file_handler.setFormatter(logging.Formatter(
                "%(asctime)s %(process)d %(levelname)s %(name)s: %(message)s"))
            root.addHandler(file_handler)
    return root

"""
Logging setup for the offsetup CLI.

``main.py`` calls ``setup_logging`` once; modules only ever do
``logger = logging.getLogger(__name__)``.

Console detail grows with verbosity:
    WARNING and up   bare message
    INFO             time, logger name, message
    DEBUG            time, level, logger:line, message

A log file (``OFFSETUP_LOG_FILE``) always gets the DEBUG layout, at its
own level when ``OFFSETUP_LOG_FILE_LEVEL`` is set. Both handlers carry
the redacting filter, so resolved credentials and URI passwords are
masked before anything is written.
"""

from __future__ import annotations

import logging
import sys

from offsetup.core.observability.redaction import RedactingFilter

_DEBUG_FORMAT = "%(asctime)s %(levelname)-5s %(name)s:%(lineno)d  %(message)s"

_CONSOLE_FORMATS: tuple[tuple[int, str, str | None], ...] = (
    (logging.DEBUG, _DEBUG_FORMAT, "%H:%M:%S"),
    (logging.INFO, "%(asctime)s [%(name)s] %(message)s", "%H:%M:%S"),
)

_FILE_DATEFMT = "%Y-%m-%d %H:%M:%S"

# Libraries that log every request at INFO
_NOISY_LOGGERS = ("urllib3", "urllib.request", "asyncio")


def parse_level(level: str | None) -> int:
    """``"info"`` → ``logging.INFO``; unknown or empty → WARNING."""
    numeric = getattr(logging, (level or "").upper(), None)
    return numeric if isinstance(numeric, int) else logging.WARNING


def _console_formatter(level: int) -> logging.Formatter:
    for threshold, fmt, datefmt in _CONSOLE_FORMATS:
        if level <= threshold:
            return logging.Formatter(fmt, datefmt=datefmt)
    return logging.Formatter("%(message)s")


def setup_logging(
    level: str = "WARNING",
    log_file: str | None = None,
    log_file_level: str | None = None,
    quiet_third_party: bool = True,
) -> None:
    """Configure the root logger for this process.

    Args:
        level: Console level name.
        log_file: Also log to this file.
        log_file_level: File level name; defaults to ``level``.
        quiet_third_party: Hold ``_NOISY_LOGGERS`` at WARNING unless
            the console is at DEBUG.
    """
    console_level = parse_level(level)
    redacting = RedactingFilter()

    console = logging.StreamHandler(sys.stderr)
    console.setLevel(console_level)
    console.setFormatter(_console_formatter(console_level))
    console.addFilter(redacting)
    handlers: list[logging.Handler] = [console]

    if log_file:
        file_level = parse_level(log_file_level) if log_file_level else console_level
        to_file = logging.FileHandler(log_file, encoding="utf-8")
        to_file.setLevel(file_level)
        to_file.setFormatter(logging.Formatter(_DEBUG_FORMAT, datefmt=_FILE_DATEFMT))
        to_file.addFilter(redacting)
        handlers.append(to_file)

    root = logging.getLogger()
    root.handlers.clear()
    for handler in handlers:
        root.addHandler(handler)
    # Root passes everything the most verbose handler wants
    root.setLevel(min(h.level for h in handlers))

    if quiet_third_party and console_level > logging.DEBUG:
        for name in _NOISY_LOGGERS:
            logging.getLogger(name).setLevel(logging.WARNING)

    logging.raiseExceptions = False

"""
Logging configuration — diagnostics for the devbox CLI.

main.py calls ``setup_from_environment`` once per invocation; modules
log through ``logging.getLogger(__name__)``. Progress lines for the
operator come from the Reporter, not from here. Log records go to
stderr and, optionally, to a file.

Console level, first match wins:
    --debug, --verbose, --quiet, $DEVBOX_LOG_LEVEL, WARNING

$DEVBOX_LOG_FILE adds a file handler at $DEVBOX_LOG_FILE_LEVEL
(default: the console level).
"""

from __future__ import annotations

import logging
import os
import sys
from typing import Mapping

# ── Formats ─────────────────────────────────────────────────────

# (threshold, format, datefmt): the first threshold the console level
# is at or below picks the console format.
_CONSOLE_FORMATS = (
    (logging.DEBUG, "%(asctime)s %(levelname)-5s %(threadName)s %(name)s:%(lineno)d: %(message)s", "%H:%M:%S"),
    (logging.INFO, "%(asctime)s %(name)s: %(message)s", "%H:%M:%S"),
    (logging.CRITICAL, "devbox %(levelname)s: %(message)s", None),
)

_FILE_FORMAT = "%(asctime)s %(levelname)-5s %(threadName)s %(name)s:%(lineno)d: %(message)s"
_FILE_DATEFMT = "%Y-%m-%dT%H:%M:%S"

# Chatty below WARNING; release downloads go through urllib
_NOISY_LOGGERS = ("urllib3", "urllib.request")

ENV_LOG_LEVEL = "DEVBOX_LOG_LEVEL"
ENV_LOG_FILE = "DEVBOX_LOG_FILE"
ENV_LOG_FILE_LEVEL = "DEVBOX_LOG_FILE_LEVEL"


def resolve_level(
    *,
    debug: bool = False,
    verbose: bool = False,
    quiet: bool = False,
    environ: Mapping[str, str] | None = None,
) -> str:
    """Pick the console log level from CLI flags and the environment."""
    if debug:
        return "DEBUG"
    if verbose:
        return "INFO"
    if quiet:
        return "ERROR"
    env = os.environ if environ is None else environ
    return env.get(ENV_LOG_LEVEL, "WARNING")


def setup_logging(
    level: str = "WARNING",
    log_file: str | None = None,
    log_file_level: str | None = None,
    quiet_third_party: bool = True,
) -> None:
    """Install devbox's handlers on the root logger.

    Replaces any handlers already present, so calling it twice is safe.

    Args:
        level: Console level name. Unknown names mean WARNING.
        log_file: Also write records to this file.
        log_file_level: Level for ``log_file``; defaults to ``level``.
        quiet_third_party: Hold HTTP library loggers at WARNING unless
            the console is at DEBUG.
    """
    console_level = _parse_level(level)
    handlers: list[logging.Handler] = [_console_handler(console_level)]
    if log_file:
        handlers.append(_file_handler(log_file, _parse_level(log_file_level or level)))

    root = logging.getLogger()
    root.handlers[:] = handlers
    # the root must let through whatever the most verbose handler wants
    root.setLevel(min(h.level for h in handlers))

    if quiet_third_party and console_level > logging.DEBUG:
        for name in _NOISY_LOGGERS:
            logging.getLogger(name).setLevel(logging.WARNING)


def setup_from_environment(
    *, debug: bool = False, verbose: bool = False, quiet: bool = False,
) -> str:
    """Resolve the level, configure logging, and return the level used."""
    level = resolve_level(debug=debug, verbose=verbose, quiet=quiet)
    setup_logging(
        level=level,
        log_file=os.environ.get(ENV_LOG_FILE),
        log_file_level=os.environ.get(ENV_LOG_FILE_LEVEL),
        quiet_third_party=not debug,
    )
    return level


def _console_handler(level: int) -> logging.Handler:
    fmt, datefmt = next(
        (fmt, datefmt) for threshold, fmt, datefmt in _CONSOLE_FORMATS if level <= threshold
    )
    handler = logging.StreamHandler(sys.stderr)
    handler.setLevel(level)
    handler.setFormatter(logging.Formatter(fmt, datefmt=datefmt))
    return handler


def _file_handler(path: str, level: int) -> logging.Handler:
    handler = logging.FileHandler(path, encoding="utf-8")
    handler.setLevel(level)
    handler.setFormatter(logging.Formatter(_FILE_FORMAT, datefmt=_FILE_DATEFMT))
    return handler


def _parse_level(name: str | None) -> int:
    value = logging.getLevelName(name.upper()) if name else None
    return value if isinstance(value, int) else logging.WARNING

"""Package logger for symcas.

Library code logs through ``logger``; applications decide where records go
with the handler helpers below.
"""

import logging
from logging import CRITICAL, DEBUG, ERROR, INFO, WARNING

__all__ = [
    "logger",
    "set_log_level",
    "set_stream_handler",
    "unset_stream_handler",
    "set_file_handler",
    "DEBUG",
    "INFO",
    "WARNING",
    "ERROR",
    "CRITICAL",
]

__fmt = "%(name)s:%(levelname)s %(message)s"
__formatter = logging.Formatter(fmt=__fmt)
__stream_handler = logging.StreamHandler()
__stream_handler.setFormatter(__formatter)

logger = logging.getLogger(__package__)


def set_file_handler(file, formatter=None):
    """Send package records to a file, overwriting it."""
    if formatter is None:
        formatter = __formatter
    fh = logging.FileHandler(file, mode="w")
    fh.setFormatter(formatter)
    logger.addHandler(fh)
    return fh


def set_stream_handler(handler=None):
    """Attach a stream handler (stderr by default) to the package logger."""
    logger.addHandler(handler if handler else __stream_handler)


def unset_stream_handler():
    """Remove the default stream handler from the package logger."""
    logger.removeHandler(__stream_handler)


def set_log_level(level, pkg: str | None = None):
    """Set the log level for the package or one of its submodules.

    Args:
        level: The log level to set.
        pkg: If set, apply the log level only to this logger name
            (e.g. ``"symcas.codegen"``).
    """
    if pkg is not None:
        logging.getLogger(pkg).setLevel(level)
        return
    logger.setLevel(level)

"""File logging setup for the opsy process."""

from __future__ import annotations

import logging
from pathlib import Path

from opsy.config import LoggingConfig

ROOT_LOGGER_NAME = "opsy"
LEVELS = {
    "debug": logging.DEBUG,
    "info": logging.INFO,
    "warn": logging.WARNING,
    "error": logging.ERROR,
}

# Attributes every LogRecord carries; anything else came in through ``extra``.
_RESERVED_ATTRS = frozenset(
    vars(logging.LogRecord("", logging.INFO, "", 0, "", None, None))
) | {"message", "asctime"}


class KeyValueFormatter(logging.Formatter):
    """Render the event name followed by ``extra`` fields as ``key=value`` pairs."""

    def __init__(self) -> None:
        super().__init__(fmt="%(asctime)s %(levelname)s %(name)s %(message)s")

    def format(self, record: logging.LogRecord) -> str:
        base = super().format(record)
        fields = [
            f"{key}={value!r}"
            for key, value in record.__dict__.items()
            if key not in _RESERVED_ATTRS and not key.startswith("_")
        ]
        if not fields:
            return base
        return f"{base} {' '.join(fields)}"


def configure_logging(config: LoggingConfig) -> logging.Handler:
    """Send ``opsy.*`` records to the configured log file."""
    path = Path(config.path).expanduser()
    path.parent.mkdir(parents=True, exist_ok=True)
    handler = logging.FileHandler(path, encoding="utf-8")
    handler.setFormatter(KeyValueFormatter())

    logger = logging.getLogger(ROOT_LOGGER_NAME)
    logger.setLevel(LEVELS.get(config.level, logging.INFO))
    logger.addHandler(handler)
    logger.propagate = False
    return handler

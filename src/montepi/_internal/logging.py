"""Logging setup shared by the coordinator and every worker process.

All MontePi loggers live under the ``montepi`` namespace. Spawned worker
processes start with an unconfigured logging module, so each one calls
:func:`setup_logging` on entry with the level and format chosen by the
runner. Records carry the process name, which tells ranks apart.
"""

from __future__ import annotations

import json
import logging
import sys
from datetime import UTC, datetime

ROOT_LOGGER = "montepi"

TEXT_FORMAT = "%(asctime)s [%(levelname)-8s] %(processName)s %(name)s: %(message)s"
DATE_FORMAT = "%Y-%m-%d %H:%M:%S"


class _JsonFormatter(logging.Formatter):
    """One JSON object per record.

    Keys: timestamp, level, logger, process, message, plus ``exception``
    when the record carries a traceback.
    """

    def format(self, record: logging.LogRecord) -> str:
        entry = {
            "timestamp": datetime.fromtimestamp(record.created, tz=UTC).isoformat(),
            "level": record.levelname,
            "logger": record.name,
            "process": record.processName,
            "message": record.getMessage(),
        }
        if record.exc_info and record.exc_info[1] is not None:
            entry["exception"] = self.formatException(record.exc_info)
        return json.dumps(entry)


def _build_formatter(json_format: bool) -> logging.Formatter:
    if json_format:
        return _JsonFormatter()
    return logging.Formatter(TEXT_FORMAT, datefmt=DATE_FORMAT)


def setup_logging(
    level: int = logging.INFO,
    *,
    json_format: bool = False,
) -> logging.Logger:
    """Configure the ``montepi`` logger and return it.

    Installs one stderr handler. Repeated calls reuse that handler and
    only change its level and format.

    Args:
        level: Logging level, e.g. ``logging.DEBUG``.
        json_format: Emit one JSON object per line instead of text.

    Returns:
        The ``montepi`` logger.
    """
    logger = logging.getLogger(ROOT_LOGGER)
    logger.setLevel(level)
    # Worker records must not reach the root logger a second time
    logger.propagate = False

    if not logger.handlers:
        logger.addHandler(logging.StreamHandler(sys.stderr))

    for handler in logger.handlers:
        handler.setLevel(level)
        handler.setFormatter(_build_formatter(json_format))
    return logger


def get_logger(name: str) -> logging.Logger:
    """Return ``montepi.<name>``, e.g. ``get_logger("engine.channel")``."""
    return logging.getLogger(f"{ROOT_LOGGER}.{name}")

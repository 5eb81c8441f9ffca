"""Logging setup for the shard gateway.

Handlers attach request context (bucket, object id, backend error code) via
``extra=``; ``ContextFormatter`` renders those fields as ``key=value`` pairs
after the message so they reach the console.
"""

from __future__ import annotations

import logging
import os
import sys

# Shared server logger used across modules.
log = logging.getLogger("shard_gateway")

LOG_FORMAT = "%(asctime)s %(levelname)s %(name)s - %(message)s"

# Attributes every LogRecord carries; anything else came in through ``extra``.
_RECORD_ATTRS = frozenset(vars(logging.makeLogRecord({}))) | {"message", "asctime"}


class ContextFormatter(logging.Formatter):
    """Formatter that appends ``extra=`` fields to the rendered message."""

    def formatMessage(self, record: logging.LogRecord) -> str:
        line = super().formatMessage(record)
        context = context_fields(record)
        if not context:
            return line
        rendered = " ".join(f"{key}={value}" for key, value in context.items())
        return f"{line} {rendered}"


def context_fields(record: logging.LogRecord) -> dict:
    """Return the ``extra=`` fields attached to ``record``."""
    return {
        key: value
        for key, value in vars(record).items()
        if key not in _RECORD_ATTRS and not key.startswith("_")
    }


def configure_logging(level: str | int | None = None) -> logging.Logger:
    """Configure console logging for the gateway process.

    Safe to call more than once; later calls only adjust the level.

    Args:
        level: Optional log level (e.g. ``"INFO"`` or ``logging.DEBUG``). If
            omitted, ``LOG_LEVEL`` from the environment is used and falls
            back to ``INFO`` when unset or invalid.

    Returns:
        logging.Logger: The configured gateway logger.
    """
    resolved_level = _coerce_level(level)

    root = logging.getLogger()
    if not root.handlers:
        handler = logging.StreamHandler(sys.stdout)
        handler.setFormatter(ContextFormatter(LOG_FORMAT))
        root.addHandler(handler)

    root.setLevel(resolved_level)

    # boto3 logs every request at DEBUG.
    for noisy in ("httpx", "botocore", "boto3", "s3transfer", "urllib3"):
        logging.getLogger(noisy).setLevel(logging.WARNING)

    log.setLevel(resolved_level)
    log.propagate = True
    log.debug("Logging configured at level %s", logging.getLevelName(resolved_level))
    return log


def _coerce_level(level: str | int | None) -> int:
    candidate = level if level is not None else os.getenv("LOG_LEVEL", "INFO")

    if isinstance(candidate, int):
        return candidate

    if isinstance(candidate, str):
        numeric = logging.getLevelName(candidate.upper())
        if isinstance(numeric, int):
            return numeric

    return logging.INFO

"""Logging setup for the sync process."""

from __future__ import annotations

import logging
import os

LOG_FORMAT = "%(asctime)s | %(levelname)s | %(name)s | %(message)s"

# Per-request chatter from the HTTP stack and the SQL engine.
NOISY_LOGGERS = ("httpx", "httpcore", "sqlalchemy.engine")


def resolve_log_level(level: str | None) -> int:
    name = (level or os.getenv("LOG_LEVEL") or "INFO").strip().upper()
    resolved = logging.getLevelName(name)
    if not isinstance(resolved, int):
        logging.getLogger(__name__).warning("Unknown LOG_LEVEL %r. Using INFO.", level)
        return logging.INFO
    return resolved


def setup_logging(level: str | None = None) -> None:
    if logging.getLogger().handlers:
        return

    resolved = resolve_log_level(level)
    logging.basicConfig(level=resolved, format=LOG_FORMAT)
    if resolved > logging.DEBUG:
        for name in NOISY_LOGGERS:
            logging.getLogger(name).setLevel(logging.WARNING)

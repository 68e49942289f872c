"""Logging setup shared by the lottery services, repository and HTTP layer."""

from __future__ import annotations

import logging
import sys
from typing import Optional

from teesheet.utils.config import get_settings


_LOGGER_INITIALIZED = False


def configure_logging(level: Optional[str] = None) -> None:
    """Install the pipe-delimited stdout handler on first use.

    Module loggers are created at import time, before an app factory has
    seen its settings, so a later call with an explicit ``level`` only
    retunes the root logger instead of installing a second handler.
    """

    global _LOGGER_INITIALIZED
    if _LOGGER_INITIALIZED:
        if level:
            logging.getLogger().setLevel(level.upper())
        return

    resolved_level = (level or get_settings().log_level).upper()
    logging.basicConfig(
        level=resolved_level,
        format="%(asctime)s | %(levelname)s | %(name)s | %(message)s",
        stream=sys.stdout,
    )
    _LOGGER_INITIALIZED = True


def get_logger(name: str) -> logging.Logger:
    configure_logging()
    return logging.getLogger(name)


def format_fields(**fields: object) -> str:
    """Render keyword fields as the ``key=value | key=value`` message tail.

    Lottery events log one line each, e.g.
    ``Entry submitted | entry_id=4 | date=2026-05-16 | party_size=3``.
    """
    return " | ".join(f"{key}={value}" for key, value in fields.items())

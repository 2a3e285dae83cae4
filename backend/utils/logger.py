"""Process-wide logging setup and helpers for pipe-delimited log lines."""

from __future__ import annotations

import logging
import sys
from typing import Any, Optional

from backend.utils.config import get_settings


LOG_FORMAT = "%(asctime)s | %(levelname)s | %(name)s | %(message)s"

_configured_level: Optional[str] = None


def configure_logging(level: Optional[str] = None) -> None:
    """Install the stdout handler the first time any module asks for a logger."""
    global _configured_level
    if _configured_level is not None:
        return

    _configured_level = (level or get_settings().log_level).upper()
    logging.basicConfig(level=_configured_level, format=LOG_FORMAT, stream=sys.stdout)


def get_logger(name: str) -> logging.Logger:
    configure_logging()
    return logging.getLogger(name)


def fields(**values: Any) -> str:
    """Render ``key=value`` pairs in the `` | `` separated layout used by log lines."""
    return " | ".join(f"{key}={value}" for key, value in values.items())

"""Logging setup and secret masking helpers."""

from __future__ import annotations

import logging
import sys
from typing import TextIO

_FORMAT = "%(asctime)s %(levelname)s %(name)s %(message)s"


def setup_logging(level: int | str = logging.INFO, stream: TextIO | None = None) -> logging.Logger:
    """Configure the ``captive-portal`` logger hierarchy.

    Args:
        level: Level name or number applied to the portal loggers.
        stream: Output stream (defaults to ``sys.stderr``).

    Returns:
        The configured ``captive-portal`` parent logger.
    """
    if isinstance(level, str):
        level = logging.getLevelName(level.upper())
        if not isinstance(level, int):
            level = logging.INFO

    logger = logging.getLogger("captive-portal")
    logger.setLevel(level)
    for handler in list(logger.handlers):
        logger.removeHandler(handler)

    handler = logging.StreamHandler(stream or sys.stderr)
    handler.setFormatter(logging.Formatter(_FORMAT))
    logger.addHandler(handler)
    logger.propagate = False
    return logger


def mask_sensitive(value: str | None, keep_chars: int = 4) -> str:
    """Keep the first *keep_chars* characters of *value* and mask the rest."""
    if not value:
        return ""
    if len(value) <= keep_chars:
        return "*" * len(value)
    return value[:keep_chars] + "*" * min(len(value) - keep_chars, 8)

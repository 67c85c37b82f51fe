"""Logging configuration."""
from __future__ import annotations

import sys

from loguru import logger

from pushsaas.config import settings


def setup_logging(level: str | None = None, *, serialize: bool | None = None) -> None:
    """Install a single stderr sink at the configured level."""

    logger.remove()
    logger.add(
        sys.stderr,
        level=(level or settings.LOG_LEVEL).upper(),
        serialize=settings.LOG_JSON if serialize is None else serialize,
        backtrace=False,
        diagnose=False,
        enqueue=False,
    )

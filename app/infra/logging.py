"""Logging setup.

All modules log through the shared loguru ``logger``; structured context is
attached with ``logger.bind(**context)`` and rendered from ``extra``.
"""

from __future__ import annotations

import sys

from loguru import logger

from app.infra.config import LOG_JSON, LOG_LEVEL

CONSOLE_FORMAT = (
    "<green>{time:YYYY-MM-DD HH:mm:ss}</green> | "
    "<level>{level: <8}</level> | "
    "<cyan>{name}</cyan>:<cyan>{function}</cyan>:<cyan>{line}</cyan> - "
    "<level>{message}</level> | {extra}"
)


def setup_logging(level: str | None = None, *, serialize: bool | None = None) -> None:
    logger.remove()
    logger.add(
        sys.stderr,
        level=level or LOG_LEVEL,
        format=CONSOLE_FORMAT,
        serialize=LOG_JSON if serialize is None else serialize,
        backtrace=False,
        diagnose=False,
    )

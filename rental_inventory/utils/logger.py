"""Logging setup shared by every layer, plus a stage timer for the query pipeline."""

from __future__ import annotations

import logging
import sys
import time
from contextlib import contextmanager
from typing import Iterator, Optional

from rental_inventory.utils.config import get_settings


_LOG_FORMAT = "%(asctime)s | %(levelname)s | %(name)s | %(message)s"
_LOGGER_INITIALIZED = False


def configure_logging(level: Optional[str] = None) -> None:
    """Install the stdout handler once per process.

    The level comes from ``LOG_LEVEL`` unless one is passed explicitly.
    """

    global _LOGGER_INITIALIZED
    if _LOGGER_INITIALIZED:
        return

    resolved_level = (level or get_settings().log_level).upper()
    logging.basicConfig(level=resolved_level, format=_LOG_FORMAT, stream=sys.stdout)
    _LOGGER_INITIALIZED = True


def get_logger(name: str) -> logging.Logger:
    configure_logging()
    return logging.getLogger(name)


@contextmanager
def log_stage(logger: logging.Logger, stage: str, **fields: object) -> Iterator[None]:
    """Log ``Stage completed | stage=... | elapsed_ms=...`` around a block.

    Nothing is logged when the block raises; the caller reports the failure.
    """
    started = time.perf_counter()
    yield
    elapsed_ms = (time.perf_counter() - started) * 1000.0
    extra = "".join(f" | {key}={value}" for key, value in fields.items())
    logger.debug("Stage completed | stage=%s | elapsed_ms=%.1f%s", stage, elapsed_ms, extra)

"""Logger setup shared by the Streamlit app, the CLI and the core modules."""

from __future__ import annotations

import logging
import os
import sys

LOGGER_NAME = "alv_watermark"

_LEVELS = {
    "debug": logging.DEBUG,
    "info": logging.INFO,
    "warning": logging.WARNING,
    "error": logging.ERROR,
    "critical": logging.CRITICAL,
}


def get_logger(suffix: str = "") -> logging.Logger:
    """Return the project logger, or one of its children (``alv_watermark.<suffix>``)."""
    return logging.getLogger(f"{LOGGER_NAME}.{suffix}" if suffix else LOGGER_NAME)


class StderrHandler(logging.StreamHandler):
    """StreamHandler bound to whatever ``sys.stderr`` is at emit time.

    Test runners and Streamlit swap ``sys.stderr`` and close the previous stream.
    """

    @property
    def stream(self):
        return sys.stderr

    @stream.setter
    def stream(self, value):
        pass


def setup_logger(level: int = logging.INFO) -> logging.Logger:
    """Create or update the project logger.

    Streamlit re-executes the script on every interaction, so this has to be
    idempotent: exactly one stderr handler is kept and its formatter and level
    are refreshed on each call. ``ALV_WATERMARK_LOG_LEVEL`` overrides ``level``.
    """
    logger = get_logger()

    env_level = (os.getenv("ALV_WATERMARK_LOG_LEVEL") or "").strip().lower()
    if env_level:
        level = _LEVELS.get(env_level, level)
    logger.setLevel(level)

    handler = next((h for h in logger.handlers if isinstance(h, StderrHandler)), None)
    if handler is None:
        handler = StderrHandler()
        logger.addHandler(handler)

    handler.setFormatter(logging.Formatter("%(asctime)s | %(levelname)s | %(message)s"))
    return logger

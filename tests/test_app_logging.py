from __future__ import annotations

import io
import logging
import sys

from app_logging import LOGGER_NAME, StderrHandler, get_logger, setup_logger


def test_setup_logger_is_idempotent():
    logger = setup_logger()
    setup_logger()
    assert logger.name == LOGGER_NAME
    assert sum(isinstance(h, StderrHandler) for h in logger.handlers) == 1


def test_level_from_environment(monkeypatch):
    monkeypatch.setenv("ALV_WATERMARK_LOG_LEVEL", "debug")
    assert setup_logger().level == logging.DEBUG
    monkeypatch.setenv("ALV_WATERMARK_LOG_LEVEL", "warning")
    assert setup_logger().level == logging.WARNING
    monkeypatch.delenv("ALV_WATERMARK_LOG_LEVEL")
    assert setup_logger().level == logging.INFO


def test_logging_survives_closed_stderr(monkeypatch):
    first = io.StringIO()
    monkeypatch.setattr(sys, "stderr", first)
    setup_logger()
    get_logger("test").info("first")
    first.close()

    second = io.StringIO()
    monkeypatch.setattr(sys, "stderr", second)
    setup_logger()
    get_logger("test").info("second")
    assert "| INFO | second" in second.getvalue()

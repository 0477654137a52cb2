"""Tests for mailtap.logging."""

from __future__ import annotations

import logging

import structlog

from mailtap.logging import setup_logging


class TestSetupLogging:
    def test_json_mode(self):
        setup_logging(json=True, level="INFO")
        root = logging.getLogger()
        assert root.level == logging.INFO
        assert len(root.handlers) == 1

    def test_console_mode(self):
        setup_logging(json=False, level="DEBUG")
        assert logging.getLogger().level == logging.DEBUG

    def test_level_case_insensitive(self):
        setup_logging(level="warning")
        assert logging.getLogger().level == logging.WARNING

    def test_replaces_existing_handlers(self):
        root = logging.getLogger()
        root.addHandler(logging.StreamHandler())
        root.addHandler(logging.StreamHandler())
        assert len(root.handlers) >= 2
        setup_logging()
        assert len(root.handlers) == 1

    def test_chatty_libraries_quieted(self):
        setup_logging(level="DEBUG")
        assert logging.getLogger("aiokafka").level == logging.WARNING
        assert logging.getLogger("uvicorn.access").level == logging.WARNING

    def test_quiet_loggers_follow_stricter_root(self):
        setup_logging(level="ERROR")
        assert logging.getLogger("aiokafka").level == logging.ERROR

    def test_structlog_produces_output(self, capsys):
        setup_logging(json=True, level="DEBUG")
        logger = structlog.get_logger("test_logger")
        logger.info("mail_extracted", subject="hello")
        assert "mail_extracted" in capsys.readouterr().out

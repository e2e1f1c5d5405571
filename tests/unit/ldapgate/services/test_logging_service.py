# -*- coding: utf-8 -*-
"""Unit tests for the logging service."""

# Standard
import json
import logging
from logging.handlers import RotatingFileHandler

# Third-Party
import pytest

# First-Party
from ldapgate.models import LogLevel
import ldapgate.services.logging_service as logging_mod
from ldapgate.services.logging_service import LoggingService


class TestLoggingService:
    """Tests for LoggingService."""

    def test_console_handler_attached_once(self):
        service = LoggingService()
        first = service.get_logger("ldapgate.tests.console")
        LoggingService().get_logger("ldapgate.tests.console")

        console = [h for h in first.handlers if h is logging_mod._get_console_handler()]
        assert len(console) == 1

    def test_level_from_constructor(self):
        logger = LoggingService(LogLevel.WARNING).get_logger("ldapgate.tests.level")
        assert logger.level == logging.WARNING

    def test_set_level_updates_existing_loggers(self):
        service = LoggingService(LogLevel.INFO)
        logger = service.get_logger("ldapgate.tests.set_level")

        service.set_level(LogLevel.ERROR)

        assert logger.level == logging.ERROR

    @pytest.mark.parametrize(
        "level,expected",
        [
            (LogLevel.DEBUG, logging.DEBUG),
            (LogLevel.NOTICE, logging.INFO),
            (LogLevel.WARNING, logging.WARNING),
            (LogLevel.ALERT, logging.CRITICAL),
            (LogLevel.EMERGENCY, logging.CRITICAL),
        ],
    )
    def test_python_level(self, level, expected):
        assert LoggingService._python_level(level) == expected

    def test_json_console_format(self, monkeypatch):
        monkeypatch.setenv("LOG_FORMAT", "json")
        monkeypatch.setattr(logging_mod, "_console_handler", None)

        handler = logging_mod._get_console_handler()

        assert handler.formatter is logging_mod.json_formatter

    def test_file_handler_writes_json(self, monkeypatch, tmp_path):
        monkeypatch.setenv("LOG_TO_FILE", "true")
        monkeypatch.setenv("LOG_FILE", "ldapgate.log")
        monkeypatch.setenv("LOG_FOLDER", str(tmp_path / "logs"))
        monkeypatch.setattr(logging_mod, "_file_handler", None)

        logger = LoggingService(LogLevel.INFO).get_logger("ldapgate.tests.file")
        file_handler = next(h for h in logger.handlers if isinstance(h, RotatingFileHandler))
        logger.info("bind accepted")
        file_handler.flush()

        try:
            line = (tmp_path / "logs" / "ldapgate.log").read_text().splitlines()[-1]
            record = json.loads(line)
            assert record["message"] == "bind accepted"
            assert record["name"] == "ldapgate.tests.file"
        finally:
            logger.removeHandler(file_handler)
            file_handler.close()

    def test_file_handler_requires_file(self, monkeypatch):
        monkeypatch.setenv("LOG_TO_FILE", "false")
        monkeypatch.setattr(logging_mod, "_file_handler", None)

        with pytest.raises(ValueError, match="File logging is disabled"):
            logging_mod._get_file_handler()

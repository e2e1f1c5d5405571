# -*- coding: utf-8 -*-
"""Logging Service Implementation.

Location: ./ldapgate/services/logging_service.py
Copyright 2025
SPDX-License-Identifier: Apache-2.0

This module configures console and optional rotating-file logging for
ldapgate. Console output is plain text or JSON depending on ``LOG_FORMAT``;
the file handler always writes JSON.
"""

# Standard
import logging
from logging.handlers import RotatingFileHandler
import os
from typing import Dict, Optional

# Third-Party
from pythonjsonlogger import jsonlogger  # You may need to install python-json-logger package

# First-Party
from ldapgate.config import get_settings
from ldapgate.models import LogLevel

# Create a text formatter
text_formatter = logging.Formatter("%(asctime)s - %(name)s - %(levelname)s - %(message)s")

# Create a JSON formatter
json_formatter = jsonlogger.JsonFormatter("%(asctime)s %(name)s %(levelname)s %(message)s")

# Global handlers will be created lazily
_file_handler: Optional[RotatingFileHandler] = None
_console_handler: Optional[logging.StreamHandler] = None


def _get_file_handler() -> RotatingFileHandler:
    """Get or create the file handler.

    Returns:
        RotatingFileHandler: The file handler for JSON logging.

    Raises:
        ValueError: If file logging is disabled or no log file specified.
    """
    global _file_handler  # pylint: disable=global-statement
    if _file_handler is None:
        settings = get_settings()
        if not settings.log_to_file or not settings.log_file:
            raise ValueError("File logging is disabled or no log file specified")

        # Ensure log folder exists
        if settings.log_folder:
            os.makedirs(settings.log_folder, exist_ok=True)
            log_path = os.path.join(settings.log_folder, settings.log_file)
        else:
            log_path = settings.log_file

        _file_handler = RotatingFileHandler(log_path, maxBytes=1024 * 1024, backupCount=5)
        _file_handler.setFormatter(json_formatter)
    return _file_handler


def _get_console_handler() -> logging.StreamHandler:
    """Get or create the console handler.

    Returns:
        logging.StreamHandler: Stream handler using the configured format.
    """
    global _console_handler  # pylint: disable=global-statement
    if _console_handler is None:
        _console_handler = logging.StreamHandler()
        _console_handler.setFormatter(json_formatter if get_settings().log_format == "json" else text_formatter)
    return _console_handler


class LoggingService:
    """ldapgate logging service.

    Hands out named loggers that share one console handler (and the file
    handler when enabled), and keeps their levels in step.

    Examples:
        >>> service = LoggingService()
        >>> service.get_logger("ldapgate.doctest") is service.get_logger("ldapgate.doctest")
        True
    """

    def __init__(self, level: Optional[LogLevel] = None):
        """Initialize logging service.

        Args:
            level: Minimum level; defaults to ``LOG_LEVEL`` from settings.
        """
        self._level = level or get_settings().log_level
        self._loggers: Dict[str, logging.Logger] = {}

    def get_logger(self, name: str) -> logging.Logger:
        """Get or create logger instance.

        Args:
            name: Logger name

        Returns:
            Logger instance

        Examples:
            >>> service = LoggingService()
            >>> logger = service.get_logger('test')
            >>> import logging
            >>> isinstance(logger, logging.Logger)
            True
        """
        if name not in self._loggers:
            logger = logging.getLogger(name)

            handler = _get_console_handler()
            if handler not in logger.handlers:
                logger.addHandler(handler)

            settings = get_settings()
            if settings.log_to_file and settings.log_file:
                try:
                    file_handler = _get_file_handler()
                    if file_handler not in logger.handlers:
                        logger.addHandler(file_handler)
                except (OSError, ValueError) as e:
                    # Use module-level logging to avoid circular reference
                    logging.getLogger(__name__).warning("Failed to add file handler to logger %s: %s", name, e)

            logger.setLevel(self._python_level(self._level))

            self._loggers[name] = logger

        return self._loggers[name]

    def set_level(self, level: LogLevel) -> None:
        """Set minimum log level for every logger handed out so far.

        Args:
            level: New log level

        Examples:
            >>> service = LoggingService()
            >>> logger = service.get_logger("ldapgate.level")
            >>> service.set_level(LogLevel.DEBUG)
            >>> logger.level == logging.DEBUG
            True
        """
        self._level = level
        python_level = self._python_level(level)
        for logger in self._loggers.values():
            logger.setLevel(python_level)

    @staticmethod
    def _python_level(level: LogLevel) -> int:
        """Map an RFC 5424 level onto the closest stdlib logging level.

        Args:
            level: Log level

        Returns:
            Numeric logging level.

        Examples:
            >>> LoggingService._python_level(LogLevel.NOTICE) == logging.INFO
            True
            >>> LoggingService._python_level(LogLevel.EMERGENCY) == logging.CRITICAL
            True
        """
        aliases = {LogLevel.NOTICE: logging.INFO, LogLevel.ALERT: logging.CRITICAL, LogLevel.EMERGENCY: logging.CRITICAL}
        if level in aliases:
            return aliases[level]
        return getattr(logging, level.upper())

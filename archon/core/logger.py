# Copyright 2025 Ilya Makarov
#
# Licensed under the Business Source License 1.1
# Change Date: 2028-11-05
# Change License: Apache License 2.0

"""
Logging setup for Archon.

Components log through ``logging.getLogger("archon.<component>")``; this
module attaches console and rotating file handlers to the ``archon``
hierarchy so every child logger shares them.
"""

import logging
import os
import sys
from logging.handlers import RotatingFileHandler
from pathlib import Path
from typing import Dict, Optional

LEVELS = {
    "DEBUG": logging.DEBUG,
    "INFO": logging.INFO,
    "WARNING": logging.WARNING,
    "ERROR": logging.ERROR,
    "CRITICAL": logging.CRITICAL,
}


class ArchonLogger:
    """
    Centralized logging for Archon components.

    Features:
    - Console and file logging
    - Automatic log rotation
    - Structured log format with timestamps
    """

    def __init__(
        self,
        name: str = "archon",
        level: str = "INFO",
        log_dir: Optional[Path] = None,
        console_output: bool = True,
        file_output: bool = True,
    ):
        self.name = name
        self.logger = logging.getLogger(name)

        # Clear any existing handlers
        self.logger.handlers.clear()

        self.logger.setLevel(self._parse_level(level))

        console_formatter = logging.Formatter(
            fmt="[%(asctime)s] [%(name)s:%(levelname)s] %(message)s",
            datefmt="%Y-%m-%d %H:%M:%S",
        )

        file_formatter = logging.Formatter(
            fmt="%(asctime)s | %(name)s | %(levelname)s | %(filename)s:%(lineno)d | %(message)s",
            datefmt="%Y-%m-%d %H:%M:%S",
        )

        self.console_handler: Optional[logging.Handler] = None
        if console_output:
            console_handler = logging.StreamHandler(sys.stdout)
            console_handler.setFormatter(console_formatter)
            console_handler.setLevel(self._parse_level(level))
            self.logger.addHandler(console_handler)
            self.console_handler = console_handler

        if file_output:
            if log_dir is None:
                log_dir = Path.home() / ".archon" / "logs"

            log_dir.mkdir(parents=True, exist_ok=True)

            # Rotate after 10MB, keep 5 backup files
            file_handler = RotatingFileHandler(
                log_dir / f"{name}.log",
                maxBytes=10 * 1024 * 1024,
                backupCount=5,
                encoding="utf-8",
            )
            file_handler.setFormatter(file_formatter)
            file_handler.setLevel(logging.DEBUG)  # File gets everything
            self.logger.addHandler(file_handler)

    def _parse_level(self, level: str) -> int:
        """Convert string level to logging constant"""
        return LEVELS.get(level.upper(), logging.INFO)

    def info(self, message: str, **kwargs):
        self.logger.info(message, extra=kwargs)

    def set_level(self, level: str):
        """Change log level dynamically"""
        self.logger.setLevel(self._parse_level(level))
        if self.console_handler is not None:
            self.console_handler.setLevel(self._parse_level(level))


# Global logger instances
_loggers: Dict[str, ArchonLogger] = {}


def get_logger(
    name: str = "archon",
    level: Optional[str] = None,
    log_dir: Optional[Path] = None,
    file_output: Optional[bool] = None,
) -> ArchonLogger:
    """
    Get or create a logger instance.

    Args:
        name: Logger name (usually ``archon`` or a component below it)
        level: Log level (DEBUG, INFO, WARNING, ERROR, CRITICAL)
        log_dir: Directory for the rotating log file
        file_output: Write the rotating log file (defaults to on unless
            ARCHON_NO_FILE_LOGS=true)

    Returns:
        ArchonLogger instance
    """
    if name not in _loggers:
        log_level = level or os.getenv("ARCHON_LOG_LEVEL", "INFO")

        # CI/test runs switch file logging off
        disable_file_logging = os.getenv("ARCHON_NO_FILE_LOGS", "false").lower() == "true"

        _loggers[name] = ArchonLogger(
            name=name,
            level=log_level,
            log_dir=log_dir,
            file_output=(not disable_file_logging) if file_output is None else file_output,
        )
    elif level:
        _loggers[name].set_level(level)

    return _loggers[name]

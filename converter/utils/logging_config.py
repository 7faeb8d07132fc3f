"""
Logging setup for the converter service.

All service modules log under the ``converter`` namespace. Handlers are
attached to that namespace only, so uvicorn's own access and error loggers
keep their configuration. Level, format and file output come from the
environment:

- LOG_LEVEL: DEBUG, INFO, WARNING, ERROR (default INFO, WARNING under pytest)
- LOG_FORMAT: standard, dev or json
- LOG_TO_FILE / LOG_FILE: also write to a rotating log file
"""

import json
import logging
import logging.handlers
import os
import sys
from pathlib import Path
from typing import Dict, Optional, Union

ROOT_LOGGER_NAME = "converter"

# Third-party loggers that are chatty at DEBUG during uploads and workbook parsing
NOISY_LOGGERS = ("multipart", "python_multipart", "openpyxl", "asyncio")


class LogLevel:
    """Name to level lookup accepting the usual aliases."""

    ALIASES = {
        'WARN': logging.WARNING,
        'FATAL': logging.CRITICAL,
    }

    @classmethod
    def from_string(cls, level_str: str) -> int:
        name = level_str.strip().upper()
        if name in cls.ALIASES:
            return cls.ALIASES[name]
        level = logging.getLevelName(name)
        return level if isinstance(level, int) else logging.INFO


class JsonFormatter(logging.Formatter):
    """One JSON object per line, with exception text when present."""

    def format(self, record: logging.LogRecord) -> str:
        payload = {
            "timestamp": self.formatTime(record),
            "level": record.levelname,
            "logger": record.name,
            "message": record.getMessage(),
        }
        if record.exc_info:
            payload["exception"] = self.formatException(record.exc_info)
        return json.dumps(payload)


class LogConfig:
    """Logging settings read from the environment."""

    STANDARD_FORMAT = '%(asctime)s - %(name)s - %(levelname)s - %(message)s'
    DEV_FORMAT = '%(asctime)s [%(levelname)8s] %(name)s:%(lineno)d - %(message)s'

    FILE_MAX_BYTES = 10 * 1024 * 1024
    FILE_BACKUPS = 5

    @staticmethod
    def running_under_pytest() -> bool:
        return 'pytest' in sys.modules or 'PYTEST_CURRENT_TEST' in os.environ

    @classmethod
    def level(cls) -> int:
        level_str = os.getenv('LOG_LEVEL')
        if level_str:
            return LogLevel.from_string(level_str)
        return logging.WARNING if cls.running_under_pytest() else logging.INFO

    @classmethod
    def formatter(cls, format_type: Optional[str] = None) -> logging.Formatter:
        """Formatter for LOG_FORMAT (or format_type when given)."""
        format_type = (format_type or os.getenv('LOG_FORMAT', 'standard')).lower()
        if format_type == 'json':
            return JsonFormatter()
        if format_type in ('dev', 'development'):
            return logging.Formatter(cls.DEV_FORMAT)
        return logging.Formatter(cls.STANDARD_FORMAT)

    @staticmethod
    def log_file() -> Optional[Path]:
        """LOG_FILE when LOG_TO_FILE is enabled, else None."""
        if os.getenv('LOG_TO_FILE', 'false').lower() not in ('true', '1', 'yes'):
            return None
        log_file = os.getenv('LOG_FILE')
        return Path(log_file) if log_file else Path("logs") / "converter-service.log"


class LoggerFactory:
    """Configures the service namespace once and hands out child loggers."""

    _loggers: Dict[str, logging.Logger] = {}
    _configured = False

    @classmethod
    def configure_logging(cls, level: Optional[int] = None,
                          format_type: Optional[str] = None,
                          log_file: Optional[Union[str, Path]] = None,
                          force: bool = False) -> logging.Logger:
        """Attach handlers to the service logger. Repeated calls are no-ops unless force is set."""
        service_logger = logging.getLogger(ROOT_LOGGER_NAME)
        if cls._configured and not force:
            return service_logger

        log_level = level if level is not None else LogConfig.level()
        formatter = LogConfig.formatter(format_type)
        log_file_path = Path(log_file) if log_file else LogConfig.log_file()

        for handler in service_logger.handlers[:]:
            service_logger.removeHandler(handler)
            handler.close()

        console_handler = logging.StreamHandler(sys.stdout)
        console_handler.setFormatter(formatter)
        service_logger.addHandler(console_handler)

        if log_file_path:
            log_file_path.parent.mkdir(parents=True, exist_ok=True)
            file_handler = logging.handlers.RotatingFileHandler(
                log_file_path,
                maxBytes=LogConfig.FILE_MAX_BYTES,
                backupCount=LogConfig.FILE_BACKUPS,
            )
            file_handler.setFormatter(formatter)
            service_logger.addHandler(file_handler)

        service_logger.setLevel(log_level)
        service_logger.propagate = False

        if log_level > logging.DEBUG:
            for name in NOISY_LOGGERS:
                logging.getLogger(name).setLevel(max(log_level, logging.WARNING))

        cls._configured = True
        return service_logger

    @classmethod
    def get_logger(cls, name: str) -> logging.Logger:
        if name != ROOT_LOGGER_NAME and not name.startswith(ROOT_LOGGER_NAME + "."):
            name = f"{ROOT_LOGGER_NAME}.{name}"
        if name not in cls._loggers:
            cls.configure_logging()
            cls._loggers[name] = logging.getLogger(name)
        return cls._loggers[name]


def get_logger(name: Optional[str] = None) -> logging.Logger:
    """Logger under the ``converter`` namespace."""
    return LoggerFactory.get_logger(name or ROOT_LOGGER_NAME)


def setup_logging(level: Optional[Union[str, int]] = None,
                  format_type: Optional[str] = None,
                  log_file: Optional[Union[str, Path]] = None) -> logging.Logger:
    """Reconfigure service logging explicitly, e.g. from the entry point."""
    if isinstance(level, str):
        level = LogLevel.from_string(level)
    return LoggerFactory.configure_logging(level=level, format_type=format_type,
                                           log_file=log_file, force=True)

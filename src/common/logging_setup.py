"""Logging configuration for the backend server.

Console logging always, optional rotating file logging, applied through
`logging.config.dictConfig` with a `basicConfig` fallback.
"""

from __future__ import annotations

import logging
import logging.config
from dataclasses import dataclass
from pathlib import Path
from typing import Any, Dict, Optional


LOG_FORMAT = "%(asctime)s %(levelname)s %(name)s: %(message)s"
DATE_FORMAT = "%Y-%m-%d %H:%M:%S"


class LoggerConfigError(Exception):
    """Raised when the logging configuration is invalid."""


@dataclass
class LoggingConfig:
    log_level: str = "INFO"
    log_file: Optional[str] = None
    max_bytes: int = 5 * 1024 * 1024  # 5 MB
    backup_count: int = 3
    enable_console: bool = True


def validate_log_level(log_level: str) -> int:
    """Return the numeric level for a level name such as "info"."""
    numeric_level = getattr(logging, str(log_level).upper(), None)
    if not isinstance(numeric_level, int):
        raise LoggerConfigError(f"Invalid log level: {log_level}")
    return numeric_level


def create_logging_config(config: LoggingConfig) -> Dict[str, Any]:
    numeric_level = validate_log_level(config.log_level)

    handlers: Dict[str, Dict[str, Any]] = {}
    if config.enable_console:
        handlers["console"] = {
            "class": "logging.StreamHandler",
            "level": numeric_level,
            "formatter": "standard",
        }
    if config.log_file:
        log_path = Path(config.log_file)
        try:
            log_path.parent.mkdir(parents=True, exist_ok=True)
        except OSError as e:
            raise LoggerConfigError(f"Failed to create log directory {log_path.parent}: {e}") from e
        handlers["file"] = {
            "class": "logging.handlers.RotatingFileHandler",
            "level": numeric_level,
            "formatter": "detailed",
            "filename": str(log_path),
            "maxBytes": config.max_bytes,
            "backupCount": config.backup_count,
            "encoding": "utf8",
        }

    return {
        "version": 1,
        "disable_existing_loggers": False,
        "formatters": {
            "standard": {"format": LOG_FORMAT, "datefmt": DATE_FORMAT},
            "detailed": {
                "format": "%(asctime)s %(levelname)s %(name)s:%(lineno)d: %(message)s",
                "datefmt": DATE_FORMAT,
            },
        },
        "handlers": handlers,
        "loggers": {
            # werkzeug logs its own access lines; ours come from server.app
            "werkzeug": {"level": logging.WARNING},
        },
        "root": {"handlers": list(handlers), "level": numeric_level},
    }


def configure_logging(config: LoggingConfig) -> logging.Logger:
    """Apply `config` to the root logger and return the application logger.

    Falls back to basic console logging if the configuration cannot be applied.
    """
    try:
        logging.config.dictConfig(create_logging_config(config))
        logger = logging.getLogger("tofulicious")
        logger.debug("Logging configured at level %s", config.log_level)
    except (LoggerConfigError, ValueError, KeyError):
        logging.basicConfig(level=logging.INFO, format=LOG_FORMAT)
        logger = logging.getLogger("tofulicious")
        logger.exception("Failed to configure logging. Using fallback configuration.")
    return logger

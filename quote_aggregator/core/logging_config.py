"""
Logging configuration for the Quote Aggregator.
Supports both JSON and text logging formats.
"""

import logging
import logging.config
import sys
from typing import Any, Dict, Optional

from pythonjsonlogger import jsonlogger

from .config import Settings, get_settings

ROOT_LOGGER_NAME = "quote_aggregator"


def setup_logging(settings: Optional[Settings] = None) -> None:
    """Setup structured logging for the application."""
    settings = settings or get_settings()

    if settings.log_format == "json":
        logging_config = get_json_logging_config(settings.log_level)
    else:
        logging_config = get_text_logging_config(settings.log_level)

    logging.config.dictConfig(logging_config)

    # Reduce noise from external libraries
    for noisy in ("httpx", "httpcore", "urllib3", "yfinance", "redis"):
        logging.getLogger(noisy).setLevel(logging.WARNING)


def _console_handler(level: str, formatter: str) -> Dict[str, Any]:
    return {
        "class": "logging.StreamHandler",
        "level": level,
        "formatter": formatter,
        "stream": sys.stderr,
    }


def get_json_logging_config(level: str) -> Dict[str, Any]:
    """Get JSON logging configuration."""
    return {
        "version": 1,
        "disable_existing_loggers": False,
        "formatters": {
            "json": {
                "()": jsonlogger.JsonFormatter,
                "format": "%(asctime)s %(name)s %(levelname)s %(message)s %(module)s %(funcName)s %(lineno)d",
                "datefmt": "%Y-%m-%d %H:%M:%S",
            }
        },
        "handlers": {"console": _console_handler(level, "json")},
        "loggers": {
            ROOT_LOGGER_NAME: {
                "handlers": ["console"],
                "level": level,
                "propagate": False,
            }
        },
        "root": {"handlers": ["console"], "level": "WARNING"},
    }


def get_text_logging_config(level: str) -> Dict[str, Any]:
    """Get text logging configuration."""
    return {
        "version": 1,
        "disable_existing_loggers": False,
        "formatters": {
            "standard": {
                "format": "%(asctime)s [%(levelname)s] %(name)s: %(message)s (%(filename)s:%(lineno)d)",
                "datefmt": "%Y-%m-%d %H:%M:%S",
            },
            "detailed": {
                "format": "%(asctime)s [%(levelname)s] %(name)s: %(message)s [in %(pathname)s:%(lineno)d]",
                "datefmt": "%Y-%m-%d %H:%M:%S",
            },
        },
        "handlers": {"console": _console_handler(level, "standard" if level == "INFO" else "detailed")},
        "loggers": {
            ROOT_LOGGER_NAME: {
                "handlers": ["console"],
                "level": level,
                "propagate": False,
            }
        },
        "root": {"handlers": ["console"], "level": "WARNING"},
    }


def create_logger(module_name: str) -> logging.Logger:
    """Create a logger for a specific module."""
    if module_name.startswith(ROOT_LOGGER_NAME):
        return logging.getLogger(module_name)
    return logging.getLogger(f"{ROOT_LOGGER_NAME}.{module_name}")

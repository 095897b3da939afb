"""
Custom logging configuration to suppress health check logs
"""

import logging
import logging.config
from typing import Any, Dict


class HealthCheckFilter(logging.Filter):
    """Filter to suppress health check endpoint logs."""

    def filter(self, record: logging.LogRecord) -> bool:
        """Filter out health check requests from uvicorn access logs."""
        if record.name == "uvicorn.access":
            message = record.getMessage()
            if "/health" in message and "GET" in message:
                return False
        return True


def get_logging_config(level: str = "INFO") -> Dict[str, Any]:
    """
    Get logging configuration with health check suppression.

    Args:
        level: Log level name from the ``listen.log_level`` setting

    Returns:
        Dictionary suitable for ``logging.config.dictConfig``
    """
    level = (level or "INFO").upper()
    if level == "WARN":
        level = "WARNING"

    return {
        "version": 1,
        "disable_existing_loggers": False,
        "filters": {
            "health_check_filter": {
                "()": HealthCheckFilter
            }
        },
        "formatters": {
            "default": {
                "format": "%(asctime)s - %(name)s - %(levelname)s - %(message)s"
            },
            "access": {
                "format": "%(message)s"
            }
        },
        "handlers": {
            "default": {
                "class": "logging.StreamHandler",
                "formatter": "default",
                "stream": "ext://sys.stdout"
            },
            "access": {
                "class": "logging.StreamHandler",
                "formatter": "access",
                "stream": "ext://sys.stdout",
                "filters": ["health_check_filter"]
            }
        },
        "loggers": {
            "uvicorn": {
                "handlers": ["default"],
                "level": level,
                "propagate": False
            },
            "uvicorn.access": {
                "handlers": ["access"],
                "level": "INFO",
                "propagate": False
            },
            "lookingglass": {
                "handlers": ["default"],
                "level": level,
                "propagate": False
            },
            # One line per DoH query otherwise
            "httpx": {
                "handlers": ["default"],
                "level": "WARNING",
                "propagate": False
            }
        },
        "root": {
            "level": "INFO",
            "handlers": ["default"]
        }
    }


def setup_logging(level: str = "INFO") -> None:
    """Apply the logging configuration."""
    logging.config.dictConfig(get_logging_config(level))

"""
Tests for logging configuration.
"""

import logging
import os
import sys

sys.path.insert(0, os.path.dirname(os.path.dirname(os.path.abspath(__file__))))

from lookingglass.logging_config import HealthCheckFilter, get_logging_config


def make_record(name, message):
    return logging.LogRecord(name, logging.INFO, __file__, 1, message, None, None)


def test_health_checks_suppressed():
    health_filter = HealthCheckFilter()

    assert not health_filter.filter(make_record("uvicorn.access", '127.0.0.1 - "GET /health HTTP/1.1" 200'))
    assert health_filter.filter(make_record("uvicorn.access", '127.0.0.1 - "GET /api/config HTTP/1.1" 200'))
    assert health_filter.filter(make_record("lookingglass.main", "GET /health"))


def test_level_from_config():
    assert get_logging_config("debug")["loggers"]["lookingglass"]["level"] == "DEBUG"
    assert get_logging_config("warn")["loggers"]["lookingglass"]["level"] == "WARNING"
    assert get_logging_config(None)["loggers"]["lookingglass"]["level"] == "INFO"


def test_configured_loggers():
    config = get_logging_config("debug")
    loggers = config["loggers"]

    assert set(loggers) == {"uvicorn", "uvicorn.access", "lookingglass", "httpx"}
    assert loggers["uvicorn"]["level"] == "DEBUG"
    assert loggers["httpx"]["level"] == "WARNING"
    assert config["handlers"]["access"]["filters"] == ["health_check_filter"]


def test_setup_logging_applies_level():
    from lookingglass.logging_config import setup_logging

    setup_logging("error")
    try:
        assert logging.getLogger("lookingglass").level == logging.ERROR
        assert logging.getLogger("httpx").level == logging.WARNING
    finally:
        setup_logging("info")

"""Logging configuration utilities."""

from __future__ import annotations

import logging.config
from typing import Optional


def get_logging_config(level: str = "INFO", json_logs: bool = False) -> dict:
    """Return a dictConfig-compatible logging configuration."""

    formatter = (
        {
            "format": "%(asctime)s %(levelname)s %(name)s %(message)s",
            "class": "pythonjsonlogger.json.JsonFormatter",
        }
        if json_logs
        else {
            "format": "%(levelname)s | %(asctime)s | %(name)s | %(message)s",
            "datefmt": "%Y-%m-%d %H:%M:%S",
        }
    )

    return {
        "version": 1,
        "disable_existing_loggers": False,
        "formatters": {
            "default": formatter,
        },
        "handlers": {
            "default": {
                "class": "logging.StreamHandler",
                "formatter": "default",
                "stream": "ext://sys.stderr",
            }
        },
        "loggers": {
            "": {
                "handlers": ["default"],
                "level": level.upper(),
            },
        },
    }


def configure_logging(level: Optional[str] = None, json_logs: bool = False) -> None:
    """Configure logging for the command line tool."""

    logging.config.dictConfig(get_logging_config(level or "INFO", json_logs))

"""Structured logging setup."""

import logging
from typing import Any

import structlog

from http_to_nsq.config import APP_NAME, LOG_LEVELS


def _add_app_name(logger: Any, method_name: str, event_dict: dict[str, Any]) -> dict[str, Any]:
    event_dict.setdefault("app", APP_NAME)
    return event_dict


def configure_logging(level: str = "info") -> None:
    """Configure structlog to render one JSON object per line on stdout."""
    structlog.configure(
        processors=[
            _add_app_name,
            structlog.stdlib.add_log_level,
            structlog.processors.TimeStamper(fmt="iso"),
            structlog.processors.format_exc_info,
            structlog.processors.JSONRenderer(),
        ],
        wrapper_class=structlog.make_filtering_bound_logger(LOG_LEVELS.get(level, logging.INFO)),
    )

    # The gateway writes its own access log
    logging.getLogger("werkzeug").setLevel(logging.WARNING)

"""
Structured logging configuration.

Uses structlog on top of the standard library so uvicorn and SQLAlchemy
records land in the same stream as the service's own events.
"""
import logging
import sys
from typing import Any

import structlog

from app.config import Settings


def _app_context(settings: Settings):
    def add_app_context(logger: Any, method_name: str, event_dict: dict) -> dict:
        event_dict["app_name"] = settings.app_name
        event_dict["app_env"] = settings.app_env
        return event_dict

    return add_app_context


def setup_logging(settings: Settings) -> None:
    """Configure structlog and the root logger from settings."""
    renderer = (
        structlog.processors.JSONRenderer()
        if settings.log_json
        else structlog.dev.ConsoleRenderer(colors=False)
    )

    structlog.configure(
        processors=[
            structlog.contextvars.merge_contextvars,
            structlog.stdlib.filter_by_level,
            structlog.stdlib.add_logger_name,
            structlog.stdlib.add_log_level,
            structlog.processors.TimeStamper(fmt="iso"),
            structlog.processors.StackInfoRenderer(),
            structlog.processors.format_exc_info,
            structlog.processors.UnicodeDecoder(),
            _app_context(settings),
            renderer,
        ],
        wrapper_class=structlog.stdlib.BoundLogger,
        context_class=dict,
        logger_factory=structlog.stdlib.LoggerFactory(),
        cache_logger_on_first_use=True,
    )

    root_logger = logging.getLogger()
    root_logger.setLevel(getattr(logging, settings.log_level))
    for handler in root_logger.handlers[:]:
        root_logger.removeHandler(handler)

    handler = logging.StreamHandler(sys.stdout)
    handler.setFormatter(logging.Formatter("%(message)s"))
    root_logger.addHandler(handler)

    logging.getLogger("httpx").setLevel(logging.WARNING)
    logging.getLogger("sqlalchemy.engine").setLevel(logging.WARNING)

    structlog.get_logger(__name__).info(
        "logging_configured",
        log_level=settings.log_level,
        log_json=settings.log_json,
    )

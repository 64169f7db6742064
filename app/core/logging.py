import logging

import structlog

from app.core.config import settings


def configure_logging() -> None:
    """Structured logging for the API process and the Celery worker."""
    renderer = structlog.dev.ConsoleRenderer(colors=True) if settings.ENV == "local" else structlog.processors.JSONRenderer()
    structlog.configure(
        processors=[
            structlog.contextvars.merge_contextvars,
            structlog.processors.add_log_level,
            structlog.processors.TimeStamper(fmt="iso"),
            structlog.processors.format_exc_info,
            renderer,
        ],
        wrapper_class=structlog.make_filtering_bound_logger(logging.INFO),
        cache_logger_on_first_use=True,
    )

import logging
import sys
from typing import Any

import structlog

from .settings import Settings, settings as default_settings

# Chatty libraries that would drown job lifecycle events at INFO
_QUIET_LOGGERS = ("httpx", "httpcore", "sqlalchemy.engine", "aiosqlite", "asyncio")


def setup_logging(settings: Settings | None = None) -> None:
    """Configure structlog for the API and worker processes.

    Development gets a coloured console renderer with call sites; every
    other environment emits one JSON object per line.
    """
    settings = settings or default_settings
    level = getattr(logging, settings.log_level.upper(), logging.INFO)

    logging.basicConfig(format="%(message)s", stream=sys.stdout, level=level)
    for name in _QUIET_LOGGERS:
        logging.getLogger(name).setLevel(max(level, logging.WARNING))

    processors: list[Any] = [
        structlog.contextvars.merge_contextvars,
        structlog.processors.TimeStamper(fmt="iso", utc=True),
        structlog.processors.add_log_level,
    ]
    if settings.debug:
        processors += [
            structlog.processors.CallsiteParameterAdder(
                parameters=[
                    structlog.processors.CallsiteParameter.MODULE,
                    structlog.processors.CallsiteParameter.FUNC_NAME,
                ]
            ),
            structlog.dev.ConsoleRenderer(),
        ]
    else:
        # Handler and worker-loop failures log with exc_info
        processors += [
            structlog.processors.dict_tracebacks,
            structlog.processors.JSONRenderer(),
        ]

    structlog.configure(
        processors=processors,
        wrapper_class=structlog.make_filtering_bound_logger(level),
        logger_factory=structlog.WriteLoggerFactory(),
        cache_logger_on_first_use=True,
    )


def get_logger(name: str = __name__) -> structlog.BoundLogger:
    """Get a structured logger instance."""
    return structlog.get_logger(name)


def add_request_context(request_id: str, **context: Any) -> None:
    """Replace the bound context with this request's correlation fields."""
    structlog.contextvars.clear_contextvars()
    structlog.contextvars.bind_contextvars(request_id=request_id, **context)


def bind_worker_context(worker_id: str, **context: Any) -> None:
    """Tag every log line of a worker process with its worker ID."""
    structlog.contextvars.bind_contextvars(worker_id=worker_id, **context)

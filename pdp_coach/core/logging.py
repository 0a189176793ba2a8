import logging
import sys
from typing import Any

import structlog

from pdp_coach.config.settings import Settings, get_settings

# Third-party loggers that drown out run events at DEBUG
_NOISY_LOGGERS = ("sqlalchemy.engine", "aiosqlite", "asyncio")


def _add_app_name(app_name: str):
    def processor(_logger, _method_name, event_dict):
        event_dict.setdefault("app", app_name)
        return event_dict

    return processor


def configure_logging(settings: Settings | None = None) -> None:
    """Configure structured logging with structlog.

    Stdlib loggers (timeline builder, recorder, analysis engine, database)
    write plain messages to stdout at the same level; structlog events are
    rendered as JSON with the request/run context merged in.
    """
    settings = settings or get_settings()
    level = logging.DEBUG if settings.debug else logging.INFO

    logging.basicConfig(format="%(message)s", stream=sys.stdout, level=level)
    for name in _NOISY_LOGGERS:
        logging.getLogger(name).setLevel(
            logging.INFO if name == "sqlalchemy.engine" and settings.database_echo else logging.WARNING
        )

    structlog.configure(
        processors=[
            structlog.contextvars.merge_contextvars,
            _add_app_name(settings.app_name),
            structlog.processors.add_log_level,
            structlog.processors.TimeStamper(fmt="iso"),
            structlog.processors.StackInfoRenderer(),
            structlog.processors.format_exc_info,
            structlog.processors.JSONRenderer(),
        ],
        wrapper_class=structlog.make_filtering_bound_logger(level),
        context_class=dict,
        logger_factory=structlog.PrintLoggerFactory(),
    )


def get_logger(name: str) -> structlog.stdlib.BoundLogger:
    """Get a logger; call ``.bind(run_id=..., session_id=...)`` for per-run context."""
    return structlog.get_logger(name)


def add_log_context(**kwargs: Any) -> None:
    """Bind request-scoped context (request id, method, path) to every event."""
    structlog.contextvars.bind_contextvars(**kwargs)


def clear_log_context() -> None:
    structlog.contextvars.clear_contextvars()

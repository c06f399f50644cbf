"""structlog setup shared by the API and the arq worker.

Context (request_id, user_id, job) lives in contextvars, so every log line
emitted while handling a request or job carries it without passing loggers around.
"""

import logging
import sys

import structlog


def configure_logging(debug: bool = False, service: str = "toptake-api") -> None:
    level = logging.DEBUG if debug else logging.INFO
    logging.basicConfig(format="%(message)s", stream=sys.stdout, level=level)
    processors = [
        structlog.contextvars.merge_contextvars,
        structlog.processors.add_log_level,
        structlog.processors.TimeStamper(fmt="iso", utc=True),
        structlog.processors.StackInfoRenderer(),
    ]
    if debug:
        processors.append(structlog.dev.ConsoleRenderer())
    else:
        processors += [structlog.processors.format_exc_info, structlog.processors.JSONRenderer()]
    structlog.configure(
        processors=processors,
        wrapper_class=structlog.make_filtering_bound_logger(level),
        context_class=dict,
        logger_factory=structlog.PrintLoggerFactory(),
        cache_logger_on_first_use=True,
    )
    structlog.contextvars.bind_contextvars(service=service)


def get_logger(name: str | None = None) -> structlog.BoundLogger:
    return structlog.get_logger(name)


def bind_request_id(request_id: str) -> None:
    """Start a fresh request context; drops anything bound by a previous request on this task."""
    service = structlog.contextvars.get_contextvars().get("service")
    structlog.contextvars.clear_contextvars()
    structlog.contextvars.bind_contextvars(request_id=request_id)
    if service:
        structlog.contextvars.bind_contextvars(service=service)


def bind_user_id(user_id: str) -> None:
    structlog.contextvars.bind_contextvars(user_id=user_id)


def bind_job(job_name: str, job_id: str | None) -> None:
    structlog.contextvars.bind_contextvars(job=job_name, job_id=job_id)


def current_request_id() -> str | None:
    return structlog.contextvars.get_contextvars().get("request_id")

"""Structured logging configuration using structlog.

Provides JSON-formatted logs with consistent context including:
- request_id: Correlation ID for bridge API requests
- user_id: Current logical user (when known)
- backend: Active persistence backend for the call (local | remote)
- task_name / task_id: Background task context (e.g. migration)
- timestamp: ISO8601 formatted timestamp

Usage:
    from glass.logging import get_logger, configure_logging

    # Configure once at startup
    configure_logging()

    # Get a logger for a module
    logger = get_logger(__name__)
    logger.info("something_happened", extra_field="value")

Background Task Logging:
    async def run(user_id):
        configure_task_logging(task_name="migration", task_id=user_id)
        logger.info("task_started")

Security:
    API keys and decrypted field values are never logged. Use
    compute_key_fingerprint() from glass.services.crypto for key references.
"""

import logging
import sys
from contextvars import ContextVar

import structlog

request_id_var: ContextVar[str | None] = ContextVar("request_id", default=None)
user_id_var: ContextVar[str | None] = ContextVar("user_id", default=None)
backend_var: ContextVar[str | None] = ContextVar("backend", default=None)
task_name_var: ContextVar[str | None] = ContextVar("task_name", default=None)
task_id_var: ContextVar[str | None] = ContextVar("task_id", default=None)


def add_request_context(logger: logging.Logger, method_name: str, event_dict: dict) -> dict:
    """Add call context to all log entries.

    Injects all non-None ContextVar values into the log event dict.
    Explicit keyword arguments on the log call win over context values.
    """
    context = {
        "request_id": request_id_var.get(),
        "user_id": user_id_var.get(),
        "backend": backend_var.get(),
        "task_name": task_name_var.get(),
        "task_id": task_id_var.get(),
    }
    for key, value in context.items():
        if value and key not in event_dict:
            event_dict[key] = value

    return event_dict


def configure_logging(json_format: bool = True, level: int = logging.INFO) -> None:
    """Configure structlog for the application.

    Args:
        json_format: If True, output JSON logs. If False, output console-friendly logs.
        level: Root log level.
    """
    shared_processors = [
        structlog.stdlib.add_log_level,
        structlog.stdlib.add_logger_name,
        structlog.processors.TimeStamper(fmt="iso"),
        add_request_context,
        structlog.processors.StackInfoRenderer(),
        structlog.processors.format_exc_info,
        structlog.processors.UnicodeDecoder(),
    ]

    if json_format:
        renderer = structlog.processors.JSONRenderer()
    else:
        renderer = structlog.dev.ConsoleRenderer()

    structlog.configure(
        processors=shared_processors
        + [
            structlog.stdlib.ProcessorFormatter.wrap_for_formatter,
        ],
        logger_factory=structlog.stdlib.LoggerFactory(),
        wrapper_class=structlog.stdlib.BoundLogger,
        cache_logger_on_first_use=True,
    )

    formatter = structlog.stdlib.ProcessorFormatter(
        foreign_pre_chain=shared_processors,
        processors=[
            structlog.stdlib.ProcessorFormatter.remove_processors_meta,
            renderer,
        ],
    )

    root_logger = logging.getLogger()
    root_logger.handlers.clear()

    handler = logging.StreamHandler(sys.stdout)
    handler.setFormatter(formatter)
    root_logger.addHandler(handler)
    root_logger.setLevel(level)

    # Silence noisy loggers
    logging.getLogger("httpx").setLevel(logging.WARNING)
    logging.getLogger("httpcore").setLevel(logging.WARNING)
    logging.getLogger("uvicorn.access").setLevel(logging.WARNING)
    logging.getLogger("sqlalchemy.engine").setLevel(logging.WARNING)


def get_logger(name: str | None = None) -> structlog.stdlib.BoundLogger:
    """Get a structlog logger for the given name.

    Args:
        name: Logger name (typically __name__).

    Returns:
        A bound structlog logger.
    """
    return structlog.get_logger(name)


def set_request_context(request_id: str | None, user_id: str | None = None) -> None:
    """Set request context for the current async context.

    Args:
        request_id: The request correlation ID.
        user_id: The current user ID (optional).
    """
    request_id_var.set(request_id)
    if user_id is not None:
        user_id_var.set(user_id)


def set_user_context(user_id: str | None) -> None:
    """Set the logical user for subsequent log entries."""
    user_id_var.set(user_id)


def set_backend_context(backend: str | None) -> None:
    """Set the active backend for subsequent log entries."""
    backend_var.set(backend)


def clear_request_context() -> None:
    """Clear all request-scoped context at the end of a request."""
    request_id_var.set(None)
    user_id_var.set(None)
    backend_var.set(None)


def get_request_id() -> str | None:
    """Get the current request ID from context."""
    return request_id_var.get()


def configure_task_logging(
    task_name: str | None = None,
    task_id: str | None = None,
    user_id: str | None = None,
) -> None:
    """Configure logging context for a background task.

    Call this at the start of each detached task. asyncio copies the
    current context when a task is created, so values set here stay
    local to the task.

    Args:
        task_name: The name of the task (e.g. "migration").
        task_id: A task identifier.
        user_id: The user the task works for.
    """
    task_name_var.set(task_name)
    task_id_var.set(task_id)
    if user_id is not None:
        user_id_var.set(user_id)


def clear_task_context() -> None:
    """Clear task context at the end of a task."""
    task_name_var.set(None)
    task_id_var.set(None)
    user_id_var.set(None)

"""
Structured logging setup for the lead pipeline service.
Provides JSON-formatted logs with consistent fields for production monitoring.
"""

import logging
import sys
from typing import Any

import structlog
from structlog.stdlib import LoggerFactory


def setup_logging(log_level: str = "INFO") -> None:
    """
    Configure structured logging with JSON output for production.

    Args:
        log_level: Logging level (DEBUG, INFO, WARNING, ERROR, CRITICAL)
    """
    structlog.configure(
        processors=[
            structlog.stdlib.add_log_level,
            structlog.stdlib.add_logger_name,
            structlog.processors.TimeStamper(fmt="iso"),
            _add_user_context,
            structlog.processors.JSONRenderer(),
        ],
        wrapper_class=structlog.stdlib.BoundLogger,
        logger_factory=LoggerFactory(),
        context_class=dict,
        cache_logger_on_first_use=True,
    )

    logging.basicConfig(
        format="%(message)s",
        stream=sys.stdout,
        level=getattr(logging, log_level.upper(), logging.INFO),
    )

    # Suppress noisy third-party loggers
    logging.getLogger("httpx").setLevel(logging.WARNING)
    logging.getLogger("httpcore").setLevel(logging.WARNING)
    logging.getLogger("uvicorn.access").setLevel(logging.WARNING)


def _add_user_context(logger, method_name: str, event_dict: dict[str, Any]) -> dict[str, Any]:
    """Promote contextvars bound with bind_user_context into every entry."""
    context = structlog.contextvars.get_contextvars()
    for key in ("user_id", "request_id"):
        if key in context and key not in event_dict:
            event_dict[key] = context[key]
    return event_dict


def bind_user_context(user_id: str, request_id: str | None = None) -> None:
    """Bind the signed-in user (and request id) for the rest of the current task."""
    values = {"user_id": user_id}
    if request_id:
        values["request_id"] = request_id
    structlog.contextvars.bind_contextvars(**values)


def get_logger(name: str = None) -> structlog.stdlib.BoundLogger:
    """
    Get a structured logger instance.

    Args:
        name: Logger name (usually __name__)

    Returns:
        Configured structlog logger
    """
    return structlog.get_logger(name)


def log_triage_action(
    action: str,
    user_id: str,
    triage_id: str,
    status: str,
    duration_ms: float,
    error: str | None = None,
):
    """Log triage action outcomes with consistent fields."""
    logger = get_logger("triage")

    log_data = {
        "action": action,
        "user_id": user_id,
        "triage_id": triage_id,
        "status": status,
        "duration_ms": duration_ms,
        "event_type": "triage_action",
    }

    if error:
        log_data["error"] = error
        logger.error("Triage action failed", **log_data)
    else:
        logger.info("Triage action completed", **log_data)


def log_request(method: str, path: str, status_code: int, duration_ms: float, user_id: str = None):
    """Log HTTP requests with consistent fields."""
    logger = get_logger("http")

    log_data = {
        "method": method,
        "path": path,
        "status_code": status_code,
        "duration_ms": duration_ms,
        "event_type": "http_request",
    }

    if user_id:
        log_data["user_id"] = user_id

    if status_code >= 400:
        logger.warning("HTTP request failed", **log_data)
    else:
        logger.info("HTTP request completed", **log_data)

"""
Structured Logging Configuration with structlog

Outputs JSON logs that are searchable in any log aggregator.
Every log includes: request_id, chat_id, version, stage, timestamp.
"""

import sys
import logging
import structlog
from typing import Optional, Any, Dict
from datetime import datetime
from contextvars import ContextVar
from functools import wraps

# Context variables for request-scoped logging
request_id_var: ContextVar[Optional[str]] = ContextVar("request_id", default=None)
chat_id_var: ContextVar[Optional[int]] = ContextVar("chat_id", default=None)
stage_var: ContextVar[Optional[str]] = ContextVar("stage", default=None)

# Application version
APP_VERSION = "1.0.0"


def add_app_context(
    logger: logging.Logger,
    method_name: str,
    event_dict: Dict[str, Any]
) -> Dict[str, Any]:
    """Add application context to every log entry."""
    event_dict["version"] = APP_VERSION

    request_id = request_id_var.get()
    if request_id:
        event_dict.setdefault("request_id", request_id)

    chat_id = chat_id_var.get()
    if chat_id is not None:
        event_dict.setdefault("chat_id", chat_id)

    stage = stage_var.get()
    if stage:
        event_dict.setdefault("stage", stage)

    return event_dict


def add_timestamp(
    logger: logging.Logger,
    method_name: str,
    event_dict: Dict[str, Any]
) -> Dict[str, Any]:
    """Add ISO format timestamp."""
    event_dict["timestamp"] = datetime.utcnow().isoformat() + "Z"
    return event_dict


def setup_logging(
    log_level: str = "INFO",
    json_format: bool = True,
):
    """
    Configure structured logging for the application.

    Args:
        log_level: Logging level (DEBUG, INFO, WARNING, ERROR)
        json_format: If True, output JSON; if False, output colored console logs
    """
    logging.basicConfig(
        format="%(message)s",
        stream=sys.stdout,
        level=getattr(logging, log_level.upper()),
    )

    # Silence noisy loggers
    logging.getLogger("httpx").setLevel(logging.WARNING)
    logging.getLogger("httpcore").setLevel(logging.WARNING)
    logging.getLogger("asyncio").setLevel(logging.WARNING)

    if json_format:
        renderer = structlog.processors.JSONRenderer()
    else:
        renderer = structlog.dev.ConsoleRenderer(colors=True)

    structlog.configure(
        processors=[
            structlog.stdlib.filter_by_level,
            add_timestamp,
            add_app_context,
            structlog.stdlib.add_logger_name,
            structlog.stdlib.add_log_level,
            structlog.stdlib.PositionalArgumentsFormatter(),
            structlog.processors.UnicodeDecoder(),
            structlog.processors.StackInfoRenderer(),
            structlog.processors.format_exc_info,
            renderer,
        ],
        context_class=dict,
        logger_factory=structlog.stdlib.LoggerFactory(),
        cache_logger_on_first_use=True,
    )


def get_logger(name: str = __name__) -> structlog.stdlib.BoundLogger:
    """Get a structured logger instance."""
    return structlog.get_logger(name)


class LogContext:
    """
    Context manager for setting logging context.

    Usage:
        with LogContext(request_id="abc123", chat_id=42, stage="composited"):
            logger.info("overlay_started")
    """

    def __init__(
        self,
        request_id: Optional[str] = None,
        chat_id: Optional[int] = None,
        stage: Optional[str] = None
    ):
        self.request_id = request_id
        self.chat_id = chat_id
        self.stage = stage
        self._request_id_token = None
        self._chat_id_token = None
        self._stage_token = None

    def __enter__(self):
        if self.request_id:
            self._request_id_token = request_id_var.set(self.request_id)
        if self.chat_id is not None:
            self._chat_id_token = chat_id_var.set(self.chat_id)
        if self.stage:
            self._stage_token = stage_var.set(self.stage)
        return self

    def __exit__(self, exc_type, exc_val, exc_tb):
        if self._stage_token:
            stage_var.reset(self._stage_token)
        if self._chat_id_token:
            chat_id_var.reset(self._chat_id_token)
        if self._request_id_token:
            request_id_var.reset(self._request_id_token)
        return False


def set_request_context(request_id: str, chat_id: Optional[int] = None, stage: Optional[str] = None):
    """Set the current request context for logging."""
    request_id_var.set(request_id)
    if chat_id is not None:
        chat_id_var.set(chat_id)
    if stage:
        stage_var.set(stage)


def clear_request_context():
    """Clear the current request context."""
    request_id_var.set(None)
    chat_id_var.set(None)
    stage_var.set(None)


def with_logging(stage: str):
    """
    Decorator to wrap a function with logging context.

    Usage:
        @with_logging("watermark_reset")
        def reset(chat_id: int) -> None:
            ...
    """
    def decorator(func):
        @wraps(func)
        def wrapper(*args, **kwargs):
            logger = get_logger(func.__module__)
            token = stage_var.set(stage)

            logger.info("stage_started", stage=stage)
            start_time = datetime.utcnow()

            try:
                result = func(*args, **kwargs)
                duration_ms = int((datetime.utcnow() - start_time).total_seconds() * 1000)
                logger.info(
                    "stage_completed",
                    stage=stage,
                    duration_ms=duration_ms
                )
                return result
            except Exception as e:
                duration_ms = int((datetime.utcnow() - start_time).total_seconds() * 1000)
                logger.error(
                    "stage_failed",
                    stage=stage,
                    duration_ms=duration_ms,
                    error=str(e),
                    error_type=type(e).__name__
                )
                raise
            finally:
                stage_var.reset(token)

        return wrapper

    return decorator


# Example log output structure:
# {
#   "timestamp": "2026-05-20T10:00:00Z",
#   "level": "info",
#   "event": "stage_completed",
#   "stage": "composited",
#   "request_id": "9b2f0c6d6d1e4b5a8f1f0c2b7f7b3c11",
#   "chat_id": 123456789,
#   "version": "1.0.0",
#   "duration_ms": 4200
# }

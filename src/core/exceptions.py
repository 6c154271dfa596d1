"""
Global Exception Handling

Typed failures for the processing pipeline and structured error
responses for the HTTP surface.
"""

import traceback
from typing import Optional, Dict, Any
from datetime import datetime
from fastapi import FastAPI, Request, HTTPException
from fastapi.responses import JSONResponse
from starlette.middleware.base import BaseHTTPMiddleware

from src.core.logging import get_logger, request_id_var, chat_id_var

logger = get_logger(__name__)


# =============================================================================
# Custom Exceptions
# =============================================================================

class WatermarkBotException(Exception):
    """Base exception for the watermark bot.

    Every failure carries the request and chat it belongs to so that it can
    be logged and reported without any extra lookup.
    """

    user_message = "Something went wrong while processing your file"

    def __init__(
        self,
        message: str,
        code: int = 500,
        request_id: Optional[str] = None,
        chat_id: Optional[int] = None,
        stage: Optional[str] = None,
        details: Optional[Dict[str, Any]] = None,
        user_message: Optional[str] = None
    ):
        self.message = message
        self.code = code
        self.request_id = request_id or request_id_var.get()
        self.chat_id = chat_id if chat_id is not None else chat_id_var.get()
        self.stage = stage
        self.details = details or {}
        if user_message is not None:
            self.user_message = user_message
        super().__init__(self.message)

    def to_log_dict(self) -> Dict[str, Any]:
        return {
            "error": self.message,
            "error_type": type(self).__name__,
            "code": self.code,
            "request_id": self.request_id,
            "chat_id": self.chat_id,
            "failed_stage": self.stage,
            "details": self.details,
        }


class ValidationError(WatermarkBotException):
    """Raised when user input is rejected before any external process runs."""

    user_message = "Watermark file must be a PNG image"

    def __init__(self, message: str, **kwargs):
        super().__init__(message, code=400, **kwargs)


class WatermarkMissingError(ValidationError):
    """Raised when media arrives for a session without a watermark."""

    user_message = "Watermark is not set"

    def __init__(self, message: str = "Watermark is not set", **kwargs):
        super().__init__(message, **kwargs)


class CompositingError(WatermarkBotException):
    """Raised when the overlay process fails."""

    user_message = "Failed to apply the watermark"

    def __init__(self, message: str, exit_code: Optional[int] = None, **kwargs):
        super().__init__(message, code=500, **kwargs)
        self.exit_code = exit_code
        self.details["exit_code"] = exit_code


class TransferError(WatermarkBotException):
    """Raised when a Telegram API call or file transfer fails."""

    user_message = "Failed to transfer the file"

    def __init__(
        self,
        message: str,
        method: Optional[str] = None,
        http_status: Optional[int] = None,
        **kwargs
    ):
        super().__init__(message, code=502, **kwargs)
        self.method = method
        self.http_status = http_status
        self.details["method"] = method
        self.details["http_status"] = http_status


class FilesystemError(WatermarkBotException):
    """Raised when workspace or watermark storage operations fail."""

    def __init__(self, message: str, path: Optional[str] = None, **kwargs):
        super().__init__(message, code=500, **kwargs)
        self.details["path"] = path


class PipelineStageError(WatermarkBotException):
    """Wraps an unexpected exception raised inside a pipeline stage."""

    def __init__(self, message: str, stage: str, **kwargs):
        super().__init__(message, code=500, stage=stage, **kwargs)


# =============================================================================
# Exception Handler Middleware
# =============================================================================

class GlobalExceptionMiddleware(BaseHTTPMiddleware):
    """
    Global exception handler middleware.

    Catches all exceptions and returns structured JSON responses.
    """

    async def dispatch(self, request: Request, call_next):
        try:
            response = await call_next(request)
            return response
        except Exception as exc:
            return self._handle_exception(request, exc)

    def _handle_exception(self, request: Request, exc: Exception) -> JSONResponse:
        """Convert exception to structured JSON response."""
        request_id = request_id_var.get()

        if isinstance(exc, WatermarkBotException):
            error_response = {
                "error": exc.message,
                "request_id": exc.request_id or request_id,
                "code": exc.code,
                "stage": exc.stage,
                "details": exc.details,
                "timestamp": datetime.utcnow().isoformat() + "Z"
            }
            status_code = exc.code

        elif isinstance(exc, HTTPException):
            error_response = {
                "error": exc.detail,
                "request_id": request_id,
                "code": exc.status_code,
                "timestamp": datetime.utcnow().isoformat() + "Z"
            }
            status_code = exc.status_code

        else:
            error_response = {
                "error": "Internal server error",
                "request_id": request_id,
                "code": 500,
                "timestamp": datetime.utcnow().isoformat() + "Z"
            }
            status_code = 500

            logger.error(
                "unhandled_exception",
                error=str(exc),
                error_type=type(exc).__name__,
                traceback=traceback.format_exc()
            )

        return JSONResponse(
            status_code=status_code,
            content=error_response
        )


def register_exception_handlers(app: FastAPI):
    """Register custom exception handlers with FastAPI app."""

    @app.exception_handler(WatermarkBotException)
    async def watermark_exception_handler(request: Request, exc: WatermarkBotException):
        logger.error("watermark_bot_exception", **exc.to_log_dict())

        return JSONResponse(
            status_code=exc.code,
            content={
                "error": exc.message,
                "request_id": exc.request_id,
                "chat_id": exc.chat_id,
                "code": exc.code,
                "stage": exc.stage,
                "details": exc.details,
                "timestamp": datetime.utcnow().isoformat() + "Z"
            }
        )

    @app.exception_handler(Exception)
    async def generic_exception_handler(request: Request, exc: Exception):
        logger.error(
            "unhandled_exception",
            error=str(exc),
            error_type=type(exc).__name__,
            path=str(request.url.path),
            traceback=traceback.format_exc()
        )

        return JSONResponse(
            status_code=500,
            content={
                "error": "Internal server error",
                "request_id": request_id_var.get(),
                "code": 500,
                "timestamp": datetime.utcnow().isoformat() + "Z"
            }
        )

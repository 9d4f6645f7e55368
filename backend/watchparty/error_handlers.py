"""
Centralized Error Handlers for the Watch Party backend

Global FastAPI exception handlers that render every error in one shape, plus
the helpers the WebSocket adapter uses to report errors to a client.
"""

from traceback import format_exc
from typing import Any, Union

from fastapi import FastAPI, Request, WebSocket, status
from fastapi.responses import JSONResponse
from fastapi.exceptions import RequestValidationError
from starlette.exceptions import HTTPException as StarletteHTTPException

from watchparty.config import settings
from watchparty.exceptions import AppException, ErrorCode
from watchparty.schemas.ws import ErrorMessage
from watchparty.utils.logging_config import get_logger


logger = get_logger(__name__)


class ErrorResponse:
    """
    Standard error response body.

    {
        "success": false,
        "error": "ERROR_CODE",
        "message": "Human readable message",
        "details": {...},  // optional
        "status_code": 400
    }
    """

    @staticmethod
    def create(
        error_code: Union[ErrorCode, str],
        message: str,
        status_code: int,
        details: dict[str, Any] | None = None,
    ) -> dict[str, Any]:
        response: dict[str, Any] = {
            "success": False,
            "error": error_code.value if isinstance(error_code, ErrorCode) else error_code,
            "message": message,
            "status_code": status_code,
        }
        if details:
            response["details"] = details
        return response


def log_error(
    error: Exception,
    request: Request | None = None,
    level: str = "ERROR",
    extra: dict[str, Any] | None = None,
) -> None:
    """
    Log an error with request context.

    Args:
        error: The exception
        request: Current request, if any
        level: Log level name (ERROR, WARNING, INFO)
        extra: Additional fields
    """
    log_data: dict[str, Any] = {
        "error_type": type(error).__name__,
        "error_message": str(error),
    }

    if request:
        client_host: str | None = None
        if request.client is not None:
            client_host = request.client.host
        log_data.update({
            "method": request.method,
            "url": str(request.url),
            "client": client_host,
        })

    if extra:
        log_data.update(extra)

    logger.opt(exception=error if level.upper() == "ERROR" else None).log(level.upper(), "Error occurred", extra=log_data)


def register_exception_handlers(app: FastAPI) -> None:
    """Install every handler on the app. Called from main.py."""

    @app.exception_handler(AppException)
    async def app_exception_handler(
        request: Request, exc: AppException
    ) -> JSONResponse:
        log_error(exc, request, level="WARNING")

        return JSONResponse(
            status_code=exc.status_code,
            content={"success": False, **exc.to_dict()},
        )

    @app.exception_handler(StarletteHTTPException)
    async def http_exception_handler(
        request: Request, exc: StarletteHTTPException
    ) -> JSONResponse:
        error_code_map = {
            400: ErrorCode.VALIDATION_ERROR,
            401: ErrorCode.INVALID_TOKEN,
            404: ErrorCode.NOT_FOUND,
            422: ErrorCode.VALIDATION_ERROR,
            500: ErrorCode.INTERNAL_SERVER_ERROR,
        }
        error_code = error_code_map.get(exc.status_code, ErrorCode.INTERNAL_SERVER_ERROR)

        log_error(exc, request, level="WARNING")

        return JSONResponse(
            status_code=exc.status_code,
            content=ErrorResponse.create(
                error_code=error_code,
                message=str(exc.detail) if exc.detail else "HTTP error",
                status_code=exc.status_code,
            ),
            headers=getattr(exc, "headers", None),
        )

    @app.exception_handler(RequestValidationError)
    async def validation_exception_handler(
        request: Request, exc: RequestValidationError
    ) -> JSONResponse:
        errors = []
        for error in exc.errors():
            field = ".".join(str(loc) for loc in error["loc"][1:])  # skip 'body'
            errors.append({
                "field": field,
                "message": error["msg"],
                "type": error["type"],
            })

        log_error(
            exc,
            request,
            level="WARNING",
            extra={"validation_errors": errors},
        )

        return JSONResponse(
            status_code=status.HTTP_422_UNPROCESSABLE_ENTITY,
            content=ErrorResponse.create(
                error_code=ErrorCode.VALIDATION_ERROR,
                message="Validation error, check your input",
                status_code=422,
                details={"validation_errors": errors},
            ),
        )

    @app.exception_handler(Exception)
    async def general_exception_handler(
        request: Request, exc: Exception
    ) -> JSONResponse:
        log_error(exc, request, level="ERROR")

        if settings.DEBUG:
            message = f"{type(exc).__name__}: {str(exc)}"
            details = {"traceback": format_exc()}
        else:
            message = "An unexpected error occurred. Please try again later."
            details = None

        return JSONResponse(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            content=ErrorResponse.create(
                error_code=ErrorCode.INTERNAL_SERVER_ERROR,
                message=message,
                status_code=500,
                details=details,
            ),
        )


# ==================== WebSocket Error Handling ====================

class WebSocketErrorHandler:
    """
    Error helpers for WebSocket connections: build ERROR frames, send them
    without ever raising, and close sockets with a proper code.
    """

    @staticmethod
    def error_message(error: Exception, fallback: str = "Failed to process message") -> ErrorMessage:
        """Map an exception onto the ERROR frame shown to the client."""
        if isinstance(error, AppException):
            return ErrorMessage.create(error.message, error.code.value)
        return ErrorMessage.create(fallback, ErrorCode.INTERNAL_SERVER_ERROR.value)

    @staticmethod
    async def send_error_message(websocket: WebSocket, message: ErrorMessage) -> bool:
        """
        Send an ERROR frame.

        Returns:
            bool: True if the frame was written
        """
        try:
            await websocket.send_json(message.to_wire())
            return True
        except Exception as e:
            log_error(e, level="WARNING", extra={"failed_message": message.payload.message})
            return False

    @staticmethod
    async def close(websocket: WebSocket, close_code: int = 1011, reason: str = "") -> None:
        try:
            await websocket.close(code=close_code, reason=reason[:123])
        except Exception as close_error:
            logger.warning("Failed to close websocket", extra={"error": str(close_error)})

    @staticmethod
    def log_websocket_error(
        error: Exception,
        room_id: str | None = None,
        user_id: str | None = None,
        message_type: str | None = None,
    ) -> None:
        log_data: dict[str, Any] = {
            "error_type": type(error).__name__,
            "error_message": str(error),
        }

        if room_id:
            log_data["room_id"] = room_id
        if user_id:
            log_data["user_id"] = user_id
        if message_type:
            log_data["message_type"] = message_type

        logger.warning("WebSocket error occurred", extra=log_data)

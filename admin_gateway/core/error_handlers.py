"""Centralized error handling for the application"""

import logging
from datetime import datetime, timezone
from typing import Any, Dict, Optional

from fastapi import HTTPException, Request, status
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse

from admin_gateway.core.exceptions import PipelineException

logger = logging.getLogger(__name__)


def utc_timestamp() -> str:
    return datetime.now(timezone.utc).isoformat()


def create_success_response(data: Any, status_code: int = status.HTTP_200_OK,
                            headers: Optional[Dict[str, str]] = None) -> JSONResponse:
    """Wrap a payload in the standard success envelope"""
    return JSONResponse(
        status_code=status_code,
        content={"success": True, "data": data, "timestamp": utc_timestamp()},
        headers=headers,
    )


class ErrorHandler:
    """Centralized error handling"""

    @staticmethod
    def create_error_response(
        status_code: int,
        message: str,
        error_code: str = None,
        details: Dict[str, Any] = None,
        headers: Dict[str, str] = None,
    ) -> JSONResponse:
        """Create a standardized error response"""
        error = {"code": error_code, "message": message}
        error.update(details or {})
        content = {
            "success": False,
            "error": error,
            "timestamp": utc_timestamp(),
        }
        return JSONResponse(status_code=status_code, content=content, headers=headers)

    @staticmethod
    def from_exception(exc: PipelineException) -> JSONResponse:
        """
        Build the response for a pipeline rejection.

        Middleware uses this directly: exceptions raised inside
        BaseHTTPMiddleware.dispatch never reach the app's exception handlers.
        """
        return ErrorHandler.create_error_response(
            status_code=exc.status_code,
            message=exc.message,
            error_code=exc.error_code,
            details=exc.details,
            headers=exc.headers,
        )

    @staticmethod
    def internal_error() -> JSONResponse:
        return ErrorHandler.create_error_response(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            message="An unexpected error occurred",
            error_code="INTERNAL_ERROR",
        )


def pipeline_exception_handler(request: Request, exc: PipelineException) -> JSONResponse:
    """Handle pipeline rejections raised from routes and dependencies"""
    logger.warning(f"Pipeline rejection: {exc.message}", extra={
        "error_code": exc.error_code,
        "path": request.url.path
    })
    return ErrorHandler.from_exception(exc)


def validation_exception_handler(request: Request, exc: RequestValidationError) -> JSONResponse:
    """Handle request validation errors"""
    logger.warning(f"Validation error: {exc}", extra={"path": request.url.path})

    fields = {}
    for error in exc.errors():
        field = ".".join(str(x) for x in error["loc"])
        fields[field] = error["msg"]

    return ErrorHandler.create_error_response(
        status_code=status.HTTP_422_UNPROCESSABLE_ENTITY,
        message="Validation failed",
        error_code="VALIDATION_ERROR",
        details={"fields": fields}
    )


def http_exception_handler(request: Request, exc: HTTPException) -> JSONResponse:
    """Handle FastAPI HTTP exceptions"""
    logger.warning(f"HTTP exception: {exc.detail}", extra={
        "status_code": exc.status_code,
        "path": request.url.path
    })

    return ErrorHandler.create_error_response(
        status_code=exc.status_code,
        message=str(exc.detail),
        error_code="HTTP_ERROR",
        headers=getattr(exc, "headers", None),
    )


def general_exception_handler(request: Request, exc: Exception) -> JSONResponse:
    """Handle unexpected exceptions"""
    logger.error(f"Unexpected error: {exc}", extra={"path": request.url.path}, exc_info=True)
    return ErrorHandler.internal_error()

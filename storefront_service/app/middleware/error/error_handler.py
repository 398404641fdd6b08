"""
Error handling middleware for Storefront Service.
Renders every failure through the response envelope.
"""

import traceback
from typing import Any, Dict, List, Optional

import httpx
from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse
from starlette.exceptions import HTTPException as StarletteHTTPException

from ...core.errors import ErrorCode, StorefrontError
from ...utils.envelope import error_body
from ...utils.logging import setup_storefront_logging

logger = setup_storefront_logging("storefront_error_handler")

# Request validation locations that are not part of the field path
_LOCATION_PREFIXES = ("query", "body", "path", "header", "cookie")

_HTTP_ERROR_CODES: Dict[int, ErrorCode] = {
    400: ErrorCode.VALIDATION_ERROR,
    401: ErrorCode.UNAUTHORIZED,
    403: ErrorCode.UNAUTHORIZED,
}


def _field_path(loc: Any) -> str:
    parts = [str(part) for part in loc]
    if parts and parts[0] in _LOCATION_PREFIXES:
        parts = parts[1:]
    return ".".join(parts) or "request"


class StorefrontErrorHandler:
    """
    Centralized error handling for Storefront Service.

    Typed ``StorefrontError`` subclasses carry their own code and HTTP
    status. Anything unexpected becomes ``INTERNAL_SERVER_ERROR``; the
    original message is logged and only echoed back when ``debug`` is on.
    """

    @staticmethod
    def setup_error_handlers(app: FastAPI, debug: bool = False) -> None:
        """
        Setup all error handlers for the FastAPI application.
        """

        @app.exception_handler(StorefrontError)
        async def storefront_error_handler(
            request: Request, exc: StorefrontError
        ) -> JSONResponse:
            """Handle typed storefront errors."""
            return StorefrontErrorHandler._create_error_response(
                request=request,
                status_code=exc.status_code,
                code=exc.code,
                message=exc.message,
                details=exc.details,
                headers=exc.headers,
            )

        @app.exception_handler(RequestValidationError)
        async def validation_exception_handler(
            request: Request, exc: RequestValidationError
        ) -> JSONResponse:
            """Handle FastAPI parameter validation errors."""
            error_details: List[Dict[str, Any]] = [
                {"field": _field_path(error["loc"]), "message": error["msg"]}
                for error in exc.errors()
            ]
            return StorefrontErrorHandler._create_error_response(
                request=request,
                status_code=ErrorCode.VALIDATION_ERROR.http_status,
                code=ErrorCode.VALIDATION_ERROR,
                message="Request validation failed",
                details={"validation_errors": error_details},
            )

        @app.exception_handler(StarletteHTTPException)
        async def http_exception_handler(
            request: Request, exc: StarletteHTTPException
        ) -> JSONResponse:
            """Handle HTTP exceptions from Starlette/FastAPI."""
            code = _HTTP_ERROR_CODES.get(exc.status_code)
            return StorefrontErrorHandler._create_error_response(
                request=request,
                status_code=exc.status_code,
                code=code or "HTTP_ERROR",
                message=str(exc.detail),
                headers=getattr(exc, "headers", None),
            )

        @app.exception_handler(httpx.TransportError)
        async def backend_unreachable_handler(
            request: Request, exc: httpx.TransportError
        ) -> JSONResponse:
            """Handle a commerce backend that could not be reached."""
            logger.error(
                "Commerce backend unreachable",
                extra={
                    "correlation_id": getattr(
                        request.state, "correlation_id", "unknown"
                    ),
                    "path": request.url.path,
                    "exception_type": type(exc).__name__,
                    "exception_message": str(exc),
                    "event_type": "backend_unreachable",
                },
            )
            details = {"exception_type": type(exc).__name__}
            if debug:
                details["diagnostic"] = str(exc)
            return StorefrontErrorHandler._create_error_response(
                request=request,
                status_code=ErrorCode.INTERNAL_SERVER_ERROR.http_status,
                code=ErrorCode.INTERNAL_SERVER_ERROR,
                message="The commerce backend is unavailable",
                details=details,
            )

        @app.exception_handler(Exception)
        async def unhandled_exception_handler(
            request: Request, exc: Exception
        ) -> JSONResponse:
            """Handle anything no other handler claimed."""
            logger.error(
                "Unhandled exception occurred",
                extra={
                    "correlation_id": getattr(
                        request.state, "correlation_id", "unknown"
                    ),
                    "user_id": getattr(request.state, "user_id", None),
                    "path": request.url.path,
                    "method": request.method,
                    "exception_type": type(exc).__name__,
                    "exception_message": str(exc),
                    "traceback": traceback.format_exc(),
                    "event_type": "unhandled_exception",
                },
            )

            details: Dict[str, Any] = {}
            if debug:
                details = {
                    "exception_type": type(exc).__name__,
                    "diagnostic": str(exc),
                }
            return StorefrontErrorHandler._create_error_response(
                request=request,
                status_code=ErrorCode.INTERNAL_SERVER_ERROR.http_status,
                code=ErrorCode.INTERNAL_SERVER_ERROR,
                message="An internal server error occurred",
                details=details,
            )

    @staticmethod
    def _create_error_response(
        request: Request,
        status_code: int,
        code: Any,
        message: str,
        details: Optional[Dict[str, Any]] = None,
        headers: Optional[Dict[str, str]] = None,
    ) -> JSONResponse:
        """
        Create an error envelope response.

        Args:
            request: The FastAPI request object
            status_code: HTTP status code
            code: ``ErrorCode`` or a plain code string
            message: Human-readable error message
            details: Additional error details
            headers: Extra response headers such as ``Retry-After``

        Returns:
            JSONResponse with the error envelope
        """
        correlation_id = getattr(request.state, "correlation_id", None)

        if status_code < 500:
            logger.warning(
                f"Client error: {getattr(code, 'value', code)}",
                extra={
                    "correlation_id": correlation_id,
                    "user_id": getattr(request.state, "user_id", None),
                    "status_code": status_code,
                    "path": request.url.path,
                    "method": request.method,
                    "event_type": "client_error",
                },
            )

        response_headers = dict(headers or {})
        if correlation_id:
            response_headers["X-Correlation-ID"] = correlation_id

        return JSONResponse(
            status_code=status_code,
            content=error_body(code, message, correlation_id, details),
            headers=response_headers,
        )


def setup_storefront_error_handling(app: FastAPI, debug: bool = False) -> None:
    """
    Convenience function to setup error handling for Storefront Service.

    Args:
        app: FastAPI application instance
        debug: Echo unexpected exception messages in ``details.diagnostic``
    """
    error_handler = StorefrontErrorHandler()
    error_handler.setup_error_handlers(app, debug=debug)

    logger.info(
        "Storefront error handling configured",
        extra={"event_type": "error_handler_setup", "debug": debug},
    )

"""
Authentication middleware for Storefront Service.

Identity is optional on the storefront: guests browse, track and order
without an account. A valid bearer credential (``Authorization`` header or
``access_token`` cookie) attaches the caller's identity to
``request.state``; a missing or unreadable one leaves the request
anonymous and the endpoint decides whether that is enough.
"""

import uuid
from typing import Any, Awaitable, Callable, Optional, Tuple

from fastapi import FastAPI, Request, Response
from starlette.middleware.base import BaseHTTPMiddleware

from ...core.settings import get_settings
from ...utils.jwt_handler import JWTHandler, TokenData
from ...utils.logging import setup_storefront_logging

logger = setup_storefront_logging("storefront_auth")

CORRELATION_HEADER = "X-Correlation-ID"


class StorefrontAuthMiddleware(BaseHTTPMiddleware):
    """
    Optional authentication middleware for Storefront Service.

    Features:
    - Bearer header or cookie JWT decoding
    - User context extraction into ``request.state``
    - Correlation ID assignment and echo
    """

    def __init__(
        self,
        app: Any,
        exclude_paths: Optional[list[str]] = None,
        jwt_handler: Optional[JWTHandler] = None,
    ):
        super().__init__(app)
        self.exclude_paths = exclude_paths or [
            "/health",
            "/docs",
            "/redoc",
            "/openapi.json",
        ]

        # Use provided JWT handler or create default one
        if jwt_handler:
            self.jwt_handler = jwt_handler
        else:
            settings = get_settings()
            self.jwt_handler = JWTHandler(
                secret_key=settings.SECRET_KEY, algorithm=settings.JWT_ALGORITHM
            )

    async def dispatch(
        self, request: Request, call_next: Callable[[Request], Awaitable[Response]]
    ) -> Response:
        """
        Attach correlation id and, when present, the caller's identity.
        """
        correlation_id = request.headers.get(CORRELATION_HEADER) or str(uuid.uuid4())
        request.state.correlation_id = correlation_id
        request.state.user_id = None
        request.state.user_role = None
        request.state.token_data = None

        if not self._should_skip_auth(request.url.path):
            token, source = self._extract_token(request)
            if token:
                token_data = self._validate_token(token, source, correlation_id)
                if token_data is not None:
                    request.state.user_id = token_data.user_id
                    request.state.user_role = token_data.role
                    request.state.token_data = token_data

                    logger.debug(
                        "Request authenticated",
                        extra={
                            "correlation_id": correlation_id,
                            "user_id": token_data.user_id,
                            "user_role": token_data.role,
                            "token_source": source,
                            "path": request.url.path,
                            "method": request.method,
                            "event_type": "auth_success",
                        },
                    )

        response = await call_next(request)
        response.headers[CORRELATION_HEADER] = correlation_id
        return response

    def _should_skip_auth(self, path: str) -> bool:
        """
        Check if authentication should be skipped for this path.
        """
        for exclude_path in self.exclude_paths:
            if path == exclude_path or path.startswith(f"{exclude_path}/"):
                return True
        return False

    @staticmethod
    def _extract_token(request: Request) -> Tuple[Optional[str], str]:
        authorization = request.headers.get("Authorization", "")
        scheme, _, credentials = authorization.partition(" ")
        if scheme.lower() == "bearer" and credentials.strip():
            return credentials.strip(), "header"

        token = request.cookies.get("access_token")
        if token and token not in ("null", "undefined") and token.strip():
            return token.strip(), "cookie"
        return None, "none"

    def _validate_token(
        self, token: str, source: str, correlation_id: str
    ) -> Optional[TokenData]:
        try:
            return self.jwt_handler.decode_token(token)
        except ValueError as e:
            logger.warning(
                "Ignoring invalid bearer credential",
                extra={
                    "correlation_id": correlation_id,
                    "token_source": source,
                    "reason": str(e),
                    "event_type": "auth_failed",
                },
            )
            return None


def setup_storefront_auth_middleware(
    app: FastAPI,
    jwt_handler: Optional[JWTHandler] = None,
    exclude_paths: Optional[list[str]] = None,
) -> None:
    """
    Convenience function to setup authentication middleware for Storefront Service.
    """
    app.add_middleware(
        StorefrontAuthMiddleware,
        exclude_paths=exclude_paths,
        jwt_handler=jwt_handler,
    )

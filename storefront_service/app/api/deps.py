"""
FastAPI dependency injection for Storefront Service

Provides the lifecycle service, request validator, rate limiter and the
per-request caller context. Long-lived collaborators (backend client, JWT
handler, optional Redis store) are created once in ``create_app`` and kept
on ``app.state``.
"""

from typing import Optional

from fastapi import Depends, Request

from ..core.settings import StorefrontSettings
from ..policy import CancellationPolicyConfig
from ..repository.order_backend import OrderBackend
from ..services.order_service import OrderLifecycleService, PricingRules, RequestContext
from ..services.rate_limiter import (
    FixedWindowRateLimiter,
    MarkerStore,
    SignedCookieMarkerStore,
)
from ..utils.jwt_handler import JWTHandler
from ..validation import RequestValidator

# =====================================================
# APPLICATION STATE DEPENDENCIES
# =====================================================


def get_app_settings(request: Request) -> StorefrontSettings:
    """Provide the settings the application was created with"""
    return request.app.state.settings


def get_order_backend(request: Request) -> OrderBackend:
    """Provide the shared commerce backend client"""
    return request.app.state.order_backend


def get_jwt_handler(request: Request) -> JWTHandler:
    return request.app.state.jwt_handler


# =====================================================
# SERVICE DEPENDENCIES
# =====================================================


def get_order_service(
    settings: StorefrontSettings = Depends(get_app_settings),
    backend: OrderBackend = Depends(get_order_backend),
    jwt_handler: JWTHandler = Depends(get_jwt_handler),
) -> OrderLifecycleService:
    """Provide a request-scoped OrderLifecycleService"""
    return OrderLifecycleService(
        backend,
        jwt_handler,
        policy_config=CancellationPolicyConfig.from_settings(settings),
        pricing=PricingRules.from_settings(settings),
        guest_token_expire_days=settings.GUEST_TOKEN_EXPIRE_DAYS,
    )


def get_request_validator() -> RequestValidator:
    return RequestValidator()


def get_password_reset_limiter(
    settings: StorefrontSettings = Depends(get_app_settings),
) -> FixedWindowRateLimiter:
    return FixedWindowRateLimiter(
        window_seconds=settings.PASSWORD_RESET_WINDOW_SECONDS,
        limit=settings.PASSWORD_RESET_LIMIT,
    )


def get_marker_store(
    request: Request,
    settings: StorefrontSettings = Depends(get_app_settings),
    jwt_handler: JWTHandler = Depends(get_jwt_handler),
) -> MarkerStore:
    """Redis store when configured, otherwise a signed cookie on the client"""
    redis_store = getattr(request.app.state, "redis_marker_store", None)
    if settings.RATE_LIMIT_STORE == "redis" and redis_store is not None:
        return redis_store
    return SignedCookieMarkerStore(
        jwt_handler, request.cookies, secure=settings.COOKIE_SECURE
    )


# =====================================================
# AUTHENTICATION & REQUEST CONTEXT DEPENDENCIES
# =====================================================


def get_correlation_id(request: Request) -> Optional[str]:
    """Extract correlation ID from request state or headers"""
    correlation_id = getattr(request.state, "correlation_id", None)
    if not correlation_id:
        correlation_id = request.headers.get("X-Correlation-ID") or request.headers.get(
            "x-request-id"
        )
    return correlation_id


def get_client_ip(request: Request) -> Optional[str]:
    forwarded = request.headers.get("X-Forwarded-For")
    if forwarded:
        return forwarded.split(",")[0].strip()
    return request.client.host if request.client else None


def get_guest_token(
    request: Request, settings: StorefrontSettings = Depends(get_app_settings)
) -> Optional[str]:
    """Guest tracking credential from its cookie or the X-Guest-Token header"""
    return request.cookies.get(settings.GUEST_TOKEN_COOKIE) or request.headers.get(
        "X-Guest-Token"
    )


def get_request_context(
    request: Request,
    correlation_id: Optional[str] = Depends(get_correlation_id),
    guest_token: Optional[str] = Depends(get_guest_token),
) -> RequestContext:
    """Caller identity as attached by the auth middleware"""
    token_data = getattr(request.state, "token_data", None)
    return RequestContext(
        user_id=getattr(request.state, "user_id", None),
        user_role=getattr(request.state, "user_role", None),
        email=token_data.email if token_data is not None else None,
        guest_token=guest_token,
        client_ip=get_client_ip(request),
        user_agent=request.headers.get("User-Agent"),
        correlation_id=correlation_id,
    )


# =====================================================
# COMMON DEPENDENCY ALIASES
# =====================================================

# Core dependencies
SettingsDep = Depends(get_app_settings)
RequestContextDep = Depends(get_request_context)
GuestTokenDep = Depends(get_guest_token)
JWTHandlerDep = Depends(get_jwt_handler)

# Service dependencies aliases
OrderServiceDep = Depends(get_order_service)
RequestValidatorDep = Depends(get_request_validator)
PasswordResetLimiterDep = Depends(get_password_reset_limiter)
MarkerStoreDep = Depends(get_marker_store)

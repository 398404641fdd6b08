"""
Password recovery endpoint.
"""

import time

from fastapi import APIRouter, Request
from fastapi.responses import JSONResponse

from ...core.errors import RateLimitedError
from ...schemas.auth import ForgotPasswordRequest
from ...services.order_service import OrderLifecycleService
from ...services.rate_limiter import (
    FixedWindowRateLimiter,
    MarkerStore,
    SignedCookieMarkerStore,
)
from ...utils.envelope import success_response
from ...validation import RequestValidator
from ..deps import (
    MarkerStoreDep,
    OrderServiceDep,
    PasswordResetLimiterDep,
    RequestValidatorDep,
)

router = APIRouter(prefix="/auth")


@router.post("/forgot-password")
async def forgot_password(
    request: Request,
    validator: RequestValidator = RequestValidatorDep,
    limiter: FixedWindowRateLimiter = PasswordResetLimiterDep,
    store: MarkerStore = MarkerStoreDep,
    order_service: OrderLifecycleService = OrderServiceDep,
) -> JSONResponse:
    """Request a password reset without revealing whether the account exists"""
    payload = validator.validate(
        ForgotPasswordRequest, await request.body()
    ).raise_for_errors()

    decision = await limiter.check(store, payload.email, time.time())
    if not decision.allowed:
        raise RateLimitedError(decision.retry_after_seconds)

    result = await order_service.forgot_password(payload)

    response = success_response(result, no_store=True)
    if isinstance(store, SignedCookieMarkerStore):
        store.apply(response)
    return response

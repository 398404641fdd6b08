"""
Storefront error kinds.

Raised by the validator, the policy engine, the lifecycle service and the
backend client. The error handler middleware renders every ``StorefrontError``
through the response envelope using ``ErrorCode.http_status``.
"""

from enum import Enum
from typing import Any, Dict, List, Optional


class ErrorCode(str, Enum):
    VALIDATION_ERROR = "VALIDATION_ERROR"
    INVALID_JSON = "INVALID_JSON"
    UNAUTHORIZED = "UNAUTHORIZED"
    ORDER_NOT_FOUND = "ORDER_NOT_FOUND"
    CANCELLATION_NOT_ALLOWED = "CANCELLATION_NOT_ALLOWED"
    CANCELLATION_WINDOW_EXPIRED = "CANCELLATION_WINDOW_EXPIRED"
    INVENTORY_ERROR = "INVENTORY_ERROR"
    COUPON_INVALID = "COUPON_INVALID"
    VERIFICATION_FAILED = "VERIFICATION_FAILED"
    RATE_LIMITED = "RATE_LIMITED"
    BACKEND_ERROR = "BACKEND_ERROR"
    INTERNAL_SERVER_ERROR = "INTERNAL_SERVER_ERROR"

    @property
    def http_status(self) -> int:
        return _HTTP_STATUS[self]


_HTTP_STATUS: Dict[ErrorCode, int] = {
    ErrorCode.VALIDATION_ERROR: 400,
    ErrorCode.INVALID_JSON: 400,
    ErrorCode.UNAUTHORIZED: 401,
    ErrorCode.VERIFICATION_FAILED: 403,
    ErrorCode.ORDER_NOT_FOUND: 404,
    ErrorCode.CANCELLATION_NOT_ALLOWED: 409,
    ErrorCode.INVENTORY_ERROR: 409,
    ErrorCode.CANCELLATION_WINDOW_EXPIRED: 410,
    ErrorCode.COUPON_INVALID: 422,
    ErrorCode.RATE_LIMITED: 429,
    ErrorCode.INTERNAL_SERVER_ERROR: 500,
    ErrorCode.BACKEND_ERROR: 502,
}


class StorefrontError(Exception):
    """Base class for every typed error the service reports."""

    code: ErrorCode = ErrorCode.INTERNAL_SERVER_ERROR
    default_message = "An internal server error occurred"

    def __init__(
        self,
        message: Optional[str] = None,
        details: Optional[Dict[str, Any]] = None,
        headers: Optional[Dict[str, str]] = None,
    ):
        self.message = message or self.default_message
        self.details = details or {}
        self.headers = headers or {}
        super().__init__(self.message)

    @property
    def status_code(self) -> int:
        return self.code.http_status


class RequestValidationFailed(StorefrontError):
    code = ErrorCode.VALIDATION_ERROR
    default_message = "Request validation failed"

    def __init__(
        self,
        violations: List[Dict[str, str]],
        message: Optional[str] = None,
    ):
        self.violations = violations
        super().__init__(message, details={"validation_errors": violations})


class ValidationRejectedError(StorefrontError):
    code = ErrorCode.VALIDATION_ERROR
    default_message = "The request was rejected"


class InvalidJSONError(StorefrontError):
    code = ErrorCode.INVALID_JSON
    default_message = "Request body is not valid JSON"


class UnauthorizedError(StorefrontError):
    code = ErrorCode.UNAUTHORIZED
    default_message = "Authentication required"


class OrderNotFoundError(StorefrontError):
    code = ErrorCode.ORDER_NOT_FOUND
    default_message = "Order not found"


class CancellationNotAllowedError(StorefrontError):
    code = ErrorCode.CANCELLATION_NOT_ALLOWED
    default_message = "This order can no longer be cancelled"


class CancellationWindowExpiredError(StorefrontError):
    code = ErrorCode.CANCELLATION_WINDOW_EXPIRED
    default_message = "The cancellation window for this order has expired"


class InventoryError(StorefrontError):
    code = ErrorCode.INVENTORY_ERROR
    default_message = "Some items are not available in the requested quantity"


class CouponInvalidError(StorefrontError):
    code = ErrorCode.COUPON_INVALID
    default_message = "The coupon or gift card could not be applied"


class VerificationFailedError(StorefrontError):
    code = ErrorCode.VERIFICATION_FAILED
    default_message = "Order verification failed"


class RateLimitedError(StorefrontError):
    code = ErrorCode.RATE_LIMITED
    default_message = "Too many requests, please try again later"

    def __init__(self, retry_after_seconds: int, message: Optional[str] = None):
        self.retry_after_seconds = retry_after_seconds
        super().__init__(
            message,
            details={"retry_after_seconds": retry_after_seconds},
            headers={"Retry-After": str(retry_after_seconds)},
        )


class BackendError(StorefrontError):
    code = ErrorCode.BACKEND_ERROR
    default_message = "The commerce backend returned an unexpected response"

    def __init__(
        self,
        message: Optional[str] = None,
        upstream_status: Optional[int] = None,
        details: Optional[Dict[str, Any]] = None,
    ):
        self.upstream_status = upstream_status
        merged = dict(details or {})
        if upstream_status is not None:
            merged["upstream_status"] = upstream_status
        super().__init__(message, details=merged)


class BackendConflictError(Exception):
    """Conditional update lost against a concurrent status change."""

    def __init__(self, order_id: str, expected_status: str):
        self.order_id = order_id
        self.expected_status = expected_status
        super().__init__(
            f"Order {order_id} is no longer in status {expected_status}"
        )


ERRORS_BY_CODE: Dict[ErrorCode, type] = {
    ErrorCode.VALIDATION_ERROR: ValidationRejectedError,
    ErrorCode.INVALID_JSON: InvalidJSONError,
    ErrorCode.UNAUTHORIZED: UnauthorizedError,
    ErrorCode.ORDER_NOT_FOUND: OrderNotFoundError,
    ErrorCode.CANCELLATION_NOT_ALLOWED: CancellationNotAllowedError,
    ErrorCode.CANCELLATION_WINDOW_EXPIRED: CancellationWindowExpiredError,
    ErrorCode.INVENTORY_ERROR: InventoryError,
    ErrorCode.COUPON_INVALID: CouponInvalidError,
    ErrorCode.VERIFICATION_FAILED: VerificationFailedError,
}

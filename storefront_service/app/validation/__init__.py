"""
Request validation for Storefront Service.
"""

from .request_validator import (
    FieldViolation,
    Refinement,
    RequestSchema,
    RequestValidator,
    ValidationResult,
)

__all__ = [
    "FieldViolation",
    "Refinement",
    "RequestSchema",
    "RequestValidator",
    "ValidationResult",
]

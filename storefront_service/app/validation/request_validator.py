"""
Request validation for the storefront API.

``RequestValidator.validate`` never raises for bad input. Malformed JSON is
reported as ``INVALID_JSON``; schema and cross-field violations are reported
as ``VALIDATION_ERROR`` with one ``FieldViolation`` per problem.

Cross-field rules are declared on each schema as a ``refinements`` tuple and
only run once every per-field rule has passed.
"""

import json
from typing import (
    Any,
    Callable,
    ClassVar,
    Generic,
    List,
    NamedTuple,
    Optional,
    Tuple,
    Type,
    TypeVar,
    Union,
)

from pydantic import BaseModel, ValidationError

from ..core.errors import ErrorCode, InvalidJSONError, RequestValidationFailed
from ..models.base import StorefrontModel
from ..utils.logging import setup_storefront_logging

logger = setup_storefront_logging("storefront_validation")

MAX_JSON_DEPTH = 10
MAX_ARRAY_SIZE = 1000
DANGEROUS_KEYS = ("__proto__", "constructor", "prototype")


class Refinement(NamedTuple):
    """Cross-field rule; ``path`` gets ``message`` when ``predicate`` fails."""

    path: str
    message: str
    predicate: Callable[[Any], bool]


class FieldViolation(BaseModel):
    field: str
    message: str


class RequestSchema(StorefrontModel):
    """Base class for validated request payloads."""

    refinements: ClassVar[Tuple[Refinement, ...]] = ()

    def normalize(self) -> "RequestSchema":
        return self


T = TypeVar("T", bound=RequestSchema)


class ValidationResult(Generic[T]):
    def __init__(
        self,
        value: Optional[T] = None,
        violations: Optional[List[FieldViolation]] = None,
        error_code: Optional[ErrorCode] = None,
        message: Optional[str] = None,
    ):
        self.value = value
        self.violations = violations or []
        self.error_code = error_code
        self.message = message

    @property
    def ok(self) -> bool:
        return self.error_code is None

    def raise_for_errors(self) -> T:
        """Return the validated value or raise the matching storefront error."""
        if self.error_code == ErrorCode.INVALID_JSON:
            raise InvalidJSONError(self.message)
        if self.error_code == ErrorCode.VALIDATION_ERROR:
            raise RequestValidationFailed(
                [violation.model_dump() for violation in self.violations],
                self.message,
            )
        return self.value


def json_depth(obj: Any, current_depth: int = 0) -> int:
    if current_depth > MAX_JSON_DEPTH + 1:
        return current_depth
    if isinstance(obj, dict):
        return max(
            (json_depth(v, current_depth + 1) for v in obj.values()),
            default=current_depth,
        )
    if isinstance(obj, list):
        return max(
            (json_depth(item, current_depth + 1) for item in obj),
            default=current_depth,
        )
    return current_depth


def has_large_array(obj: Any, max_size: int = MAX_ARRAY_SIZE) -> bool:
    if isinstance(obj, list):
        return len(obj) > max_size or any(has_large_array(i, max_size) for i in obj)
    if isinstance(obj, dict):
        return any(has_large_array(v, max_size) for v in obj.values())
    return False


def has_dangerous_keys(obj: Any) -> bool:
    if isinstance(obj, dict):
        for key, value in obj.items():
            if isinstance(key, str) and key.lower() in DANGEROUS_KEYS:
                return True
            if has_dangerous_keys(value):
                return True
    elif isinstance(obj, list):
        return any(has_dangerous_keys(item) for item in obj)
    return False


class RequestValidator:
    """Validates raw payloads against ``RequestSchema`` subclasses."""

    def validate(
        self, schema: Type[T], raw: Union[bytes, str, dict, Any]
    ) -> ValidationResult[T]:
        if isinstance(raw, (bytes, bytearray, str)):
            try:
                data = json.loads(raw)
            except (ValueError, RecursionError):
                return self._invalid_json("Request body is not valid JSON")
        else:
            data = raw

        if not isinstance(data, dict):
            return self._invalid_json("Request body must be a JSON object")

        security_problem = self._json_security_problem(data)
        if security_problem:
            return self._invalid_json(security_problem)

        try:
            value = schema.model_validate(data)
        except ValidationError as exc:
            violations = [
                FieldViolation(
                    field=".".join(str(loc) for loc in error["loc"]) or "body",
                    message=error["msg"],
                )
                for error in exc.errors()
            ]
            return self._rejected(schema, violations)

        violations = [
            FieldViolation(field=rule.path, message=rule.message)
            for rule in schema.refinements
            if not rule.predicate(value)
        ]
        if violations:
            return self._rejected(schema, violations)

        return ValidationResult(value=value.normalize())

    def _json_security_problem(self, data: Any) -> Optional[str]:
        if json_depth(data) > MAX_JSON_DEPTH:
            return f"JSON object too deeply nested (max depth: {MAX_JSON_DEPTH})"
        if has_large_array(data):
            return f"JSON contains array larger than {MAX_ARRAY_SIZE} elements"
        if has_dangerous_keys(data):
            return "JSON contains potentially dangerous keys"
        return None

    @staticmethod
    def _invalid_json(message: str) -> ValidationResult:
        logger.info("Rejected malformed JSON payload", extra={"reason": message})
        return ValidationResult(error_code=ErrorCode.INVALID_JSON, message=message)

    @staticmethod
    def _rejected(
        schema: Type[RequestSchema], violations: List[FieldViolation]
    ) -> ValidationResult:
        logger.info(
            "Request failed validation",
            extra={
                "schema": schema.__name__,
                "fields": [violation.field for violation in violations],
            },
        )
        return ValidationResult(
            violations=violations,
            error_code=ErrorCode.VALIDATION_ERROR,
            message="Request validation failed",
        )

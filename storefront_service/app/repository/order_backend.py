"""
Backend commerce service collaborator.

The backend owns persistence, inventory, coupons, payments and carrier
feeds. Every response follows one contract::

    2xx  {"success": true, "data": <payload>}
    4xx/5xx  {"success": false, "error": {"code": ..., "message": ...}}

A 2xx body that does not match the contract raises ``BackendError``; there
is no guessing between alternative shapes. Transport failures
(``httpx.TransportError``) propagate unchanged to the API boundary.
"""

from abc import ABC, abstractmethod
from datetime import datetime
from decimal import Decimal
from typing import Any, Dict, List, Optional
from urllib.parse import quote

import httpx
from pydantic import BaseModel, TypeAdapter, ValidationError

from ..core.errors import (
    ERRORS_BY_CODE,
    BackendConflictError,
    BackendError,
    ErrorCode,
    OrderNotFoundError,
    StorefrontError,
    UnauthorizedError,
    ValidationRejectedError,
)
from ..models import Order, OrderStatus, StorefrontModel
from ..schemas.order import (
    CarrierEvent,
    ListOrdersQuery,
    OrderItemInput,
    OrderPage,
    OrderStatistics,
)
from ..utils.logging import setup_storefront_logging

logger = setup_storefront_logging("storefront_backend")


def path_segment(value: str) -> str:
    """Percent-encode one URL path segment, dot segments included."""
    segment = quote(str(value), safe="")
    if segment in (".", ".."):
        return segment.replace(".", "%2E")
    return segment


# =====================================================
# CONTRACT MODELS
# =====================================================


class InventoryLine(StorefrontModel):
    """Priced availability for one requested line"""

    product_id: str
    variant_id: Optional[str] = None
    name: str
    sku: Optional[str] = None
    unit_price: Decimal
    requested: int
    available: int

    @property
    def is_short(self) -> bool:
        return self.available < self.requested


class InventoryCheck(StorefrontModel):
    lines: List[InventoryLine]


class CouponResult(StorefrontModel):
    code: str
    valid: bool
    discount: Decimal = Decimal("0")
    message: Optional[str] = None


class GiftCardResult(StorefrontModel):
    code: str
    valid: bool
    balance: Decimal = Decimal("0")
    message: Optional[str] = None


class CarrierFeed(StorefrontModel):
    events: List[CarrierEvent]


class OrderBackend(ABC):
    """Operations the storefront needs from the commerce backend."""

    @abstractmethod
    async def check_inventory(self, items: List[OrderItemInput]) -> List[InventoryLine]:
        ...

    @abstractmethod
    async def validate_coupon(self, code: str, subtotal: Decimal) -> CouponResult:
        ...

    @abstractmethod
    async def validate_gift_card(self, code: str) -> GiftCardResult:
        ...

    @abstractmethod
    async def create_order(self, order: Order) -> Order:
        ...

    @abstractmethod
    async def get_order(self, order_id: str) -> Order:
        """Raises ``OrderNotFoundError`` when the id is unknown."""

    @abstractmethod
    async def get_order_by_number(self, order_number: str) -> Order:
        """Raises ``OrderNotFoundError`` when the number is unknown."""

    @abstractmethod
    async def update_order_if_status(
        self,
        order_id: str,
        expected_status: OrderStatus,
        order: Order,
        expected_updated_at: Optional[datetime] = None,
    ) -> Order:
        """
        Replace the stored order only if it is still in ``expected_status``
        (and, when given, still carries ``expected_updated_at``).

        Raises:
            BackendConflictError: A concurrent change won
        """

    @abstractmethod
    async def initialize_payment(
        self, order: Order, payment_details: Optional[Dict[str, Any]] = None
    ) -> Dict[str, Any]:
        ...

    @abstractmethod
    async def get_carrier_events(
        self, carrier: str, tracking_number: str
    ) -> List[CarrierEvent]:
        ...

    @abstractmethod
    async def search_orders(
        self, query: ListOrdersQuery, customer_id: Optional[str] = None
    ) -> OrderPage:
        ...

    @abstractmethod
    async def order_statistics(
        self, query: ListOrdersQuery, customer_id: Optional[str] = None
    ) -> OrderStatistics:
        ...

    @abstractmethod
    async def request_password_reset(self, email: str) -> None:
        ...

    async def close(self) -> None:
        return None


# =====================================================
# ERROR CLASSIFICATION
# =====================================================


def classify_backend_error(status_code: int, body: Any) -> StorefrontError:
    """Map a non-2xx backend response onto a storefront error kind."""
    error = body.get("error") if isinstance(body, dict) else None
    code = error.get("code") if isinstance(error, dict) else None
    message = error.get("message") if isinstance(error, dict) else None
    details = error.get("details") if isinstance(error, dict) else None
    if details is not None and not isinstance(details, dict):
        details = {"backend_details": details}

    if code in ErrorCode._value2member_map_:
        error_class = ERRORS_BY_CODE.get(ErrorCode(code))
        if error_class is not None:
            return error_class(message, details=details)

    if status_code in (400, 422):
        return ValidationRejectedError(message, details=details)
    if status_code in (401, 403):
        return UnauthorizedError(message)
    if status_code == 404:
        return OrderNotFoundError(message)
    return BackendError(message, upstream_status=status_code, details=details)


# =====================================================
# HTTP IMPLEMENTATION
# =====================================================


class HttpOrderBackend(OrderBackend):
    """Backend collaborator reached over HTTP with a shared connection pool."""

    def __init__(
        self,
        base_url: str,
        timeout: float = 10.0,
        max_connections: int = 100,
        client: Optional[httpx.AsyncClient] = None,
    ):
        self.base_url = base_url.rstrip("/")
        self.timeout = timeout
        self.client = client or httpx.AsyncClient(
            timeout=httpx.Timeout(timeout),
            limits=httpx.Limits(max_connections=max_connections),
        )

    async def _request(
        self,
        method: str,
        path: str,
        json: Optional[Dict[str, Any]] = None,
        params: Optional[Dict[str, Any]] = None,
        timeout: Optional[float] = None,
        conflict_on_409: Optional[BackendConflictError] = None,
    ) -> Any:
        url = f"{self.base_url}{path}"
        try:
            response = await self.client.request(
                method,
                url,
                json=json,
                params=params,
                timeout=timeout if timeout is not None else self.timeout,
            )
        except httpx.TransportError as e:
            logger.error(
                "Backend request failed",
                extra={
                    "method": method,
                    "path": path,
                    "error_type": type(e).__name__,
                    "error": str(e),
                },
            )
            raise

        body = self._json(response)

        if response.is_success:
            if (
                not isinstance(body, dict)
                or body.get("success") is not True
                or "data" not in body
            ):
                logger.error(
                    "Backend response does not match contract",
                    extra={
                        "method": method,
                        "path": path,
                        "status_code": response.status_code,
                    },
                )
                raise BackendError(
                    "Malformed response from the commerce backend",
                    upstream_status=response.status_code,
                )
            return body["data"]

        if response.status_code == 409 and conflict_on_409 is not None:
            raise conflict_on_409

        logger.warning(
            "Backend returned an error response",
            extra={
                "method": method,
                "path": path,
                "status_code": response.status_code,
            },
        )
        raise classify_backend_error(response.status_code, body)

    @staticmethod
    def _json(response: httpx.Response) -> Any:
        try:
            return response.json()
        except ValueError:
            return None

    @staticmethod
    def _parse(model: Any, data: Any, what: str) -> Any:
        try:
            if isinstance(model, type) and issubclass(model, BaseModel):
                return model.model_validate(data)
            return TypeAdapter(model).validate_python(data)
        except ValidationError as e:
            logger.error(
                "Backend payload failed validation",
                extra={"payload": what, "errors": e.error_count()},
            )
            raise BackendError(
                f"Malformed {what} from the commerce backend",
                details={"payload": what},
            )

    async def check_inventory(self, items: List[OrderItemInput]) -> List[InventoryLine]:
        data = await self._request(
            "POST",
            "/inventory/check",
            json={"items": [item.to_wire() for item in items]},
        )
        return self._parse(InventoryCheck, data, "inventory check").lines

    async def validate_coupon(self, code: str, subtotal: Decimal) -> CouponResult:
        data = await self._request(
            "POST", "/coupons/validate", json={"code": code, "subtotal": str(subtotal)}
        )
        return self._parse(CouponResult, data, "coupon validation")

    async def validate_gift_card(self, code: str) -> GiftCardResult:
        data = await self._request("POST", "/gift-cards/validate", json={"code": code})
        return self._parse(GiftCardResult, data, "gift card validation")

    async def create_order(self, order: Order) -> Order:
        data = await self._request("POST", "/orders", json={"order": order.to_wire()})
        return self._parse(Order, data, "order")

    async def get_order(self, order_id: str) -> Order:
        data = await self._request("GET", f"/orders/{path_segment(order_id)}")
        return self._parse(Order, data, "order")

    async def get_order_by_number(self, order_number: str) -> Order:
        data = await self._request(
            "GET", f"/orders/by-number/{path_segment(order_number)}"
        )
        return self._parse(Order, data, "order")

    async def update_order_if_status(
        self,
        order_id: str,
        expected_status: OrderStatus,
        order: Order,
        expected_updated_at: Optional[datetime] = None,
    ) -> Order:
        payload: Dict[str, Any] = {
            "order": order.to_wire(),
            "expectedStatus": expected_status.value,
        }
        if expected_updated_at is not None:
            payload["expectedUpdatedAt"] = expected_updated_at.isoformat()
        data = await self._request(
            "PUT",
            f"/orders/{path_segment(order_id)}",
            json=payload,
            conflict_on_409=BackendConflictError(order_id, expected_status.value),
        )
        return self._parse(Order, data, "order")

    async def initialize_payment(
        self, order: Order, payment_details: Optional[Dict[str, Any]] = None
    ) -> Dict[str, Any]:
        data = await self._request(
            "POST",
            "/payments/initialize",
            json={
                "orderId": order.id,
                "orderNumber": order.order_number,
                "amount": str(order.total),
                "currency": order.currency,
                "method": order.payment_method.value,
                "details": payment_details or {},
            },
        )
        return self._parse(Dict[str, Any], data, "payment initialization")

    async def get_carrier_events(
        self, carrier: str, tracking_number: str
    ) -> List[CarrierEvent]:
        data = await self._request(
            "GET",
            f"/shipments/{path_segment(carrier)}"
            f"/{path_segment(tracking_number)}/events",
        )
        return self._parse(CarrierFeed, data, "carrier feed").events

    def _list_params(
        self, query: ListOrdersQuery, customer_id: Optional[str]
    ) -> Dict[str, Any]:
        params = query.applied_filters()
        if customer_id is not None:
            params["customerId"] = customer_id
        return params

    async def search_orders(
        self, query: ListOrdersQuery, customer_id: Optional[str] = None
    ) -> OrderPage:
        params = self._list_params(query, customer_id)
        params.update(
            {
                "skip": query.skip,
                "limit": query.limit,
                "sortBy": query.sort_by,
                "sortOrder": query.sort_order,
            }
        )
        data = await self._request("GET", "/orders", params=params)
        return self._parse(OrderPage, data, "order page")

    async def order_statistics(
        self, query: ListOrdersQuery, customer_id: Optional[str] = None
    ) -> OrderStatistics:
        data = await self._request(
            "GET", "/orders/statistics", params=self._list_params(query, customer_id)
        )
        return self._parse(OrderStatistics, data, "order statistics")

    async def request_password_reset(self, email: str) -> None:
        await self._request("POST", "/auth/forgot-password", json={"email": email})

    async def close(self) -> None:
        """Close the HTTP client"""
        await self.client.aclose()

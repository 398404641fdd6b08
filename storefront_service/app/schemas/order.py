from datetime import datetime
from decimal import Decimal
from typing import Annotated, Any, ClassVar, Dict, List, Literal, Optional, Tuple

from pydantic import EmailStr, Field, StringConstraints, field_validator

from ..models import (
    Address,
    CancellationReason,
    CancelType,
    Order,
    OrderStatus,
    PaymentMethod,
    PaymentStatus,
    RefundMethod,
    StorefrontModel,
    ensure_utc,
)
from ..policy import AllowedActions, CancellationPolicy
from ..validation import Refinement, RequestSchema

MAX_ORDER_ITEMS = 50
MAX_ITEM_QUANTITY = 99

AddressText = Annotated[
    str, StringConstraints(strip_whitespace=True, min_length=1, max_length=200)
]
PhoneText = Annotated[
    str, StringConstraints(strip_whitespace=True, min_length=10, max_length=200)
]
ShortText = Annotated[
    str, StringConstraints(strip_whitespace=True, min_length=1, max_length=100)
]


# =====================================================
# REQUEST SCHEMAS
# =====================================================


class OrderItemInput(StorefrontModel):
    product_id: ShortText
    variant_id: Optional[ShortText] = None
    quantity: int = Field(..., ge=1, le=MAX_ITEM_QUANTITY)


class AddressInput(StorefrontModel):
    first_name: AddressText
    last_name: AddressText
    address_line1: AddressText
    address_line2: Optional[
        Annotated[str, StringConstraints(strip_whitespace=True, max_length=200)]
    ] = None
    city: AddressText
    state: AddressText
    postal_code: AddressText
    country: AddressText
    phone: PhoneText

    def to_address(self) -> Address:
        return Address(**self.model_dump())


class CreateOrderRequest(RequestSchema):
    """Create order request body"""

    items: List[OrderItemInput] = Field(..., min_length=1, max_length=MAX_ORDER_ITEMS)
    shipping_address: AddressInput
    billing_address: Optional[AddressInput] = None
    use_same_address: bool = True
    shipping_method: ShortText
    payment_method: PaymentMethod
    payment_details: Optional[Dict[str, Any]] = None
    coupon_code: Optional[ShortText] = None
    gift_card_code: Optional[ShortText] = None
    customer_notes: Optional[
        Annotated[str, StringConstraints(strip_whitespace=True, max_length=1000)]
    ] = None
    is_guest_order: bool = False
    guest_email: Optional[EmailStr] = None
    agree_to_terms: Literal[True]
    subscribe: bool = False
    metadata: Optional[Dict[str, Any]] = None

    refinements: ClassVar[Tuple[Refinement, ...]] = (
        Refinement(
            "guestEmail",
            "Guest email is required for guest orders",
            lambda v: not v.is_guest_order or v.guest_email is not None,
        ),
        Refinement(
            "billingAddress",
            "Billing address is required when it differs from the shipping address",
            lambda v: v.use_same_address or v.billing_address is not None,
        ),
    )

    def normalize(self) -> "CreateOrderRequest":
        if self.use_same_address or self.billing_address is None:
            return self.model_copy(
                update={"billing_address": self.shipping_address.model_copy()}
            )
        return self


class CancelItemInput(StorefrontModel):
    item_id: ShortText
    quantity: Optional[int] = Field(None, ge=1)


class CancelOrderRequest(RequestSchema):
    """Cancel order request body"""

    order_id: ShortText
    reason: CancellationReason
    description: Optional[
        Annotated[str, StringConstraints(strip_whitespace=True, max_length=500)]
    ] = None
    cancel_type: CancelType = CancelType.FULL
    items: Optional[List[CancelItemInput]] = None
    request_refund: bool = True
    refund_method: Optional[RefundMethod] = None

    refinements: ClassVar[Tuple[Refinement, ...]] = (
        Refinement(
            "items",
            "Items are required for a partial cancellation",
            lambda v: v.cancel_type != CancelType.PARTIAL or bool(v.items),
        ),
    )


class TrackOrderRequest(RequestSchema):
    """Guest or customer order lookup by (order number, email)"""

    order_number: Annotated[
        str, StringConstraints(strip_whitespace=True, min_length=1, max_length=50)
    ]
    email: EmailStr
    phone: Optional[
        Annotated[str, StringConstraints(strip_whitespace=True, max_length=20)]
    ] = None


class CancellationPolicyQuery(RequestSchema):
    order_id: ShortText


class ListOrdersQuery(RequestSchema):
    """Query string for list-orders"""

    status: Optional[OrderStatus] = None
    payment_status: Optional[PaymentStatus] = None
    date_from: Optional[datetime] = None
    date_to: Optional[datetime] = None
    min_amount: Optional[Decimal] = Field(None, ge=0)
    max_amount: Optional[Decimal] = Field(None, ge=0)
    search: Optional[
        Annotated[str, StringConstraints(strip_whitespace=True, max_length=100)]
    ] = None
    page: int = Field(1, ge=1)
    limit: int = Field(20, ge=1, le=100)
    sort_by: Literal["created_at", "total", "order_number", "status"] = "created_at"
    sort_order: Literal["asc", "desc"] = "desc"

    refinements: ClassVar[Tuple[Refinement, ...]] = (
        Refinement(
            "dateFrom",
            "dateFrom must not be later than dateTo",
            lambda v: v.date_from is None
            or v.date_to is None
            or ensure_utc(v.date_from) <= ensure_utc(v.date_to),
        ),
        Refinement(
            "minAmount",
            "minAmount must not be greater than maxAmount",
            lambda v: v.min_amount is None
            or v.max_amount is None
            or v.min_amount <= v.max_amount,
        ),
    )

    def normalize(self) -> "ListOrdersQuery":
        return self.model_copy(
            update={
                "date_from": ensure_utc(self.date_from) if self.date_from else None,
                "date_to": ensure_utc(self.date_to) if self.date_to else None,
                "search": self.search or None,
            }
        )

    @property
    def skip(self) -> int:
        return (self.page - 1) * self.limit

    def applied_filters(self) -> Dict[str, Any]:
        return self.model_dump(
            mode="json",
            by_alias=True,
            exclude_none=True,
            exclude={"page", "limit", "sort_by", "sort_order"},
        )


# =====================================================
# RESPONSE SCHEMAS
# =====================================================


class CreateOrderResult(StorefrontModel):
    order: Order
    payment_required: bool
    payment_gateway_data: Optional[Dict[str, Any]] = None
    tracking_token: Optional[str] = None


class CancellationPolicyResult(StorefrontModel):
    order_id: str
    order_number: str
    status: OrderStatus
    payment_status: PaymentStatus
    policy: CancellationPolicy
    allowed_actions: AllowedActions


class CarrierEvent(StorefrontModel):
    """Tracking event reported by a shipping carrier"""

    timestamp: datetime
    status: str
    description: Optional[str] = None
    location: Optional[str] = None

    @field_validator("timestamp")
    @classmethod
    def timestamp_as_utc(cls, value: datetime) -> datetime:
        return ensure_utc(value)


class TimelineEntry(StorefrontModel):
    status: str
    label: str
    state: Literal["completed", "current", "upcoming"]
    source: Literal["history", "carrier", "projection"]
    timestamp: Optional[datetime] = None
    note: Optional[str] = None
    location: Optional[str] = None


class ShipmentInfo(StorefrontModel):
    carrier: str
    tracking_number: str
    tracking_url: Optional[str] = None
    estimated_delivery: Optional[datetime] = None
    delivered_at: Optional[datetime] = None


class TrackedItem(StorefrontModel):
    name: str
    quantity: int
    cancelled_quantity: int = 0


class OrderTrackingData(StorefrontModel):
    order_number: str
    status: OrderStatus
    payment_status: PaymentStatus
    placed_at: datetime
    total: Decimal
    currency: str
    shipment: Optional[ShipmentInfo] = None
    items: List[TrackedItem]
    timeline: List[TimelineEntry]
    allowed_actions: AllowedActions


class OrderPage(StorefrontModel):
    """A page of orders plus the size of the full filtered set"""

    orders: List[Order]
    total: int


class OrderStatistics(StorefrontModel):
    total_orders: int
    total_revenue: Decimal
    average_order_value: Decimal
    orders_by_status: Dict[str, int]
    orders_by_payment_status: Dict[str, int]


class Pagination(StorefrontModel):
    page: int
    limit: int
    total: int
    total_pages: int
    has_next: bool
    has_prev: bool


class FilterMetadata(StorefrontModel):
    applied: Dict[str, Any]
    available_statuses: List[OrderStatus]
    available_payment_statuses: List[PaymentStatus]
    sort_by: str
    sort_order: str


class OrderListResult(StorefrontModel):
    orders: List[Order]
    pagination: Pagination
    statistics: OrderStatistics
    filters: FilterMetadata

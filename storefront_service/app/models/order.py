from datetime import datetime
from decimal import Decimal
from enum import Enum
from typing import Any, Dict, List, Optional

from pydantic import Field, field_validator

from .base import StorefrontModel, ensure_utc


class OrderStatus(str, Enum):
    PENDING = "pending"
    PROCESSING = "processing"
    CONFIRMED = "confirmed"
    SHIPPED = "shipped"
    OUT_FOR_DELIVERY = "out-for-delivery"
    DELIVERED = "delivered"
    CANCELLED = "cancelled"
    FAILED = "failed"
    REFUNDED = "refunded"


class PaymentStatus(str, Enum):
    PENDING = "pending"
    PROCESSING = "processing"
    AUTHORIZED = "authorized"
    PAID = "paid"
    FAILED = "failed"
    REFUNDED = "refunded"
    PARTIALLY_REFUNDED = "partially-refunded"


class PaymentMethod(str, Enum):
    CARD = "card"
    UPI = "upi"
    NETBANKING = "netbanking"
    WALLET = "wallet"
    COD = "cod"
    EMI = "emi"


class CancellationReason(str, Enum):
    CHANGED_MIND = "changed-mind"
    ORDERED_BY_MISTAKE = "ordered-by-mistake"
    FOUND_BETTER_PRICE = "found-better-price"
    DELIVERY_TOO_SLOW = "delivery-too-slow"
    SHIPPING_ADDRESS_WRONG = "shipping-address-wrong"
    PAYMENT_ISSUE = "payment-issue"
    ITEM_NOT_NEEDED = "item-not-needed"
    OTHER = "other"


class CancelType(str, Enum):
    FULL = "full"
    PARTIAL = "partial"


class RefundMethod(str, Enum):
    ORIGINAL_PAYMENT = "original-payment"
    STORE_CREDIT = "store-credit"
    BANK_TRANSFER = "bank-transfer"


class HistoryScope(str, Enum):
    ORDER = "order"
    ITEMS = "items"


class Address(StorefrontModel):
    first_name: str
    last_name: str
    address_line1: str
    address_line2: Optional[str] = None
    city: str
    state: str
    postal_code: str
    country: str
    phone: str

    @property
    def full_name(self) -> str:
        return f"{self.first_name} {self.last_name}".strip()


class OrderItem(StorefrontModel):
    id: str
    product_id: str
    variant_id: Optional[str] = None
    name: str
    sku: Optional[str] = None
    quantity: int = Field(..., ge=1)
    unit_price: Decimal
    subtotal: Decimal
    tax: Decimal = Decimal("0")
    total: Decimal
    cancelled_quantity: int = Field(0, ge=0)

    @property
    def remaining_quantity(self) -> int:
        return self.quantity - self.cancelled_quantity


class ItemQuantity(StorefrontModel):
    item_id: str
    quantity: int


class StatusHistoryEntry(StorefrontModel):
    status: OrderStatus
    timestamp: datetime
    note: Optional[str] = None
    reason: Optional[str] = None
    actor: Optional[str] = None
    scope: HistoryScope = HistoryScope.ORDER
    items: List[ItemQuantity] = []

    @field_validator("timestamp")
    @classmethod
    def timestamp_as_utc(cls, value: datetime) -> datetime:
        return ensure_utc(value)


class Shipment(StorefrontModel):
    carrier: str
    tracking_number: str
    estimated_delivery: Optional[datetime] = None
    delivered_at: Optional[datetime] = None


class Order(StorefrontModel):
    id: str
    order_number: str
    customer_id: Optional[str] = None
    customer_email: str
    customer_phone: Optional[str] = None
    is_guest_order: bool = False

    items: List[OrderItem]
    shipping_address: Address
    billing_address: Address
    shipping_method: str
    payment_method: PaymentMethod
    payment_status: PaymentStatus = PaymentStatus.PENDING
    coupon_code: Optional[str] = None
    gift_card_code: Optional[str] = None
    customer_notes: Optional[str] = None

    currency: str = "INR"
    subtotal: Decimal
    discount: Decimal = Decimal("0")
    gift_card_amount: Decimal = Decimal("0")
    tax: Decimal = Decimal("0")
    shipping_cost: Decimal = Decimal("0")
    total: Decimal
    refunded_amount: Decimal = Decimal("0")

    status: OrderStatus = OrderStatus.PENDING
    status_history: List[StatusHistoryEntry] = []
    shipment: Optional[Shipment] = None
    metadata: Dict[str, Any] = {}

    created_at: datetime
    updated_at: datetime

    @field_validator("created_at", "updated_at")
    @classmethod
    def dates_as_utc(cls, value: datetime) -> datetime:
        return ensure_utc(value)

    def find_item(self, item_id: str) -> Optional[OrderItem]:
        for item in self.items:
            if item.id == item_id:
                return item
        return None

    @property
    def customer_name(self) -> str:
        return self.billing_address.full_name

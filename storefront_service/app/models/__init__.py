"""
Storefront Service Models

Order entity and its value types. Everything is a pydantic model; the
backend commerce service owns persistence.
"""

from .base import StorefrontModel, ensure_utc, money, utc_now
from .order import (
    Address,
    CancellationReason,
    CancelType,
    HistoryScope,
    ItemQuantity,
    Order,
    OrderItem,
    OrderStatus,
    PaymentMethod,
    PaymentStatus,
    RefundMethod,
    Shipment,
    StatusHistoryEntry,
)

__all__ = [
    # Base
    "StorefrontModel",
    "money",
    "ensure_utc",
    "utc_now",
    # Enumerations
    "OrderStatus",
    "PaymentStatus",
    "PaymentMethod",
    "CancellationReason",
    "CancelType",
    "RefundMethod",
    "HistoryScope",
    # Order models
    "Address",
    "ItemQuantity",
    "Order",
    "OrderItem",
    "Shipment",
    "StatusHistoryEntry",
]

"""
Storefront schemas package
"""

from .auth import ForgotPasswordRequest, ForgotPasswordResult
from .order import (
    AddressInput,
    CancelItemInput,
    CancellationPolicyQuery,
    CancellationPolicyResult,
    CancelOrderRequest,
    CarrierEvent,
    CreateOrderRequest,
    CreateOrderResult,
    FilterMetadata,
    ListOrdersQuery,
    OrderItemInput,
    OrderListResult,
    OrderPage,
    OrderStatistics,
    OrderTrackingData,
    Pagination,
    ShipmentInfo,
    TimelineEntry,
    TrackedItem,
    TrackOrderRequest,
)

__all__ = [
    # Request schemas
    "AddressInput",
    "CancelItemInput",
    "CancelOrderRequest",
    "CancellationPolicyQuery",
    "CreateOrderRequest",
    "ForgotPasswordRequest",
    "ListOrdersQuery",
    "OrderItemInput",
    "TrackOrderRequest",
    # Response schemas
    "CancellationPolicyResult",
    "CarrierEvent",
    "CreateOrderResult",
    "FilterMetadata",
    "ForgotPasswordResult",
    "OrderListResult",
    "OrderPage",
    "OrderStatistics",
    "OrderTrackingData",
    "Pagination",
    "ShipmentInfo",
    "TimelineEntry",
    "TrackedItem",
]

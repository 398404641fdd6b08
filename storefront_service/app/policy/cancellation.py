"""
Cancellation policy engine.

Everything here is a pure function of the order, the evaluation instant and
the ``CancellationPolicyConfig``. Nothing is cached: callers re-evaluate on
every request and again at the moment a cancellation is executed.

Windows are measured from order placement (``created_at``):

    [created, created + free window)          pending/processing -> free
    [created, created + restocking window)    pending/processing/confirmed -> restocking
    afterwards                                window expired

A later stage is never more permissive than an earlier one.
"""

import math
from datetime import datetime, timedelta
from decimal import Decimal
from enum import Enum
from typing import TYPE_CHECKING, Any, Dict, List, Literal, Optional

from pydantic import BaseModel, Field, model_validator

from ..core.errors import (
    CancellationNotAllowedError,
    CancellationWindowExpiredError,
    RequestValidationFailed,
)
from ..models import (
    CancellationReason,
    CancelType,
    HistoryScope,
    ItemQuantity,
    Order,
    OrderStatus,
    PaymentStatus,
    RefundMethod,
    StatusHistoryEntry,
    StorefrontModel,
    ensure_utc,
    money,
)
from .state_machine import CANONICAL_SEQUENCE, apply_transition, next_statuses

if TYPE_CHECKING:
    from ..schemas.order import CancelOrderRequest

NON_CANCELLABLE_STATUSES = frozenset(
    {
        OrderStatus.SHIPPED,
        OrderStatus.OUT_FOR_DELIVERY,
        OrderStatus.DELIVERED,
        OrderStatus.CANCELLED,
        OrderStatus.REFUNDED,
        OrderStatus.FAILED,
    }
)
FREE_STAGE_STATUSES = frozenset({OrderStatus.PENDING, OrderStatus.PROCESSING})
RESTOCKING_STAGE_STATUSES = frozenset(
    {OrderStatus.PENDING, OrderStatus.PROCESSING, OrderStatus.CONFIRMED}
)
REFUNDABLE_STATUSES = frozenset(
    {
        OrderStatus.PROCESSING,
        OrderStatus.CONFIRMED,
        OrderStatus.SHIPPED,
        OrderStatus.OUT_FOR_DELIVERY,
        OrderStatus.DELIVERED,
    }
)
CAPTURED_PAYMENT_STATUSES = frozenset(
    {PaymentStatus.PAID, PaymentStatus.PARTIALLY_REFUNDED}
)
REFUND_ESTIMATED_DAYS = "5-7"


class CancellationStage(str, Enum):
    FREE = "free"
    RESTOCKING = "restocking"
    CLOSED = "closed"


class CancellationPolicyConfig(BaseModel):
    """Cancellation windows and fees. Defaults are configuration, not policy truth."""

    free_window_minutes: int = Field(60, ge=0)
    restocking_window_minutes: int = Field(1440, ge=0)
    restocking_fee_percent: Decimal = Field(Decimal("10"), ge=0, le=100)
    late_cancellation_fee: Decimal = Field(Decimal("0"), ge=0)
    return_window_days: int = Field(30, ge=0)

    @model_validator(mode="after")
    def check_windows_are_monotone(self) -> "CancellationPolicyConfig":
        if self.restocking_window_minutes < self.free_window_minutes:
            raise ValueError(
                "restocking_window_minutes must not be shorter than free_window_minutes"
            )
        return self

    @classmethod
    def from_settings(cls, settings: Any) -> "CancellationPolicyConfig":
        return cls(
            free_window_minutes=settings.FREE_CANCELLATION_WINDOW_MINUTES,
            restocking_window_minutes=settings.RESTOCKING_CANCELLATION_WINDOW_MINUTES,
            restocking_fee_percent=settings.RESTOCKING_FEE_PERCENT,
            late_cancellation_fee=settings.LATE_CANCELLATION_FEE,
            return_window_days=settings.RETURN_WINDOW_DAYS,
        )


class TimeRemaining(StorefrontModel):
    value: int
    unit: Literal["hours", "minutes"]
    total_seconds: int


class CancellationPolicy(StorefrontModel):
    allowed: bool
    reason: str
    window_expired: bool = False
    stage: CancellationStage
    time_remaining: Optional[TimeRemaining] = None
    deadline: Optional[datetime] = None
    refund_amount: Decimal
    refund_percentage: Decimal
    cancellation_fee: Decimal
    restocking_fee: Decimal
    total_refund: Decimal
    evaluated_at: datetime


class AllowedActions(StorefrontModel):
    can_cancel: bool
    can_track: bool
    can_return: bool
    can_request_refund: bool
    next_statuses: List[OrderStatus]


class RefundDescriptor(StorefrontModel):
    status: Literal["pending"] = "pending"
    amount: Decimal
    currency: str
    method: RefundMethod
    estimated_days: str = REFUND_ESTIMATED_DAYS


class CancellationDetails(StorefrontModel):
    cancel_type: CancelType
    reason: CancellationReason
    description: Optional[str] = None
    items: List[ItemQuantity] = []
    stage: CancellationStage
    refund_amount: Decimal
    cancellation_fee: Decimal
    restocking_fee: Decimal
    total_refund: Decimal
    cancelled_at: datetime


class CancellationOutcome(StorefrontModel):
    order: Order
    cancellation: CancellationDetails
    refund: Optional[RefundDescriptor] = None


def time_remaining(deadline: datetime, now: datetime) -> Optional[TimeRemaining]:
    """Whole hours when at least an hour is left, else minutes rounded up."""
    seconds = (deadline - now).total_seconds()
    if seconds <= 0:
        return None
    if seconds >= 3600:
        return TimeRemaining(
            value=int(seconds // 3600), unit="hours", total_seconds=int(seconds)
        )
    return TimeRemaining(
        value=math.ceil(seconds / 60), unit="minutes", total_seconds=int(seconds)
    )


def remaining_subtotal(order: Order) -> Decimal:
    return sum(
        (item.unit_price * item.remaining_quantity for item in order.items),
        Decimal("0"),
    )


def _remaining_share(order: Order) -> Decimal:
    """Fraction of the order value not yet cancelled item by item."""
    if order.subtotal <= 0:
        return Decimal("1")
    return remaining_subtotal(order) / order.subtotal


def _percentage(part: Decimal, whole: Decimal) -> Decimal:
    if whole <= 0:
        return money(0)
    return money(part / whole * 100)


def _not_allowed(
    reason: str, now: datetime, window_expired: bool = False
) -> CancellationPolicy:
    zero = money(0)
    return CancellationPolicy(
        allowed=False,
        reason=reason,
        window_expired=window_expired,
        stage=CancellationStage.CLOSED,
        refund_amount=zero,
        refund_percentage=zero,
        cancellation_fee=zero,
        restocking_fee=zero,
        total_refund=zero,
        evaluated_at=now,
    )


def evaluate_cancellation(
    order: Order, now: datetime, config: CancellationPolicyConfig
) -> CancellationPolicy:
    now = ensure_utc(now)

    if order.status in NON_CANCELLABLE_STATUSES:
        return _not_allowed(
            f"Orders that are {order.status.value} cannot be cancelled", now
        )

    placed_at = order.created_at
    free_deadline = placed_at + timedelta(minutes=config.free_window_minutes)
    restocking_deadline = placed_at + timedelta(
        minutes=config.restocking_window_minutes
    )

    share = _remaining_share(order)
    refund_amount = money((order.subtotal + order.tax) * share)

    if order.status in FREE_STAGE_STATUSES and now < free_deadline:
        stage = CancellationStage.FREE
        deadline = free_deadline
        reason = "Free cancellation is available for this order"
        restocking_fee = money(0)
        cancellation_fee = money(0)
    elif order.status in RESTOCKING_STAGE_STATUSES and now < restocking_deadline:
        stage = CancellationStage.RESTOCKING
        deadline = restocking_deadline
        reason = "Cancellation is available with a restocking fee"
        restocking_fee = money(
            remaining_subtotal(order) * config.restocking_fee_percent / 100
        )
        cancellation_fee = money(config.late_cancellation_fee)
    else:
        return _not_allowed(
            "The cancellation window for this order has expired",
            now,
            window_expired=True,
        )

    total_refund = max(money(0), refund_amount - cancellation_fee - restocking_fee)

    return CancellationPolicy(
        allowed=True,
        reason=reason,
        stage=stage,
        time_remaining=time_remaining(deadline, now),
        deadline=deadline,
        refund_amount=refund_amount,
        refund_percentage=_percentage(refund_amount, order.total),
        cancellation_fee=cancellation_fee,
        restocking_fee=restocking_fee,
        total_refund=total_refund,
        evaluated_at=now,
    )


def delivered_at(order: Order) -> Optional[datetime]:
    if order.shipment and order.shipment.delivered_at:
        return ensure_utc(order.shipment.delivered_at)
    for entry in reversed(order.status_history):
        if entry.status == OrderStatus.DELIVERED:
            return entry.timestamp
    return None


def allowed_actions(
    order: Order, now: datetime, config: CancellationPolicyConfig
) -> AllowedActions:
    now = ensure_utc(now)

    can_return = False
    if order.status == OrderStatus.DELIVERED:
        delivered = delivered_at(order)
        can_return = delivered is not None and now <= delivered + timedelta(
            days=config.return_window_days
        )

    return AllowedActions(
        can_cancel=evaluate_cancellation(order, now, config).allowed,
        can_track=order.status in CANONICAL_SEQUENCE,
        can_return=can_return,
        can_request_refund=(
            order.status in REFUNDABLE_STATUSES
            and order.payment_status == PaymentStatus.PAID
            and order.refunded_amount < order.total
        ),
        next_statuses=next_statuses(order.status),
    )


def _requested_items(order: Order, request: "CancelOrderRequest") -> Dict[str, int]:
    """Resolve and check the items of a partial cancellation; never clamps."""
    violations: List[Dict[str, str]] = []
    requested: Dict[str, int] = {}

    for index, entry in enumerate(request.items or []):
        field = f"items.{index}"
        item = order.find_item(entry.item_id)
        if item is None:
            violations.append(
                {
                    "field": f"{field}.itemId",
                    "message": f"Item {entry.item_id} is not part of this order",
                }
            )
            continue

        quantity = (
            entry.quantity if entry.quantity is not None else item.remaining_quantity
        )
        already = requested.get(item.id, 0)
        if quantity < 1 or already + quantity > item.remaining_quantity:
            violations.append(
                {
                    "field": f"{field}.quantity",
                    "message": (
                        f"Requested quantity {quantity} exceeds the "
                        f"{item.remaining_quantity} remaining for item {item.id}"
                    ),
                }
            )
            continue
        requested[item.id] = already + quantity

    if violations:
        raise RequestValidationFailed(
            violations, "Invalid items for partial cancellation"
        )
    return requested


def _covers_everything(order: Order, requested: Dict[str, int]) -> bool:
    return all(
        requested.get(item.id, 0) == item.remaining_quantity
        for item in order.items
        if item.remaining_quantity > 0
    )


def execute_cancellation(
    order: Order,
    request: "CancelOrderRequest",
    now: datetime,
    config: CancellationPolicyConfig,
    actor: Optional[str] = None,
) -> CancellationOutcome:
    """
    Apply a cancellation to ``order`` and return the updated order together
    with the refund computation.

    The policy is evaluated again here; a snapshot fetched earlier may be
    stale.

    Raises:
        CancellationWindowExpiredError: The time window has closed
        CancellationNotAllowedError: The order status forbids cancellation
        RequestValidationFailed: A partial request names unknown items or
            more units than remain
    """
    now = ensure_utc(now)
    policy = evaluate_cancellation(order, now, config)

    if policy.window_expired:
        raise CancellationWindowExpiredError(
            policy.reason, details={"order_status": order.status.value}
        )
    if not policy.allowed:
        raise CancellationNotAllowedError(
            policy.reason, details={"order_status": order.status.value}
        )

    cancel_type = request.cancel_type
    if cancel_type == CancelType.PARTIAL:
        requested = _requested_items(order, request)
        if _covers_everything(order, requested):
            cancel_type = CancelType.FULL
    if cancel_type == CancelType.FULL:
        requested = {
            item.id: item.remaining_quantity
            for item in order.items
            if item.remaining_quantity > 0
        }

    if cancel_type == CancelType.FULL:
        refund_amount = policy.refund_amount
        restocking_fee = policy.restocking_fee
        cancellation_fee = policy.cancellation_fee
    else:
        ratio = _cancelled_ratio(order, requested)
        refund_amount = money(policy.refund_amount * ratio)
        restocking_fee = money(policy.restocking_fee * ratio)
        cancellation_fee = money(policy.cancellation_fee * ratio)

    total_refund = max(money(0), refund_amount - cancellation_fee - restocking_fee)
    cancelled_items = [
        ItemQuantity(item_id=item_id, quantity=quantity)
        for item_id, quantity in requested.items()
    ]

    updated = order.model_copy(deep=True)
    for item in updated.items:
        item.cancelled_quantity += requested.get(item.id, 0)

    if cancel_type == CancelType.FULL:
        updated = apply_transition(
            updated,
            OrderStatus.CANCELLED,
            now,
            note=request.description,
            reason=request.reason.value,
            actor=actor,
            items=cancelled_items,
        )
    else:
        updated.status_history.append(
            StatusHistoryEntry(
                status=updated.status,
                timestamp=now,
                note=request.description or "Partial cancellation",
                reason=request.reason.value,
                actor=actor,
                scope=HistoryScope.ITEMS,
                items=cancelled_items,
            )
        )
        updated.updated_at = now

    refund: Optional[RefundDescriptor] = None
    if order.payment_status in CAPTURED_PAYMENT_STATUSES:
        refundable = max(money(0), order.total - order.refunded_amount)
        amount = min(total_refund, refundable)
        updated.refunded_amount = money(order.refunded_amount + amount)
        fees_charged = cancellation_fee + restocking_fee > 0
        if cancel_type == CancelType.FULL and not fees_charged:
            updated.payment_status = PaymentStatus.REFUNDED
        else:
            updated.payment_status = PaymentStatus.PARTIALLY_REFUNDED
        refund = RefundDescriptor(
            amount=amount,
            currency=order.currency,
            method=_refund_method(request),
        )
    elif cancel_type == CancelType.FULL:
        updated.payment_status = PaymentStatus.PENDING

    return CancellationOutcome(
        order=updated,
        cancellation=CancellationDetails(
            cancel_type=cancel_type,
            reason=request.reason,
            description=request.description,
            items=cancelled_items,
            stage=policy.stage,
            refund_amount=refund_amount,
            cancellation_fee=cancellation_fee,
            restocking_fee=restocking_fee,
            total_refund=total_refund,
            cancelled_at=now,
        ),
        refund=refund,
    )


def _cancelled_ratio(order: Order, requested: Dict[str, int]) -> Decimal:
    """Share of the still-active order value covered by ``requested``."""
    remaining = remaining_subtotal(order)
    if remaining > 0:
        cancelled = sum(
            (
                item.unit_price * requested.get(item.id, 0)
                for item in order.items
            ),
            Decimal("0"),
        )
        return cancelled / remaining

    remaining_units = sum(item.remaining_quantity for item in order.items)
    if remaining_units == 0:
        return Decimal("0")
    return Decimal(sum(requested.values())) / Decimal(remaining_units)


def _refund_method(request: "CancelOrderRequest") -> RefundMethod:
    if not request.request_refund:
        return RefundMethod.STORE_CREDIT
    return request.refund_method or RefundMethod.ORIGINAL_PAYMENT

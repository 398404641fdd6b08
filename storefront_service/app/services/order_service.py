"""
Order lifecycle service: create, cancel, track and list storefront orders.
"""

import re
import uuid
from datetime import datetime
from decimal import Decimal
from typing import Any, Dict, List, Optional, Tuple

import httpx
from pydantic import BaseModel

from ..core.errors import (
    BackendConflictError,
    CancellationNotAllowedError,
    CouponInvalidError,
    InventoryError,
    OrderNotFoundError,
    RequestValidationFailed,
    StorefrontError,
    UnauthorizedError,
    VerificationFailedError,
)
from ..models import (
    Order,
    OrderItem,
    OrderStatus,
    PaymentMethod,
    PaymentStatus,
    StatusHistoryEntry,
    money,
    utc_now,
)
from ..policy import (
    CancellationOutcome,
    CancellationPolicyConfig,
    allowed_actions,
    evaluate_cancellation,
    execute_cancellation,
)
from ..repository.order_backend import InventoryLine, OrderBackend
from ..schemas.auth import ForgotPasswordRequest, ForgotPasswordResult
from ..schemas.order import (
    CancellationPolicyResult,
    CancelOrderRequest,
    CarrierEvent,
    CreateOrderRequest,
    CreateOrderResult,
    FilterMetadata,
    ListOrdersQuery,
    OrderListResult,
    OrderTrackingData,
)
from ..utils.jwt_handler import JWTHandler
from ..utils.logging import setup_storefront_logging
from .statistics import build_pagination
from .tracking import build_tracking_data

logger = setup_storefront_logging("storefront_order_service")

ADMIN_ROLE = "admin"
ORDER_SOURCE = "storefront"
DEFAULT_SHIPPING_RATES = {
    "standard": Decimal("49.00"),
    "express": Decimal("99.00"),
    "overnight": Decimal("199.00"),
    "pickup": Decimal("0.00"),
}


class RequestContext(BaseModel):
    """Who is calling and from where; built once per request."""

    user_id: Optional[str] = None
    user_role: Optional[str] = None
    email: Optional[str] = None
    guest_token: Optional[str] = None
    client_ip: Optional[str] = None
    user_agent: Optional[str] = None
    correlation_id: Optional[str] = None

    @property
    def is_authenticated(self) -> bool:
        return self.user_id is not None

    @property
    def is_admin(self) -> bool:
        return self.user_role == ADMIN_ROLE


class PricingRules:
    """Tax, shipping and currency rules for new orders"""

    def __init__(
        self,
        tax_rate: Decimal = Decimal("0.18"),
        free_shipping_threshold: Decimal = Decimal("500.00"),
        shipping_rates: Optional[Dict[str, Decimal]] = None,
        currency: str = "INR",
    ):
        self.tax_rate = Decimal(str(tax_rate))
        self.free_shipping_threshold = Decimal(str(free_shipping_threshold))
        self.shipping_rates = {
            method.lower(): Decimal(str(rate))
            for method, rate in (shipping_rates or DEFAULT_SHIPPING_RATES).items()
        }
        self.currency = currency

    @classmethod
    def from_settings(cls, settings: Any) -> "PricingRules":
        return cls(
            tax_rate=settings.TAX_RATE,
            free_shipping_threshold=settings.FREE_SHIPPING_THRESHOLD,
            shipping_rates=settings.SHIPPING_RATES,
            currency=settings.CURRENCY,
        )

    def calculate_tax(self, subtotal: Decimal) -> Decimal:
        """Calculate tax amount"""
        return money(subtotal * self.tax_rate)

    def calculate_shipping(self, method: str, subtotal: Decimal) -> Decimal:
        """
        Calculate shipping cost for ``method``.

        Raises:
            RequestValidationFailed: If the shipping method is unknown
        """
        rate = self.shipping_rates.get(method.lower())
        if rate is None:
            raise RequestValidationFailed(
                [
                    {
                        "field": "shippingMethod",
                        "message": f"Unsupported shipping method: {method}",
                    }
                ]
            )
        if subtotal >= self.free_shipping_threshold:
            return money(0)
        return money(rate)


def _digits(value: Optional[str]) -> str:
    return re.sub(r"\D", "", value or "")


class OrderLifecycleService:
    def __init__(
        self,
        backend: OrderBackend,
        jwt_handler: JWTHandler,
        policy_config: Optional[CancellationPolicyConfig] = None,
        pricing: Optional[PricingRules] = None,
        guest_token_expire_days: int = 90,
    ):
        self.backend = backend
        self.jwt_handler = jwt_handler
        self.policy_config = policy_config or CancellationPolicyConfig()
        self.pricing = pricing or PricingRules()
        self.guest_token_expire_days = guest_token_expire_days

    def _generate_order_number(self) -> str:
        """Generate a unique order number to prevent collisions"""
        return f"ORD-{uuid.uuid4().hex[:12].upper()}"

    # =====================================================
    # CREATE
    # =====================================================

    async def create(
        self, request: CreateOrderRequest, context: RequestContext
    ) -> CreateOrderResult:
        if not request.is_guest_order and not context.is_authenticated:
            raise UnauthorizedError("Sign in or place the order as a guest")

        # Reject an unknown shipping method before touching the backend
        self.pricing.calculate_shipping(request.shipping_method, Decimal("0"))

        lines = await self.backend.check_inventory(request.items)
        shortages = [line for line in lines if line.is_short]
        if shortages:
            logger.info(
                "Order rejected for insufficient stock",
                extra={
                    "correlation_id": context.correlation_id,
                    "products": [line.product_id for line in shortages],
                },
            )
            raise InventoryError(
                details={
                    "shortages": [
                        line.model_dump(
                            mode="json",
                            by_alias=True,
                            include={
                                "product_id",
                                "variant_id",
                                "requested",
                                "available",
                            },
                        )
                        for line in shortages
                    ]
                }
            )

        items = [self._order_item(line) for line in lines]
        subtotal = money(sum((item.subtotal for item in items), Decimal("0")))
        discount, gift_card_amount = await self._discount(request, subtotal)
        tax = self.pricing.calculate_tax(subtotal)
        shipping_cost = self.pricing.calculate_shipping(
            request.shipping_method, subtotal
        )
        total = max(money(0), money(subtotal - discount + tax + shipping_cost))

        now = utc_now()
        if request.is_guest_order:
            customer_id = None
            customer_email = str(request.guest_email).lower()
        else:
            customer_id = context.user_id
            customer_email = (context.email or str(request.guest_email or "")).lower()

        metadata = dict(request.metadata or {})
        metadata.update(
            {
                "clientIp": context.client_ip,
                "userAgent": context.user_agent,
                "correlationId": context.correlation_id,
                "source": ORDER_SOURCE,
                "subscribe": request.subscribe,
            }
        )

        order = Order(
            id=str(uuid.uuid4()),
            order_number=self._generate_order_number(),
            customer_id=customer_id,
            customer_email=customer_email,
            customer_phone=request.shipping_address.phone,
            is_guest_order=request.is_guest_order,
            items=items,
            shipping_address=request.shipping_address.to_address(),
            billing_address=request.billing_address.to_address(),
            shipping_method=request.shipping_method.lower(),
            payment_method=request.payment_method,
            payment_status=PaymentStatus.PENDING,
            coupon_code=request.coupon_code,
            gift_card_code=request.gift_card_code,
            customer_notes=request.customer_notes,
            currency=self.pricing.currency,
            subtotal=subtotal,
            discount=discount,
            gift_card_amount=gift_card_amount,
            tax=tax,
            shipping_cost=shipping_cost,
            total=total,
            status=OrderStatus.PENDING,
            status_history=[
                StatusHistoryEntry(
                    status=OrderStatus.PENDING,
                    timestamp=now,
                    note="Order placed",
                    actor=customer_id or "guest",
                )
            ],
            metadata=metadata,
            created_at=now,
            updated_at=now,
        )

        order = await self.backend.create_order(order)
        logger.info(
            "Order created",
            extra={
                "order_id": order.id,
                "order_number": order.order_number,
                "is_guest_order": order.is_guest_order,
                "total": str(order.total),
                "correlation_id": context.correlation_id,
            },
        )

        payment_required = order.payment_method != PaymentMethod.COD and order.total > 0
        payment_gateway_data = None
        if payment_required:
            payment_gateway_data = await self.backend.initialize_payment(
                order, request.payment_details
            )

        tracking_token = None
        if order.is_guest_order:
            tracking_token = self.jwt_handler.issue_guest_token(
                order.order_number,
                order.customer_email,
                expire_days=self.guest_token_expire_days,
            )

        return CreateOrderResult(
            order=order,
            payment_required=payment_required,
            payment_gateway_data=payment_gateway_data,
            tracking_token=tracking_token,
        )

    def _order_item(self, line: InventoryLine) -> OrderItem:
        subtotal = money(line.unit_price * line.requested)
        tax = self.pricing.calculate_tax(subtotal)
        return OrderItem(
            id=f"item_{uuid.uuid4().hex[:12]}",
            product_id=line.product_id,
            variant_id=line.variant_id,
            name=line.name,
            sku=line.sku,
            quantity=line.requested,
            unit_price=money(line.unit_price),
            subtotal=subtotal,
            tax=tax,
            total=money(subtotal + tax),
        )

    async def _discount(
        self, request: CreateOrderRequest, subtotal: Decimal
    ) -> Tuple[Decimal, Decimal]:
        """
        Total discount and the gift card share of it, never more than the
        subtotal. The coupon applies first.
        """
        discount = money(0)
        gift_card_amount = money(0)
        if request.coupon_code:
            coupon = await self.backend.validate_coupon(request.coupon_code, subtotal)
            if not coupon.valid:
                raise CouponInvalidError(
                    coupon.message, details={"code": request.coupon_code}
                )
            discount = money(min(max(money(0), coupon.discount), subtotal))

        if request.gift_card_code:
            gift_card = await self.backend.validate_gift_card(request.gift_card_code)
            if not gift_card.valid:
                raise CouponInvalidError(
                    gift_card.message, details={"code": request.gift_card_code}
                )
            gift_card_amount = money(
                min(max(money(0), gift_card.balance), subtotal - discount)
            )

        return money(discount + gift_card_amount), gift_card_amount

    # =====================================================
    # OWNERSHIP
    # =====================================================

    def _authorize(self, order: Order, context: RequestContext) -> str:
        """
        Check that ``context`` may act on ``order`` and return the actor name.

        Raises:
            OrderNotFoundError: The caller is identified but does not own it
        """
        if context.is_authenticated:
            if context.is_admin or order.customer_id == context.user_id:
                return context.user_id
        if context.guest_token:
            try:
                guest = self.jwt_handler.verify_guest_token(context.guest_token)
            except ValueError as e:
                logger.info(
                    "Ignoring invalid guest credential", extra={"reason": str(e)}
                )
                guest = None
            if (
                guest is not None
                and guest.order_number == order.order_number
                and guest.email.lower() == order.customer_email.lower()
            ):
                return "guest"

        logger.info(
            "Order access denied",
            extra={"order_id": order.id, "user_id": context.user_id},
        )
        raise OrderNotFoundError()

    @staticmethod
    def _require_identity(context: RequestContext) -> None:
        if not context.is_authenticated and not context.guest_token:
            raise UnauthorizedError()

    # =====================================================
    # CANCELLATION
    # =====================================================

    async def get_cancellation_policy(
        self,
        order_id: str,
        context: RequestContext,
        now: Optional[datetime] = None,
    ) -> CancellationPolicyResult:
        self._require_identity(context)
        order = await self.backend.get_order(order_id)
        self._authorize(order, context)

        now = now or utc_now()
        return CancellationPolicyResult(
            order_id=order.id,
            order_number=order.order_number,
            status=order.status,
            payment_status=order.payment_status,
            policy=evaluate_cancellation(order, now, self.policy_config),
            allowed_actions=allowed_actions(order, now, self.policy_config),
        )

    async def cancel(
        self,
        request: CancelOrderRequest,
        context: RequestContext,
        now: Optional[datetime] = None,
    ) -> CancellationOutcome:
        self._require_identity(context)
        order = await self.backend.get_order(request.order_id)
        actor = self._authorize(order, context)

        outcome = execute_cancellation(
            order, request, now or utc_now(), self.policy_config, actor=actor
        )

        try:
            saved = await self.backend.update_order_if_status(
                order.id,
                order.status,
                outcome.order,
                expected_updated_at=order.updated_at,
            )
        except BackendConflictError as e:
            logger.warning(
                "Cancellation lost against a concurrent update",
                extra={"order_id": order.id, "expected_status": e.expected_status},
            )
            raise CancellationNotAllowedError(
                "The order was updated by another request",
                details={"order_status": order.status.value},
            )

        logger.info(
            "Order cancelled",
            extra={
                "order_id": order.id,
                "cancel_type": outcome.cancellation.cancel_type.value,
                "total_refund": str(outcome.cancellation.total_refund),
                "actor": actor,
            },
        )
        return outcome.model_copy(update={"order": saved})

    # =====================================================
    # TRACKING
    # =====================================================

    async def track(
        self,
        order_number: str,
        email: str,
        phone: Optional[str] = None,
        now: Optional[datetime] = None,
    ) -> OrderTrackingData:
        order = await self.backend.get_order_by_number(order_number.strip())
        if order.customer_email.strip().lower() != email.strip().lower():
            logger.info(
                "Tracking lookup email mismatch",
                extra={"order_number": order.order_number},
            )
            raise OrderNotFoundError()

        if phone and _digits(phone):
            known = _digits(order.customer_phone or order.shipping_address.phone)
            if _digits(phone) != known:
                raise VerificationFailedError(
                    "Phone number does not match this order"
                )

        carrier_events: List[CarrierEvent] = []
        if order.shipment is not None:
            try:
                carrier_events = await self.backend.get_carrier_events(
                    order.shipment.carrier, order.shipment.tracking_number
                )
            except (StorefrontError, httpx.HTTPError) as e:
                logger.warning(
                    "Carrier feed unavailable, continuing without events",
                    extra={
                        "order_number": order.order_number,
                        "carrier": order.shipment.carrier,
                        "error_type": type(e).__name__,
                    },
                )
                carrier_events = []

        actions = allowed_actions(order, now or utc_now(), self.policy_config)
        return build_tracking_data(order, carrier_events, actions)

    # =====================================================
    # LISTING
    # =====================================================

    async def list(
        self, query: ListOrdersQuery, context: RequestContext
    ) -> OrderListResult:
        if not context.is_authenticated:
            raise UnauthorizedError()

        customer_id = None if context.is_admin else context.user_id
        page = await self.backend.search_orders(query, customer_id=customer_id)
        statistics = await self.backend.order_statistics(query, customer_id=customer_id)

        return OrderListResult(
            orders=page.orders,
            pagination=build_pagination(query.page, query.limit, page.total),
            statistics=statistics,
            filters=FilterMetadata(
                applied=query.applied_filters(),
                available_statuses=list(OrderStatus),
                available_payment_statuses=list(PaymentStatus),
                sort_by=query.sort_by,
                sort_order=query.sort_order,
            ),
        )

    # =====================================================
    # PASSWORD RECOVERY
    # =====================================================

    async def forgot_password(
        self, request: ForgotPasswordRequest
    ) -> ForgotPasswordResult:
        """Forward a reset request; the answer is the same for unknown accounts."""
        try:
            await self.backend.request_password_reset(request.email)
        except OrderNotFoundError:
            logger.info("Password reset requested for an unknown account")
        return ForgotPasswordResult()

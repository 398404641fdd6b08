"""
In-process backend used for local development and tests.

Holds orders, a small catalog, coupons, gift cards and carrier feeds in
memory. Order writes go through one ``asyncio.Lock`` so the conditional
update behaves like the backend's optimistic concurrency guard.
"""

import asyncio
import uuid
from datetime import datetime
from decimal import Decimal
from typing import Any, Dict, Iterable, List, Optional

from ..core.errors import BackendConflictError, OrderNotFoundError
from ..models import Order, OrderStatus, StorefrontModel, money
from ..schemas.order import (
    CarrierEvent,
    ListOrdersQuery,
    OrderItemInput,
    OrderPage,
    OrderStatistics,
)
from ..services.statistics import compute_statistics, order_matches, sort_orders
from ..utils.logging import setup_storefront_logging
from .order_backend import CouponResult, GiftCardResult, InventoryLine, OrderBackend

logger = setup_storefront_logging("storefront_memory_backend")


class CatalogProduct(StorefrontModel):
    product_id: str
    name: str
    sku: Optional[str] = None
    unit_price: Decimal
    stock: int


class Coupon(StorefrontModel):
    code: str
    percent_off: Decimal = Decimal("0")
    amount_off: Decimal = Decimal("0")
    min_subtotal: Decimal = Decimal("0")


class InMemoryOrderBackend(OrderBackend):
    def __init__(
        self,
        catalog: Optional[Iterable[CatalogProduct]] = None,
        coupons: Optional[Iterable[Coupon]] = None,
        gift_cards: Optional[Dict[str, Decimal]] = None,
        carrier_events: Optional[Dict[str, List[CarrierEvent]]] = None,
    ):
        self.catalog: Dict[str, CatalogProduct] = {
            product.product_id: product for product in catalog or []
        }
        self.coupons: Dict[str, Coupon] = {
            coupon.code.upper(): coupon for coupon in coupons or []
        }
        self.gift_cards: Dict[str, Decimal] = {
            code.upper(): balance for code, balance in (gift_cards or {}).items()
        }
        self.carrier_events: Dict[str, List[CarrierEvent]] = dict(carrier_events or {})
        self.orders: Dict[str, Order] = {}
        self.password_reset_requests: List[str] = []
        self._lock = asyncio.Lock()

    @classmethod
    def with_demo_data(cls) -> "InMemoryOrderBackend":
        """Backend pre-loaded with a small catalog for local development."""
        return cls(
            catalog=[
                CatalogProduct(
                    product_id="prod-tee",
                    name="Cotton T-Shirt",
                    sku="TEE-001",
                    unit_price=Decimal("399.00"),
                    stock=100,
                ),
                CatalogProduct(
                    product_id="prod-mug",
                    name="Ceramic Mug",
                    sku="MUG-001",
                    unit_price=Decimal("249.00"),
                    stock=50,
                ),
            ],
            coupons=[Coupon(code="WELCOME10", percent_off=Decimal("10"))],
            gift_cards={"GIFT-500": Decimal("500.00")},
        )

    async def check_inventory(self, items: List[OrderItemInput]) -> List[InventoryLine]:
        lines = []
        for item in items:
            product = self.catalog.get(item.product_id)
            lines.append(
                InventoryLine(
                    product_id=item.product_id,
                    variant_id=item.variant_id,
                    name=product.name if product else item.product_id,
                    sku=product.sku if product else None,
                    unit_price=product.unit_price if product else Decimal("0"),
                    requested=item.quantity,
                    available=product.stock if product else 0,
                )
            )
        return lines

    async def validate_coupon(self, code: str, subtotal: Decimal) -> CouponResult:
        coupon = self.coupons.get(code.upper())
        if coupon is None:
            return CouponResult(code=code, valid=False, message="Unknown coupon")
        if subtotal < coupon.min_subtotal:
            return CouponResult(
                code=code,
                valid=False,
                message=f"Coupon requires a subtotal of at least {coupon.min_subtotal}",
            )
        discount = money(subtotal * coupon.percent_off / 100 + coupon.amount_off)
        return CouponResult(code=code, valid=True, discount=discount)

    async def validate_gift_card(self, code: str) -> GiftCardResult:
        balance = self.gift_cards.get(code.upper())
        if balance is None or balance <= 0:
            return GiftCardResult(
                code=code, valid=False, message="Gift card is not usable"
            )
        return GiftCardResult(code=code, valid=True, balance=balance)

    async def create_order(self, order: Order) -> Order:
        async with self._lock:
            for item in order.items:
                product = self.catalog.get(item.product_id)
                if product is not None:
                    product.stock -= item.quantity
            if order.gift_card_code:
                code = order.gift_card_code.upper()
                if code in self.gift_cards:
                    self.gift_cards[code] = max(
                        Decimal("0"), self.gift_cards[code] - order.gift_card_amount
                    )
            self.orders[order.id] = order.model_copy(deep=True)
        logger.debug("Order stored", extra={"order_id": order.id})
        return order

    async def get_order(self, order_id: str) -> Order:
        order = self.orders.get(order_id)
        if order is None:
            raise OrderNotFoundError()
        return order.model_copy(deep=True)

    async def get_order_by_number(self, order_number: str) -> Order:
        for order in self.orders.values():
            if order.order_number == order_number:
                return order.model_copy(deep=True)
        raise OrderNotFoundError()

    async def update_order_if_status(
        self,
        order_id: str,
        expected_status: OrderStatus,
        order: Order,
        expected_updated_at: Optional[datetime] = None,
    ) -> Order:
        async with self._lock:
            current = self.orders.get(order_id)
            if current is None:
                raise OrderNotFoundError()
            if current.status != expected_status or (
                expected_updated_at is not None
                and current.updated_at != expected_updated_at
            ):
                raise BackendConflictError(order_id, expected_status.value)
            self.orders[order_id] = order.model_copy(deep=True)
        return order

    async def initialize_payment(
        self, order: Order, payment_details: Optional[Dict[str, Any]] = None
    ) -> Dict[str, Any]:
        return {
            "gateway": "memory",
            "paymentId": f"pay_{uuid.uuid4().hex[:16]}",
            "orderNumber": order.order_number,
            "amount": str(order.total),
            "currency": order.currency,
            "method": order.payment_method.value,
        }

    async def get_carrier_events(
        self, carrier: str, tracking_number: str
    ) -> List[CarrierEvent]:
        return list(self.carrier_events.get(tracking_number, []))

    def _filtered(
        self, query: ListOrdersQuery, customer_id: Optional[str]
    ) -> List[Order]:
        return [
            order
            for order in self.orders.values()
            if order_matches(order, query, customer_id)
        ]

    async def search_orders(
        self, query: ListOrdersQuery, customer_id: Optional[str] = None
    ) -> OrderPage:
        matching = sort_orders(
            self._filtered(query, customer_id), query.sort_by, query.sort_order
        )
        page = matching[query.skip : query.skip + query.limit]
        return OrderPage(
            orders=[order.model_copy(deep=True) for order in page],
            total=len(matching),
        )

    async def order_statistics(
        self, query: ListOrdersQuery, customer_id: Optional[str] = None
    ) -> OrderStatistics:
        return compute_statistics(self._filtered(query, customer_id))

    async def request_password_reset(self, email: str) -> None:
        self.password_reset_requests.append(email)

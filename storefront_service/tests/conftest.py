"""
Pytest configuration and fixtures for Storefront Service tests.
"""

import os
from datetime import datetime, timedelta, timezone
from decimal import Decimal
from typing import Any, Callable, Dict, Iterator, List, Optional

import pytest
from fastapi import FastAPI
from fastapi.testclient import TestClient

# Set up test environment before the application reads its settings
os.environ.setdefault("APP_NAME", "storefront-service")
os.environ.setdefault("APP_VERSION", "1.0.0")
os.environ.setdefault("DEBUG", "false")
os.environ["ENVIRONMENT"] = "test"
os.environ.setdefault("COMMERCE_BACKEND_URL", "http://commerce-backend.test")
os.environ.setdefault("SECRET_KEY", "storefront-test-secret-key")
os.environ["BACKEND_MODE"] = "memory"
os.environ["COOKIE_SECURE"] = "false"
os.environ["RATE_LIMIT_STORE"] = "cookie"

from storefront_service.app.core.settings import StorefrontSettings  # noqa: E402
from storefront_service.app.main import create_app  # noqa: E402
from storefront_service.app.models import (  # noqa: E402
    Address,
    Order,
    OrderItem,
    OrderStatus,
    PaymentMethod,
    PaymentStatus,
    Shipment,
    StatusHistoryEntry,
)
from storefront_service.app.policy import CancellationPolicyConfig  # noqa: E402
from storefront_service.app.repository.memory_backend import (  # noqa: E402
    CatalogProduct,
    Coupon,
    InMemoryOrderBackend,
)
from storefront_service.app.utils.jwt_handler import JWTHandler  # noqa: E402

NOW = datetime(2026, 1, 15, 12, 0, tzinfo=timezone.utc)


@pytest.fixture
def now() -> datetime:
    """Fixed evaluation instant."""
    return NOW


@pytest.fixture
def test_settings() -> StorefrontSettings:
    """Fresh settings built from the test environment."""
    return StorefrontSettings()


@pytest.fixture
def jwt_handler(test_settings) -> JWTHandler:
    return JWTHandler(test_settings.SECRET_KEY, test_settings.JWT_ALGORITHM)


@pytest.fixture
def policy_config() -> CancellationPolicyConfig:
    return CancellationPolicyConfig()


@pytest.fixture
def backend() -> InMemoryOrderBackend:
    """In-memory backend with a two-product catalog."""
    return InMemoryOrderBackend(
        catalog=[
            CatalogProduct(
                product_id="prod-1",
                name="Widget",
                sku="WID-1",
                unit_price=Decimal("100.00"),
                stock=10,
            ),
            CatalogProduct(
                product_id="prod-2",
                name="Gadget",
                sku="GAD-2",
                unit_price=Decimal("250.00"),
                stock=5,
            ),
        ],
        coupons=[Coupon(code="SAVE10", percent_off=Decimal("10"))],
        gift_cards={"GIFT100": Decimal("100.00")},
    )


def _address(**overrides: Any) -> Dict[str, Any]:
    address = {
        "firstName": "Asha",
        "lastName": "Rao",
        "addressLine1": "12 MG Road",
        "city": "Bengaluru",
        "state": "Karnataka",
        "postalCode": "560001",
        "country": "IN",
        "phone": "+91 98765 43210",
    }
    address.update(overrides)
    return address


def _create_order_payload(**overrides: Any) -> Dict[str, Any]:
    payload = {
        "items": [{"productId": "prod-1", "quantity": 2}],
        "shippingAddress": _address(),
        "useSameAddress": True,
        "shippingMethod": "standard",
        "paymentMethod": "card",
        "agreeToTerms": True,
    }
    payload.update(overrides)
    return payload


@pytest.fixture
def address_payload() -> Callable[..., Dict[str, Any]]:
    """Wire-format address payload builder."""
    return _address


@pytest.fixture
def order_payload() -> Callable[..., Dict[str, Any]]:
    """Wire-format create-order body builder for a signed-in customer."""
    return _create_order_payload


@pytest.fixture
def order_factory() -> Callable[..., Order]:
    """
    Build an order placed ``minutes_ago`` before ``NOW``.

    Default lines: 2 x Widget at 100.00 and 1 x Gadget at 50.00, so the
    subtotal is 250.00, tax 45.00, shipping 49.00 and total 344.00.
    """

    def build(
        status: OrderStatus = OrderStatus.PENDING,
        minutes_ago: int = 10,
        payment_status: PaymentStatus = PaymentStatus.PAID,
        customer_id: Optional[str] = "user-1",
        customer_email: str = "asha@example.com",
        order_number: str = "ORD-TEST00000001",
        order_id: str = "order-1",
        items: Optional[List[OrderItem]] = None,
        shipment: Optional[Shipment] = None,
        history: Optional[List[StatusHistoryEntry]] = None,
    ) -> Order:
        created_at = NOW - timedelta(minutes=minutes_ago)
        address = Address(
            first_name="Asha",
            last_name="Rao",
            address_line1="12 MG Road",
            city="Bengaluru",
            state="Karnataka",
            postal_code="560001",
            country="IN",
            phone="+91 98765 43210",
        )
        lines = items or [
            OrderItem(
                id="item-1",
                product_id="prod-1",
                name="Widget",
                quantity=2,
                unit_price=Decimal("100.00"),
                subtotal=Decimal("200.00"),
                tax=Decimal("36.00"),
                total=Decimal("236.00"),
            ),
            OrderItem(
                id="item-2",
                product_id="prod-2",
                name="Gadget",
                quantity=1,
                unit_price=Decimal("50.00"),
                subtotal=Decimal("50.00"),
                tax=Decimal("9.00"),
                total=Decimal("59.00"),
            ),
        ]
        return Order(
            id=order_id,
            order_number=order_number,
            customer_id=customer_id,
            customer_email=customer_email,
            customer_phone=address.phone,
            is_guest_order=customer_id is None,
            items=lines,
            shipping_address=address,
            billing_address=address,
            shipping_method="standard",
            payment_method=PaymentMethod.CARD,
            payment_status=payment_status,
            subtotal=Decimal("250.00"),
            tax=Decimal("45.00"),
            shipping_cost=Decimal("49.00"),
            total=Decimal("344.00"),
            status=status,
            status_history=history
            if history is not None
            else [StatusHistoryEntry(status=status, timestamp=created_at)],
            shipment=shipment,
            created_at=created_at,
            updated_at=created_at,
        )

    return build


@pytest.fixture
def bearer_token(jwt_handler) -> Callable[..., str]:
    """Issue bearer tokens the way the identity service does."""

    def issue(
        user_id: str = "user-1",
        email: str = "asha@example.com",
        role: str = "customer",
    ) -> str:
        return jwt_handler.encode_token(
            {
                "user_id": user_id,
                "email": email,
                "username": user_id,
                "roles": [role],
                "permissions": [],
            }
        )

    return issue


@pytest.fixture
def test_app(test_settings, backend) -> FastAPI:
    """Application wired to the in-memory backend fixture."""
    return create_app(test_settings, order_backend=backend)


@pytest.fixture
def client(test_app) -> Iterator[TestClient]:
    """FastAPI test client fixture."""
    with TestClient(test_app) as test_client:
        yield test_client

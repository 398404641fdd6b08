"""
API tests for the order lifecycle endpoints, wired to the in-memory backend.
"""

from decimal import Decimal

import pytest

from storefront_service.app.models import OrderStatus

API = "/api/v1/orders"


def _auth(token: str) -> dict:
    return {"Authorization": f"Bearer {token}"}


@pytest.fixture
def customer_headers(bearer_token):
    return _auth(bearer_token())


@pytest.fixture
def placed_order(client, customer_headers, order_payload):
    response = client.post(
        f"{API}/create-order", json=order_payload(), headers=customer_headers
    )
    assert response.status_code == 201
    return response.json()["data"]["order"]


class TestCreateOrderEndpoint:
    def test_customer_order(self, client, customer_headers, order_payload):
        response = client.post(
            f"{API}/create-order",
            json=order_payload(couponCode="SAVE10"),
            headers=customer_headers,
        )

        assert response.status_code == 201
        body = response.json()
        assert body["success"] is True
        data = body["data"]
        assert data["paymentRequired"] is True
        assert data["trackingToken"] is None
        assert data["order"]["customerId"] == "user-1"
        assert data["order"]["discount"] == "20.00"
        assert data["order"]["total"] == "265.00"
        assert data["order"]["status"] == "pending"
        assert "guest_order_token" not in response.cookies

    def test_guest_order_sets_tracking_cookie(self, client, order_payload):
        response = client.post(
            f"{API}/create-order",
            json=order_payload(isGuestOrder=True, guestEmail="guest@example.com"),
        )

        assert response.status_code == 201
        assert response.cookies.get("guest_order_token")
        assert "HttpOnly" in response.headers["set-cookie"]

    def test_registered_order_without_identity(self, client, order_payload):
        response = client.post(f"{API}/create-order", json=order_payload())

        assert response.status_code == 401
        assert response.json()["error"]["code"] == "UNAUTHORIZED"

    def test_invalid_json(self, client, customer_headers):
        response = client.post(
            f"{API}/create-order",
            content=b"{not json",
            headers={**customer_headers, "Content-Type": "application/json"},
        )

        assert response.status_code == 400
        assert response.json()["error"]["code"] == "INVALID_JSON"

    def test_field_errors(self, client, customer_headers, order_payload):
        response = client.post(
            f"{API}/create-order",
            json=order_payload(items=[{"productId": "prod-1", "quantity": 0}]),
            headers=customer_headers,
        )

        assert response.status_code == 400
        errors = response.json()["error"]["details"]["validation_errors"]
        assert errors[0]["field"] == "items.0.quantity"

    def test_insufficient_stock(self, client, customer_headers, order_payload):
        response = client.post(
            f"{API}/create-order",
            json=order_payload(items=[{"productId": "prod-2", "quantity": 6}]),
            headers=customer_headers,
        )

        assert response.status_code == 409
        error = response.json()["error"]
        assert error["code"] == "INVENTORY_ERROR"
        assert error["details"]["shortages"][0]["available"] == 5


class TestCancellationEndpoints:
    def test_policy_is_not_cached(self, client, customer_headers, placed_order):
        response = client.get(
            f"{API}/cancel-order-policy",
            params={"orderId": placed_order["id"]},
            headers=customer_headers,
        )

        assert response.status_code == 200
        assert "no-store" in response.headers["Cache-Control"]
        policy = response.json()["data"]["policy"]
        assert policy["allowed"] is True
        assert policy["stage"] == "free"
        assert policy["timeRemaining"]["unit"] == "minutes"

    def test_policy_requires_order_id(self, client, customer_headers):
        response = client.get(
            f"{API}/cancel-order-policy", headers=customer_headers
        )

        assert response.status_code == 400
        fields = [
            v["field"] for v in response.json()["error"]["details"]["validation_errors"]
        ]
        assert fields == ["orderId"]

    def test_owner_cancels(self, client, customer_headers, placed_order):
        response = client.post(
            f"{API}/cancel-order",
            json={"orderId": placed_order["id"], "reason": "changed-mind"},
            headers=customer_headers,
        )

        assert response.status_code == 200
        data = response.json()["data"]
        assert data["order"]["status"] == "cancelled"
        assert data["cancellation"]["cancelType"] == "full"
        assert data["refund"] is None
        assert "no-store" in response.headers["Cache-Control"]

        again = client.post(
            f"{API}/cancel-order",
            json={"orderId": placed_order["id"], "reason": "changed-mind"},
            headers=customer_headers,
        )
        assert again.status_code == 409
        assert again.json()["error"]["code"] == "CANCELLATION_NOT_ALLOWED"

    def test_anonymous_cancel(self, client, placed_order):
        response = client.post(
            f"{API}/cancel-order",
            json={"orderId": placed_order["id"], "reason": "changed-mind"},
        )
        assert response.status_code == 401

    def test_other_customer_gets_not_found(self, client, bearer_token, placed_order):
        response = client.post(
            f"{API}/cancel-order",
            json={"orderId": placed_order["id"], "reason": "changed-mind"},
            headers=_auth(bearer_token(user_id="user-2")),
        )

        assert response.status_code == 404
        assert response.json()["error"]["code"] == "ORDER_NOT_FOUND"

    def test_partial_cancel_quantity_checked(
        self, client, customer_headers, placed_order
    ):
        item_id = placed_order["items"][0]["id"]

        response = client.post(
            f"{API}/cancel-order",
            json={
                "orderId": placed_order["id"],
                "reason": "changed-mind",
                "cancelType": "partial",
                "items": [{"itemId": item_id, "quantity": 5}],
            },
            headers=customer_headers,
        )

        assert response.status_code == 400
        errors = response.json()["error"]["details"]["validation_errors"]
        assert errors[0]["field"] == "items.0.quantity"

    def test_guest_cancels_with_cookie(self, client, order_payload):
        created = client.post(
            f"{API}/create-order",
            json=order_payload(isGuestOrder=True, guestEmail="guest@example.com"),
        ).json()["data"]["order"]

        response = client.post(
            f"{API}/cancel-order",
            json={"orderId": created["id"], "reason": "found-better-price"},
        )

        assert response.status_code == 200
        assert response.json()["data"]["order"]["status"] == "cancelled"


class TestTrackingEndpoints:
    def test_track_by_query(self, client, placed_order):
        response = client.get(
            f"{API}/track-order",
            params={
                "orderNumber": placed_order["orderNumber"],
                "email": "Asha@Example.com",
            },
        )

        assert response.status_code == 200
        data = response.json()["data"]
        assert data["orderNumber"] == placed_order["orderNumber"]
        assert data["timeline"][0]["state"] == "current"
        assert data["allowedActions"]["canCancel"] is True

    def test_track_by_body(self, client, placed_order):
        response = client.post(
            f"{API}/track-order",
            json={
                "orderNumber": placed_order["orderNumber"],
                "email": "asha@example.com",
            },
        )
        assert response.status_code == 200

    def test_wrong_email_is_not_found(self, client, placed_order):
        response = client.post(
            f"{API}/track-order",
            json={
                "orderNumber": placed_order["orderNumber"],
                "email": "someone@example.com",
            },
        )

        assert response.status_code == 404

    def test_phone_mismatch(self, client, placed_order):
        response = client.post(
            f"{API}/track-order",
            json={
                "orderNumber": placed_order["orderNumber"],
                "email": "asha@example.com",
                "phone": "0000000000",
            },
        )

        assert response.status_code == 403
        assert response.json()["error"]["code"] == "VERIFICATION_FAILED"

    def test_guest_tracks_with_cookie_only(self, client, order_payload):
        created = client.post(
            f"{API}/create-order",
            json=order_payload(isGuestOrder=True, guestEmail="guest@example.com"),
        ).json()["data"]["order"]

        response = client.get(f"{API}/track-order")

        assert response.status_code == 200
        assert response.json()["data"]["orderNumber"] == created["orderNumber"]


class TestListOrdersEndpoint:
    def test_requires_identity(self, client):
        response = client.get(f"{API}/list-orders")
        assert response.status_code == 401

    def test_lists_own_orders(self, client, customer_headers, placed_order):
        response = client.get(f"{API}/list-orders", headers=customer_headers)

        assert response.status_code == 200
        data = response.json()["data"]
        assert [o["id"] for o in data["orders"]] == [placed_order["id"]]
        assert data["pagination"]["total"] == 1
        assert data["statistics"]["totalOrders"] == 1
        assert data["statistics"]["totalRevenue"] == placed_order["total"]
        assert "pending" in data["filters"]["availableStatuses"]

    def test_other_customer_sees_nothing(self, client, bearer_token, placed_order):
        response = client.get(
            f"{API}/list-orders", headers=_auth(bearer_token(user_id="user-2"))
        )

        assert response.json()["data"]["orders"] == []

    def test_admin_sees_all(self, client, bearer_token, placed_order):
        response = client.get(
            f"{API}/list-orders",
            headers=_auth(bearer_token(user_id="admin-1", role="admin")),
        )

        assert response.json()["data"]["pagination"]["total"] == 1

    def test_invalid_limit(self, client, customer_headers):
        response = client.get(
            f"{API}/list-orders", params={"limit": "500"}, headers=customer_headers
        )

        assert response.status_code == 400
        fields = [
            v["field"] for v in response.json()["error"]["details"]["validation_errors"]
        ]
        assert fields == ["limit"]

    def test_filtered_statistics_span_every_page(
        self, client, backend, order_factory, customer_headers
    ):
        for index, total in enumerate(["600.00", "750.00", "900.00", "300.00"]):
            order = order_factory(
                order_id=f"order-{index}",
                order_number=f"ORD-{index}",
                minutes_ago=60 - index,
                status=OrderStatus.DELIVERED,
            )
            backend.orders[order.id] = order.model_copy(
                update={"total": Decimal(total)}
            )

        response = client.get(
            f"{API}/list-orders",
            params={"status": "delivered", "minAmount": "500", "limit": "2"},
            headers=customer_headers,
        )

        assert response.status_code == 200
        data = response.json()["data"]
        assert len(data["orders"]) == 2
        assert data["pagination"]["total"] == 3
        assert data["pagination"]["hasNext"] is True
        assert data["statistics"]["totalOrders"] == 3
        assert Decimal(data["statistics"]["totalRevenue"]) == Decimal("2250.00")
        assert data["filters"]["applied"] == {
            "status": "delivered",
            "minAmount": "500",
        }

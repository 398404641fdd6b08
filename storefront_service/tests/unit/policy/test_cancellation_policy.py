"""
Unit tests for the cancellation policy engine.

Reference order (see conftest): subtotal 250.00, tax 45.00, total 344.00.
"""

from datetime import timedelta
from decimal import Decimal

import pytest
from pydantic import ValidationError

from storefront_service.app.core.errors import (
    CancellationNotAllowedError,
    CancellationWindowExpiredError,
    RequestValidationFailed,
)
from storefront_service.app.models import (
    CancellationReason,
    CancelType,
    HistoryScope,
    OrderStatus,
    PaymentStatus,
    RefundMethod,
    Shipment,
)
from storefront_service.app.policy import (
    CancellationPolicyConfig,
    CancellationStage,
    allowed_actions,
    evaluate_cancellation,
    execute_cancellation,
)
from storefront_service.app.schemas import CancelItemInput, CancelOrderRequest


def _cancel(cancel_type=CancelType.FULL, items=None, **overrides):
    return CancelOrderRequest(
        order_id="order-1",
        reason=CancellationReason.CHANGED_MIND,
        cancel_type=cancel_type,
        items=items,
        **overrides,
    )


class TestPolicyConfig:
    def test_restocking_window_shorter_than_free_window_rejected(self):
        with pytest.raises(ValidationError):
            CancellationPolicyConfig(
                free_window_minutes=120, restocking_window_minutes=60
            )

    def test_from_settings(self, test_settings):
        config = CancellationPolicyConfig.from_settings(test_settings)
        assert config.free_window_minutes == 60
        assert config.restocking_window_minutes == 1440


class TestEvaluateCancellation:
    def test_free_stage(self, order_factory, now, policy_config):
        policy = evaluate_cancellation(order_factory(), now, policy_config)

        assert policy.allowed
        assert policy.stage == CancellationStage.FREE
        assert policy.refund_amount == Decimal("295.00")
        assert policy.restocking_fee == Decimal("0.00")
        assert policy.total_refund == Decimal("295.00")
        assert policy.refund_percentage == Decimal("85.76")
        assert policy.time_remaining.unit == "minutes"
        assert policy.time_remaining.value == 50

    def test_confirmed_order_pays_restocking_fee(
        self, order_factory, now, policy_config
    ):
        order = order_factory(status=OrderStatus.CONFIRMED)

        policy = evaluate_cancellation(order, now, policy_config)

        assert policy.allowed
        assert policy.stage == CancellationStage.RESTOCKING
        assert policy.restocking_fee == Decimal("25.00")
        assert policy.total_refund == Decimal("270.00")
        assert policy.time_remaining.unit == "hours"
        assert policy.time_remaining.value == 23

    def test_pending_after_free_window(self, order_factory, now, policy_config):
        policy = evaluate_cancellation(
            order_factory(minutes_ago=120), now, policy_config
        )
        assert policy.stage == CancellationStage.RESTOCKING

    def test_window_expired(self, order_factory, now, policy_config):
        policy = evaluate_cancellation(
            order_factory(minutes_ago=25 * 60), now, policy_config
        )

        assert not policy.allowed
        assert policy.window_expired
        assert policy.stage == CancellationStage.CLOSED
        assert policy.total_refund == Decimal("0.00")

    def test_shipped_order_not_cancellable(self, order_factory, now, policy_config):
        policy = evaluate_cancellation(
            order_factory(status=OrderStatus.SHIPPED), now, policy_config
        )

        assert not policy.allowed
        assert not policy.window_expired
        assert policy.reason == "Orders that are shipped cannot be cancelled"

    def test_late_cancellation_fee(self, order_factory, now):
        config = CancellationPolicyConfig(late_cancellation_fee=Decimal("30"))
        order = order_factory(status=OrderStatus.CONFIRMED)

        policy = evaluate_cancellation(order, now, config)

        assert policy.cancellation_fee == Decimal("30.00")
        assert policy.total_refund == Decimal("240.00")

    def test_later_stages_are_never_more_permissive(
        self, order_factory, now, policy_config
    ):
        stage_rank = {
            CancellationStage.FREE: 0,
            CancellationStage.RESTOCKING: 1,
            CancellationStage.CLOSED: 2,
        }
        previous_rank, previous_refund = 0, Decimal("Infinity")
        for minutes_ago in range(0, 1600, 20):
            policy = evaluate_cancellation(
                order_factory(minutes_ago=minutes_ago), now, policy_config
            )
            assert stage_rank[policy.stage] >= previous_rank
            assert policy.total_refund <= previous_refund
            previous_rank = stage_rank[policy.stage]
            previous_refund = policy.total_refund


class TestExecuteCancellation:
    def test_full_free_cancellation_refunds_everything(
        self, order_factory, now, policy_config
    ):
        order = order_factory()

        outcome = execute_cancellation(order, _cancel(), now, policy_config, "user-1")

        assert outcome.order.status == OrderStatus.CANCELLED
        assert outcome.order.payment_status == PaymentStatus.REFUNDED
        assert outcome.order.refunded_amount == Decimal("295.00")
        assert outcome.refund.amount == Decimal("295.00")
        assert outcome.refund.method == RefundMethod.ORIGINAL_PAYMENT
        assert outcome.refund.estimated_days == "5-7"
        assert all(
            item.cancelled_quantity == item.quantity for item in outcome.order.items
        )
        assert len(outcome.order.status_history) == len(order.status_history) + 1
        assert outcome.order.status_history[-1].actor == "user-1"
        # input is not mutated
        assert order.status == OrderStatus.PENDING

    def test_fees_leave_payment_partially_refunded(
        self, order_factory, now, policy_config
    ):
        order = order_factory(status=OrderStatus.CONFIRMED)

        outcome = execute_cancellation(order, _cancel(), now, policy_config)

        assert outcome.cancellation.restocking_fee == Decimal("25.00")
        assert outcome.refund.amount == Decimal("270.00")
        assert outcome.order.payment_status == PaymentStatus.PARTIALLY_REFUNDED

    def test_unpaid_order_has_no_refund(self, order_factory, now, policy_config):
        order = order_factory(payment_status=PaymentStatus.PENDING)

        outcome = execute_cancellation(order, _cancel(), now, policy_config)

        assert outcome.refund is None
        assert outcome.order.payment_status == PaymentStatus.PENDING

    def test_store_credit_when_refund_not_requested(
        self, order_factory, now, policy_config
    ):
        outcome = execute_cancellation(
            order_factory(), _cancel(request_refund=False), now, policy_config
        )
        assert outcome.refund.method == RefundMethod.STORE_CREDIT

    def test_partial_cancellation_is_pro_rated(
        self, order_factory, now, policy_config
    ):
        order = order_factory()
        request = _cancel(
            CancelType.PARTIAL, [CancelItemInput(item_id="item-1", quantity=1)]
        )

        outcome = execute_cancellation(order, request, now, policy_config)

        assert outcome.cancellation.cancel_type == CancelType.PARTIAL
        assert outcome.cancellation.refund_amount == Decimal("118.00")
        assert outcome.refund.amount == Decimal("118.00")
        assert outcome.order.status == OrderStatus.PENDING
        assert outcome.order.payment_status == PaymentStatus.PARTIALLY_REFUNDED
        assert outcome.order.find_item("item-1").cancelled_quantity == 1
        entry = outcome.order.status_history[-1]
        assert entry.scope == HistoryScope.ITEMS
        assert entry.items[0].item_id == "item-1"

    def test_partial_covering_everything_becomes_full(
        self, order_factory, now, policy_config
    ):
        request = _cancel(
            CancelType.PARTIAL,
            [CancelItemInput(item_id="item-1"), CancelItemInput(item_id="item-2")],
        )

        outcome = execute_cancellation(order_factory(), request, now, policy_config)

        assert outcome.cancellation.cancel_type == CancelType.FULL
        assert outcome.order.status == OrderStatus.CANCELLED

    def test_partial_quantity_is_never_clamped(
        self, order_factory, now, policy_config
    ):
        request = _cancel(
            CancelType.PARTIAL, [CancelItemInput(item_id="item-1", quantity=3)]
        )

        with pytest.raises(RequestValidationFailed) as exc_info:
            execute_cancellation(order_factory(), request, now, policy_config)

        fields = [v["field"] for v in exc_info.value.violations]
        assert fields == ["items.0.quantity"]

    def test_partial_unknown_item(self, order_factory, now, policy_config):
        request = _cancel(
            CancelType.PARTIAL, [CancelItemInput(item_id="item-9", quantity=1)]
        )

        with pytest.raises(RequestValidationFailed) as exc_info:
            execute_cancellation(order_factory(), request, now, policy_config)

        assert exc_info.value.violations[0]["field"] == "items.0.itemId"

    def test_expired_window(self, order_factory, now, policy_config):
        with pytest.raises(CancellationWindowExpiredError):
            execute_cancellation(
                order_factory(minutes_ago=2000), _cancel(), now, policy_config
            )

    def test_shipped_order(self, order_factory, now, policy_config):
        with pytest.raises(CancellationNotAllowedError):
            execute_cancellation(
                order_factory(status=OrderStatus.SHIPPED),
                _cancel(),
                now,
                policy_config,
            )


class TestAllowedActions:
    def test_pending_order(self, order_factory, now, policy_config):
        actions = allowed_actions(order_factory(), now, policy_config)

        assert actions.can_cancel
        assert actions.can_track
        assert not actions.can_return
        assert not actions.can_request_refund
        assert OrderStatus.PROCESSING in actions.next_statuses

    def test_recently_delivered_order_can_be_returned(
        self, order_factory, now, policy_config
    ):
        order = order_factory(
            status=OrderStatus.DELIVERED,
            minutes_ago=5 * 24 * 60,
            shipment=Shipment(
                carrier="bluedart",
                tracking_number="BD123",
                delivered_at=now - timedelta(days=2),
            ),
        )

        actions = allowed_actions(order, now, policy_config)

        assert actions.can_return
        assert actions.can_request_refund
        assert not actions.can_cancel
        assert actions.next_statuses == [OrderStatus.REFUNDED]

    def test_return_window_closes(self, order_factory, now, policy_config):
        order = order_factory(
            status=OrderStatus.DELIVERED,
            minutes_ago=60 * 24 * 60,
            shipment=Shipment(
                carrier="bluedart",
                tracking_number="BD123",
                delivered_at=now - timedelta(days=31),
            ),
        )
        assert not allowed_actions(order, now, policy_config).can_return

    def test_cancelled_order_is_not_trackable(self, order_factory, now, policy_config):
        order = order_factory(status=OrderStatus.CANCELLED)
        assert not allowed_actions(order, now, policy_config).can_track

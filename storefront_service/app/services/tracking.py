"""
Tracking projection: status timeline and carrier tracking links.

The timeline merges the order's status history with carrier events in
ascending timestamp order. Entries with equal timestamps keep their source
order, history before carrier. Upcoming canonical statuses follow at the end.
"""

from typing import Dict, List, Optional, Sequence
from urllib.parse import quote

from ..models import HistoryScope, Order, OrderStatus, StatusHistoryEntry
from ..policy import CANONICAL_SEQUENCE, AllowedActions, is_terminal
from ..schemas.order import (
    CarrierEvent,
    OrderTrackingData,
    ShipmentInfo,
    TimelineEntry,
    TrackedItem,
)

CARRIER_TRACKING_URLS: Dict[str, str] = {
    "bluedart": "https://www.bluedart.com/tracking/{tracking_number}",
    "delhivery": "https://www.delhivery.com/track/package/{tracking_number}",
    "fedex": "https://www.fedex.com/fedextrack/?tracknum={tracking_number}",
    "dhl": "https://www.dhl.com/en/express/tracking.html?AWB={tracking_number}",
    "aramex": "https://www.aramex.com/en/track/shipments/{tracking_number}",
}

STATUS_LABELS: Dict[OrderStatus, str] = {
    OrderStatus.PENDING: "Order placed",
    OrderStatus.PROCESSING: "Processing",
    OrderStatus.CONFIRMED: "Confirmed",
    OrderStatus.SHIPPED: "Shipped",
    OrderStatus.OUT_FOR_DELIVERY: "Out for delivery",
    OrderStatus.DELIVERED: "Delivered",
    OrderStatus.CANCELLED: "Cancelled",
    OrderStatus.FAILED: "Failed",
    OrderStatus.REFUNDED: "Refunded",
}


def tracking_url(carrier: str, tracking_number: str) -> Optional[str]:
    template = CARRIER_TRACKING_URLS.get(carrier.strip().lower())
    if template is None:
        return None
    return template.format(tracking_number=quote(tracking_number, safe=""))


def _current_index(order: Order) -> Optional[int]:
    """Index of the history entry marking the order's live status, if any."""
    if is_terminal(order.status):
        return None
    for index in range(len(order.status_history) - 1, -1, -1):
        entry = order.status_history[index]
        if entry.scope == HistoryScope.ORDER and entry.status == order.status:
            return index
    return None


def _history_entry(entry: StatusHistoryEntry, current: bool) -> TimelineEntry:
    if entry.scope == HistoryScope.ITEMS:
        label = "Items cancelled"
    else:
        label = STATUS_LABELS[entry.status]
    return TimelineEntry(
        status=entry.status.value,
        label=label,
        state="current" if current else "completed",
        source="history",
        timestamp=entry.timestamp,
        note=entry.note,
    )


def _carrier_entry(event: CarrierEvent) -> TimelineEntry:
    return TimelineEntry(
        status=event.status,
        label=event.description or event.status,
        state="completed",
        source="carrier",
        timestamp=event.timestamp,
        location=event.location,
    )


def upcoming_statuses(order: Order) -> List[OrderStatus]:
    if is_terminal(order.status) or order.status not in CANONICAL_SEQUENCE:
        return []
    position = CANONICAL_SEQUENCE.index(order.status)
    return list(CANONICAL_SEQUENCE[position + 1 :])


def build_timeline(
    order: Order, carrier_events: Sequence[CarrierEvent] = ()
) -> List[TimelineEntry]:
    current = _current_index(order)
    history = [
        _history_entry(entry, index == current)
        for index, entry in enumerate(order.status_history)
    ]
    carrier = [_carrier_entry(event) for event in carrier_events]

    # stable sort: history precedes carrier on equal timestamps
    merged = sorted(history + carrier, key=lambda entry: entry.timestamp)

    merged.extend(
        TimelineEntry(
            status=status.value,
            label=STATUS_LABELS[status],
            state="upcoming",
            source="projection",
        )
        for status in upcoming_statuses(order)
    )
    return merged


def build_tracking_data(
    order: Order,
    carrier_events: Sequence[CarrierEvent],
    actions: AllowedActions,
) -> OrderTrackingData:
    shipment = None
    if order.shipment is not None:
        shipment = ShipmentInfo(
            carrier=order.shipment.carrier,
            tracking_number=order.shipment.tracking_number,
            tracking_url=tracking_url(
                order.shipment.carrier, order.shipment.tracking_number
            ),
            estimated_delivery=order.shipment.estimated_delivery,
            delivered_at=order.shipment.delivered_at,
        )

    return OrderTrackingData(
        order_number=order.order_number,
        status=order.status,
        payment_status=order.payment_status,
        placed_at=order.created_at,
        total=order.total,
        currency=order.currency,
        shipment=shipment,
        items=[
            TrackedItem(
                name=item.name,
                quantity=item.quantity,
                cancelled_quantity=item.cancelled_quantity,
            )
            for item in order.items
        ],
        timeline=build_timeline(order, carrier_events),
        allowed_actions=actions,
    )

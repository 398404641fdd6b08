"""
Order list filtering and aggregate statistics.

Statistics are always computed over the full filtered set, never over the
returned page.
"""

from collections import Counter
from decimal import Decimal
from typing import Iterable, List, Optional

from ..models import Order, OrderStatus, PaymentStatus, money
from ..schemas.order import ListOrdersQuery, OrderStatistics, Pagination


def order_matches(
    order: Order, query: ListOrdersQuery, customer_id: Optional[str] = None
) -> bool:
    """Check a single order against the list filters and ownership scope."""
    if customer_id is not None and order.customer_id != customer_id:
        return False
    if query.status is not None and order.status != query.status:
        return False
    if (
        query.payment_status is not None
        and order.payment_status != query.payment_status
    ):
        return False
    if query.date_from is not None and order.created_at < query.date_from:
        return False
    if query.date_to is not None and order.created_at > query.date_to:
        return False
    if query.min_amount is not None and order.total < query.min_amount:
        return False
    if query.max_amount is not None and order.total > query.max_amount:
        return False
    if query.search:
        needle = query.search.lower()
        haystack = (
            order.order_number.lower(),
            order.customer_email.lower(),
            order.customer_name.lower(),
        )
        if not any(needle in value for value in haystack):
            return False
    return True


def sort_orders(orders: Iterable[Order], sort_by: str, sort_order: str) -> List[Order]:
    def key(order: Order):
        value = getattr(order, sort_by)
        return value.value if isinstance(value, (OrderStatus, PaymentStatus)) else value

    return sorted(orders, key=key, reverse=sort_order == "desc")


def compute_statistics(orders: Iterable[Order]) -> OrderStatistics:
    orders = list(orders)
    total_revenue = money(sum((order.total for order in orders), Decimal("0")))
    average = money(total_revenue / len(orders)) if orders else money(0)

    return OrderStatistics(
        total_orders=len(orders),
        total_revenue=total_revenue,
        average_order_value=average,
        orders_by_status=dict(Counter(order.status.value for order in orders)),
        orders_by_payment_status=dict(
            Counter(order.payment_status.value for order in orders)
        ),
    )


def build_pagination(page: int, limit: int, total: int) -> Pagination:
    total_pages = (total + limit - 1) // limit if total else 0
    return Pagination(
        page=page,
        limit=limit,
        total=total,
        total_pages=total_pages,
        has_next=page < total_pages,
        has_prev=page > 1,
    )

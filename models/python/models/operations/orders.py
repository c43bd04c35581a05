import asyncio
import logging
from datetime import datetime, timezone
from typing import Callable, List, Optional

from couchbase.exceptions import CASMismatchException

from models.entities.couchbase.orders import PAID_STATUSES, Order, OrderData, OrderLineItem, OrderStatus
from models.errors import InvalidRequest, InvalidState, NotFound

logger = logging.getLogger(__name__)

CLOSED_STATUSES = ("cancelled", "refunded")


async def _order_cas_retry(
    order_id: str,
    mutator: Callable[[OrderData], Optional[str]],
    max_retries: int = 5,
) -> Order:
    """Same contract as the auction helper: error strings raise InvalidState."""
    backoff_ms = 10
    for attempt in range(max_retries + 1):
        order = await Order.get(order_id)
        if not order:
            raise NotFound(f"Order {order_id} not found")

        error = mutator(order.data)
        if error is not None:
            raise InvalidState(error)

        try:
            return await Order.update(order)
        except CASMismatchException:
            if attempt == max_retries:
                break
            await asyncio.sleep(backoff_ms / 1000)
            backoff_ms *= 2

    raise InvalidState("Concurrent update conflict, please retry")


async def order_create(buyer_id: str, items: List[OrderLineItem]) -> Order:
    if not items:
        raise InvalidRequest("An order needs at least one item")
    data = OrderData(
        buyer_id=buyer_id,
        items=items,
        total_cents=sum(li.subtotal_cents for li in items),
        status="pending",
    )
    return await Order.create(data, user_id=buyer_id)


async def order_get(order_id: str) -> Optional[Order]:
    return await Order.get(order_id)


async def order_get_by_buyer(buyer_id: str, limit: int = 50, offset: int = 0) -> List[Order]:
    return await Order.find({"buyer_id": buyer_id}, order_by=["-created_at"], limit=limit, offset=offset)


async def order_get_by_payment_intent(payment_intent_id: str) -> Optional[Order]:
    return await Order.find_one({"stripe_payment_intent_id": payment_intent_id})


async def order_set_payment_intent(order_id: str, payment_intent_id: str) -> Order:
    def _mutate(d: OrderData) -> Optional[str]:
        d.stripe_payment_intent_id = payment_intent_id
        return None

    return await _order_cas_retry(order_id, _mutate)


async def order_update_payment_status(order_id: str, payment_status: str) -> Order:
    def _mutate(d: OrderData) -> Optional[str]:
        d.stripe_payment_status = payment_status
        return None

    return await _order_cas_retry(order_id, _mutate)


async def order_update_status(order_id: str, status: OrderStatus, now: Optional[datetime] = None) -> Order:
    """Move an order to *status* and run the ledger hooks for the transition.

    Entering a paid state records the sale commission; entering
    ``delivered`` settles the order's pending earnings.
    """
    from models.operations.earnings import (
        earnings_record_sale_commission,
        earnings_settle_on_delivery,
    )

    now = now or datetime.now(timezone.utc)
    previous: List[str] = []

    def _mutate(d: OrderData) -> Optional[str]:
        if d.status in CLOSED_STATUSES and status != d.status:
            return f"Order is {d.status} and can no longer change status"
        previous[:] = [d.status]
        d.status = status
        if status == "paid" and d.paid_at is None:
            d.paid_at = now
        elif status == "delivered" and d.delivered_at is None:
            d.delivered_at = now
        elif status == "completed" and d.completed_at is None:
            d.completed_at = now
            d.paid_at = d.paid_at or now
        return None

    order = await _order_cas_retry(order_id, _mutate)
    old_status = previous[0]
    logger.info(f"Order {order_id}: {old_status} -> {status}")

    # Status change is committed; the sweep job re-runs ledger hooks that fail here
    try:
        if status in PAID_STATUSES and old_status not in PAID_STATUSES:
            await earnings_record_sale_commission(order_id, now=now)
        if status == "delivered" and old_status != "delivered":
            await earnings_settle_on_delivery(order_id, now=now)
    except Exception as e:
        logger.error(f"Ledger hook for order {order_id} ({old_status} -> {status}) failed: {e}", exc_info=True)

    return await Order.get(order_id) or order


async def order_cancel(order_id: str) -> Order:
    def _mutate(d: OrderData) -> Optional[str]:
        if d.status != "pending":
            return f"Only pending orders can be cancelled (status: {d.status})"
        d.status = "cancelled"
        return None

    return await _order_cas_retry(order_id, _mutate)

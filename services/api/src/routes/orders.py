"""
Order endpoints.

Orders are created by the auction resolver for the winning bidder. The
buyer pays through a Stripe PaymentIntent (or the mock flow when Stripe is
not configured); vendors and admins advance fulfilment status, which drives
the earnings ledger.
"""

import asyncio
import hashlib
from datetime import datetime
from typing import List, Optional

import conf
import stripe
from fastapi import APIRouter, Depends, HTTPException, Query
from pydantic import BaseModel

from models.entities.couchbase.orders import Order, OrderStatus
from models.operations.orders import (
    order_cancel,
    order_get,
    order_get_by_buyer,
    order_set_payment_intent,
    order_update_payment_status,
    order_update_status,
)
from models.operations.vendors import vendor_get_by_user
from utils import log

from .auctions import CamelRequest
from .dependencies import is_admin, require_authenticated

logger = log.get_logger(__name__)

router = APIRouter(prefix="/orders", tags=["orders"])

# Statuses a vendor may set; paid/completed come from payment confirmation
VENDOR_SETTABLE_STATUSES = ("processing", "shipped", "delivered")


def _stripe_configured() -> bool:
    return bool(conf.get_stripe_secret_key())


def _get_stripe():
    key = conf.get_stripe_secret_key()
    if not key:
        raise HTTPException(status_code=503, detail="Stripe is not configured")
    stripe.api_key = key
    return stripe


# ---------------------------------------------------------------------------
# Request / Response schemas
# ---------------------------------------------------------------------------

class OrderLineItemResponse(BaseModel):
    item_type: str
    item_id: str
    vendor_id: str
    quantity: int
    unit_price_cents: int
    subtotal_cents: int


class OrderResponse(BaseModel):
    id: str
    buyer_id: str
    status: str
    items: List[OrderLineItemResponse]
    total_cents: int
    source_auction_id: Optional[str] = None
    payment_deadline: Optional[datetime] = None
    stripe_payment_intent_id: Optional[str] = None
    stripe_payment_status: Optional[str] = None
    client_secret: Optional[str] = None
    paid_at: Optional[datetime] = None
    delivered_at: Optional[datetime] = None
    completed_at: Optional[datetime] = None
    created_at: Optional[datetime] = None


class UpdateOrderStatusRequest(CamelRequest):
    status: OrderStatus


def _order_to_response(order: Order, client_secret: Optional[str] = None) -> OrderResponse:
    d = order.data
    return OrderResponse(
        id=order.id,
        buyer_id=d.buyer_id,
        status=d.status,
        items=[
            OrderLineItemResponse(
                item_type=li.item.kind,
                item_id=li.item.id,
                vendor_id=li.vendor_id,
                quantity=li.quantity,
                unit_price_cents=li.unit_price_cents,
                subtotal_cents=li.subtotal_cents,
            )
            for li in d.items
        ],
        total_cents=d.total_cents,
        source_auction_id=d.source_auction_id,
        payment_deadline=d.payment_deadline,
        stripe_payment_intent_id=d.stripe_payment_intent_id,
        stripe_payment_status=d.stripe_payment_status,
        client_secret=client_secret,
        paid_at=d.paid_at,
        delivered_at=d.delivered_at,
        completed_at=d.completed_at,
        created_at=d.created_at,
    )


async def _get_visible_order(order_id: str, user: dict) -> Order:
    """Buyer, a vendor with a line on the order, or an admin."""
    order = await order_get(order_id)
    if not order:
        raise HTTPException(status_code=404, detail="Order not found")
    if is_admin(user) or order.data.buyer_id == user["sub"]:
        return order
    vendor = await vendor_get_by_user(user["sub"])
    if vendor and any(li.vendor_id == vendor.id for li in order.data.items):
        return order
    raise HTTPException(status_code=404, detail="Order not found")


# ---------------------------------------------------------------------------
# GET /orders/ and /orders/{id}
# ---------------------------------------------------------------------------

@router.get("/", response_model=List[OrderResponse])
async def route_orders_list(
    limit: int = Query(50, ge=1, le=100),
    offset: int = Query(0, ge=0),
    user: dict = Depends(require_authenticated),
):
    orders = await order_get_by_buyer(user["sub"], limit=limit, offset=offset)
    return [_order_to_response(o) for o in orders]


@router.get("/{order_id}", response_model=OrderResponse)
async def route_order_get(
    order_id: str,
    user: dict = Depends(require_authenticated),
):
    return _order_to_response(await _get_visible_order(order_id, user))


# ---------------------------------------------------------------------------
# POST /orders/{id}/pay: create the PaymentIntent (or a mock one)
# ---------------------------------------------------------------------------

@router.post("/{order_id}/pay", response_model=OrderResponse)
async def route_order_pay(
    order_id: str,
    user: dict = Depends(require_authenticated),
):
    order = await order_get(order_id)
    if not order or order.data.buyer_id != user["sub"]:
        raise HTTPException(status_code=404, detail="Order not found")
    if order.data.status != "pending":
        raise HTTPException(status_code=400, detail=f"Order is not pending (status: {order.data.status})")

    if _stripe_configured():
        s = _get_stripe()
        intent = s.PaymentIntent.create(
            amount=order.data.total_cents,
            currency="usd",
            metadata={"order_id": order.id, "buyer_id": user["sub"]},
            idempotency_key=f"order:{order.id}",
        )
        order = await order_set_payment_intent(order.id, intent.id)
        client_secret = intent.client_secret
    else:
        mock_id = f"pi_mock_{hashlib.sha256(order.id.encode()).hexdigest()[:16]}"
        order = await order_set_payment_intent(order.id, mock_id)
        client_secret = f"mock_secret_{mock_id}"
        logger.info(f"Mock mode: order {order.id} using fake intent {mock_id}")

    return _order_to_response(order, client_secret=client_secret)


# ---------------------------------------------------------------------------
# POST /orders/{id}/mock-confirm: simulate payment success (dev only)
# ---------------------------------------------------------------------------

@router.post("/{order_id}/mock-confirm", response_model=OrderResponse)
async def route_order_mock_confirm(
    order_id: str,
    user: dict = Depends(require_authenticated),
):
    """Simulate a successful payment. Only works when Stripe is not configured."""
    if _stripe_configured():
        raise HTTPException(status_code=400, detail="Mock confirm disabled: Stripe is configured")

    order = await order_get(order_id)
    if not order or order.data.buyer_id != user["sub"]:
        raise HTTPException(status_code=404, detail="Order not found")
    if order.data.status != "pending":
        raise HTTPException(status_code=400, detail=f"Order is not pending (status: {order.data.status})")

    # Mimic the delay of a real card confirmation
    await asyncio.sleep(0.5)
    await order_update_payment_status(order_id, "succeeded")
    updated = await order_update_status(order_id, "paid")
    logger.info(f"Order {order_id} paid via mock confirm")
    return _order_to_response(updated)


# ---------------------------------------------------------------------------
# PATCH /orders/{id}/status: fulfilment updates
# ---------------------------------------------------------------------------

@router.patch("/{order_id}/status", response_model=OrderResponse)
async def route_order_update_status(
    order_id: str,
    body: UpdateOrderStatusRequest,
    user: dict = Depends(require_authenticated),
):
    order = await _get_visible_order(order_id, user)
    if not is_admin(user):
        if order.data.buyer_id == user["sub"]:
            if body.status != "completed":
                raise HTTPException(status_code=403, detail="Buyers can only mark an order as completed")
            if order.data.status != "delivered":
                raise HTTPException(status_code=400, detail="Only delivered orders can be completed")
        if order.data.buyer_id != user["sub"] and body.status not in VENDOR_SETTABLE_STATUSES:
            raise HTTPException(
                status_code=403,
                detail=f"Vendors can only set status to {', '.join(VENDOR_SETTABLE_STATUSES)}",
            )

    updated = await order_update_status(order_id, body.status)
    return _order_to_response(updated)


@router.post("/{order_id}/cancel", response_model=OrderResponse)
async def route_order_cancel(
    order_id: str,
    user: dict = Depends(require_authenticated),
):
    order = await order_get(order_id)
    if not order or (order.data.buyer_id != user["sub"] and not is_admin(user)):
        raise HTTPException(status_code=404, detail="Order not found")
    return _order_to_response(await order_cancel(order_id))

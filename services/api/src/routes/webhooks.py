"""
Payment provider webhooks.

Stripe: buyer payments (payment_intent.*), Connect transfers (transfer.*)
and Connect account status (account.updated).
PayPal: Payouts item events, correlated to our payout by batch id.

Handlers are safe to redeliver: order transitions are guarded by status and
payout outcomes are deduplicated by the payout engine.
"""

import json
from typing import Any, Dict, Optional, Tuple

import conf
import stripe
from fastapi import APIRouter, HTTPException, Request

from clients.paypal import PayPalClient, PayPalClientError
from models.operations.orders import (
    order_get_by_payment_intent,
    order_update_payment_status,
    order_update_status,
)
from models.operations.payouts import payout_on_cancelled, payout_on_failed, payout_on_succeeded
from models.operations.vendors import vendor_get_by_stripe_account, vendor_update_payout_accounts
from utils import log

logger = log.get_logger(__name__)

router = APIRouter(prefix="/webhooks", tags=["webhooks"])

# event_type -> (handler kind, outcome)
PAYPAL_ITEM_EVENTS: Dict[str, Tuple[str, str]] = {
    "PAYMENT.PAYOUTS-ITEM.SUCCEEDED": ("succeeded", "succeeded"),
    "PAYMENT.PAYOUTS-ITEM.FAILED": ("failed", "failed"),
    "PAYMENT.PAYOUTS-ITEM.BLOCKED": ("failed", "blocked"),
    "PAYMENT.PAYOUTS-ITEM.RETURNED": ("failed", "returned"),
    "PAYMENT.PAYOUTS-ITEM.REFUNDED": ("failed", "reversed"),
    "PAYMENT.PAYOUTS-ITEM.CANCELED": ("cancelled", "cancelled"),
}


def _field(obj: Any, name: str, default: Any = None) -> Any:
    if isinstance(obj, dict):
        return obj.get(name, default)
    return getattr(obj, name, default)


def _parse_stripe_event(payload: bytes, sig_header: Optional[str]) -> Any:
    webhook_secret = conf.get_stripe_webhook_secret()
    if webhook_secret:
        if not sig_header:
            raise HTTPException(status_code=400, detail="Missing signature")
        try:
            return stripe.Webhook.construct_event(payload, sig_header, webhook_secret)
        except stripe.SignatureVerificationError:
            raise HTTPException(status_code=400, detail="Invalid signature")
        except ValueError:
            raise HTTPException(status_code=400, detail="Invalid payload")

    # Unsigned events are only accepted without a configured secret (local development)
    try:
        return json.loads(payload)
    except ValueError:
        raise HTTPException(status_code=400, detail="Invalid payload")


# ---------------------------------------------------------------------------
# POST /webhooks/stripe
# ---------------------------------------------------------------------------

@router.post("/stripe")
async def route_stripe_webhook(request: Request):
    payload = await request.body()
    event = _parse_stripe_event(payload, request.headers.get("stripe-signature"))

    event_type = _field(event, "type")
    data_object = _field(_field(event, "data", {}), "object", {})
    object_id = _field(data_object, "id")

    if event_type == "payment_intent.succeeded":
        logger.info(f"Payment succeeded for intent {object_id}")
        order = await order_get_by_payment_intent(object_id)
        if not order:
            logger.warning(f"No order found for payment intent {object_id}")
            return {"status": "ok"}

        await order_update_payment_status(order.id, "succeeded")
        if order.data.status == "pending":
            await order_update_status(order.id, "paid")
            logger.info(f"Order {order.id} paid via webhook")

    elif event_type == "payment_intent.payment_failed":
        logger.info(f"Payment failed for intent {object_id}")
        order = await order_get_by_payment_intent(object_id)
        if order:
            await order_update_payment_status(order.id, "failed")

    elif event_type in ("transfer.failed", "transfer.reversed"):
        outcome = "failed" if event_type == "transfer.failed" else "reversed"
        reason = _field(data_object, "failure_message") or f"Stripe transfer {outcome}"
        payout_id = _field(_field(data_object, "metadata", {}), "payout_id")
        await payout_on_failed("stripe", object_id, outcome=outcome, reason=reason, payout_id=payout_id)

    elif event_type in ("transfer.created", "transfer.paid"):
        payout_id = _field(_field(data_object, "metadata", {}), "payout_id")
        await payout_on_succeeded("stripe", object_id, payout_id=payout_id)

    elif event_type == "account.updated":
        vendor = await vendor_get_by_stripe_account(object_id)
        if vendor:
            active = bool(_field(data_object, "details_submitted")) and bool(_field(data_object, "payouts_enabled"))
            status = "active" if active else "restricted" if _field(data_object, "details_submitted") else "pending"
            if status != vendor.data.stripe_account_status:
                await vendor_update_payout_accounts(vendor.id, stripe_account_status=status)
                logger.info(f"Vendor {vendor.id} Stripe account is now {status}")

    else:
        logger.debug(f"Unhandled Stripe event: {event_type}")

    return {"status": "ok"}


# ---------------------------------------------------------------------------
# POST /webhooks/paypal
# ---------------------------------------------------------------------------

@router.post("/paypal")
async def route_paypal_webhook(request: Request):
    try:
        event = await request.json()
    except ValueError:
        raise HTTPException(status_code=400, detail="Invalid payload")

    try:
        verified = await PayPalClient().verify_webhook(dict(request.headers), event)
    except PayPalClientError as e:
        logger.error(f"PayPal webhook verification error: {e}")
        verified = False
    if not verified:
        raise HTTPException(status_code=401, detail="Webhook verification failed")

    event_type = event.get("event_type")
    mapping = PAYPAL_ITEM_EVENTS.get(event_type)
    if not mapping:
        logger.info(f"Unhandled PayPal event: {event_type}")
        return {"received": True}

    resource = event.get("resource") or {}
    batch_id = resource.get("payout_batch_id")
    if not batch_id:
        raise HTTPException(status_code=400, detail="Event has no payout_batch_id")

    kind, outcome = mapping
    errors = resource.get("errors") or {}
    reason = errors.get("message") if isinstance(errors, dict) else None

    if kind == "succeeded":
        await payout_on_succeeded("paypal", batch_id)
    elif kind == "cancelled":
        await payout_on_cancelled("paypal", batch_id, reason=reason)
    else:
        await payout_on_failed("paypal", batch_id, outcome=outcome, reason=reason or f"PayPal payout {outcome}")

    return {"received": True}

"""
Payout engine.

Withdrawal flow:
1. Hold: one transaction validates the request, deducts
   ``balance_available`` and creates the Payout as ``processing``
2. Provider call (Stripe Connect transfer or PayPal batch) outside any
   transaction
3. Success: Stripe payouts are marked paid at once; PayPal payouts wait
   for the webhook
4. Provider error: a compensating transaction restores the balance and
   marks the payout failed, then ExternalFailure is raised

Provider webhooks are correlated by ``transaction_id``, falling back to the
payout id carried in the provider metadata. Each outcome is
applied at most once (PayoutEvent dedupe key, written in the same
transaction) and only moves the payout forward, so duplicate and
out-of-order deliveries are harmless.
"""

import asyncio
import logging
import uuid
from datetime import datetime, timezone
from typing import Any, Callable, Dict, List, Optional, Tuple

from couchbase.exceptions import CASMismatchException

from clients import stripe_connect
from clients.couchbase import Transaction, run_transaction
from clients.paypal import PayPalClient, PayPalClientError
from models.entities.couchbase.earnings import VendorEarning
from models.entities.couchbase.payouts import (
    Payout,
    PayoutData,
    PayoutEvent,
    PayoutEventData,
    PayoutMethod,
)
from models.entities.couchbase.vendors import Vendor, VendorData
from models.errors import ExternalFailure, InvalidRequest, InvalidState, NotFound
from models.operations.earnings import earnings_flag_paid_out_in
from models.operations.journal import journal_record_payout, journal_record_payout_reversal
from models.operations.notifications import dispatch_soon, notification_enqueue_in

logger = logging.getLogger(__name__)

DEFAULT_MIN_WITHDRAWAL_CENTS = 1000

FAILURE_OUTCOMES = ("failed", "blocked", "returned", "reversed")
CLOSED_STATUSES = ("failed", "cancelled")


def _fmt(cents: int) -> str:
    return f"${cents / 100:.2f}"


def payout_validate_withdrawal(
    vendor: VendorData,
    amount_cents: int,
    method: str,
    min_withdrawal_cents: int = DEFAULT_MIN_WITHDRAWAL_CENTS,
) -> None:
    if amount_cents <= 0:
        raise InvalidRequest("Withdrawal amount must be greater than 0")
    if amount_cents < min_withdrawal_cents:
        raise InvalidRequest(f"Minimum withdrawal amount is {_fmt(min_withdrawal_cents)}")
    if amount_cents > vendor.balance_available_cents:
        raise InvalidRequest(
            f"Insufficient balance. Available: {_fmt(vendor.balance_available_cents)}, "
            f"Requested: {_fmt(amount_cents)}"
        )
    if method == "stripe":
        if not vendor.stripe_account_id:
            raise InvalidRequest("Stripe account not connected")
        if vendor.stripe_account_status != "active":
            raise InvalidRequest("Stripe account is not active")
    elif method == "paypal":
        if not vendor.paypal_email:
            raise InvalidRequest("PayPal email not configured")
    else:
        raise InvalidRequest(f"Unsupported payout method: {method}")


# ---------------------------------------------------------------------------
# Transaction building blocks
# ---------------------------------------------------------------------------

async def _mark_paid_in(txn: Transaction, payout: Payout, vendor: Vendor, now: datetime) -> None:
    payout.data.status = "paid"
    payout.data.paid_at = now
    vendor.data.balance_paid_cents += payout.data.amount_cents
    await earnings_flag_paid_out_in(txn, vendor.id, payout.data.amount_cents, payout.id, now)
    await txn.replace(payout)
    await txn.replace(vendor)


async def _reverse_in(
    txn: Transaction,
    payout: Payout,
    vendor: Vendor,
    status: str,
    reason: str,
) -> bool:
    """Return the held amount to ``balance_available``. Returns True when the
    payout had already been counted as paid."""
    amount = payout.data.amount_cents
    was_paid = payout.data.status == "paid"
    vendor.data.balance_available_cents += amount
    if was_paid:
        vendor.data.balance_paid_cents -= amount
        flagged = await VendorEarning.find({"payout_id": payout.id})
        for candidate in flagged:
            earning = await txn.get(VendorEarning, candidate.id)
            if earning and earning.data.payout_id == payout.id:
                earning.data.paid_out = False
                earning.data.paid_at = None
                earning.data.payout_id = None
                await txn.replace(earning)
    payout.data.status = status
    payout.data.failure_reason = reason
    await txn.replace(payout)
    await txn.replace(vendor)
    return was_paid


async def _load_pair(txn: Transaction, payout_id: str) -> Tuple[Payout, Vendor]:
    payout = await txn.get(Payout, payout_id)
    if not payout:
        raise NotFound(f"Payout {payout_id} not found")
    vendor = await txn.get(Vendor, payout.data.vendor_id)
    if not vendor:
        raise NotFound(f"Vendor {payout.data.vendor_id} not found")
    return payout, vendor


async def _payout_cas_retry(
    payout_id: str,
    mutator: Callable[[PayoutData], Optional[str]],
    max_retries: int = 5,
) -> Payout:
    backoff_ms = 10
    for attempt in range(max_retries + 1):
        payout = await Payout.get(payout_id)
        if not payout:
            raise NotFound(f"Payout {payout_id} not found")

        error = mutator(payout.data)
        if error is not None:
            raise InvalidState(error)

        try:
            return await Payout.update(payout)
        except CASMismatchException:
            if attempt == max_retries:
                break
            await asyncio.sleep(backoff_ms / 1000)
            backoff_ms *= 2

    raise InvalidState("Concurrent update conflict, please retry")


# ---------------------------------------------------------------------------
# Withdrawals
# ---------------------------------------------------------------------------

async def _hold(
    vendor_id: str,
    amount_cents: int,
    method: PayoutMethod,
    processed_by: Optional[str],
    min_withdrawal_cents: int,
    now: datetime,
) -> Tuple[Payout, VendorData]:
    async def _logic(txn: Transaction) -> Tuple[Payout, VendorData]:
        vendor = await txn.get(Vendor, vendor_id)
        if not vendor:
            raise NotFound("Vendor not found")
        payout_validate_withdrawal(vendor.data, amount_cents, method, min_withdrawal_cents)

        vendor.data.balance_available_cents -= amount_cents
        await txn.replace(vendor)
        payout = await txn.insert(
            Payout,
            PayoutData(
                vendor_id=vendor_id,
                amount_cents=amount_cents,
                method=method,
                status="processing",
                processed_by=processed_by,
                processed_at=now,
            ),
            key=str(uuid.uuid4()),
            user_id=processed_by,
        )
        return payout, vendor.data

    return await run_transaction(_logic)


async def _complete(payout_id: str, transaction_id: Optional[str], now: datetime) -> Payout:
    async def _logic(txn: Transaction) -> Tuple[Payout, bool]:
        payout, vendor = await _load_pair(txn, payout_id)
        if payout.data.status in ("paid",) + CLOSED_STATUSES:
            return payout, False
        if transaction_id:
            payout.data.transaction_id = transaction_id
        await _mark_paid_in(txn, payout, vendor, now)
        return payout, True

    payout, changed = await run_transaction(_logic)
    if changed:
        await journal_record_payout(payout.data.vendor_id, payout.id, payout.data.amount_cents)
    return payout


async def _release(payout_id: str, reason: str) -> Payout:
    async def _logic(txn: Transaction) -> Tuple[Payout, bool]:
        payout, vendor = await _load_pair(txn, payout_id)
        if payout.data.status in CLOSED_STATUSES:
            return payout, False
        return payout, await _reverse_in(txn, payout, vendor, "failed", reason)

    payout, was_paid = await run_transaction(_logic)
    if was_paid:
        await journal_record_payout_reversal(payout.data.vendor_id, payout.id, payout.data.amount_cents)
    logger.warning(f"Payout {payout_id} failed, {payout.data.amount_cents}c returned to vendor: {reason}")
    return payout


async def payout_process_withdrawal(
    vendor_id: str,
    amount_cents: int,
    method: PayoutMethod,
    processed_by: Optional[str] = None,
    min_withdrawal_cents: int = DEFAULT_MIN_WITHDRAWAL_CENTS,
    paypal: Optional[PayPalClient] = None,
    now: Optional[datetime] = None,
) -> Payout:
    """Withdraw from a vendor's available balance to their payout account."""
    now = now or datetime.now(timezone.utc)
    payout, vendor = await _hold(vendor_id, amount_cents, method, processed_by, min_withdrawal_cents, now)
    logger.info(f"Payout {payout.id}: holding {amount_cents}c for vendor {vendor_id} via {method}")

    if method == "paypal":
        paypal = paypal or PayPalClient()
    if method == "paypal" and not paypal.is_configured:
        def _manual(d: PayoutData) -> Optional[str]:
            d.status = "pending"
            d.manual = True
            d.provider_metadata = {"paypal_email": vendor.paypal_email}
            return None

        logger.info(f"Payout {payout.id}: PayPal API not configured, queued for manual payment")
        return await _payout_cas_retry(payout.id, _manual)

    try:
        if method == "stripe":
            transfer_id = await stripe_connect.create_transfer(
                amount_cents,
                vendor.stripe_account_id,
                idempotency_key=f"payout:{payout.id}",
                metadata={"payout_id": payout.id, "vendor_id": vendor_id},
            )
        else:
            batch = await paypal.create_payout(
                sender_batch_id=f"payout_{payout.id}",
                receiver_email=vendor.paypal_email,
                amount_cents=amount_cents,
            )
    except Exception as e:
        await _release(payout.id, str(e) or type(e).__name__)
        raise ExternalFailure(f"{method.capitalize()} payout failed: {e}") from e

    if method == "stripe":
        return await _complete(payout.id, transfer_id, now)

    def _submitted(d: PayoutData) -> Optional[str]:
        d.transaction_id = batch.batch_id
        d.provider_metadata = {
            "batch_id": batch.batch_id,
            "batch_status": batch.batch_status,
            "sender_batch_id": batch.sender_batch_id,
            "paypal_email": vendor.paypal_email,
        }
        return None

    return await _payout_cas_retry(payout.id, _submitted)


async def payout_mark_paid(
    payout_id: str,
    processed_by: str,
    transaction_id: Optional[str] = None,
    now: Optional[datetime] = None,
) -> Payout:
    """Admin completion of a payout that was paid outside the API."""
    now = now or datetime.now(timezone.utc)
    payout = await Payout.get(payout_id)
    if not payout:
        raise NotFound("Payout not found")
    if payout.data.status in CLOSED_STATUSES:
        raise InvalidState(f"Cannot mark a {payout.data.status} payout as paid")
    payout = await _complete(payout_id, transaction_id, now)

    def _stamp(d: PayoutData) -> Optional[str]:
        d.processed_by = processed_by
        return None

    return await _payout_cas_retry(payout_id, _stamp)


# ---------------------------------------------------------------------------
# Provider webhooks
# ---------------------------------------------------------------------------

async def _apply_provider_outcome(
    method: PayoutMethod,
    transaction_id: str,
    outcome: str,
    reason: Optional[str] = None,
    now: Optional[datetime] = None,
    payout_id: Optional[str] = None,
) -> Optional[Payout]:
    now = now or datetime.now(timezone.utc)
    found = await Payout.find_one({"method": method, "transaction_id": transaction_id})
    if not found and payout_id:
        # Provider metadata names the payout before _complete has stored the transaction id
        candidate = await Payout.get(payout_id)
        if candidate and candidate.data.method == method and candidate.data.transaction_id in (None, transaction_id):
            found = candidate
    if not found:
        logger.warning(f"No {method} payout found for transaction {transaction_id} ({outcome})")
        return None

    event_key = PayoutEvent.key_for(method, transaction_id, outcome)

    async def _logic(txn: Transaction) -> Tuple[Payout, Optional[str], List[str]]:
        payout, vendor = await _load_pair(txn, found.id)
        if await txn.get(PayoutEvent, event_key):
            return payout, None, []
        if not payout.data.transaction_id:
            payout.data.transaction_id = transaction_id

        journal: Optional[str] = None
        notification_ids: List[str] = []
        status = payout.data.status
        if outcome == "succeeded":
            if status in ("pending", "processing"):
                await _mark_paid_in(txn, payout, vendor, now)
                journal = "payout"
        elif status not in CLOSED_STATUSES:
            new_status = "cancelled" if outcome == "cancelled" else "failed"
            if await _reverse_in(txn, payout, vendor, new_status, reason or outcome):
                journal = "reversal"
            else:
                journal = "released"
            if new_status == "failed":
                notification = await notification_enqueue_in(
                    txn,
                    vendor.data.user_id,
                    "payout_failed",
                    f"Your {_fmt(payout.data.amount_cents)} payout could not be completed ({outcome}). "
                    f"The amount is back in your available balance.",
                    entity_id=payout.id,
                )
                notification_ids.append(notification.id)

        await txn.insert(
            PayoutEvent,
            PayoutEventData(
                payout_id=payout.id,
                method=method,
                transaction_id=transaction_id,
                outcome=outcome,
                applied=journal is not None,
                received_at=now,
            ),
            key=event_key,
        )
        return payout, journal, notification_ids

    payout, journal, notification_ids = await run_transaction(_logic)
    dispatch_soon(notification_ids)
    if journal is None:
        logger.info(f"Payout {payout.id}: {outcome} event ignored (status {payout.data.status})")
    else:
        logger.info(f"Payout {payout.id}: {outcome} applied -> {payout.data.status}")
    if journal == "payout":
        await journal_record_payout(payout.data.vendor_id, payout.id, payout.data.amount_cents)
    elif journal == "reversal":
        await journal_record_payout_reversal(payout.data.vendor_id, payout.id, payout.data.amount_cents)
    return payout


async def payout_on_succeeded(
    method: PayoutMethod,
    transaction_id: str,
    now: Optional[datetime] = None,
    payout_id: Optional[str] = None,
) -> Optional[Payout]:
    return await _apply_provider_outcome(method, transaction_id, "succeeded", now=now, payout_id=payout_id)


async def payout_on_failed(
    method: PayoutMethod,
    transaction_id: str,
    outcome: str = "failed",
    reason: Optional[str] = None,
    now: Optional[datetime] = None,
    payout_id: Optional[str] = None,
) -> Optional[Payout]:
    if outcome not in FAILURE_OUTCOMES:
        raise InvalidRequest(f"Unknown failure outcome: {outcome}")
    return await _apply_provider_outcome(method, transaction_id, outcome, reason=reason, now=now, payout_id=payout_id)


async def payout_on_cancelled(
    method: PayoutMethod,
    transaction_id: str,
    reason: Optional[str] = None,
    now: Optional[datetime] = None,
) -> Optional[Payout]:
    return await _apply_provider_outcome(method, transaction_id, "cancelled", reason=reason, now=now)


# ---------------------------------------------------------------------------
# Queries
# ---------------------------------------------------------------------------

async def payout_list(
    vendor_id: Optional[str] = None,
    status: Optional[str] = None,
    limit: int = 50,
    offset: int = 0,
) -> Tuple[List[Payout], int]:
    where: Dict[str, Any] = {}
    if vendor_id:
        where["vendor_id"] = vendor_id
    if status:
        where["status"] = status
    payouts = await Payout.find(where, order_by=["-created_at"], limit=limit, offset=offset)
    return payouts, await Payout.count(where)

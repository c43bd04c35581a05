"""
Earnings ledger.

A paid order becomes one VendorEarning per line (deterministic key
``{order_id}:{line_index}``) plus a matching ``balance_pending`` increment,
written together in one transaction per vendor. Delivery moves each
earning's net from pending to available. Both steps are idempotent and safe
to run concurrently: the earning key and the vendor document are part of
every transaction, so duplicates conflict and re-read.
"""

import logging
from collections import defaultdict
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional, Tuple

from clients.couchbase import Transaction, run_transaction
from models.entities.couchbase.earnings import VendorEarning, VendorEarningData
from models.entities.couchbase.orders import Order, OrderData, OrderLineItem
from models.entities.couchbase.vendors import Vendor
from models.errors import NotFound
from models.money import split_commission
from models.operations.journal import journal_record_sale, journal_record_settlement
from models.operations.notifications import dispatch_soon, notification_enqueue_in

logger = logging.getLogger(__name__)

# Orders that should have a commission on record
COMMISSIONABLE_STATUSES = ["paid", "processing", "shipped", "delivered", "completed"]


def earning_transaction_type(order: OrderData, line: OrderLineItem) -> str:
    if order.source_auction_id:
        return "auction_sale"
    return "book_sale" if line.item.kind == "book" else "product_sale"


async def _record_vendor_commission(
    order: Order,
    vendor_id: str,
    lines: List[Tuple[int, OrderLineItem]],
) -> List[VendorEarning]:
    async def _record(txn: Transaction) -> Tuple[List[VendorEarning], List[str]]:
        vendor = await txn.get(Vendor, vendor_id)
        if not vendor:
            raise NotFound(f"Vendor {vendor_id} not found")
        rate = vendor.data.commission_rate_bps

        inserted: List[VendorEarning] = []
        for index, line in lines:
            key = VendorEarning.key_for(order.id, index)
            if await txn.get(VendorEarning, key):
                continue
            fee, net = split_commission(line.subtotal_cents, rate)
            earning = await txn.insert(
                VendorEarning,
                VendorEarningData(
                    vendor_id=vendor_id,
                    order_id=order.id,
                    line_index=index,
                    auction_id=order.data.source_auction_id,
                    item=line.item,
                    amount_cents=line.subtotal_cents,
                    commission_rate_bps=rate,
                    platform_fee_cents=fee,
                    net_amount_cents=net,
                    transaction_type=earning_transaction_type(order.data, line),
                ),
                key=key,
            )
            inserted.append(earning)

        if not inserted:
            return [], []

        gross = sum(e.data.amount_cents for e in inserted)
        fees = sum(e.data.platform_fee_cents for e in inserted)
        net = sum(e.data.net_amount_cents for e in inserted)
        v = vendor.data
        v.balance_pending_cents += net
        v.lifetime_gross_sales_cents += gross
        v.lifetime_commission_cents += fees
        v.lifetime_earnings_cents += net
        v.total_sales += len(inserted)
        await txn.replace(vendor)

        notification = await notification_enqueue_in(
            txn,
            v.user_id,
            "sale_recorded",
            f"New sale! You earned ${net / 100:.2f} (after ${fees / 100:.2f} commission) on order {order.id}.",
            entity_id=order.id,
        )
        return inserted, [notification.id]

    inserted, notification_ids = await run_transaction(_record)
    dispatch_soon(notification_ids)
    for earning in inserted:
        await journal_record_sale(vendor_id, earning.id, earning.data.net_amount_cents, earning.data.platform_fee_cents)
    return inserted


async def earnings_record_sale_commission(order_id: str, now: Optional[datetime] = None) -> List[VendorEarning]:
    """Record pending earnings for every line of a paid order (idempotent)."""
    from models.operations.orders import _order_cas_retry

    now = now or datetime.now(timezone.utc)
    order = await Order.get(order_id)
    if not order:
        raise NotFound(f"Order {order_id} not found")
    if order.data.commission_recorded_at is not None:
        return []

    by_vendor: Dict[str, List[Tuple[int, OrderLineItem]]] = defaultdict(list)
    for index, line in enumerate(order.data.items):
        by_vendor[line.vendor_id].append((index, line))

    created: List[VendorEarning] = []
    for vendor_id, lines in by_vendor.items():
        created.extend(await _record_vendor_commission(order, vendor_id, lines))

    def _stamp(d: OrderData) -> Optional[str]:
        d.commission_recorded_at = d.commission_recorded_at or now
        return None

    stamped = await _order_cas_retry(order_id, _stamp)
    if created:
        logger.info(f"Recorded {len(created)} earnings for order {order_id}")
    # Delivered before the commission landed: release it straight away
    if created and stamped.data.delivered_at is not None:
        await earnings_settle_on_delivery(order_id, now=now)
    return created


async def _settle_earning(earning_id: str, now: datetime) -> Optional[VendorEarning]:
    async def _settle(txn: Transaction) -> Optional[VendorEarning]:
        earning = await txn.get(VendorEarning, earning_id)
        if not earning or earning.data.status != "pending":
            return None
        vendor = await txn.get(Vendor, earning.data.vendor_id)
        if not vendor:
            raise NotFound(f"Vendor {earning.data.vendor_id} not found")

        net = earning.data.net_amount_cents
        vendor.data.balance_pending_cents -= net
        vendor.data.balance_available_cents += net
        earning.data.status = "completed"
        earning.data.completed_at = now
        await txn.replace(vendor)
        await txn.replace(earning)
        return earning

    earning = await run_transaction(_settle)
    if earning:
        await journal_record_settlement(earning.data.vendor_id, earning.id, earning.data.net_amount_cents)
    return earning


async def earnings_settle_on_delivery(order_id: str, now: Optional[datetime] = None) -> List[VendorEarning]:
    """Release an order's pending earnings to the vendors' available balance.

    Earnings are read by their line keys, not by query, so a settlement that
    runs right after the commission commit sees every one of them. The order
    is stamped ``earnings_settled_at`` only when every line has an earning and
    none is left pending; otherwise the reconcile job picks it up again.
    """
    from models.operations.orders import _order_cas_retry

    now = now or datetime.now(timezone.utc)
    order = await Order.get(order_id)
    if not order:
        raise NotFound(f"Order {order_id} not found")

    settled = []
    unrecorded = 0
    for index in range(len(order.data.items)):
        key = VendorEarning.key_for(order_id, index)
        result = await _settle_earning(key, now)
        if result:
            settled.append(result)
        elif await VendorEarning.get(key) is None:
            unrecorded += 1

    if settled:
        logger.info(f"Settled {len(settled)} earnings for order {order_id}")
    if unrecorded:
        logger.warning(f"Order {order_id}: {unrecorded} lines have no earning yet, settlement left open")
        return settled

    def _stamp(d: OrderData) -> Optional[str]:
        d.earnings_settled_at = d.earnings_settled_at or now
        return None

    await _order_cas_retry(order_id, _stamp)
    return settled


async def earnings_flag_paid_out_in(
    txn: Transaction,
    vendor_id: str,
    amount_cents: int,
    payout_id: str,
    now: datetime,
) -> int:
    """Mark completed, unpaid earnings as paid out, oldest first, while their
    cumulative net fits in *amount_cents*. Returns how many were flagged."""
    candidates = await VendorEarning.find(
        {"vendor_id": vendor_id, "status": "completed", "paid_out": False},
        order_by=["completed_at"],
    )
    remaining = amount_cents
    flagged = 0
    for candidate in candidates:
        if candidate.data.net_amount_cents > remaining:
            break
        earning = await txn.get(VendorEarning, candidate.id)
        if not earning or earning.data.paid_out:
            continue
        earning.data.paid_out = True
        earning.data.paid_at = now
        earning.data.payout_id = payout_id
        await txn.replace(earning)
        remaining -= earning.data.net_amount_cents
        flagged += 1
    return flagged


async def earnings_list_by_vendor(
    vendor_id: str,
    status: Optional[str] = None,
    limit: int = 50,
    offset: int = 0,
) -> Tuple[List[VendorEarning], int]:
    where: Dict[str, Any] = {"vendor_id": vendor_id}
    if status:
        where["status"] = status
    earnings = await VendorEarning.find(where, order_by=["-created_at"], limit=limit, offset=offset)
    return earnings, await VendorEarning.count(where)


async def earnings_vendor_summary(vendor_id: str) -> Dict[str, int]:
    vendor = await Vendor.get(vendor_id)
    if not vendor:
        raise NotFound("Vendor not found")
    v = vendor.data
    return {
        "balance_pending_cents": v.balance_pending_cents,
        "balance_available_cents": v.balance_available_cents,
        "balance_paid_cents": v.balance_paid_cents,
        "lifetime_gross_sales_cents": v.lifetime_gross_sales_cents,
        "lifetime_commission_cents": v.lifetime_commission_cents,
        "lifetime_earnings_cents": v.lifetime_earnings_cents,
        "total_sales": v.total_sales,
        "pending_earnings": await VendorEarning.count({"vendor_id": vendor_id, "status": "pending"}),
    }


async def earnings_reconcile_orders(limit: int = 100, now: Optional[datetime] = None) -> int:
    """Re-run ledger hooks that did not complete when an order changed status."""
    now = now or datetime.now(timezone.utc)
    repaired = 0
    missing_commission = await Order.find(
        {"status__in": COMMISSIONABLE_STATUSES, "commission_recorded_at__isnull": True}, limit=limit
    )
    for order in missing_commission:
        try:
            await earnings_record_sale_commission(order.id, now=now)
            repaired += 1
        except Exception as e:
            logger.error(f"Commission reconciliation for order {order.id} failed: {e}", exc_info=True)

    unsettled = await Order.find(
        {"status__in": ["delivered", "completed"], "delivered_at__isnull": False, "earnings_settled_at__isnull": True},
        limit=limit,
    )
    for order in unsettled:
        try:
            await earnings_settle_on_delivery(order.id, now=now)
            repaired += 1
        except Exception as e:
            logger.error(f"Settlement reconciliation for order {order.id} failed: {e}", exc_info=True)
    return repaired

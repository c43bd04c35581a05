"""
Auction record and resolver.

Single-document transitions (activation, end-policy edits, policy
bookkeeping) use _auction_cas_retry. Anything that touches more than the
auction document (creation with item lock, cancel, resolution with order
creation) runs in a Couchbase transaction.
"""

import asyncio
import logging
import uuid
from datetime import datetime, timedelta, timezone
from typing import Any, Callable, Dict, List, Optional, Tuple

from couchbase.exceptions import CASMismatchException, DocumentExistsException
from pydantic import ValidationError

from clients.couchbase import Transaction, run_transaction
from models.entities.couchbase.auctions import (
    OUTCOME_REASONS,
    Auction,
    AuctionData,
    AuctionStatus,
    EndPolicy,
    ItemRef,
)
from models.entities.couchbase.bids import Bid
from models.entities.couchbase.orders import Order, OrderData, OrderLineItem
from models.entities.couchbase.vendors import Vendor
from models.errors import Forbidden, InvalidRequest, InvalidState, NotFound
from models.operations.catalog import catalog_get, catalog_get_in, catalog_lock, catalog_unlock
from models.operations.notifications import dispatch_soon, notification_enqueue_in
from models.operations.vendors import vendor_assert_can_act

logger = logging.getLogger(__name__)


# ---------------------------------------------------------------------------
# CAS-retry helper
# ---------------------------------------------------------------------------

async def _auction_cas_retry(
    auction_id: str,
    mutator: Callable[[AuctionData], Optional[str]],
    max_retries: int = 5,
) -> Auction:
    """Read-modify-write an auction with CAS-guarded retry.

    *mutator* receives ``AuctionData`` and mutates it in place. It returns
    ``None`` on success or an error string, raised as ``InvalidState``. On
    ``CASMismatchException`` the helper re-reads and retries with
    exponential backoff (10 ms, 20 ms, 40 ms, …).
    """
    backoff_ms = 10
    for attempt in range(max_retries + 1):
        auction = await Auction.get(auction_id)
        if not auction:
            raise NotFound(f"Auction {auction_id} not found")

        error = mutator(auction.data)
        if error is not None:
            raise InvalidState(error)

        try:
            return await Auction.update(auction)
        except CASMismatchException:
            if attempt == max_retries:
                break
            await asyncio.sleep(backoff_ms / 1000)
            backoff_ms *= 2

    raise InvalidState("Concurrent update conflict, please retry")


# ---------------------------------------------------------------------------
# CRUD
# ---------------------------------------------------------------------------

async def auction_create(
    vendor_id: str,
    acting_user_id: Optional[str],
    item: ItemRef,
    starting_price_cents: int,
    starts_at: datetime,
    ends_at: datetime,
    reserve_price_cents: Optional[int] = None,
    payment_window_hours: int = 48,
    end_policy: Optional[EndPolicy] = None,
    is_admin: bool = False,
    now: Optional[datetime] = None,
) -> Auction:
    """Create an auction and lock the catalog item until it ends."""
    now = now or datetime.now(timezone.utc)
    if starting_price_cents <= 0:
        raise InvalidRequest("Starting price must be greater than 0")
    if reserve_price_cents is not None and reserve_price_cents <= 0:
        raise InvalidRequest("Reserve price must be greater than 0")
    if ends_at <= starts_at or ends_at <= now:
        raise InvalidRequest("Auction must end in the future and after it starts")
    if payment_window_hours <= 0:
        raise InvalidRequest("Payment window must be at least one hour")

    vendor = await Vendor.get(vendor_id)
    vendor_assert_can_act(vendor, acting_user_id, is_admin)

    async def _create(txn: Transaction) -> Auction:
        catalog_item = await catalog_get_in(txn, item)
        if catalog_item.data.vendor_id != vendor_id:
            raise Forbidden("Item does not belong to this vendor")
        if catalog_item.data.status == "archived":
            raise InvalidState("Archived items cannot be auctioned")
        if not catalog_item.data.in_stock:
            raise InvalidState("Item is out of stock")
        locked_until = catalog_item.data.auction_locked_until
        if locked_until and locked_until > now:
            raise InvalidState("Item is already in an auction")

        catalog_lock(catalog_item, ends_at)
        await txn.replace(catalog_item)

        data = AuctionData(
            item=item,
            vendor_id=vendor_id,
            starting_price_cents=starting_price_cents,
            reserve_price_cents=reserve_price_cents,
            starts_at=starts_at,
            ends_at=ends_at,
            status="upcoming" if starts_at > now else "active",
            payment_window_hours=payment_window_hours,
            end_policy=end_policy or EndPolicy(),
        )
        return await txn.insert(Auction, data, key=str(uuid.uuid4()), user_id=acting_user_id)

    auction = await run_transaction(_create)
    logger.info(f"Auction {auction.id} created for {item.kind} {item.id} ({auction.data.status})")
    return auction


async def auction_get(auction_id: str) -> Optional[Auction]:
    return await Auction.get(auction_id)


async def auction_search(
    status: Optional[str] = "active",
    vendor_id: Optional[str] = None,
    ends_before: Optional[datetime] = None,
    limit: int = 50,
    offset: int = 0,
) -> Tuple[List[Auction], int]:
    """Search auctions with optional filters, soonest-ending first."""
    where: Dict[str, Any] = {}
    if status:
        where["status"] = status
    if vendor_id:
        where["vendor_id"] = vendor_id
    if ends_before is not None:
        where["ends_at__lte"] = ends_before
    auctions = await Auction.find(where, order_by=["ends_at"], limit=limit, offset=offset)
    return auctions, await Auction.count(where)


async def auction_list_by_vendor(vendor_id: str, limit: int = 100, offset: int = 0) -> List[Auction]:
    return await Auction.find({"vendor_id": vendor_id}, order_by=["-created_at"], limit=limit, offset=offset)


# ---------------------------------------------------------------------------
# Lifecycle transitions
# ---------------------------------------------------------------------------

async def auction_activate(auction_id: str, now: Optional[datetime] = None) -> Auction:
    """Transition an upcoming auction to active once its start time passed."""
    now = now or datetime.now(timezone.utc)

    def _mutate(d: AuctionData) -> Optional[str]:
        if d.status != "upcoming":
            return f"Cannot activate: status is {d.status}"
        if d.starts_at > now:
            return "Auction has not reached its start time"
        d.status = "active"
        return None

    return await _auction_cas_retry(auction_id, _mutate)


async def auction_activate_due(now: Optional[datetime] = None) -> int:
    now = now or datetime.now(timezone.utc)
    due = await Auction.find({"status": "upcoming", "starts_at__lte": now}, order_by=["starts_at"])
    activated = 0
    for auction in due:
        try:
            await auction_activate(auction.id, now=now)
            activated += 1
        except InvalidState as e:
            logger.info(f"Skipping activation of auction {auction.id}: {e}")
    return activated


async def auction_cancel(
    auction_id: str,
    acting_user_id: Optional[str],
    is_admin: bool = False,
) -> Auction:
    """Cancel an auction before any bid and release the item lock."""

    async def _cancel(txn: Transaction) -> Auction:
        auction = await txn.get(Auction, auction_id)
        if not auction:
            raise NotFound("Auction not found")
        d = auction.data
        vendor_assert_can_act(await Vendor.get(d.vendor_id), acting_user_id, is_admin)
        if d.status not in ("upcoming", "active"):
            raise InvalidState(f"Cannot cancel auction with status: {d.status}")
        if d.bid_count > 0:
            raise InvalidState("Cannot cancel auction with existing bids")

        catalog_item = await txn.get(d.item.model(), d.item.id)
        if catalog_item:
            catalog_unlock(catalog_item)
            await txn.replace(catalog_item)

        d.status = "cancelled"
        return await txn.replace(auction)

    auction = await run_transaction(_cancel)
    logger.info(f"Auction {auction_id} cancelled")
    return auction


async def auction_update_end_policy(
    auction_id: str,
    acting_user_id: Optional[str],
    updates: Dict[str, Any],
    is_admin: bool = False,
) -> Auction:
    """Partially update the end policy while the auction is upcoming or active."""
    auction = await Auction.get(auction_id)
    if not auction:
        raise NotFound("Auction not found")
    vendor_assert_can_act(await Vendor.get(auction.data.vendor_id), acting_user_id, is_admin)

    # Validate before touching the document
    fields = {k: v for k, v in updates.items() if v is not None and k in EndPolicy.model_fields}
    try:
        EndPolicy(**{**auction.data.end_policy.model_dump(), **fields})
    except ValidationError as e:
        raise InvalidRequest(f"Invalid end policy: {e.errors()[0]['msg']}") from e

    def _mutate(d: AuctionData) -> Optional[str]:
        if d.status not in ("upcoming", "active"):
            return "End policy can only be changed for upcoming or active auctions"
        d.end_policy = EndPolicy(**{**d.end_policy.model_dump(), **fields})
        return None

    return await _auction_cas_retry(auction_id, _mutate)


# ---------------------------------------------------------------------------
# Resolver
# ---------------------------------------------------------------------------

def auction_classify_outcome(
    bid_count: int,
    reserve_price_cents: Optional[int],
    current_bid_cents: Optional[int],
) -> AuctionStatus:
    """Terminal status for an auction that reached its end time."""
    if bid_count == 0:
        return "ended_no_bids"
    if reserve_price_cents is not None and (current_bid_cents or 0) < reserve_price_cents:
        return "ended_reserve_not_met"
    return "ended_sold"


class _OrderAlreadyCreated(Exception):
    """Another resolver committed this auction's order first."""


async def auction_resolve(auction_id: str, now: Optional[datetime] = None) -> Auction:
    """End a due auction. Re-running on a terminal auction returns it unchanged.

    On a sale the winner's order is created in the same transaction; on no
    sale with an immediate end policy the policy runs right after commit.
    """
    now = now or datetime.now(timezone.utc)

    async def _resolve(txn: Transaction) -> Tuple[Auction, bool, List[str]]:
        auction = await txn.get(Auction, auction_id)
        if not auction:
            raise NotFound("Auction not found")
        d = auction.data
        if d.is_terminal:
            return auction, False, []
        if d.status != "active":
            raise InvalidState(f"Auction is not active (status: {d.status})")
        if now < d.ends_at:
            raise InvalidState("Auction has not reached its end time")

        d.status = auction_classify_outcome(d.bid_count, d.reserve_price_cents, d.current_bid_cents)
        d.end_outcome_reason = OUTCOME_REASONS[d.status]
        d.ended_at = now

        notification_ids = []
        if d.status == "ended_sold":
            winning_bid = await txn.get(Bid, d.current_bid_id) if d.current_bid_id else None
            if not winning_bid:
                raise InvalidState(f"Winning bid for auction {auction_id} is missing")

            d.winner_id = winning_bid.data.bidder_id
            d.winning_bid_id = winning_bid.id
            d.payment_deadline = now + timedelta(hours=d.payment_window_hours)

            amount = winning_bid.data.amount_cents
            try:
                order = await txn.insert(
                    Order,
                    OrderData(
                        buyer_id=d.winner_id,
                        items=[
                            OrderLineItem(
                                item=d.item,
                                vendor_id=d.vendor_id,
                                quantity=1,
                                unit_price_cents=amount,
                                subtotal_cents=amount,
                            )
                        ],
                        total_cents=amount,
                        source_auction_id=auction_id,
                        payment_deadline=d.payment_deadline,
                    ),
                    key=f"auction:{auction_id}",
                    user_id=d.winner_id,
                )
            except DocumentExistsException as e:
                raise _OrderAlreadyCreated(auction_id) from e
            d.order_id = order.id

            item = await catalog_get(d.item)
            title = item.data.title if item else "your auction item"
            notification = await notification_enqueue_in(
                txn,
                d.winner_id,
                "auction_won",
                f'Congratulations! You won "{title}" for ${amount / 100:.2f}. '
                f"Payment due by {d.payment_deadline:%Y-%m-%d %H:%M} UTC.",
                entity_id=auction_id,
            )
            notification_ids.append(notification.id)

        await txn.replace(auction)
        return auction, True, notification_ids

    try:
        auction, changed, notification_ids = await run_transaction(_resolve)
    except _OrderAlreadyCreated:
        auction = await Auction.get(auction_id)
        if auction and auction.data.is_terminal:
            logger.info(f"Auction {auction_id} was resolved concurrently ({auction.data.status})")
            return auction
        raise InvalidState(f"Order auction:{auction_id} exists but the auction is not resolved")
    if not changed:
        return auction

    d = auction.data
    logger.info(
        f"Auction {auction_id} resolved: {d.status} "
        f"(bids={d.bid_count}, current={d.current_bid_cents}, reserve={d.reserve_price_cents})"
    )
    dispatch_soon(notification_ids)

    if d.status != "ended_sold" and d.end_policy.on_no_sale != "NONE" and d.end_policy.relist_delay_hours == 0:
        from models.operations.auction_policies import auction_apply_end_policy

        try:
            await auction_apply_end_policy(auction_id, now=now)
        except Exception as e:
            logger.error(f"End policy for auction {auction_id} failed: {e}", exc_info=True)
        auction = await Auction.get(auction_id) or auction
    return auction


async def auction_resolve_due(now: Optional[datetime] = None) -> int:
    """Resolve every active auction past its end time; failures are isolated."""
    now = now or datetime.now(timezone.utc)
    due = await Auction.find({"status": "active", "ends_at__lte": now}, order_by=["ends_at"])
    resolved = 0
    for auction in due:
        try:
            await auction_resolve(auction.id, now=now)
            resolved += 1
        except Exception as e:
            logger.error(f"Failed to resolve auction {auction.id}: {e}", exc_info=True)
    return resolved


async def auction_mark_policy_applied(auction_id: str, result: str, now: Optional[datetime] = None) -> Auction:
    """Record the end-policy outcome so the deferred re-check skips it."""
    now = now or datetime.now(timezone.utc)

    def _mutate(d: AuctionData) -> Optional[str]:
        # First recorded outcome wins
        if d.end_policy_applied_at is None:
            d.end_policy_applied_at = now
            d.end_policy_result = result
        return None

    return await _auction_cas_retry(auction_id, _mutate)

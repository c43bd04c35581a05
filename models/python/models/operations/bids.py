"""
Bid ledger.

bid_place runs as one Couchbase transaction that reads and rewrites the
auction document, so concurrent bids on the same auction conflict on it and
are applied one after another:

1. Read auction, validate status, timing, minimum and bidder
2. Flip the current winning bid to ``outbid``
3. Insert the new bid as ``winning``
4. Rewrite the auction's winning slot and bid_count
5. Queue the outbid notification (outbox)

The notification is dispatched after commit.
"""

import logging
import uuid
from datetime import datetime, timezone
from typing import List, Optional, Tuple

from clients.couchbase import Transaction, run_transaction
from models.entities.couchbase.auctions import Auction, AuctionData
from models.entities.couchbase.bids import Bid, BidData
from models.entities.couchbase.vendors import Vendor
from models.errors import (
    AlreadyWinning,
    AuctionEnded,
    AuctionNotActive,
    BidTooLow,
    Forbidden,
    InvalidRequest,
    NotFound,
)
from models.operations.catalog import catalog_get
from models.operations.notifications import dispatch_soon, notification_enqueue_in

logger = logging.getLogger(__name__)

MIN_BID_INCREMENT_CENTS = 100


def bid_minimum_cents(auction: AuctionData) -> int:
    """Smallest acceptable next bid."""
    if auction.bid_count > 0 and auction.current_bid_cents is not None:
        return auction.current_bid_cents + MIN_BID_INCREMENT_CENTS
    return auction.starting_price_cents


async def bid_place(
    auction_id: str,
    bidder_id: str,
    amount_cents: int,
    now: Optional[datetime] = None,
) -> Bid:
    if amount_cents <= 0:
        raise InvalidRequest("Bid amount must be greater than 0")

    async def _place(txn: Transaction) -> Tuple[Bid, List[str]]:
        auction = await txn.get(Auction, auction_id)
        if not auction:
            raise NotFound("Auction not found")

        d = auction.data
        placed_at = now or datetime.now(timezone.utc)

        if d.status != "active":
            raise AuctionNotActive(f"Auction is not active (status: {d.status})")
        if placed_at > d.ends_at:
            raise AuctionEnded("Auction has ended")

        vendor = await Vendor.get(d.vendor_id)
        if vendor and vendor.data.user_id == bidder_id:
            raise Forbidden("Vendors cannot bid on their own auction")

        minimum = bid_minimum_cents(d)
        if amount_cents < minimum:
            raise BidTooLow(minimum)
        if d.current_bidder_id == bidder_id:
            raise AlreadyWinning()

        previous: Optional[Bid] = None
        if d.current_bid_id:
            previous = await txn.get(Bid, d.current_bid_id)
            if previous and previous.data.status == "winning":
                previous.data.status = "outbid"
                await txn.replace(previous)

        bid = await txn.insert(
            Bid,
            BidData(
                auction_id=auction_id,
                bidder_id=bidder_id,
                amount_cents=amount_cents,
                placed_at=placed_at,
                status="winning",
            ),
            key=str(uuid.uuid4()),
            user_id=bidder_id,
        )

        d.current_bid_cents = amount_cents
        d.current_bid_id = bid.id
        d.current_bidder_id = bidder_id
        d.bid_count += 1
        await txn.replace(auction)

        notification_ids = []
        if previous and previous.data.bidder_id != bidder_id:
            item = await catalog_get(d.item)
            title = item.data.title if item else "an auction"
            notification = await notification_enqueue_in(
                txn,
                previous.data.bidder_id,
                "auction_outbid",
                f'You\'ve been outbid on "{title}". Current bid: ${amount_cents / 100:.2f}',
                entity_id=auction_id,
            )
            notification_ids.append(notification.id)
        return bid, notification_ids

    bid, notification_ids = await run_transaction(_place)
    logger.info(f"Bid {bid.id} on auction {auction_id}: {amount_cents}c by {bidder_id}")
    dispatch_soon(notification_ids)
    return bid


async def bid_list_by_auction(auction_id: str, limit: int = 20, offset: int = 0) -> Tuple[List[Bid], int]:
    """Bids for an auction, highest first (ties: most recent first), plus the total count."""
    where = {"auction_id": auction_id}
    bids = await Bid.find(where, order_by=["-amount_cents", "-placed_at"], limit=limit, offset=offset)
    total = await Bid.count(where)
    return bids, total


async def bid_list_by_bidder(
    bidder_id: str,
    status: Optional[str] = None,
    limit: int = 50,
    offset: int = 0,
) -> Tuple[List[Bid], int]:
    """A bidder's bid history, most recent first."""
    where = {"bidder_id": bidder_id}
    if status:
        where["status"] = status
    bids = await Bid.find(where, order_by=["-placed_at"], limit=limit, offset=offset)
    total = await Bid.count(where)
    return bids, total

"""
Public auction and bidding endpoints.

GET    /auctions/              search auctions (public)
GET    /auctions/{id}          auction detail
GET    /auctions/{id}/bids     paginated bid history, highest first
POST   /auctions/{id}/bids     place a bid
"""

from datetime import datetime
from decimal import Decimal
from typing import List, Optional

from fastapi import APIRouter, Depends, HTTPException, Query
from pydantic import BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel

from models.entities.couchbase.auctions import Auction, EndPolicy
from models.entities.couchbase.bids import Bid
from models.money import to_cents
from models.operations.auctions import auction_get, auction_search
from models.operations.bids import bid_list_by_auction, bid_minimum_cents, bid_place
from utils import log

from .dependencies import require_authenticated

logger = log.get_logger(__name__)

router = APIRouter(prefix="/auctions", tags=["auctions"])


# ---------------------------------------------------------------------------
# Request / Response schemas
# ---------------------------------------------------------------------------

class CamelRequest(BaseModel):
    """Request bodies accept both camelCase and snake_case keys."""
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)


class PlaceBidRequest(CamelRequest):
    amount: Decimal = Field(gt=0, decimal_places=2)


class BidResponse(BaseModel):
    id: str
    auction_id: str
    bidder_id: str
    amount_cents: int
    placed_at: datetime
    status: str


class BidListResponse(BaseModel):
    bids: List[BidResponse]
    total: int
    page: int
    limit: int
    total_pages: int


class AuctionResponse(BaseModel):
    id: str
    vendor_id: str
    item_type: str
    item_id: str
    starting_price_cents: int
    reserve_price_cents: Optional[int] = None
    has_reserve: bool
    starts_at: datetime
    ends_at: datetime
    status: str
    current_bid_cents: Optional[int] = None
    current_bidder_id: Optional[str] = None
    bid_count: int
    minimum_bid_cents: int
    ended_at: Optional[datetime] = None
    end_outcome_reason: Optional[str] = None
    winner_id: Optional[str] = None
    winning_bid_id: Optional[str] = None
    order_id: Optional[str] = None
    payment_deadline: Optional[datetime] = None
    relist_count: int
    parent_auction_id: Optional[str] = None
    relisted_as_id: Optional[str] = None
    end_policy: EndPolicy
    end_policy_result: Optional[str] = None


class AuctionListResponse(BaseModel):
    auctions: List[AuctionResponse]
    total: int


def auction_to_response(auction: Auction, show_reserve: bool = False) -> AuctionResponse:
    """The reserve amount is only shown to the owning vendor and admins."""
    d = auction.data
    return AuctionResponse(
        id=auction.id,
        vendor_id=d.vendor_id,
        item_type=d.item.kind,
        item_id=d.item.id,
        starting_price_cents=d.starting_price_cents,
        reserve_price_cents=d.reserve_price_cents if show_reserve else None,
        has_reserve=d.reserve_price_cents is not None,
        starts_at=d.starts_at,
        ends_at=d.ends_at,
        status=d.status,
        current_bid_cents=d.current_bid_cents,
        current_bidder_id=d.current_bidder_id,
        bid_count=d.bid_count,
        minimum_bid_cents=bid_minimum_cents(d),
        ended_at=d.ended_at,
        end_outcome_reason=d.end_outcome_reason,
        winner_id=d.winner_id,
        winning_bid_id=d.winning_bid_id,
        order_id=d.order_id,
        payment_deadline=d.payment_deadline,
        relist_count=d.relist_count,
        parent_auction_id=d.parent_auction_id,
        relisted_as_id=d.relisted_as_id,
        end_policy=d.end_policy,
        end_policy_result=d.end_policy_result,
    )


def bid_to_response(bid: Bid) -> BidResponse:
    d = bid.data
    return BidResponse(
        id=bid.id,
        auction_id=d.auction_id,
        bidder_id=d.bidder_id,
        amount_cents=d.amount_cents,
        placed_at=d.placed_at,
        status=d.status,
    )


# ---------------------------------------------------------------------------
# GET /auctions/: search
# ---------------------------------------------------------------------------

@router.get("/", response_model=AuctionListResponse)
async def route_auction_search(
    status: Optional[str] = Query("active"),
    vendor_id: Optional[str] = Query(None),
    ends_before: Optional[datetime] = Query(None),
    limit: int = Query(20, ge=1, le=100),
    offset: int = Query(0, ge=0),
):
    auctions, total = await auction_search(
        status=status,
        vendor_id=vendor_id,
        ends_before=ends_before,
        limit=limit,
        offset=offset,
    )
    return AuctionListResponse(auctions=[auction_to_response(a) for a in auctions], total=total)


# ---------------------------------------------------------------------------
# GET /auctions/{id}
# ---------------------------------------------------------------------------

@router.get("/{auction_id}", response_model=AuctionResponse)
async def route_auction_get(auction_id: str):
    auction = await auction_get(auction_id)
    if not auction:
        raise HTTPException(status_code=404, detail="Auction not found")
    return auction_to_response(auction)


# ---------------------------------------------------------------------------
# GET /auctions/{id}/bids: bid history
# ---------------------------------------------------------------------------

@router.get("/{auction_id}/bids", response_model=BidListResponse)
async def route_auction_bids(
    auction_id: str,
    page: int = Query(1, ge=1),
    limit: int = Query(20, ge=1, le=100),
):
    if not await auction_get(auction_id):
        raise HTTPException(status_code=404, detail="Auction not found")

    bids, total = await bid_list_by_auction(auction_id, limit=limit, offset=(page - 1) * limit)
    return BidListResponse(
        bids=[bid_to_response(b) for b in bids],
        total=total,
        page=page,
        limit=limit,
        total_pages=(total + limit - 1) // limit,
    )


# ---------------------------------------------------------------------------
# POST /auctions/{id}/bids: place a bid
# ---------------------------------------------------------------------------

@router.post("/{auction_id}/bids", response_model=BidResponse, status_code=201)
async def route_bid_place(
    auction_id: str,
    body: PlaceBidRequest,
    user: dict = Depends(require_authenticated),
):
    bid = await bid_place(auction_id, user["sub"], to_cents(body.amount))
    logger.info(f"Bid {bid.id}: {bid.data.amount_cents}c on auction {auction_id} by {user['sub']}")
    return bid_to_response(bid)

"""
Vendor auction management.

POST   /vendor/auctions                         create an auction for a catalog item
GET    /vendor/auctions                         the caller's auctions
POST   /vendor/auctions/{id}/relist             relist an unsold auction
POST   /vendor/auctions/{id}/convert-to-fixed   publish the item at a fixed price
POST   /vendor/auctions/{id}/unlist             archive the item
PATCH  /vendor/auctions/{id}/end-policy         change the end-of-auction policy
POST   /vendor/auctions/{id}/cancel             cancel before the first bid

Owners act on their own auctions; admins on any.
"""

from datetime import datetime, timedelta, timezone
from decimal import Decimal
from typing import Literal, Optional

from fastapi import APIRouter, Depends, Query
from pydantic import BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel

from models.entities.couchbase.auctions import BookRef, EndPolicy, ProductRef
from models.entities.couchbase.vendors import Vendor
from models.money import to_cents, to_dollars
from models.operations.auction_policies import auction_convert_to_fixed, auction_relist, auction_unlist
from models.operations.auctions import (
    auction_cancel,
    auction_create,
    auction_list_by_vendor,
    auction_update_end_policy,
)
from utils import log

from .auctions import AuctionListResponse, AuctionResponse, CamelRequest, auction_to_response
from .dependencies import is_admin, require_authenticated, require_vendor

logger = log.get_logger(__name__)

router = APIRouter(prefix="/vendor/auctions", tags=["vendor-auctions"])

_UNSET = object()


# ---------------------------------------------------------------------------
# Request / Response schemas
# ---------------------------------------------------------------------------

class EndPolicyRequest(CamelRequest):
    on_no_sale: Optional[Literal["NONE", "RELIST_AUCTION", "CONVERT_FIXED", "UNLIST"]] = None
    relist_delay_hours: Optional[int] = Field(default=None, ge=0)
    relist_max_count: Optional[int] = Field(default=None, ge=0)
    convert_price_source: Optional[Literal["MANUAL", "RESERVE", "HIGHEST_BID", "STARTING_BID"]] = None
    convert_markup_bps: Optional[int] = Field(default=None, ge=0)


class CreateAuctionRequest(CamelRequest):
    item_type: Literal["book", "product"]
    item_id: str
    starting_price: Decimal = Field(gt=0)
    reserve_price: Optional[Decimal] = Field(default=None, gt=0)
    starts_at: Optional[datetime] = None
    duration_days: float = Field(default=7, gt=0, le=30)
    payment_window_hours: int = Field(default=48, ge=1)
    end_policy: Optional[EndPolicyRequest] = None


class RelistRequest(CamelRequest):
    starting_price: Optional[Decimal] = Field(default=None, gt=0)
    reserve_price: Optional[Decimal] = Field(default=None, gt=0)
    duration_days: float = Field(default=7, gt=0, le=30)


class ConvertRequest(CamelRequest):
    price: Optional[Decimal] = Field(default=None, gt=0)


class CamelResponse(BaseModel):
    """Serialised with camelCase keys."""
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)


class UnlistResponse(CamelResponse):
    item_type: str
    item_id: str


class ConvertResponse(UnlistResponse):
    price: Decimal


# ---------------------------------------------------------------------------
# POST /vendor/auctions: create
# ---------------------------------------------------------------------------

@router.post("", response_model=AuctionResponse, status_code=201)
async def route_vendor_auction_create(
    body: CreateAuctionRequest,
    user: dict = Depends(require_authenticated),
    vendor: Vendor = Depends(require_vendor),
):
    now = datetime.now(timezone.utc)
    starts_at = body.starts_at or now
    item = BookRef(id=body.item_id) if body.item_type == "book" else ProductRef(id=body.item_id)
    end_policy = None
    if body.end_policy:
        end_policy = EndPolicy(**body.end_policy.model_dump(exclude_none=True))

    auction = await auction_create(
        vendor_id=vendor.id,
        acting_user_id=user["sub"],
        item=item,
        starting_price_cents=to_cents(body.starting_price),
        reserve_price_cents=to_cents(body.reserve_price) if body.reserve_price is not None else None,
        starts_at=starts_at,
        ends_at=starts_at + timedelta(days=body.duration_days),
        payment_window_hours=body.payment_window_hours,
        end_policy=end_policy,
        now=now,
    )
    return auction_to_response(auction, show_reserve=True)


@router.get("", response_model=AuctionListResponse)
async def route_vendor_auction_list(
    limit: int = Query(50, ge=1, le=100),
    offset: int = Query(0, ge=0),
    vendor: Vendor = Depends(require_vendor),
):
    auctions = await auction_list_by_vendor(vendor.id, limit=limit, offset=offset)
    return AuctionListResponse(
        auctions=[auction_to_response(a, show_reserve=True) for a in auctions],
        total=len(auctions),
    )


# ---------------------------------------------------------------------------
# Unsold auction actions
# ---------------------------------------------------------------------------

@router.post("/{auction_id}/relist", response_model=AuctionResponse)
async def route_vendor_auction_relist(
    auction_id: str,
    body: Optional[RelistRequest] = None,
    user: dict = Depends(require_authenticated),
):
    body = body or RelistRequest()
    reserve = _UNSET
    if "reserve_price" in body.model_fields_set:
        reserve = to_cents(body.reserve_price) if body.reserve_price is not None else None

    kwargs = {} if reserve is _UNSET else {"reserve_price_cents": reserve}
    relisted = await auction_relist(
        auction_id,
        user["sub"],
        is_admin=is_admin(user),
        duration=timedelta(days=body.duration_days),
        starting_price_cents=to_cents(body.starting_price) if body.starting_price is not None else None,
        **kwargs,
    )
    return auction_to_response(relisted, show_reserve=True)


@router.post("/{auction_id}/convert-to-fixed", response_model=ConvertResponse, response_model_by_alias=True)
async def route_vendor_auction_convert(
    auction_id: str,
    body: Optional[ConvertRequest] = None,
    user: dict = Depends(require_authenticated),
):
    price = body.price if body else None
    result = await auction_convert_to_fixed(
        auction_id,
        user["sub"],
        is_admin=is_admin(user),
        price_cents=to_cents(price) if price is not None else None,
    )
    return ConvertResponse(
        item_type=result["item_type"],
        item_id=result["item_id"],
        price=to_dollars(result["price_cents"]),
    )


@router.post("/{auction_id}/unlist", response_model=UnlistResponse, response_model_by_alias=True)
async def route_vendor_auction_unlist(
    auction_id: str,
    user: dict = Depends(require_authenticated),
):
    result = await auction_unlist(auction_id, user["sub"], is_admin=is_admin(user))
    return UnlistResponse(item_type=result["item_type"], item_id=result["item_id"])


# ---------------------------------------------------------------------------
# Policy edits and cancellation
# ---------------------------------------------------------------------------

@router.patch("/{auction_id}/end-policy", response_model=AuctionResponse)
async def route_vendor_auction_end_policy(
    auction_id: str,
    body: EndPolicyRequest,
    user: dict = Depends(require_authenticated),
):
    auction = await auction_update_end_policy(
        auction_id,
        user["sub"],
        body.model_dump(exclude_none=True),
        is_admin=is_admin(user),
    )
    return auction_to_response(auction, show_reserve=True)


@router.post("/{auction_id}/cancel", response_model=AuctionResponse)
async def route_vendor_auction_cancel(
    auction_id: str,
    user: dict = Depends(require_authenticated),
):
    auction = await auction_cancel(auction_id, user["sub"], is_admin=is_admin(user))
    return auction_to_response(auction, show_reserve=True)

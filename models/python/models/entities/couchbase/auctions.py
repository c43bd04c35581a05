from typing import Annotated, Literal, Optional, Union
from datetime import datetime
from pydantic import BaseModel, Field
from clients.couchbase import BaseModelCouchbase, BaseCouchbaseEntityData

from models.entities.couchbase.catalog import Book, Product


class BookRef(BaseModel):
    kind: Literal["book"] = "book"
    id: str

    def model(self) -> type[Book]:
        return Book


class ProductRef(BaseModel):
    kind: Literal["product"] = "product"
    id: str

    def model(self) -> type[Product]:
        return Product


# What an auction sells; resolved through the catalog entity for its kind
ItemRef = Annotated[Union[BookRef, ProductRef], Field(discriminator="kind")]


AuctionStatus = Literal[
    "upcoming",
    "active",
    "ended_no_bids",
    "ended_reserve_not_met",
    "ended_sold",
    "cancelled",
]

TERMINAL_STATUSES = ("ended_no_bids", "ended_reserve_not_met", "ended_sold", "cancelled")
UNSOLD_STATUSES = ("ended_no_bids", "ended_reserve_not_met")
OUTCOME_REASONS = {
    "ended_no_bids": "NO_BIDS",
    "ended_reserve_not_met": "RESERVE_NOT_MET",
    "ended_sold": "SOLD",
}


class EndPolicy(BaseModel):
    """What to do with the item when the auction ends unsold."""
    on_no_sale: Literal["NONE", "RELIST_AUCTION", "CONVERT_FIXED", "UNLIST"] = "NONE"
    relist_delay_hours: int = Field(default=0, ge=0)
    relist_max_count: int = Field(default=0, ge=0)  # 0 = unlimited
    convert_price_source: Literal["MANUAL", "RESERVE", "HIGHEST_BID", "STARTING_BID"] = "MANUAL"
    convert_markup_bps: int = Field(default=0, ge=0)


class AuctionData(BaseCouchbaseEntityData):
    # Ownership
    item: ItemRef
    vendor_id: str

    # Pricing
    starting_price_cents: int
    reserve_price_cents: Optional[int] = None

    # Schedule
    starts_at: datetime
    ends_at: datetime

    status: AuctionStatus = "upcoming"

    # Denormalized winning slot (rewritten inside each bid transaction)
    current_bid_cents: Optional[int] = None
    current_bid_id: Optional[str] = None
    current_bidder_id: Optional[str] = None
    bid_count: int = 0

    # Resolution
    ended_at: Optional[datetime] = None
    end_outcome_reason: Optional[Literal["NO_BIDS", "RESERVE_NOT_MET", "SOLD"]] = None
    winner_id: Optional[str] = None
    winning_bid_id: Optional[str] = None
    order_id: Optional[str] = None
    payment_window_hours: int = 48
    payment_deadline: Optional[datetime] = None

    # Relist chain
    relist_count: int = 0
    parent_auction_id: Optional[str] = None
    relisted_as_id: Optional[str] = None

    end_policy: EndPolicy = Field(default_factory=EndPolicy)
    end_policy_applied_at: Optional[datetime] = None
    end_policy_result: Optional[str] = None

    @property
    def is_terminal(self) -> bool:
        return self.status in TERMINAL_STATUSES


class Auction(BaseModelCouchbase[AuctionData]):
    _collection_name = "auctions"

from typing import Literal
from datetime import datetime
from clients.couchbase import BaseModelCouchbase, BaseCouchbaseEntityData


class BidData(BaseCouchbaseEntityData):
    auction_id: str
    bidder_id: str
    amount_cents: int
    placed_at: datetime
    # "winning" is held by exactly one bid per auction with bid_count > 0
    status: Literal["active", "winning", "outbid"] = "active"


class Bid(BaseModelCouchbase[BidData]):
    _collection_name = "auction_bids"

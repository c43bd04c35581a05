from typing import Optional, Literal
from datetime import datetime
from clients.couchbase import BaseModelCouchbase, BaseCouchbaseEntityData

from models.entities.couchbase.auctions import ItemRef


class VendorEarningData(BaseCouchbaseEntityData):
    vendor_id: str
    order_id: str
    line_index: int
    auction_id: Optional[str] = None
    item: ItemRef
    amount_cents: int          # gross
    commission_rate_bps: int
    platform_fee_cents: int
    net_amount_cents: int      # amount - platform_fee
    transaction_type: Literal["book_sale", "product_sale", "auction_sale"]
    status: Literal["pending", "completed"] = "pending"
    completed_at: Optional[datetime] = None
    paid_out: bool = False
    paid_at: Optional[datetime] = None
    payout_id: Optional[str] = None


class VendorEarning(BaseModelCouchbase[VendorEarningData]):
    _collection_name = "vendor_earnings"

    @staticmethod
    def key_for(order_id: str, line_index: int) -> str:
        return f"{order_id}:{line_index}"

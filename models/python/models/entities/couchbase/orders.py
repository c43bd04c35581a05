from typing import List, Optional, Literal
from datetime import datetime
from pydantic import BaseModel
from clients.couchbase import BaseModelCouchbase, BaseCouchbaseEntityData

from models.entities.couchbase.auctions import ItemRef

OrderStatus = Literal[
    "pending", "paid", "processing", "shipped", "delivered", "completed", "cancelled", "refunded"
]

PAID_STATUSES = ("paid", "completed")


class OrderLineItem(BaseModel):
    item: ItemRef
    vendor_id: str
    quantity: int = 1
    unit_price_cents: int
    subtotal_cents: int


class OrderData(BaseCouchbaseEntityData):
    buyer_id: str
    status: OrderStatus = "pending"
    items: List[OrderLineItem] = []
    total_cents: int = 0
    source_auction_id: Optional[str] = None
    payment_deadline: Optional[datetime] = None
    stripe_payment_intent_id: Optional[str] = None
    stripe_payment_status: Optional[str] = None
    paid_at: Optional[datetime] = None
    delivered_at: Optional[datetime] = None
    completed_at: Optional[datetime] = None
    commission_recorded_at: Optional[datetime] = None
    earnings_settled_at: Optional[datetime] = None


class Order(BaseModelCouchbase[OrderData]):
    _collection_name = "orders"

from typing import Optional, Literal
from datetime import datetime
from clients.couchbase import BaseModelCouchbase, BaseCouchbaseEntityData


class CatalogItemData(BaseCouchbaseEntityData):
    vendor_id: str
    title: str
    price_cents: int = 0
    quantity: int = 1
    track_quantity: bool = True
    status: Literal["draft", "published", "archived"] = "draft"
    # Set while an auction owns the item; fixed-price checkout is blocked until then
    auction_locked_until: Optional[datetime] = None

    @property
    def in_stock(self) -> bool:
        return not self.track_quantity or self.quantity >= 1


class Book(BaseModelCouchbase[CatalogItemData]):
    _collection_name = "books"


class Product(BaseModelCouchbase[CatalogItemData]):
    _collection_name = "products"

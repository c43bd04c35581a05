"""
Catalog access for auctioned items.

Books and products share one document shape; an auction's ItemRef picks the
collection. Lock helpers mutate the item in place inside a caller's
transaction.
"""

from datetime import datetime
from typing import Optional, Union

from clients.couchbase import Transaction
from models.entities.couchbase.auctions import BookRef, ProductRef
from models.entities.couchbase.catalog import Book, Product
from models.errors import NotFound

CatalogItem = Union[Book, Product]
ItemRefT = Union[BookRef, ProductRef]


async def catalog_get(ref: ItemRefT) -> Optional[CatalogItem]:
    return await ref.model().get(ref.id)


async def catalog_get_in(txn: Transaction, ref: ItemRefT) -> CatalogItem:
    item = await txn.get(ref.model(), ref.id)
    if not item:
        raise NotFound(f"{ref.kind.capitalize()} {ref.id} not found")
    return item


def catalog_lock(item: CatalogItem, until: datetime) -> None:
    item.data.auction_locked_until = until


def catalog_unlock(item: CatalogItem) -> None:
    item.data.auction_locked_until = None

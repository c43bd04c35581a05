"""
Multi-document ACID transactions on top of the Couchbase transactions API.

Every read made through a ``Transaction`` is tracked, so a concurrent writer
touching the same document makes the attempt conflict and the SDK retries the
whole logic function. Exceptions raised by the logic itself (domain errors)
abort the transaction and are re-raised to the caller unchanged instead of
surfacing as ``TransactionFailed``.
"""

import logging
from typing import Any, Awaitable, Callable, Dict, Optional, Tuple, TypeVar

from couchbase.exceptions import CouchbaseException, DocumentNotFoundException

from .base_model import BaseModelCouchbase, DataT
from .config import get_cluster

logger = logging.getLogger(__name__)

R = TypeVar("R")
M = TypeVar("M", bound=BaseModelCouchbase)


class Transaction:
    """Typed facade over an ``AttemptContext``."""

    def __init__(self, ctx):
        self._ctx = ctx
        self._reads: Dict[Tuple[str, str], Any] = {}

    async def get(self, model: type[M], key: str) -> Optional[M]:
        collection = await model.get_keyspace().get_collection()
        try:
            result = await self._ctx.get(collection, key)
        except DocumentNotFoundException:
            return None
        self._reads[(model._collection_name, key)] = result
        return model(id=key, data=result.content_as[dict])

    async def insert(self, model: type[M], data: DataT, key: str, user_id: Optional[str] = None) -> M:
        collection = await model.get_keyspace().get_collection()
        model.stamp(data, user_id)
        await self._ctx.insert(collection, key, model.model_dump_with_excluded_attributes(data))
        return model(id=key, data=data)

    async def replace(self, item: M) -> M:
        """Stage a write of *item*; it must have been read in this transaction."""
        model = type(item)
        read = self._reads.get((model._collection_name, item.id))
        if read is None:
            raise RuntimeError(
                f"{model.__name__} {item.id} must be read inside the transaction before replace"
            )
        model.stamp(item.data)
        result = await self._ctx.replace(read, model.model_dump_with_excluded_attributes(item.data))
        self._reads[(model._collection_name, item.id)] = result
        return item


async def run_transaction(logic: Callable[[Transaction], Awaitable[R]]) -> R:
    """Run *logic* in a Couchbase transaction and return its result.

    *logic* may be invoked more than once on write-write conflicts, so it must
    not have side effects outside the transaction.
    """
    cluster = await get_cluster()
    outcome: Dict[str, Any] = {}

    async def _attempt(ctx) -> None:
        outcome.pop("error", None)
        try:
            outcome["value"] = await logic(Transaction(ctx))
        except CouchbaseException:
            raise
        except Exception as e:
            outcome["error"] = e
            raise

    try:
        await cluster.transactions.run(_attempt)
    except CouchbaseException:
        error = outcome.get("error")
        if error is not None:
            raise error
        logger.error("Couchbase transaction failed", exc_info=True)
        raise
    return outcome.get("value")

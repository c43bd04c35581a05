import uuid
from dataclasses import dataclass
from datetime import datetime
from typing import Any, Dict, List, Optional, Sequence
from couchbase.result import GetResult, MutationResult
from couchbase.n1ql import QueryScanConsistency
from couchbase.options import QueryOptions, ReplaceOptions
from .config import get_cluster, DEFAULT_BUCKET_NAME

# Suffix -> N1QL operator for `where` filters in find()/count()
_OPERATORS = {
    "": "=",
    "ne": "!=",
    "lt": "<",
    "lte": "<=",
    "gt": ">",
    "gte": ">=",
    "in": "IN",
}


def _split_filter(key: str) -> tuple[str, str]:
    field, _, op = key.partition("__")
    return field, op


def _is_timestamp(field: str) -> bool:
    return field.endswith("_at") or field.endswith("_until") or field == "payment_deadline"


def build_where(where: Optional[Dict[str, Any]]) -> tuple[str, Dict[str, Any]]:
    """Render a ``{field__op: value}`` filter into a N1QL WHERE clause.

    Timestamp fields are compared as epoch millis so that ISO strings with and
    without fractional seconds order correctly.
    """
    if not where:
        return "1=1", {}

    conditions = []
    params: Dict[str, Any] = {}
    for i, (key, value) in enumerate(where.items()):
        field, op = _split_filter(key)
        if op == "isnull":
            conditions.append(f"`{field}` IS {'' if value else 'NOT '}NULL")
            continue
        if op not in _OPERATORS:
            raise ValueError(f"Unsupported filter operator '{op}' in '{key}'")

        param = f"p{i}"
        if isinstance(value, datetime):
            conditions.append(f"STR_TO_MILLIS(`{field}`) {_OPERATORS[op]} STR_TO_MILLIS(${param})")
            params[param] = value.isoformat()
        else:
            conditions.append(f"`{field}` {_OPERATORS[op]} ${param}")
            params[param] = list(value) if op == "in" else value
    return " AND ".join(conditions), params


def build_order_by(order_by: Optional[Sequence[str]]) -> str:
    """``["-amount_cents", "placed_at"]`` -> ``ORDER BY amount_cents DESC, ...``"""
    if not order_by:
        return ""
    terms = []
    for term in order_by:
        direction = "DESC" if term.startswith("-") else "ASC"
        field = term.lstrip("-")
        expr = f"STR_TO_MILLIS(`{field}`)" if _is_timestamp(field) else f"`{field}`"
        terms.append(f"{expr} {direction}")
    return " ORDER BY " + ", ".join(terms)


@dataclass
class Keyspace:
    bucket_name: str
    scope_name: str
    collection_name: str

    def __str__(self) -> str:
        return f"`{self.bucket_name}`.`{self.scope_name}`.`{self.collection_name}`"

    async def query(self, query: str, **params) -> list:
        cluster = await get_cluster()
        query = query.replace("${keyspace}", str(self))
        kwargs = {"named_parameters": params} if params else {}
        # Rows committed just before the query must be visible to it
        options = QueryOptions(scan_consistency=QueryScanConsistency.REQUEST_PLUS, **kwargs)
        result = cluster.query(query, options)
        return [row async for row in result]

    async def get_scope(self):
        cluster = await get_cluster()
        bucket = cluster.bucket(self.bucket_name)
        return bucket.scope(self.scope_name)

    async def get_collection(self):
        scope = await self.get_scope()
        return scope.collection(self.collection_name)

    async def get(self, key: str) -> GetResult:
        collection = await self.get_collection()
        return await collection.get(key)

    async def insert(self, value: dict, key: Optional[str] = None, **kwargs) -> MutationResult:
        if key is None:
            key = str(uuid.uuid4())
        collection = await self.get_collection()
        return await collection.insert(key, value, **kwargs)

    async def replace(self, key: str, value: dict, cas: Optional[int] = None) -> MutationResult:
        """Replace a document. With *cas* set, raises ``CASMismatchException``
        when the stored document changed since it was read."""
        collection = await self.get_collection()
        if cas:
            return await collection.replace(key, value, ReplaceOptions(cas=cas))
        return await collection.replace(key, value)

    async def find(
        self,
        where: Optional[Dict[str, Any]] = None,
        order_by: Optional[Sequence[str]] = None,
        limit: Optional[int] = None,
        offset: int = 0,
    ) -> List[dict]:
        """Select documents matching *where*.

        Rows have the shape ``{"id": ..., "<collection_name>": {...}}``.
        """
        clause, params = build_where(where)
        query = f"SELECT META().id, * FROM {self} WHERE {clause}{build_order_by(order_by)}"
        if limit is not None:
            query += f" LIMIT {int(limit)}"
        if offset:
            query += f" OFFSET {int(offset)}"
        return await self.query(query, **params)

    async def count(self, where: Optional[Dict[str, Any]] = None) -> int:
        clause, params = build_where(where)
        rows = await self.query(f"SELECT COUNT(*) AS total FROM {self} WHERE {clause}", **params)
        return rows[0]["total"] if rows else 0


def get_keyspace(collection_name: str, scope_name: Optional[str] = "_default", bucket_name: Optional[str] = DEFAULT_BUCKET_NAME) -> Keyspace:
    """
    Create a Keyspace instance with optional scope and bucket parameters.

    Args:
        collection_name: Name of the collection
        scope_name: Name of the scope (defaults to "_default")
        bucket_name: Name of the bucket (defaults to DEFAULT_BUCKET_NAME)

    Returns:
        Keyspace instance
    """
    return Keyspace(bucket_name, scope_name, collection_name)

"""
Shared fixtures: an in-memory Couchbase double and the seed factory.

The double replaces ``BaseModelCouchbase.get_keyspace`` and the cluster used
by ``run_transaction``:

- keyspace get/insert/upsert/replace/remove with CAS values, raising the
  SDK's own exceptions
- find/count evaluating the ``field__op`` filters and ``-field`` ordering
- transactions that stage writes, validate every read's CAS at commit and
  re-run the logic on conflict, like the SDK does
"""

import os

# Client packages validate their settings at import
os.environ.setdefault("COUCHBASE_USERNAME", "test")
os.environ.setdefault("COUCHBASE_PASSWORD", "test")
os.environ.setdefault("COUCHBASE_HOST", "localhost")
os.environ.setdefault("COUCHBASE_BUCKET", "test")
os.environ.setdefault("ENVIRONMENT", "test")
os.environ.setdefault("USE_AUTH", "false")
os.environ.setdefault("SCHEDULER_ENABLED", "false")

import asyncio
import copy
import itertools
import uuid
from datetime import datetime
from typing import Any, Dict, List, Optional, Sequence, Tuple

import pytest
from couchbase.exceptions import (
    CASMismatchException,
    CouchbaseException,
    DocumentExistsException,
    DocumentNotFoundException,
)
from pydantic import TypeAdapter

import clients.couchbase.transactions as transactions_module
import clients.sms as sms_module
from clients.couchbase import BaseModelCouchbase
from factories import Seed


_DATETIME = TypeAdapter(datetime)


# =============================================================================
# In-memory store
# =============================================================================


class _ContentAs:
    def __init__(self, doc: dict):
        self._doc = doc

    def __getitem__(self, _type):
        return copy.deepcopy(self._doc)


class FakeResult:
    def __init__(self, doc: Optional[dict], cas: Optional[int], collection=None, key: Optional[str] = None):
        self.content_as = _ContentAs(doc or {})
        self.cas = cas
        self.collection = collection
        self.id = key


class FakeStore:
    def __init__(self):
        self.collections: Dict[str, Dict[str, Tuple[dict, int]]] = {}
        self._cas = itertools.count(1)

    def next_cas(self) -> int:
        return next(self._cas)

    def table(self, name: str) -> Dict[str, Tuple[dict, int]]:
        return self.collections.setdefault(name, {})

    def entry(self, name: str, key: str) -> Optional[Tuple[dict, int]]:
        return self.table(name).get(key)

    def write(self, name: str, key: str, doc: dict) -> int:
        cas = self.next_cas()
        self.table(name)[key] = (copy.deepcopy(doc), cas)
        return cas

    def docs(self, name: str) -> Dict[str, dict]:
        return {k: copy.deepcopy(v[0]) for k, v in self.table(name).items()}


def _is_timestamp(field: str) -> bool:
    return field.endswith("_at") or field.endswith("_until") or field == "payment_deadline"


def _coerce(field: str, value: Any) -> Any:
    if isinstance(value, str) and _is_timestamp(field):
        return _DATETIME.validate_python(value)
    return value


def _matches(doc: dict, where: Optional[Dict[str, Any]]) -> bool:
    for key, expected in (where or {}).items():
        field, _, op = key.partition("__")
        actual = doc.get(field)
        if op == "isnull":
            if (actual is None) != bool(expected):
                return False
            continue
        if actual is None:
            return False
        if op == "in":
            if actual not in list(expected):
                return False
            continue
        a, e = _coerce(field, actual), _coerce(field, expected)
        ok = {
            "": a == e,
            "ne": a != e,
            "lt": a < e,
            "lte": a <= e,
            "gt": a > e,
            "gte": a >= e,
        }[op]
        if not ok:
            return False
    return True


def _sorted(rows: List[Tuple[str, dict]], order_by: Optional[Sequence[str]]) -> List[Tuple[str, dict]]:
    # Nulls first ascending, last descending
    for term in reversed(list(order_by or [])):
        field = term.lstrip("-")
        rows = sorted(
            rows,
            key=lambda r: (r[1].get(field) is not None, _coerce(field, r[1].get(field)) or 0),
            reverse=term.startswith("-"),
        )
    return rows


class FakeCollection:
    def __init__(self, name: str):
        self.name = name


class FakeKeyspace:
    def __init__(self, store: FakeStore, collection_name: str):
        self.store = store
        self.collection_name = collection_name

    async def get_collection(self) -> FakeCollection:
        return FakeCollection(self.collection_name)

    async def get(self, key: str) -> FakeResult:
        entry = self.store.entry(self.collection_name, key)
        if entry is None:
            raise DocumentNotFoundException(message=f"{self.collection_name}/{key} not found")
        return FakeResult(entry[0], entry[1])

    async def insert(self, value: dict, key: Optional[str] = None, **kwargs) -> FakeResult:
        key = key or str(uuid.uuid4())
        if self.store.entry(self.collection_name, key) is not None:
            raise DocumentExistsException(message=f"{self.collection_name}/{key} exists")
        return FakeResult(None, self.store.write(self.collection_name, key, value))

    async def replace(self, key: str, value: dict, cas: Optional[int] = None) -> FakeResult:
        entry = self.store.entry(self.collection_name, key)
        if entry is None:
            raise DocumentNotFoundException(message=f"{self.collection_name}/{key} not found")
        if cas and entry[1] != cas:
            raise CASMismatchException(message=f"{self.collection_name}/{key} changed")
        return FakeResult(None, self.store.write(self.collection_name, key, value))

    async def find(
        self,
        where: Optional[Dict[str, Any]] = None,
        order_by: Optional[Sequence[str]] = None,
        limit: Optional[int] = None,
        offset: int = 0,
    ) -> List[dict]:
        rows = [(k, doc) for k, doc in self.store.docs(self.collection_name).items() if _matches(doc, where)]
        rows = _sorted(rows, order_by)[offset:]
        if limit is not None:
            rows = rows[:limit]
        return [{"id": k, self.collection_name: doc} for k, doc in rows]

    async def count(self, where: Optional[Dict[str, Any]] = None) -> int:
        return len(await self.find(where))


# =============================================================================
# Transactions
# =============================================================================


class FakeAttemptContext:
    def __init__(self, store: FakeStore):
        self.store = store
        self.reads: Dict[Tuple[str, str], int] = {}
        self.staged: Dict[Tuple[str, str], dict] = {}
        self.inserted: set = set()

    async def get(self, collection: FakeCollection, key: str) -> FakeResult:
        # Yield so concurrent attempts interleave
        await asyncio.sleep(0)
        ref = (collection.name, key)
        if ref in self.staged:
            return FakeResult(self.staged[ref], None, collection, key)
        entry = self.store.entry(collection.name, key)
        if entry is None:
            raise DocumentNotFoundException(message=f"{collection.name}/{key} not found")
        self.reads.setdefault(ref, entry[1])
        return FakeResult(entry[0], entry[1], collection, key)

    async def insert(self, collection: FakeCollection, key: str, doc: dict) -> FakeResult:
        ref = (collection.name, key)
        if ref in self.staged or self.store.entry(collection.name, key) is not None:
            raise DocumentExistsException(message=f"{collection.name}/{key} exists")
        self.staged[ref] = copy.deepcopy(doc)
        self.inserted.add(ref)
        return FakeResult(doc, None, collection, key)

    async def replace(self, read: FakeResult, doc: dict) -> FakeResult:
        self.staged[(read.collection.name, read.id)] = copy.deepcopy(doc)
        return FakeResult(doc, None, read.collection, read.id)

    def commit(self) -> bool:
        for (name, key), cas in self.reads.items():
            entry = self.store.entry(name, key)
            if entry is None or entry[1] != cas:
                return False
        for name, key in self.inserted:
            if self.store.entry(name, key) is not None:
                return False
        for (name, key), doc in self.staged.items():
            self.store.write(name, key, doc)
        return True


class FakeTransactions:
    MAX_ATTEMPTS = 20

    def __init__(self, store: FakeStore):
        self.store = store

    async def run(self, logic):
        for _ in range(self.MAX_ATTEMPTS):
            ctx = FakeAttemptContext(self.store)
            try:
                await logic(ctx)
            except Exception as e:
                raise CouchbaseException(message=f"transaction failed: {e}") from e
            if ctx.commit():
                return
            await asyncio.sleep(0)
        raise CouchbaseException(message="transaction retries exhausted")


class FakeCluster:
    def __init__(self, store: FakeStore):
        self.transactions = FakeTransactions(store)


@pytest.fixture(autouse=True)
def store(monkeypatch) -> FakeStore:
    fake = FakeStore()
    cluster = FakeCluster(fake)

    async def _get_cluster(*args, **kwargs):
        return cluster

    monkeypatch.setattr(
        BaseModelCouchbase,
        "get_keyspace",
        classmethod(lambda cls: FakeKeyspace(fake, cls._collection_name)),
    )
    monkeypatch.setattr(transactions_module, "get_cluster", _get_cluster)
    monkeypatch.setattr(sms_module, "_client", None)

    # Providers run in their local modes unless a test configures them
    for name in (
        "STRIPE_SECRET_KEY",
        "STRIPE_WEBHOOK_SECRET",
        "PAYPAL_CLIENT_ID",
        "PAYPAL_CLIENT_SECRET",
        "PAYPAL_WEBHOOK_ID",
        "TWILIO_ACCOUNT_SID",
        "TWILIO_AUTH_TOKEN",
        "TWILIO_FROM_NUMBER",
        "LEDGER_JOURNAL_ENABLED",
        "INTERNAL_API_KEY",
    ):
        monkeypatch.delenv(name, raising=False)
    return fake


@pytest.fixture
def seed() -> Seed:
    return Seed()

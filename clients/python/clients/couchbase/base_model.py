import uuid
from datetime import datetime, timezone
from typing import Any, Dict, Optional, Sequence, TypeVar, Generic, List, ClassVar
from pydantic import BaseModel
from couchbase.exceptions import DocumentNotFoundException
from .keyspace import Keyspace, get_keyspace

class BaseCouchbaseEntityData(BaseModel):
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None
    created_by_user_id: Optional[str] = None

DataT = TypeVar("DataT", bound=BaseCouchbaseEntityData)
T = TypeVar("T", bound="BaseModelCouchbase")

class BaseModelCouchbase(BaseModel, Generic[DataT]):
    id: str
    data: DataT
    cas: Optional[int] = None

    _collection_name: ClassVar[str] = ""

    @staticmethod
    def model_dump_with_excluded_attributes(data: DataT) -> dict:
        """
        Converts the model to a dictionary for database storage,
        ensuring fields marked with exclude=True are included.
        """
        doc = data.model_dump(mode='json')
        for field_name, field_info in type(data).model_fields.items():
            if field_info.exclude:
                value = getattr(data, field_name)
                if value is not None:
                    doc[field_name] = value
        return doc

    @staticmethod
    def stamp(data: DataT, user_id: Optional[str] = None) -> DataT:
        """Fill the audit timestamps before a write."""
        now = datetime.now(timezone.utc)
        if data.created_at is None:
            data.created_at = now
        data.updated_at = now
        if user_id:
            data.created_by_user_id = user_id
        return data

    @classmethod
    def get_keyspace(cls) -> Keyspace:
        if not cls._collection_name:
            raise ValueError(f"_collection_name not set for {cls.__name__}")
        return get_keyspace(cls._collection_name)

    @classmethod
    def from_row(cls: type[T], row: Dict[str, Any]) -> Optional[T]:
        data = row.get(cls._collection_name)
        if not data:
            return None
        return cls(id=row["id"], data=data)

    @classmethod
    async def get(cls: type[T], id: str) -> Optional[T]:
        try:
            result = await cls.get_keyspace().get(id)
        except DocumentNotFoundException:
            return None
        return cls(id=id, data=result.content_as[dict], cas=result.cas)

    @classmethod
    async def create(cls: type[T], data: DataT, key: Optional[str] = None, user_id: Optional[str] = None) -> T:
        if key is None:
            key = str(uuid.uuid4())
        cls.stamp(data, user_id)
        doc = cls.model_dump_with_excluded_attributes(data)
        result = await cls.get_keyspace().insert(doc, key=key)
        return cls(id=key, data=data, cas=result.cas)

    @classmethod
    async def update(cls: type[T], item: T) -> T:
        """Replace the stored document, CAS-guarded when *item* was read with one."""
        item.data.updated_at = datetime.now(timezone.utc)
        doc = cls.model_dump_with_excluded_attributes(item.data)
        result = await cls.get_keyspace().replace(item.id, doc, cas=item.cas)
        item.cas = result.cas
        return item

    @classmethod
    async def find(
        cls: type[T],
        where: Optional[Dict[str, Any]] = None,
        order_by: Optional[Sequence[str]] = None,
        limit: Optional[int] = None,
        offset: int = 0,
    ) -> List[T]:
        rows = await cls.get_keyspace().find(where, order_by=order_by, limit=limit, offset=offset)
        items = []
        for row in rows:
            item = cls.from_row(row)
            if item is not None:
                items.append(item)
        return items

    @classmethod
    async def find_one(cls: type[T], where: Dict[str, Any]) -> Optional[T]:
        items = await cls.find(where, limit=1)
        return items[0] if items else None

    @classmethod
    async def count(cls, where: Optional[Dict[str, Any]] = None) -> int:
        return await cls.get_keyspace().count(where)

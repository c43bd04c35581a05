from typing import Optional, Literal
from clients.couchbase import BaseModelCouchbase, BaseCouchbaseEntityData


class UserData(BaseCouchbaseEntityData):
    email: str
    role: Literal["buyer", "vendor", "admin"] = "buyer"
    display_name: Optional[str] = None
    # E.164; outbound SMS only goes to opted-in users
    phone_number: Optional[str] = None
    sms_opt_in: bool = False


class User(BaseModelCouchbase[UserData]):
    _collection_name = "users"

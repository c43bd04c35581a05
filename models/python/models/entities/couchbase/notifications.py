from typing import Optional, Literal
from datetime import datetime
from clients.couchbase import BaseModelCouchbase, BaseCouchbaseEntityData

NotificationKind = Literal["auction_outbid", "auction_won", "sale_recorded", "payout_failed"]


class NotificationData(BaseCouchbaseEntityData):
    user_id: str
    kind: NotificationKind
    message: str
    entity_id: Optional[str] = None
    status: Literal["pending", "sent", "skipped", "failed"] = "pending"
    attempts: int = 0
    last_error: Optional[str] = None
    sent_at: Optional[datetime] = None
    provider_message_id: Optional[str] = None


class Notification(BaseModelCouchbase[NotificationData]):
    _collection_name = "notifications"

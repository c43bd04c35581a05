from typing import Any, Dict, Optional, Literal
from datetime import datetime
from clients.couchbase import BaseModelCouchbase, BaseCouchbaseEntityData

PayoutMethod = Literal["stripe", "paypal"]
PayoutStatus = Literal["pending", "processing", "paid", "failed", "cancelled"]


class PayoutData(BaseCouchbaseEntityData):
    vendor_id: str
    amount_cents: int
    method: PayoutMethod
    status: PayoutStatus = "pending"
    # Stripe transfer id or PayPal batch id; webhooks correlate on it
    transaction_id: Optional[str] = None
    failure_reason: Optional[str] = None
    manual: bool = False
    processed_by: Optional[str] = None
    processed_at: Optional[datetime] = None
    paid_at: Optional[datetime] = None
    provider_metadata: Dict[str, Any] = {}


class Payout(BaseModelCouchbase[PayoutData]):
    _collection_name = "vendor_payouts"


class PayoutEventData(BaseCouchbaseEntityData):
    payout_id: str
    method: PayoutMethod
    transaction_id: str
    outcome: str
    applied: bool
    received_at: datetime


class PayoutEvent(BaseModelCouchbase[PayoutEventData]):
    """One provider webhook outcome; the key makes redelivery a no-op."""
    _collection_name = "payout_events"

    @staticmethod
    def key_for(method: str, transaction_id: str, outcome: str) -> str:
        return f"{method}:{transaction_id}:{outcome}"

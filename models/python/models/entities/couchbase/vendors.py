from typing import Optional, Literal
from clients.couchbase import BaseModelCouchbase, BaseCouchbaseEntityData


class VendorData(BaseCouchbaseEntityData):
    user_id: str
    shop_name: str
    status: Literal["pending", "approved", "suspended"] = "approved"
    commission_rate_bps: int = 800

    # Balances (cents). pending -> available on delivery, available -> paid on payout
    balance_pending_cents: int = 0
    balance_available_cents: int = 0
    balance_paid_cents: int = 0

    lifetime_gross_sales_cents: int = 0
    lifetime_commission_cents: int = 0
    lifetime_earnings_cents: int = 0
    total_sales: int = 0

    # Payout accounts
    stripe_account_id: Optional[str] = None
    stripe_account_status: Optional[Literal["pending", "active", "restricted", "disabled"]] = None
    paypal_email: Optional[str] = None


class Vendor(BaseModelCouchbase[VendorData]):
    _collection_name = "vendors"

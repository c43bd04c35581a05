"""Entity factories shared by the integration tests."""

import uuid
from datetime import datetime, timedelta, timezone
from typing import Optional

from models.entities.couchbase.auctions import BookRef, EndPolicy
from models.entities.couchbase.catalog import Book, CatalogItemData
from models.entities.couchbase.users import User, UserData
from models.entities.couchbase.vendors import Vendor, VendorData
from models.operations.auctions import auction_create

T0 = datetime(2026, 3, 2, 12, 0, tzinfo=timezone.utc)


class Seed:
    """Creates documents directly, bypassing business rules."""

    async def user(
        self,
        user_id: Optional[str] = None,
        phone_number: Optional[str] = None,
        sms_opt_in: bool = False,
        role: str = "buyer",
    ) -> User:
        user_id = user_id or f"user-{uuid.uuid4().hex[:8]}"
        data = UserData(
            email=f"{user_id}@example.com",
            role=role,
            phone_number=phone_number,
            sms_opt_in=sms_opt_in,
        )
        return await User.create(data, key=user_id, user_id=user_id)

    async def vendor(
        self,
        user_id: Optional[str] = None,
        commission_rate_bps: int = 800,
        balance_available_cents: int = 0,
        stripe_account_id: Optional[str] = "acct_test",
        stripe_account_status: Optional[str] = "active",
        paypal_email: Optional[str] = None,
        phone_number: Optional[str] = None,
    ) -> Vendor:
        user = await self.user(user_id, role="vendor", phone_number=phone_number, sms_opt_in=bool(phone_number))
        data = VendorData(
            user_id=user.id,
            shop_name=f"Shop of {user.id}",
            commission_rate_bps=commission_rate_bps,
            balance_available_cents=balance_available_cents,
            stripe_account_id=stripe_account_id,
            stripe_account_status=stripe_account_status,
            paypal_email=paypal_email,
        )
        return await Vendor.create(data, user_id=user.id)

    async def book(self, vendor: Vendor, quantity: int = 1, title: str = "First Edition") -> Book:
        data = CatalogItemData(vendor_id=vendor.id, title=title, price_cents=2500, quantity=quantity, status="published")
        return await Book.create(data, user_id=vendor.data.user_id)

    async def auction(
        self,
        vendor: Vendor,
        starting_price_cents: int = 1000,
        reserve_price_cents: Optional[int] = None,
        end_policy: Optional[EndPolicy] = None,
        starts_at: datetime = T0,
        duration: timedelta = timedelta(hours=24),
        book: Optional[Book] = None,
        now: datetime = T0,
    ):
        book = book or await self.book(vendor)
        return await auction_create(
            vendor_id=vendor.id,
            acting_user_id=vendor.data.user_id,
            item=BookRef(id=book.id),
            starting_price_cents=starting_price_cents,
            reserve_price_cents=reserve_price_cents,
            starts_at=starts_at,
            ends_at=starts_at + duration,
            end_policy=end_policy,
            now=now,
        )

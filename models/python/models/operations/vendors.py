from typing import Optional

from models.entities.couchbase.vendors import Vendor, VendorData
from models.errors import Forbidden, InvalidRequest, NotFound


async def vendor_create(user_id: str, shop_name: str, **kwargs) -> Vendor:
    if await vendor_get_by_user(user_id):
        raise InvalidRequest("User already has a vendor account")
    data = VendorData(user_id=user_id, shop_name=shop_name, **kwargs)
    return await Vendor.create(data, user_id=user_id)


async def vendor_get_by_user(user_id: str) -> Optional[Vendor]:
    return await Vendor.find_one({"user_id": user_id})


async def vendor_require_for_user(user_id: str) -> Vendor:
    vendor = await vendor_get_by_user(user_id)
    if not vendor:
        raise Forbidden("Vendor account required")
    return vendor


def vendor_assert_can_act(vendor: Optional[Vendor], acting_user_id: Optional[str], is_admin: bool = False) -> None:
    """Owner or admin; ``acting_user_id=None`` is the system actor."""
    if vendor is None:
        raise NotFound("Vendor not found")
    if acting_user_id is None or is_admin:
        return
    if vendor.data.user_id != acting_user_id:
        raise Forbidden("You do not have permission to manage this vendor's auctions")


async def vendor_update_payout_accounts(
    vendor_id: str,
    stripe_account_id: Optional[str] = None,
    stripe_account_status: Optional[str] = None,
    paypal_email: Optional[str] = None,
) -> Vendor:
    vendor = await Vendor.get(vendor_id)
    if not vendor:
        raise NotFound("Vendor not found")
    if stripe_account_id is not None:
        vendor.data.stripe_account_id = stripe_account_id
    if stripe_account_status is not None:
        vendor.data.stripe_account_status = stripe_account_status
    if paypal_email is not None:
        vendor.data.paypal_email = paypal_email
    return await Vendor.update(vendor)


async def vendor_set_commission_rate(vendor_id: str, commission_rate_bps: int) -> Vendor:
    """Applies to earnings recorded after the change; existing earnings keep their rate."""
    if not 0 <= commission_rate_bps <= 10000:
        raise InvalidRequest("Commission rate must be between 0 and 10000 bps")
    vendor = await Vendor.get(vendor_id)
    if not vendor:
        raise NotFound("Vendor not found")
    vendor.data.commission_rate_bps = commission_rate_bps
    return await Vendor.update(vendor)


async def vendor_get_by_stripe_account(stripe_account_id: str) -> Optional[Vendor]:
    return await Vendor.find_one({"stripe_account_id": stripe_account_id})

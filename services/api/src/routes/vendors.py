"""
Vendor account, earnings and withdrawals.

POST   /vendor                          become a vendor
GET    /vendor                          vendor profile and balances
PUT    /vendor/payout-accounts          set the PayPal email
POST   /vendor/stripe/onboarding        create/reuse a Stripe Connect account
GET    /vendor/stripe/onboarding/status refresh the Connect account status
GET    /vendor/earnings                 earnings history
GET    /vendor/earnings/summary         balance summary
POST   /vendor/withdrawals              withdraw available balance
GET    /vendor/payouts                  payout history
"""

from datetime import datetime
from decimal import Decimal
from typing import List, Literal, Optional

import conf
import stripe
from fastapi import APIRouter, Depends, HTTPException, Query, Request
from pydantic import BaseModel, Field

from models.entities.couchbase.earnings import VendorEarning
from models.entities.couchbase.payouts import Payout
from models.entities.couchbase.vendors import Vendor
from models.money import to_cents
from models.operations.earnings import earnings_list_by_vendor, earnings_vendor_summary
from models.operations.payouts import payout_list, payout_process_withdrawal
from models.operations.vendors import vendor_create, vendor_update_payout_accounts
from utils import log

from .auctions import CamelRequest
from .dependencies import require_authenticated, require_vendor

logger = log.get_logger(__name__)

router = APIRouter(prefix="/vendor", tags=["vendor"])


def _get_stripe():
    key = conf.get_stripe_secret_key()
    if not key:
        raise HTTPException(status_code=503, detail="Stripe is not configured")
    stripe.api_key = key
    return stripe


# ---------------------------------------------------------------------------
# Request / Response schemas
# ---------------------------------------------------------------------------

class CreateVendorRequest(CamelRequest):
    shop_name: str = Field(min_length=1, max_length=120)


class PayoutAccountsRequest(CamelRequest):
    paypal_email: Optional[str] = Field(default=None, pattern=r"^[^@\s]+@[^@\s]+\.[^@\s]+$")


class VendorResponse(BaseModel):
    id: str
    user_id: str
    shop_name: str
    status: str
    commission_rate_bps: int
    balance_pending_cents: int
    balance_available_cents: int
    balance_paid_cents: int
    stripe_account_id: Optional[str] = None
    stripe_account_status: Optional[str] = None
    paypal_email: Optional[str] = None


class StripeOnboardingResponse(BaseModel):
    account_id: str
    onboarding_url: str


class StripeOnboardingStatusResponse(BaseModel):
    has_account: bool
    onboarding_complete: bool
    payouts_enabled: bool
    account_status: Optional[str] = None


class EarningResponse(BaseModel):
    id: str
    order_id: str
    auction_id: Optional[str] = None
    item_type: str
    item_id: str
    amount_cents: int
    commission_rate_bps: int
    platform_fee_cents: int
    net_amount_cents: int
    transaction_type: str
    status: str
    paid_out: bool
    payout_id: Optional[str] = None
    created_at: Optional[datetime] = None
    completed_at: Optional[datetime] = None


class EarningListResponse(BaseModel):
    earnings: List[EarningResponse]
    total: int


class EarningsSummaryResponse(BaseModel):
    balance_pending_cents: int
    balance_available_cents: int
    balance_paid_cents: int
    lifetime_gross_sales_cents: int
    lifetime_commission_cents: int
    lifetime_earnings_cents: int
    total_sales: int
    pending_earnings: int


class WithdrawalRequest(CamelRequest):
    amount: Decimal = Field(gt=0, decimal_places=2)
    method: Literal["stripe", "paypal"]


class PayoutResponse(BaseModel):
    id: str
    vendor_id: str
    amount_cents: int
    method: str
    status: str
    transaction_id: Optional[str] = None
    failure_reason: Optional[str] = None
    manual: bool
    processed_by: Optional[str] = None
    paid_at: Optional[datetime] = None
    created_at: Optional[datetime] = None


class PayoutListResponse(BaseModel):
    payouts: List[PayoutResponse]
    total: int


def vendor_to_response(vendor: Vendor) -> VendorResponse:
    d = vendor.data
    return VendorResponse(
        id=vendor.id,
        user_id=d.user_id,
        shop_name=d.shop_name,
        status=d.status,
        commission_rate_bps=d.commission_rate_bps,
        balance_pending_cents=d.balance_pending_cents,
        balance_available_cents=d.balance_available_cents,
        balance_paid_cents=d.balance_paid_cents,
        stripe_account_id=d.stripe_account_id,
        stripe_account_status=d.stripe_account_status,
        paypal_email=d.paypal_email,
    )


def _earning_to_response(earning: VendorEarning) -> EarningResponse:
    d = earning.data
    return EarningResponse(
        id=earning.id,
        order_id=d.order_id,
        auction_id=d.auction_id,
        item_type=d.item.kind,
        item_id=d.item.id,
        amount_cents=d.amount_cents,
        commission_rate_bps=d.commission_rate_bps,
        platform_fee_cents=d.platform_fee_cents,
        net_amount_cents=d.net_amount_cents,
        transaction_type=d.transaction_type,
        status=d.status,
        paid_out=d.paid_out,
        payout_id=d.payout_id,
        created_at=d.created_at,
        completed_at=d.completed_at,
    )


def payout_to_response(payout: Payout) -> PayoutResponse:
    d = payout.data
    return PayoutResponse(
        id=payout.id,
        vendor_id=d.vendor_id,
        amount_cents=d.amount_cents,
        method=d.method,
        status=d.status,
        transaction_id=d.transaction_id,
        failure_reason=d.failure_reason,
        manual=d.manual,
        processed_by=d.processed_by,
        paid_at=d.paid_at,
        created_at=d.created_at,
    )


# ---------------------------------------------------------------------------
# Vendor account
# ---------------------------------------------------------------------------

@router.post("", response_model=VendorResponse, status_code=201)
async def route_vendor_create(
    body: CreateVendorRequest,
    user: dict = Depends(require_authenticated),
):
    vendor = await vendor_create(user["sub"], body.shop_name)
    logger.info(f"User {user['sub']} registered vendor {vendor.id} ({body.shop_name})")
    return vendor_to_response(vendor)


@router.get("", response_model=VendorResponse)
async def route_vendor_get(vendor: Vendor = Depends(require_vendor)):
    return vendor_to_response(vendor)


@router.put("/payout-accounts", response_model=VendorResponse)
async def route_vendor_payout_accounts(
    body: PayoutAccountsRequest,
    vendor: Vendor = Depends(require_vendor),
):
    updated = await vendor_update_payout_accounts(
        vendor.id,
        paypal_email=body.paypal_email,
    )
    return vendor_to_response(updated)


# ---------------------------------------------------------------------------
# Stripe Connect onboarding
# ---------------------------------------------------------------------------

@router.post("/stripe/onboarding", response_model=StripeOnboardingResponse)
async def route_vendor_stripe_onboarding(
    request: Request,
    user: dict = Depends(require_authenticated),
    vendor: Vendor = Depends(require_vendor),
):
    s = _get_stripe()

    # Reuse the existing Connect account if there is one
    account_id = vendor.data.stripe_account_id
    if not account_id:
        db_user = user.get("db_user")
        account = s.Account.create(
            type="express",
            email=db_user.data.email if db_user else None,
            capabilities={"transfers": {"requested": True}},
            metadata={"vendor_id": vendor.id, "user_id": user["sub"]},
        )
        account_id = account.id
        await vendor_update_payout_accounts(vendor.id, stripe_account_id=account_id, stripe_account_status="pending")

    origin = str(request.base_url).rstrip("/")
    account_link = s.AccountLink.create(
        account=account_id,
        refresh_url=f"{origin}/vendor/onboarding?refresh=true",
        return_url=f"{origin}/vendor/earnings",
        type="account_onboarding",
    )
    return StripeOnboardingResponse(account_id=account_id, onboarding_url=account_link.url)


@router.get("/stripe/onboarding/status", response_model=StripeOnboardingStatusResponse)
async def route_vendor_stripe_onboarding_status(vendor: Vendor = Depends(require_vendor)):
    account_id = vendor.data.stripe_account_id
    if not account_id:
        return StripeOnboardingStatusResponse(has_account=False, onboarding_complete=False, payouts_enabled=False)

    s = _get_stripe()
    account = s.Account.retrieve(account_id)
    is_complete = bool(account.details_submitted)
    payouts_enabled = bool(account.payouts_enabled)
    account_status = "active" if is_complete and payouts_enabled else "pending"

    # Update the cached status if it changed
    if account_status != vendor.data.stripe_account_status:
        await vendor_update_payout_accounts(vendor.id, stripe_account_status=account_status)

    return StripeOnboardingStatusResponse(
        has_account=True,
        onboarding_complete=is_complete,
        payouts_enabled=payouts_enabled,
        account_status=account_status,
    )


# ---------------------------------------------------------------------------
# Earnings
# ---------------------------------------------------------------------------

@router.get("/earnings", response_model=EarningListResponse)
async def route_vendor_earnings(
    status: Optional[Literal["pending", "completed"]] = Query(None),
    limit: int = Query(50, ge=1, le=100),
    offset: int = Query(0, ge=0),
    vendor: Vendor = Depends(require_vendor),
):
    earnings, total = await earnings_list_by_vendor(vendor.id, status=status, limit=limit, offset=offset)
    return EarningListResponse(earnings=[_earning_to_response(e) for e in earnings], total=total)


@router.get("/earnings/summary", response_model=EarningsSummaryResponse)
async def route_vendor_earnings_summary(vendor: Vendor = Depends(require_vendor)):
    return EarningsSummaryResponse(**await earnings_vendor_summary(vendor.id))


# ---------------------------------------------------------------------------
# Withdrawals and payouts
# ---------------------------------------------------------------------------

@router.post("/withdrawals", response_model=PayoutResponse, status_code=201)
async def route_vendor_withdraw(
    body: WithdrawalRequest,
    user: dict = Depends(require_authenticated),
    vendor: Vendor = Depends(require_vendor),
):
    payout = await payout_process_withdrawal(
        vendor.id,
        to_cents(body.amount),
        body.method,
        processed_by=user["sub"],
        min_withdrawal_cents=conf.get_payout_conf().min_withdrawal_cents,
    )
    return payout_to_response(payout)


@router.get("/payouts", response_model=PayoutListResponse)
async def route_vendor_payouts(
    limit: int = Query(50, ge=1, le=100),
    offset: int = Query(0, ge=0),
    vendor: Vendor = Depends(require_vendor),
):
    payouts, total = await payout_list(vendor_id=vendor.id, limit=limit, offset=offset)
    return PayoutListResponse(payouts=[payout_to_response(p) for p in payouts], total=total)

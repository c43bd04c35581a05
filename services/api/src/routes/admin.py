from typing import Optional

from fastapi import APIRouter, Depends, Query
from pydantic import Field

from models.operations.payouts import payout_list, payout_mark_paid
from models.operations.vendors import vendor_set_commission_rate
from utils import log

from .auctions import CamelRequest
from .dependencies import require_admin
from .vendors import PayoutListResponse, PayoutResponse, VendorResponse, vendor_to_response, payout_to_response

logger = log.get_logger(__name__)

router = APIRouter(prefix="/admin", tags=["admin"])


class MarkPaidRequest(CamelRequest):
    transaction_id: Optional[str] = None


class CommissionRateRequest(CamelRequest):
    commission_rate_bps: int = Field(ge=0, le=10000)


@router.get("/payouts", response_model=PayoutListResponse)
async def admin_list_payouts(
    status: Optional[str] = Query(None),
    vendor_id: Optional[str] = Query(None),
    limit: int = Query(50, ge=1, le=100),
    offset: int = Query(0, ge=0),
    _: dict = Depends(require_admin),
):
    payouts, total = await payout_list(vendor_id=vendor_id, status=status, limit=limit, offset=offset)
    return PayoutListResponse(payouts=[payout_to_response(p) for p in payouts], total=total)


@router.post("/payouts/{payout_id}/mark-paid", response_model=PayoutResponse)
async def admin_mark_payout_paid(
    payout_id: str,
    body: Optional[MarkPaidRequest] = None,
    user: dict = Depends(require_admin),
):
    """Complete a payout that was sent outside the API (manual PayPal)."""
    payout = await payout_mark_paid(
        payout_id,
        processed_by=user["sub"],
        transaction_id=body.transaction_id if body else None,
    )
    logger.info(f"Admin {user['sub']} marked payout {payout_id} as paid")
    return payout_to_response(payout)


@router.put("/vendors/{vendor_id}/commission", response_model=VendorResponse)
async def admin_set_commission_rate(
    vendor_id: str,
    body: CommissionRateRequest,
    user: dict = Depends(require_admin),
):
    updated = await vendor_set_commission_rate(vendor_id, body.commission_rate_bps)
    logger.info(f"Admin {user['sub']} set commission for vendor {vendor_id} to {body.commission_rate_bps} bps")
    return vendor_to_response(updated)

from typing import List, Optional

from fastapi import APIRouter, Depends, HTTPException, Query
from pydantic import BaseModel, Field

from models.operations.bids import bid_list_by_bidder
from models.operations.users import user_get, user_update_contact
from models.operations.vendors import vendor_get_by_user
from utils import log

from .auctions import BidResponse, CamelRequest, bid_to_response
from .dependencies import require_authenticated

logger = log.get_logger(__name__)

router = APIRouter(prefix="/users", tags=["users"])


class UserResponse(BaseModel):
    id: str
    email: str
    role: str
    display_name: Optional[str] = None
    phone_number: Optional[str] = None
    sms_opt_in: bool
    vendor_id: Optional[str] = None


class ContactRequest(CamelRequest):
    display_name: Optional[str] = Field(default=None, max_length=120)
    phone_number: Optional[str] = Field(default=None, pattern=r"^\+[1-9]\d{7,14}$")
    sms_opt_in: Optional[bool] = None


class UserBidsResponse(BaseModel):
    bids: List[BidResponse]
    total: int


async def _user_response(user_id: str) -> UserResponse:
    db_user = await user_get(user_id)
    if not db_user:
        raise HTTPException(status_code=404, detail="User not found")
    vendor = await vendor_get_by_user(user_id)
    d = db_user.data
    return UserResponse(
        id=db_user.id,
        email=d.email,
        role=d.role,
        display_name=d.display_name,
        phone_number=d.phone_number,
        sms_opt_in=d.sms_opt_in,
        vendor_id=vendor.id if vendor else None,
    )


@router.get("/me", response_model=UserResponse)
async def route_user_me(user: dict = Depends(require_authenticated)):
    return await _user_response(user["sub"])


@router.put("/me/contact", response_model=UserResponse)
async def route_user_contact(
    body: ContactRequest,
    user: dict = Depends(require_authenticated),
):
    """Phone number and SMS opt-in for bid and payout notifications."""
    await user_update_contact(user["sub"], body.model_dump(exclude_unset=True))
    return await _user_response(user["sub"])


@router.get("/me/bids", response_model=UserBidsResponse)
async def route_user_bids(
    status: Optional[str] = Query(None),
    limit: int = Query(50, ge=1, le=100),
    offset: int = Query(0, ge=0),
    user: dict = Depends(require_authenticated),
):
    bids, total = await bid_list_by_bidder(user["sub"], status=status, limit=limit, offset=offset)
    return UserBidsResponse(bids=[bid_to_response(b) for b in bids], total=total)

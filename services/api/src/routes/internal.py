"""
Internal endpoints for the external timer and operators.
Secured with INTERNAL_API_KEY, not exposed publicly.
"""

from datetime import datetime
from typing import Optional

from fastapi import APIRouter, Depends, HTTPException
from pydantic import BaseModel

from jobs.sweep import SweepResult, run_sweep
from models.operations.auction_policies import auction_apply_end_policy
from models.operations.auctions import auction_get, auction_resolve
from utils import log

from .auctions import AuctionResponse, auction_to_response
from .dependencies import require_internal_api_key

logger = log.get_logger(__name__)

router = APIRouter(prefix="/internal", tags=["internal"], dependencies=[Depends(require_internal_api_key)])


class SweepRequest(BaseModel):
    # Evaluate as of this instant instead of the wall clock
    now: Optional[datetime] = None


@router.post("/auctions/{auction_id}/resolve", response_model=AuctionResponse)
async def internal_resolve_auction(auction_id: str):
    """Resolve one auction whose end time passed. Idempotent on ended auctions."""
    auction = await auction_resolve(auction_id)
    return auction_to_response(auction, show_reserve=True)


@router.post("/auctions/{auction_id}/apply-end-policy", response_model=AuctionResponse)
async def internal_apply_end_policy(auction_id: str):
    result = await auction_apply_end_policy(auction_id)
    logger.info(f"End policy for auction {auction_id}: {result or 'nothing to do'}")
    auction = await auction_get(auction_id)
    if not auction:
        raise HTTPException(status_code=404, detail="Auction not found")
    return auction_to_response(auction, show_reserve=True)


@router.post("/auctions/sweep", response_model=SweepResult)
async def internal_sweep(body: Optional[SweepRequest] = None):
    """Activate, resolve and apply end policies for everything that is due."""
    return await run_sweep(now=body.now if body else None)

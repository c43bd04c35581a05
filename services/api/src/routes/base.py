from fastapi import APIRouter, Depends
from utils import log

from .admin import router as admin_router
from .auctions import router as auctions_router
from .dependencies import require_admin
from .internal import router as internal_router
from .orders import router as orders_router
from .users import router as users_router
from .vendor_auctions import router as vendor_auctions_router
from .vendors import router as vendors_router
from .webhooks import router as webhooks_router

logger = log.get_logger(__name__)

router = APIRouter(prefix="/api")
router.include_router(users_router)
router.include_router(auctions_router)
router.include_router(vendor_auctions_router)
router.include_router(vendors_router)
router.include_router(orders_router)
router.include_router(admin_router)
router.include_router(internal_router)
router.include_router(webhooks_router)


@router.get("/health", tags=["dev"])
async def route_health():
    return {"status": "ok"}


@router.get("/ledger/vendors/{vendor_id}", tags=["admin"], dependencies=[Depends(require_admin)])
async def route_ledger_vendor(vendor_id: str):
    """Compare a vendor's document balances with the TigerBeetle journal."""
    from clients.tigerbeetle.client import lookup_account_balance, vendor_account_ids
    from models.operations.earnings import earnings_vendor_summary
    from models.operations.journal import journal_enabled

    summary = await earnings_vendor_summary(vendor_id)
    if not journal_enabled():
        return {"status": "disabled", "documents": summary}

    try:
        accounts = zip(("pending", "available", "paid"), vendor_account_ids(vendor_id))
        journal = {name: lookup_account_balance(account_id) for name, account_id in accounts}
    except Exception as e:
        return {"status": "error", "detail": f"Cannot read TigerBeetle: {e}", "documents": summary}
    return {"status": "ok", "documents": summary, "journal": journal}

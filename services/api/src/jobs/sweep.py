"""One pass over everything time-driven: auction lifecycle and ledger repair."""

from datetime import datetime, timezone
from typing import Optional

from pydantic import BaseModel

from models.operations.auction_policies import auction_apply_due_end_policies
from models.operations.auctions import auction_activate_due, auction_resolve_due
from models.operations.earnings import earnings_reconcile_orders
from utils import log

logger = log.get_logger(__name__)


class SweepResult(BaseModel):
    activated: int = 0
    resolved: int = 0
    end_policies_applied: int = 0
    orders_reconciled: int = 0


async def run_sweep(now: Optional[datetime] = None, reconcile_batch_size: int = 100) -> SweepResult:
    """Each step is independent; a failing step is logged and the rest still run."""
    now = now or datetime.now(timezone.utc)
    result = SweepResult()

    steps = (
        ("activated", lambda: auction_activate_due(now=now)),
        ("resolved", lambda: auction_resolve_due(now=now)),
        ("end_policies_applied", lambda: auction_apply_due_end_policies(now=now)),
        ("orders_reconciled", lambda: earnings_reconcile_orders(limit=reconcile_batch_size, now=now)),
    )
    for field, step in steps:
        try:
            setattr(result, field, await step())
        except Exception as e:
            logger.error(f"Sweep step {field} failed: {e}", exc_info=True)

    if any(result.model_dump().values()):
        logger.info(f"Sweep at {now.isoformat()}: {result.model_dump()}")
    return result

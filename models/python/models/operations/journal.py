"""
Double-entry mirror of committed balance movements in TigerBeetle.

Couchbase stays the source of truth; the journal gives finance an
append-only audit trail. Enabled with LEDGER_JOURNAL_ENABLED=true.
Best-effort: errors are logged and never propagate.
"""

import asyncio
import logging
import os
from typing import List, Tuple

logger = logging.getLogger(__name__)


def journal_enabled() -> bool:
    return os.environ.get("LEDGER_JOURNAL_ENABLED", "false").lower() == "true"


async def _post(vendor_id: str, legs: List[Tuple[str, str, str, int, int]]) -> None:
    """Post ``(transfer_key, debit, credit, amount_cents, code)`` legs.

    Account names: ``sales``, ``fees``, ``pending``, ``available``, ``paid``.
    """
    from clients.tigerbeetle import (
        PLATFORM_FEES_ACCOUNT_ID,
        PLATFORM_SALES_ACCOUNT_ID,
        create_transfer,
        deterministic_id,
        ensure_platform_accounts,
        ensure_vendor_accounts,
    )

    loop = asyncio.get_running_loop()
    await loop.run_in_executor(None, ensure_platform_accounts)
    pending_id, available_id, paid_id = await loop.run_in_executor(None, ensure_vendor_accounts, vendor_id)
    accounts = {
        "sales": PLATFORM_SALES_ACCOUNT_ID,
        "fees": PLATFORM_FEES_ACCOUNT_ID,
        "pending": pending_id,
        "available": available_id,
        "paid": paid_id,
    }
    for transfer_key, debit, credit, amount_cents, code in legs:
        if amount_cents <= 0:
            continue
        await loop.run_in_executor(
            None,
            create_transfer,
            deterministic_id("transfer", transfer_key),
            accounts[debit],
            accounts[credit],
            amount_cents,
            code,
        )


async def _record(description: str, vendor_id: str, legs) -> None:
    if not journal_enabled():
        return
    try:
        await _post(vendor_id, legs)
        logger.info(f"Journal: {description}")
    except Exception as e:
        logger.error(f"Journal: failed to record {description}: {e}")


async def journal_record_sale(vendor_id: str, earning_key: str, net_cents: int, fee_cents: int) -> None:
    from clients.tigerbeetle import TRANSFER_CODE_COMMISSION, TRANSFER_CODE_SALE

    await _record(
        f"sale {earning_key} vendor={vendor_id} net={net_cents}c fee={fee_cents}c",
        vendor_id,
        [
            (f"sale:{earning_key}", "sales", "pending", net_cents, TRANSFER_CODE_SALE),
            (f"fee:{earning_key}", "sales", "fees", fee_cents, TRANSFER_CODE_COMMISSION),
        ],
    )


async def journal_record_settlement(vendor_id: str, earning_key: str, net_cents: int) -> None:
    from clients.tigerbeetle import TRANSFER_CODE_SETTLEMENT

    await _record(
        f"settlement {earning_key} vendor={vendor_id} amount={net_cents}c",
        vendor_id,
        [(f"settle:{earning_key}", "pending", "available", net_cents, TRANSFER_CODE_SETTLEMENT)],
    )


async def journal_record_payout(vendor_id: str, payout_id: str, amount_cents: int) -> None:
    from clients.tigerbeetle import TRANSFER_CODE_PAYOUT

    await _record(
        f"payout {payout_id} vendor={vendor_id} amount={amount_cents}c",
        vendor_id,
        [(f"payout:{payout_id}", "available", "paid", amount_cents, TRANSFER_CODE_PAYOUT)],
    )


async def journal_record_payout_reversal(vendor_id: str, payout_id: str, amount_cents: int) -> None:
    from clients.tigerbeetle import TRANSFER_CODE_PAYOUT_REVERSAL

    await _record(
        f"payout reversal {payout_id} vendor={vendor_id} amount={amount_cents}c",
        vendor_id,
        [(f"reversal:{payout_id}", "paid", "available", amount_cents, TRANSFER_CODE_PAYOUT_REVERSAL)],
    )

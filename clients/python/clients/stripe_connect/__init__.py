"""Stripe Connect transfers to vendor accounts.

Uses STRIPE_SECRET_KEY. Without it the client runs in mock mode and returns
deterministic ``tr_mock_*`` ids so local flows complete end to end.
"""

import asyncio
import hashlib
import logging
import os
from typing import Dict, Optional

import stripe

logger = logging.getLogger(__name__)

CURRENCY = "usd"


class StripeTransferError(Exception):
    """Stripe rejected or failed a transfer."""

    def __init__(self, message: str, code: Optional[str] = None):
        self.code = code
        super().__init__(message)


def is_configured() -> bool:
    return bool(os.environ.get("STRIPE_SECRET_KEY"))


def _create_transfer_sync(
    amount_cents: int,
    destination: str,
    idempotency_key: str,
    metadata: Dict[str, str],
) -> str:
    stripe.api_key = os.environ["STRIPE_SECRET_KEY"]
    try:
        transfer = stripe.Transfer.create(
            amount=amount_cents,
            currency=CURRENCY,
            destination=destination,
            metadata=metadata,
            idempotency_key=idempotency_key,
        )
    except stripe.StripeError as e:
        raise StripeTransferError(str(e.user_message or e), code=e.code) from e
    return transfer.id


async def create_transfer(
    amount_cents: int,
    destination: str,
    idempotency_key: str,
    metadata: Optional[Dict[str, str]] = None,
) -> str:
    """Transfer *amount_cents* to a connected account; returns the transfer id."""
    if not is_configured():
        transfer_id = f"tr_mock_{hashlib.sha256(idempotency_key.encode()).hexdigest()[:16]}"
        logger.info(f"Stripe not configured; mock transfer {transfer_id} of {amount_cents}c to {destination}")
        return transfer_id

    loop = asyncio.get_running_loop()
    return await loop.run_in_executor(
        None, _create_transfer_sync, amount_cents, destination, idempotency_key, metadata or {}
    )

"""
End-of-auction policy executor.

Relist, convert-to-fixed and unlist each run in one transaction that
mutates the auction and its catalog item together. They are reachable
manually (vendor or admin) and automatically after resolution, where the
system actor (``acting_user_id=None``) bypasses the ownership check.
"""

import logging
import uuid
from datetime import datetime, timedelta, timezone
from typing import Any, Dict, Optional

from clients.couchbase import Transaction, run_transaction
from models.entities.couchbase.auctions import Auction, AuctionData
from models.entities.couchbase.vendors import Vendor
from models.errors import InvalidRequest, InvalidState, NotFound
from models.money import apply_markup
from models.operations.auctions import auction_mark_policy_applied
from models.operations.catalog import catalog_get_in, catalog_lock, catalog_unlock
from models.operations.vendors import vendor_assert_can_act

logger = logging.getLogger(__name__)

ACTIONABLE_STATUSES = ("ended_no_bids", "ended_reserve_not_met", "cancelled")
ACTION_RESULTS = ("relisted", "converted", "unlisted")
DEFAULT_RELIST_DURATION = timedelta(days=7)

_UNSET: Any = object()


def _check_actionable(d: AuctionData) -> None:
    if d.status not in ACTIONABLE_STATUSES:
        raise InvalidState(
            f"Only unsold auctions can be relisted, converted or unlisted (status: {d.status})"
        )
    if d.relisted_as_id or d.end_policy_result in ACTION_RESULTS:
        raise InvalidState(f"This auction was already {d.end_policy_result or 'relisted'}")


async def _get_actionable(
    txn: Transaction,
    auction_id: str,
    acting_user_id: Optional[str],
    is_admin: bool,
) -> Auction:
    auction = await txn.get(Auction, auction_id)
    if not auction:
        raise NotFound("Auction not found")
    vendor_assert_can_act(await Vendor.get(auction.data.vendor_id), acting_user_id, is_admin)
    _check_actionable(auction.data)
    return auction


def resolve_convert_price(d: AuctionData, price_cents: Optional[int] = None) -> int:
    """Fixed price for a converted auction item.

    A caller-supplied price is used as-is; otherwise the policy's price
    source is resolved and the markup applied.
    """
    if price_cents is not None:
        if price_cents <= 0:
            raise InvalidRequest("Price must be greater than 0")
        return price_cents

    source = d.end_policy.convert_price_source
    if source == "RESERVE":
        if d.reserve_price_cents is None:
            raise InvalidRequest("Auction has no reserve price to convert at")
        base = d.reserve_price_cents
    elif source == "HIGHEST_BID":
        base = d.current_bid_cents or d.starting_price_cents
    elif source == "STARTING_BID":
        base = d.starting_price_cents
    else:
        raise InvalidRequest("Price required for manual conversion")
    return apply_markup(base, d.end_policy.convert_markup_bps)


# ---------------------------------------------------------------------------
# Actions
# ---------------------------------------------------------------------------

async def auction_relist(
    auction_id: str,
    acting_user_id: Optional[str],
    is_admin: bool = False,
    duration: timedelta = DEFAULT_RELIST_DURATION,
    starting_price_cents: Optional[int] = None,
    reserve_price_cents: Optional[int] = _UNSET,
    now: Optional[datetime] = None,
) -> Auction:
    """Start a fresh auction for the same item; returns the new auction."""
    now = now or datetime.now(timezone.utc)
    if duration <= timedelta(0):
        raise InvalidRequest("Duration must be positive")
    if starting_price_cents is not None and starting_price_cents <= 0:
        raise InvalidRequest("Starting price must be greater than 0")
    if reserve_price_cents not in (_UNSET, None) and reserve_price_cents <= 0:
        raise InvalidRequest("Reserve price must be greater than 0")

    async def _relist(txn: Transaction) -> Auction:
        original = await _get_actionable(txn, auction_id, acting_user_id, is_admin)
        d = original.data

        max_relists = d.end_policy.relist_max_count
        if max_relists > 0 and d.relist_count >= max_relists:
            raise InvalidState(f"Maximum relist limit ({max_relists}) reached")

        item = await catalog_get_in(txn, d.item)
        if not item.data.in_stock:
            raise InvalidState("Item is out of stock and cannot be relisted")

        ends_at = now + duration
        relisted = await txn.insert(
            Auction,
            AuctionData(
                item=d.item,
                vendor_id=d.vendor_id,
                starting_price_cents=starting_price_cents or d.starting_price_cents,
                reserve_price_cents=(
                    d.reserve_price_cents if reserve_price_cents is _UNSET else reserve_price_cents
                ),
                starts_at=now,
                ends_at=ends_at,
                status="active",
                payment_window_hours=d.payment_window_hours,
                relist_count=d.relist_count + 1,
                parent_auction_id=d.parent_auction_id or original.id,
                end_policy=d.end_policy.model_copy(),
            ),
            key=str(uuid.uuid4()),
            user_id=acting_user_id,
        )

        d.relisted_as_id = relisted.id
        d.end_policy_applied_at = now
        d.end_policy_result = "relisted"
        await txn.replace(original)

        catalog_lock(item, ends_at)
        await txn.replace(item)
        return relisted

    relisted = await run_transaction(_relist)
    logger.info(
        f"Auction {auction_id} relisted as {relisted.id} "
        f"(relist #{relisted.data.relist_count}, ends {relisted.data.ends_at.isoformat()})"
    )
    return relisted


async def auction_convert_to_fixed(
    auction_id: str,
    acting_user_id: Optional[str],
    is_admin: bool = False,
    price_cents: Optional[int] = None,
    now: Optional[datetime] = None,
) -> Dict[str, Any]:
    """Publish the item at a fixed price and cancel the auction."""
    now = now or datetime.now(timezone.utc)

    async def _convert(txn: Transaction) -> Dict[str, Any]:
        auction = await _get_actionable(txn, auction_id, acting_user_id, is_admin)
        d = auction.data

        item = await catalog_get_in(txn, d.item)
        if not item.data.in_stock:
            raise InvalidState("Item is out of stock and cannot be converted")

        fixed_price = resolve_convert_price(d, price_cents)
        item.data.price_cents = fixed_price
        item.data.status = "published"
        catalog_unlock(item)
        await txn.replace(item)

        d.status = "cancelled"
        d.end_policy_applied_at = now
        d.end_policy_result = "converted"
        await txn.replace(auction)
        return {"item_type": d.item.kind, "item_id": d.item.id, "price_cents": fixed_price}

    result = await run_transaction(_convert)
    logger.info(f"Auction {auction_id} converted to fixed price {result['price_cents']}c")
    return result


async def auction_unlist(
    auction_id: str,
    acting_user_id: Optional[str],
    is_admin: bool = False,
    now: Optional[datetime] = None,
) -> Dict[str, Any]:
    """Archive the item and cancel the auction."""
    now = now or datetime.now(timezone.utc)

    async def _unlist(txn: Transaction) -> Dict[str, Any]:
        auction = await _get_actionable(txn, auction_id, acting_user_id, is_admin)
        d = auction.data

        item = await catalog_get_in(txn, d.item)
        item.data.status = "archived"
        catalog_unlock(item)
        await txn.replace(item)

        d.status = "cancelled"
        d.end_policy_applied_at = now
        d.end_policy_result = "unlisted"
        await txn.replace(auction)
        return {"item_type": d.item.kind, "item_id": d.item.id}

    result = await run_transaction(_unlist)
    logger.info(f"Auction {auction_id} unlisted; {result['item_type']} {result['item_id']} archived")
    return result


# ---------------------------------------------------------------------------
# Automatic application
# ---------------------------------------------------------------------------

async def auction_apply_end_policy(auction_id: str, now: Optional[datetime] = None) -> Optional[str]:
    """Apply the configured end policy as the system actor.

    Returns the recorded result, or None when there is nothing to do yet.
    Skipped outcomes are recorded too, so the deferred re-check never
    retries them.
    """
    now = now or datetime.now(timezone.utc)
    auction = await Auction.get(auction_id)
    if not auction:
        raise NotFound("Auction not found")
    d = auction.data
    policy = d.end_policy

    if d.end_policy_applied_at is not None or d.status not in ("ended_no_bids", "ended_reserve_not_met"):
        return None
    if policy.on_no_sale == "NONE":
        # Stamp it so the re-check stops picking the auction up
        await auction_mark_policy_applied(auction_id, "none", now=now)
        return None
    if d.ended_at and now < d.ended_at + timedelta(hours=policy.relist_delay_hours):
        return None

    if policy.on_no_sale == "RELIST_AUCTION":
        if policy.relist_max_count > 0 and d.relist_count >= policy.relist_max_count:
            await auction_mark_policy_applied(auction_id, "skipped:relist_limit_reached", now=now)
            logger.info(f"Auction {auction_id}: relist limit reached, not relisting")
            return "skipped:relist_limit_reached"
        try:
            await auction_relist(auction_id, None, duration=d.ends_at - d.starts_at, now=now)
        except NotFound as e:
            await auction_mark_policy_applied(auction_id, "skipped:item_missing", now=now)
            logger.warning(f"Auction {auction_id}: automatic relist skipped: {e}")
            return "skipped:item_missing"
        except InvalidState as e:
            await auction_mark_policy_applied(auction_id, "skipped:relist_failed", now=now)
            logger.warning(f"Auction {auction_id}: automatic relist skipped: {e}")
            return "skipped:relist_failed"
        return "relisted"

    if policy.on_no_sale == "CONVERT_FIXED":
        if policy.convert_price_source == "MANUAL":
            await auction_mark_policy_applied(auction_id, "skipped:manual_price_required", now=now)
            logger.info(f"Auction {auction_id}: MANUAL price source, waiting for the vendor to convert")
            return "skipped:manual_price_required"
        try:
            await auction_convert_to_fixed(auction_id, None, now=now)
        except NotFound as e:
            await auction_mark_policy_applied(auction_id, "skipped:item_missing", now=now)
            logger.warning(f"Auction {auction_id}: automatic conversion skipped: {e}")
            return "skipped:item_missing"
        except (InvalidState, InvalidRequest) as e:
            await auction_mark_policy_applied(auction_id, "skipped:convert_failed", now=now)
            logger.warning(f"Auction {auction_id}: automatic conversion skipped: {e}")
            return "skipped:convert_failed"
        return "converted"

    try:
        await auction_unlist(auction_id, None, now=now)
    except (NotFound, InvalidState) as e:
        await auction_mark_policy_applied(auction_id, "skipped:unlist_failed", now=now)
        logger.warning(f"Auction {auction_id}: automatic unlist skipped: {e}")
        return "skipped:unlist_failed"
    return "unlisted"


async def auction_apply_due_end_policies(now: Optional[datetime] = None) -> int:
    """Deferred re-check: apply end policies whose relist delay has passed."""
    now = now or datetime.now(timezone.utc)
    applied = 0
    for status in ("ended_no_bids", "ended_reserve_not_met"):
        candidates = await Auction.find(
            {"status": status, "end_policy_applied_at__isnull": True},
            order_by=["ended_at"],
        )
        for auction in candidates:
            try:
                if await auction_apply_end_policy(auction.id, now=now):
                    applied += 1
            except Exception as e:
                logger.error(f"End policy for auction {auction.id} failed: {e}", exc_info=True)
    return applied

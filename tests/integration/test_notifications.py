"""
Integration tests for the notification outbox.

Tests cover:
1. Delivery to opted-in users only
2. Retry accounting and the failure cap
3. The pending queue drain
4. Post-commit background dispatch
"""

from datetime import timedelta

import pytest

from clients.couchbase import run_transaction
from clients.sms import SmsError, SmsResult
from models.entities.couchbase.notifications import Notification
from models.operations.bids import bid_place
from models.operations.notifications import (
    MAX_ATTEMPTS,
    drain_background_tasks,
    notification_dispatch,
    notification_enqueue_in,
    notifications_dispatch_pending,
)

from factories import T0


class RecordingSender:
    def __init__(self, fail: bool = False):
        self.fail = fail
        self.sent = []

    async def send(self, to: str, message: str) -> SmsResult:
        if self.fail:
            raise SmsError("carrier unavailable")
        self.sent.append((to, message))
        return SmsResult(message_id=f"SM{len(self.sent)}", delivered=True)


async def _enqueue(user_id: str, message: str = "You've been outbid") -> Notification:
    async def _logic(txn):
        return await notification_enqueue_in(txn, user_id, "auction_outbid", message, entity_id="auction-1")

    return await run_transaction(_logic)


# =============================================================================
# Dispatch Tests
# =============================================================================


class TestDispatch:
    """Tests for notification_dispatch."""

    async def test_sent_to_opted_in_user(self, seed):
        await seed.user("alice", phone_number="+14155550100", sms_opt_in=True)
        notification = await _enqueue("alice")
        sender = RecordingSender()

        result = await notification_dispatch(notification.id, sender=sender)
        assert result.data.status == "sent"
        assert result.data.attempts == 1
        assert result.data.provider_message_id == "SM1"
        assert result.data.sent_at is not None
        assert sender.sent == [("+14155550100", "You've been outbid")]

    async def test_skipped_without_opt_in(self, seed):
        await seed.user("bob", phone_number="+14155550101", sms_opt_in=False)
        notification = await _enqueue("bob")
        sender = RecordingSender()

        result = await notification_dispatch(notification.id, sender=sender)
        assert result.data.status == "skipped"
        assert sender.sent == []

    async def test_skipped_for_unknown_user(self):
        notification = await _enqueue("ghost")
        result = await notification_dispatch(notification.id, sender=RecordingSender())
        assert result.data.status == "skipped"

    async def test_sent_notification_not_resent(self, seed):
        await seed.user("alice", phone_number="+14155550100", sms_opt_in=True)
        notification = await _enqueue("alice")
        sender = RecordingSender()

        await notification_dispatch(notification.id, sender=sender)
        await notification_dispatch(notification.id, sender=sender)
        assert len(sender.sent) == 1

    async def test_failures_retry_then_give_up(self, seed):
        await seed.user("alice", phone_number="+14155550100", sms_opt_in=True)
        notification = await _enqueue("alice")
        sender = RecordingSender(fail=True)

        result = await notification_dispatch(notification.id, sender=sender)
        assert result.data.status == "pending"
        assert result.data.attempts == 1
        assert result.data.last_error == "carrier unavailable"

        for _ in range(MAX_ATTEMPTS - 1):
            result = await notification_dispatch(notification.id, sender=sender)
        assert result.data.status == "failed"
        assert result.data.attempts == MAX_ATTEMPTS

    async def test_dispatch_pending(self, seed):
        await seed.user("alice", phone_number="+14155550100", sms_opt_in=True)
        await seed.user("bob")
        for user_id in ("alice", "bob", "alice"):
            await _enqueue(user_id)

        assert await notifications_dispatch_pending(sender=RecordingSender()) == 3
        assert await Notification.count({"status": "pending"}) == 0
        assert await Notification.count({"status": "sent"}) == 2
        assert await notifications_dispatch_pending(sender=RecordingSender()) == 0


# =============================================================================
# Outbox Tests
# =============================================================================


class TestOutbox:
    """Notifications exist only for committed changes and go out after commit."""

    async def test_outbid_delivered_in_background(self, seed):
        vendor = await seed.vendor()
        await seed.user("alice", phone_number="+14155550100", sms_opt_in=True)
        auction = await seed.auction(vendor)
        during = T0 + timedelta(hours=1)

        await bid_place(auction.id, "alice", 1000, now=during)
        await bid_place(auction.id, "bob", 1100, now=during)
        await drain_background_tasks()

        outbid = await Notification.find({"kind": "auction_outbid"})
        assert len(outbid) == 1
        # No Twilio credentials: the log-only client reports delivery
        assert outbid[0].data.status == "sent"
        assert outbid[0].data.provider_message_id == "log-only"

    async def test_aborted_transaction_leaves_no_notification(self):
        async def _logic(txn):
            await notification_enqueue_in(txn, "alice", "auction_outbid", "never sent")
            raise ValueError("abort")

        with pytest.raises(ValueError):
            await run_transaction(_logic)
        assert await Notification.count() == 0

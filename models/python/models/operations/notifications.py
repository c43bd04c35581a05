"""
Outbound notification queue (transactional outbox).

Ledger operations insert Notification documents inside their own
transaction, so a notification exists iff the change that caused it
committed. Delivery happens afterwards and is at-least-once; a failed send
never affects the ledger.
"""

import asyncio
import logging
import uuid
from datetime import datetime, timezone
from typing import Iterable, List, Optional, Set

from couchbase.exceptions import CASMismatchException

from clients.couchbase import Transaction
from clients.sms import SmsClient, get_sms_client
from models.entities.couchbase.notifications import Notification, NotificationData, NotificationKind
from models.entities.couchbase.users import User

logger = logging.getLogger(__name__)

MAX_ATTEMPTS = 5

_background_tasks: Set[asyncio.Task] = set()


async def notification_enqueue_in(
    txn: Transaction,
    user_id: str,
    kind: NotificationKind,
    message: str,
    entity_id: Optional[str] = None,
) -> Notification:
    data = NotificationData(user_id=user_id, kind=kind, message=message, entity_id=entity_id)
    return await txn.insert(Notification, data, key=str(uuid.uuid4()))


async def notification_dispatch(notification_id: str, sender: Optional[SmsClient] = None) -> Optional[Notification]:
    notification = await Notification.get(notification_id)
    if not notification or notification.data.status != "pending":
        return notification

    d = notification.data
    user = await User.get(d.user_id)
    if not user or not user.data.sms_opt_in or not user.data.phone_number:
        d.status = "skipped"
    else:
        sender = sender or get_sms_client()
        d.attempts += 1
        try:
            result = await sender.send(user.data.phone_number, d.message)
            d.status = "sent"
            d.sent_at = datetime.now(timezone.utc)
            d.provider_message_id = result.message_id
        except Exception as e:
            d.last_error = str(e)
            if d.attempts >= MAX_ATTEMPTS:
                d.status = "failed"
            logger.warning(f"Notification {notification_id} ({d.kind}) attempt {d.attempts} failed: {e}")

    try:
        return await Notification.update(notification)
    except CASMismatchException:
        logger.info(f"Notification {notification_id} updated concurrently; leaving it to the other dispatcher")
        return await Notification.get(notification_id)


async def notifications_dispatch_pending(limit: int = 100, sender: Optional[SmsClient] = None) -> int:
    """Deliver queued notifications; returns how many were processed."""
    pending = await Notification.find({"status": "pending"}, order_by=["created_at"], limit=limit)
    for notification in pending:
        try:
            await notification_dispatch(notification.id, sender=sender)
        except Exception as e:
            logger.error(f"Dispatch of notification {notification.id} failed: {e}", exc_info=True)
    return len(pending)


def dispatch_soon(notification_ids: Iterable[str]) -> None:
    """Fire-and-forget delivery of freshly committed notifications."""
    ids: List[str] = [i for i in notification_ids if i]
    if not ids:
        return

    async def _run() -> None:
        for notification_id in ids:
            try:
                await notification_dispatch(notification_id)
            except Exception as e:
                logger.error(f"Background dispatch of notification {notification_id} failed: {e}")

    task = asyncio.get_running_loop().create_task(_run())
    _background_tasks.add(task)
    task.add_done_callback(_background_tasks.discard)


async def drain_background_tasks() -> None:
    """Wait for in-flight background dispatches (shutdown and tests)."""
    while _background_tasks:
        await asyncio.gather(*list(_background_tasks), return_exceptions=True)

"""Realtime notifier: pushes new notification records to connected sessions.

Insert events come from the record store: a session listener collects
NotificationRecord inserts at flush time and publishes them once the
transaction commits, so rolled-back inserts never reach a client.
Publishing is thread-safe (sync request handlers run in a threadpool);
each subscription hands events to its own event loop.

Best effort only: nothing is buffered for sessions that are not
connected. Offline devices rely on the push queue.
"""

import asyncio
import logging
import threading
from collections import defaultdict
from collections.abc import Callable
from uuid import UUID

from sqlalchemy import event

from ..config import settings
from ..notifications.models import NotificationRecord

logger = logging.getLogger(__name__)

_PENDING_KEY = "realtime_pending_inserts"


def serialize_record(record: NotificationRecord) -> dict:
    return {
        "id": str(record.id),
        "recipientId": str(record.recipient_id),
        "senderId": str(record.sender_id) if record.sender_id else None,
        "type": record.type.value if record.type is not None else None,
        "title": record.title,
        "body": record.body,
        "data": record.data or {},
        "isRead": bool(record.is_read),
        "createdAt": record.created_at.isoformat() if record.created_at else None,
    }


class Subscription:
    """One connected client session listening for its recipient's inserts."""

    def __init__(self, recipient_id: UUID, permission_granted: bool = False) -> None:
        self.recipient_id = recipient_id
        self.permission_granted = permission_granted
        self._loop = asyncio.get_running_loop()
        self._queue: asyncio.Queue[dict] = asyncio.Queue()

    def deliver(self, record: dict) -> None:
        self._loop.call_soon_threadsafe(self._queue.put_nowait, record)

    async def next_frame(self) -> dict:
        record = await self._queue.get()
        return self.frame_for(record)

    def frame_for(self, record: dict) -> dict:
        """Event frame. `display` tells the client to render a system notification."""
        display = None
        if self.permission_granted:
            display = {
                "title": record["title"],
                "body": record["body"],
                "icon": "/logo.png",
                "tag": record["id"],
                "data": {"notificationId": record["id"], "url": settings.app_base_url},
            }
        return {"event": "notification", "notification": record, "display": display}


class RealtimeNotifier:
    def __init__(self) -> None:
        self._subscriptions: dict[UUID, set[Subscription]] = defaultdict(set)
        self._lock = threading.Lock()

    def subscribe(self, recipient_id: UUID, permission_granted: bool = False) -> Subscription:
        """Must be called from the event loop that will consume the subscription."""
        subscription = Subscription(recipient_id, permission_granted)
        with self._lock:
            self._subscriptions[recipient_id].add(subscription)
        logger.debug("Realtime subscription opened for %s", recipient_id)
        return subscription

    def unsubscribe(self, subscription: Subscription) -> None:
        with self._lock:
            subs = self._subscriptions.get(subscription.recipient_id)
            if subs is not None:
                subs.discard(subscription)
                if not subs:
                    del self._subscriptions[subscription.recipient_id]
        logger.debug("Realtime subscription closed for %s", subscription.recipient_id)

    def subscriber_count(self, recipient_id: UUID | None = None) -> int:
        with self._lock:
            if recipient_id is not None:
                return len(self._subscriptions.get(recipient_id, ()))
            return sum(len(s) for s in self._subscriptions.values())

    def publish(self, record: dict) -> int:
        """Fan a serialized record out to its recipient's sessions. Returns sessions reached."""
        try:
            recipient_id = UUID(record["recipientId"])
        except (KeyError, TypeError, ValueError):
            logger.warning("Dropping realtime event without a valid recipient: %r", record.get("id"))
            return 0

        with self._lock:
            targets = list(self._subscriptions.get(recipient_id, ()))

        delivered = 0
        for subscription in targets:
            try:
                subscription.deliver(record)
                delivered += 1
            except RuntimeError:
                # loop already closed: the session went away without unsubscribing
                logger.warning("Realtime delivery to closed session for %s", recipient_id)
                self.unsubscribe(subscription)
        return delivered


def install_insert_listener(session_factory, notifier: RealtimeNotifier) -> Callable[[], None]:
    """Publish committed NotificationRecord inserts from sessions made by `session_factory`.

    Returns a function that removes the listeners.
    """

    def _after_flush(session, flush_context):
        inserted = [serialize_record(obj) for obj in session.new if isinstance(obj, NotificationRecord)]
        if inserted:
            session.info.setdefault(_PENDING_KEY, []).extend(inserted)

    def _after_commit(session):
        for record in session.info.pop(_PENDING_KEY, None) or []:
            try:
                notifier.publish(record)
            except Exception:
                logger.exception("Realtime publish failed for notification %s", record.get("id"))

    def _after_rollback(session):
        session.info.pop(_PENDING_KEY, None)

    listeners = (
        ("after_flush", _after_flush),
        ("after_commit", _after_commit),
        ("after_rollback", _after_rollback),
    )
    for name, fn in listeners:
        event.listen(session_factory, name, fn)

    def _remove() -> None:
        for name, fn in listeners:
            event.remove(session_factory, name, fn)

    return _remove

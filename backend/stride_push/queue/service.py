"""Delivery queue operations: enqueue, fetch, batch, reconcile, cleanup.

Reconciliation is attempts-based: a row only becomes `sent` on an "ok"
receipt matched to it by position. Anything else (error receipt,
missing receipt, call-level failure) costs one attempt, and the row
stays `pending` until it reaches the attempt bound. Rows that are no
longer pending are never touched again.
"""

import logging
from collections.abc import Sequence
from datetime import UTC, datetime, timedelta
from uuid import UUID

from sqlalchemy import func
from sqlalchemy.orm import Session

from ..config import settings
from ..integrations.push_gateway import PushMessage, Receipt
from .models import TERMINAL_STATUSES, DeliveryQueueItem, DeliveryStatus

logger = logging.getLogger(__name__)


def enqueue_delivery(db: Session, notification_id: UUID, device_token: str, payload: dict) -> DeliveryQueueItem:
    item = DeliveryQueueItem(
        notification_id=notification_id,
        device_token=device_token,
        notification_payload=payload,
        status=DeliveryStatus.PENDING,
        attempts=0,
    )
    db.add(item)
    return item


def fetch_pending(db: Session, limit: int | None = None) -> list[DeliveryQueueItem]:
    """Oldest-first pending rows that still have attempts left."""
    return (
        db.query(DeliveryQueueItem)
        .filter(
            DeliveryQueueItem.status == DeliveryStatus.PENDING,
            DeliveryQueueItem.attempts < settings.queue_max_attempts,
        )
        .order_by(DeliveryQueueItem.created_at.asc())
        .limit(limit or settings.queue_fetch_limit)
        .all()
    )


def partition(items: Sequence[DeliveryQueueItem], size: int) -> list[list[DeliveryQueueItem]]:
    """Split into order-preserving batches of at most `size` items."""
    if size < 1:
        raise ValueError("batch size must be >= 1")
    return [list(items[i : i + size]) for i in range(0, len(items), size)]


def build_messages(batch: Sequence[DeliveryQueueItem]) -> list[PushMessage]:
    """One gateway message per queue item, same order as the batch."""
    messages = []
    for item in batch:
        payload = item.notification_payload or {}
        messages.append(
            PushMessage(
                device_token=item.device_token,
                title=payload.get("title", ""),
                body=payload.get("body", ""),
                data=payload.get("data") or {},
                channel=payload.get("channelId") or "default",
            )
        )
    return messages


def _record_attempt(item: DeliveryQueueItem, success: bool, error_message: str | None, now: datetime) -> bool:
    """Apply one attempt to a row. Returns False when the row is no longer pending."""
    if item.status != DeliveryStatus.PENDING or item.attempts >= settings.queue_max_attempts:
        logger.debug("Skipping queue item %s (status=%s, attempts=%d)", item.id, item.status, item.attempts)
        return False

    item.attempts = item.attempts + 1
    item.last_attempt_at = now

    if success:
        item.status = DeliveryStatus.SENT
        item.error_message = None
        item.processed_at = now
        return True

    item.error_message = error_message or "Unknown error"
    if item.attempts >= settings.queue_max_attempts:
        item.status = DeliveryStatus.FAILED
        item.processed_at = now
        logger.warning(
            "Permanent delivery failure for queue item %s after %d attempts: %s",
            item.id,
            item.attempts,
            item.error_message,
        )
    return True


def reconcile_receipts(
    db: Session,
    batch: Sequence[DeliveryQueueItem],
    receipts: Sequence[Receipt] | None,
    now: datetime | None = None,
) -> dict[str, int]:
    """Apply receipt[i] to batch[i]. A missing or mismatched receipt list fails the whole batch."""
    if receipts is None or len(receipts) != len(batch):
        got = "none" if receipts is None else len(receipts)
        return mark_batch_failed(
            db, batch, f"Receipt count mismatch: expected {len(batch)}, got {got}", now=now
        )

    now = now or datetime.now(UTC)
    counts = {"sent": 0, "retry": 0, "failed": 0}
    for item, receipt in zip(batch, receipts, strict=True):
        if not _record_attempt(item, receipt.ok, None if receipt.ok else receipt.error_message, now):
            continue
        if receipt.ok:
            counts["sent"] += 1
        else:
            counts["failed" if item.status == DeliveryStatus.FAILED else "retry"] += 1
            logger.info("Delivery failed for queue item %s: %s", item.id, item.error_message)
    db.flush()
    return counts


def mark_batch_failed(
    db: Session,
    batch: Sequence[DeliveryQueueItem],
    error_message: str,
    now: datetime | None = None,
) -> dict[str, int]:
    """Count one failed attempt against every pending row of the batch."""
    now = now or datetime.now(UTC)
    counts = {"sent": 0, "retry": 0, "failed": 0}
    for item in batch:
        if not _record_attempt(item, False, error_message, now):
            continue
        counts["failed" if item.status == DeliveryStatus.FAILED else "retry"] += 1
    db.flush()
    logger.error("Marked batch of %d queue items as failed attempt: %s", len(batch), error_message)
    return counts


def cleanup_terminal(db: Session, retention_days: int | None = None) -> int:
    """Delete sent/failed rows processed before the retention window. Pending rows are never touched."""
    days = settings.queue_retention_days if retention_days is None else retention_days
    cutoff = datetime.now(UTC) - timedelta(days=days)
    deleted = (
        db.query(DeliveryQueueItem)
        .filter(
            DeliveryQueueItem.status.in_(TERMINAL_STATUSES),
            DeliveryQueueItem.processed_at.isnot(None),
            DeliveryQueueItem.processed_at < cutoff,
        )
        .delete(synchronize_session=False)
    )
    if deleted:
        logger.info("Cleaned up %d queue items older than %d days", deleted, days)
    return deleted


def queue_counts(db: Session) -> dict[str, int]:
    rows = (
        db.query(DeliveryQueueItem.status, func.count(DeliveryQueueItem.id))
        .group_by(DeliveryQueueItem.status)
        .all()
    )
    counts = {s.value: 0 for s in DeliveryStatus}
    for status, count in rows:
        key = status.value if isinstance(status, DeliveryStatus) else str(status)
        counts[key] = count
    counts["total"] = sum(counts[s.value] for s in DeliveryStatus)
    return counts

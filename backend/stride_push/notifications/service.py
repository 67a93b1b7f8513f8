"""Notification API service: the single write path into the push pipeline.

`submit` turns a domain event into one NotificationRecord per resolved
recipient and one pending DeliveryQueueItem per eligible device token.
It never talks to the push gateway; the queue processor delivers.

Record/delivery rule: every resolved recipient gets a record (in-app
display and audit). Deliveries are queued only for recipients with
push enabled and at least one device token.
"""

import logging
import uuid
from uuid import UUID

from sqlalchemy.orm import Session

from ..config import settings
from ..directory.service import DirectoryEntry, SqlUserDirectory, UserDirectory
from ..errors import AuthorizationError, TargetResolutionError, ValidationError
from ..queue.service import enqueue_delivery
from .models import NotificationRecord, NotificationType
from .schemas import (
    BROADCAST_TARGETS,
    AllTarget,
    CallerIdentity,
    CampusTarget,
    DeliveryResult,
    MessageIn,
    RecipientOutcome,
    RecipientResult,
    Target,
    UsersTarget,
    UserTarget,
)

logger = logging.getLogger(__name__)

DEFAULT_CHANNELS = {
    NotificationType.MESSAGE: "messages",
    NotificationType.FOLLOW: "social",
    NotificationType.CAMPUS_EVENT: "events",
    NotificationType.STUDY_REMINDER: "academic",
    NotificationType.ANNOUNCEMENT: "events",
}


# ── Validation & authorization ────────────────────────────────────────


def validate_message(message: MessageIn) -> None:
    """Raise ValidationError listing every problem with the message."""
    errors = []
    title = (message.title or "").strip()
    body = (message.body or "").strip()

    if not title:
        errors.append("Title is required")
    if not body:
        errors.append("Body is required")
    if len(title) > settings.title_max_length:
        errors.append(f"Title is too long (max {settings.title_max_length} characters)")
    if len(body) > settings.body_max_length:
        errors.append(f"Body is too long (max {settings.body_max_length} characters)")

    if errors:
        raise ValidationError(errors)


def authorize(target: Target, caller: CallerIdentity | None) -> None:
    """Coarse check: any identified caller may notify users; broadcasts need a broadcast role."""
    if caller is None or (caller.user_id is None and caller.role.lower() == "user"):
        raise AuthorizationError("Caller identity required")
    if isinstance(target, BROADCAST_TARGETS) and caller.role.lower() not in settings.broadcast_roles_list:
        raise AuthorizationError(f"Role '{caller.role}' may not send {target.kind} notifications")


# ── Target resolution ────────────────────────────────────────────────


def resolve_target(directory: UserDirectory, target: Target) -> tuple[list[DirectoryEntry], list[str]]:
    """Return (recipients, unresolved ids). Raises TargetResolutionError when nothing matches."""
    if isinstance(target, UserTarget):
        entries = directory.lookup([target.user_id])
        if not entries:
            raise TargetResolutionError(f"User {target.user_id} not found", [str(target.user_id)])
        return entries, []

    if isinstance(target, UsersTarget):
        entries = directory.lookup(target.user_ids)
        found = {e.user_id for e in entries}
        unresolved = list(dict.fromkeys(str(uid) for uid in target.user_ids if uid not in found))
        if not entries:
            raise TargetResolutionError("None of the target users were found", unresolved)
        return entries, unresolved

    if isinstance(target, CampusTarget):
        if not directory.domain_exists(target.domain):
            raise TargetResolutionError(f"Campus {target.domain} not found", [target.domain])
        return directory.find_reachable(target.domain), []

    if isinstance(target, AllTarget):
        return directory.find_reachable(), []

    raise TypeError(f"Unsupported target: {target!r}")


# ── Submit ───────────────────────────────────────────────────────────


def submit(
    db: Session,
    notification_type: NotificationType,
    target: Target,
    message: MessageIn,
    caller: CallerIdentity | None,
    directory: UserDirectory | None = None,
) -> DeliveryResult:
    """Persist records and enqueue deliveries. Caller commits."""
    validate_message(message)
    authorize(target, caller)

    directory = directory if directory is not None else SqlUserDirectory(db)
    try:
        entries, unresolved = resolve_target(directory, target)
    except TargetResolutionError as exc:
        logger.info("Notification target resolved to no recipients: %s", exc)
        return DeliveryResult(unresolved=exc.unresolved)

    title = message.title.strip()
    body = message.body.strip()
    payload = {
        "title": title,
        "body": body,
        "data": dict(message.data),
        "channelId": message.channel or DEFAULT_CHANNELS.get(notification_type, "default"),
    }

    result = DeliveryResult(unresolved=unresolved)
    for entry in entries:
        record = NotificationRecord(
            id=uuid.uuid4(),
            recipient_id=entry.user_id,
            sender_id=caller.user_id,
            type=notification_type,
            title=title,
            body=body,
            data=dict(message.data),
            is_read=False,
        )
        db.add(record)

        if not entry.push_enabled:
            outcome, deliveries = RecipientOutcome.SKIPPED_DISABLED, 0
        elif not entry.device_tokens:
            outcome, deliveries = RecipientOutcome.SKIPPED_NO_TOKEN, 0
        else:
            for token in entry.device_tokens:
                enqueue_delivery(db, record.id, token, payload)
            outcome, deliveries = RecipientOutcome.ACCEPTED, len(entry.device_tokens)

        result.recipients.append(
            RecipientResult(
                user_id=entry.user_id,
                notification_id=record.id,
                outcome=outcome,
                deliveries=deliveries,
            )
        )

    db.flush()
    logger.info(
        "Accepted %s notification (%s): %d records, %d deliveries queued",
        notification_type.value,
        target.kind,
        result.notifications_created,
        result.deliveries_queued,
    )
    return result


# ── Recipient-side reads ─────────────────────────────────────────────


def list_for_recipient(db: Session, recipient_id: UUID, limit: int = 20) -> list[NotificationRecord]:
    return (
        db.query(NotificationRecord)
        .filter(NotificationRecord.recipient_id == recipient_id)
        .order_by(NotificationRecord.created_at.desc())
        .limit(limit)
        .all()
    )


def mark_read(db: Session, notification_id: UUID, recipient_id: UUID | None = None) -> NotificationRecord | None:
    """Set is_read on a record. With recipient_id, only the recipient's own record matches."""
    query = db.query(NotificationRecord).filter(NotificationRecord.id == notification_id)
    if recipient_id is not None:
        query = query.filter(NotificationRecord.recipient_id == recipient_id)
    record = query.first()
    if not record:
        return None
    if not record.is_read:
        record.is_read = True
        db.flush()
    return record


# ── Status ───────────────────────────────────────────────────────────

FEATURES = {
    "expoPush": True,
    "pwaNotifications": True,
    "inAppNotifications": True,
    "realtimeSync": True,
    "retryMechanism": True,
    "bulkDelivery": True,
}


def build_status(db: Session, processor=None) -> dict:
    """Queue counts by status, directory stats, processor state and feature flags."""
    from ..directory.service import get_directory_stats
    from ..queue.service import queue_counts

    processor_info = {"running": False, "state": None, "lastCycleAt": None}
    if processor is not None:
        processor_info = {
            "running": processor.running,
            "state": processor.state.value,
            "lastCycleAt": processor.last_cycle_at.isoformat() if processor.last_cycle_at else None,
        }

    stats = get_directory_stats(db)
    return {
        "queue": queue_counts(db),
        "stats": {
            "totalUsers": stats["total_users"],
            "usersWithDeviceTokens": stats["users_with_device_tokens"],
            "usersWithPushEnabled": stats["users_with_push_enabled"],
            "recentNotifications": stats["recent_notifications"],
        },
        "processor": processor_info,
        "features": FEATURES,
    }

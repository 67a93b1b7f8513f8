"""Notification record model."""

import enum
import uuid
from datetime import UTC, datetime

from sqlalchemy import Boolean, Column, DateTime, Enum, String, event, inspect
from sqlalchemy.dialects.postgresql import UUID

from ..database.base import Base, JSONType


class NotificationType(str, enum.Enum):
    MESSAGE = "message"
    FOLLOW = "follow"
    POST_INTERACTION = "post_interaction"
    CAMPUS_EVENT = "campus_event"
    STUDY_REMINDER = "study_reminder"
    ANNOUNCEMENT = "announcement"
    SYSTEM = "system"
    TEST = "test"
    CUSTOM = "custom"


class ImmutableRecordError(RuntimeError):
    """Raised when a flush would change a notification's content."""


class NotificationRecord(Base):
    """In-app notification. Exists independently of push delivery outcome."""

    __tablename__ = "notifications"

    id = Column(UUID(as_uuid=True), primary_key=True, default=uuid.uuid4)
    recipient_id = Column(UUID(as_uuid=True), nullable=False, index=True)
    sender_id = Column(UUID(as_uuid=True), nullable=True)  # NULL for system notifications
    type = Column(
        Enum(NotificationType, values_callable=lambda e: [m.value for m in e], native_enum=False, length=30),
        nullable=False,
    )
    title = Column(String(100), nullable=False)
    body = Column(String(500), nullable=False)
    data = Column(JSONType, default=dict)
    is_read = Column(Boolean, default=False, nullable=False)
    created_at = Column(
        DateTime(timezone=True),
        default=lambda: datetime.now(UTC),
        index=True,
    )


# Only is_read may change after insert.
_IMMUTABLE_COLUMNS = ("recipient_id", "sender_id", "type", "title", "body", "data", "created_at")


@event.listens_for(NotificationRecord, "before_update")
def _reject_content_changes(mapper, connection, target: NotificationRecord) -> None:
    state = inspect(target)
    changed = [name for name in _IMMUTABLE_COLUMNS if state.attrs[name].history.has_changes()]
    if changed:
        raise ImmutableRecordError(f"Notification {target.id} is immutable (attempted change: {', '.join(changed)})")

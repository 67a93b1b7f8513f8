"""Delivery queue model: one row per (notification, device token) push delivery."""

import enum
import uuid
from datetime import UTC, datetime

from sqlalchemy import Column, DateTime, Enum, ForeignKey, Index, Integer, String, Text
from sqlalchemy.dialects.postgresql import UUID
from sqlalchemy.orm import validates

from ..config import settings
from ..database.base import Base, JSONType


class DeliveryStatus(str, enum.Enum):
    PENDING = "pending"
    SENT = "sent"
    FAILED = "failed"


TERMINAL_STATUSES = (DeliveryStatus.SENT, DeliveryStatus.FAILED)


class InvalidTransitionError(RuntimeError):
    """Raised on a status change out of a terminal state or an attempt count above the bound."""


class DeliveryQueueItem(Base):
    __tablename__ = "notification_queue"
    __table_args__ = (Index("idx_queue_status_created", "status", "created_at"),)

    id = Column(UUID(as_uuid=True), primary_key=True, default=uuid.uuid4)
    # No FK: queue rows may outlive their record and records never depend on queue state
    notification_id = Column(UUID(as_uuid=True), nullable=False, index=True)
    device_token = Column(String(255), nullable=False)
    # Denormalized {title, body, data, channelId} so delivery never re-reads the record
    notification_payload = Column(JSONType, nullable=False)
    status = Column(
        Enum(DeliveryStatus, values_callable=lambda e: [m.value for m in e], native_enum=False, length=20),
        nullable=False,
        default=DeliveryStatus.PENDING,
    )
    attempts = Column(Integer, nullable=False, default=0)
    last_attempt_at = Column(DateTime(timezone=True), nullable=True)
    error_message = Column(Text, nullable=True)
    created_at = Column(
        DateTime(timezone=True),
        default=lambda: datetime.now(UTC),
    )
    processed_at = Column(DateTime(timezone=True), nullable=True, index=True)

    @validates("status")
    def _check_status(self, key, value):
        current = self.status
        if current is not None and current in TERMINAL_STATUSES and value != current:
            raise InvalidTransitionError(f"Queue item {self.id} is {current.value}; cannot move to {value}")
        return value

    @validates("attempts")
    def _check_attempts(self, key, value):
        if value is not None and value > settings.queue_max_attempts:
            raise InvalidTransitionError(
                f"Queue item {self.id} would exceed {settings.queue_max_attempts} attempts"
            )
        return value

    @property
    def is_terminal(self) -> bool:
        return self.status in TERMINAL_STATUSES

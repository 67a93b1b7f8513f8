"""Notification API request/response schemas.

JSON uses camelCase (callerIdentity, userIds, ...); Python code uses
snake_case attribute names.
"""

import enum
from datetime import datetime
from typing import Annotated, Any, Literal
from uuid import UUID

from pydantic import AliasChoices, BaseModel, ConfigDict, Field, computed_field, field_validator
from pydantic.alias_generators import to_camel

from .models import NotificationType


class CamelModel(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)


# ── Targets (tagged variant) ──────────────────────────────────────────


class UserTarget(CamelModel):
    kind: Literal["user"] = "user"
    user_id: UUID


class UsersTarget(CamelModel):
    kind: Literal["users"] = "users"
    user_ids: list[UUID] = Field(..., min_length=1)


class CampusTarget(CamelModel):
    kind: Literal["campus"] = "campus"
    domain: str = Field(..., min_length=1, max_length=255)

    @field_validator("domain")
    @classmethod
    def _normalize_domain(cls, v: str) -> str:
        domain = v.strip().lower()
        if not domain:
            raise ValueError("domain must not be blank")
        return domain


class AllTarget(CamelModel):
    kind: Literal["all"] = "all"


Target = Annotated[UserTarget | UsersTarget | CampusTarget | AllTarget, Field(discriminator="kind")]

BROADCAST_TARGETS = (CampusTarget, AllTarget)


# ── Request ──────────────────────────────────────────────────────────


class MessageIn(CamelModel):
    title: str = ""
    body: str = ""
    data: dict[str, Any] = Field(default_factory=dict)
    channel: str | None = Field(None, max_length=50, validation_alias=AliasChoices("channel", "channelId"))

    @field_validator("title", "body", mode="before")
    @classmethod
    def _none_to_empty(cls, v):
        return "" if v is None else v

    @field_validator("data", mode="before")
    @classmethod
    def _none_to_dict(cls, v):
        return {} if v is None else v


class CallerIdentity(CamelModel):
    """Caller-asserted identity. Only used for coarse authorization."""

    user_id: UUID | None = None
    role: str = "user"


class SubmitRequest(CamelModel):
    type: NotificationType
    target: Target
    message: MessageIn
    caller_identity: CallerIdentity | None = None

    @field_validator("target", mode="before")
    @classmethod
    def _all_shorthand(cls, v):
        if v == "all":
            return {"kind": "all"}
        return v


# ── Result ───────────────────────────────────────────────────────────


class RecipientOutcome(str, enum.Enum):
    ACCEPTED = "accepted"
    SKIPPED_NO_TOKEN = "skipped_no_token"
    SKIPPED_DISABLED = "skipped_disabled"


class RecipientResult(CamelModel):
    user_id: UUID
    notification_id: UUID
    outcome: RecipientOutcome
    deliveries: int = 0


class DeliveryResult(CamelModel):
    """Per-recipient acceptance. Device-level outcomes live in the delivery queue."""

    recipients: list[RecipientResult] = Field(default_factory=list)
    unresolved: list[str] = Field(default_factory=list)

    @computed_field
    @property
    def accepted(self) -> int:
        return sum(1 for r in self.recipients if r.outcome == RecipientOutcome.ACCEPTED)

    @computed_field
    @property
    def skipped_no_token(self) -> int:
        return sum(1 for r in self.recipients if r.outcome == RecipientOutcome.SKIPPED_NO_TOKEN)

    @computed_field
    @property
    def skipped_disabled(self) -> int:
        return sum(1 for r in self.recipients if r.outcome == RecipientOutcome.SKIPPED_DISABLED)

    @computed_field
    @property
    def notifications_created(self) -> int:
        return len(self.recipients)

    @computed_field
    @property
    def deliveries_queued(self) -> int:
        return sum(r.deliveries for r in self.recipients)


class NotificationResponse(CamelModel):
    id: UUID
    recipient_id: UUID
    sender_id: UUID | None
    type: NotificationType
    title: str
    body: str
    data: dict[str, Any] | None
    is_read: bool
    created_at: datetime

    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True, from_attributes=True)


class ReadRequest(CamelModel):
    user_id: UUID | None = None


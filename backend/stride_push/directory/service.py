"""User directory lookups used for target resolution, plus device token registration.

The pipeline only depends on the `UserDirectory` protocol, so tests and
other deployments can plug in a different directory implementation.
"""

import logging
import re
from collections.abc import Sequence
from dataclasses import dataclass, field
from datetime import UTC, datetime, timedelta
from typing import Protocol
from uuid import UUID

from sqlalchemy import func
from sqlalchemy.orm import Session, selectinload

from ..errors import ValidationError
from .models import DeviceToken, User

logger = logging.getLogger(__name__)

_TOKEN_PATTERN = re.compile(r"^(ExponentPushToken|ExpoPushToken)\[.+\]$")


@dataclass(frozen=True)
class DirectoryEntry:
    user_id: UUID
    push_enabled: bool
    device_tokens: tuple[str, ...] = field(default_factory=tuple)


class UserDirectory(Protocol):
    """Directory interface."""

    def lookup(self, user_ids: Sequence[UUID]) -> list[DirectoryEntry]: ...
    def find_reachable(self, domain: str | None = None) -> list[DirectoryEntry]: ...
    def domain_exists(self, domain: str) -> bool: ...


class SqlUserDirectory:
    """Directory backed by the users / device_tokens tables."""

    def __init__(self, db: Session) -> None:
        self._db = db

    def lookup(self, user_ids: Sequence[UUID]) -> list[DirectoryEntry]:
        """Return entries for the given ids, in input order. Unknown ids are omitted."""
        if not user_ids:
            return []
        users = (
            self._db.query(User)
            .options(selectinload(User.device_tokens))
            .filter(User.id.in_(list(set(user_ids))))
            .all()
        )
        by_id = {u.id: u for u in users}
        seen: set[UUID] = set()
        entries = []
        for uid in user_ids:
            if uid in seen or uid not in by_id:
                continue
            seen.add(uid)
            entries.append(_to_entry(by_id[uid]))
        return entries

    def find_reachable(self, domain: str | None = None) -> list[DirectoryEntry]:
        """Users with push enabled and at least one active device token."""
        query = (
            self._db.query(User)
            .options(selectinload(User.device_tokens))
            .filter(
                User.push_enabled == True,  # noqa: E712
                User.device_tokens.any(DeviceToken.is_active == True),  # noqa: E712
            )
        )
        if domain is not None:
            domain = _normalize_domain(domain)
            if not domain:
                return []
            query = query.filter(func.lower(User.school_domain) == domain)
        return [_to_entry(u) for u in query.order_by(User.created_at.asc()).all()]

    def domain_exists(self, domain: str) -> bool:
        """Blank domains never exist: users without a campus store an empty string."""
        domain = _normalize_domain(domain)
        if not domain:
            return False
        return self._db.query(User.id).filter(func.lower(User.school_domain) == domain).first() is not None


def _normalize_domain(domain: str | None) -> str:
    return (domain or "").strip().lower()


def _to_entry(user: User) -> DirectoryEntry:
    tokens = tuple(t.token for t in user.device_tokens if t.is_active)
    return DirectoryEntry(user_id=user.id, push_enabled=bool(user.push_enabled), device_tokens=tokens)


def is_valid_push_token(token: str) -> bool:
    return bool(token) and _TOKEN_PATTERN.match(token) is not None


def register_device_token(db: Session, user_id: UUID, token: str, platform: str = "") -> DeviceToken:
    """Register (or re-assign) a device token for a user.

    A token identifies one installation, so registering a token that is
    already stored moves it to the new user and reactivates it.
    """
    token = (token or "").strip()
    if not is_valid_push_token(token):
        raise ValidationError(["Invalid push token format"])

    user = db.query(User).filter(User.id == user_id).first()
    if not user:
        raise ValidationError(["User not found"])

    existing = db.query(DeviceToken).filter(DeviceToken.token == token).first()
    if existing:
        if existing.user_id != user_id:
            logger.info("Device token moved from user %s to %s", existing.user_id, user_id)
        existing.user_id = user_id
        existing.platform = platform or existing.platform
        existing.is_active = True
        db.flush()
        return existing

    device = DeviceToken(user_id=user_id, token=token, platform=platform)
    db.add(device)
    db.flush()
    return device


def cleanup_invalid_tokens(db: Session) -> int:
    """Deactivate stored tokens that do not match the gateway token format."""
    active = db.query(DeviceToken).filter(DeviceToken.is_active == True).all()  # noqa: E712
    invalid = [t for t in active if not is_valid_push_token(t.token)]
    for t in invalid:
        t.is_active = False
    if invalid:
        db.flush()
        logger.info("Deactivated %d invalid push tokens", len(invalid))
    return len(invalid)


def get_directory_stats(db: Session) -> dict:
    """Counts shown on the status endpoint."""
    from ..notifications.models import NotificationRecord

    since = datetime.now(UTC) - timedelta(days=1)
    with_tokens = (
        db.query(func.count(User.id))
        .filter(User.device_tokens.any(DeviceToken.is_active == True))  # noqa: E712
        .scalar()
    )
    return {
        "total_users": db.query(func.count(User.id)).scalar() or 0,
        "users_with_device_tokens": with_tokens or 0,
        "users_with_push_enabled": (
            db.query(func.count(User.id)).filter(User.push_enabled == True).scalar() or 0  # noqa: E712
        ),
        "recent_notifications": (
            db.query(func.count(NotificationRecord.id)).filter(NotificationRecord.created_at >= since).scalar()
            or 0
        ),
    }

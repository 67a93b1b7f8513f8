"""Message builders for the domain events that produce notifications.

Each builder returns the (type, target, message) triple `submit` takes.
"""

from uuid import UUID

from .models import NotificationType
from .schemas import CampusTarget, MessageIn, UsersTarget, UserTarget


def new_message(recipient_id: UUID, sender_name: str, preview: str):
    return (
        NotificationType.MESSAGE,
        UserTarget(user_id=recipient_id),
        MessageIn(
            title=f"New message from {sender_name or 'Someone'}",
            body=preview or "New message",
            data={"type": "message", "senderName": sender_name},
            channel="messages",
        ),
    )


def new_follower(recipient_id: UUID, follower_name: str):
    return (
        NotificationType.FOLLOW,
        UserTarget(user_id=recipient_id),
        MessageIn(
            title="New follower!",
            body=f"{follower_name or 'Someone'} started following you",
            data={"type": "follow", "followerName": follower_name},
            channel="social",
        ),
    )


def campus_event(school_domain: str, event_title: str, event_time: str):
    return (
        NotificationType.CAMPUS_EVENT,
        CampusTarget(domain=school_domain),
        MessageIn(
            title=f"Campus Event: {event_title or 'New Event'}",
            body=f"Starting {event_time or 'soon'}",
            data={"type": "event", "eventTitle": event_title},
            channel="events",
        ),
    )


def study_reminder(student_id: UUID, subject: str, due_date: str):
    return (
        NotificationType.STUDY_REMINDER,
        UserTarget(user_id=student_id),
        MessageIn(
            title=f"Study Reminder: {subject or 'Assignment'}",
            body=f"Due {due_date or 'soon'}",
            data={"type": "study_reminder", "subject": subject},
            channel="academic",
        ),
    )


def system_announcement(user_ids: list[UUID], title: str, body: str):
    return (
        NotificationType.ANNOUNCEMENT,
        UsersTarget(user_ids=user_ids),
        MessageIn(title=title, body=body, data={"type": "announcement"}, channel="events"),
    )


def build_test_notification(user_id: UUID):
    return (
        NotificationType.TEST,
        UserTarget(user_id=user_id),
        MessageIn(
            title="Test Notification",
            body="Push notifications are working!",
            data={"type": "test"},
            channel="default",
        ),
    )

"""Tests for the realtime notifier and the WebSocket channel."""

import asyncio
import uuid
from unittest.mock import MagicMock

from stride_push.notifications.models import NotificationRecord, NotificationType
from stride_push.notifications.schemas import CallerIdentity, MessageIn, UserTarget
from stride_push.notifications.service import submit
from stride_push.realtime.notifier import RealtimeNotifier, install_insert_listener

SYSTEM = CallerIdentity(role="service")


def _record(recipient_id, **fields) -> dict:
    return {
        "id": str(uuid.uuid4()),
        "recipientId": str(recipient_id),
        "title": "Hello",
        "body": "World",
        "data": {},
        **fields,
    }


class TestRealtimeNotifier:
    def test_publish_reaches_only_the_recipient(self):
        async def scenario():
            notifier = RealtimeNotifier()
            alice, bob = uuid.uuid4(), uuid.uuid4()
            alice_sub = notifier.subscribe(alice)
            bob_sub = notifier.subscribe(bob)

            assert notifier.publish(_record(alice)) == 1
            frame = await asyncio.wait_for(alice_sub.next_frame(), 1)
            assert frame["event"] == "notification"
            assert frame["notification"]["recipientId"] == str(alice)
            assert bob_sub._queue.empty()

        asyncio.run(scenario())

    def test_every_session_of_a_recipient_gets_the_event(self):
        async def scenario():
            notifier = RealtimeNotifier()
            user = uuid.uuid4()
            first, second = notifier.subscribe(user), notifier.subscribe(user)

            assert notifier.publish(_record(user)) == 2
            await asyncio.wait_for(first.next_frame(), 1)
            await asyncio.wait_for(second.next_frame(), 1)

        asyncio.run(scenario())

    def test_display_only_with_permission(self):
        async def scenario():
            notifier = RealtimeNotifier()
            user = uuid.uuid4()
            granted = notifier.subscribe(user, permission_granted=True)
            denied = notifier.subscribe(user)
            record = _record(user)

            notifier.publish(record)
            shown = await asyncio.wait_for(granted.next_frame(), 1)
            hidden = await asyncio.wait_for(denied.next_frame(), 1)

            assert shown["display"] == {
                "title": "Hello",
                "body": "World",
                "icon": "/logo.png",
                "tag": record["id"],
                "data": {"notificationId": record["id"], "url": "/"},
            }
            assert hidden["display"] is None

        asyncio.run(scenario())

    def test_unsubscribe(self):
        async def scenario():
            notifier = RealtimeNotifier()
            user = uuid.uuid4()
            subscription = notifier.subscribe(user)
            assert notifier.subscriber_count(user) == 1

            notifier.unsubscribe(subscription)
            notifier.unsubscribe(subscription)

            assert notifier.subscriber_count() == 0
            assert notifier.publish(_record(user)) == 0

        asyncio.run(scenario())

    def test_record_without_recipient_is_dropped(self):
        assert RealtimeNotifier().publish({"id": "x"}) == 0


class TestInsertListener:
    def test_publishes_after_commit(self, session_factory, make_user):
        user = make_user()
        notifier = MagicMock()
        remove = install_insert_listener(session_factory, notifier)
        try:
            db = session_factory()
            submit(db, NotificationType.MESSAGE, UserTarget(user_id=user.id), MessageIn(title="Hi", body="B"), SYSTEM)
            notifier.publish.assert_not_called()
            db.commit()
            db.close()
        finally:
            remove()

        notifier.publish.assert_called_once()
        published = notifier.publish.call_args.args[0]
        assert published["recipientId"] == str(user.id)
        assert published["title"] == "Hi"
        assert published["type"] == "message"
        assert published["isRead"] is False

    def test_rollback_publishes_nothing(self, session_factory, make_user):
        user = make_user()
        notifier = MagicMock()
        remove = install_insert_listener(session_factory, notifier)
        try:
            db = session_factory()
            submit(db, NotificationType.MESSAGE, UserTarget(user_id=user.id), MessageIn(title="Hi", body="B"), SYSTEM)
            db.rollback()
            db.commit()
            db.close()
        finally:
            remove()

        notifier.publish.assert_not_called()

    def test_removed_listener_is_silent(self, session_factory, make_user):
        user = make_user()
        notifier = MagicMock()
        install_insert_listener(session_factory, notifier)()

        db = session_factory()
        submit(db, NotificationType.MESSAGE, UserTarget(user_id=user.id), MessageIn(title="Hi", body="B"), SYSTEM)
        db.commit()
        db.close()

        notifier.publish.assert_not_called()


class TestWebSocket:
    def test_subscribe_and_receive(self, client, session_factory, make_user):
        user = make_user()
        with client.websocket_connect(f"/api/v1/notifications/ws?user_id={user.id}&permission=granted") as ws:
            assert ws.receive_json() == {"event": "subscribed", "userId": str(user.id)}

            db = session_factory()
            submit(db, NotificationType.MESSAGE, UserTarget(user_id=user.id), MessageIn(title="Hi", body="B"), SYSTEM)
            db.commit()
            db.close()

            frame = ws.receive_json()
            assert frame["event"] == "notification"
            assert frame["notification"]["title"] == "Hi"
            assert frame["display"]["title"] == "Hi"

    def test_permission_and_ping(self, client):
        user_id = uuid.uuid4()
        with client.websocket_connect(f"/api/v1/notifications/ws?user_id={user_id}") as ws:
            ws.receive_json()
            ws.send_json({"action": "permission", "value": "granted"})
            assert ws.receive_json() == {"event": "permission", "granted": True}
            ws.send_json({"action": "ping"})
            assert ws.receive_json() == {"event": "pong"}
            ws.send_json({"action": "dance"})
            assert ws.receive_json() == {"event": "error", "error": "Unknown action"}

    def test_mark_read_over_socket(self, client, db_session, make_user):
        user = make_user()
        result = submit(
            db_session, NotificationType.MESSAGE, UserTarget(user_id=user.id), MessageIn(title="Hi", body="B"), SYSTEM
        )
        db_session.commit()
        notification_id = result.recipients[0].notification_id

        with client.websocket_connect(f"/api/v1/notifications/ws?user_id={user.id}") as ws:
            ws.receive_json()
            ws.send_json({"action": "read", "notificationId": str(notification_id)})
            assert ws.receive_json() == {"event": "read", "notificationId": str(notification_id)}
            ws.send_json({"action": "read", "notificationId": str(uuid.uuid4())})
            assert ws.receive_json() == {"event": "error", "error": "Notification not found"}

        db_session.expire_all()
        assert db_session.query(NotificationRecord).one().is_read is True

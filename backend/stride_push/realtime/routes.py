"""Realtime notification channel (WebSocket)."""

import asyncio
import logging
from uuid import UUID

from fastapi import APIRouter, WebSocket, WebSocketDisconnect
from starlette.concurrency import run_in_threadpool

from ..database.base import SessionLocal
from ..notifications.service import mark_read
from .notifier import Subscription

logger = logging.getLogger(__name__)

router = APIRouter(tags=["realtime"])


def _mark_read_sync(session_factory, notification_id: UUID, recipient_id: UUID) -> bool:
    db = session_factory()
    try:
        record = mark_read(db, notification_id, recipient_id)
        if record is None:
            return False
        db.commit()
        return True
    finally:
        db.close()


async def _pump_events(websocket: WebSocket, subscription: Subscription) -> None:
    while True:
        frame = await subscription.next_frame()
        await websocket.send_json(frame)


async def _handle_client_frames(websocket: WebSocket, subscription: Subscription) -> None:
    session_factory = getattr(websocket.app.state, "session_factory", SessionLocal)
    while True:
        message = await websocket.receive_json()
        action = message.get("action") if isinstance(message, dict) else None

        if action == "permission":
            subscription.permission_granted = message.get("value") == "granted"
            await websocket.send_json({"event": "permission", "granted": subscription.permission_granted})
        elif action == "read":
            try:
                notification_id = UUID(str(message.get("notificationId")))
            except ValueError:
                await websocket.send_json({"event": "error", "error": "Invalid notificationId"})
                continue
            ok = await run_in_threadpool(_mark_read_sync, session_factory, notification_id, subscription.recipient_id)
            if ok:
                await websocket.send_json({"event": "read", "notificationId": str(notification_id)})
            else:
                await websocket.send_json({"event": "error", "error": "Notification not found"})
        elif action == "ping":
            await websocket.send_json({"event": "pong"})
        else:
            await websocket.send_json({"event": "error", "error": "Unknown action"})


@router.websocket("/notifications/ws")
async def notifications_socket(websocket: WebSocket, user_id: UUID, permission: str = "default"):
    notifier = websocket.app.state.notifier
    await websocket.accept()
    subscription = notifier.subscribe(user_id, permission_granted=permission == "granted")
    await websocket.send_json({"event": "subscribed", "userId": str(user_id)})

    tasks = [
        asyncio.create_task(_pump_events(websocket, subscription)),
        asyncio.create_task(_handle_client_frames(websocket, subscription)),
    ]
    try:
        done, _ = await asyncio.wait(tasks, return_when=asyncio.FIRST_COMPLETED)
        for task in done:
            exc = task.exception()
            if exc is not None and not isinstance(exc, WebSocketDisconnect):
                logger.error("Realtime session for %s failed: %s", user_id, exc)
    finally:
        for task in tasks:
            task.cancel()
        notifier.unsubscribe(subscription)

"""Notification API routes."""

from uuid import UUID

from fastapi import APIRouter, Depends, Query, Request
from fastapi.responses import JSONResponse
from sqlalchemy.orm import Session

from ..config import settings
from ..database.base import get_db
from ..dependencies import get_cache, get_processor
from ..integrations.cache import CacheService
from ..rate_limit import limiter
from .schemas import NotificationResponse, ReadRequest, SubmitRequest
from .service import build_status, list_for_recipient, mark_read, submit

router = APIRouter(tags=["notifications"])

_STATUS_CACHE_KEY = "notifications:status"


@router.post("/notifications")
@limiter.limit(settings.rate_limit_submit)
def submit_notification(
    request: Request,
    payload: SubmitRequest,
    db: Session = Depends(get_db),
    cache: CacheService = Depends(get_cache),
):
    result = submit(db, payload.type, payload.target, payload.message, payload.caller_identity)
    db.commit()
    cache.delete(_STATUS_CACHE_KEY)
    return JSONResponse({"success": True, "result": result.model_dump(mode="json", by_alias=True)})


@router.get("/notifications/status")
def notification_status(
    db: Session = Depends(get_db),
    cache: CacheService = Depends(get_cache),
    processor=Depends(get_processor),
):
    cached = cache.get_json(_STATUS_CACHE_KEY)
    if cached is not None:
        return JSONResponse(cached)

    status = {"status": "ok", **build_status(db, processor)}
    cache.set_json(_STATUS_CACHE_KEY, status, settings.status_cache_ttl)
    return JSONResponse(status)


@router.get("/notifications")
def list_notifications(
    user_id: UUID,
    limit: int = Query(20, ge=1, le=100),
    db: Session = Depends(get_db),
):
    records = list_for_recipient(db, user_id, limit)
    return JSONResponse(
        {
            "notifications": [
                NotificationResponse.model_validate(r).model_dump(mode="json", by_alias=True) for r in records
            ],
            "unreadCount": sum(1 for r in records if not r.is_read),
        }
    )


@router.post("/notifications/{notification_id}/read")
def read_notification(
    notification_id: UUID,
    payload: ReadRequest | None = None,
    db: Session = Depends(get_db),
):
    record = mark_read(db, notification_id, payload.user_id if payload else None)
    if not record:
        return JSONResponse({"success": False, "error": "Notification not found"}, status_code=404)
    db.commit()
    return JSONResponse({"success": True, "id": str(record.id), "isRead": True})

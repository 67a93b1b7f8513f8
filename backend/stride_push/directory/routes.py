"""Device token registration routes."""

from fastapi import APIRouter, Depends
from fastapi.responses import JSONResponse
from sqlalchemy.orm import Session

from ..database.base import get_db
from .schemas import DeviceRegisterRequest
from .service import register_device_token

router = APIRouter(tags=["devices"])


@router.post("/devices")
def register_device(payload: DeviceRegisterRequest, db: Session = Depends(get_db)):
    device = register_device_token(db, payload.user_id, payload.token, payload.platform)
    db.commit()
    return JSONResponse(
        {
            "success": True,
            "device": {
                "id": str(device.id),
                "userId": str(device.user_id),
                "token": device.token,
                "platform": device.platform,
            },
        }
    )

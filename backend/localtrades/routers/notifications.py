from fastapi import APIRouter, Depends, HTTPException, Query

from localtrades.auth import require_authenticated_user
from localtrades.models import DeviceTokenRegisterRequest, NotificationRecord
from localtrades.services.notification_store import notification_store

router = APIRouter(prefix="/notifications", tags=["notifications"])


@router.get("", response_model=list[NotificationRecord])
def list_notifications(
    unread_only: bool = Query(default=False),
    user_id: str = Depends(require_authenticated_user),
):
    return notification_store.list_for_user(user_id=user_id, unread_only=unread_only)


@router.post("/register-device", response_model=dict)
def register_device(
    payload: DeviceTokenRegisterRequest,
    user_id: str = Depends(require_authenticated_user),
):
    notification_store.register_device_token(user_id=user_id, device_token=payload.device_token)
    return {"status": "ok"}


@router.post("/{notification_id}/read", response_model=NotificationRecord)
def mark_notification_read(
    notification_id: str,
    user_id: str = Depends(require_authenticated_user),
):
    updated = notification_store.mark_read(user_id=user_id, notification_id=notification_id)
    if not updated:
        raise HTTPException(status_code=404, detail="Notification not found")
    return updated


@router.get("/unread-count", response_model=dict)
def unread_count(user_id: str = Depends(require_authenticated_user)):
    return {"unread": notification_store.unread_count(user_id)}


@router.post("/read-all", response_model=dict)
def mark_all_read(user_id: str = Depends(require_authenticated_user)):
    return {"marked_read": notification_store.mark_all_read(user_id)}

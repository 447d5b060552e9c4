import uuid
from typing import List

from fastapi import APIRouter, Depends, Query
from sqlalchemy.orm import Session

from ..db import get_db
from ..auth.security import Caller, get_current_user
from ..schemas.notifications import NotificationResponse
from ..services import notifications as notifier
from ..services.errors import NotFound

router = APIRouter(prefix="/notifications", tags=["notifications"])


@router.get("", response_model=List[NotificationResponse])
def list_notifications(
    unread_only: bool = False,
    limit: int = Query(50, ge=1, le=200),
    db: Session = Depends(get_db),
    caller: Caller = Depends(get_current_user),
):
    return notifier.list_notifications(db, caller.id, unread_only=unread_only, limit=limit)


@router.post("/read-all")
def mark_all_read(db: Session = Depends(get_db), caller: Caller = Depends(get_current_user)):
    return {"updated": notifier.mark_read(db, caller.id)}


@router.post("/{notification_id}/read")
def mark_read(notification_id: uuid.UUID, db: Session = Depends(get_db), caller: Caller = Depends(get_current_user)):
    updated = notifier.mark_read(db, caller.id, notification_id)
    if not updated and not notifier.owns(db, caller.id, notification_id):
        raise NotFound("Notification not found")
    return {"updated": updated}

"""
Notification service.
Fire-and-forget messages to a recipient; never part of the business transaction.
"""
import uuid
from datetime import datetime, timezone
from typing import Iterable, List, Optional

from sqlalchemy.orm import Session

from ..config import settings
from ..models.models import Notification


def should_send_notification(recipient_id: Optional[uuid.UUID]) -> bool:
    if not settings.enable_notifications:
        return False
    return recipient_id is not None


def notify(db: Session, recipient_id: uuid.UUID, message: str) -> Optional[Notification]:
    """
    Queue a message for a recipient.

    Returns the Notification row, or None when notifications are disabled.
    The caller commits.
    """
    if not should_send_notification(recipient_id):
        return None
    notification = Notification(recipient_id=recipient_id, message=message)
    db.add(notification)
    db.flush()
    return notification


def notify_many(db: Session, recipient_ids: Iterable[uuid.UUID], message: str) -> List[Notification]:
    created = []
    for recipient_id in dict.fromkeys(recipient_ids):
        row = notify(db, recipient_id, message)
        if row is not None:
            created.append(row)
    return created


def list_notifications(db: Session, recipient_id: uuid.UUID, unread_only: bool = False, limit: int = 50) -> List[Notification]:
    query = db.query(Notification).filter(Notification.recipient_id == recipient_id)
    if unread_only:
        query = query.filter(Notification.is_read.is_(False))
    return query.order_by(Notification.created_at.desc()).limit(limit).all()


def mark_read(db: Session, recipient_id: uuid.UUID, notification_id: Optional[uuid.UUID] = None) -> int:
    query = db.query(Notification).filter(
        Notification.recipient_id == recipient_id,
        Notification.is_read.is_(False),
    )
    if notification_id is not None:
        query = query.filter(Notification.id == notification_id)
    count = query.update(
        {Notification.is_read: True, Notification.read_at: datetime.now(timezone.utc)},
        synchronize_session=False,
    )
    db.commit()
    return count


def owns(db: Session, recipient_id: uuid.UUID, notification_id: uuid.UUID) -> bool:
    return db.query(Notification.id).filter(
        Notification.id == notification_id,
        Notification.recipient_id == recipient_id,
    ).first() is not None

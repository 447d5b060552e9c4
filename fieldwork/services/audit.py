"""
Activity log service.
Append-only log with integrity hashing.
"""
import hashlib
import json
from datetime import datetime, timezone
from typing import Optional
from sqlalchemy.orm import Session

from ..models.models import ActivityLog
from ..config import settings


def compute_integrity_hash(payload: dict, secret: Optional[str] = None) -> Optional[str]:
    secret = settings.jwt_secret if secret is None else secret
    if not secret:
        return None
    canonical = {k: v for k, v in payload.items() if v is not None}
    canonical_json = json.dumps(canonical, sort_keys=True, default=str)
    return hashlib.sha256(f"{canonical_json}:{secret}".encode()).hexdigest()


def record(
    db: Session,
    actor_id,
    action: str,
    description: str,
    entity_type: Optional[str] = None,
    entity_id=None,
) -> ActivityLog:
    """
    Append an activity entry.

    Args:
        db: Database session (the caller commits)
        actor_id: Profile ID who performed the action
        action: Short action label, e.g. "Complete Job"
        description: Human readable description
        entity_type: job|report|loan|extension|item
        entity_id: ID of the entity acted upon

    Returns:
        Created ActivityLog object
    """
    timestamp_utc = datetime.now(timezone.utc)
    entity_id = str(entity_id) if entity_id is not None else None
    integrity_hash = compute_integrity_hash({
        "actor_id": str(actor_id) if actor_id else None,
        "action": action,
        "description": description,
        "entity_type": entity_type,
        "entity_id": entity_id,
        "timestamp_utc": timestamp_utc.isoformat(),
    })
    entry = ActivityLog(
        actor_id=actor_id,
        action=action,
        description=description,
        entity_type=entity_type,
        entity_id=entity_id,
        timestamp_utc=timestamp_utc,
        integrity_hash=integrity_hash,
    )
    db.add(entry)
    db.flush()
    return entry


def get_activity(
    db: Session,
    entity_type: Optional[str] = None,
    entity_id: Optional[str] = None,
    actor_id=None,
    limit: int = 100,
    offset: int = 0,
) -> list:
    query = db.query(ActivityLog)
    if entity_type:
        query = query.filter(ActivityLog.entity_type == entity_type)
    if entity_id:
        query = query.filter(ActivityLog.entity_id == str(entity_id))
    if actor_id:
        query = query.filter(ActivityLog.actor_id == actor_id)
    return query.order_by(ActivityLog.timestamp_utc.desc()).limit(limit).offset(offset).all()

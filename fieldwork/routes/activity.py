import uuid
from typing import List, Optional

from fastapi import APIRouter, Depends, Query
from sqlalchemy.orm import Session

from ..db import get_db
from ..auth.security import Caller, get_current_user
from ..schemas.notifications import ActivityResponse
from ..services import audit
from ..services.permissions import authorize

router = APIRouter(prefix="/activity", tags=["activity"])


@router.get("", response_model=List[ActivityResponse])
def list_activity(
    entity_type: Optional[str] = None,
    entity_id: Optional[str] = None,
    actor_id: Optional[uuid.UUID] = None,
    limit: int = Query(100, ge=1, le=500),
    offset: int = Query(0, ge=0),
    db: Session = Depends(get_db),
    caller: Caller = Depends(get_current_user),
):
    authorize(db, caller, "activity.list")
    return audit.get_activity(
        db,
        entity_type=entity_type,
        entity_id=entity_id,
        actor_id=actor_id,
        limit=limit,
        offset=offset,
    )

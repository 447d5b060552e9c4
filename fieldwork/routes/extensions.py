import uuid
from typing import List, Optional

from fastapi import APIRouter, Depends
from sqlalchemy.orm import Session

from ..db import get_db
from ..auth.security import Caller, get_current_user
from ..models.enums import ExtensionStatus
from ..schemas.extensions import ExtensionCreate, ExtensionResolve, ExtensionResolved, ExtensionResponse
from ..services import extensions as tracker


router = APIRouter(tags=["extensions"])


@router.post("/jobs/{job_id}/extensions", response_model=ExtensionResponse, status_code=201)
def request_extension(
    job_id: uuid.UUID,
    payload: ExtensionCreate,
    db: Session = Depends(get_db),
    caller: Caller = Depends(get_current_user),
):
    return tracker.request_extension(db, caller, job_id, payload)


@router.get("/extensions", response_model=List[ExtensionResponse])
def list_extensions(
    job_id: Optional[uuid.UUID] = None,
    status: Optional[ExtensionStatus] = ExtensionStatus.pending,
    db: Session = Depends(get_db),
    caller: Caller = Depends(get_current_user),
):
    return tracker.list_extensions(db, caller, job_id=job_id, status=status)


@router.post("/extensions/{request_id}/resolve", response_model=ExtensionResolved)
def resolve_extension(
    request_id: uuid.UUID,
    body: ExtensionResolve,
    db: Session = Depends(get_db),
    caller: Caller = Depends(get_current_user),
):
    req, new_end_date = tracker.resolve_extension(
        db, caller, request_id, body.decision, note=body.note, rejection_reason=body.rejection_reason
    )
    return {"request": ExtensionResponse.model_validate(req), "end_date": new_end_date}

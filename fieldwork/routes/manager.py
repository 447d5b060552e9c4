import uuid
from typing import List

from fastapi import APIRouter, Depends
from sqlalchemy.orm import Session

from ..db import get_db
from ..auth.security import Caller, get_current_user
from ..schemas.jobs import JobSummary, ManagerDecision
from ..services import assignment
from .jobs import serialize_job


router = APIRouter(prefix="/manager", tags=["manager"])


@router.get("/jobs/awaiting", response_model=List[JobSummary])
def list_awaiting_validation(db: Session = Depends(get_db), caller: Caller = Depends(get_current_user)):
    return [serialize_job(j) for j in assignment.list_awaiting_validation(db, caller)]


@router.post("/jobs/{job_id}/validate")
def final_validate(
    job_id: uuid.UUID,
    body: ManagerDecision,
    db: Session = Depends(get_db),
    caller: Caller = Depends(get_current_user),
):
    job = assignment.manager_final_validate(db, caller, job_id, body.decision, body.note)
    return serialize_job(job, detail=True)

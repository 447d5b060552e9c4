import uuid
from typing import Any, Dict, List, Optional

from fastapi import APIRouter, Depends, Query
from sqlalchemy.orm import Session

from ..config import settings
from ..db import get_db
from ..auth.security import Caller, get_current_user
from ..models.enums import JobCategory, JobStatus
from ..models.models import EquipmentLoan, Job
from ..schemas.equipment import EquipmentReturn
from ..schemas.jobs import (
    EquipmentAssign,
    JobCreate,
    JobDetail,
    JobList,
    JobSummary,
    JobUpdate,
    LoanResponse,
    TechnicianAssign,
)
from ..schemas.reports import ReportResponse
from ..services import assignment, inventory
from ..services.validation import readiness


router = APIRouter(prefix="/jobs", tags=["jobs"])


def serialize_loan(loan: EquipmentLoan) -> Dict[str, Any]:
    return LoanResponse(
        id=loan.id,
        job_id=loan.job_id,
        item_id=loan.item_id,
        item_name=loan.item.name if loan.item else None,
        quantity=loan.quantity,
        outstanding=loan.outstanding,
        is_returned=bool(loan.is_returned),
        returned_at=loan.returned_at,
        pickup_photo_url=loan.pickup_photo_url,
        return_photo_url=loan.return_photo_url,
    ).model_dump()


def serialize_job(job: Job, detail: bool = False) -> Dict[str, Any]:
    base = {
        "id": job.id,
        "title": job.title,
        "category": job.category,
        "report_frequency": job.report_frequency,
        "status": job.status,
        "supervisor_id": job.supervisor_id,
        "location": {"latitude": job.latitude, "longitude": job.longitude},
        "start_date": job.start_date,
        "end_date": job.end_date,
        "is_extended": bool(job.is_extended),
        "technician_count": len(job.technicians),
        "open_loan_count": sum(1 for loan in job.loans if not loan.is_returned),
        "created_at": job.created_at,
    }
    if not detail:
        return JobSummary(**base).model_dump()

    reports = sorted(job.reports, key=lambda r: (r.report_date, r.created_at), reverse=True)
    return JobDetail(
        **base,
        manager_id=job.manager_id,
        manager_note=job.manager_note,
        manager_validated_at=job.manager_validated_at,
        completed_at=job.completed_at,
        technicians=[
            {
                "technician_id": link.technician_id,
                "name": link.technician.name if link.technician else None,
                "assigned_at": link.assigned_at,
            }
            for link in job.technicians
        ],
        loans=[serialize_loan(loan) for loan in job.loans],
        reports=[ReportResponse.model_validate(r).model_dump() for r in reports],
    ).model_dump()


@router.post("", status_code=201)
def create_job(payload: JobCreate, db: Session = Depends(get_db), caller: Caller = Depends(get_current_user)):
    job = assignment.create_job(db, caller, payload)
    return serialize_job(job, detail=True)


@router.get("", response_model=JobList)
def list_jobs(
    status: Optional[JobStatus] = None,
    category: Optional[JobCategory] = None,
    q: Optional[str] = None,
    page: int = Query(1, ge=1),
    limit: Optional[int] = Query(None, ge=1, le=100),
    db: Session = Depends(get_db),
    caller: Caller = Depends(get_current_user),
):
    rows, total = assignment.list_jobs(db, caller, status=status, category=category, search=q, page=page, limit=limit)
    return {
        "data": [serialize_job(j) for j in rows],
        "total": total,
        "page": page,
        "limit": limit or settings.list_page_size,
    }


@router.get("/mine", response_model=List[JobSummary])
def list_my_jobs(
    include_closed: bool = False,
    db: Session = Depends(get_db),
    caller: Caller = Depends(get_current_user),
):
    return [serialize_job(j) for j in assignment.list_my_jobs(db, caller, include_closed=include_closed)]


@router.get("/{job_id}")
def get_job(job_id: uuid.UUID, db: Session = Depends(get_db), caller: Caller = Depends(get_current_user)):
    return serialize_job(assignment.view_job(db, caller, job_id), detail=True)


@router.patch("/{job_id}")
def update_job(
    job_id: uuid.UUID,
    changes: JobUpdate,
    db: Session = Depends(get_db),
    caller: Caller = Depends(get_current_user),
):
    return serialize_job(assignment.update_job(db, caller, job_id, changes), detail=True)


@router.get("/{job_id}/readiness")
def job_readiness(job_id: uuid.UUID, db: Session = Depends(get_db), caller: Caller = Depends(get_current_user)):
    job = assignment.view_job(db, caller, job_id)
    state = readiness(db, job.id)
    return {
        "job_id": str(job.id),
        "status": job.status.value,
        "ready": state.ready,
        "pending_reports": state.pending_count,
        "reason": state.reason(),
    }


# ---------- TECHNICIANS ----------
@router.post("/{job_id}/technicians")
def assign_technicians(
    job_id: uuid.UUID,
    body: TechnicianAssign,
    db: Session = Depends(get_db),
    caller: Caller = Depends(get_current_user),
):
    return assignment.assign_technicians(db, caller, job_id, body.technician_ids)


@router.delete("/{job_id}/technicians/{technician_id}")
def remove_technician(
    job_id: uuid.UUID,
    technician_id: uuid.UUID,
    db: Session = Depends(get_db),
    caller: Caller = Depends(get_current_user),
):
    remaining = assignment.remove_technician(db, caller, job_id, technician_id)
    return {"message": "Technician removed", "remaining": remaining}


# ---------- EQUIPMENT ----------
@router.get("/{job_id}/equipment", response_model=List[LoanResponse])
def list_job_equipment(job_id: uuid.UUID, db: Session = Depends(get_db), caller: Caller = Depends(get_current_user)):
    return [serialize_loan(loan) for loan in inventory.list_job_loans(db, caller, job_id)]


@router.post("/{job_id}/equipment", response_model=List[LoanResponse])
def assign_equipment(
    job_id: uuid.UUID,
    body: EquipmentAssign,
    db: Session = Depends(get_db),
    caller: Caller = Depends(get_current_user),
):
    return [serialize_loan(loan) for loan in assignment.assign_equipment(db, caller, job_id, body.equipment)]


@router.delete("/{job_id}/equipment/{item_id}", response_model=LoanResponse)
def release_equipment(
    job_id: uuid.UUID,
    item_id: uuid.UUID,
    db: Session = Depends(get_db),
    caller: Caller = Depends(get_current_user),
):
    return serialize_loan(assignment.release_equipment(db, caller, job_id, item_id))


@router.post("/{job_id}/equipment/{item_id}/return", response_model=LoanResponse)
def return_equipment(
    job_id: uuid.UUID,
    item_id: uuid.UUID,
    body: EquipmentReturn,
    db: Session = Depends(get_db),
    caller: Caller = Depends(get_current_user),
):
    loan = inventory.return_equipment(db, caller, job_id, item_id, body.photo_url, quantity=body.quantity)
    return serialize_loan(loan)


# ---------- LIFECYCLE ----------
@router.post("/{job_id}/cancel")
def cancel_job(job_id: uuid.UUID, db: Session = Depends(get_db), caller: Caller = Depends(get_current_user)):
    return serialize_job(assignment.cancel_job(db, caller, job_id), detail=True)


@router.post("/{job_id}/archive")
def archive_job(job_id: uuid.UUID, db: Session = Depends(get_db), caller: Caller = Depends(get_current_user)):
    returned = assignment.archive_cancelled_job(db, caller, job_id)
    return {"message": "Job archived", "returned_units": returned}


@router.post("/{job_id}/complete")
def approve_completion(job_id: uuid.UUID, db: Session = Depends(get_db), caller: Caller = Depends(get_current_user)):
    job, returned = assignment.supervisor_approve_completion(db, caller, job_id)
    return {
        "message": "Job completed",
        "returned_units": returned,
        "job": serialize_job(job, detail=True),
    }

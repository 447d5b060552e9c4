import uuid
from typing import List

from fastapi import APIRouter, Depends
from sqlalchemy.orm import Session

from ..db import get_db
from ..auth.security import Caller, get_current_user
from ..schemas.reports import ReportCreate, ReportResponse, ReportSubmitted, ReportValidate, ReportValidated
from ..services import reports as report_store
from ..services.state_machine import get_job


router = APIRouter(tags=["reports"])


@router.post("/jobs/{job_id}/reports", response_model=ReportSubmitted, status_code=201)
def submit_report(
    job_id: uuid.UUID,
    payload: ReportCreate,
    db: Session = Depends(get_db),
    caller: Caller = Depends(get_current_user),
):
    report, meta = report_store.submit_report(db, caller, job_id, payload)
    return {"report": ReportResponse.model_validate(report), **meta}


@router.get("/reports/pending", response_model=List[ReportResponse])
def list_pending_reports(db: Session = Depends(get_db), caller: Caller = Depends(get_current_user)):
    return report_store.list_pending_reports(db, caller)


@router.get("/reports/{report_id}", response_model=ReportResponse)
def get_report(report_id: uuid.UUID, db: Session = Depends(get_db), caller: Caller = Depends(get_current_user)):
    return report_store.get_report(db, caller, report_id)


@router.post("/reports/{report_id}/validate", response_model=ReportValidated)
def validate_report(
    report_id: uuid.UUID,
    body: ReportValidate,
    db: Session = Depends(get_db),
    caller: Caller = Depends(get_current_user),
):
    report, advanced = report_store.validate_report(db, caller, report_id, body.decision, body.note)
    job = get_job(db, report.job_id)
    return {
        "report": ReportResponse.model_validate(report),
        "job_status": job.status.value,
        "advanced_to_manager_validation": advanced,
    }

"""
Completion readiness and the automatic hand-off to manager validation.
"""
import uuid
from dataclasses import dataclass
from typing import List, Optional

from sqlalchemy.orm import Session

from ..models.enums import JobStatus, ProgressStatus, ValidationStatus
from ..models.models import Job, ProgressReport
from .state_machine import transition


@dataclass
class Readiness:
    has_approved_final: bool
    pending_count: int
    latest_rejected: bool

    @property
    def ready(self) -> bool:
        return self.has_approved_final and self.pending_count == 0 and not self.latest_rejected

    def reason(self) -> Optional[str]:
        if self.ready:
            return None
        if not self.has_approved_final:
            return "The final report has not been approved yet"
        if self.pending_count:
            return f"{self.pending_count} report(s) are still waiting for validation"
        return "The latest report was rejected and has not been resubmitted"


def reports_in_order(db: Session, job_id: uuid.UUID) -> List[ProgressReport]:
    return (
        db.query(ProgressReport)
        .filter(ProgressReport.job_id == job_id)
        .order_by(ProgressReport.report_date.asc(), ProgressReport.created_at.asc())
        .all()
    )


def readiness(db: Session, job_id: uuid.UUID) -> Readiness:
    db.flush()
    reports = reports_in_order(db, job_id)
    has_approved_final = any(
        r.progress_status == ProgressStatus.done and r.validation_status == ValidationStatus.approved
        for r in reports
    )
    pending = sum(1 for r in reports if r.validation_status == ValidationStatus.pending)
    latest_rejected = bool(reports) and reports[-1].validation_status == ValidationStatus.rejected
    return Readiness(has_approved_final=has_approved_final, pending_count=pending, latest_rejected=latest_rejected)


def is_ready_for_manager_validation(db: Session, job_id: uuid.UUID) -> bool:
    """
    True iff an approved final report exists, nothing is pending, and the
    most recent report is not a rejection awaiting resubmission.
    """
    return readiness(db, job_id).ready


def advance_if_ready(db: Session, job: Job, actor_id: Optional[uuid.UUID] = None) -> bool:
    """Hand an Active job to the manager once it is ready. Returns True if it moved."""
    if job.status != JobStatus.active:
        return False
    if not is_ready_for_manager_validation(db, job.id):
        return False
    transition(db, job, JobStatus.awaiting_manager_validation, actor_id=actor_id)
    return True

"""
Job lifecycle operations: creation with technicians and equipment,
edits, technician/equipment assignment, cancellation, supervisor completion
and manager final validation.

Every mutating function runs as one UnitOfWork; notifications and activity
entries are queued to run only after the commit.
"""
import uuid
from datetime import date, datetime, timezone
from typing import Dict, Iterable, List, Optional, Tuple

import structlog
from sqlalchemy.orm import Session

from ..auth.security import Caller
from ..config import settings
from ..models.enums import JobStatus, Role, TERMINAL_JOB_STATUSES, frequency_for
from ..models.models import EquipmentLoan, Job, JobTechnician, Profile
from ..schemas.jobs import JobCreate, JobUpdate
from . import audit, equipment_ledger as ledger
from .errors import AlreadyResolved, IllegalTransition, InvalidInput, NotFound
from .geofence import valid_point
from .notifications import notify, notify_many
from .permissions import authorize
from .state_machine import get_job, transition
from .time_rules import local_today
from .unit_of_work import UnitOfWork
from .validation import readiness

logger = structlog.get_logger(__name__)

TITLE_MIN_LENGTH = 3
TITLE_MAX_LENGTH = 150
EQUIPMENT_EDITABLE_STATUSES = {JobStatus.active, JobStatus.awaiting_manager_validation}


def _clean_title(raw: Optional[str]) -> str:
    title = (raw or "").strip()
    if not TITLE_MIN_LENGTH <= len(title) <= TITLE_MAX_LENGTH:
        raise InvalidInput(f"Title must be between {TITLE_MIN_LENGTH} and {TITLE_MAX_LENGTH} characters")
    return title


def _check_location(latitude, longitude) -> None:
    if not valid_point(latitude, longitude):
        raise InvalidInput("Invalid location data")


def _check_dates(start: Optional[date], end: Optional[date]) -> None:
    if start is None:
        raise InvalidInput("Start date is required")
    if end is not None and end < start:
        raise InvalidInput("End date cannot be before the start date")


def _require_active(job: Job, action: str) -> None:
    if job.status != JobStatus.active:
        raise IllegalTransition(f"Can only {action} an active job (status is {job.status.value})")


def _ensure_technicians(db: Session, technician_ids: List[uuid.UUID]) -> None:
    if not technician_ids:
        return
    found = db.query(Profile.id).filter(
        Profile.id.in_(technician_ids),
        Profile.role == Role.technician,
        Profile.is_active.is_(True),
        Profile.is_deleted.is_(False),
    ).count()
    if found != len(technician_ids):
        raise InvalidInput(
            "Some technicians not found or inactive",
            found=found,
            requested=len(technician_ids),
        )


def _equipment_lines(lines) -> List[Tuple[uuid.UUID, int]]:
    return [(line.item_id, line.quantity) for line in lines]


def create_job(db: Session, caller: Caller, payload: JobCreate) -> Job:
    """
    Create a job, link its technicians and reserve its equipment in one unit.
    If any reservation fails nothing is kept: no job, no links, no stock moved.
    """
    authorize(db, caller, "job.create")
    title = _clean_title(payload.title)
    _check_location(payload.location.latitude, payload.location.longitude)
    _check_dates(payload.start_date, payload.end_date)
    technician_ids = list(dict.fromkeys(payload.technician_ids))
    _ensure_technicians(db, technician_ids)
    lines = ledger.normalize_lines(_equipment_lines(payload.equipment))

    with UnitOfWork(db, "create_job") as uow:
        job = Job(
            title=title,
            category=payload.category,
            report_frequency=frequency_for(payload.category, payload.report_frequency),
            supervisor_id=caller.id,
            latitude=payload.location.latitude,
            longitude=payload.location.longitude,
            start_date=payload.start_date,
            end_date=payload.end_date,
            status=JobStatus.active,
            is_extended=False,
        )
        db.add(job)
        db.flush()
        for technician_id in technician_ids:
            db.add(JobTechnician(job_id=job.id, technician_id=technician_id))
        ledger.reserve_all(db, job.id, lines.items(), borrower_id=caller.id)

        job_id = job.id
        uow.after_commit(
            notify_many,
            technician_ids,
            f'You have been assigned to "{title}" ({payload.category.value}). '
            f"Start date: {payload.start_date.isoformat()}.",
        )
        uow.after_commit(audit.record, caller.id, "Create Job", f'Job "{title}" created', "job", job_id)

    logger.info("job_created", job_id=str(job_id), technicians=len(technician_ids), equipment_lines=len(lines))
    return get_job(db, job_id)


def update_job(db: Session, caller: Caller, job_id: uuid.UUID, changes: JobUpdate) -> Job:
    job = get_job(db, job_id)
    authorize(db, caller, "job.update", job)
    _require_active(job, "edit")
    data = changes.model_dump(exclude_unset=True)
    if not data:
        raise InvalidInput("No valid fields to update")

    start = data.get("start_date", job.start_date)
    end = data.get("end_date", job.end_date)
    if "end_date" in data and end is not None and end < local_today():
        raise InvalidInput("End date cannot be in the past")
    _check_dates(start, end)

    with UnitOfWork(db, "update_job") as uow:
        if "title" in data:
            job.title = _clean_title(data["title"])
        if data.get("location") is not None:
            location = data["location"]
            _check_location(location["latitude"], location["longitude"])
            job.latitude = location["latitude"]
            job.longitude = location["longitude"]
        if data.get("category") is not None:
            job.category = changes.category
            if data.get("report_frequency") is None:
                job.report_frequency = frequency_for(changes.category)
        if data.get("report_frequency") is not None:
            job.report_frequency = changes.report_frequency
        if "start_date" in data:
            job.start_date = start
        if "end_date" in data:
            job.end_date = end
        uow.after_commit(audit.record, caller.id, "Update Job", f'Job "{job.title}" updated', "job", job.id)
    return get_job(db, job_id)


def assign_technicians(db: Session, caller: Caller, job_id: uuid.UUID, technician_ids: Iterable[uuid.UUID]) -> Dict[str, int]:
    job = get_job(db, job_id)
    authorize(db, caller, "job.assign_technicians", job)
    _require_active(job, "assign technicians to")
    requested = list(dict.fromkeys(technician_ids))
    if not requested:
        raise InvalidInput("At least one technician is required")
    _ensure_technicians(db, requested)

    existing = set(job.technician_ids)
    new_ids = [t for t in requested if t not in existing]
    with UnitOfWork(db, "assign_technicians") as uow:
        for technician_id in new_ids:
            db.add(JobTechnician(job_id=job.id, technician_id=technician_id))
        if new_ids:
            uow.after_commit(notify_many, new_ids, f'You have been assigned to "{job.title}".')
            uow.after_commit(
                audit.record, caller.id, "Assign Technicians",
                f"{len(new_ids)} technician(s) assigned to job {job.id}", "job", job.id,
            )
    return {"assigned": len(new_ids), "skipped": len(requested) - len(new_ids)}


def remove_technician(db: Session, caller: Caller, job_id: uuid.UUID, technician_id: uuid.UUID) -> int:
    job = get_job(db, job_id)
    authorize(db, caller, "job.remove_technician", job)
    _require_active(job, "remove technicians from")
    link = db.query(JobTechnician).filter(
        JobTechnician.job_id == job.id,
        JobTechnician.technician_id == technician_id,
    ).first()
    if link is None:
        raise NotFound("Technician is not assigned to this job")

    with UnitOfWork(db, "remove_technician") as uow:
        db.delete(link)
        uow.after_commit(notify, technician_id, f'You have been removed from "{job.title}".')
        uow.after_commit(
            audit.record, caller.id, "Remove Technician",
            f"Technician {technician_id} removed from job {job.id}", "job", job.id,
        )
    return db.query(JobTechnician).filter(JobTechnician.job_id == job_id).count()


def assign_equipment(db: Session, caller: Caller, job_id: uuid.UUID, lines) -> List[EquipmentLoan]:
    job = get_job(db, job_id)
    authorize(db, caller, "job.assign_equipment", job)
    if job.status not in EQUIPMENT_EDITABLE_STATUSES:
        raise IllegalTransition("Can only assign equipment to an active or awaiting-validation job")
    merged = ledger.normalize_lines(_equipment_lines(lines))
    if not merged:
        raise InvalidInput("At least one equipment line is required")

    with UnitOfWork(db, "assign_equipment") as uow:
        loans = ledger.reserve_all(db, job.id, merged.items(), borrower_id=caller.id)
        loan_ids = [loan.id for loan in loans]
        uow.after_commit(
            audit.record, caller.id, "Assign Equipment",
            f"{len(merged)} equipment line(s) assigned to job {job.id}", "job", job.id,
        )
    return [db.get(EquipmentLoan, loan_id) for loan_id in loan_ids]


def release_equipment(db: Session, caller: Caller, job_id: uuid.UUID, item_id: uuid.UUID) -> EquipmentLoan:
    """Supervisor takes an item back off a job; the whole outstanding quantity returns to stock."""
    job = get_job(db, job_id, include_deleted=True)
    authorize(db, caller, "job.release_equipment", job)
    loan = ledger.open_loan(db, job.id, item_id)
    if loan is None:
        raise NotFound("Equipment loan not found")

    with UnitOfWork(db, "release_equipment") as uow:
        qty = loan.outstanding
        loan = ledger.return_partial(db, loan.id, qty)
        loan_id = loan.id
        uow.after_commit(
            audit.record, caller.id, "Release Equipment",
            f"{qty} unit(s) of equipment {item_id} released from job {job.id}", "loan", loan_id,
        )
    return db.get(EquipmentLoan, loan_id)


def cancel_job(db: Session, caller: Caller, job_id: uuid.UUID) -> Job:
    """
    Cancel an active job. Outstanding equipment stays on loan; it is returned
    by release_equipment or archive_cancelled_job.
    """
    job = get_job(db, job_id)
    authorize(db, caller, "job.cancel", job)
    with UnitOfWork(db, "cancel_job") as uow:
        transition(db, job, JobStatus.cancelled, actor_id=caller.id)
        uow.after_commit(notify_many, job.technician_ids, f'Job "{job.title}" has been cancelled.')
        uow.after_commit(audit.record, caller.id, "Cancel Job", f'Job "{job.title}" cancelled', "job", job.id)
    return get_job(db, job_id)


def archive_cancelled_job(db: Session, caller: Caller, job_id: uuid.UUID) -> int:
    """Administrative cleanup of a cancelled job. Returns the number of units credited back."""
    job = get_job(db, job_id)
    authorize(db, caller, "job.archive", job)
    if job.status != JobStatus.cancelled:
        raise IllegalTransition("Only cancelled jobs can be archived")

    with UnitOfWork(db, "archive_cancelled_job") as uow:
        returned = ledger.force_return_all_outstanding(db, job.id)
        job.is_deleted = True
        job.deleted_at = datetime.now(timezone.utc)
        uow.after_commit(
            audit.record, caller.id, "Archive Job",
            f'Job "{job.title}" archived, {returned} unit(s) returned to stock', "job", job.id,
        )
    return returned


def supervisor_approve_completion(db: Session, caller: Caller, job_id: uuid.UUID) -> Tuple[Job, int]:
    """
    Close an active job once every report is approved. Outstanding equipment
    is returned to stock as part of the same unit.
    """
    job = get_job(db, job_id)
    authorize(db, caller, "job.approve_completion", job)
    if job.status == JobStatus.completed:
        raise AlreadyResolved("Job already completed")
    _require_active(job, "complete")
    state = readiness(db, job.id)
    if not state.ready:
        raise IllegalTransition(
            "Cannot complete the job. Make sure every report is approved and none is rejected. "
            + state.reason()
        )

    with UnitOfWork(db, "supervisor_approve_completion") as uow:
        transition(db, job, JobStatus.completed, actor_id=caller.id, completed_at=datetime.now(timezone.utc))
        returned = ledger.force_return_all_outstanding(db, job.id)
        uow.after_commit(
            audit.record, caller.id, "Complete Job",
            f'Job "{job.title}" (ID: {job.id}) completed', "job", job.id,
        )
        uow.after_commit(
            notify_many, job.technician_ids,
            f'Job "{job.title}" has been completed and approved by the supervisor',
        )
    logger.info("job_completed", job_id=str(job_id), returned_units=returned)
    return get_job(db, job_id), returned


MANAGER_DECISIONS = {
    "completed": JobStatus.completed,
    "rejected": JobStatus.rejected,
}


def manager_final_validate(
    db: Session,
    caller: Caller,
    job_id: uuid.UUID,
    decision: str,
    note: Optional[str] = None,
) -> Job:
    authorize(db, caller, "job.final_validate")
    target = MANAGER_DECISIONS.get(str(getattr(decision, "value", decision) or "").strip().lower())
    if target is None:
        raise InvalidInput("Decision must be Completed or Rejected")
    job = get_job(db, job_id)
    if job.status in (JobStatus.completed, JobStatus.rejected):
        raise AlreadyResolved(f"Job has already been resolved as {job.status.value}")
    if job.status != JobStatus.awaiting_manager_validation:
        raise IllegalTransition(f"Job is not awaiting manager validation (status is {job.status.value})")

    now = datetime.now(timezone.utc)
    fields = {"manager_id": caller.id, "manager_note": note or None, "manager_validated_at": now}
    if target == JobStatus.completed:
        fields["completed_at"] = now

    with UnitOfWork(db, "manager_final_validate") as uow:
        transition(db, job, target, actor_id=caller.id, **fields)
        returned = 0
        if target == JobStatus.completed:
            returned = ledger.force_return_all_outstanding(db, job.id)
        verdict = "approved" if target == JobStatus.completed else "rejected"
        uow.after_commit(
            notify_many, [job.supervisor_id, *job.technician_ids],
            f'Job "{job.title}" has been {verdict} by the manager',
        )
        uow.after_commit(
            audit.record, caller.id, "Manager Validation",
            f'Job "{job.title}" {verdict} by manager; {returned} unit(s) returned', "job", job.id,
        )
    return get_job(db, job_id)


# ---------- QUERIES ----------

def view_job(db: Session, caller: Caller, job_id: uuid.UUID) -> Job:
    job = get_job(db, job_id)
    authorize(db, caller, "job.view", job)
    return job


def list_jobs(
    db: Session,
    caller: Caller,
    status: Optional[JobStatus] = None,
    category=None,
    search: Optional[str] = None,
    page: int = 1,
    limit: Optional[int] = None,
) -> Tuple[List[Job], int]:
    authorize(db, caller, "job.list")
    limit = limit or settings.list_page_size
    page = max(page, 1)
    query = db.query(Job).filter(Job.supervisor_id == caller.id, Job.is_deleted.is_(False))
    if status:
        query = query.filter(Job.status == status)
    if category:
        query = query.filter(Job.category == category)
    if search:
        query = query.filter(Job.title.ilike(f"%{search}%"))
    total = query.count()
    rows = query.order_by(Job.created_at.desc()).offset((page - 1) * limit).limit(limit).all()
    return rows, total


def list_my_jobs(db: Session, caller: Caller, include_closed: bool = False) -> List[Job]:
    authorize(db, caller, "job.list_mine")
    query = (
        db.query(Job)
        .join(JobTechnician, JobTechnician.job_id == Job.id)
        .filter(JobTechnician.technician_id == caller.id, Job.is_deleted.is_(False))
    )
    if not include_closed:
        query = query.filter(Job.status.notin_(list(TERMINAL_JOB_STATUSES)))
    return query.order_by(Job.start_date.desc()).all()


def list_awaiting_validation(db: Session, caller: Caller) -> List[Job]:
    authorize(db, caller, "job.list_awaiting")
    return (
        db.query(Job)
        .filter(Job.status == JobStatus.awaiting_manager_validation, Job.is_deleted.is_(False))
        .order_by(Job.updated_at.asc())
        .all()
    )

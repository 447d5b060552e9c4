"""
Deadline extension requests raised by technicians when an obstacle blocks
the work, and their resolution by the job's supervisor.
"""
import uuid
from datetime import date, datetime, timezone
from typing import List, Optional, Tuple

import structlog
from sqlalchemy import update
from sqlalchemy.orm import Session

from ..auth.security import Caller
from ..config import settings
from ..models.enums import ExtensionStatus, JobStatus, ObstacleType
from ..models.models import ExtensionRequest, Job
from ..schemas.extensions import ExtensionCreate
from . import audit
from .errors import AlreadyResolved, IllegalTransition, InvalidInput, NotFound
from .notifications import notify
from .permissions import authorize
from .state_machine import get_job
from .time_rules import extended_end_date
from .unit_of_work import UnitOfWork

logger = structlog.get_logger(__name__)

EXTENSION_DECISIONS = {
    "approve": ExtensionStatus.approved,
    "approved": ExtensionStatus.approved,
    "reject": ExtensionStatus.rejected,
    "rejected": ExtensionStatus.rejected,
}
DEFAULT_REJECTION_REASON = "Not approved"


def _check_duration(duration_minutes: Optional[int]) -> int:
    max_minutes = settings.max_extension_minutes
    if duration_minutes is None or isinstance(duration_minutes, bool) or duration_minutes < 1:
        raise InvalidInput("Extension duration must be at least 1 minute")
    if duration_minutes > max_minutes:
        raise InvalidInput(f"Extension duration may be at most {max_minutes // 1440} days")
    return duration_minutes


def request_extension(db: Session, caller: Caller, job_id: uuid.UUID, payload: ExtensionCreate) -> ExtensionRequest:
    job = get_job(db, job_id)
    authorize(db, caller, "extension.request", job)
    if job.status != JobStatus.active:
        raise IllegalTransition("Extensions can only be requested for active jobs")
    reason = (payload.reason or "").strip()
    if not reason:
        raise InvalidInput("A reason is required")
    duration = _check_duration(payload.duration_minutes)
    obstacle = ObstacleType.coerce(payload.obstacle_type)

    with UnitOfWork(db, "request_extension") as uow:
        req = ExtensionRequest(
            job_id=job.id,
            requester_id=caller.id,
            reason=reason,
            photo_url=payload.photo_url or None,
            duration_minutes=duration,
            obstacle_type=obstacle,
            previous_end_date=job.end_date,
            status=ExtensionStatus.pending,
        )
        db.add(req)
        db.flush()
        req_id = req.id
        uow.after_commit(
            notify, job.supervisor_id,
            f'Extension requested for "{job.title}" ({obstacle.value}, {duration} minutes)',
        )
        uow.after_commit(
            audit.record, caller.id, "Request Extension",
            f'Extension of {duration} minutes requested for "{job.title}"', "extension", req_id,
        )

    logger.info("extension_requested", job_id=str(job_id), request_id=str(req_id), minutes=duration)
    return db.get(ExtensionRequest, req_id)


def resolve_extension(
    db: Session,
    caller: Caller,
    request_id: uuid.UUID,
    decision: str,
    note: Optional[str] = None,
    rejection_reason: Optional[str] = None,
) -> Tuple[ExtensionRequest, Optional[date]]:
    """
    Approve or reject a Pending request. Approval pushes the job's end date
    by the requested duration rounded up to whole days.
    """
    req = db.get(ExtensionRequest, request_id, populate_existing=True)
    if req is None:
        raise NotFound("Extension request not found")
    job = get_job(db, req.job_id)
    authorize(db, caller, "extension.resolve", job)
    verdict = EXTENSION_DECISIONS.get(str(getattr(decision, "value", decision) or "").strip().lower())
    if verdict is None:
        raise InvalidInput("Decision must be Approved or Rejected")
    if req.status != ExtensionStatus.pending:
        raise AlreadyResolved(f"Request is already {req.status.value}")

    new_end_date = None
    values = {
        "status": verdict,
        "resolved_by": caller.id,
        "resolved_at": datetime.now(timezone.utc),
        "supervisor_note": note or None,
    }
    if verdict == ExtensionStatus.approved:
        if job.status != JobStatus.active:
            raise IllegalTransition("Only active jobs can be extended")
        new_end_date = extended_end_date(job.end_date, req.duration_minutes)
        values["new_end_date"] = new_end_date
    else:
        values["rejection_reason"] = (rejection_reason or "").strip() or DEFAULT_REJECTION_REASON

    with UnitOfWork(db, "resolve_extension") as uow:
        db.flush()
        result = db.execute(
            update(ExtensionRequest)
            .where(ExtensionRequest.id == req.id, ExtensionRequest.status == ExtensionStatus.pending)
            .values(**values)
            .execution_options(synchronize_session=False)
        )
        if result.rowcount != 1:
            raise AlreadyResolved("Request has already been resolved")
        if new_end_date is not None:
            job.end_date = new_end_date
            job.is_extended = True
        db.refresh(req)

        if verdict == ExtensionStatus.approved:
            message = f'Your extension for "{job.title}" was approved. New end date: {new_end_date.isoformat()}'
        else:
            message = f'Your extension for "{job.title}" was rejected: {values["rejection_reason"]}'
        uow.after_commit(notify, req.requester_id, message)
        uow.after_commit(
            audit.record, caller.id, "Resolve Extension",
            f"Extension {req.id} {verdict.value.lower()}", "extension", req.id,
        )

    return db.get(ExtensionRequest, request_id), new_end_date


def list_extensions(
    db: Session,
    caller: Caller,
    job_id: Optional[uuid.UUID] = None,
    status: Optional[ExtensionStatus] = None,
) -> List[ExtensionRequest]:
    """Requests on the caller's own jobs, newest first."""
    authorize(db, caller, "extension.list")
    query = (
        db.query(ExtensionRequest)
        .join(Job, Job.id == ExtensionRequest.job_id)
        .filter(Job.supervisor_id == caller.id, Job.is_deleted.is_(False))
    )
    if job_id:
        query = query.filter(ExtensionRequest.job_id == job_id)
    if status:
        query = query.filter(ExtensionRequest.status == status)
    return query.order_by(ExtensionRequest.created_at.desc()).all()

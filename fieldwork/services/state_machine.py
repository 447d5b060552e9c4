"""
Job status state machine.

    Active -> AwaitingManagerValidation -> Completed
                                        -> Rejected
    Active -> Completed   (supervisor approves completion directly)
    Active -> Cancelled

Completed, Rejected and Cancelled are terminal. Status changes are applied
as compare-and-set on the current status so concurrent requests cannot both
move the same job.
"""
import uuid
from typing import Optional

import structlog
from sqlalchemy import update
from sqlalchemy.orm import Session

from ..models.enums import JobStatus, TERMINAL_JOB_STATUSES
from ..models.models import Job
from .errors import AlreadyResolved, IllegalTransition, NotFound

logger = structlog.get_logger(__name__)

ALLOWED_TRANSITIONS = {
    JobStatus.active: {
        JobStatus.awaiting_manager_validation,
        JobStatus.completed,
        JobStatus.cancelled,
    },
    JobStatus.awaiting_manager_validation: {
        JobStatus.completed,
        JobStatus.rejected,
    },
}


def can_transition(current: JobStatus, target: JobStatus) -> bool:
    return target in ALLOWED_TRANSITIONS.get(current, set())


def get_job(db: Session, job_id: uuid.UUID, include_deleted: bool = False) -> Job:
    job = db.get(Job, job_id, populate_existing=True)
    if job is None or (job.is_deleted and not include_deleted):
        raise NotFound("Job not found")
    return job


def transition(db: Session, job: Job, target: JobStatus, actor_id: Optional[uuid.UUID] = None, **fields) -> Job:
    """Move ``job`` to ``target``, writing any extra column ``fields`` in the same UPDATE."""
    current = job.status
    if current in TERMINAL_JOB_STATUSES:
        raise AlreadyResolved(f"Job is already {current.value}")
    if not can_transition(current, target):
        raise IllegalTransition(f"Cannot move job from {current.value} to {target.value}")

    db.flush()
    result = db.execute(
        update(Job)
        .where(Job.id == job.id, Job.status == current)
        .values(status=target, **fields)
        .execution_options(synchronize_session=False)
    )
    db.refresh(job)
    if result.rowcount != 1:
        if job.status in TERMINAL_JOB_STATUSES:
            raise AlreadyResolved(f"Job is already {job.status.value}")
        raise IllegalTransition(f"Job status changed to {job.status.value} while processing")
    logger.info(
        "job_transition",
        job_id=str(job.id),
        from_status=current.value,
        to_status=target.value,
        actor_id=str(actor_id) if actor_id else None,
    )
    return job

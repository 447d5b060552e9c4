"""
Capability table and the single guard every engine operation goes through.
Each operation declares its allowed roles and ownership predicate once.
"""
from dataclasses import dataclass
from typing import FrozenSet, Optional

from sqlalchemy.orm import Session

from ..auth.security import Caller
from ..models.enums import Role
from ..models.models import Job, JobTechnician
from .errors import Forbidden, Unauthorized

ANY = "any"
OWNER = "owner"  # the job's supervisor
ASSIGNED = "assigned"  # a technician assigned to the job
PARTICIPANT = "participant"  # owner, assigned technician, or any manager


@dataclass(frozen=True)
class Capability:
    roles: FrozenSet[Role]
    ownership: str = ANY


def _cap(*roles: Role, ownership: str = ANY) -> Capability:
    return Capability(roles=frozenset(roles), ownership=ownership)


CAPABILITIES = {
    "job.create": _cap(Role.supervisor),
    "job.list": _cap(Role.supervisor),
    "job.view": _cap(Role.supervisor, Role.technician, Role.manager, ownership=PARTICIPANT),
    "job.update": _cap(Role.supervisor, ownership=OWNER),
    "job.cancel": _cap(Role.supervisor, ownership=OWNER),
    "job.archive": _cap(Role.supervisor, ownership=OWNER),
    "job.assign_technicians": _cap(Role.supervisor, ownership=OWNER),
    "job.remove_technician": _cap(Role.supervisor, ownership=OWNER),
    "job.assign_equipment": _cap(Role.supervisor, ownership=OWNER),
    "job.release_equipment": _cap(Role.supervisor, ownership=OWNER),
    "job.approve_completion": _cap(Role.supervisor, ownership=OWNER),
    "job.final_validate": _cap(Role.manager),
    "job.list_awaiting": _cap(Role.manager),
    "job.list_mine": _cap(Role.technician),
    "report.submit": _cap(Role.technician, ownership=ASSIGNED),
    "report.validate": _cap(Role.supervisor, ownership=OWNER),
    "report.list_pending": _cap(Role.supervisor),
    "equipment.return": _cap(Role.technician, ownership=ASSIGNED),
    "equipment.manage": _cap(Role.supervisor),
    "equipment.list": _cap(Role.supervisor, Role.technician, Role.manager),
    "extension.request": _cap(Role.technician, ownership=ASSIGNED),
    "extension.resolve": _cap(Role.supervisor, ownership=OWNER),
    "extension.list": _cap(Role.supervisor),
    "activity.list": _cap(Role.manager, Role.supervisor),
}


def is_owner(caller: Caller, job: Job) -> bool:
    return job.supervisor_id == caller.id


def is_assigned(db: Session, caller: Caller, job: Job) -> bool:
    return db.query(JobTechnician.id).filter(
        JobTechnician.job_id == job.id,
        JobTechnician.technician_id == caller.id,
    ).first() is not None


def authorize(db: Session, caller: Optional[Caller], operation: str, job: Optional[Job] = None) -> Capability:
    """
    Check that ``caller`` may perform ``operation`` (on ``job`` when the
    capability has an ownership predicate). Raises Forbidden otherwise.
    """
    if caller is None:
        raise Unauthorized("Not authenticated")
    capability = CAPABILITIES[operation]
    if caller.role not in capability.roles:
        allowed = " or ".join(sorted(r.value for r in capability.roles))
        raise Forbidden(f"Only {allowed} users can perform {operation}")

    if capability.ownership == ANY or job is None:
        return capability
    if capability.ownership == OWNER and not is_owner(caller, job):
        raise Forbidden("You are not the supervisor of this job")
    if capability.ownership == ASSIGNED and not is_assigned(db, caller, job):
        raise Forbidden("You are not assigned to this job")
    if capability.ownership == PARTICIPANT:
        if caller.role == Role.manager:
            return capability
        if caller.role == Role.supervisor and is_owner(caller, job):
            return capability
        if caller.role == Role.technician and is_assigned(db, caller, job):
            return capability
        raise Forbidden("You do not take part in this job")
    return capability

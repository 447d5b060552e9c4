"""
Progress report store: technician submissions and supervisor validation.

A report is validated exactly once. Approving a report re-evaluates the
job's readiness and hands the job to manager validation when it is ready.
"""
import uuid
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional, Tuple

import structlog
from sqlalchemy import update
from sqlalchemy.orm import Session

from ..auth.security import Caller
from ..config import settings
from ..models.enums import JobStatus, PROGRESS_BANDS, ProgressStatus, ValidationStatus
from ..models.models import EquipmentLoan, Job, ProgressReport, ReportEvidencePair
from ..schemas.reports import ReportCreate
from . import audit, equipment_ledger as ledger
from .errors import AlreadyValidated, IllegalTransition, InvalidInput, NotFound
from .geofence import is_off_site, valid_point
from .notifications import notify
from .permissions import authorize
from .state_machine import get_job
from .time_rules import cadence_warning, local_today
from .unit_of_work import UnitOfWork
from .validation import advance_if_ready

logger = structlog.get_logger(__name__)

VALIDATION_DECISIONS = {
    "approve": ValidationStatus.approved,
    "approved": ValidationStatus.approved,
    "reject": ValidationStatus.rejected,
    "rejected": ValidationStatus.rejected,
}


def parse_progress_status(raw) -> ProgressStatus:
    try:
        return ProgressStatus(getattr(raw, "value", raw))
    except ValueError:
        raise InvalidInput("Invalid progress status")


def check_progress_percent(status: ProgressStatus, percent: Optional[int]) -> None:
    if percent is None:
        return
    low, high = PROGRESS_BANDS[status]
    if not low <= percent <= high:
        raise InvalidInput(f'Progress percentage does not match status "{status.value}" ({low}-{high})')


def _sanitize_pairs(payload: ReportCreate, final: bool) -> List[Dict[str, Any]]:
    pairs = payload.pairs or []
    max_pairs = settings.max_evidence_pairs
    if final and not pairs:
        raise InvalidInput("At least one before/after evidence pair is required for a final report")
    if len(pairs) > max_pairs:
        raise InvalidInput(f"At most {max_pairs} evidence pairs per report")
    sanitized = []
    for index, pair in enumerate(pairs, start=1):
        before = pair.before.photo_url if pair.before else None
        after = pair.after.photo_url if pair.after else None
        if not before or not after:
            raise InvalidInput(f"Evidence pair {index} is incomplete (before and after are required)")
        taken_at = (pair.before and pair.before.taken_at) or (pair.after and pair.after.taken_at)
        sanitized.append({
            "pair_key": pair.pair_key or uuid.uuid4().hex,
            "title": pair.title or None,
            "description": pair.description or None,
            "before_photo_url": before,
            "after_photo_url": after,
            "taken_at": taken_at or datetime.now(timezone.utc),
        })
    return sanitized


def _tool_photos(photos, label: str) -> Dict[uuid.UUID, str]:
    mapped = {}
    for photo in photos or []:
        if not photo.item_id or not photo.photo_url:
            raise InvalidInput(f"{label} photo is incomplete")
        mapped[photo.item_id] = photo.photo_url
    return mapped


def latest_report(db: Session, job_id: uuid.UUID) -> Optional[ProgressReport]:
    return (
        db.query(ProgressReport)
        .filter(ProgressReport.job_id == job_id)
        .order_by(ProgressReport.report_date.desc(), ProgressReport.created_at.desc())
        .first()
    )


def submit_report(db: Session, caller: Caller, job_id: uuid.UUID, payload: ReportCreate) -> Tuple[ProgressReport, Dict[str, Any]]:
    """
    Store a technician's report with status Pending.

    The first report may attach pickup photos to open loans. A final report
    with ``return_tools`` returns every open loan in the same unit.
    """
    job = get_job(db, job_id)
    authorize(db, caller, "report.submit", job)
    if job.status != JobStatus.active:
        raise IllegalTransition("Reports can only be submitted for active jobs")

    status = parse_progress_status(payload.progress_status)
    check_progress_percent(status, payload.progress_percent)
    if not payload.photo_url:
        raise InvalidInput("An evidence photo is required")
    if (payload.latitude is None) != (payload.longitude is None):
        raise InvalidInput("Both latitude and longitude are required for a GPS point")
    if payload.latitude is not None and not valid_point(payload.latitude, payload.longitude):
        raise InvalidInput("Invalid GPS point")

    final = status.is_final
    pairs = _sanitize_pairs(payload, final)
    pickup_photos = _tool_photos(payload.pickup_photos, "Equipment pickup")
    return_photos = _tool_photos(payload.return_photos, "Equipment return")
    report_date = payload.report_date or local_today()

    previous = latest_report(db, job.id)
    warning = cadence_warning(previous.report_date if previous else None, report_date, job.report_frequency)
    auto_returned = 0

    with UnitOfWork(db, "submit_report") as uow:
        report = ProgressReport(
            job_id=job.id,
            reporter_id=caller.id,
            report_date=report_date,
            progress_percent=payload.progress_percent,
            progress_status=status,
            photo_url=payload.photo_url,
            note=payload.note,
            latitude=payload.latitude,
            longitude=payload.longitude,
            off_site=is_off_site(payload.latitude, payload.longitude, job.latitude, job.longitude),
            validation_status=ValidationStatus.pending,
        )
        db.add(report)
        db.flush()
        for pair in pairs:
            db.add(ReportEvidencePair(report_id=report.id, taken_by=caller.id, **pair))

        if previous is None and pickup_photos:
            for item_id, photo_url in pickup_photos.items():
                loan = ledger.open_loan(db, job.id, item_id)
                if loan is None:
                    raise NotFound(f"No open loan for equipment {item_id} on this job")
                loan.pickup_photo_url = photo_url

        if final and payload.return_tools:
            open_loans = db.query(EquipmentLoan).filter(
                EquipmentLoan.job_id == job.id,
                EquipmentLoan.is_returned.is_(False),
            ).all()
            for loan in open_loans:
                qty = loan.outstanding
                ledger.return_partial(db, loan.id, qty, return_photos.get(loan.item_id) or payload.photo_url)
                auto_returned += qty

        report_id = report.id
        message = (
            f'New FINAL report for "{job.title}"' if final
            else f'New progress report for "{job.title}"'
        )
        uow.after_commit(notify, job.supervisor_id, message)
        uow.after_commit(
            audit.record, caller.id, "Progress Report",
            f"Job {job.id} - final report submitted" if final
            else f"Job {job.id} on {report_date.isoformat()} - progress report submitted",
            "report", report_id,
        )

    total_reports = db.query(ProgressReport).filter(ProgressReport.job_id == job_id).count()
    logger.info("report_submitted", job_id=str(job_id), report_id=str(report_id), final=final)
    return db.get(ProgressReport, report_id), {
        "warning": warning,
        "total_reports": total_reports,
        "locked": final,
        "auto_returned_tools": auto_returned,
        "saved_pair_count": len(pairs),
    }


def validate_report(
    db: Session,
    caller: Caller,
    report_id: uuid.UUID,
    decision: str,
    note: Optional[str] = None,
) -> Tuple[ProgressReport, bool]:
    """
    Approve or reject a Pending report. Returns the report and whether the
    job moved to AwaitingManagerValidation as a result.
    """
    report = db.get(ProgressReport, report_id, populate_existing=True)
    if report is None:
        raise NotFound("Report not found")
    job = get_job(db, report.job_id)
    authorize(db, caller, "report.validate", job)
    verdict = VALIDATION_DECISIONS.get(str(getattr(decision, "value", decision) or "").strip().lower())
    if verdict is None:
        raise InvalidInput("Decision must be Approve or Reject")
    if report.validation_status != ValidationStatus.pending:
        raise AlreadyValidated("Report has already been validated")

    with UnitOfWork(db, "validate_report") as uow:
        db.flush()
        result = db.execute(
            update(ProgressReport)
            .where(
                ProgressReport.id == report.id,
                ProgressReport.validation_status == ValidationStatus.pending,
            )
            .values(
                validation_status=verdict,
                validator_id=caller.id,
                validated_at=datetime.now(timezone.utc),
                validation_note=note or None,
            )
            .execution_options(synchronize_session=False)
        )
        if result.rowcount != 1:
            raise AlreadyValidated("Report has already been validated")
        db.refresh(report)

        # only approving a final report hands the job to the manager
        advanced = False
        if verdict == ValidationStatus.approved and report.progress_status.is_final:
            advanced = advance_if_ready(db, job, actor_id=caller.id)

        outcome = "approved" if verdict == ValidationStatus.approved else "rejected"
        uow.after_commit(
            notify, report.reporter_id,
            f'Your report for "{job.title}" on {report.report_date.isoformat()} was {outcome}',
        )
        if advanced:
            uow.after_commit(
                audit.record, caller.id, "Awaiting Manager Validation",
                f'Job "{job.title}" is ready for manager validation', "job", job.id,
            )
        uow.after_commit(
            audit.record, caller.id, "Validate Report",
            f"Report {report.id} {outcome}", "report", report.id,
        )

    return db.get(ProgressReport, report_id), advanced


def get_report(db: Session, caller: Caller, report_id: uuid.UUID) -> ProgressReport:
    report = db.get(ProgressReport, report_id)
    if report is None:
        raise NotFound("Report not found")
    job = get_job(db, report.job_id)
    authorize(db, caller, "job.view", job)
    return report


def list_pending_reports(db: Session, caller: Caller) -> List[ProgressReport]:
    authorize(db, caller, "report.list_pending")
    return (
        db.query(ProgressReport)
        .join(Job, Job.id == ProgressReport.job_id)
        .filter(
            Job.supervisor_id == caller.id,
            Job.is_deleted.is_(False),
            ProgressReport.validation_status == ValidationStatus.pending,
        )
        .order_by(ProgressReport.report_date.asc(), ProgressReport.created_at.asc())
        .all()
    )

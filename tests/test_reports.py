from datetime import date

import pytest

from conftest import SITE, make_item
from fieldwork.models.enums import JobStatus, ProgressStatus, ValidationStatus
from fieldwork.models.models import EquipmentLoan, Notification, ProgressReport
from fieldwork.schemas.reports import EvidencePairIn, EvidencePhoto, ReportCreate, ToolPhoto
from fieldwork.services import assignment, equipment_ledger as ledger, reports
from fieldwork.services.errors import (
    AlreadyResolved,
    AlreadyValidated,
    Forbidden,
    IllegalTransition,
    InvalidInput,
)
from fieldwork.services.state_machine import get_job

PHOTO = "https://cdn.example.com/report.jpg"


def pair(n: int = 1) -> EvidencePairIn:
    return EvidencePairIn(
        title=f"Panel {n}",
        before=EvidencePhoto(photo_url=f"https://cdn.example.com/before-{n}.jpg"),
        after=EvidencePhoto(photo_url=f"https://cdn.example.com/after-{n}.jpg"),
    )


def submit(db, caller, job_id, status="InProgress", percent=None, on=date(2024, 1, 2), **extra):
    payload = ReportCreate(
        progress_status=status,
        progress_percent=percent,
        photo_url=extra.pop("photo_url", PHOTO),
        report_date=on,
        **extra,
    )
    return reports.submit_report(db, caller, job_id, payload)


def submit_final(db, caller, job_id, on=date(2024, 1, 3), **extra):
    extra.setdefault("pairs", [pair()])
    return submit(db, caller, job_id, "Done", 100, on, **extra)


def test_submit_stores_pending_report(db, make_job, callers, people):
    job = make_job()
    report, meta = submit(db, callers.tech, job.id, percent=40, pairs=[pair(1), pair(2)])

    assert report.validation_status == ValidationStatus.pending
    assert report.progress_status == ProgressStatus.in_progress
    assert len(report.evidence_pairs) == 2
    assert all(p.pair_key for p in report.evidence_pairs)
    assert meta["total_reports"] == 1
    assert meta["warning"] is None
    assert meta["locked"] is False
    assert meta["saved_pair_count"] == 2

    note = db.query(Notification).filter(Notification.recipient_id == people.supervisor.id).one()
    assert note.message == 'New progress report for "Tower repair"'


def test_final_report_notification_is_distinct(db, make_job, callers, people):
    job = make_job()
    _, meta = submit_final(db, callers.tech, job.id)
    assert meta["locked"] is True
    note = db.query(Notification).filter(Notification.recipient_id == people.supervisor.id).one()
    assert note.message.startswith("New FINAL report")


def test_only_assigned_technicians_submit(db, make_job, callers):
    job = make_job()
    with pytest.raises(Forbidden):
        submit(db, callers.tech2, job.id)
    with pytest.raises(Forbidden):
        submit(db, callers.supervisor, job.id)
    assert db.query(ProgressReport).count() == 0


@pytest.mark.parametrize(
    "kwargs",
    [
        {"status": "Halfway"},
        {"status": "InProgress", "percent": 90},
        {"status": "Done", "percent": 100},  # final without evidence pairs
        {"status": "InProgress", "photo_url": None},
        {"status": "InProgress", "pairs": [pair(n) for n in range(6)]},
        {"status": "InProgress", "pairs": [EvidencePairIn(before=EvidencePhoto(photo_url=PHOTO))]},
        {"status": "InProgress", "latitude": 1.0},
    ],
)
def test_submit_rejects_invalid_payloads(db, make_job, callers, kwargs):
    job = make_job()
    with pytest.raises(InvalidInput):
        submit(db, callers.tech, job.id, **kwargs)
    assert db.query(ProgressReport).count() == 0


def test_cadence_warning_for_late_report(db, make_job, callers):
    job = make_job()  # installation jobs report daily
    submit(db, callers.tech, job.id, on=date(2024, 1, 2))
    _, meta = submit(db, callers.tech, job.id, on=date(2024, 1, 5))
    assert meta["warning"] == "Previous report was 2 day(s) behind schedule."
    assert meta["total_reports"] == 2


def test_off_site_flag(db, make_job, callers):
    job = make_job()
    near, _ = submit(db, callers.tech, job.id, latitude=SITE["latitude"], longitude=SITE["longitude"])
    far, _ = submit(db, callers.tech, job.id, on=date(2024, 1, 3), latitude=-7.25, longitude=112.75)
    assert near.off_site is False
    assert far.off_site is True


def test_validate_exactly_once(db, make_job, callers, people):
    job = make_job()
    report, _ = submit(db, callers.tech, job.id)

    with pytest.raises(Forbidden):
        reports.validate_report(db, callers.other_supervisor, report.id, "Approve")
    with pytest.raises(InvalidInput):
        reports.validate_report(db, callers.supervisor, report.id, "Maybe")

    validated, advanced = reports.validate_report(db, callers.supervisor, report.id, "Approve", "Looks good")
    assert validated.validation_status == ValidationStatus.approved
    assert validated.validator_id == people.supervisor.id
    assert validated.validation_note == "Looks good"
    assert advanced is False

    with pytest.raises(AlreadyValidated):
        reports.validate_report(db, callers.supervisor, report.id, "Reject")
    assert db.get(ProgressReport, report.id).validation_status == ValidationStatus.approved

    notes = db.query(Notification).filter(Notification.recipient_id == people.tech.id).all()
    assert any("was approved" in n.message for n in notes)


def test_final_approval_waits_for_pending_reports(db, make_job, callers):
    job = make_job()
    r2, _ = submit(db, callers.tech, job.id, percent=50, on=date(2024, 1, 2))
    r1, _ = submit_final(db, callers.tech, job.id, on=date(2024, 1, 3))

    _, advanced = reports.validate_report(db, callers.supervisor, r1.id, "Approve")
    assert advanced is False
    assert get_job(db, job.id).status == JobStatus.active

    # approving a non-final report never hands the job over by itself
    _, advanced = reports.validate_report(db, callers.supervisor, r2.id, "Approved")
    assert advanced is False
    assert get_job(db, job.id).status == JobStatus.active
    assert assignment.list_awaiting_validation(db, callers.manager) == []

    completed, _ = assignment.supervisor_approve_completion(db, callers.supervisor, job.id)
    assert completed.status == JobStatus.completed


def test_final_approval_hands_over_when_nothing_pending(db, make_job, callers):
    job = make_job()
    r1, _ = submit(db, callers.tech, job.id, percent=50, on=date(2024, 1, 2))
    reports.validate_report(db, callers.supervisor, r1.id, "Approve")
    assert get_job(db, job.id).status == JobStatus.active

    final, _ = submit_final(db, callers.tech, job.id, on=date(2024, 1, 3))
    _, advanced = reports.validate_report(db, callers.supervisor, final.id, "Approve")
    assert advanced is True
    assert get_job(db, job.id).status == JobStatus.awaiting_manager_validation
    assert [j.id for j in assignment.list_awaiting_validation(db, callers.manager)] == [job.id]


def test_rejected_final_needs_resubmission(db, make_job, callers):
    job = make_job()
    r1, _ = submit(db, callers.tech, job.id, on=date(2024, 1, 2))
    r2, _ = submit_final(db, callers.tech, job.id, on=date(2024, 1, 3))

    reports.validate_report(db, callers.supervisor, r2.id, "Reject", "Photos are blurry")
    _, advanced = reports.validate_report(db, callers.supervisor, r1.id, "Approve")
    assert advanced is False

    r3, _ = submit_final(db, callers.tech, job.id, on=date(2024, 1, 4))
    _, advanced = reports.validate_report(db, callers.supervisor, r3.id, "Approve")
    assert advanced is True


def test_reports_only_for_active_jobs(db, make_job, callers):
    job = make_job()
    assignment.cancel_job(db, callers.supervisor, job.id)
    with pytest.raises(IllegalTransition):
        submit(db, callers.tech, job.id)


def test_pickup_photos_on_first_report(db, make_job, callers):
    e1 = make_item(db, "Drill", 10)
    job = make_job(equipment=[(e1.id, 2)])
    submit(
        db, callers.tech, job.id,
        pickup_photos=[ToolPhoto(item_id=e1.id, photo_url="https://cdn.example.com/pickup.jpg")],
    )
    loan = db.query(EquipmentLoan).filter(EquipmentLoan.job_id == job.id).one()
    assert loan.pickup_photo_url == "https://cdn.example.com/pickup.jpg"


def test_final_report_can_return_tools(db, make_job, callers):
    e1 = make_item(db, "Drill", 10)
    e2 = make_item(db, "Ladder", 3)
    job = make_job(equipment=[(e1.id, 4), (e2.id, 1)])

    _, meta = submit_final(
        db, callers.tech, job.id,
        return_tools=True,
        return_photos=[ToolPhoto(item_id=e1.id, photo_url="https://cdn.example.com/drill-back.jpg")],
    )
    assert meta["auto_returned_tools"] == 5

    loans = {loan.item_id: loan for loan in db.query(EquipmentLoan).all()}
    assert all(loan.is_returned for loan in loans.values())
    assert loans[e1.id].return_photo_url == "https://cdn.example.com/drill-back.jpg"
    assert loans[e2.id].return_photo_url == PHOTO
    assert ledger.balance(db, e1.id)["available_stock"] == 10
    assert ledger.balance(db, e2.id)["available_stock"] == 3


def test_manager_completion_is_idempotent(db, make_job, callers):
    e1 = make_item(db, "Drill", 10)
    job = make_job(equipment=[(e1.id, 4)])
    final, _ = submit_final(db, callers.tech, job.id)
    reports.validate_report(db, callers.supervisor, final.id, "Approve")

    # already handed to the manager, so the supervisor shortcut no longer applies
    with pytest.raises(IllegalTransition):
        assignment.supervisor_approve_completion(db, callers.supervisor, job.id)

    done = assignment.manager_final_validate(db, callers.manager, job.id, "Completed", "Well done")
    assert done.status == JobStatus.completed
    assert done.manager_note == "Well done"
    assert done.completed_at is not None
    assert ledger.balance(db, e1.id)["available_stock"] == 10

    with pytest.raises(AlreadyResolved):
        assignment.manager_final_validate(db, callers.manager, job.id, "Rejected")
    assert get_job(db, job.id).status == JobStatus.completed


def test_manager_rejection_leaves_loans(db, make_job, callers):
    e1 = make_item(db, "Drill", 10)
    job = make_job(equipment=[(e1.id, 4)])
    final, _ = submit_final(db, callers.tech, job.id)
    reports.validate_report(db, callers.supervisor, final.id, "Approve")

    rejected = assignment.manager_final_validate(db, callers.manager, job.id, "Rejected", "Redo the cabling")
    assert rejected.status == JobStatus.rejected
    assert ledger.balance(db, e1.id)["available_stock"] == 6


def test_supervisor_completion_returns_equipment(db, make_job, callers, people):
    e1 = make_item(db, "Drill", 10)
    job = make_job(equipment=[(e1.id, 4)])
    progress, _ = submit(db, callers.tech, job.id, percent=60, on=date(2024, 1, 2))
    final, _ = submit_final(db, callers.tech, job.id, on=date(2024, 1, 3))
    reports.validate_report(db, callers.supervisor, final.id, "Approve")
    _, advanced = reports.validate_report(db, callers.supervisor, progress.id, "Approve")
    assert advanced is False
    assert get_job(db, job.id).status == JobStatus.active

    completed, returned = assignment.supervisor_approve_completion(db, callers.supervisor, job.id)
    assert completed.status == JobStatus.completed
    assert returned == 4
    assert ledger.balance(db, e1.id)["available_stock"] == 10
    notes = db.query(Notification).filter(Notification.recipient_id == people.tech.id).all()
    assert any("has been completed" in n.message for n in notes)

    with pytest.raises(AlreadyResolved):
        assignment.supervisor_approve_completion(db, callers.supervisor, job.id)


def test_list_pending_reports(db, make_job, callers):
    job = make_job()
    r1, _ = submit(db, callers.tech, job.id)
    submit(db, callers.tech, job.id, on=date(2024, 1, 3))
    reports.validate_report(db, callers.supervisor, r1.id, "Approve")

    pending = reports.list_pending_reports(db, callers.supervisor)
    assert len(pending) == 1
    assert reports.list_pending_reports(db, callers.other_supervisor) == []
    with pytest.raises(Forbidden):
        reports.list_pending_reports(db, callers.tech)

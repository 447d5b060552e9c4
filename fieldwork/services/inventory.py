"""
Equipment catalogue management and technician-side returns.
Stock counters are only ever changed through the equipment ledger.
"""
import uuid
from datetime import datetime, timezone
from typing import List, Optional, Tuple

from sqlalchemy.orm import Session

from ..auth.security import Caller
from ..config import settings
from ..models.enums import JobStatus
from ..models.models import EquipmentItem, EquipmentLoan
from ..schemas.equipment import ItemCreate, ItemUpdate
from . import audit, equipment_ledger as ledger
from .errors import IllegalTransition, InvalidInput, NotFound
from .notifications import notify
from .permissions import authorize
from .state_machine import get_job
from .unit_of_work import UnitOfWork

RETURNABLE_JOB_STATUSES = {JobStatus.active, JobStatus.awaiting_manager_validation}


def _clean_name(raw: Optional[str]) -> str:
    name = (raw or "").strip()
    if not name:
        raise InvalidInput("Name is required")
    return name


def create_item(db: Session, caller: Caller, payload: ItemCreate) -> EquipmentItem:
    authorize(db, caller, "equipment.manage")
    name = _clean_name(payload.name)
    if isinstance(payload.total_stock, bool) or payload.total_stock < 1:
        raise InvalidInput("Total stock must be at least 1")

    with UnitOfWork(db, "create_item") as uow:
        item = EquipmentItem(
            name=name,
            kind=payload.kind,
            description=payload.description,
            photo_url=payload.photo_url,
            total_stock=payload.total_stock,
            available_stock=payload.total_stock,
        )
        db.add(item)
        db.flush()
        item_id = item.id
        uow.after_commit(audit.record, caller.id, "Create Equipment", f'Equipment "{name}" created', "item", item_id)

    return ledger.get_item(db, item_id)


def update_item(db: Session, caller: Caller, item_id: uuid.UUID, changes: ItemUpdate) -> EquipmentItem:
    """Rename/describe an item and optionally resize its total stock."""
    authorize(db, caller, "equipment.manage")
    item = ledger.get_item(db, item_id)
    data = changes.model_dump(exclude_unset=True)

    with UnitOfWork(db, "update_item") as uow:
        if "name" in data:
            item.name = _clean_name(data["name"])
        for field in ("kind", "description", "photo_url"):
            if field in data:
                setattr(item, field, (data[field] or "").strip() or None)
        if data.get("total_stock") is not None and data["total_stock"] != item.total_stock:
            ledger.resize_total(db, item_id, data["total_stock"])
        uow.after_commit(audit.record, caller.id, "Update Equipment", f'Equipment "{item.name}" updated', "item", item_id)

    return ledger.get_item(db, item_id)


def delete_item(db: Session, caller: Caller, item_id: uuid.UUID) -> None:
    authorize(db, caller, "equipment.manage")
    item = ledger.get_item(db, item_id)
    if item.borrowed > 0:
        raise IllegalTransition(f"Cannot delete equipment while {item.borrowed} unit(s) are on loan", borrowed=item.borrowed)

    with UnitOfWork(db, "delete_item") as uow:
        item.is_deleted = True
        item.deleted_at = datetime.now(timezone.utc)
        uow.after_commit(audit.record, caller.id, "Delete Equipment", f'Equipment "{item.name}" deleted', "item", item_id)


def list_items(
    db: Session,
    caller: Caller,
    q: Optional[str] = None,
    limit: Optional[int] = None,
    offset: int = 0,
) -> Tuple[List[EquipmentItem], int]:
    authorize(db, caller, "equipment.list")
    query = db.query(EquipmentItem).filter(EquipmentItem.is_deleted.is_(False))
    if q:
        like = f"%{q.strip()}%"
        query = query.filter(EquipmentItem.name.ilike(like) | EquipmentItem.kind.ilike(like))
    total = query.count()
    limit = limit or settings.list_page_size
    rows = query.order_by(EquipmentItem.name.asc()).limit(limit).offset(offset).all()
    return rows, total


def return_equipment(
    db: Session,
    caller: Caller,
    job_id: uuid.UUID,
    item_id: uuid.UUID,
    photo_url: Optional[str],
    quantity: Optional[int] = None,
) -> EquipmentLoan:
    """
    Return some or all of a job's open loan for one item.
    ``quantity`` defaults to everything still outstanding.
    """
    job = get_job(db, job_id)
    authorize(db, caller, "equipment.return", job)
    if job.status not in RETURNABLE_JOB_STATUSES:
        raise IllegalTransition(f"Cannot return equipment on a {job.status.value} job")
    if not photo_url:
        raise InvalidInput("A return photo is required")
    loan = ledger.open_loan(db, job.id, item_id)
    if loan is None:
        raise NotFound("No open loan for this equipment on this job")
    qty = loan.outstanding if quantity is None else quantity

    with UnitOfWork(db, "return_equipment") as uow:
        loan = ledger.return_partial(db, loan.id, qty, photo_url)
        loan_id = loan.id
        item_name = loan.item.name
        uow.after_commit(
            notify, job.supervisor_id,
            f'{caller.name or "A technician"} returned {qty} x {item_name} for "{job.title}"',
        )
        uow.after_commit(
            audit.record, caller.id, "Return Equipment",
            f"{qty} x {item_name} returned from job {job.id}", "loan", loan_id,
        )

    return db.get(EquipmentLoan, loan_id)


def list_job_loans(db: Session, caller: Caller, job_id: uuid.UUID) -> List[EquipmentLoan]:
    """Loans of a job as seen by one of its participants."""
    job = get_job(db, job_id)
    authorize(db, caller, "job.view", job)
    return (
        db.query(EquipmentLoan)
        .filter(EquipmentLoan.job_id == job.id)
        .order_by(EquipmentLoan.created_at.asc())
        .all()
    )

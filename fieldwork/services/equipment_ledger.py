"""
Equipment stock ledger.

The only code allowed to touch ``available_stock`` / ``total_stock`` and loan
quantities. For every item the ledger keeps

    0 <= available_stock <= total_stock
    total_stock - available_stock == sum(outstanding of open loans)

Every check-and-mutate is a single conditional UPDATE so two requests racing
for the same item cannot both pass the availability check. Functions here
never commit; they run inside the caller's UnitOfWork.
"""
import uuid
from collections import OrderedDict
from datetime import datetime, timezone
from typing import Dict, Iterable, List, Optional, Tuple

import structlog
from sqlalchemy import func, update
from sqlalchemy.orm import Session

from ..models.models import EquipmentItem, EquipmentLoan
from .errors import (
    AlreadyFullyReturned,
    BelowBorrowed,
    Internal,
    InsufficientStock,
    InvalidInput,
    InvalidQuantity,
    NotFound,
)

logger = structlog.get_logger(__name__)


def _is_positive_int(value) -> bool:
    return isinstance(value, int) and not isinstance(value, bool) and value > 0


def get_item(db: Session, item_id: uuid.UUID, include_deleted: bool = False) -> EquipmentItem:
    item = db.get(EquipmentItem, item_id, populate_existing=True)
    if item is None or (item.is_deleted and not include_deleted):
        raise NotFound(f"Equipment with id {item_id} not found")
    return item


def _take_stock(db: Session, item_id: uuid.UUID, qty: int) -> EquipmentItem:
    db.flush()
    result = db.execute(
        update(EquipmentItem)
        .where(
            EquipmentItem.id == item_id,
            EquipmentItem.is_deleted.is_(False),
            EquipmentItem.available_stock >= qty,
        )
        .values(available_stock=EquipmentItem.available_stock - qty)
        .execution_options(synchronize_session=False)
    )
    item = get_item(db, item_id)
    if result.rowcount != 1:
        raise InsufficientStock(
            f"Insufficient stock for {item.name}. Available: {item.available_stock}, Requested: {qty}",
            item_id=str(item_id),
            available=item.available_stock,
            requested=qty,
        )
    return item


def _credit_stock(db: Session, item_id: uuid.UUID, qty: int) -> EquipmentItem:
    db.flush()
    result = db.execute(
        update(EquipmentItem)
        .where(
            EquipmentItem.id == item_id,
            EquipmentItem.available_stock + qty <= EquipmentItem.total_stock,
        )
        .values(available_stock=EquipmentItem.available_stock + qty)
        .execution_options(synchronize_session=False)
    )
    if result.rowcount != 1:
        logger.error("stock_credit_rejected", item_id=str(item_id), quantity=qty)
        raise Internal(f"Stock ledger out of balance for equipment {item_id}")
    return get_item(db, item_id, include_deleted=True)


def open_loan(db: Session, job_id: uuid.UUID, item_id: uuid.UUID) -> Optional[EquipmentLoan]:
    return db.query(EquipmentLoan).filter(
        EquipmentLoan.job_id == job_id,
        EquipmentLoan.item_id == item_id,
        EquipmentLoan.is_returned.is_(False),
    ).first()


def reserve(
    db: Session,
    item_id: uuid.UUID,
    qty: int,
    job_id: uuid.UUID,
    borrower_id: Optional[uuid.UUID] = None,
) -> EquipmentLoan:
    """
    Take ``qty`` units of an item out of stock for a job.

    An open loan for the same item on the same job is topped up instead of
    creating a second loan.
    """
    if not _is_positive_int(qty):
        raise InvalidQuantity("Quantity must be a positive whole number")
    _take_stock(db, item_id, qty)

    loan = open_loan(db, job_id, item_id)
    if loan is not None:
        loan.quantity += qty
        loan.outstanding += qty
    else:
        loan = EquipmentLoan(
            job_id=job_id,
            item_id=item_id,
            quantity=qty,
            outstanding=qty,
            borrower_id=borrower_id,
            is_returned=False,
        )
        db.add(loan)
    db.flush()
    logger.info("equipment_reserved", item_id=str(item_id), job_id=str(job_id), quantity=qty)
    return loan


def normalize_lines(lines: Iterable[Tuple[uuid.UUID, int]]) -> "OrderedDict[uuid.UUID, int]":
    """Validate reservation lines and merge repeated items, keeping first-seen order."""
    merged: "OrderedDict[uuid.UUID, int]" = OrderedDict()
    for item_id, qty in lines:
        if item_id is None:
            raise InvalidInput("Each equipment line needs an item id")
        if not _is_positive_int(qty):
            raise InvalidQuantity("Each equipment line needs a quantity greater than zero")
        merged[item_id] = merged.get(item_id, 0) + qty
    return merged


def reserve_all(
    db: Session,
    job_id: uuid.UUID,
    lines: Iterable[Tuple[uuid.UUID, int]],
    borrower_id: Optional[uuid.UUID] = None,
) -> List[EquipmentLoan]:
    """
    Reserve a batch of items for one job as a single unit.

    Lines are validated up front. If any item is missing or short, the
    exception propagates and the enclosing UnitOfWork rolls back the
    reservations already applied for this batch.
    """
    merged = normalize_lines(lines)
    return [reserve(db, item_id, qty, job_id, borrower_id) for item_id, qty in merged.items()]


def return_partial(
    db: Session,
    loan_id: uuid.UUID,
    qty: int,
    photo_url: Optional[str] = None,
) -> EquipmentLoan:
    loan = db.get(EquipmentLoan, loan_id, populate_existing=True)
    if loan is None:
        raise NotFound("Equipment loan not found")
    if loan.is_returned:
        raise AlreadyFullyReturned("Equipment already returned")
    if not _is_positive_int(qty) or qty > loan.outstanding:
        raise InvalidQuantity(f"Return quantity must be between 1 and {loan.outstanding}")

    db.flush()
    result = db.execute(
        update(EquipmentLoan)
        .where(
            EquipmentLoan.id == loan_id,
            EquipmentLoan.is_returned.is_(False),
            EquipmentLoan.outstanding >= qty,
        )
        .values(outstanding=EquipmentLoan.outstanding - qty)
        .execution_options(synchronize_session=False)
    )
    loan = db.get(EquipmentLoan, loan_id, populate_existing=True)
    if result.rowcount != 1:
        if loan.is_returned:
            raise AlreadyFullyReturned("Equipment already returned")
        raise InvalidQuantity(f"Return quantity must be between 1 and {loan.outstanding}")

    _credit_stock(db, loan.item_id, qty)

    if photo_url:
        loan.return_photo_url = photo_url
    if loan.outstanding == 0:
        loan.is_returned = True
        loan.returned_at = datetime.now(timezone.utc)
    db.flush()
    logger.info(
        "equipment_returned",
        loan_id=str(loan_id),
        item_id=str(loan.item_id),
        quantity=qty,
        outstanding=loan.outstanding,
    )
    return loan


def force_return_all_outstanding(db: Session, job_id: uuid.UUID, photo_url: Optional[str] = None) -> int:
    """Administratively return every open loan of a job. Returns units credited."""
    db.flush()
    loans = db.query(EquipmentLoan).filter(
        EquipmentLoan.job_id == job_id,
        EquipmentLoan.is_returned.is_(False),
    ).all()
    returned = 0
    for loan in loans:
        qty = loan.outstanding
        if qty <= 0:
            loan.is_returned = True
            loan.returned_at = datetime.now(timezone.utc)
            continue
        return_partial(db, loan.id, qty, photo_url)
        returned += qty
    return returned


def _resize_statement(item_id: uuid.UUID, new_total: int):
    # available_stock is assigned first so it reads the old total_stock on
    # backends that evaluate SET left to right (MySQL) as well as on the
    # ones that read pre-update values (PostgreSQL, SQLite)
    borrowed_expr = EquipmentItem.total_stock - EquipmentItem.available_stock
    return (
        update(EquipmentItem)
        .where(
            EquipmentItem.id == item_id,
            EquipmentItem.is_deleted.is_(False),
            borrowed_expr <= new_total,
        )
        .ordered_values(
            (EquipmentItem.available_stock, EquipmentItem.available_stock + (new_total - EquipmentItem.total_stock)),
            (EquipmentItem.total_stock, new_total),
        )
        .execution_options(synchronize_session=False)
    )


def resize_total(db: Session, item_id: uuid.UUID, new_total: int) -> EquipmentItem:
    """Change an item's total stock keeping the borrowed amount exactly."""
    if not _is_positive_int(new_total):
        raise InvalidInput("Total stock must be a positive number")
    get_item(db, item_id)

    db.flush()
    result = db.execute(_resize_statement(item_id, new_total))
    item = get_item(db, item_id)
    if result.rowcount != 1:
        raise BelowBorrowed(
            f"Cannot reduce total stock below currently borrowed amount ({item.borrowed})",
            borrowed=item.borrowed,
        )
    return item


def outstanding_for_item(db: Session, item_id: uuid.UUID) -> int:
    total = db.query(func.coalesce(func.sum(EquipmentLoan.outstanding), 0)).filter(
        EquipmentLoan.item_id == item_id,
        EquipmentLoan.is_returned.is_(False),
    ).scalar()
    return int(total or 0)


def balance(db: Session, item_id: uuid.UUID) -> Dict[str, int]:
    """Snapshot of an item's ledger; ``consistent`` is False if the invariant is broken."""
    item = get_item(db, item_id, include_deleted=True)
    outstanding = outstanding_for_item(db, item_id)
    return {
        "total_stock": item.total_stock,
        "available_stock": item.available_stock,
        "borrowed": item.borrowed,
        "outstanding_loans": outstanding,
        "consistent": (
            0 <= item.available_stock <= item.total_stock
            and item.borrowed == outstanding
        ),
    }

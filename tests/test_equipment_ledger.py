import pytest

from conftest import make_item
from fieldwork.models.models import EquipmentLoan, Job, JobTechnician
from fieldwork.schemas.jobs import EquipmentLine
from fieldwork.services import assignment, equipment_ledger as ledger
from fieldwork.services.errors import (
    AlreadyFullyReturned,
    BelowBorrowed,
    InsufficientStock,
    InvalidInput,
    InvalidQuantity,
    NotFound,
)
from fieldwork.services.unit_of_work import UnitOfWork


def _return(db, loan_id, qty, photo_url=None):
    with UnitOfWork(db, "test_return"):
        ledger.return_partial(db, loan_id, qty, photo_url)
    return db.get(EquipmentLoan, loan_id)


def test_reserve_partial_and_full_return(db, make_job):
    e1 = make_item(db, "Drill", 10)
    job = make_job(equipment=[(e1.id, 4)])
    assert ledger.balance(db, e1.id)["available_stock"] == 6

    loan_id = job.loans[0].id
    loan = _return(db, loan_id, 1, "https://cdn.example.com/r1.jpg")
    assert loan.outstanding == 3
    assert loan.quantity == 4
    assert not loan.is_returned
    assert ledger.balance(db, e1.id)["available_stock"] == 7

    loan = _return(db, loan_id, 3, "https://cdn.example.com/r2.jpg")
    assert loan.outstanding == 0
    assert loan.is_returned
    assert loan.returned_at is not None
    assert loan.return_photo_url == "https://cdn.example.com/r2.jpg"
    state = ledger.balance(db, e1.id)
    assert state["available_stock"] == 10
    assert state["consistent"]


def test_return_rejects_bad_quantities(db, make_job):
    e1 = make_item(db, "Drill", 10)
    job = make_job(equipment=[(e1.id, 4)])
    loan_id = job.loans[0].id

    with pytest.raises(InvalidQuantity):
        _return(db, loan_id, 0)
    with pytest.raises(InvalidQuantity):
        _return(db, loan_id, 5)
    assert ledger.balance(db, e1.id)["available_stock"] == 6

    _return(db, loan_id, 4)
    with pytest.raises(AlreadyFullyReturned):
        _return(db, loan_id, 1)
    assert ledger.balance(db, e1.id)["available_stock"] == 10


def test_reserve_more_than_available(db, make_job):
    e1 = make_item(db, "Drill", 10)
    with pytest.raises(InsufficientStock) as excinfo:
        make_job(equipment=[(e1.id, 11)])
    assert "Available: 10, Requested: 11" in excinfo.value.message
    assert excinfo.value.to_dict()["code"] == "insufficient_stock"
    assert ledger.balance(db, e1.id)["available_stock"] == 10


def test_failed_batch_rolls_back_earlier_reservations(db, make_job, people):
    e1 = make_item(db, "Drill", 10)
    e2 = make_item(db, "Ladder", 10)
    with pytest.raises(InsufficientStock):
        make_job(technicians=[people.tech.id], equipment=[(e1.id, 5), (e2.id, 999)])

    first = ledger.balance(db, e1.id)
    assert first["total_stock"] == first["available_stock"] == 10
    assert first["outstanding_loans"] == 0
    assert ledger.balance(db, e2.id)["available_stock"] == 10
    assert db.query(Job).count() == 0
    assert db.query(JobTechnician).count() == 0
    assert db.query(EquipmentLoan).count() == 0


def test_unknown_item_is_not_found(db, make_job):
    import uuid

    with pytest.raises(NotFound):
        make_job(equipment=[(uuid.uuid4(), 1)])
    assert db.query(Job).count() == 0


def test_duplicate_lines_are_merged(db, make_job):
    e1 = make_item(db, "Drill", 10)
    job = make_job(equipment=[(e1.id, 2), (e1.id, 3)])
    assert len(job.loans) == 1
    assert job.loans[0].quantity == 5
    assert ledger.balance(db, e1.id)["available_stock"] == 5


def test_assign_equipment_tops_up_open_loan(db, make_job, callers):
    e1 = make_item(db, "Drill", 10)
    job = make_job(equipment=[(e1.id, 2)])
    loans = assignment.assign_equipment(db, callers.supervisor, job.id, [EquipmentLine(item_id=e1.id, quantity=3)])
    assert len(loans) == 1
    assert loans[0].quantity == 5
    assert loans[0].outstanding == 5
    assert db.query(EquipmentLoan).count() == 1
    assert ledger.balance(db, e1.id)["consistent"]


def test_normalize_lines_validation():
    import uuid

    item = uuid.uuid4()
    assert dict(ledger.normalize_lines([(item, 1), (item, 2)])) == {item: 3}
    with pytest.raises(InvalidQuantity):
        ledger.normalize_lines([(item, 0)])
    with pytest.raises(InvalidQuantity):
        ledger.normalize_lines([(item, True)])
    with pytest.raises(InvalidInput):
        ledger.normalize_lines([(None, 1)])


def test_resize_total_keeps_borrowed_amount(db, make_job):
    e1 = make_item(db, "Drill", 10)
    make_job(equipment=[(e1.id, 4)])

    with pytest.raises(BelowBorrowed) as excinfo:
        with UnitOfWork(db, "test_resize"):
            ledger.resize_total(db, e1.id, 3)
    assert excinfo.value.message == "Cannot reduce total stock below currently borrowed amount (4)"

    with UnitOfWork(db, "test_resize"):
        ledger.resize_total(db, e1.id, 5)
    state = ledger.balance(db, e1.id)
    assert state["total_stock"] == 5
    assert state["available_stock"] == 1
    assert state["borrowed"] == 4
    assert state["consistent"]

    with UnitOfWork(db, "test_resize"):
        ledger.resize_total(db, e1.id, 4)
    assert ledger.balance(db, e1.id)["available_stock"] == 0

    with pytest.raises(InvalidInput):
        ledger.resize_total(db, e1.id, 0)


def test_release_equipment_returns_whole_loan(db, make_job, callers):
    e1 = make_item(db, "Drill", 10)
    job = make_job(equipment=[(e1.id, 4)])
    loan = assignment.release_equipment(db, callers.supervisor, job.id, e1.id)
    assert loan.is_returned
    assert loan.return_photo_url is None
    assert ledger.balance(db, e1.id)["available_stock"] == 10
    with pytest.raises(NotFound):
        assignment.release_equipment(db, callers.supervisor, job.id, e1.id)


def test_resize_assigns_available_before_total():
    import uuid

    sql = str(ledger._resize_statement(uuid.uuid4(), 12))
    set_clause = sql.split(" WHERE ")[0]
    assert set_clause.index("available_stock=") < set_clause.index("total_stock=")

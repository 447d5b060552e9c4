import pytest

from conftest import make_item
from fieldwork.models.models import EquipmentItem
from fieldwork.services.errors import InvalidInput
from fieldwork.services.unit_of_work import UnitOfWork


def test_commit_then_side_effects(db):
    item = make_item(db, "Ladder", 3)
    calls = []

    with UnitOfWork(db, "rename") as uow:
        db.get(EquipmentItem, item.id).name = "Ladder 6m"
        uow.after_commit(lambda session, label: calls.append(label), "renamed")

    assert calls == ["renamed"]
    assert uow.committed
    assert db.get(EquipmentItem, item.id).name == "Ladder 6m"


def test_domain_error_rolls_back_and_skips_side_effects(db):
    item = make_item(db, "Ladder", 3)
    calls = []

    with pytest.raises(InvalidInput):
        with UnitOfWork(db, "rename") as uow:
            db.get(EquipmentItem, item.id).name = "Broken"
            db.flush()
            uow.after_commit(lambda session: calls.append("ran"))
            raise InvalidInput("nope")

    assert calls == []
    assert not uow.committed
    assert db.get(EquipmentItem, item.id).name == "Ladder"


def test_failing_side_effect_keeps_business_change(db):
    item = make_item(db, "Ladder", 3)
    calls = []

    def broken_notifier(session):
        raise RuntimeError("notification backend down")

    with UnitOfWork(db, "rename") as uow:
        db.get(EquipmentItem, item.id).name = "Ladder 6m"
        uow.after_commit(broken_notifier)
        uow.after_commit(lambda session: calls.append("audit"))

    assert calls == ["audit"]
    assert db.get(EquipmentItem, item.id).name == "Ladder 6m"

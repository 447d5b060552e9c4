import os

os.environ["DATABASE_URL"] = "sqlite://"
os.environ["AUTO_CREATE_DB"] = "false"
os.environ["JWT_SECRET"] = "test-secret"
os.environ["RATE_LIMIT"] = "10000/minute"
os.environ.setdefault("LOG_LEVEL", "WARNING")

from datetime import date
from types import SimpleNamespace

import pytest
from fastapi.testclient import TestClient
from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker
from sqlalchemy.pool import StaticPool

from fieldwork.db import Base, get_db
from fieldwork.auth.security import caller_from_profile, create_access_token
from fieldwork.models.enums import JobCategory, Role
from fieldwork.models.models import EquipmentItem, Profile
from fieldwork.schemas.jobs import EquipmentLine, JobCreate, Location
from fieldwork.services import assignment


SITE = {"latitude": -6.2, "longitude": 106.816666}


@pytest.fixture()
def engine():
    engine = create_engine(
        "sqlite://",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    Base.metadata.create_all(bind=engine)
    yield engine
    Base.metadata.drop_all(bind=engine)
    engine.dispose()


@pytest.fixture()
def session_factory(engine):
    return sessionmaker(bind=engine, autoflush=False, autocommit=False)


@pytest.fixture()
def db(session_factory):
    session = session_factory()
    try:
        yield session
    finally:
        session.close()


@pytest.fixture()
def client(session_factory):
    from fieldwork.main import app

    def override_get_db():
        session = session_factory()
        try:
            yield session
        finally:
            session.close()

    app.dependency_overrides[get_db] = override_get_db
    try:
        yield TestClient(app)
    finally:
        app.dependency_overrides.clear()


def make_profile(db, name: str, role: Role) -> Profile:
    profile = Profile(name=name, email=f"{name.lower()}@example.com", role=role, is_active=True)
    db.add(profile)
    db.commit()
    return profile


def make_item(db, name: str, total: int = 10) -> EquipmentItem:
    item = EquipmentItem(name=name, total_stock=total, available_stock=total)
    db.add(item)
    db.commit()
    return item


@pytest.fixture()
def people(db):
    profiles = SimpleNamespace(
        supervisor=make_profile(db, "Sari", Role.supervisor),
        other_supervisor=make_profile(db, "Andi", Role.supervisor),
        tech=make_profile(db, "Budi", Role.technician),
        tech2=make_profile(db, "Dewi", Role.technician),
        manager=make_profile(db, "Maya", Role.manager),
    )
    return profiles


@pytest.fixture()
def callers(people):
    return SimpleNamespace(**{key: caller_from_profile(p) for key, p in vars(people).items()})


@pytest.fixture()
def tokens(people):
    return SimpleNamespace(**{key: create_access_token(str(p.id)) for key, p in vars(people).items()})


def auth(token: str) -> dict:
    return {"Authorization": f"Bearer {token}"}


def job_payload(technician_ids=(), equipment=(), **overrides) -> JobCreate:
    data = {
        "title": "Tower repair",
        "category": JobCategory.installation,
        "location": Location(**SITE),
        "start_date": date(2024, 1, 1),
        "end_date": date(2024, 1, 10),
        "technician_ids": list(technician_ids),
        "equipment": [EquipmentLine(item_id=i, quantity=q) for i, q in equipment],
    }
    data.update(overrides)
    return JobCreate(**data)


@pytest.fixture()
def make_job(db, people, callers):
    def _make(equipment=(), technicians=None, **overrides):
        technician_ids = [people.tech.id] if technicians is None else technicians
        payload = job_payload(technician_ids=technician_ids, equipment=equipment, **overrides)
        return assignment.create_job(db, callers.supervisor, payload)
    return _make

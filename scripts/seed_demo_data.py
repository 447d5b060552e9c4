"""
Seed the local database with demo profiles and equipment.

Usage:
  python scripts/seed_demo_data.py

This script is idempotent: running it multiple times will upsert the same
records based on unique fields (email for profiles, name for equipment).
It prints a bearer token per profile for trying the API locally.
"""

from fieldwork.db import SessionLocal, Base, engine
from fieldwork.models.enums import Role
from fieldwork.models.models import Profile, EquipmentItem
from fieldwork.auth.security import create_access_token


PROFILES = [
    ("Sari Supervisor", "supervisor@example.com", Role.supervisor),
    ("Budi Technician", "budi@example.com", Role.technician),
    ("Dewi Technician", "dewi@example.com", Role.technician),
    ("Maya Manager", "manager@example.com", Role.manager),
]

EQUIPMENT = [
    ("Drill", "Power tool", 10),
    ("Ladder 6m", "Access", 4),
    ("Fiber splicer", "Network", 2),
]


def ensure_profile(session, name: str, email: str, role: Role) -> Profile:
    profile = session.query(Profile).filter(Profile.email == email).first()
    if profile:
        profile.name = name
        profile.role = role
        profile.is_active = True
        session.flush()
        return profile
    profile = Profile(name=name, email=email, role=role, is_active=True)
    session.add(profile)
    session.flush()
    return profile


def ensure_item(session, name: str, kind: str, total: int) -> EquipmentItem:
    item = session.query(EquipmentItem).filter(EquipmentItem.name == name, EquipmentItem.is_deleted.is_(False)).first()
    if item:
        return item
    item = EquipmentItem(name=name, kind=kind, total_stock=total, available_stock=total)
    session.add(item)
    session.flush()
    return item


def main():
    Base.metadata.create_all(bind=engine)
    session = SessionLocal()
    try:
        profiles = [ensure_profile(session, *row) for row in PROFILES]
        items = [ensure_item(session, *row) for row in EQUIPMENT]
        session.commit()

        print("Seed completed:")
        for p in profiles:
            print(f"  {p.role.value:<10} {p.email:<28} {p.id}")
            print(f"    token: {create_access_token(str(p.id))}")
        for i in items:
            print(f"  item {i.name:<16} {i.available_stock}/{i.total_stock} {i.id}")
    except Exception:
        session.rollback()
        raise
    finally:
        session.close()


if __name__ == "__main__":
    main()

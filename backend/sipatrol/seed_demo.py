"""
Demo data seeder for SiPatrol.

Creates a demo unit plus an administrator profile and a security officer
profile assigned to it, so a field device can deliver reports right after a
fresh start. Profile IDs stand in for identity provider subjects; mint a
bearer token for them with ``sipatrol.core.security.create_access_token``.

This seeder is idempotent; it is safe to call on every startup.
"""
from .models.base import SessionLocal, Base, engine
from .models.profile import Profile, Unit, UserRole

DEMO_UNIT_ID = "demo-unit-1"
DEMO_UNIT_NAME = "North Gate Patrol"

DEMO_ADMIN_ID = "demo-admin"
DEMO_OFFICER_ID = "demo-officer"


def seed_demo_data() -> None:
    """Create the demo unit and profiles if they do not already exist."""
    # Ensure tables exist (no-op when already created by main.py)
    Base.metadata.create_all(bind=engine)

    db = SessionLocal()
    try:
        _seed_unit(db)
        _seed_profiles(db)
    finally:
        db.close()


# ── helpers ──────────────────────────────────────────────────────────────────

def _seed_unit(db) -> None:
    if not db.query(Unit).filter(Unit.id == DEMO_UNIT_ID).first():
        db.add(Unit(
            id=DEMO_UNIT_ID,
            name=DEMO_UNIT_NAME,
            description="Demo unit covering the north gate and car park",
        ))
        db.commit()
        print(f"[seed] Demo unit created: {DEMO_UNIT_NAME}")


def _seed_profiles(db) -> None:
    if not db.query(Profile).filter(Profile.id == DEMO_ADMIN_ID).first():
        db.add(Profile(
            id=DEMO_ADMIN_ID,
            full_name="Demo Admin",
            role=UserRole.ADMIN,
        ))
        db.commit()
        print(f"[seed] Demo admin profile created: {DEMO_ADMIN_ID}")

    if not db.query(Profile).filter(Profile.id == DEMO_OFFICER_ID).first():
        db.add(Profile(
            id=DEMO_OFFICER_ID,
            full_name="Demo Officer",
            role=UserRole.SECURITY,
            assigned_unit_id=DEMO_UNIT_ID,
        ))
        db.commit()
        print(f"[seed] Demo officer profile created: {DEMO_OFFICER_ID}")

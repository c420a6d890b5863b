"""Shared fixtures: isolated settings, report API database, fake report API."""
import asyncio
import os
import tempfile

# Must be set before sipatrol.core.config is imported
os.environ.setdefault("DATABASE_URL", "sqlite:///:memory:")
os.environ.setdefault("REPORT_STORAGE_DIR", tempfile.mkdtemp(prefix="sipatrol-uploads-"))
os.environ.setdefault("SEED_DEMO_DATA", "false")
os.environ.setdefault("CONNECTIVITY_PROBE_ENABLED", "false")
os.environ.setdefault("SYNC_INTERVAL_SECONDS", "0")

import pytest
from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker
from sqlalchemy.pool import StaticPool

from sipatrol.models.base import Base, get_db
from sipatrol.models.profile import Profile, Unit, UserRole
import sipatrol.models.report  # noqa: F401  registers the Report mapper
from sipatrol.services.offline_queue import OfflineReportQueue
from sipatrol.services.report_client import ConnectivityError, DeliveryResult

OFFICER_ID = "officer-1"
OTHER_OFFICER_ID = "officer-2"
ADMIN_ID = "admin-1"
UNASSIGNED_ID = "officer-unassigned"
UNIT_ID = "unit-north"


class FakeReportApi:
    """In-memory report API that honours idempotency keys like the real one."""

    def __init__(self, delay: float = 0.0):
        self.delay = delay
        self.calls = []        # local_ids in the order they were submitted
        self.created = {}      # idempotency key -> report id
        self.unreachable = False
        self.in_flight = 0
        self.max_in_flight = 0
        self._scripted = {}

    def fail_next(self, local_id, exc, commit=False):
        """Make the next call for ``local_id`` raise ``exc``, optionally after creating the report."""
        self._scripted.setdefault(local_id, []).append((exc, commit))

    async def submit_report(self, record):
        self.calls.append(record.local_id)
        self.in_flight += 1
        self.max_in_flight = max(self.max_in_flight, self.in_flight)
        try:
            if self.delay:
                await asyncio.sleep(self.delay)
            if self.unreachable:
                raise ConnectivityError("network unreachable")
            script = self._scripted.get(record.local_id)
            if script:
                exc, commit = script.pop(0)
                if commit:
                    self._create(record)
                raise exc
            key = record.idempotency_key
            if key in self.created:
                return DeliveryResult(report_id=self.created[key], duplicate=True)
            return DeliveryResult(report_id=self._create(record))
        finally:
            self.in_flight -= 1

    def _create(self, record):
        report_id = f"report-{len(self.created) + 1}"
        self.created.setdefault(record.idempotency_key, report_id)
        return self.created[record.idempotency_key]


@pytest.fixture()
def fake_api():
    return FakeReportApi()


@pytest.fixture()
def slow_api():
    """Fake report API whose calls take long enough to overlap with new triggers."""
    return FakeReportApi(delay=0.05)


@pytest.fixture()
def queue(tmp_path):
    """Durable queue backed by a throwaway SQLite file."""
    q = OfflineReportQueue(database_url=f"sqlite:///{tmp_path / 'offline.db'}")
    yield q
    q.engine.dispose()


@pytest.fixture()
def api_db():
    """Isolated in-memory report API database with a unit and three profiles."""
    test_engine = create_engine(
        "sqlite:///:memory:",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    TestSession = sessionmaker(autocommit=False, autoflush=False, bind=test_engine)
    Base.metadata.create_all(bind=test_engine)

    db = TestSession()
    db.add(Unit(id=UNIT_ID, name="North Gate"))
    db.add(Profile(id=OFFICER_ID, full_name="Officer One", role=UserRole.SECURITY, assigned_unit_id=UNIT_ID))
    db.add(Profile(id=OTHER_OFFICER_ID, full_name="Officer Two", role=UserRole.SECURITY, assigned_unit_id=UNIT_ID))
    db.add(Profile(id=ADMIN_ID, full_name="Admin", role=UserRole.ADMIN))
    db.add(Profile(id=UNASSIGNED_ID, full_name="New Officer", role=UserRole.SECURITY))
    db.commit()

    def override_get_db():
        session = TestSession()
        try:
            yield session
        finally:
            session.close()

    from sipatrol.main import app
    app.dependency_overrides[get_db] = override_get_db
    yield db
    app.dependency_overrides.pop(get_db, None)
    db.close()
    test_engine.dispose()

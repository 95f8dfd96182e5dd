import os

# Settings are cached on first use, so the test database has to be chosen
# before anything from cmr is imported.
os.environ["DATABASE_URL"] = "sqlite://"
os.environ["RUN_MIGRATIONS"] = "false"
os.environ["JWT_SECRET"] = "test-secret"
os.environ["DEFAULT_ACTOR"] = "system"
os.environ.pop("REDIS_URL", None)
os.environ.pop("NOTIFY_WEBHOOK_URL", None)

from datetime import datetime, timedelta, timezone

import pytest
from fastapi.testclient import TestClient

from cmr.application.locking import KeyedLock
from cmr.application.service import DeliveryService
from cmr.domain.ledger import record_milestone
from cmr.domain.models import Base
from cmr.domain.record import ShipmentDeliveryRecord
from cmr.infrastructure.db import SessionLocal, engine
from cmr.infrastructure.notifications import get_publisher
from cmr.infrastructure.repository import SqlAlchemyRecordStore
from cmr.main import app

T0 = datetime(2024, 5, 1, 8, 0, tzinfo=timezone.utc)


def milestone_time(slot: int) -> datetime:
    return T0 + timedelta(hours=6 * slot)


class RecordingPublisher:
    def __init__(self):
        self.events = []

    def publish(self, event):
        self.events.append(event)


@pytest.fixture(autouse=True)
def schema():
    Base.metadata.create_all(engine)
    yield
    Base.metadata.drop_all(engine)


@pytest.fixture
def advance():
    """Fill milestones in order until the record reaches ``step``."""
    def _advance(record: ShipmentDeliveryRecord, step: int) -> ShipmentDeliveryRecord:
        for slot in range(record.current_step + 1, step + 1):
            record = record_milestone(record, slot, milestone_time(slot))
        return record
    return _advance


@pytest.fixture
def fresh():
    return ShipmentDeliveryRecord(id="CMR-0001", bill_number="BL-778120")


@pytest.fixture
def db():
    session = SessionLocal()
    try:
        yield session
    finally:
        session.close()


@pytest.fixture
def store(db):
    return SqlAlchemyRecordStore(db)


@pytest.fixture
def publisher():
    return RecordingPublisher()


@pytest.fixture
def service(store, publisher):
    return DeliveryService(store, publisher, locks=KeyedLock())


@pytest.fixture
def client(publisher):
    app.dependency_overrides[get_publisher] = lambda: publisher
    yield TestClient(app)
    app.dependency_overrides.clear()

import os
from datetime import date, datetime, time, timedelta

import pytest
from sqlalchemy.orm import sessionmaker

# Set testing environment variables before the app is imported
os.environ["TESTING"] = "1"
os.environ.setdefault("TEST_DATABASE_URL", "sqlite:///./test.db")

from app.core.config import Settings
from app.core.database import Base, build_engine
import app.models  # noqa: F401
from app.services.booking_service import BookingEngine
from app.services.clinical_records import ClinicalRecordLinker
from app.services.ledger_service import AppointmentLedger
from app.services.session_locks import LocalSessionLocks
from app.services.session_service import SessionLifecycleController

SESSION_DAY = date(2030, 1, 15)


class TickingClock:
    """Returns a strictly increasing time on every call."""

    def __init__(self, start: datetime, step: timedelta = timedelta(seconds=1)):
        self.now = start
        self.step = step

    def __call__(self) -> datetime:
        current = self.now
        self.now = self.now + self.step
        return current


@pytest.fixture
def db_engine(tmp_path):
    engine = build_engine(f"sqlite:///{tmp_path / 'scheduling.db'}")
    Base.metadata.create_all(bind=engine)
    yield engine
    engine.dispose()


@pytest.fixture
def session_factory(db_engine):
    return sessionmaker(autocommit=False, autoflush=False, bind=db_engine)


@pytest.fixture
def db(session_factory):
    db = session_factory()
    try:
        yield db
    finally:
        db.close()


@pytest.fixture
def locks():
    return LocalSessionLocks(timeout=2.0)


@pytest.fixture
def clock():
    return TickingClock(datetime(2030, 1, 10, 9, 0))


@pytest.fixture
def test_settings():
    return Settings(
        REJECT_PAST_SESSION_BOOKINGS=True,
        REQUIRE_RECORD_BEFORE_COMPLETION=False,
        SESSION_LOCK_TIMEOUT_SECONDS=2.0,
    )


@pytest.fixture
def controller(db, locks, test_settings, clock):
    return SessionLifecycleController(db, locks, settings=test_settings, clock=clock)


@pytest.fixture
def booking(db, locks, test_settings, clock):
    return BookingEngine(db, locks, settings=test_settings, clock=clock)


@pytest.fixture
def ledger(db):
    return AppointmentLedger(db)


@pytest.fixture
def linker(db, clock):
    return ClinicalRecordLinker(db, clock=clock)


@pytest.fixture
def make_session(controller):
    def _make(capacity=2, provider_id="doc-1", day=SESSION_DAY,
              start=time(9, 0), end=time(12, 0)):
        return controller.create_session(provider_id, day, start, end, capacity)
    return _make

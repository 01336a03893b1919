import os
from datetime import datetime, timezone

# must be set before focuslab.config is imported anywhere
os.environ.setdefault("DATABASE_URL", "sqlite://")
os.environ.setdefault("ALLOW_DEV_CORS", "false")

import pytest
from fastapi.testclient import TestClient
from sqlmodel import Session

from focuslab import services
from focuslab.clock import ManualClock
from focuslab.database import build_engine, create_db_and_tables
from focuslab.utils.locks import KeyedLocks

MONDAY_9AM = datetime(2024, 3, 4, 9, 0, tzinfo=timezone.utc)


@pytest.fixture
def engine():
    """Fresh in-memory database per test."""
    engine = build_engine("sqlite://")
    create_db_and_tables(engine)
    yield engine
    engine.dispose()


@pytest.fixture
def db(engine):
    with Session(engine) as session:
        yield session


@pytest.fixture
def clock():
    return ManualClock(MONDAY_9AM)


@pytest.fixture
def locks():
    return KeyedLocks(timeout_seconds=2)


@pytest.fixture
def session_service(db, clock, locks):
    return services.SessionService(db, clock, locks)


@pytest.fixture
def habit_service(db, clock, locks):
    return services.HabitService(db, clock, locks)


@pytest.fixture
def study_service(db, clock):
    return services.StudyService(db, clock)


@pytest.fixture
def report_service(db, clock):
    return services.ReportService(db, clock)


@pytest.fixture
def client(engine, clock):
    from focuslab.main import create_app
    return TestClient(create_app(engine=engine, clock=clock))

"""Pytest fixtures for testing"""

import pytest
from datetime import date
from typing import Generator
from fastapi.testclient import TestClient
from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker, Session
from bisyaroh_gateway.api.main import create_app
from bisyaroh_gateway.infrastructure.database.models import Base
from bisyaroh_gateway.infrastructure.database.session import get_db
from bisyaroh_gateway.infrastructure.database.repositories import StudentRepository, TimelineRepository
from bisyaroh_gateway.domain.models import Period, Timeline, OutstandingPeriod


# Test database
TEST_DATABASE_URL = "sqlite:///./test.db"
engine = create_engine(TEST_DATABASE_URL, connect_args={"check_same_thread": False})
TestingSessionLocal = sessionmaker(autocommit=False, autoflush=False, bind=engine)


@pytest.fixture
def db() -> Generator[Session, None, None]:
    """Create test database and session"""
    Base.metadata.create_all(bind=engine)
    db = TestingSessionLocal()
    try:
        yield db
    finally:
        db.close()
        Base.metadata.drop_all(bind=engine)


@pytest.fixture
def other_db(db: Session) -> Generator[Session, None, None]:
    """Second session on the same test database, like a concurrent worker"""
    other = TestingSessionLocal()
    try:
        yield other
    finally:
        other.close()


@pytest.fixture
def client(db: Session) -> TestClient:
    """Create FastAPI test client with test database"""
    app = create_app()

    def override_get_db():
        try:
            yield db
        finally:
            pass

    app.dependency_overrides[get_db] = override_get_db
    return TestClient(app)


def make_timeline(
    timeline_id: str = "tl_2025",
    amounts: tuple = (40000, 40000, 40000, 40000),
    mode: str = "manual",
    simulation_date: date | None = date(2025, 2, 15),
    inactive: tuple = (),
) -> Timeline:
    """Monthly timeline due on the 10th of each month starting January 2025"""
    periods = {}
    for i, amount in enumerate(amounts, start=1):
        key = f"period_{i}"
        periods[key] = Period(
            key=key,
            number=i,
            label=f"Bulan {i}",
            amount=amount,
            due_date=date(2025, i, 10),
            active=i not in inactive,
        )
    return Timeline(id=timeline_id, name="Bisyaroh 2025", periods=periods, mode=mode, simulation_date=simulation_date)


@pytest.fixture
def timeline(db: Session) -> Timeline:
    """Active manual-mode timeline with four 40k periods, simulated now = 15 Feb 2025"""
    created = TimelineRepository(db).create_active_timeline(make_timeline())
    db.commit()
    return created


@pytest.fixture
def student_id(db: Session) -> str:
    StudentRepository(db).create_student("santri_001", "Ahmad Fauzi", "Bapak Fauzi")
    db.commit()
    return "santri_001"


@pytest.fixture
def two_unpaid_periods() -> list[OutstandingPeriod]:
    return [
        OutstandingPeriod(period_key="period_1", amount=40000, label="Januari 2025"),
        OutstandingPeriod(period_key="period_2", amount=40000, label="Februari 2025"),
    ]


@pytest.fixture
def timeline_factory():
    """Build (not persist) timelines with custom amounts or mode"""
    return make_timeline

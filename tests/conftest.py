"""Pytest fixtures for testing"""

import os

# Point the app's engine at SQLite before any facility_ledger module reads settings
os.environ.setdefault("DATABASE_URL", "sqlite:///./test.db")

import pytest
from datetime import date
from decimal import Decimal
from typing import Generator
from fastapi.testclient import TestClient
from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker, Session
from facility_ledger.api.main import create_app
from facility_ledger.api.dependencies import get_facility_service, get_loan_service
from facility_ledger.infrastructure.database.models import Base
from facility_ledger.services.facility_service import FacilityService
from facility_ledger.services.loan_service import LoanLedgerService


# Test database
TEST_DATABASE_URL = "sqlite:///./test.db"
engine = create_engine(TEST_DATABASE_URL, connect_args={"check_same_thread": False})
TestingSessionLocal = sessionmaker(autocommit=False, autoflush=False, bind=engine)

# Day 0 for scenario tests
DAY_0 = date(2025, 1, 1)


class FixedClock:
    """Injectable clock the tests can move forward"""

    def __init__(self, today: date):
        self.today = today

    def __call__(self) -> date:
        return self.today


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
def clock() -> FixedClock:
    return FixedClock(DAY_0)


@pytest.fixture
def facility_service(db: Session, clock: FixedClock) -> FacilityService:
    return FacilityService(db, clock=clock)


@pytest.fixture
def loan_service(db: Session, clock: FixedClock) -> LoanLedgerService:
    return LoanLedgerService(db, clock=clock)


@pytest.fixture
def bank(facility_service: FacilityService):
    return facility_service.create_bank(name="Riyad Bank", code="RIBL")


@pytest.fixture
def facility(facility_service: FacilityService, bank):
    """Revolving facility with a 90-day revolving window"""
    return facility_service.create_facility(
        bank_id=bank.id,
        credit_limit=Decimal("1000000"),
        cost_of_funding=Decimal("6.50"),
        start_date=DAY_0,
        max_revolving_period=90,
        enable_revolving_tracking=True,
    )


@pytest.fixture
def untracked_facility(facility_service: FacilityService, bank):
    """Term facility without revolving-period tracking"""
    return facility_service.create_facility(
        bank_id=bank.id,
        credit_limit=Decimal("500000"),
        cost_of_funding=Decimal("5.75"),
        start_date=DAY_0,
        facility_type="term",
    )


@pytest.fixture
def client(db: Session, clock: FixedClock) -> TestClient:
    """Create FastAPI test client with test database and fixed clock"""
    app = create_app()

    app.dependency_overrides[get_loan_service] = lambda: LoanLedgerService(db, clock=clock)
    app.dependency_overrides[get_facility_service] = lambda: FacilityService(db, clock=clock)
    return TestClient(app)

"""
Test configuration and shared fixtures for the hospital scheduling test suite.

Uses an in-memory SQLite database by default; set TEST_DATABASE_URL to run
against PostgreSQL. Each test gets freshly created tables.
"""

import os

# Keep the relay scheduler out of tests that import the app
os.environ.setdefault("EVENT_RELAY_ENABLED", "false")

import pytest
from datetime import datetime, timedelta
from decimal import Decimal
from typing import Generator, Optional

from sqlalchemy import create_engine
from sqlalchemy.engine import Engine
from sqlalchemy.orm import Session, sessionmaker
from sqlalchemy.pool import NullPool, StaticPool
from fastapi.testclient import TestClient

from api.dependencies import get_event_dispatcher, get_service_clients
from core.database import Base, get_db
import models  # noqa: F401  (registers all tables on Base.metadata)
from models import Appointment, AppointmentStatus, Bill, BillStatus
from services.event_relay_service import EventRelayService
from services.service_clients import ServiceClients
from tests.fakes import CARDIOLOGY, build_fake_clients


# Test database URL
TEST_DATABASE_URL = os.getenv("TEST_DATABASE_URL", "sqlite://")


def make_test_engine(url: str) -> Engine:
    """Engine for tests: a single shared connection for in-memory SQLite."""
    if url == "sqlite://":
        return create_engine(url, connect_args={"check_same_thread": False}, poolclass=StaticPool)
    if url.startswith("sqlite"):
        return create_engine(url, connect_args={"check_same_thread": False})
    return create_engine(url, poolclass=NullPool)


@pytest.fixture(scope="function")
def db_engine() -> Generator[Engine, None, None]:
    """Create a database engine with a fresh schema for one test."""
    engine = make_test_engine(TEST_DATABASE_URL)
    Base.metadata.drop_all(bind=engine)
    Base.metadata.create_all(bind=engine)

    yield engine

    Base.metadata.drop_all(bind=engine)
    engine.dispose()


@pytest.fixture(scope="function")
def session_factory(db_engine):
    return sessionmaker(bind=db_engine, autoflush=False, expire_on_commit=False)


@pytest.fixture(scope="function")
def db_session(session_factory) -> Generator[Session, None, None]:
    """Provide a database session for a test."""
    session = session_factory()

    yield session

    session.rollback()
    session.close()


@pytest.fixture
def fake_clients() -> ServiceClients:
    """Remote collaborators backed by in-memory fakes (see tests/fakes.py)."""
    return build_fake_clients()


@pytest.fixture
def correlation_id() -> str:
    return "test-correlation-id"


def create_appointment(
    db: Session,
    slot_start: datetime,
    slot_end: Optional[datetime] = None,
    patient_id: int = 1,
    doctor_id: int = 10,
    status: AppointmentStatus = AppointmentStatus.SCHEDULED,
    reschedule_count: int = 0,
    department: str = CARDIOLOGY,
) -> Appointment:
    """Insert an appointment directly, bypassing the booking rules."""
    appointment = Appointment(
        patient_id=patient_id,
        doctor_id=doctor_id,
        department=department,
        slot_start=slot_start,
        slot_end=slot_end or slot_start + timedelta(minutes=30),
        status=status.value,
        reschedule_count=reschedule_count,
    )
    db.add(appointment)
    db.commit()
    return appointment


def create_bill(
    db: Session,
    appointment_id: int,
    total: str,
    status: BillStatus = BillStatus.OPEN,
    patient_id: int = 1,
) -> Bill:
    """Insert a fee-only bill with the given total."""
    amount = Decimal(total)
    bill = Bill(
        patient_id=patient_id,
        appointment_id=appointment_id,
        consultation_fee=amount,
        medication_fee=Decimal("0.00"),
        tax_amount=Decimal("0.00"),
        total_amount=amount,
        status=status.value,
    )
    db.add(bill)
    db.commit()
    return bill


@pytest.fixture
def api_client(db_session: Session, fake_clients: ServiceClients) -> Generator[TestClient, None, None]:
    """
    TestClient wired to the test session and fake remote clients.

    Outbox events are relayed with the test session right after each request.
    """
    from main import app

    def override_get_db():
        try:
            yield db_session
        except Exception:
            db_session.rollback()
            raise

    app.dependency_overrides[get_db] = override_get_db
    app.dependency_overrides[get_service_clients] = lambda: fake_clients
    app.dependency_overrides[get_event_dispatcher] = lambda: (
        lambda clients: EventRelayService.dispatch_pending(db_session, clients)
    )

    yield TestClient(app)

    app.dependency_overrides.clear()

"""Pytest fixtures for testing"""

import uuid
import pytest
from datetime import date, timedelta
from typing import Callable, Generator
from fastapi.testclient import TestClient
from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker, Session
from factor_engine.api.main import create_app
from factor_engine.infrastructure.database.models import Base, ReceivableInstallment
from factor_engine.infrastructure.database.session import get_db
from factor_engine.services.registry import OperationRegistry


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


@pytest.fixture
def factor(db: Session):
    """Factor F1"""
    return OperationRegistry(db).create_factor("Factor One", code="F1", default_fee_rate=2.0)


@pytest.fixture
def make_installment(db: Session) -> Callable[..., ReceivableInstallment]:
    """Factory for receivable installments in the eligibility table"""
    counter = {"n": 0}

    def _make(
        amount_open_cents: int,
        status: str = "open",
        custody_status: str = "own",
        factor_id: uuid.UUID = None,
        due_in_days: int = 30,
        title_number: str = None,
    ) -> ReceivableInstallment:
        counter["n"] += 1
        installment = ReceivableInstallment(
            title_number=title_number or f"TIT-{counter['n']:04d}",
            installment_number=1,
            due_date=date.today() + timedelta(days=due_in_days),
            status=status,
            amount_open_cents=amount_open_cents,
            custody_status=custody_status,
            factor_id=factor_id,
        )
        db.add(installment)
        db.commit()
        return installment

    return _make


@pytest.fixture
def draft_operation(db: Session, factor):
    """Draft operation with factor F1"""
    return OperationRegistry(db).create_operation(factor.id, reference="OP-TEST")

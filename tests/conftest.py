"""Pytest fixtures for testing"""

import pytest
from datetime import date
from types import SimpleNamespace
from typing import Any, Dict, Generator, List
from fastapi.testclient import TestClient
from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker, Session
from installment_gateway.api.dependencies import get_ledger_client, get_today
from installment_gateway.api.main import create_app
from installment_gateway.infrastructure.database.models import Base, Branch, ContractPolicyRecord, Customer
from installment_gateway.infrastructure.database.session import get_db


# Test database
TEST_DATABASE_URL = "sqlite:///./test.db"
engine = create_engine(TEST_DATABASE_URL, connect_args={"check_same_thread": False})
TestingSessionLocal = sessionmaker(autocommit=False, autoflush=False, bind=engine)

# Fixed "today" so schedules starting in 2025-01 are never in the past
TODAY = date(2025, 1, 10)


class RecordingLedgerClient:
    """Ledger stand-in that keeps events instead of posting them"""

    def __init__(self):
        self.events: List[Dict[str, Any]] = []

    async def send_event(self, payload: Dict[str, Any]) -> None:
        self.events.append(payload)

    def of_type(self, event: str) -> List[Dict[str, Any]]:
        return [e for e in self.events if e["event"] == event]


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
def today() -> date:
    return TODAY


@pytest.fixture
def seed(db: Session) -> SimpleNamespace:
    """One branch, a customer with a postal account, one without, and the three policy kinds"""
    branch = Branch(id=1, name="Main branch", reference_prefix="RF")
    customer = Customer(id=1, first_name="Amine", last_name="Benali", payer_account="1234567", payer_key="12")
    no_account = Customer(id=2, first_name="Sara", last_name="Haddad", payer_account=None, payer_key=None)
    first = ContractPolicyRecord(id=1, display_name="1st of month", day_rule="first_of_month")
    last = ContractPolicyRecord(id=2, display_name="End of month", day_rule="last_of_month")
    tenth = ContractPolicyRecord(id=3, display_name="10th of month", day_rule="explicit_day", explicit_day=10)
    db.add_all([branch, customer, no_account, first, last, tenth])
    db.commit()
    return SimpleNamespace(
        branch_id=1,
        prefix="RF",
        customer_id=1,
        payer_account="1234567",
        no_account_customer_id=2,
        first_of_month=1,
        last_of_month=2,
        tenth=3,
    )


@pytest.fixture
def ledger() -> RecordingLedgerClient:
    return RecordingLedgerClient()


@pytest.fixture
def client(db: Session, seed: SimpleNamespace, ledger: RecordingLedgerClient) -> TestClient:
    """Create FastAPI test client with test database, fixed date and recording ledger"""
    app = create_app()

    def override_get_db():
        try:
            yield db
        finally:
            pass

    app.dependency_overrides[get_db] = override_get_db
    app.dependency_overrides[get_today] = lambda: TODAY
    app.dependency_overrides[get_ledger_client] = lambda: ledger
    return TestClient(app)


@pytest.fixture
def create_sale(client: TestClient, seed: SimpleNamespace):
    """POST /v1/sales with sensible defaults, returning the raw response"""

    def _create(**overrides):
        body = {
            "customer_id": seed.customer_id,
            "branch_id": seed.branch_id,
            "policy_id": seed.last_of_month,
            "total_amount": 12000,
            "down_payment": 0,
            "term_months": 3,
            "start_month": "2025-01",
            "reference_count": 2,
        }
        body.update(overrides)
        return client.post("/v1/sales", json=body)

    return _create

"""Pytest fixtures for testing"""

import pytest
from datetime import date
from decimal import Decimal
from typing import Any, Callable, Dict, Generator, List
from fastapi.testclient import TestClient
from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker, Session
from sqlalchemy.pool import StaticPool
from repayment_engine.api.main import create_app
from repayment_engine.api.dependencies import get_schedule_webhook_client
from repayment_engine.infrastructure.database.models import Base
from repayment_engine.infrastructure.database.session import enable_sqlite_savepoints, get_db
from repayment_engine.infrastructure.database.repositories import SqlLedgerStore
from repayment_engine.domain.exceptions import PersistenceError
from repayment_engine.domain.frequency import PaymentFrequency
from repayment_engine.domain.handlers import PaymentScheduleService
from repayment_engine.domain.models import Loan, LoanTerms
from repayment_engine.domain.recalculation import recalculate
from repayment_engine.domain.reconciliation import ScheduleReconciler
from repayment_engine.utils.date_utils import HolidayCalendar


# Test database: one shared in-memory connection with SAVEPOINT support
engine = enable_sqlite_savepoints(
    create_engine(
        "sqlite://",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
)
TestingSessionLocal = sessionmaker(autocommit=False, autoflush=False, bind=engine)

FIRST_DUE_DATE = date(2025, 2, 3)


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
def store(db: Session) -> SqlLedgerStore:
    return SqlLedgerStore(db)


@pytest.fixture
def calendar() -> HolidayCalendar:
    return HolidayCalendar()


@pytest.fixture
def service(store: SqlLedgerStore, calendar: HolidayCalendar) -> PaymentScheduleService:
    return PaymentScheduleService(
        store,
        calendar=calendar,
        max_periods=1000,
        failed_payment_fee=Decimal("55.00"),
        payment_tolerance=Decimal("0.01"),
    )


@pytest.fixture
def make_loan(store: SqlLedgerStore, calendar: HolidayCalendar) -> Callable[..., Loan]:
    """Factory for a persisted loan with its initial schedule reconciled in"""

    def _make_loan(
        principal: str = "1200.00",
        rate: str = "29",
        payment: str = "200.00",
        frequency: PaymentFrequency = PaymentFrequency.MONTHLY,
        first_due_date: date = FIRST_DUE_DATE,
        with_schedule: bool = True,
    ) -> Loan:
        loan = store.create_loan(
            principal_amount=Decimal(principal),
            interest_rate=Decimal(rate),
            terms=LoanTerms(payment_amount=Decimal(payment), frequency=frequency, first_payment_date=first_due_date),
        )
        if with_schedule:
            breakdown = recalculate(
                starting_balance=loan.remaining_balance,
                payment_amount=loan.terms.payment_amount,
                frequency=frequency,
                annual_rate_percent=loan.interest_rate,
                first_payment_date=first_due_date,
                max_periods=1000,
                calendar=calendar,
            )
            ScheduleReconciler(store).reconcile(loan.id, breakdown, reason="initial schedule")
        return loan

    return _make_loan


@pytest.fixture
def loan(make_loan) -> Loan:
    """1200.00 @ 29% monthly, 200.00 payments from 2025-02-03 (rows #1-#7)"""
    return make_loan()


class FlakyStore:
    """Ledger store wrapper that fails selected writes"""

    def __init__(self, inner: SqlLedgerStore, fail_row: Callable = None, fail_update: bool = False):
        self.inner = inner
        self.fail_row = fail_row
        self.fail_update = fail_update
        self.update_calls: List[Dict[str, Any]] = []

    def get_loan(self, loan_id):
        return self.inner.get_loan(loan_id)

    def list_schedule_entries(self, loan_id):
        return self.inner.list_schedule_entries(loan_id)

    def update_loan(self, loan_id, remaining_balance, status=None, terms=None):
        self.update_calls.append({"remaining_balance": remaining_balance, "status": status, "terms": terms})
        if self.fail_update:
            raise PersistenceError("loan update refused")
        return self.inner.update_loan(loan_id, remaining_balance, status=status, terms=terms)

    def upsert_schedule_entries(self, loan_id, entries):
        entries = list(entries)
        if self.fail_row and any(self.fail_row(entry) for entry in entries):
            raise PersistenceError("row write refused")
        return self.inner.upsert_schedule_entries(loan_id, entries)


@pytest.fixture
def flaky_store(store: SqlLedgerStore) -> Callable[..., FlakyStore]:
    def _flaky_store(**kwargs) -> FlakyStore:
        return FlakyStore(store, **kwargs)

    return _flaky_store


class FakeWebhookClient:
    """Records schedule events instead of POSTing them"""

    def __init__(self):
        self.events: List[Dict[str, Any]] = []

    async def send_schedule_event(self, payload: Dict[str, Any]) -> None:
        self.events.append(payload)


@pytest.fixture
def webhook_client() -> FakeWebhookClient:
    return FakeWebhookClient()


@pytest.fixture
def client(db: Session, webhook_client: FakeWebhookClient) -> TestClient:
    """Create FastAPI test client with test database"""
    app = create_app()

    def override_get_db():
        try:
            yield db
        finally:
            pass

    app.dependency_overrides[get_db] = override_get_db
    app.dependency_overrides[get_schedule_webhook_client] = lambda: webhook_client
    return TestClient(app)

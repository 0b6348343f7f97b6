"""Data access layer for loans and payment schedules"""

import uuid
from decimal import Decimal
from typing import Iterable, List, Optional
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session
from repayment_engine.infrastructure.database.models import LoanRecord, LoanPaymentRecord
from repayment_engine.domain.exceptions import NotFoundError, PersistenceError
from repayment_engine.domain.frequency import PaymentFrequency
from repayment_engine.domain.models import Loan, LoanStatus, LoanTerms, PaymentStatus, ScheduledPayment
from repayment_engine.utils.money import round2, to_decimal


def _to_loan(record: LoanRecord) -> Loan:
    terms = None
    if record.payment_amount is not None and record.payment_frequency:
        terms = LoanTerms(
            payment_amount=round2(record.payment_amount),
            frequency=PaymentFrequency.parse(record.payment_frequency),
            number_of_payments=record.number_of_payments,
            first_payment_date=record.first_payment_date,
        )
    return Loan(
        id=record.id,
        principal_amount=round2(record.principal_amount),
        interest_rate=to_decimal(record.interest_rate),
        remaining_balance=round2(record.remaining_balance),
        status=LoanStatus(record.status),
        terms=terms,
    )


def _to_payment(record: LoanPaymentRecord) -> ScheduledPayment:
    return ScheduledPayment(
        loan_id=record.loan_id,
        payment_number=record.payment_number,
        due_date=record.due_date,
        amount=round2(record.amount),
        interest=round2(record.interest),
        principal=round2(record.principal),
        remaining_balance=round2(record.remaining_balance),
        status=PaymentStatus(record.status),
        notes=record.notes or "",
        error_code=record.error_code,
    )


class SqlLedgerStore:
    """
    Ledger store backed by the request's SQLAlchemy session.

    Every write runs inside a SAVEPOINT so a failed row leaves the rest of
    the unit of work intact; committing is left to the caller.
    """

    def __init__(self, db: Session):
        self.db = db

    def _get_record(self, loan_id: uuid.UUID) -> LoanRecord:
        record = self.db.query(LoanRecord).filter(LoanRecord.id == loan_id).first()
        if record is None:
            raise NotFoundError(f"Loan {loan_id} not found")
        return record

    def create_loan(
        self,
        principal_amount: Decimal,
        interest_rate: Decimal,
        terms: Optional[LoanTerms] = None,
        remaining_balance: Optional[Decimal] = None,
        status: LoanStatus = LoanStatus.ACTIVE,
        loan_id: Optional[uuid.UUID] = None,
    ) -> Loan:
        """Persist a new loan (balance defaults to the principal)"""
        record = LoanRecord(
            id=loan_id or uuid.uuid4(),
            principal_amount=round2(principal_amount),
            interest_rate=to_decimal(interest_rate),
            remaining_balance=round2(principal_amount if remaining_balance is None else remaining_balance),
            status=status.value,
        )
        if terms is not None:
            record.payment_amount = round2(terms.payment_amount)
            record.payment_frequency = PaymentFrequency.parse(terms.frequency).value
            record.number_of_payments = terms.number_of_payments
            record.first_payment_date = terms.first_payment_date
        try:
            self.db.add(record)
            self.db.flush()  # Get ID without committing
        except SQLAlchemyError as e:
            raise PersistenceError(f"Failed to create loan: {e}") from e
        return _to_loan(record)

    def get_loan(self, loan_id: uuid.UUID) -> Loan:
        try:
            return _to_loan(self._get_record(loan_id))
        except SQLAlchemyError as e:
            raise PersistenceError(f"Failed to load loan {loan_id}: {e}") from e

    def update_loan(
        self,
        loan_id: uuid.UUID,
        remaining_balance: Decimal,
        status: Optional[LoanStatus] = None,
        terms: Optional[LoanTerms] = None,
    ) -> Loan:
        """Set the remaining balance, and optionally status and contracted terms"""
        try:
            with self.db.begin_nested():
                record = self._get_record(loan_id)
                record.remaining_balance = round2(remaining_balance)
                if status is not None:
                    record.status = LoanStatus(status).value
                if terms is not None:
                    record.payment_amount = round2(terms.payment_amount)
                    record.payment_frequency = PaymentFrequency.parse(terms.frequency).value
                    record.number_of_payments = terms.number_of_payments
                    record.first_payment_date = terms.first_payment_date
            return _to_loan(record)
        except SQLAlchemyError as e:
            raise PersistenceError(f"Failed to update loan {loan_id}: {e}") from e

    def list_schedule_entries(self, loan_id: uuid.UUID) -> List[ScheduledPayment]:
        """Fetch every schedule row of a loan ordered by payment number"""
        try:
            self._get_record(loan_id)
            records = (
                self.db.query(LoanPaymentRecord)
                .filter(LoanPaymentRecord.loan_id == loan_id)
                .order_by(LoanPaymentRecord.payment_number)
                .all()
            )
        except SQLAlchemyError as e:
            raise PersistenceError(f"Failed to list schedule of loan {loan_id}: {e}") from e
        return [_to_payment(record) for record in records]

    def upsert_schedule_entries(self, loan_id: uuid.UUID, entries: Iterable[ScheduledPayment]) -> None:
        """Insert or overwrite rows keyed by (loan_id, payment_number)"""
        entries = list(entries)
        try:
            with self.db.begin_nested():
                for entry in entries:
                    record = (
                        self.db.query(LoanPaymentRecord)
                        .filter(
                            LoanPaymentRecord.loan_id == loan_id,
                            LoanPaymentRecord.payment_number == entry.payment_number,
                        )
                        .first()
                    )
                    if record is None:
                        record = LoanPaymentRecord(loan_id=loan_id, payment_number=entry.payment_number)
                        self.db.add(record)

                    record.due_date = entry.due_date
                    record.amount = round2(entry.amount)
                    record.interest = round2(entry.interest)
                    record.principal = round2(entry.principal)
                    record.remaining_balance = round2(entry.remaining_balance)
                    record.status = PaymentStatus(entry.status).value
                    record.notes = entry.notes or ""
                    record.error_code = entry.error_code
        except SQLAlchemyError as e:
            numbers = ", ".join(f"#{entry.payment_number}" for entry in entries)
            raise PersistenceError(f"Failed to write payments {numbers} of loan {loan_id}: {e}") from e

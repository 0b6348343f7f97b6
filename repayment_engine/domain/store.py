"""Ledger store port consumed by the schedule engine"""

import uuid
from decimal import Decimal
from typing import Iterable, List, Optional, Protocol

from repayment_engine.domain.models import Loan, LoanStatus, LoanTerms, ScheduledPayment


class LedgerStore(Protocol):
    """
    Persistence boundary for loans and their payment schedules.

    Implementations raise NotFoundError for unknown loans and wrap any
    storage failure in PersistenceError.
    """

    def get_loan(self, loan_id: uuid.UUID) -> Loan:
        ...

    def update_loan(
        self,
        loan_id: uuid.UUID,
        remaining_balance: Decimal,
        status: Optional[LoanStatus] = None,
        terms: Optional[LoanTerms] = None,
    ) -> Loan:
        ...

    def list_schedule_entries(self, loan_id: uuid.UUID) -> List[ScheduledPayment]:
        """All rows of the schedule ordered by payment number"""
        ...

    def upsert_schedule_entries(self, loan_id: uuid.UUID, entries: Iterable[ScheduledPayment]) -> None:
        """Insert or overwrite rows keyed by (loan_id, payment_number)"""
        ...

"""Domain models - pure Python dataclasses representing business entities"""

import uuid
from dataclasses import dataclass, field, replace
from datetime import date
from decimal import Decimal
from enum import Enum
from typing import Iterator, List, Optional

from repayment_engine.domain.exceptions import ReconciliationPartialFailure
from repayment_engine.domain.frequency import PaymentFrequency


class LoanStatus(str, Enum):
    PENDING_DISBURSEMENT = "pending_disbursement"
    ACTIVE = "active"
    COMPLETED = "completed"
    DEFAULTED = "defaulted"
    CANCELLED = "cancelled"


class PaymentStatus(str, Enum):
    """Lifecycle status of a scheduled payment"""

    PENDING = "pending"
    CONFIRMED = "confirmed"
    PAID = "paid"
    MANUAL = "manual"
    REBATE = "rebate"
    DEFERRED = "deferred"
    FAILED = "failed"
    CANCELLED = "cancelled"

    @property
    def is_locked(self) -> bool:
        """Everything except pending is settled or finalized and never rewritten"""
        return self is not PaymentStatus.PENDING

    @property
    def is_settled(self) -> bool:
        return self in (PaymentStatus.CONFIRMED, PaymentStatus.PAID)


@dataclass
class LoanTerms:
    """Contracted repayment terms"""

    payment_amount: Decimal
    frequency: PaymentFrequency
    number_of_payments: Optional[int] = None
    first_payment_date: Optional[date] = None  # Unadjusted due date of period 1; later periods step from it


@dataclass
class Loan:
    id: uuid.UUID
    principal_amount: Decimal
    interest_rate: Decimal  # Annual percent, e.g. 29 for 29%
    remaining_balance: Decimal
    status: LoanStatus = LoanStatus.ACTIVE
    terms: Optional[LoanTerms] = None


@dataclass
class ScheduledPayment:
    """One row of a loan's payment schedule"""

    loan_id: uuid.UUID
    payment_number: int
    due_date: date
    amount: Decimal
    interest: Decimal
    principal: Decimal
    remaining_balance: Decimal
    status: PaymentStatus = PaymentStatus.PENDING
    notes: str = ""
    error_code: Optional[str] = None

    def with_note(self, note: str, **changes) -> "ScheduledPayment":
        """Copy with ``changes`` applied and ``note`` appended to the audit trail"""
        notes = f"{self.notes}\n{note}" if self.notes else note
        return replace(self, notes=notes, **changes)

    @property
    def is_unresolved_failure(self) -> bool:
        """Failed row still carrying its original obligation (fee and interest not rolled in)"""
        return self.status is PaymentStatus.FAILED and self.amount > 0 and self.principal >= 0


@dataclass(frozen=True)
class BreakdownEntry:
    """Single computed period of a recalculated schedule"""

    payment_number: int
    due_date: date
    amount: Decimal
    interest: Decimal
    principal: Decimal
    remaining_balance: Decimal


@dataclass
class Breakdown:
    """Ordered, not-yet-persisted list of future payments"""

    entries: List[BreakdownEntry] = field(default_factory=list)
    converged: bool = True

    def __iter__(self) -> Iterator[BreakdownEntry]:
        return iter(self.entries)

    def __len__(self) -> int:
        return len(self.entries)

    def __getitem__(self, index):
        return self.entries[index]

    @property
    def final_balance(self) -> Optional[Decimal]:
        return self.entries[-1].remaining_balance if self.entries else None


@dataclass(frozen=True)
class PeriodSplit:
    """Interest/principal split of one payment period"""

    interest: Decimal
    principal: Decimal
    new_balance: Decimal


@dataclass
class ReconciliationResult:
    loan_id: Optional[uuid.UUID] = None
    updated_count: int = 0
    inserted_count: int = 0
    cancelled_count: int = 0
    unchanged_count: int = 0
    errors: List[str] = field(default_factory=list)

    @property
    def success(self) -> bool:
        return not self.errors

    def raise_for_errors(self) -> None:
        """Raise ReconciliationPartialFailure if any row failed to persist"""
        if self.errors:
            raise ReconciliationPartialFailure(self.loan_id, self.errors)


@dataclass
class ScheduleChangeResult:
    """Outcome of one event handler invocation"""

    loan_id: uuid.UUID
    trigger: str
    new_remaining_balance: Decimal
    updated_count: int = 0
    inserted_count: int = 0
    cancelled_count: int = 0
    breakdown: Breakdown = field(default_factory=Breakdown)
    errors: List[str] = field(default_factory=list)
    entry: Optional[ScheduledPayment] = None

    @property
    def success(self) -> bool:
        return not self.errors

    @property
    def converged(self) -> bool:
        return self.breakdown.converged

    def absorb(self, reconciliation: ReconciliationResult) -> None:
        self.updated_count += reconciliation.updated_count
        self.inserted_count += reconciliation.inserted_count
        self.cancelled_count += reconciliation.cancelled_count
        self.errors.extend(reconciliation.errors)

"""Schedule event handlers: translate loan events into schedule changes"""

import logging
import uuid
from dataclasses import dataclass, field, replace
from datetime import date, timedelta
from decimal import Decimal
from enum import Enum
from typing import ClassVar, List, Optional, Tuple, Union

from repayment_engine.config import settings
from repayment_engine.domain.amortization import (
    calculate_failed_payment_charges,
    calculate_payment_amount,
    compute_period,
)
from repayment_engine.domain.exceptions import (
    InvalidAmountError,
    InvalidStatusError,
    NotFoundError,
    PersistenceError,
    ValidationError,
)
from repayment_engine.domain.frequency import PaymentFrequency
from repayment_engine.domain.models import (
    Breakdown,
    Loan,
    LoanStatus,
    LoanTerms,
    PaymentStatus,
    ScheduleChangeResult,
    ScheduledPayment,
)
from repayment_engine.domain.recalculation import recalculate
from repayment_engine.domain.reconciliation import ScheduleReconciler
from repayment_engine.domain.store import LedgerStore
from repayment_engine.utils.date_utils import HolidayCalendar, add_periods
from repayment_engine.utils.money import ZERO, round2, to_decimal


class DeferralMode(str, Enum):
    MOVE_TO_END = "move_to_end"
    RESCHEDULE = "reschedule"


class FeePolicy(str, Enum):
    ADD_TO_PAYMENT = "add_to_payment"
    ADD_TO_BALANCE = "add_to_balance"
    SEPARATE_PAYMENT = "separate_payment"


_ALLOWED_FEE_POLICIES = {
    DeferralMode.MOVE_TO_END: (FeePolicy.ADD_TO_PAYMENT, FeePolicy.ADD_TO_BALANCE),
    DeferralMode.RESCHEDULE: (FeePolicy.ADD_TO_PAYMENT, FeePolicy.SEPARATE_PAYMENT),
}


# Commands - one per trigger


@dataclass
class ManualPayment:
    trigger: ClassVar[str] = "manual"

    loan_id: uuid.UUID
    amount: Decimal
    payment_date: date
    notes: str = ""
    mark_loan_as_paid: bool = False


@dataclass
class Rebate:
    trigger: ClassVar[str] = "rebate"

    loan_id: uuid.UUID
    amount: Decimal
    payment_date: date
    notes: str = ""
    mark_loan_as_paid: bool = False


@dataclass
class FailedPayment:
    trigger: ClassVar[str] = "failure"

    loan_id: uuid.UUID
    payment_number: int
    fee: Optional[Decimal] = None
    notes: str = ""


@dataclass
class Deferral:
    trigger: ClassVar[str] = "deferral"

    loan_id: uuid.UUID
    payment_number: int
    mode: DeferralMode = DeferralMode.MOVE_TO_END
    fee_amount: Decimal = ZERO
    fee_policy: FeePolicy = FeePolicy.ADD_TO_PAYMENT
    new_date: Optional[date] = None
    notes: str = ""


@dataclass
class ScheduleOverride:
    due_date: Optional[date] = None
    amount: Optional[Decimal] = None


@dataclass
class Modification:
    trigger: ClassVar[str] = "modification"

    loan_id: uuid.UUID
    frequency: PaymentFrequency
    number_of_payments: int
    start_date: date
    payment_amount: Optional[Decimal] = None
    override_schedule: List[ScheduleOverride] = field(default_factory=list)
    notes: str = ""


@dataclass
class Stop:
    trigger: ClassVar[str] = "stop"

    loan_id: uuid.UUID
    notes: str = ""


ScheduleCommand = Union[ManualPayment, Rebate, FailedPayment, Deferral, Modification, Stop]


def _sorted_by_date(rows: List[ScheduledPayment]) -> List[ScheduledPayment]:
    return sorted(rows, key=lambda row: (row.due_date, row.payment_number))


def _find_row(rows: List[ScheduledPayment], payment_number: int) -> ScheduledPayment:
    for row in rows:
        if row.payment_number == payment_number:
            return row
    raise NotFoundError(f"Payment #{payment_number} not found")


def _next_payment_number(rows: List[ScheduledPayment]) -> int:
    return max((row.payment_number for row in rows), default=0) + 1


def _require_terms(loan: Loan) -> LoanTerms:
    if loan.terms is None:
        raise ValidationError(f"Loan {loan.id} has no contracted payment terms")
    return loan.terms


def _require_pending(row: ScheduledPayment) -> None:
    if row.status is not PaymentStatus.PENDING:
        raise InvalidStatusError(
            f"Payment #{row.payment_number} is {row.status.value}; only pending payments can be changed"
        )


class PaymentScheduleService:
    """
    Applies loan events to the payment schedule.

    Every handler validates first, then performs its primary mutation (loan
    balance and/or the event's own schedule row), then recalculates and
    reconciles the remaining pending rows. A failed primary step reverts what
    was already written and raises PersistenceError; row-level reconciliation
    errors are returned on the result instead.
    """

    _DISPATCH = {
        ManualPayment: "apply_manual_payment",
        Rebate: "apply_rebate",
        FailedPayment: "simulate_failed_payment",
        Deferral: "defer_payment",
        Modification: "modify_schedule",
        Stop: "stop_schedule",
    }

    def __init__(
        self,
        store: LedgerStore,
        reconciler: Optional[ScheduleReconciler] = None,
        calendar: Optional[HolidayCalendar] = None,
        max_periods: Optional[int] = None,
        failed_payment_fee: Optional[Decimal] = None,
        payment_tolerance: Optional[Decimal] = None,
    ):
        self.store = store
        self.reconciler = reconciler or ScheduleReconciler(store)
        self.calendar = calendar or HolidayCalendar(settings.extra_holidays)
        self.max_periods = max_periods or settings.max_periods
        self.failed_payment_fee = round2(
            settings.failed_payment_fee if failed_payment_fee is None else failed_payment_fee
        )
        self.payment_tolerance = to_decimal(
            settings.payment_amount_tolerance if payment_tolerance is None else payment_tolerance
        )

    def handle(self, command: ScheduleCommand) -> ScheduleChangeResult:
        """Dispatch a command to the handler for its trigger"""
        method = self._DISPATCH.get(type(command))
        if method is None:
            raise ValidationError(f"Unsupported schedule command: {type(command).__name__}")
        return getattr(self, method)(command)

    # Out-of-band payments

    def apply_manual_payment(self, command: ManualPayment) -> ScheduleChangeResult:
        return self._apply_out_of_band_payment(command, PaymentStatus.MANUAL)

    def apply_rebate(self, command: Rebate) -> ScheduleChangeResult:
        return self._apply_out_of_band_payment(command, PaymentStatus.REBATE)

    def _apply_out_of_band_payment(self, command, status: PaymentStatus) -> ScheduleChangeResult:
        loan = self.store.get_loan(command.loan_id)
        amount = round2(command.amount)
        balance = round2(loan.remaining_balance)

        if amount <= 0:
            raise InvalidAmountError("Payment amount must be greater than 0")
        if amount > balance:
            raise InvalidAmountError(f"Payment amount {amount} exceeds remaining balance {balance}")

        # A rebate reduces principal only; a manual payment stands in for a
        # scheduled collection and first covers the period's interest.
        if status is PaymentStatus.REBATE:
            interest, principal = ZERO, amount
        else:
            terms = _require_terms(loan)
            split = compute_period(balance, loan.interest_rate, terms.frequency, amount)
            interest, principal = split.interest, split.principal

        new_balance = max(ZERO, round2(balance - principal))
        if new_balance > 0:
            _require_terms(loan)

        completes = command.mark_loan_as_paid and new_balance == 0
        rows = self.store.list_schedule_entries(loan.id)
        payment_row = ScheduledPayment(
            loan_id=loan.id,
            payment_number=_next_payment_number(rows),
            due_date=command.payment_date,
            amount=amount,
            interest=interest,
            principal=principal,
            remaining_balance=new_balance,
            status=status,
            notes=command.notes or f"{status.value.capitalize()} payment recorded on {command.payment_date.isoformat()}",
        )

        self.store.update_loan(loan.id, new_balance, status=LoanStatus.COMPLETED if completes else None)
        try:
            self.store.upsert_schedule_entries(loan.id, [payment_row])
        except PersistenceError as e:
            self._revert_loan(loan, f"{status.value} payment row not created")
            raise PersistenceError(f"Failed to record {status.value} payment: {e}") from e

        result = ScheduleChangeResult(
            loan_id=loan.id,
            trigger=command.trigger,
            new_remaining_balance=new_balance,
            inserted_count=1,
            entry=payment_row,
        )
        reason = f"{status.value} payment of {amount}"
        if new_balance == 0:
            reason = f"loan paid off by {status.value} payment"

        self._recalculate_and_reconcile(
            result,
            loan,
            loan.terms,
            balance=new_balance,
            after=command.payment_date,
            reason=reason,
        )
        return result

    # Failed payments

    def simulate_failed_payment(self, command: FailedPayment) -> ScheduleChangeResult:
        loan = self.store.get_loan(command.loan_id)
        terms = _require_terms(loan)
        fee = self.failed_payment_fee if command.fee is None else round2(command.fee)
        if fee < 0:
            raise InvalidAmountError("Failed payment fee cannot be negative")

        rows = self.store.list_schedule_entries(loan.id)
        target = _find_row(rows, command.payment_number)
        _require_pending(target)

        prior = self._prior_snapshot(rows, target, loan)
        charge = round2(target.interest + fee)
        new_principal = round2(prior + charge)

        note = f"Payment failed (NSF): interest {target.interest} and fee {fee} added to balance"
        if command.notes:
            note = f"{note}. {command.notes}"
        failed_row = target.with_note(
            note,
            amount=ZERO,
            interest=ZERO,
            principal=-charge,
            remaining_balance=new_principal,
            status=PaymentStatus.FAILED,
            error_code="NSF",
        )

        self.store.upsert_schedule_entries(loan.id, [failed_row])
        try:
            self.store.update_loan(loan.id, new_principal)
        except PersistenceError as e:
            self._revert_rows(loan.id, [target], "failed payment balance not updated")
            raise PersistenceError(f"Failed to update loan balance: {e}") from e

        result = ScheduleChangeResult(
            loan_id=loan.id,
            trigger=command.trigger,
            new_remaining_balance=new_principal,
            updated_count=1,
            entry=failed_row,
        )

        self._recalculate_and_reconcile(
            result,
            loan,
            terms,
            balance=new_principal,
            after=target.due_date,
            reason=f"failed payment #{target.payment_number}",
        )
        return result

    # Deferrals

    def defer_payment(self, command: Deferral) -> ScheduleChangeResult:
        mode = DeferralMode(command.mode)
        policy = FeePolicy(command.fee_policy)
        fee = round2(command.fee_amount or ZERO)

        if fee < 0:
            raise InvalidAmountError("Deferral fee cannot be negative")
        if policy not in _ALLOWED_FEE_POLICIES[mode]:
            raise ValidationError(f"Fee policy {policy.value} is not valid for {mode.value} deferrals")
        if mode is DeferralMode.RESCHEDULE and command.new_date is None:
            raise ValidationError("new_date is required to reschedule a payment")

        loan = self.store.get_loan(command.loan_id)
        terms = _require_terms(loan)
        rows = self.store.list_schedule_entries(loan.id)
        target = _find_row(rows, command.payment_number)
        _require_pending(target)

        if mode is DeferralMode.MOVE_TO_END:
            return self._move_to_end(command, loan, terms, rows, target, fee, policy)
        return self._reschedule(command, loan, terms, rows, target, fee, policy)

    def _move_to_end(self, command, loan, terms, rows, target, fee, policy) -> ScheduleChangeResult:
        capitalized = fee if policy is FeePolicy.ADD_TO_BALANCE else ZERO
        prior = self._prior_snapshot(rows, target, loan)
        new_balance = round2(loan.remaining_balance + capitalized)

        note = f"Deferred to end of schedule (fee {fee}, {policy.value})"
        if command.notes:
            note = f"{note}. {command.notes}"
        deferred_row = target.with_note(
            note,
            amount=ZERO,
            interest=ZERO,
            principal=-capitalized,
            remaining_balance=round2(prior + capitalized),
            status=PaymentStatus.DEFERRED,
        )

        # Later pending rows no longer see this payment's principal
        delta = round2(target.principal + capitalized)
        ordered = _sorted_by_date(rows)
        position = ordered.index(target)
        restated = [
            row.with_note(
                f"Balance restated after deferral of #{target.payment_number}",
                remaining_balance=round2(row.remaining_balance + delta),
            )
            for row in ordered[position + 1:]
            if row.status is PaymentStatus.PENDING and delta != 0
        ]

        snapshots = {row.payment_number: row for row in ordered if row.status is not PaymentStatus.CANCELLED}
        snapshots[deferred_row.payment_number] = deferred_row
        for row in restated:
            snapshots[row.payment_number] = row
        last = _sorted_by_date(list(snapshots.values()))[-1]

        if policy is FeePolicy.ADD_TO_PAYMENT:
            interest, principal = round2(target.interest + fee), target.principal
        else:
            interest, principal = target.interest, round2(target.principal + fee)
        moved_row = ScheduledPayment(
            loan_id=loan.id,
            payment_number=_next_payment_number(rows),
            due_date=self._due_date_after(terms, last.due_date),
            amount=round2(target.amount + fee),
            interest=interest,
            principal=principal,
            remaining_balance=max(ZERO, round2(last.remaining_balance - principal)),
            notes=f"Deferred payment from #{target.payment_number}",
        )

        self.store.upsert_schedule_entries(loan.id, [deferred_row])
        if capitalized:
            try:
                self.store.update_loan(loan.id, new_balance)
            except PersistenceError as e:
                self._revert_rows(loan.id, [target], "deferral fee not capitalized")
                raise PersistenceError(f"Failed to capitalize deferral fee: {e}") from e
        try:
            self.store.upsert_schedule_entries(loan.id, [moved_row])
        except PersistenceError as e:
            self._revert_rows(loan.id, [target], "deferred payment not re-created")
            if capitalized:
                self._revert_loan(loan, "deferred payment not re-created")
            raise PersistenceError(f"Failed to create deferred payment: {e}") from e

        result = ScheduleChangeResult(
            loan_id=loan.id,
            trigger=command.trigger,
            new_remaining_balance=new_balance,
            updated_count=1,
            inserted_count=1,
            entry=moved_row,
        )
        for row in restated:
            self._write_secondary(row, result)
        return result

    def _reschedule(self, command, loan, terms, rows, target, fee, policy) -> ScheduleChangeResult:
        new_date = self.calendar.next_business_day(command.new_date)
        note = f"Rescheduled from {target.due_date.isoformat()} to {new_date.isoformat()}"
        if fee:
            note = f"{note} (fee {fee}, {policy.value})"
        if command.notes:
            note = f"{note}. {command.notes}"

        changes = {"due_date": new_date}
        if policy is FeePolicy.ADD_TO_PAYMENT and fee:
            changes.update(amount=round2(target.amount + fee), interest=round2(target.interest + fee))
        moved_row = target.with_note(note, **changes)

        fee_row = None
        if policy is FeePolicy.SEPARATE_PAYMENT and fee:
            last = _sorted_by_date(
                [moved_row if row is target else row for row in rows if row.status is not PaymentStatus.CANCELLED]
            )[-1]
            fee_row = ScheduledPayment(
                loan_id=loan.id,
                payment_number=_next_payment_number(rows),
                due_date=self._due_date_after(terms, last.due_date),
                amount=fee,
                interest=fee,
                principal=ZERO,
                remaining_balance=last.remaining_balance,
                notes=f"Deferral fee for #{target.payment_number}",
            )

        self.store.upsert_schedule_entries(loan.id, [moved_row])
        if fee_row is not None:
            try:
                self.store.upsert_schedule_entries(loan.id, [fee_row])
            except PersistenceError as e:
                self._revert_rows(loan.id, [target], "deferral fee payment not created")
                raise PersistenceError(f"Failed to create deferral fee payment: {e}") from e

        return ScheduleChangeResult(
            loan_id=loan.id,
            trigger=command.trigger,
            new_remaining_balance=round2(loan.remaining_balance),
            updated_count=1,
            inserted_count=1 if fee_row is not None else 0,
            entry=moved_row,
        )

    # Modifications

    def modify_schedule(self, command: Modification) -> ScheduleChangeResult:
        frequency = PaymentFrequency.parse(command.frequency)
        if command.number_of_payments < 1:
            raise ValidationError("number_of_payments must be at least 1")
        if len(command.override_schedule) > command.number_of_payments:
            raise ValidationError(
                f"{len(command.override_schedule)} overrides given for {command.number_of_payments} payments"
            )

        loan = self.store.get_loan(command.loan_id)
        rows = self.store.list_schedule_entries(loan.id)
        unresolved = [row for row in rows if row.is_unresolved_failure]
        charges = calculate_failed_payment_charges(unresolved, self.failed_payment_fee)
        adjusted = round2(loan.remaining_balance + charges.total_amount)
        if adjusted <= 0:
            raise ValidationError(f"Loan {loan.id} has no outstanding balance to re-term")

        payment_amount = calculate_payment_amount(adjusted, loan.interest_rate, frequency, command.number_of_payments)
        if command.payment_amount is not None:
            supplied = round2(command.payment_amount)
            if abs(supplied - payment_amount) > self.payment_tolerance:
                raise InvalidAmountError(
                    f"Payment amount {supplied} does not amortize {adjusted} over "
                    f"{command.number_of_payments} {frequency.value} payments (expected {payment_amount})"
                )

        breakdown = recalculate(
            starting_balance=adjusted,
            payment_amount=payment_amount,
            frequency=frequency,
            annual_rate_percent=loan.interest_rate,
            first_payment_date=command.start_date,
            max_periods=command.number_of_payments,
            calendar=self.calendar,
            final_payoff=True,
        )
        breakdown = self._apply_overrides(breakdown, command.override_schedule)

        terms = LoanTerms(
            payment_amount=payment_amount,
            frequency=frequency,
            number_of_payments=command.number_of_payments,
            first_payment_date=command.start_date,
        )
        self.store.update_loan(loan.id, adjusted, terms=terms)

        if unresolved:
            resolved = [
                row.with_note(
                    f"Resolved by modification: interest {row.interest} and fee {self.failed_payment_fee} added to balance",
                    amount=ZERO,
                    interest=ZERO,
                    principal=-round2(row.interest + self.failed_payment_fee),
                    error_code=row.error_code or "NSF",
                )
                for row in unresolved
            ]
            try:
                self.store.upsert_schedule_entries(loan.id, resolved)
            except PersistenceError as e:
                self._revert_loan(loan, "failed payments not resolved")
                raise PersistenceError(f"Failed to resolve failed payments: {e}") from e

        result = ScheduleChangeResult(
            loan_id=loan.id,
            trigger=command.trigger,
            new_remaining_balance=adjusted,
            updated_count=len(unresolved),
            breakdown=breakdown,
        )
        reason = command.notes or f"modified to {command.number_of_payments} {frequency.value} payments"
        reconciliation = self.reconciler.reconcile(loan.id, breakdown, effective_from=None, reason=reason)
        self._absorb(result, reconciliation)
        return result

    @staticmethod
    def _apply_overrides(breakdown: Breakdown, overrides: List[ScheduleOverride]) -> Breakdown:
        if len(overrides) > len(breakdown):
            raise ValidationError(f"{len(overrides)} overrides given for a {len(breakdown)}-payment schedule")

        entries = list(breakdown)
        for index, override in enumerate(overrides):
            changes = {}
            if override.due_date is not None:
                changes["due_date"] = override.due_date
            if override.amount is not None:
                amount = round2(override.amount)
                if amount <= 0:
                    raise InvalidAmountError(f"Override amount for payment {index + 1} must be greater than 0")
                changes["amount"] = amount
            if changes:
                entries[index] = replace(entries[index], **changes)
        return Breakdown(entries=entries, converged=breakdown.converged)

    def stop_schedule(self, command: Stop) -> ScheduleChangeResult:
        loan = self.store.get_loan(command.loan_id)
        rows = self.store.list_schedule_entries(loan.id)
        note = f"Stopped: {command.notes}" if command.notes else "Stopped: schedule halted"
        stopped = [
            row.with_note(note, status=PaymentStatus.CANCELLED)
            for row in sorted(rows, key=lambda row: row.payment_number)
            if row.status is PaymentStatus.PENDING or row.is_unresolved_failure
        ]
        if not stopped:
            raise ValidationError(f"Loan {loan.id} has no pending payments to stop")

        self.store.upsert_schedule_entries(loan.id, stopped)
        return ScheduleChangeResult(
            loan_id=loan.id,
            trigger=command.trigger,
            new_remaining_balance=round2(loan.remaining_balance),
            cancelled_count=len(stopped),
        )

    # Settlement outcomes

    def record_payment_outcome(self, loan_id: uuid.UUID, payment_number: int, status) -> ScheduleChangeResult:
        """
        Apply a settlement outcome reported by the payment rails.

        Repeating an outcome already recorded is a no-op. A confirmed or paid
        pending row takes its principal off the live loan balance; a failed
        one goes through the failed-payment handler with the default fee.

        Rows settling out of order (an overdue row clearing after a manual
        payment or rebate was booked) carry a stale snapshot. The row is then
        restated to the balance it actually left and the pending rows after it
        are re-projected from there.
        """
        try:
            status = PaymentStatus(status)
        except ValueError:
            raise ValidationError(f"Unknown payment status: {status!r}") from None
        if status not in (PaymentStatus.CONFIRMED, PaymentStatus.PAID, PaymentStatus.FAILED):
            raise ValidationError(f"{status.value} is not a settlement outcome")

        loan = self.store.get_loan(loan_id)
        rows = self.store.list_schedule_entries(loan.id)
        row = _find_row(rows, payment_number)

        result = ScheduleChangeResult(
            loan_id=loan.id,
            trigger="outcome",
            new_remaining_balance=round2(loan.remaining_balance),
            entry=row,
        )
        if row.status is status:
            return result

        if status is PaymentStatus.FAILED:
            if row.status is not PaymentStatus.PENDING:
                raise InvalidStatusError(f"Payment #{payment_number} is {row.status.value} and cannot fail")
            return self.simulate_failed_payment(FailedPayment(loan_id=loan.id, payment_number=payment_number))

        if row.status is PaymentStatus.CONFIRMED and status is PaymentStatus.PAID:
            paid_row = row.with_note("Payment paid", status=status)
            self.store.upsert_schedule_entries(loan.id, [paid_row])
            result.entry = paid_row
            result.updated_count = 1
            return result

        _require_pending(row)
        new_balance = max(ZERO, round2(loan.remaining_balance - row.principal))
        stale = new_balance != row.remaining_balance
        if stale and new_balance > 0:
            _require_terms(loan)

        note = f"Payment {status.value}"
        if stale:
            note = f"{note}; balance restated from {row.remaining_balance} to {new_balance}"
        settled_row = row.with_note(note, status=status, remaining_balance=new_balance)

        self.store.upsert_schedule_entries(loan.id, [settled_row])
        try:
            self.store.update_loan(
                loan.id,
                new_balance,
                status=LoanStatus.COMPLETED if new_balance == 0 else None,
            )
        except PersistenceError as e:
            self._revert_rows(loan.id, [row], "settlement balance not updated")
            raise PersistenceError(f"Failed to update loan balance: {e}") from e

        result.entry = settled_row
        result.updated_count = 1
        result.new_remaining_balance = new_balance

        if stale:
            self._recalculate_and_reconcile(
                result,
                loan,
                loan.terms,
                balance=new_balance,
                after=row.due_date,
                reason=f"payment #{payment_number} {status.value} out of order",
            )
        return result

    # Shared steps

    def _prior_snapshot(self, rows: List[ScheduledPayment], target: ScheduledPayment, loan: Loan) -> Decimal:
        """Remaining balance just before ``target``: previous live row's snapshot, else the loan balance"""
        previous = None
        for row in _sorted_by_date(rows):
            if row.payment_number == target.payment_number:
                break
            if row.status is not PaymentStatus.CANCELLED:
                previous = row
        if previous is None:
            return round2(loan.remaining_balance)
        return round2(previous.remaining_balance)

    def _period_on_or_after(self, terms: LoanTerms, day: date) -> Tuple[date, int]:
        """
        Cadence anchor and index of the first period whose business-day due date is on or after ``day``.

        Periods always count from the contract's unadjusted first payment
        date, so weekend and holiday shifts never feed into later due dates.
        Loans without a recorded anchor fall back to stepping from ``day``.
        """
        anchor = terms.first_payment_date
        if anchor is None:
            return day, 0

        frequency = PaymentFrequency.parse(terms.frequency)
        index = 0
        while self.calendar.next_business_day(add_periods(anchor, frequency, index)) < day:
            index += 1
        return anchor, index

    def _period_after(self, terms: LoanTerms, day: date) -> Tuple[date, int]:
        """Cadence anchor and index of the first period due strictly after ``day``"""
        if terms.first_payment_date is None:
            return add_periods(day, PaymentFrequency.parse(terms.frequency), 1), 0
        return self._period_on_or_after(terms, day + timedelta(days=1))

    def _due_date_after(self, terms: LoanTerms, day: date) -> date:
        anchor, index = self._period_after(terms, day)
        return self.calendar.next_business_day(add_periods(anchor, PaymentFrequency.parse(terms.frequency), index))

    def _recalculate_and_reconcile(
        self,
        result: ScheduleChangeResult,
        loan: Loan,
        terms: Optional[LoanTerms],
        balance: Decimal,
        after: date,
        reason: str,
    ) -> None:
        """
        Re-project the pending rows due after ``after`` so they amortize ``balance``.

        The first projected period is the one the earliest such row falls on,
        or the next cadence period when none is left. A zero balance cancels
        every pending row instead.
        """
        if balance == 0:
            reconciliation = self.reconciler.reconcile(loan.id, Breakdown(), effective_from=None, reason=reason)
            self._absorb(result, reconciliation)
            return

        upcoming = [
            row
            for row in _sorted_by_date(self.store.list_schedule_entries(loan.id))
            if row.status is PaymentStatus.PENDING and row.due_date > after
        ]
        if upcoming:
            anchor, first_period = self._period_on_or_after(terms, upcoming[0].due_date)
        else:
            anchor, first_period = self._period_after(terms, after)

        breakdown = recalculate(
            starting_balance=balance,
            payment_amount=terms.payment_amount,
            frequency=PaymentFrequency.parse(terms.frequency),
            annual_rate_percent=loan.interest_rate,
            first_payment_date=anchor,
            max_periods=self.max_periods,
            first_period=first_period,
            calendar=self.calendar,
        )
        result.breakdown = breakdown
        if not breakdown.converged:
            logging.warning(
                "Schedule did not converge within period cap",
                extra={
                    "loan_id": str(loan.id),
                    "trigger": result.trigger,
                    "max_periods": self.max_periods,
                    "final_balance": str(breakdown.final_balance),
                },
            )

        reconciliation = self.reconciler.reconcile(
            loan.id, breakdown, effective_from=after + timedelta(days=1), reason=reason
        )
        self._absorb(result, reconciliation)

    def _absorb(self, result: ScheduleChangeResult, reconciliation) -> None:
        result.absorb(reconciliation)
        if not reconciliation.success:
            logging.warning(
                "Schedule reconciliation partially failed",
                extra={
                    "loan_id": str(result.loan_id),
                    "trigger": result.trigger,
                    "errors": reconciliation.errors,
                },
            )

    def _write_secondary(self, row: ScheduledPayment, result: ScheduleChangeResult) -> bool:
        """Write a follow-up row; failures are reported on the result, not raised"""
        try:
            self.store.upsert_schedule_entries(row.loan_id, [row])
        except PersistenceError as e:
            logging.warning(
                f"Schedule row not written: {e}",
                extra={"loan_id": str(row.loan_id), "payment_number": row.payment_number},
            )
            result.errors.append(f"Payment #{row.payment_number}: {e}")
            return False
        if row.status is PaymentStatus.PENDING:
            result.updated_count += 1
        return True

    def _revert_loan(self, loan: Loan, reason: str) -> None:
        logging.warning(
            f"Reverting loan balance: {reason}",
            extra={"loan_id": str(loan.id), "remaining_balance": str(loan.remaining_balance)},
        )
        self.store.update_loan(loan.id, loan.remaining_balance, status=loan.status, terms=loan.terms)

    def _revert_rows(self, loan_id: uuid.UUID, rows: List[ScheduledPayment], reason: str) -> None:
        logging.warning(
            f"Reverting schedule rows: {reason}",
            extra={"loan_id": str(loan_id), "payment_numbers": [row.payment_number for row in rows]},
        )
        self.store.upsert_schedule_entries(loan_id, rows)

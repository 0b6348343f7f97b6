"""Unit tests for merging breakdowns into the persisted schedule"""

import uuid
import pytest
from datetime import date
from decimal import Decimal
from repayment_engine.domain.exceptions import NotFoundError, ReconciliationPartialFailure
from repayment_engine.domain.frequency import PaymentFrequency
from repayment_engine.domain.models import Breakdown, PaymentStatus
from repayment_engine.domain.recalculation import recalculate
from repayment_engine.domain.reconciliation import ScheduleReconciler


def _breakdown(balance: str, first_payment_date: date = date(2025, 3, 3)) -> Breakdown:
    return recalculate(
        starting_balance=Decimal(balance),
        payment_amount=Decimal("200.00"),
        frequency=PaymentFrequency.MONTHLY,
        annual_rate_percent=Decimal("29"),
        first_payment_date=first_payment_date,
        max_periods=1000,
    )


def test_initial_schedule_inserted_in_order(store, loan):
    rows = store.list_schedule_entries(loan.id)

    assert [r.payment_number for r in rows] == [1, 2, 3, 4, 5, 6, 7]
    assert all(r.status is PaymentStatus.PENDING for r in rows)
    assert rows[0].notes == "Recalculated: initial schedule"


def test_reconcile_updates_candidates_in_lock_step(store, loan):
    """Test pending rows from the effective date take the new breakdown"""
    result = ScheduleReconciler(store).reconcile(
        loan.id, _breakdown("979.00"), effective_from=date(2025, 2, 11), reason="manual payment"
    )

    assert result.success
    assert (result.updated_count, result.inserted_count, result.cancelled_count) == (6, 0, 0)

    rows = store.list_schedule_entries(loan.id)
    assert rows[0].remaining_balance == Decimal("1029.00")  # before the effective date
    assert rows[1].interest == Decimal("23.66")
    assert rows[-1].amount == Decimal("54.93")
    assert rows[1].notes.endswith("Recalculated: manual payment")


def test_reconcile_cancels_surplus_rows(store, loan):
    """Test a shorter breakdown cancels the leftover pending rows"""
    result = ScheduleReconciler(store).reconcile(
        loan.id, _breakdown("529.00"), effective_from=date(2025, 2, 11), reason="manual payment"
    )

    assert (result.updated_count, result.cancelled_count) == (3, 3)
    rows = store.list_schedule_entries(loan.id)
    assert [r.status for r in rows[4:]] == [PaymentStatus.CANCELLED] * 3
    assert len(rows) == 7  # nothing deleted
    assert "Cancelled: manual payment" in rows[-1].notes


def test_reconcile_inserts_after_highest_payment_number(store, loan):
    """Test extra entries get numbers after every existing row"""
    result = ScheduleReconciler(store).reconcile(
        loan.id, _breakdown("1108.87", first_payment_date=date(2025, 4, 3)), effective_from=date(2025, 4, 3)
    )

    assert (result.updated_count, result.inserted_count) == (5, 2)
    rows = store.list_schedule_entries(loan.id)
    assert [r.payment_number for r in rows[-2:]] == [8, 9]
    assert rows[-1].due_date == date(2025, 10, 3)
    assert rows[-1].amount == Decimal("4.93")


def test_reconcile_is_idempotent(store, loan):
    """Test replaying the same breakdown changes nothing"""
    reconciler = ScheduleReconciler(store)
    breakdown = _breakdown("979.00")
    reconciler.reconcile(loan.id, breakdown, effective_from=date(2025, 2, 11))
    before = store.list_schedule_entries(loan.id)

    result = reconciler.reconcile(loan.id, breakdown, effective_from=date(2025, 2, 11))

    assert (result.updated_count, result.inserted_count, result.cancelled_count) == (0, 0, 0)
    assert result.unchanged_count == 6
    assert store.list_schedule_entries(loan.id) == before


def test_reconcile_never_touches_locked_rows(store, loan):
    """Test settled rows survive a reconcile over the whole schedule"""
    rows = store.list_schedule_entries(loan.id)
    confirmed = rows[0].with_note("settled", status=PaymentStatus.CONFIRMED)
    store.upsert_schedule_entries(loan.id, [confirmed])

    ScheduleReconciler(store).reconcile(loan.id, _breakdown("500.00"), effective_from=None)

    assert store.list_schedule_entries(loan.id)[0] == confirmed


def test_reconcile_collects_row_errors(store, loan, flaky_store):
    """Test one failing row is reported while the others are written"""
    flaky = flaky_store(fail_row=lambda entry: entry.payment_number == 4)

    result = ScheduleReconciler(flaky).reconcile(loan.id, _breakdown("979.00"), effective_from=date(2025, 2, 11))

    assert not result.success
    assert result.updated_count == 5
    assert len(result.errors) == 1
    assert "#4" in result.errors[0]
    with pytest.raises(ReconciliationPartialFailure) as exc_info:
        result.raise_for_errors()
    assert exc_info.value.loan_id == loan.id

    rows = store.list_schedule_entries(loan.id)
    assert rows[3].remaining_balance == Decimal("490.81")  # untouched
    assert rows[4].remaining_balance == Decimal("247.65")


def test_empty_breakdown_cancels_all_candidates(store, loan):
    result = ScheduleReconciler(store).reconcile(loan.id, Breakdown(), effective_from=None, reason="paid off")

    assert result.cancelled_count == 7


def test_store_rejects_unknown_loan(store):
    with pytest.raises(NotFoundError):
        store.list_schedule_entries(uuid.uuid4())
    with pytest.raises(NotFoundError):
        store.update_loan(uuid.uuid4(), Decimal("10.00"))

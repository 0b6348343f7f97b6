"""Merge a recalculated breakdown into the persisted schedule"""

import logging
import uuid
from datetime import date
from typing import List, Optional

from repayment_engine.domain.exceptions import PersistenceError
from repayment_engine.domain.models import (
    Breakdown,
    BreakdownEntry,
    PaymentStatus,
    ReconciliationResult,
    ScheduledPayment,
)
from repayment_engine.domain.store import LedgerStore


def _matches(row: ScheduledPayment, entry: BreakdownEntry) -> bool:
    return (
        row.due_date == entry.due_date
        and row.amount == entry.amount
        and row.interest == entry.interest
        and row.principal == entry.principal
        and row.remaining_balance == entry.remaining_balance
    )


class ScheduleReconciler:
    """
    Lock-step merge of breakdown entries onto open (pending) schedule rows.

    Locked rows are never touched. Matching rows are skipped, so running the
    same reconciliation twice leaves the schedule unchanged the second time.
    Rows are written one at a time in payment-number order; a row that fails
    to persist is reported in ``errors`` and the remaining rows still proceed.
    """

    def __init__(self, store: LedgerStore):
        self.store = store

    @staticmethod
    def open_candidates(rows: List[ScheduledPayment], effective_from: Optional[date]) -> List[ScheduledPayment]:
        """Pending rows due on or after ``effective_from``, in payment-number order"""
        return [
            row
            for row in sorted(rows, key=lambda row: row.payment_number)
            if row.status is PaymentStatus.PENDING and (effective_from is None or row.due_date >= effective_from)
        ]

    def reconcile(
        self,
        loan_id: uuid.UUID,
        breakdown: Breakdown,
        effective_from: Optional[date] = None,
        reason: str = "schedule change",
    ) -> ReconciliationResult:
        result = ReconciliationResult(loan_id=loan_id)

        rows = self.store.list_schedule_entries(loan_id)
        candidates = self.open_candidates(rows, effective_from)
        next_number = max((row.payment_number for row in rows), default=0) + 1
        note = f"Recalculated: {reason}"

        for position, entry in enumerate(breakdown):
            if position < len(candidates):
                current = candidates[position]
                if _matches(current, entry):
                    result.unchanged_count += 1
                    continue
                row = current.with_note(
                    note,
                    due_date=entry.due_date,
                    amount=entry.amount,
                    interest=entry.interest,
                    principal=entry.principal,
                    remaining_balance=entry.remaining_balance,
                )
                self._write(row, "updated", result)
            else:
                row = ScheduledPayment(
                    loan_id=loan_id,
                    payment_number=next_number,
                    due_date=entry.due_date,
                    amount=entry.amount,
                    interest=entry.interest,
                    principal=entry.principal,
                    remaining_balance=entry.remaining_balance,
                    notes=note,
                )
                next_number += 1
                self._write(row, "inserted", result)

        for surplus in candidates[len(breakdown):]:
            row = surplus.with_note(f"Cancelled: {reason}", status=PaymentStatus.CANCELLED)
            self._write(row, "cancelled", result)

        return result

    def _write(self, row: ScheduledPayment, action: str, result: ReconciliationResult) -> None:
        try:
            self.store.upsert_schedule_entries(row.loan_id, [row])
        except PersistenceError as e:
            logging.warning(
                f"Schedule row not written: {e}",
                extra={
                    "loan_id": str(row.loan_id),
                    "payment_number": row.payment_number,
                    "action": action,
                },
            )
            result.errors.append(f"Payment #{row.payment_number} ({action}): {e}")
            return

        if action == "updated":
            result.updated_count += 1
        elif action == "inserted":
            result.inserted_count += 1
        else:
            result.cancelled_count += 1

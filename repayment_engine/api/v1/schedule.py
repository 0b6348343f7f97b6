"""GET /v1/loans/{loan_id}/schedule - Fetch a loan's payment schedule"""

import uuid
from fastapi import APIRouter, Depends, HTTPException, Query
from sqlalchemy.orm import Session

from repayment_engine.api.v1.schemas import ScheduleResponse, ScheduleEntrySchema
from repayment_engine.infrastructure.database.session import get_db
from repayment_engine.infrastructure.database.repositories import SqlLedgerStore
from repayment_engine.domain.exceptions import NotFoundError
from repayment_engine.domain.models import PaymentStatus

router = APIRouter()


@router.get("/loans/{loan_id}/schedule", response_model=ScheduleResponse)
def get_schedule(
    loan_id: str,
    include_cancelled: bool = Query(False, description="Include cancelled rows"),
    db: Session = Depends(get_db),
):
    """
    Retrieve the loan's schedule ordered by payment number.

    Returns:
        Loan balance and terms with every row (cancelled rows only on request)
    """
    try:
        loan_uuid = uuid.UUID(loan_id)
    except ValueError:
        raise HTTPException(status_code=400, detail="Invalid loan ID format")

    store = SqlLedgerStore(db)
    try:
        loan = store.get_loan(loan_uuid)
        payments = store.list_schedule_entries(loan_uuid)
    except NotFoundError:
        raise HTTPException(status_code=404, detail="Loan not found")

    entries = [
        ScheduleEntrySchema.from_payment(payment)
        for payment in payments
        if include_cancelled or payment.status is not PaymentStatus.CANCELLED
    ]

    return ScheduleResponse(
        loan_id=str(loan.id),
        status=loan.status.value,
        remaining_balance=loan.remaining_balance,
        payment_amount=loan.terms.payment_amount if loan.terms else None,
        frequency=loan.terms.frequency.value if loan.terms else None,
        payments=entries,
    )

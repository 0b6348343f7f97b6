"""POST /v1/loans/{loan_id}/recalculations - schedule event endpoint"""

import time
import uuid
import logging
from fastapi import APIRouter, BackgroundTasks, Body, Depends, HTTPException, Request
from sqlalchemy.orm import Session

from repayment_engine.api.v1.schemas import (
    PaymentOutcomeRequest,
    RecalculationRequest,
    ScheduleChangeResponse,
)
from repayment_engine.api.dependencies import get_request_id, get_schedule_webhook_client
from repayment_engine.infrastructure.database.session import get_db
from repayment_engine.infrastructure.database.repositories import SqlLedgerStore
from repayment_engine.infrastructure.clients.schedule_webhook import ScheduleWebhookClient, build_schedule_event
from repayment_engine.domain.exceptions import NotFoundError, PersistenceError, ValidationError
from repayment_engine.domain.handlers import PaymentScheduleService
from repayment_engine.domain.models import ScheduleChangeResult
from repayment_engine.infrastructure.observability.metrics import record_schedule_change, record_schedule_rejection
from repayment_engine.infrastructure.observability.logging import log_schedule_change

router = APIRouter()


def _complete(
    result: ScheduleChangeResult,
    db: Session,
    background_tasks: BackgroundTasks,
    webhook_client: ScheduleWebhookClient,
    request_id: str,
    start_time: float,
) -> ScheduleChangeResponse:
    db.commit()

    if result.success:
        background_tasks.add_task(webhook_client.send_schedule_event, build_schedule_event(result))

    # Record metrics and logs
    duration_ms = (time.time() - start_time) * 1000
    record_schedule_change(result)
    log_schedule_change(request_id, result, duration_ms)

    return ScheduleChangeResponse.from_result(result)


def _fail(error: Exception, db: Session, trigger: str, request_id: str) -> HTTPException:
    """Roll back the request and map a domain error to its HTTP status"""
    db.rollback()
    extra = {"request_id": request_id, "trigger": trigger}

    if isinstance(error, ValidationError):
        record_schedule_rejection(trigger)
        logging.warning(f"Schedule change rejected: {error}", extra=extra)
        return HTTPException(status_code=422, detail=str(error))

    if isinstance(error, NotFoundError):
        record_schedule_rejection(trigger)
        logging.warning(f"Not found: {error}", extra=extra)
        return HTTPException(status_code=404, detail=str(error))

    record_schedule_rejection(trigger, outcome="error")
    if isinstance(error, PersistenceError):
        logging.error(f"Ledger store error: {error}", extra=extra)
        return HTTPException(status_code=503, detail="Ledger store unavailable")

    logging.error(f"Unexpected error: {error}", extra=extra)
    return HTTPException(status_code=500, detail="Internal server error")


@router.post("/loans/{loan_id}/recalculations", response_model=ScheduleChangeResponse)
async def create_recalculation(
    loan_id: uuid.UUID,
    background_tasks: BackgroundTasks,
    request: Request,
    request_body: RecalculationRequest = Body(...),
    db: Session = Depends(get_db),
    webhook_client: ScheduleWebhookClient = Depends(get_schedule_webhook_client),
):
    """
    Apply a schedule event and re-derive the loan's future payments.

    Flow:
    1. Convert the trigger-specific body into a domain command
    2. Apply the primary mutation (balance and/or the event's own row)
    3. Recalculate the breakdown and reconcile it into the pending rows
    4. Commit, including partially reconciled results
    5. Send async SCHEDULE_RECALCULATED webhook when every row was written
    """
    start_time = time.time()
    request_id = get_request_id(request)

    try:
        service = PaymentScheduleService(SqlLedgerStore(db))
        result = service.handle(request_body.to_command(loan_id))
    except Exception as e:
        raise _fail(e, db, request_body.trigger, request_id)

    return _complete(result, db, background_tasks, webhook_client, request_id, start_time)


@router.post(
    "/loans/{loan_id}/payments/{payment_number}/outcome",
    response_model=ScheduleChangeResponse,
)
async def record_payment_outcome(
    loan_id: uuid.UUID,
    payment_number: int,
    request_body: PaymentOutcomeRequest,
    background_tasks: BackgroundTasks,
    request: Request,
    db: Session = Depends(get_db),
    webhook_client: ScheduleWebhookClient = Depends(get_schedule_webhook_client),
):
    """
    Record a settlement outcome reported by the payment rails.

    Returns:
        The updated row; a failed outcome also carries the recalculated breakdown
    """
    start_time = time.time()
    request_id = get_request_id(request)

    try:
        service = PaymentScheduleService(SqlLedgerStore(db))
        result = service.record_payment_outcome(loan_id, payment_number, request_body.status)
    except Exception as e:
        raise _fail(e, db, "outcome", request_id)

    return _complete(result, db, background_tasks, webhook_client, request_id, start_time)

"""Pydantic schemas for API request/response validation"""

import uuid
from datetime import date
from decimal import Decimal
from typing import Annotated, List, Literal, Optional, Union

from pydantic import BaseModel, Field

from repayment_engine.domain.handlers import (
    Deferral,
    DeferralMode,
    FailedPayment,
    FeePolicy,
    ManualPayment,
    Modification,
    Rebate,
    ScheduleOverride,
    Stop,
)
from repayment_engine.domain.models import BreakdownEntry, PaymentStatus, ScheduleChangeResult, ScheduledPayment


# Recalculation requests, discriminated on "trigger"


class ManualPaymentRequest(BaseModel):
    """Out-of-band payment collected outside the schedule"""

    trigger: Literal["manual"]
    amount: Decimal = Field(..., gt=0, decimal_places=2, description="Amount received")
    payment_date: date
    notes: str = ""
    mark_loan_as_paid: bool = False

    def to_command(self, loan_id: uuid.UUID) -> ManualPayment:
        return ManualPayment(
            loan_id=loan_id,
            amount=self.amount,
            payment_date=self.payment_date,
            notes=self.notes,
            mark_loan_as_paid=self.mark_loan_as_paid,
        )


class RebateRequest(BaseModel):
    """Principal-only credit applied to the loan"""

    trigger: Literal["rebate"]
    amount: Decimal = Field(..., gt=0, decimal_places=2)
    payment_date: date
    notes: str = ""
    mark_loan_as_paid: bool = False

    def to_command(self, loan_id: uuid.UUID) -> Rebate:
        return Rebate(
            loan_id=loan_id,
            amount=self.amount,
            payment_date=self.payment_date,
            notes=self.notes,
            mark_loan_as_paid=self.mark_loan_as_paid,
        )


class FailedPaymentRequest(BaseModel):
    trigger: Literal["failure"]
    payment_number: int = Field(..., ge=1)
    fee: Optional[Decimal] = Field(None, ge=0, decimal_places=2, description="Defaults to the configured NSF fee")
    notes: str = ""

    def to_command(self, loan_id: uuid.UUID) -> FailedPayment:
        return FailedPayment(loan_id=loan_id, payment_number=self.payment_number, fee=self.fee, notes=self.notes)


class DeferralRequest(BaseModel):
    trigger: Literal["deferral"]
    payment_number: int = Field(..., ge=1)
    mode: DeferralMode = DeferralMode.MOVE_TO_END
    fee_amount: Decimal = Field(Decimal("0.00"), ge=0, decimal_places=2)
    fee_policy: FeePolicy = FeePolicy.ADD_TO_PAYMENT
    new_date: Optional[date] = None
    notes: str = ""

    def to_command(self, loan_id: uuid.UUID) -> Deferral:
        return Deferral(
            loan_id=loan_id,
            payment_number=self.payment_number,
            mode=self.mode,
            fee_amount=self.fee_amount,
            fee_policy=self.fee_policy,
            new_date=self.new_date,
            notes=self.notes,
        )


class ScheduleOverrideSchema(BaseModel):
    due_date: Optional[date] = None
    amount: Optional[Decimal] = Field(None, gt=0, decimal_places=2)


class ModificationRequest(BaseModel):
    """Re-term the loan over a new cadence and period count"""

    trigger: Literal["modification"]
    frequency: str = Field(..., min_length=1, description="weekly | bi-weekly | twice-monthly | monthly (aliases accepted)")
    number_of_payments: int = Field(..., ge=1)
    start_date: date
    payment_amount: Optional[Decimal] = Field(None, gt=0, decimal_places=2)
    override_schedule: List[ScheduleOverrideSchema] = Field(default_factory=list)
    notes: str = ""

    def to_command(self, loan_id: uuid.UUID) -> Modification:
        return Modification(
            loan_id=loan_id,
            frequency=self.frequency,
            number_of_payments=self.number_of_payments,
            start_date=self.start_date,
            payment_amount=self.payment_amount,
            override_schedule=[
                ScheduleOverride(due_date=override.due_date, amount=override.amount)
                for override in self.override_schedule
            ],
            notes=self.notes,
        )


class StopRequest(BaseModel):
    trigger: Literal["stop"]
    notes: str = ""

    def to_command(self, loan_id: uuid.UUID) -> Stop:
        return Stop(loan_id=loan_id, notes=self.notes)


RecalculationRequest = Annotated[
    Union[
        ManualPaymentRequest,
        RebateRequest,
        FailedPaymentRequest,
        DeferralRequest,
        ModificationRequest,
        StopRequest,
    ],
    Field(discriminator="trigger"),
]


class PaymentOutcomeRequest(BaseModel):
    """Request body for POST /v1/loans/{loan_id}/payments/{payment_number}/outcome"""

    status: Literal["confirmed", "paid", "failed"]


# Responses


class BreakdownEntrySchema(BaseModel):
    """Single recalculated period"""

    payment_number: int
    due_date: date
    amount: Decimal
    interest: Decimal
    principal: Decimal
    remaining_balance: Decimal

    @classmethod
    def from_entry(cls, entry: BreakdownEntry) -> "BreakdownEntrySchema":
        return cls(
            payment_number=entry.payment_number,
            due_date=entry.due_date,
            amount=entry.amount,
            interest=entry.interest,
            principal=entry.principal,
            remaining_balance=entry.remaining_balance,
        )


class ScheduleEntrySchema(BaseModel):
    """Persisted schedule row"""

    payment_number: int
    due_date: date
    amount: Decimal
    interest: Decimal
    principal: Decimal
    remaining_balance: Decimal
    status: PaymentStatus
    notes: str = ""
    error_code: Optional[str] = None

    @classmethod
    def from_payment(cls, payment: ScheduledPayment) -> "ScheduleEntrySchema":
        return cls(
            payment_number=payment.payment_number,
            due_date=payment.due_date,
            amount=payment.amount,
            interest=payment.interest,
            principal=payment.principal,
            remaining_balance=payment.remaining_balance,
            status=payment.status,
            notes=payment.notes,
            error_code=payment.error_code,
        )


class ScheduleChangeResponse(BaseModel):
    """Response for POST /v1/loans/{loan_id}/recalculations"""

    success: bool
    trigger: str
    new_remaining_balance: Decimal
    updated_count: int
    inserted_count: int
    cancelled_count: int
    converged: bool
    breakdown: List[BreakdownEntrySchema]
    errors: List[str]
    entry: Optional[ScheduleEntrySchema] = None

    @classmethod
    def from_result(cls, result: ScheduleChangeResult) -> "ScheduleChangeResponse":
        return cls(
            success=result.success,
            trigger=result.trigger,
            new_remaining_balance=result.new_remaining_balance,
            updated_count=result.updated_count,
            inserted_count=result.inserted_count,
            cancelled_count=result.cancelled_count,
            converged=result.converged,
            breakdown=[BreakdownEntrySchema.from_entry(entry) for entry in result.breakdown],
            errors=result.errors,
            entry=ScheduleEntrySchema.from_payment(result.entry) if result.entry else None,
        )


class ScheduleResponse(BaseModel):
    """Response for GET /v1/loans/{loan_id}/schedule"""

    loan_id: str
    status: str
    remaining_balance: Decimal
    payment_amount: Optional[Decimal] = None
    frequency: Optional[str] = None
    payments: List[ScheduleEntrySchema]

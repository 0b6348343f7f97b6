"""SQLAlchemy ORM models for loans and their payment schedules"""

import uuid
from sqlalchemy import Column, Date, DateTime, ForeignKey, Integer, Numeric, Text, UniqueConstraint
from sqlalchemy.dialects.postgresql import UUID
from sqlalchemy.orm import declarative_base, relationship
from sqlalchemy.sql import func

Base = declarative_base()


class LoanRecord(Base):
    """Loan with its authoritative remaining balance and contracted terms"""

    __tablename__ = "loan"

    id = Column(UUID(as_uuid=True), primary_key=True, default=uuid.uuid4)
    principal_amount = Column(Numeric(12, 2), nullable=False)
    interest_rate = Column(Numeric(6, 3), nullable=False)
    remaining_balance = Column(Numeric(12, 2), nullable=False)
    status = Column(Text, nullable=False, default="active")
    payment_amount = Column(Numeric(12, 2), nullable=True)
    payment_frequency = Column(Text, nullable=True)
    number_of_payments = Column(Integer, nullable=True)
    first_payment_date = Column(Date, nullable=True)
    created_at = Column(DateTime(timezone=True), nullable=False, server_default=func.now())
    updated_at = Column(DateTime(timezone=True), nullable=False, server_default=func.now(), onupdate=func.now())

    payments = relationship(
        "LoanPaymentRecord",
        back_populates="loan",
        cascade="all, delete-orphan",
        order_by="LoanPaymentRecord.payment_number",
    )


class LoanPaymentRecord(Base):
    """One scheduled, settled or out-of-band payment of a loan"""

    __tablename__ = "loan_payment"
    __table_args__ = (UniqueConstraint("loan_id", "payment_number", name="uq_loan_payment_number"),)

    id = Column(UUID(as_uuid=True), primary_key=True, default=uuid.uuid4)
    loan_id = Column(UUID(as_uuid=True), ForeignKey("loan.id", ondelete="CASCADE"), nullable=False, index=True)
    payment_number = Column(Integer, nullable=False)
    due_date = Column(Date, nullable=False)
    amount = Column(Numeric(12, 2), nullable=False)
    interest = Column(Numeric(12, 2), nullable=False)
    principal = Column(Numeric(12, 2), nullable=False)
    remaining_balance = Column(Numeric(12, 2), nullable=False)
    status = Column(Text, nullable=False, default="pending")
    notes = Column(Text, nullable=False, default="")
    error_code = Column(Text, nullable=True)
    created_at = Column(DateTime(timezone=True), nullable=False, server_default=func.now())
    updated_at = Column(DateTime(timezone=True), nullable=False, server_default=func.now(), onupdate=func.now())

    loan = relationship("LoanRecord", back_populates="payments")

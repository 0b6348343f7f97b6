"""Domain-specific exceptions"""

from typing import List


class DomainException(Exception):
    """Base exception for domain layer"""

    pass


class ValidationError(DomainException):
    """Request rejected before any mutation (bad amount, date, status or parameters)"""

    pass


class InvalidAmountError(ValidationError):
    """Payment amount is not positive or exceeds the remaining balance"""

    pass


class InvalidStatusError(ValidationError):
    """Scheduled payment is not in a status that allows the requested transition"""

    pass


class NotFoundError(DomainException):
    """Loan or scheduled payment does not exist"""

    pass


class PersistenceError(DomainException):
    """Ledger store call failed"""

    pass


class ReconciliationPartialFailure(DomainException):
    """One or more schedule rows could not be written during reconciliation"""

    def __init__(self, loan_id, errors: List[str]):
        self.loan_id = loan_id
        self.errors = list(errors)
        super().__init__(f"Reconciliation of loan {loan_id} left {len(self.errors)} row(s) unwritten")


class NonConvergenceWarning(UserWarning):
    """Schedule hit the period cap before the balance reached zero"""

    pass

"""Domain-specific exceptions"""


class DomainException(Exception):
    """Base exception for domain layer"""

    pass


class InvalidAmountError(DomainException):
    """Amount is zero, negative or otherwise unusable"""

    pass


class InvalidAllocationError(DomainException):
    """Allocation parts are negative or do not sum to the transaction amount"""

    pass


class OverpaymentError(DomainException):
    """Payment exceeds the total outstanding balance"""

    def __init__(self, amount, outstanding):
        self.amount = amount
        self.outstanding = outstanding
        super().__init__(f"Payment {amount} exceeds outstanding balance {outstanding}")


class InsufficientSettlementAmountError(DomainException):
    """Settlement amount does not cover the outstanding balance"""

    def __init__(self, amount, outstanding):
        self.amount = amount
        self.outstanding = outstanding
        super().__init__(f"Settlement amount {amount} is less than outstanding balance {outstanding}")


class InvalidStateTransitionError(DomainException):
    """Operation is not legal from the loan's current status"""

    def __init__(self, operation: str, current_status: str, detail: str | None = None):
        self.operation = operation
        self.current_status = current_status
        message = f"Cannot {operation} a loan in status '{current_status}'"
        if detail:
            message = f"{message}: {detail}"
        super().__init__(message)


class FacilityRevolvingWindowExhaustedError(DomainException):
    """Facility has no revolving days remaining"""

    def __init__(self, facility_id, days_used: int, max_revolving_period: int):
        self.facility_id = facility_id
        self.days_used = days_used
        self.max_revolving_period = max_revolving_period
        super().__init__(
            f"Facility {facility_id} has used {days_used} of {max_revolving_period} revolving days"
        )


class RevolvingTrackingDisabledError(DomainException):
    """Facility does not track a revolving window"""

    pass


class NotFoundError(DomainException):
    """Unknown loan, facility, bank or credit line"""

    def __init__(self, entity: str, entity_id, scope: str | None = None):
        self.entity = entity
        self.entity_id = entity_id
        self.scope = scope
        message = f"{entity} {entity_id} not found"
        if scope:
            message = f"{message} on {scope}"
        super().__init__(message)


class DuplicateError(DomainException):
    """Entity with the same unique key already exists"""

    def __init__(self, entity: str, field: str, value):
        self.entity = entity
        self.field = field
        self.value = value
        super().__init__(f"{entity} with {field} '{value}' already exists")


class InvalidDateError(DomainException):
    """Dates are out of order for the loan"""

    pass


class FacilityInactiveError(DomainException):
    """Facility has been soft-deactivated"""

    pass


class ConcurrentModificationError(DomainException):
    """Loan was modified by another operation while this one was in flight"""

    pass


class LedgerImmutableError(DomainException):
    """Committed ledger rows cannot be updated or deleted"""

    pass

"""Loan lifecycle rules - which operations are legal from which status"""

from datetime import date
from decimal import Decimal
from typing import Dict, FrozenSet, Optional, Sequence

from facility_ledger.domain.exceptions import InsufficientSettlementAmountError, InvalidStateTransitionError
from facility_ledger.domain.models import ALLOCATED_TYPES, Balance, LedgerEntry, LoanStatus, Operation

# Source statuses each operation may start from. draw creates a loan so it has none.
ALLOWED_SOURCES: Dict[Operation, FrozenSet[LoanStatus]] = {
    Operation.REPAYMENT: frozenset({LoanStatus.ACTIVE}),
    Operation.SETTLE: frozenset({LoanStatus.ACTIVE}),
    Operation.REVOLVE: frozenset({LoanStatus.ACTIVE}),
    Operation.CANCEL: frozenset({LoanStatus.ACTIVE}),
    Operation.CHARGE_FEE: frozenset({LoanStatus.ACTIVE}),
    Operation.ACCRUE_INTEREST: frozenset({LoanStatus.ACTIVE}),
}

TERMINAL_STATUSES = frozenset({LoanStatus.SETTLED, LoanStatus.CANCELLED})


def ensure_transition(operation: Operation, current_status: LoanStatus) -> None:
    """Raise InvalidStateTransitionError unless `operation` may run from `current_status`"""
    allowed = ALLOWED_SOURCES.get(operation, frozenset())
    if LoanStatus(current_status) not in allowed:
        raise InvalidStateTransitionError(operation.value, LoanStatus(current_status).value)


def status_after_payment(balance: Balance) -> LoanStatus:
    """A repayment that clears the loan settles it"""
    return LoanStatus.SETTLED if balance.total == 0 else LoanStatus.ACTIVE


def ensure_settlement_covers(settlement_amount: Decimal, balance: Balance) -> None:
    if settlement_amount < balance.total:
        raise InsufficientSettlementAmountError(settlement_amount, balance.total)


def ensure_cancellable(
    entries: Sequence[LedgerEntry],
    start_date: date,
    force: bool = False,
    reason: Optional[str] = None,
) -> None:
    """
    A loan may be cancelled while its ledger holds nothing but its opening entries.

    Opening entries are the draw plus any fee or interest carried in on the start
    date, as on a loan opened by a new-cycle revolve. Anything else (repayments,
    later fees or accruals) needs force=True and a reason, which is kept on the
    loan and in its audit trail.
    """
    if all(e.date == start_date and e.type not in ALLOCATED_TYPES for e in entries):
        return
    if not force:
        raise InvalidStateTransitionError(
            Operation.CANCEL.value,
            LoanStatus.ACTIVE.value,
            "ledger has activity beyond its opening entries; pass force with a reason",
        )
    if not reason or not reason.strip():
        raise InvalidStateTransitionError(
            Operation.CANCEL.value,
            LoanStatus.ACTIVE.value,
            "forced cancellation requires a reason",
        )

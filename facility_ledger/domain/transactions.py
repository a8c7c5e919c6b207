"""Validation rules for entries appended to a loan's transaction log"""

from datetime import date
from decimal import Decimal
from typing import Optional, Tuple

from facility_ledger.domain.exceptions import InvalidAllocationError, InvalidAmountError, InvalidDateError
from facility_ledger.domain.models import ALLOCATED_TYPES, Allocation, TransactionType
from facility_ledger.utils.money import Number, to_money


def validate_entry(
    type: TransactionType,
    amount: Number,
    allocation: Optional[Allocation] = None,
) -> Tuple[Decimal, Optional[Allocation]]:
    """
    Check an entry before it is committed and return its normalized amount and allocation.

    Rules:
    - amount must be positive after rounding to the currency's minor unit
    - repayment/settlement entries need an allocation whose parts are non-negative
      and sum exactly to the amount (compared at minor-unit precision)
    - other entry types must not carry an allocation

    Raises:
        InvalidAmountError: amount <= 0
        InvalidAllocationError: missing, misplaced, negative or unbalanced allocation
    """
    money = to_money(amount)
    if money <= 0:
        raise InvalidAmountError(f"Transaction amount must be greater than 0, got {amount}")

    if type not in ALLOCATED_TYPES:
        if allocation is not None:
            raise InvalidAllocationError(f"{type.value} entries do not carry an allocation")
        return money, None

    if allocation is None:
        raise InvalidAllocationError(f"{type.value} entries require an allocation")

    parts = Allocation(
        fees=to_money(allocation.fees),
        interest=to_money(allocation.interest),
        principal=to_money(allocation.principal),
    )
    if parts.fees < 0 or parts.interest < 0 or parts.principal < 0:
        raise InvalidAllocationError(f"Allocation parts must be non-negative: {parts}")
    if parts.total != money:
        raise InvalidAllocationError(
            f"Allocation parts sum to {parts.total}, expected {money}"
        )

    return money, parts


def validate_entry_date(entry_date: date, start_date: date, last_entry_date: Optional[date] = None) -> None:
    """
    Entries are dated on or after the loan start and never before the last committed entry.

    Keeping the log chronological means every prefix of it is itself a valid history,
    so balance_as_of never observes a payment applied before the charge it paid off.
    """
    if entry_date < start_date:
        raise InvalidDateError(f"Entry date {entry_date} is before loan start {start_date}")
    if last_entry_date is not None and entry_date < last_entry_date:
        raise InvalidDateError(
            f"Entry date {entry_date} is before the last ledger entry on {last_entry_date}"
        )

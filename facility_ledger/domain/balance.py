"""Balance calculator - outstanding amounts as a pure fold over the ledger"""

from datetime import date
from functools import reduce
from typing import Iterable, List, Optional

from facility_ledger.domain.models import Balance, LedgerEntry, TransactionType


def apply_entry(balance: Balance, entry: LedgerEntry) -> Balance:
    """Return the balance after one ledger entry"""
    if entry.type == TransactionType.DRAW:
        return Balance(
            principal_outstanding=balance.principal_outstanding + entry.amount,
            interest_outstanding=balance.interest_outstanding,
            fees_outstanding=balance.fees_outstanding,
        )
    if entry.type == TransactionType.FEE:
        return Balance(
            principal_outstanding=balance.principal_outstanding,
            interest_outstanding=balance.interest_outstanding,
            fees_outstanding=balance.fees_outstanding + entry.amount,
        )
    if entry.type == TransactionType.INTEREST_ACCRUAL:
        return Balance(
            principal_outstanding=balance.principal_outstanding,
            interest_outstanding=balance.interest_outstanding + entry.amount,
            fees_outstanding=balance.fees_outstanding,
        )

    # repayment / settlement reduce each bucket by its allocated part
    allocation = entry.allocation
    return Balance(
        principal_outstanding=balance.principal_outstanding - allocation.principal,
        interest_outstanding=balance.interest_outstanding - allocation.interest,
        fees_outstanding=balance.fees_outstanding - allocation.fees,
    )


def chronological(entries: Iterable[LedgerEntry]) -> List[LedgerEntry]:
    """Entries in replay order: by date, then by commit sequence"""
    return sorted(entries, key=lambda e: (e.date, e.sequence))


def calculate_balance(
    entries: Iterable[LedgerEntry],
    as_of: Optional[date] = None,
    initial: Optional[Balance] = None,
) -> Balance:
    """
    Replay ledger entries into a balance.

    Only entries dated on or before `as_of` are applied (all of them when as_of is None).
    `initial` lets a caller resume from a balance computed over an earlier prefix:
        calculate_balance(prefix + suffix) == calculate_balance(suffix, initial=calculate_balance(prefix))

    An empty ledger yields an all-zero balance.
    """
    ordered = chronological(entries)
    if as_of is not None:
        ordered = [e for e in ordered if e.date <= as_of]
    return reduce(apply_entry, ordered, initial or Balance())


def is_negative(balance: Balance) -> bool:
    return (
        balance.principal_outstanding < 0
        or balance.interest_outstanding < 0
        or balance.fees_outstanding < 0
    )

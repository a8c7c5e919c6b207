"""Interest accrual computed from the ledger's principal history"""

from datetime import date
from decimal import Decimal
from typing import Iterable, Optional

from facility_ledger.config import settings
from facility_ledger.domain.balance import apply_entry, chronological
from facility_ledger.domain.models import Balance, LedgerEntry, TransactionType
from facility_ledger.utils.money import Number, ZERO, to_money


def last_accrual_date(entries: Iterable[LedgerEntry], start_date: date) -> date:
    """Date interest has been accrued through: the latest accrual entry, else the loan start"""
    accruals = [e.date for e in entries if e.type == TransactionType.INTEREST_ACCRUAL]
    return max(accruals) if accruals else start_date


def accrued_interest(
    entries: Iterable[LedgerEntry],
    accrue_from: date,
    accrue_to: date,
    annual_rate_pct: Number,
    day_count_basis: Optional[int] = None,
) -> Decimal:
    """
    Simple interest on outstanding principal between two dates.

        interest = sum(principal_i * days_i) * rate / 100 / basis

    Principal is piecewise constant between ledger entries: an entry dated d
    changes the principal that accrues from d onward. Days are counted
    [accrue_from, accrue_to).
    """
    basis = day_count_basis or settings.interest_day_count_basis
    rate = Decimal(str(annual_rate_pct))
    if accrue_to <= accrue_from or rate <= 0:
        return ZERO

    balance = Balance()
    cursor = accrue_from
    principal_days = Decimal("0")

    for entry in chronological(entries):
        if entry.date <= accrue_from:
            balance = apply_entry(balance, entry)
            continue
        if entry.date >= accrue_to:
            break
        principal_days += balance.principal_outstanding * (entry.date - cursor).days
        cursor = entry.date
        balance = apply_entry(balance, entry)

    principal_days += balance.principal_outstanding * (accrue_to - cursor).days

    return to_money(principal_days * rate / Decimal(100) / Decimal(basis))

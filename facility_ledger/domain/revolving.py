"""Revolving-period tracker - how much of a facility's revolving window its loans have consumed"""

from datetime import date
from typing import Iterable

from facility_ledger.config import settings
from facility_ledger.domain.models import (
    LoanRevolvingUsage,
    LoanStatus,
    LoanWindow,
    RevolvingStatus,
    RevolvingUsage,
)
from facility_ledger.utils.date_utils import days_between
from facility_ledger.utils.money import percentage

# Loans in these statuses occupy the window; cancelled loans never drew down
COUNTED_STATUSES = frozenset({LoanStatus.ACTIVE, LoanStatus.SETTLED})


def effective_end(window: LoanWindow) -> date:
    """A settled loan stops consuming days at min(settled, due); otherwise at due"""
    if window.settled_date is not None:
        return min(window.settled_date, window.due_date)
    return window.due_date


def loan_span_days(window: LoanWindow) -> int:
    """Raw day span for a loan, negative when the record's dates are inverted"""
    return days_between(window.start_date, effective_end(window))


def revolving_status(
    percentage_used: float,
    warning_pct: float | None = None,
    critical_pct: float | None = None,
) -> RevolvingStatus:
    """
    Map percentage used to a status band:
    - < warning (70):            available
    - warning .. critical (90):  warning
    - critical .. 100:           critical
    - >= 100:                    expired
    """
    warning_pct = settings.revolving_warning_pct if warning_pct is None else warning_pct
    critical_pct = settings.revolving_critical_pct if critical_pct is None else critical_pct

    if percentage_used >= 100:
        return RevolvingStatus.EXPIRED
    elif percentage_used >= critical_pct:
        return RevolvingStatus.CRITICAL
    elif percentage_used >= warning_pct:
        return RevolvingStatus.WARNING
    else:
        return RevolvingStatus.AVAILABLE


def _percentage_used(days_used: int, max_revolving_period: int) -> float:
    return min(100.0, max(0.0, percentage(days_used, max_revolving_period)))


def calculate_usage(windows: Iterable[LoanWindow], max_revolving_period: int) -> RevolvingUsage:
    """
    Aggregate revolving days across a facility's loans.

    daysUsed       = sum over active/settled loans of max(0, effectiveEnd - start)
    daysRemaining  = max(0, maxRevolvingPeriod - daysUsed)
    percentageUsed = daysUsed / maxRevolvingPeriod * 100, one decimal, clamped to [0, 100]

    Loans whose span is negative contribute zero and are listed in clamped_loan_ids
    so the caller can surface them instead of losing them silently.
    """
    days_used = 0
    active_loans = 0
    total_loans = 0
    clamped = []

    for window in windows:
        status = LoanStatus(window.status)
        if status not in COUNTED_STATUSES:
            continue
        total_loans += 1
        if status == LoanStatus.ACTIVE:
            active_loans += 1

        span = loan_span_days(window)
        if span < 0:
            clamped.append(window.loan_id)
            continue
        days_used += span

    days_remaining = max(0, max_revolving_period - days_used)
    percentage_used = _percentage_used(days_used, max_revolving_period)

    return RevolvingUsage(
        days_used=days_used,
        days_remaining=days_remaining,
        percentage_used=percentage_used,
        status=revolving_status(percentage_used),
        can_revolve=days_remaining > 0,
        max_revolving_period=max_revolving_period,
        active_loans=active_loans,
        total_loans=total_loans,
        clamped_loan_ids=clamped,
    )


def calculate_loan_usage(window: LoanWindow, max_revolving_period: int, as_of: date) -> LoanRevolvingUsage:
    """
    Days a single loan has been drawn so far: up to its settled date once settled,
    otherwise up to `as_of`.
    """
    if LoanStatus(window.status) == LoanStatus.SETTLED and window.settled_date is not None:
        end = window.settled_date
    else:
        end = as_of

    days_used = max(0, days_between(window.start_date, end))
    days_remaining = max(0, max_revolving_period - days_used)
    percentage_used = _percentage_used(days_used, max_revolving_period)

    return LoanRevolvingUsage(
        loan_id=window.loan_id,
        loan_status=LoanStatus(window.status),
        days_used=days_used,
        days_remaining=days_remaining,
        percentage_used=percentage_used,
        status=revolving_status(percentage_used),
        can_revolve=days_remaining > 0,
        max_revolving_period=max_revolving_period,
    )

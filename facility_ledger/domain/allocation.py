"""Payment waterfall: fees, then interest, then principal"""

from facility_ledger.domain.exceptions import InvalidAmountError, OverpaymentError
from facility_ledger.domain.models import Allocation, Balance
from facility_ledger.utils.money import Number, ZERO, to_money


def allocate(payment_amount: Number, balance: Balance) -> Allocation:
    """
    Split a payment across the outstanding buckets of a loan.

    Each bucket is filled up to its outstanding amount before the next one
    receives anything. The parts always sum exactly to the payment.

    Example:
        balance = fees 0, interest 5,000, principal 95,000
        allocate(30,000) -> fees 0, interest 5,000, principal 25,000

    Raises:
        InvalidAmountError: payment <= 0
        OverpaymentError: payment exceeds the total outstanding
    """
    amount = to_money(payment_amount)
    if amount <= 0:
        raise InvalidAmountError(f"Payment amount must be greater than 0, got {payment_amount}")

    outstanding = balance.total
    if amount > outstanding:
        raise OverpaymentError(amount, outstanding)

    remaining = amount
    fees = min(remaining, max(balance.fees_outstanding, ZERO))
    remaining -= fees
    interest = min(remaining, max(balance.interest_outstanding, ZERO))
    remaining -= interest
    principal = remaining

    return Allocation(fees=fees, interest=interest, principal=principal)


def allocate_in_full(balance: Balance) -> Allocation:
    """Allocation that clears every bucket, used by settlement"""
    return Allocation(
        fees=balance.fees_outstanding,
        interest=balance.interest_outstanding,
        principal=balance.principal_outstanding,
    )

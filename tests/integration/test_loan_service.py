"""Integration tests for the loan lifecycle against a real session"""

import uuid
import pytest
from datetime import date, timedelta
from decimal import Decimal

from prometheus_client import REGISTRY
from sqlalchemy.exc import IntegrityError

from conftest import DAY_0, TestingSessionLocal
from facility_ledger.domain.exceptions import (
    ConcurrentModificationError,
    FacilityInactiveError,
    FacilityRevolvingWindowExhaustedError,
    InsufficientSettlementAmountError,
    InvalidAmountError,
    InvalidDateError,
    InvalidStateTransitionError,
    LedgerImmutableError,
    NotFoundError,
    OverpaymentError,
    RevolvingTrackingDisabledError,
)
from facility_ledger.domain.models import Balance, LoanStatus, TransactionType
from facility_ledger.infrastructure.database.models import Bank, Loan, LoanTransaction
from facility_ledger.services.unit_of_work import unit_of_work

pytestmark = pytest.mark.integration


def day(n: int) -> date:
    return DAY_0 + timedelta(days=n)


@pytest.fixture
def loan(loan_service, facility):
    """100,000 drawn on day 0, due day 40"""
    result = loan_service.draw(facility.id, Decimal("100000"), day(0), day(40))
    return result.loan_id


# ----------------------------------------------------------------------
# draw
# ----------------------------------------------------------------------


def test_draw_creates_active_loan_with_one_entry(loan_service, facility):
    result = loan_service.draw(facility.id, Decimal("100000"), day(0), day(40), reference_number="LN-TEST-1")

    assert result.from_status is None
    assert result.to_status == LoanStatus.ACTIVE
    assert result.balance.principal_outstanding == Decimal("100000")
    assert len(result.transaction_ids) == 1

    loan = loan_service.get_loan(result.loan_id)
    assert loan.status == "active"
    assert loan.reference_number == "LN-TEST-1"
    assert loan.principal_amount == Decimal("100000")

    entries = loan_service.ledger_history(result.loan_id)
    assert [e.type for e in entries] == [TransactionType.DRAW]
    assert entries[0].amount == Decimal("100000")
    assert entries[0].date == day(0)


def test_draw_generates_reference_number(loan_service, loan):
    assert loan_service.get_loan(loan).reference_number.startswith("LN-20250101-")


def test_draw_auto_creates_and_reuses_credit_line(loan_service, facility):
    first = loan_service.get_loan(loan_service.draw(facility.id, Decimal("1000"), day(0), day(10)).loan_id)
    second = loan_service.get_loan(loan_service.draw(facility.id, Decimal("2000"), day(0), day(10)).loan_id)

    assert first.credit_line.name == "Credit Line 1 - Riyad Bank"
    assert first.credit_line.credit_limit == Decimal("1000000")
    assert second.credit_line_id == first.credit_line_id


def test_draw_on_explicit_credit_line(loan_service, facility_service, facility):
    line = facility_service.create_credit_line(facility.id, name="Trade Finance", credit_limit=Decimal("250000"))

    result = loan_service.draw(facility.id, Decimal("1000"), day(0), day(10), credit_line_id=line.id)

    assert loan_service.get_loan(result.loan_id).credit_line_id == line.id


def test_draw_rejects_credit_line_of_another_facility(loan_service, facility_service, facility, untracked_facility):
    foreign = facility_service.create_credit_line(untracked_facility.id, name="Other facility line")

    with pytest.raises(NotFoundError) as exc_info:
        loan_service.draw(facility.id, Decimal("1000"), day(0), day(10), credit_line_id=foreign.id)

    assert exc_info.value.entity == "CreditLine"
    assert str(facility.id) in exc_info.value.scope


def test_draw_validation(loan_service, facility):
    with pytest.raises(InvalidAmountError):
        loan_service.draw(facility.id, Decimal("0"), day(0), day(10))
    with pytest.raises(InvalidDateError):
        loan_service.draw(facility.id, Decimal("1000"), day(10), day(5))
    with pytest.raises(NotFoundError):
        loan_service.draw(uuid.uuid4(), Decimal("1000"), day(0), day(10))


def test_draw_on_inactive_facility_rejected(loan_service, facility_service, facility):
    facility_service.deactivate_facility(facility.id)

    with pytest.raises(FacilityInactiveError):
        loan_service.draw(facility.id, Decimal("1000"), day(0), day(10))


# ----------------------------------------------------------------------
# repayment
# ----------------------------------------------------------------------


def test_partial_repayment(loan_service, loan):
    result = loan_service.repayment(loan, Decimal("30000"), payment_date=day(10))

    assert result.to_status == LoanStatus.ACTIVE
    assert result.allocation.principal == Decimal("30000")
    assert result.balance.total == Decimal("70000")
    assert loan_service.balance_as_of(loan, day(10)).total == Decimal("70000")


def test_repayment_pays_interest_and_fees_first(loan_service, loan):
    loan_service.charge_fee(loan, Decimal("250"), fee_date=day(5))
    loan_service.accrue_interest(loan, through_date=day(30))

    result = loan_service.repayment(loan, Decimal("30000"), payment_date=day(30))

    assert result.allocation.fees == Decimal("250")
    assert result.allocation.interest == Decimal("541.67")
    assert result.allocation.principal == Decimal("29208.33")
    assert result.balance == Balance(principal_outstanding=Decimal("70791.67"))


def test_full_repayment_settles_loan(loan_service, loan):
    result = loan_service.repayment(loan, Decimal("100000"), payment_date=day(20))

    assert result.to_status == LoanStatus.SETTLED
    settled = loan_service.get_loan(loan)
    assert settled.status == "settled"
    assert settled.settled_date == day(20)


def test_overpayment_leaves_ledger_untouched(loan_service, loan):
    with pytest.raises(OverpaymentError):
        loan_service.repayment(loan, Decimal("100000.01"), payment_date=day(1))

    assert len(loan_service.ledger_history(loan)) == 1
    assert loan_service.balance_as_of(loan, day(1)).total == Decimal("100000")


def test_repayment_dated_before_last_entry_rejected(loan_service, loan):
    loan_service.charge_fee(loan, Decimal("10"), fee_date=day(10))

    with pytest.raises(InvalidDateError):
        loan_service.repayment(loan, Decimal("100"), payment_date=day(5))


def test_repayment_defaults_to_clock(loan_service, loan, clock):
    clock.today = day(12)

    loan_service.repayment(loan, Decimal("100"))

    assert loan_service.ledger_history(loan, type=TransactionType.REPAYMENT)[0].date == day(12)


# ----------------------------------------------------------------------
# settle
# ----------------------------------------------------------------------


def test_settlement_of_remaining_balance(loan_service, loan, clock):
    """Repay 30,000 then settle the remaining 70,000"""
    loan_service.repayment(loan, Decimal("30000"), payment_date=day(10))

    result = loan_service.settle(loan, Decimal("70000"), settlement_date=day(20))

    assert result.from_status == LoanStatus.ACTIVE
    assert result.to_status == LoanStatus.SETTLED
    assert result.excess_amount == Decimal("0")
    settled = loan_service.get_loan(loan)
    assert settled.status == "settled"
    assert settled.settled_date == day(20)

    clock.today = day(25)
    assert loan_service.balance_as_of(loan) == Balance()


def test_settlement_excess_is_returned(loan_service, loan):
    result = loan_service.settle(loan, Decimal("100500"), settlement_date=day(5))

    assert result.excess_amount == Decimal("500")
    settlement = loan_service.ledger_history(loan, type=TransactionType.SETTLEMENT)
    assert settlement[0].amount == Decimal("100000")


def test_insufficient_settlement_rejected(loan_service, loan):
    with pytest.raises(InsufficientSettlementAmountError):
        loan_service.settle(loan, Decimal("99999.99"), settlement_date=day(5))

    assert loan_service.get_loan(loan).status == "active"


@pytest.mark.parametrize(
    "operation",
    [
        lambda s, loan_id: s.repayment(loan_id, Decimal("1"), payment_date=day(30)),
        lambda s, loan_id: s.settle(loan_id, Decimal("1"), settlement_date=day(30)),
        lambda s, loan_id: s.revolve(loan_id, day(80), revolve_date=day(30)),
        lambda s, loan_id: s.cancel(loan_id, cancel_date=day(30)),
        lambda s, loan_id: s.charge_fee(loan_id, Decimal("1"), fee_date=day(30)),
        lambda s, loan_id: s.accrue_interest(loan_id, through_date=day(30)),
    ],
    ids=["repayment", "settle", "revolve", "cancel", "charge_fee", "accrue_interest"],
)
def test_settled_loan_rejects_all_operations(loan_service, loan, operation):
    loan_service.settle(loan, Decimal("100000"), settlement_date=day(20))

    with pytest.raises(InvalidStateTransitionError):
        operation(loan_service, loan)


# ----------------------------------------------------------------------
# revolve
# ----------------------------------------------------------------------


def test_revolve_extends_due_date(loan_service, loan):
    result = loan_service.revolve(loan, day(60), revolve_date=day(30))

    assert result.to_status == LoanStatus.ACTIVE
    assert result.successor_loan_id is None
    assert loan_service.get_loan(loan).due_date == day(60)


def test_revolve_requires_later_due_date(loan_service, loan):
    with pytest.raises(InvalidDateError):
        loan_service.revolve(loan, day(40), revolve_date=day(30))


def test_revolve_blocked_when_window_exhausted(loan_service, facility, loan):
    """40 + 60 days drawn against a 90-day window"""
    loan_service.draw(facility.id, Decimal("5000"), day(0), day(60))

    with pytest.raises(FacilityRevolvingWindowExhaustedError) as exc_info:
        loan_service.revolve(loan, day(70), revolve_date=day(30))

    assert exc_info.value.days_used == 100
    assert loan_service.get_loan(loan).due_date == day(40)


def test_revolve_not_gated_without_tracking(loan_service, untracked_facility):
    loan_id = loan_service.draw(untracked_facility.id, Decimal("5000"), day(0), day(365)).loan_id

    loan_service.revolve(loan_id, day(730), revolve_date=day(300))

    assert loan_service.get_loan(loan_id).due_date == day(730)


def test_revolve_new_cycle_carries_every_bucket(loan_service, facility_service, facility, loan):
    loan_service.charge_fee(loan, Decimal("100"), fee_date=day(5))
    loan_service.accrue_interest(loan, through_date=day(10))

    result = loan_service.revolve(loan, day(40), revolve_date=day(10), new_cycle=True)

    assert result.to_status == LoanStatus.SETTLED
    assert result.successor_loan_id is not None
    assert len(result.transaction_ids) == 4

    old = loan_service.get_loan(loan)
    assert old.status == "settled"
    assert old.settled_date == day(10)
    assert loan_service.balance_as_of(loan, day(10)) == Balance()

    successor = loan_service.get_loan(result.successor_loan_id)
    assert successor.status == "active"
    assert str(successor.revolved_from_id) == loan
    assert successor.credit_line_id == old.credit_line_id
    assert successor.start_date == day(10)
    assert successor.due_date == day(40)
    assert loan_service.balance_as_of(result.successor_loan_id, day(10)) == Balance(
        principal_outstanding=Decimal("100000"),
        interest_outstanding=Decimal("180.56"),
        fees_outstanding=Decimal("100"),
    )

    usage = facility_service.usage(facility.id)
    assert usage.days_used == 40
    assert usage.total_loans == 2
    assert usage.active_loans == 1


def test_revolve_new_cycle_may_shorten_the_term(loan_service, loan):
    """The successor only has to be due after the revolve date"""
    result = loan_service.revolve(loan, day(30), revolve_date=day(10), new_cycle=True)

    successor = loan_service.get_loan(result.successor_loan_id)
    assert successor.due_date == day(30)
    assert loan_service.get_loan(loan).status == "settled"


def test_revolve_new_cycle_requires_due_after_revolve_date(loan_service, loan):
    with pytest.raises(InvalidDateError):
        loan_service.revolve(loan, day(10), revolve_date=day(10), new_cycle=True)

    assert loan_service.get_loan(loan).status == "active"


def test_revolve_dated_before_loan_start_rejected(loan_service, facility):
    loan_id = loan_service.draw(facility.id, Decimal("1000"), day(10), day(40)).loan_id

    with pytest.raises(InvalidDateError):
        loan_service.revolve(loan_id, day(60), revolve_date=day(0))

    loan = loan_service.get_loan(loan_id)
    assert loan.due_date == day(40)
    assert [e.operation for e in loan.events] == ["draw"]


def test_revolve_dated_before_last_entry_rejected(loan_service, loan):
    loan_service.charge_fee(loan, Decimal("10"), fee_date=day(20))

    with pytest.raises(InvalidDateError):
        loan_service.revolve(loan, day(60), revolve_date=day(15))


def test_revolve_gate_does_not_count_as_usage_query(loan_service, facility_service, facility, loan):
    def queries():
        return REGISTRY.get_sample_value("revolving_usage_status_total", {"status": "available"}) or 0.0

    before = queries()
    loan_service.revolve(loan, day(60), revolve_date=day(30))
    assert queries() == before

    facility_service.usage(facility.id)
    assert queries() == before + 1


# ----------------------------------------------------------------------
# cancel
# ----------------------------------------------------------------------


def test_cancel_untouched_loan(loan_service, loan):
    result = loan_service.cancel(loan, cancel_date=day(1))

    assert result.to_status == LoanStatus.CANCELLED
    assert loan_service.get_loan(loan).status == "cancelled"
    assert len(loan_service.ledger_history(loan)) == 1


def test_cancel_with_activity_requires_force_and_reason(loan_service, loan):
    loan_service.charge_fee(loan, Decimal("50"), fee_date=day(1))

    with pytest.raises(InvalidStateTransitionError):
        loan_service.cancel(loan, cancel_date=day(2))
    with pytest.raises(InvalidStateTransitionError):
        loan_service.cancel(loan, force=True, cancel_date=day(2))

    loan_service.cancel(loan, reason="Drawn on the wrong facility", force=True, cancel_date=day(2))

    cancelled = loan_service.get_loan(loan)
    assert cancelled.status == "cancelled"
    assert cancelled.cancellation_reason == "Drawn on the wrong facility"
    assert len(loan_service.ledger_history(loan)) == 2


def test_rolled_over_loan_cancellable_without_force(loan_service, loan):
    loan_service.charge_fee(loan, Decimal("100"), fee_date=day(5))
    loan_service.accrue_interest(loan, through_date=day(10))
    successor_id = loan_service.revolve(loan, day(40), revolve_date=day(10), new_cycle=True).successor_loan_id

    result = loan_service.cancel(successor_id, cancel_date=day(10))

    assert result.to_status == LoanStatus.CANCELLED
    assert len(loan_service.ledger_history(successor_id)) == 3


def test_cancelled_loans_do_not_consume_window(loan_service, facility_service, facility, loan):
    loan_service.cancel(loan, cancel_date=day(1))

    assert facility_service.usage(facility.id).days_used == 0


# ----------------------------------------------------------------------
# fees and interest
# ----------------------------------------------------------------------


def test_charge_fee(loan_service, loan):
    result = loan_service.charge_fee(loan, Decimal("250"), fee_date=day(3), description="Arrangement fee")

    assert result.balance.fees_outstanding == Decimal("250")
    assert result.balance.total == Decimal("100250")


def test_charge_fee_rejects_zero(loan_service, loan):
    with pytest.raises(InvalidAmountError):
        loan_service.charge_fee(loan, Decimal("0"), fee_date=day(3))


def test_accrue_interest_at_facility_rate(loan_service, loan):
    result = loan_service.accrue_interest(loan, through_date=day(30))

    assert result.balance.interest_outstanding == Decimal("541.67")


def test_accrue_interest_at_loan_rate(loan_service, facility):
    loan_id = loan_service.draw(facility.id, Decimal("100000"), day(0), day(60), interest_rate=Decimal("12")).loan_id

    result = loan_service.accrue_interest(loan_id, through_date=day(30))

    assert result.balance.interest_outstanding == Decimal("1000.00")


def test_accrue_interest_resumes_from_last_accrual(loan_service, loan):
    loan_service.accrue_interest(loan, through_date=day(30))

    with pytest.raises(InvalidAmountError):
        loan_service.accrue_interest(loan, through_date=day(30))

    result = loan_service.accrue_interest(loan, through_date=day(60))
    assert result.balance.interest_outstanding == Decimal("1083.34")


# ----------------------------------------------------------------------
# reads
# ----------------------------------------------------------------------


def test_balance_as_of_replays_prefix(loan_service, loan):
    loan_service.repayment(loan, Decimal("30000"), payment_date=day(10))
    loan_service.charge_fee(loan, Decimal("100"), fee_date=day(20))

    assert loan_service.balance_as_of(loan, day(5)).total == Decimal("100000")
    assert loan_service.balance_as_of(loan, day(10)).total == Decimal("70000")
    assert loan_service.balance_as_of(loan, day(20)).total == Decimal("70100")


def test_ledger_history_filters(loan_service, loan):
    loan_service.charge_fee(loan, Decimal("10"), fee_date=day(1))
    loan_service.charge_fee(loan, Decimal("20"), fee_date=day(2))
    loan_service.repayment(loan, Decimal("30"), payment_date=day(3))

    fees = loan_service.ledger_history(loan, type=TransactionType.FEE)
    assert [e.amount for e in fees] == [Decimal("10"), Decimal("20")]

    window = loan_service.ledger_history(loan, date_from=day(2), date_to=day(3))
    assert [e.type for e in window] == [TransactionType.FEE, TransactionType.REPAYMENT]

    page = loan_service.ledger_history(loan, limit=2, offset=1)
    assert [e.sequence for e in page] == [2, 3]


def test_payment_summary(loan_service, loan):
    loan_service.accrue_interest(loan, through_date=day(30))
    loan_service.repayment(loan, Decimal("10541.67"), payment_date=day(30))

    summary = loan_service.payment_summary(loan)

    assert summary.total_drawn == Decimal("100000")
    assert summary.principal_repaid == Decimal("10000")
    assert summary.interest_charged == Decimal("541.67")
    assert summary.interest_repaid == Decimal("541.67")
    assert summary.principal_progress_pct == 10.0
    assert summary.interest_progress_pct == 100.0
    assert summary.payment_count == 1
    assert summary.last_payment_date == day(30)
    assert summary.balance.total == Decimal("90000")


def test_loan_usage(loan_service, loan):
    usage = loan_service.loan_usage(loan, as_of=day(30))

    assert usage.days_used == 30
    assert usage.days_remaining == 60
    assert usage.can_revolve is True


def test_loan_usage_requires_tracking(loan_service, untracked_facility):
    loan_id = loan_service.draw(untracked_facility.id, Decimal("5000"), day(0), day(30)).loan_id

    with pytest.raises(RevolvingTrackingDisabledError):
        loan_service.loan_usage(loan_id)


def test_due_soon(loan_service, facility):
    soon = loan_service.draw(facility.id, Decimal("1000"), day(0), day(10)).loan_id
    loan_service.draw(facility.id, Decimal("1000"), day(0), day(45))

    due = loan_service.due_soon(as_of=DAY_0, within_days=30)

    assert [str(loan.id) for loan in due] == [soon]


def test_unknown_loan(loan_service):
    with pytest.raises(NotFoundError):
        loan_service.get_loan(uuid.uuid4())
    with pytest.raises(NotFoundError):
        loan_service.balance_as_of("not-a-uuid")


def test_audit_trail(loan_service, loan):
    loan_service.repayment(loan, Decimal("100000"), payment_date=day(15))

    events = sorted(loan_service.get_loan(loan).events, key=lambda e: e.event_date)

    assert [(e.operation, e.from_status, e.to_status) for e in events] == [
        ("draw", None, "active"),
        ("repayment", "active", "settled"),
    ]


# ----------------------------------------------------------------------
# integrity
# ----------------------------------------------------------------------


def test_ledger_rows_cannot_be_updated(db, loan):
    row = db.query(LoanTransaction).filter(LoanTransaction.loan_id == uuid.UUID(loan)).first()
    row.amount = Decimal("1")

    with pytest.raises(LedgerImmutableError):
        db.flush()
    db.rollback()


def test_ledger_rows_cannot_be_deleted(db, loan):
    row = db.query(LoanTransaction).filter(LoanTransaction.loan_id == uuid.UUID(loan)).first()
    db.delete(row)

    with pytest.raises(LedgerImmutableError):
        db.flush()
    db.rollback()


def test_stale_loan_version_rejected(loan_service, loan):
    """A writer holding an old copy of the loan loses to one that committed first"""
    other = TestingSessionLocal()
    try:
        stale = other.get(Loan, uuid.UUID(loan))
        loan_service.repayment(loan, Decimal("100"), payment_date=day(1))

        with pytest.raises(ConcurrentModificationError):
            with unit_of_work(other, "revolve", loan):
                stale.due_date = day(80)
    finally:
        other.close()

    assert loan_service.get_loan(loan).due_date == day(40)


def test_duplicate_ledger_sequence_rejected(db, loan):
    with pytest.raises(ConcurrentModificationError):
        with unit_of_work(db, "repayment", loan):
            db.add(
                LoanTransaction(
                    loan_id=uuid.UUID(loan),
                    sequence=1,
                    type=TransactionType.FEE.value,
                    amount=Decimal("1"),
                    transaction_date=day(1),
                )
            )


def test_other_integrity_errors_are_not_concurrency(db, bank):
    """Only a duplicate ledger sequence means another writer got there first"""
    with pytest.raises(IntegrityError):
        with unit_of_work(db, "create_bank"):
            db.add(Bank(name="Copy", code="RIBL"))

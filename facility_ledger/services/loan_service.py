"""Loan lifecycle state machine - every balance-changing operation goes through here"""

import time
import uuid
from datetime import date, datetime, timezone
from decimal import Decimal
from typing import List, Optional

from sqlalchemy.orm import Session

from facility_ledger.config import settings
from facility_ledger.domain.allocation import allocate, allocate_in_full
from facility_ledger.domain.balance import apply_entry, calculate_balance, is_negative
from facility_ledger.domain.exceptions import (
    FacilityInactiveError,
    FacilityRevolvingWindowExhaustedError,
    InvalidAmountError,
    InvalidDateError,
    InvalidStateTransitionError,
    NotFoundError,
    RevolvingTrackingDisabledError,
)
from facility_ledger.domain.interest import accrued_interest, last_accrual_date
from facility_ledger.domain.lifecycle import (
    ensure_cancellable,
    ensure_settlement_covers,
    ensure_transition,
    status_after_payment,
)
from facility_ledger.domain.models import (
    Balance,
    LedgerEntry,
    LoanRevolvingUsage,
    LoanStatus,
    Operation,
    PaymentSummary,
    TransactionType,
    TransitionResult,
)
from facility_ledger.domain.revolving import calculate_loan_usage
from facility_ledger.domain.transactions import validate_entry_date
from facility_ledger.infrastructure.database.models import Facility, Loan
from facility_ledger.infrastructure.database.repositories import (
    FacilityRepository,
    LoanRepository,
    TransactionLog,
    to_window,
)
from facility_ledger.infrastructure.observability.logging import log_transition
from facility_ledger.services.facility_service import FacilityService
from facility_ledger.services.unit_of_work import unit_of_work
from facility_ledger.utils.date_utils import Clock, add_days, today
from facility_ledger.utils.money import ZERO, Number, percentage, to_money


class LoanLedgerService:
    """
    Lifecycle operations on loans.

    Each mutating call is one unit of work: it locks the loan row, replays the
    ledger to get the current balance, validates the transition, appends ledger
    entries and audit events, bumps the loan version and commits once.
    Operations on different loans never touch the same row.

    The clock is injected so "today" is explicit and replaceable in tests.
    """

    def __init__(self, db: Session, clock: Clock = today):
        self.db = db
        self.clock = clock
        self.facility_repo = FacilityRepository(db)
        self.loans = LoanRepository(db)
        self.ledger = TransactionLog(db)
        self.facility_service = FacilityService(db, clock)

    # ------------------------------------------------------------------
    # Mutating operations
    # ------------------------------------------------------------------

    def draw(
        self,
        facility_id,
        principal_amount: Number,
        start_date: date,
        due_date: date,
        credit_line_id=None,
        reference_number: Optional[str] = None,
        interest_rate: Optional[Number] = None,
        description: Optional[str] = None,
    ) -> TransitionResult:
        """
        Create an active loan with one draw entry equal to its principal.

        The credit line must belong to the facility. Without one the facility's
        first credit line is used, and one is created from the facility's terms
        if it has none yet.
        """
        started = time.time()
        amount = to_money(principal_amount)
        with unit_of_work(self.db, Operation.DRAW.value):
            if amount <= 0:
                raise InvalidAmountError(f"Principal must be greater than 0, got {principal_amount}")
            if due_date < start_date:
                raise InvalidDateError(f"Due date {due_date} is before start date {start_date}")

            facility = self.facility_repo.get_facility(facility_id)
            if not facility.is_active:
                raise FacilityInactiveError(f"Facility {facility_id} is inactive")
            credit_line = self._resolve_credit_line(facility, credit_line_id)

            loan = self._open_loan(
                facility=facility,
                credit_line_id=credit_line.id,
                principal=amount,
                start_date=start_date,
                due_date=due_date,
                reference_number=reference_number,
                interest_rate=interest_rate,
            )
            txn_id = self.ledger.append(loan.id, TransactionType.DRAW, amount, start_date, description=description)
            self.loans.add_event(loan, Operation.DRAW.value, None, LoanStatus.ACTIVE.value, start_date)
            balance = calculate_balance(self.ledger.entries(loan.id))
            loan_id = str(loan.id)

        return self._committed(
            loan_id, Operation.DRAW, None, LoanStatus.ACTIVE, balance, [txn_id], amount, started
        )

    def repayment(
        self,
        loan_id,
        amount: Number,
        payment_date: Optional[date] = None,
        description: Optional[str] = None,
    ) -> TransitionResult:
        """
        Apply a partial or full payment through the fees -> interest -> principal waterfall.

        A payment that brings the total to zero settles the loan on the payment date.

        Raises:
            InvalidStateTransitionError: loan not active
            InvalidAmountError / OverpaymentError: from the allocator
        """
        started = time.time()
        payment_date = payment_date or self.clock()
        with unit_of_work(self.db, Operation.REPAYMENT.value, str(loan_id)):
            loan = self.loans.get_loan_for_update(loan_id)
            from_status = LoanStatus(loan.status)
            ensure_transition(Operation.REPAYMENT, from_status)

            entries = self.ledger.entries(loan.id)
            self._check_entry_date(loan, entries, payment_date)
            balance = calculate_balance(entries)
            allocation = allocate(amount, balance)

            new_balance = self._projected(balance, TransactionType.REPAYMENT, allocation.total, payment_date, allocation)
            txn_id = self.ledger.append(
                loan.id, TransactionType.REPAYMENT, allocation.total, payment_date, allocation, description
            )
            to_status = status_after_payment(new_balance)
            if to_status == LoanStatus.SETTLED:
                loan.status = to_status.value
                loan.settled_date = payment_date
                self.loans.add_event(loan, Operation.REPAYMENT.value, from_status.value, to_status.value, payment_date)
            self._touch(loan)

        result = self._committed(
            str(loan_id), Operation.REPAYMENT, from_status, to_status, new_balance, [txn_id], allocation.total, started
        )
        result.allocation = allocation
        return result

    def settle(
        self,
        loan_id,
        settlement_amount: Number,
        settlement_date: Optional[date] = None,
        description: Optional[str] = None,
    ) -> TransitionResult:
        """
        Close a loan by paying its full outstanding total.

        The settlement entry is recorded for exactly the outstanding total; any
        amount offered above that is not absorbed and is reported back as
        `excess_amount` for the caller to return.

        Raises:
            InsufficientSettlementAmountError: settlement_amount < outstanding total
        """
        started = time.time()
        offered = to_money(settlement_amount)
        settlement_date = settlement_date or self.clock()
        with unit_of_work(self.db, Operation.SETTLE.value, str(loan_id)):
            if offered <= 0:
                raise InvalidAmountError(f"Settlement amount must be greater than 0, got {settlement_amount}")
            loan = self.loans.get_loan_for_update(loan_id)
            from_status = LoanStatus(loan.status)
            ensure_transition(Operation.SETTLE, from_status)

            entries = self.ledger.entries(loan.id)
            self._check_entry_date(loan, entries, settlement_date)
            balance = calculate_balance(entries)
            ensure_settlement_covers(offered, balance)

            txn_ids = []
            allocation = None
            if balance.total > 0:
                allocation = allocate(balance.total, balance)
                txn_ids.append(
                    self.ledger.append(
                        loan.id, TransactionType.SETTLEMENT, balance.total, settlement_date, allocation, description
                    )
                )
            loan.status = LoanStatus.SETTLED.value
            loan.settled_date = settlement_date
            self.loans.add_event(
                loan,
                Operation.SETTLE.value,
                from_status.value,
                LoanStatus.SETTLED.value,
                settlement_date,
                detail={"offered": str(offered), "settled": str(balance.total)},
            )
            self._touch(loan)

        result = self._committed(
            str(loan_id), Operation.SETTLE, from_status, LoanStatus.SETTLED, Balance(), txn_ids, balance.total, started
        )
        result.allocation = allocation
        result.excess_amount = offered - balance.total
        return result

    def revolve(
        self,
        loan_id,
        new_due_date: date,
        revolve_date: Optional[date] = None,
        new_cycle: bool = False,
    ) -> TransitionResult:
        """
        Renew a loan's active window without settling it in cash.

        Default: the due date is extended in place.
        new_cycle=True: the loan is settled by rollover on the revolve date and a
        successor loan opens on the same credit line carrying every outstanding
        bucket, so the principal balance is unchanged.

        Gated on the owning facility having revolving days remaining when it
        tracks a revolving window.

        Raises:
            FacilityRevolvingWindowExhaustedError: no days remaining
            InvalidDateError: revolve date before the last ledger entry, or the new due date
                not after the current due date (extend) or the revolve date (new cycle)
        """
        started = time.time()
        revolve_date = revolve_date or self.clock()
        successor_id = None
        txn_ids: List[str] = []
        with unit_of_work(self.db, Operation.REVOLVE.value, str(loan_id)):
            loan = self.loans.get_loan_for_update(loan_id)
            from_status = LoanStatus(loan.status)
            ensure_transition(Operation.REVOLVE, from_status)

            entries = self.ledger.entries(loan.id)
            self._check_entry_date(loan, entries, revolve_date)
            if not new_cycle and new_due_date <= loan.due_date:
                raise InvalidDateError(f"New due date {new_due_date} must be after current due date {loan.due_date}")
            if new_cycle and new_due_date <= revolve_date:
                raise InvalidDateError(f"New due date {new_due_date} must be after revolve date {revolve_date}")
            self._ensure_revolving_days(loan.facility)
            balance = calculate_balance(entries)

            if not new_cycle:
                previous_due = loan.due_date
                loan.due_date = new_due_date
                self.loans.add_event(
                    loan,
                    Operation.REVOLVE.value,
                    from_status.value,
                    from_status.value,
                    revolve_date,
                    detail={"previous_due_date": previous_due.isoformat(), "new_due_date": new_due_date.isoformat()},
                )
                to_status = from_status
                result_balance = balance
            else:
                if balance.principal_outstanding <= 0:
                    raise InvalidStateTransitionError(
                        Operation.REVOLVE.value, from_status.value, "no principal outstanding to carry into a new cycle"
                    )
                successor, txn_ids = self._roll_into_successor(loan, balance, revolve_date, new_due_date)
                successor_id = str(successor.id)
                to_status = LoanStatus.SETTLED
                result_balance = Balance()
            self._touch(loan)

        result = self._committed(
            str(loan_id), Operation.REVOLVE, from_status, to_status, result_balance, txn_ids, None, started
        )
        result.successor_loan_id = successor_id
        return result

    def cancel(
        self,
        loan_id,
        reason: Optional[str] = None,
        force: bool = False,
        cancel_date: Optional[date] = None,
    ) -> TransitionResult:
        """
        Move an active loan to the terminal cancelled status.

        Allowed freely while the ledger holds only its opening entries (the draw, plus
        any fee or interest carried in on the start date); otherwise requires
        force=True and a reason. The ledger itself is left untouched.
        """
        started = time.time()
        cancel_date = cancel_date or self.clock()
        with unit_of_work(self.db, Operation.CANCEL.value, str(loan_id)):
            loan = self.loans.get_loan_for_update(loan_id)
            from_status = LoanStatus(loan.status)
            ensure_transition(Operation.CANCEL, from_status)

            entries = self.ledger.entries(loan.id)
            ensure_cancellable(entries, loan.start_date, force=force, reason=reason)

            loan.status = LoanStatus.CANCELLED.value
            loan.cancellation_reason = reason
            self.loans.add_event(
                loan,
                Operation.CANCEL.value,
                from_status.value,
                LoanStatus.CANCELLED.value,
                cancel_date,
                reason=reason,
                detail={"forced": force},
            )
            self._touch(loan)
            balance = calculate_balance(entries)

        return self._committed(
            str(loan_id), Operation.CANCEL, from_status, LoanStatus.CANCELLED, balance, [], None, started
        )

    def charge_fee(
        self,
        loan_id,
        amount: Number,
        fee_date: Optional[date] = None,
        description: Optional[str] = None,
    ) -> TransitionResult:
        """Add a fee charge to an active loan's fees bucket"""
        started = time.time()
        fee_date = fee_date or self.clock()
        with unit_of_work(self.db, Operation.CHARGE_FEE.value, str(loan_id)):
            loan = self.loans.get_loan_for_update(loan_id)
            status = LoanStatus(loan.status)
            ensure_transition(Operation.CHARGE_FEE, status)

            entries = self.ledger.entries(loan.id)
            self._check_entry_date(loan, entries, fee_date)
            txn_id = self.ledger.append(loan.id, TransactionType.FEE, amount, fee_date, description=description)
            self._touch(loan)
            balance = calculate_balance(self.ledger.entries(loan.id))

        return self._committed(
            str(loan_id), Operation.CHARGE_FEE, status, status, balance, [txn_id], to_money(amount), started
        )

    def accrue_interest(self, loan_id, through_date: Optional[date] = None) -> TransitionResult:
        """
        Accrue simple interest from the last accrual (or the loan start) up to through_date.

        Uses the loan's own rate, falling back to the facility's cost of funding.

        Raises:
            InvalidAmountError: nothing to accrue for the period
        """
        started = time.time()
        through_date = through_date or self.clock()
        with unit_of_work(self.db, Operation.ACCRUE_INTEREST.value, str(loan_id)):
            loan = self.loans.get_loan_for_update(loan_id)
            status = LoanStatus(loan.status)
            ensure_transition(Operation.ACCRUE_INTEREST, status)

            entries = self.ledger.entries(loan.id)
            self._check_entry_date(loan, entries, through_date)
            accrue_from = last_accrual_date(entries, loan.start_date)
            rate = loan.interest_rate if loan.interest_rate is not None else loan.facility.cost_of_funding
            interest = accrued_interest(entries, accrue_from, through_date, rate)
            if interest <= 0:
                raise InvalidAmountError(f"No interest accrued between {accrue_from} and {through_date}")

            txn_id = self.ledger.append(
                loan.id,
                TransactionType.INTEREST_ACCRUAL,
                interest,
                through_date,
                description=f"Interest {accrue_from.isoformat()} to {through_date.isoformat()} at {rate}%",
            )
            self._touch(loan)
            balance = calculate_balance(self.ledger.entries(loan.id))

        return self._committed(
            str(loan_id), Operation.ACCRUE_INTEREST, status, status, balance, [txn_id], interest, started
        )

    # ------------------------------------------------------------------
    # Read-only queries
    # ------------------------------------------------------------------

    def get_loan(self, loan_id) -> Loan:
        return self.loans.get_loan(loan_id)

    def balance_as_of(self, loan_id, as_of: Optional[date] = None) -> Balance:
        """Replay the loan's ledger up to as_of (today by default)"""
        loan = self.loans.get_loan(loan_id)
        return calculate_balance(self.ledger.entries(loan.id), as_of=as_of or self.clock())

    def ledger_history(
        self,
        loan_id,
        date_from: Optional[date] = None,
        date_to: Optional[date] = None,
        type: Optional[TransactionType] = None,
        limit: int = 50,
        offset: int = 0,
    ) -> List[LedgerEntry]:
        loan = self.loans.get_loan(loan_id)
        return self.ledger.history(loan.id, date_from, date_to, type, limit, offset)

    def payment_summary(self, loan_id) -> PaymentSummary:
        """Repayment progress: how much principal and interest has been paid off"""
        loan = self.loans.get_loan(loan_id)
        entries = self.ledger.entries(loan.id)

        def total(kind: TransactionType) -> Decimal:
            return sum((e.amount for e in entries if e.type == kind), ZERO)

        payments = [e for e in entries if e.allocation is not None]
        total_drawn = total(TransactionType.DRAW)
        interest_charged = total(TransactionType.INTEREST_ACCRUAL)
        principal_repaid = sum((e.allocation.principal for e in payments), ZERO)
        interest_repaid = sum((e.allocation.interest for e in payments), ZERO)

        return PaymentSummary(
            total_drawn=total_drawn,
            principal_repaid=principal_repaid,
            interest_charged=interest_charged,
            interest_repaid=interest_repaid,
            fees_charged=total(TransactionType.FEE),
            fees_repaid=sum((e.allocation.fees for e in payments), ZERO),
            principal_progress_pct=percentage(principal_repaid, total_drawn),
            interest_progress_pct=percentage(interest_repaid, interest_charged),
            payment_count=len(payments),
            last_payment_date=max((e.date for e in payments), default=None),
            balance=calculate_balance(entries),
        )

    def loan_usage(self, loan_id, as_of: Optional[date] = None) -> LoanRevolvingUsage:
        """Revolving days consumed by one loan so far"""
        loan = self.loans.get_loan(loan_id)
        facility = loan.facility
        if not facility.enable_revolving_tracking or not facility.max_revolving_period:
            raise RevolvingTrackingDisabledError(
                f"Revolving period tracking is not enabled for facility {facility.id}"
            )
        return calculate_loan_usage(to_window(loan), facility.max_revolving_period, as_of or self.clock())

    def due_soon(self, as_of: Optional[date] = None, within_days: Optional[int] = None) -> List[Loan]:
        """Active loans due within the look-ahead window, for the reminder scheduler"""
        start = as_of or self.clock()
        days = settings.default_due_alert_days if within_days is None else within_days
        return self.loans.list_due_between(start, add_days(start, days))

    # ------------------------------------------------------------------
    # Internals
    # ------------------------------------------------------------------

    def _resolve_credit_line(self, facility: Facility, credit_line_id):
        if credit_line_id is not None:
            line = self.facility_repo.get_credit_line(credit_line_id)
            if line.facility_id != facility.id:
                raise NotFoundError("CreditLine", credit_line_id, scope=f"facility {facility.id}")
            return line

        line = self.facility_repo.first_credit_line(facility)
        if line is None:
            line = self.facility_repo.create_credit_line(
                facility,
                name=f"Credit Line 1 - {facility.bank.name}",
                credit_limit=facility.credit_limit,
                interest_rate=facility.cost_of_funding,
            )
        return line

    def _open_loan(
        self,
        facility: Facility,
        credit_line_id,
        principal: Decimal,
        start_date: date,
        due_date: date,
        reference_number: Optional[str] = None,
        interest_rate: Optional[Number] = None,
        revolved_from_id=None,
    ) -> Loan:
        return self.loans.create_loan(
            facility_id=facility.id,
            credit_line_id=credit_line_id,
            reference_number=reference_number or f"LN-{start_date:%Y%m%d}-{uuid.uuid4().hex[:6].upper()}",
            principal_amount=principal,
            interest_rate=Decimal(str(interest_rate)) if interest_rate is not None else None,
            start_date=start_date,
            due_date=due_date,
            status=LoanStatus.ACTIVE.value,
            revolved_from_id=revolved_from_id,
        )

    def _roll_into_successor(self, loan: Loan, balance: Balance, revolve_date: date, new_due_date: date):
        """Settle `loan` by rollover and open its successor carrying each bucket"""
        allocation = allocate_in_full(balance)
        txn_ids = [
            self.ledger.append(
                loan.id, TransactionType.SETTLEMENT, balance.total, revolve_date, allocation, "Rolled into new cycle"
            )
        ]

        successor = self._open_loan(
            facility=loan.facility,
            credit_line_id=loan.credit_line_id,
            principal=balance.principal_outstanding,
            start_date=revolve_date,
            due_date=new_due_date,
            interest_rate=loan.interest_rate,
            revolved_from_id=loan.id,
        )
        carried = f"Carried from {loan.reference_number}"
        txn_ids.append(
            self.ledger.append(successor.id, TransactionType.DRAW, balance.principal_outstanding, revolve_date, description=carried)
        )
        if balance.fees_outstanding > 0:
            txn_ids.append(
                self.ledger.append(successor.id, TransactionType.FEE, balance.fees_outstanding, revolve_date, description=carried)
            )
        if balance.interest_outstanding > 0:
            txn_ids.append(
                self.ledger.append(
                    successor.id, TransactionType.INTEREST_ACCRUAL, balance.interest_outstanding, revolve_date, description=carried
                )
            )

        loan.status = LoanStatus.SETTLED.value
        loan.settled_date = revolve_date
        self.loans.add_event(
            loan,
            Operation.REVOLVE.value,
            LoanStatus.ACTIVE.value,
            LoanStatus.SETTLED.value,
            revolve_date,
            detail={"successor_loan_id": str(successor.id)},
        )
        self.loans.add_event(
            successor,
            Operation.REVOLVE.value,
            None,
            LoanStatus.ACTIVE.value,
            revolve_date,
            detail={"revolved_from_id": str(loan.id)},
        )
        return successor, txn_ids

    def _ensure_revolving_days(self, facility: Facility) -> None:
        if not facility.enable_revolving_tracking or not facility.max_revolving_period:
            return
        usage = self.facility_service.current_usage(facility.id)
        if not usage.can_revolve:
            raise FacilityRevolvingWindowExhaustedError(facility.id, usage.days_used, usage.max_revolving_period)

    def _check_entry_date(self, loan: Loan, entries: List[LedgerEntry], entry_date: date) -> None:
        last = max((e.date for e in entries), default=None)
        validate_entry_date(entry_date, loan.start_date, last)

    def _projected(self, balance: Balance, type: TransactionType, amount, entry_date: date, allocation) -> Balance:
        projected = apply_entry(balance, LedgerEntry(type=type, amount=amount, date=entry_date, allocation=allocation))
        if is_negative(projected):
            raise InvalidAmountError(f"Operation would drive the balance negative: {projected}")
        return projected

    def _touch(self, loan: Loan) -> None:
        """Mark the loan row dirty so its version is checked and bumped on commit"""
        loan.updated_at = datetime.now(timezone.utc)

    def _committed(
        self,
        loan_id: str,
        operation: Operation,
        from_status: Optional[LoanStatus],
        to_status: LoanStatus,
        balance: Balance,
        txn_ids: List[str],
        amount,
        started: float,
    ) -> TransitionResult:
        log_transition(
            loan_id=loan_id,
            operation=operation.value,
            from_status=from_status.value if from_status else None,
            to_status=to_status.value,
            amount=amount,
            duration_ms=(time.time() - started) * 1000,
        )
        return TransitionResult(
            loan_id=loan_id,
            operation=operation,
            from_status=from_status,
            to_status=to_status,
            balance=balance,
            transaction_ids=txn_ids,
        )

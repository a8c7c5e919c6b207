"""Facility management and the read-only revolving-period and exposure queries"""

import logging
from datetime import date
from decimal import Decimal
from typing import Optional

from sqlalchemy.orm import Session

from facility_ledger.domain.balance import calculate_balance
from facility_ledger.domain.exceptions import DuplicateError, RevolvingTrackingDisabledError
from facility_ledger.domain.models import FacilitySummary, LoanStatus, RevolvingUsage
from facility_ledger.domain.revolving import COUNTED_STATUSES, calculate_usage
from facility_ledger.infrastructure.database.models import Bank, CreditLine, Facility
from facility_ledger.infrastructure.database.repositories import (
    FacilityRepository,
    LoanRepository,
    TransactionLog,
    to_window,
)
from facility_ledger.infrastructure.observability.metrics import revolving_status_counter
from facility_ledger.services.unit_of_work import unit_of_work
from facility_ledger.utils.date_utils import Clock, today
from facility_ledger.utils.money import ZERO, Number, percentage, to_money

logger = logging.getLogger(__name__)


class FacilityService:
    """Banks, facilities and credit lines, plus facility-level aggregate queries"""

    def __init__(self, db: Session, clock: Clock = today):
        self.db = db
        self.clock = clock
        self.facilities = FacilityRepository(db)
        self.loans = LoanRepository(db)
        self.ledger = TransactionLog(db)

    def create_bank(self, name: str, code: str) -> Bank:
        with unit_of_work(self.db, "create_bank"):
            if self.facilities.find_bank_by_code(code) is not None:
                raise DuplicateError("Bank", "code", code)
            bank = self.facilities.create_bank(name=name, code=code)
        return bank

    def create_facility(
        self,
        bank_id,
        credit_limit: Number,
        cost_of_funding: Number,
        start_date: Optional[date] = None,
        expiry_date: Optional[date] = None,
        facility_type: str = "revolving",
        max_revolving_period: Optional[int] = None,
        enable_revolving_tracking: bool = False,
    ) -> Facility:
        with unit_of_work(self.db, "create_facility"):
            self.facilities.get_bank(bank_id)
            facility = self.facilities.create_facility(
                bank_id,
                facility_type=facility_type,
                credit_limit=to_money(credit_limit),
                cost_of_funding=Decimal(str(cost_of_funding)),
                start_date=start_date or self.clock(),
                expiry_date=expiry_date,
                max_revolving_period=max_revolving_period,
                enable_revolving_tracking=enable_revolving_tracking,
            )
        return facility

    def create_credit_line(
        self,
        facility_id,
        name: str,
        credit_limit: Optional[Number] = None,
        interest_rate: Optional[Number] = None,
        credit_line_type: str = "working_capital",
    ) -> CreditLine:
        with unit_of_work(self.db, "create_credit_line"):
            facility = self.facilities.get_facility(facility_id)
            line = self.facilities.create_credit_line(
                facility,
                name=name,
                credit_limit=to_money(credit_limit) if credit_limit is not None else facility.credit_limit,
                interest_rate=Decimal(str(interest_rate)) if interest_rate is not None else facility.cost_of_funding,
                credit_line_type=credit_line_type,
            )
        return line

    def deactivate_facility(self, facility_id) -> Facility:
        """Soft-deactivate: loans keep referencing the facility, new draws are refused"""
        with unit_of_work(self.db, "deactivate_facility"):
            facility = self.facilities.get_facility(facility_id)
            facility.is_active = False
        return facility

    def get_facility(self, facility_id) -> Facility:
        return self.facilities.get_facility(facility_id)

    def usage(self, facility_id) -> RevolvingUsage:
        """
        Revolving days consumed across the facility's active and settled loans.

        Re-aggregated from loan records on every call; no running counter is kept.

        Raises:
            NotFoundError: unknown facility
            RevolvingTrackingDisabledError: tracking off or no positive max period
        """
        usage = self.current_usage(facility_id)
        revolving_status_counter.labels(status=usage.status.value).inc()
        return usage

    def current_usage(self, facility_id) -> RevolvingUsage:
        """Aggregate the window without counting a usage query; used by the revolve gate"""
        facility = self.facilities.get_facility(facility_id)
        if not facility.enable_revolving_tracking or not facility.max_revolving_period or facility.max_revolving_period <= 0:
            raise RevolvingTrackingDisabledError(
                f"Revolving period tracking is not enabled for facility {facility_id}"
            )

        loans = self.loans.list_by_facility(facility.id, statuses=COUNTED_STATUSES)
        usage = calculate_usage((to_window(loan) for loan in loans), facility.max_revolving_period)

        for loan_id in usage.clamped_loan_ids:
            logger.warning(
                "Loan span is negative; counted as zero revolving days",
                extra={"loan_id": loan_id, "facility_id": str(facility.id)},
            )
        return usage

    def summary(self, facility_id) -> FacilitySummary:
        """Outstanding exposure and utilization across the facility's active loans"""
        facility = self.facilities.get_facility(facility_id)
        loans = self.loans.list_by_facility(facility.id)

        outstanding_principal = ZERO
        outstanding_total = ZERO
        active = settled = 0
        for loan in loans:
            status = LoanStatus(loan.status)
            if status == LoanStatus.SETTLED:
                settled += 1
            if status != LoanStatus.ACTIVE:
                continue
            active += 1
            balance = calculate_balance(self.ledger.entries(loan.id))
            outstanding_principal += balance.principal_outstanding
            outstanding_total += balance.total

        return FacilitySummary(
            facility_id=str(facility.id),
            credit_limit=facility.credit_limit,
            outstanding_principal=outstanding_principal,
            outstanding_total=outstanding_total,
            utilization_pct=percentage(outstanding_principal, facility.credit_limit),
            active_loans=active,
            settled_loans=settled,
            total_loans=len(loans),
        )

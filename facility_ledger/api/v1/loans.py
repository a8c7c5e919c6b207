"""Loan lifecycle endpoints: draw, repay, settle, revolve, cancel, and ledger reads"""

from datetime import date
from typing import Optional

from fastapi import APIRouter, Depends, Query

from facility_ledger.api.dependencies import get_loan_service
from facility_ledger.api.v1.schemas import (
    AccrualRequest,
    BalanceResponse,
    CancelRequest,
    DrawRequest,
    DueLoanSchema,
    DueLoansResponse,
    FeeRequest,
    LedgerEntrySchema,
    LedgerResponse,
    LoanResponse,
    LoanRevolvingUsageResponse,
    PaymentSummaryResponse,
    RepaymentRequest,
    RevolveRequest,
    SettlementRequest,
    TransitionResponse,
)
from facility_ledger.config import settings
from facility_ledger.domain.models import TransactionType
from facility_ledger.infrastructure.database.models import Loan
from facility_ledger.services.loan_service import LoanLedgerService

router = APIRouter()


def loan_to_response(loan: Loan) -> LoanResponse:
    return LoanResponse(
        id=str(loan.id),
        facility_id=str(loan.facility_id),
        credit_line_id=str(loan.credit_line_id),
        reference_number=loan.reference_number,
        principal_amount=loan.principal_amount,
        interest_rate=loan.interest_rate,
        start_date=loan.start_date,
        due_date=loan.due_date,
        settled_date=loan.settled_date,
        status=loan.status,
        cancellation_reason=loan.cancellation_reason,
        revolved_from_id=str(loan.revolved_from_id) if loan.revolved_from_id else None,
    )


@router.post("/loans", response_model=TransitionResponse)
def draw_loan(body: DrawRequest, service: LoanLedgerService = Depends(get_loan_service)):
    """Draw a new loan against a facility"""
    result = service.draw(
        facility_id=body.facility_id,
        principal_amount=body.principal_amount,
        start_date=body.start_date,
        due_date=body.due_date,
        credit_line_id=body.credit_line_id,
        reference_number=body.reference_number,
        interest_rate=body.interest_rate,
        description=body.description,
    )
    return TransitionResponse.from_domain(result)


@router.get("/loans/due", response_model=DueLoansResponse)
def get_due_loans(
    as_of: Optional[date] = Query(None, description="Start of the look-ahead window, defaults to today"),
    within_days: int = Query(settings.default_due_alert_days, ge=0),
    service: LoanLedgerService = Depends(get_loan_service),
):
    """Active loans due soon; read by the reminder scheduler"""
    as_of = as_of or service.clock()
    loans = service.due_soon(as_of=as_of, within_days=within_days)
    return DueLoansResponse(
        as_of=as_of,
        within_days=within_days,
        loans=[
            DueLoanSchema(
                loan_id=str(loan.id),
                reference_number=loan.reference_number,
                facility_id=str(loan.facility_id),
                due_date=loan.due_date,
                status=loan.status,
            )
            for loan in loans
        ],
    )


@router.get("/loans/{loan_id}", response_model=LoanResponse)
def get_loan(loan_id: str, service: LoanLedgerService = Depends(get_loan_service)):
    return loan_to_response(service.get_loan(loan_id))


@router.post("/loans/{loan_id}/repayments", response_model=TransitionResponse)
def record_repayment(loan_id: str, body: RepaymentRequest, service: LoanLedgerService = Depends(get_loan_service)):
    result = service.repayment(loan_id, body.amount, payment_date=body.payment_date, description=body.description)
    return TransitionResponse.from_domain(result)


@router.post("/loans/{loan_id}/settle", response_model=TransitionResponse)
def settle_loan(loan_id: str, body: SettlementRequest, service: LoanLedgerService = Depends(get_loan_service)):
    result = service.settle(
        loan_id, body.settlement_amount, settlement_date=body.settlement_date, description=body.description
    )
    return TransitionResponse.from_domain(result)


@router.post("/loans/{loan_id}/revolve", response_model=TransitionResponse)
def revolve_loan(loan_id: str, body: RevolveRequest, service: LoanLedgerService = Depends(get_loan_service)):
    result = service.revolve(
        loan_id, body.new_due_date, revolve_date=body.revolve_date, new_cycle=body.new_cycle
    )
    return TransitionResponse.from_domain(result)


@router.post("/loans/{loan_id}/cancel", response_model=TransitionResponse)
def cancel_loan(loan_id: str, body: CancelRequest, service: LoanLedgerService = Depends(get_loan_service)):
    result = service.cancel(loan_id, reason=body.reason, force=body.force, cancel_date=body.cancel_date)
    return TransitionResponse.from_domain(result)


@router.post("/loans/{loan_id}/fees", response_model=TransitionResponse)
def charge_fee(loan_id: str, body: FeeRequest, service: LoanLedgerService = Depends(get_loan_service)):
    result = service.charge_fee(loan_id, body.amount, fee_date=body.fee_date, description=body.description)
    return TransitionResponse.from_domain(result)


@router.post("/loans/{loan_id}/interest-accruals", response_model=TransitionResponse)
def accrue_interest(loan_id: str, body: AccrualRequest, service: LoanLedgerService = Depends(get_loan_service)):
    result = service.accrue_interest(loan_id, through_date=body.through_date)
    return TransitionResponse.from_domain(result)


@router.get("/loans/{loan_id}/balance", response_model=BalanceResponse)
def get_balance(
    loan_id: str,
    as_of: Optional[date] = Query(None, description="Replay entries dated on or before this day"),
    service: LoanLedgerService = Depends(get_loan_service),
):
    return BalanceResponse.from_domain(service.balance_as_of(loan_id, as_of))


@router.get("/loans/{loan_id}/ledger", response_model=LedgerResponse)
def get_ledger(
    loan_id: str,
    date_from: Optional[date] = Query(None, alias="from"),
    date_to: Optional[date] = Query(None, alias="to"),
    type: Optional[TransactionType] = Query(None),
    limit: int = Query(50, ge=1, le=500),
    offset: int = Query(0, ge=0),
    service: LoanLedgerService = Depends(get_loan_service),
):
    entries = service.ledger_history(loan_id, date_from, date_to, type, limit, offset)
    return LedgerResponse(loan_id=loan_id, entries=[LedgerEntrySchema.from_domain(e) for e in entries])


@router.get("/loans/{loan_id}/payment-summary", response_model=PaymentSummaryResponse)
def get_payment_summary(loan_id: str, service: LoanLedgerService = Depends(get_loan_service)):
    return PaymentSummaryResponse.from_domain(service.payment_summary(loan_id))


@router.get("/loans/{loan_id}/revolving-usage", response_model=LoanRevolvingUsageResponse)
def get_loan_revolving_usage(
    loan_id: str,
    as_of: Optional[date] = Query(None),
    service: LoanLedgerService = Depends(get_loan_service),
):
    return LoanRevolvingUsageResponse.from_domain(service.loan_usage(loan_id, as_of))

"""Pydantic schemas for API request/response validation"""

from pydantic import BaseModel, Field
from datetime import date
from decimal import Decimal
from typing import List, Optional

from facility_ledger.domain.models import (
    Allocation,
    Balance,
    FacilitySummary,
    LedgerEntry,
    LoanRevolvingUsage,
    PaymentSummary,
    RevolvingUsage,
    TransitionResult,
)


class BankCreate(BaseModel):
    """Request body for POST /v1/banks"""

    name: str = Field(..., min_length=1, max_length=100)
    code: str = Field(..., min_length=1, max_length=10)


class BankResponse(BaseModel):
    id: str
    name: str
    code: str


class FacilityCreate(BaseModel):
    """Request body for POST /v1/facilities"""

    bank_id: str
    credit_limit: Decimal = Field(..., gt=0)
    cost_of_funding: Decimal = Field(..., ge=0, description="All-in annual rate in percent")
    facility_type: str = "revolving"
    start_date: Optional[date] = None
    expiry_date: Optional[date] = None
    max_revolving_period: Optional[int] = Field(None, gt=0, description="Revolving window in days")
    enable_revolving_tracking: bool = False


class FacilityResponse(BaseModel):
    id: str
    bank_id: str
    facility_type: str
    credit_limit: Decimal
    cost_of_funding: Decimal
    start_date: date
    expiry_date: Optional[date] = None
    max_revolving_period: Optional[int] = None
    enable_revolving_tracking: bool
    is_active: bool


class CreditLineCreate(BaseModel):
    name: str = Field(..., min_length=1, max_length=200)
    credit_limit: Optional[Decimal] = Field(None, gt=0)
    interest_rate: Optional[Decimal] = Field(None, ge=0)
    credit_line_type: str = "working_capital"


class CreditLineResponse(BaseModel):
    id: str
    facility_id: str
    name: str
    credit_line_type: str
    credit_limit: Decimal
    interest_rate: Optional[Decimal] = None


class DrawRequest(BaseModel):
    """Request body for POST /v1/loans"""

    facility_id: str
    principal_amount: Decimal = Field(..., description="Amount drawn")
    start_date: date
    due_date: date
    credit_line_id: Optional[str] = None
    reference_number: Optional[str] = Field(None, max_length=50)
    interest_rate: Optional[Decimal] = Field(None, ge=0)
    description: Optional[str] = None


class RepaymentRequest(BaseModel):
    amount: Decimal
    payment_date: Optional[date] = None
    description: Optional[str] = None


class SettlementRequest(BaseModel):
    settlement_amount: Decimal
    settlement_date: Optional[date] = None
    description: Optional[str] = None


class RevolveRequest(BaseModel):
    new_due_date: date
    revolve_date: Optional[date] = None
    new_cycle: bool = False


class CancelRequest(BaseModel):
    reason: Optional[str] = None
    force: bool = False
    cancel_date: Optional[date] = None


class FeeRequest(BaseModel):
    amount: Decimal
    fee_date: Optional[date] = None
    description: Optional[str] = None


class AccrualRequest(BaseModel):
    through_date: Optional[date] = None


class AllocationSchema(BaseModel):
    fees: Decimal
    interest: Decimal
    principal: Decimal

    @classmethod
    def from_domain(cls, allocation: Optional[Allocation]) -> Optional["AllocationSchema"]:
        if allocation is None:
            return None
        return cls(fees=allocation.fees, interest=allocation.interest, principal=allocation.principal)


class BalanceResponse(BaseModel):
    principal_outstanding: Decimal
    interest_outstanding: Decimal
    fees_outstanding: Decimal
    total: Decimal

    @classmethod
    def from_domain(cls, balance: Balance) -> "BalanceResponse":
        return cls(
            principal_outstanding=balance.principal_outstanding,
            interest_outstanding=balance.interest_outstanding,
            fees_outstanding=balance.fees_outstanding,
            total=balance.total,
        )


class TransitionResponse(BaseModel):
    """Response for every lifecycle operation"""

    loan_id: str
    operation: str
    from_status: Optional[str] = None
    to_status: str
    balance: BalanceResponse
    transaction_ids: List[str]
    allocation: Optional[AllocationSchema] = None
    successor_loan_id: Optional[str] = None
    excess_amount: Decimal = Decimal("0")

    @classmethod
    def from_domain(cls, result: TransitionResult) -> "TransitionResponse":
        return cls(
            loan_id=result.loan_id,
            operation=result.operation.value,
            from_status=result.from_status.value if result.from_status else None,
            to_status=result.to_status.value,
            balance=BalanceResponse.from_domain(result.balance),
            transaction_ids=result.transaction_ids,
            allocation=AllocationSchema.from_domain(result.allocation),
            successor_loan_id=result.successor_loan_id,
            excess_amount=result.excess_amount,
        )


class LoanResponse(BaseModel):
    id: str
    facility_id: str
    credit_line_id: str
    reference_number: str
    principal_amount: Decimal
    interest_rate: Optional[Decimal] = None
    start_date: date
    due_date: date
    settled_date: Optional[date] = None
    status: str
    cancellation_reason: Optional[str] = None
    revolved_from_id: Optional[str] = None


class LedgerEntrySchema(BaseModel):
    transaction_id: Optional[str] = None
    sequence: int
    type: str
    amount: Decimal
    date: date
    allocation: Optional[AllocationSchema] = None
    description: Optional[str] = None

    @classmethod
    def from_domain(cls, entry: LedgerEntry) -> "LedgerEntrySchema":
        return cls(
            transaction_id=entry.transaction_id,
            sequence=entry.sequence,
            type=entry.type.value,
            amount=entry.amount,
            date=entry.date,
            allocation=AllocationSchema.from_domain(entry.allocation),
            description=entry.description,
        )


class LedgerResponse(BaseModel):
    """Response for GET /v1/loans/{loan_id}/ledger"""

    loan_id: str
    entries: List[LedgerEntrySchema]


class PaymentSummaryResponse(BaseModel):
    total_drawn: Decimal
    principal_repaid: Decimal
    interest_charged: Decimal
    interest_repaid: Decimal
    fees_charged: Decimal
    fees_repaid: Decimal
    principal_progress_pct: float
    interest_progress_pct: float
    payment_count: int
    last_payment_date: Optional[date] = None
    balance: BalanceResponse

    @classmethod
    def from_domain(cls, summary: PaymentSummary) -> "PaymentSummaryResponse":
        return cls(
            total_drawn=summary.total_drawn,
            principal_repaid=summary.principal_repaid,
            interest_charged=summary.interest_charged,
            interest_repaid=summary.interest_repaid,
            fees_charged=summary.fees_charged,
            fees_repaid=summary.fees_repaid,
            principal_progress_pct=summary.principal_progress_pct,
            interest_progress_pct=summary.interest_progress_pct,
            payment_count=summary.payment_count,
            last_payment_date=summary.last_payment_date,
            balance=BalanceResponse.from_domain(summary.balance),
        )


class RevolvingUsageResponse(BaseModel):
    """Response for GET /v1/facilities/{facility_id}/revolving-usage"""

    days_used: int
    days_remaining: int
    percentage_used: float
    status: str
    can_revolve: bool
    max_revolving_period: int
    active_loans: int
    total_loans: int
    clamped_loan_ids: List[str]

    @classmethod
    def from_domain(cls, usage: RevolvingUsage) -> "RevolvingUsageResponse":
        return cls(
            days_used=usage.days_used,
            days_remaining=usage.days_remaining,
            percentage_used=usage.percentage_used,
            status=usage.status.value,
            can_revolve=usage.can_revolve,
            max_revolving_period=usage.max_revolving_period,
            active_loans=usage.active_loans,
            total_loans=usage.total_loans,
            clamped_loan_ids=usage.clamped_loan_ids,
        )


class LoanRevolvingUsageResponse(BaseModel):
    loan_id: str
    loan_status: str
    days_used: int
    days_remaining: int
    percentage_used: float
    status: str
    can_revolve: bool
    max_revolving_period: int

    @classmethod
    def from_domain(cls, usage: LoanRevolvingUsage) -> "LoanRevolvingUsageResponse":
        return cls(
            loan_id=usage.loan_id,
            loan_status=usage.loan_status.value,
            days_used=usage.days_used,
            days_remaining=usage.days_remaining,
            percentage_used=usage.percentage_used,
            status=usage.status.value,
            can_revolve=usage.can_revolve,
            max_revolving_period=usage.max_revolving_period,
        )


class FacilitySummaryResponse(BaseModel):
    facility_id: str
    credit_limit: Decimal
    outstanding_principal: Decimal
    outstanding_total: Decimal
    utilization_pct: float
    active_loans: int
    settled_loans: int
    total_loans: int

    @classmethod
    def from_domain(cls, summary: FacilitySummary) -> "FacilitySummaryResponse":
        return cls(**summary.__dict__)


class DueLoanSchema(BaseModel):
    loan_id: str
    reference_number: str
    facility_id: str
    due_date: date
    status: str


class DueLoansResponse(BaseModel):
    """Response for GET /v1/loans/due"""

    as_of: date
    within_days: int
    loans: List[DueLoanSchema]

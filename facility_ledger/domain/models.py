"""Domain models - pure Python dataclasses representing business entities"""

from dataclasses import dataclass, field
from datetime import date
from decimal import Decimal
from enum import Enum
from typing import List, Optional


class TransactionType(str, Enum):
    """Monetary event kinds recorded in a loan's ledger"""

    DRAW = "draw"
    REPAYMENT = "repayment"
    FEE = "fee"
    INTEREST_ACCRUAL = "interest_accrual"
    SETTLEMENT = "settlement"


# Entry types that carry a principal/interest/fees breakdown
ALLOCATED_TYPES = frozenset({TransactionType.REPAYMENT, TransactionType.SETTLEMENT})


class LoanStatus(str, Enum):
    ACTIVE = "active"
    SETTLED = "settled"
    CANCELLED = "cancelled"


class Operation(str, Enum):
    """Lifecycle operations accepted by the state machine"""

    DRAW = "draw"
    REPAYMENT = "repayment"
    SETTLE = "settle"
    REVOLVE = "revolve"
    CANCEL = "cancel"
    CHARGE_FEE = "charge_fee"
    ACCRUE_INTEREST = "accrue_interest"


class RevolvingStatus(str, Enum):
    AVAILABLE = "available"
    WARNING = "warning"
    CRITICAL = "critical"
    EXPIRED = "expired"


@dataclass(frozen=True)
class Allocation:
    """How a repayment or settlement splits across the three balance buckets"""

    fees: Decimal
    interest: Decimal
    principal: Decimal

    @property
    def total(self) -> Decimal:
        return self.fees + self.interest + self.principal


@dataclass(frozen=True)
class LedgerEntry:
    """Immutable record of one monetary event on a loan"""

    type: TransactionType
    amount: Decimal
    date: date
    allocation: Optional[Allocation] = None
    sequence: int = 0
    transaction_id: Optional[str] = None
    description: Optional[str] = None


@dataclass(frozen=True)
class Balance:
    """Outstanding amounts derived by replaying a loan's ledger"""

    principal_outstanding: Decimal = Decimal("0")
    interest_outstanding: Decimal = Decimal("0")
    fees_outstanding: Decimal = Decimal("0")

    @property
    def total(self) -> Decimal:
        return self.principal_outstanding + self.interest_outstanding + self.fees_outstanding


@dataclass
class LoanWindow:
    """The dates of one loan that count toward a facility's revolving window"""

    loan_id: str
    start_date: date
    due_date: date
    status: LoanStatus
    settled_date: Optional[date] = None


@dataclass
class RevolvingUsage:
    """Facility-wide consumption of the revolving window"""

    days_used: int
    days_remaining: int
    percentage_used: float
    status: RevolvingStatus
    can_revolve: bool
    max_revolving_period: int
    active_loans: int = 0
    total_loans: int = 0
    clamped_loan_ids: List[str] = field(default_factory=list)


@dataclass
class LoanRevolvingUsage:
    """Revolving days consumed by a single loan up to a given date"""

    loan_id: str
    loan_status: LoanStatus
    days_used: int
    days_remaining: int
    percentage_used: float
    status: RevolvingStatus
    can_revolve: bool
    max_revolving_period: int


@dataclass
class PaymentSummary:
    """Repayment progress derived from the ledger"""

    total_drawn: Decimal
    principal_repaid: Decimal
    interest_charged: Decimal
    interest_repaid: Decimal
    fees_charged: Decimal
    fees_repaid: Decimal
    principal_progress_pct: float
    interest_progress_pct: float
    payment_count: int
    last_payment_date: Optional[date]
    balance: Balance


@dataclass
class FacilitySummary:
    """Aggregated facility exposure for read-only consumers"""

    facility_id: str
    credit_limit: Decimal
    outstanding_principal: Decimal
    outstanding_total: Decimal
    utilization_pct: float
    active_loans: int
    settled_loans: int
    total_loans: int


@dataclass
class TransitionResult:
    """Outcome of a committed lifecycle operation"""

    loan_id: str
    operation: Operation
    from_status: Optional[LoanStatus]
    to_status: LoanStatus
    balance: Balance
    transaction_ids: List[str] = field(default_factory=list)
    allocation: Optional[Allocation] = None
    successor_loan_id: Optional[str] = None
    excess_amount: Decimal = Decimal("0")

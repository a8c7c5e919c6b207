"""SQLAlchemy ORM models for banks, facilities, loans and the loan ledger"""

import uuid
from sqlalchemy import (
    Column,
    String,
    Boolean,
    Numeric,
    DateTime,
    Date,
    Integer,
    ForeignKey,
    Text,
    JSON,
    UniqueConstraint,
    event,
)
from sqlalchemy.dialects.postgresql import UUID
from sqlalchemy.orm import declarative_base, relationship
from sqlalchemy.sql import func

from facility_ledger.domain.exceptions import LedgerImmutableError

Base = declarative_base()

MONEY = Numeric(18, 2)
RATE = Numeric(7, 4)

LEDGER_SEQUENCE_CONSTRAINT = "uq_loan_transaction_sequence"


class Bank(Base):
    """Lending bank"""

    __tablename__ = "bank"

    id = Column(UUID(as_uuid=True), primary_key=True, default=uuid.uuid4)
    name = Column(String(100), nullable=False)
    code = Column(String(10), nullable=False, unique=True)
    is_active = Column(Boolean, nullable=False, default=True)
    created_at = Column(DateTime(timezone=True), nullable=False, server_default=func.now())

    facilities = relationship("Facility", back_populates="bank")


class Facility(Base):
    """Credit facility a bank extends to the borrower"""

    __tablename__ = "facility"

    id = Column(UUID(as_uuid=True), primary_key=True, default=uuid.uuid4)
    bank_id = Column(UUID(as_uuid=True), ForeignKey("bank.id"), nullable=False, index=True)
    facility_type = Column(String(50), nullable=False, default="revolving")
    credit_limit = Column(MONEY, nullable=False)
    cost_of_funding = Column(RATE, nullable=False)  # all-in annual %, e.g. SIBOR + margin
    start_date = Column(Date, nullable=False)
    expiry_date = Column(Date, nullable=True)
    max_revolving_period = Column(Integer, nullable=True)  # days
    enable_revolving_tracking = Column(Boolean, nullable=False, default=False)
    is_active = Column(Boolean, nullable=False, default=True)
    created_at = Column(DateTime(timezone=True), nullable=False, server_default=func.now())

    bank = relationship("Bank", back_populates="facilities")
    credit_lines = relationship("CreditLine", back_populates="facility", order_by="CreditLine.created_at")
    loans = relationship("Loan", back_populates="facility")


class CreditLine(Base):
    """Sub-allocation of a facility that loans are drawn against"""

    __tablename__ = "credit_line"

    id = Column(UUID(as_uuid=True), primary_key=True, default=uuid.uuid4)
    facility_id = Column(UUID(as_uuid=True), ForeignKey("facility.id"), nullable=False, index=True)
    name = Column(String(200), nullable=False)
    credit_line_type = Column(String(50), nullable=False, default="working_capital")
    credit_limit = Column(MONEY, nullable=False)
    interest_rate = Column(RATE, nullable=True)
    created_at = Column(DateTime(timezone=True), nullable=False, server_default=func.now())

    facility = relationship("Facility", back_populates="credit_lines")


class Loan(Base):
    """
    Single drawdown against a credit line.

    Balances are not stored here: they are derived from LoanTransaction rows.
    `version` is bumped on every lifecycle operation so two writers that both
    read the same loan cannot both commit.
    """

    __tablename__ = "loan"

    id = Column(UUID(as_uuid=True), primary_key=True, default=uuid.uuid4)
    facility_id = Column(UUID(as_uuid=True), ForeignKey("facility.id"), nullable=False, index=True)
    credit_line_id = Column(UUID(as_uuid=True), ForeignKey("credit_line.id"), nullable=False, index=True)
    reference_number = Column(String(50), nullable=False)
    principal_amount = Column(MONEY, nullable=False)
    interest_rate = Column(RATE, nullable=True)
    start_date = Column(Date, nullable=False)
    due_date = Column(Date, nullable=False, index=True)
    settled_date = Column(Date, nullable=True)
    status = Column(String(20), nullable=False, default="active", index=True)
    cancellation_reason = Column(Text, nullable=True)
    revolved_from_id = Column(UUID(as_uuid=True), ForeignKey("loan.id"), nullable=True)
    version = Column(Integer, nullable=False)
    created_at = Column(DateTime(timezone=True), nullable=False, server_default=func.now())
    updated_at = Column(DateTime(timezone=True), nullable=True)

    __mapper_args__ = {"version_id_col": version}

    facility = relationship("Facility", back_populates="loans")
    credit_line = relationship("CreditLine")
    transactions = relationship("LoanTransaction", back_populates="loan", order_by="LoanTransaction.sequence")
    events = relationship("LoanEvent", back_populates="loan", order_by="LoanEvent.created_at")


class LoanTransaction(Base):
    """Append-only ledger row; never updated or deleted once flushed"""

    __tablename__ = "loan_transaction"
    __table_args__ = (UniqueConstraint("loan_id", "sequence", name=LEDGER_SEQUENCE_CONSTRAINT),)

    id = Column(UUID(as_uuid=True), primary_key=True, default=uuid.uuid4)
    loan_id = Column(UUID(as_uuid=True), ForeignKey("loan.id"), nullable=False, index=True)
    sequence = Column(Integer, nullable=False)
    type = Column(String(30), nullable=False)
    amount = Column(MONEY, nullable=False)
    transaction_date = Column(Date, nullable=False, index=True)
    principal_portion = Column(MONEY, nullable=True)
    interest_portion = Column(MONEY, nullable=True)
    fees_portion = Column(MONEY, nullable=True)
    description = Column(Text, nullable=True)
    created_at = Column(DateTime(timezone=True), nullable=False, server_default=func.now())

    loan = relationship("Loan", back_populates="transactions")


class LoanEvent(Base):
    """Audit trail of lifecycle transitions"""

    __tablename__ = "loan_event"

    id = Column(UUID(as_uuid=True), primary_key=True, default=uuid.uuid4)
    loan_id = Column(UUID(as_uuid=True), ForeignKey("loan.id"), nullable=False, index=True)
    operation = Column(String(30), nullable=False)
    from_status = Column(String(20), nullable=True)
    to_status = Column(String(20), nullable=False)
    event_date = Column(Date, nullable=False)
    reason = Column(Text, nullable=True)
    detail = Column(JSON, nullable=True)
    created_at = Column(DateTime(timezone=True), nullable=False, server_default=func.now())

    loan = relationship("Loan", back_populates="events")


@event.listens_for(LoanTransaction, "before_update")
def _block_ledger_update(mapper, connection, target):
    raise LedgerImmutableError(f"Ledger entry {target.id} is immutable")


@event.listens_for(LoanTransaction, "before_delete")
def _block_ledger_delete(mapper, connection, target):
    raise LedgerImmutableError(f"Ledger entry {target.id} cannot be deleted")

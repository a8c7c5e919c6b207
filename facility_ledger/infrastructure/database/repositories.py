"""Data access layer for facilities, loans and the loan transaction log"""

import uuid
from datetime import date
from decimal import Decimal
from typing import Any, Dict, Iterable, List, Optional

from sqlalchemy import func
from sqlalchemy.orm import Session

from facility_ledger.domain.exceptions import NotFoundError
from facility_ledger.domain.models import Allocation, LedgerEntry, LoanStatus, LoanWindow, TransactionType
from facility_ledger.domain.transactions import validate_entry
from facility_ledger.infrastructure.database.models import (
    Bank,
    CreditLine,
    Facility,
    Loan,
    LoanEvent,
    LoanTransaction,
)


def as_uuid(value: Any, entity: str) -> uuid.UUID:
    """Parse an identifier, treating malformed ids as unknown entities"""
    if isinstance(value, uuid.UUID):
        return value
    try:
        return uuid.UUID(str(value))
    except (TypeError, ValueError):
        raise NotFoundError(entity, value)


def to_entry(row: LoanTransaction) -> LedgerEntry:
    """Map a ledger row to its domain entry"""
    allocation = None
    if row.principal_portion is not None:
        allocation = Allocation(
            fees=row.fees_portion,
            interest=row.interest_portion,
            principal=row.principal_portion,
        )
    return LedgerEntry(
        type=TransactionType(row.type),
        amount=row.amount,
        date=row.transaction_date,
        allocation=allocation,
        sequence=row.sequence,
        transaction_id=str(row.id),
        description=row.description,
    )


def to_window(loan: Loan) -> LoanWindow:
    return LoanWindow(
        loan_id=str(loan.id),
        start_date=loan.start_date,
        due_date=loan.due_date,
        status=LoanStatus(loan.status),
        settled_date=loan.settled_date,
    )


class FacilityRepository:
    """Repository for banks, facilities and credit lines"""

    def __init__(self, db: Session):
        self.db = db

    def create_bank(self, name: str, code: str) -> Bank:
        db_bank = Bank(name=name, code=code)
        self.db.add(db_bank)
        self.db.flush()
        return db_bank

    def find_bank_by_code(self, code: str) -> Optional[Bank]:
        return self.db.query(Bank).filter(Bank.code == code).first()

    def get_bank(self, bank_id) -> Bank:
        bank = self.db.get(Bank, as_uuid(bank_id, "Bank"))
        if bank is None:
            raise NotFoundError("Bank", bank_id)
        return bank

    def create_facility(self, bank_id, **fields) -> Facility:
        db_facility = Facility(bank_id=as_uuid(bank_id, "Bank"), **fields)
        self.db.add(db_facility)
        self.db.flush()
        return db_facility

    def get_facility(self, facility_id) -> Facility:
        facility = self.db.get(Facility, as_uuid(facility_id, "Facility"))
        if facility is None:
            raise NotFoundError("Facility", facility_id)
        return facility

    def create_credit_line(
        self,
        facility: Facility,
        name: str,
        credit_limit: Decimal,
        interest_rate: Optional[Decimal] = None,
        credit_line_type: str = "working_capital",
    ) -> CreditLine:
        db_line = CreditLine(
            facility_id=facility.id,
            name=name,
            credit_limit=credit_limit,
            interest_rate=interest_rate,
            credit_line_type=credit_line_type,
        )
        self.db.add(db_line)
        self.db.flush()
        return db_line

    def get_credit_line(self, credit_line_id) -> CreditLine:
        line = self.db.get(CreditLine, as_uuid(credit_line_id, "CreditLine"))
        if line is None:
            raise NotFoundError("CreditLine", credit_line_id)
        return line

    def first_credit_line(self, facility: Facility) -> Optional[CreditLine]:
        return (
            self.db.query(CreditLine)
            .filter(CreditLine.facility_id == facility.id)
            .order_by(CreditLine.created_at, CreditLine.name)
            .first()
        )


class LoanRepository:
    """Repository for loans and their audit events"""

    def __init__(self, db: Session):
        self.db = db

    def create_loan(self, **fields) -> Loan:
        db_loan = Loan(**fields)
        self.db.add(db_loan)
        self.db.flush()  # Get ID without committing
        return db_loan

    def get_loan(self, loan_id) -> Loan:
        loan = self.db.get(Loan, as_uuid(loan_id, "Loan"))
        if loan is None:
            raise NotFoundError("Loan", loan_id)
        return loan

    def get_loan_for_update(self, loan_id) -> Loan:
        """
        Load a loan holding its row lock until the session commits or rolls back.

        populate_existing refreshes an already-loaded instance so the caller
        sees the committed state rather than a stale identity-map copy.
        """
        loan = (
            self.db.query(Loan)
            .filter(Loan.id == as_uuid(loan_id, "Loan"))
            .with_for_update()
            .populate_existing()
            .first()
        )
        if loan is None:
            raise NotFoundError("Loan", loan_id)
        return loan

    def list_by_facility(self, facility_id, statuses: Optional[Iterable[LoanStatus]] = None) -> List[Loan]:
        query = self.db.query(Loan).filter(Loan.facility_id == as_uuid(facility_id, "Facility"))
        if statuses is not None:
            query = query.filter(Loan.status.in_([LoanStatus(s).value for s in statuses]))
        return query.order_by(Loan.start_date, Loan.created_at).all()

    def list_due_between(self, start: date, end: date) -> List[Loan]:
        """Active loans with a due date in [start, end]"""
        return (
            self.db.query(Loan)
            .filter(Loan.status == LoanStatus.ACTIVE.value)
            .filter(Loan.due_date >= start, Loan.due_date <= end)
            .order_by(Loan.due_date)
            .all()
        )

    def add_event(
        self,
        loan: Loan,
        operation: str,
        from_status: Optional[str],
        to_status: str,
        event_date: date,
        reason: Optional[str] = None,
        detail: Optional[Dict[str, Any]] = None,
    ) -> LoanEvent:
        db_event = LoanEvent(
            loan_id=loan.id,
            operation=operation,
            from_status=from_status,
            to_status=to_status,
            event_date=event_date,
            reason=reason,
            detail=detail,
        )
        self.db.add(db_event)
        return db_event


class TransactionLog:
    """
    Append-only record of monetary events per loan.

    Rows are only ever inserted; ORM listeners on LoanTransaction reject
    updates and deletes. Corrections are new offsetting entries.
    """

    def __init__(self, db: Session):
        self.db = db

    def append(
        self,
        loan_id,
        type: TransactionType,
        amount,
        entry_date: date,
        allocation: Optional[Allocation] = None,
        description: Optional[str] = None,
    ) -> str:
        """
        Validate and persist one ledger entry, returning its transaction id.

        Raises:
            InvalidAmountError: amount <= 0
            InvalidAllocationError: allocation missing or not summing to amount
        """
        money, parts = validate_entry(TransactionType(type), amount, allocation)
        loan_uuid = as_uuid(loan_id, "Loan")

        db_txn = LoanTransaction(
            loan_id=loan_uuid,
            sequence=self._next_sequence(loan_uuid),
            type=TransactionType(type).value,
            amount=money,
            transaction_date=entry_date,
            principal_portion=parts.principal if parts else None,
            interest_portion=parts.interest if parts else None,
            fees_portion=parts.fees if parts else None,
            description=description,
        )
        self.db.add(db_txn)
        self.db.flush()
        return str(db_txn.id)

    def entries(self, loan_id, as_of: Optional[date] = None) -> List[LedgerEntry]:
        """All entries for a loan in commit order, optionally only those dated <= as_of"""
        query = self.db.query(LoanTransaction).filter(LoanTransaction.loan_id == as_uuid(loan_id, "Loan"))
        if as_of is not None:
            query = query.filter(LoanTransaction.transaction_date <= as_of)
        return [to_entry(row) for row in query.order_by(LoanTransaction.sequence).all()]

    def history(
        self,
        loan_id,
        date_from: Optional[date] = None,
        date_to: Optional[date] = None,
        type: Optional[TransactionType] = None,
        limit: int = 50,
        offset: int = 0,
    ) -> List[LedgerEntry]:
        """Filtered page of a loan's ledger for reporting consumers"""
        query = self.db.query(LoanTransaction).filter(LoanTransaction.loan_id == as_uuid(loan_id, "Loan"))
        if date_from is not None:
            query = query.filter(LoanTransaction.transaction_date >= date_from)
        if date_to is not None:
            query = query.filter(LoanTransaction.transaction_date <= date_to)
        if type is not None:
            query = query.filter(LoanTransaction.type == TransactionType(type).value)
        rows = query.order_by(LoanTransaction.sequence).offset(offset).limit(limit).all()
        return [to_entry(row) for row in rows]

    def _next_sequence(self, loan_uuid: uuid.UUID) -> int:
        current = (
            self.db.query(func.max(LoanTransaction.sequence))
            .filter(LoanTransaction.loan_id == loan_uuid)
            .scalar()
        )
        return (current or 0) + 1

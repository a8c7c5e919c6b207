"""Dependency injection for FastAPI endpoints"""

from fastapi import Depends
from sqlalchemy.orm import Session

from facility_ledger.infrastructure.database.session import get_db
from facility_ledger.services.facility_service import FacilityService
from facility_ledger.services.loan_service import LoanLedgerService


def get_loan_service(db: Session = Depends(get_db)) -> LoanLedgerService:
    """Provide the loan lifecycle service bound to the request's session"""
    return LoanLedgerService(db)


def get_facility_service(db: Session = Depends(get_db)) -> FacilityService:
    """Provide the facility service bound to the request's session"""
    return FacilityService(db)

"""Bank and facility endpoints, including revolving usage and exposure summaries"""

from fastapi import APIRouter, Depends

from facility_ledger.api.dependencies import get_facility_service
from facility_ledger.api.v1.schemas import (
    BankCreate,
    BankResponse,
    CreditLineCreate,
    CreditLineResponse,
    FacilityCreate,
    FacilityResponse,
    FacilitySummaryResponse,
    RevolvingUsageResponse,
)
from facility_ledger.infrastructure.database.models import Facility
from facility_ledger.services.facility_service import FacilityService

router = APIRouter()


def facility_to_response(facility: Facility) -> FacilityResponse:
    return FacilityResponse(
        id=str(facility.id),
        bank_id=str(facility.bank_id),
        facility_type=facility.facility_type,
        credit_limit=facility.credit_limit,
        cost_of_funding=facility.cost_of_funding,
        start_date=facility.start_date,
        expiry_date=facility.expiry_date,
        max_revolving_period=facility.max_revolving_period,
        enable_revolving_tracking=facility.enable_revolving_tracking,
        is_active=facility.is_active,
    )


@router.post("/banks", response_model=BankResponse)
def create_bank(body: BankCreate, service: FacilityService = Depends(get_facility_service)):
    bank = service.create_bank(name=body.name, code=body.code)
    return BankResponse(id=str(bank.id), name=bank.name, code=bank.code)


@router.post("/facilities", response_model=FacilityResponse)
def create_facility(body: FacilityCreate, service: FacilityService = Depends(get_facility_service)):
    facility = service.create_facility(
        bank_id=body.bank_id,
        credit_limit=body.credit_limit,
        cost_of_funding=body.cost_of_funding,
        start_date=body.start_date,
        expiry_date=body.expiry_date,
        facility_type=body.facility_type,
        max_revolving_period=body.max_revolving_period,
        enable_revolving_tracking=body.enable_revolving_tracking,
    )
    return facility_to_response(facility)


@router.get("/facilities/{facility_id}", response_model=FacilityResponse)
def get_facility(facility_id: str, service: FacilityService = Depends(get_facility_service)):
    return facility_to_response(service.get_facility(facility_id))


@router.post("/facilities/{facility_id}/deactivate", response_model=FacilityResponse)
def deactivate_facility(facility_id: str, service: FacilityService = Depends(get_facility_service)):
    """Soft-deactivate; existing loans are unaffected"""
    return facility_to_response(service.deactivate_facility(facility_id))


@router.post("/facilities/{facility_id}/credit-lines", response_model=CreditLineResponse)
def create_credit_line(
    facility_id: str,
    body: CreditLineCreate,
    service: FacilityService = Depends(get_facility_service),
):
    line = service.create_credit_line(
        facility_id,
        name=body.name,
        credit_limit=body.credit_limit,
        interest_rate=body.interest_rate,
        credit_line_type=body.credit_line_type,
    )
    return CreditLineResponse(
        id=str(line.id),
        facility_id=str(line.facility_id),
        name=line.name,
        credit_line_type=line.credit_line_type,
        credit_limit=line.credit_limit,
        interest_rate=line.interest_rate,
    )


@router.get("/facilities/{facility_id}/revolving-usage", response_model=RevolvingUsageResponse)
def get_revolving_usage(facility_id: str, service: FacilityService = Depends(get_facility_service)):
    """
    Revolving window consumption across the facility's loans.

    Returns:
        days used/remaining, percentage used, status band and whether revolve is allowed
    """
    return RevolvingUsageResponse.from_domain(service.usage(facility_id))


@router.get("/facilities/{facility_id}/summary", response_model=FacilitySummaryResponse)
def get_facility_summary(facility_id: str, service: FacilityService = Depends(get_facility_service)):
    return FacilitySummaryResponse.from_domain(service.summary(facility_id))

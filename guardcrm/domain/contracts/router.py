"""Contract router - FastAPI endpoints for contracts and renewals"""

import logging
from typing import Optional

from fastapi import APIRouter, Depends, Query
from sqlalchemy.orm import Session

from ...auth import require_role
from ...database import get_db
from ...models import User
from .schemas import (
    ContractCreate,
    ContractFromLead,
    ContractResponse,
    ContractStatusUpdate,
    ContractUpdate,
    RenewalUpdate,
)
from .service import ContractService, serialize_contract, serialize_renewal

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/v1/contracts", tags=["Contracts"])

manager_access = require_role("manager")


def get_contract_service(db: Session = Depends(get_db)) -> ContractService:
    """Dependency injection for ContractService"""
    return ContractService(db)


# ============================================================================
# RENEWALS & ANALYTICS
# ============================================================================


@router.get("/renewals")
async def get_renewal_pipeline(
    days_ahead: int = Query(180, ge=1, le=730, alias="daysAhead"),
    current_user: User = Depends(manager_access),
    service: ContractService = Depends(get_contract_service),
):
    return service.get_renewal_pipeline(current_user, days_ahead)


@router.patch("/renewals/{renewal_id}")
async def update_renewal(
    renewal_id: int,
    data: RenewalUpdate,
    current_user: User = Depends(manager_access),
    service: ContractService = Depends(get_contract_service),
):
    return serialize_renewal(service.update_renewal(renewal_id, data, current_user))


@router.get("/analytics")
async def get_contract_analytics(
    current_user: User = Depends(manager_access),
    service: ContractService = Depends(get_contract_service),
):
    return service.get_contract_analytics(current_user)


@router.post("/from-lead/{lead_id}", response_model=ContractResponse, status_code=201)
async def create_from_lead(
    lead_id: int,
    data: ContractFromLead,
    current_user: User = Depends(manager_access),
    service: ContractService = Depends(get_contract_service),
):
    return serialize_contract(service.create_from_lead(lead_id, data, current_user))


# ============================================================================
# CORE CRUD OPERATIONS
# ============================================================================


@router.get("", response_model=list[ContractResponse])
async def get_contracts(
    status: Optional[str] = Query(None, description="Filter by contract status"),
    contract_type: Optional[str] = Query(None, alias="contractType"),
    assigned_manager: Optional[int] = Query(None, alias="assignedManager"),
    current_user: User = Depends(manager_access),
    service: ContractService = Depends(get_contract_service),
):
    return [
        serialize_contract(c) for c in service.get_contracts(current_user, status, contract_type, assigned_manager)
    ]


@router.post("", response_model=ContractResponse, status_code=201)
async def create_contract(
    data: ContractCreate,
    current_user: User = Depends(manager_access),
    service: ContractService = Depends(get_contract_service),
):
    return serialize_contract(service.create_contract(data, current_user))


@router.get("/{contract_id}", response_model=ContractResponse)
async def get_contract(
    contract_id: int,
    current_user: User = Depends(manager_access),
    service: ContractService = Depends(get_contract_service),
):
    return serialize_contract(service.get_contract(contract_id, current_user))


@router.patch("/{contract_id}", response_model=ContractResponse)
async def update_contract(
    contract_id: int,
    data: ContractUpdate,
    current_user: User = Depends(manager_access),
    service: ContractService = Depends(get_contract_service),
):
    return serialize_contract(service.update_contract(contract_id, data, current_user))


@router.post("/{contract_id}/status", response_model=ContractResponse)
async def update_contract_status(
    contract_id: int,
    data: ContractStatusUpdate,
    current_user: User = Depends(manager_access),
    service: ContractService = Depends(get_contract_service),
):
    """Kanban move; completed is only reached through the daily automation"""
    return serialize_contract(service.update_status(contract_id, data.status, current_user))


@router.delete("/{contract_id}")
async def delete_contract(
    contract_id: int,
    current_user: User = Depends(manager_access),
    service: ContractService = Depends(get_contract_service),
):
    return service.delete_contract(contract_id, current_user)

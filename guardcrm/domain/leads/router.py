"""Lead router - FastAPI endpoints for lead intake and qualification"""

import logging
from typing import Optional

from fastapi import APIRouter, Depends, Query
from sqlalchemy.orm import Session

from ...auth import require_permission
from ...config import LEAD_INTAKE_RATE_LIMIT, LEAD_INTAKE_RATE_WINDOW
from ...database import get_db
from ...models import Lead, User
from ...rate_limiter import create_rate_limiter
from .schemas import (
    AssignmentRuleCreate,
    BatchScoreRequest,
    ContactRecord,
    LeadCreate,
    LeadCreateResult,
    LeadResponse,
    LeadUpdate,
    ManualAssignRequest,
    ScoringConfigCreate,
)
from .service import LeadService

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/v1/leads", tags=["Leads"])

lead_intake_limit = create_rate_limiter(
    limit=LEAD_INTAKE_RATE_LIMIT, window_seconds=LEAD_INTAKE_RATE_WINDOW, key_prefix="lead_intake"
)


def get_lead_service(db: Session = Depends(get_db)) -> LeadService:
    """Dependency injection for LeadService"""
    return LeadService(db)


def to_response(lead: Lead) -> LeadResponse:
    return LeadResponse(
        id=lead.id,
        leadType=lead.lead_type,
        firstName=lead.first_name,
        lastName=lead.last_name,
        email=lead.email,
        phone=lead.phone,
        sourceType=lead.source_type,
        sourceDetails=lead.source_details,
        serviceType=lead.service_type,
        message=lead.message,
        estimatedValue=lead.estimated_value,
        status=lead.status,
        assignedTo=lead.assigned_to,
        assignedAt=lead.assigned_at,
        qualificationScore=lead.qualification_score,
        qualificationFactors=lead.qualification_factors,
        qualificationNotes=lead.qualification_notes,
        priority=lead.priority,
        applicationProbability=lead.application_probability,
        hireProbability=lead.hire_probability,
        lastContactDate=lead.last_contact_date,
        nextFollowUpDate=lead.next_follow_up_date,
        contactCount=lead.contact_count or 0,
        convertedToContract=bool(lead.converted_to_contract),
        applicationStatus=lead.application_status,
        convertedToHire=bool(lead.converted_to_hire),
        createdAt=lead.created_at,
        updatedAt=lead.updated_at,
    )


def _create_result(result: dict) -> LeadCreateResult:
    return LeadCreateResult(
        lead=to_response(result["lead"]),
        merged=result["merged"],
        matchType=result["matchType"],
        confidence=result["confidence"],
        assignment=result["assignment"],
    )


# ============================================================================
# PUBLIC INTAKE
# ============================================================================


@router.post("/public/{organization_slug}", response_model=LeadCreateResult, status_code=201)
async def submit_public_lead(
    organization_slug: str,
    data: LeadCreate,
    _: None = Depends(lead_intake_limit),
    service: LeadService = Depends(get_lead_service),
):
    """Website / job-board intake form (no authentication)"""
    return _create_result(await service.create_public_lead(organization_slug, data))


# ============================================================================
# ANALYTICS, SCORING AND RULES
# ============================================================================


@router.get("/analytics/pipeline")
async def get_pipeline_analytics(
    current_user: User = Depends(require_permission("leads.view_all")),
    service: LeadService = Depends(get_lead_service),
):
    return service.get_pipeline_analytics(current_user)


@router.post("/scoring/batch")
async def batch_score(
    data: BatchScoreRequest,
    current_user: User = Depends(require_permission("leads.edit")),
    service: LeadService = Depends(get_lead_service),
):
    return service.batch_score(data.leadIds, current_user)


@router.get("/scoring/accuracy")
async def get_scoring_accuracy(
    lookback_days: int = Query(90, ge=1, le=730, alias="lookbackDays"),
    current_user: User = Depends(require_permission("leads.view_all")),
    service: LeadService = Depends(get_lead_service),
):
    return service.get_scoring_accuracy(current_user, lookback_days)


@router.get("/scoring/configs/active")
async def get_active_scoring_config(
    current_user: User = Depends(require_permission("leads.view_all")),
    service: LeadService = Depends(get_lead_service),
):
    return service.get_active_scoring_config(current_user)


@router.post("/scoring/configs", status_code=201)
async def create_scoring_config(
    data: ScoringConfigCreate,
    current_user: User = Depends(require_permission("leads.edit")),
    service: LeadService = Depends(get_lead_service),
):
    config = service.create_scoring_config(data, current_user)
    return {"id": config.id, "name": config.name, "version": config.version, "isActive": config.is_active}


@router.get("/assignment/workloads")
async def get_manager_workloads(
    current_user: User = Depends(require_permission("leads.assign")),
    service: LeadService = Depends(get_lead_service),
):
    return [
        {
            "managerId": w.manager_id,
            "name": w.name,
            "email": w.email,
            "activeLeads": w.active_leads,
            "contactedToday": w.contacted_today,
            "avgResponseMinutes": w.avg_response_minutes,
            "lastAssigned": w.last_assigned,
            "availabilityScore": w.availability_score,
        }
        for w in service.get_manager_workloads(current_user.organization_id)
    ]


@router.get("/assignment/rules")
async def list_assignment_rules(
    current_user: User = Depends(require_permission("leads.assign")),
    service: LeadService = Depends(get_lead_service),
):
    return [
        {
            "id": r.id,
            "name": r.name,
            "priority": r.priority,
            "isActive": r.is_active,
            "conditions": r.conditions,
            "assignmentMethod": r.assignment_method,
            "eligibleManagers": r.eligible_managers,
        }
        for r in service.list_assignment_rules(current_user)
    ]


@router.post("/assignment/rules", status_code=201)
async def create_assignment_rule(
    data: AssignmentRuleCreate,
    current_user: User = Depends(require_permission("leads.assign")),
    service: LeadService = Depends(get_lead_service),
):
    rule = service.create_assignment_rule(data, current_user)
    return {"id": rule.id, "name": rule.name, "conditions": rule.conditions}


# ============================================================================
# CORE CRUD OPERATIONS
# ============================================================================


@router.get("", response_model=list[LeadResponse])
async def list_leads(
    status: Optional[str] = Query(None),
    assigned_to: Optional[int] = Query(None, alias="assignedTo"),
    source: Optional[str] = Query(None),
    search: Optional[str] = Query(None, max_length=100),
    lead_type: Optional[str] = Query(None, alias="leadType"),
    current_user: User = Depends(require_permission("leads.view_all")),
    service: LeadService = Depends(get_lead_service),
):
    return [
        to_response(lead)
        for lead in service.list_leads(current_user, status, assigned_to, source, search, lead_type)
    ]


@router.post("", response_model=LeadCreateResult, status_code=201)
async def create_lead(
    data: LeadCreate,
    current_user: User = Depends(require_permission("leads.create")),
    service: LeadService = Depends(get_lead_service),
):
    return _create_result(await service.create_lead(current_user.organization_id, data, current_user))


@router.get("/{lead_id}", response_model=LeadResponse)
async def get_lead(
    lead_id: int,
    current_user: User = Depends(require_permission("leads.view_all")),
    service: LeadService = Depends(get_lead_service),
):
    return to_response(service.get_lead(lead_id, current_user))


@router.patch("/{lead_id}", response_model=LeadResponse)
async def update_lead(
    lead_id: int,
    data: LeadUpdate,
    current_user: User = Depends(require_permission("leads.edit")),
    service: LeadService = Depends(get_lead_service),
):
    return to_response(service.update_lead(lead_id, data, current_user))


@router.delete("/{lead_id}")
async def delete_lead(
    lead_id: int,
    current_user: User = Depends(require_permission("leads.edit")),
    service: LeadService = Depends(get_lead_service),
):
    return service.delete_lead(lead_id, current_user)


@router.post("/{lead_id}/contact", response_model=LeadResponse)
async def record_contact(
    lead_id: int,
    data: ContactRecord,
    current_user: User = Depends(require_permission("leads.edit")),
    service: LeadService = Depends(get_lead_service),
):
    return to_response(service.record_contact(lead_id, data, current_user))


@router.post("/{lead_id}/score", response_model=LeadResponse)
async def score_lead(
    lead_id: int,
    current_user: User = Depends(require_permission("leads.edit")),
    service: LeadService = Depends(get_lead_service),
):
    return to_response(service.score_lead(service.get_lead(lead_id, current_user)))


# ============================================================================
# ASSIGNMENT
# ============================================================================


@router.post("/{lead_id}/auto-assign")
async def auto_assign(
    lead_id: int,
    current_user: User = Depends(require_permission("leads.assign")),
    service: LeadService = Depends(get_lead_service),
):
    return await service.auto_assign(service.get_lead(lead_id, current_user))


@router.post("/{lead_id}/assign", response_model=LeadResponse)
async def manual_assign(
    lead_id: int,
    data: ManualAssignRequest,
    current_user: User = Depends(require_permission("leads.assign")),
    service: LeadService = Depends(get_lead_service),
):
    return to_response(await service.manual_assign(lead_id, data.managerId, data.reason, current_user))


@router.post("/{lead_id}/reassign", response_model=LeadResponse)
async def reassign(
    lead_id: int,
    data: ManualAssignRequest,
    current_user: User = Depends(require_permission("leads.assign")),
    service: LeadService = Depends(get_lead_service),
):
    return to_response(await service.reassign(lead_id, data.managerId, data.reason, current_user))

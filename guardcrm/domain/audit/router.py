"""Audit router - audit log browsing, integrity checks, CSV export and retention jobs"""

import logging
from dataclasses import dataclass
from datetime import datetime
from typing import Optional

from fastapi import APIRouter, Depends, Header, HTTPException, Query
from sqlalchemy.orm import Session

from ...auth import require_permission, user_from_token
from ...config import CRON_SECRET, RETENTION_API_KEY
from ...database import get_db
from ...models import User
from ...security_utils import constant_time_compare
from .retention import RetentionService, serialize_job, serialize_policy
from .schemas import AuditLogPage, RetentionActionRequest
from .service import AuditService

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/v1/audit-logs", tags=["Audit"])

audit_access = require_permission("system.view_audit_logs")


def get_audit_service(db: Session = Depends(get_db)) -> AuditService:
    """Dependency injection for AuditService"""
    return AuditService(db)


def get_retention_service(db: Session = Depends(get_db)) -> RetentionService:
    """Dependency injection for RetentionService"""
    return RetentionService(db)


@dataclass
class RetentionCaller:
    label: str
    organization_id: Optional[int] = None  # None: platform-wide


async def retention_caller(
    authorization: Optional[str] = Header(None),
    x_api_key: Optional[str] = Header(None),
    db: Session = Depends(get_db),
) -> RetentionCaller:
    """
    Retention jobs may be triggered by the scheduler (cron secret bearer),
    an integration holding the retention API key, or an admin user.
    System callers act on every tenant; an admin acts on their own
    organization only.
    """
    bearer = authorization[7:] if authorization and authorization.startswith("Bearer ") else None

    if CRON_SECRET and constant_time_compare(bearer, CRON_SECRET):
        return RetentionCaller("system-cron")
    if RETENTION_API_KEY and constant_time_compare(x_api_key, RETENTION_API_KEY):
        return RetentionCaller("system-api")
    if not bearer:
        raise HTTPException(status_code=403, detail="Unauthorized - Admin access required")

    user = user_from_token(db, bearer)
    if user.role != "admin":
        logger.warning(f"⚠️ Non-admin user {user.id} attempted retention access")
        raise HTTPException(status_code=403, detail="Unauthorized - Admin access required")
    return RetentionCaller(f"user:{user.id}", user.organization_id)


# ============================================================================
# AUDIT LOGS
# ============================================================================


@router.get("", response_model=AuditLogPage)
async def list_audit_logs(
    action: Optional[str] = Query(None),
    entity_type: Optional[str] = Query(None, alias="entityType"),
    entity_id: Optional[int] = Query(None, alias="entityId"),
    actor_id: Optional[int] = Query(None, alias="actorId"),
    date_from: Optional[datetime] = Query(None, alias="dateFrom"),
    date_to: Optional[datetime] = Query(None, alias="dateTo"),
    limit: int = Query(50, ge=1, le=200),
    offset: int = Query(0, ge=0),
    current_user: User = Depends(audit_access),
    service: AuditService = Depends(get_audit_service),
):
    return service.list_logs(current_user, action, entity_type, entity_id, actor_id, date_from, date_to, limit, offset)


@router.get("/integrity")
async def verify_integrity(
    entity_type: Optional[str] = Query(None, alias="entityType"),
    entity_id: Optional[int] = Query(None, alias="entityId"),
    current_user: User = Depends(audit_access),
    service: AuditService = Depends(get_audit_service),
):
    return service.verify_integrity(current_user, entity_type, entity_id)


@router.get("/export")
async def export_audit_logs(
    entity_type: Optional[str] = Query(None, alias="entityType"),
    date_from: Optional[datetime] = Query(None, alias="dateFrom"),
    date_to: Optional[datetime] = Query(None, alias="dateTo"),
    current_user: User = Depends(audit_access),
    service: AuditService = Depends(get_audit_service),
):
    return service.export_csv(current_user, entity_type, date_from, date_to)


# ============================================================================
# RETENTION
# ============================================================================


@router.get("/retention")
async def retention_status(
    action: Optional[str] = Query(None),
    caller: RetentionCaller = Depends(retention_caller),
    service: RetentionService = Depends(get_retention_service),
):
    """Scheduler entry point: ?action=run_archival runs the job, otherwise returns stats"""
    if action == "run_archival":
        job = service.run_archival(triggered_by=caller.label, organization_id=caller.organization_id)
        return {"success": True, "data": serialize_job(job), "message": "Scheduled archival completed"}
    return {"success": True, "data": service.get_stats(caller.organization_id), "retentionEndpoint": "active"}


@router.post("/retention")
async def retention_action(
    data: RetentionActionRequest,
    caller: RetentionCaller = Depends(retention_caller),
    service: RetentionService = Depends(get_retention_service),
):
    if data.action == "run_archival":
        job = service.run_archival(triggered_by=caller.label, organization_id=caller.organization_id)
        return {"success": True, "data": serialize_job(job), "message": "Archival process completed successfully"}

    if data.action == "get_stats":
        return {"success": True, "data": service.get_stats(caller.organization_id)}

    if data.action == "get_jobs":
        jobs = service.get_jobs(data.limit, caller.organization_id)
        return {"success": True, "data": [serialize_job(j) for j in jobs]}

    if not data.entityType:
        raise HTTPException(status_code=400, detail="entityType is required")

    if data.action == "get_policy":
        policy = service.get_policy(data.entityType, caller.organization_id)
        return {"success": True, "data": serialize_policy(policy)}

    if not data.updates:
        raise HTTPException(status_code=400, detail="entityType and updates are required")
    policy = service.update_policy(
        data.entityType, data.updates.model_dump(exclude_none=True), caller.organization_id
    )
    return {"success": True, "data": serialize_policy(policy), "message": "Retention policy updated successfully"}

"""Compliance router - period reports and certification exports"""

from datetime import datetime

from fastapi import APIRouter, Depends, Query
from sqlalchemy.orm import Session

from ...auth import require_permission
from ...database import get_db
from ...models import User
from .service import ComplianceService

router = APIRouter(prefix="/api/v1/compliance", tags=["Compliance"])


def get_compliance_service(db: Session = Depends(get_db)) -> ComplianceService:
    """Dependency injection for ComplianceService"""
    return ComplianceService(db)


@router.get("/report")
async def get_compliance_report(
    period_start: datetime = Query(..., alias="periodStart"),
    period_end: datetime = Query(..., alias="periodEnd"),
    current_user: User = Depends(require_permission("compliance.view_all")),
    service: ComplianceService = Depends(get_compliance_service),
):
    return service.generate_report(current_user, period_start, period_end)


@router.get("/certifications/export")
async def export_certifications(
    current_user: User = Depends(require_permission("compliance.view_all")),
    service: ComplianceService = Depends(get_compliance_service),
):
    return service.export_certifications_csv(current_user)


@router.post("/certifications/monitor")
async def run_certification_monitor(
    current_user: User = Depends(require_permission("compliance.manage_reports")),
    service: ComplianceService = Depends(get_compliance_service),
):
    """Manual trigger for the daily certification reminder job"""
    return await service.monitor_certifications()

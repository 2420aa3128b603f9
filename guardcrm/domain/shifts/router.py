"""Shift router - shift board, workflow moves, assignment, urgent alerts and certifications"""

from datetime import datetime
from typing import Optional

from fastapi import APIRouter, Depends, Query
from sqlalchemy.orm import Session

from ...auth import get_current_user, require_permission
from ...database import get_db
from ...models import User
from .schemas import (
    AssignGuardRequest,
    CertificationCreate,
    CertificationUpdate,
    ShiftBoardFilters,
    ShiftBulkActionRequest,
    ShiftCreate,
    ShiftMoveRequest,
    ShiftResponse,
    ShiftUpdate,
)
from .service import ShiftService, serialize_alert, serialize_certification, serialize_history, serialize_shift

router = APIRouter(prefix="/api/v1/shifts", tags=["Shifts"])


def get_shift_service(db: Session = Depends(get_db)) -> ShiftService:
    """Dependency injection for ShiftService"""
    return ShiftService(db)


# ============================================================================
# BOARD
# ============================================================================


@router.get("/board")
async def get_board(
    date_from: Optional[datetime] = Query(None, alias="dateFrom"),
    date_to: Optional[datetime] = Query(None, alias="dateTo"),
    client_name: Optional[str] = Query(None, alias="clientName", max_length=255),
    site_name: Optional[str] = Query(None, alias="siteName", max_length=255),
    guard_id: Optional[int] = Query(None, alias="guardId"),
    statuses: list[str] = Query([]),
    priorities: list[int] = Query([]),
    assignment_status: Optional[str] = Query(None, alias="assignmentStatus", pattern="^(assigned|unassigned)$"),
    urgent_only: bool = Query(False, alias="urgentOnly"),
    current_user: User = Depends(require_permission("shifts.view_all")),
    service: ShiftService = Depends(get_shift_service),
):
    filters = ShiftBoardFilters(
        dateFrom=date_from,
        dateTo=date_to,
        clientName=client_name,
        siteName=site_name,
        guardId=guard_id,
        statuses=statuses,
        priorities=priorities,
        assignmentStatus=assignment_status,
        urgentOnly=urgent_only,
    )
    return service.get_board(current_user, filters)


@router.get("/workflow")
async def get_workflow_config(
    current_user: User = Depends(get_current_user),
    service: ShiftService = Depends(get_shift_service),
):
    return service.get_workflow_config()


@router.post("/bulk-actions")
async def bulk_action(
    data: ShiftBulkActionRequest,
    current_user: User = Depends(require_permission("shifts.edit")),
    service: ShiftService = Depends(get_shift_service),
):
    return await service.bulk_action(data, current_user)


# ============================================================================
# URGENT ALERTS
# ============================================================================


@router.get("/urgent-alerts")
async def list_alerts(
    statuses: list[str] = Query([]),
    alert_types: list[str] = Query([], alias="alertTypes"),
    priorities: list[str] = Query([]),
    current_user: User = Depends(require_permission("shifts.view_all")),
    service: ShiftService = Depends(get_shift_service),
):
    return [serialize_alert(a) for a in service.list_alerts(current_user, statuses, alert_types, priorities)]


@router.post("/urgent-alerts/{alert_id}/acknowledge")
async def acknowledge_alert(
    alert_id: int,
    current_user: User = Depends(require_permission("shifts.edit")),
    service: ShiftService = Depends(get_shift_service),
):
    return serialize_alert(service.acknowledge_alert(alert_id, current_user))


@router.post("/urgent-alerts/{alert_id}/resolve")
async def resolve_alert(
    alert_id: int,
    current_user: User = Depends(require_permission("shifts.edit")),
    service: ShiftService = Depends(get_shift_service),
):
    return serialize_alert(service.resolve_alert(alert_id, current_user))


# ============================================================================
# CERTIFICATIONS
# ============================================================================


@router.get("/certifications")
async def list_certifications(
    guard_id: Optional[int] = Query(None, alias="guardId"),
    current_user: User = Depends(get_current_user),
    service: ShiftService = Depends(get_shift_service),
):
    return [serialize_certification(c) for c in service.list_certifications(current_user, guard_id)]


@router.post("/certifications", status_code=201)
async def create_certification(
    data: CertificationCreate,
    current_user: User = Depends(require_permission("guards.edit_profiles")),
    service: ShiftService = Depends(get_shift_service),
):
    return serialize_certification(service.create_certification(data, current_user))


@router.patch("/certifications/{certification_id}")
async def update_certification(
    certification_id: int,
    data: CertificationUpdate,
    current_user: User = Depends(require_permission("guards.edit_profiles")),
    service: ShiftService = Depends(get_shift_service),
):
    return serialize_certification(service.update_certification(certification_id, data, current_user))


@router.delete("/certifications/{certification_id}")
async def delete_certification(
    certification_id: int,
    current_user: User = Depends(require_permission("guards.edit_profiles")),
    service: ShiftService = Depends(get_shift_service),
):
    return service.delete_certification(certification_id, current_user)


# ============================================================================
# CORE CRUD OPERATIONS
# ============================================================================


@router.get("", response_model=list[ShiftResponse])
async def list_shifts(
    date_from: Optional[datetime] = Query(None, alias="dateFrom"),
    date_to: Optional[datetime] = Query(None, alias="dateTo"),
    include_archived: bool = Query(False, alias="includeArchived"),
    current_user: User = Depends(get_current_user),
    service: ShiftService = Depends(get_shift_service),
):
    """Managers see every tenant shift; guards see their own"""
    return [
        serialize_shift(s) for s in service.list_shifts(current_user, date_from, date_to, include_archived)
    ]


@router.post("", response_model=ShiftResponse, status_code=201)
async def create_shift(
    data: ShiftCreate,
    current_user: User = Depends(require_permission("shifts.create")),
    service: ShiftService = Depends(get_shift_service),
):
    return serialize_shift(service.create_shift(data, current_user))


@router.get("/{shift_id}", response_model=ShiftResponse)
async def get_shift(
    shift_id: int,
    current_user: User = Depends(get_current_user),
    service: ShiftService = Depends(get_shift_service),
):
    return serialize_shift(service.get_shift(shift_id, current_user))


@router.patch("/{shift_id}", response_model=ShiftResponse)
async def update_shift(
    shift_id: int,
    data: ShiftUpdate,
    current_user: User = Depends(require_permission("shifts.edit")),
    service: ShiftService = Depends(get_shift_service),
):
    return serialize_shift(service.update_shift(shift_id, data, current_user))


@router.delete("/{shift_id}")
async def delete_shift(
    shift_id: int,
    current_user: User = Depends(require_permission("shifts.edit")),
    service: ShiftService = Depends(get_shift_service),
):
    return service.delete_shift(shift_id, current_user)


@router.get("/{shift_id}/history")
async def get_history(
    shift_id: int,
    current_user: User = Depends(get_current_user),
    service: ShiftService = Depends(get_shift_service),
):
    return [serialize_history(h) for h in service.get_history(shift_id, current_user)]


# ============================================================================
# WORKFLOW
# ============================================================================


@router.post("/{shift_id}/move", response_model=ShiftResponse)
async def move_shift(
    shift_id: int,
    data: ShiftMoveRequest,
    current_user: User = Depends(require_permission("shifts.edit")),
    service: ShiftService = Depends(get_shift_service),
):
    shift = service.move_shift(
        shift_id,
        data.newStatus,
        current_user,
        data.reason,
        method=data.method,
        guard_confirmed=data.guardConfirmed,
    )
    return serialize_shift(shift)


@router.post("/{shift_id}/confirm", response_model=ShiftResponse)
async def confirm_shift(
    shift_id: int,
    current_user: User = Depends(get_current_user),
    service: ShiftService = Depends(get_shift_service),
):
    """Assigned guard confirms availability"""
    return serialize_shift(service.confirm_shift(shift_id, current_user))


@router.post("/{shift_id}/assign", response_model=ShiftResponse)
async def assign_guard(
    shift_id: int,
    data: AssignGuardRequest,
    current_user: User = Depends(require_permission("shifts.assign")),
    service: ShiftService = Depends(get_shift_service),
):
    return serialize_shift(await service.assign_guard(shift_id, data.guardId, current_user, data.reason))


@router.get("/{shift_id}/eligible-guards")
async def get_eligible_guards(
    shift_id: int,
    current_user: User = Depends(require_permission("shifts.assign")),
    service: ShiftService = Depends(get_shift_service),
):
    return service.get_eligible_guards(shift_id, current_user)

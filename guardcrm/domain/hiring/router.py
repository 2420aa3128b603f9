"""Hiring router - application board, stage transitions, comments and presence"""

from datetime import datetime
from typing import Optional

from fastapi import APIRouter, Depends, Query, Request
from sqlalchemy.orm import Session

from ...auth import require_permission
from ...database import get_db
from ...models import User
from .schemas import (
    ApplicationCreate,
    ApplicationResponse,
    BoardFilters,
    BulkActionRequest,
    CommentCreate,
    CommentUpdate,
    StageTransitionRequest,
)
from .service import HiringService, serialize_application, serialize_comment

router = APIRouter(prefix="/api/v1/hiring", tags=["Hiring"])

manage_applications = require_permission("guards.manage_applications")


def get_hiring_service(db: Session = Depends(get_db)) -> HiringService:
    """Dependency injection for HiringService"""
    return HiringService(db)


# ============================================================================
# BOARD & APPLICATIONS
# ============================================================================


@router.get("/board")
async def get_board(
    stages: list[str] = Query([]),
    assigned_managers: list[int] = Query([], alias="assignedManagers"),
    priorities: list[int] = Query([]),
    date_from: Optional[datetime] = Query(None, alias="dateFrom"),
    date_to: Optional[datetime] = Query(None, alias="dateTo"),
    search: Optional[str] = Query(None, max_length=100),
    only_mine: bool = Query(False, alias="onlyMine"),
    current_user: User = Depends(manage_applications),
    service: HiringService = Depends(get_hiring_service),
):
    filters = BoardFilters(
        stages=stages,
        assignedManagers=assigned_managers,
        priorities=priorities,
        dateFrom=date_from,
        dateTo=date_to,
        search=search,
        onlyMine=only_mine,
    )
    return service.get_board(current_user, filters)


@router.post("/applications", response_model=ApplicationResponse, status_code=201)
async def create_application(
    data: ApplicationCreate,
    current_user: User = Depends(manage_applications),
    service: HiringService = Depends(get_hiring_service),
):
    return serialize_application(service.create_application(data, current_user))


@router.post("/applications/bulk")
async def bulk_action(
    data: BulkActionRequest,
    current_user: User = Depends(manage_applications),
    service: HiringService = Depends(get_hiring_service),
):
    return await service.bulk_action(data, current_user)


@router.get("/applications/{application_id}", response_model=ApplicationResponse)
async def get_application(
    application_id: int,
    current_user: User = Depends(manage_applications),
    service: HiringService = Depends(get_hiring_service),
):
    return serialize_application(service.get_application(application_id, current_user))


@router.get("/applications/{application_id}/sensitive")
async def get_sensitive_data(
    application_id: int,
    request: Request,
    current_user: User = Depends(manage_applications),
    service: HiringService = Depends(get_hiring_service),
):
    """Decrypted SSN / date of birth / driver license (administrators, audited)"""
    ip_address = request.client.host if request.client else None
    return service.get_sensitive_data(application_id, current_user, ip_address)


@router.post("/applications/{application_id}/transition", response_model=ApplicationResponse)
async def transition_stage(
    application_id: int,
    data: StageTransitionRequest,
    current_user: User = Depends(manage_applications),
    service: HiringService = Depends(get_hiring_service),
):
    application = await service.transition(
        application_id, data.newStage, current_user, data.notes, data.expectedStage
    )
    return serialize_application(application)


@router.get("/applications/{application_id}/history")
async def get_stage_history(
    application_id: int,
    current_user: User = Depends(manage_applications),
    service: HiringService = Depends(get_hiring_service),
):
    return [
        {
            "id": h.id,
            "fromStage": h.from_stage,
            "toStage": h.to_stage,
            "changedBy": h.changed_by,
            "notes": h.notes,
            "changedAt": h.changed_at,
        }
        for h in service.get_history(application_id, current_user)
    ]


# ============================================================================
# COMMENTS
# ============================================================================


@router.get("/applications/{application_id}/comments")
async def list_comments(
    application_id: int,
    include_deleted: bool = Query(False, alias="includeDeleted"),
    current_user: User = Depends(manage_applications),
    service: HiringService = Depends(get_hiring_service),
):
    return service.list_comments(application_id, current_user, include_deleted)


@router.post("/applications/{application_id}/comments", status_code=201)
async def create_comment(
    application_id: int,
    data: CommentCreate,
    current_user: User = Depends(manage_applications),
    service: HiringService = Depends(get_hiring_service),
):
    comment = await service.create_comment(application_id, data, current_user)
    return serialize_comment(comment, {current_user.id: current_user.full_name})


@router.patch("/comments/{comment_id}")
async def update_comment(
    comment_id: int,
    data: CommentUpdate,
    current_user: User = Depends(manage_applications),
    service: HiringService = Depends(get_hiring_service),
):
    comment = service.update_comment(comment_id, data.commentText, current_user)
    return serialize_comment(comment, {current_user.id: current_user.full_name})


@router.delete("/comments/{comment_id}")
async def delete_comment(
    comment_id: int,
    current_user: User = Depends(manage_applications),
    service: HiringService = Depends(get_hiring_service),
):
    return service.delete_comment(comment_id, current_user)


# ============================================================================
# PRESENCE
# ============================================================================


@router.post("/presence/join")
async def join_board(
    current_user: User = Depends(manage_applications),
    service: HiringService = Depends(get_hiring_service),
):
    return {"viewers": service.join_board(current_user)}


@router.post("/presence/heartbeat")
async def heartbeat(
    current_user: User = Depends(manage_applications),
    service: HiringService = Depends(get_hiring_service),
):
    return {"viewers": service.heartbeat(current_user)}


@router.post("/presence/leave")
async def leave_board(
    current_user: User = Depends(manage_applications),
    service: HiringService = Depends(get_hiring_service),
):
    service.leave_board(current_user)
    return {"message": "Left board"}


@router.get("/presence")
async def list_presence(
    current_user: User = Depends(manage_applications),
    service: HiringService = Depends(get_hiring_service),
):
    return {"viewers": service.list_presence(current_user)}

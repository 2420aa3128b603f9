"""Access router - user and role administration"""

from typing import Optional

from fastapi import APIRouter, Depends, Query
from sqlalchemy.orm import Session

from ...auth import get_current_user, require_permission
from ...database import get_db
from ...models import User
from .schemas import PermissionCheckResponse, RoleAssignmentRequest, UserResponse
from .service import AccessService

router = APIRouter(prefix="/api/v1/users", tags=["Users"])


def get_access_service(db: Session = Depends(get_db)) -> AccessService:
    """Dependency injection for AccessService"""
    return AccessService(db)


def _to_response(user: User) -> UserResponse:
    return UserResponse(
        id=user.id,
        email=user.email,
        firstName=user.first_name,
        lastName=user.last_name,
        role=user.role,
        isActive=user.is_active,
        managerId=user.manager_id,
        createdAt=user.created_at,
    )


@router.get("/me")
async def get_me(
    current_user: User = Depends(get_current_user),
    service: AccessService = Depends(get_access_service),
):
    """Current user with effective permissions"""
    return {
        "user": _to_response(current_user),
        "organizationId": current_user.organization_id,
        "permissions": service.get_effective_permissions(current_user),
    }


@router.get("/me/permissions/check", response_model=PermissionCheckResponse)
async def check_permission(
    permission: str = Query(..., description="Dotted path, e.g. leads.assign"),
    current_user: User = Depends(get_current_user),
    service: AccessService = Depends(get_access_service),
):
    return PermissionCheckResponse(
        permission=permission, hasPermission=service.check(current_user, permission)
    )


@router.get("", response_model=list[UserResponse])
async def list_users(
    role: Optional[str] = None,
    current_user: User = Depends(require_permission("guards.view_all")),
    service: AccessService = Depends(get_access_service),
):
    return [_to_response(u) for u in service.list_users(current_user, role)]


@router.post("/roles", response_model=UserResponse)
async def assign_role(
    data: RoleAssignmentRequest,
    current_user: User = Depends(require_permission("system.manage_roles")),
    service: AccessService = Depends(get_access_service),
):
    user = service.assign_role(current_user, data.userId, data.role, data.permissions, data.reason)
    return _to_response(user)


@router.post("/{user_id}/deactivate", response_model=UserResponse)
async def deactivate_user(
    user_id: int,
    current_user: User = Depends(require_permission("users.edit")),
    service: AccessService = Depends(get_access_service),
):
    return _to_response(service.set_active(current_user, user_id, False))


@router.post("/{user_id}/activate", response_model=UserResponse)
async def activate_user(
    user_id: int,
    current_user: User = Depends(require_permission("users.edit")),
    service: AccessService = Depends(get_access_service),
):
    return _to_response(service.set_active(current_user, user_id, True))

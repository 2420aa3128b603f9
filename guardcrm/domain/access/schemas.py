"""Access domain schemas"""

from datetime import datetime
from typing import Optional

from pydantic import BaseModel


class RoleAssignmentRequest(BaseModel):
    userId: int
    role: str
    permissions: Optional[dict] = None
    reason: Optional[str] = None


class UserResponse(BaseModel):
    id: int
    email: str
    firstName: Optional[str] = None
    lastName: Optional[str] = None
    role: str
    isActive: bool
    managerId: Optional[int] = None
    createdAt: Optional[datetime] = None


class PermissionCheckResponse(BaseModel):
    permission: str
    hasPermission: bool

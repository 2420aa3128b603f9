"""Audit and retention schemas"""

from datetime import datetime
from typing import Any, Literal, Optional

from pydantic import BaseModel, Field


class AuditLogResponse(BaseModel):
    id: int
    action: str
    entityType: str
    entityId: Optional[int] = None
    actorId: Optional[int] = None
    previousState: Optional[Any] = None
    newState: Optional[Any] = None
    reason: Optional[str] = None
    ipAddress: Optional[str] = None
    isSystemGenerated: bool
    createdAt: datetime


class AuditLogPage(BaseModel):
    items: list[AuditLogResponse]
    total: int
    limit: int
    offset: int


class RetentionPolicyUpdate(BaseModel):
    retentionDays: Optional[int] = Field(None, ge=1)
    archiveBeforeDelete: Optional[bool] = None
    isActive: Optional[bool] = None


class RetentionActionRequest(BaseModel):
    action: Literal["run_archival", "get_stats", "get_jobs", "get_policy", "update_policy"]
    entityType: Optional[str] = None
    limit: int = Field(10, ge=1, le=100)
    updates: Optional[RetentionPolicyUpdate] = None

"""Hiring domain schemas"""

from datetime import datetime
from typing import Any, Literal, Optional

from pydantic import BaseModel, Field, field_validator

from ...shared.validators import validate_email, validate_us_phone

CommentType = Literal["general", "interview_feedback", "background_check", "manager_note", "system_notification"]


class ApplicationCreate(BaseModel):
    """Guard application submitted from a lead or entered by a manager"""

    leadId: Optional[int] = None
    firstName: str = Field(..., min_length=1, max_length=100)
    lastName: str = Field(..., min_length=1, max_length=100)
    email: str
    phone: Optional[str] = None
    priority: int = Field(5, ge=1, le=10)
    applicationData: dict[str, Any] = {}

    @field_validator("email")
    @classmethod
    def normalize_email(cls, v):
        return validate_email(v)

    @field_validator("phone")
    @classmethod
    def validate_phone(cls, v):
        if v:
            return validate_us_phone(v)
        return v


class ApplicationResponse(BaseModel):
    id: int
    leadId: Optional[int] = None
    firstName: str
    lastName: str
    email: str
    phone: Optional[str] = None
    pipelineStage: str
    assignedTo: Optional[int] = None
    priority: int
    stageChangedAt: Optional[datetime] = None
    stageChangedBy: Optional[int] = None
    workflowNotes: Optional[str] = None
    applicationData: dict[str, Any] = {}
    applicationReference: Optional[str] = None
    createdAt: Optional[datetime] = None


class StageTransitionRequest(BaseModel):
    newStage: str
    notes: Optional[str] = Field(None, max_length=2000)
    expectedStage: Optional[str] = None


class BulkActionRequest(BaseModel):
    applicationIds: list[int] = Field(..., min_length=1, max_length=200)
    action: Literal["assign", "stage_change", "priority_change", "comment"]
    data: dict[str, Any] = {}


class CommentCreate(BaseModel):
    commentText: str = Field(..., min_length=1, max_length=5000)
    commentType: CommentType = "general"
    parentCommentId: Optional[int] = None


class CommentUpdate(BaseModel):
    commentText: str = Field(..., min_length=1, max_length=5000)


class BoardFilters(BaseModel):
    stages: list[str] = []
    assignedManagers: list[int] = []
    priorities: list[int] = []
    dateFrom: Optional[datetime] = None
    dateTo: Optional[datetime] = None
    search: Optional[str] = None
    onlyMine: bool = False

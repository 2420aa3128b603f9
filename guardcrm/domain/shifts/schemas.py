"""Shift domain schemas"""

from datetime import datetime
from typing import Any, Literal, Optional

from pydantic import BaseModel, Field, model_validator

ShiftStatus = Literal["unassigned", "assigned", "confirmed", "in_progress", "completed", "issue_logged", "archived"]
TransitionMethod = Literal["manual", "bulk", "automated", "api"]


class ShiftCreate(BaseModel):
    title: str = Field(..., min_length=1, max_length=255)
    clientName: Optional[str] = Field(None, max_length=255)
    siteName: Optional[str] = Field(None, max_length=255)
    siteAddress: Optional[str] = Field(None, max_length=500)
    startTime: datetime
    endTime: datetime
    priority: int = Field(3, ge=1, le=5)
    contractId: Optional[int] = None
    requiredCertifications: list[str] = []
    specialRequirements: Optional[str] = Field(None, max_length=2000)

    @model_validator(mode="after")
    def check_times(self):
        if self.endTime <= self.startTime:
            raise ValueError("endTime must be after startTime")
        return self


class ShiftUpdate(BaseModel):
    title: Optional[str] = Field(None, min_length=1, max_length=255)
    clientName: Optional[str] = Field(None, max_length=255)
    siteName: Optional[str] = Field(None, max_length=255)
    siteAddress: Optional[str] = Field(None, max_length=500)
    startTime: Optional[datetime] = None
    endTime: Optional[datetime] = None
    priority: Optional[int] = Field(None, ge=1, le=5)
    requiredCertifications: Optional[list[str]] = None
    specialRequirements: Optional[str] = Field(None, max_length=2000)


class ShiftResponse(BaseModel):
    id: int
    title: str
    clientName: Optional[str] = None
    siteName: Optional[str] = None
    siteAddress: Optional[str] = None
    startTime: datetime
    endTime: datetime
    status: str
    priority: int
    assignedGuardId: Optional[int] = None
    confirmedAt: Optional[datetime] = None
    requiredCertifications: list[str] = []
    specialRequirements: Optional[str] = None
    contractId: Optional[int] = None
    createdAt: Optional[datetime] = None
    updatedAt: Optional[datetime] = None


class ShiftMoveRequest(BaseModel):
    newStatus: ShiftStatus
    reason: Optional[str] = Field(None, max_length=1000)
    guardConfirmed: bool = False
    method: TransitionMethod = "manual"


class AssignGuardRequest(BaseModel):
    guardId: int
    reason: Optional[str] = Field(None, max_length=1000)


class ShiftBulkActionRequest(BaseModel):
    shiftIds: list[int] = Field(..., min_length=1, max_length=200)
    action: Literal["status_change", "assign", "priority_update", "notification"]
    data: dict[str, Any] = {}


class ShiftBoardFilters(BaseModel):
    dateFrom: Optional[datetime] = None
    dateTo: Optional[datetime] = None
    clientName: Optional[str] = None
    siteName: Optional[str] = None
    guardId: Optional[int] = None
    statuses: list[str] = []
    priorities: list[int] = []
    assignmentStatus: Optional[Literal["assigned", "unassigned"]] = None
    urgentOnly: bool = False


class CertificationCreate(BaseModel):
    guardId: int
    certificationType: str = Field(..., min_length=1, max_length=100)
    certificateNumber: Optional[str] = Field(None, max_length=100)
    issuedAt: Optional[datetime] = None
    expiresAt: Optional[datetime] = None


class CertificationUpdate(BaseModel):
    certificateNumber: Optional[str] = Field(None, max_length=100)
    issuedAt: Optional[datetime] = None
    expiresAt: Optional[datetime] = None

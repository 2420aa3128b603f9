"""Lead domain schemas - Pydantic models for validation"""

from datetime import datetime
from typing import Literal, Optional

from pydantic import BaseModel, Field, field_validator

from ...shared.validators import validate_email, validate_us_phone

LEAD_STATUSES = ("prospect", "contacted", "qualified", "proposal", "negotiation", "won", "lost")
SOURCE_TYPES = ("direct_website", "referral", "job_board", "social_media", "walk_in", "event", "other")

LeadStatus = Literal["prospect", "contacted", "qualified", "proposal", "negotiation", "won", "lost"]
SourceType = Literal["direct_website", "referral", "job_board", "social_media", "walk_in", "event", "other"]


class LeadCreate(BaseModel):
    """Schema for creating a lead (dashboard or public intake)"""

    leadType: Literal["client", "guard"] = "client"
    firstName: str = Field(..., min_length=1, max_length=100)
    lastName: str = Field(..., min_length=1, max_length=100)
    email: str
    phone: Optional[str] = None
    sourceType: SourceType = "direct_website"
    sourceDetails: Optional[dict] = None
    serviceType: Optional[str] = None
    message: Optional[str] = Field(None, max_length=5000)
    estimatedValue: Optional[float] = Field(None, ge=0)

    # Recruiting profile (guard leads)
    yearsExperience: Optional[int] = Field(None, ge=0, le=60)
    hasSecurityExperience: bool = False
    hasLicense: bool = False
    transportationAvailable: bool = False
    willingToRelocate: bool = False
    salaryExpectations: Optional[float] = Field(None, ge=0)
    certifications: list[str] = []
    preferredLocations: list[str] = []
    availability: dict[str, bool] = {}
    referrerId: Optional[int] = None

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


class LeadUpdate(BaseModel):
    firstName: Optional[str] = Field(None, min_length=1, max_length=100)
    lastName: Optional[str] = Field(None, min_length=1, max_length=100)
    email: Optional[str] = None
    phone: Optional[str] = None
    status: Optional[LeadStatus] = None
    serviceType: Optional[str] = None
    message: Optional[str] = Field(None, max_length=5000)
    estimatedValue: Optional[float] = Field(None, ge=0)
    qualificationNotes: Optional[str] = Field(None, max_length=5000)
    nextFollowUpDate: Optional[datetime] = None

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


class LeadResponse(BaseModel):
    id: int
    leadType: str
    firstName: str
    lastName: str
    email: str
    phone: Optional[str] = None
    sourceType: str
    sourceDetails: Optional[dict] = None
    serviceType: Optional[str] = None
    message: Optional[str] = None
    estimatedValue: Optional[float] = None
    status: str
    assignedTo: Optional[int] = None
    assignedAt: Optional[datetime] = None
    qualificationScore: Optional[float] = None
    qualificationFactors: Optional[list] = None
    qualificationNotes: Optional[str] = None
    priority: Optional[str] = None
    applicationProbability: Optional[float] = None
    hireProbability: Optional[float] = None
    lastContactDate: Optional[datetime] = None
    nextFollowUpDate: Optional[datetime] = None
    contactCount: int = 0
    convertedToContract: bool = False
    applicationStatus: Optional[str] = None
    convertedToHire: bool = False
    createdAt: Optional[datetime] = None
    updatedAt: Optional[datetime] = None


class LeadCreateResult(BaseModel):
    lead: LeadResponse
    merged: bool = False
    matchType: Optional[str] = None
    confidence: Optional[int] = None
    assignment: Optional[dict] = None


class ContactRecord(BaseModel):
    nextFollowUpDate: Optional[datetime] = None
    notes: Optional[str] = Field(None, max_length=2000)


class ManualAssignRequest(BaseModel):
    managerId: int
    reason: str = Field(..., min_length=1, max_length=500)


class BatchScoreRequest(BaseModel):
    leadIds: list[int] = Field(..., min_length=1, max_length=500)


class AssignmentRuleCreate(BaseModel):
    name: str = Field(..., min_length=1, max_length=255)
    priority: int = Field(50, ge=1, le=1000)
    isActive: bool = True
    serviceTypes: list[str] = []
    sources: list[SourceType] = []
    valueMin: Optional[float] = None
    valueMax: Optional[float] = None
    assignmentMethod: Literal["round_robin", "lowest_workload", "random", "manual"] = "round_robin"
    eligibleManagers: list[int] = []


class ScoringConfigCreate(BaseModel):
    name: str = Field(..., min_length=1, max_length=255)
    qualificationThreshold: float = Field(60, ge=0, le=100)
    highPriorityThreshold: float = Field(80, ge=0, le=100)
    factors: list[dict] = Field(..., min_length=1)

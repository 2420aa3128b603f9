"""Contract domain schemas - Pydantic models for validation"""

from datetime import datetime
from typing import Literal, Optional

from pydantic import BaseModel, Field, field_validator, model_validator

from ...shared.validators import validate_email

ContractType = Literal["ongoing", "event", "executive", "patrol"]


class ContractCreate(BaseModel):
    """Schema for creating a new contract"""

    clientName: str = Field(..., min_length=1, max_length=255)
    clientEmail: Optional[str] = None
    title: str = Field(..., min_length=1, max_length=255)
    description: Optional[str] = Field(None, max_length=5000)
    contractType: ContractType = "ongoing"
    startDate: Optional[datetime] = None
    endDate: Optional[datetime] = None
    contractValue: Optional[float] = Field(None, ge=0)
    autoRenew: bool = False
    assignedManager: Optional[int] = None

    @field_validator("clientEmail")
    @classmethod
    def normalize_email(cls, v):
        if v:
            return validate_email(v)
        return v

    @model_validator(mode="after")
    def check_dates(self):
        if self.startDate and self.endDate and self.endDate <= self.startDate:
            raise ValueError("endDate must be after startDate")
        return self


class ContractFromLead(BaseModel):
    """Create a contract from a won client lead"""

    title: str = Field(..., min_length=1, max_length=255)
    contractType: ContractType = "ongoing"
    startDate: Optional[datetime] = None
    endDate: Optional[datetime] = None
    contractValue: Optional[float] = Field(None, ge=0)
    autoRenew: bool = False


class ContractUpdate(BaseModel):
    """Schema for updating an existing contract"""

    clientName: Optional[str] = Field(None, min_length=1, max_length=255)
    clientEmail: Optional[str] = None
    title: Optional[str] = Field(None, min_length=1, max_length=255)
    description: Optional[str] = Field(None, max_length=5000)
    contractType: Optional[ContractType] = None
    startDate: Optional[datetime] = None
    endDate: Optional[datetime] = None
    contractValue: Optional[float] = Field(None, ge=0)
    autoRenew: Optional[bool] = None
    assignedManager: Optional[int] = None

    @field_validator("clientEmail")
    @classmethod
    def normalize_email(cls, v):
        if v:
            return validate_email(v)
        return v


class ContractStatusUpdate(BaseModel):
    status: str


class ContractResponse(BaseModel):
    """Schema for contract response"""

    id: int
    leadId: Optional[int] = None
    clientName: str
    clientEmail: Optional[str] = None
    title: str
    description: Optional[str] = None
    contractType: str
    status: str
    startDate: Optional[datetime] = None
    endDate: Optional[datetime] = None
    contractValue: Optional[float] = None
    autoRenew: bool
    assignedManager: Optional[int] = None
    createdAt: Optional[datetime] = None
    updatedAt: Optional[datetime] = None


class RenewalUpdate(BaseModel):
    status: Optional[Literal["upcoming", "in_negotiation", "renewed", "churned"]] = None
    proposedValue: Optional[float] = Field(None, ge=0)
    retentionStrategy: Optional[str] = Field(None, max_length=2000)

"""Calendar schemas"""

from datetime import datetime
from typing import Literal, Optional

from pydantic import BaseModel, Field

CalendarProvider = Literal["google_calendar", "microsoft_outlook"]


class OAuthInitiateRequest(BaseModel):
    provider: CalendarProvider
    returnUrl: Optional[str] = Field(None, max_length=1000)


class IntegrationResponse(BaseModel):
    id: int
    provider: str
    providerEmail: Optional[str] = None
    isActive: bool
    syncEnabled: bool
    tokenExpiresAt: datetime
    lastSyncAt: Optional[datetime] = None


class SubscriptionCreate(BaseModel):
    name: str = Field("GuardCRM Shifts", min_length=1, max_length=255)
    includeClientInfo: bool = False


class SubscriptionUpdate(BaseModel):
    name: Optional[str] = Field(None, min_length=1, max_length=255)
    includeClientInfo: Optional[bool] = None

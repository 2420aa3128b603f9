"""Notification domain schemas"""

from datetime import datetime
from typing import Literal, Optional

from pydantic import BaseModel, Field, field_validator

from ...shared.validators import validate_time_of_day

NotificationCategory = Literal[
    "schedule", "availability", "assignments", "system", "compliance", "emergency", "leads", "hiring"
]
NotificationPriority = Literal["low", "normal", "high", "urgent", "emergency"]

CATEGORIES = ("schedule", "availability", "assignments", "system", "compliance", "emergency", "leads", "hiring")
PRIORITIES = ("low", "normal", "high", "urgent", "emergency")


class NotificationCreate(BaseModel):
    recipientId: int
    category: NotificationCategory = "system"
    priority: NotificationPriority = "normal"
    title: str = Field(..., min_length=1, max_length=255)
    message: str = Field(..., min_length=1, max_length=5000)
    entityType: Optional[str] = None
    entityId: Optional[int] = None
    deliveryChannels: Optional[list[Literal["in_app", "email"]]] = None


class NotificationResponse(BaseModel):
    id: int
    category: str
    priority: str
    title: str
    message: str
    entityType: Optional[str] = None
    entityId: Optional[int] = None
    deliveryChannels: list[str] = []
    isRead: bool
    readAt: Optional[datetime] = None
    acknowledgedAt: Optional[datetime] = None
    createdAt: Optional[datetime] = None


class NotificationStats(BaseModel):
    total: int
    unread: int
    urgent: int
    emergency: int
    byCategory: dict[str, int]
    byPriority: dict[str, int]


class PreferenceUpdate(BaseModel):
    emailEnabled: Optional[bool] = None
    inAppEnabled: Optional[bool] = None
    digestFrequency: Optional[Literal["none", "daily", "weekly"]] = None
    quietHoursStart: Optional[str] = None
    quietHoursEnd: Optional[str] = None
    categories: Optional[dict[str, bool]] = None

    @field_validator("quietHoursStart", "quietHoursEnd")
    @classmethod
    def validate_quiet_hours(cls, v):
        return validate_time_of_day(v)

    @field_validator("categories")
    @classmethod
    def validate_categories(cls, v):
        if v:
            unknown = set(v) - set(CATEGORIES)
            if unknown:
                raise ValueError(f"Unknown notification categories: {', '.join(sorted(unknown))}")
        return v


class PreferenceResponse(BaseModel):
    emailEnabled: bool
    inAppEnabled: bool
    digestFrequency: str
    quietHoursStart: Optional[str] = None
    quietHoursEnd: Optional[str] = None
    categories: dict[str, bool] = {}

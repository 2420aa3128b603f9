"""A/B testing schemas"""

from typing import Any, Literal, Optional

from pydantic import BaseModel, Field


class VariantCreate(BaseModel):
    name: str = Field(..., min_length=1, max_length=255)
    description: Optional[str] = Field(None, max_length=2000)
    config: dict[str, Any] = {}
    trafficPercentage: float = Field(..., ge=0, le=100)


class ABTestCreate(BaseModel):
    name: str = Field(..., min_length=1, max_length=255)
    description: Optional[str] = Field(None, max_length=2000)
    testType: Literal["form_variant", "email_sequence", "landing_page"]
    hypothesis: Optional[str] = Field(None, max_length=2000)
    successMetric: Optional[str] = Field(None, max_length=100)
    confidenceLevel: float = Field(95, gt=50, lt=100)
    minimumSampleSize: int = Field(100, ge=1)
    minimumEffectSize: float = Field(5, ge=0)
    variants: list[VariantCreate] = Field(..., min_length=1, max_length=10)


class VisitorAssignRequest(BaseModel):
    visitorId: str = Field(..., min_length=1, max_length=255)
    userAgent: Optional[str] = Field(None, max_length=500)
    referrer: Optional[str] = Field(None, max_length=500)


class ConversionRequest(BaseModel):
    visitorId: str = Field(..., min_length=1, max_length=255)
    conversionValue: float = 1
    conversionData: Optional[dict[str, Any]] = None


class StopTestRequest(BaseModel):
    analysisNotes: Optional[str] = Field(None, max_length=5000)

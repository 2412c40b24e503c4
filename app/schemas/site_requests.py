from __future__ import annotations

from datetime import datetime
from decimal import Decimal
from typing import Any, Optional

from pydantic import BaseModel, ConfigDict, Field

from app.db.enums import RequestPriorityEnum, RequestTypeEnum


class SiteRequestCreateRequest(BaseModel):
    customerId: Optional[str] = None
    requestType: RequestTypeEnum
    businessType: str = Field(min_length=1)
    siteId: Optional[str] = None
    sessionId: Optional[str] = None
    terminology: Optional[str] = None
    priority: Optional[RequestPriorityEnum] = None
    requestData: dict[str, Any] = Field(default_factory=dict)
    estimatedCost: Optional[Decimal] = Field(default=None, ge=0)
    expiresAt: Optional[datetime] = None


# Required values below are checked by the service so a missing one is a 400 like any other
# domain validation error.
class SiteRequestCompleteRequest(BaseModel):
    generatedContent: Optional[Any] = None
    processingNotes: Optional[str] = None
    actualCost: Optional[Decimal] = Field(default=None, ge=0)


class SiteRequestRejectRequest(BaseModel):
    reason: Optional[str] = None


class SiteRequestFailRequest(BaseModel):
    error: Optional[str] = None


class SiteRequestUpdateRequest(BaseModel):
    model_config = ConfigDict(extra="forbid")

    priority: Optional[RequestPriorityEnum] = None
    processingNotes: Optional[str] = None
    adminComments: Optional[str] = None
    estimatedCost: Optional[Decimal] = Field(default=None, ge=0)
    actualCost: Optional[Decimal] = Field(default=None, ge=0)
    terminology: Optional[str] = None
    customerRating: Optional[int] = Field(default=None, ge=1, le=5)
    customerFeedback: Optional[str] = None
    expiresAt: Optional[datetime] = None

    def to_patch(self) -> dict[str, Any]:
        fields = self.model_dump(exclude_unset=True)
        if fields.get("priority") is None:
            fields.pop("priority", None)
        return {UPDATE_FIELD_MAP[name]: value for name, value in fields.items()}


UPDATE_FIELD_MAP = {
    "priority": "priority",
    "processingNotes": "processing_notes",
    "adminComments": "admin_comments",
    "estimatedCost": "estimated_cost",
    "actualCost": "actual_cost",
    "terminology": "terminology",
    "customerRating": "customer_rating",
    "customerFeedback": "customer_feedback",
    "expiresAt": "expires_at",
}


class ImageDraftSaveRequest(BaseModel):
    role: str
    filename: Optional[str] = None
    dataUrl: str

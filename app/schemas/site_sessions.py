from __future__ import annotations

from typing import Any, Optional

from pydantic import BaseModel, Field


class SiteSessionCreateRequest(BaseModel):
    customerId: Optional[str] = None
    siteName: Optional[str] = None
    businessType: Optional[str] = None
    sections: dict[str, Any] = Field(default_factory=dict)


class SiteSectionUpdateRequest(BaseModel):
    data: Any

from app.schemas.site_document import (
    AboutSection,
    BlogArticle,
    BlogSection,
    ContactSection,
    FaqItem,
    HeroSection,
    SeoSection,
    ServiceItem,
    Testimonial,
)
from app.schemas.site_requests import (
    ImageDraftSaveRequest,
    SiteRequestCompleteRequest,
    SiteRequestCreateRequest,
    SiteRequestFailRequest,
    SiteRequestRejectRequest,
    SiteRequestUpdateRequest,
)
from app.schemas.site_sessions import SiteSectionUpdateRequest, SiteSessionCreateRequest

__all__ = [
    "AboutSection",
    "BlogArticle",
    "BlogSection",
    "ContactSection",
    "FaqItem",
    "HeroSection",
    "SeoSection",
    "ServiceItem",
    "Testimonial",
    "ImageDraftSaveRequest",
    "SiteRequestCompleteRequest",
    "SiteRequestCreateRequest",
    "SiteRequestFailRequest",
    "SiteRequestRejectRequest",
    "SiteRequestUpdateRequest",
    "SiteSectionUpdateRequest",
    "SiteSessionCreateRequest",
]

from app.db.repositories.site_requests import SiteRequestsRepository
from app.db.repositories.image_drafts import ImageDraftsRepository
from app.db.repositories.site_sessions import SiteSessionsRepository
from app.db.repositories.request_history import RequestHistoryRepository

__all__ = [
    "SiteRequestsRepository",
    "ImageDraftsRepository",
    "SiteSessionsRepository",
    "RequestHistoryRepository",
]
